#!/usr/bin/env python3
"""Generate a deterministic single-page sample invoice PDF for the demo.

Each canonical field is printed inside the page box the mock detection reply
reports for it, so overlays drawn from mock detections land on the text.

Outputs:
  sample_data/sample_invoice.pdf

Run:
  python sample_data/generate_sample_invoice_pdf.py
"""

from __future__ import annotations

import os
from pathlib import Path

from fpdf import FPDF

HERE = Path(__file__).resolve().parent

# US Letter in points
PAGE_WIDTH = 612.0
PAGE_HEIGHT = 792.0

# (label, value, x, y, width, height) — box in page fractions
FIELDS = [
    ("", "Acme Inc.", 0.10, 0.15, 0.30, 0.05),
    ("Date:", "2023-10-15", 0.70, 0.15, 0.20, 0.05),
    ("Due Date:", "2023-11-15", 0.70, 0.25, 0.20, 0.05),
    ("Amount:", "$1,250.00", 0.75, 0.60, 0.15, 0.05),
    ("Tax:", "$187.50", 0.75, 0.65, 0.15, 0.05),
    ("Total:", "$1,437.50", 0.75, 0.70, 0.15, 0.05),
    ("", "USD", 0.80, 0.60, 0.05, 0.05),
]


def build_invoice_pdf() -> bytes:
    """Render the sample invoice and return the PDF bytes."""
    pdf = FPDF(unit="pt", format="letter")
    pdf.set_auto_page_break(auto=False)
    pdf.add_page()

    pdf.set_font("Helvetica", "B", 20)
    pdf.set_xy(0.10 * PAGE_WIDTH, 0.06 * PAGE_HEIGHT)
    pdf.cell(200, 24, "INVOICE")

    for label, value, x, y, width, height in FIELDS:
        left = x * PAGE_WIDTH
        top = y * PAGE_HEIGHT
        if label:
            pdf.set_font("Helvetica", "", 9)
            pdf.set_xy(left - 70, top)
            pdf.cell(66, height * PAGE_HEIGHT, label, align="R")
        pdf.set_font("Helvetica", "B", 11)
        pdf.set_xy(left, top)
        pdf.cell(width * PAGE_WIDTH, height * PAGE_HEIGHT, value)

    pdf.set_font("Helvetica", "I", 9)
    pdf.set_xy(0.10 * PAGE_WIDTH, 0.85 * PAGE_HEIGHT)
    pdf.cell(0.80 * PAGE_WIDTH, 14, "Thank you for your business!", align="C")

    return bytes(pdf.output())


def main() -> None:
    print("Generating sample invoice PDF...\n")

    output_path = HERE / "sample_invoice.pdf"
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_bytes(build_invoice_pdf())
    print(f"  ✓ Generated: {output_path}  ({os.path.getsize(output_path)} bytes)")

    print("\nDone. Serve sample_data/ over HTTP to use it with run_demo.py.")


if __name__ == "__main__":
    main()
