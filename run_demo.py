#!/usr/bin/env python3
"""
run_demo.py — One-command demo entry point.

Usage:
  python run_demo.py                          # Mock detection (no OPENAI_API_KEY)
  python run_demo.py --pdf-url <url>          # Detect fields on a real PDF
  python run_demo.py --scale 1.6              # Render overlays at another zoom
  python run_demo.py --no-service             # Use an already running service

This script:
1. Starts the annotation service in the background
2. Runs field detection for one document
3. Reports a rendered viewport and prints the pixel overlays and form
4. Shuts down the annotation service
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
import subprocess
import sys
import time

import httpx
from dotenv import load_dotenv

load_dotenv()

from annotation_service.viewport import DEFAULT_SCALE  # noqa: E402

# Defaults
DEFAULT_PDF_URL = os.getenv("DEMO_PDF_URL", "http://localhost:8000/sample_invoice.pdf")
SERVICE_HOST = "127.0.0.1"
SERVICE_PORT = int(os.getenv("ANNOTATION_PORT", "8002"))
SERVICE_URL = os.getenv("ANNOTATION_URL", f"http://{SERVICE_HOST}:{SERVICE_PORT}")
API_KEY = os.getenv("ANNOTATION_API_KEY", "demo-api-key-change-me")

# US Letter in PDF points
PAGE_WIDTH = 612.0
PAGE_HEIGHT = 792.0
DOCUMENT_ID = "demo-invoice"

SEP = "--------------------------------------------------"


# ============================================================
# Service lifecycle
# ============================================================


def start_service() -> subprocess.Popen:
    """Launch the annotation FastAPI service as a subprocess."""
    env = os.environ.copy()
    env["ANNOTATION_API_KEY"] = API_KEY
    return subprocess.Popen(
        [
            sys.executable,
            "-m",
            "uvicorn",
            "annotation_service.main:app",
            "--host",
            SERVICE_HOST,
            "--port",
            str(SERVICE_PORT),
            "--log-level",
            "warning",
        ],
        env=env,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
    )


def wait_for_service(timeout: float = 15.0) -> bool:
    """Block until /health responds or timeout."""
    deadline = time.time() + timeout
    while time.time() < deadline:
        try:
            r = httpx.get(f"{SERVICE_URL}/health", timeout=2.0)
            if r.status_code == 200:
                return True
        except (httpx.ConnectError, httpx.ReadError):
            pass
        time.sleep(0.3)
    return False


def stop_process(proc: subprocess.Popen) -> None:
    """Gracefully stop a subprocess."""
    if proc.poll() is None:
        if sys.platform == "win32":
            proc.terminate()
        else:
            proc.send_signal(signal.SIGTERM)
        try:
            proc.wait(timeout=5)
        except subprocess.TimeoutExpired:
            proc.kill()


# ============================================================
# Service calls
# ============================================================


async def run_pipeline(pdf_url: str, scale: float) -> dict:
    """Detect, report a viewport, then read back overlays and the form."""
    headers = {"X-API-Key": API_KEY, "Content-Type": "application/json"}
    base = f"{SERVICE_URL}/documents/{DOCUMENT_ID}"
    viewport = {
        "original_width": PAGE_WIDTH,
        "original_height": PAGE_HEIGHT,
        "rendered_width": PAGE_WIDTH * scale,
        "rendered_height": PAGE_HEIGHT * scale,
        "offset_x": 16.0,
        "offset_y": 16.0,
    }
    async with httpx.AsyncClient(timeout=120.0, headers=headers) as client:
        resp = await client.post(f"{base}/detect", json={"pdf_url": pdf_url})
        resp.raise_for_status()
        detection = resp.json()

        resp = await client.put(f"{base}/viewport", json=viewport)
        resp.raise_for_status()

        resp = await client.get(f"{base}/overlay")
        resp.raise_for_status()
        overlay = resp.json()

        resp = await client.get(f"{base}/form")
        resp.raise_for_status()
        form = resp.json()

    return {"detection": detection, "overlay": overlay, "form": form}


# ============================================================
# Formatted output
# ============================================================


def print_demo_output(pdf_url: str, scale: float, result: dict) -> None:
    detection = result["detection"]
    overlay = result["overlay"]
    form = result["form"]

    print()
    print(SEP)
    print("INVOICE FIELD ANNOTATION DEMO")
    print(SEP)
    print()
    print(f"PDF: {pdf_url}")
    print(f"Request ID: {detection['request_id']}")
    print(f"Trace ID: {detection['trace_id']}")
    print(f"Detection tier: {detection['tier'] or '(nothing detected)'}")
    print()

    print(SEP)
    print(f"OVERLAYS AT {scale * 100:.0f}% ZOOM")
    print(SEP)
    for item in overlay:
        box = item["box"]
        print(
            f"{item['type']:<9} {item['value']!r:<14} "
            f"left={box['left']:.1f} top={box['top']:.1f} "
            f"w={box['width']:.1f} h={box['height']:.1f}"
        )
    print()

    print(SEP)
    print("INVOICE FORM")
    print(SEP)
    for key, value in form["form"].items():
        print(f"{key}: {value}")
    print()

    if form["warnings"]:
        print(SEP)
        print("FORM WARNINGS")
        print(SEP)
        for i, w in enumerate(form["warnings"], 1):
            print(f"{i}. {w['message']}")
        print()

    print("Demo complete.")
    print(SEP)


# ============================================================
# Main
# ============================================================


def main() -> None:
    parser = argparse.ArgumentParser(description="Invoice Field Annotation Demo")
    parser.add_argument(
        "--pdf-url",
        default=DEFAULT_PDF_URL,
        help=f"URL of the invoice PDF (default: {DEFAULT_PDF_URL})",
    )
    parser.add_argument(
        "--scale",
        type=float,
        default=DEFAULT_SCALE,
        help=f"Render scale for the overlay geometry (default: {DEFAULT_SCALE})",
    )
    parser.add_argument(
        "--no-service",
        action="store_true",
        help="Skip starting the annotation service (if already running)",
    )

    args = parser.parse_args()

    # Suppress noisy logs for clean demo output
    logging.basicConfig(level=logging.WARNING)

    service_proc = None

    try:
        if not args.no_service:
            service_proc = start_service()
            if not wait_for_service():
                print("ERROR: Annotation service failed to start.", file=sys.stderr)
                stop_process(service_proc)
                sys.exit(1)

        result = asyncio.run(run_pipeline(args.pdf_url, args.scale))
        print_demo_output(args.pdf_url, args.scale, result)

    except KeyboardInterrupt:
        print("\nInterrupted.")
    except httpx.HTTPError as exc:
        print(f"\nERROR: {exc}", file=sys.stderr)
        sys.exit(1)
    finally:
        if service_proc:
            stop_process(service_proc)


if __name__ == "__main__":
    main()
