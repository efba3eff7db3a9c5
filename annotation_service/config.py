"""Annotation service configuration — all values from environment."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from dotenv import load_dotenv

load_dotenv()


@dataclass(frozen=True)
class AnnotationConfig:
    """Immutable configuration loaded once at startup."""

    api_key: str = field(default_factory=lambda: os.getenv("ANNOTATION_API_KEY", "demo-api-key-change-me"))

    # Field detection model (OpenAI-compatible chat completions)
    openai_api_key: str = field(default_factory=lambda: os.getenv("OPENAI_API_KEY", ""))
    openai_model: str = field(default_factory=lambda: os.getenv("OPENAI_MODEL", "gpt-4o"))
    openai_api_base: str = field(default_factory=lambda: os.getenv("OPENAI_API_BASE", ""))
    detection_timeout: float = field(default_factory=lambda: float(os.getenv("DETECTION_TIMEOUT", "120")))
    render_scale: float = field(default_factory=lambda: float(os.getenv("RENDER_SCALE", "2.0")))

    # Observability
    otel_endpoint: str = field(default_factory=lambda: os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", ""))
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))

    @property
    def mock_mode(self) -> bool:
        """True when no detection model credential is configured."""
        return not self.openai_api_key


config = AnnotationConfig()
