"""Project-level configuration helpers for the labscan extraction pipeline."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, Field, ValidationError, field_validator

DEFAULT_FALLBACK_PROVIDERS: Tuple[str, ...] = (
    "anthropic/claude-3-opus:beta",
    "openai/gpt-4o",
    "anthropic/claude-3-sonnet:beta",
    "google/gemini-pro-vision",
    "anthropic/claude-3-haiku:beta",
)

ANALYSIS_BACKENDS = ("llm", "rules")
REPORT_FORMATS = ("json", "yaml")


class Settings(BaseModel):
    """Runtime settings loaded from environment variables or defaults."""

    data_dir: Path = Field(default_factory=lambda: Path("data"))
    output_dir: Path = Field(default_factory=lambda: Path("outputs"))
    temp_dir: Path = Field(default_factory=lambda: Path("tmp"))
    log_level: str = "INFO"
    debug: bool = False
    api_key: Optional[str] = None
    api_base_url: str = "https://openrouter.ai/api/v1"
    http_referer: Optional[str] = None
    max_providers: int = Field(default=5, ge=1, le=5)
    fallback_providers: Tuple[str, ...] = DEFAULT_FALLBACK_PROVIDERS
    default_provider: str = "anthropic/claude-3-opus:beta"
    ocr_prompt_image: str = "Extract all text from this image:"
    ocr_prompt_document: str = "Extract all text from this health report:"
    ocr_temperature: float = 0.1
    ocr_max_tokens: int = 4000
    provider_timeout: Optional[float] = 120.0
    analysis_backend: str = "llm"
    analysis_model: str = "openai/gpt-4o-mini"
    analysis_max_tokens: int = 4000
    max_document_bytes: int = 10 * 1024 * 1024
    pdf_image_min_side: int = 32
    report_format: str = "json"

    @field_validator("analysis_backend")
    @classmethod
    def _check_backend(cls, value: str) -> str:
        if value not in ANALYSIS_BACKENDS:
            raise ValueError(f"analysis_backend must be one of {ANALYSIS_BACKENDS}, got '{value}'")
        return value

    @field_validator("report_format")
    @classmethod
    def _check_format(cls, value: str) -> str:
        if value not in REPORT_FORMATS:
            raise ValueError(f"report_format must be one of {REPORT_FORMATS}, got '{value}'")
        return value

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings by reading environment variables with labscan-specific prefixes."""
        defaults = cls()
        fallback_env = os.getenv("LABSCAN_FALLBACK_PROVIDERS")
        timeout_env = os.getenv("LABSCAN_PROVIDER_TIMEOUT")
        env_overrides: Dict[str, Any] = {
            "data_dir": Path(os.getenv("LABSCAN_DATA_DIR", str(defaults.data_dir))),
            "output_dir": Path(os.getenv("LABSCAN_OUTPUT_DIR", str(defaults.output_dir))),
            "temp_dir": Path(os.getenv("LABSCAN_TEMP_DIR", str(defaults.temp_dir))),
            "log_level": os.getenv("LABSCAN_LOG_LEVEL", defaults.log_level),
            "debug": _coerce_bool(os.getenv("LABSCAN_DEBUG", str(defaults.debug))),
            "api_key": os.getenv("LABSCAN_API_KEY") or os.getenv("OPENROUTER_API_KEY"),
            "api_base_url": os.getenv("LABSCAN_API_BASE_URL", defaults.api_base_url),
            "http_referer": os.getenv("LABSCAN_HTTP_REFERER", defaults.http_referer),
            "max_providers": int(os.getenv("LABSCAN_MAX_PROVIDERS", defaults.max_providers)),
            "fallback_providers": (
                _split_csv(fallback_env) if fallback_env else defaults.fallback_providers
            ),
            "default_provider": os.getenv("LABSCAN_DEFAULT_PROVIDER", defaults.default_provider),
            "ocr_temperature": float(os.getenv("LABSCAN_OCR_TEMPERATURE", defaults.ocr_temperature)),
            "ocr_max_tokens": int(os.getenv("LABSCAN_OCR_MAX_TOKENS", defaults.ocr_max_tokens)),
            "provider_timeout": _coerce_timeout(timeout_env, defaults.provider_timeout),
            "analysis_backend": os.getenv("LABSCAN_ANALYSIS_BACKEND", defaults.analysis_backend),
            "analysis_model": os.getenv("LABSCAN_ANALYSIS_MODEL", defaults.analysis_model),
            "analysis_max_tokens": int(
                os.getenv("LABSCAN_ANALYSIS_MAX_TOKENS", defaults.analysis_max_tokens)
            ),
            "max_document_bytes": int(
                os.getenv("LABSCAN_MAX_DOCUMENT_BYTES", defaults.max_document_bytes)
            ),
            "pdf_image_min_side": int(
                os.getenv("LABSCAN_PDF_IMAGE_MIN_SIDE", defaults.pdf_image_min_side)
            ),
            "report_format": os.getenv("LABSCAN_REPORT_FORMAT", defaults.report_format),
        }
        return cls(**env_overrides)

    def ensure_directories(self) -> None:
        """Create directories that the pipeline expects to exist."""
        for path in (self.data_dir, self.output_dir, self.temp_dir):
            path.mkdir(parents=True, exist_ok=True)

    @property
    def report_output_path(self) -> Path:
        """Directory that receives reports written by the CLI."""
        base = self.output_dir / "reports"
        base.mkdir(parents=True, exist_ok=True)
        return base

    def redacted(self) -> Dict[str, Any]:
        """Settings as a dict with the credential masked, safe for logging."""
        data = self.model_dump()
        if data.get("api_key"):
            data["api_key"] = "***"
        return data


def _coerce_bool(value: str) -> bool:
    if isinstance(value, bool):
        return value
    return value.lower() in {"1", "true", "yes", "y"}


def _coerce_timeout(value: Optional[str], default: Optional[float]) -> Optional[float]:
    if value is None:
        return default
    if value.strip().lower() in {"", "none", "off", "0"}:
        return None
    return float(value)


def _split_csv(value: str) -> Tuple[str, ...]:
    return tuple(item.strip() for item in value.split(",") if item.strip())


@lru_cache(maxsize=1)
def load_settings() -> Settings:
    """Return cached settings, raising a helpful error if validation fails."""
    try:
        settings = Settings.from_env()
        settings.ensure_directories()
        return settings
    except ValidationError as exc:
        raise RuntimeError(f"Invalid application configuration: {exc}") from exc
