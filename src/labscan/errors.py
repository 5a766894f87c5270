"""Typed failures surfaced by the labscan pipeline."""

from __future__ import annotations

from typing import Optional


class PipelineError(RuntimeError):
    """Top-level pipeline failure."""


class UnsupportedMediaType(PipelineError):
    """Raised when a document is not a PDF, JPEG or PNG."""

    def __init__(self, media_type: Optional[str], filename: Optional[str] = None):
        self.media_type = media_type
        self.filename = filename
        label = f" ({filename})" if filename else ""
        super().__init__(
            f"Unsupported document type '{media_type or 'unknown'}'{label}. Please upload a PDF, JPG, or PNG file."
        )


class OversizeDocument(PipelineError):
    """Raised when a document exceeds the configured size limit."""

    def __init__(self, size: int, limit: int):
        self.size = size
        self.limit = limit
        super().__init__(
            f"Document is {size} bytes; maximum file size is {limit // (1024 * 1024)}MB ({limit} bytes)."
        )


class MissingCredential(PipelineError):
    """Raised before any network activity when no API key is configured."""

    def __init__(self, message: str = "API key missing. Set LABSCAN_API_KEY or pass one in the settings."):
        super().__init__(message)


class NoTextExtracted(PipelineError):
    """Raised when every unit, provider and the default retry produced no text."""

    def __init__(self, message: str = "Failed to extract text from the document: all OCR attempts failed."):
        super().__init__(message)


class AnalysisFailed(PipelineError):
    """Raised when extracted text could not be turned into a valid measurement set."""

    def __init__(self, message: str, *, extracted_text: str = ""):
        self.extracted_text = extracted_text
        super().__init__(message)


class DocumentDecompositionError(PipelineError):
    """Raised when a PDF cannot be opened or read."""
