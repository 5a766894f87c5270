"""Split an uploaded document into provider-ready extraction units."""

from __future__ import annotations

import asyncio
import base64
from typing import List, Set

import fitz  # PyMuPDF

from config import Settings
from .errors import DocumentDecompositionError, UnsupportedMediaType
from .logging_utils import get_logger
from .models import (
    ALLOWED_MEDIA_TYPES,
    MEDIA_PDF,
    MEDIA_PNG,
    UNIT_IMAGE,
    UNIT_TEXT,
    Document,
    ExtractionUnit,
)

logger = get_logger(__name__)

WHOLE_DOCUMENT_LABEL = "document"
TEXT_LAYER_LABEL = "text-layer"


def to_data_url(data: bytes, media_type: str) -> str:
    """Encode raw bytes as a base64 data URL."""
    return f"data:{media_type};base64,{base64.b64encode(data).decode('ascii')}"


def whole_document_unit(document: Document) -> ExtractionUnit:
    """The entire raster file as a single image unit."""
    return ExtractionUnit(UNIT_IMAGE, to_data_url(document.data, document.media_type), WHOLE_DOCUMENT_LABEL)


class DocumentDecomposer:
    """Produce ordered text and image units from PDFs and raster images."""

    def __init__(self, settings: Settings):
        self.settings = settings

    async def decompose(self, document: Document) -> List[ExtractionUnit]:
        """
        Break ``document`` into extraction units.

        PDFs yield their text layer first (always present, possibly empty)
        followed by one image unit per embedded raster in page order. JPEG and
        PNG files yield exactly one image unit with the whole file.
        """
        if document.media_type not in ALLOWED_MEDIA_TYPES:
            raise UnsupportedMediaType(document.media_type, document.filename)

        if document.media_type == MEDIA_PDF:
            units = await asyncio.to_thread(self._decompose_pdf, document)
        else:
            units = [await asyncio.to_thread(whole_document_unit, document)]

        logger.info(
            "Decomposed %s into %s units (%s image)",
            document.filename,
            len(units),
            sum(1 for unit in units if not unit.is_text),
        )
        return units

    def _decompose_pdf(self, document: Document) -> List[ExtractionUnit]:
        try:
            pdf = fitz.open(stream=document.data, filetype="pdf")
        except Exception as exc:  # pylint: disable=broad-except
            raise DocumentDecompositionError(f"Unable to open PDF {document.filename}: {exc}") from exc

        with pdf:
            page_texts = [page.get_text() for page in pdf]
            images = self._embedded_images(pdf)

        text = "\n".join(chunk.strip("\n") for chunk in page_texts if chunk.strip())
        return [ExtractionUnit(UNIT_TEXT, text, TEXT_LAYER_LABEL), *images]

    def _embedded_images(self, pdf: "fitz.Document") -> List[ExtractionUnit]:
        units: List[ExtractionUnit] = []
        seen: Set[int] = set()
        min_side = self.settings.pdf_image_min_side
        for page_index, page in enumerate(pdf):
            for image_index, info in enumerate(page.get_images(full=True)):
                xref = info[0]
                # Letterheads and logos are usually one xref reused on every page.
                if xref in seen:
                    continue
                seen.add(xref)
                try:
                    pixmap = fitz.Pixmap(pdf, xref)
                    if pixmap.width < min_side or pixmap.height < min_side:
                        logger.debug(
                            "Skipping %sx%s image on page %s", pixmap.width, pixmap.height, page_index + 1
                        )
                        continue
                    if pixmap.colorspace is not None and pixmap.colorspace.n > 3:
                        pixmap = fitz.Pixmap(fitz.csRGB, pixmap)
                    png_bytes = pixmap.tobytes("png")
                except Exception as exc:  # pylint: disable=broad-except
                    logger.warning("Could not decode image xref %s on page %s: %s", xref, page_index + 1, exc)
                    continue
                label = f"page {page_index + 1} image {image_index + 1}"
                units.append(ExtractionUnit(UNIT_IMAGE, to_data_url(png_bytes, MEDIA_PNG), label))
        return units
