"""Tests for splitting documents into extraction units."""

from __future__ import annotations

import base64
import io
from pathlib import Path

import pytest
from PIL import Image
from reportlab.lib.pagesizes import letter
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

from config import Settings
from src.labscan.document_decomposer import DocumentDecomposer, to_data_url
from src.labscan.errors import DocumentDecompositionError, UnsupportedMediaType
from src.labscan.models import MEDIA_PDF, MEDIA_PNG, UNIT_IMAGE, UNIT_TEXT, Document


def _settings(tmp_path: Path) -> Settings:
    settings = Settings(
        data_dir=tmp_path / "data",
        output_dir=tmp_path / "outputs",
        temp_dir=tmp_path / "tmp",
    )
    settings.ensure_directories()
    return settings


def _png_bytes(color: str, size: int = 64) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (size, size), color=color).save(buffer, format="PNG")
    return buffer.getvalue()


def _text_pdf(tmp_path: Path) -> bytes:
    pdf_path = tmp_path / "text.pdf"
    pdf_canvas = canvas.Canvas(str(pdf_path), pagesize=letter)
    pdf_canvas.drawString(72, 720, "Hemoglobin 13.5 g/dL")
    pdf_canvas.showPage()
    pdf_canvas.drawString(72, 720, "Glucose 90 mg/dL")
    pdf_canvas.save()
    return pdf_path.read_bytes()


def _image_pdf(tmp_path: Path, with_text: bool = True) -> bytes:
    pdf_path = tmp_path / "scan.pdf"
    pdf_canvas = canvas.Canvas(str(pdf_path), pagesize=letter)
    if with_text:
        pdf_canvas.drawString(72, 720, "Patient: Jane Doe")
    pdf_canvas.drawImage(ImageReader(Image.new("RGB", (64, 64), color="red")), 72, 500, width=64, height=64)
    pdf_canvas.showPage()
    pdf_canvas.drawImage(ImageReader(Image.new("RGB", (64, 64), color="blue")), 72, 500, width=64, height=64)
    # Below the minimum side, treated as decoration.
    pdf_canvas.drawImage(ImageReader(Image.new("RGB", (8, 8), color="green")), 300, 500, width=8, height=8)
    pdf_canvas.save()
    return pdf_path.read_bytes()


@pytest.mark.asyncio
async def test_pdf_without_images_yields_single_text_unit(tmp_path):
    decomposer = DocumentDecomposer(_settings(tmp_path))
    document = Document(_text_pdf(tmp_path), MEDIA_PDF, "report.pdf")

    units = await decomposer.decompose(document)

    assert len(units) == 1
    assert units[0].kind == UNIT_TEXT
    assert "Hemoglobin 13.5 g/dL" in units[0].content
    assert "Glucose 90 mg/dL" in units[0].content
    assert units[0].content.index("Hemoglobin") < units[0].content.index("Glucose")


@pytest.mark.asyncio
async def test_pdf_text_unit_precedes_images_in_page_order(tmp_path):
    decomposer = DocumentDecomposer(_settings(tmp_path))
    document = Document(_image_pdf(tmp_path), MEDIA_PDF, "scan.pdf")

    units = await decomposer.decompose(document)

    assert [unit.kind for unit in units] == [UNIT_TEXT, UNIT_IMAGE, UNIT_IMAGE]
    assert "Jane Doe" in units[0].content
    assert units[1].label.startswith("page 1")
    assert units[1].content != units[2].content
    for unit in units[1:]:
        assert unit.content.startswith("data:image/png;base64,")
        decoded = base64.b64decode(unit.content.split(",", 1)[1])
        with Image.open(io.BytesIO(decoded)) as image:
            assert image.size == (64, 64)


@pytest.mark.asyncio
async def test_image_only_pdf_keeps_empty_text_unit(tmp_path):
    decomposer = DocumentDecomposer(_settings(tmp_path))
    document = Document(_image_pdf(tmp_path, with_text=False), MEDIA_PDF, "scan.pdf")

    units = await decomposer.decompose(document)

    assert units[0].kind == UNIT_TEXT
    assert units[0].content == ""
    assert len(units) == 3


@pytest.mark.asyncio
async def test_png_is_one_whole_document_unit(tmp_path):
    decomposer = DocumentDecomposer(_settings(tmp_path))
    data = _png_bytes("white")

    units = await decomposer.decompose(Document(data, MEDIA_PNG, "scan.png"))

    assert len(units) == 1
    assert units[0].kind == UNIT_IMAGE
    assert units[0].content == to_data_url(data, MEDIA_PNG)


@pytest.mark.asyncio
async def test_unsupported_media_type_is_rejected(tmp_path):
    decomposer = DocumentDecomposer(_settings(tmp_path))

    with pytest.raises(UnsupportedMediaType):
        await decomposer.decompose(Document(b"GIF89a", "image/gif", "scan.gif"))


@pytest.mark.asyncio
async def test_corrupt_pdf_raises_decomposition_error(tmp_path):
    decomposer = DocumentDecomposer(_settings(tmp_path))

    with pytest.raises(DocumentDecompositionError):
        await decomposer.decompose(Document(b"this is not a pdf", MEDIA_PDF, "broken.pdf"))
