#!/usr/bin/env python
"""Inspect a report by decomposing it into extraction units without calling any provider."""

from __future__ import annotations

import argparse
import asyncio
from pathlib import Path
import sys

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from config import load_settings
from src.labscan.document_decomposer import DocumentDecomposer
from src.labscan.errors import PipelineError
from src.labscan.logging_utils import configure_logging, get_logger
from src.labscan.models import Document
from src.labscan.report_assembler import determine_report_type, guess_patient_name


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Inspect how a report is split into extraction units.")
    parser.add_argument("--input", type=Path, required=True, help="Path to the PDF, JPG or PNG to inspect.")
    parser.add_argument(
        "--min-image-side",
        type=int,
        default=None,
        help="Override the smallest embedded PDF image (pixels) that is kept.",
    )
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    settings = load_settings()
    if args.min_image_side is not None:
        settings.pdf_image_min_side = args.min_image_side

    configure_logging(settings, force=True)
    logger = get_logger("inspect_document")

    try:
        document = Document.from_path(args.input)
        document.validate(settings.max_document_bytes)
        units = asyncio.run(DocumentDecomposer(settings).decompose(document))
    except PipelineError as exc:
        logger.error("Decomposition failed: %s", exc)
        return 1

    logger.info("%s (%s, %s bytes) -> %s units", document.filename, document.media_type, document.size, len(units))
    native_text = ""
    for index, unit in enumerate(units):
        if unit.is_text:
            native_text = unit.content
            snippet = unit.content.strip().splitlines()[0] if unit.content.strip() else "<empty>"
            logger.info("Unit %s [%s] %s chars: %s", index, unit.label, len(unit.content), snippet)
        else:
            logger.info("Unit %s [%s] image, %s base64 chars", index, unit.label, len(unit.content))

    logger.info("Report type guess: %s", determine_report_type(document.filename, native_text))
    logger.info("Patient name from filename: %s", guess_patient_name(document.filename) or "<none>")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
