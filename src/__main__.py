"""Command-line interface entry point for the labscan pipeline."""

from __future__ import annotations

import argparse
import asyncio
import json
from pathlib import Path
import sys

import yaml

from config import Settings, load_settings
from src.labscan.classifier import risk_counts, sort_for_display
from src.labscan.errors import PipelineError
from src.labscan.logging_utils import configure_logging, get_logger
from src.labscan.models import Report
from src.labscan.orchestrator import PipelineOrchestrator
from src.labscan.progress import PROVIDER_SELECTED, UNIT_SUCCEEDED, RecordingObserver
from src.labscan.provider_client import OpenRouterClient


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="labscan",
        description="Extract structured measurements from a scanned health report.",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Override the configured log level (default comes from LABSCAN_LOG_LEVEL).",
    )
    parser.add_argument("--show-settings", action="store_true", help="Print runtime settings and exit.")
    parser.add_argument("--check-key", action="store_true", help="Verify the API key against the model registry.")
    parser.add_argument("-i", "--input", help="Path to the PDF, JPG or PNG report to process.")
    parser.add_argument(
        "-o",
        "--output",
        help="Optional override for the output directory (defaults to settings).",
    )
    parser.add_argument(
        "--analysis-backend",
        choices=["llm", "rules"],
        default=None,
        help="Override how extracted text is turned into measurements.",
    )
    parser.add_argument(
        "--format",
        choices=["json", "yaml"],
        default=None,
        help="Report file format (default comes from LABSCAN_REPORT_FORMAT).",
    )
    return parser.parse_args(argv)


def write_report(report: Report, settings: Settings) -> Path:
    """Write the report into the output directory, replacing any previous one."""
    payload = report.to_dict()
    target = settings.report_output_path / f"latest_report.{settings.report_format}"
    with target.open("w", encoding="utf-8") as handle:
        if settings.report_format == "yaml":
            yaml.safe_dump(payload, handle, sort_keys=False, allow_unicode=True)
        else:
            json.dump(payload, handle, indent=2, ensure_ascii=False)
    return target


async def _check_key(settings: Settings) -> bool:
    async with OpenRouterClient(settings) as client:
        return await client.verify_credential()


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    settings = load_settings()

    if args.log_level:
        settings.log_level = args.log_level
    if args.analysis_backend:
        settings.analysis_backend = args.analysis_backend
    if args.format:
        settings.report_format = args.format

    configure_logging(settings, force=True)
    logger = get_logger(__name__)
    logger.info("labscan CLI ready.")

    if args.show_settings:
        logger.info("Active settings: %s", settings.redacted())
        if not args.input:
            return 0

    if args.output:
        settings.output_dir = Path(args.output)
    settings.ensure_directories()

    if args.check_key:
        try:
            valid = asyncio.run(_check_key(settings))
        except PipelineError as exc:
            logger.error("Credential check failed: %s", exc)
            return 2
        logger.info("API key is %s.", "valid" if valid else "NOT valid")
        if not args.input:
            return 0 if valid else 2

    if not args.input:
        logger.error("No input report provided. Use --input to specify a file.")
        return 1

    document_path = Path(args.input)
    orchestrator = PipelineOrchestrator(settings)
    observer = RecordingObserver()

    try:
        report = asyncio.run(orchestrator.process_path(document_path, observer=observer))
    except PipelineError as exc:
        logger.error("Pipeline failed: %s", exc)
        return 2

    attempted = len(observer.of_kind(PROVIDER_SELECTED))
    succeeded = len(observer.of_kind(UNIT_SUCCEEDED))
    if attempted:
        logger.info("OCR provider attempts: %s (%s successful)", attempted, succeeded)

    counts = risk_counts(report.measurements)
    logger.info("Report: %s (%s) via %s", report.title, report.report_type, report.provider_used)
    logger.info(
        "Found %s parameters with %s high risk and %s medium risk items that require attention.",
        len(report.measurements),
        counts["danger"],
        counts["warning"],
    )
    for measurement in sort_for_display(report.measurements):
        logger.info(
            "%-8s %s = %s %s (range %s)",
            measurement.status,
            measurement.name,
            measurement.value,
            measurement.unit,
            measurement.reference_range or "n/a",
        )
    logger.info("Report written to %s", write_report(report, settings))
    return 0


if __name__ == "__main__":
    sys.exit(main())
