"""High-level orchestrator wiring the document-to-report pipeline."""

from __future__ import annotations

import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from config import Settings, load_settings
from .classifier import MeasurementClassifier, build_interpreter
from .document_decomposer import DocumentDecomposer
from .errors import MissingCredential, PipelineError
from .logging_utils import get_logger
from .models import Document, ExtractedText, ExtractionUnit, Report
from .ocr_orchestrator import OCROrchestrator
from .progress import PROVIDERS_SELECTED, ProgressEvent, ProgressObserver, notify
from .provider_client import OpenRouterClient
from .providers import ProviderDirectory
from .report_assembler import DocumentMetadata, ReportAssembler

logger = get_logger(__name__)

ClientFactory = Callable[[Settings], Any]


class PipelineOrchestrator:
    """Run the full health-report pipeline on a single document."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        decomposer: Optional[DocumentDecomposer] = None,
        directory: Optional[ProviderDirectory] = None,
        ocr: Optional[OCROrchestrator] = None,
        classifier: Optional[MeasurementClassifier] = None,
        assembler: Optional[ReportAssembler] = None,
        client_factory: Optional[ClientFactory] = None,
    ):
        self.settings = settings or load_settings()

        self.decomposer = decomposer or DocumentDecomposer(self.settings)
        self.directory = directory or ProviderDirectory(self.settings)
        self.ocr = ocr or OCROrchestrator(self.settings)
        self.classifier = classifier
        self.assembler = assembler or ReportAssembler()
        self.client_factory = client_factory or OpenRouterClient

    async def process_document(
        self, document: Document, *, observer: Optional[ProgressObserver] = None
    ) -> Report:
        """Validate, read, classify and assemble one document into a report."""
        document.validate(self.settings.max_document_bytes)
        if not self.settings.api_key:
            raise MissingCredential()

        logger.info("Starting pipeline for %s (%s, %s bytes)", document.filename, document.media_type, document.size)
        start = time.perf_counter()
        stage_timings: Dict[str, float] = {}

        try:
            stage_start = time.perf_counter()
            units = await self.decomposer.decompose(document)
            stage_timings["decomposition"] = time.perf_counter() - stage_start

            async with self.client_factory(self.settings) as client:
                stage_start = time.perf_counter()
                extracted = await self._extract(document, units, client, observer)
                stage_timings["ocr"] = time.perf_counter() - stage_start

                stage_start = time.perf_counter()
                classifier = self.classifier or MeasurementClassifier(
                    self.settings, build_interpreter(self.settings, client)
                )
                classification = await classifier.classify(extracted.text)
                stage_timings["classification"] = time.perf_counter() - stage_start

            report = self.assembler.assemble(extracted, classification, DocumentMetadata.of(document))
        except PipelineError as exc:
            logger.error("Pipeline failed for %s: %s", document.filename, exc)
            raise
        except Exception as exc:  # pylint: disable=broad-except
            logger.exception("Pipeline failed for %s", document.filename)
            raise PipelineError(str(exc)) from exc

        for stage, duration in stage_timings.items():
            logger.debug("Stage %s took %.2fs", stage, duration)
        logger.info(
            "Pipeline finished in %.2fs (measurements=%s, provider=%s)",
            time.perf_counter() - start,
            len(report.measurements),
            report.provider_used,
        )
        return report

    async def _extract(
        self,
        document: Document,
        units: List[ExtractionUnit],
        client: Any,
        observer: Optional[ProgressObserver],
    ) -> ExtractedText:
        providers: List[str] = []
        if any(not unit.is_text for unit in units):
            providers = await self.directory.select(client)
            notify(observer, ProgressEvent(PROVIDERS_SELECTED, providers=tuple(providers)))
        return await self.ocr.extract(units, providers, client, document=document, observer=observer)

    async def process_path(self, path: Path, *, observer: Optional[ProgressObserver] = None) -> Report:
        """Run the pipeline on a file on disk."""
        path = Path(path).resolve()
        if not path.exists():
            raise PipelineError(f"Document not found: {path}")
        return await self.process_document(Document.from_path(path), observer=observer)

    async def process_bytes(
        self,
        data: bytes,
        filename: str = "upload.pdf",
        media_type: Optional[str] = None,
        *,
        observer: Optional[ProgressObserver] = None,
    ) -> Report:
        """Run the pipeline on an uploaded document provided as bytes."""
        return await self.process_document(Document.from_bytes(data, filename, media_type), observer=observer)
