"""Expose labscan core modules."""

from .models import (
    ClassificationResult,
    Document,
    ExtractedText,
    ExtractionUnit,
    HistoryPoint,
    Measurement,
    OCRAttempt,
    PatientInfo,
    Report,
)
from .errors import (
    AnalysisFailed,
    DocumentDecompositionError,
    MissingCredential,
    NoTextExtracted,
    OversizeDocument,
    PipelineError,
    UnsupportedMediaType,
)
from .provider_client import OpenRouterClient, ProviderUnavailable
from .providers import ProviderDirectory
from .document_decomposer import DocumentDecomposer
from .ocr_orchestrator import OCROrchestrator
from .classifier import (
    LLMInterpreter,
    MeasurementClassifier,
    RuleBasedInterpreter,
    category_of,
    filter_measurements,
    sort_for_display,
)
from .report_assembler import ReportAssembler, determine_report_type, guess_patient_name
from .progress import ProgressEvent, RecordingObserver
from .orchestrator import PipelineOrchestrator

__all__ = [
    "ClassificationResult",
    "Document",
    "ExtractedText",
    "ExtractionUnit",
    "HistoryPoint",
    "Measurement",
    "OCRAttempt",
    "PatientInfo",
    "Report",
    "AnalysisFailed",
    "DocumentDecompositionError",
    "MissingCredential",
    "NoTextExtracted",
    "OversizeDocument",
    "PipelineError",
    "UnsupportedMediaType",
    "OpenRouterClient",
    "ProviderUnavailable",
    "ProviderDirectory",
    "DocumentDecomposer",
    "OCROrchestrator",
    "LLMInterpreter",
    "MeasurementClassifier",
    "RuleBasedInterpreter",
    "category_of",
    "filter_measurements",
    "sort_for_display",
    "ReportAssembler",
    "determine_report_type",
    "guess_patient_name",
    "ProgressEvent",
    "RecordingObserver",
    "PipelineOrchestrator",
]
