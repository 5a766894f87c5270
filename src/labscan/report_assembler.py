"""Assemble the final report record and the filename heuristics it relies on."""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from pathlib import PurePath
from typing import Callable, List, Optional, Tuple

from .logging_utils import get_logger
from .models import ClassificationResult, Document, ExtractedText, PatientInfo, Report

logger = get_logger(__name__)

DEFAULT_TITLE = "Health Report"
DEFAULT_REPORT_TYPE = "blood"

# (report type, keywords scanned in filename and text, keywords scanned in text only)
REPORT_TYPE_RULES: Tuple[Tuple[str, Tuple[str, ...], Tuple[str, ...]], ...] = (
    ("blood", ("blood",), ()),
    ("cholesterol", ("cholesterol",), ()),
    ("cbc", ("cbc", "complete blood count"), ()),
    ("metabolic", ("metabolic",), ("panel",)),
    ("liver", ("liver", "hepatic"), ()),
    ("kidney", ("kidney", "renal"), ()),
    ("thyroid", ("thyroid",), ()),
    ("lipid", ("lipid",), ()),
    ("glucose", ("glucose", "sugar"), ()),
)

_TITLE_NAME = re.compile(r"(?:^|[\s_\-\.])(?:Mr|Mrs|Ms|Miss|Dr)[\s_\-\.]+([A-Za-z][A-Za-z\s_\-]*)", re.IGNORECASE)
_LEADING_WORD = re.compile(r"^(?:Report|Lab|Test|Result|Health)[\s_\-]+", re.IGNORECASE)
_SEPARATORS = re.compile(r"[\s_\-\.]+")
_REPORT_VOCABULARY = frozenset(
    {
        "report", "reports", "lab", "labs", "test", "tests", "result", "results", "health",
        "blood", "cholesterol", "cbc", "complete", "count", "metabolic", "panel", "liver",
        "hepatic", "kidney", "renal", "thyroid", "lipid", "lipids", "glucose", "sugar",
        "profile", "scan", "scanned", "final", "copy", "summary", "basic", "comprehensive",
        "function", "urine", "analysis", "and", "of", "the", "new", "latest", "page",
    }
)


def strip_extension(filename: str) -> str:
    return re.sub(r"\.[^/.]+$", "", PurePath(filename).name)


def _name_tokens(text: str) -> List[str]:
    return [
        part
        for part in _SEPARATORS.split(text)
        if len(part) > 1 and part.isalpha() and part.lower() not in _REPORT_VOCABULARY
    ]


def guess_patient_name(filename: str) -> Optional[str]:
    """
    Best-effort patient name from a filename.

    ``Mr_John_Smith_CBC.pdf`` and ``Report-Jane-Doe.png`` both yield a name;
    ``Lipid_Panel_John.pdf`` does not because only one token is not report
    vocabulary.
    """
    stem = strip_extension(filename)
    if not stem:
        return None

    titled = _TITLE_NAME.search(stem)
    if titled:
        tokens = _name_tokens(titled.group(1))
        if tokens:
            return " ".join(tokens)

    tokens = _name_tokens(_LEADING_WORD.sub("", stem))
    if len(tokens) >= 2:
        return " ".join(tokens)
    return None


def determine_report_type(filename: str, text: str) -> str:
    """First matching report type in fixed priority order, ``blood`` when nothing matches."""
    lower_name = _SEPARATORS.sub(" ", strip_extension(filename).lower())
    lower_text = (text or "").lower()
    for report_type, shared, text_only in REPORT_TYPE_RULES:
        if any(keyword in lower_name or keyword in lower_text for keyword in shared):
            return report_type
        if any(keyword in lower_text for keyword in text_only):
            return report_type
    return DEFAULT_REPORT_TYPE


def derive_title(filename: str, patient_name: Optional[str]) -> str:
    if patient_name:
        return f"{patient_name}'s Health Report"
    return strip_extension(filename).strip() or DEFAULT_TITLE


@dataclass(frozen=True)
class DocumentMetadata:
    """What the assembler keeps about a document once its bytes are gone."""

    filename: str
    media_type: str
    size: int

    @classmethod
    def of(cls, document: Document) -> "DocumentMetadata":
        return cls(filename=document.filename, media_type=document.media_type, size=document.size)


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ReportAssembler:
    """Combine OCR text, classification and filename hints into one immutable report."""

    def __init__(
        self,
        *,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
        clock: Callable[[], str] = _utc_now,
    ):
        self.id_factory = id_factory
        self.clock = clock

    def assemble(
        self,
        extracted: ExtractedText,
        classification: ClassificationResult,
        metadata: DocumentMetadata,
    ) -> Report:
        patient = classification.patient_info
        if patient is None or not patient.name:
            guessed = guess_patient_name(metadata.filename)
            if guessed:
                logger.debug("Patient name '%s' taken from filename %s", guessed, metadata.filename)
                patient = replace(patient, name=guessed) if patient else PatientInfo(name=guessed)

        report = Report(
            id=self.id_factory(),
            title=derive_title(metadata.filename, patient.name if patient else None),
            date=self.clock(),
            report_type=determine_report_type(metadata.filename, extracted.text),
            measurements=classification.measurements,
            summary=classification.summary,
            detailed_analysis=classification.detailed_analysis,
            recommendations=classification.recommendations,
            categories=classification.categories,
            patient_info=patient,
            raw_text=extracted.text,
            provider_used=extracted.provider_used or classification.model_used,
        )
        logger.info("Assembled report '%s' (%s, %s measurements)", report.title, report.report_type, len(report.measurements))
        return report
