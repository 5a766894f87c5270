"""Core data models for the labscan extraction pipeline."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .errors import OversizeDocument, UnsupportedMediaType

MEDIA_PDF = "application/pdf"
MEDIA_JPEG = "image/jpeg"
MEDIA_PNG = "image/png"
ALLOWED_MEDIA_TYPES: Tuple[str, ...] = (MEDIA_PDF, MEDIA_JPEG, MEDIA_PNG)
SUFFIX_MEDIA_TYPES: Dict[str, str] = {
    ".pdf": MEDIA_PDF,
    ".jpg": MEDIA_JPEG,
    ".jpeg": MEDIA_JPEG,
    ".png": MEDIA_PNG,
}

UNIT_TEXT = "text"
UNIT_IMAGE = "image"

STATUS_NORMAL = "normal"
STATUS_WARNING = "warning"
STATUS_DANGER = "danger"
STATUSES: Tuple[str, ...] = (STATUS_DANGER, STATUS_WARNING, STATUS_NORMAL)

DEFAULT_CATEGORY = "Other"


def serialize_value(value: Any) -> str:
    """Render a measurement value as a displayable scalar string."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return json.dumps(value, separators=(",", ":"), default=str)


def media_type_for(filename: str) -> Optional[str]:
    """Infer a media type from a filename suffix."""
    return SUFFIX_MEDIA_TYPES.get(Path(filename).suffix.lower())


@dataclass(frozen=True)
class Document:
    """A single uploaded health report before decomposition."""

    data: bytes = field(repr=False)
    media_type: str
    filename: str = "document"

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def is_pdf(self) -> bool:
        return self.media_type == MEDIA_PDF

    @classmethod
    def from_bytes(cls, data: bytes, filename: str, media_type: Optional[str] = None) -> "Document":
        resolved = media_type or media_type_for(filename)
        if resolved is None:
            raise UnsupportedMediaType(None, filename)
        return cls(data=data, media_type=resolved, filename=Path(filename).name)

    @classmethod
    def from_path(cls, path: Path) -> "Document":
        return cls.from_bytes(path.read_bytes(), path.name)

    def validate(self, max_bytes: int) -> None:
        """Fail fast on media types and sizes the pipeline does not accept."""
        if self.media_type not in ALLOWED_MEDIA_TYPES:
            raise UnsupportedMediaType(self.media_type, self.filename)
        if self.size > max_bytes:
            raise OversizeDocument(self.size, max_bytes)


@dataclass(frozen=True)
class ExtractionUnit:
    """A provider-ready fragment of a document: native text or a base64 image."""

    kind: str
    content: str = field(repr=False)
    label: str = ""

    @property
    def is_text(self) -> bool:
        return self.kind == UNIT_TEXT


@dataclass(frozen=True)
class OCRAttempt:
    """Outcome of asking one provider to read one unit."""

    unit_index: int
    provider: str
    text: Optional[str] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return bool(self.text and self.text.strip())


@dataclass
class ExtractedText:
    """Ordered concatenation of every unit text that succeeded."""

    text: str
    provider_used: Optional[str] = None
    attempts: List[OCRAttempt] = field(default_factory=list)
    failed_units: List[int] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.text.strip()


@dataclass(frozen=True)
class HistoryPoint:
    """A prior reading of a measurement."""

    date: str
    value: str


@dataclass(frozen=True)
class Measurement:
    """A single named health measurement with its risk status."""

    name: str
    value: str
    unit: str = ""
    status: str = STATUS_NORMAL
    reference_range: str = ""
    category: Optional[str] = None
    description: Optional[str] = None
    history: Tuple[HistoryPoint, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "name": self.name,
            "value": self.value,
            "unit": self.unit,
            "status": self.status,
            "range": self.reference_range,
        }
        if self.category is not None:
            payload["category"] = self.category
        if self.description is not None:
            payload["description"] = self.description
        payload["history"] = [{"date": point.date, "value": point.value} for point in self.history]
        return payload

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Measurement":
        history = tuple(
            HistoryPoint(date=str(point.get("date", "")), value=serialize_value(point.get("value")))
            for point in data.get("history") or []
        )
        return cls(
            name=str(data["name"]),
            value=serialize_value(data.get("value")),
            unit=serialize_value(data.get("unit")),
            status=str(data.get("status", STATUS_NORMAL)),
            reference_range=serialize_value(data.get("range", data.get("referenceRange"))),
            category=data.get("category"),
            description=data.get("description"),
            history=history,
        )


_PATIENT_KEYS: Tuple[Tuple[str, str], ...] = (
    ("name", "name"),
    ("patient_id", "patientId"),
    ("gender", "gender"),
    ("age", "age"),
    ("date_of_birth", "dateOfBirth"),
    ("collection_date", "collectionDate"),
    ("facility", "hospitalName"),
    ("physician", "doctorName"),
)


@dataclass(frozen=True)
class PatientInfo:
    """Sparse patient metadata; every field is optional."""

    name: Optional[str] = None
    patient_id: Optional[str] = None
    gender: Optional[str] = None
    age: Optional[str] = None
    date_of_birth: Optional[str] = None
    collection_date: Optional[str] = None
    facility: Optional[str] = None
    physician: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return all(getattr(self, attr) is None for attr, _ in _PATIENT_KEYS)

    def to_dict(self) -> Dict[str, str]:
        return {key: getattr(self, attr) for attr, key in _PATIENT_KEYS if getattr(self, attr) is not None}

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "PatientInfo":
        if not data:
            return cls()
        values: Dict[str, Optional[str]] = {}
        for attr, key in _PATIENT_KEYS:
            raw = data.get(key, data.get(attr))
            text = serialize_value(raw).strip() if raw is not None else ""
            values[attr] = text or None
        return cls(**values)


@dataclass(frozen=True)
class ClassificationResult:
    """Validated output of the measurement classifier."""

    measurements: Tuple[Measurement, ...]
    summary: str = ""
    detailed_analysis: str = ""
    recommendations: Tuple[str, ...] = ()
    categories: Tuple[str, ...] = ()
    patient_info: Optional[PatientInfo] = None
    model_used: Optional[str] = None


@dataclass(frozen=True)
class Report:
    """Immutable structured output of one successful pipeline run."""

    id: str
    title: str
    date: str
    report_type: str
    measurements: Tuple[Measurement, ...]
    summary: str = ""
    detailed_analysis: str = ""
    recommendations: Tuple[str, ...] = ()
    categories: Tuple[str, ...] = ()
    patient_info: Optional[PatientInfo] = None
    raw_text: Optional[str] = None
    provider_used: Optional[str] = None
    status: str = "Analyzed"

    def to_dict(self) -> Dict[str, Any]:
        """Serialize using the camelCase keys of the stored report format."""
        return {
            "id": self.id,
            "title": self.title,
            "date": self.date,
            "type": self.report_type,
            "status": self.status,
            "metrics": [measurement.to_dict() for measurement in self.measurements],
            "recommendations": list(self.recommendations),
            "rawText": self.raw_text,
            "summary": self.summary,
            "detailedAnalysis": self.detailed_analysis,
            "categories": list(self.categories),
            "patientInfo": self.patient_info.to_dict() if self.patient_info else {},
            "modelUsed": self.provider_used or "Unknown",
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Report":
        patient = PatientInfo.from_dict(data.get("patientInfo"))
        model_used = data.get("modelUsed")
        return cls(
            id=str(data["id"]),
            title=str(data.get("title", "")),
            date=str(data.get("date", "")),
            report_type=str(data.get("type", "blood")),
            measurements=tuple(Measurement.from_dict(item) for item in data.get("metrics") or []),
            summary=str(data.get("summary") or ""),
            detailed_analysis=str(data.get("detailedAnalysis") or ""),
            recommendations=tuple(str(item) for item in data.get("recommendations") or []),
            categories=tuple(str(item) for item in data.get("categories") or []),
            patient_info=None if patient.is_empty else patient,
            raw_text=data.get("rawText"),
            provider_used=None if model_used in (None, "Unknown") else str(model_used),
            status=str(data.get("status", "Analyzed")),
        )
