"""Turn extracted report text into validated, risk-classified measurements."""

from __future__ import annotations

import json
import re
from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence, Set, Tuple

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from config import Settings
from .errors import AnalysisFailed
from .logging_utils import get_logger
from .models import (
    DEFAULT_CATEGORY,
    STATUS_DANGER,
    STATUS_NORMAL,
    STATUS_WARNING,
    STATUSES,
    ClassificationResult,
    HistoryPoint,
    Measurement,
    PatientInfo,
    serialize_value,
)
from .provider_client import ProviderUnavailable

logger = get_logger(__name__)

STATUS_ORDER: Dict[str, int] = {status: rank for rank, status in enumerate(STATUSES)}

STATUS_ALIASES: Dict[str, str] = {
    "high risk": STATUS_DANGER,
    "critical": STATUS_DANGER,
    "severe": STATUS_DANGER,
    "medium risk": STATUS_WARNING,
    "moderate": STATUS_WARNING,
    "abnormal": STATUS_WARNING,
    "borderline": STATUS_WARNING,
    "caution": STATUS_WARNING,
    "low risk": STATUS_NORMAL,
    "ok": STATUS_NORMAL,
    "good": STATUS_NORMAL,
    "optimal": STATUS_NORMAL,
}

ANALYSIS_PROMPT = """You are a medical report analyst. Read the health report text below and
return ONLY a JSON object with these keys:
  "metrics": list of {{"name", "value", "unit", "range", "status", "category", "description"}}
     where "status" is exactly one of "normal", "warning" or "danger" and "range" is the
     reference range printed on the report. Use the parameter names exactly as printed.
  "summary": short narrative summary for the patient.
  "detailedAnalysis": longer explanation of the notable findings.
  "recommendations": list of short recommendation strings.
  "categories": list of category names used in "metrics".
  "patientInfo": object with any of "name", "patientId", "gender", "age", "dateOfBirth",
     "collectionDate", "hospitalName", "doctorName" that appear in the report.

Report text:
{text}
"""


class Interpreter(Protocol):
    async def interpret(self, text: str) -> Dict[str, Any]: ...


class CompletionClient(Protocol):
    async def complete(
        self, model: str, content: Sequence[Dict[str, Any]], *, temperature: float, max_tokens: int
    ) -> str: ...


class HistoryPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    date: Any = ""
    value: Any = None


class MetricPayload(BaseModel):
    """One measurement as returned by an interpreter, before normalization."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    name: str = Field(min_length=1)
    value: Any
    unit: Any = ""
    reference_range: Any = Field(
        default="", validation_alias=AliasChoices("range", "referenceRange", "reference_range")
    )
    status: str
    category: Optional[str] = None
    description: Optional[str] = None
    history: List[HistoryPayload] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("measurement name is blank")
        return value

    @field_validator("value")
    @classmethod
    def _require_value(cls, value: Any) -> Any:
        if value is None or (isinstance(value, str) and not value.strip()):
            raise ValueError("measurement value is missing")
        return value

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value: Any) -> str:
        status = str(value or "").strip().lower()
        status = STATUS_ALIASES.get(status, status)
        if status not in STATUS_ORDER:
            raise ValueError(f"status must be one of {STATUSES}, got '{value}'")
        return status

    @field_validator("category", "description", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        text = serialize_value(value).strip()
        return text or None

    @field_validator("history", mode="before")
    @classmethod
    def _history_list(cls, value: Any) -> Any:
        return value or []


class ClassificationPayload(BaseModel):
    """Shape every interpreter must produce."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    metrics: List[MetricPayload] = Field(min_length=1)
    summary: str = ""
    detailed_analysis: str = Field(
        default="", validation_alias=AliasChoices("detailedAnalysis", "detailed_analysis")
    )
    recommendations: List[str] = Field(default_factory=list)
    categories: List[str] = Field(default_factory=list)
    patient_info: Optional[Dict[str, Any]] = Field(
        default=None, validation_alias=AliasChoices("patientInfo", "patient_info")
    )

    @field_validator("summary", "detailed_analysis", mode="before")
    @classmethod
    def _text(cls, value: Any) -> str:
        return serialize_value(value)

    @field_validator("recommendations", "categories", mode="before")
    @classmethod
    def _string_list(cls, value: Any) -> List[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [value] if value.strip() else []
        return [serialize_value(item) for item in value if item is not None]


def extract_json_object(text: str) -> Dict[str, Any]:
    """Parse the first JSON object in a model reply, tolerating code fences and prose."""
    cleaned = re.sub(r"```(?:json)?", "", text or "", flags=re.IGNORECASE).strip()
    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start == -1 or end <= start:
        raise ValueError("no JSON object found in model reply")
    parsed = json.loads(cleaned[start : end + 1])
    if not isinstance(parsed, dict):
        raise ValueError("model reply is not a JSON object")
    return parsed


class LLMInterpreter:
    """Ask a hosted language model to structure the report."""

    def __init__(self, settings: Settings, client: CompletionClient, model: Optional[str] = None):
        self.settings = settings
        self.client = client
        self.model = model or settings.analysis_model

    async def interpret(self, text: str) -> Dict[str, Any]:
        content = [{"type": "text", "text": ANALYSIS_PROMPT.format(text=text)}]
        try:
            reply = await self.client.complete(
                self.model,
                content,
                temperature=0.0,
                max_tokens=self.settings.analysis_max_tokens,
            )
        except ProviderUnavailable as exc:
            raise AnalysisFailed(f"Analysis provider {self.model} failed: {exc.reason}", extracted_text=text) from exc
        try:
            payload = extract_json_object(reply)
        except ValueError as exc:
            logger.debug("Unparseable analysis reply: %.500s", reply)
            raise AnalysisFailed(f"Could not parse analysis reply: {exc}", extracted_text=text) from exc
        payload.setdefault("modelUsed", self.model)
        return payload


_NUMBER = r"\d+(?:[.,]\d+)?"
_MEASUREMENT_LINE = re.compile(
    r"^\s*(?P<name>[A-Za-z][A-Za-z0-9 ,()/%+\-\.']*?)\s*[:=\-]?\s+"
    rf"(?P<value>[<>]=?\s*{_NUMBER}|{_NUMBER})"
    r"\s*(?P<unit>(?=[^\s]*[A-Za-z%µ])[^\s()\[\]]+)?"
    r"\s*(?P<rest>.*)$"
)
_RANGE = re.compile(rf"(?P<low>{_NUMBER})\s*(?:-|–|to)\s*(?P<high>{_NUMBER})")
_BOUND = re.compile(rf"(?P<op>[<>]=?)\s*(?P<limit>{_NUMBER})")
_DANGER_FLAG = re.compile(r"(?i:\b(?:critical|panic|danger|very\s+(?:high|low))\b)|\b(?:HH|LL)\b")
_WARNING_FLAG = re.compile(r"(?i:\b(?:high|low|abnormal|borderline|warning)\b)|\b[HL]\b")
_NORMAL_FLAG = re.compile(r"\b(normal|within\s+range|negative)\b", re.IGNORECASE)
_FLAG_WORDS = {"h", "l", "hh", "ll", "high", "low", "normal", "critical", "abnormal", "borderline"}
_SKIP_NAMES = {
    "page", "date", "age", "dob", "phone", "tel", "mrn", "id", "patient id", "collected",
    "reported", "received", "printed", "sample", "specimen", "lab no", "ref", "time",
}
_PATIENT_FIELDS: Tuple[Tuple[str, re.Pattern[str]], ...] = (
    (
        "name",
        re.compile(
            r"(?:Patient(?:'s)?\s*Name|Name)\s*[:\-]\s*(?:(?:Mr|Mrs|Ms|Miss|Dr)\.?\s+)?"
            r"(?P<v>[A-Za-z][A-Za-z .'\-]{1,60}?)\s*(?:$|\||\s{2,}|,)",
            re.IGNORECASE | re.MULTILINE,
        ),
    ),
    (
        "patientId",
        re.compile(
            r"(?:Patient\s*ID|MRN|UHID|Medical\s*Record\s*Number)\s*[:\-#]?\s*(?P<v>[A-Z0-9\-]{3,})",
            re.IGNORECASE,
        ),
    ),
    ("gender", re.compile(r"(?:Gender|Sex)\s*[:\-]\s*(?P<v>Male|Female|M|F|Other)\b", re.IGNORECASE)),
    ("age", re.compile(r"\bAge\s*[:\-]\s*(?P<v>\d{1,3}\s*(?:years?|yrs?|Y)?)", re.IGNORECASE)),
    (
        "dateOfBirth",
        re.compile(r"(?:DOB|Date\s*of\s*Birth)\s*[:\-]?\s*(?P<v>\d{1,2}[/.\-]\d{1,2}[/.\-]\d{2,4})", re.IGNORECASE),
    ),
    (
        "collectionDate",
        re.compile(
            r"Collect(?:ed|ion)\s*(?:Date|On)?\s*[:\-]\s*(?P<v>\d{1,2}[/.\-]\d{1,2}[/.\-]\d{2,4})",
            re.IGNORECASE,
        ),
    ),
    (
        "hospitalName",
        re.compile(r"(?:Hospital|Laboratory|Facility|Lab\s*Name)\s*[:\-]\s*(?P<v>[^\n|]{2,80})", re.IGNORECASE),
    ),
    (
        "doctorName",
        re.compile(
            r"(?:Ref(?:erred)?\.?\s*By|Physician|Doctor|Ordering\s*Provider)\s*[:\-]\s*(?P<v>[^\n|]{2,60})",
            re.IGNORECASE,
        ),
    ),
)


def _to_float(value: str) -> Optional[float]:
    try:
        return float(value.replace(",", "."))
    except ValueError:
        return None


def status_from_range(value: str, reference_range: str) -> Optional[str]:
    """Compare a numeric value with a printed reference range."""
    number = _to_float(re.sub(r"^[<>]=?\s*", "", value))
    if number is None or not reference_range:
        return None
    span = _RANGE.search(reference_range)
    if span:
        low, high = _to_float(span.group("low")), _to_float(span.group("high"))
        if low is None or high is None:
            return None
        return STATUS_NORMAL if low <= number <= high else STATUS_WARNING
    bound = _BOUND.search(reference_range)
    if bound:
        limit = _to_float(bound.group("limit"))
        if limit is None:
            return None
        within = number < limit if bound.group("op").startswith("<") else number > limit
        if bound.group("op").endswith("="):
            within = within or number == limit
        return STATUS_NORMAL if within else STATUS_WARNING
    return None


class RuleBasedInterpreter:
    """Offline line parser for reports printed as ``Name value unit [range] [flag]``."""

    model_name = "rules"

    async def interpret(self, text: str) -> Dict[str, Any]:
        metrics = [metric for metric in (self._parse_line(line) for line in text.splitlines()) if metric]
        flagged = [m for m in metrics if m["status"] != STATUS_NORMAL]
        danger = sum(1 for m in flagged if m["status"] == STATUS_DANGER)
        summary = (
            f"Found {len(metrics)} parameters with {danger} high risk and "
            f"{len(flagged) - danger} medium risk items that require attention."
        )
        recommendations = [
            f"Discuss your {m['name']} result ({m['value']} {m['unit']}".rstrip() + ") with your doctor."
            for m in flagged
        ]
        return {
            "metrics": metrics,
            "summary": summary,
            "detailedAnalysis": "\n".join(
                f"{m['name']}: {m['value']} {m['unit']} (reference {m['range'] or 'n/a'}) is {m['status']}."
                for m in flagged
            ),
            "recommendations": recommendations,
            "categories": [],
            "patientInfo": self._patient_info(text),
            "modelUsed": self.model_name,
        }

    def _parse_line(self, line: str) -> Optional[Dict[str, Any]]:
        match = _MEASUREMENT_LINE.match(line)
        if not match:
            return None
        name = match.group("name").strip(" :-=.,")
        if len(name) < 2 or name.lower() in _SKIP_NAMES:
            return None
        value = re.sub(r"\s+", "", match.group("value"))
        unit = match.group("unit") or ""
        rest = match.group("rest") or ""
        if unit.lower() in _FLAG_WORDS:
            rest = f"{unit} {rest}"
            unit = ""

        range_match = _RANGE.search(rest) or _BOUND.search(rest)
        reference_range = range_match.group(0).strip() if range_match else ""
        flags = rest.replace(reference_range, " ") if reference_range else rest

        if _DANGER_FLAG.search(flags):
            status = STATUS_DANGER
        elif _NORMAL_FLAG.search(flags):
            status = STATUS_NORMAL
        elif _WARNING_FLAG.search(flags):
            status = STATUS_WARNING
        else:
            status = status_from_range(value, reference_range) or STATUS_NORMAL

        return {"name": name, "value": value, "unit": unit, "range": reference_range, "status": status}

    def _patient_info(self, text: str) -> Dict[str, str]:
        info: Dict[str, str] = {}
        for key, pattern in _PATIENT_FIELDS:
            found = pattern.search(text)
            if found:
                info[key] = found.group("v").strip()
        return info


def build_interpreter(settings: Settings, client: Optional[CompletionClient]) -> Interpreter:
    """Interpreter for the configured analysis backend."""
    if settings.analysis_backend == "rules":
        return RuleBasedInterpreter()
    if client is None:
        raise ValueError("The 'llm' analysis backend needs a completion client.")
    return LLMInterpreter(settings, client)


class MeasurementClassifier:
    """Validate interpreter output into an all-or-nothing classification result."""

    def __init__(self, settings: Settings, interpreter: Interpreter):
        self.settings = settings
        self.interpreter = interpreter

    async def classify(self, extracted_text: str) -> ClassificationResult:
        if not extracted_text or not extracted_text.strip():
            raise AnalysisFailed("No text to analyze.", extracted_text=extracted_text or "")
        raw = await self.interpreter.interpret(extracted_text)
        try:
            payload = ClassificationPayload.model_validate(raw)
        except ValidationError as exc:
            logger.warning("Analysis produced an invalid structure: %s", exc.errors()[:3])
            raise AnalysisFailed(
                f"Could not analyze the report: {exc.error_count()} invalid field(s)",
                extracted_text=extracted_text,
            ) from exc

        measurements = tuple(_unique_names(_to_measurement(metric) for metric in payload.metrics))
        patient = PatientInfo.from_dict(payload.patient_info)
        categories = payload.categories or _categories_of(measurements)
        model_used = raw.get("modelUsed") if isinstance(raw, dict) else None
        logger.info(
            "Classified %s measurements (%s danger, %s warning)",
            len(measurements),
            sum(1 for m in measurements if m.status == STATUS_DANGER),
            sum(1 for m in measurements if m.status == STATUS_WARNING),
        )
        return ClassificationResult(
            measurements=measurements,
            summary=payload.summary,
            detailed_analysis=payload.detailed_analysis,
            recommendations=tuple(payload.recommendations),
            categories=tuple(categories),
            patient_info=None if patient.is_empty else patient,
            model_used=str(model_used) if model_used else None,
        )


def _to_measurement(metric: MetricPayload) -> Measurement:
    return Measurement(
        name=metric.name,
        value=serialize_value(metric.value),
        unit=serialize_value(metric.unit).strip(),
        status=metric.status,
        reference_range=serialize_value(metric.reference_range).strip(),
        category=metric.category,
        description=metric.description,
        history=tuple(
            sorted(
                (
                    HistoryPoint(date=serialize_value(point.date), value=serialize_value(point.value))
                    for point in metric.history
                ),
                key=lambda point: _history_date(point.date) or datetime.max,
            )
        ),
    )


_HISTORY_DATE_FORMATS = ("%Y-%m-%d", "%Y-%m", "%Y", "%d/%m/%Y", "%d.%m.%Y", "%b %Y", "%B %Y")


def _history_date(text: str) -> Optional[datetime]:
    """Best-effort parse of a history date; unparseable dates sort last in their given order."""
    text = text.strip()
    try:
        return datetime.fromisoformat(text).replace(tzinfo=None)
    except ValueError:
        pass
    for fmt in _HISTORY_DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None


def _unique_names(measurements: Iterable[Measurement]) -> List[Measurement]:
    taken: Set[str] = set()
    unique: List[Measurement] = []
    for measurement in measurements:
        name = measurement.name
        suffix = 2
        while name.lower() in taken:
            name = f"{measurement.name} ({suffix})"
            suffix += 1
        if name != measurement.name:
            measurement = replace(measurement, name=name)
        taken.add(name.lower())
        unique.append(measurement)
    return unique


def _categories_of(measurements: Sequence[Measurement]) -> List[str]:
    categories: List[str] = []
    for measurement in measurements:
        if measurement.category and measurement.category not in categories:
            categories.append(measurement.category)
    return categories


def category_of(measurement: Measurement) -> str:
    """Bucket used for filtering; missing categories fall into ``Other``."""
    return measurement.category or DEFAULT_CATEGORY


def sort_for_display(measurements: Iterable[Measurement]) -> List[Measurement]:
    """Danger first, then warning, then normal; original order within each status."""
    return sorted(measurements, key=lambda m: STATUS_ORDER.get(m.status, len(STATUS_ORDER)))


def filter_measurements(
    measurements: Iterable[Measurement], category: str = "all", query: str = ""
) -> List[Measurement]:
    """Filter by display category and a case-insensitive name/description search."""
    needle = query.strip().lower()
    selected: List[Measurement] = []
    for measurement in measurements:
        if category != "all" and category_of(measurement) != category:
            continue
        if needle and needle not in measurement.name.lower() and needle not in (measurement.description or "").lower():
            continue
        selected.append(measurement)
    return selected


def display_categories(measurements: Iterable[Measurement]) -> List[str]:
    """``all`` followed by every display category in first-seen order."""
    categories = ["all"]
    for measurement in measurements:
        bucket = category_of(measurement)
        if bucket not in categories:
            categories.append(bucket)
    return categories


def risk_counts(measurements: Iterable[Measurement]) -> Dict[str, int]:
    counts = {status: 0 for status in STATUSES}
    for measurement in measurements:
        counts[measurement.status] = counts.get(measurement.status, 0) + 1
    return counts
