"""Tests for turning extracted text into classified measurements."""

from __future__ import annotations

import json

import pytest

from config import Settings
from src.labscan.classifier import (
    LLMInterpreter,
    MeasurementClassifier,
    RuleBasedInterpreter,
    build_interpreter,
    category_of,
    display_categories,
    extract_json_object,
    filter_measurements,
    risk_counts,
    sort_for_display,
    status_from_range,
)
from src.labscan.errors import AnalysisFailed
from src.labscan.models import Measurement
from src.labscan.provider_client import ProviderUnavailable


class StubInterpreter:
    def __init__(self, payload):
        self.payload = payload
        self.calls = []

    async def interpret(self, text):
        self.calls.append(text)
        return self.payload


class StubCompletionClient:
    def __init__(self, reply=None, error: Exception | None = None):
        self.reply = reply
        self.error = error
        self.calls = []

    async def complete(self, model, content, *, temperature, max_tokens):
        self.calls.append({"model": model, "content": content, "temperature": temperature})
        if self.error is not None:
            raise self.error
        return self.reply


def _metric(name, status="normal", category=None, description=None, value="1"):
    return Measurement(name, value, "", status, category=category, description=description)


def _classifier(payload) -> MeasurementClassifier:
    return MeasurementClassifier(Settings(), StubInterpreter(payload))


@pytest.mark.asyncio
async def test_rules_read_single_flagged_line():
    classifier = MeasurementClassifier(Settings(), RuleBasedInterpreter())

    result = await classifier.classify("Hemoglobin 13.5 g/dL (normal)")

    assert len(result.measurements) == 1
    measurement = result.measurements[0]
    assert (measurement.name, measurement.value, measurement.unit, measurement.status) == (
        "Hemoglobin",
        "13.5",
        "g/dL",
        "normal",
    )
    assert result.model_used == "rules"


@pytest.mark.asyncio
async def test_rules_use_flags_and_reference_ranges():
    text = "\n".join(
        [
            "Patient Name: Jane Doe",
            "Date: 12/03/2024",
            "Glucose 130 mg/dL 70-100",
            "LDL Cholesterol 190 mg/dL H",
            "Potassium 6.8 mmol/L critical",
            "Sodium 140 mmol/L 135-145",
        ]
    )
    result = await MeasurementClassifier(Settings(), RuleBasedInterpreter()).classify(text)

    by_name = {m.name: m for m in result.measurements}
    assert set(by_name) == {"Glucose", "LDL Cholesterol", "Potassium", "Sodium"}
    assert by_name["Glucose"].status == "warning"
    assert by_name["Glucose"].reference_range == "70-100"
    assert by_name["LDL Cholesterol"].status == "warning"
    assert by_name["Potassium"].status == "danger"
    assert by_name["Sodium"].status == "normal"
    assert result.patient_info is not None and result.patient_info.name == "Jane Doe"
    assert result.summary.startswith("Found 4 parameters with 1 high risk and 2 medium risk")


def test_status_from_range_handles_bounds():
    assert status_from_range("160", "<100") == "warning"
    assert status_from_range("90", "<100") == "normal"
    assert status_from_range("60", ">=60") == "normal"
    assert status_from_range("4,5", "3.5-5.0") == "normal"
    assert status_from_range("abc", "1-2") is None


@pytest.mark.asyncio
async def test_rules_without_measurements_fail_analysis():
    classifier = MeasurementClassifier(Settings(), RuleBasedInterpreter())

    with pytest.raises(AnalysisFailed) as excinfo:
        await classifier.classify("Thank you for choosing our laboratory.")

    assert excinfo.value.extracted_text == "Thank you for choosing our laboratory."


@pytest.mark.asyncio
async def test_llm_reply_with_code_fence_is_parsed():
    reply = "Here you go:\n```json\n" + json.dumps(
        {
            "metrics": [
                {
                    "name": "Blood Pressure",
                    "value": {"systolic": 120, "diastolic": 80},
                    "unit": "mmHg",
                    "referenceRange": "<120/80",
                    "status": "Medium Risk",
                    "category": "Cardiovascular",
                    "history": [{"date": "2023-01-01", "value": 118}],
                }
            ],
            "summary": "Slightly elevated blood pressure.",
            "detailedAnalysis": "Systolic at the upper limit.",
            "recommendations": ["Reduce salt intake."],
            "patientInfo": {"name": "John Smith", "hospitalName": "City Lab"},
        }
    ) + "\n```"
    client = StubCompletionClient(reply)
    classifier = MeasurementClassifier(Settings(), LLMInterpreter(Settings(), client, model="openai/gpt-4o-mini"))

    result = await classifier.classify("BP 120/80")

    measurement = result.measurements[0]
    assert measurement.value == '{"systolic":120,"diastolic":80}'
    assert measurement.status == "warning"
    assert measurement.reference_range == "<120/80"
    assert measurement.history[0].value == "118"
    assert result.categories == ("Cardiovascular",)
    assert result.patient_info.facility == "City Lab"
    assert result.model_used == "openai/gpt-4o-mini"
    assert client.calls[0]["temperature"] == 0.0
    assert "BP 120/80" in client.calls[0]["content"][0]["text"]


@pytest.mark.asyncio
async def test_llm_provider_failure_keeps_extracted_text():
    client = StubCompletionClient(error=ProviderUnavailable("openai/gpt-4o-mini", "HTTP 502: bad gateway"))
    classifier = MeasurementClassifier(Settings(), LLMInterpreter(Settings(), client))

    with pytest.raises(AnalysisFailed) as excinfo:
        await classifier.classify("Hemoglobin 13.5 g/dL")

    assert excinfo.value.extracted_text == "Hemoglobin 13.5 g/dL"


@pytest.mark.asyncio
async def test_llm_reply_without_json_fails():
    classifier = MeasurementClassifier(Settings(), LLMInterpreter(Settings(), StubCompletionClient("Sorry, I can't.")))

    with pytest.raises(AnalysisFailed, match="Could not parse"):
        await classifier.classify("Hemoglobin 13.5 g/dL")


@pytest.mark.asyncio
async def test_unknown_status_rejects_whole_result():
    classifier = _classifier(
        {
            "metrics": [
                {"name": "Hemoglobin", "value": "13.5", "status": "normal"},
                {"name": "Glucose", "value": "90", "status": "fine"},
            ]
        }
    )

    with pytest.raises(AnalysisFailed):
        await classifier.classify("Hemoglobin 13.5\nGlucose 90")


@pytest.mark.asyncio
async def test_missing_value_or_empty_metrics_fail():
    with pytest.raises(AnalysisFailed):
        await _classifier({"metrics": [{"name": "Glucose", "value": "", "status": "normal"}]}).classify("x")
    with pytest.raises(AnalysisFailed):
        await _classifier({"metrics": [], "summary": "nothing"}).classify("x")


@pytest.mark.asyncio
async def test_blank_text_is_not_sent_to_interpreter():
    interpreter = StubInterpreter({"metrics": []})
    classifier = MeasurementClassifier(Settings(), interpreter)

    with pytest.raises(AnalysisFailed):
        await classifier.classify("   ")
    assert interpreter.calls == []


@pytest.mark.asyncio
async def test_duplicate_names_are_made_unique():
    classifier = _classifier(
        {
            "metrics": [
                {"name": "Glucose", "value": "90", "status": "normal", "category": "Metabolic"},
                {"name": "glucose", "value": "180", "status": "danger"},
                {"name": "Glucose (2)", "value": "95", "status": "normal"},
            ]
        }
    )

    result = await classifier.classify("Glucose 90\nGlucose 180\nGlucose (2) 95")

    names = [m.name for m in result.measurements]
    assert names == ["Glucose", "glucose (2)", "Glucose (2) (2)"]
    assert len({name.lower() for name in names}) == 3
    assert result.categories == ("Metabolic",)


@pytest.mark.asyncio
async def test_history_is_ordered_oldest_first():
    classifier = _classifier(
        {
            "metrics": [
                {
                    "name": "LDL",
                    "value": "160",
                    "unit": "mg/dL",
                    "status": "warning",
                    "history": [
                        {"date": "2024-03-01", "value": "150"},
                        {"date": "unknown", "value": "170"},
                        {"date": "2023-01-15", "value": "140"},
                    ],
                }
            ]
        }
    )

    result = await classifier.classify("LDL 160 mg/dL")

    history = result.measurements[0].history
    assert [point.date for point in history] == ["2023-01-15", "2024-03-01", "unknown"]
    assert [point.value for point in history] == ["140", "150", "170"]


def test_extract_json_object_rejects_prose():
    with pytest.raises(ValueError):
        extract_json_object("no braces here")
    assert extract_json_object('noise {"a": 1} trailing') == {"a": 1}


def test_sort_for_display_is_stable_and_idempotent():
    measurements = [
        _metric("A", "normal"),
        _metric("B", "danger"),
        _metric("C", "warning"),
        _metric("D", "danger"),
        _metric("E", "normal"),
    ]

    ordered = sort_for_display(measurements)

    assert [m.name for m in ordered] == ["B", "D", "C", "A", "E"]
    assert sort_for_display(ordered) == ordered


def test_category_filter_and_search():
    measurements = [
        _metric("LDL", category="Lipids", description="Bad cholesterol"),
        _metric("HDL", category="Lipids"),
        _metric("Glucose", description="Blood sugar"),
    ]

    assert category_of(measurements[2]) == "Other"
    assert display_categories(measurements) == ["all", "Lipids", "Other"]
    assert [m.name for m in filter_measurements(measurements, "Lipids")] == ["LDL", "HDL"]
    assert [m.name for m in filter_measurements(measurements, "Other")] == ["Glucose"]
    assert [m.name for m in filter_measurements(measurements, query="CHOLESTEROL")] == ["LDL"]
    assert [m.name for m in filter_measurements(measurements, "Lipids", query="sugar")] == []


def test_risk_counts_cover_every_status():
    counts = risk_counts([_metric("A", "danger"), _metric("B", "normal"), _metric("C", "danger")])
    assert counts == {"danger": 2, "warning": 0, "normal": 1}


def test_build_interpreter_follows_backend_setting():
    assert isinstance(build_interpreter(Settings(analysis_backend="rules"), None), RuleBasedInterpreter)
    assert isinstance(build_interpreter(Settings(), StubCompletionClient("{}")), LLMInterpreter)
    with pytest.raises(ValueError):
        build_interpreter(Settings(analysis_backend="llm"), None)
