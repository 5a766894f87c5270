"""FastAPI application exposing the labscan health-report pipeline."""

from __future__ import annotations

from functools import lru_cache
from typing import Any, Dict

from fastapi import Depends, FastAPI, File, HTTPException, UploadFile
from fastapi.responses import JSONResponse

from config import Settings, load_settings
from src.labscan.classifier import risk_counts, sort_for_display
from src.labscan.errors import (
    AnalysisFailed,
    MissingCredential,
    NoTextExtracted,
    OversizeDocument,
    PipelineError,
    UnsupportedMediaType,
)
from src.labscan.models import ALLOWED_MEDIA_TYPES
from src.labscan.orchestrator import PipelineOrchestrator


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    settings = load_settings()
    settings.ensure_directories()
    return settings


@lru_cache(maxsize=1)
def get_orchestrator() -> PipelineOrchestrator:
    return PipelineOrchestrator(get_settings())


app = FastAPI(title="labscan Health Report Analyzer", version="0.1.0")


@app.get("/healthz")
def health(settings: Settings = Depends(get_settings)) -> Dict[str, Any]:
    return {
        "status": "ok",
        "analysis_backend": settings.analysis_backend,
        "credential_configured": bool(settings.api_key),
        "max_document_bytes": settings.max_document_bytes,
    }


@app.post("/analyze")
async def analyze_document(
    file: UploadFile = File(...),
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> JSONResponse:
    data = await file.read()
    if not data:
        raise HTTPException(status_code=400, detail="Uploaded file is empty.")

    try:
        media_type = file.content_type if file.content_type in ALLOWED_MEDIA_TYPES else None
        report = await orchestrator.process_bytes(data, file.filename or "upload", media_type)
    except (UnsupportedMediaType, OversizeDocument) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except MissingCredential as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc
    except AnalysisFailed as exc:
        raise HTTPException(
            status_code=422, detail={"message": str(exc), "extracted_text": exc.extracted_text}
        ) from exc
    except NoTextExtracted as exc:
        raise HTTPException(status_code=422, detail={"message": str(exc), "extracted_text": ""}) from exc
    except PipelineError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc

    payload = report.to_dict()
    payload["displayOrder"] = [measurement.name for measurement in sort_for_display(report.measurements)]
    payload["riskCounts"] = risk_counts(report.measurements)
    return JSONResponse(content=payload)
