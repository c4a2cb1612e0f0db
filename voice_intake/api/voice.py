"""
API Router: voice report endpoints.

Submit a recording, resolve a paused report with the equipment a human
picked, retry a failed save, and inspect a processing log.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from pydantic import BaseModel, TypeAdapter, ValidationError

from voice_intake.db import ProcessingStore, get_store
from voice_intake.errors import ClarificationError, LogNotFoundError
from voice_intake.logging_config import get_logger
from voice_intake.schemas.catalog import EntityCandidate
from voice_intake.schemas.extraction import RecordKind
from voice_intake.schemas.processing import ProcessingLog, ProcessingResult
from voice_intake.services.pipeline import VoicePipeline, build_pipeline

logger = get_logger(__name__)
router = APIRouter(prefix="/voice", tags=["Voice"])

_catalog_adapter: TypeAdapter[list[EntityCandidate]] = TypeAdapter(list[EntityCandidate])

# Shared pipeline instance (built on first use)
_pipeline: VoicePipeline | None = None


def get_pipeline() -> VoicePipeline:
    global _pipeline
    if _pipeline is None:
        _pipeline = build_pipeline()
    return _pipeline


def get_processing_store() -> ProcessingStore:
    return get_store()


class ResolveRequest(BaseModel):
    candidate_id: int
    user_id: str


class RetryRequest(BaseModel):
    user_id: str


def _parse_catalog(raw: str) -> list[EntityCandidate]:
    try:
        return _catalog_adapter.validate_json(raw)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=f"Invalid catalog: {e.error_count()} error(s)")


@router.post("/{kind}", response_model=ProcessingResult)
async def submit_voice_report(
    kind: RecordKind,
    audio: UploadFile = File(...),
    user_id: str = Form(...),
    organization_id: str = Form(...),
    catalog: str = Form(..., description="JSON list of equipment candidates"),
    pipeline: VoicePipeline = Depends(get_pipeline),
) -> ProcessingResult:
    """Run a recording through transcription, extraction, matching and persistence."""
    candidates = _parse_catalog(catalog)
    payload = await audio.read()

    try:
        return await pipeline.submit(
            audio=payload,
            mime_type=audio.content_type or "application/octet-stream",
            user_id=user_id,
            organization_id=organization_id,
            catalog=candidates,
            kind=kind,
        )
    except Exception as e:
        logger.error("submit_voice_report_error", kind=kind.value, error=str(e))
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/logs/{log_id}/resolve", response_model=ProcessingResult)
async def resolve_clarification(
    log_id: str,
    body: ResolveRequest,
    pipeline: VoicePipeline = Depends(get_pipeline),
) -> ProcessingResult:
    """Resume a report that was waiting for the user to pick the equipment."""
    try:
        return await pipeline.resolve_clarification(log_id, body.candidate_id, body.user_id)
    except LogNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.user_message)
    except ClarificationError as e:
        logger.warning("clarification_rejected", log_id=log_id, error=str(e))
        raise HTTPException(status_code=409, detail=e.user_message)
    except Exception as e:
        logger.error("resolve_clarification_error", log_id=log_id, error=str(e))
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/logs/{log_id}/retry", response_model=ProcessingResult)
async def retry_persistence(
    log_id: str,
    body: RetryRequest,
    pipeline: VoicePipeline = Depends(get_pipeline),
) -> ProcessingResult:
    """Retry the record write of a report whose save failed."""
    try:
        return await pipeline.retry_persistence(log_id, body.user_id)
    except LogNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.user_message)
    except ClarificationError as e:
        raise HTTPException(status_code=409, detail=e.user_message)
    except Exception as e:
        logger.error("retry_persistence_error", log_id=log_id, error=str(e))
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/logs/{log_id}", response_model=ProcessingLog)
async def get_processing_log(
    log_id: str,
    store: ProcessingStore = Depends(get_processing_store),
) -> ProcessingLog:
    """Current state of a processing log."""
    try:
        log = await store.get_log(log_id)
    except Exception as e:
        logger.error("get_processing_log_error", log_id=log_id, error=str(e))
        raise HTTPException(status_code=500, detail=str(e))
    if log is None:
        raise HTTPException(status_code=404, detail="Processing log not found")
    return log
