"""
Data models for voice processing logs and pipeline results.
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field

from voice_intake.schemas.catalog import EntityCandidate, MatchOutcome
from voice_intake.schemas.extraction import RecordKind
from voice_intake.schemas.records import BusinessRecord, PriorityAssessment


class ProcessingStatus(str, Enum):
    """Persisted lifecycle of a ProcessingLog."""
    PENDING = "PENDING"
    TRANSCRIBED = "TRANSCRIBED"
    EXTRACTED = "EXTRACTED"
    RESOLVED = "RESOLVED"
    AWAITING_CLARIFICATION = "AWAITING_CLARIFICATION"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class PipelineStage(str, Enum):
    """In-run state machine positions."""
    RECEIVED = "RECEIVED"
    TRANSCRIBED = "TRANSCRIBED"
    EXTRACTED = "EXTRACTED"
    RESOLVING = "RESOLVING"
    RESOLVED = "RESOLVED"
    CLARIFICATION_NEEDED = "CLARIFICATION_NEEDED"
    FAILED = "FAILED"
    PERSISTED = "PERSISTED"


class ProcessingLog(BaseModel):
    id: str
    kind: RecordKind = RecordKind.FAILURE
    user_id: str
    organization_id: str
    status: ProcessingStatus = ProcessingStatus.PENDING
    mime_type: Optional[str] = None
    audio_hash: Optional[str] = None
    transcript: Optional[str] = None
    extracted_data: Optional[dict[str, Any]] = None
    matched_entity_id: Optional[int] = None
    confidence: int = Field(default=0, ge=0, le=100)
    candidates: list[EntityCandidate] = Field(default_factory=list)
    secondary_entity_ids: list[int] = Field(default_factory=list)
    error_message: Optional[str] = None
    record_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# ── Results returned to callers ──────────────────────────────────

class CompletedResult(BaseModel):
    status: Literal["completed"] = "completed"
    log_id: str
    record: BusinessRecord
    priority: PriorityAssessment
    matched_entity: EntityCandidate


class NeedsClarificationResult(BaseModel):
    status: Literal["needs_clarification"] = "needs_clarification"
    log_id: str
    outcome: MatchOutcome
    identifier: str
    extracted_data: dict[str, Any]
    shortlist: list[EntityCandidate]
    options_truncated: bool = False
    message: str


class FailedResult(BaseModel):
    status: Literal["failed"] = "failed"
    log_id: Optional[str] = None
    stage: str
    reason: str


ProcessingResult = Annotated[
    Union[CompletedResult, NeedsClarificationResult, FailedResult],
    Field(discriminator="status"),
]
