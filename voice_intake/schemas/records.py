"""
Data models for business records created from voice reports.
"""

from datetime import date, datetime
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field

from voice_intake.schemas.extraction import (
    FailureCategory,
    PurchaseCategory,
    PurchaseItem,
)

VOICE_SOURCE = "voice"


class Priority(str, Enum):
    P1 = "P1"
    P2 = "P2"
    P3 = "P3"


class PriorityAssessment(BaseModel):
    priority: Priority
    reasons: list[str] = Field(default_factory=list)


class BusinessRecordBase(BaseModel):
    id: Optional[str] = None
    organization_id: str
    reported_by: str
    entity_id: int
    secondary_entity_ids: list[int] = Field(default_factory=list)
    title: str
    description: str
    priority: Priority
    priority_reasons: list[str] = Field(default_factory=list)
    source: str = VOICE_SOURCE  # provenance marker
    source_confidence: int = Field(ge=0, le=100)
    processing_log_id: str
    audit_note: Optional[str] = None
    created_at: Optional[datetime] = None


class FailureOccurrence(BusinessRecordBase):
    kind: Literal["failure"] = "failure"
    status: str = "OPEN"
    category: FailureCategory
    caused_downtime: bool
    is_intermittent: bool
    symptoms: list[str] = Field(default_factory=list)
    component: Optional[str] = None
    was_resolved: bool = False
    solution_description: Optional[str] = None
    needs_work_order: bool = False
    suggested_assignee: Optional[str] = None


class PurchaseRequest(BusinessRecordBase):
    kind: Literal["purchase"] = "purchase"
    status: str = "PENDING_APPROVAL"
    category: PurchaseCategory
    items: list[PurchaseItem] = Field(default_factory=list)
    needed_by: Optional[date] = None


BusinessRecord = Annotated[
    Union[FailureOccurrence, PurchaseRequest],
    Field(discriminator="kind"),
]
