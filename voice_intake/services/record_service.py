"""
Record Service.

Builds the business record for a resolved voice report, commits it
together with the processing-log update, and then hands a notification
to the outbox. Notification problems are logged and never undo or
retry the record.
"""

from __future__ import annotations

from voice_intake.db import ProcessingStore
from voice_intake.errors import NotificationDispatchError
from voice_intake.logging_config import get_logger
from voice_intake.schemas.catalog import EntityCandidate
from voice_intake.schemas.extraction import (
    ExtractedData,
    FailureExtraction,
    PurchaseExtraction,
)
from voice_intake.schemas.records import (
    BusinessRecord,
    FailureOccurrence,
    PriorityAssessment,
    PurchaseRequest,
)
from voice_intake.services.notifications import NotificationDispatcher, NotificationEvent

logger = get_logger(__name__)

VOICE_PREFIX = "[Created from voice report]"


def build_audit_note(extraction: ExtractedData, entity: EntityCandidate, match_method: str | None) -> str:
    """Provenance note: matched name, grouping and any mentioned component."""
    matched = f"Matched '{extraction.primary_identifier}' to '{entity.name}'"
    if entity.parent_name:
        matched += f" ({entity.parent_name})"
    if match_method:
        matched += f" by {match_method}"
    parts = [matched, f"confidence {extraction.confidence}"]
    if extraction.sub_entity_identifier:
        parts.append(f"Component mentioned: {extraction.sub_entity_identifier}")
    return ". ".join(parts)


def build_record(
    *,
    extraction: ExtractedData,
    entity: EntityCandidate,
    secondary_entity_ids: list[int],
    assessment: PriorityAssessment,
    log_id: str,
    user_id: str,
    organization_id: str,
    match_method: str | None = None,
) -> BusinessRecord:
    description = f"{VOICE_PREFIX} {extraction.description}".strip()
    if extraction.notes:
        description += f"\n\nNotes: {extraction.notes}"

    common = dict(
        organization_id=organization_id,
        reported_by=user_id,
        entity_id=entity.id,
        secondary_entity_ids=[i for i in secondary_entity_ids if i != entity.id],
        title=extraction.title[:255],
        description=description,
        priority=assessment.priority,
        priority_reasons=assessment.reasons,
        source_confidence=extraction.confidence,
        processing_log_id=log_id,
        audit_note=build_audit_note(extraction, entity, match_method),
    )

    if isinstance(extraction, FailureExtraction):
        return FailureOccurrence(
            **common,
            category=extraction.category,
            caused_downtime=extraction.caused_downtime,
            is_intermittent=extraction.is_intermittent,
            symptoms=extraction.symptoms,
            component=extraction.sub_entity_identifier,
            was_resolved=extraction.was_resolved,
            solution_description=extraction.solution_description,
            needs_work_order=extraction.needs_work_order,
            suggested_assignee=extraction.suggested_assignee,
        )
    if isinstance(extraction, PurchaseExtraction):
        return PurchaseRequest(
            **common,
            category=extraction.category,
            items=extraction.items,
            needed_by=extraction.requested_by_date,
        )
    raise TypeError(f"Unsupported extraction type: {type(extraction).__name__}")


class RecordService:
    """Single transactional boundary of the pipeline plus post-commit dispatch."""

    def __init__(self, store: ProcessingStore, dispatcher: NotificationDispatcher | None = None) -> None:
        self._store = store
        self._dispatcher = dispatcher

    async def persist(
        self,
        *,
        extraction: ExtractedData,
        entity: EntityCandidate,
        secondary_entity_ids: list[int],
        assessment: PriorityAssessment,
        log_id: str,
        user_id: str,
        organization_id: str,
        match_method: str | None = None,
    ) -> BusinessRecord:
        record = build_record(
            extraction=extraction,
            entity=entity,
            secondary_entity_ids=secondary_entity_ids,
            assessment=assessment,
            log_id=log_id,
            user_id=user_id,
            organization_id=organization_id,
            match_method=match_method,
        )

        # Raises PersistenceError; nothing is dispatched in that case
        committed = await self._store.commit_record(record)

        logger.info(
            "record_committed",
            record_id=committed.id,
            kind=committed.kind,
            entity_id=entity.id,
            priority=committed.priority.value,
        )

        await self._notify(committed, extraction, entity)
        return committed

    async def _notify(self, record: BusinessRecord, extraction: ExtractedData, entity: EntityCandidate) -> None:
        if self._dispatcher is None:
            return
        event = NotificationEvent(
            record_id=str(record.id),
            kind=record.kind,
            organization_id=record.organization_id,
            title=record.title,
            description=extraction.description,
            priority=record.priority.value,
            entity_id=entity.id,
            entity_name=entity.name,
            parent_name=entity.parent_name,
            reported_by=record.reported_by,
            caused_interruption=extraction.caused_interruption,
            component=extraction.sub_entity_identifier,
        )
        try:
            await self._dispatcher.dispatch(event)
        except NotificationDispatchError as e:
            logger.error("notification_dispatch_failed", record_id=record.id, error=str(e))
        except Exception as e:
            logger.error("notification_dispatch_error", record_id=record.id, error=str(e))
