"""
Voice Pipeline Orchestrator.

Drives one voice report through its stages:

    RECEIVED → TRANSCRIBED → EXTRACTED → RESOLVING → RESOLVED → PERSISTED
                                                  ↘ CLARIFICATION_NEEDED
                                                  ↘ FAILED

The processing log is checkpointed after every step, so a run paused
for clarification resumes from the stored extraction without calling
the speech or language model again.
"""

from __future__ import annotations

import hashlib
import uuid
from datetime import date
from typing import Callable

from pydantic import ValidationError

from voice_intake.config import Settings, get_settings
from voice_intake.db import ProcessingStore, get_store
from voice_intake.errors import (
    ClarificationError,
    DuplicateAudioError,
    ExtractionError,
    LogNotFoundError,
    PersistenceError,
    TranscriptionError,
    VoiceIntakeError,
)
from voice_intake.logging_config import bound_log_id, get_logger
from voice_intake.schemas.catalog import EntityCandidate, MatchOutcome, MatchResult
from voice_intake.schemas.extraction import ExtractedData, RecordKind, load_extracted_data
from voice_intake.schemas.processing import (
    CompletedResult,
    FailedResult,
    NeedsClarificationResult,
    PipelineStage,
    ProcessingLog,
    ProcessingResult,
    ProcessingStatus,
)
from voice_intake.services.data_extraction import StructuredExtractor
from voice_intake.services.entity_resolver import EntityResolver
from voice_intake.services.llm_client import OpenAIChatModel
from voice_intake.services.notifications import RedisOutboxDispatcher
from voice_intake.services.priority import (
    PriorityPolicy,
    PrioritySignals,
    RuleTablePriorityCalculator,
)
from voice_intake.services.record_service import RecordService
from voice_intake.services.transcriber import OpenAITranscriber, SpeechToText

logger = get_logger(__name__)


def audio_fingerprint(audio: bytes) -> str:
    return hashlib.sha256(audio).hexdigest()


class VoicePipeline:
    """Runs the voice → record pipeline and its two resume entry points."""

    def __init__(
        self,
        transcriber: SpeechToText,
        extractor: StructuredExtractor,
        resolver: EntityResolver,
        priority_policy: PriorityPolicy,
        store: ProcessingStore,
        record_service: RecordService,
        settings: Settings | None = None,
        today: Callable[[], date] = date.today,
    ) -> None:
        self._transcriber = transcriber
        self._extractor = extractor
        self._resolver = resolver
        self._priority = priority_policy
        self._store = store
        self._records = record_service
        self._settings = settings or get_settings()
        self._today = today

    # -- Entry points --

    async def submit(
        self,
        audio: bytes,
        mime_type: str,
        user_id: str,
        organization_id: str,
        catalog: list[EntityCandidate],
        kind: RecordKind = RecordKind.FAILURE,
    ) -> ProcessingResult:
        """Process a fresh recording end to end."""
        log_id = str(uuid.uuid4())
        with bound_log_id(log_id):
            return await self._run(log_id, audio, mime_type, user_id, organization_id, catalog, kind)

    async def resolve_clarification(
        self,
        log_id: str,
        chosen_candidate_id: int,
        user_id: str,
    ) -> ProcessingResult:
        """
        Resume a paused run with the equipment a human picked.

        The choice must come from the options stored on the log. The log
        is claimed with a status compare-and-set, so two concurrent
        resumes cannot both create a record.

        Raises:
            LogNotFoundError: Unknown log id.
            ClarificationError: Log is not paused, or the choice was not offered.
        """
        with bound_log_id(log_id):
            log = await self._load_log(log_id)
            if log.status != ProcessingStatus.AWAITING_CLARIFICATION:
                raise ClarificationError(f"Log {log_id} is {log.status.value}, not awaiting clarification")

            chosen = next((c for c in log.candidates if c.id == chosen_candidate_id), None)
            if chosen is None:
                raise ClarificationError(
                    f"Candidate {chosen_candidate_id} was not offered for log {log_id}",
                    user_message="That equipment was not one of the options.",
                )

            extraction = self._stored_extraction(log)
            secondary = [i for i in log.secondary_entity_ids if i != chosen.id]

            claimed = await self._store.transition_log(
                log_id,
                ProcessingStatus.AWAITING_CLARIFICATION,
                ProcessingStatus.RESOLVED,
                {"matched_entity_id": chosen.id, "secondary_entity_ids": secondary},
            )
            if not claimed:
                raise ClarificationError(
                    f"Log {log_id} was resumed concurrently",
                    user_message="This report was already resolved.",
                )

            logger.info("clarification_resolved", entity_id=chosen.id, resolved_by=user_id)
            self._advance(PipelineStage.RESOLVED, entity_id=chosen.id, method="manual")
            return await self._persist(
                log,
                extraction,
                chosen,
                secondary,
                match_method=f"manual choice ({user_id})",
            )

    async def retry_persistence(self, log_id: str, user_id: str) -> ProcessingResult:
        """Retry the record write for a log left RESOLVED by a failed commit."""
        with bound_log_id(log_id):
            log = await self._load_log(log_id)
            if log.status != ProcessingStatus.RESOLVED:
                raise ClarificationError(
                    f"Log {log_id} is {log.status.value}, nothing to retry",
                    user_message="This report has no pending save to retry.",
                )
            entity = next((c for c in log.candidates if c.id == log.matched_entity_id), None)
            if entity is None:
                raise ClarificationError(f"Log {log_id} has no matched equipment snapshot")

            logger.info("persistence_retry", requested_by=user_id)
            return await self._persist(
                log,
                self._stored_extraction(log),
                entity,
                log.secondary_entity_ids,
            )

    # -- Stages --

    async def _run(
        self,
        log_id: str,
        audio: bytes,
        mime_type: str,
        user_id: str,
        organization_id: str,
        catalog: list[EntityCandidate],
        kind: RecordKind,
    ) -> ProcessingResult:
        audio_hash = audio_fingerprint(audio)

        duplicate = await self._store.find_completed_by_audio_hash(organization_id, audio_hash)
        if duplicate is not None:
            error = DuplicateAudioError(f"Audio already processed by log {duplicate.id}")
            logger.warning("duplicate_audio", existing_log_id=duplicate.id, record_id=duplicate.record_id)
            return FailedResult(
                stage=error.stage,
                reason=f"{error.user_message} Existing record: {duplicate.record_id}",
            )

        stage = "intake"
        try:
            log = await self._store.create_log(
                ProcessingLog(
                    id=log_id,
                    kind=kind,
                    user_id=user_id,
                    organization_id=organization_id,
                    mime_type=mime_type,
                    audio_hash=audio_hash,
                )
            )
            self._advance(PipelineStage.RECEIVED, kind=kind.value, audio_bytes=len(audio))

            stage = "transcription"
            transcript = await self._transcriber.transcribe(audio, mime_type)
            await self._store.update_log(
                log_id, {"status": ProcessingStatus.TRANSCRIBED, "transcript": transcript}
            )
            self._advance(PipelineStage.TRANSCRIBED, chars=len(transcript))

            stage = "extraction"
            extraction = await self._extractor.extract(transcript, catalog, kind)
            await self._store.update_log(
                log_id,
                {
                    "status": ProcessingStatus.EXTRACTED,
                    "extracted_data": extraction.model_dump(mode="json"),
                    "confidence": extraction.confidence,
                },
            )
            self._advance(PipelineStage.EXTRACTED, confidence=extraction.confidence)

            stage = "resolution"
            self._advance(PipelineStage.RESOLVING, identifier=extraction.primary_identifier)
            match = self._resolver.resolve(extraction.primary_identifier, catalog)
            if not match.is_unique:
                return await self._pause(log, extraction, match, catalog)

            entity = match.match
            secondary = self._resolver.resolve_secondary(
                extraction.secondary_identifiers, catalog, exclude_id=entity.id
            )
            await self._store.update_log(
                log_id,
                {
                    "status": ProcessingStatus.RESOLVED,
                    "matched_entity_id": entity.id,
                    "candidates": [entity],
                    "secondary_entity_ids": secondary,
                },
            )
            self._advance(PipelineStage.RESOLVED, entity_id=entity.id, method=match.method, score=match.score)

        except (TranscriptionError, ExtractionError) as e:
            return await self._fail(log_id, e)
        except PersistenceError as e:
            # A checkpoint write failed; the log may not exist or be stale
            logger.error("checkpoint_failed", error=str(e))
            return FailedResult(log_id=log_id, stage=e.stage, reason=e.user_message)
        except Exception as e:
            logger.exception("pipeline_unexpected_error", stage=stage)
            error = VoiceIntakeError(f"Unexpected error during {stage}: {e}")
            error.stage = stage
            return await self._fail(log_id, error)

        return await self._persist(log, extraction, entity, secondary, match_method=match.method)

    async def _pause(
        self,
        log: ProcessingLog,
        extraction: ExtractedData,
        match: MatchResult,
        catalog: list[EntityCandidate],
    ) -> NeedsClarificationResult:
        if match.outcome == MatchOutcome.NONE:
            options = list(catalog)
            message = f"No equipment matched '{match.identifier}'. Pick one from the list."
        else:
            options = list(match.candidates)
            message = f"'{match.identifier}' matches {len(options)} pieces of equipment. Pick one."

        # Secondary equipment is resolved now, against the full catalog
        secondary = self._resolver.resolve_secondary(extraction.secondary_identifiers, catalog)

        await self._store.update_log(
            log.id,
            {
                "status": ProcessingStatus.AWAITING_CLARIFICATION,
                "candidates": options,
                "secondary_entity_ids": secondary,
            },
        )
        self._advance(
            PipelineStage.CLARIFICATION_NEEDED,
            outcome=match.outcome.value,
            options=len(options),
        )

        limit = self._settings.clarification_max_options
        return NeedsClarificationResult(
            log_id=log.id,
            outcome=match.outcome,
            identifier=match.identifier,
            extracted_data=extraction.model_dump(mode="json"),
            shortlist=options[:limit],
            options_truncated=len(options) > limit,
            message=message,
        )

    async def _persist(
        self,
        log: ProcessingLog,
        extraction: ExtractedData,
        entity: EntityCandidate,
        secondary_entity_ids: list[int],
        match_method: str | None = None,
    ) -> ProcessingResult:
        signals = PrioritySignals.from_extraction(
            extraction,
            criticality_score=entity.criticality_score,
            today=self._today(),
        )
        assessment = self._priority.assess(signals)
        logger.info("priority_assessed", priority=assessment.priority.value, reasons=assessment.reasons)

        try:
            record = await self._records.persist(
                extraction=extraction,
                entity=entity,
                secondary_entity_ids=secondary_entity_ids,
                assessment=assessment,
                log_id=log.id,
                user_id=log.user_id,
                organization_id=log.organization_id,
                match_method=match_method,
            )
        except PersistenceError as e:
            # Log stays RESOLVED so retry_persistence can pick it up
            logger.error("record_persist_failed", error=str(e))
            return FailedResult(log_id=log.id, stage=e.stage, reason=e.user_message)

        self._advance(PipelineStage.PERSISTED, record_id=record.id)
        return CompletedResult(
            log_id=log.id,
            record=record,
            priority=assessment,
            matched_entity=entity,
        )

    # -- Helpers --

    async def _fail(self, log_id: str, error: VoiceIntakeError) -> FailedResult:
        logger.warning("pipeline_failed", stage=error.stage, error=str(error))
        self._advance(PipelineStage.FAILED, failed_stage=error.stage)
        try:
            await self._store.update_log(
                log_id,
                {"status": ProcessingStatus.FAILED, "error_message": str(error)},
            )
        except PersistenceError as e:
            logger.error("failed_status_not_saved", error=str(e))
        return FailedResult(log_id=log_id, stage=error.stage, reason=error.user_message)

    async def _load_log(self, log_id: str) -> ProcessingLog:
        log = await self._store.get_log(log_id)
        if log is None:
            raise LogNotFoundError(f"Processing log {log_id} not found")
        return log

    def _stored_extraction(self, log: ProcessingLog) -> ExtractedData:
        if not log.extracted_data:
            raise ClarificationError(f"Log {log.id} has no stored extraction")
        try:
            return load_extracted_data(log.extracted_data)
        except ValidationError as e:
            raise ClarificationError(f"Stored extraction for log {log.id} is invalid") from e

    @staticmethod
    def _advance(stage: PipelineStage, **fields) -> None:
        logger.info("pipeline_stage", stage=stage.value, **fields)


def build_pipeline(settings: Settings | None = None) -> VoicePipeline:
    """Wire the production pipeline from settings."""
    settings = settings or get_settings()
    store = get_store()
    return VoicePipeline(
        transcriber=OpenAITranscriber(settings),
        extractor=StructuredExtractor(OpenAIChatModel(settings), settings),
        resolver=EntityResolver(settings.resolver_threshold, settings.resolver_tie_margin),
        priority_policy=RuleTablePriorityCalculator(),
        store=store,
        record_service=RecordService(store, RedisOutboxDispatcher(settings)),
        settings=settings,
    )
