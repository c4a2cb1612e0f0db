"""Pytest configuration and shared fixtures."""

import json
import os
from datetime import date, datetime, timezone
from unittest.mock import AsyncMock

import pytest

# Set required environment variables for testing BEFORE importing app modules
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("OPENAI_API_KEY", "test-openai-key")
os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_KEY", "test-supabase-key")

from voice_intake.config import Settings
from voice_intake.errors import PersistenceError
from voice_intake.schemas.catalog import EntityCandidate
from voice_intake.schemas.processing import ProcessingLog, ProcessingStatus
from voice_intake.services.data_extraction import StructuredExtractor
from voice_intake.services.entity_resolver import EntityResolver
from voice_intake.services.pipeline import VoicePipeline
from voice_intake.services.priority import RuleTablePriorityCalculator
from voice_intake.services.record_service import RecordService

TODAY = date(2026, 3, 10)


class InMemoryStore:
    """ProcessingStore double with the same status rules as the SQL function."""

    def __init__(self) -> None:
        self.logs: dict[str, ProcessingLog] = {}
        self.records: list = []
        self.fail_commit = False
        self.commit_calls = 0

    async def create_log(self, log: ProcessingLog) -> ProcessingLog:
        stored = log.model_copy(update={"created_at": datetime.now(timezone.utc)})
        self.logs[log.id] = stored
        return stored

    async def get_log(self, log_id: str) -> ProcessingLog | None:
        return self.logs.get(log_id)

    async def update_log(self, log_id: str, changes: dict) -> ProcessingLog:
        if log_id not in self.logs:
            raise PersistenceError(f"Processing log {log_id} not found")
        updated = self.logs[log_id].model_copy(update=changes)
        self.logs[log_id] = updated
        return updated

    async def transition_log(self, log_id, expected, new, changes=None) -> bool:
        log = self.logs.get(log_id)
        if log is None or log.status != expected:
            return False
        self.logs[log_id] = log.model_copy(update={**(changes or {}), "status": new})
        return True

    async def find_completed_by_audio_hash(self, organization_id: str, audio_hash: str):
        for log in self.logs.values():
            if (
                log.organization_id == organization_id
                and log.audio_hash == audio_hash
                and log.status == ProcessingStatus.COMPLETED
            ):
                return log
        return None

    async def commit_record(self, record):
        self.commit_calls += 1
        if self.fail_commit:
            raise PersistenceError("connection reset by peer")
        log = self.logs[record.processing_log_id]
        if log.status != ProcessingStatus.RESOLVED:
            raise PersistenceError(f"processing log {log.id} is not RESOLVED")
        committed = record.model_copy(
            update={"id": str(len(self.records) + 1), "created_at": datetime.now(timezone.utc)}
        )
        self.records.append(committed)
        self.logs[log.id] = log.model_copy(
            update={"status": ProcessingStatus.COMPLETED, "record_id": committed.id}
        )
        return committed


def model_answer(**overrides) -> str:
    """JSON the language model would return for a failure report."""
    data = {
        "primary_identifier": "pump line 3",
        "secondary_identifiers": [],
        "title": "Pump stopped",
        "description": "The pump on line 3 stopped and production halted",
        "category": "MECHANICAL",
        "caused_downtime": True,
        "is_intermittent": False,
        "symptoms": ["no flow"],
        "sub_entity_identifier": None,
        "confidence": 85,
    }
    data.update(overrides)
    return json.dumps(data)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        openai_api_key="test-openai-key",
        resolver_threshold=0.70,
        clarification_max_options=10,
    )


@pytest.fixture
def catalog() -> list[EntityCandidate]:
    return [
        EntityCandidate(id=42, name="Pump L3", parent_name="Line 3", criticality_score=90),
        EntityCandidate(id=1, name="Press A", parent_name="Stamping"),
        EntityCandidate(id=2, name="Press B", parent_name="Stamping"),
        EntityCandidate(id=3, name="Press C", parent_name="Stamping", criticality_score=65),
        EntityCandidate(id=9, name="Boiler 2", nickname="la caldera", aliases=["steam boiler"], criticality_score=30),
    ]


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def transcriber() -> AsyncMock:
    mock = AsyncMock()
    mock.transcribe.return_value = "The pump on line 3 stopped, production is down"
    return mock


@pytest.fixture
def language_model() -> AsyncMock:
    mock = AsyncMock()
    mock.complete_json.return_value = model_answer()
    return mock


@pytest.fixture
def dispatcher() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def pipeline(settings, store, transcriber, language_model, dispatcher) -> VoicePipeline:
    return VoicePipeline(
        transcriber=transcriber,
        extractor=StructuredExtractor(language_model, settings, today=lambda: TODAY),
        resolver=EntityResolver(settings.resolver_threshold),
        priority_policy=RuleTablePriorityCalculator(),
        store=store,
        record_service=RecordService(store, dispatcher),
        settings=settings,
        today=lambda: TODAY,
    )
