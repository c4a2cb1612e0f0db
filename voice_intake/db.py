"""
Supabase Database Client.

``ProcessingStore`` is the persistence boundary the pipeline depends on.
``SupabaseStore`` implements it on top of the official Supabase client;
the record + log write goes through the ``commit_voice_record`` Postgres
function so it happens in a single transaction.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional, Protocol

from pydantic import TypeAdapter
from supabase import Client, create_client

from voice_intake.config import get_settings
from voice_intake.errors import PersistenceError
from voice_intake.logging_config import get_logger
from voice_intake.schemas.processing import ProcessingLog, ProcessingStatus
from voice_intake.schemas.records import BusinessRecord

logger = get_logger(__name__)

LOGS_TABLE = "voice_processing_logs"
COMMIT_FUNCTION = "commit_voice_record"

_record_adapter: TypeAdapter[BusinessRecord] = TypeAdapter(BusinessRecord)


class ProcessingStore(Protocol):
    async def create_log(self, log: ProcessingLog) -> ProcessingLog: ...

    async def get_log(self, log_id: str) -> ProcessingLog | None: ...

    async def update_log(self, log_id: str, changes: dict[str, Any]) -> ProcessingLog: ...

    async def transition_log(
        self,
        log_id: str,
        expected: ProcessingStatus,
        new: ProcessingStatus,
        changes: dict[str, Any] | None = None,
    ) -> bool:
        """Compare-and-set on status. Returns False if the log moved on."""
        ...

    async def find_completed_by_audio_hash(
        self, organization_id: str, audio_hash: str
    ) -> ProcessingLog | None: ...

    async def commit_record(self, record: BusinessRecord) -> BusinessRecord:
        """Insert the record, link it to its log and mark the log COMPLETED, atomically."""
        ...


def serialize_changes(changes: dict[str, Any]) -> dict[str, Any]:
    """Make log updates JSON-safe for Supabase jsonb / enum columns."""
    row: dict[str, Any] = {}
    for key, value in changes.items():
        if hasattr(value, "model_dump"):
            value = value.model_dump(mode="json")
        elif isinstance(value, list):
            value = [v.model_dump(mode="json") if hasattr(v, "model_dump") else v for v in value]
        elif isinstance(value, ProcessingStatus):
            value = value.value
        elif isinstance(value, datetime):
            value = value.isoformat()
        row[key] = value
    return row


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SupabaseStore:
    """Wrapper around the official Supabase Python client."""

    _instance: Optional[SupabaseStore] = None
    _client: Client

    def __new__(cls) -> SupabaseStore:
        """Singleton pattern to ensure only one client instance."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            settings = get_settings()

            if not settings.supabase_url or not settings.supabase_service_key:
                logger.warning(
                    "Supabase credentials missing. Database operations will fail.",
                    url=bool(settings.supabase_url),
                    key=bool(settings.supabase_service_key),
                )

            try:
                cls._instance._client = create_client(
                    settings.supabase_url,
                    settings.supabase_service_key,
                )
                logger.info("Supabase client initialized", url=settings.supabase_url)
            except Exception as e:
                cls._instance = None
                logger.error("Failed to initialize Supabase client", error=str(e))
                raise

        return cls._instance

    @property
    def client(self) -> Client:
        """Access the raw Supabase client."""
        return self._client

    async def create_log(self, log: ProcessingLog) -> ProcessingLog:
        payload = log.model_dump(mode="json", exclude={"created_at", "updated_at"})
        try:
            response = self.client.table(LOGS_TABLE).insert(payload).execute()
        except Exception as e:
            logger.error("Error creating processing log", log_id=log.id, error=str(e))
            raise PersistenceError(f"Could not create processing log: {e}") from e
        if not response.data:
            raise PersistenceError("Processing log insert returned no rows")
        return ProcessingLog.model_validate(response.data[0])

    async def get_log(self, log_id: str) -> ProcessingLog | None:
        try:
            response = (
                self.client.table(LOGS_TABLE)
                .select("*")
                .eq("id", log_id)
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.error("Error fetching processing log", log_id=log_id, error=str(e))
            raise PersistenceError(f"Could not read processing log: {e}") from e
        if not response.data:
            return None
        return ProcessingLog.model_validate(response.data[0])

    async def update_log(self, log_id: str, changes: dict[str, Any]) -> ProcessingLog:
        updates = {**serialize_changes(changes), "updated_at": _now()}
        try:
            response = (
                self.client.table(LOGS_TABLE)
                .update(updates)
                .eq("id", log_id)
                .execute()
            )
        except Exception as e:
            logger.error("Error updating processing log", log_id=log_id, error=str(e))
            raise PersistenceError(f"Could not update processing log: {e}") from e
        if not response.data:
            raise PersistenceError(f"Processing log {log_id} not found")
        return ProcessingLog.model_validate(response.data[0])

    async def transition_log(
        self,
        log_id: str,
        expected: ProcessingStatus,
        new: ProcessingStatus,
        changes: dict[str, Any] | None = None,
    ) -> bool:
        updates = {**serialize_changes(changes or {}), "status": new.value, "updated_at": _now()}
        try:
            response = (
                self.client.table(LOGS_TABLE)
                .update(updates)
                .eq("id", log_id)
                .eq("status", expected.value)
                .execute()
            )
        except Exception as e:
            logger.error("Error transitioning processing log", log_id=log_id, error=str(e))
            raise PersistenceError(f"Could not update processing log: {e}") from e
        return bool(response.data)

    async def find_completed_by_audio_hash(
        self, organization_id: str, audio_hash: str
    ) -> ProcessingLog | None:
        try:
            response = (
                self.client.table(LOGS_TABLE)
                .select("*")
                .eq("organization_id", organization_id)
                .eq("audio_hash", audio_hash)
                .eq("status", ProcessingStatus.COMPLETED.value)
                .limit(1)
                .execute()
            )
        except Exception as e:
            # Duplicate detection is advisory; a read failure must not block intake
            logger.warning("Duplicate lookup failed", error=str(e))
            return None
        if not response.data:
            return None
        return ProcessingLog.model_validate(response.data[0])

    async def commit_record(self, record: BusinessRecord) -> BusinessRecord:
        payload = record.model_dump(mode="json", exclude={"id", "created_at"})
        try:
            response = self.client.rpc(
                COMMIT_FUNCTION,
                {
                    "p_kind": record.kind,
                    "p_log_id": record.processing_log_id,
                    "p_record": payload,
                },
            ).execute()
        except Exception as e:
            logger.error(
                "Error committing voice record",
                log_id=record.processing_log_id,
                kind=record.kind,
                error=str(e),
            )
            raise PersistenceError(f"Record transaction failed: {e}") from e

        row = response.data[0] if isinstance(response.data, list) else response.data
        if not row or "id" not in row:
            raise PersistenceError("Record transaction returned no id")

        return _record_adapter.validate_python({
            **record.model_dump(),
            "id": str(row["id"]),
            "created_at": row.get("created_at"),
        })


# Global accessor
def get_store() -> SupabaseStore:
    return SupabaseStore()
