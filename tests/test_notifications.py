from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from voice_intake.errors import NotificationDispatchError, PersistenceError
from voice_intake.schemas.extraction import FailureExtraction
from voice_intake.schemas.records import Priority, PriorityAssessment
from voice_intake.services.notifications import (
    DiscordWebhookNotifier,
    NotificationEvent,
    RedisOutboxDispatcher,
    build_embed,
)
from voice_intake.services.record_service import RecordService, build_record
from voice_intake.workers.notification_worker import POP_TIMEOUT, NotificationWorker


@pytest.fixture
def event():
    return NotificationEvent(
        record_id="17",
        kind="failure",
        organization_id="acme",
        title="Pump stopped",
        description="The pump on line 3 stopped",
        priority="P1",
        entity_id=42,
        entity_name="Pump L3",
        parent_name="Line 3",
        reported_by="tech-7",
        caused_interruption=True,
        component="impeller",
    )


@pytest.fixture
def extraction():
    return FailureExtraction(
        primary_identifier="pump line 3",
        title="Pump stopped",
        description="No flow",
        caused_downtime=True,
        notes="Happened after the night shift",
    )


class TestRecordService:

    def test_record_carries_provenance(self, extraction, catalog):
        record = build_record(
            extraction=extraction,
            entity=catalog[0],
            secondary_entity_ids=[42, 9],
            assessment=PriorityAssessment(priority=Priority.P1, reasons=["x"]),
            log_id="log-1",
            user_id="tech-7",
            organization_id="acme",
            match_method="similarity",
        )
        assert record.source == "voice"
        assert record.secondary_entity_ids == [9]
        assert record.description.startswith("[Created from voice report] No flow")
        assert "Notes: Happened after the night shift" in record.description
        assert record.audit_note.startswith("Matched 'pump line 3' to 'Pump L3' (Line 3) by similarity")

    @pytest.mark.asyncio
    async def test_commit_failure_skips_dispatch(self, extraction, catalog):
        store = MagicMock()
        store.commit_record = AsyncMock(side_effect=PersistenceError("db down"))
        dispatcher = AsyncMock()
        service = RecordService(store, dispatcher)

        with pytest.raises(PersistenceError):
            await service.persist(
                extraction=extraction,
                entity=catalog[0],
                secondary_entity_ids=[],
                assessment=PriorityAssessment(priority=Priority.P2),
                log_id="log-1",
                user_id="tech-7",
                organization_id="acme",
            )
        dispatcher.dispatch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unexpected_dispatch_error_is_swallowed(self, extraction, catalog):
        store = MagicMock()
        store.commit_record = AsyncMock(side_effect=lambda record: record.model_copy(update={"id": "5"}))
        dispatcher = AsyncMock()
        dispatcher.dispatch.side_effect = RuntimeError("boom")
        service = RecordService(store, dispatcher)

        record = await service.persist(
            extraction=extraction,
            entity=catalog[0],
            secondary_entity_ids=[],
            assessment=PriorityAssessment(priority=Priority.P2),
            log_id="log-1",
            user_id="tech-7",
            organization_id="acme",
        )
        assert record.id == "5"
        sent = dispatcher.dispatch.call_args.args[0]
        assert sent.record_id == "5"
        assert sent.entity_name == "Pump L3"


class TestDiscord:

    def test_embed(self, event):
        embed = build_embed(event, "https://app.example.com/")
        fields = {f["name"]: f["value"] for f in embed["fields"]}

        assert embed["title"] == "New failure: Pump L3"
        assert "Production stopped" in embed["description"]
        assert fields["Location"] == "Line 3 › Pump L3 › impeller"
        assert fields["Open"] == "https://app.example.com/maintenance/failures/17"
        assert embed["color"] == 0xE74C3C

    @pytest.mark.asyncio
    async def test_missing_webhook_is_a_no_op(self, settings, event):
        with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post:
            await DiscordWebhookNotifier(settings).send(event)
        mock_post.assert_not_called()

    @pytest.mark.asyncio
    async def test_http_failure(self, settings, event):
        configured = settings.model_copy(update={"discord_webhook_url": "https://discord.test/hook"})
        with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post:
            mock_post.side_effect = httpx.ConnectError("no route")
            with pytest.raises(NotificationDispatchError):
                await DiscordWebhookNotifier(configured).send(event)


class TestOutbox:

    @pytest.mark.asyncio
    async def test_dispatch_pushes_json(self, settings, event):
        outbox = RedisOutboxDispatcher(settings)
        outbox._redis = AsyncMock()

        await outbox.dispatch(event)

        key, payload = outbox._redis.lpush.call_args.args
        assert key == settings.notification_queue_key
        assert NotificationEvent.model_validate_json(payload) == event

    @pytest.mark.asyncio
    async def test_redis_error_becomes_dispatch_error(self, settings, event):
        outbox = RedisOutboxDispatcher(settings)
        outbox._redis = AsyncMock()
        outbox._redis.lpush.side_effect = ConnectionError("refused")

        with pytest.raises(NotificationDispatchError):
            await outbox.dispatch(event)

    @pytest.mark.asyncio
    async def test_connection_uses_short_timeouts(self, settings):
        with patch("voice_intake.services.notifications.aioredis.from_url") as from_url:
            await RedisOutboxDispatcher(settings).initialize()

        kwargs = from_url.call_args.kwargs
        assert kwargs["socket_connect_timeout"] == settings.redis_socket_timeout
        assert kwargs["socket_timeout"] == settings.redis_socket_timeout

    @pytest.mark.asyncio
    async def test_worker_connection_outlasts_blocking_pop(self, settings):
        with patch("voice_intake.services.notifications.aioredis.from_url") as from_url:
            worker = NotificationWorker(notifier=AsyncMock(), settings=settings)
            await worker._outbox.initialize()

        assert from_url.call_args.kwargs["socket_timeout"] > POP_TIMEOUT

    @pytest.mark.asyncio
    async def test_pop_skips_garbage(self, settings):
        outbox = RedisOutboxDispatcher(settings)
        outbox._redis = AsyncMock()
        outbox._redis.brpop.return_value = ("voice:notifications", "not json")

        assert await outbox.pop(timeout=1) is None


class TestWorker:

    @pytest.fixture
    def outbox(self, event):
        outbox = AsyncMock()
        outbox.pop.return_value = event
        return outbox

    @pytest.mark.asyncio
    async def test_delivers_event(self, settings, outbox, event):
        notifier = AsyncMock()
        worker = NotificationWorker(outbox, notifier, settings)

        assert await worker.process_one() is True
        notifier.send.assert_awaited_once_with(event)
        outbox.requeue.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_delivery_is_requeued(self, settings, outbox):
        notifier = AsyncMock()
        notifier.send.side_effect = NotificationDispatchError("502")
        worker = NotificationWorker(outbox, notifier, settings)

        await worker.process_one()

        requeued = outbox.requeue.call_args.args[0]
        assert requeued.attempts == 1

    @pytest.mark.asyncio
    async def test_event_dropped_after_max_attempts(self, settings, outbox, event):
        event.attempts = settings.max_delivery_attempts - 1
        notifier = AsyncMock()
        notifier.send.side_effect = NotificationDispatchError("502")
        worker = NotificationWorker(outbox, notifier, settings)

        await worker.process_one()

        outbox.requeue.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_empty_queue(self, settings):
        outbox = AsyncMock()
        outbox.pop.return_value = None
        worker = NotificationWorker(outbox, AsyncMock(), settings)

        assert await worker.process_one() is False
