"""
Notification Dispatch.

Record creation never waits on chat delivery. After the record
transaction commits, the pipeline drops a ``NotificationEvent`` into a
Redis list (the outbox); the notification worker pops events and posts
them to Discord.
"""

from __future__ import annotations

import json
from typing import Optional, Protocol

import httpx
import redis.asyncio as aioredis
from pydantic import BaseModel

from voice_intake.config import Settings, get_settings
from voice_intake.errors import NotificationDispatchError
from voice_intake.logging_config import get_logger

logger = get_logger(__name__)

PRIORITY_COLORS = {
    "P1": 0xE74C3C,
    "P2": 0xF39C12,
    "P3": 0x3498DB,
}

RECORD_PATHS = {
    "failure": "/maintenance/failures/{id}",
    "purchase": "/purchasing/requests/{id}",
}


class NotificationEvent(BaseModel):
    """Payload for one new-record notification."""
    record_id: str
    kind: str
    organization_id: str
    title: str
    description: str = ""
    priority: str
    entity_id: int
    entity_name: str
    parent_name: Optional[str] = None
    reported_by: str
    caused_interruption: bool = False
    component: Optional[str] = None
    attempts: int = 0


class NotificationDispatcher(Protocol):
    async def dispatch(self, event: NotificationEvent) -> None: ...


class RedisOutboxDispatcher:
    """
    Pushes events onto the Redis outbox list.

    Pushes run inline after a commit, so the connection uses short
    timeouts. The worker passes a ``socket_timeout`` longer than its
    blocking pop.
    """

    def __init__(self, settings: Settings | None = None, socket_timeout: float | None = None) -> None:
        self._settings = settings or get_settings()
        self._socket_timeout = socket_timeout or self._settings.redis_socket_timeout
        self._redis: Optional[aioredis.Redis] = None

    async def initialize(self) -> None:
        self._redis = aioredis.from_url(
            self._settings.redis_url,
            decode_responses=True,
            socket_connect_timeout=self._settings.redis_socket_timeout,
            socket_timeout=self._socket_timeout,
        )
        logger.info("notification_outbox_initialized", queue=self._settings.notification_queue_key)

    async def close(self) -> None:
        if self._redis:
            await self._redis.close()
            self._redis = None

    @property
    def redis(self) -> aioredis.Redis:
        if not self._redis:
            raise RuntimeError("RedisOutboxDispatcher not initialized. Call initialize() first.")
        return self._redis

    async def dispatch(self, event: NotificationEvent) -> None:
        if self._redis is None:
            await self.initialize()
        try:
            await self.redis.lpush(self._settings.notification_queue_key, event.model_dump_json())
        except Exception as e:
            raise NotificationDispatchError(f"Outbox push failed: {e}") from e
        logger.info("notification_enqueued", record_id=event.record_id, kind=event.kind)

    async def pop(self, timeout: int = 5) -> NotificationEvent | None:
        """Blocking pop used by the worker. Returns None on timeout."""
        result = await self.redis.brpop([self._settings.notification_queue_key], timeout=timeout)
        if not result:
            return None
        _key, payload = result
        try:
            return NotificationEvent.model_validate(json.loads(payload))
        except (ValueError, TypeError) as e:
            logger.error("notification_payload_invalid", error=str(e))
            return None

    async def requeue(self, event: NotificationEvent) -> None:
        await self.redis.lpush(self._settings.notification_queue_key, event.model_dump_json())


def build_embed(event: NotificationEvent, base_url: str) -> dict:
    """Discord embed for a newly created record."""
    location = event.entity_name
    if event.parent_name:
        location = f"{event.parent_name} › {location}"
    if event.component:
        location += f" › {event.component}"

    label = "New failure" if event.kind == "failure" else "New purchase request"
    path = RECORD_PATHS.get(event.kind, "/records/{id}").format(id=event.record_id)

    description = f"**{event.title}**"
    if event.caused_interruption:
        description += "\n\n⚠️ Production stopped"

    fields = [
        {"name": "Location", "value": location, "inline": False},
        {"name": "Priority", "value": event.priority, "inline": True},
        {"name": "Reported by", "value": event.reported_by, "inline": True},
    ]
    if event.description:
        fields.append({"name": "Description", "value": event.description[:200]})
    fields.append({"name": "Open", "value": f"{base_url.rstrip('/')}{path}"})

    return {
        "title": f"{label}: {event.entity_name}",
        "description": description,
        "color": PRIORITY_COLORS.get(event.priority, PRIORITY_COLORS["P3"]),
        "fields": fields,
        "footer": {"text": f"{event.kind} #{event.record_id}"},
    }


class DiscordWebhookNotifier:
    """Delivers events to a Discord webhook."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()

    async def send(self, event: NotificationEvent) -> None:
        if not self._settings.discord_webhook_url:
            logger.warning("discord_webhook_missing", record_id=event.record_id)
            return

        payload = {
            "username": "Voice Reports",
            "embeds": [build_embed(event, self._settings.app_base_url)],
        }
        try:
            async with httpx.AsyncClient(timeout=10.0) as client:
                response = await client.post(self._settings.discord_webhook_url, json=payload)
                response.raise_for_status()
        except httpx.HTTPError as e:
            raise NotificationDispatchError(f"Discord delivery failed: {e}") from e

        logger.info("notification_delivered", record_id=event.record_id, kind=event.kind)
