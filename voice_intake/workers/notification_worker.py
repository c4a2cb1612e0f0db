"""
Notification Worker.

Drains the Redis notification outbox and posts each new record to the
Discord channel. Runs as a long-lived background process, separate
from the API so chat outages never slow down record creation.

Start with:
    python -m voice_intake.workers.notification_worker
"""

from __future__ import annotations

import asyncio
import signal
import sys
import os

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "..")))

from dotenv import load_dotenv
load_dotenv(".env.local")

from voice_intake.config import Settings, get_settings
from voice_intake.errors import NotificationDispatchError
from voice_intake.logging_config import setup_logging, get_logger
from voice_intake.services.notifications import (
    DiscordWebhookNotifier,
    RedisOutboxDispatcher,
)

logger = get_logger(__name__)

# Blocking pop timeout (seconds); also bounds shutdown latency
POP_TIMEOUT = 5
# Back-off after an unexpected loop error
ERROR_BACKOFF = 5.0


class NotificationWorker:
    """
    Pops notification events and delivers them.

    A failed delivery is pushed back with its attempt counter bumped;
    after ``max_delivery_attempts`` the event is dropped and logged.
    """

    def __init__(
        self,
        outbox: RedisOutboxDispatcher | None = None,
        notifier: DiscordWebhookNotifier | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._outbox = outbox or RedisOutboxDispatcher(self._settings, socket_timeout=POP_TIMEOUT + 5)
        self._notifier = notifier or DiscordWebhookNotifier(self._settings)
        self._running = False

    async def start(self) -> None:
        await self._outbox.initialize()
        self._running = True
        logger.info(
            "notification_worker_started",
            queue=self._settings.notification_queue_key,
            max_attempts=self._settings.max_delivery_attempts,
        )

        while self._running:
            try:
                await self.process_one()
            except Exception as e:
                logger.error("notification_worker_error", error=str(e))
                await asyncio.sleep(ERROR_BACKOFF)

    async def stop(self) -> None:
        self._running = False
        await self._outbox.close()
        logger.info("notification_worker_stopped")

    async def process_one(self) -> bool:
        """
        Deliver the next event, if any.

        Returns True if an event was taken off the queue.
        """
        event = await self._outbox.pop(timeout=POP_TIMEOUT)
        if event is None:
            return False

        try:
            await self._notifier.send(event)
        except NotificationDispatchError as e:
            event.attempts += 1
            if event.attempts >= self._settings.max_delivery_attempts:
                logger.error(
                    "notification_dropped",
                    record_id=event.record_id,
                    attempts=event.attempts,
                    error=str(e),
                )
            else:
                logger.warning(
                    "notification_retry_scheduled",
                    record_id=event.record_id,
                    attempts=event.attempts,
                    error=str(e),
                )
                await self._outbox.requeue(event)
        return True


async def main() -> None:
    setup_logging()
    worker = NotificationWorker()

    loop = asyncio.get_running_loop()

    def shutdown_handler() -> None:
        logger.info("shutdown_signal_received")
        asyncio.ensure_future(worker.stop())

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, shutdown_handler)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass

    try:
        await worker.start()
    except KeyboardInterrupt:
        await worker.stop()


if __name__ == "__main__":
    asyncio.run(main())
