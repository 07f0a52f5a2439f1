"""
In-process notification queue.

Receipts are handed off here after a ledger transition has been committed.
Delivery is sequential with a pause between sends; a failed send is retried
a bounded number of times and then dropped with an error log. Nothing in
here can fail or delay the payment that triggered it.
"""

import asyncio
import logging
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Protocol

from src.core.config import settings

logger = logging.getLogger(__name__)


@dataclass
class Notification:
    tenant_id: int | None
    recipient: str | None
    subject: str
    body: str
    phone: str | None = None
    sms_body: str | None = None
    id: str = field(default_factory=lambda: f"ntf-{uuid.uuid4().hex[:12]}")
    retries: int = 0
    added_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class NotificationSender(Protocol):
    async def send(self, notification: Notification) -> bool:
        """Deliver one notification. False or an exception means retry."""
        ...


class LoggingSender:
    """Default sender: records the notification in the log. Transports plug in here."""

    async def send(self, notification: Notification) -> bool:
        logger.info(
            "notification %s to %s: %s", notification.id, notification.recipient, notification.subject
        )
        return True


class NotificationQueue:
    def __init__(
        self,
        sender: NotificationSender | None = None,
        delay: float | None = None,
        max_retries: int | None = None,
        retry_delay: float | None = None,
    ):
        self.sender = sender or LoggingSender()
        self.delay = settings.notification_delay_seconds if delay is None else delay
        self.max_retries = settings.notification_max_retries if max_retries is None else max_retries
        self.retry_delay = (
            settings.notification_retry_delay_seconds if retry_delay is None else retry_delay
        )
        self._queue: deque[Notification] = deque()
        self._worker: asyncio.Task | None = None

    @property
    def size(self) -> int:
        return len(self._queue)

    @property
    def is_processing(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def enqueue(self, notification: Notification) -> str:
        """Queue a notification and make sure the worker runs. Never raises."""
        self._queue.append(notification)
        logger.debug("notification %s queued, queue size %d", notification.id, len(self._queue))
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("no running event loop, notification %s waits for the next enqueue", notification.id)
            return notification.id
        if not self.is_processing:
            self._worker = loop.create_task(self._process())
        return notification.id

    async def drain(self) -> None:
        """Wait until everything queued so far has been delivered or dropped."""
        if self._queue and not self.is_processing:
            self._worker = asyncio.get_running_loop().create_task(self._process())
        while self.is_processing:
            await asyncio.shield(self._worker)

    async def stop(self) -> None:
        if self._worker is not None and not self._worker.done():
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
        self._worker = None

    async def _process(self) -> None:
        while self._queue:
            notification = self._queue.popleft()
            try:
                delivered = await self.sender.send(notification)
                error = None if delivered else "sender reported failure"
            except Exception as exc:  # delivery failures never reach the ledger
                delivered = False
                error = str(exc)

            if not delivered:
                if notification.retries < self.max_retries:
                    notification.retries += 1
                    logger.warning(
                        "notification %s failed (%s), retry %d/%d",
                        notification.id,
                        error,
                        notification.retries,
                        self.max_retries,
                    )
                    self._queue.append(notification)
                    await asyncio.sleep(self.retry_delay)
                    continue
                logger.error(
                    "notification %s to %s dropped after %d retries: %s",
                    notification.id,
                    notification.recipient,
                    self.max_retries,
                    error,
                )

            if self._queue:
                await asyncio.sleep(self.delay)


notification_queue = NotificationQueue()


def get_notification_queue() -> NotificationQueue:
    """FastAPI dependency; tests override it with a recording queue."""
    return notification_queue
