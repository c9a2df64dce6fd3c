"""
Audit Logger

Buffered, best-effort audit trail for payment, subscription and chat
events. Callers enqueue records synchronously; a background task (started
by the application lifespan) writes them to the audit_logs table in
batches. Nothing here ever raises into a request.
"""

import asyncio
import logging
from collections import deque
from functools import lru_cache
from typing import Any, Deque, Dict, Optional

from app.config.settings import get_settings
from app.infrastructure.db.database import get_session_context
from app.infrastructure.db.models.audit_log import AuditCategory, AuditLogCreate
from app.infrastructure.db.repositories.audit_log_repository import AuditLogRepository


logger = logging.getLogger(__name__)


class AuditLogger:
    """
    Bounded in-memory queue of audit records with periodic flushing.

    When the queue is full the oldest record is dropped.
    """

    def __init__(
        self,
        max_queue_size: int = 1000,
        batch_size: int = 100,
        flush_interval: float = 5.0,
    ):
        self._queue: Deque[AuditLogCreate] = deque()
        self._max_queue_size = max_queue_size
        self._batch_size = batch_size
        self._flush_interval = flush_interval
        self._task: Optional[asyncio.Task] = None
        self._dropped = 0

    @property
    def pending(self) -> int:
        """Number of records waiting to be written."""
        return len(self._queue)

    @property
    def dropped(self) -> int:
        return self._dropped

    # =========================================================================
    # Enqueue
    # =========================================================================

    def log(
        self,
        category: AuditCategory,
        event_type: str,
        *,
        user_id: Optional[str] = None,
        success: bool = True,
        message: str = "",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Queue one audit record. Never raises, never awaits."""
        try:
            record = AuditLogCreate(
                category=category.value,
                event_type=event_type,
                user_id=user_id,
                success=success,
                message=message,
                details=metadata,
            )
        except Exception as e:
            logger.warning(f"Discarding malformed audit record {event_type}: {e}")
            return

        if len(self._queue) >= self._max_queue_size:
            self._queue.popleft()
            self._dropped += 1
            logger.warning("Audit queue full, dropped oldest record")

        self._queue.append(record)

    def log_payment(self, event_type: str, **kwargs: Any) -> None:
        self.log(AuditCategory.PAYMENT, event_type, **kwargs)

    def log_subscription(self, event_type: str, **kwargs: Any) -> None:
        self.log(AuditCategory.SUBSCRIPTION, event_type, **kwargs)

    def log_chat(self, event_type: str, **kwargs: Any) -> None:
        self.log(AuditCategory.CHAT, event_type, **kwargs)

    def log_error(self, event_type: str, **kwargs: Any) -> None:
        kwargs.setdefault("success", False)
        self.log(AuditCategory.ERROR, event_type, **kwargs)

    # =========================================================================
    # Flush
    # =========================================================================

    async def flush(self) -> int:
        """
        Write queued records in batches.

        A batch that fails to write is logged and discarded.

        Returns:
            Number of records written
        """
        written = 0
        while self._queue:
            batch = [
                self._queue.popleft()
                for _ in range(min(self._batch_size, len(self._queue)))
            ]
            try:
                async with get_session_context() as session:
                    await AuditLogRepository(session).create_many(batch)
                written += len(batch)
            except Exception as e:
                logger.error(f"Failed to write {len(batch)} audit records: {e}")
        return written

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._flush_interval)
            await self.flush()

    def start(self) -> None:
        """Start the periodic flush task (idempotent)."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run())
            logger.info(f"Audit logger started (every {self._flush_interval}s)")

    async def stop(self) -> None:
        """Cancel the periodic task and flush what is left."""
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        await self.flush()


@lru_cache
def get_audit_logger() -> AuditLogger:
    """Get the process-wide audit logger."""
    settings = get_settings()
    return AuditLogger(
        max_queue_size=settings.audit_log_max_queue_size,
        batch_size=settings.audit_log_batch_size,
        flush_interval=settings.audit_log_flush_interval_seconds,
    )
