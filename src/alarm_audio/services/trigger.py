"""Claims a batch of queue items and starts processing it.

In background mode the trigger returns as soon as the claim is committed and
the dispatch continues as a tracked asyncio task. In synchronous mode (used by
the standalone worker) it waits for the dispatch and returns its counters.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from alarm_audio.core.config import ClaimOrder
from alarm_audio.services.audio_queue import AudioQueueService, QueueClaimError, QueueError
from alarm_audio.services.dispatcher import DispatchResult

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from alarm_audio.services.audio_queue import ClaimedItem
    from alarm_audio.services.dispatcher import BatchDispatcher

logger = logging.getLogger(__name__)

PROCESSING_MODE_ASYNC = "async"
PROCESSING_MODE_SYNC = "sync"


def estimate_minutes(count: int, max_concurrent: int, minutes_per_chunk: int = 4) -> int:
    """Rough completion estimate: one chunk of work per `minutes_per_chunk`."""
    if count <= 0:
        return 0
    return math.ceil(count / max_concurrent) * minutes_per_chunk


@dataclass(frozen=True)
class TriggerResult:
    """What a trigger claimed and how it is being processed."""

    queued_count: int
    estimated_time: int
    processing_mode: str
    dispatch_result: DispatchResult | None = None

    @property
    def queue_empty(self) -> bool:
        return self.queued_count == 0

    @property
    def message(self) -> str:
        if self.queue_empty:
            return "No pending items in queue"
        return (
            f"Started processing {self.queued_count} alarms "
            f"(estimated {self.estimated_time} minutes)"
        )


class QueueTrigger:
    """Entry point that claims work and hands it to the dispatcher.

    Attributes:
        dispatcher: Runs the worker over claimed items.
        batch_size: Default maximum number of items per claim.
        max_concurrent: Default chunk size passed to the dispatcher.
        claim_order: Ordering of eligible items.
        minutes_per_chunk: Used for the completion estimate.
        background: Dispatch without waiting when True.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        dispatcher: BatchDispatcher,
        *,
        batch_size: int = 50,
        max_concurrent: int = 10,
        claim_order: ClaimOrder = ClaimOrder.SCHEDULED,
        minutes_per_chunk: int = 4,
        background: bool = True,
    ) -> None:
        self._session_factory = session_factory
        self.dispatcher = dispatcher
        self.batch_size = batch_size
        self.max_concurrent = max_concurrent
        self.claim_order = claim_order
        self.minutes_per_chunk = minutes_per_chunk
        self.background = background
        self._tasks: set[asyncio.Task[DispatchResult]] = set()

    @property
    def pending_tasks(self) -> int:
        """Number of background dispatches still running."""
        return len(self._tasks)

    async def claim(self, batch_size: int | None = None) -> list[ClaimedItem]:
        """Claim up to batch_size eligible items in one transaction.

        Raises:
            QueueClaimError: If the store is unavailable. Nothing was claimed.
        """
        claim_token = f"claim-{uuid.uuid4().hex[:16]}"
        try:
            async with self._session_factory() as session:
                queue = AudioQueueService(session)
                try:
                    items = await queue.claim_batch(
                        batch_size or self.batch_size,
                        order=self.claim_order,
                        claim_token=claim_token,
                    )
                    await session.commit()
                except Exception:
                    await session.rollback()
                    raise
        except QueueError:
            raise
        except SQLAlchemyError as e:
            raise QueueClaimError(f"Failed to claim queue items: {e}") from e
        return items

    async def trigger(
        self,
        batch_size: int | None = None,
        max_concurrent: int | None = None,
    ) -> TriggerResult:
        """Claim a batch and start processing it.

        Returns immediately with queue_empty when nothing is eligible; no
        background work is started in that case.

        Raises:
            QueueClaimError: If the claim failed.
        """
        concurrency = max_concurrent or self.max_concurrent
        mode = PROCESSING_MODE_ASYNC if self.background else PROCESSING_MODE_SYNC

        items = await self.claim(batch_size)
        if not items:
            logger.debug("Trigger found no eligible queue items")
            return TriggerResult(queued_count=0, estimated_time=0, processing_mode=mode)

        estimated = estimate_minutes(len(items), concurrency, self.minutes_per_chunk)
        logger.info(
            "Queue processing started: claimed=%d, max_concurrent=%d, mode=%s, "
            "estimated_minutes=%d",
            len(items),
            concurrency,
            mode,
            estimated,
        )

        if self.background:
            task = asyncio.create_task(
                self._run_dispatch(items, concurrency),
                name=f"dispatch-{items[0].claim_token}",
            )
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            return TriggerResult(
                queued_count=len(items),
                estimated_time=estimated,
                processing_mode=mode,
            )

        dispatch_result = await self._run_dispatch(items, concurrency)
        return TriggerResult(
            queued_count=len(items),
            estimated_time=estimated,
            processing_mode=mode,
            dispatch_result=dispatch_result,
        )

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for background dispatches to finish, e.g. on shutdown.

        Dispatches still running after the timeout are cancelled before this
        returns, so nothing keeps using clients or connections closed after
        it. Their items stay in processing until the stale claim sweep
        returns them to the queue.
        """
        if not self._tasks:
            return
        logger.info("Waiting for background dispatches: count=%d", len(self._tasks))
        _, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        if not pending:
            return

        logger.warning(
            "Cancelling background dispatches still running after drain timeout: "
            "count=%d, dispatches=%s",
            len(pending),
            sorted(task.get_name() for task in pending),
        )
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        self._tasks.difference_update(pending)

    async def _run_dispatch(
        self,
        items: Sequence[ClaimedItem],
        max_concurrent: int,
    ) -> DispatchResult:
        started = time.monotonic()
        try:
            result = await self.dispatcher.dispatch(items, max_concurrent)
        except Exception:
            logger.exception("Dispatch aborted: claimed=%d", len(items))
            return DispatchResult()

        logger.info(
            "Queue processing finished: processed=%d, succeeded=%d, failed=%d, "
            "duration_seconds=%.1f",
            result.processed_count,
            result.success_count,
            result.failed_count,
            time.monotonic() - started,
        )
        return result
