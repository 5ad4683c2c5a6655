"""Bounded-concurrency dispatch of claimed queue items.

Claimed items are split into consecutive chunks of at most `max_concurrent`
items. Each chunk runs concurrently and must finish entirely before the next
chunk starts, so no more than `max_concurrent` items are ever in flight.

A failure (or exception) while processing one item never affects the other
items of the same batch. Every item gets exactly one terminal report, except
items whose claim was taken back before their chunk started; those are
skipped without any work.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from collections.abc import Sequence

    from alarm_audio.services.audio_queue import ClaimedItem

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WorkResult:
    """Outcome of processing one queue item."""

    success: bool
    error: str | None = None

    @classmethod
    def ok(cls) -> WorkResult:
        return cls(success=True)

    @classmethod
    def failed(cls, error: str) -> WorkResult:
        return cls(success=False, error=error)


class QueueWorker(Protocol):
    """Performs the work for one claimed item."""

    async def process(self, item: ClaimedItem) -> WorkResult: ...


class OutcomeReporter(Protocol):
    """Persists the terminal outcome of one claimed item. Must not raise."""

    async def report(self, item: ClaimedItem, result: WorkResult) -> bool: ...


class ClaimKeeper(Protocol):
    """Restamps claims right before a chunk starts. Must not raise."""

    async def refresh(self, items: Sequence[ClaimedItem]) -> list[ClaimedItem]: ...


@dataclass
class DispatchResult:
    """Counters for one dispatch. processed_count == success_count + failed_count.

    skipped_count counts items that lost their claim before processing.
    """

    processed_count: int = 0
    success_count: int = 0
    failed_count: int = 0
    skipped_count: int = 0

    def record(self, result: WorkResult) -> None:
        self.processed_count += 1
        if result.success:
            self.success_count += 1
        else:
            self.failed_count += 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed_count": self.processed_count,
            "success_count": self.success_count,
            "failed_count": self.failed_count,
            "skipped_count": self.skipped_count,
        }


def chunked(items: Sequence[ClaimedItem], size: int) -> list[list[ClaimedItem]]:
    """Split items into consecutive chunks of at most `size`, preserving order."""
    if size < 1:
        msg = f"Chunk size must be at least 1, got {size}"
        raise ValueError(msg)
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


class BatchDispatcher:
    """Runs a worker over claimed items, chunk by chunk.

    Attributes:
        worker: Processes one item and returns a WorkResult.
        reporter: Records each item's terminal status.
        max_concurrent: Default chunk size.
        claim_keeper: Optional; refreshes the claims of each chunk before it
            starts and drops items that are no longer held.
    """

    def __init__(
        self,
        worker: QueueWorker,
        reporter: OutcomeReporter,
        max_concurrent: int = 10,
        claim_keeper: ClaimKeeper | None = None,
    ) -> None:
        if max_concurrent < 1:
            msg = f"max_concurrent must be at least 1, got {max_concurrent}"
            raise ValueError(msg)
        self.worker = worker
        self.reporter = reporter
        self.max_concurrent = max_concurrent
        self.claim_keeper = claim_keeper

    async def dispatch(
        self,
        items: Sequence[ClaimedItem],
        max_concurrent: int | None = None,
    ) -> DispatchResult:
        """Process every item and report each outcome.

        Args:
            items: Items already claimed (in processing).
            max_concurrent: Overrides the default chunk size for this dispatch.

        Returns:
            Aggregate counters for the dispatch.
        """
        limit = max_concurrent or self.max_concurrent
        result = DispatchResult()
        if not items:
            return result

        chunks = chunked(items, limit)
        for index, chunk in enumerate(chunks, start=1):
            logger.info(
                "Dispatching chunk: chunk=%d/%d, size=%d",
                index,
                len(chunks),
                len(chunk),
            )
            held = await self._hold(chunk)
            result.skipped_count += len(chunk) - len(held)
            outcomes = await asyncio.gather(*(self._run_item(item) for item in held))
            for outcome in outcomes:
                result.record(outcome)

        logger.info(
            "Dispatch finished: processed=%d, succeeded=%d, failed=%d, skipped=%d",
            result.processed_count,
            result.success_count,
            result.failed_count,
            result.skipped_count,
        )
        return result

    async def _hold(self, chunk: list[ClaimedItem]) -> list[ClaimedItem]:
        if self.claim_keeper is None:
            return chunk
        try:
            return await self.claim_keeper.refresh(chunk)
        except Exception:
            logger.exception("Claim refresh raised: size=%d", len(chunk))
            return chunk

    async def _run_item(self, item: ClaimedItem) -> WorkResult:
        """Process one item, converting any exception into a failed result."""
        try:
            outcome = await self.worker.process(item)
        except Exception as e:
            logger.exception(
                "Queue item raised during processing: item_id=%s, alarm_id=%s",
                item.item_id,
                item.alarm_id,
            )
            outcome = WorkResult.failed(str(e) or type(e).__name__)

        try:
            await self.reporter.report(item, outcome)
        except Exception:
            # Reporters are expected to swallow their own errors
            logger.exception("Status report raised: item_id=%s", item.item_id)

        return outcome
