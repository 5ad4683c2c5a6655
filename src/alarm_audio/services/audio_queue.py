"""PostgreSQL-backed audio generation queue.

The queue table is shared by any number of concurrent triggers and workers.
Claiming uses a single conditional UPDATE over a
SELECT ... FOR UPDATE SKIP LOCKED subquery, so each eligible item moves from
pending to processing exactly once and a claim either fully succeeds or
changes nothing.

Terminal writes (completed/failed) are conditioned on the item still being
in processing under the same claim token. Once an item is terminal no later
write changes it.

Usage:
    from alarm_audio.services.audio_queue import AudioQueueService

    async with get_async_session() as session:
        queue = AudioQueueService(session)
        items = await queue.claim_batch(limit=50, claim_token="claim-1")
        await session.commit()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError

from alarm_audio.core.config import ClaimOrder
from alarm_audio.db.models.base import QueueStatus
from alarm_audio.db.models.queue import QueueItem

if TYPE_CHECKING:
    import uuid
    from collections.abc import Callable, Sequence

    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = frozenset({QueueStatus.COMPLETED, QueueStatus.FAILED})

CLAIM_EXPIRED_MESSAGE = "claim expired"


class QueueError(Exception):
    """Base exception for audio queue operations."""

    pass


class QueueClaimError(QueueError):
    """Raised when a batch claim could not be performed.

    Nothing was claimed. The caller may retry.
    """

    pass


class QueueItemNotFoundError(QueueError):
    """Raised when a queue item cannot be found."""

    pass


@dataclass(frozen=True)
class ClaimedItem:
    """The minimal, immutable view of a claimed queue item handed to workers."""

    item_id: uuid.UUID
    alarm_id: uuid.UUID
    user_id: uuid.UUID
    claim_token: str | None = None

    @classmethod
    def from_model(cls, item: QueueItem) -> ClaimedItem:
        return cls(
            item_id=item.id,
            alarm_id=item.alarm_id,
            user_id=item.user_id,
            claim_token=item.claimed_by,
        )


def _order_by(order: ClaimOrder) -> tuple:
    """SQL ordering for eligible items. Lower priority values come first."""
    priority = QueueItem.priority.asc().nulls_last()
    scheduled = QueueItem.scheduled_for.asc()
    if order == ClaimOrder.PRIORITY:
        return (priority, scheduled, QueueItem.created_at.asc())
    return (scheduled, priority, QueueItem.created_at.asc())


def _sort_key(order: ClaimOrder) -> Callable[[QueueItem], tuple]:
    """Python equivalent of _order_by, for rows returned by UPDATE ... RETURNING."""

    def key(item: QueueItem) -> tuple:
        priority = (item.priority is None, item.priority or 0)
        if order == ClaimOrder.PRIORITY:
            return (*priority, item.scheduled_for)
        return (item.scheduled_for, *priority)

    return key


class AudioQueueService:
    """Store operations over the audio generation queue.

    The service flushes but never commits. Callers own the transaction so a
    claim or a terminal write is committed (or rolled back) as one unit.

    Attributes:
        session: SQLAlchemy async session for database operations.
        default_max_retries: Retry budget for newly enqueued items.
    """

    def __init__(self, session: AsyncSession, default_max_retries: int = 3) -> None:
        self.session = session
        self.default_max_retries = default_max_retries

    async def enqueue(
        self,
        alarm_id: uuid.UUID,
        user_id: uuid.UUID,
        scheduled_for: datetime | None = None,
        priority: int | None = None,
        max_retries: int | None = None,
    ) -> QueueItem:
        """Add a pending item to the queue.

        Args:
            alarm_id: Alarm whose audio should be generated.
            user_id: Owner of the alarm.
            scheduled_for: Earliest processing time. Defaults to now.
            priority: Optional priority (lower = sooner when ordering by priority).
            max_retries: Retry budget. Defaults to default_max_retries.

        Returns:
            The new QueueItem.

        Raises:
            QueueError: If the item cannot be written.
        """
        item = QueueItem(
            alarm_id=alarm_id,
            user_id=user_id,
            scheduled_for=scheduled_for or datetime.now(UTC),
            status=QueueStatus.PENDING,
            priority=priority,
            retry_count=0,
            max_retries=max_retries if max_retries is not None else self.default_max_retries,
        )

        try:
            self.session.add(item)
            await self.session.flush()
        except SQLAlchemyError as e:
            logger.error("Failed to enqueue queue item: %s", str(e))
            raise QueueError(f"Failed to enqueue queue item: {e}") from e

        logger.info(
            "Queue item enqueued: item_id=%s, alarm_id=%s, scheduled_for=%s",
            item.id,
            alarm_id,
            item.scheduled_for.isoformat(),
        )
        return item

    async def find_eligible(
        self,
        limit: int,
        order: ClaimOrder = ClaimOrder.SCHEDULED,
        now: datetime | None = None,
    ) -> list[QueueItem]:
        """List pending items whose scheduled time has passed.

        This is a read-only view; it does not claim anything.
        """
        if limit <= 0:
            return []

        query = (
            select(QueueItem)
            .where(
                QueueItem.status == QueueStatus.PENDING,
                QueueItem.scheduled_for <= (now or datetime.now(UTC)),
            )
            .order_by(*_order_by(order))
            .limit(limit)
        )

        try:
            result = await self.session.execute(query)
        except SQLAlchemyError as e:
            raise QueueError(f"Failed to list eligible items: {e}") from e
        return list(result.scalars().all())

    async def conditional_transition(
        self,
        item_ids: Sequence[uuid.UUID],
        from_status: QueueStatus,
        to_status: QueueStatus,
    ) -> list[uuid.UUID]:
        """Move items from one status to another, only where they still hold from_status.

        Returns:
            The ids that actually moved. Items already in another state are
            left untouched and omitted.
        """
        if not item_ids:
            return []

        values: dict = {"status": to_status}
        if to_status in TERMINAL_STATUSES:
            values["processed_at"] = datetime.now(UTC)

        stmt = (
            update(QueueItem)
            .where(QueueItem.id.in_(item_ids), QueueItem.status == from_status)
            .values(**values)
            .returning(QueueItem.id)
        )

        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as e:
            raise QueueError(f"Failed to transition queue items: {e}") from e

        moved = list(result.scalars().all())
        logger.debug(
            "Queue items transitioned: from=%s, to=%s, requested=%d, moved=%d",
            from_status.value,
            to_status.value,
            len(item_ids),
            len(moved),
        )
        return moved

    async def claim_batch(
        self,
        limit: int,
        order: ClaimOrder = ClaimOrder.SCHEDULED,
        claim_token: str | None = None,
        now: datetime | None = None,
    ) -> list[ClaimedItem]:
        """Atomically claim up to `limit` eligible items.

        Selection and the pending -> processing transition happen in one
        statement. Rows locked by a concurrent claim are skipped, and the
        status guard in the outer WHERE means a row can only be claimed once.

        Args:
            limit: Maximum number of items to claim.
            order: Ordering of eligible items.
            claim_token: Identifier recorded on every claimed row.
            now: Claim time. Defaults to now.

        Returns:
            The claimed items, in claim order. Empty when nothing is eligible.

        Raises:
            QueueClaimError: If the claim statement fails. Nothing was claimed.
        """
        if limit <= 0:
            return []

        now = now or datetime.now(UTC)
        eligible = (
            select(QueueItem.id)
            .where(
                QueueItem.status == QueueStatus.PENDING,
                QueueItem.scheduled_for <= now,
            )
            .order_by(*_order_by(order))
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        stmt = (
            update(QueueItem)
            .where(QueueItem.id.in_(eligible), QueueItem.status == QueueStatus.PENDING)
            .values(
                status=QueueStatus.PROCESSING,
                claimed_at=now,
                claimed_by=claim_token,
            )
            .returning(QueueItem)
            .execution_options(synchronize_session=False)
        )

        try:
            result = await self.session.execute(stmt)
            rows = list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error("Failed to claim queue items: %s", str(e))
            raise QueueClaimError(f"Failed to claim queue items: {e}") from e

        # RETURNING does not preserve the subquery order
        rows.sort(key=_sort_key(order))
        claimed = [ClaimedItem.from_model(row) for row in rows]

        if claimed:
            logger.info(
                "Queue items claimed: count=%d, limit=%d, order=%s, claim_token=%s",
                len(claimed),
                limit,
                order.value,
                claim_token,
            )
        return claimed

    async def refresh_claims(
        self,
        item_ids: Sequence[uuid.UUID],
        claim_token: str,
        now: datetime | None = None,
    ) -> list[uuid.UUID]:
        """Restamp claimed_at on items this claim still holds.

        Called right before items start processing, so items waiting behind
        earlier chunks of the same batch are not mistaken for orphans by the
        stale claim sweep.

        Returns:
            The ids still held by claim_token. Items reclaimed in the meantime
            are left untouched and omitted.
        """
        if not item_ids:
            return []

        stmt = (
            update(QueueItem)
            .where(
                QueueItem.id.in_(item_ids),
                QueueItem.status == QueueStatus.PROCESSING,
                QueueItem.claimed_by == claim_token,
            )
            .values(claimed_at=now or datetime.now(UTC))
            .returning(QueueItem.id)
        )

        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as e:
            raise QueueError(f"Failed to refresh queue claims: {e}") from e

        held = list(result.scalars().all())
        if len(held) < len(item_ids):
            logger.warning(
                "Queue items lost their claim before processing: claim_token=%s, lost=%d",
                claim_token,
                len(item_ids) - len(held),
            )
        return held

    async def set_terminal(
        self,
        item_id: uuid.UUID,
        status: QueueStatus,
        error_message: str | None = None,
        claim_token: str | None = None,
    ) -> bool:
        """Record the final outcome of a claimed item.

        The write only applies while the item is in processing (and, when a
        claim token is given, still held by that claim). completed clears
        error_message; failed stores it. Both stamp processed_at.

        Returns:
            True if the item was updated, False if it was no longer claimed.

        Raises:
            ValueError: If status is not terminal.
            QueueError: If the write fails.
        """
        if status not in TERMINAL_STATUSES:
            msg = f"Not a terminal status: {status.value}"
            raise ValueError(msg)

        conditions = [QueueItem.id == item_id, QueueItem.status == QueueStatus.PROCESSING]
        if claim_token is not None:
            conditions.append(QueueItem.claimed_by == claim_token)

        if status == QueueStatus.FAILED:
            message = error_message or "Unknown error"
        else:
            message = None

        stmt = (
            update(QueueItem)
            .where(*conditions)
            .values(
                status=status,
                processed_at=datetime.now(UTC),
                error_message=message,
            )
            .returning(QueueItem.id)
        )

        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as e:
            logger.error("Failed to record terminal status: item_id=%s, error=%s", item_id, e)
            raise QueueError(f"Failed to update queue item {item_id}: {e}") from e

        written = result.scalar_one_or_none() is not None
        if written:
            logger.info(
                "Queue item finished: item_id=%s, status=%s",
                item_id,
                status.value,
            )
        return written

    async def get_item(self, item_id: uuid.UUID) -> QueueItem:
        """Fetch one queue item.

        Raises:
            QueueItemNotFoundError: If no such item exists.
        """
        query = select(QueueItem).where(QueueItem.id == item_id)
        result = await self.session.execute(query)
        item = result.scalar_one_or_none()
        if item is None:
            raise QueueItemNotFoundError(f"Queue item not found: {item_id}")
        return item

    async def get_pending_count(self, now: datetime | None = None) -> int:
        """Count pending items that are eligible now."""
        query = (
            select(func.count())
            .select_from(QueueItem)
            .where(
                QueueItem.status == QueueStatus.PENDING,
                QueueItem.scheduled_for <= (now or datetime.now(UTC)),
            )
        )
        try:
            result = await self.session.execute(query)
        except SQLAlchemyError as e:
            raise QueueError(f"Failed to count pending items: {e}") from e
        return result.scalar() or 0

    async def get_status_counts(self) -> dict[str, int]:
        """Count items per status. Every status is present in the result."""
        query = select(QueueItem.status, func.count()).group_by(QueueItem.status)
        try:
            result = await self.session.execute(query)
        except SQLAlchemyError as e:
            raise QueueError(f"Failed to count queue items: {e}") from e

        counts = {status.value: 0 for status in QueueStatus}
        for status, count in result.all():
            counts[status.value] = count
        return counts

    async def reclaim_stale_items(
        self,
        stale_after_seconds: int,
        now: datetime | None = None,
    ) -> tuple[int, int]:
        """Recover items stuck in processing after their claimant disappeared.

        An item whose claim is older than the threshold goes back to pending
        with retry_count incremented, unless that exhausts its retry budget,
        in which case it becomes failed with "claim expired".

        Returns:
            Tuple of (requeued count, failed count).
        """
        now = now or datetime.now(UTC)
        threshold = now - timedelta(seconds=stale_after_seconds)
        stale = (
            QueueItem.status == QueueStatus.PROCESSING,
            QueueItem.claimed_at < threshold,
        )
        next_retry = QueueItem.retry_count + 1

        exhausted_stmt = (
            update(QueueItem)
            .where(*stale, next_retry >= QueueItem.max_retries)
            .values(
                status=QueueStatus.FAILED,
                retry_count=next_retry,
                error_message=CLAIM_EXPIRED_MESSAGE,
                processed_at=now,
            )
            .returning(QueueItem.id)
        )
        requeue_stmt = (
            update(QueueItem)
            .where(*stale, next_retry < QueueItem.max_retries)
            .values(
                status=QueueStatus.PENDING,
                retry_count=next_retry,
                claimed_at=None,
                claimed_by=None,
            )
            .returning(QueueItem.id)
        )

        try:
            failed = list((await self.session.execute(exhausted_stmt)).scalars().all())
            requeued = list((await self.session.execute(requeue_stmt)).scalars().all())
        except SQLAlchemyError as e:
            logger.error("Failed to reclaim stale queue items: %s", str(e))
            raise QueueError(f"Failed to reclaim stale queue items: {e}") from e

        if failed or requeued:
            logger.warning(
                "Stale claims reclaimed: requeued=%d, failed=%d, threshold=%s",
                len(requeued),
                len(failed),
                threshold.isoformat(),
            )
        return len(requeued), len(failed)
