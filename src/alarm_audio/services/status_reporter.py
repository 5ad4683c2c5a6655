"""Writes the terminal status of each processed queue item.

Also restamps the claims of each chunk right before it is processed. Each
report opens its own short session, so a slow or failed write for one
item never holds a connection or transaction shared with another item.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from alarm_audio.db.models.base import QueueStatus
from alarm_audio.services.audio_queue import AudioQueueService, QueueError

if TYPE_CHECKING:
    import uuid
    from collections.abc import Sequence

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from alarm_audio.services.audio_queue import ClaimedItem
    from alarm_audio.services.dispatcher import WorkResult

logger = logging.getLogger(__name__)


class StatusReporter:
    """Maps a WorkResult onto the queue item's terminal status."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def report(self, item: ClaimedItem, result: WorkResult) -> bool:
        """Record completed or failed for a claimed item.

        Never raises. A store failure is logged and the item stays in
        processing until the stale claim sweep recovers it.

        Returns:
            True if the terminal status was written.
        """
        status = QueueStatus.COMPLETED if result.success else QueueStatus.FAILED

        try:
            async with self._session_factory() as session:
                queue = AudioQueueService(session)
                written = await queue.set_terminal(
                    item.item_id,
                    status,
                    error_message=result.error,
                    claim_token=item.claim_token,
                )
                await session.commit()
        except (QueueError, SQLAlchemyError) as e:
            logger.error(
                "Failed to record queue item status, item left in processing: "
                "item_id=%s, status=%s, error=%s",
                item.item_id,
                status.value,
                e,
            )
            return False

        if not written:
            logger.warning(
                "Queue item no longer held by this claim, status not recorded: "
                "item_id=%s, claim_token=%s",
                item.item_id,
                item.claim_token,
            )
        return written

    async def refresh(self, items: Sequence[ClaimedItem]) -> list[ClaimedItem]:
        """Restamp the claims of items about to start processing.

        Returns:
            The items still held by their claim. On a store failure every
            item is returned unchanged, since terminal writes stay guarded by
            the claim token anyway.
        """
        by_token: dict[str, list[ClaimedItem]] = defaultdict(list)
        for item in items:
            by_token[item.claim_token].append(item)

        held: set[uuid.UUID] = set()
        try:
            async with self._session_factory() as session:
                queue = AudioQueueService(session)
                for token, token_items in by_token.items():
                    held.update(
                        await queue.refresh_claims([i.item_id for i in token_items], token)
                    )
                await session.commit()
        except (QueueError, SQLAlchemyError) as e:
            logger.warning("Failed to refresh queue claims: count=%d, error=%s", len(items), e)
            return list(items)

        return [item for item in items if item.item_id in held]
