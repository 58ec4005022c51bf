"""
Change notification

Callers that want to stay current subscribe with a filter and iterate
the returned Subscription: the first item is the current state, and a
fresh full snapshot follows every committed batch that may touch the
subscriber's owner.

Snapshots are loaded after the batch is committed, so a subscriber can
see a state that is already stale but never one that is half applied.
Cancelling only detaches the listener; there is no work in flight to
abort.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional

import structlog

from ledger_engine.models.records import BatchOp, PutOp

SnapshotLoader = Callable[[], Awaitable[Any]]

logger = structlog.get_logger(__name__)

_CLOSED = object()


def may_affect_owner(ops: list[BatchOp], owner_id: str) -> bool:
    """
    Whether a committed batch can change what owner_id sees.

    Deletes carry only a key and card expenses carry no owner, so both
    count as possibly affecting everyone.
    """
    for op in ops:
        if not isinstance(op, PutOp):
            return True
        if getattr(op.record, "owner_id", owner_id) == owner_id:
            return True
    return False


class Subscription:
    """
    A cancellable async stream of snapshots.

    Usage:
        subscription = await ledger.subscribe(owner_id, filter)
        async for snapshot in subscription:
            render(snapshot)
        ...
        subscription.cancel()
    """

    def __init__(
        self,
        feed: "ChangeFeed",
        loader: SnapshotLoader,
        owner_id: Optional[str] = None,
    ):
        self._feed = feed
        self._loader = loader
        self._owner_id = owner_id
        self._queue: asyncio.Queue = asyncio.Queue()
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def wants(self, ops: list[BatchOp]) -> bool:
        """Whether a batch warrants a fresh snapshot."""
        return self._owner_id is None or may_affect_owner(ops, self._owner_id)

    async def refresh(self) -> None:
        """Load a snapshot and queue it for the reader."""
        if self._cancelled:
            return
        snapshot = await self._loader()
        self._queue.put_nowait(snapshot)

    def cancel(self) -> None:
        """Detach from the feed and end iteration."""
        if self._cancelled:
            return
        self._cancelled = True
        self._feed.detach(self)
        self._queue.put_nowait(_CLOSED)

    async def next_snapshot(self, timeout: Optional[float] = None) -> Any:
        """
        Wait for the next snapshot.

        Raises:
            StopAsyncIteration: If the subscription was cancelled
            asyncio.TimeoutError: If timeout elapses first
        """
        if timeout is None:
            item = await self._queue.get()
        else:
            item = await asyncio.wait_for(self._queue.get(), timeout)
        if item is _CLOSED:
            # Keep the sentinel so every later read also stops
            self._queue.put_nowait(_CLOSED)
            raise StopAsyncIteration
        return item

    def pending(self) -> int:
        """Snapshots queued and not yet read."""
        size = self._queue.qsize()
        # A cancelled subscription always holds exactly one sentinel
        return size - 1 if self._cancelled and size else size

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> Any:
        return await self.next_snapshot()


class ChangeFeed:
    """Fans committed batches out to every live subscription."""

    def __init__(self):
        self._subscriptions: list[Subscription] = []

    async def subscribe(
        self,
        loader: SnapshotLoader,
        owner_id: Optional[str] = None,
    ) -> Subscription:
        """
        Attach a subscription and queue its initial snapshot.

        With an owner_id, batches that only touch other owners are skipped.
        """
        subscription = Subscription(self, loader, owner_id)
        self._subscriptions.append(subscription)
        await subscription.refresh()
        return subscription

    def detach(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    async def publish(self, ops: list[BatchOp]) -> None:
        """Commit listener: refresh every subscription the batch may affect."""
        for subscription in list(self._subscriptions):
            if not subscription.wants(ops):
                continue
            try:
                await subscription.refresh()
            except Exception as e:
                # A failing loader must not starve the other subscribers
                logger.error(
                    "snapshot_refresh_failed",
                    error=str(e),
                    op_count=len(ops),
                )
