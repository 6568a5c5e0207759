# src/session_guard/request_queue.py
"""
FIFO holding area for calls that could not be sent while offline.

Each entry carries the request descriptor and the future its original
caller is awaiting. Entries leave the queue exactly once: resolved by a
successful replay, rejected by the replay's terminal failure, or rejected
with QueueCleared by an explicit clear.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Tuple

import httpx

from .clock import Clock, LoopClock
from .error_handler import NetworkUnreachable, QueueCleared, RequestEvicted

lib_logger = logging.getLogger("session_guard")


@dataclass
class RequestDescriptor:
    """Everything needed to (re)issue a call. The credential is attached per attempt."""

    method: str
    path: str
    json: Optional[Any] = None
    params: Optional[Dict[str, Any]] = None
    headers: Dict[str, str] = field(default_factory=dict)
    timeout: Optional[float] = None
    # Also carry the credential in the JSON body (identity verification)
    embed_credential: bool = False

    def __str__(self):
        return f"{self.method} {self.path}"


@dataclass
class QueuedRequest:
    descriptor: RequestDescriptor
    future: asyncio.Future
    enqueued_at: float

    def resolve(self, response: httpx.Response) -> None:
        if not self.future.done():
            self.future.set_result(response)

    def reject(self, error: BaseException) -> None:
        if not self.future.done():
            self.future.set_exception(error)


Replay = Callable[[RequestDescriptor], Awaitable[httpx.Response]]


class RequestQueue:
    """
    Bounded FIFO of deferred requests with a single-flight sequential drain.

    When full, enqueueing evicts the oldest entry and rejects it with
    RequestEvicted.
    """

    def __init__(self, max_size: int = 100, clock: Optional[Clock] = None):
        self.max_size = max_size
        self._clock = clock or LoopClock()
        self._entries: Deque[QueuedRequest] = deque()
        self._drain_task: Optional[asyncio.Task] = None
        # Set when drain() is called while a drain runs; the running drain takes another snapshot
        self._drain_requested = False
        # Snapshot currently being replayed; still pending from the callers' view
        self._batch: List[QueuedRequest] = []

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def is_draining(self) -> bool:
        return self._drain_task is not None and not self._drain_task.done()

    def enqueue(self, descriptor: RequestDescriptor) -> asyncio.Future:
        """Append to the tail. The returned future settles only when the entry is dispatched or cleared."""
        future = asyncio.get_running_loop().create_future()
        while len(self._entries) >= self.max_size:
            evicted = self._entries.popleft()
            lib_logger.warning(
                f"Offline queue full ({self.max_size}), evicting oldest request {evicted.descriptor}"
            )
            evicted.reject(RequestEvicted(self.max_size))
        self._entries.append(
            QueuedRequest(descriptor=descriptor, future=future, enqueued_at=self._clock.time())
        )
        lib_logger.info(f"Queued {descriptor} for replay ({len(self._entries)} pending)")
        return future

    def drain(self, replay: Replay) -> asyncio.Task:
        """
        Start replaying queued entries, unless a drain is already running,
        in which case that drain is returned. Entries queued meanwhile are
        picked up by the running drain once its current snapshot is done.
        """
        if self.is_draining:
            lib_logger.debug("Queue drain already running")
            self._drain_requested = True
            return self._drain_task
        self._drain_task = asyncio.get_running_loop().create_task(self._drain(replay))
        return self._drain_task

    async def _drain(self, replay: Replay) -> int:
        replayed = 0
        while True:
            self._drain_requested = False
            batch: List[QueuedRequest] = list(self._entries)
            self._entries.clear()
            if not batch:
                break

            lib_logger.info(f"Draining {len(batch)} queued request(s)")
            count, interrupted = await self._replay_batch(batch, replay)
            replayed += count
            if interrupted or not self._drain_requested:
                break

        if replayed:
            lib_logger.info(f"Queue drain complete: {replayed} request(s) replayed")
        return replayed

    async def _replay_batch(self, batch: List[QueuedRequest], replay: Replay) -> Tuple[int, bool]:
        """Replay one snapshot in order. Returns (replayed, stopped by network loss)."""
        self._batch = batch
        replayed = 0
        try:
            for index, entry in enumerate(batch):
                if entry.future.done():
                    # Caller stopped waiting, or the queue was cleared
                    continue
                try:
                    response = await replay(entry.descriptor)
                except NetworkUnreachable:
                    self._requeue_front(batch[index:])
                    lib_logger.warning(
                        f"Network lost while draining; {len(batch) - index} request(s) returned to the queue"
                    )
                    return replayed, True
                except asyncio.CancelledError:
                    self._requeue_front(batch[index:])
                    raise
                except Exception as e:
                    entry.reject(e)
                else:
                    entry.resolve(response)
                replayed += 1
        finally:
            self._batch = []
        return replayed, False

    def _requeue_front(self, entries: List[QueuedRequest]) -> None:
        pending = [entry for entry in entries if not entry.future.done()]
        self._entries.extendleft(reversed(pending))
        while len(self._entries) > self.max_size:
            evicted = self._entries.popleft()
            evicted.reject(RequestEvicted(self.max_size))

    def clear(self, error: Optional[QueueCleared] = None) -> int:
        """Reject every pending entry and empty the queue. Returns how many were rejected."""
        entries = [entry for entry in self._batch if not entry.future.done()]
        entries.extend(self._entries)
        self._entries.clear()
        for entry in entries:
            entry.reject(error or QueueCleared())
        if entries:
            lib_logger.info(f"Request queue cleared ({len(entries)} request(s) rejected)")
        return len(entries)

    def cancel_drain(self) -> None:
        if self.is_draining:
            self._drain_task.cancel()
        self._drain_task = None
