"""Post-commit change notifications for live dashboard subscriptions."""

from __future__ import annotations

import itertools
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Callable, Sequence

from labreserve.utils.logger import get_logger


logger = get_logger(__name__)

SYSTEMS_COLLECTION = "systems"
REQUESTS_COLLECTION = "requests"

_callback_scope = threading.local()


@dataclass(frozen=True)
class ChangeEvent:
    collection: str
    document_id: str


ChangeCallback = Callable[[tuple[ChangeEvent, ...]], None]


def in_change_callback() -> bool:
    """True while the current thread is running a subscriber callback."""
    return bool(getattr(_callback_scope, "active", False))


class ChangeFeed:
    """Fans committed change batches out to subscribers on a worker pool.

    Publishing never blocks on subscribers. Each callback runs as its own task,
    so a slow or failing subscriber does not delay or break the others.
    """

    def __init__(self, max_workers: int = 2) -> None:
        self._executor = ThreadPoolExecutor(
            max_workers=max(1, max_workers),
            thread_name_prefix="change-feed",
        )
        self._subscribers: dict[int, ChangeCallback] = {}
        self._ids = itertools.count(1)
        self._lock = threading.RLock()
        self._pending: set[Future] = set()
        self._closed = False

    def subscribe(self, callback: ChangeCallback) -> Callable[[], None]:
        token = next(self._ids)
        with self._lock:
            self._subscribers[token] = callback

        def unsubscribe() -> None:
            with self._lock:
                self._subscribers.pop(token, None)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, events: Sequence[ChangeEvent]) -> None:
        batch = tuple(events)
        if not batch:
            return
        with self._lock:
            if self._closed:
                logger.debug("Change feed closed; dropping %s events", len(batch))
                return
            callbacks = list(self._subscribers.values())
            for callback in callbacks:
                future = self._executor.submit(self._deliver, callback, batch)
                self._pending.add(future)
                future.add_done_callback(self._forget)

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)

    def _deliver(self, callback: ChangeCallback, batch: tuple[ChangeEvent, ...]) -> None:
        _callback_scope.active = True
        try:
            callback(batch)
        except Exception:
            logger.exception("Change subscriber failed | events=%s", len(batch))
        finally:
            _callback_scope.active = False

    def wait_idle(self, timeout: float = 5.0) -> bool:
        """Block until queued deliveries finish; returns False on timeout."""
        with self._lock:
            pending = list(self._pending)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def close(self) -> None:
        with self._lock:
            self._closed = True
        self._executor.shutdown(wait=True)
