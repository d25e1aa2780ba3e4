"""In-process change feed.

Services publish a snapshot of every committed document; observers subscribe
per collection with an optional predicate and pull changes from their own
queue. A subscription lives until its owner closes it.
"""
from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Optional

logger = logging.getLogger(__name__)

Predicate = Callable[[dict], bool]


@dataclass(frozen=True)
class Change:
    collection: str
    key: Any
    snapshot: dict


class Subscription:
    def __init__(self, feed: "ChangeFeed", collection: str, where: Optional[Predicate]):
        self._feed = feed
        self.collection = collection
        self._where = where
        self._queue: "queue.Queue[Change]" = queue.Queue()
        self.closed = False

    def _offer(self, change: Change) -> None:
        if self.closed:
            return
        if self._where is not None and not self._where(change.snapshot):
            return
        self._queue.put(change)

    def get(self, timeout: Optional[float] = None) -> Optional[Change]:
        """Next change, or None when nothing arrived within ``timeout``."""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> list[Change]:
        out = []
        while True:
            try:
                out.append(self._queue.get_nowait())
            except queue.Empty:
                return out

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._feed._remove(self)

    def __iter__(self) -> Iterator[Change]:
        return iter(self.drain())

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class ChangeFeed:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subs: dict[str, list[Subscription]] = {}

    def init_app(self, app) -> None:
        app.extensions["change_feed"] = self

    def subscribe(self, collection: str, where: Optional[Predicate] = None) -> Subscription:
        sub = Subscription(self, collection, where)
        with self._lock:
            self._subs.setdefault(collection, []).append(sub)
        return sub

    def publish(self, collection: str, key: Any, snapshot: dict) -> None:
        change = Change(collection, key, snapshot)
        with self._lock:
            targets = list(self._subs.get(collection, ()))
        for sub in targets:
            try:
                sub._offer(change)
            except Exception:
                logger.warning("Subscriber on %s failed", collection, exc_info=True)

    def subscriber_count(self, collection: str) -> int:
        with self._lock:
            return len(self._subs.get(collection, ()))

    def _remove(self, sub: Subscription) -> None:
        with self._lock:
            subs = self._subs.get(sub.collection, [])
            if sub in subs:
                subs.remove(sub)
