"""
Single-writer commit queue.

- Finished sessions are committed by one background thread, oldest first,
  so rows land in the order the sessions finished.
- The tick loop only appends; it never waits on the database.
- In-memory only: whatever is still queued when the process dies is lost.
"""

from __future__ import annotations
import logging
import threading
import time
from collections import deque
from typing import Deque

from .state import SessionRecord

log = logging.getLogger("storage")


class CommitQueue:
    def __init__(self, sink, name: str = "commit-writer"):
        self.sink = sink
        self._cond = threading.Condition()
        self._q: Deque[SessionRecord] = deque()
        self._busy = False
        self._closed = False
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)
        self._thread.start()

    # -------- public API --------
    def submit(self, record: SessionRecord) -> None:
        with self._cond:
            if self._closed:
                raise RuntimeError("commit queue is closed")
            self._q.append(record)
            self._cond.notify_all()

    def size(self) -> int:
        with self._cond:
            return len(self._q) + (1 if self._busy else 0)

    def drain(self, timeout: float | None = None) -> bool:
        """Wait until every submitted record was written (or failed). False on timeout."""
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while self._q or self._busy:
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return False
                self._cond.wait(remaining)
            return True

    def close(self, timeout: float | None = None) -> bool:
        flushed = self.drain(timeout)
        with self._cond:
            self._closed = True
            self._cond.notify_all()
        self._thread.join(timeout)
        return flushed

    # -------- worker --------
    def _run(self) -> None:
        while True:
            with self._cond:
                while not self._q and not self._closed:
                    self._cond.wait()
                if not self._q:
                    return
                record = self._q.popleft()
                self._busy = True
            try:
                self._write(record)
            finally:
                with self._cond:
                    self._busy = False
                    self._cond.notify_all()

    def _write(self, record: SessionRecord) -> None:
        try:
            self.sink.commit(record)
        except Exception as e:
            log.error("Error saving to database: %s", e)
        try:
            self.sink.commit_artists(record)
        except Exception as e:
            log.error("Error saving artists to database: %s", e)
