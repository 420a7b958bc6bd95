#!/usr/bin/env python3
"""
locks.py
--------
Per-target mutual exclusion.

Only one apply or replay may run for a given target key at a time. Locks
are created on demand and dropped once nobody holds or waits for them.

A hold can outlive its ``with`` block: when a store write is still running
after its timeout, the key stays locked until that write settles.
"""
# --- Annotations ---
from __future__ import annotations

# --- Standard library imports ---
import threading
from concurrent.futures import Future
from contextlib import contextmanager
from typing import Dict, Iterator, Optional

# --- Local imports ---
from dataagents.core.exceptions import ConflictError


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


class LockHold:
    """
    Handle on a held key.

    Attributes:
        key: The held key
        deferred_to: Future the release waits for, if any
    """

    def __init__(self, table: "KeyedLockTable", key: str) -> None:
        self.table = table
        self.key = key
        self.deferred_to: Optional[Future] = None

    @property
    def deferred(self) -> bool:
        return self.deferred_to is not None

    def release_when_done(self, future: Future) -> None:
        """Keep the key locked until ``future`` settles."""
        self.deferred_to = future

    def close(self) -> None:
        if self.deferred_to is None:
            self.table.release(self.key)
        else:
            self.deferred_to.add_done_callback(lambda _future: self.table.release(self.key))


class KeyedLockTable:
    """
    Table of locks keyed by a string (TargetKey.as_string()).

    Usage:
        table = KeyedLockTable()
        with table.hold(key.as_string()):
            ...
        with table.hold(key.as_string(), blocking=False):
            ...                         # raises ConflictError when busy
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._entries: Dict[str, _Entry] = {}

    def _checkout(self, key: str) -> _Entry:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = _Entry()
            entry.users += 1
            return entry

    def _checkin(self, key: str, entry: _Entry) -> None:
        with self._guard:
            entry.users -= 1
            if entry.users == 0 and self._entries.get(key) is entry:
                del self._entries[key]

    def acquire(self, key: str, timeout: Optional[float] = None) -> bool:
        """Block until ``key`` is held (or ``timeout`` seconds elapse)."""
        entry = self._checkout(key)
        acquired = entry.lock.acquire(timeout=-1 if timeout is None else timeout)
        if not acquired:
            self._checkin(key, entry)
        return acquired

    def try_acquire(self, key: str) -> bool:
        """Take ``key`` only if it is free."""
        entry = self._checkout(key)
        acquired = entry.lock.acquire(blocking=False)
        if not acquired:
            self._checkin(key, entry)
        return acquired

    def release(self, key: str) -> None:
        with self._guard:
            entry = self._entries.get(key)
        if entry is None:
            raise RuntimeError(f"Lock for {key!r} is not held")
        entry.lock.release()
        self._checkin(key, entry)

    def is_locked(self, key: str) -> bool:
        with self._guard:
            entry = self._entries.get(key)
            return entry is not None and entry.lock.locked()

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)

    @contextmanager
    def hold(self, key: str, blocking: bool = True) -> Iterator[LockHold]:
        """
        Hold ``key`` for the duration of the block.

        The release is postponed when ``LockHold.release_when_done`` was
        called inside the block.

        Raises:
            ConflictError: When ``blocking`` is False and the key is busy
        """
        if blocking:
            self.acquire(key)
        elif not self.try_acquire(key):
            raise ConflictError(key, message=f"Target {key} is already being applied")
        held = LockHold(self, key)
        try:
            yield held
        finally:
            held.close()
