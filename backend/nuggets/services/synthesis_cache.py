"""
Write-once cache for group-level digest synthesis.

The cache entry lives on the processing group row. `get_or_compute` reads it,
and only on a miss runs the expensive computation and stores the result with a
conditional write that never replaces an existing value. Whatever value is stored
is what every caller gets back, so a racing second computation is wasted money
but never a second answer.

Within one process a per-key lock keeps concurrent callers (e.g. several join
checks firing together) down to a single computation.
"""
from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Any, Callable, Dict, Protocol

logger = logging.getLogger(__name__)


class SynthesisBackend(Protocol):
    def read_synthesis(self, group_id: str) -> Dict[str, Any] | None: ...

    def write_synthesis_once(self, group_id: str, value: Dict[str, Any]) -> bool: ...


class DigestSynthesisCache:
    def __init__(self, backend: SynthesisBackend) -> None:
        self.backend = backend
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, group_key: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(group_key)
            if lock is None:
                lock = self._locks[group_key] = threading.Lock()
            return lock

    def _release_lock(self, group_key: str, lock: threading.Lock) -> None:
        # Once a value is stored every later caller returns before locking
        with self._locks_guard:
            if self._locks.get(group_key) is lock:
                del self._locks[group_key]

    def get_or_compute(
        self,
        group_key: str,
        compute_fn: Callable[[], Dict[str, Any]],
    ) -> Dict[str, Any]:
        cached = self.backend.read_synthesis(group_key)
        if cached is not None:
            return cached

        lock = self._lock_for(group_key)
        try:
            with lock:
                return self._compute_and_store(group_key, compute_fn)
        finally:
            self._release_lock(group_key, lock)

    def _compute_and_store(
        self,
        group_key: str,
        compute_fn: Callable[[], Dict[str, Any]],
    ) -> Dict[str, Any]:
        # Another thread may have filled it while we waited
        cached = self.backend.read_synthesis(group_key)
        if cached is not None:
            return cached

        value = dict(compute_fn())
        value.setdefault("generated_at", datetime.utcnow().isoformat() + "Z")

        if self.backend.write_synthesis_once(group_key, value):
            logger.info(
                "Synthesis cached",
                extra={"group_id": group_key, "step": "synthesis_cache"},
            )
            return value

        # Lost the race to another process: serve the stored value
        stored = self.backend.read_synthesis(group_key)
        logger.info(
            "Synthesis already cached by another writer",
            extra={"group_id": group_key, "step": "synthesis_cache"},
        )
        return stored if stored is not None else value
