"""
Admission control — bounds how many live streams run at once.

The pool is sized from the Tablo device's tuner count (or configuration) at
startup. ``try_acquire`` / ``release`` are serialised with a lock so the
counter can never exceed capacity, even when handlers run on worker threads.
"""

from __future__ import annotations

import logging
import threading

from .errors import ConfigurationError
from .models import AdmissionResult

logger = logging.getLogger(__name__)


class AdmissionController:
    """Owns the tuner pool: ``{capacity, in_use}``."""

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ConfigurationError(f"Tuner capacity must be at least 1, got {capacity}")
        self._capacity = capacity
        self._in_use = 0
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def in_use(self) -> int:
        return self._in_use

    @property
    def available(self) -> int:
        return self._capacity - self._in_use

    def try_acquire(self) -> AdmissionResult:
        with self._lock:
            if self._in_use >= self._capacity:
                return AdmissionResult(granted=False, current_use=self._in_use)
            self._in_use += 1
            return AdmissionResult(granted=True, current_use=self._in_use)

    def release(self) -> None:
        with self._lock:
            self._in_use = max(0, self._in_use - 1)
            in_use = self._in_use
        logger.debug("Tuner released (%d/%d in use)", in_use, self._capacity)

    def lease(self) -> TunerLease | None:
        """Acquire a slot wrapped in a :class:`TunerLease`, or ``None`` if busy."""
        result = self.try_acquire()
        if not result.granted:
            return None
        logger.debug("Tuner acquired (%d/%d in use)", result.current_use, self._capacity)
        return TunerLease(self)


class TunerLease:
    """One granted slot. ``release()`` only takes effect the first time."""

    def __init__(self, controller: AdmissionController) -> None:
        self._controller = controller
        self._released = False
        self._lock = threading.Lock()

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> bool:
        """Return the slot to the pool; returns ``False`` if already returned."""
        with self._lock:
            if self._released:
                return False
            self._released = True
        self._controller.release()
        return True
