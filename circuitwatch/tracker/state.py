"""In-memory last-known circuit limits, keyed by instrument token."""
from __future__ import annotations

import logging
import threading
from collections.abc import Mapping

from circuitwatch.domain.models import CircuitState

logger = logging.getLogger(__name__)


class CircuitStateStore:
    """At most one `CircuitState` per token.

    A single lock guards the mapping. The collection loop is the only writer
    today; the lock keeps checkpoint snapshots consistent with it.
    """

    def __init__(self) -> None:
        self._states: dict[int, CircuitState] = {}
        self._lock = threading.Lock()

    def get(self, token: int) -> CircuitState | None:
        with self._lock:
            return self._states.get(token)

    def upsert(self, token: int, state: CircuitState) -> None:
        with self._lock:
            self._states[token] = state

    def __len__(self) -> int:
        with self._lock:
            return len(self._states)

    def __contains__(self, token: object) -> bool:
        with self._lock:
            return token in self._states

    def snapshot(self) -> dict[int, CircuitState]:
        """Independent copy suitable for checkpointing."""
        with self._lock:
            return {
                token: CircuitState(s.lower_limit, s.upper_limit, s.last_price, s.last_update)
                for token, s in self._states.items()
            }

    def warm_start(self, states: Mapping[int, CircuitState]) -> int:
        """Load persisted states without overwriting anything observed since startup."""
        loaded = 0
        with self._lock:
            for token, state in states.items():
                if token not in self._states:
                    self._states[token] = state
                    loaded += 1
        logger.info("state_warm_start loaded=%d total=%d", loaded, len(self._states))
        return loaded


__all__ = ["CircuitStateStore"]
