"""
Infrastructure Cache

Process-wide memo of the last resolved topology. Owned by the executor and
passed to handlers; nothing else holds topology state.
"""

import logging
import threading
from typing import Callable, Optional

from migrate_executor.models import TopologyCache

logger = logging.getLogger(__name__)


class InfrastructureCache:
    """
    Lazily resolved TopologyCache.

    The snapshot is replaced wholesale on rebuild, never mutated in place.
    The lock only guards the assignment; resolution runs without it, so two
    concurrent rebuilds both hit the remote API and the last one wins.
    """

    def __init__(self, resolve: Callable[[], Optional[TopologyCache]]):
        """
        Args:
            resolve: Callable returning a fresh TopologyCache or None
                     (usually TopologyResolver(...).resolve)
        """
        self._resolve = resolve
        self._snapshot: Optional[TopologyCache] = None
        self._lock = threading.Lock()

    @property
    def is_cached(self) -> bool:
        return self._snapshot is not None

    def get(self) -> Optional[TopologyCache]:
        snapshot = self._snapshot
        if snapshot is not None:
            return snapshot
        return self.rebuild()

    def rebuild(self) -> Optional[TopologyCache]:
        snapshot = self._resolve()
        # Unresolvable topologies are not cached so the next call retries
        with self._lock:
            self._snapshot = snapshot
        return snapshot

    def invalidate(self):
        with self._lock:
            self._snapshot = None
        logger.info("Infrastructure cache cleared")
