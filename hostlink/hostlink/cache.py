"""Last-known live state per host.

The cache lets a freshly created aggregator show the previous snapshot of a
host while its first poll is still in flight. It is an explicit object handed
to the aggregator; :class:`NullLiveStateCache` is the variant for contexts
where no cache is available.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from .live import HostLiveState

DEFAULT_CACHE_SIZE = 100


class StateCache(Protocol):
    """Storage for the last known state of each host."""

    def get(self, host_id: str) -> HostLiveState | None: ...

    def put(self, host_id: str, state: HostLiveState) -> None: ...

    def discard(self, host_id: str) -> None: ...


class LiveStateCache:
    """Bounded in-memory cache, evicting the stalest entries first."""

    def __init__(self, max_size: int = DEFAULT_CACHE_SIZE) -> None:
        self.max_size = max_size
        self._entries: dict[str, HostLiveState] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, host_id: object) -> bool:
        return host_id in self._entries

    def get(self, host_id: str) -> HostLiveState | None:
        return self._entries.get(host_id)

    def put(self, host_id: str, state: HostLiveState) -> None:
        self._entries[host_id] = state
        self._evict()

    def discard(self, host_id: str) -> None:
        self._entries.pop(host_id, None)

    def _evict(self) -> None:
        excess = len(self._entries) - self.max_size
        if excess <= 0:
            return
        # Entries without a timestamp go first, then oldest update; ties keep insertion order
        ranked = sorted(
            self._entries.items(),
            key=lambda item: item[1].last_update.timestamp() if item[1].last_update else 0.0,
        )
        for host_id, _ in ranked[:excess]:
            del self._entries[host_id]


class NullLiveStateCache:
    """Cache that remembers nothing."""

    def get(self, host_id: str) -> HostLiveState | None:  # noqa: ARG002
        return None

    def put(self, host_id: str, state: HostLiveState) -> None:  # noqa: ARG002
        pass

    def discard(self, host_id: str) -> None:  # noqa: ARG002
        pass
