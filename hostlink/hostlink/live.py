"""Live state synchronization across many agent hosts.

This module provides :class:`LiveStateAggregator`, which keeps one
:class:`HostLiveState` per tracked host fresh by polling (or streaming) the
requested features, and exposes the merged view as a read-only mapping.

Polling model:
    - Every host runs its own poll cycle; cycles of different hosts run
      concurrently and never wait for each other.
    - Inside a cycle the requested features (sessions, host metrics, docker)
      are fetched concurrently. A failed feature keeps its previous data and
      only sets the host's ``error``.
    - There is at most one in-flight request per host-feature pair. A
      ``refresh()`` while one is in flight joins it.
    - Every cycle records the host's tracking epoch. ``disable()`` and a
      changed host config bump the epoch, and a cycle that finishes under an
      older epoch is dropped, so a slow stale response can never overwrite
      fresher state.
    - Online hosts are re-polled every ``interval``; offline hosts back off
      exponentially up to ``max_backoff`` (never faster than ``interval``).
    - ``disable()`` cancels every timer and request; ``enable()`` starts with an
      immediate poll.

Timers go through an injectable ``call_later`` so tests can drive the clock.
"""

from __future__ import annotations

import asyncio
import dataclasses
import functools
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Protocol

import structlog

from .cache import NullLiveStateCache, StateCache
from .client import RemoteAgentClient
from .errors import AgentError
from .events import LiveEventStream, LiveSnapshot, LiveStreamError
from .models import HostConfig, LiveConfig, LiveTransport
from .probes import describe_probe_failure

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Iterator, Mapping

    from .payloads import DockerContainer, DockerSnapshot, HostInfo, Session

logger = structlog.get_logger(__name__)


class HostStatus(str, Enum):
    """Reachability of a host as seen by the aggregator."""

    CHECKING = "checking"
    ONLINE = "online"
    OFFLINE = "offline"


class LiveFeature(str, Enum):
    """Independently fetched parts of a host's live state."""

    SESSIONS = "sessions"
    HOST = "host"
    DOCKER = "docker"
    # Used alone when no data feature is selected: plain liveness
    HEALTH = "health"


_FEATURE_FIELDS: dict[LiveFeature, str] = {
    LiveFeature.SESSIONS: "sessions",
    LiveFeature.HOST: "host_info",
    LiveFeature.DOCKER: "docker",
}


@dataclass(frozen=True)
class LiveOptions:
    """Which features to keep live, and how to fetch sessions."""

    sessions: bool = False
    host: bool = False
    docker: bool = False
    preview: bool = False
    preview_lines: int | None = None
    insights: bool = False

    @property
    def features(self) -> tuple[LiveFeature, ...]:
        selected = tuple(
            feature
            for feature, wanted in (
                (LiveFeature.SESSIONS, self.sessions),
                (LiveFeature.HOST, self.host),
                (LiveFeature.DOCKER, self.docker),
            )
            if wanted
        )
        return selected or (LiveFeature.HEALTH,)

    def query_params(self) -> dict[str, str]:
        """Feature selection in the query format of the ``/events`` stream."""
        params: dict[str, str] = {}
        if self.sessions:
            params["sessions"] = "1"
        if self.preview:
            params["preview"] = "1"
        if self.preview_lines:
            params["previewLines"] = str(self.preview_lines)
        if self.insights:
            params["insights"] = "1"
        if self.host:
            params["host"] = "1"
        if self.docker:
            params["docker"] = "1"
        return params


@dataclass(frozen=True)
class HostLiveState:
    """Snapshot of one host. A new instance is built for every change."""

    status: HostStatus = HostStatus.CHECKING
    last_update: datetime | None = None
    host_info: HostInfo | None = None
    sessions: tuple[Session, ...] | None = None
    docker: DockerSnapshot | None = None
    error: str | None = None

    @property
    def has_data(self) -> bool:
        return any(value is not None for value in (self.host_info, self.sessions, self.docker))

    @property
    def contributes(self) -> bool:
        """Whether this host's data may be counted in cross-host totals."""
        return self.status is not HostStatus.OFFLINE and self.has_data


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


def _default_call_later(delay: float, callback: Callable[[], None]) -> TimerHandle:
    return asyncio.get_running_loop().call_later(delay, callback)


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


class LiveStateAggregator:
    """Keeps a reconciled live view of many hosts.

    Example:
        aggregator = LiveStateAggregator(hosts, LiveOptions(sessions=True, docker=True))
        aggregator.subscribe(lambda host_id, state: print(host_id, state.status))
        aggregator.enable()
        await aggregator.refresh()
        print(aggregator.total_sessions())
        await aggregator.aclose()
    """

    def __init__(
        self,
        hosts: Iterable[HostConfig],
        options: LiveOptions,
        *,
        config: LiveConfig | None = None,
        client_factory: Callable[[HostConfig], RemoteAgentClient] = RemoteAgentClient,
        stream_factory: Callable[..., LiveEventStream] = LiveEventStream,
        cache: StateCache | None = None,
        call_later: Callable[[float, Callable[[], None]], TimerHandle] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the aggregator. Nothing runs until :meth:`enable`.

        Args:
            hosts: Hosts to track.
            options: Feature selection.
            config: Interval, backoff and transport settings.
            client_factory: Builds the client for a host.
            stream_factory: Builds the event stream for a host (stream transport).
            cache: Last-known state store used to seed and write through.
            call_later: Timer scheduler ``(delay, callback) -> handle``.
            clock: Returns the current time for ``last_update``.
        """
        self.options = options
        self.config = config or LiveConfig()
        self._client_factory = client_factory
        self._stream_factory = stream_factory
        self._cache: StateCache = cache if cache is not None else NullLiveStateCache()
        self._call_later = call_later or _default_call_later
        self._clock = clock or _utcnow

        self._enabled = False
        self._hosts: dict[str, HostConfig] = {}
        self._clients: dict[str, RemoteAgentClient] = {}
        self._states: dict[str, HostLiveState] = {}
        self._epochs: dict[str, int] = {}
        self._failures: dict[str, int] = {}

        self._timers: dict[str, TimerHandle] = {}
        self._cycles: dict[str, asyncio.Task[None]] = {}
        self._inflight: dict[tuple[str, LiveFeature], asyncio.Task[Any]] = {}

        self._streams: dict[str, LiveEventStream] = {}
        self._stream_tasks: dict[str, asyncio.Task[None]] = {}
        self._probe_tasks: dict[str, asyncio.Task[None]] = {}
        self._background: set[asyncio.Task[Any]] = set()

        self._listeners: list[Callable[[str, HostLiveState], None]] = []

        for host in hosts:
            self._track(host)

    # Read side

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def states(self) -> Mapping[str, HostLiveState]:
        """Read-only live view of the per-host state map."""
        return MappingProxyType(self._states)

    @property
    def hosts(self) -> list[HostConfig]:
        return list(self._hosts.values())

    def get(self, host_id: str) -> HostLiveState | None:
        return self._states.get(host_id)

    @property
    def pending_timers(self) -> int:
        return len(self._timers)

    def subscribe(self, listener: Callable[[str, HostLiveState], None]) -> Callable[[], None]:
        """Call ``listener(host_id, state)`` on every state change.

        Returns:
            A function that removes the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _contributing(self) -> Iterator[tuple[str, HostLiveState]]:
        for host_id, state in self._states.items():
            if state.contributes:
                yield host_id, state

    def total_sessions(self) -> int:
        """Session count across hosts that are online or still checking."""
        return sum(len(state.sessions or ()) for _, state in self._contributing())

    def containers(self) -> list[tuple[str, DockerContainer]]:
        """All containers of contributing hosts, tagged with their host id."""
        return [
            (host_id, container)
            for host_id, state in self._contributing()
            if state.docker is not None
            for container in state.docker.containers
        ]

    def running_containers(self) -> list[tuple[str, DockerContainer]]:
        return [(host_id, c) for host_id, c in self.containers() if c.is_running]

    def status_counts(self) -> dict[HostStatus, int]:
        counts = dict.fromkeys(HostStatus, 0)
        for state in self._states.values():
            counts[state.status] += 1
        return counts

    # Lifecycle

    def enable(self) -> None:
        """Start tracking; every host gets an immediate poll."""
        if self._enabled:
            return
        self._enabled = True
        logger.debug("live_enabled", hosts=len(self._hosts), transport=self.config.transport.value)
        for host_id in list(self._hosts):
            self._activate(host_id)

    def disable(self) -> None:
        """Stop all polling. No timer or request survives this call."""
        if not self._enabled:
            return
        self._enabled = False
        for host_id in list(self._hosts):
            self._deactivate(host_id)
        logger.debug("live_disabled", hosts=len(self._hosts))

    async def aclose(self) -> None:
        """Disable and close every client."""
        self.disable()
        clients = list(self._clients.values())
        self._clients.clear()
        await asyncio.gather(*(client.close() for client in clients), return_exceptions=True)
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    async def drain(self) -> None:
        """Wait until the polls and probes running right now have finished."""
        pending = [
            *self._cycles.values(),
            *self._probe_tasks.values(),
        ]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    def refresh(self, host_id: str | None = None) -> asyncio.Future[Any]:
        """Force an out-of-band update of one host, or of all hosts.

        A poll already in flight is joined rather than duplicated. The
        returned future may be awaited to wait for the refreshed state, or
        ignored.
        """
        loop = asyncio.get_running_loop()
        host_ids = [host_id] if host_id is not None else list(self._hosts)
        host_ids = [h for h in host_ids if h in self._hosts]
        if not self._enabled or not host_ids:
            done = loop.create_future()
            done.set_result(None)
            return done

        if self.config.transport is LiveTransport.STREAM:
            awaitables = [
                self._streams[h].request_refresh() for h in host_ids if h in self._streams
            ]
            return asyncio.gather(*awaitables)
        return asyncio.gather(*(self._start_cycle(h) for h in host_ids))

    def set_hosts(self, hosts: Iterable[HostConfig]) -> None:
        """Replace the tracked host set.

        Removed hosts disappear from the map; changed hosts restart from
        ``checking``; new hosts get an immediate poll when enabled.
        """
        wanted = {host.id: host for host in hosts}
        for host_id in list(self._hosts):
            if host_id not in wanted:
                self._untrack(host_id)
        for host_id, host in wanted.items():
            current = self._hosts.get(host_id)
            if current == host:
                continue
            if current is not None:
                self._untrack(host_id)
            self._track(host)
            if self._enabled:
                self._activate(host_id)

    # Host bookkeeping

    def _track(self, host: HostConfig) -> None:
        self._hosts[host.id] = host
        self._clients[host.id] = self._client_factory(host)
        self._epochs[host.id] = self._epochs.get(host.id, 0) + 1
        self._failures[host.id] = 0
        cached = self._cache.get(host.id)
        if cached is not None:
            self._states[host.id] = dataclasses.replace(cached, status=HostStatus.CHECKING)
        else:
            self._states[host.id] = HostLiveState()

    def _untrack(self, host_id: str) -> None:
        self._deactivate(host_id)
        self._hosts.pop(host_id, None)
        self._states.pop(host_id, None)
        self._failures.pop(host_id, None)
        self._cache.discard(host_id)
        client = self._clients.pop(host_id, None)
        if client is not None:
            self._spawn(client.close())

    def _activate(self, host_id: str) -> None:
        if self.config.transport is LiveTransport.STREAM:
            self._start_stream(host_id)
        else:
            self._start_cycle(host_id)

    def _deactivate(self, host_id: str) -> None:
        # Results of anything still running for this host are discarded
        self._epochs[host_id] = self._epochs.get(host_id, 0) + 1
        self._cancel_timer(host_id)
        cycle = self._cycles.pop(host_id, None)
        if cycle is not None:
            cycle.cancel()
        for key in [key for key in self._inflight if key[0] == host_id]:
            self._inflight.pop(key).cancel()
        for tasks in (self._stream_tasks, self._probe_tasks):
            task = tasks.pop(host_id, None)
            if task is not None:
                task.cancel()
        self._streams.pop(host_id, None)

    def _spawn(self, coro: Any) -> asyncio.Task[Any]:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    # Timers

    def _cancel_timer(self, host_id: str) -> None:
        handle = self._timers.pop(host_id, None)
        if handle is not None:
            handle.cancel()

    def next_delay(self, host_id: str) -> float:
        """Seconds until the next scheduled poll of ``host_id``."""
        interval = self.config.interval
        failures = self._failures.get(host_id, 0)
        if failures == 0:
            return interval
        backoff = min(self.config.max_backoff, interval * (2 ** (failures - 1)))
        return max(interval, backoff)

    def _schedule(self, host_id: str) -> None:
        self._cancel_timer(host_id)
        delay = self.next_delay(host_id)
        self._timers[host_id] = self._call_later(delay, functools.partial(self._on_tick, host_id))

    def _on_tick(self, host_id: str) -> None:
        self._timers.pop(host_id, None)
        if self._enabled and host_id in self._hosts:
            self._start_cycle(host_id)

    # Polling

    def _start_cycle(self, host_id: str) -> asyncio.Task[None]:
        self._cancel_timer(host_id)
        cycle = self._cycles.get(host_id)
        if cycle is not None and not cycle.done():
            return cycle
        cycle = asyncio.get_running_loop().create_task(
            self._poll_host(host_id), name=f"live-poll-{host_id}"
        )
        self._cycles[host_id] = cycle
        cycle.add_done_callback(functools.partial(self._on_cycle_done, host_id))
        return cycle

    def _on_cycle_done(self, host_id: str, cycle: asyncio.Task[None]) -> None:
        if self._cycles.get(host_id) is cycle:
            del self._cycles[host_id]
        if cycle.cancelled():
            return
        error = cycle.exception()
        if error is not None:
            logger.error("live_poll_crashed", host=host_id, error=repr(error))
        if self._enabled and host_id in self._hosts and host_id not in self._cycles:
            self._schedule(host_id)

    def _fetch(self, host_id: str, feature: LiveFeature) -> asyncio.Task[Any]:
        key = (host_id, feature)
        current = self._inflight.get(key)
        if current is not None and not current.done():
            return current

        task = asyncio.get_running_loop().create_task(
            self._request_feature(self._clients[host_id], feature)
        )
        self._inflight[key] = task
        task.add_done_callback(functools.partial(self._clear_inflight, key))
        return task

    def _clear_inflight(self, key: tuple[str, LiveFeature], task: asyncio.Task[Any]) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]

    async def _request_feature(self, client: RemoteAgentClient, feature: LiveFeature) -> Any:
        if feature is LiveFeature.SESSIONS:
            sessions = await client.get_sessions(
                preview=self.options.preview,
                lines=self.options.preview_lines,
                insights=self.options.insights,
            )
            return tuple(sessions)
        if feature is LiveFeature.HOST:
            return await client.get_host_info()
        if feature is LiveFeature.DOCKER:
            return await client.get_docker()

        outcome = await client.probe_health()
        if not outcome.ok:
            raise AgentError(describe_probe_failure(outcome, client.host.base_url))
        return outcome.payload

    async def _poll_host(self, host_id: str) -> None:
        epoch = self._epochs[host_id]
        features = self.options.features
        tasks = [self._fetch(host_id, feature) for feature in features]
        results = await asyncio.gather(*tasks, return_exceptions=True)

        outcomes = {
            feature: result
            for feature, result in zip(features, results, strict=True)
            if not isinstance(result, asyncio.CancelledError)
        }
        diagnosis = None
        if outcomes and all(isinstance(result, BaseException) for result in outcomes.values()):
            diagnosis = await self._diagnose(host_id, features)
        self._apply_poll(host_id, epoch, outcomes, diagnosis)

    async def _diagnose(self, host_id: str, features: tuple[LiveFeature, ...]) -> str | None:
        """Explain a total failure with a health probe."""
        if features == (LiveFeature.HEALTH,):
            return None
        client = self._clients.get(host_id)
        if client is None:
            return None
        outcome = await client.probe_health(timeout=self.config.probe_timeout)
        return describe_probe_failure(outcome, client.host.base_url)

    def _apply_poll(
        self,
        host_id: str,
        epoch: int,
        outcomes: dict[LiveFeature, Any],
        diagnosis: str | None,
    ) -> None:
        # Tracking restarted since the cycle began, so the results are stale
        if host_id not in self._hosts or self._epochs.get(host_id) != epoch:
            logger.debug("live_result_discarded", host=host_id, reason="superseded")
            return
        if not outcomes:
            return

        previous = self._states.get(host_id) or HostLiveState()
        requested = self.options.features
        # Only requested features carry over; anything else is dropped
        fields: dict[str, Any] = {
            name: getattr(previous, name) if feature in requested else None
            for feature, name in _FEATURE_FIELDS.items()
        }

        errors: list[str] = []
        succeeded = False
        for feature, result in outcomes.items():
            if isinstance(result, BaseException):
                errors.append(self._describe_error(host_id, feature, result))
                continue
            succeeded = True
            name = _FEATURE_FIELDS.get(feature)
            if name is not None:
                fields[name] = result

        if succeeded:
            self._failures[host_id] = 0
            status = HostStatus.ONLINE
            last_update = self._clock()
            error = "; ".join(errors) or None
        else:
            self._failures[host_id] = self._failures.get(host_id, 0) + 1
            status = HostStatus.OFFLINE
            last_update = previous.last_update
            error = diagnosis or "; ".join(errors) or None

        if status is not previous.status:
            logger.info("host_status_changed", host=host_id, status=status.value, error=error)

        self._publish(
            host_id,
            HostLiveState(status=status, last_update=last_update, error=error, **fields),
        )

    def _describe_error(self, host_id: str, feature: LiveFeature, error: BaseException) -> str:
        if not isinstance(error, AgentError):
            logger.warning(
                "live_feature_unexpected_error",
                host=host_id,
                feature=feature.value,
                error=repr(error),
            )
        if feature is LiveFeature.HEALTH:
            return str(error)
        return f"{feature.value}: {error}"

    def _publish(self, host_id: str, state: HostLiveState) -> None:
        self._states[host_id] = state
        self._cache.put(host_id, state)
        for listener in list(self._listeners):
            listener(host_id, state)

    # Streaming

    def _start_stream(self, host_id: str) -> None:
        epoch = self._epochs[host_id]
        self._publish(host_id, dataclasses.replace(self._states[host_id], error=None))
        stream = self._stream_factory(
            self._clients[host_id],
            self.options.query_params(),
            on_snapshot=functools.partial(self._on_snapshot, host_id, epoch),
            on_error=functools.partial(self._on_stream_error, host_id, epoch),
            on_disconnect=functools.partial(self._on_stream_disconnect, host_id, epoch),
        )
        self._streams[host_id] = stream
        self._stream_tasks[host_id] = asyncio.get_running_loop().create_task(
            stream.run(), name=f"live-stream-{host_id}"
        )

    def _is_current(self, host_id: str, epoch: int) -> bool:
        return self._enabled and host_id in self._hosts and self._epochs.get(host_id) == epoch

    def _on_snapshot(self, host_id: str, epoch: int, snapshot: LiveSnapshot) -> None:
        if not self._is_current(host_id, epoch):
            return
        previous = self._states[host_id]
        self._failures[host_id] = 0
        probe = self._probe_tasks.pop(host_id, None)
        if probe is not None:
            probe.cancel()
        self._publish(
            host_id,
            HostLiveState(
                status=HostStatus.ONLINE,
                last_update=snapshot.timestamp,
                sessions=snapshot.sessions if snapshot.sessions is not None else previous.sessions,
                host_info=(
                    snapshot.host_info if snapshot.host_info is not None else previous.host_info
                ),
                docker=snapshot.docker if snapshot.docker is not None else previous.docker,
            ),
        )

    def _on_stream_error(self, host_id: str, epoch: int, message: LiveStreamError) -> None:
        if not self._is_current(host_id, epoch):
            return
        previous = self._states[host_id]
        status = HostStatus.ONLINE if previous.status is HostStatus.ONLINE else HostStatus.OFFLINE
        self._publish(host_id, dataclasses.replace(previous, status=status, error=message.message))

    def _on_stream_disconnect(self, host_id: str, epoch: int, reason: str) -> None:
        if not self._is_current(host_id, epoch):
            return
        previous = self._states[host_id]
        if previous.status is not HostStatus.OFFLINE:
            logger.info("host_status_changed", host=host_id, status="offline", error=reason)
        self._publish(host_id, dataclasses.replace(previous, status=HostStatus.OFFLINE))
        if host_id not in self._probe_tasks:
            self._probe_tasks[host_id] = asyncio.get_running_loop().create_task(
                self._probe_offline(host_id, epoch)
            )

    async def _probe_offline(self, host_id: str, epoch: int) -> None:
        try:
            message = await self._diagnose(host_id, self.options.features)
        finally:
            if self._probe_tasks.get(host_id) is asyncio.current_task():
                del self._probe_tasks[host_id]
        if message is None or not self._is_current(host_id, epoch):
            return
        previous = self._states[host_id]
        if previous.status is HostStatus.OFFLINE:
            self._publish(host_id, dataclasses.replace(previous, error=message))
