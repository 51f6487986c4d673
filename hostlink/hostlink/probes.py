"""Probe outcomes for agent liveness checks.

A probe is a non-throwing reachability check. Every way it can end is
represented by a :class:`ProbeOutcome` so callers can render a status without
try/except. The network half lives in :mod:`hostlink.client`; this module holds
the outcome type, payload validation and user-facing descriptions.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any
from urllib.parse import urlsplit

from pydantic import ValidationError

from .models import DEFAULT_AGENT_PORT
from .payloads import HealthPayload, PingPayload

if TYPE_CHECKING:
    from pydantic import BaseModel


class ProbeStatus(str, Enum):
    """Closed set of probe results."""

    OK = "ok"
    UNAUTHORIZED = "unauthorized"
    NOT_FOUND = "not_found"
    INVALID_RESPONSE = "invalid_response"
    UNREACHABLE = "unreachable"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class ProbeOutcome:
    """Result of one probe.

    ``payload`` is only set for ``OK``; ``status_code`` only for ``ERROR``;
    ``message`` for ``UNREACHABLE`` and ``ERROR``.
    """

    status: ProbeStatus
    payload: Any = None
    status_code: int | None = None
    message: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is ProbeStatus.OK

    @classmethod
    def success(cls, payload: Any) -> ProbeOutcome:
        return cls(ProbeStatus.OK, payload=payload)

    @classmethod
    def unauthorized(cls) -> ProbeOutcome:
        return cls(ProbeStatus.UNAUTHORIZED)

    @classmethod
    def not_found(cls) -> ProbeOutcome:
        return cls(ProbeStatus.NOT_FOUND)

    @classmethod
    def invalid_response(cls) -> ProbeOutcome:
        return cls(ProbeStatus.INVALID_RESPONSE)

    @classmethod
    def unreachable(cls, message: str | None = None) -> ProbeOutcome:
        return cls(ProbeStatus.UNREACHABLE, message=message)

    @classmethod
    def error(cls, status_code: int | None = None, message: str | None = None) -> ProbeOutcome:
        return cls(ProbeStatus.ERROR, status_code=status_code, message=message)


def classify_status(status: int, body: str) -> ProbeOutcome | None:
    """Map a non-2xx HTTP status to an outcome, or ``None`` for 2xx."""
    if 200 <= status < 300:
        return None
    if status == 401:
        return ProbeOutcome.unauthorized()
    if status == 404:
        return ProbeOutcome.not_found()
    return ProbeOutcome.error(status, body or None)


def _validate(model: type[BaseModel], data: Any) -> ProbeOutcome:
    if not isinstance(data, dict) or data.get("ok") is not True:
        return ProbeOutcome.invalid_response()
    try:
        return ProbeOutcome.success(model.model_validate(data))
    except ValidationError:
        return ProbeOutcome.invalid_response()


def validate_health(data: Any) -> ProbeOutcome:
    """Check a ``/health`` body: ``ok`` must be ``True`` and ``host`` a string."""
    if isinstance(data, dict) and not isinstance(data.get("host"), str):
        return ProbeOutcome.invalid_response()
    return _validate(HealthPayload, data)


def validate_ping(data: Any) -> ProbeOutcome:
    """Check a ``/ping`` body: ``ok`` must be ``True`` and ``ts`` a number."""
    if isinstance(data, dict):
        ts = data.get("ts")
        if isinstance(ts, bool) or not isinstance(ts, (int, float)):
            return ProbeOutcome.invalid_response()
    return _validate(PingPayload, data)


def _no_agent_message(base_url: str) -> str:
    port = urlsplit(base_url).port
    if port and port != DEFAULT_AGENT_PORT:
        return f"No agent detected on port {port}."
    return f"No agent detected on this port (default {DEFAULT_AGENT_PORT})."


def describe_probe_failure(outcome: ProbeOutcome, base_url: str) -> str | None:
    """Turn a failed probe into a short user-facing message.

    Returns ``None`` for a successful probe.
    """
    if outcome.status is ProbeStatus.OK:
        return None
    if outcome.status is ProbeStatus.UNAUTHORIZED:
        return "Agent requires token"
    if outcome.status in (ProbeStatus.NOT_FOUND, ProbeStatus.INVALID_RESPONSE):
        return _no_agent_message(base_url)
    if outcome.status is ProbeStatus.UNREACHABLE:
        return "Host unreachable"
    if outcome.status_code:
        return f"Connection failed ({outcome.status_code})"
    return "Connection failed"
