"""Exception hierarchy for agent communication and configuration."""

from __future__ import annotations


class AgentError(Exception):
    """Base error for anything that goes wrong talking to an agent host."""


class AgentConnectionError(AgentError):
    """The agent could not be reached (DNS, refused connection, timeout)."""


class AgentRequestError(AgentError):
    """The agent answered with a non-2xx status.

    The server-provided body text is kept verbatim in ``message`` so it can be
    shown to the user as-is.
    """

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status = status


class AgentResponseError(AgentError):
    """The agent answered 2xx but the body was not the expected JSON."""


class ConfigError(Exception):
    """Configuration file is invalid or refers to an unknown host."""
