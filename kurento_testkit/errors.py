"""
Error kinds raised by the harness.

Timeouts and assertion failures are scenario outcomes and derive from
``AssertionError`` so pytest reports them as failures rather than errors.
Invalid-state and external failures are programming or collaborator errors.
"""

from __future__ import annotations

from typing import Any, Optional


class HarnessError(Exception):
    """Base class for harness errors that are not scenario failures."""


class InvalidStateError(HarnessError):
    """An operation was attempted on a pipeline or element that is not live."""


class ExternalFailureError(HarnessError):
    """The media server, a browser or the content server reported an error."""

    def __init__(self, message: str, *, code: Optional[int] = None, data: Any = None) -> None:
        super().__init__(message)
        self.code = code
        self.data = data


def as_external_failure(exc: BaseException, action: str) -> ExternalFailureError:
    """Return ``exc`` unchanged if it already is an external failure, else wrap it."""
    if isinstance(exc, ExternalFailureError):
        return exc
    wrapped = ExternalFailureError(f"{action} failed: {type(exc).__name__}: {exc}")
    wrapped.__cause__ = exc
    return wrapped


class KurentoError(ExternalFailureError):
    """JSON-RPC error returned by the media server."""

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "KurentoError":
        code = payload.get("code")
        message = payload.get("message") or "unknown media server error"
        data = payload.get("data")
        if isinstance(data, dict) and data.get("type"):
            message = f"{message} ({data['type']})"
        return cls(message, code=code, data=data)


class ScenarioFailure(AssertionError):
    kind = "assertion"


class ScenarioAssertion(ScenarioFailure):
    """An observed value fell outside its tolerance."""

    kind = "assertion"


class ScenarioTimeout(ScenarioFailure):
    """A wait exceeded its deadline."""

    kind = "timeout"


def check(condition: bool, message: str) -> None:
    """Raise :class:`ScenarioAssertion` with ``message`` unless ``condition`` holds."""
    if not condition:
        raise ScenarioAssertion(message)


def check_in_time(reached: bool, message: str) -> None:
    """Raise :class:`ScenarioTimeout` with ``message`` unless the wait succeeded."""
    if not reached:
        raise ScenarioTimeout(message)


__all__ = [
    "HarnessError",
    "InvalidStateError",
    "ExternalFailureError",
    "KurentoError",
    "as_external_failure",
    "ScenarioFailure",
    "ScenarioAssertion",
    "ScenarioTimeout",
    "check",
    "check_in_time",
]
