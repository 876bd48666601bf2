"""Exceptions raised by the load test orchestrator."""

from collections.abc import Mapping, Sequence
from typing import Any


class OrchestratorError(Exception):
    """Base class for orchestrator errors."""


class RequestRejectedError(OrchestratorError):
    """A run request was refused before any record was created.

    Carries the HTTP status the control API answers with and a
    machine-readable reason string.
    """

    status: int = 400

    def __init__(self, reason: str, **extra: Any) -> None:
        super().__init__(reason)
        self.reason = reason
        self.extra: Mapping[str, Any] = extra

    def to_payload(self) -> dict[str, Any]:
        """Render the rejection as a JSON-compatible body."""
        return {"error": self.reason, **self.extra}


class InvalidJsonError(RequestRejectedError):
    """Request body is not a JSON object."""

    def __init__(self, detail: str) -> None:
        super().__init__("invalid json", detail=detail)


class InvalidRequestError(RequestRejectedError):
    """Request body has the wrong shape."""

    def __init__(self, detail: str) -> None:
        super().__init__("invalid request", detail=detail)


class MissingTargetError(RequestRejectedError):
    """Run request has no target URL."""

    def __init__(self) -> None:
        super().__init__("missing target url")


class HostNotAllowedError(RequestRejectedError):
    """Target host is not on the allow-list."""

    status = 403

    def __init__(self) -> None:
        super().__init__("target host not allowed (set ALLOW_ALL=true to override)")


class UnsupportedEngineError(RequestRejectedError):
    """Requested engine is not registered."""

    def __init__(self, engine: str, supported: Sequence[str]) -> None:
        super().__init__("unsupported engine", engine=engine, supported=list(supported))


class EngineDisabledError(RequestRejectedError):
    """Requested engine exists but is administratively disabled."""

    status = 403

    def __init__(self, engine: str) -> None:
        super().__init__(
            f"{engine} engine disabled on server. "
            "Start with ALLOW_DEMO=true to enable"
        )


class AdminDisabledError(RequestRejectedError):
    """Administrative API is turned off."""

    status = 403

    def __init__(self) -> None:
        super().__init__("admin API disabled (set ALLOW_ADMIN=true)")


class InvalidTargetError(OrchestratorError):
    """Target URL cannot be used to generate load."""


class EngineError(OrchestratorError):
    """A load engine failed while executing a run."""


class EngineNotFoundError(OrchestratorError):
    """No engine is registered under the requested key."""


class TerminalStateError(OrchestratorError):
    """A completed or failed record was about to be modified."""
