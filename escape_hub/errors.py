"""Exceptions raised by the escape hub service and mapped onto HTTP responses."""

from __future__ import annotations

from typing import Any


class EscapeHubError(Exception):
    """Base error carrying the HTTP status and extra JSON fields to report."""

    status_code = 500

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        payload: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.payload = dict(payload or {})

    def to_payload(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.message}
        body.update(self.payload)
        return body


class BadRequestError(EscapeHubError):
    status_code = 400


class UnauthorizedError(EscapeHubError):
    status_code = 401


class ForbiddenError(EscapeHubError):
    status_code = 403


class NotFoundError(EscapeHubError):
    status_code = 404


class RunStateError(EscapeHubError):
    """The team's run is not in a state that accepts this request."""

    status_code = 409


class ContributionGateError(EscapeHubError):
    """Raised when a stage's contribution gate blocks the team from advancing."""

    status_code = 409


class ProgressConflictError(EscapeHubError):
    """Concurrent writers kept invalidating a progress update."""

    status_code = 409


__all__ = [
    "BadRequestError",
    "ContributionGateError",
    "EscapeHubError",
    "ForbiddenError",
    "NotFoundError",
    "ProgressConflictError",
    "RunStateError",
    "UnauthorizedError",
]
