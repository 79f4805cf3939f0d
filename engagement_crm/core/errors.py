# engagement_crm/core/errors.py
from __future__ import annotations

from http import HTTPStatus


class EngagementError(RuntimeError):
    """
    Base class for failures surfaced by the reconciliation and analytics core.

    Every subclass carries a stable `kind` string so read APIs can return a
    structured error without leaking exception class names.
    """

    kind: str = "engagement_error"
    status_code: int = HTTPStatus.INTERNAL_SERVER_ERROR

    def __init__(self, detail: str = "") -> None:
        super().__init__(detail or self.kind)
        self.detail = detail or self.kind

    def to_payload(self) -> dict:
        return {"error": {"kind": self.kind, "detail": self.detail}}


class AuthenticationFailure(EngagementError):
    """Bad webhook signature, stale timestamp or missing secret."""

    kind = "authentication_failure"
    status_code = HTTPStatus.UNAUTHORIZED


class UnknownEvent(EngagementError):
    kind = "unknown_event"
    status_code = HTTPStatus.OK


class OrphanedLeaveEvent(EngagementError):
    kind = "orphaned_leave_event"
    status_code = HTTPStatus.OK


class NotFound(EngagementError):
    kind = "not_found"
    status_code = HTTPStatus.NOT_FOUND


class Forbidden(EngagementError):
    kind = "forbidden"
    status_code = HTTPStatus.FORBIDDEN


class DownstreamDispatchFailure(EngagementError):
    """A single recipient's outbound message could not be delivered."""

    kind = "downstream_dispatch_failure"
    status_code = HTTPStatus.BAD_GATEWAY


class MalformedInsightsResponse(EngagementError):
    kind = "malformed_insights_response"
    status_code = HTTPStatus.BAD_GATEWAY
