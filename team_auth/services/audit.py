"""
Audit events for security-relevant operations.

Role changes, invitation transitions and impersonation start/stop are
written to the "team_auth.audit" logger whether they were allowed or denied.
Impersonation events can also be rebuilt from the persisted session row
alone, so the log is never the only record.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from team_auth.core.policy import Decision
from team_auth.models.actor_context import ActorContext
from team_auth.models.base import utcnow
from team_auth.models.impersonation_session import ImpersonationSession

audit_logger = logging.getLogger("team_auth.audit")

ALLOWED = "allowed"
DENIED = "denied"


@dataclass(frozen=True)
class AuditEvent:
    actor: str
    target: str | None
    operation: str
    result: str
    timestamp: datetime
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "actor": self.actor,
            "target": self.target,
            "operation": self.operation,
            "result": self.result,
            "timestamp": self.timestamp.isoformat(),
            "details": self.details,
        }


def log_event(event: AuditEvent) -> AuditEvent:
    """Write an event to the audit logger and return it."""
    level = logging.INFO if event.result == ALLOWED else logging.WARNING
    audit_logger.log(
        level,
        "%s %s actor=%s target=%s",
        event.operation,
        event.result,
        event.actor,
        event.target,
        extra={"audit": event.to_dict()},
    )
    return event


def log_security_event(
    context: ActorContext,
    operation: str,
    result: str,
    target: str | None = None,
    details: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> AuditEvent:
    """
    Log a security event performed by the actor in `context`.

    Impersonated requests are attributed to the impersonating admin as well,
    via details["impersonator_id"].

    Args:
        context: Actor performing the operation
        operation: Operation name (team_auth.core.policy.Operation value)
        result: ALLOWED or DENIED
        target: Targeted user or resource id
        details: Extra key/values (team_id, roles, denial code)
        now: Event time, defaults to the current time
    """
    details = dict(details or {})
    if context.team_id is not None:
        details.setdefault("team_id", context.team_id)
    if context.impersonator_id is not None:
        details["impersonator_id"] = context.impersonator_id

    return log_event(
        AuditEvent(
            actor=context.user_id,
            target=target,
            operation=operation,
            result=result,
            timestamp=now or utcnow(),
            details=details,
        )
    )


def log_decision(
    context: ActorContext,
    operation: str,
    decision: Decision,
    target: str | None = None,
    details: dict[str, Any] | None = None,
) -> AuditEvent:
    """Log a policy decision; denials carry their reason code."""
    details = dict(details or {})
    if not decision.allowed and decision.reason is not None:
        details["reason"] = decision.reason.value
    return log_security_event(
        context,
        operation,
        ALLOWED if decision.allowed else DENIED,
        target=target,
        details=details,
    )


def session_audit_events(session: ImpersonationSession) -> list[AuditEvent]:
    """
    Derive the start (and, if closed, stop) events of an impersonation
    session from its row alone.
    """
    events = [
        AuditEvent(
            actor=session.admin_user_id,
            target=session.target_user_id,
            operation="impersonation_start",
            result=ALLOWED,
            timestamp=session.started_at,
            details={
                "session_id": session.id,
                "reason": session.reason,
                "expires_at": session.expires_at.isoformat(),
            },
        )
    ]
    if session.ended_at is not None:
        events.append(
            AuditEvent(
                actor=session.admin_user_id,
                target=session.target_user_id,
                operation="impersonation_stop",
                result=ALLOWED,
                timestamp=session.ended_at,
                details={
                    "session_id": session.id,
                    "end_reason": session.end_reason.value if session.end_reason else None,
                },
            )
        )
    return events
