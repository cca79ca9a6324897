from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from repairshop.auth import PortalMode
from repairshop.models import AuditLog, AuthEvent

logger = logging.getLogger(__name__)

# First matching substring wins.
_ACTION_STYLES: list[tuple[str, dict]] = [
    ('REOPEN', {'icon': 'rotate-ccw', 'color': 'pink'}),
    ('APPROV', {'icon': 'check-circle', 'color': 'emerald'}),
    ('STATUS', {'icon': 'activity', 'color': 'indigo'}),
    ('BACKORDER', {'icon': 'alert-triangle', 'color': 'red'}),
    ('PART', {'icon': 'package', 'color': 'orange'}),
    ('ESTIMATE', {'icon': 'dollar-sign', 'color': 'emerald'}),
    ('MESSAGE', {'icon': 'message-square', 'color': 'sky'}),
    ('ASSIGN', {'icon': 'user-check', 'color': 'violet'}),
    ('CREATE', {'icon': 'plus-circle', 'color': 'blue'}),
]
_DEFAULT_STYLE = {'icon': 'file-text', 'color': 'slate'}


def log_auth_event(
    db: Session,
    *,
    attempted_email: str,
    portal: PortalMode,
    success: bool,
    ip: str | None,
    user_agent: str | None,
    principal_id: int | None = None,
    failure_reason: str | None = None,
) -> None:
    db.add(
        AuthEvent(
            attempted_email=attempted_email.strip().lower(),
            portal=portal,
            success=success,
            failure_reason=failure_reason,
            principal_id=principal_id,
            ip=ip,
            user_agent=user_agent,
        )
    )


def log_ticket_event(
    db: Session,
    *,
    ticket_id: int,
    actor_name: str,
    action: str,
    details: str | None = None,
    metadata: dict | None = None,
) -> AuditLog:
    entry = AuditLog(
        ticket_id=ticket_id,
        actor_name=actor_name,
        action=action,
        details=details,
        meta=metadata or {},
    )
    db.add(entry)
    db.flush()
    return entry


def list_ticket_events(db: Session, *, ticket_id: int, limit: int | None = None) -> list[AuditLog]:
    query = (
        select(AuditLog)
        .where(AuditLog.ticket_id == ticket_id)
        .order_by(AuditLog.created_at.asc(), AuditLog.id.asc())
    )
    if limit:
        query = query.limit(limit)
    return db.execute(query).scalars().all()


def list_events_by_actor(db: Session, *, actor_name: str, limit: int = 5) -> list[AuditLog]:
    return db.execute(
        select(AuditLog)
        .where(AuditLog.actor_name == actor_name)
        .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .limit(limit)
    ).scalars().all()


def delete_ticket_event(db: Session, *, entry_id: int, ticket_id: int, deleted_by: str) -> None:
    entry = db.execute(
        select(AuditLog).where(AuditLog.id == entry_id, AuditLog.ticket_id == ticket_id)
    ).scalar_one_or_none()
    if not entry:
        raise ValueError('Audit entry not found')
    db.delete(entry)
    db.flush()
    logger.warning(
        'Audit entry %s (%s) on ticket %s deleted by %s', entry_id, entry.action, ticket_id, deleted_by
    )


def audit_style(action: str | None) -> dict:
    normalized = (action or '').upper()
    for needle, style in _ACTION_STYLES:
        if needle in normalized:
            return style
    return _DEFAULT_STYLE
