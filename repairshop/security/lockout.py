"""Server-side login throttle.

Failed attempts are bucketed per (email, portal). A bucket locks once it
collects ``login_max_failures`` failures inside the lockout window with no
successful login or administrative clearance after them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from repairshop.auth import PortalMode
from repairshop.config import settings
from repairshop.models import AuthEvent

logger = logging.getLogger(__name__)

LOCKOUT_CLEARED = 'LOCKOUT_CLEARED'
LOCKED_OUT = 'LOCKED_OUT'


@dataclass(frozen=True)
class LockoutState:
    failures: int
    locked: bool
    locked_until: datetime | None


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def normalize_email(email: str) -> str:
    return email.strip().lower()


def get_lockout_state(
    db: Session,
    *,
    email: str,
    portal: PortalMode,
    now: datetime | None = None,
) -> LockoutState:
    now = now or _now()
    window_start = now - timedelta(minutes=settings.login_lockout_minutes)
    events = db.execute(
        select(AuthEvent)
        .where(
            AuthEvent.attempted_email == normalize_email(email),
            AuthEvent.portal == portal,
            AuthEvent.created_at >= window_start,
        )
        .order_by(AuthEvent.created_at.desc(), AuthEvent.id.desc())
    ).scalars().all()

    failures: list[datetime] = []
    for event in events:
        if event.success or event.failure_reason == LOCKOUT_CLEARED:
            break
        if event.failure_reason == LOCKED_OUT:
            continue
        failures.append(_as_utc(event.created_at))

    if len(failures) >= settings.login_max_failures:
        newest = max(failures)
        return LockoutState(
            failures=len(failures),
            locked=True,
            locked_until=newest + timedelta(minutes=settings.login_lockout_minutes),
        )
    return LockoutState(failures=len(failures), locked=False, locked_until=None)


def list_locked_buckets(db: Session, *, now: datetime | None = None) -> list[dict]:
    now = now or _now()
    window_start = now - timedelta(minutes=settings.login_lockout_minutes)
    rows = db.execute(
        select(AuthEvent.attempted_email, AuthEvent.portal)
        .where(
            AuthEvent.success.is_(False),
            AuthEvent.created_at >= window_start,
            or_(AuthEvent.failure_reason.is_(None), AuthEvent.failure_reason != LOCKOUT_CLEARED),
        )
        .distinct()
    ).all()

    locked: list[dict] = []
    for email, portal in rows:
        state = get_lockout_state(db, email=email, portal=portal, now=now)
        if state.locked:
            locked.append(
                {
                    'email': email,
                    'portal': portal,
                    'failures': state.failures,
                    'locked_until': state.locked_until,
                }
            )
    locked.sort(key=lambda row: (row['email'], row['portal'].value))
    return locked


def clear_lockout(
    db: Session,
    *,
    email: str,
    portal: PortalMode,
    cleared_by_principal_id: int,
    ip: str | None,
) -> None:
    db.add(
        AuthEvent(
            attempted_email=normalize_email(email),
            portal=portal,
            success=False,
            failure_reason=LOCKOUT_CLEARED,
            principal_id=cleared_by_principal_id,
            ip=ip,
            user_agent=None,
        )
    )
    db.flush()
    logger.info('Login lockout cleared for %s (%s) by principal %s', email, portal.value, cleared_by_principal_id)
