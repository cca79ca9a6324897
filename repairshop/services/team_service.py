from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from repairshop.auth import ROLE_RANK, Capability, Principal, Role, has_capability, is_staff_role
from repairshop.models import Profile, Ticket, TicketStatus
from repairshop.security.passwords import hash_password
from repairshop.security.sessions import revoke_sessions_for_principal
from repairshop.services.audit_service import list_events_by_actor
from repairshop.services.formatting import to_decimal
from repairshop.services.ticket_service import EMAIL_RE

logger = logging.getLogger(__name__)

STAFF_ROLES = [role for role in Role if is_staff_role(role)]


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def get_profile(db: Session, profile_id: int) -> Profile:
    profile = db.execute(select(Profile).where(Profile.id == profile_id)).scalar_one_or_none()
    if not profile:
        raise ValueError('Team member not found')
    return profile


def find_profile_by_email(db: Session, email: str) -> Profile | None:
    return db.execute(
        select(Profile).where(func.lower(Profile.email) == email.strip().lower())
    ).scalar_one_or_none()


def register_profile(
    db: Session,
    *,
    email: str | None,
    password: str | None,
    full_name: str | None,
    role: Role = Role.CUSTOMER,
) -> Profile:
    email = (email or '').strip().lower()
    if not EMAIL_RE.match(email):
        raise ValueError('Enter a valid email address')
    if find_profile_by_email(db, email):
        raise ValueError('An account with that email already exists')

    profile = Profile(
        email=email,
        full_name=(full_name or '').strip() or None,
        password_hash=hash_password(password or ''),
        role=role,
        active=True,
    )
    db.add(profile)
    db.flush()
    return profile


def list_staff(db: Session, *, search: str = '') -> list[Profile]:
    staff = db.execute(
        select(Profile).where(Profile.role.in_(STAFF_ROLES), Profile.active.is_(True))
    ).scalars().all()
    needle = (search or '').strip().lower()
    if needle:
        staff = [
            p for p in staff if needle in (p.full_name or '').lower() or needle in (p.email or '').lower()
        ]
    return sorted(staff, key=lambda p: (ROLE_RANK[p.role], (p.full_name or p.email).lower()))


def find_promotable(db: Session, *, email: str) -> Profile:
    profile = find_profile_by_email(db, email)
    if not profile:
        raise ValueError('User not found.')
    if is_staff_role(profile.role):
        raise ValueError('User is already on the team.')
    return profile


def change_role(db: Session, *, actor: Principal, profile_id: int, new_role: Role) -> Profile:
    if not has_capability(actor.role, Capability.MANAGE_TEAM):
        raise PermissionError('Only administrators can change staff roles')
    profile = get_profile(db, profile_id)
    if profile.id == actor.id and new_role != Role.ADMIN:
        raise ValueError('You cannot remove your own administrator access')
    if profile.role == new_role:
        return profile

    old_role = profile.role
    profile.role = new_role
    profile.updated_at = _now()
    if not is_staff_role(new_role):
        revoke_sessions_for_principal(db, profile.id)
    db.flush()
    logger.info('Principal %s changed role of %s from %s to %s', actor.id, profile.email, old_role.value, new_role.value)
    return profile


def member_stats(db: Session, *, profile: Profile) -> dict:
    tickets = db.execute(
        select(Ticket.status, Ticket.estimate_total).where(Ticket.assigned_to == profile.id)
    ).all()
    completed = [row for row in tickets if row.status == TicketStatus.COMPLETED]
    return {
        'completed': len(completed),
        'active': len(tickets) - len(completed),
        'revenue': sum((to_decimal(row.estimate_total) for row in completed), Decimal('0')),
        'recent_activity': list_events_by_actor(db, actor_name=profile.full_name or profile.email),
    }
