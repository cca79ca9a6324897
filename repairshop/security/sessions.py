from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy import select

from repairshop.auth import Principal, Role
from repairshop.config import settings
from repairshop.db import SessionLocal
from repairshop.models import Profile, WebSession


AUTH_EXEMPT_PATHS = {'/login', '/signup', '/robots.txt'}
AUTH_EXEMPT_PREFIXES = ('/status/', '/static/')


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _session_expiry() -> datetime:
    return _now() + timedelta(minutes=settings.session_ttl_minutes)


def is_auth_exempt(path: str) -> bool:
    return path in AUTH_EXEMPT_PATHS or path.startswith(AUTH_EXEMPT_PREFIXES)


def create_web_session(db, principal_id: int, ip: str | None, user_agent: str | None) -> str:
    token = secrets.token_urlsafe(48)
    web_session = WebSession(
        session_token=token,
        principal_id=principal_id,
        ip=ip,
        user_agent=user_agent,
        expires_at=_session_expiry(),
    )
    db.add(web_session)
    db.flush()
    return token


def revoke_web_session(db, token: str) -> None:
    session = db.execute(select(WebSession).where(WebSession.session_token == token)).scalar_one_or_none()
    if not session or session.revoked_at is not None:
        return
    session.revoked_at = _now()


def revoke_sessions_for_principal(db, principal_id: int) -> int:
    sessions = db.execute(
        select(WebSession).where(WebSession.principal_id == principal_id, WebSession.revoked_at.is_(None))
    ).scalars().all()
    now = _now()
    for session in sessions:
        session.revoked_at = now
    return len(sessions)


def load_principal_from_token(db, token: str | None) -> Principal | None:
    if not token:
        return None

    row = db.execute(
        select(WebSession, Profile)
        .join(Profile, Profile.id == WebSession.principal_id)
        .where(WebSession.session_token == token)
    ).one_or_none()
    if not row:
        return None

    web_session, profile = row
    now = _now()
    if web_session.revoked_at is not None or _as_utc(web_session.expires_at) <= now:
        return None

    # Sliding expiry: idle sessions lapse after the TTL.
    web_session.last_seen_at = now
    web_session.expires_at = _session_expiry()
    role = Role(profile.role.value if hasattr(profile.role, 'value') else profile.role)
    return Principal(
        id=profile.id,
        email=profile.email,
        full_name=profile.full_name,
        role=role,
        active=profile.active,
    )


def install_auth_session_middleware(app: FastAPI) -> None:
    @app.middleware('http')
    async def auth_session_middleware(request: Request, call_next):
        token = request.cookies.get(settings.session_cookie_name)
        with SessionLocal() as db:
            principal = load_principal_from_token(db, token)
            request.state.principal = principal
            db.commit()

        if not is_auth_exempt(request.url.path) and request.state.principal is None:
            if request.url.path.startswith('/api/'):
                return JSONResponse(status_code=401, content={'detail': 'Not authenticated'})
            return RedirectResponse('/login?expired=1' if token else '/login', status_code=303)

        response = await call_next(request)
        return response
