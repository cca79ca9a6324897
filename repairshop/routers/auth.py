from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse
from fastapi.templating import Jinja2Templates
from sqlalchemy.orm import Session

from repairshop.auth import PortalMode, Role, home_path_for, portal_allows_role
from repairshop.config import settings
from repairshop.db import get_db
from repairshop.dependencies import get_client_ip, get_templates, redirect_with_notice
from repairshop.security.captcha import verify_bot_token
from repairshop.security.csrf import verify_csrf
from repairshop.security.lockout import LOCKED_OUT, get_lockout_state
from repairshop.security.passwords import verify_password
from repairshop.security.sessions import create_web_session, revoke_web_session
from repairshop.services.audit_service import log_auth_event
from repairshop.services.team_service import find_profile_by_email, register_profile

logger = logging.getLogger(__name__)

router = APIRouter(tags=['auth'])

INVALID_LOGIN = 'Invalid email or password'


def _portal_from(raw: str | None) -> PortalMode:
    try:
        return PortalMode((raw or '').strip().lower())
    except ValueError:
        return PortalMode.CUSTOMER


def _login_context(request: Request, *, error: str | None, portal: PortalMode, email: str = '') -> dict:
    return {
        'request': request,
        'error': error,
        'portal': portal.value,
        'email': email,
        'expired': request.query_params.get('expired') == '1',
    }


@router.get('/login')
def login_page(request: Request, templates: Jinja2Templates = Depends(get_templates)):
    portal = _portal_from(request.cookies.get(settings.last_portal_cookie_name))
    return templates.TemplateResponse('login.html', _login_context(request, error=None, portal=portal))


@router.post('/login')
async def login_submit(
    request: Request,
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    email = str(form.get('email', '')).strip().lower()
    password = str(form.get('password', ''))
    portal = _portal_from(str(form.get('portal', '')))
    bot_token = str(form.get('bot_token', '')).strip() or None
    ip = get_client_ip(request)
    user_agent = request.headers.get('user-agent')
    templates = request.app.state.templates

    def _fail(reason: str, message: str = INVALID_LOGIN, principal_id: int | None = None, status_code: int = 401):
        log_auth_event(
            db,
            attempted_email=email,
            portal=portal,
            success=False,
            failure_reason=reason,
            principal_id=principal_id,
            ip=ip,
            user_agent=user_agent,
        )
        db.commit()
        return templates.TemplateResponse(
            'login.html',
            _login_context(request, error=message, portal=portal, email=email),
            status_code=status_code,
        )

    lockout = get_lockout_state(db, email=email, portal=portal)
    if lockout.locked:
        logger.warning('Login for %s (%s) refused: bucket locked', email, portal.value)
        until = lockout.locked_until.strftime('%H:%M UTC') if lockout.locked_until else 'later'
        return _fail(LOCKED_OUT, f'Too many failed attempts. Try again after {until}.', status_code=429)

    if not verify_bot_token(bot_token, ip=ip):
        return _fail('BOT_CHECK_FAILED', 'Bot verification failed. Please try again.', status_code=400)

    profile = find_profile_by_email(db, email) if email else None
    if not profile:
        return _fail('UNKNOWN_EMAIL')
    if not profile.active:
        return _fail('INACTIVE_PRINCIPAL', principal_id=profile.id)
    if not verify_password(password, profile.password_hash):
        return _fail('BAD_PASSWORD', principal_id=profile.id)
    if not portal_allows_role(portal, profile.role):
        # Valid credentials on the wrong portal still count against the bucket.
        wrong_portal = 'Staff accounts must use the staff portal.' if portal == PortalMode.CUSTOMER else 'This account does not have staff access.'
        return _fail('WRONG_PORTAL', wrong_portal, principal_id=profile.id, status_code=403)

    token = create_web_session(db, profile.id, ip=ip, user_agent=user_agent)
    log_auth_event(
        db,
        attempted_email=email,
        portal=portal,
        success=True,
        failure_reason=None,
        principal_id=profile.id,
        ip=ip,
        user_agent=user_agent,
    )
    db.commit()

    response = RedirectResponse(home_path_for(profile.role), status_code=303)
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite=settings.session_cookie_samesite,
        max_age=settings.session_ttl_minutes * 60,
    )
    response.set_cookie(
        key=settings.last_portal_cookie_name,
        value=portal.value,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite='lax',
        max_age=60 * 60 * 24 * 365,
    )
    return response


@router.post('/logout')
def logout(request: Request, db: Session = Depends(get_db), _: None = Depends(verify_csrf)):
    token = request.cookies.get(settings.session_cookie_name)
    if token:
        revoke_web_session(db, token)
    db.commit()

    response = RedirectResponse('/login', status_code=303)
    response.delete_cookie(settings.session_cookie_name)
    return response


@router.get('/signup')
def signup_page(request: Request, templates: Jinja2Templates = Depends(get_templates)):
    return templates.TemplateResponse('signup.html', {'request': request, 'error': None, 'email': '', 'full_name': ''})


@router.post('/signup')
async def signup_submit(
    request: Request,
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    email = str(form.get('email', '')).strip()
    full_name = str(form.get('full_name', '')).strip()
    password = str(form.get('password', ''))
    if not verify_bot_token(str(form.get('bot_token', '')).strip() or None, ip=get_client_ip(request)):
        error = 'Bot verification failed. Please try again.'
    else:
        try:
            register_profile(db, email=email, password=password, full_name=full_name, role=Role.CUSTOMER)
        except ValueError as exc:
            db.rollback()
            error = str(exc)
        else:
            db.commit()
            return redirect_with_notice('/login', 'Account created. You can sign in now.')

    return request.app.state.templates.TemplateResponse(
        'signup.html',
        {'request': request, 'error': error, 'email': email, 'full_name': full_name},
        status_code=400,
    )
