from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from repairshop.auth import Capability, Principal, PortalMode, Role, has_capability, require_capability
from repairshop.db import get_db
from repairshop.dependencies import get_client_ip, redirect_with_notice
from repairshop.security.csrf import verify_csrf
from repairshop.security.lockout import clear_lockout, list_locked_buckets
from repairshop.services.settings_service import (
    export_tickets_csv,
    get_shop_settings,
    parse_quick_replies,
    update_shop_settings,
)
from repairshop.services.team_service import (
    STAFF_ROLES,
    change_role,
    find_promotable,
    get_profile,
    list_staff,
    member_stats,
)

router = APIRouter(prefix='/management', tags=['management'])
team_access = require_capability(Capability.VIEW_TEAM)
admin_access = require_capability(Capability.MANAGE_TEAM)


def _parse_role(raw: str | None) -> Role:
    try:
        return Role((raw or '').strip().lower())
    except ValueError as exc:
        raise HTTPException(status_code=400, detail='Unknown role') from exc


@router.get('/team')
def team_page(
    request: Request,
    principal: Principal = Depends(team_access),
    db: Session = Depends(get_db),
):
    search = request.query_params.get('q', '').strip()
    selected_raw = request.query_params.get('member', '').strip()
    staff = list_staff(db, search=search)

    selected = None
    stats = None
    if selected_raw.isdecimal():
        selected = next((p for p in staff if p.id == int(selected_raw)), None)
        if selected:
            stats = member_stats(db, profile=selected)

    can_manage = has_capability(principal.role, Capability.MANAGE_TEAM)
    return request.app.state.templates.TemplateResponse(
        'team.html',
        {
            'request': request,
            'principal': principal,
            'staff': staff,
            'search': search,
            'selected': selected,
            'stats': stats,
            'roles': STAFF_ROLES,
            'can_manage': can_manage,
            'lockouts': list_locked_buckets(db) if has_capability(principal.role, Capability.CLEAR_LOCKOUTS) else [],
        },
    )


@router.post('/team/promote')
async def team_promote(
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    new_role = _parse_role(str(form.get('role', Role.EMPLOYEE.value)))
    if new_role == Role.CUSTOMER:
        raise HTTPException(status_code=400, detail='Choose a staff role')
    try:
        profile = find_promotable(db, email=str(form.get('email', '')))
        change_role(db, actor=principal, profile_id=profile.id, new_role=new_role)
    except ValueError as exc:
        db.rollback()
        return redirect_with_notice('/management/team', str(exc), level='error')
    db.commit()
    return redirect_with_notice('/management/team', f'{profile.full_name or profile.email} added to the team')


@router.post('/team/{profile_id}/role')
async def team_change_role(
    profile_id: int,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    new_role = _parse_role(str(form.get('role', '')))
    try:
        profile = change_role(db, actor=principal, profile_id=profile_id, new_role=new_role)
    except PermissionError as exc:
        raise HTTPException(status_code=403, detail=str(exc)) from exc
    except ValueError as exc:
        db.rollback()
        return redirect_with_notice('/management/team', str(exc), level='error')
    db.commit()
    return redirect_with_notice(
        f'/management/team?member={profile.id}',
        f'{profile.full_name or profile.email} is now {profile.role.value}',
    )


@router.post('/team/{profile_id}/remove')
def team_remove(
    profile_id: int,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        profile = get_profile(db, profile_id)
        change_role(db, actor=principal, profile_id=profile.id, new_role=Role.CUSTOMER)
    except PermissionError as exc:
        raise HTTPException(status_code=403, detail=str(exc)) from exc
    except ValueError as exc:
        db.rollback()
        return redirect_with_notice('/management/team', str(exc), level='error')
    db.commit()
    return redirect_with_notice('/management/team', f'{profile.full_name or profile.email} removed from the team')


@router.post('/lockouts/clear')
async def lockout_clear(
    request: Request,
    principal: Principal = Depends(require_capability(Capability.CLEAR_LOCKOUTS)),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    email = str(form.get('email', '')).strip()
    try:
        portal = PortalMode(str(form.get('portal', '')).strip())
    except ValueError as exc:
        raise HTTPException(status_code=400, detail='Unknown portal') from exc
    if not email:
        raise HTTPException(status_code=400, detail='Email is required')

    clear_lockout(db, email=email, portal=portal, cleared_by_principal_id=principal.id, ip=get_client_ip(request))
    db.commit()
    return redirect_with_notice('/management/team', f'Login lockout cleared for {email}')


@router.get('/settings')
def settings_page(
    request: Request,
    principal: Principal = Depends(require_capability(Capability.MANAGE_SETTINGS)),
    db: Session = Depends(get_db),
):
    shop = get_shop_settings(db)
    db.commit()
    return request.app.state.templates.TemplateResponse(
        'settings.html',
        {
            'request': request,
            'principal': principal,
            'shop': shop,
            'tax_percent': shop.tax_rate * 100,
            'error': None,
        },
    )


@router.post('/settings')
async def settings_save(
    request: Request,
    principal: Principal = Depends(require_capability(Capability.MANAGE_SETTINGS)),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    try:
        update_shop_settings(
            db,
            shop_name=str(form.get('shop_name', '')),
            shop_address=str(form.get('shop_address', '')),
            shop_phone=str(form.get('shop_phone', '')),
            tax_percent=str(form.get('tax_percent', '')),
            default_labor_rate=str(form.get('default_labor_rate', '')),
            receipt_disclaimer=str(form.get('receipt_disclaimer', '')),
            business_hours=str(form.get('business_hours', '')),
            quick_replies=parse_quick_replies(
                [str(v) for v in form.getlist('reply_label')],
                [str(v) for v in form.getlist('reply_text')],
            ),
        )
    except ValueError as exc:
        db.rollback()
        shop = get_shop_settings(db)
        return request.app.state.templates.TemplateResponse(
            'settings.html',
            {
                'request': request,
                'principal': principal,
                'shop': shop,
                'tax_percent': shop.tax_rate * 100,
                'error': str(exc),
            },
            status_code=400,
        )
    db.commit()
    return redirect_with_notice('/management/settings', 'Settings saved')


@router.get('/export/tickets.csv')
def export_tickets(
    _principal: Principal = Depends(require_capability(Capability.EXPORT_DATA)),
    db: Session = Depends(get_db),
):
    filename = f'repair_tickets_{date.today().isoformat()}.csv'
    return StreamingResponse(
        iter([export_tickets_csv(db)]),
        media_type='text/csv',
        headers={'Content-Disposition': f'attachment; filename="{filename}"'},
    )
