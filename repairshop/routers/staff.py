from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from repairshop.auth import Capability, Principal, has_capability, require_capability
from repairshop.db import get_db
from repairshop.dependencies import redirect_with_notice
from repairshop.models import TicketStatus
from repairshop.security.csrf import verify_csrf
from repairshop.services import estimate_service, parts_order_service, ticket_service
from repairshop.services.audit_service import delete_ticket_event, list_ticket_events
from repairshop.services.customer_service import search_customers
from repairshop.services.inventory_service import search_parts
from repairshop.services.settings_service import get_shop_settings
from repairshop.services.team_service import list_staff

logger = logging.getLogger(__name__)

router = APIRouter(tags=['staff'])
staff_access = require_capability(Capability.MANAGE_TICKETS)
estimate_access = require_capability(Capability.EDIT_ESTIMATES)


def _load_ticket(db: Session, ticket_id: int):
    try:
        return ticket_service.get_ticket(db, ticket_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


def _ticket_url(ticket_id: int, anchor: str = '') -> str:
    return f'/tickets/{ticket_id}{anchor}'


def _back_or_detail(form, ticket_id: int) -> str:
    # Kanban and list views post back to the board they came from.
    target = str(form.get('next', '')).strip()
    if target.startswith('/') and not target.startswith('//'):
        return target
    return _ticket_url(ticket_id)


def _optional_int(raw) -> int | None:
    text = str(raw or '').strip()
    if not text:
        return None
    if not text.isdecimal():
        raise ValueError(f'Invalid id: {text}')
    return int(text)


@router.get('/dashboard')
def dashboard(
    request: Request,
    principal: Principal = Depends(require_capability(Capability.VIEW_DASHBOARD)),
    db: Session = Depends(get_db),
):
    status_filter = request.query_params.get('filter', ticket_service.DashboardFilter.ACTIVE.value).strip()
    search = request.query_params.get('q', '').strip()
    view = 'kanban' if request.query_params.get('view') == 'kanban' else 'list'

    tickets = ticket_service.list_tickets(db)
    visible = ticket_service.filter_tickets(
        tickets,
        status_filter=status_filter,
        search=search,
        current_user_id=principal.id,
    )
    return request.app.state.templates.TemplateResponse(
        'dashboard.html',
        {
            'request': request,
            'principal': principal,
            'tickets': visible,
            'board': ticket_service.kanban_board(visible) if view == 'kanban' else [],
            'stats': ticket_service.dashboard_stats(tickets, current_user_id=principal.id),
            'badges': {t.id: ticket_service.ticket_badges(t) for t in visible},
            'status_filter': status_filter,
            'filters': [f.value for f in ticket_service.DashboardFilter],
            'statuses': ticket_service.STATUS_ORDER,
            'status_labels': ticket_service.STATUS_LABELS,
            'search': search,
            'view': view,
        },
    )


def _render_intake(request: Request, db: Session, principal: Principal, *, error: str | None = None, form=None):
    form = form or {}
    customer_query = request.query_params.get('customer_q', '').strip()
    brand = str(form.get('brand', '') or request.query_params.get('brand', '')).strip()
    catalog = ticket_service.device_catalog(db)
    return request.app.state.templates.TemplateResponse(
        'intake.html',
        {
            'request': request,
            'principal': principal,
            'error': error,
            'form': form,
            'customer_query': customer_query,
            'customer_matches': search_customers(db, term=customer_query),
            'brands': sorted(catalog),
            'models': ticket_service.models_for_brand(catalog, brand),
        },
        status_code=400 if error else 200,
    )


@router.get('/tickets/new')
def intake_page(
    request: Request,
    principal: Principal = Depends(staff_access),
    db: Session = Depends(get_db),
):
    return _render_intake(request, db, principal)


@router.post('/tickets/intake')
async def intake_submit(
    request: Request,
    principal: Principal = Depends(staff_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    try:
        ticket = ticket_service.create_ticket(
            db,
            customer_id=_optional_int(form.get('customer_id')),
            full_name=str(form.get('full_name', '')),
            email=str(form.get('email', '')),
            phone=str(form.get('phone', '')),
            brand=str(form.get('brand', '')),
            model=str(form.get('model', '')),
            serial_number=str(form.get('serial_number', '')),
            description=str(form.get('description', '')),
            actor_name=principal.display_name,
        )
    except ValueError as exc:
        db.rollback()
        return _render_intake(request, db, principal, error=str(exc), form=form)
    db.commit()
    return redirect_with_notice(_ticket_url(ticket.id), f'Ticket #{ticket.id} created')


@router.get('/tickets/{ticket_id}')
def ticket_detail(
    ticket_id: int,
    request: Request,
    principal: Principal = Depends(staff_access),
    db: Session = Depends(get_db),
):
    ticket = _load_ticket(db, ticket_id)
    shop = get_shop_settings(db)
    items = estimate_service.list_items(db, ticket_id=ticket.id)
    totals = estimate_service.compute_estimate_totals(items, shop.tax_rate)
    db.commit()
    return request.app.state.templates.TemplateResponse(
        'ticket_detail.html',
        {
            'request': request,
            'principal': principal,
            'ticket': ticket,
            'badges': ticket_service.ticket_badges(ticket),
            'items': items,
            'totals': totals,
            'line_total': estimate_service.line_total,
            'is_labor_line': estimate_service.is_labor_line,
            'orders': parts_order_service.list_orders(db, ticket_id=ticket.id),
            'events': list_ticket_events(db, ticket_id=ticket.id),
            'messages': ticket_service.list_messages(db, ticket_id=ticket.id, include_internal=True),
            'quick_replies': shop.quick_replies or [],
            'default_labor_rate': shop.default_labor_rate,
            'technicians': list_staff(db),
            'part_results': search_parts(db, term=ticket.last_part_search or ''),
            'statuses': ticket_service.STATUS_ORDER,
            'status_labels': ticket_service.STATUS_LABELS,
            'status_link': ticket_service.public_status_url(ticket.id),
            'can_delete_audit': has_capability(principal.role, Capability.DELETE_AUDIT_LOGS),
        },
    )


@router.post('/tickets/{ticket_id}/status')
async def ticket_status(
    ticket_id: int,
    request: Request,
    principal: Principal = Depends(staff_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    ticket = _load_ticket(db, ticket_id)
    try:
        new_status = ticket_service.parse_status(str(form.get('status', '')))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    entry = ticket_service.change_status(db, ticket=ticket, new_status=new_status, actor_name=principal.display_name)
    db.commit()
    if entry is None:
        return redirect_with_notice(_back_or_detail(form, ticket.id))
    return redirect_with_notice(
        _back_or_detail(form, ticket.id),
        f'Ticket #{ticket.id} moved to {ticket_service.STATUS_LABELS[new_status]}',
    )


@router.post('/tickets/{ticket_id}/backorder')
async def ticket_backorder(
    ticket_id: int,
    request: Request,
    principal: Principal = Depends(staff_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    ticket = _load_ticket(db, ticket_id)
    flag = str(form.get('is_backordered', '')).lower() in {'1', 'true', 'on', 'yes'}
    ticket_service.set_backorder(db, ticket=ticket, is_backordered=flag, actor_name=principal.display_name)
    db.commit()
    return redirect_with_notice(
        _back_or_detail(form, ticket.id),
        'Marked as backordered' if flag else 'Backorder cleared',
        level='warning' if flag else 'success',
    )


@router.post('/tickets/{ticket_id}/assign')
async def ticket_assign(
    ticket_id: int,
    request: Request,
    principal: Principal = Depends(staff_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    ticket = _load_ticket(db, ticket_id)
    try:
        ticket_service.assign_technician(
            db,
            ticket=ticket,
            technician_id=_optional_int(form.get('technician_id')),
            actor_name=principal.display_name,
        )
    except ValueError as exc:
        db.rollback()
        return redirect_with_notice(_ticket_url(ticket.id), str(exc), level='error')
    db.commit()
    return redirect_with_notice(_ticket_url(ticket.id), 'Technician updated')


@router.post('/tickets/{ticket_id}/messages')
async def ticket_message(
    ticket_id: int,
    request: Request,
    principal: Principal = Depends(staff_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    ticket = _load_ticket(db, ticket_id)
    try:
        ticket_service.add_message(
            db,
            ticket=ticket,
            sender_name=principal.display_name,
            message_text=str(form.get('message_text', '')),
            is_internal=str(form.get('is_internal', '')).lower() in {'1', 'true', 'on'},
        )
    except ValueError as exc:
        db.rollback()
        return redirect_with_notice(_ticket_url(ticket.id, '#messages'), str(exc), level='error')
    db.commit()
    return redirect_with_notice(_ticket_url(ticket.id, '#messages'), 'Message saved')


@router.post('/tickets/{ticket_id}/estimate/items')
async def estimate_add_item(
    ticket_id: int,
    request: Request,
    principal: Principal = Depends(estimate_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    ticket = _load_ticket(db, ticket_id)
    try:
        estimate_service.add_item(
            db,
            ticket=ticket,
            description=str(form.get('description', '')),
            part_cost=form.get('part_cost'),
            labor_cost=form.get('labor_cost'),
            is_labor=str(form.get('kind', 'part')) == 'labor',
            actor_name=principal.display_name,
        )
    except ValueError as exc:
        db.rollback()
        return redirect_with_notice(_ticket_url(ticket.id, '#estimate'), str(exc), level='error')
    db.commit()
    return redirect_with_notice(_ticket_url(ticket.id, '#estimate'), 'Estimate item added')


@router.post('/tickets/{ticket_id}/estimate/items/from-inventory')
async def estimate_add_inventory_part(
    ticket_id: int,
    request: Request,
    principal: Principal = Depends(estimate_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    ticket = _load_ticket(db, ticket_id)
    try:
        inventory_id = _optional_int(form.get('inventory_id'))
        if inventory_id is None:
            raise ValueError('Choose a part from inventory')
        item = estimate_service.add_inventory_part(
            db,
            ticket=ticket,
            inventory_item_id=inventory_id,
            actor_name=principal.display_name,
        )
    except ValueError as exc:
        db.rollback()
        return redirect_with_notice(_ticket_url(ticket.id, '#estimate'), str(exc), level='error')
    db.commit()
    return redirect_with_notice(_ticket_url(ticket.id, '#estimate'), f'Added {item.description} from stock')


@router.post('/tickets/{ticket_id}/estimate/items/{item_id}/delete')
def estimate_delete_item(
    ticket_id: int,
    item_id: int,
    principal: Principal = Depends(estimate_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    ticket = _load_ticket(db, ticket_id)
    try:
        estimate_service.delete_item(db, ticket=ticket, item_id=item_id, actor_name=principal.display_name)
    except ValueError as exc:
        db.rollback()
        return redirect_with_notice(_ticket_url(ticket.id, '#estimate'), str(exc), level='error')
    db.commit()
    return redirect_with_notice(_ticket_url(ticket.id, '#estimate'), 'Estimate item removed')


@router.post('/tickets/{ticket_id}/estimate/send')
def estimate_send(
    ticket_id: int,
    principal: Principal = Depends(estimate_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    ticket = _load_ticket(db, ticket_id)
    try:
        estimate_service.send_estimate(db, ticket=ticket, actor_name=principal.display_name)
    except (ValueError, RuntimeError) as exc:
        db.rollback()
        return redirect_with_notice(_ticket_url(ticket.id, '#estimate'), f'Estimate not sent: {exc}', level='error')
    db.commit()
    return redirect_with_notice(_ticket_url(ticket.id, '#estimate'), 'Estimate sent to customer')


@router.post('/tickets/{ticket_id}/estimate/unsend')
def estimate_unsend(
    ticket_id: int,
    principal: Principal = Depends(estimate_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    ticket = _load_ticket(db, ticket_id)
    try:
        estimate_service.unsend_estimate(db, ticket=ticket, actor_name=principal.display_name)
    except ValueError as exc:
        db.rollback()
        return redirect_with_notice(_ticket_url(ticket.id, '#estimate'), str(exc), level='error')
    db.commit()
    return redirect_with_notice(_ticket_url(ticket.id, '#estimate'), 'Estimate reopened for editing')


@router.post('/tickets/{ticket_id}/part-search')
async def part_search(
    ticket_id: int,
    request: Request,
    _principal: Principal = Depends(staff_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    ticket = _load_ticket(db, ticket_id)
    ticket_service.remember_part_search(db, ticket=ticket, term=str(form.get('term', '')))
    db.commit()
    return redirect_with_notice(_ticket_url(ticket.id, '#parts'))


@router.post('/tickets/{ticket_id}/parts-orders')
async def parts_order_create(
    ticket_id: int,
    request: Request,
    principal: Principal = Depends(staff_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    ticket = _load_ticket(db, ticket_id)
    try:
        parts_order_service.create_order(
            db,
            ticket=ticket,
            part_name=str(form.get('part_name', '')),
            vendor=str(form.get('vendor', '')),
            order_number=str(form.get('order_number', '')),
            tracking_number=str(form.get('tracking_number', '')),
            tracking_link=str(form.get('tracking_link', '')),
            cost=form.get('cost'),
            actor_name=principal.display_name,
        )
    except ValueError as exc:
        db.rollback()
        return redirect_with_notice(_ticket_url(ticket.id, '#parts'), str(exc), level='error')
    db.commit()
    return redirect_with_notice(_ticket_url(ticket.id, '#parts'), 'Parts order saved')


@router.post('/tickets/{ticket_id}/parts-orders/{order_id}/status')
async def parts_order_status(
    ticket_id: int,
    order_id: int,
    request: Request,
    principal: Principal = Depends(staff_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    ticket = _load_ticket(db, ticket_id)
    try:
        parts_order_service.update_order_status(
            db,
            ticket=ticket,
            order_id=order_id,
            status=str(form.get('status', '')),
            actor_name=principal.display_name,
        )
    except ValueError as exc:
        db.rollback()
        return redirect_with_notice(_ticket_url(ticket.id, '#parts'), str(exc), level='error')
    db.commit()
    return redirect_with_notice(_ticket_url(ticket.id, '#parts'), 'Parts order updated')


@router.post('/tickets/{ticket_id}/parts-orders/{order_id}/delete')
def parts_order_delete(
    ticket_id: int,
    order_id: int,
    _principal: Principal = Depends(staff_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    ticket = _load_ticket(db, ticket_id)
    try:
        parts_order_service.delete_order(db, ticket=ticket, order_id=order_id)
    except ValueError as exc:
        db.rollback()
        return redirect_with_notice(_ticket_url(ticket.id, '#parts'), str(exc), level='error')
    db.commit()
    return redirect_with_notice(_ticket_url(ticket.id, '#parts'), 'Parts order removed')


@router.post('/tickets/{ticket_id}/audit/{entry_id}/delete')
def audit_entry_delete(
    ticket_id: int,
    entry_id: int,
    principal: Principal = Depends(require_capability(Capability.DELETE_AUDIT_LOGS)),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    ticket = _load_ticket(db, ticket_id)
    try:
        delete_ticket_event(db, entry_id=entry_id, ticket_id=ticket.id, deleted_by=principal.display_name)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    db.commit()
    return redirect_with_notice(_ticket_url(ticket.id, '#history'), 'Log entry deleted')


@router.get('/tickets/{ticket_id}/label')
def ticket_label(
    ticket_id: int,
    request: Request,
    principal: Principal = Depends(staff_access),
    db: Session = Depends(get_db),
):
    ticket = _load_ticket(db, ticket_id)
    context = ticket_service.label_context(ticket)
    context.update(
        {
            'request': request,
            'principal': principal,
            'shop': get_shop_settings(db),
            'completed': ticket.status == TicketStatus.COMPLETED,
        }
    )
    db.commit()
    return request.app.state.templates.TemplateResponse('print_label.html', context)
