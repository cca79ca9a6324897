from __future__ import annotations

import logging
import secrets

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from repairshop.db import get_db
from repairshop.dependencies import device_fingerprint, redirect_with_notice
from repairshop.models import EstimateStatus
from repairshop.security.csrf import verify_csrf
from repairshop.services.estimate_service import (
    approve_estimate,
    compute_estimate_totals,
    has_pending_items,
    line_total,
    list_items,
)
from repairshop.services.settings_service import get_shop_settings
from repairshop.services.ticket_service import STATUS_LABELS, get_ticket, list_messages, tracker_steps

logger = logging.getLogger(__name__)

router = APIRouter(prefix='/status', tags=['public'])

STATUS_LINK_ACTOR = 'Customer (status link)'


@router.get('/{ticket_id}')
def status_page(ticket_id: int, request: Request, db: Session = Depends(get_db)):
    try:
        ticket = get_ticket(db, ticket_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail='Ticket not found') from exc

    shop = get_shop_settings(db)
    items = list_items(db, ticket_id=ticket.id)
    pending = has_pending_items(db, ticket_id=ticket.id)
    db.commit()
    return request.app.state.templates.TemplateResponse(
        'public_status.html',
        {
            'request': request,
            'ticket': ticket,
            'shop': shop,
            'status_label': STATUS_LABELS[ticket.status],
            'steps': tracker_steps(ticket.status),
            'items': items,
            'line_total': line_total,
            'totals': compute_estimate_totals(items, shop.tax_rate),
            'can_approve': pending,
            'approved': ticket.estimate_status == EstimateStatus.APPROVED and not pending,
            'messages': list_messages(db, ticket_id=ticket.id, include_internal=False),
            'approval_key': secrets.token_urlsafe(24),
        },
    )


@router.post('/{ticket_id}/approve')
async def approve(
    ticket_id: int,
    request: Request,
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    try:
        result = approve_estimate(
            db,
            ticket_id=ticket_id,
            actor_name=STATUS_LINK_ACTOR,
            fingerprint=device_fingerprint(request),
            approval_key=str(form.get('approval_key', '')),
        )
    except ValueError as exc:
        db.rollback()
        return redirect_with_notice(f'/status/{ticket_id}', str(exc), level='error')

    if result.replayed:
        logger.info('Replayed approval for ticket %s ignored', ticket_id)
    return redirect_with_notice(f'/status/{ticket_id}', 'Approved! We will start the repair shortly.')
