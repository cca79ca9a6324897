from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from repairshop.auth import Capability, Principal, require_capability
from repairshop.db import get_db
from repairshop.services.customer_service import customer_stats, filter_customers, get_customer, list_customers
from repairshop.services.formatting import format_phone_number, mask_email, mask_phone
from repairshop.services.ticket_service import list_tickets_for_customer

router = APIRouter(prefix='/customers', tags=['customers'])
customer_access = require_capability(Capability.VIEW_CUSTOMERS)


def _contact(customer, reveal: bool) -> dict:
    if reveal:
        return {
            'email': customer.email or 'No email',
            'phone': format_phone_number(customer.phone) or 'No phone',
        }
    return {'email': mask_email(customer.email), 'phone': mask_phone(customer.phone)}


@router.get('')
def customer_directory(
    request: Request,
    principal: Principal = Depends(customer_access),
    db: Session = Depends(get_db),
):
    search = request.query_params.get('q', '').strip()
    reveal = request.query_params.get('reveal') == '1'
    customers = filter_customers(list_customers(db), search)
    return request.app.state.templates.TemplateResponse(
        'customers.html',
        {
            'request': request,
            'principal': principal,
            'rows': [{'customer': c, 'contact': _contact(c, reveal)} for c in customers],
            'search': search,
            'reveal': reveal,
        },
    )


@router.get('/{customer_id}')
def customer_history(
    customer_id: int,
    request: Request,
    principal: Principal = Depends(customer_access),
    db: Session = Depends(get_db),
):
    try:
        customer = get_customer(db, customer_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    reveal = request.query_params.get('reveal') == '1'
    tickets = list_tickets_for_customer(db, customer_id=customer.id)
    return request.app.state.templates.TemplateResponse(
        'customer_history.html',
        {
            'request': request,
            'principal': principal,
            'customer': customer,
            'contact': _contact(customer, reveal),
            'reveal': reveal,
            'tickets': tickets,
            'stats': customer_stats(tickets),
        },
    )
