from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from repairshop.auth import Capability, Principal, require_capability
from repairshop.db import get_db
from repairshop.services.customer_service import find_customer_by_email
from repairshop.services.ticket_service import STATUS_LABELS, list_tickets_for_customer, tracker_steps

router = APIRouter(tags=['portal'])


@router.get('/my-tickets')
def my_tickets(
    request: Request,
    principal: Principal = Depends(require_capability(Capability.VIEW_OWN_TICKETS)),
    db: Session = Depends(get_db),
):
    customer = find_customer_by_email(db, principal.email)
    tickets = list_tickets_for_customer(db, customer_id=customer.id) if customer else []
    return request.app.state.templates.TemplateResponse(
        'my_tickets.html',
        {
            'request': request,
            'principal': principal,
            'rows': [
                {'ticket': t, 'status_label': STATUS_LABELS[t.status], 'steps': tracker_steps(t.status)}
                for t in tickets
            ],
        },
    )
