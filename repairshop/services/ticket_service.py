from __future__ import annotations

import re
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import select
from sqlalchemy.orm import Session

from repairshop.config import settings
from repairshop.models import (
    AuditLog,
    Customer,
    DeviceCatalogEntry,
    Profile,
    Ticket,
    TicketMessage,
    TicketStatus,
)
from repairshop.services.audit_service import log_ticket_event
from repairshop.services.formatting import digits_only, humanize_status, to_decimal

EMAIL_RE = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')

STATUS_ORDER: list[TicketStatus] = [
    TicketStatus.INTAKE,
    TicketStatus.DIAGNOSING,
    TicketStatus.WAITING_PARTS,
    TicketStatus.REPAIRING,
    TicketStatus.READY_PICKUP,
    TicketStatus.COMPLETED,
]

STATUS_LABELS: dict[TicketStatus, str] = {
    TicketStatus.INTAKE: 'In Queue',
    TicketStatus.DIAGNOSING: 'Diagnosing',
    TicketStatus.WAITING_PARTS: 'Waiting Parts',
    TicketStatus.REPAIRING: 'Repairing',
    TicketStatus.READY_PICKUP: 'Ready for Pickup',
    TicketStatus.COMPLETED: 'Completed',
}

KANBAN_COLUMNS: list[TicketStatus] = [status for status in STATUS_ORDER if status != TicketStatus.COMPLETED]

TRACKER_STEPS: list[tuple[TicketStatus, str]] = [
    (TicketStatus.INTAKE, 'Received'),
    (TicketStatus.DIAGNOSING, 'Diagnosing'),
    (TicketStatus.REPAIRING, 'Repairing'),
    (TicketStatus.READY_PICKUP, 'Ready'),
]

STATUS_CHANGE = 'STATUS CHANGE'
TICKET_REOPENED = 'TICKET REOPENED'


class DashboardFilter(str, Enum):
    ACTIVE = 'ACTIVE'
    ATTENTION = 'ATTENTION'
    MY_WORK = 'MY_WORK'
    ALL = 'ALL'


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def parse_status(raw: str | None) -> TicketStatus:
    try:
        return TicketStatus((raw or '').strip())
    except ValueError as exc:
        raise ValueError(f'Unknown ticket status: {raw}') from exc


def get_ticket(db: Session, ticket_id: int, *, for_update: bool = False) -> Ticket:
    query = select(Ticket).where(Ticket.id == ticket_id)
    if for_update:
        # Row lock on PostgreSQL; SQLite ignores FOR UPDATE.
        query = query.with_for_update().execution_options(populate_existing=True)
    ticket = db.execute(query).scalar_one_or_none()
    if not ticket:
        raise ValueError('Ticket not found')
    return ticket


def change_status(
    db: Session,
    *,
    ticket: Ticket,
    new_status: TicketStatus,
    actor_name: str,
) -> AuditLog | None:
    """Move a ticket to any status and record the move.

    Every target is accepted from every current status, backwards included.
    Leaving ``completed`` is recorded as a reopen.
    """
    previous = ticket.status
    if previous == new_status:
        return None

    ticket.status = new_status
    ticket.updated_at = _now()
    action = TICKET_REOPENED if previous == TicketStatus.COMPLETED else STATUS_CHANGE
    return log_ticket_event(
        db,
        ticket_id=ticket.id,
        actor_name=actor_name,
        action=action,
        details=f'Moved from {previous.value} to {new_status.value}',
        metadata={'from': previous.value, 'to': new_status.value},
    )


def set_backorder(db: Session, *, ticket: Ticket, is_backordered: bool, actor_name: str) -> AuditLog | None:
    if ticket.is_backordered == is_backordered:
        return None
    ticket.is_backordered = is_backordered
    ticket.updated_at = _now()
    return log_ticket_event(
        db,
        ticket_id=ticket.id,
        actor_name=actor_name,
        action='BACKORDER SET' if is_backordered else 'BACKORDER CLEARED',
        details='Marked as backordered' if is_backordered else 'Backorder cleared',
        metadata={'status': ticket.status.value},
    )


def assign_technician(db: Session, *, ticket: Ticket, technician_id: int | None, actor_name: str) -> None:
    technician_name = 'Unassigned'
    if technician_id is not None:
        technician = db.execute(select(Profile).where(Profile.id == technician_id)).scalar_one_or_none()
        if not technician or not technician.active:
            raise ValueError('Technician not found')
        technician_name = technician.full_name or technician.email
    if ticket.assigned_to == technician_id:
        return
    ticket.assigned_to = technician_id
    ticket.updated_at = _now()
    log_ticket_event(
        db,
        ticket_id=ticket.id,
        actor_name=actor_name,
        action='ASSIGNED',
        details=f'Assigned to {technician_name}',
        metadata={'assigned_to': technician_id},
    )


def ticket_badges(ticket: Ticket) -> dict:
    """Column membership and the backorder overlay are independent axes."""
    in_board = ticket.status in KANBAN_COLUMNS
    return {
        'column': ticket.status.value if in_board else None,
        'column_title': STATUS_LABELS[ticket.status],
        'backordered': bool(ticket.is_backordered),
        'urgent': bool(ticket.is_backordered) or ticket.estimate_status.value == 'approved',
    }


def tracker_steps(status: TicketStatus) -> list[dict]:
    current_index = STATUS_ORDER.index(status)
    steps: list[dict] = []
    for step_status, label in TRACKER_STEPS:
        step_index = STATUS_ORDER.index(step_status)
        if status == TicketStatus.COMPLETED:
            state = 'complete'
        elif status == TicketStatus.WAITING_PARTS and step_status == TicketStatus.REPAIRING:
            state = 'waiting'
        elif step_index < current_index:
            state = 'complete'
        elif step_index == current_index:
            state = 'current'
        else:
            state = 'upcoming'
        steps.append({'id': step_status.value, 'label': label, 'state': state})
    return steps


def _resolve_customer(
    db: Session,
    *,
    customer_id: int | None,
    full_name: str | None,
    email: str | None,
    phone: str | None,
) -> Customer:
    if customer_id is not None:
        customer = db.execute(select(Customer).where(Customer.id == customer_id)).scalar_one_or_none()
        if not customer:
            raise ValueError('Customer not found')
        return customer

    full_name = _clean(full_name)
    email = _clean(email)
    if not full_name:
        raise ValueError('Customer name is required')
    if email and not EMAIL_RE.match(email):
        raise ValueError('Customer email is not valid')
    customer = Customer(
        full_name=full_name,
        email=email.lower() if email else None,
        phone=digits_only(phone) or None,
        total_repairs=0,
    )
    db.add(customer)
    db.flush()
    return customer


def create_ticket(
    db: Session,
    *,
    customer_id: int | None,
    full_name: str | None,
    email: str | None,
    phone: str | None,
    brand: str | None,
    model: str | None,
    serial_number: str | None,
    description: str | None,
    actor_name: str,
) -> Ticket:
    brand = _clean(brand)
    model = _clean(model)
    description = _clean(description)
    if not brand or not model or not description:
        raise ValueError('Please fill in device details')

    customer = _resolve_customer(db, customer_id=customer_id, full_name=full_name, email=email, phone=phone)
    ticket = Ticket(
        customer_id=customer.id,
        customer_name=customer.full_name,
        phone=customer.phone,
        brand=brand,
        model=model,
        serial_number=_clean(serial_number),
        description=description,
        status=TicketStatus.INTAKE,
        is_backordered=False,
        estimate_total=to_decimal(0),
    )
    db.add(ticket)
    customer.total_repairs = (customer.total_repairs or 0) + 1
    db.flush()

    _remember_catalog_entry(db, brand=brand, model=model)
    log_ticket_event(
        db,
        ticket_id=ticket.id,
        actor_name=actor_name,
        action='TICKET CREATED',
        details=f'Checked in {brand} {model} for {customer.full_name}',
        metadata={'customer_id': customer.id},
    )
    return ticket


def list_tickets(db: Session) -> list[Ticket]:
    return db.execute(select(Ticket).order_by(Ticket.created_at.desc(), Ticket.id.desc())).scalars().all()


def list_tickets_for_customer(db: Session, *, customer_id: int) -> list[Ticket]:
    return db.execute(
        select(Ticket)
        .where(Ticket.customer_id == customer_id)
        .order_by(Ticket.created_at.desc(), Ticket.id.desc())
    ).scalars().all()


def _matches_search(ticket: Ticket, search: str) -> bool:
    if not search:
        return True
    needle = search.lower()
    haystack = [
        str(ticket.id),
        (ticket.customer_name or '').lower(),
        ticket.phone or '',
        (ticket.brand or '').lower(),
        (ticket.model or '').lower(),
        (ticket.serial_number or '').lower(),
    ]
    return any(needle in value for value in haystack)


def filter_tickets(
    tickets: list[Ticket],
    *,
    status_filter: str,
    search: str = '',
    current_user_id: int | None = None,
) -> list[Ticket]:
    search = (search or '').strip()
    results: list[Ticket] = []
    for ticket in tickets:
        if not _matches_search(ticket, search):
            continue
        if status_filter == DashboardFilter.MY_WORK.value:
            keep = (
                current_user_id is not None
                and ticket.assigned_to == current_user_id
                and ticket.status != TicketStatus.COMPLETED
            )
        elif status_filter == DashboardFilter.ACTIVE.value:
            keep = ticket.status != TicketStatus.COMPLETED
        elif status_filter == DashboardFilter.ATTENTION.value:
            keep = (
                ticket.is_backordered
                or ticket.status == TicketStatus.WAITING_PARTS
                or ticket.estimate_status.value == 'approved'
            )
        elif status_filter == DashboardFilter.ALL.value:
            keep = True
        else:
            keep = ticket.status.value == status_filter
        if keep:
            results.append(ticket)
    return results


def dashboard_stats(tickets: list[Ticket], *, current_user_id: int | None) -> dict:
    return {
        'active': sum(1 for t in tickets if t.status != TicketStatus.COMPLETED),
        'urgent': sum(1 for t in tickets if t.is_backordered or t.status == TicketStatus.WAITING_PARTS),
        'revenue': sum((to_decimal(t.estimate_total) for t in tickets), to_decimal(0)),
        'my_work': sum(
            1
            for t in tickets
            if current_user_id is not None and t.assigned_to == current_user_id and t.status != TicketStatus.COMPLETED
        ),
    }


def kanban_board(tickets: list[Ticket]) -> list[dict]:
    return [
        {
            'status': column.value,
            'title': STATUS_LABELS[column],
            'tickets': [t for t in tickets if t.status == column],
        }
        for column in KANBAN_COLUMNS
    ]


def add_message(
    db: Session,
    *,
    ticket: Ticket,
    sender_name: str,
    message_text: str | None,
    is_internal: bool,
) -> TicketMessage:
    text = _clean(message_text)
    if not text:
        raise ValueError('Message cannot be empty')
    message = TicketMessage(
        ticket_id=ticket.id,
        sender_name=sender_name,
        message_text=text,
        is_internal=is_internal,
    )
    db.add(message)
    db.flush()
    return message


def list_messages(db: Session, *, ticket_id: int, include_internal: bool) -> list[TicketMessage]:
    query = select(TicketMessage).where(TicketMessage.ticket_id == ticket_id)
    if not include_internal:
        query = query.where(TicketMessage.is_internal.is_(False))
    return db.execute(query.order_by(TicketMessage.created_at.asc(), TicketMessage.id.asc())).scalars().all()


def _remember_catalog_entry(db: Session, *, brand: str, model: str) -> None:
    exists = db.execute(
        select(DeviceCatalogEntry.id).where(DeviceCatalogEntry.brand == brand, DeviceCatalogEntry.model == model)
    ).scalar_one_or_none()
    if not exists:
        db.add(DeviceCatalogEntry(brand=brand, model=model))
        db.flush()


def device_catalog(db: Session) -> dict[str, list[str]]:
    rows = db.execute(
        select(DeviceCatalogEntry.brand, DeviceCatalogEntry.model).order_by(
            DeviceCatalogEntry.brand.asc(), DeviceCatalogEntry.model.asc()
        )
    ).all()
    catalog: dict[str, list[str]] = {}
    for brand, model in rows:
        catalog.setdefault(brand, []).append(model)
    return catalog


def models_for_brand(catalog: dict[str, list[str]], brand: str | None) -> list[str]:
    wanted = (brand or '').strip().lower()
    if not wanted:
        return []
    models: list[str] = []
    for name, brand_models in catalog.items():
        if name.lower() == wanted:
            models.extend(brand_models)
    return sorted(models)


def remember_part_search(db: Session, *, ticket: Ticket, term: str | None) -> None:
    ticket.last_part_search = _clean(term)
    db.flush()


def public_status_url(ticket_id: int) -> str:
    return f"{settings.public_base_url.rstrip('/')}/status/{ticket_id}"


def staff_ticket_url(ticket_id: int) -> str:
    return f"{settings.public_base_url.rstrip('/')}/tickets/{ticket_id}"


def label_context(ticket: Ticket) -> dict:
    return {
        'ticket': ticket,
        'ticket_number': ticket.id,
        'qr_target': staff_ticket_url(ticket.id),
        'status_link': public_status_url(ticket.id),
        'status_label': humanize_status(ticket.status.value),
        'checked_in': ticket.created_at,
    }
