from __future__ import annotations

from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from repairshop.models import PartsOrder, PartsOrderStatus, Ticket
from repairshop.services.audit_service import log_ticket_event
from repairshop.services.formatting import to_decimal


def _clean(value: str | None) -> str | None:
    value = (value or '').strip()
    return value or None


def list_orders(db: Session, *, ticket_id: int) -> list[PartsOrder]:
    return db.execute(
        select(PartsOrder)
        .where(PartsOrder.ticket_id == ticket_id)
        .order_by(PartsOrder.created_at.desc(), PartsOrder.id.desc())
    ).scalars().all()


def _get_order(db: Session, *, ticket_id: int, order_id: int) -> PartsOrder:
    order = db.execute(
        select(PartsOrder).where(PartsOrder.id == order_id, PartsOrder.ticket_id == ticket_id)
    ).scalar_one_or_none()
    if not order:
        raise ValueError('Parts order not found')
    return order


def create_order(
    db: Session,
    *,
    ticket: Ticket,
    part_name: str | None,
    vendor: str | None,
    order_number: str | None,
    tracking_number: str | None,
    tracking_link: str | None,
    cost,
    actor_name: str,
) -> PartsOrder:
    part_name = _clean(part_name)
    if not part_name:
        raise ValueError('Part name is required')
    tracking_link = _clean(tracking_link)
    if tracking_link and not tracking_link.startswith(('http://', 'https://')):
        raise ValueError('Tracking link must be an http(s) URL')

    order = PartsOrder(
        ticket_id=ticket.id,
        part_name=part_name,
        vendor=_clean(vendor),
        order_number=_clean(order_number),
        tracking_number=_clean(tracking_number),
        tracking_link=tracking_link,
        cost=max(to_decimal(cost), Decimal('0')),
        status=PartsOrderStatus.ORDERED,
    )
    db.add(order)
    db.flush()
    log_ticket_event(
        db,
        ticket_id=ticket.id,
        actor_name=actor_name,
        action='PART ORDERED',
        details=f'Ordered {part_name} from {order.vendor or "unknown vendor"}',
        metadata={'parts_order_id': order.id},
    )
    return order


def update_order_status(
    db: Session,
    *,
    ticket: Ticket,
    order_id: int,
    status: str,
    actor_name: str,
) -> PartsOrder:
    try:
        new_status = PartsOrderStatus(status)
    except ValueError as exc:
        raise ValueError(f'Unknown parts order status: {status}') from exc

    order = _get_order(db, ticket_id=ticket.id, order_id=order_id)
    if order.status == new_status:
        return order
    order.status = new_status
    db.flush()
    if new_status == PartsOrderStatus.RECEIVED:
        log_ticket_event(
            db,
            ticket_id=ticket.id,
            actor_name=actor_name,
            action='PART RECEIVED',
            details=f'{order.part_name} shipment arrived',
            metadata={'parts_order_id': order.id},
        )
    return order


def delete_order(db: Session, *, ticket: Ticket, order_id: int) -> None:
    order = _get_order(db, ticket_id=ticket.id, order_id=order_id)
    db.delete(order)
    db.flush()
