from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from repairshop.config import settings
from repairshop.models import (
    Customer,
    EstimateApproval,
    EstimateItem,
    EstimateStatus,
    InventoryItem,
    Ticket,
    TicketStatus,
)
from repairshop.services.audit_service import log_ticket_event
from repairshop.services.email_service import build_estimate_email, send_email
from repairshop.services.formatting import to_cents, to_decimal
from repairshop.services.settings_service import get_shop_settings, get_tax_rate
from repairshop.services.ticket_service import change_status, get_ticket, public_status_url

logger = logging.getLogger(__name__)

LABOR_PREFIX = '(Labor) '
ZERO = Decimal('0')


@dataclass(frozen=True)
class EstimateTotals:
    subtotal: Decimal
    tax: Decimal
    total: Decimal
    tax_rate: Decimal


@dataclass(frozen=True)
class ApprovalResult:
    ticket_id: int
    approved_count: int
    replayed: bool


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _field(item, name: str):
    if isinstance(item, Mapping):
        return item.get(name)
    return getattr(item, name, None)


def line_total(item) -> Decimal:
    return to_decimal(_field(item, 'part_cost')) + to_decimal(_field(item, 'labor_cost'))


def compute_estimate_totals(items: Iterable, tax_rate=None) -> EstimateTotals:
    """Subtotal, tax and grand total for a set of estimate lines.

    Costs that are missing or not numeric count as zero. Without a rate the
    configured default applies.
    """
    rate = to_decimal(tax_rate, settings.default_tax_rate) if tax_rate is not None else settings.default_tax_rate
    subtotal = sum((line_total(item) for item in items), ZERO)
    tax = subtotal * rate
    return EstimateTotals(subtotal=subtotal, tax=tax, total=subtotal + tax, tax_rate=rate)


def is_labor_line(description: str | None) -> bool:
    return (description or '').startswith(LABOR_PREFIX)


def labor_description(description: str) -> str:
    description = description.strip()
    if is_labor_line(description):
        return description
    return f'{LABOR_PREFIX}{description}'


def list_items(db: Session, *, ticket_id: int) -> list[EstimateItem]:
    return db.execute(
        select(EstimateItem)
        .where(EstimateItem.ticket_id == ticket_id)
        .order_by(EstimateItem.created_at.asc(), EstimateItem.id.asc())
    ).scalars().all()


def totals_for_ticket(db: Session, *, ticket_id: int) -> EstimateTotals:
    return compute_estimate_totals(list_items(db, ticket_id=ticket_id), get_tax_rate(db))


def refresh_estimate_total(db: Session, *, ticket: Ticket) -> EstimateTotals:
    totals = totals_for_ticket(db, ticket_id=ticket.id)
    ticket.estimate_total = to_cents(totals.total)
    ticket.updated_at = _now()
    db.flush()
    return totals


def _parse_cost(raw, label: str) -> Decimal:
    value = to_decimal(raw, default=Decimal('-1')) if raw not in (None, '') else ZERO
    if value < 0:
        raise ValueError(f'{label} must be a non-negative number')
    return value


def add_item(
    db: Session,
    *,
    ticket: Ticket,
    description: str | None,
    part_cost=None,
    labor_cost=None,
    is_labor: bool = False,
    actor_name: str,
) -> EstimateItem:
    if ticket.estimate_status == EstimateStatus.SENT:
        raise ValueError('Estimate is awaiting customer approval; unsend it to make changes')
    description = (description or '').strip()
    if not description:
        raise ValueError('Description is required')

    item = EstimateItem(
        ticket_id=ticket.id,
        description=labor_description(description) if is_labor else description,
        part_cost=_parse_cost(part_cost, 'Part cost'),
        labor_cost=_parse_cost(labor_cost, 'Labor cost'),
        is_approved=False,
    )
    db.add(item)
    db.flush()
    refresh_estimate_total(db, ticket=ticket)
    log_ticket_event(
        db,
        ticket_id=ticket.id,
        actor_name=actor_name,
        action='ESTIMATE ITEM ADDED',
        details=f'{item.description} ({line_total(item):.2f})',
        metadata={'item_id': item.id},
    )
    return item


def add_inventory_part(
    db: Session,
    *,
    ticket: Ticket,
    inventory_item_id: int,
    actor_name: str,
) -> EstimateItem:
    """Bill one unit of a stocked part and take it off the shelf."""
    if ticket.estimate_status == EstimateStatus.SENT:
        raise ValueError('Estimate is awaiting customer approval; unsend it to make changes')
    part = db.execute(select(InventoryItem).where(InventoryItem.id == inventory_item_id)).scalar_one_or_none()
    if not part:
        raise ValueError('Inventory item not found')

    item = EstimateItem(
        ticket_id=ticket.id,
        description=part.name,
        part_cost=to_decimal(part.price),
        labor_cost=ZERO,
        is_approved=False,
        inventory_id=part.id,
        sku=part.sku,
    )
    db.add(item)
    part.quantity = max(0, (part.quantity or 0) - 1)
    db.flush()
    refresh_estimate_total(db, ticket=ticket)
    log_ticket_event(
        db,
        ticket_id=ticket.id,
        actor_name=actor_name,
        action='PART ADDED FROM STOCK',
        details=f'{part.name} (stock now {part.quantity})',
        metadata={'inventory_id': part.id, 'item_id': item.id},
    )
    return item


def delete_item(db: Session, *, ticket: Ticket, item_id: int, actor_name: str) -> None:
    item = db.execute(
        select(EstimateItem).where(EstimateItem.id == item_id, EstimateItem.ticket_id == ticket.id)
    ).scalar_one_or_none()
    if not item:
        raise ValueError('Estimate item not found')
    if item.is_approved:
        raise ValueError('Approved estimate items are locked')
    if ticket.estimate_status == EstimateStatus.SENT:
        raise ValueError('Estimate is awaiting customer approval; unsend it to make changes')

    if item.inventory_id is not None:
        part = db.execute(select(InventoryItem).where(InventoryItem.id == item.inventory_id)).scalar_one_or_none()
        if part:
            part.quantity = (part.quantity or 0) + 1

    description = item.description
    db.delete(item)
    db.flush()
    refresh_estimate_total(db, ticket=ticket)
    log_ticket_event(
        db,
        ticket_id=ticket.id,
        actor_name=actor_name,
        action='ESTIMATE ITEM REMOVED',
        details=description,
        metadata={'item_id': item_id},
    )


def _customer_email(db: Session, ticket: Ticket) -> str | None:
    if ticket.customer_id is None:
        return None
    return db.execute(select(Customer.email).where(Customer.id == ticket.customer_id)).scalar_one_or_none()


def send_estimate(db: Session, *, ticket: Ticket, actor_name: str) -> None:
    items = list_items(db, ticket_id=ticket.id)
    if not items:
        raise ValueError('Add at least one estimate item before sending')
    recipient = _customer_email(db, ticket)
    if not recipient:
        raise ValueError('Customer has no email address on file')

    shop = get_shop_settings(db)
    totals = compute_estimate_totals(items, shop.tax_rate)
    html = build_estimate_email(
        customer_name=ticket.customer_name,
        brand=ticket.brand,
        model=ticket.model,
        total=totals.total,
        status_link=public_status_url(ticket.id),
        shop_name=shop.shop_name,
    )
    # The status only flips once the relay accepted the message.
    send_email(to=recipient, subject=f'Repair Estimate for Ticket #{ticket.id}', html=html)

    ticket.estimate_status = EstimateStatus.SENT
    ticket.estimate_total = to_cents(totals.total)
    ticket.updated_at = _now()
    log_ticket_event(
        db,
        ticket_id=ticket.id,
        actor_name=actor_name,
        action='ESTIMATE SENT',
        details=f'Estimate emailed to {recipient}',
        metadata={'total': f'{to_cents(totals.total):.2f}'},
    )


def unsend_estimate(db: Session, *, ticket: Ticket, actor_name: str) -> None:
    if ticket.estimate_status != EstimateStatus.SENT:
        raise ValueError('Only a sent estimate can be pulled back')
    ticket.estimate_status = EstimateStatus.NONE
    ticket.updated_at = _now()
    log_ticket_event(
        db,
        ticket_id=ticket.id,
        actor_name=actor_name,
        action='ESTIMATE UNSENT',
        details='Estimate pulled back for editing',
    )


def has_pending_items(db: Session, *, ticket_id: int) -> bool:
    return (
        db.execute(
            select(EstimateItem.id)
            .where(EstimateItem.ticket_id == ticket_id, EstimateItem.is_approved.is_(False))
            .limit(1)
        ).scalar_one_or_none()
        is not None
    )


def approve_estimate(
    db: Session,
    *,
    ticket_id: int,
    actor_name: str,
    fingerprint: str | None,
    approval_key: str,
) -> ApprovalResult:
    """Approve every pending line, advance the ticket and audit it in one commit.

    A replayed ``approval_key`` returns the original outcome without writing.
    Approving an estimate that has nothing pending and is already approved
    writes nothing either.
    """
    approval_key = (approval_key or '').strip()
    if not approval_key:
        raise ValueError('Approval key is required')

    previous = db.execute(
        select(EstimateApproval).where(EstimateApproval.approval_key == approval_key)
    ).scalar_one_or_none()
    if previous:
        if previous.ticket_id != ticket_id:
            raise ValueError('Approval key belongs to another ticket')
        return ApprovalResult(ticket_id=ticket_id, approved_count=previous.approved_count, replayed=True)

    # Serializes concurrent approvals of the same ticket.
    ticket = get_ticket(db, ticket_id, for_update=True)
    items = list_items(db, ticket_id=ticket_id)
    if not items:
        raise ValueError('There is no estimate to approve')

    pending = [item for item in items if not item.is_approved]
    if not pending and ticket.estimate_status == EstimateStatus.APPROVED:
        return ApprovalResult(ticket_id=ticket_id, approved_count=0, replayed=False)

    try:
        approved_count = db.execute(
            update(EstimateItem)
            .where(EstimateItem.ticket_id == ticket_id, EstimateItem.is_approved.is_(False))
            .values(is_approved=True)
            .execution_options(synchronize_session='evaluate')
        ).rowcount or 0
        if approved_count == 0 and ticket.estimate_status == EstimateStatus.APPROVED:
            # Another approval already took every pending line.
            db.rollback()
            return ApprovalResult(ticket_id=ticket_id, approved_count=0, replayed=False)

        previous_status = ticket.status
        change_status(db, ticket=ticket, new_status=TicketStatus.WAITING_PARTS, actor_name=actor_name)
        ticket.estimate_status = EstimateStatus.APPROVED
        ticket.estimate_total = to_cents(compute_estimate_totals(items, get_tax_rate(db)).total)
        ticket.updated_at = _now()

        db.add(
            EstimateApproval(
                approval_key=approval_key,
                ticket_id=ticket_id,
                approved_count=approved_count,
                actor_name=actor_name,
                fingerprint=fingerprint,
            )
        )
        log_ticket_event(
            db,
            ticket_id=ticket_id,
            actor_name=actor_name,
            action='ESTIMATE APPROVED',
            details=f'Approved {approved_count} item(s) from device: {fingerprint or "unknown"}',
            metadata={
                'fingerprint': fingerprint,
                'approval_key': approval_key,
                'from': previous_status.value,
                'to': TicketStatus.WAITING_PARTS.value,
            },
        )
        db.commit()
    except IntegrityError:
        # A concurrent request with the same key won the race.
        db.rollback()
        previous = db.execute(
            select(EstimateApproval).where(EstimateApproval.approval_key == approval_key)
        ).scalar_one()
        return ApprovalResult(ticket_id=ticket_id, approved_count=previous.approved_count, replayed=True)
    except Exception:
        db.rollback()
        logger.exception('Estimate approval for ticket %s failed', ticket_id)
        raise

    logger.info('Ticket %s estimate approved by %s (%s items)', ticket_id, actor_name, approved_count)
    return ApprovalResult(ticket_id=ticket_id, approved_count=approved_count, replayed=False)
