from __future__ import annotations

import csv
from datetime import datetime, timezone
from decimal import Decimal
from io import StringIO

from sqlalchemy import select
from sqlalchemy.orm import Session

from repairshop.config import settings
from repairshop.models import ShopSettings, Ticket
from repairshop.services.formatting import to_cents, to_decimal

SETTINGS_ROW_ID = 1
TAX_PERCENT_PLACES = 3

EXPORT_HEADERS = [
    'Ticket ID',
    'Date Created',
    'Status',
    'Customer Name',
    'Phone',
    'Brand',
    'Model',
    'Serial',
    'Total Billed',
    'Backordered',
]


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def get_shop_settings(db: Session) -> ShopSettings:
    row = db.execute(select(ShopSettings).where(ShopSettings.id == SETTINGS_ROW_ID)).scalar_one_or_none()
    if row:
        return row
    row = ShopSettings(
        id=SETTINGS_ROW_ID,
        shop_name=settings.shop_display_name,
        tax_rate=settings.default_tax_rate,
        default_labor_rate=settings.default_labor_rate,
        quick_replies=[],
    )
    db.add(row)
    db.flush()
    return row


def get_tax_rate(db: Session) -> Decimal:
    row = db.execute(select(ShopSettings.tax_rate).where(ShopSettings.id == SETTINGS_ROW_ID)).scalar_one_or_none()
    if row is None:
        return settings.default_tax_rate
    return to_decimal(row, settings.default_tax_rate)


def parse_tax_percent(raw: str | None) -> Decimal:
    """Convert a percent as typed on the settings form (``"7"``) into a rate."""
    percent = to_decimal(raw, default=Decimal('-1'))
    if percent < 0 or percent > 100:
        raise ValueError('Tax rate must be a percentage between 0 and 100')
    # The column stores five decimal places of the rate.
    if percent.normalize().as_tuple().exponent < -TAX_PERCENT_PLACES:
        raise ValueError(f'Tax rate allows at most {TAX_PERCENT_PLACES} decimal places')
    return percent / Decimal('100')


def parse_quick_replies(labels: list[str], texts: list[str]) -> list[dict]:
    replies: list[dict] = []
    for label, text in zip(labels, texts):
        label = (label or '').strip()
        text = (text or '').strip()
        if not label and not text:
            continue
        if not text:
            raise ValueError(f'Quick reply "{label}" needs message text')
        replies.append({'label': label or text[:24], 'text': text})
    return replies


def update_shop_settings(
    db: Session,
    *,
    shop_name: str | None,
    shop_address: str | None,
    shop_phone: str | None,
    tax_percent: str | None,
    default_labor_rate: str | None,
    receipt_disclaimer: str | None,
    business_hours: str | None,
    quick_replies: list[dict],
) -> ShopSettings:
    row = get_shop_settings(db)
    labor_rate = to_decimal(default_labor_rate, default=Decimal('-1'))
    if labor_rate < 0:
        raise ValueError('Default labor rate must be a non-negative number')

    row.shop_name = (shop_name or '').strip() or None
    row.shop_address = (shop_address or '').strip() or None
    row.shop_phone = (shop_phone or '').strip() or None
    row.tax_rate = parse_tax_percent(tax_percent)
    row.default_labor_rate = labor_rate
    row.receipt_disclaimer = (receipt_disclaimer or '').strip() or None
    row.business_hours = (business_hours or '').strip() or None
    row.quick_replies = quick_replies
    row.updated_at = _now()
    db.flush()
    return row


def export_tickets_csv(db: Session) -> str:
    tickets = db.execute(select(Ticket).order_by(Ticket.created_at.desc(), Ticket.id.desc())).scalars().all()
    out = StringIO()
    writer = csv.writer(out)
    writer.writerow(EXPORT_HEADERS)
    for ticket in tickets:
        writer.writerow(
            [
                ticket.id,
                ticket.created_at.date().isoformat() if ticket.created_at else '',
                ticket.status.value,
                ticket.customer_name or '',
                ticket.phone or '',
                ticket.brand,
                ticket.model,
                ticket.serial_number or '',
                f'{to_cents(ticket.estimate_total):.2f}',
                'Yes' if ticket.is_backordered else 'No',
            ]
        )
    return out.getvalue()
