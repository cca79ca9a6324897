from __future__ import annotations

from decimal import Decimal

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from repairshop.models import Customer, Ticket, TicketStatus
from repairshop.services.formatting import digits_only, to_decimal


def list_customers(db: Session) -> list[Customer]:
    return db.execute(select(Customer).order_by(Customer.created_at.desc(), Customer.id.desc())).scalars().all()


def filter_customers(customers: list[Customer], search: str) -> list[Customer]:
    needle = (search or '').strip().lower()
    if not needle:
        return list(customers)
    needle_digits = digits_only(needle)
    matches: list[Customer] = []
    for customer in customers:
        if needle in (customer.full_name or '').lower() or needle in (customer.email or '').lower():
            matches.append(customer)
        elif needle_digits and needle_digits in digits_only(customer.phone):
            matches.append(customer)
    return matches


def search_customers(db: Session, *, term: str, limit: int = 5) -> list[Customer]:
    """Intake lookup by name or phone; short terms return nothing."""
    term = (term or '').strip()
    if len(term) <= 2:
        return []
    name_pattern = f'%{term.lower()}%'
    conditions = [func.lower(Customer.full_name).like(name_pattern)]
    phone_digits = digits_only(term)
    if phone_digits:
        conditions.append(Customer.phone.like(f'%{phone_digits}%'))
    return db.execute(
        select(Customer).where(or_(*conditions)).order_by(Customer.full_name.asc()).limit(limit)
    ).scalars().all()


def get_customer(db: Session, customer_id: int) -> Customer:
    customer = db.execute(select(Customer).where(Customer.id == customer_id)).scalar_one_or_none()
    if not customer:
        raise ValueError('Customer not found')
    return customer


def find_customer_by_email(db: Session, email: str) -> Customer | None:
    return db.execute(
        select(Customer)
        .where(func.lower(Customer.email) == email.strip().lower())
        .order_by(Customer.id.asc())
    ).scalars().first()


def customer_stats(tickets: list[Ticket]) -> dict:
    total_spent = sum((to_decimal(t.estimate_total) for t in tickets), Decimal('0'))
    return {
        'ticket_count': len(tickets),
        'total_spent': total_spent,
        'average_ticket': total_spent / len(tickets) if tickets else Decimal('0'),
        'active_count': sum(1 for t in tickets if t.status != TicketStatus.COMPLETED),
    }
