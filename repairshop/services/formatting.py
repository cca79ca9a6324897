from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

_NON_DIGIT = re.compile(r'\D')
CENT = Decimal('0.01')


def digits_only(value: str | None) -> str:
    return _NON_DIGIT.sub('', value or '')


def format_phone_number(value: str | None) -> str:
    digits = digits_only(value)
    if len(digits) < 4:
        return digits
    if len(digits) < 7:
        return f'({digits[:3]}) {digits[3:]}'
    return f'({digits[:3]}) {digits[3:6]}-{digits[6:10]}'


def to_decimal(value, default: Decimal = Decimal('0')) -> Decimal:
    if value is None or value == '':
        return default
    if isinstance(value, Decimal):
        return value if value.is_finite() else default
    try:
        parsed = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return default
    return parsed if parsed.is_finite() else default


def to_cents(value) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def format_currency(amount) -> str:
    cents = to_cents(amount)
    sign = '-' if cents < 0 else ''
    return f'{sign}${abs(cents):,.2f}'


def mask_email(email: str | None) -> str:
    if not email or '@' not in email:
        return 'No email'
    local, domain = email.split('@', 1)
    return f'{local[:1]}***@{domain}'


def mask_phone(phone: str | None) -> str:
    digits = digits_only(phone)
    if len(digits) < 4:
        return 'No phone'
    return f'(***) ***-{digits[-4:]}'


def initials(name: str | None) -> str:
    if not name or not name.strip():
        return '??'
    parts = name.strip().split()
    if len(parts) >= 2:
        return (parts[0][0] + parts[-1][0]).upper()
    return name.strip()[:2].upper()


def humanize_status(value: str) -> str:
    return value.replace('_', ' ')
