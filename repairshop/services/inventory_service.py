from __future__ import annotations

from collections.abc import Iterable
from decimal import Decimal
from enum import Enum

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from repairshop.models import InventoryItem
from repairshop.services.formatting import to_decimal

DEFAULT_MIN_QUANTITY = 3


class StockTab(str, Enum):
    ALL = 'all'
    LOW = 'low'
    OUT = 'out'


class InventorySort(str, Enum):
    NAME = 'name'
    QTY_ASC = 'qty_asc'
    QTY_DESC = 'qty_desc'
    PRICE_HIGH = 'price_high'


def _reorder_threshold(item: InventoryItem) -> int:
    return item.min_quantity or DEFAULT_MIN_QUANTITY


def is_out_of_stock(item: InventoryItem) -> bool:
    return (item.quantity or 0) == 0


def is_low_stock(item: InventoryItem) -> bool:
    qty = item.quantity or 0
    return 0 < qty < _reorder_threshold(item)


def matches_search(item: InventoryItem, search: str) -> bool:
    needle = (search or '').strip().lower()
    if not needle:
        return True
    return any(needle in (value or '').lower() for value in (item.name, item.sku, item.manufacturer))


def _sort_key(sort: InventorySort):
    if sort == InventorySort.QTY_ASC:
        return lambda item: (item.quantity or 0, (item.name or '').lower())
    if sort == InventorySort.QTY_DESC:
        return lambda item: (-(item.quantity or 0), (item.name or '').lower())
    if sort == InventorySort.PRICE_HIGH:
        return lambda item: (-to_decimal(item.price), (item.name or '').lower())
    return lambda item: (item.name or '').lower()


def filter_inventory(
    items: Iterable[InventoryItem],
    *,
    search: str = '',
    tab: StockTab = StockTab.ALL,
    sort: InventorySort = InventorySort.NAME,
) -> list[InventoryItem]:
    selected: list[InventoryItem] = []
    for item in items:
        if not matches_search(item, search):
            continue
        if tab == StockTab.LOW and not is_low_stock(item):
            continue
        if tab == StockTab.OUT and not is_out_of_stock(item):
            continue
        selected.append(item)
    return sorted(selected, key=_sort_key(sort))


def inventory_summary(items: Iterable[InventoryItem]) -> dict:
    items = list(items)
    return {
        'sku_count': len(items),
        'total_value': sum((to_decimal(i.price) * (i.quantity or 0) for i in items), Decimal('0')),
        'low_count': sum(1 for i in items if is_low_stock(i)),
        'out_count': sum(1 for i in items if is_out_of_stock(i)),
    }


def list_inventory(db: Session) -> list[InventoryItem]:
    return db.execute(select(InventoryItem).order_by(InventoryItem.name.asc())).scalars().all()


def search_parts(db: Session, *, term: str, limit: int = 25) -> list[InventoryItem]:
    """Part sourcing lookup by name or SKU."""
    needle = (term or '').strip().lower()
    if not needle:
        return []
    pattern = f'%{needle}%'
    return db.execute(
        select(InventoryItem)
        .where(or_(func.lower(InventoryItem.name).like(pattern), func.lower(InventoryItem.sku).like(pattern)))
        .order_by(InventoryItem.name.asc())
        .limit(limit)
    ).scalars().all()


def get_item(db: Session, item_id: int) -> InventoryItem:
    item = db.execute(select(InventoryItem).where(InventoryItem.id == item_id)).scalar_one_or_none()
    if not item:
        raise ValueError('Inventory item not found')
    return item


def _parse_int(raw, label: str, *, allow_blank: bool = False) -> int | None:
    text = str(raw).strip() if raw is not None else ''
    if text == '':
        if allow_blank:
            return None
        return 0
    try:
        value = int(text)
    except ValueError as exc:
        raise ValueError(f'{label} must be a whole number') from exc
    if value < 0:
        raise ValueError(f'{label} cannot be negative')
    return value


def _parse_money(raw, label: str) -> Decimal:
    value = to_decimal(raw, default=Decimal('-1')) if str(raw or '').strip() else Decimal('0')
    if value < 0:
        raise ValueError(f'{label} must be a non-negative number')
    return value


def save_item(
    db: Session,
    *,
    item_id: int | None,
    name: str | None,
    manufacturer: str | None,
    sku: str | None,
    bin_location: str | None,
    quantity,
    price,
    cost,
    supplier: str | None,
    min_quantity,
) -> InventoryItem:
    clean_name = (name or '').strip()
    if not clean_name:
        raise ValueError('Part name is required')

    item = get_item(db, item_id) if item_id is not None else InventoryItem()
    item.name = clean_name
    item.manufacturer = (manufacturer or '').strip() or None
    item.sku = (sku or '').strip() or None
    item.bin_location = (bin_location or '').strip() or None
    item.quantity = _parse_int(quantity, 'Quantity')
    item.price = _parse_money(price, 'Price')
    item.cost = _parse_money(cost, 'Cost')
    item.supplier = (supplier or '').strip() or None
    item.min_quantity = _parse_int(min_quantity, 'Minimum quantity', allow_blank=True)
    if item_id is None:
        db.add(item)
    db.flush()
    return item


def adjust_stock(db: Session, *, item_id: int, delta: int) -> InventoryItem:
    item = get_item(db, item_id)
    item.quantity = max(0, (item.quantity or 0) + delta)
    db.flush()
    return item


def delete_item(db: Session, *, item_id: int) -> None:
    item = get_item(db, item_id)
    db.delete(item)
    db.flush()
