from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from repairshop.auth import Capability, Principal, require_capability
from repairshop.db import get_db
from repairshop.dependencies import redirect_with_notice
from repairshop.security.csrf import verify_csrf
from repairshop.services import inventory_service
from repairshop.services.inventory_service import InventorySort, StockTab

router = APIRouter(prefix='/inventory', tags=['inventory'])
manage_access = require_capability(Capability.MANAGE_INVENTORY)


def _enum_param(enum_cls, raw: str | None, default):
    try:
        return enum_cls((raw or '').strip())
    except ValueError:
        return default


def _item_fields(form) -> dict:
    return {
        'name': str(form.get('name', '')),
        'manufacturer': str(form.get('manufacturer', '')),
        'sku': str(form.get('sku', '')),
        'bin_location': str(form.get('bin_location', '')),
        'quantity': form.get('quantity'),
        'price': form.get('price'),
        'cost': form.get('cost'),
        'supplier': str(form.get('supplier', '')),
        'min_quantity': form.get('min_quantity'),
    }


@router.get('')
def inventory_page(
    request: Request,
    principal: Principal = Depends(require_capability(Capability.VIEW_DASHBOARD)),
    db: Session = Depends(get_db),
):
    search = request.query_params.get('q', '').strip()
    tab = _enum_param(StockTab, request.query_params.get('tab'), StockTab.ALL)
    sort = _enum_param(InventorySort, request.query_params.get('sort'), InventorySort.NAME)

    items = inventory_service.list_inventory(db)
    return request.app.state.templates.TemplateResponse(
        'inventory.html',
        {
            'request': request,
            'principal': principal,
            'items': inventory_service.filter_inventory(items, search=search, tab=tab, sort=sort),
            'summary': inventory_service.inventory_summary(items),
            'is_low_stock': inventory_service.is_low_stock,
            'is_out_of_stock': inventory_service.is_out_of_stock,
            'search': search,
            'tab': tab.value,
            'sort': sort.value,
            'tabs': [t.value for t in StockTab],
            'sorts': [s.value for s in InventorySort],
        },
    )


def _render_form(request: Request, principal: Principal, *, item=None, values=None, error=None):
    return request.app.state.templates.TemplateResponse(
        'inventory_form.html',
        {
            'request': request,
            'principal': principal,
            'item': item,
            'values': values or {},
            'error': error,
        },
        status_code=400 if error else 200,
    )


@router.get('/new')
def inventory_new(request: Request, principal: Principal = Depends(manage_access)):
    return _render_form(request, principal)


@router.get('/{item_id}/edit')
def inventory_edit(
    item_id: int,
    request: Request,
    principal: Principal = Depends(manage_access),
    db: Session = Depends(get_db),
):
    try:
        item = inventory_service.get_item(db, item_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return _render_form(request, principal, item=item)


@router.post('/save')
async def inventory_save(
    request: Request,
    principal: Principal = Depends(manage_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    raw_id = str(form.get('item_id', '')).strip()
    item_id = int(raw_id) if raw_id.isdecimal() else None
    fields = _item_fields(form)
    try:
        item = inventory_service.save_item(db, item_id=item_id, **fields)
    except ValueError as exc:
        db.rollback()
        return _render_form(request, principal, values=fields | {'item_id': raw_id}, error=str(exc))
    db.commit()
    return redirect_with_notice('/inventory', f'Saved {item.name}')


@router.post('/{item_id}/adjust')
async def inventory_adjust(
    item_id: int,
    request: Request,
    _principal: Principal = Depends(require_capability(Capability.ADJUST_STOCK)),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    try:
        delta = int(str(form.get('delta', '0')).strip())
    except ValueError as exc:
        raise HTTPException(status_code=400, detail='Stock adjustment must be a whole number') from exc
    try:
        item = inventory_service.adjust_stock(db, item_id=item_id, delta=delta)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    db.commit()
    target = str(form.get('next', '')).strip()
    if not target.startswith('/inventory'):
        target = '/inventory'
    return redirect_with_notice(target, f'{item.name}: {item.quantity} in stock')


@router.post('/{item_id}/delete')
def inventory_delete(
    item_id: int,
    _principal: Principal = Depends(manage_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        inventory_service.delete_item(db, item_id=item_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    db.commit()
    return redirect_with_notice('/inventory', 'Item deleted')
