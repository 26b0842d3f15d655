"""The audited stock ledger.

``apply_stock_change`` is the only code path allowed to write
``Product.quantity_in_stock``. Each call locks the product row, applies the
delta, and appends exactly one ``InventoryAdjustment`` carrying the before and
after quantities in the same transaction. Receiving, reconciliation and manual
adjustments all go through it.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from pos_backend.errors import ConstraintViolationError, NotFoundError, ValidationError
from pos_backend.models import AdjustmentReason, AdjustmentType, InventoryAdjustment, Product, Vendor
from pos_backend.services.audit_service import log_audit
from pos_backend.services.number_series import next_global_number
from pos_backend.services.purchase_order_math_service import ZERO, money
from pos_backend.services.query_utils import clean_text, coerce_enum, page_payload, parse_int, resolve_page

logger = logging.getLogger(__name__)

MANUAL_ADJUSTMENT_TYPES = {
    AdjustmentType.DAMAGE,
    AdjustmentType.THEFT,
    AdjustmentType.FOUND,
    AdjustmentType.CORRECTION,
    AdjustmentType.INITIAL,
}
_DECREASING_TYPES = {AdjustmentType.DAMAGE, AdjustmentType.THEFT, AdjustmentType.SALE}
_INCREASING_TYPES = {AdjustmentType.FOUND, AdjustmentType.INITIAL, AdjustmentType.RESTOCK}


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def apply_stock_change(
    db: Session,
    *,
    product_id: int,
    quantity_change: int,
    adjustment_type: AdjustmentType | str,
    reason_code: AdjustmentReason | str | None,
    adjusted_by_principal_id: int,
    reference_type: str | None = None,
    reference_id: int | None = None,
    notes: str | None = None,
) -> InventoryAdjustment:
    adjustment_type = coerce_enum(AdjustmentType, adjustment_type, field='adjustment type')
    if reason_code is None or not str(getattr(reason_code, 'value', reason_code)).strip():
        raise ValidationError('Reason code is required for every stock change')
    reason_code = coerce_enum(AdjustmentReason, reason_code, field='reason code')
    quantity_change = parse_int(quantity_change, field='Stock change')
    if quantity_change == 0:
        raise ValidationError('Stock change must be non-zero')

    product = db.execute(select(Product).where(Product.id == product_id).with_for_update()).scalar_one_or_none()
    if product is None:
        raise NotFoundError(f'Product {product_id} not found')

    quantity_before = int(product.quantity_in_stock)
    quantity_after = quantity_before + quantity_change
    if quantity_after < 0:
        raise ConstraintViolationError(
            f'Stock for {product.sku} cannot go negative ({quantity_before} on hand, change {quantity_change})'
        )

    product.quantity_in_stock = quantity_after
    product.updated_at = _now()
    adjustment = InventoryAdjustment(
        adjustment_number=next_global_number(db, prefix='ADJ'),
        product_id=product.id,
        adjustment_type=adjustment_type,
        reason_code=reason_code,
        quantity_change=quantity_change,
        quantity_before=quantity_before,
        quantity_after=quantity_after,
        reference_type=reference_type,
        reference_id=reference_id,
        notes=clean_text(notes),
        adjusted_by_principal_id=adjusted_by_principal_id,
    )
    db.add(adjustment)
    try:
        db.flush()
    except IntegrityError as exc:
        raise ConstraintViolationError(f'Stock change for product {product_id} rejected by the database') from exc

    logger.info(
        'Stock change %s product=%s %+d (%s -> %s) type=%s reason=%s',
        adjustment.adjustment_number,
        product.id,
        quantity_change,
        quantity_before,
        quantity_after,
        adjustment_type.value,
        reason_code.value,
    )
    return adjustment


def create_manual_adjustment(
    db: Session,
    *,
    product_id: int,
    adjustment_type: AdjustmentType | str,
    quantity_change: int,
    reason_code: AdjustmentReason | str | None,
    notes: str | None,
    adjusted_by_principal_id: int,
) -> InventoryAdjustment:
    adjustment_type = coerce_enum(AdjustmentType, adjustment_type, field='adjustment type')
    if adjustment_type not in MANUAL_ADJUSTMENT_TYPES:
        raise ValidationError(f'{adjustment_type.value} adjustments cannot be entered manually')
    if not clean_text(notes):
        raise ValidationError('A note is required for manual adjustments')
    if adjustment_type in _DECREASING_TYPES and quantity_change >= 0:
        raise ValidationError(f'{adjustment_type.value} adjustments must reduce stock')
    if adjustment_type in _INCREASING_TYPES and quantity_change <= 0:
        raise ValidationError(f'{adjustment_type.value} adjustments must increase stock')

    adjustment = apply_stock_change(
        db,
        product_id=product_id,
        quantity_change=quantity_change,
        adjustment_type=adjustment_type,
        reason_code=reason_code,
        adjusted_by_principal_id=adjusted_by_principal_id,
        reference_type='manual',
        notes=notes,
    )
    log_audit(
        db,
        actor_principal_id=adjusted_by_principal_id,
        action='INVENTORY_ADJUSTMENT_MANUAL',
        entity_type='inventory_adjustment',
        entity_id=adjustment.id,
        metadata={'product_id': product_id, 'quantity_change': quantity_change, 'type': adjustment_type.value},
    )
    db.flush()
    return adjustment


def _adjustment_row(adjustment: InventoryAdjustment, sku: str, name: str) -> dict:
    return {
        'id': adjustment.id,
        'adjustment_number': adjustment.adjustment_number,
        'product_id': adjustment.product_id,
        'sku': sku,
        'product_name': name,
        'adjustment_type': adjustment.adjustment_type.value,
        'reason_code': adjustment.reason_code.value,
        'quantity_change': adjustment.quantity_change,
        'quantity_before': adjustment.quantity_before,
        'quantity_after': adjustment.quantity_after,
        'reference_type': adjustment.reference_type,
        'reference_id': adjustment.reference_id,
        'notes': adjustment.notes,
        'adjusted_by_principal_id': adjustment.adjusted_by_principal_id,
        'created_at': adjustment.created_at,
    }


def _created_between(date_from: date | None, date_to: date | None) -> list:
    if date_from is not None and date_to is not None and date_from > date_to:
        raise ValidationError('Start date must be on or before end date')
    filters = []
    if date_from is not None:
        filters.append(InventoryAdjustment.created_at >= datetime.combine(date_from, time.min, tzinfo=timezone.utc))
    if date_to is not None:
        upper = datetime.combine(date_to + timedelta(days=1), time.min, tzinfo=timezone.utc)
        filters.append(InventoryAdjustment.created_at < upper)
    return filters


def get_adjustment(db: Session, *, adjustment_id: int) -> InventoryAdjustment:
    adjustment = db.execute(
        select(InventoryAdjustment).where(InventoryAdjustment.id == adjustment_id)
    ).scalar_one_or_none()
    if adjustment is None:
        raise NotFoundError(f'Adjustment {adjustment_id} not found')
    return adjustment


def list_adjustments(
    db: Session,
    *,
    product_id: int | None = None,
    adjustment_type: AdjustmentType | str | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    page: int | None = None,
    limit: int | None = None,
) -> dict:
    page, limit, offset = resolve_page(page, limit)
    filters = []
    if product_id is not None:
        filters.append(InventoryAdjustment.product_id == product_id)
    if adjustment_type is not None:
        filters.append(
            InventoryAdjustment.adjustment_type == coerce_enum(AdjustmentType, adjustment_type, field='adjustment type')
        )
    filters.extend(_created_between(date_from, date_to))

    total = db.execute(select(func.count(InventoryAdjustment.id)).where(*filters)).scalar_one()
    rows = db.execute(
        select(InventoryAdjustment, Product.sku, Product.name)
        .join(Product, Product.id == InventoryAdjustment.product_id)
        .where(*filters)
        .order_by(InventoryAdjustment.id.desc())
        .offset(offset)
        .limit(limit)
    ).all()
    items = [_adjustment_row(adjustment, sku, name) for adjustment, sku, name in rows]
    return page_payload(items, total=int(total), page=page, limit=limit)


# Read-only inventory reports. Only active products are reported.


def list_low_stock_products(db: Session) -> list[dict]:
    """Active products at or below their reorder level, with or without a vendor."""
    rows = db.execute(
        select(Product, Vendor.business_name)
        .outerjoin(Vendor, Vendor.id == Product.vendor_id)
        .where(Product.active.is_(True), Product.quantity_in_stock <= Product.reorder_level)
        .order_by(Product.quantity_in_stock.asc(), Product.name.asc())
    ).all()
    return [
        {
            'product_id': product.id,
            'sku': product.sku,
            'name': product.name,
            'quantity_in_stock': product.quantity_in_stock,
            'reorder_level': product.reorder_level,
            'reorder_quantity': product.reorder_quantity,
            'vendor_id': product.vendor_id,
            'vendor_name': vendor_name,
            'stock_value': str(money(Decimal(product.quantity_in_stock) * money(product.base_price))),
        }
        for product, vendor_name in rows
    ]


def list_out_of_stock_products(db: Session) -> list[dict]:
    last_change = (
        select(InventoryAdjustment.product_id, func.max(InventoryAdjustment.created_at).label('last_movement_at'))
        .group_by(InventoryAdjustment.product_id)
        .subquery()
    )
    rows = db.execute(
        select(Product, last_change.c.last_movement_at)
        .outerjoin(last_change, last_change.c.product_id == Product.id)
        .where(Product.active.is_(True), Product.quantity_in_stock == 0)
        .order_by(Product.name.asc())
    ).all()
    return [
        {
            'product_id': product.id,
            'sku': product.sku,
            'name': product.name,
            'reorder_quantity': product.reorder_quantity,
            'vendor_id': product.vendor_id,
            'last_movement_at': last_movement_at,
        }
        for product, last_movement_at in rows
    ]


def get_inventory_valuation(db: Session) -> dict:
    """Stock on hand valued at cost and at retail.

    Cost falls back to the base price for products without a cost price.
    """
    products = db.execute(
        select(Product).where(Product.active.is_(True), Product.quantity_in_stock > 0).order_by(Product.sku)
    ).scalars().all()
    items = []
    total_cost = ZERO
    total_retail = ZERO
    total_quantity = 0
    for product in products:
        unit_cost = money(product.cost_price if product.cost_price is not None else product.base_price)
        cost_value = money(Decimal(product.quantity_in_stock) * unit_cost)
        retail_value = money(Decimal(product.quantity_in_stock) * money(product.base_price))
        total_cost += cost_value
        total_retail += retail_value
        total_quantity += product.quantity_in_stock
        items.append(
            {
                'product_id': product.id,
                'sku': product.sku,
                'name': product.name,
                'quantity_in_stock': product.quantity_in_stock,
                'unit_cost': str(unit_cost),
                'cost_value': str(cost_value),
                'retail_value': str(retail_value),
            }
        )
    return {
        'product_count': len(items),
        'total_quantity': total_quantity,
        'total_cost_value': str(money(total_cost)),
        'total_retail_value': str(money(total_retail)),
        'items': items,
    }


def get_inventory_movement_report(db: Session, *, date_from: date, date_to: date) -> dict:
    """Ledger movement between two dates, inclusive.

    Opening and closing stock come from the first and last adjustment in the
    range, so products without movement in the range are left out.
    """
    if date_from is None or date_to is None:
        raise ValidationError('Start date and end date are required')
    rows = db.execute(
        select(InventoryAdjustment, Product.sku, Product.name)
        .join(Product, Product.id == InventoryAdjustment.product_id)
        .where(Product.active.is_(True), *_created_between(date_from, date_to))
        .order_by(InventoryAdjustment.id.asc())
    ).all()

    by_type: dict[AdjustmentType, dict] = {}
    by_product: dict[int, dict] = {}
    for adjustment, sku, name in rows:
        change = adjustment.quantity_change
        bucket = by_type.setdefault(
            adjustment.adjustment_type,
            {'adjustment_type': adjustment.adjustment_type.value, 'count': 0, 'units_in': 0, 'units_out': 0},
        )
        bucket['count'] += 1
        if change > 0:
            bucket['units_in'] += change
        else:
            bucket['units_out'] -= change

        product = by_product.get(adjustment.product_id)
        if product is None:
            product = by_product[adjustment.product_id] = {
                'product_id': adjustment.product_id,
                'sku': sku,
                'name': name,
                'opening_stock': adjustment.quantity_before,
                'sales_quantity': 0,
                'received_quantity': 0,
                'adjustment_quantity': 0,
            }
        if adjustment.adjustment_type == AdjustmentType.SALE:
            product['sales_quantity'] -= change
        elif adjustment.adjustment_type == AdjustmentType.RESTOCK:
            product['received_quantity'] += change
        else:
            product['adjustment_quantity'] += change
        product['closing_stock'] = adjustment.quantity_after

    for bucket in by_type.values():
        bucket['net_change'] = bucket['units_in'] - bucket['units_out']
    products = list(by_product.values())
    for product in products:
        product['net_change'] = product['closing_stock'] - product['opening_stock']
    products.sort(key=lambda row: (-abs(row['net_change']), row['sku']))
    return {
        'date_from': date_from,
        'date_to': date_to,
        'by_type': sorted(by_type.values(), key=lambda row: row['adjustment_type']),
        'products': products,
    }


def get_product_inventory_history(db: Session, *, product_id: int, limit: int | None = None) -> list[dict]:
    product = db.execute(select(Product).where(Product.id == product_id)).scalar_one_or_none()
    if product is None:
        raise NotFoundError(f'Product {product_id} not found')
    query = (
        select(InventoryAdjustment)
        .where(InventoryAdjustment.product_id == product_id)
        .order_by(InventoryAdjustment.id.desc())
    )
    if limit is not None:
        query = query.limit(limit)
    adjustments = db.execute(query).scalars().all()
    return [_adjustment_row(adjustment, product.sku, product.name) for adjustment in adjustments]
