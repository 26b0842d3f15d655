from __future__ import annotations

import logging
from datetime import date, datetime, timezone

from sqlalchemy import delete, func, or_, select
from sqlalchemy.orm import Session

from pos_backend.errors import InvalidStateError, NotFoundError, ValidationError
from pos_backend.models import (
    PaymentStatus,
    Product,
    PurchaseOrder,
    PurchaseOrderLine,
    PurchaseOrderStatus,
    PurchaseOrderType,
    Vendor,
)
from pos_backend.services.audit_service import log_audit
from pos_backend.services.number_series import next_daily_number
from pos_backend.services.purchase_order_math_service import (
    LineAmounts,
    OrderCharges,
    money,
    recalculate_totals,
    validate_charges,
    validate_line_amounts,
)
from pos_backend.services.query_utils import clean_text, coerce_enum, page_payload, parse_int, resolve_page

logger = logging.getLogger(__name__)

HEADER_FIELDS = {
    'vendor_id',
    'order_type',
    'expected_delivery_date',
    'shipping_cost',
    'other_charges',
    'discount_amount',
    'shipping_address',
    'billing_address',
    'payment_terms',
    'notes',
}
_CHARGE_FIELDS = {'shipping_cost', 'other_charges', 'discount_amount'}


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _default_payment_status(order_type: PurchaseOrderType) -> PaymentStatus:
    if order_type == PurchaseOrderType.DONATION:
        return PaymentStatus.DONATION
    if order_type == PurchaseOrderType.TRANSFER:
        return PaymentStatus.NA
    return PaymentStatus.UNPAID


def _require_active_vendor(db: Session, vendor_id: int | None) -> Vendor:
    if vendor_id is None:
        raise ValidationError('Vendor is required')
    vendor = db.execute(select(Vendor).where(Vendor.id == vendor_id)).scalar_one_or_none()
    if vendor is None or not vendor.active:
        raise ValidationError(f'Vendor {vendor_id} not found or inactive')
    return vendor


def _require_draft(po: PurchaseOrder, action: str) -> None:
    if po.status != PurchaseOrderStatus.DRAFT:
        raise InvalidStateError(f'Only draft orders can be {action} (order {po.po_number} is {po.status.value})')


def _prepare_line(db: Session, payload: dict, *, label: str) -> dict:
    product = None
    product_id = payload.get('product_id')
    if product_id is not None:
        product = db.execute(select(Product).where(Product.id == product_id)).scalar_one_or_none()
        if product is None:
            raise NotFoundError(f'{label}: product {product_id} not found')

    product_name = clean_text(payload.get('product_name')) or (product.name if product else None)
    if not product_name:
        raise ValidationError(f'{label}: product name is required for uncatalogued items')

    unit_cost = payload.get('unit_cost')
    if unit_cost is None and product is not None:
        unit_cost = product.cost_price
    if unit_cost is None:
        raise ValidationError(f'{label}: unit cost is required')

    prepared = {
        'product_id': product.id if product else None,
        'sku': clean_text(payload.get('sku')) or (product.sku if product else None),
        'product_name': product_name,
        'quantity_ordered': payload.get('quantity_ordered'),
        'unit_cost': money(unit_cost),
        'tax_amount': money(payload.get('tax_amount')),
        'notes': clean_text(payload.get('notes')),
    }
    if prepared['quantity_ordered'] is None:
        raise ValidationError(f'{label}: quantity ordered is required')
    prepared['quantity_ordered'] = parse_int(prepared['quantity_ordered'], field=f'{label}: quantity ordered')
    validate_line_amounts(
        LineAmounts(
            quantity_ordered=prepared['quantity_ordered'],
            unit_cost=prepared['unit_cost'],
            tax_amount=prepared['tax_amount'],
        ),
        label=label,
    )
    return prepared


def _charges(po: PurchaseOrder) -> OrderCharges:
    return OrderCharges(
        shipping_cost=po.shipping_cost,
        other_charges=po.other_charges,
        discount_amount=po.discount_amount,
    )


def list_lines(db: Session, *, purchase_order_id: int) -> list[PurchaseOrderLine]:
    return db.execute(
        select(PurchaseOrderLine)
        .where(PurchaseOrderLine.purchase_order_id == purchase_order_id)
        .order_by(PurchaseOrderLine.id.asc())
    ).scalars().all()


def recalculate_purchase_order(db: Session, *, po: PurchaseOrder) -> PurchaseOrder:
    db.flush()
    totals = recalculate_totals(list_lines(db, purchase_order_id=po.id), _charges(po))
    if totals.total < 0:
        raise ValidationError('Discount cannot exceed the order total')
    po.subtotal_amount = totals.subtotal
    po.tax_amount = totals.tax
    po.updated_at = _now()
    db.flush()
    return po


def get_purchase_order(db: Session, *, purchase_order_id: int, for_update: bool = False) -> PurchaseOrder:
    query = select(PurchaseOrder).where(PurchaseOrder.id == purchase_order_id)
    if for_update:
        query = query.with_for_update()
    po = db.execute(query).scalar_one_or_none()
    if po is None:
        raise NotFoundError(f'Purchase order {purchase_order_id} not found')
    return po


def create_purchase_order(
    db: Session,
    *,
    vendor_id: int | None,
    lines: list[dict],
    created_by_principal_id: int,
    order_type: PurchaseOrderType | str = PurchaseOrderType.PURCHASE,
    expected_delivery_date: date | None = None,
    shipping_cost=None,
    other_charges=None,
    discount_amount=None,
    shipping_address: str | None = None,
    billing_address: str | None = None,
    payment_terms: str | None = None,
    notes: str | None = None,
) -> PurchaseOrder:
    vendor = _require_active_vendor(db, vendor_id)
    order_type = coerce_enum(PurchaseOrderType, order_type, field='order type')
    if not lines:
        raise ValidationError('A purchase order needs at least one line item')
    charges = OrderCharges(
        shipping_cost=money(shipping_cost),
        other_charges=money(other_charges),
        discount_amount=money(discount_amount),
    )
    validate_charges(charges)
    prepared = [_prepare_line(db, payload, label=f'Line {idx}') for idx, payload in enumerate(lines, start=1)]

    po = PurchaseOrder(
        po_number=next_daily_number(db, prefix='PO'),
        vendor_id=vendor.id,
        order_type=order_type,
        status=PurchaseOrderStatus.DRAFT,
        order_date=date.today(),
        expected_delivery_date=expected_delivery_date,
        shipping_cost=charges.shipping_cost,
        other_charges=charges.other_charges,
        discount_amount=charges.discount_amount,
        shipping_address=clean_text(shipping_address),
        billing_address=clean_text(billing_address),
        payment_terms=clean_text(payment_terms) or vendor.payment_terms,
        payment_status=_default_payment_status(order_type),
        notes=clean_text(notes),
        created_by_principal_id=created_by_principal_id,
    )
    db.add(po)
    db.flush()
    for values in prepared:
        db.add(PurchaseOrderLine(purchase_order_id=po.id, quantity_received=0, **values))
    recalculate_purchase_order(db, po=po)

    log_audit(
        db,
        actor_principal_id=created_by_principal_id,
        action='PURCHASE_ORDER_CREATE',
        entity_type='purchase_order',
        entity_id=po.id,
        metadata={'po_number': po.po_number, 'vendor_id': vendor.id, 'lines': len(prepared)},
    )
    db.flush()
    logger.info('Created purchase order %s id=%s vendor=%s lines=%s', po.po_number, po.id, vendor.id, len(prepared))
    return po


def update_purchase_order_header(db: Session, *, purchase_order_id: int, changes: dict) -> PurchaseOrder:
    po = get_purchase_order(db, purchase_order_id=purchase_order_id, for_update=True)
    _require_draft(po, 'edited')
    unknown = set(changes) - HEADER_FIELDS
    if unknown:
        raise ValidationError(f'Cannot update field(s): {", ".join(sorted(unknown))}')

    if 'vendor_id' in changes:
        po.vendor_id = _require_active_vendor(db, changes['vendor_id']).id
    if 'order_type' in changes:
        po.order_type = coerce_enum(PurchaseOrderType, changes['order_type'], field='order type')
        po.payment_status = _default_payment_status(po.order_type)
    if 'expected_delivery_date' in changes:
        po.expected_delivery_date = changes['expected_delivery_date']
    for field in ('shipping_address', 'billing_address', 'payment_terms', 'notes'):
        if field in changes:
            setattr(po, field, clean_text(changes[field]))
    if _CHARGE_FIELDS & set(changes):
        charges = OrderCharges(
            shipping_cost=money(changes.get('shipping_cost', po.shipping_cost)),
            other_charges=money(changes.get('other_charges', po.other_charges)),
            discount_amount=money(changes.get('discount_amount', po.discount_amount)),
        )
        validate_charges(charges)
        po.shipping_cost = charges.shipping_cost
        po.other_charges = charges.other_charges
        po.discount_amount = charges.discount_amount
    return recalculate_purchase_order(db, po=po)


def add_line(db: Session, *, purchase_order_id: int, line: dict) -> PurchaseOrderLine:
    po = get_purchase_order(db, purchase_order_id=purchase_order_id, for_update=True)
    _require_draft(po, 'edited')
    values = _prepare_line(db, line, label='Line')
    row = PurchaseOrderLine(purchase_order_id=po.id, quantity_received=0, **values)
    db.add(row)
    recalculate_purchase_order(db, po=po)
    return row


def _get_line(db: Session, *, po: PurchaseOrder, line_id: int) -> PurchaseOrderLine:
    line = db.execute(
        select(PurchaseOrderLine).where(
            PurchaseOrderLine.id == line_id,
            PurchaseOrderLine.purchase_order_id == po.id,
        )
    ).scalar_one_or_none()
    if line is None:
        raise NotFoundError(f'Line {line_id} not found on order {po.po_number}')
    return line


def update_line(
    db: Session,
    *,
    purchase_order_id: int,
    line_id: int,
    quantity_ordered: int | None = None,
    unit_cost=None,
    tax_amount=None,
    notes: str | None = None,
) -> PurchaseOrderLine:
    po = get_purchase_order(db, purchase_order_id=purchase_order_id, for_update=True)
    _require_draft(po, 'edited')
    line = _get_line(db, po=po, line_id=line_id)

    candidate = LineAmounts(
        quantity_ordered=(
            parse_int(quantity_ordered, field=f'Line {line_id}: quantity ordered')
            if quantity_ordered is not None
            else line.quantity_ordered
        ),
        unit_cost=money(unit_cost) if unit_cost is not None else money(line.unit_cost),
        tax_amount=money(tax_amount) if tax_amount is not None else money(line.tax_amount),
    )
    validate_line_amounts(candidate, label=f'Line {line.id}')
    line.quantity_ordered = candidate.quantity_ordered
    line.unit_cost = candidate.unit_cost
    line.tax_amount = candidate.tax_amount
    if notes is not None:
        line.notes = clean_text(notes)
    line.updated_at = _now()
    recalculate_purchase_order(db, po=po)
    return line


def remove_line(db: Session, *, purchase_order_id: int, line_id: int) -> PurchaseOrder:
    po = get_purchase_order(db, purchase_order_id=purchase_order_id, for_update=True)
    _require_draft(po, 'edited')
    line = _get_line(db, po=po, line_id=line_id)
    db.delete(line)
    return recalculate_purchase_order(db, po=po)


def delete_draft_purchase_order(db: Session, *, purchase_order_id: int, actor_principal_id: int) -> None:
    po = get_purchase_order(db, purchase_order_id=purchase_order_id, for_update=True)
    _require_draft(po, 'discarded')
    db.execute(delete(PurchaseOrderLine).where(PurchaseOrderLine.purchase_order_id == po.id))
    log_audit(
        db,
        actor_principal_id=actor_principal_id,
        action='PURCHASE_ORDER_DELETE',
        entity_type='purchase_order',
        entity_id=po.id,
        metadata={'po_number': po.po_number},
    )
    db.delete(po)
    db.flush()
    logger.info('Deleted draft purchase order %s', po.po_number)


def serialize_line(line: PurchaseOrderLine) -> dict:
    return {
        'id': line.id,
        'product_id': line.product_id,
        'sku': line.sku,
        'product_name': line.product_name,
        'quantity_ordered': line.quantity_ordered,
        'quantity_received': line.quantity_received,
        'quantity_pending': line.quantity_pending,
        'unit_cost': str(money(line.unit_cost)),
        'tax_amount': str(money(line.tax_amount)),
        'line_total': str(line.line_total),
        'notes': line.notes,
    }


def serialize_purchase_order(
    po: PurchaseOrder,
    *,
    vendor_name: str | None = None,
    lines: list[PurchaseOrderLine] | None = None,
) -> dict:
    payload = {
        'id': po.id,
        'po_number': po.po_number,
        'vendor_id': po.vendor_id,
        'vendor_name': vendor_name,
        'order_type': po.order_type.value,
        'status': po.status.value,
        'order_date': po.order_date,
        'expected_delivery_date': po.expected_delivery_date,
        'delivery_date': po.delivery_date,
        'subtotal_amount': str(money(po.subtotal_amount)),
        'tax_amount': str(money(po.tax_amount)),
        'shipping_cost': str(money(po.shipping_cost)),
        'other_charges': str(money(po.other_charges)),
        'discount_amount': str(money(po.discount_amount)),
        'total_amount': str(po.total_amount),
        'payment_status': po.payment_status.value,
        'payment_terms': po.payment_terms,
        'shipping_address': po.shipping_address,
        'billing_address': po.billing_address,
        'notes': po.notes,
        'created_by_principal_id': po.created_by_principal_id,
        'submitted_at': po.submitted_at,
        'approved_by_principal_id': po.approved_by_principal_id,
        'approved_at': po.approved_at,
        'cancelled_at': po.cancelled_at,
        'cancellation_reason': po.cancellation_reason,
        'closed_at': po.closed_at,
    }
    if lines is not None:
        payload['lines'] = [serialize_line(line) for line in lines]
    return payload


def get_purchase_order_detail(db: Session, *, purchase_order_id: int) -> dict:
    row = db.execute(
        select(PurchaseOrder, Vendor.business_name)
        .join(Vendor, Vendor.id == PurchaseOrder.vendor_id)
        .where(PurchaseOrder.id == purchase_order_id)
    ).one_or_none()
    if row is None:
        raise NotFoundError(f'Purchase order {purchase_order_id} not found')
    po, vendor_name = row
    return serialize_purchase_order(
        po,
        vendor_name=vendor_name,
        lines=list_lines(db, purchase_order_id=po.id),
    )


def list_purchase_orders(
    db: Session,
    *,
    vendor_id: int | None = None,
    status: PurchaseOrderStatus | str | None = None,
    order_type: PurchaseOrderType | str | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    search: str | None = None,
    page: int | None = None,
    limit: int | None = None,
) -> dict:
    page, limit, offset = resolve_page(page, limit)
    filters = []
    if vendor_id is not None:
        filters.append(PurchaseOrder.vendor_id == vendor_id)
    if status is not None:
        filters.append(PurchaseOrder.status == coerce_enum(PurchaseOrderStatus, status, field='status'))
    if order_type is not None:
        filters.append(PurchaseOrder.order_type == coerce_enum(PurchaseOrderType, order_type, field='order type'))
    if date_from is not None:
        filters.append(PurchaseOrder.order_date >= date_from)
    if date_to is not None:
        filters.append(PurchaseOrder.order_date <= date_to)
    term = clean_text(search)
    if term:
        pattern = f'%{term.lower()}%'
        filters.append(or_(func.lower(PurchaseOrder.po_number).like(pattern), func.lower(Vendor.business_name).like(pattern)))

    total = db.execute(
        select(func.count(PurchaseOrder.id)).join(Vendor, Vendor.id == PurchaseOrder.vendor_id).where(*filters)
    ).scalar_one()
    rows = db.execute(
        select(PurchaseOrder, Vendor.business_name)
        .join(Vendor, Vendor.id == PurchaseOrder.vendor_id)
        .where(*filters)
        .order_by(PurchaseOrder.order_date.desc(), PurchaseOrder.id.desc())
        .offset(offset)
        .limit(limit)
    ).all()
    items = [serialize_purchase_order(po, vendor_name=vendor_name) for po, vendor_name in rows]
    return page_payload(items, total=int(total), page=page, limit=limit)
