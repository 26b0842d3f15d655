from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from pos_backend.errors import InvalidStateError, NotFoundError, OverReceiptError, ValidationError
from pos_backend.models import (
    AdjustmentReason,
    AdjustmentType,
    ItemCondition,
    Product,
    PurchaseOrderStatus,
    PurchaseOrderType,
    ReceivingItem,
    ReceivingRecord,
    ReceivingStatus,
    ReceivingType,
    Vendor,
)
from pos_backend.services.audit_service import log_audit
from pos_backend.services.number_series import next_daily_number
from pos_backend.services.purchase_order_admin_service import get_purchase_order, list_lines
from pos_backend.services.purchase_order_math_service import ZERO, money
from pos_backend.services.purchase_order_status import RECEIVABLE_STATUSES, apply_receiving_status
from pos_backend.services.query_utils import clean_text, coerce_enum, parse_int
from pos_backend.services.stock_service import apply_stock_change

logger = logging.getLogger(__name__)


def _parse_entry(entry: dict, *, label: str) -> dict:
    if entry.get('line_id') is None:
        raise ValidationError(f'{label}: line id is required')
    quantity = parse_int(entry.get('quantity_received_now') or 0, field=f'{label}: received quantity')
    rejected = parse_int(entry.get('rejected_quantity') or 0, field=f'{label}: rejected quantity')
    if quantity < 0:
        raise ValidationError(f'{label}: received quantity cannot be negative')
    if rejected < 0:
        raise ValidationError(f'{label}: rejected quantity cannot be negative')
    if rejected > quantity:
        raise ValidationError(f'{label}: rejected quantity cannot exceed received quantity')
    condition = entry.get('condition')
    fair_market_value = entry.get('fair_market_value')
    if fair_market_value is not None and money(fair_market_value) < 0:
        raise ValidationError(f'{label}: fair market value cannot be negative')
    return {
        'line_id': parse_int(entry['line_id'], field=f'{label}: line id'),
        'quantity': quantity,
        'rejected': rejected,
        'condition': coerce_enum(ItemCondition, condition, field='condition') if condition else None,
        'fair_market_value': money(fair_market_value) if fair_market_value is not None else None,
        'notes': clean_text(entry.get('notes')),
    }


def receive_items(
    db: Session,
    *,
    purchase_order_id: int,
    entries: list[dict],
    received_by_principal_id: int,
    packing_slip_number: str | None = None,
    condition_notes: str | None = None,
    discrepancy_notes: str | None = None,
) -> ReceivingRecord:
    # Row lock serializes concurrent receipts against the same order.
    po = get_purchase_order(db, purchase_order_id=purchase_order_id, for_update=True)
    if po.status not in RECEIVABLE_STATUSES:
        raise InvalidStateError(
            f'Order {po.po_number} is {po.status.value}; only approved or partially received orders can be received'
        )
    if not entries:
        raise ValidationError('Nothing to receive')

    lines = list_lines(db, purchase_order_id=po.id)
    lines_by_id = {line.id: line for line in lines}
    parsed = [_parse_entry(entry, label=f'Entry {idx}') for idx, entry in enumerate(entries, start=1)]

    requested_by_line: dict[int, int] = defaultdict(int)
    for row in parsed:
        if row['line_id'] not in lines_by_id:
            raise NotFoundError(f'Line {row["line_id"]} not found on order {po.po_number}')
        requested_by_line[row['line_id']] += row['quantity']
    for line_id, requested in requested_by_line.items():
        line = lines_by_id[line_id]
        if int(line.quantity_received) + requested > int(line.quantity_ordered):
            raise OverReceiptError(
                line_id=line_id,
                quantity_ordered=int(line.quantity_ordered),
                quantity_received=int(line.quantity_received),
                quantity_requested=requested,
            )
    if sum(requested_by_line.values()) == 0:
        raise ValidationError('Nothing to receive')

    # Every entry is valid past this point; nothing has been mutated yet.
    is_donation = po.order_type == PurchaseOrderType.DONATION
    record = ReceivingRecord(
        receiving_number=next_daily_number(db, prefix='RCV'),
        purchase_order_id=po.id,
        vendor_id=po.vendor_id,
        receiving_type=ReceivingType(po.order_type.value),
        status=ReceivingStatus.COMPLETED,
        received_date=date.today(),
        received_by_principal_id=received_by_principal_id,
        packing_slip_number=clean_text(packing_slip_number),
        condition_notes=clean_text(condition_notes),
        discrepancy_notes=clean_text(discrepancy_notes),
        is_donation=is_donation,
    )
    db.add(record)
    db.flush()

    total_quantity = 0
    total_value = ZERO
    fair_market_total = ZERO
    item_count = 0
    for row in parsed:
        if row['quantity'] == 0:
            continue
        line = lines_by_id[row['line_id']]
        line.quantity_received = int(line.quantity_received) + row['quantity']
        item = ReceivingItem(
            receiving_id=record.id,
            purchase_order_line_id=line.id,
            product_id=line.product_id,
            sku=line.sku,
            product_name=line.product_name,
            quantity_received=row['quantity'],
            rejected_quantity=row['rejected'],
            condition=row['condition'],
            unit_cost=money(line.unit_cost),
            fair_market_value=row['fair_market_value'],
            notes=row['notes'],
        )
        accepted = row['quantity'] - row['rejected']
        if not is_donation and line.product_id is not None and accepted > 0:
            apply_stock_change(
                db,
                product_id=line.product_id,
                quantity_change=accepted,
                adjustment_type=AdjustmentType.RESTOCK,
                reason_code=AdjustmentReason.PO_RECEIPT,
                adjusted_by_principal_id=received_by_principal_id,
                reference_type='receiving',
                reference_id=record.id,
                notes=f'{po.po_number} / {record.receiving_number}',
            )
            item.added_to_inventory = True
        db.add(item)

        item_count += 1
        total_quantity += row['quantity']
        total_value += money(Decimal(accepted) * money(line.unit_cost))
        if row['fair_market_value'] is not None:
            fair_market_total += money(Decimal(accepted) * row['fair_market_value'])

    status = apply_receiving_status(po, lines)
    record.total_items = item_count
    record.total_quantity = total_quantity
    record.total_value = money(total_value)
    record.is_partial = status != PurchaseOrderStatus.RECEIVED
    if is_donation:
        record.fair_market_value = money(fair_market_total)
        record.donation_receipt_number = next_daily_number(db, prefix='DR')

    log_audit(
        db,
        actor_principal_id=received_by_principal_id,
        action='PURCHASE_ORDER_RECEIVE',
        entity_type='purchase_order',
        entity_id=po.id,
        metadata={
            'po_number': po.po_number,
            'receiving_number': record.receiving_number,
            'quantity': total_quantity,
            'status': status.value,
        },
    )
    db.flush()
    logger.info(
        'Received %s unit(s) on %s as %s; order now %s',
        total_quantity,
        po.po_number,
        record.receiving_number,
        status.value,
    )
    return record


def receive_donation(
    db: Session,
    *,
    vendor_id: int,
    items: list[dict],
    received_by_principal_id: int,
    condition_notes: str | None = None,
) -> ReceivingRecord:
    """Record a walk-in donation that has no purchase order behind it.

    Donation receipts document fair market value for the donor receipt and do
    not move stock.
    """
    vendor = db.execute(select(Vendor).where(Vendor.id == vendor_id)).scalar_one_or_none()
    if vendor is None or not vendor.active:
        raise ValidationError(f'Vendor {vendor_id} not found or inactive')
    if not items:
        raise ValidationError('A donation needs at least one item')

    prepared: list[dict] = []
    for idx, payload in enumerate(items, start=1):
        label = f'Item {idx}'
        quantity = parse_int(payload.get('quantity') or 0, field=f'{label}: quantity')
        if quantity <= 0:
            raise ValidationError(f'{label}: quantity must be greater than zero')
        product = None
        if payload.get('product_id') is not None:
            product = db.execute(select(Product).where(Product.id == payload['product_id'])).scalar_one_or_none()
            if product is None:
                raise NotFoundError(f'{label}: product {payload["product_id"]} not found')
        name = clean_text(payload.get('product_name')) or (product.name if product else None)
        if not name:
            raise ValidationError(f'{label}: product name is required for uncatalogued items')
        fair_market_value = money(payload.get('fair_market_value'))
        if fair_market_value < 0:
            raise ValidationError(f'{label}: fair market value cannot be negative')
        condition = payload.get('condition')
        prepared.append(
            {
                'product_id': product.id if product else None,
                'sku': clean_text(payload.get('sku')) or (product.sku if product else None),
                'product_name': name,
                'quantity_received': quantity,
                'condition': coerce_enum(ItemCondition, condition, field='condition') if condition else None,
                'fair_market_value': fair_market_value,
                'notes': clean_text(payload.get('notes')),
            }
        )

    fair_market_total = sum(
        (money(Decimal(row['quantity_received']) * row['fair_market_value']) for row in prepared),
        ZERO,
    )
    record = ReceivingRecord(
        receiving_number=next_daily_number(db, prefix='RCV'),
        purchase_order_id=None,
        vendor_id=vendor.id,
        receiving_type=ReceivingType.DONATION,
        status=ReceivingStatus.COMPLETED,
        received_date=date.today(),
        received_by_principal_id=received_by_principal_id,
        total_items=len(prepared),
        total_quantity=sum(row['quantity_received'] for row in prepared),
        total_value=ZERO,
        condition_notes=clean_text(condition_notes),
        is_donation=True,
        fair_market_value=money(fair_market_total),
        donation_receipt_number=next_daily_number(db, prefix='DR'),
    )
    db.add(record)
    db.flush()
    for row in prepared:
        db.add(ReceivingItem(receiving_id=record.id, rejected_quantity=0, unit_cost=ZERO, **row))

    log_audit(
        db,
        actor_principal_id=received_by_principal_id,
        action='DONATION_RECEIVE',
        entity_type='receiving_record',
        entity_id=record.id,
        metadata={'vendor_id': vendor.id, 'fair_market_value': str(record.fair_market_value)},
    )
    db.flush()
    logger.info('Recorded donation %s from vendor=%s', record.receiving_number, vendor.id)
    return record


def list_receiving_items(db: Session, *, receiving_id: int) -> list[ReceivingItem]:
    return db.execute(
        select(ReceivingItem).where(ReceivingItem.receiving_id == receiving_id).order_by(ReceivingItem.id.asc())
    ).scalars().all()


def serialize_receiving_record(record: ReceivingRecord, items: list[ReceivingItem] | None = None) -> dict:
    payload = {
        'id': record.id,
        'receiving_number': record.receiving_number,
        'purchase_order_id': record.purchase_order_id,
        'vendor_id': record.vendor_id,
        'receiving_type': record.receiving_type.value,
        'status': record.status.value,
        'received_date': record.received_date,
        'received_by_principal_id': record.received_by_principal_id,
        'is_partial': record.is_partial,
        'total_items': record.total_items,
        'total_quantity': record.total_quantity,
        'total_value': str(money(record.total_value)),
        'is_donation': record.is_donation,
        'fair_market_value': str(money(record.fair_market_value)) if record.fair_market_value is not None else None,
        'donation_receipt_number': record.donation_receipt_number,
        'packing_slip_number': record.packing_slip_number,
    }
    if items is not None:
        payload['items'] = [
            {
                'id': item.id,
                'purchase_order_line_id': item.purchase_order_line_id,
                'product_id': item.product_id,
                'sku': item.sku,
                'product_name': item.product_name,
                'quantity_received': item.quantity_received,
                'rejected_quantity': item.rejected_quantity,
                'accepted_quantity': item.accepted_quantity,
                'condition': item.condition.value if item.condition else None,
                'unit_cost': str(money(item.unit_cost)),
                'added_to_inventory': item.added_to_inventory,
            }
            for item in items
        ]
    return payload


def list_receiving_records_for_po(db: Session, *, purchase_order_id: int) -> list[dict]:
    get_purchase_order(db, purchase_order_id=purchase_order_id)
    records = db.execute(
        select(ReceivingRecord)
        .where(ReceivingRecord.purchase_order_id == purchase_order_id)
        .order_by(ReceivingRecord.id.asc())
    ).scalars().all()
    return [serialize_receiving_record(record, list_receiving_items(db, receiving_id=record.id)) for record in records]
