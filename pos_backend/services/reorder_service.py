from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from pos_backend.errors import ValidationError
from pos_backend.models import (
    Product,
    PurchaseOrder,
    PurchaseOrderLine,
    PurchaseOrderStatus,
    PurchaseOrderType,
    Vendor,
)
from pos_backend.services.purchase_order_admin_service import create_purchase_order
from pos_backend.services.purchase_order_math_service import ZERO, money

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReorderSuggestion:
    product_id: int
    sku: str
    product_name: str
    quantity_in_stock: int
    reorder_level: int
    suggested_quantity: int
    unit_cost: Decimal
    estimated_cost: Decimal


@dataclass
class VendorReorderGroup:
    vendor_id: int
    vendor_name: str
    suggestions: list[ReorderSuggestion] = field(default_factory=list)

    @property
    def total_units(self) -> int:
        return sum(row.suggested_quantity for row in self.suggestions)

    @property
    def estimated_total(self) -> Decimal:
        return money(sum((row.estimated_cost for row in self.suggestions), ZERO))


def _latest_unit_cost_subquery():
    latest_line = (
        select(PurchaseOrderLine.product_id, func.max(PurchaseOrderLine.id).label('line_id'))
        .join(PurchaseOrder, PurchaseOrder.id == PurchaseOrderLine.purchase_order_id)
        .where(
            PurchaseOrderLine.product_id.is_not(None),
            PurchaseOrder.status != PurchaseOrderStatus.CANCELLED,
        )
        .group_by(PurchaseOrderLine.product_id)
        .subquery()
    )
    return (
        select(latest_line.c.product_id, PurchaseOrderLine.unit_cost)
        .select_from(latest_line)
        .join(PurchaseOrderLine, PurchaseOrderLine.id == latest_line.c.line_id)
        .subquery()
    )


def resolve_unit_cost(*, last_po_cost, cost_price, base_price) -> Decimal:
    for candidate in (last_po_cost, cost_price, base_price):
        if candidate is not None:
            return money(candidate)
    return ZERO


def generate_reorder_suggestions(db: Session) -> list[VendorReorderGroup]:
    """Low-stock products grouped by their primary vendor.

    Products without an active primary vendor are left out. Read-only.
    """
    last_cost = _latest_unit_cost_subquery()
    rows = db.execute(
        select(Product, Vendor.id, Vendor.business_name, last_cost.c.unit_cost)
        .join(Vendor, Vendor.id == Product.vendor_id)
        .outerjoin(last_cost, last_cost.c.product_id == Product.id)
        .where(
            Product.active.is_(True),
            Vendor.active.is_(True),
            Product.quantity_in_stock <= Product.reorder_level,
        )
        .order_by(Vendor.business_name.asc(), Vendor.id.asc(), Product.name.asc())
    ).all()

    groups: dict[int, VendorReorderGroup] = {}
    for product, vendor_id, vendor_name, last_po_cost in rows:
        unit_cost = resolve_unit_cost(
            last_po_cost=last_po_cost,
            cost_price=product.cost_price,
            base_price=product.base_price,
        )
        quantity = int(product.reorder_quantity or 0)
        group = groups.get(vendor_id)
        if group is None:
            group = VendorReorderGroup(vendor_id=vendor_id, vendor_name=vendor_name)
            groups[vendor_id] = group
        group.suggestions.append(
            ReorderSuggestion(
                product_id=product.id,
                sku=product.sku,
                product_name=product.name,
                quantity_in_stock=int(product.quantity_in_stock),
                reorder_level=int(product.reorder_level),
                suggested_quantity=quantity,
                unit_cost=unit_cost,
                estimated_cost=money(Decimal(quantity) * unit_cost),
            )
        )
    return list(groups.values())


def serialize_reorder_groups(groups: list[VendorReorderGroup]) -> list[dict]:
    return [
        {
            'vendor_id': group.vendor_id,
            'vendor_name': group.vendor_name,
            'total_units': group.total_units,
            'estimated_total': str(group.estimated_total),
            'suggestions': [
                {
                    'product_id': row.product_id,
                    'sku': row.sku,
                    'product_name': row.product_name,
                    'quantity_in_stock': row.quantity_in_stock,
                    'reorder_level': row.reorder_level,
                    'suggested_quantity': row.suggested_quantity,
                    'unit_cost': str(row.unit_cost),
                    'estimated_cost': str(row.estimated_cost),
                }
                for row in group.suggestions
            ],
        }
        for group in groups
    ]


def create_draft_orders_from_suggestions(
    db: Session,
    *,
    created_by_principal_id: int,
    vendor_ids: list[int] | None = None,
) -> list[PurchaseOrder]:
    groups = generate_reorder_suggestions(db)
    if vendor_ids:
        wanted = set(vendor_ids)
        groups = [group for group in groups if group.vendor_id in wanted]

    created: list[PurchaseOrder] = []
    for group in groups:
        lines = [
            {
                'product_id': row.product_id,
                'quantity_ordered': row.suggested_quantity,
                'unit_cost': row.unit_cost,
            }
            for row in group.suggestions
            if row.suggested_quantity > 0
        ]
        if not lines:
            continue
        po = create_purchase_order(
            db,
            vendor_id=group.vendor_id,
            order_type=PurchaseOrderType.PURCHASE,
            lines=lines,
            created_by_principal_id=created_by_principal_id,
            notes='Generated from reorder suggestions',
        )
        created.append(po)
    if not created:
        raise ValidationError('No reorder suggestions with a quantity to order for the selected vendors')
    logger.info('Generated %s draft order(s) from reorder suggestions', len(created))
    return created
