from __future__ import annotations

from datetime import date
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

# Request bodies only carry shape; business rules are enforced in the services
# so that every rejection comes back with the same error codes.


class RequestModel(BaseModel):
    model_config = ConfigDict(extra='forbid')


class LoginRequest(RequestModel):
    username: str
    password: str


class VendorCreate(RequestModel):
    business_name: str
    vendor_type: str
    contact_person: str | None = None
    email: str | None = None
    phone: str | None = None
    payment_terms: str | None = None
    notes: str | None = None


class ProductCreate(RequestModel):
    sku: str
    name: str
    base_price: Decimal
    cost_price: Decimal | None = None
    barcode: str | None = None
    description: str | None = None
    reorder_level: int = 0
    reorder_quantity: int = 0
    vendor_id: int | None = None
    opening_quantity: int = 0


class ProductUpdate(RequestModel):
    reorder_level: int | None = None
    reorder_quantity: int | None = None
    vendor_id: int | None = None
    active: bool | None = None


class PurchaseOrderLineIn(RequestModel):
    product_id: int | None = None
    sku: str | None = None
    product_name: str | None = None
    quantity_ordered: int | None = None
    unit_cost: Decimal | None = None
    tax_amount: Decimal = Decimal('0')
    notes: str | None = None


class PurchaseOrderCreate(RequestModel):
    vendor_id: int | None = None
    order_type: str = 'purchase'
    lines: list[PurchaseOrderLineIn] = Field(default_factory=list)
    expected_delivery_date: date | None = None
    shipping_cost: Decimal = Decimal('0')
    other_charges: Decimal = Decimal('0')
    discount_amount: Decimal = Decimal('0')
    shipping_address: str | None = None
    billing_address: str | None = None
    payment_terms: str | None = None
    notes: str | None = None


class PurchaseOrderUpdate(RequestModel):
    vendor_id: int | None = None
    order_type: str | None = None
    expected_delivery_date: date | None = None
    shipping_cost: Decimal | None = None
    other_charges: Decimal | None = None
    discount_amount: Decimal | None = None
    shipping_address: str | None = None
    billing_address: str | None = None
    payment_terms: str | None = None
    notes: str | None = None


class PurchaseOrderLineUpdate(RequestModel):
    quantity_ordered: int | None = None
    unit_cost: Decimal | None = None
    tax_amount: Decimal | None = None
    notes: str | None = None


class CancelRequest(RequestModel):
    reason: str | None = None


class ReceiveEntryIn(RequestModel):
    line_id: int
    quantity_received_now: int
    rejected_quantity: int = 0
    condition: str | None = None
    fair_market_value: Decimal | None = None
    notes: str | None = None


class ReceiveRequest(RequestModel):
    entries: list[ReceiveEntryIn] = Field(default_factory=list)
    packing_slip_number: str | None = None
    condition_notes: str | None = None
    discrepancy_notes: str | None = None


class DonationItemIn(RequestModel):
    product_id: int | None = None
    sku: str | None = None
    product_name: str | None = None
    quantity: int
    condition: str | None = None
    fair_market_value: Decimal | None = None
    notes: str | None = None


class DonationReceiveRequest(RequestModel):
    vendor_id: int
    items: list[DonationItemIn] = Field(default_factory=list)
    condition_notes: str | None = None


class DraftsFromSuggestionsRequest(RequestModel):
    vendor_ids: list[int] | None = None


class AdjustmentCreate(RequestModel):
    product_id: int
    adjustment_type: str
    quantity_change: int
    reason_code: str | None = None
    notes: str | None = None


class CountSessionCreate(RequestModel):
    count_type: str
    product_ids: list[int] | None = None
    is_blind_count: bool = False
    notes: str | None = None


class CountRecord(RequestModel):
    counted_quantity: int
    notes: str | None = None


class ReconciliationCreate(RequestModel):
    session_id: int
    notes: str | None = None


class VarianceDecisionIn(RequestModel):
    count_id: int
    action: str
    reason_code: str | None = None
    notes: str | None = None


class VarianceDecisionsRequest(RequestModel):
    decisions: list[VarianceDecisionIn] = Field(default_factory=list)


class RejectRequest(RequestModel):
    reason: str | None = None
