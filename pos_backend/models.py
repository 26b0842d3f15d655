from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# SQLite only autoincrements INTEGER PRIMARY KEY columns.
BigIntPK = BigInteger().with_variant(Integer(), 'sqlite')

MONEY_ZERO = Decimal('0.00')


class Base(DeclarativeBase):
    pass


class PrincipalRole(str, Enum):
    ADMIN = 'ADMIN'
    MANAGER = 'MANAGER'
    CASHIER = 'CASHIER'


class VendorType(str, Enum):
    SUPPLIER = 'supplier'
    CONSIGNMENT = 'consignment'
    INDIVIDUAL_DONOR = 'individual_donor'
    CORPORATE_DONOR = 'corporate_donor'
    THRIFT_PARTNER = 'thrift_partner'


class PurchaseOrderType(str, Enum):
    PURCHASE = 'purchase'
    DONATION = 'donation'
    CONSIGNMENT = 'consignment'
    TRANSFER = 'transfer'


class PurchaseOrderStatus(str, Enum):
    DRAFT = 'draft'
    SUBMITTED = 'submitted'
    APPROVED = 'approved'
    PARTIALLY_RECEIVED = 'partially_received'
    RECEIVED = 'received'
    CLOSED = 'closed'
    CANCELLED = 'cancelled'


class PaymentStatus(str, Enum):
    UNPAID = 'unpaid'
    PARTIAL = 'partial'
    PAID = 'paid'
    DONATION = 'donation'
    NA = 'na'


class ReceivingType(str, Enum):
    PURCHASE = 'purchase'
    DONATION = 'donation'
    CONSIGNMENT = 'consignment'
    TRANSFER = 'transfer'


class ReceivingStatus(str, Enum):
    IN_PROGRESS = 'in_progress'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'


class ItemCondition(str, Enum):
    NEW = 'new'
    LIKE_NEW = 'like_new'
    GOOD = 'good'
    FAIR = 'fair'
    POOR = 'poor'
    DAMAGED = 'damaged'


class AdjustmentType(str, Enum):
    RESTOCK = 'restock'
    RECONCILIATION = 'reconciliation'
    SALE = 'sale'
    DAMAGE = 'damage'
    THEFT = 'theft'
    FOUND = 'found'
    CORRECTION = 'correction'
    INITIAL = 'initial'


class AdjustmentReason(str, Enum):
    PO_RECEIPT = 'PO_RECEIPT'
    COUNT_VARIANCE = 'COUNT_VARIANCE'
    DAMAGED = 'DAMAGED'
    THEFT_OR_LOSS = 'THEFT_OR_LOSS'
    FOUND_STOCK = 'FOUND_STOCK'
    DATA_ENTRY_ERROR = 'DATA_ENTRY_ERROR'
    VENDOR_SHORTAGE = 'VENDOR_SHORTAGE'
    INITIAL_STOCK = 'INITIAL_STOCK'
    SALE = 'SALE'


class CountType(str, Enum):
    FULL_COUNT = 'full_count'
    CYCLE_COUNT = 'cycle_count'
    SPOT_CHECK = 'spot_check'


class CountSessionStatus(str, Enum):
    IN_PROGRESS = 'in_progress'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'
    RECONCILED = 'reconciled'


class CountStatus(str, Enum):
    PENDING = 'pending'
    COUNTED = 'counted'
    VERIFIED = 'verified'


class ReviewAction(str, Enum):
    APPROVE = 'approve'
    REJECT = 'reject'
    RECOUNT = 'recount'


class ReconciliationStatus(str, Enum):
    PENDING = 'pending'
    COMPLETED = 'completed'
    REJECTED = 'rejected'


class Principal(Base):
    __tablename__ = 'principals'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    username: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(Text, nullable=False)
    role: Mapped[PrincipalRole] = mapped_column(SQLEnum(PrincipalRole, name='principal_role'), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class AuthEvent(Base):
    __tablename__ = 'auth_events'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    attempted_username: Mapped[str] = mapped_column(Text, nullable=False)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    failure_reason: Mapped[str | None] = mapped_column(Text)
    principal_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('principals.id'))
    ip: Mapped[str | None] = mapped_column(String(64))
    user_agent: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class AuditLog(Base):
    __tablename__ = 'audit_log'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    actor_principal_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('principals.id'))
    action: Mapped[str] = mapped_column(Text, nullable=False)
    entity_type: Mapped[str | None] = mapped_column(Text)
    entity_id: Mapped[int | None] = mapped_column(BigInteger)
    ip: Mapped[str | None] = mapped_column(String(64))
    meta: Mapped[dict] = mapped_column('metadata', JSON, nullable=False, default=dict, server_default='{}')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class WebSession(Base):
    __tablename__ = 'web_sessions'
    __table_args__ = (
        UniqueConstraint('session_token', name='web_sessions_session_token_key'),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    session_token: Mapped[str] = mapped_column(String(128), nullable=False)
    principal_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('principals.id'), nullable=False)
    ip: Mapped[str | None] = mapped_column(String(64))
    user_agent: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    last_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class NumberSeries(Base):
    __tablename__ = 'number_series'

    key: Mapped[str] = mapped_column(String(16), primary_key=True)
    date_key: Mapped[int] = mapped_column(Integer, primary_key=True)
    next_seq: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default='1')


class Vendor(Base):
    __tablename__ = 'vendors'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    vendor_number: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    vendor_type: Mapped[VendorType] = mapped_column(SQLEnum(VendorType, name='vendor_type'), nullable=False)
    business_name: Mapped[str] = mapped_column(Text, nullable=False)
    contact_person: Mapped[str | None] = mapped_column(Text)
    email: Mapped[str | None] = mapped_column(Text)
    phone: Mapped[str | None] = mapped_column(String(32))
    payment_terms: Mapped[str | None] = mapped_column(String(50))
    is_donor: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='false')
    notes: Mapped[str | None] = mapped_column(Text)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    created_by_principal_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('principals.id'))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Product(Base):
    __tablename__ = 'products'
    __table_args__ = (
        CheckConstraint('quantity_in_stock >= 0', name='products_positive_stock'),
        CheckConstraint('base_price >= 0', name='products_positive_price'),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    sku: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    barcode: Mapped[str | None] = mapped_column(String(100), unique=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    base_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    cost_price: Mapped[Decimal | None] = mapped_column(Numeric(10, 2))
    quantity_in_stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    reorder_level: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    reorder_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    vendor_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('vendors.id', ondelete='SET NULL'))
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class PurchaseOrder(Base):
    __tablename__ = 'purchase_orders'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    po_number: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    vendor_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('vendors.id'), nullable=False)
    order_type: Mapped[PurchaseOrderType] = mapped_column(
        SQLEnum(PurchaseOrderType, name='purchase_order_type'),
        nullable=False,
        default=PurchaseOrderType.PURCHASE,
        server_default='PURCHASE',
    )
    status: Mapped[PurchaseOrderStatus] = mapped_column(
        SQLEnum(PurchaseOrderStatus, name='purchase_order_status'),
        nullable=False,
        default=PurchaseOrderStatus.DRAFT,
        server_default='DRAFT',
    )
    order_date: Mapped[date] = mapped_column(Date, nullable=False, server_default=func.current_date())
    expected_delivery_date: Mapped[date | None] = mapped_column(Date)
    delivery_date: Mapped[date | None] = mapped_column(Date)
    subtotal_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=MONEY_ZERO, server_default='0')
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=MONEY_ZERO, server_default='0')
    shipping_cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=MONEY_ZERO, server_default='0')
    other_charges: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=MONEY_ZERO, server_default='0')
    discount_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=MONEY_ZERO, server_default='0')
    shipping_address: Mapped[str | None] = mapped_column(Text)
    billing_address: Mapped[str | None] = mapped_column(Text)
    payment_terms: Mapped[str | None] = mapped_column(String(50))
    payment_status: Mapped[PaymentStatus] = mapped_column(
        SQLEnum(PaymentStatus, name='payment_status'),
        nullable=False,
        default=PaymentStatus.UNPAID,
        server_default='UNPAID',
    )
    notes: Mapped[str | None] = mapped_column(Text)
    created_by_principal_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('principals.id'), nullable=False)
    submitted_by_principal_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('principals.id'))
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    approved_by_principal_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('principals.id'))
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancelled_by_principal_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('principals.id'))
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancellation_reason: Mapped[str | None] = mapped_column(Text)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    @property
    def total_amount(self) -> Decimal:
        return (
            Decimal(self.subtotal_amount or 0)
            + Decimal(self.tax_amount or 0)
            + Decimal(self.shipping_cost or 0)
            + Decimal(self.other_charges or 0)
            - Decimal(self.discount_amount or 0)
        ).quantize(Decimal('0.01'))


class PurchaseOrderLine(Base):
    __tablename__ = 'purchase_order_lines'
    __table_args__ = (
        CheckConstraint('quantity_ordered > 0', name='purchase_order_lines_positive_ordered'),
        CheckConstraint(
            'quantity_received >= 0 AND quantity_received <= quantity_ordered',
            name='purchase_order_lines_received_range',
        ),
        CheckConstraint('unit_cost >= 0', name='purchase_order_lines_positive_unit_cost'),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    purchase_order_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('purchase_orders.id', ondelete='CASCADE'), nullable=False)
    product_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('products.id'))
    sku: Mapped[str | None] = mapped_column(String(100))
    product_name: Mapped[str] = mapped_column(Text, nullable=False)
    quantity_ordered: Mapped[int] = mapped_column(Integer, nullable=False)
    quantity_received: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    unit_cost: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=MONEY_ZERO, server_default='0')
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=MONEY_ZERO, server_default='0')
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    @property
    def quantity_pending(self) -> int:
        return int(self.quantity_ordered) - int(self.quantity_received or 0)

    @property
    def line_total(self) -> Decimal:
        return (Decimal(self.quantity_ordered) * Decimal(self.unit_cost) + Decimal(self.tax_amount or 0)).quantize(
            Decimal('0.01')
        )


class ReceivingRecord(Base):
    __tablename__ = 'receiving_records'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    receiving_number: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    purchase_order_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('purchase_orders.id'))
    vendor_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('vendors.id'), nullable=False)
    receiving_type: Mapped[ReceivingType] = mapped_column(SQLEnum(ReceivingType, name='receiving_type'), nullable=False)
    status: Mapped[ReceivingStatus] = mapped_column(
        SQLEnum(ReceivingStatus, name='receiving_status'),
        nullable=False,
        default=ReceivingStatus.COMPLETED,
        server_default='COMPLETED',
    )
    received_date: Mapped[date] = mapped_column(Date, nullable=False, server_default=func.current_date())
    received_by_principal_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('principals.id'), nullable=False)
    is_partial: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='false')
    total_items: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    total_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    total_value: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=MONEY_ZERO, server_default='0')
    packing_slip_number: Mapped[str | None] = mapped_column(String(100))
    condition_notes: Mapped[str | None] = mapped_column(Text)
    discrepancy_notes: Mapped[str | None] = mapped_column(Text)
    is_donation: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='false')
    fair_market_value: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    donation_receipt_number: Mapped[str | None] = mapped_column(String(50))
    donation_receipt_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='false')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class ReceivingItem(Base):
    __tablename__ = 'receiving_items'
    __table_args__ = (
        CheckConstraint('quantity_received > 0', name='receiving_items_positive_received'),
        CheckConstraint(
            'rejected_quantity >= 0 AND rejected_quantity <= quantity_received',
            name='receiving_items_rejected_range',
        ),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    receiving_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('receiving_records.id', ondelete='CASCADE'), nullable=False)
    purchase_order_line_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('purchase_order_lines.id'))
    product_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('products.id'))
    sku: Mapped[str | None] = mapped_column(String(100))
    product_name: Mapped[str] = mapped_column(Text, nullable=False)
    quantity_received: Mapped[int] = mapped_column(Integer, nullable=False)
    rejected_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    condition: Mapped[ItemCondition | None] = mapped_column(SQLEnum(ItemCondition, name='item_condition'))
    unit_cost: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=MONEY_ZERO, server_default='0')
    fair_market_value: Mapped[Decimal | None] = mapped_column(Numeric(10, 2))
    added_to_inventory: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='false')
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    @property
    def accepted_quantity(self) -> int:
        return int(self.quantity_received) - int(self.rejected_quantity or 0)

    @property
    def line_total(self) -> Decimal:
        return (Decimal(self.accepted_quantity) * Decimal(self.unit_cost or 0)).quantize(Decimal('0.01'))


class InventoryAdjustment(Base):
    __tablename__ = 'inventory_adjustments'
    __table_args__ = (
        CheckConstraint('quantity_after = quantity_before + quantity_change', name='inventory_adjustments_balanced'),
        CheckConstraint('quantity_after >= 0', name='inventory_adjustments_non_negative'),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    adjustment_number: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    product_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('products.id'), nullable=False)
    adjustment_type: Mapped[AdjustmentType] = mapped_column(SQLEnum(AdjustmentType, name='adjustment_type'), nullable=False)
    reason_code: Mapped[AdjustmentReason] = mapped_column(SQLEnum(AdjustmentReason, name='adjustment_reason'), nullable=False)
    quantity_change: Mapped[int] = mapped_column(Integer, nullable=False)
    quantity_before: Mapped[int] = mapped_column(Integer, nullable=False)
    quantity_after: Mapped[int] = mapped_column(Integer, nullable=False)
    reference_type: Mapped[str | None] = mapped_column(String(32))
    reference_id: Mapped[int | None] = mapped_column(BigInteger)
    notes: Mapped[str | None] = mapped_column(Text)
    adjusted_by_principal_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('principals.id'), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class InventoryCountSession(Base):
    __tablename__ = 'inventory_count_sessions'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    session_number: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    count_type: Mapped[CountType] = mapped_column(SQLEnum(CountType, name='count_type'), nullable=False)
    status: Mapped[CountSessionStatus] = mapped_column(
        SQLEnum(CountSessionStatus, name='count_session_status'),
        nullable=False,
        default=CountSessionStatus.IN_PROGRESS,
        server_default='IN_PROGRESS',
    )
    is_blind_count: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='false')
    started_by_principal_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('principals.id'), nullable=False)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class InventoryCount(Base):
    __tablename__ = 'inventory_counts'
    __table_args__ = (
        UniqueConstraint('count_session_id', 'product_id', name='inventory_counts_session_product_uniq'),
        CheckConstraint('counted_quantity IS NULL OR counted_quantity >= 0', name='inventory_counts_non_negative'),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    count_session_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey('inventory_count_sessions.id', ondelete='CASCADE'),
        nullable=False,
    )
    product_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('products.id'), nullable=False)
    system_quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    counted_quantity: Mapped[int | None] = mapped_column(Integer)
    unit_cost: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=MONEY_ZERO, server_default='0')
    counted_by_principal_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('principals.id'))
    counted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    recount_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='false')
    recount_quantity: Mapped[int | None] = mapped_column(Integer)
    recount_by_principal_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('principals.id'))
    recount_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    status: Mapped[CountStatus] = mapped_column(
        SQLEnum(CountStatus, name='count_status'),
        nullable=False,
        default=CountStatus.PENDING,
        server_default='PENDING',
    )
    review_action: Mapped[ReviewAction | None] = mapped_column(SQLEnum(ReviewAction, name='review_action'))
    reviewed_by_principal_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('principals.id'))
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    adjustment_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('inventory_adjustments.id'))
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    @property
    def variance(self) -> int | None:
        if self.counted_quantity is None:
            return None
        return int(self.counted_quantity) - int(self.system_quantity)

    @property
    def variance_cost(self) -> Decimal:
        if self.variance is None:
            return MONEY_ZERO
        return (Decimal(self.variance) * Decimal(self.unit_cost or 0)).quantize(Decimal('0.01'))


class InventoryReconciliation(Base):
    __tablename__ = 'inventory_reconciliations'
    __table_args__ = (
        UniqueConstraint('count_session_id', name='inventory_reconciliations_session_uniq'),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    reconciliation_number: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    count_session_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('inventory_count_sessions.id'), nullable=False)
    status: Mapped[ReconciliationStatus] = mapped_column(
        SQLEnum(ReconciliationStatus, name='reconciliation_status'),
        nullable=False,
        default=ReconciliationStatus.PENDING,
        server_default='PENDING',
    )
    total_items_counted: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    items_with_variance: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    total_variance_cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=MONEY_ZERO, server_default='0')
    created_by_principal_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('principals.id'), nullable=False)
    approved_by_principal_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('principals.id'))
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    rejection_reason: Mapped[str | None] = mapped_column(Text)
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
