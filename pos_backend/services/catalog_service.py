from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from pos_backend.errors import NotFoundError, ValidationError
from pos_backend.models import AdjustmentReason, AdjustmentType, Product, Vendor, VendorType
from pos_backend.services.number_series import next_global_number
from pos_backend.services.query_utils import clean_text, coerce_enum, page_payload, resolve_page
from pos_backend.services.stock_service import apply_stock_change

logger = logging.getLogger(__name__)

_DONOR_TYPES = {VendorType.INDIVIDUAL_DONOR, VendorType.CORPORATE_DONOR}


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _parse_money(value, *, field: str, required: bool = True) -> Decimal | None:
    if value is None or str(value).strip() == '':
        if required:
            raise ValidationError(f'{field} is required')
        return None
    try:
        parsed = Decimal(str(value))
    except InvalidOperation as exc:
        raise ValidationError(f'Invalid {field}') from exc
    if parsed < 0:
        raise ValidationError(f'{field} cannot be negative')
    return parsed.quantize(Decimal('0.01'))


def create_vendor(
    db: Session,
    *,
    business_name: str,
    vendor_type: VendorType | str,
    created_by_principal_id: int | None,
    contact_person: str | None = None,
    email: str | None = None,
    phone: str | None = None,
    payment_terms: str | None = None,
    notes: str | None = None,
) -> Vendor:
    name = clean_text(business_name)
    if not name:
        raise ValidationError('Business name is required')
    vendor_type = coerce_enum(VendorType, vendor_type, field='vendor type')

    vendor = Vendor(
        vendor_number=next_global_number(db, prefix='VEN'),
        vendor_type=vendor_type,
        business_name=name,
        contact_person=clean_text(contact_person),
        email=clean_text(email),
        phone=clean_text(phone),
        payment_terms=clean_text(payment_terms),
        is_donor=vendor_type in _DONOR_TYPES,
        notes=clean_text(notes),
        active=True,
        created_by_principal_id=created_by_principal_id,
    )
    db.add(vendor)
    db.flush()
    logger.info('Created vendor %s (%s)', vendor.vendor_number, vendor_type.value)
    return vendor


def set_vendor_active(db: Session, *, vendor_id: int, active: bool) -> Vendor:
    vendor = get_vendor(db, vendor_id=vendor_id)
    vendor.active = active
    vendor.updated_at = _now()
    db.flush()
    return vendor


def get_vendor(db: Session, *, vendor_id: int) -> Vendor:
    vendor = db.execute(select(Vendor).where(Vendor.id == vendor_id)).scalar_one_or_none()
    if vendor is None:
        raise NotFoundError(f'Vendor {vendor_id} not found')
    return vendor


def list_vendors(db: Session, *, include_inactive: bool = False) -> list[Vendor]:
    query = select(Vendor).order_by(Vendor.business_name.asc())
    if not include_inactive:
        query = query.where(Vendor.active.is_(True))
    return db.execute(query).scalars().all()


def create_product(
    db: Session,
    *,
    sku: str,
    name: str,
    base_price,
    created_by_principal_id: int,
    cost_price=None,
    barcode: str | None = None,
    description: str | None = None,
    reorder_level: int = 0,
    reorder_quantity: int = 0,
    vendor_id: int | None = None,
    opening_quantity: int = 0,
) -> Product:
    clean_sku = clean_text(sku)
    clean_name = clean_text(name)
    if not clean_sku:
        raise ValidationError('SKU is required')
    if not clean_name:
        raise ValidationError('Product name is required')
    if reorder_level < 0 or reorder_quantity < 0:
        raise ValidationError('Reorder level and quantity cannot be negative')
    if opening_quantity < 0:
        raise ValidationError('Opening quantity cannot be negative')

    existing = db.execute(select(Product.id).where(Product.sku == clean_sku)).scalar_one_or_none()
    if existing is not None:
        raise ValidationError(f'SKU {clean_sku} already exists')
    if vendor_id is not None:
        get_vendor(db, vendor_id=vendor_id)

    product = Product(
        sku=clean_sku,
        barcode=clean_text(barcode),
        name=clean_name,
        description=clean_text(description),
        base_price=_parse_money(base_price, field='Base price'),
        cost_price=_parse_money(cost_price, field='Cost price', required=False),
        quantity_in_stock=0,
        reorder_level=reorder_level,
        reorder_quantity=reorder_quantity,
        vendor_id=vendor_id,
        active=True,
    )
    db.add(product)
    db.flush()

    if opening_quantity > 0:
        apply_stock_change(
            db,
            product_id=product.id,
            quantity_change=opening_quantity,
            adjustment_type=AdjustmentType.INITIAL,
            reason_code=AdjustmentReason.INITIAL_STOCK,
            adjusted_by_principal_id=created_by_principal_id,
            reference_type='product',
            reference_id=product.id,
        )
    logger.info('Created product %s id=%s', product.sku, product.id)
    return product


def update_product_reorder_settings(
    db: Session,
    *,
    product_id: int,
    reorder_level: int | None = None,
    reorder_quantity: int | None = None,
    vendor_id: int | None = None,
    active: bool | None = None,
) -> Product:
    product = get_product(db, product_id=product_id)
    if reorder_level is not None:
        if reorder_level < 0:
            raise ValidationError('Reorder level cannot be negative')
        product.reorder_level = reorder_level
    if reorder_quantity is not None:
        if reorder_quantity < 0:
            raise ValidationError('Reorder quantity cannot be negative')
        product.reorder_quantity = reorder_quantity
    if vendor_id is not None:
        get_vendor(db, vendor_id=vendor_id)
        product.vendor_id = vendor_id
    if active is not None:
        product.active = active
    product.updated_at = _now()
    db.flush()
    return product


def get_product(db: Session, *, product_id: int) -> Product:
    product = db.execute(select(Product).where(Product.id == product_id)).scalar_one_or_none()
    if product is None:
        raise NotFoundError(f'Product {product_id} not found')
    return product


def list_products(
    db: Session,
    *,
    search: str | None = None,
    vendor_id: int | None = None,
    include_inactive: bool = False,
    page: int | None = None,
    limit: int | None = None,
) -> dict:
    page, limit, offset = resolve_page(page, limit)
    filters = []
    if not include_inactive:
        filters.append(Product.active.is_(True))
    if vendor_id is not None:
        filters.append(Product.vendor_id == vendor_id)
    term = clean_text(search)
    if term:
        pattern = f'%{term.lower()}%'
        filters.append(or_(func.lower(Product.name).like(pattern), func.lower(Product.sku).like(pattern)))

    total = db.execute(select(func.count(Product.id)).where(*filters)).scalar_one()
    rows = db.execute(
        select(Product).where(*filters).order_by(Product.name.asc()).offset(offset).limit(limit)
    ).scalars().all()
    return page_payload(list(rows), total=int(total), page=page, limit=limit)
