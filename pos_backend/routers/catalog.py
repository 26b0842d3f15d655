from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from pos_backend.auth import Principal, get_current_principal, require_manager
from pos_backend.db import get_db
from pos_backend.models import Product, Vendor
from pos_backend.schemas import ProductCreate, ProductUpdate, VendorCreate
from pos_backend.services.catalog_service import (
    create_product,
    create_vendor,
    get_product,
    get_vendor,
    list_products,
    list_vendors,
    update_product_reorder_settings,
)

router = APIRouter(tags=['catalog'])


def _vendor_payload(vendor: Vendor) -> dict:
    return {
        'id': vendor.id,
        'vendor_number': vendor.vendor_number,
        'vendor_type': vendor.vendor_type.value,
        'business_name': vendor.business_name,
        'contact_person': vendor.contact_person,
        'email': vendor.email,
        'phone': vendor.phone,
        'payment_terms': vendor.payment_terms,
        'is_donor': vendor.is_donor,
        'active': vendor.active,
    }


def _product_payload(product: Product) -> dict:
    return {
        'id': product.id,
        'sku': product.sku,
        'barcode': product.barcode,
        'name': product.name,
        'description': product.description,
        'base_price': str(product.base_price),
        'cost_price': str(product.cost_price) if product.cost_price is not None else None,
        'quantity_in_stock': product.quantity_in_stock,
        'reorder_level': product.reorder_level,
        'reorder_quantity': product.reorder_quantity,
        'vendor_id': product.vendor_id,
        'active': product.active,
    }


@router.get('/vendors')
def vendors_index(
    include_inactive: bool = False,
    _: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return [_vendor_payload(vendor) for vendor in list_vendors(db, include_inactive=include_inactive)]


@router.post('/vendors', status_code=201)
def vendors_create(
    payload: VendorCreate,
    principal: Principal = Depends(require_manager),
    db: Session = Depends(get_db),
):
    vendor = create_vendor(db, created_by_principal_id=principal.id, **payload.model_dump())
    db.commit()
    return _vendor_payload(vendor)


@router.get('/vendors/{vendor_id}')
def vendors_show(vendor_id: int, _: Principal = Depends(get_current_principal), db: Session = Depends(get_db)):
    return _vendor_payload(get_vendor(db, vendor_id=vendor_id))


@router.get('/products')
def products_index(
    search: str | None = None,
    vendor_id: int | None = None,
    include_inactive: bool = False,
    page: int = Query(1, ge=1),
    limit: int | None = Query(None, ge=1),
    _: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    result = list_products(
        db,
        search=search,
        vendor_id=vendor_id,
        include_inactive=include_inactive,
        page=page,
        limit=limit,
    )
    result['items'] = [_product_payload(product) for product in result['items']]
    return result


@router.post('/products', status_code=201)
def products_create(
    payload: ProductCreate,
    principal: Principal = Depends(require_manager),
    db: Session = Depends(get_db),
):
    product = create_product(db, created_by_principal_id=principal.id, **payload.model_dump())
    db.commit()
    return _product_payload(product)


@router.get('/products/{product_id}')
def products_show(product_id: int, _: Principal = Depends(get_current_principal), db: Session = Depends(get_db)):
    return _product_payload(get_product(db, product_id=product_id))


@router.patch('/products/{product_id}')
def products_update(
    product_id: int,
    payload: ProductUpdate,
    _: Principal = Depends(require_manager),
    db: Session = Depends(get_db),
):
    product = update_product_reorder_settings(db, product_id=product_id, **payload.model_dump(exclude_unset=True))
    db.commit()
    return _product_payload(product)
