from decimal import Decimal

from sqlalchemy import select

from pos_backend.db import SessionLocal, engine
from pos_backend.models import Base, Principal, PrincipalRole, Product, Vendor, VendorType
from pos_backend.security.passwords import hash_password
from pos_backend.services.catalog_service import create_product, create_vendor

DEMO_PRINCIPALS = [
    ('admin', 'adminpass', PrincipalRole.ADMIN),
    ('manager', 'managerpass', PrincipalRole.MANAGER),
    ('cashier1', 'cashierpass', PrincipalRole.CASHIER),
]

DEMO_PRODUCTS = [
    ('MUG-001', 'Ceramic Mug', Decimal('4.00'), Decimal('1.50'), 3, 10, 24),
    ('BOOK-PB', 'Paperback Book', Decimal('2.00'), None, 40, 15, 30),
    ('LAMP-DSK', 'Desk Lamp', Decimal('12.00'), Decimal('5.25'), 6, 4, 6),
]


def seed() -> None:
    Base.metadata.create_all(engine)
    with SessionLocal() as db:
        for username, password, role in DEMO_PRINCIPALS:
            existing = db.execute(select(Principal).where(Principal.username == username)).scalar_one_or_none()
            if not existing:
                db.add(Principal(username=username, password_hash=hash_password(password), role=role, active=True))
        db.flush()
        admin = db.execute(select(Principal).where(Principal.username == 'admin')).scalar_one()

        vendor = db.execute(select(Vendor).where(Vendor.business_name == 'Thrift Supply Co')).scalar_one_or_none()
        if not vendor:
            vendor = create_vendor(
                db,
                business_name='Thrift Supply Co',
                vendor_type=VendorType.SUPPLIER,
                created_by_principal_id=admin.id,
                payment_terms='Net 30',
            )

        for sku, name, base_price, cost_price, stock, reorder_level, reorder_quantity in DEMO_PRODUCTS:
            existing = db.execute(select(Product.id).where(Product.sku == sku)).scalar_one_or_none()
            if existing:
                continue
            create_product(
                db,
                sku=sku,
                name=name,
                base_price=base_price,
                cost_price=cost_price,
                reorder_level=reorder_level,
                reorder_quantity=reorder_quantity,
                vendor_id=vendor.id,
                opening_quantity=stock,
                created_by_principal_id=admin.id,
            )

        db.commit()


if __name__ == '__main__':
    seed()
    print('Seed data inserted/verified.')
