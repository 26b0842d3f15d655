from __future__ import annotations

import re
import unittest
from decimal import Decimal

from sqlalchemy import select

from pos_backend.errors import InvalidStateError, InvalidTransitionError, NotFoundError, ValidationError
from pos_backend.models import (
    AuditLog,
    PaymentStatus,
    PurchaseOrder,
    PurchaseOrderLine,
    PurchaseOrderStatus,
    PurchaseOrderType,
)
from pos_backend.services.purchase_order_admin_service import (
    add_line,
    create_purchase_order,
    delete_draft_purchase_order,
    get_purchase_order_detail,
    list_lines,
    list_purchase_orders,
    remove_line,
    update_line,
    update_purchase_order_header,
)
from pos_backend.services.purchase_order_status import (
    approve_purchase_order,
    cancel_purchase_order,
    close_purchase_order,
    submit_purchase_order,
)
from tests.db_support import DatabaseTestCase


class PurchaseOrderAdminServiceTests(DatabaseTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.vendor = self.make_vendor()
        self.mug = self.make_product('MUG-001', name='Ceramic Mug', cost_price='5.00', vendor=self.vendor)
        self.lamp = self.make_product('LAMP-DSK', name='Desk Lamp', cost_price='20.00', vendor=self.vendor)

    def _create(self, **overrides) -> PurchaseOrder:
        payload = {
            'vendor_id': self.vendor.id,
            'lines': [
                {'product_id': self.mug.id, 'quantity_ordered': 10, 'unit_cost': Decimal('5.00')},
                {'product_id': self.lamp.id, 'quantity_ordered': 5, 'unit_cost': Decimal('20.00')},
            ],
            'created_by_principal_id': self.manager.id,
        }
        payload.update(overrides)
        return create_purchase_order(self.db, **payload)

    def test_create_computes_totals_in_draft(self) -> None:
        po = self._create()
        self.assertEqual(po.status, PurchaseOrderStatus.DRAFT)
        self.assertEqual(po.subtotal_amount, Decimal('150.00'))
        self.assertEqual(po.total_amount, Decimal('150.00'))
        self.assertRegex(po.po_number, r'^PO-\d{8}-0001$')
        lines = list_lines(self.db, purchase_order_id=po.id)
        self.assertEqual([line.sku for line in lines], ['MUG-001', 'LAMP-DSK'])
        self.assertEqual([line.quantity_pending for line in lines], [10, 5])

    def test_po_numbers_are_sequential_per_day(self) -> None:
        first = self._create()
        second = self._create()
        first_seq = int(re.match(r'^PO-\d{8}-(\d{4})$', first.po_number).group(1))
        second_seq = int(re.match(r'^PO-\d{8}-(\d{4})$', second.po_number).group(1))
        self.assertEqual(second_seq, first_seq + 1)

    def test_create_validations(self) -> None:
        with self.assertRaises(ValidationError):
            self._create(vendor_id=None)
        with self.assertRaises(ValidationError):
            self._create(lines=[])
        with self.assertRaises(ValidationError):
            self._create(lines=[{'product_id': self.mug.id, 'quantity_ordered': 0, 'unit_cost': Decimal('1')}])
        with self.assertRaises(ValidationError):
            self._create(lines=[{'product_id': self.mug.id, 'quantity_ordered': 1, 'unit_cost': Decimal('-1')}])
        with self.assertRaises(ValidationError):
            self._create(lines=[{'product_id': self.mug.id, 'quantity_ordered': 'abc', 'unit_cost': Decimal('1')}])
        with self.assertRaises(ValidationError):
            self._create(shipping_cost=Decimal('-3'))
        with self.assertRaises(NotFoundError):
            self._create(lines=[{'product_id': 9999, 'quantity_ordered': 1, 'unit_cost': Decimal('1')}])
        self.assertEqual(self.db.execute(select(PurchaseOrder)).scalars().all(), [])

    def test_inactive_vendor_rejected(self) -> None:
        closed = self.make_vendor('Gone Wholesale', active=False)
        with self.assertRaises(ValidationError):
            self._create(vendor_id=closed.id)

    def test_uncatalogued_line_needs_name(self) -> None:
        with self.assertRaises(ValidationError):
            self._create(lines=[{'quantity_ordered': 2, 'unit_cost': Decimal('3.00')}])
        po = self._create(lines=[{'product_name': 'Folding Table', 'quantity_ordered': 2, 'unit_cost': Decimal('3.00')}])
        line = list_lines(self.db, purchase_order_id=po.id)[0]
        self.assertIsNone(line.product_id)
        self.assertEqual(line.product_name, 'Folding Table')

    def test_unit_cost_defaults_to_product_cost(self) -> None:
        po = self._create(lines=[{'product_id': self.lamp.id, 'quantity_ordered': 2}])
        self.assertEqual(po.subtotal_amount, Decimal('40.00'))

    def test_charges_and_line_tax_feed_total(self) -> None:
        po = self._create(
            lines=[{'product_id': self.mug.id, 'quantity_ordered': 10, 'unit_cost': Decimal('5.00'), 'tax_amount': Decimal('4.00')}],
            shipping_cost=Decimal('6.00'),
            other_charges=Decimal('1.00'),
            discount_amount=Decimal('11.00'),
        )
        self.assertEqual(po.subtotal_amount, Decimal('50.00'))
        self.assertEqual(po.tax_amount, Decimal('4.00'))
        self.assertEqual(po.total_amount, Decimal('50.00'))

    def test_discount_larger_than_order_rejected(self) -> None:
        with self.assertRaises(ValidationError):
            self._create(discount_amount=Decimal('500.00'))

    def test_line_mutations_recalculate_totals(self) -> None:
        po = self._create()
        line = add_line(
            self.db,
            purchase_order_id=po.id,
            line={'product_name': 'Gift Bags', 'quantity_ordered': 4, 'unit_cost': Decimal('0.50')},
        )
        self.assertEqual(po.subtotal_amount, Decimal('152.00'))

        update_line(self.db, purchase_order_id=po.id, line_id=line.id, quantity_ordered=10)
        self.assertEqual(po.subtotal_amount, Decimal('155.00'))

        remove_line(self.db, purchase_order_id=po.id, line_id=line.id)
        self.assertEqual(po.subtotal_amount, Decimal('150.00'))
        self.assertEqual(len(list_lines(self.db, purchase_order_id=po.id)), 2)

    def test_update_line_validates(self) -> None:
        po = self._create()
        line = list_lines(self.db, purchase_order_id=po.id)[0]
        with self.assertRaises(ValidationError):
            update_line(self.db, purchase_order_id=po.id, line_id=line.id, quantity_ordered=0)
        with self.assertRaises(ValidationError):
            update_line(self.db, purchase_order_id=po.id, line_id=line.id, quantity_ordered='ten')
        with self.assertRaises(NotFoundError):
            update_line(self.db, purchase_order_id=po.id, line_id=99999, quantity_ordered=2)

    def test_header_update_recalculates_and_rejects_unknown_fields(self) -> None:
        po = self._create()
        update_purchase_order_header(
            self.db,
            purchase_order_id=po.id,
            changes={'shipping_cost': Decimal('12.50'), 'notes': 'Deliver to back door'},
        )
        self.assertEqual(po.total_amount, Decimal('162.50'))
        self.assertEqual(po.notes, 'Deliver to back door')
        with self.assertRaises(ValidationError):
            update_purchase_order_header(self.db, purchase_order_id=po.id, changes={'total_amount': 1})

    def test_donation_order_has_donation_payment_status(self) -> None:
        po = self._create(order_type='donation')
        self.assertEqual(po.order_type, PurchaseOrderType.DONATION)
        self.assertEqual(po.payment_status, PaymentStatus.DONATION)
        with self.assertRaises(ValidationError):
            self._create(order_type='barter')

    def test_mutations_refused_after_submit(self) -> None:
        po = self._create()
        line = list_lines(self.db, purchase_order_id=po.id)[0]
        submit_purchase_order(self.db, purchase_order_id=po.id, actor_principal_id=self.manager.id)

        with self.assertRaises(InvalidStateError):
            add_line(self.db, purchase_order_id=po.id, line={'product_name': 'X', 'quantity_ordered': 1, 'unit_cost': 1})
        with self.assertRaises(InvalidStateError):
            update_line(self.db, purchase_order_id=po.id, line_id=line.id, quantity_ordered=3)
        with self.assertRaises(InvalidStateError):
            remove_line(self.db, purchase_order_id=po.id, line_id=line.id)
        with self.assertRaises(InvalidStateError):
            update_purchase_order_header(self.db, purchase_order_id=po.id, changes={'notes': 'late'})
        with self.assertRaises(InvalidStateError):
            delete_draft_purchase_order(self.db, purchase_order_id=po.id, actor_principal_id=self.manager.id)

    def test_delete_draft_removes_lines(self) -> None:
        po = self._create()
        po_id = po.id
        delete_draft_purchase_order(self.db, purchase_order_id=po_id, actor_principal_id=self.manager.id)
        self.assertIsNone(self.db.get(PurchaseOrder, po_id))
        self.assertEqual(
            self.db.execute(select(PurchaseOrderLine).where(PurchaseOrderLine.purchase_order_id == po_id)).all(),
            [],
        )

    def test_lifecycle_records_actors_and_timestamps(self) -> None:
        po = self._create()
        submit_purchase_order(self.db, purchase_order_id=po.id, actor_principal_id=self.manager.id)
        self.assertEqual(po.status, PurchaseOrderStatus.SUBMITTED)
        self.assertIsNotNone(po.submitted_at)

        approve_purchase_order(self.db, purchase_order_id=po.id, actor_principal_id=self.manager.id)
        self.assertEqual(po.status, PurchaseOrderStatus.APPROVED)
        self.assertEqual(po.approved_by_principal_id, self.manager.id)
        self.assertIsNotNone(po.approved_at)

        actions = self.db.execute(select(AuditLog.action).order_by(AuditLog.id.asc())).scalars().all()
        self.assertEqual(actions, ['PURCHASE_ORDER_CREATE', 'PURCHASE_ORDER_SUBMIT', 'PURCHASE_ORDER_APPROVE'])

    def test_submit_empty_order_rejected(self) -> None:
        po = self._create()
        for line in list_lines(self.db, purchase_order_id=po.id):
            remove_line(self.db, purchase_order_id=po.id, line_id=line.id)
        with self.assertRaises(ValidationError):
            submit_purchase_order(self.db, purchase_order_id=po.id, actor_principal_id=self.manager.id)

    def test_approve_requires_submitted(self) -> None:
        po = self._create()
        with self.assertRaises(InvalidTransitionError):
            approve_purchase_order(self.db, purchase_order_id=po.id, actor_principal_id=self.manager.id)
        with self.assertRaises(InvalidTransitionError):
            close_purchase_order(self.db, purchase_order_id=po.id, actor_principal_id=self.manager.id)

    def test_cancel_requires_reason_and_appends_note(self) -> None:
        po = self._create(notes='Spring order')
        with self.assertRaises(ValidationError):
            cancel_purchase_order(self.db, purchase_order_id=po.id, reason='  ', actor_principal_id=self.manager.id)

        cancel_purchase_order(self.db, purchase_order_id=po.id, reason='Vendor closed', actor_principal_id=self.manager.id)
        self.assertEqual(po.status, PurchaseOrderStatus.CANCELLED)
        self.assertEqual(po.cancellation_reason, 'Vendor closed')
        self.assertTrue(po.notes.startswith('Spring order'))
        self.assertTrue(po.notes.endswith('CANCELLED: Vendor closed'))

        with self.assertRaises(InvalidTransitionError):
            cancel_purchase_order(self.db, purchase_order_id=po.id, reason='again', actor_principal_id=self.manager.id)

    def test_detail_and_listing(self) -> None:
        po = self._create()
        other_vendor = self.make_vendor('Book Barn')
        self._create(
            vendor_id=other_vendor.id,
            lines=[{'product_name': 'Boxes of books', 'quantity_ordered': 3, 'unit_cost': Decimal('8.00')}],
        )

        detail = get_purchase_order_detail(self.db, purchase_order_id=po.id)
        self.assertEqual(detail['vendor_name'], 'Thrift Supply Co')
        self.assertEqual(detail['total_amount'], '150.00')
        self.assertEqual(len(detail['lines']), 2)
        self.assertEqual(detail['lines'][0]['line_total'], '50.00')

        everything = list_purchase_orders(self.db)
        self.assertEqual(everything['total'], 2)
        by_vendor = list_purchase_orders(self.db, vendor_id=other_vendor.id)
        self.assertEqual([row['vendor_name'] for row in by_vendor['items']], ['Book Barn'])
        searched = list_purchase_orders(self.db, search='book barn')
        self.assertEqual(searched['total'], 1)
        self.assertEqual(list_purchase_orders(self.db, status='approved')['total'], 0)

        with self.assertRaises(NotFoundError):
            get_purchase_order_detail(self.db, purchase_order_id=424242)


if __name__ == '__main__':
    unittest.main()
