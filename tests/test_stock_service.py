from __future__ import annotations

import unittest
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import select

from pos_backend.errors import ConstraintViolationError, NotFoundError, ValidationError
from pos_backend.models import AdjustmentType, AuditLog, VendorType
from pos_backend.services.catalog_service import (
    create_product,
    create_vendor,
    list_products,
    list_vendors,
    set_vendor_active,
    update_product_reorder_settings,
)
from pos_backend.services.stock_service import (
    apply_stock_change,
    create_manual_adjustment,
    get_adjustment,
    get_inventory_movement_report,
    get_inventory_valuation,
    get_product_inventory_history,
    list_adjustments,
    list_low_stock_products,
    list_out_of_stock_products,
)
from tests.db_support import DatabaseTestCase


class StockLedgerTests(DatabaseTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.product = self.make_product('VASE', quantity_in_stock=5)

    def test_change_is_applied_with_one_adjustment(self) -> None:
        adjustment = apply_stock_change(
            self.db,
            product_id=self.product.id,
            quantity_change=-3,
            adjustment_type='sale',
            reason_code='SALE',
            adjusted_by_principal_id=self.manager.id,
            reference_type='sale',
            reference_id=77,
        )
        self.assertEqual(self.product.quantity_in_stock, 2)
        self.assertEqual(adjustment.adjustment_number, 'ADJ-000001')
        self.assertEqual((adjustment.quantity_before, adjustment.quantity_after), (5, 2))
        self.assertEqual(adjustment.reference_id, 77)
        self.assertEqual(len(self.adjustments_for(self.product)), 1)

    def test_adjustment_numbers_keep_counting(self) -> None:
        numbers = [
            apply_stock_change(
                self.db,
                product_id=self.product.id,
                quantity_change=1,
                adjustment_type='found',
                reason_code='FOUND_STOCK',
                adjusted_by_principal_id=self.manager.id,
            ).adjustment_number
            for _ in range(3)
        ]
        self.assertEqual(numbers, ['ADJ-000001', 'ADJ-000002', 'ADJ-000003'])
        self.assertEqual(self.product.quantity_in_stock, 8)

    def test_stock_never_goes_negative(self) -> None:
        with self.assertRaises(ConstraintViolationError):
            apply_stock_change(
                self.db,
                product_id=self.product.id,
                quantity_change=-6,
                adjustment_type='damage',
                reason_code='DAMAGED',
                adjusted_by_principal_id=self.manager.id,
            )
        self.assertEqual(self.product.quantity_in_stock, 5)
        self.assertEqual(self.adjustments_for(self.product), [])

    def test_change_requires_reason_and_delta(self) -> None:
        with self.assertRaises(ValidationError):
            apply_stock_change(
                self.db,
                product_id=self.product.id,
                quantity_change=2,
                adjustment_type='found',
                reason_code=None,
                adjusted_by_principal_id=self.manager.id,
            )
        with self.assertRaises(ValidationError):
            apply_stock_change(
                self.db,
                product_id=self.product.id,
                quantity_change=0,
                adjustment_type='correction',
                reason_code='DATA_ENTRY_ERROR',
                adjusted_by_principal_id=self.manager.id,
            )
        with self.assertRaises(ValidationError):
            apply_stock_change(
                self.db,
                product_id=self.product.id,
                quantity_change='plenty',
                adjustment_type='found',
                reason_code='FOUND_STOCK',
                adjusted_by_principal_id=self.manager.id,
            )
        with self.assertRaises(NotFoundError):
            apply_stock_change(
                self.db,
                product_id=31337,
                quantity_change=1,
                adjustment_type='found',
                reason_code='FOUND_STOCK',
                adjusted_by_principal_id=self.manager.id,
            )

    def test_manual_adjustment_rules(self) -> None:
        with self.assertRaises(ValidationError):
            create_manual_adjustment(
                self.db,
                product_id=self.product.id,
                adjustment_type='restock',
                quantity_change=4,
                reason_code='PO_RECEIPT',
                notes='Skipping the order',
                adjusted_by_principal_id=self.manager.id,
            )
        with self.assertRaises(ValidationError):
            create_manual_adjustment(
                self.db,
                product_id=self.product.id,
                adjustment_type='damage',
                quantity_change=1,
                reason_code='DAMAGED',
                notes='Dropped',
                adjusted_by_principal_id=self.manager.id,
            )
        with self.assertRaises(ValidationError):
            create_manual_adjustment(
                self.db,
                product_id=self.product.id,
                adjustment_type='found',
                quantity_change=2,
                reason_code='FOUND_STOCK',
                notes='  ',
                adjusted_by_principal_id=self.manager.id,
            )

        adjustment = create_manual_adjustment(
            self.db,
            product_id=self.product.id,
            adjustment_type='damage',
            quantity_change=-1,
            reason_code='DAMAGED',
            notes='Cracked in the back room',
            adjusted_by_principal_id=self.manager.id,
        )
        self.assertEqual(adjustment.adjustment_type, AdjustmentType.DAMAGE)
        self.assertEqual(adjustment.reference_type, 'manual')
        self.assertEqual(self.product.quantity_in_stock, 4)
        actions = self.db.execute(select(AuditLog.action)).scalars().all()
        self.assertIn('INVENTORY_ADJUSTMENT_MANUAL', actions)
        self.assertIs(get_adjustment(self.db, adjustment_id=adjustment.id), adjustment)

    def test_correction_can_go_either_way(self) -> None:
        for delta in (3, -2):
            create_manual_adjustment(
                self.db,
                product_id=self.product.id,
                adjustment_type='correction',
                quantity_change=delta,
                reason_code='DATA_ENTRY_ERROR',
                notes='Keyed wrong',
                adjusted_by_principal_id=self.manager.id,
            )
        self.assertEqual(self.product.quantity_in_stock, 6)

    def test_list_adjustments_filters_and_pages(self) -> None:
        other = self.make_product('BOWL', quantity_in_stock=0)
        for _ in range(3):
            apply_stock_change(
                self.db,
                product_id=self.product.id,
                quantity_change=1,
                adjustment_type='found',
                reason_code='FOUND_STOCK',
                adjusted_by_principal_id=self.manager.id,
            )
        apply_stock_change(
            self.db,
            product_id=other.id,
            quantity_change=2,
            adjustment_type='restock',
            reason_code='PO_RECEIPT',
            adjusted_by_principal_id=self.manager.id,
        )

        payload = list_adjustments(self.db, product_id=self.product.id, page=1, limit=2)
        self.assertEqual(payload['total'], 3)
        self.assertEqual(payload['pages'], 2)
        self.assertEqual(len(payload['items']), 2)
        self.assertEqual(payload['items'][0]['adjustment_number'], 'ADJ-000003')

        restocks = list_adjustments(self.db, adjustment_type='restock')
        self.assertEqual([row['sku'] for row in restocks['items']], ['BOWL'])
        with self.assertRaises(ValidationError):
            list_adjustments(self.db, adjustment_type='shrink')


class InventoryReportTests(DatabaseTestCase):
    def setUp(self) -> None:
        super().setUp()
        vendor = self.make_vendor()
        self.scarf = self.make_product(
            'SCARF',
            name='Wool Scarf',
            base_price='10.00',
            cost_price='4.00',
            quantity_in_stock=2,
            reorder_level=5,
            reorder_quantity=10,
            vendor=vendor,
        )
        self.mug = self.make_product('MUG', name='Orphan Mug', base_price='8.00', reorder_level=3)
        self.candle = self.make_product('CANDLE', name='Beeswax Candle', base_price='2.50', quantity_in_stock=20, reorder_level=5)
        self.make_product('RETIRED', name='Retired Lamp', active=False)

    def _change(self, product, delta: int, adjustment_type: str, reason_code: str):
        return apply_stock_change(
            self.db,
            product_id=product.id,
            quantity_change=delta,
            adjustment_type=adjustment_type,
            reason_code=reason_code,
            adjusted_by_principal_id=self.manager.id,
        )

    def test_low_stock_includes_products_without_vendor(self) -> None:
        rows = list_low_stock_products(self.db)
        self.assertEqual([row['sku'] for row in rows], ['MUG', 'SCARF'])
        mug, scarf = rows
        self.assertIsNone(mug['vendor_id'])
        self.assertEqual(scarf['vendor_name'], 'Thrift Supply Co')
        self.assertEqual(scarf['stock_value'], '20.00')

    def test_out_of_stock_lists_active_empty_products(self) -> None:
        self.assertEqual([row['sku'] for row in list_out_of_stock_products(self.db)], ['MUG'])
        self._change(self.scarf, -2, 'sale', 'SALE')
        rows = list_out_of_stock_products(self.db)
        self.assertEqual([row['sku'] for row in rows], ['MUG', 'SCARF'])
        self.assertIsNone(rows[0]['last_movement_at'])
        self.assertIsNotNone(rows[1]['last_movement_at'])

    def test_valuation_uses_cost_with_base_price_fallback(self) -> None:
        valuation = get_inventory_valuation(self.db)
        self.assertEqual(valuation['product_count'], 2)
        self.assertEqual(valuation['total_quantity'], 22)
        self.assertEqual(valuation['total_cost_value'], '58.00')
        self.assertEqual(valuation['total_retail_value'], '70.00')
        candle = next(row for row in valuation['items'] if row['sku'] == 'CANDLE')
        self.assertEqual(candle['unit_cost'], '2.50')
        self.assertEqual(candle['cost_value'], '50.00')

    def test_movement_report_groups_by_type_and_product(self) -> None:
        self._change(self.scarf, 3, 'restock', 'PO_RECEIPT')
        self._change(self.scarf, -1, 'sale', 'SALE')
        self._change(self.candle, -4, 'damage', 'DAMAGED')
        today = datetime.now(tz=timezone.utc).date()

        report = get_inventory_movement_report(self.db, date_from=today, date_to=today)
        self.assertEqual(
            [
                (row['adjustment_type'], row['count'], row['units_in'], row['units_out'], row['net_change'])
                for row in report['by_type']
            ],
            [('damage', 1, 0, 4, -4), ('restock', 1, 3, 0, 3), ('sale', 1, 0, 1, -1)],
        )
        self.assertEqual([row['sku'] for row in report['products']], ['CANDLE', 'SCARF'])
        scarf = report['products'][1]
        self.assertEqual((scarf['opening_stock'], scarf['closing_stock'], scarf['net_change']), (2, 4, 2))
        self.assertEqual((scarf['sales_quantity'], scarf['received_quantity'], scarf['adjustment_quantity']), (1, 3, 0))

        earlier = get_inventory_movement_report(self.db, date_from=date(2000, 1, 1), date_to=date(2000, 1, 31))
        self.assertEqual((earlier['by_type'], earlier['products']), ([], []))
        with self.assertRaises(ValidationError):
            get_inventory_movement_report(self.db, date_from=today, date_to=date(2000, 1, 1))

    def test_product_history_is_newest_first(self) -> None:
        first = self._change(self.scarf, 3, 'restock', 'PO_RECEIPT')
        second = self._change(self.scarf, -1, 'sale', 'SALE')
        history = get_product_inventory_history(self.db, product_id=self.scarf.id)
        self.assertEqual([row['id'] for row in history], [second.id, first.id])
        self.assertEqual(history[0]['sku'], 'SCARF')
        self.assertEqual(len(get_product_inventory_history(self.db, product_id=self.scarf.id, limit=1)), 1)
        self.assertEqual(get_product_inventory_history(self.db, product_id=self.mug.id), [])
        with self.assertRaises(NotFoundError):
            get_product_inventory_history(self.db, product_id=424242)


class CatalogTests(DatabaseTestCase):
    def test_vendor_numbers_and_donor_flag(self) -> None:
        supplier = create_vendor(
            self.db, business_name=' Valley Wholesale ', vendor_type='supplier', created_by_principal_id=self.manager.id
        )
        donor = create_vendor(
            self.db,
            business_name='Jordan Smith',
            vendor_type=VendorType.INDIVIDUAL_DONOR,
            created_by_principal_id=self.manager.id,
        )
        self.assertEqual(supplier.vendor_number, 'VEN-000001')
        self.assertEqual(supplier.business_name, 'Valley Wholesale')
        self.assertFalse(supplier.is_donor)
        self.assertTrue(donor.is_donor)

        set_vendor_active(self.db, vendor_id=donor.id, active=False)
        self.assertEqual([row.id for row in list_vendors(self.db)], [supplier.id])
        self.assertEqual(len(list_vendors(self.db, include_inactive=True)), 2)
        with self.assertRaises(ValidationError):
            create_vendor(self.db, business_name='', vendor_type='supplier', created_by_principal_id=self.manager.id)

    def test_opening_quantity_goes_through_the_ledger(self) -> None:
        product = create_product(
            self.db,
            sku='LAMP-01',
            name='Desk Lamp',
            base_price='24.5',
            cost_price='11.00',
            opening_quantity=6,
            created_by_principal_id=self.manager.id,
        )
        self.assertEqual(product.base_price, Decimal('24.50'))
        self.assertEqual(product.quantity_in_stock, 6)
        adjustment = self.adjustments_for(product)[0]
        self.assertEqual(adjustment.adjustment_type, AdjustmentType.INITIAL)
        self.assertEqual((adjustment.quantity_before, adjustment.quantity_after), (0, 6))

    def test_product_validation(self) -> None:
        create_product(self.db, sku='DUP', name='First', base_price='1.00', created_by_principal_id=self.manager.id)
        with self.assertRaises(ValidationError):
            create_product(self.db, sku='DUP', name='Second', base_price='1.00', created_by_principal_id=self.manager.id)
        with self.assertRaises(ValidationError):
            create_product(self.db, sku='NEG', name='Neg', base_price='-1', created_by_principal_id=self.manager.id)
        with self.assertRaises(ValidationError):
            create_product(self.db, sku='BAD', name='Bad', base_price='abc', created_by_principal_id=self.manager.id)
        with self.assertRaises(NotFoundError):
            create_product(
                self.db, sku='NOV', name='No vendor', base_price='1', vendor_id=999, created_by_principal_id=self.manager.id
            )

    def test_reorder_settings_and_listing(self) -> None:
        vendor = self.make_vendor()
        product = self.make_product('SOAP', name='Hand Soap')
        self.make_product('SOCK', name='Wool Socks', active=False)
        update_product_reorder_settings(
            self.db, product_id=product.id, reorder_level=4, reorder_quantity=12, vendor_id=vendor.id
        )
        self.assertEqual((product.reorder_level, product.reorder_quantity, product.vendor_id), (4, 12, vendor.id))
        with self.assertRaises(ValidationError):
            update_product_reorder_settings(self.db, product_id=product.id, reorder_level=-1)

        payload = list_products(self.db, search='so')
        self.assertEqual([row.sku for row in payload['items']], ['SOAP'])
        payload = list_products(self.db, search='so', include_inactive=True)
        self.assertEqual(payload['total'], 2)


if __name__ == '__main__':
    unittest.main()
