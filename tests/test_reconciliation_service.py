from __future__ import annotations

import unittest
from decimal import Decimal

from pos_backend.errors import (
    IncompleteReconciliationError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from pos_backend.models import (
    AdjustmentReason,
    AdjustmentType,
    CountSessionStatus,
    CountStatus,
    ReconciliationStatus,
)
from pos_backend.services.count_service import (
    cancel_count_session,
    complete_count_session,
    create_count_session,
    get_count_session_detail,
    list_counts,
    record_count,
)
from pos_backend.services.reconciliation_service import (
    approve_variances,
    complete_reconciliation,
    create_reconciliation,
    get_reconciliation_detail,
    reject_reconciliation,
)
from tests.db_support import DatabaseTestCase


class CountSessionTests(DatabaseTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.scarf = self.make_product('SCARF', name='Scarf', cost_price='3.00', quantity_in_stock=45)
        self.hat = self.make_product('HAT', name='Hat', quantity_in_stock=12)
        self.make_product('OLD', name='Retired', quantity_in_stock=4, active=False)

    def test_full_count_snapshots_active_products(self) -> None:
        session = create_count_session(self.db, count_type='full_count', started_by_principal_id=self.manager.id)
        self.assertRegex(session.session_number, r'^CNT-\d{8}-\d{4}$')
        self.assertEqual(session.status, CountSessionStatus.IN_PROGRESS)
        counts = list_counts(self.db, session_id=session.id)
        self.assertEqual({row.product_id: row.system_quantity for row in counts}, {self.scarf.id: 45, self.hat.id: 12})
        unit_costs = {row.product_id: row.unit_cost for row in counts}
        self.assertEqual(unit_costs[self.scarf.id], Decimal('3.00'))
        self.assertEqual(unit_costs[self.hat.id], Decimal('10.00'))
        self.assertTrue(all(row.status == CountStatus.PENDING for row in counts))

    def test_cycle_count_needs_known_products(self) -> None:
        with self.assertRaises(ValidationError):
            create_count_session(self.db, count_type='cycle_count', started_by_principal_id=self.manager.id)
        with self.assertRaises(NotFoundError):
            create_count_session(
                self.db,
                count_type='spot_check',
                product_ids=[self.scarf.id, 424242],
                started_by_principal_id=self.manager.id,
            )
        with self.assertRaises(ValidationError):
            create_count_session(self.db, count_type='annual', started_by_principal_id=self.manager.id)

    def test_session_cannot_complete_with_uncounted_items(self) -> None:
        session = create_count_session(
            self.db, count_type='cycle_count', product_ids=[self.scarf.id, self.hat.id], started_by_principal_id=self.manager.id
        )
        scarf_count, hat_count = sorted(list_counts(self.db, session_id=session.id), key=lambda row: row.product_id)
        record_count(self.db, count_id=scarf_count.id, counted_quantity=44, counted_by_principal_id=self.manager.id)
        with self.assertRaises(InvalidStateError):
            complete_count_session(self.db, session_id=session.id, actor_principal_id=self.manager.id)
        with self.assertRaises(ValidationError):
            record_count(self.db, count_id=hat_count.id, counted_quantity=-1, counted_by_principal_id=self.manager.id)
        with self.assertRaises(ValidationError):
            record_count(self.db, count_id=hat_count.id, counted_quantity='a dozen', counted_by_principal_id=self.manager.id)
        record_count(self.db, count_id=hat_count.id, counted_quantity=12, counted_by_principal_id=self.manager.id)
        complete_count_session(self.db, session_id=session.id, actor_principal_id=self.manager.id)
        self.assertEqual(session.status, CountSessionStatus.COMPLETED)
        self.assertIsNotNone(session.completed_at)

        with self.assertRaises(InvalidStateError):
            record_count(self.db, count_id=hat_count.id, counted_quantity=11, counted_by_principal_id=self.manager.id)

    def test_cancelled_session_is_closed(self) -> None:
        session = create_count_session(
            self.db, count_type='spot_check', product_ids=[self.hat.id], started_by_principal_id=self.manager.id
        )
        cancel_count_session(self.db, session_id=session.id, actor_principal_id=self.manager.id)
        self.assertEqual(session.status, CountSessionStatus.CANCELLED)
        count = list_counts(self.db, session_id=session.id)[0]
        with self.assertRaises(InvalidStateError):
            record_count(self.db, count_id=count.id, counted_quantity=3, counted_by_principal_id=self.manager.id)
        with self.assertRaises(InvalidStateError):
            create_reconciliation(self.db, session_id=session.id, created_by_principal_id=self.manager.id)

    def test_blind_count_hides_system_quantity_until_completed(self) -> None:
        session = create_count_session(
            self.db,
            count_type='spot_check',
            product_ids=[self.scarf.id],
            is_blind_count=True,
            started_by_principal_id=self.manager.id,
        )
        detail = get_count_session_detail(self.db, session_id=session.id)
        self.assertIsNone(detail['counts'][0]['system_quantity'])
        self.assertIsNone(detail['counts'][0]['variance'])

        count = list_counts(self.db, session_id=session.id)[0]
        record_count(self.db, count_id=count.id, counted_quantity=43, counted_by_principal_id=self.manager.id)
        complete_count_session(self.db, session_id=session.id, actor_principal_id=self.manager.id)
        detail = get_count_session_detail(self.db, session_id=session.id)
        self.assertEqual(detail['counts'][0]['system_quantity'], 45)
        self.assertEqual(detail['counts'][0]['variance'], -2)
        self.assertEqual(detail['counts'][0]['variance_cost'], '-6.00')


class ReconciliationTests(DatabaseTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.scarf = self.make_product('SCARF', name='Scarf', cost_price='3.00', quantity_in_stock=45)
        self.hat = self.make_product('HAT', name='Hat', cost_price='5.00', quantity_in_stock=12)
        self.belt = self.make_product('BELT', name='Belt', cost_price='2.00', quantity_in_stock=8)

    def _reconcile(self, counted: dict[int, int]):
        session = create_count_session(
            self.db,
            count_type='cycle_count',
            product_ids=list(counted),
            started_by_principal_id=self.manager.id,
        )
        counts = {row.product_id: row for row in list_counts(self.db, session_id=session.id)}
        for product_id, quantity in counted.items():
            record_count(
                self.db,
                count_id=counts[product_id].id,
                counted_quantity=quantity,
                counted_by_principal_id=self.manager.id,
            )
        complete_count_session(self.db, session_id=session.id, actor_principal_id=self.manager.id)
        reconciliation = create_reconciliation(self.db, session_id=session.id, created_by_principal_id=self.manager.id)
        return session, reconciliation, counts

    def _decide(self, reconciliation, *decisions):
        return approve_variances(
            self.db,
            reconciliation_id=reconciliation.id,
            decisions=list(decisions),
            reviewed_by_principal_id=self.manager.id,
        )

    def test_approved_variance_adjusts_stock(self) -> None:
        session, reconciliation, counts = self._reconcile({self.scarf.id: 43, self.hat.id: 12})
        self.assertEqual(session.status, CountSessionStatus.RECONCILED)
        self.assertRegex(reconciliation.reconciliation_number, r'^REC-\d{8}-\d{4}$')
        self.assertEqual(reconciliation.status, ReconciliationStatus.PENDING)
        self.assertEqual(reconciliation.total_items_counted, 2)
        self.assertEqual(reconciliation.items_with_variance, 1)
        self.assertEqual(reconciliation.total_variance_cost, Decimal('-6.00'))
        self.assertEqual(counts[self.hat.id].status, CountStatus.VERIFIED)

        self._decide(
            reconciliation,
            {'count_id': counts[self.scarf.id].id, 'action': 'approve', 'reason_code': 'THEFT_OR_LOSS'},
        )
        self.assertEqual(self.scarf.quantity_in_stock, 43)
        adjustment = self.adjustments_for(self.scarf)[0]
        self.assertEqual(adjustment.adjustment_type, AdjustmentType.RECONCILIATION)
        self.assertEqual(adjustment.reason_code, AdjustmentReason.THEFT_OR_LOSS)
        self.assertEqual(adjustment.quantity_change, -2)
        self.assertEqual(adjustment.quantity_before, 45)
        self.assertEqual(adjustment.quantity_after, 43)
        self.assertEqual(counts[self.scarf.id].adjustment_id, adjustment.id)
        self.assertEqual(counts[self.scarf.id].status, CountStatus.VERIFIED)
        self.assertEqual(self.adjustments_for(self.hat), [])

        complete_reconciliation(self.db, reconciliation_id=reconciliation.id, approved_by_principal_id=self.manager.id)
        self.assertEqual(reconciliation.status, ReconciliationStatus.COMPLETED)
        self.assertIsNotNone(reconciliation.approved_at)

    def test_completion_waits_for_every_item(self) -> None:
        _, reconciliation, counts = self._reconcile({self.scarf.id: 43, self.hat.id: 10, self.belt.id: 8})
        self._decide(
            reconciliation,
            {'count_id': counts[self.scarf.id].id, 'action': 'approve', 'reason_code': 'COUNT_VARIANCE'},
        )
        with self.assertRaises(IncompleteReconciliationError) as ctx:
            complete_reconciliation(self.db, reconciliation_id=reconciliation.id, approved_by_principal_id=self.manager.id)
        self.assertEqual(ctx.exception.unresolved_count_ids, [counts[self.hat.id].id])
        self.assertEqual(reconciliation.status, ReconciliationStatus.PENDING)

        self._decide(reconciliation, {'count_id': counts[self.hat.id].id, 'action': 'reject'})
        self.assertEqual(self.hat.quantity_in_stock, 12)
        complete_reconciliation(self.db, reconciliation_id=reconciliation.id, approved_by_principal_id=self.manager.id)
        self.assertEqual(reconciliation.status, ReconciliationStatus.COMPLETED)

    def test_recount_reopens_item(self) -> None:
        _, reconciliation, counts = self._reconcile({self.scarf.id: 40})
        scarf_count = counts[self.scarf.id]
        self._decide(reconciliation, {'count_id': scarf_count.id, 'action': 'recount'})
        self.assertTrue(scarf_count.recount_required)
        self.assertIsNone(scarf_count.counted_quantity)
        self.assertEqual(scarf_count.status, CountStatus.PENDING)
        self.assertEqual(self.scarf.quantity_in_stock, 45)

        with self.assertRaises(InvalidStateError):
            self._decide(reconciliation, {'count_id': scarf_count.id, 'action': 'approve', 'reason_code': 'COUNT_VARIANCE'})
        with self.assertRaises(IncompleteReconciliationError):
            complete_reconciliation(self.db, reconciliation_id=reconciliation.id, approved_by_principal_id=self.manager.id)

        record_count(self.db, count_id=scarf_count.id, counted_quantity=44, counted_by_principal_id=self.manager.id)
        self.assertFalse(scarf_count.recount_required)
        self.assertEqual(scarf_count.recount_quantity, 44)
        self.assertEqual(scarf_count.status, CountStatus.COUNTED)
        self.assertEqual(reconciliation.total_variance_cost, Decimal('-3.00'))

        self._decide(reconciliation, {'count_id': scarf_count.id, 'action': 'approve', 'reason_code': 'DATA_ENTRY_ERROR'})
        self.assertEqual(self.scarf.quantity_in_stock, 44)
        complete_reconciliation(self.db, reconciliation_id=reconciliation.id, approved_by_principal_id=self.manager.id)

    def test_matching_recount_is_verified(self) -> None:
        _, reconciliation, counts = self._reconcile({self.belt.id: 5})
        belt_count = counts[self.belt.id]
        self._decide(reconciliation, {'count_id': belt_count.id, 'action': 'recount'})
        record_count(self.db, count_id=belt_count.id, counted_quantity=8, counted_by_principal_id=self.manager.id)
        self.assertEqual(belt_count.status, CountStatus.VERIFIED)
        complete_reconciliation(self.db, reconciliation_id=reconciliation.id, approved_by_principal_id=self.manager.id)
        self.assertEqual(self.adjustments_for(self.belt), [])

    def test_decisions_are_validated_before_any_change(self) -> None:
        _, reconciliation, counts = self._reconcile({self.scarf.id: 43, self.hat.id: 10})
        scarf_id = counts[self.scarf.id].id
        hat_id = counts[self.hat.id].id
        with self.assertRaises(ValidationError):
            self._decide(
                reconciliation,
                {'count_id': scarf_id, 'action': 'approve', 'reason_code': 'COUNT_VARIANCE'},
                {'count_id': hat_id, 'action': 'approve'},
            )
        self.assertEqual(self.scarf.quantity_in_stock, 45)
        self.assertEqual(counts[self.scarf.id].status, CountStatus.COUNTED)

        with self.assertRaises(ValidationError):
            self._decide(reconciliation, {'count_id': scarf_id, 'action': 'reject'}, {'count_id': scarf_id, 'action': 'reject'})
        with self.assertRaises(ValidationError):
            self._decide(reconciliation, {'count_id': scarf_id, 'action': 'ignore'})
        with self.assertRaises(ValidationError):
            self._decide(reconciliation, {'count_id': 'scarf', 'action': 'reject'})
        with self.assertRaises(NotFoundError):
            self._decide(reconciliation, {'count_id': 999999, 'action': 'reject'})
        with self.assertRaises(ValidationError):
            self._decide(reconciliation)

    def test_verified_item_cannot_be_decided_again(self) -> None:
        _, reconciliation, counts = self._reconcile({self.scarf.id: 43})
        scarf_id = counts[self.scarf.id].id
        self._decide(reconciliation, {'count_id': scarf_id, 'action': 'reject'})
        with self.assertRaises(InvalidStateError):
            self._decide(reconciliation, {'count_id': scarf_id, 'action': 'approve', 'reason_code': 'COUNT_VARIANCE'})

    def test_rejected_reconciliation_is_a_dead_end(self) -> None:
        _, reconciliation, counts = self._reconcile({self.scarf.id: 43, self.hat.id: 10})
        self._decide(
            reconciliation,
            {'count_id': counts[self.scarf.id].id, 'action': 'approve', 'reason_code': 'COUNT_VARIANCE'},
        )
        with self.assertRaises(ValidationError):
            reject_reconciliation(self.db, reconciliation_id=reconciliation.id, reason=' ', actor_principal_id=self.manager.id)
        reject_reconciliation(
            self.db, reconciliation_id=reconciliation.id, reason='Count was rushed', actor_principal_id=self.manager.id
        )
        self.assertEqual(reconciliation.status, ReconciliationStatus.REJECTED)
        self.assertEqual(self.scarf.quantity_in_stock, 43)

        with self.assertRaises(InvalidStateError):
            complete_reconciliation(self.db, reconciliation_id=reconciliation.id, approved_by_principal_id=self.manager.id)
        with self.assertRaises(InvalidStateError):
            self._decide(reconciliation, {'count_id': counts[self.hat.id].id, 'action': 'reject'})

        detail = get_reconciliation_detail(self.db, reconciliation_id=reconciliation.id)
        self.assertEqual(detail['status'], 'rejected')
        self.assertEqual(detail['rejection_reason'], 'Count was rushed')
        self.assertEqual(detail['unresolved_count_ids'], [counts[self.hat.id].id])

    def test_only_completed_sessions_reconcile_once(self) -> None:
        session = create_count_session(
            self.db, count_type='spot_check', product_ids=[self.hat.id], started_by_principal_id=self.manager.id
        )
        with self.assertRaises(InvalidStateError):
            create_reconciliation(self.db, session_id=session.id, created_by_principal_id=self.manager.id)
        count = list_counts(self.db, session_id=session.id)[0]
        record_count(self.db, count_id=count.id, counted_quantity=12, counted_by_principal_id=self.manager.id)
        complete_count_session(self.db, session_id=session.id, actor_principal_id=self.manager.id)
        create_reconciliation(self.db, session_id=session.id, created_by_principal_id=self.manager.id)
        with self.assertRaises(InvalidStateError):
            create_reconciliation(self.db, session_id=session.id, created_by_principal_id=self.manager.id)


if __name__ == '__main__':
    unittest.main()
