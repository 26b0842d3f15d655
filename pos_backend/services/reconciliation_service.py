"""Turns a completed count session into authoritative stock adjustments.

A reconciliation starts ``pending``. Managers resolve every counted item with
``approve`` (adjust stock by the variance), ``reject`` (keep system stock) or
``recount`` (send the item back to the counting floor). Only when every item is
verified can the reconciliation be completed. ``rejected`` is a dead end.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

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
    InventoryCount,
    InventoryReconciliation,
    ReconciliationStatus,
    ReviewAction,
)
from pos_backend.services.audit_service import log_audit
from pos_backend.services.count_service import get_count_session, list_counts, serialize_count, summarize_counts
from pos_backend.services.number_series import next_daily_number
from pos_backend.services.query_utils import clean_text, coerce_enum, parse_int
from pos_backend.services.stock_service import apply_stock_change

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _apply_summary(reconciliation: InventoryReconciliation, counts: list[InventoryCount]) -> None:
    summary = summarize_counts(counts)
    reconciliation.total_items_counted = summary.total_items_counted
    reconciliation.items_with_variance = summary.items_with_variance
    reconciliation.total_variance_cost = summary.total_variance_cost
    reconciliation.updated_at = _now()


def unresolved_count_ids(counts: list[InventoryCount]) -> list[int]:
    return [row.id for row in counts if row.status != CountStatus.VERIFIED or row.recount_required]


def get_reconciliation(db: Session, *, reconciliation_id: int, for_update: bool = False) -> InventoryReconciliation:
    query = select(InventoryReconciliation).where(InventoryReconciliation.id == reconciliation_id)
    if for_update:
        query = query.with_for_update()
    reconciliation = db.execute(query).scalar_one_or_none()
    if reconciliation is None:
        raise NotFoundError(f'Reconciliation {reconciliation_id} not found')
    return reconciliation


def _require_pending(reconciliation: InventoryReconciliation) -> None:
    if reconciliation.status != ReconciliationStatus.PENDING:
        raise InvalidStateError(
            f'Reconciliation {reconciliation.reconciliation_number} is {reconciliation.status.value}'
        )


def create_reconciliation(
    db: Session,
    *,
    session_id: int,
    created_by_principal_id: int,
    notes: str | None = None,
) -> InventoryReconciliation:
    session = get_count_session(db, session_id=session_id, for_update=True)
    if session.status != CountSessionStatus.COMPLETED:
        raise InvalidStateError(
            f'Count session {session.session_number} is {session.status.value}; only completed sessions can be reconciled'
        )

    counts = list_counts(db, session_id=session.id)
    for count in counts:
        if count.variance == 0:
            count.status = CountStatus.VERIFIED
            count.reviewed_at = _now()

    reconciliation = InventoryReconciliation(
        reconciliation_number=next_daily_number(db, prefix='REC'),
        count_session_id=session.id,
        status=ReconciliationStatus.PENDING,
        created_by_principal_id=created_by_principal_id,
        notes=clean_text(notes),
    )
    _apply_summary(reconciliation, counts)
    db.add(reconciliation)
    session.status = CountSessionStatus.RECONCILED
    session.updated_at = _now()
    db.flush()

    log_audit(
        db,
        actor_principal_id=created_by_principal_id,
        action='RECONCILIATION_CREATE',
        entity_type='inventory_reconciliation',
        entity_id=reconciliation.id,
        metadata={
            'reconciliation_number': reconciliation.reconciliation_number,
            'session_number': session.session_number,
            'items_with_variance': reconciliation.items_with_variance,
        },
    )
    db.flush()
    logger.info(
        'Created reconciliation %s for %s: %s variance item(s)',
        reconciliation.reconciliation_number,
        session.session_number,
        reconciliation.items_with_variance,
    )
    return reconciliation


def _parse_decisions(decisions: list[dict], counts_by_id: dict[int, InventoryCount]) -> list[tuple]:
    if not decisions:
        raise ValidationError('At least one decision is required')
    seen: set[int] = set()
    parsed: list[tuple] = []
    for idx, decision in enumerate(decisions, start=1):
        label = f'Decision {idx}'
        if decision.get('count_id') is None:
            raise ValidationError(f'{label}: count id is required')
        count_id = parse_int(decision['count_id'], field=f'{label}: count id')
        if count_id in seen:
            raise ValidationError(f'{label}: count {count_id} appears more than once')
        seen.add(count_id)
        count = counts_by_id.get(count_id)
        if count is None:
            raise NotFoundError(f'{label}: count {count_id} is not part of this reconciliation')
        action = coerce_enum(ReviewAction, decision.get('action'), field='action')
        if count.recount_required:
            raise InvalidStateError(f'{label}: count {count_id} is waiting for a recount')
        if count.status != CountStatus.COUNTED:
            raise InvalidStateError(f'{label}: count {count_id} is {count.status.value}')
        reason = None
        if action == ReviewAction.APPROVE:
            if not decision.get('reason_code'):
                raise ValidationError(f'{label}: a reason code is required to approve a variance')
            reason = coerce_enum(AdjustmentReason, decision['reason_code'], field='reason code')
        parsed.append((count, action, reason, clean_text(decision.get('notes'))))
    return parsed


def approve_variances(
    db: Session,
    *,
    reconciliation_id: int,
    decisions: list[dict],
    reviewed_by_principal_id: int,
) -> InventoryReconciliation:
    reconciliation = get_reconciliation(db, reconciliation_id=reconciliation_id, for_update=True)
    _require_pending(reconciliation)
    counts = list_counts(db, session_id=reconciliation.count_session_id)
    parsed = _parse_decisions(decisions, {row.id: row for row in counts})

    summary = {action.value: 0 for action in ReviewAction}
    for count, action, reason, notes in parsed:
        if action == ReviewAction.APPROVE:
            adjustment = apply_stock_change(
                db,
                product_id=count.product_id,
                quantity_change=count.variance,
                adjustment_type=AdjustmentType.RECONCILIATION,
                reason_code=reason,
                adjusted_by_principal_id=reviewed_by_principal_id,
                reference_type='reconciliation',
                reference_id=reconciliation.id,
                notes=notes or f'{reconciliation.reconciliation_number} count {count.id}',
            )
            count.adjustment_id = adjustment.id
            count.status = CountStatus.VERIFIED
        elif action == ReviewAction.REJECT:
            count.status = CountStatus.VERIFIED
        else:
            count.recount_required = True
            count.counted_quantity = None
            count.status = CountStatus.PENDING
        count.review_action = action
        count.reviewed_by_principal_id = reviewed_by_principal_id
        count.reviewed_at = _now()
        if notes:
            count.notes = notes
        summary[action.value] += 1

    _apply_summary(reconciliation, counts)
    log_audit(
        db,
        actor_principal_id=reviewed_by_principal_id,
        action='RECONCILIATION_REVIEW',
        entity_type='inventory_reconciliation',
        entity_id=reconciliation.id,
        metadata=summary,
    )
    db.flush()
    logger.info('Reviewed %s item(s) on %s: %s', len(parsed), reconciliation.reconciliation_number, summary)
    return reconciliation


def complete_reconciliation(
    db: Session,
    *,
    reconciliation_id: int,
    approved_by_principal_id: int,
) -> InventoryReconciliation:
    reconciliation = get_reconciliation(db, reconciliation_id=reconciliation_id, for_update=True)
    _require_pending(reconciliation)
    unresolved = unresolved_count_ids(list_counts(db, session_id=reconciliation.count_session_id))
    if unresolved:
        raise IncompleteReconciliationError(reconciliation_id=reconciliation.id, unresolved_count_ids=unresolved)

    reconciliation.status = ReconciliationStatus.COMPLETED
    reconciliation.approved_by_principal_id = approved_by_principal_id
    reconciliation.approved_at = _now()
    reconciliation.updated_at = _now()
    log_audit(
        db,
        actor_principal_id=approved_by_principal_id,
        action='RECONCILIATION_COMPLETE',
        entity_type='inventory_reconciliation',
        entity_id=reconciliation.id,
        metadata={'reconciliation_number': reconciliation.reconciliation_number},
    )
    db.flush()
    logger.info('Completed reconciliation %s', reconciliation.reconciliation_number)
    return reconciliation


def reject_reconciliation(
    db: Session,
    *,
    reconciliation_id: int,
    reason: str | None,
    actor_principal_id: int,
) -> InventoryReconciliation:
    reconciliation = get_reconciliation(db, reconciliation_id=reconciliation_id, for_update=True)
    _require_pending(reconciliation)
    clean_reason = clean_text(reason)
    if not clean_reason:
        raise ValidationError('A rejection reason is required')

    # Adjustments already approved stay in the ledger; nothing leaves this state.
    reconciliation.status = ReconciliationStatus.REJECTED
    reconciliation.rejection_reason = clean_reason
    reconciliation.updated_at = _now()
    log_audit(
        db,
        actor_principal_id=actor_principal_id,
        action='RECONCILIATION_REJECT',
        entity_type='inventory_reconciliation',
        entity_id=reconciliation.id,
        metadata={'reconciliation_number': reconciliation.reconciliation_number, 'reason': clean_reason},
    )
    db.flush()
    logger.info('Rejected reconciliation %s: %s', reconciliation.reconciliation_number, clean_reason)
    return reconciliation


def get_reconciliation_detail(db: Session, *, reconciliation_id: int) -> dict:
    reconciliation = get_reconciliation(db, reconciliation_id=reconciliation_id)
    counts = list_counts(db, session_id=reconciliation.count_session_id)
    return {
        'id': reconciliation.id,
        'reconciliation_number': reconciliation.reconciliation_number,
        'count_session_id': reconciliation.count_session_id,
        'status': reconciliation.status.value,
        'total_items_counted': reconciliation.total_items_counted,
        'items_with_variance': reconciliation.items_with_variance,
        'total_variance_cost': str(reconciliation.total_variance_cost),
        'created_by_principal_id': reconciliation.created_by_principal_id,
        'approved_by_principal_id': reconciliation.approved_by_principal_id,
        'approved_at': reconciliation.approved_at,
        'rejection_reason': reconciliation.rejection_reason,
        'unresolved_count_ids': unresolved_count_ids(counts),
        'counts': [serialize_count(row) for row in counts],
    }
