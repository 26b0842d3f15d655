from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from pos_backend.errors import InvalidStateError, NotFoundError, ValidationError
from pos_backend.models import (
    CountSessionStatus,
    CountStatus,
    CountType,
    InventoryCount,
    InventoryCountSession,
    InventoryReconciliation,
    Product,
    ReconciliationStatus,
)
from pos_backend.services.audit_service import log_audit
from pos_backend.services.number_series import next_daily_number
from pos_backend.services.purchase_order_math_service import ZERO, money
from pos_backend.services.query_utils import clean_text, coerce_enum, parse_int

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CountSummary:
    total_items_counted: int
    items_with_variance: int
    total_variance_cost: Decimal


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def summarize_counts(counts: list[InventoryCount]) -> CountSummary:
    counted = [row for row in counts if row.counted_quantity is not None]
    return CountSummary(
        total_items_counted=len(counted),
        items_with_variance=sum(1 for row in counted if row.variance != 0),
        total_variance_cost=money(sum((row.variance_cost for row in counted), ZERO)),
    )


def get_count_session(db: Session, *, session_id: int, for_update: bool = False) -> InventoryCountSession:
    query = select(InventoryCountSession).where(InventoryCountSession.id == session_id)
    if for_update:
        query = query.with_for_update()
    session = db.execute(query).scalar_one_or_none()
    if session is None:
        raise NotFoundError(f'Count session {session_id} not found')
    return session


def list_counts(db: Session, *, session_id: int) -> list[InventoryCount]:
    return db.execute(
        select(InventoryCount).where(InventoryCount.count_session_id == session_id).order_by(InventoryCount.id.asc())
    ).scalars().all()


def create_count_session(
    db: Session,
    *,
    count_type: CountType | str,
    started_by_principal_id: int,
    product_ids: list[int] | None = None,
    is_blind_count: bool = False,
    notes: str | None = None,
) -> InventoryCountSession:
    count_type = coerce_enum(CountType, count_type, field='count type')
    if count_type == CountType.FULL_COUNT:
        products = db.execute(
            select(Product).where(Product.active.is_(True)).order_by(Product.name.asc())
        ).scalars().all()
    else:
        wanted = sorted(set(product_ids or []))
        if not wanted:
            raise ValidationError(f'A {count_type.value} needs at least one product')
        products = db.execute(select(Product).where(Product.id.in_(wanted)).order_by(Product.name.asc())).scalars().all()
        missing = sorted(set(wanted) - {product.id for product in products})
        if missing:
            raise NotFoundError(f'Product(s) not found: {", ".join(str(pid) for pid in missing)}')
    if not products:
        raise ValidationError('No products to count')

    session = InventoryCountSession(
        session_number=next_daily_number(db, prefix='CNT'),
        count_type=count_type,
        status=CountSessionStatus.IN_PROGRESS,
        is_blind_count=is_blind_count,
        started_by_principal_id=started_by_principal_id,
        started_at=_now(),
        notes=clean_text(notes),
    )
    db.add(session)
    db.flush()
    for product in products:
        db.add(
            InventoryCount(
                count_session_id=session.id,
                product_id=product.id,
                system_quantity=int(product.quantity_in_stock),
                unit_cost=money(product.cost_price if product.cost_price is not None else product.base_price),
                status=CountStatus.PENDING,
                recount_required=False,
            )
        )
    log_audit(
        db,
        actor_principal_id=started_by_principal_id,
        action='COUNT_SESSION_START',
        entity_type='inventory_count_session',
        entity_id=session.id,
        metadata={'session_number': session.session_number, 'items': len(products), 'type': count_type.value},
    )
    db.flush()
    logger.info('Started count session %s with %s item(s)', session.session_number, len(products))
    return session


def _refresh_reconciliation_totals(db: Session, *, session_id: int) -> None:
    reconciliation = db.execute(
        select(InventoryReconciliation).where(InventoryReconciliation.count_session_id == session_id)
    ).scalar_one_or_none()
    if reconciliation is None:
        return
    summary = summarize_counts(list_counts(db, session_id=session_id))
    reconciliation.total_items_counted = summary.total_items_counted
    reconciliation.items_with_variance = summary.items_with_variance
    reconciliation.total_variance_cost = summary.total_variance_cost
    reconciliation.updated_at = _now()


def record_count(
    db: Session,
    *,
    count_id: int,
    counted_quantity: int,
    counted_by_principal_id: int,
    notes: str | None = None,
) -> InventoryCount:
    count = db.execute(select(InventoryCount).where(InventoryCount.id == count_id).with_for_update()).scalar_one_or_none()
    if count is None:
        raise NotFoundError(f'Count {count_id} not found')
    if counted_quantity is None:
        raise ValidationError('Counted quantity is required')
    counted_quantity = parse_int(counted_quantity, field='Counted quantity')
    if counted_quantity < 0:
        raise ValidationError('Counted quantity cannot be negative')
    session = get_count_session(db, session_id=count.count_session_id)

    if count.recount_required:
        reconciliation_status = db.execute(
            select(InventoryReconciliation.status).where(InventoryReconciliation.count_session_id == session.id)
        ).scalar_one_or_none()
        if reconciliation_status not in (None, ReconciliationStatus.PENDING):
            raise InvalidStateError(f'Reconciliation for {session.session_number} is {reconciliation_status.value}')
        count.counted_quantity = counted_quantity
        count.recount_quantity = counted_quantity
        count.recount_by_principal_id = counted_by_principal_id
        count.recount_at = _now()
        count.recount_required = False
        # A recount that matches the system quantity needs no further review.
        count.status = CountStatus.VERIFIED if count.variance == 0 else CountStatus.COUNTED
    elif session.status == CountSessionStatus.IN_PROGRESS:
        count.counted_quantity = counted_quantity
        count.counted_by_principal_id = counted_by_principal_id
        count.counted_at = _now()
        count.status = CountStatus.COUNTED
    else:
        raise InvalidStateError(f'Count session {session.session_number} is {session.status.value}; counts are closed')

    if notes is not None:
        count.notes = clean_text(notes)
    _refresh_reconciliation_totals(db, session_id=session.id)
    db.flush()
    logger.info('Recorded count %s for product=%s: %s (system %s)', count.id, count.product_id, counted_quantity, count.system_quantity)
    return count


def complete_count_session(db: Session, *, session_id: int, actor_principal_id: int) -> InventoryCountSession:
    session = get_count_session(db, session_id=session_id, for_update=True)
    if session.status != CountSessionStatus.IN_PROGRESS:
        raise InvalidStateError(f'Count session {session.session_number} is {session.status.value}')
    uncounted = [row.id for row in list_counts(db, session_id=session.id) if row.counted_quantity is None]
    if uncounted:
        raise InvalidStateError(f'{len(uncounted)} item(s) in {session.session_number} have not been counted')

    session.status = CountSessionStatus.COMPLETED
    session.completed_at = _now()
    session.updated_at = _now()
    log_audit(
        db,
        actor_principal_id=actor_principal_id,
        action='COUNT_SESSION_COMPLETE',
        entity_type='inventory_count_session',
        entity_id=session.id,
        metadata={'session_number': session.session_number},
    )
    db.flush()
    logger.info('Completed count session %s', session.session_number)
    return session


def cancel_count_session(db: Session, *, session_id: int, actor_principal_id: int) -> InventoryCountSession:
    session = get_count_session(db, session_id=session_id, for_update=True)
    if session.status != CountSessionStatus.IN_PROGRESS:
        raise InvalidStateError(f'Count session {session.session_number} is {session.status.value}')
    session.status = CountSessionStatus.CANCELLED
    session.updated_at = _now()
    log_audit(
        db,
        actor_principal_id=actor_principal_id,
        action='COUNT_SESSION_CANCEL',
        entity_type='inventory_count_session',
        entity_id=session.id,
        metadata={'session_number': session.session_number},
    )
    db.flush()
    return session


def serialize_count(count: InventoryCount, *, hide_system_quantity: bool = False) -> dict:
    return {
        'id': count.id,
        'product_id': count.product_id,
        'system_quantity': None if hide_system_quantity else count.system_quantity,
        'counted_quantity': count.counted_quantity,
        'variance': None if hide_system_quantity else count.variance,
        'variance_cost': None if hide_system_quantity else str(count.variance_cost),
        'status': count.status.value,
        'recount_required': count.recount_required,
        'recount_quantity': count.recount_quantity,
        'review_action': count.review_action.value if count.review_action else None,
        'adjustment_id': count.adjustment_id,
        'notes': count.notes,
    }


def get_count_session_detail(db: Session, *, session_id: int) -> dict:
    session = get_count_session(db, session_id=session_id)
    # Blind counts keep system quantities hidden until counting is over.
    hide = session.is_blind_count and session.status == CountSessionStatus.IN_PROGRESS
    return {
        'id': session.id,
        'session_number': session.session_number,
        'count_type': session.count_type.value,
        'status': session.status.value,
        'is_blind_count': session.is_blind_count,
        'started_by_principal_id': session.started_by_principal_id,
        'started_at': session.started_at,
        'completed_at': session.completed_at,
        'notes': session.notes,
        'counts': [serialize_count(row, hide_system_quantity=hide) for row in list_counts(db, session_id=session.id)],
    }
