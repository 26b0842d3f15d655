from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Iterable

from sqlalchemy.orm import Session

from pos_backend.errors import InvalidTransitionError, ValidationError
from pos_backend.models import PurchaseOrder, PurchaseOrderLine, PurchaseOrderStatus
from pos_backend.services.audit_service import log_audit
from pos_backend.services.purchase_order_admin_service import get_purchase_order, list_lines
from pos_backend.services.query_utils import clean_text

logger = logging.getLogger(__name__)

_ALLOWED_TRANSITIONS = {
    PurchaseOrderStatus.DRAFT: {PurchaseOrderStatus.SUBMITTED, PurchaseOrderStatus.CANCELLED},
    PurchaseOrderStatus.SUBMITTED: {PurchaseOrderStatus.APPROVED, PurchaseOrderStatus.CANCELLED},
    PurchaseOrderStatus.APPROVED: {
        PurchaseOrderStatus.PARTIALLY_RECEIVED,
        PurchaseOrderStatus.RECEIVED,
        PurchaseOrderStatus.CANCELLED,
    },
    PurchaseOrderStatus.PARTIALLY_RECEIVED: {
        PurchaseOrderStatus.PARTIALLY_RECEIVED,
        PurchaseOrderStatus.RECEIVED,
        PurchaseOrderStatus.CANCELLED,
    },
    PurchaseOrderStatus.RECEIVED: {PurchaseOrderStatus.CLOSED, PurchaseOrderStatus.CANCELLED},
    PurchaseOrderStatus.CLOSED: set(),
    PurchaseOrderStatus.CANCELLED: set(),
}

RECEIVABLE_STATUSES = {PurchaseOrderStatus.APPROVED, PurchaseOrderStatus.PARTIALLY_RECEIVED}


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def allowed_targets(current: PurchaseOrderStatus) -> set[PurchaseOrderStatus]:
    return set(_ALLOWED_TRANSITIONS.get(current, set()))


def assert_transition(current: PurchaseOrderStatus, target: PurchaseOrderStatus) -> None:
    if target not in _ALLOWED_TRANSITIONS.get(current, set()):
        raise InvalidTransitionError(current=current.value, attempted=target.value)


def derive_receiving_status(lines: Iterable[PurchaseOrderLine]) -> PurchaseOrderStatus:
    """Status a receivable order should hold given its line quantities.

    Pure and idempotent: the answer depends only on ordered/received counts.
    """
    rows = list(lines)
    if rows and all(line.quantity_pending == 0 for line in rows):
        return PurchaseOrderStatus.RECEIVED
    if any(int(line.quantity_received or 0) > 0 for line in rows):
        return PurchaseOrderStatus.PARTIALLY_RECEIVED
    return PurchaseOrderStatus.APPROVED


def apply_receiving_status(po: PurchaseOrder, lines: Iterable[PurchaseOrderLine]) -> PurchaseOrderStatus:
    target = derive_receiving_status(lines)
    if target == po.status:
        return target
    assert_transition(po.status, target)
    po.status = target
    if target == PurchaseOrderStatus.RECEIVED:
        po.delivery_date = date.today()
    po.updated_at = _now()
    return target


def submit_purchase_order(db: Session, *, purchase_order_id: int, actor_principal_id: int) -> PurchaseOrder:
    po = get_purchase_order(db, purchase_order_id=purchase_order_id, for_update=True)
    assert_transition(po.status, PurchaseOrderStatus.SUBMITTED)
    if not list_lines(db, purchase_order_id=po.id):
        raise ValidationError('Cannot submit an empty order')

    po.status = PurchaseOrderStatus.SUBMITTED
    po.submitted_at = _now()
    po.submitted_by_principal_id = actor_principal_id
    po.updated_at = _now()
    log_audit(
        db,
        actor_principal_id=actor_principal_id,
        action='PURCHASE_ORDER_SUBMIT',
        entity_type='purchase_order',
        entity_id=po.id,
        metadata={'po_number': po.po_number},
    )
    db.flush()
    logger.info('Submitted purchase order %s', po.po_number)
    return po


def approve_purchase_order(db: Session, *, purchase_order_id: int, actor_principal_id: int) -> PurchaseOrder:
    po = get_purchase_order(db, purchase_order_id=purchase_order_id, for_update=True)
    assert_transition(po.status, PurchaseOrderStatus.APPROVED)

    po.status = PurchaseOrderStatus.APPROVED
    po.approved_by_principal_id = actor_principal_id
    po.approved_at = _now()
    po.updated_at = _now()
    log_audit(
        db,
        actor_principal_id=actor_principal_id,
        action='PURCHASE_ORDER_APPROVE',
        entity_type='purchase_order',
        entity_id=po.id,
        metadata={'po_number': po.po_number, 'total_amount': str(po.total_amount)},
    )
    db.flush()
    logger.info('Approved purchase order %s by principal=%s', po.po_number, actor_principal_id)
    return po


def cancel_purchase_order(
    db: Session,
    *,
    purchase_order_id: int,
    reason: str | None,
    actor_principal_id: int,
) -> PurchaseOrder:
    po = get_purchase_order(db, purchase_order_id=purchase_order_id, for_update=True)
    clean_reason = clean_text(reason)
    if not clean_reason:
        raise ValidationError('A cancellation reason is required')
    assert_transition(po.status, PurchaseOrderStatus.CANCELLED)

    po.status = PurchaseOrderStatus.CANCELLED
    po.cancelled_at = _now()
    po.cancelled_by_principal_id = actor_principal_id
    po.cancellation_reason = clean_reason
    po.notes = f'{po.notes}\n\nCANCELLED: {clean_reason}' if po.notes else f'CANCELLED: {clean_reason}'
    po.updated_at = _now()
    log_audit(
        db,
        actor_principal_id=actor_principal_id,
        action='PURCHASE_ORDER_CANCEL',
        entity_type='purchase_order',
        entity_id=po.id,
        metadata={'po_number': po.po_number, 'reason': clean_reason},
    )
    db.flush()
    logger.info('Cancelled purchase order %s: %s', po.po_number, clean_reason)
    return po


def close_purchase_order(db: Session, *, purchase_order_id: int, actor_principal_id: int) -> PurchaseOrder:
    po = get_purchase_order(db, purchase_order_id=purchase_order_id, for_update=True)
    assert_transition(po.status, PurchaseOrderStatus.CLOSED)

    po.status = PurchaseOrderStatus.CLOSED
    po.closed_at = _now()
    po.updated_at = _now()
    log_audit(
        db,
        actor_principal_id=actor_principal_id,
        action='PURCHASE_ORDER_CLOSE',
        entity_type='purchase_order',
        entity_id=po.id,
        metadata={'po_number': po.po_number},
    )
    db.flush()
    logger.info('Closed purchase order %s', po.po_number)
    return po
