from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from pos_backend.auth import Principal, get_current_principal, require_manager
from pos_backend.db import get_db
from pos_backend.models import InventoryAdjustment
from pos_backend.schemas import (
    AdjustmentCreate,
    CountRecord,
    CountSessionCreate,
    ReconciliationCreate,
    RejectRequest,
    VarianceDecisionsRequest,
)
from pos_backend.services.count_service import (
    cancel_count_session,
    complete_count_session,
    create_count_session,
    get_count_session_detail,
    record_count,
    serialize_count,
)
from pos_backend.services.reconciliation_service import (
    approve_variances,
    complete_reconciliation,
    create_reconciliation,
    get_reconciliation_detail,
    reject_reconciliation,
)
from pos_backend.services.stock_service import (
    create_manual_adjustment,
    get_adjustment,
    get_inventory_movement_report,
    get_inventory_valuation,
    get_product_inventory_history,
    list_adjustments,
    list_low_stock_products,
    list_out_of_stock_products,
)

router = APIRouter(prefix='/inventory', tags=['inventory'])


def _adjustment_payload(adjustment: InventoryAdjustment) -> dict:
    return {
        'id': adjustment.id,
        'adjustment_number': adjustment.adjustment_number,
        'product_id': adjustment.product_id,
        'adjustment_type': adjustment.adjustment_type.value,
        'reason_code': adjustment.reason_code.value,
        'quantity_change': adjustment.quantity_change,
        'quantity_before': adjustment.quantity_before,
        'quantity_after': adjustment.quantity_after,
        'reference_type': adjustment.reference_type,
        'reference_id': adjustment.reference_id,
        'notes': adjustment.notes,
        'adjusted_by_principal_id': adjustment.adjusted_by_principal_id,
    }


@router.get('/adjustments')
def adjustments_index(
    product_id: int | None = None,
    adjustment_type: str | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    page: int = Query(1, ge=1),
    limit: int | None = Query(None, ge=1),
    _: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return list_adjustments(
        db,
        product_id=product_id,
        adjustment_type=adjustment_type,
        date_from=date_from,
        date_to=date_to,
        page=page,
        limit=limit,
    )


@router.post('/adjustments', status_code=201)
def adjustments_create(
    payload: AdjustmentCreate,
    principal: Principal = Depends(require_manager),
    db: Session = Depends(get_db),
):
    adjustment = create_manual_adjustment(db, adjusted_by_principal_id=principal.id, **payload.model_dump())
    db.commit()
    return _adjustment_payload(adjustment)


@router.get('/adjustments/{adjustment_id}')
def adjustments_show(adjustment_id: int, _: Principal = Depends(get_current_principal), db: Session = Depends(get_db)):
    return _adjustment_payload(get_adjustment(db, adjustment_id=adjustment_id))


@router.get('/products/{product_id}/history')
def product_history(
    product_id: int,
    limit: int | None = Query(None, ge=1),
    _: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return get_product_inventory_history(db, product_id=product_id, limit=limit)


@router.get('/low-stock')
def low_stock_report(_: Principal = Depends(get_current_principal), db: Session = Depends(get_db)):
    return list_low_stock_products(db)


@router.get('/out-of-stock')
def out_of_stock_report(_: Principal = Depends(get_current_principal), db: Session = Depends(get_db)):
    return list_out_of_stock_products(db)


@router.get('/valuation')
def valuation_report(_: Principal = Depends(require_manager), db: Session = Depends(get_db)):
    return get_inventory_valuation(db)


@router.get('/movements')
def movement_report(
    date_from: date,
    date_to: date,
    _: Principal = Depends(require_manager),
    db: Session = Depends(get_db),
):
    return get_inventory_movement_report(db, date_from=date_from, date_to=date_to)


@router.post('/count-sessions', status_code=201)
def count_sessions_create(
    payload: CountSessionCreate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    session = create_count_session(db, started_by_principal_id=principal.id, **payload.model_dump())
    db.commit()
    return get_count_session_detail(db, session_id=session.id)


@router.get('/count-sessions/{session_id}')
def count_sessions_show(session_id: int, _: Principal = Depends(get_current_principal), db: Session = Depends(get_db)):
    return get_count_session_detail(db, session_id=session_id)


@router.post('/counts/{count_id}')
def counts_record(
    count_id: int,
    payload: CountRecord,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    count = record_count(
        db,
        count_id=count_id,
        counted_quantity=payload.counted_quantity,
        counted_by_principal_id=principal.id,
        notes=payload.notes,
    )
    db.commit()
    return serialize_count(count, hide_system_quantity=True)


@router.post('/count-sessions/{session_id}/complete')
def count_sessions_complete(
    session_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    complete_count_session(db, session_id=session_id, actor_principal_id=principal.id)
    db.commit()
    return get_count_session_detail(db, session_id=session_id)


@router.post('/count-sessions/{session_id}/cancel')
def count_sessions_cancel(
    session_id: int,
    principal: Principal = Depends(require_manager),
    db: Session = Depends(get_db),
):
    cancel_count_session(db, session_id=session_id, actor_principal_id=principal.id)
    db.commit()
    return get_count_session_detail(db, session_id=session_id)


@router.post('/reconciliations', status_code=201)
def reconciliations_create(
    payload: ReconciliationCreate,
    principal: Principal = Depends(require_manager),
    db: Session = Depends(get_db),
):
    reconciliation = create_reconciliation(
        db,
        session_id=payload.session_id,
        created_by_principal_id=principal.id,
        notes=payload.notes,
    )
    db.commit()
    return get_reconciliation_detail(db, reconciliation_id=reconciliation.id)


@router.get('/reconciliations/{reconciliation_id}')
def reconciliations_show(
    reconciliation_id: int,
    _: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return get_reconciliation_detail(db, reconciliation_id=reconciliation_id)


@router.post('/reconciliations/{reconciliation_id}/decisions')
def reconciliations_decide(
    reconciliation_id: int,
    payload: VarianceDecisionsRequest,
    principal: Principal = Depends(require_manager),
    db: Session = Depends(get_db),
):
    approve_variances(
        db,
        reconciliation_id=reconciliation_id,
        decisions=[decision.model_dump() for decision in payload.decisions],
        reviewed_by_principal_id=principal.id,
    )
    db.commit()
    return get_reconciliation_detail(db, reconciliation_id=reconciliation_id)


@router.post('/reconciliations/{reconciliation_id}/complete')
def reconciliations_complete(
    reconciliation_id: int,
    principal: Principal = Depends(require_manager),
    db: Session = Depends(get_db),
):
    complete_reconciliation(db, reconciliation_id=reconciliation_id, approved_by_principal_id=principal.id)
    db.commit()
    return get_reconciliation_detail(db, reconciliation_id=reconciliation_id)


@router.post('/reconciliations/{reconciliation_id}/reject')
def reconciliations_reject(
    reconciliation_id: int,
    payload: RejectRequest,
    principal: Principal = Depends(require_manager),
    db: Session = Depends(get_db),
):
    reject_reconciliation(
        db,
        reconciliation_id=reconciliation_id,
        reason=payload.reason,
        actor_principal_id=principal.id,
    )
    db.commit()
    return get_reconciliation_detail(db, reconciliation_id=reconciliation_id)
