from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from pos_backend.auth import Principal, get_current_principal, require_manager
from pos_backend.db import get_db
from pos_backend.schemas import (
    CancelRequest,
    DraftsFromSuggestionsRequest,
    PurchaseOrderCreate,
    PurchaseOrderLineIn,
    PurchaseOrderLineUpdate,
    PurchaseOrderUpdate,
    ReceiveRequest,
)
from pos_backend.services.purchase_order_admin_service import (
    add_line,
    create_purchase_order,
    delete_draft_purchase_order,
    get_purchase_order_detail,
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
from pos_backend.services.receiving_service import (
    list_receiving_items,
    list_receiving_records_for_po,
    receive_items,
    serialize_receiving_record,
)
from pos_backend.services.reorder_service import (
    create_draft_orders_from_suggestions,
    generate_reorder_suggestions,
    serialize_reorder_groups,
)

router = APIRouter(prefix='/purchase-orders', tags=['purchase-orders'])


@router.get('')
def purchase_orders_index(
    vendor_id: int | None = None,
    status: str | None = None,
    order_type: str | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    search: str | None = None,
    page: int = Query(1, ge=1),
    limit: int | None = Query(None, ge=1),
    _: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return list_purchase_orders(
        db,
        vendor_id=vendor_id,
        status=status,
        order_type=order_type,
        date_from=date_from,
        date_to=date_to,
        search=search,
        page=page,
        limit=limit,
    )


@router.post('', status_code=201)
def purchase_orders_create(
    payload: PurchaseOrderCreate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    data = payload.model_dump()
    lines = data.pop('lines')
    po = create_purchase_order(db, lines=lines, created_by_principal_id=principal.id, **data)
    db.commit()
    return get_purchase_order_detail(db, purchase_order_id=po.id)


@router.get('/reorder-suggestions')
def reorder_suggestions(_: Principal = Depends(get_current_principal), db: Session = Depends(get_db)):
    return serialize_reorder_groups(generate_reorder_suggestions(db))


@router.post('/from-suggestions', status_code=201)
def purchase_orders_from_suggestions(
    payload: DraftsFromSuggestionsRequest,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    orders = create_draft_orders_from_suggestions(
        db,
        vendor_ids=payload.vendor_ids,
        created_by_principal_id=principal.id,
    )
    db.commit()
    return [get_purchase_order_detail(db, purchase_order_id=po.id) for po in orders]


@router.get('/{purchase_order_id}')
def purchase_orders_show(
    purchase_order_id: int,
    _: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return get_purchase_order_detail(db, purchase_order_id=purchase_order_id)


@router.patch('/{purchase_order_id}')
def purchase_orders_update(
    purchase_order_id: int,
    payload: PurchaseOrderUpdate,
    _: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    update_purchase_order_header(
        db,
        purchase_order_id=purchase_order_id,
        changes=payload.model_dump(exclude_unset=True),
    )
    db.commit()
    return get_purchase_order_detail(db, purchase_order_id=purchase_order_id)


@router.delete('/{purchase_order_id}', status_code=204)
def purchase_orders_delete(
    purchase_order_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    delete_draft_purchase_order(db, purchase_order_id=purchase_order_id, actor_principal_id=principal.id)
    db.commit()


@router.post('/{purchase_order_id}/lines', status_code=201)
def purchase_order_lines_create(
    purchase_order_id: int,
    payload: PurchaseOrderLineIn,
    _: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    add_line(db, purchase_order_id=purchase_order_id, line=payload.model_dump())
    db.commit()
    return get_purchase_order_detail(db, purchase_order_id=purchase_order_id)


@router.patch('/{purchase_order_id}/lines/{line_id}')
def purchase_order_lines_update(
    purchase_order_id: int,
    line_id: int,
    payload: PurchaseOrderLineUpdate,
    _: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    update_line(db, purchase_order_id=purchase_order_id, line_id=line_id, **payload.model_dump(exclude_unset=True))
    db.commit()
    return get_purchase_order_detail(db, purchase_order_id=purchase_order_id)


@router.delete('/{purchase_order_id}/lines/{line_id}')
def purchase_order_lines_delete(
    purchase_order_id: int,
    line_id: int,
    _: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    remove_line(db, purchase_order_id=purchase_order_id, line_id=line_id)
    db.commit()
    return get_purchase_order_detail(db, purchase_order_id=purchase_order_id)


@router.post('/{purchase_order_id}/submit')
def purchase_orders_submit(
    purchase_order_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    submit_purchase_order(db, purchase_order_id=purchase_order_id, actor_principal_id=principal.id)
    db.commit()
    return get_purchase_order_detail(db, purchase_order_id=purchase_order_id)


@router.post('/{purchase_order_id}/approve')
def purchase_orders_approve(
    purchase_order_id: int,
    principal: Principal = Depends(require_manager),
    db: Session = Depends(get_db),
):
    approve_purchase_order(db, purchase_order_id=purchase_order_id, actor_principal_id=principal.id)
    db.commit()
    return get_purchase_order_detail(db, purchase_order_id=purchase_order_id)


@router.post('/{purchase_order_id}/receive', status_code=201)
def purchase_orders_receive(
    purchase_order_id: int,
    payload: ReceiveRequest,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    data = payload.model_dump()
    entries = data.pop('entries')
    record = receive_items(
        db,
        purchase_order_id=purchase_order_id,
        entries=entries,
        received_by_principal_id=principal.id,
        **data,
    )
    db.commit()
    return {
        'receiving': serialize_receiving_record(record, list_receiving_items(db, receiving_id=record.id)),
        'purchase_order': get_purchase_order_detail(db, purchase_order_id=purchase_order_id),
    }


@router.post('/{purchase_order_id}/cancel')
def purchase_orders_cancel(
    purchase_order_id: int,
    payload: CancelRequest,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    cancel_purchase_order(
        db,
        purchase_order_id=purchase_order_id,
        reason=payload.reason,
        actor_principal_id=principal.id,
    )
    db.commit()
    return get_purchase_order_detail(db, purchase_order_id=purchase_order_id)


@router.post('/{purchase_order_id}/close')
def purchase_orders_close(
    purchase_order_id: int,
    principal: Principal = Depends(require_manager),
    db: Session = Depends(get_db),
):
    close_purchase_order(db, purchase_order_id=purchase_order_id, actor_principal_id=principal.id)
    db.commit()
    return get_purchase_order_detail(db, purchase_order_id=purchase_order_id)


@router.get('/{purchase_order_id}/receiving')
def purchase_orders_receiving(
    purchase_order_id: int,
    _: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return list_receiving_records_for_po(db, purchase_order_id=purchase_order_id)
