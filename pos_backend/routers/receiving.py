from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from pos_backend.auth import Principal, get_current_principal
from pos_backend.db import get_db
from pos_backend.schemas import DonationReceiveRequest
from pos_backend.services.receiving_service import list_receiving_items, receive_donation, serialize_receiving_record

router = APIRouter(prefix='/receiving', tags=['receiving'])


@router.post('/donations', status_code=201)
def donations_receive(
    payload: DonationReceiveRequest,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    record = receive_donation(
        db,
        vendor_id=payload.vendor_id,
        items=[item.model_dump() for item in payload.items],
        received_by_principal_id=principal.id,
        condition_notes=payload.condition_notes,
    )
    db.commit()
    return serialize_receiving_record(record, list_receiving_items(db, receiving_id=record.id))
