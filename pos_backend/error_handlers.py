from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from pos_backend.errors import (
    ConstraintViolationError,
    IncompleteReconciliationError,
    InvalidStateError,
    NotFoundError,
    OverReceiptError,
    PosError,
    ValidationError,
)

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: list[tuple[type[PosError], int]] = [
    (NotFoundError, 404),
    (ValidationError, 422),
    (InvalidStateError, 409),
    (IncompleteReconciliationError, 409),
    (ConstraintViolationError, 409),
]


def status_for(exc: PosError) -> int:
    for error_cls, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_cls):
            return status_code
    return 400


def error_body(exc: PosError) -> dict:
    body = {'code': exc.code, 'detail': exc.message}
    if isinstance(exc, OverReceiptError):
        body['line_id'] = exc.line_id
        body['quantity_ordered'] = exc.quantity_ordered
        body['quantity_received'] = exc.quantity_received
        body['quantity_requested'] = exc.quantity_requested
    elif isinstance(exc, IncompleteReconciliationError):
        body['unresolved_count_ids'] = exc.unresolved_count_ids
    return body


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(PosError)
    async def pos_error_handler(request: Request, exc: PosError):
        status_code = status_for(exc)
        logger.warning('%s %s rejected (%s): %s', request.method, request.url.path, exc.code, exc.message)
        return JSONResponse(status_code=status_code, content=error_body(exc))
