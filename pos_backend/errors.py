"""Typed failures raised by the purchasing and inventory services.

Every error carries a machine-readable ``code`` so the HTTP layer (and tests)
can tell kinds apart without parsing messages:

    PosError
    +-- ValidationError            (also a ValueError)
    |   +-- OverReceiptError
    +-- InvalidStateError
    |   +-- InvalidTransitionError
    +-- IncompleteReconciliationError
    +-- NotFoundError
    +-- ConstraintViolationError

None of these are retried by the services that raise them.
"""

from __future__ import annotations


class PosError(Exception):
    code: str = 'POS_ERROR'

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(PosError, ValueError):
    code = 'VALIDATION_ERROR'


class OverReceiptError(ValidationError):
    code = 'OVER_RECEIPT'

    def __init__(self, *, line_id: int, quantity_ordered: int, quantity_received: int, quantity_requested: int) -> None:
        self.line_id = line_id
        self.quantity_ordered = quantity_ordered
        self.quantity_received = quantity_received
        self.quantity_requested = quantity_requested
        super().__init__(
            f'Line {line_id}: receiving {quantity_requested} would exceed ordered quantity '
            f'({quantity_received} already received of {quantity_ordered})'
        )


class InvalidStateError(PosError):
    code = 'INVALID_STATE'


class InvalidTransitionError(InvalidStateError):
    code = 'INVALID_TRANSITION'

    def __init__(self, *, current: str, attempted: str) -> None:
        self.current = current
        self.attempted = attempted
        super().__init__(f'Invalid status change {current} -> {attempted}')


class IncompleteReconciliationError(PosError):
    code = 'INCOMPLETE_RECONCILIATION'

    def __init__(self, *, reconciliation_id: int, unresolved_count_ids: list[int]) -> None:
        self.reconciliation_id = reconciliation_id
        self.unresolved_count_ids = unresolved_count_ids
        super().__init__(
            f'Reconciliation {reconciliation_id} has {len(unresolved_count_ids)} unresolved item(s)'
        )


class NotFoundError(PosError):
    code = 'NOT_FOUND'


class ConstraintViolationError(PosError):
    code = 'CONSTRAINT_VIOLATION'
