from dataclasses import dataclass
from enum import Enum

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from pos_backend.db import get_db
from pos_backend.security.sessions import bearer_token, load_principal_from_token


class Role(str, Enum):
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    CASHIER = "CASHIER"


@dataclass
class Principal:
    id: int
    username: str
    role: Role
    active: bool


def get_current_principal(request: Request, db: Session = Depends(get_db)) -> Principal:
    principal = load_principal_from_token(db, bearer_token(request))
    if not principal:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            headers={"WWW-Authenticate": "Bearer"},
        )
    # Persist the sliding expiry before any request work starts.
    db.commit()
    if not principal.active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN)
    request.state.principal = principal
    return principal


def require_role(*allowed: Role):
    def _dep(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in allowed:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN)
        return principal

    return _dep


require_manager = require_role(Role.ADMIN, Role.MANAGER)
