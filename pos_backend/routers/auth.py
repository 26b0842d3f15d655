from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from pos_backend.auth import Principal, get_current_principal
from pos_backend.db import get_db
from pos_backend.dependencies import get_client_ip
from pos_backend.models import Principal as PrincipalModel
from pos_backend.schemas import LoginRequest
from pos_backend.security.passwords import check_password
from pos_backend.security.sessions import bearer_token, create_web_session, revoke_web_session
from pos_backend.services.audit_service import log_audit, log_auth_event

logger = logging.getLogger(__name__)

router = APIRouter(prefix='/auth', tags=['auth'])


def _reject_login(db: Session, *, username: str, reason: str, principal_id: int | None, ip, user_agent) -> None:
    log_auth_event(
        db,
        attempted_username=username,
        success=False,
        failure_reason=reason,
        principal_id=principal_id,
        ip=ip,
        user_agent=user_agent,
    )
    db.commit()
    logger.warning('Login rejected for %r: %s', username, reason)
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail='Invalid username or password')


@router.post('/login')
def login(payload: LoginRequest, request: Request, db: Session = Depends(get_db)):
    username = payload.username.strip()
    ip = get_client_ip(request)
    user_agent = request.headers.get('user-agent')

    principal = db.execute(select(PrincipalModel).where(PrincipalModel.username == username)).scalar_one_or_none()
    if not principal:
        _reject_login(db, username=username, reason='UNKNOWN_USERNAME', principal_id=None, ip=ip, user_agent=user_agent)
    if not principal.active:
        _reject_login(db, username=username, reason='INACTIVE_PRINCIPAL', principal_id=principal.id, ip=ip, user_agent=user_agent)

    valid, updated_hash = check_password(payload.password, principal.password_hash)
    if not valid:
        _reject_login(db, username=username, reason='BAD_PASSWORD', principal_id=principal.id, ip=ip, user_agent=user_agent)
    if updated_hash:
        principal.password_hash = updated_hash

    token, expires_at = create_web_session(db, principal.id, ip=ip, user_agent=user_agent)
    log_auth_event(
        db,
        attempted_username=username,
        success=True,
        failure_reason=None,
        principal_id=principal.id,
        ip=ip,
        user_agent=user_agent,
    )
    log_audit(
        db,
        actor_principal_id=principal.id,
        action='AUTH_LOGIN',
        entity_type='principal',
        entity_id=principal.id,
        ip=ip,
        metadata={'username': username},
    )
    db.commit()
    return {
        'access_token': token,
        'token_type': 'bearer',
        'expires_at': expires_at,
        'principal': {'id': principal.id, 'username': principal.username, 'role': principal.role.value},
    }


@router.post('/logout')
def logout(
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    revoke_web_session(db, bearer_token(request))
    log_audit(
        db,
        actor_principal_id=principal.id,
        action='AUTH_LOGOUT',
        entity_type='principal',
        entity_id=principal.id,
        ip=get_client_ip(request),
    )
    db.commit()
    return {'ok': True}


@router.get('/me')
def me(principal: Principal = Depends(get_current_principal)):
    return {'id': principal.id, 'username': principal.username, 'role': principal.role.value}
