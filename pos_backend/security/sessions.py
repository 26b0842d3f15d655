from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from fastapi import Request
from sqlalchemy import select

from pos_backend.config import settings
from pos_backend.models import Principal as PrincipalModel
from pos_backend.models import WebSession

if TYPE_CHECKING:
    from pos_backend.auth import Principal


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; stored values are always UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _session_expiry() -> datetime:
    return _now() + timedelta(minutes=settings.session_ttl_minutes)


def bearer_token(request: Request) -> str | None:
    header = request.headers.get('authorization') or ''
    scheme, _, token = header.partition(' ')
    if scheme.lower() != 'bearer' or not token.strip():
        return None
    return token.strip()


def create_web_session(db, principal_id: int, ip: str | None, user_agent: str | None) -> tuple[str, datetime]:
    token = secrets.token_urlsafe(48)
    expires_at = _session_expiry()
    web_session = WebSession(
        session_token=token,
        principal_id=principal_id,
        ip=ip,
        user_agent=user_agent,
        expires_at=expires_at,
    )
    db.add(web_session)
    db.flush()
    return token, expires_at


def revoke_web_session(db, token: str | None) -> bool:
    if not token:
        return False
    session = db.execute(select(WebSession).where(WebSession.session_token == token)).scalar_one_or_none()
    if not session or session.revoked_at is not None:
        return False
    session.revoked_at = _now()
    return True


def load_principal_from_token(db, token: str | None) -> Principal | None:
    from pos_backend.auth import Principal, Role

    if not token:
        return None

    row = db.execute(
        select(WebSession, PrincipalModel)
        .join(PrincipalModel, PrincipalModel.id == WebSession.principal_id)
        .where(WebSession.session_token == token)
    ).one_or_none()
    if not row:
        return None

    web_session, principal = row
    now = _now()
    if web_session.revoked_at is not None or _aware(web_session.expires_at) <= now:
        return None

    web_session.last_seen_at = now
    web_session.expires_at = _session_expiry()
    return Principal(
        id=principal.id,
        username=principal.username,
        role=Role(principal.role.value),
        active=principal.active,
    )
