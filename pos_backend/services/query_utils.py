from __future__ import annotations

from enum import Enum
from typing import TypeVar

from pos_backend.config import settings
from pos_backend.errors import ValidationError

E = TypeVar('E', bound=Enum)


def clean_text(value: str | None) -> str | None:
    return (value or '').strip() or None


def coerce_enum(enum_cls: type[E], value, *, field: str) -> E:
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).strip())
    except ValueError as exc:
        allowed = ', '.join(member.value for member in enum_cls)
        raise ValidationError(f'Invalid {field} {value!r}; expected one of: {allowed}') from exc


def resolve_page(page: int | None, limit: int | None) -> tuple[int, int, int]:
    resolved_page = max(int(page or 1), 1)
    resolved_limit = int(limit or settings.default_page_size)
    resolved_limit = min(max(resolved_limit, 1), settings.max_page_size)
    return resolved_page, resolved_limit, (resolved_page - 1) * resolved_limit


def page_payload(items: list, *, total: int, page: int, limit: int) -> dict:
    return {
        'items': items,
        'total': total,
        'page': page,
        'limit': limit,
        'pages': (total + limit - 1) // limit if limit else 0,
    }


def parse_int(value, *, field: str) -> int:
    if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
        raise ValidationError(f'{field} must be a whole number')
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f'{field} must be a whole number') from exc
