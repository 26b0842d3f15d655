from __future__ import annotations

from datetime import date

from sqlalchemy import select
from sqlalchemy.orm import Session

from pos_backend.models import NumberSeries

# Series without a date scope share this key and never reset.
GLOBAL_DATE_KEY = 0


def _next_seq(db: Session, *, key: str, date_key: int) -> int:
    row = db.execute(
        select(NumberSeries)
        .where(NumberSeries.key == key, NumberSeries.date_key == date_key)
        .with_for_update()
    ).scalar_one_or_none()
    if row is None:
        row = NumberSeries(key=key, date_key=date_key, next_seq=1)
        db.add(row)
        db.flush()

    seq = row.next_seq
    row.next_seq = seq + 1
    db.flush()
    return seq


def next_daily_number(db: Session, *, prefix: str, on: date | None = None) -> str:
    """Pattern: PREFIX-YYYYMMDD-NNNN, sequence restarts every day."""
    day = on or date.today()
    day_str = day.strftime('%Y%m%d')
    seq = _next_seq(db, key=prefix, date_key=int(day_str))
    return f'{prefix}-{day_str}-{seq:04d}'


def next_global_number(db: Session, *, prefix: str) -> str:
    seq = _next_seq(db, key=prefix, date_key=GLOBAL_DATE_KEY)
    return f'{prefix}-{seq:06d}'
