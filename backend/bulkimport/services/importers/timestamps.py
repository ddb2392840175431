from __future__ import annotations
from datetime import datetime, tzinfo
from typing import Any, List, Sequence

from .backend import ImportBackend
from .base import Record

CREATE_COLUMNS = ("created_at", "created_on")
UPDATE_COLUMNS = ("updated_at", "updated_on")
TIMESTAMP_COLUMNS = CREATE_COLUMNS + UPDATE_COLUMNS


def timestamp_columns(target: Any, backend: ImportBackend) -> List[str]:
    present = {c.name for c in backend.resolve_columns(target)}
    return [c for c in TIMESTAMP_COLUMNS if c in present]


def assign_timestamps(
    columns: List[str],
    records: Sequence[Record],
    target: Any,
    backend: ImportBackend,
    timezone: tzinfo | str | None = None,
) -> datetime | None:
    """
    Stamp every recognized timestamp column that the caller left empty.
    One instant is used for the whole call. Missing columns are appended to
    `columns` in place. Returns the instant, or None when nothing was stamped.
    """
    stamp_cols = timestamp_columns(target, backend)
    if not stamp_cols or not records:
        return None

    now = backend.current_time(timezone)
    for col in stamp_cols:
        if col not in columns:
            columns.append(col)
    for rec in records:
        for col in stamp_cols:
            if rec.values.get(col) is None:
                rec.values[col] = now
    return now
