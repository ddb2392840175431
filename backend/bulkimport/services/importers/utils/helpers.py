from datetime import date, datetime, timezone

from sqlalchemy import types as sqltypes

def _to_int(v):
    if v is None:
        return None
    s = str(v).strip()
    if s == "":
        return None
    try:
        return int(s)
    except Exception:
        return None

def _to_bool(v, *, default: bool | None = False) -> bool | None:
    """
    Convert v to bool. Accepts common truthy/falsey strings and ints.
    If v is None/empty/unknown, return `default`.
    """
    if v is None:
        return default
    s = str(v).strip().lower()
    if s == "":
        return default

    # truthy
    if s in ("1", "true", "t", "yes", "y", "on"):
        return True
    # falsey
    if s in ("0", "false", "f", "no", "n", "off"):
        return False

    # numbers (e.g., "2" → True, "0" → False)
    try:
        return bool(int(s))
    except Exception:
        return default

def _to_float(val):
    if val is None:
        return None
    s = str(val).strip()
    if s == "":
        return None
    try:
        return float(s)
    except Exception:
        return None

def _parse_date(v):
    if not v:
        return None
    s = str(v).strip()
    if not s:
        return None
    try:
        return date.fromisoformat(s)
    except Exception:
        return None

def _parse_dt(val: str | None) -> datetime | None:
    if not val:
        return None
    v = str(val).strip()
    if not v:
        return None
    try:
        dt = datetime.fromisoformat(v.replace("Z", "+00:00"))
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt
    except Exception:
        return None

def coerce_value(col_type, raw):
    """CSV cell -> python value for a column of `col_type`.

    Empty cells become None; a cell that does not parse is returned as the
    stripped string so validation (or the database) rejects the row.
    """
    if raw is None or not isinstance(raw, str):
        return raw
    s = raw.strip()
    if s == "":
        return None
    if isinstance(col_type, sqltypes.Boolean):
        parsed = _to_bool(s, default=None)
    elif isinstance(col_type, sqltypes.Integer):
        parsed = _to_int(s)
    elif isinstance(col_type, sqltypes.Numeric):
        parsed = _to_float(s)
    elif isinstance(col_type, sqltypes.DateTime):
        parsed = _parse_dt(s)
    elif isinstance(col_type, sqltypes.Date):
        parsed = _parse_date(s)
    else:
        return s
    return s if parsed is None else parsed
