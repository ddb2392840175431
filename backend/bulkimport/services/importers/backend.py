"""Persistence collaborator used by the import pipeline.

The pipeline only talks to an :class:`ImportBackend`; everything that knows
about SQL text, dialect quirks, sessions and validation rule sets lives
behind it. :class:`SqlAlchemyBackend` is the implementation the app uses.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime, timezone as dt_timezone, tzinfo
from decimal import Decimal
from typing import Any, Callable, Dict, Iterator, List, Protocol, Sequence, Tuple, Type
from zoneinfo import ZoneInfo

from pydantic import BaseModel, ValidationError
from sqlalchemy import Column, Table, insert, inspect, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.types import TypeEngine

from ...config import BATCH_BYTE_LIMIT, DEFAULT_TIMEZONE
from .base import Record

logger = logging.getLogger(__name__)

SQLITE_MAX_SQL_LENGTH = 1_000_000


@dataclass(frozen=True)
class ColumnInfo:
    name: str          # column name in the table
    key: str           # attribute name on mapped instances
    quoted: str        # reserved-word safe identifier
    type: TypeEngine | None = None
    # client-side default for rows that leave the column unset
    default: Callable[[], Any] | None = None


@dataclass
class ExecuteOutcome:
    rowcount: int
    ids: List[Any] = field(default_factory=list)


class ImportBackend(Protocol):
    errors: Tuple[Type[BaseException], ...]

    def resolve_columns(self, target: Any) -> List[ColumnInfo]: ...
    def table_name(self, target: Any) -> str: ...
    def render_insert(self, target: Any, columns: Sequence[str], rows: Sequence[Dict[str, Any]]) -> Tuple[str, int]: ...
    def execute(self, target: Any, columns: Sequence[str], rows: Sequence[Dict[str, Any]], return_ids: bool = False) -> ExecuteOutcome: ...
    def validate(self, target: Any, record: Record) -> List[str]: ...
    def current_time(self, timezone: tzinfo | str | None = None) -> datetime: ...
    def max_statement_bytes(self) -> int | None: ...
    def max_records_per_statement(self, num_columns: int) -> int | None: ...
    def build_instance(self, target: Any, values: Dict[str, Any]) -> Any: ...
    def scope(self) -> Iterator[Any]: ...


def resolve_timezone(tz: tzinfo | str | None) -> tzinfo:
    """'UTC' and 'local' are special-cased; anything else is an IANA zone name."""
    if isinstance(tz, tzinfo):
        return tz
    name = (tz or "UTC").strip()
    if name.upper() == "UTC":
        return dt_timezone.utc
    if name.lower() == "local":
        return datetime.now().astimezone().tzinfo
    return ZoneInfo(name)


def _python_default(col: Column) -> Callable[[], Any] | None:
    """Scalar and plain-callable `default=` values; SQL expressions and server defaults stay with the database."""
    default = col.default
    if default is None:
        return None
    if default.is_scalar:
        return lambda value=default.arg: value
    if default.is_callable:
        # SQLAlchemy wraps zero-argument callables to accept an execution context
        return lambda fn=default.arg: fn(None)
    return None


class SqlAlchemyBackend:
    """Import backend bound to one SQLAlchemy session.

    `validators` maps table names to pydantic models; a record is rejected
    when its values fail to validate. `clock` replaces ``datetime.now`` and
    receives the resolved tzinfo.

    Every batch is committed on the session itself, so the session should
    hold no unrelated pending changes when an import starts: they would be
    committed together with the first batch.
    """

    errors = (SQLAlchemyError,)

    def __init__(
        self,
        db: Session,
        validators: Dict[str, Type[BaseModel]] | None = None,
        timezone: tzinfo | str | None = None,
        byte_limit: int | None = BATCH_BYTE_LIMIT,
        clock: Callable[[tzinfo], datetime] | None = None,
    ):
        self.db = db
        self.validators = dict(validators or {})
        self.timezone = resolve_timezone(timezone or DEFAULT_TIMEZONE)
        self.byte_limit = byte_limit
        self.clock = clock or datetime.now
        self._columns: Dict[Any, List[ColumnInfo]] = {}

    # ---------- schema ----------

    @property
    def dialect(self):
        return self.db.get_bind().dialect

    def _table(self, target: Any) -> Table:
        if isinstance(target, Table):
            return target
        return inspect(target).local_table

    def table_name(self, target: Any) -> str:
        return self._table(target).name

    def resolve_columns(self, target: Any) -> List[ColumnInfo]:
        if target in self._columns:
            return self._columns[target]
        table = self._table(target)
        mapper = None if isinstance(target, Table) else inspect(target)
        preparer = self.dialect.identifier_preparer
        out: List[ColumnInfo] = []
        for col in table.columns:
            key = col.name
            if mapper is not None:
                prop = mapper.get_property_by_column(col)
                key = prop.key
            out.append(ColumnInfo(
                name=col.name,
                key=key,
                quoted=preparer.quote(col.name),
                type=col.type,
                default=_python_default(col),
            ))
        self._columns[target] = out
        return out

    def _quoted(self, target: Any, columns: Sequence[str]) -> List[str]:
        by_name = {c.name: c.quoted for c in self.resolve_columns(target)}
        preparer = self.dialect.identifier_preparer
        return [by_name.get(c) or preparer.quote(c) for c in columns]

    # ---------- rendering ----------

    def _literal(self, value: Any) -> str:
        if value is None:
            return "NULL"
        if isinstance(value, bool):
            if self.dialect.name == "postgresql":
                return "TRUE" if value else "FALSE"
            return "1" if value else "0"
        if isinstance(value, (int, float, Decimal)):
            return str(value)
        if isinstance(value, (bytes, bytearray, memoryview)):
            return "X'" + bytes(value).hex() + "'"
        if isinstance(value, datetime):
            s = value.isoformat(sep=" ")
        elif isinstance(value, date):
            s = value.isoformat()
        else:
            s = str(value)
        if self.dialect.name in ("mysql", "mariadb"):
            s = s.replace("\\", "\\\\")
        return "'" + s.replace("'", "''") + "'"

    def render_values(self, columns: Sequence[str], row: Dict[str, Any]) -> str:
        return "(" + ",".join(self._literal(row.get(c)) for c in columns) + ")"

    def render_insert(self, target: Any, columns: Sequence[str], rows: Sequence[Dict[str, Any]]) -> Tuple[str, int]:
        """Literal form of the multi-row INSERT; its byte length is what the budget is measured against."""
        preparer = self.dialect.identifier_preparer
        table = self._table(target)
        sql = (
            f"INSERT INTO {preparer.format_table(table)} "
            f"({','.join(self._quoted(target, columns))}) VALUES "
        )
        sql += ",".join(self.render_values(columns, row) for row in rows)
        return sql, len(sql.encode("utf-8"))

    # ---------- execution ----------

    def execute(self, target: Any, columns: Sequence[str], rows: Sequence[Dict[str, Any]], return_ids: bool = False) -> ExecuteOutcome:
        table = self._table(target)
        payload = [{c: row.get(c) for c in columns} for row in rows]
        stmt = insert(table).values(payload)
        pk_cols = list(table.primary_key.columns)
        returning = bool(return_ids and pk_cols and self.dialect.insert_returning)
        if returning:
            stmt = stmt.returning(*pk_cols)
        try:
            # dirty objects in the caller's session must not ride along with the INSERT
            with self.db.no_autoflush:
                result = self.db.execute(stmt)
            ids: List[Any] = []
            if returning:
                fetched = result.all()
                ids = [r[0] if len(pk_cols) == 1 else tuple(r) for r in fetched]
                rowcount = len(fetched)
            else:
                rowcount = result.rowcount if result.rowcount is not None and result.rowcount >= 0 else len(payload)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise
        return ExecuteOutcome(rowcount=rowcount, ids=ids)

    def max_statement_bytes(self) -> int | None:
        if self.byte_limit:
            return self.byte_limit
        name = self.dialect.name
        if name in ("mysql", "mariadb"):
            return int(self.db.execute(text("SELECT @@max_allowed_packet")).scalar_one())
        if name == "sqlite":
            return SQLITE_MAX_SQL_LENGTH
        return None

    def max_records_per_statement(self, num_columns: int) -> int | None:
        if num_columns <= 0:
            return None
        name = self.dialect.name
        if name == "sqlite":
            version = getattr(getattr(self.dialect, "dbapi", None), "sqlite_version_info", (3, 32, 0))
            max_vars = 32766 if tuple(version) >= (3, 32, 0) else 999
        elif name in ("postgresql", "mysql", "mariadb"):
            max_vars = 65535
        else:
            return None
        return max(1, max_vars // num_columns)

    # ---------- validation / time ----------

    def validate(self, target: Any, record: Record) -> List[str]:
        rules = self.validators.get(self.table_name(target))
        if rules is None:
            return []
        try:
            rules.model_validate(record.values)
        except ValidationError as e:
            return [
                f"{'.'.join(str(p) for p in err['loc']) or 'row'}: {err['msg']}"
                for err in e.errors()
            ]
        return []

    def current_time(self, timezone: tzinfo | str | None = None) -> datetime:
        tz = resolve_timezone(timezone) if timezone is not None else self.timezone
        return self.clock(tz)

    def build_instance(self, target: Any, values: Dict[str, Any]) -> Any:
        if isinstance(target, Table):
            return None
        keys = {c.name: c.key for c in self.resolve_columns(target)}
        return target(**{keys.get(name, name): v for name, v in values.items()})

    @contextmanager
    def scope(self) -> Iterator["SqlAlchemyBackend"]:
        """Hold the session for one import call; undo the in-flight batch on any error."""
        if self.db.new or self.db.dirty or self.db.deleted:
            logger.warning("Session has pending changes; they will be committed with the first batch")
        try:
            yield self
        except BaseException:
            if self.db.in_transaction():
                logger.debug("Rolling back in-flight import work")
                self.db.rollback()
            raise
