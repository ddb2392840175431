from __future__ import annotations
from dataclasses import dataclass
from typing import Any, List, Sequence, Union

from .backend import ColumnInfo, ImportBackend
from .base import Record
from .errors import SchemaMismatch


@dataclass(frozen=True)
class RawRows:
    columns: Sequence[Any]
    rows: Sequence[Sequence[Any]]


@dataclass(frozen=True)
class Instances:
    objects: Sequence[Any]
    columns: Sequence[Any] | None = None


ImportInput = Union[RawRows, Instances]


@dataclass
class Normalized:
    columns: List[str]
    records: List[Record]


def column_name(col: Any) -> str:
    """Accepts 'title', Topic.title or a Column."""
    if isinstance(col, str):
        return col
    for attr in ("key", "name"):
        val = getattr(col, attr, None)
        if isinstance(val, str):
            return val
    raise SchemaMismatch(f"Cannot use {col!r} as a column name")


def classify_input(rows: Sequence[Any], columns: Sequence[Any] | None = None) -> ImportInput:
    """Decide once whether `rows` are raw value tuples or model instances."""
    rows = list(rows)
    if rows and all(isinstance(r, (tuple, list)) for r in rows):
        if columns is None:
            raise SchemaMismatch("Raw value rows need an explicit column list")
        return RawRows(columns=list(columns), rows=rows)
    if any(isinstance(r, (tuple, list)) for r in rows):
        raise SchemaMismatch("Cannot mix value tuples and model instances in one import")
    if not rows and columns is not None:
        return RawRows(columns=list(columns), rows=[])
    return Instances(objects=rows, columns=list(columns) if columns is not None else None)


def _check_columns(names: List[str], schema: List[ColumnInfo]) -> List[ColumnInfo]:
    by_name = {c.name: c for c in schema}
    by_key = {c.key: c for c in schema}
    out: List[ColumnInfo] = []
    for n in names:
        info = by_name.get(n) or by_key.get(n)
        if info is None:
            raise SchemaMismatch(f"Unknown column: {n}")
        out.append(info)
    if len({c.name for c in out}) != len(out):
        raise SchemaMismatch(f"Duplicate columns in {names}")
    return out


def _infer_columns(objects: Sequence[Any], schema: List[ColumnInfo]) -> List[ColumnInfo]:
    # keep only columns some instance actually carries, so defaults still apply
    return [
        c for c in schema
        if any(getattr(obj, c.key, None) is not None for obj in objects)
    ]


def _instance_values(obj: Any, cols: List[ColumnInfo]) -> dict:
    # a shared column list must not turn an unset attribute into NULL where the column has a default
    values = {}
    for c in cols:
        value = getattr(obj, c.key, None)
        if value is None and c.default is not None:
            value = c.default()
        values[c.name] = value
    return values


def normalize(inp: ImportInput, target: Any, backend: ImportBackend) -> Normalized:
    schema = backend.resolve_columns(target)

    if isinstance(inp, RawRows):
        cols = _check_columns([column_name(c) for c in inp.columns], schema)
        names = [c.name for c in cols]
        for i, row in enumerate(inp.rows):
            if len(row) != len(names):
                raise SchemaMismatch(
                    f"Row {i} has {len(row)} values but {len(names)} columns were given"
                )
        records = [
            Record(values=dict(zip(names, row)), index=i, source=row)
            for i, row in enumerate(inp.rows)
        ]
        return Normalized(columns=names, records=records)

    objects = list(inp.objects)
    if not objects:
        return Normalized(columns=[], records=[])
    model = type(objects[0])
    if isinstance(target, type) and not isinstance(objects[0], target):
        raise SchemaMismatch(f"Expected {target.__name__} instances, got {model.__name__}")
    for i, obj in enumerate(objects):
        if type(obj) is not model:
            raise SchemaMismatch(f"Row {i} is a {type(obj).__name__}, expected {model.__name__}")

    if inp.columns is not None:
        cols = _check_columns([column_name(c) for c in inp.columns], schema)
    else:
        cols = _infer_columns(objects, schema)
    records = [
        Record(values=_instance_values(obj, cols), index=i, source=obj)
        for i, obj in enumerate(objects)
    ]
    return Normalized(columns=[c.name for c in cols], records=records)
