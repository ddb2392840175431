# backend/bulkimport/services/importers/__init__.py
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Sequence, Type

from pydantic import BaseModel
from sqlalchemy import Table
from sqlalchemy.orm import Session

from bulkimport.models import Book, Group, Topic, widgets
from bulkimport.schemas import BookRules, GroupRules, TopicRules
from .backend import ColumnInfo, ImportBackend, SqlAlchemyBackend
from .base import ImportOptions, ImportResult, ValidationRejection
from .engine import bulk_import
from .errors import BulkImportError, ExecutionFailure, RecordTooLarge, SchemaMismatch
from .utils.helpers import coerce_value


@dataclass(frozen=True)
class ImportTarget:
    model: Any                              # mapped class or Table
    rules: Type[BaseModel] | None = None


TOPICS = ImportTarget(Topic, TopicRules)
BOOKS = ImportTarget(Book, BookRules)
GROUPS = ImportTarget(Group, GroupRules)
WIDGETS = ImportTarget(widgets)

REGISTRY: dict[str, ImportTarget] = {
    "topic": TOPICS,
    "topics": TOPICS,
    "book": BOOKS,
    "books": BOOKS,
    "group": GROUPS,
    "groups": GROUPS,
    "widget": WIDGETS,
    "widgets": WIDGETS,
}

# table name -> rule set, for the backend
VALIDATORS: dict[str, Type[BaseModel]] = {
    (t.model.name if isinstance(t.model, Table) else t.model.__tablename__): t.rules
    for t in REGISTRY.values() if t.rules is not None
}

def get_target(entity: str) -> ImportTarget:
    key = (entity or "").lower().strip()
    if key not in REGISTRY:
        raise KeyError(f"Unsupported entity: {entity}")
    return REGISTRY[key]

def backend_for(db: Session, **kwargs: Any) -> SqlAlchemyBackend:
    return SqlAlchemyBackend(db, validators=VALIDATORS, **kwargs)

def import_values(entity: str, columns: Sequence[str], rows: Iterable[Sequence[Any]], db: Session,
                  options: ImportOptions | None = None) -> dict:
    """Import positional rows, coercing string cells to each column's type."""
    target = get_target(entity)
    backend = backend_for(db)
    types = {c.name: c.type for c in backend.resolve_columns(target.model)}
    col_types = [types.get(c) for c in columns]
    values = [
        tuple(coerce_value(t, v) if t is not None else v for t, v in zip(col_types, row))
        if len(row) == len(col_types) else tuple(row)
        for row in rows
    ]
    result = bulk_import(target.model, values, list(columns), backend=backend, options=options)
    out = result.as_dict()
    out["entity"] = entity
    return out

def import_rows(entity: str, rows: Iterable[Dict[str, Any]], db: Session,
                options: ImportOptions | None = None) -> dict:
    """Import dict rows (e.g. from csv.DictReader); the first row's keys are the columns."""
    rows = list(rows)
    if not rows:
        return {**ImportResult().as_dict(), "entity": entity}
    columns = [k for k in rows[0].keys() if k is not None]
    return import_values(entity, columns, [tuple(r.get(c) for c in columns) for r in rows], db, options)

__all__ = [
    "REGISTRY", "ImportTarget", "get_target", "backend_for", "import_rows", "import_values",
    "bulk_import", "ImportOptions", "ImportResult", "ValidationRejection",
    "ImportBackend", "SqlAlchemyBackend", "ColumnInfo",
    "BulkImportError", "SchemaMismatch", "RecordTooLarge", "ExecutionFailure",
]
