from __future__ import annotations
from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Optional, List
from datetime import date

# ---- Validation rule sets (one per importable table) ----

class _RuleSet(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

class TopicRules(_RuleSet):
    title: str = Field(min_length=1)
    author_name: str = Field(min_length=1)
    author_email_address: Optional[str] = Field(default=None, pattern=r"^[^@\s]+@[^@\s]+$")
    written_on: Optional[date] = None

class BookRules(_RuleSet):
    title: str = Field(min_length=1)
    author_name: str = Field(min_length=1)
    publisher: Optional[str] = None
    for_sale: Optional[bool] = None

class GroupRules(_RuleSet):
    order: Optional[str] = Field(default=None, max_length=64)

# ---- API payloads ----

class ImportOptionsIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # "validate" would shadow BaseModel.validate
    validate_rows: bool = Field(default=True, alias="validate")
    timestamps: bool = True
    batch_byte_limit: Optional[int] = Field(default=None, gt=0)
    return_ids: bool = False

class RowsImportRequest(BaseModel):
    entity: str
    columns: List[str]
    rows: List[List[Any]]
    options: ImportOptionsIn = Field(default_factory=ImportOptionsIn)

class RejectionRead(BaseModel):
    row: int
    reasons: List[str]

class ImportResultRead(BaseModel):
    entity: str
    num_inserts: int
    num_batches: int
    failed_rows: List[int]
    rejections: List[RejectionRead]
    ids: List[Any]
    message: Optional[str] = None
