from fastapi import APIRouter, Depends, HTTPException, UploadFile, File, Query
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
import csv
import logging
from io import TextIOWrapper

from ..db import get_db
from ..schemas import ImportOptionsIn, ImportResultRead, RowsImportRequest
from ..services.importers import (
    REGISTRY,
    ExecutionFailure,
    ImportOptions,
    RecordTooLarge,
    SchemaMismatch,
    get_target,
    import_rows,
    import_values,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/import", tags=["import"])

def _options(opts: ImportOptionsIn) -> ImportOptions:
    return ImportOptions(
        validate=opts.validate_rows,
        timestamps=opts.timestamps,
        batch_byte_limit=opts.batch_byte_limit,
        return_ids=opts.return_ids,
    )

def _run(fn, *args):
    try:
        return fn(*args)
    except (SchemaMismatch, RecordTooLarge) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ExecutionFailure as e:
        raise HTTPException(
            status_code=409,
            detail={"message": str(e), "batch": e.batch_index, "num_inserts": e.num_committed},
        )

@router.get("/entities")
def list_entities():
    return sorted(REGISTRY)

@router.post("/csv", response_model=ImportResultRead)
def import_csv(
    entity: str = Query(...),
    validate: bool = Query(True),
    timestamps: bool = Query(True),
    batch_byte_limit: int | None = Query(None, gt=0),
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
):
    try:
        get_target(entity)
    except KeyError as e:
        raise HTTPException(status_code=400, detail=str(e))

    try:
        wrapper = TextIOWrapper(file.file, encoding="utf-8")
        reader = csv.DictReader(wrapper)
        rows = list(reader)
    except (UnicodeDecodeError, csv.Error) as e:
        raise HTTPException(status_code=400, detail=f"Invalid CSV: {e}")

    if not rows:
        return JSONResponse({"entity": entity, "num_inserts": 0, "num_batches": 0, "failed_rows": [],
                             "rejections": [], "ids": [], "message": "No data"}, 200)

    opts = _options(ImportOptionsIn(validate=validate, timestamps=timestamps, batch_byte_limit=batch_byte_limit))
    logger.info("CSV import: %d rows for %s", len(rows), entity)
    return _run(import_rows, entity, rows, db, opts)

@router.post("/rows", response_model=ImportResultRead)
def import_json_rows(payload: RowsImportRequest, db: Session = Depends(get_db)):
    try:
        get_target(payload.entity)
    except KeyError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _run(import_values, payload.entity, payload.columns, payload.rows, db, _options(payload.options))
