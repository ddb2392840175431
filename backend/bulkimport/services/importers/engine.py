from __future__ import annotations
import logging
from typing import Any, Sequence

from .backend import ImportBackend
from .base import ExecutionTotals, ImportOptions, ImportResult, aggregate
from .batching import plan_batches
from .errors import RecordTooLarge, SchemaMismatch
from .executor import execute_batches
from .normalize import classify_input, normalize
from .timestamps import assign_timestamps
from .validation import validate_records

logger = logging.getLogger(__name__)


def bulk_import(
    target: Any,
    rows: Sequence[Any],
    columns: Sequence[Any] | None = None,
    *,
    backend: ImportBackend,
    options: ImportOptions | None = None,
    **overrides: Any,
) -> ImportResult:
    """
    Insert `rows` into `target` (a mapped class or a Table) with as few
    INSERT statements as the byte budget allows.

    `rows` is either a list of value tuples (then `columns` is required) or
    a list of model instances (then `columns` optionally restricts which
    attributes are written). Invalid rows are skipped and reported in
    ``result.failed_instances``; database errors raise ExecutionFailure.
    """
    opts = (options or ImportOptions()).merged(**overrides)
    inp = classify_input(rows, columns)

    with backend.scope():
        norm = normalize(inp, target, backend)
        outcome = validate_records(norm.records, target, backend, enabled=opts.validate)
        accepted = outcome.accepted
        cols = list(norm.columns)

        if opts.timestamps:
            assign_timestamps(cols, accepted, target, backend)

        if not accepted:
            totals = ExecutionTotals()
        else:
            if not cols:
                raise SchemaMismatch("No columns to insert")
            budget = opts.batch_byte_limit
            if budget is None:
                budget = backend.max_statement_bytes()
            _, overhead = backend.render_insert(target, cols, [])
            sizes = [backend.render_insert(target, cols, [rec.values])[1] - overhead for rec in accepted]
            try:
                batches = plan_batches(accepted, sizes, overhead, budget, backend.max_records_per_statement(len(cols)))
            except RecordTooLarge as e:
                raise RecordTooLarge(accepted[e.index].index, e.size, e.limit) from None
            logger.debug("Planned %d batches for %d rows (budget=%s, overhead=%d)",
                         len(batches), len(accepted), budget, overhead)
            totals = execute_batches(target, cols, batches, backend, return_ids=opts.return_ids)

    result = aggregate(outcome.rejected, totals)
    logger.info(
        "Imported %d rows into %s in %d statements (%d rejected)",
        result.num_inserts, backend.table_name(target), result.num_batches, len(result.rejections),
    )
    return result
