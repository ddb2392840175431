from __future__ import annotations
import logging
from typing import Any, List, Sequence

from .backend import ImportBackend
from .base import ExecutionTotals, Record
from .batching import Batch
from .errors import ExecutionFailure

logger = logging.getLogger(__name__)


def execute_batches(
    target: Any,
    columns: Sequence[str],
    batches: Sequence[Batch[Record]],
    backend: ImportBackend,
    return_ids: bool = False,
) -> ExecutionTotals:
    """Run one INSERT per batch, in order. Stops at the first failing batch."""
    totals = ExecutionTotals()
    for n, batch in enumerate(batches):
        rows: List[dict] = [rec.values for rec in batch.items]
        try:
            outcome = backend.execute(target, columns, rows, return_ids=return_ids)
        except backend.errors as e:
            logger.warning("Batch %d (%d rows) failed: %s", n, len(rows), e)
            raise ExecutionFailure(n, totals.num_inserts, str(e)) from e
        totals.num_inserts += outcome.rowcount
        totals.num_batches += 1
        totals.ids.extend(outcome.ids)
        logger.debug("Batch %d: %d rows, %d bytes", n, outcome.rowcount, batch.size)
    return totals
