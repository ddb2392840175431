from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Any, List, Sequence

from .backend import ImportBackend
from .base import Record, ValidationRejection

logger = logging.getLogger(__name__)


@dataclass
class ValidationOutcome:
    accepted: List[Record] = field(default_factory=list)
    rejected: List[ValidationRejection] = field(default_factory=list)


def _handle(record: Record, target: Any, backend: ImportBackend) -> Any:
    # tuples are reported as transient model instances when the target is mapped
    if isinstance(record.source, (tuple, list)):
        instance = backend.build_instance(target, record.values)
        return instance if instance is not None else record.source
    return record.source


def validate_records(records: Sequence[Record], target: Any, backend: ImportBackend, enabled: bool = True) -> ValidationOutcome:
    if not enabled:
        return ValidationOutcome(accepted=list(records))

    outcome = ValidationOutcome()
    for rec in records:
        reasons = backend.validate(target, rec)
        if not reasons:
            outcome.accepted.append(rec)
            continue
        rejection = ValidationRejection(index=rec.index, instance=_handle(rec, target, backend), reasons=tuple(reasons))
        logger.debug("Rejected %s", rejection.describe())
        outcome.rejected.append(rejection)
    return outcome
