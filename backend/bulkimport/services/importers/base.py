from __future__ import annotations
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Sequence


@dataclass(frozen=True)
class ImportOptions:
    validate: bool = True
    timestamps: bool = True
    batch_byte_limit: int | None = None  # None -> backend maximum
    return_ids: bool = False

    def __post_init__(self) -> None:
        limit = self.batch_byte_limit
        if limit is not None and (isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0):
            raise ValueError(f"batch_byte_limit must be a positive integer or None, got {limit!r}")

    def merged(self, **overrides: Any) -> "ImportOptions":
        unknown = set(overrides) - {"validate", "timestamps", "batch_byte_limit", "return_ids"}
        if unknown:
            raise TypeError(f"Unknown import options: {', '.join(sorted(unknown))}")
        return replace(self, **overrides)


@dataclass
class Record:
    """One normalized row. `source` is the tuple or instance it came from."""
    values: Dict[str, Any]
    index: int
    source: Any = None


@dataclass(frozen=True)
class ValidationRejection:
    index: int
    instance: Any
    reasons: tuple[str, ...] = ()

    def describe(self) -> str:
        return f"Row {self.index}: " + "; ".join(self.reasons or ("invalid",))


@dataclass(frozen=True)
class ImportResult:
    num_inserts: int = 0
    rejections: tuple[ValidationRejection, ...] = ()
    ids: tuple[Any, ...] = ()
    num_batches: int = 0

    @property
    def failed_instances(self) -> list[Any]:
        return [r.instance for r in self.rejections]

    def as_dict(self) -> dict:
        return {
            "num_inserts": self.num_inserts,
            "num_batches": self.num_batches,
            "failed_rows": [r.index for r in self.rejections],
            "rejections": [{"row": r.index, "reasons": list(r.reasons)} for r in self.rejections],
            "ids": list(self.ids),
        }


@dataclass
class ExecutionTotals:
    """Running totals kept by the executor; only committed batches count."""
    num_inserts: int = 0
    num_batches: int = 0
    ids: list[Any] = field(default_factory=list)


def aggregate(rejections: Sequence[ValidationRejection], totals: ExecutionTotals) -> ImportResult:
    return ImportResult(
        num_inserts=totals.num_inserts,
        rejections=tuple(rejections),
        ids=tuple(totals.ids),
        num_batches=totals.num_batches,
    )
