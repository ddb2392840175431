"""
Statement packing.

A batch is rendered as ``<prefix>(v1),(v2),...`` so its size is
``overhead + sum(sizes) + (n - 1)`` bytes: one comma between value tuples.
Batches are contiguous slices filled greedily left to right, which gives
the fewest batches possible without reordering records.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Generic, List, Sequence, TypeVar

from .errors import RecordTooLarge

T = TypeVar("T")

SEPARATOR_BYTES = 1


@dataclass(frozen=True)
class Batch(Generic[T]):
    start: int
    stop: int
    items: Sequence[T]
    size: int  # full statement bytes, overhead included

    def __len__(self) -> int:
        return self.stop - self.start


def plan_slices(
    sizes: Sequence[int],
    overhead: int,
    budget: int | None,
    max_records: int | None = None,
) -> List[tuple[int, int, int]]:
    """Return (start, stop, statement_size) for each batch."""
    if not sizes:
        return []

    if budget is not None:
        for i, size in enumerate(sizes):
            if overhead + size > budget:
                raise RecordTooLarge(i, size, budget - overhead)

    slices: List[tuple[int, int, int]] = []
    start = 0
    total = overhead + sizes[0]
    for i in range(1, len(sizes)):
        grown = total + SEPARATOR_BYTES + sizes[i]
        full = max_records is not None and i - start >= max_records
        if full or (budget is not None and grown > budget):
            slices.append((start, i, total))
            start = i
            total = overhead + sizes[i]
        else:
            total = grown
    slices.append((start, len(sizes), total))
    return slices


def plan_batches(
    items: Sequence[T],
    sizes: Sequence[int],
    overhead: int,
    budget: int | None,
    max_records: int | None = None,
) -> List[Batch[T]]:
    if len(items) != len(sizes):
        raise ValueError("items and sizes must have the same length")
    return [
        Batch(start=a, stop=b, items=items[a:b], size=size)
        for a, b, size in plan_slices(sizes, overhead, budget, max_records)
    ]
