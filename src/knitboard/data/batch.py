"""Atomic write batches.

A batch is a list of SQL statements applied in a single transaction. The
store caps a batch at 500 operations, so larger commits are split into several
batches submitted one after the other. Batches that already committed stay
committed when a later one fails; there is no cross-batch rollback.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

from knitboard.data.db import Db

logger = logging.getLogger(__name__)

MAX_BATCH_OPERATIONS = 500


@dataclass(frozen=True)
class Operation:
    sql: str
    params: tuple[Any, ...] = ()


class CommitError(RuntimeError):
    """A batch failed; earlier batches of the same commit remain applied."""

    def __init__(self, message: str, *, batches_committed: int, batches_total: int, machines_committed: int):
        super().__init__(message)
        self.batches_committed = batches_committed
        self.batches_total = batches_total
        self.machines_committed = machines_committed

    @property
    def partially_applied(self) -> bool:
        return self.batches_committed > 0


@dataclass
class WriteBatch:
    limit: int = MAX_BATCH_OPERATIONS
    operations: list[Operation] = field(default_factory=list)
    groups: int = 0

    def fits(self, ops: Sequence[Operation]) -> bool:
        return len(self.operations) + len(ops) <= self.limit

    def add_group(self, ops: Sequence[Operation]) -> None:
        if not self.fits(ops):
            raise ValueError(f"batch limit exceeded ({len(self.operations) + len(ops)} > {self.limit})")
        self.operations.extend(ops)
        self.groups += 1

    def __len__(self) -> int:
        return len(self.operations)

    def commit(self, db: Db) -> None:
        with db.connect() as con:
            for op in self.operations:
                con.execute(op.sql, op.params)


def plan_batches(groups: Iterable[Sequence[Operation]], *, limit: int = MAX_BATCH_OPERATIONS) -> list[WriteBatch]:
    """Pack operation groups into batches without splitting a group.

    A group holds every write for one machine, so a machine's log array and its
    per-date record always land in the same transaction.
    """
    if limit < 1:
        raise ValueError("batch limit must be positive")
    batches: list[WriteBatch] = []
    current = WriteBatch(limit=limit)
    for ops in groups:
        if len(ops) > limit:
            raise ValueError(f"operation group of {len(ops)} exceeds batch limit {limit}")
        if not current.fits(ops):
            batches.append(current)
            current = WriteBatch(limit=limit)
        current.add_group(ops)
    if current.operations:
        batches.append(current)
    return batches


def commit_batches(db: Db, batches: Sequence[WriteBatch]) -> int:
    """Submit batches sequentially. Returns the number of groups written."""
    committed_groups = 0
    for i, batch in enumerate(batches):
        try:
            batch.commit(db)
        except Exception as exc:
            logger.exception("Batch %d/%d failed (%d operations)", i + 1, len(batches), len(batch))
            raise CommitError(
                f"batch {i + 1} of {len(batches)} failed: {exc}",
                batches_committed=i,
                batches_total=len(batches),
                machines_committed=committed_groups,
            ) from exc
        committed_groups += batch.groups
        logger.info("Committed batch %d/%d (%d operations)", i + 1, len(batches), len(batch))
    return committed_groups
