"""Daily production reconciliation.

Every machine gets one staged row, whether or not the import mentions it. The
row holds the previous-day snapshot, what the import says about the target
day, the forecast state and a risk classification for the operator.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from datetime import date, timedelta

from knitboard.core.fabrics import FabricLookup
from knitboard.core.models import (
    ERROR,
    SAFE,
    STATUS_STOPPED,
    STATUS_WORKING,
    WARNING,
    Fabric,
    ImportRow,
    Machine,
    SplitDetail,
    StagedRow,
    escalate,
)
from knitboard.core.work_centers import group_rows_by_machine

logger = logging.getLogger(__name__)

DEFAULT_OVERPRODUCTION_SLACK = 50.0

FILTER_ALL = "ALL"
FILTER_WARNINGS = "WARNINGS"
FILTER_ERRORS = "ERRORS"
FILTER_SAFE = "SAFE"
FILTER_MISSING = "MISSING"
FILTERS = (FILTER_ALL, FILTER_WARNINGS, FILTER_ERRORS, FILTER_SAFE, FILTER_MISSING)


class _Findings:
    def __init__(self) -> None:
        self.status = SAFE
        self.messages: list[str] = []

    def add(self, level: str, message: str) -> None:
        self.status = escalate(self.status, level)
        self.messages.append(message)

    @property
    def message(self) -> str:
        return " ".join(self.messages)


def _fmt_qty(value: float) -> str:
    return f"{value:g}"


def reconcile_machine(
    machine: Machine,
    rows: list[ImportRow],
    *,
    target_date: date,
    fabrics: FabricLookup,
    overproduction_slack: float = DEFAULT_OVERPRODUCTION_SLACK,
) -> StagedRow:
    previous = machine.latest_log_before(target_date)
    if previous is not None:
        previous_remaining = max(0.0, previous.remaining)
        previous_status = previous.status or STATUS_STOPPED
        previous_client = previous.client
        previous_fabric = previous.fabric
        is_stale = previous.log_date != target_date - timedelta(days=1)
    else:
        previous_remaining = 0.0
        previous_status = STATUS_STOPPED
        previous_client = ""
        previous_fabric = ""
        is_stale = False

    has_import_data = bool(rows)
    is_split = len(rows) > 1
    production = 0.0
    scrap = 0.0
    client = ""
    fabric = ""
    split_details: list[SplitDetail] = []
    source_work_centers: list[str] = []

    if has_import_data:
        for r in rows:
            if r.work_center not in source_work_centers:
                source_work_centers.append(r.work_center)
        # Split rows are never merged: the first row is shown, all are listed.
        first = rows[0]
        production = first.production
        scrap = first.scrap
        client = first.client
        fabric = fabrics.display_name(first.fabric)
        if is_split:
            split_details = [SplitDetail(client=r.client, fabric=r.fabric, production=r.production) for r in rows]

    net_production = max(0.0, production - scrap)
    new_remaining = max(0.0, previous_remaining - net_production)

    new_status = previous_status
    if has_import_data:
        if production > 0:
            new_status = STATUS_WORKING
        elif previous_status == STATUS_WORKING:
            new_status = STATUS_STOPPED

    findings = _Findings()
    if not has_import_data:
        if previous_status == STATUS_WORKING:
            findings.add(WARNING, "Machine missing from import while previously working.")
    else:
        if is_split:
            findings.add(ERROR, f"Conflict: {len(rows)} rows map to this machine. Check mappings.")
        if previous_remaining > 0 and previous_client and client and previous_client != client:
            findings.add(
                WARNING,
                f"Client changed ({previous_client} -> {client}) but {_fmt_qty(previous_remaining)} remained.",
            )
        if is_stale and previous is not None:
            findings.add(WARNING, f"Previous data is from {previous.log_date.isoformat()}.")
        if machine.log_on(target_date) is not None:
            findings.add(WARNING, f"Data already exists for {target_date.isoformat()} and will be overwritten.")
        if previous_remaining > 0 and net_production > previous_remaining + overproduction_slack:
            findings.add(
                WARNING,
                f"Production ({_fmt_qty(net_production)}) exceeds remaining ({_fmt_qty(previous_remaining)}).",
            )

    return StagedRow(
        machine_id=machine.machine_id,
        machine_name=machine.name,
        import_date=target_date,
        previous_date=previous.log_date if previous is not None else None,
        previous_status=previous_status,
        previous_client=previous_client,
        previous_fabric=previous_fabric,
        previous_remaining=previous_remaining,
        is_stale=is_stale,
        has_import_data=has_import_data,
        import_production=production,
        import_scrap=scrap,
        import_client=client,
        import_fabric=fabric,
        source_work_centers=source_work_centers,
        is_split=is_split,
        split_details=split_details,
        new_remaining=new_remaining,
        new_status=new_status,
        validation_status=findings.status,
        validation_message=findings.message,
        selected=has_import_data,
    )


def reconcile(
    *,
    machines: Iterable[Machine],
    rows: Iterable[ImportRow],
    mappings: Mapping[str, str],
    target_date: date,
    fabrics: Iterable[Fabric] = (),
    overproduction_slack: float = DEFAULT_OVERPRODUCTION_SLACK,
) -> list[StagedRow]:
    """Stage one row per machine for ``target_date``, sorted for review."""
    machine_list = list(machines)
    grouped, unresolved = group_rows_by_machine(rows, machine_list, mappings)
    if unresolved:
        labels = sorted({r.work_center for r in unresolved})
        logger.warning("%d import rows ignored, unresolved work centers: %s", len(unresolved), ", ".join(labels))

    lookup = FabricLookup(fabrics)
    staged = [
        reconcile_machine(
            m,
            grouped.get(m.machine_id, []),
            target_date=target_date,
            fabrics=lookup,
            overproduction_slack=overproduction_slack,
        )
        for m in machine_list
    ]
    for s in staged:
        if s.is_split:
            logger.warning("Split run on machine %s: %d rows", s.machine_name, len(s.split_details))
    return sort_for_review(staged)


def sort_for_review(staged: Iterable[StagedRow]) -> list[StagedRow]:
    """Rows needing attention first, then SAFE rows; by machine name within each."""
    return sorted(staged, key=lambda s: (s.validation_status == SAFE, s.machine_name.casefold()))


def filter_rows(staged: Iterable[StagedRow], kind: str = FILTER_ALL) -> list[StagedRow]:
    kind = str(kind or FILTER_ALL).strip().upper()
    if kind not in FILTERS:
        raise ValueError(f"unknown filter: {kind!r}")
    rows = list(staged)
    if kind == FILTER_WARNINGS:
        return [s for s in rows if s.validation_status == WARNING]
    if kind == FILTER_ERRORS:
        return [s for s in rows if s.validation_status == ERROR]
    if kind == FILTER_SAFE:
        return [s for s in rows if s.validation_status == SAFE]
    if kind == FILTER_MISSING:
        return [s for s in rows if not s.has_import_data]
    return rows


def summarize(staged: Iterable[StagedRow]) -> dict[str, int]:
    out = {"total": 0, "selected": 0, SAFE: 0, WARNING: 0, ERROR: 0, "missing": 0}
    for s in staged:
        out["total"] += 1
        out[s.validation_status] += 1
        if s.selected:
            out["selected"] += 1
        if not s.has_import_data:
            out["missing"] += 1
    return out
