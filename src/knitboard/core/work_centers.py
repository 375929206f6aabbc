"""Work center resolution.

An import row names its machine through a free-text work-center label coming
from an external system. Labels are resolved in priority order:

1. the persisted mapping table (operator overrides always win),
2. a case-insensitive exact match on a machine's display name, numeric
   identifier or id,
3. otherwise the label stays unresolved.

Resolution only ever produces a reviewable proposal; nothing is written here.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping

from knitboard.core.models import ImportRow, Machine, WorkCenterProposal

logger = logging.getLogger(__name__)

SOURCE_SAVED = "saved"
SOURCE_MATCHED = "matched"
SOURCE_UNRESOLVED = "unresolved"


def match_machine(label: str, machines: Iterable[Machine]) -> str | None:
    """Case-insensitive exact match of ``label`` against machine names and ids."""
    wanted = str(label or "").strip()
    if not wanted:
        return None
    lowered = wanted.lower()
    for m in machines:
        if m.name and m.name.strip().lower() == lowered:
            return m.machine_id
        if m.number is not None and str(m.number) == wanted:
            return m.machine_id
        if str(m.machine_id) == wanted:
            return m.machine_id
    return None


def resolve_work_center(
    label: str,
    machines: Iterable[Machine],
    mappings: Mapping[str, str],
) -> str | None:
    """Return the machine id for a work-center label, or None when unresolved."""
    resolved, _source = _resolve_with_source(label, list(machines), mappings)
    return resolved


def _resolve_with_source(
    label: str,
    machines: list[Machine],
    mappings: Mapping[str, str],
) -> tuple[str | None, str]:
    saved = mappings.get(label)
    if saved:
        return str(saved), SOURCE_SAVED
    matched = match_machine(label, machines)
    if matched is not None:
        return matched, SOURCE_MATCHED
    return None, SOURCE_UNRESOLVED


def build_review(
    rows: Iterable[ImportRow],
    machines: Iterable[Machine],
    mappings: Mapping[str, str],
) -> list[WorkCenterProposal]:
    """One proposal per distinct label in the import, in first-seen order.

    Each proposal carries the fabric names seen under that label so the
    operator has context when correcting a mapping.
    """
    machine_list = list(machines)
    fabrics_by_label: dict[str, list[str]] = {}
    for row in rows:
        label = row.work_center
        if not label:
            continue
        fabrics = fabrics_by_label.setdefault(label, [])
        if row.fabric and row.fabric not in fabrics:
            fabrics.append(row.fabric)

    proposals: list[WorkCenterProposal] = []
    for label, fabrics in fabrics_by_label.items():
        machine_id, source = _resolve_with_source(label, machine_list, mappings)
        if machine_id is None:
            logger.warning("Work center %r could not be matched to a machine", label)
        proposals.append(
            WorkCenterProposal(label=label, fabrics=tuple(fabrics), machine_id=machine_id, source=source)
        )
    return proposals


def effective_mappings(proposals: Iterable[WorkCenterProposal], mappings: Mapping[str, str]) -> dict[str, str]:
    """Saved mappings plus every automatic match from the review."""
    out = {str(k): str(v) for k, v in mappings.items() if v}
    for p in proposals:
        if p.machine_id is not None:
            out[p.label] = p.machine_id
    return out


def group_rows_by_machine(
    rows: Iterable[ImportRow],
    machines: Iterable[Machine],
    mappings: Mapping[str, str],
) -> tuple[dict[str, list[ImportRow]], list[ImportRow]]:
    """Group import rows under their resolved machine id.

    Returns ``(grouped, unresolved_rows)``. Unresolved rows contribute no import
    data to any machine.
    """
    machine_list = list(machines)
    grouped: dict[str, list[ImportRow]] = {}
    unresolved: list[ImportRow] = []
    for row in rows:
        if not row.work_center:
            continue
        machine_id = resolve_work_center(row.work_center, machine_list, mappings)
        if machine_id is None:
            unresolved.append(row)
            continue
        grouped.setdefault(machine_id, []).append(row)
    return grouped, unresolved
