"""One daily-production import, from upload to commit.

Stages run strictly in order:

    load -> review mappings -> fabric gate -> reconcile -> apply

Machines and mappings are read once when the session starts and are not
re-read afterwards. Mapping edits are persisted immediately and independently
of the commit; everything else stays in memory until ``apply``. Dropping the
session before ``apply`` leaves the store untouched apart from those mapping
edits.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import date

from knitboard.core.fabrics import find_unknown_fabrics
from knitboard.core.models import ImportRow, Machine, StagedRow, WorkCenterProposal
from knitboard.core.reconcile import reconcile
from knitboard.core.work_centers import build_review, effective_mappings
from knitboard.data.batch import MAX_BATCH_OPERATIONS, CommitError
from knitboard.data.excel_io import parse_import_bytes, parse_iso_date
from knitboard.data.repository import Repository

logger = logging.getLogger(__name__)

STAGE_REVIEW = "review"
STAGE_FABRICS = "fabrics"
STAGE_STAGED = "staged"
STAGE_APPLIED = "applied"


class ImportSession:
    def __init__(
        self,
        repo: Repository,
        *,
        rows: Iterable[ImportRow],
        target_date: date | str,
    ):
        self.repo = repo
        self.rows: list[ImportRow] = list(rows)
        self.target_date = parse_iso_date(target_date)

        self.machines: list[Machine] = repo.list_machines()
        saved = repo.get_work_center_mappings()
        self.proposals: list[WorkCenterProposal] = build_review(self.rows, self.machines, saved)
        self.mappings: dict[str, str] = effective_mappings(self.proposals, saved)

        self.unknown_fabrics: list[str] = []
        self.staged: list[StagedRow] = []
        self.stage = STAGE_REVIEW
        logger.info(
            "Import session for %s: %d rows, %d work centers, %d machines",
            self.target_date,
            len(self.rows),
            len(self.proposals),
            len(self.machines),
        )

    @classmethod
    def from_excel(cls, repo: Repository, *, content: bytes, target_date: date | str) -> "ImportSession":
        """Parse the workbook and open a session. Raises ImportParseError."""
        target = parse_iso_date(target_date)
        return cls(repo, rows=parse_import_bytes(content), target_date=target)

    def _require(self, *stages: str) -> None:
        if self.stage not in stages:
            raise ValueError(f"session is at stage {self.stage!r}, expected one of {stages}")

    # ---------- mapping review ----------
    @property
    def unresolved_work_centers(self) -> list[str]:
        return [p.label for p in self.proposals if p.label not in self.mappings]

    def machine_label(self, machine_id: str | None) -> str:
        for m in self.machines:
            if m.machine_id == machine_id:
                kind = m.machine_type or "?"
                return f"{m.name} ({kind})"
        return ""

    def set_mapping(self, work_center: str, machine_id: str | None) -> None:
        """Operator edit. Applies to this import and is saved for future ones."""
        self._require(STAGE_REVIEW)
        if machine_id:
            self.mappings[work_center] = str(machine_id)
        else:
            self.mappings.pop(work_center, None)
        self.repo.set_work_center_mapping(work_center=work_center, machine_id=machine_id or None)

    def confirm_mappings(self) -> list[str]:
        """Persist the reviewed mapping table and run the fabric gate.

        Returns the fabric names missing from the master list; each defaults to
        "create".
        """
        self._require(STAGE_REVIEW)
        self.repo.save_work_center_mappings(self.mappings)
        for label in self.unresolved_work_centers:
            logger.warning("Work center %r left unmapped; its rows will be ignored", label)

        self.unknown_fabrics = find_unknown_fabrics(self.rows, self.repo.list_fabrics())
        self.stage = STAGE_FABRICS
        return list(self.unknown_fabrics)

    # ---------- fabric gate ----------
    def create_fabrics(self, names: Iterable[str] | None = None) -> int:
        """Create the approved unknown fabrics (all of them by default)."""
        self._require(STAGE_FABRICS)
        approved = self.unknown_fabrics if names is None else [n for n in names if n in self.unknown_fabrics]
        created = self.repo.create_fabrics(approved)
        return len(created)

    # ---------- reconciliation ----------
    def reconcile(self) -> list[StagedRow]:
        self._require(STAGE_FABRICS, STAGE_STAGED)
        # Fabrics are re-read so short names of fabrics created above are used.
        self.staged = reconcile(
            machines=self.machines,
            rows=self.rows,
            mappings=self.mappings,
            target_date=self.target_date,
            fabrics=self.repo.list_fabrics(),
            overproduction_slack=self.repo.get_overproduction_slack(),
        )
        self.stage = STAGE_STAGED
        return self.staged

    def set_selected(self, machine_id: str, selected: bool) -> None:
        self._require(STAGE_STAGED)
        for s in self.staged:
            if s.machine_id == machine_id:
                s.selected = bool(selected)
                return
        raise ValueError(f"no staged row for machine {machine_id!r}")

    def select_all(self, selected: bool = True, *, only_with_data: bool = True) -> None:
        self._require(STAGE_STAGED)
        for s in self.staged:
            if only_with_data and not s.has_import_data:
                continue
            s.selected = bool(selected)

    @property
    def selected_rows(self) -> list[StagedRow]:
        return [s for s in self.staged if s.selected]

    # ---------- commit ----------
    def apply(self, *, batch_limit: int = MAX_BATCH_OPERATIONS) -> int:
        """Write the selected rows. Returns the count of machines updated.

        On CommitError the session stays staged; the caller should start a new
        session to see the store's current state before retrying.
        """
        self._require(STAGE_STAGED)
        try:
            count = self.repo.commit_import(self.staged, batch_limit=batch_limit)
        except CommitError as exc:
            self.repo.log_audit(
                "IMPORT_FAILED",
                f"Import for {self.target_date.isoformat()} failed",
                f"{exc.batches_committed}/{exc.batches_total} batches committed "
                f"({exc.machines_committed} machines): {exc}",
            )
            raise
        self.stage = STAGE_APPLIED
        return count
