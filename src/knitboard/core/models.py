from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any


# Machine statuses. Any other non-empty text is a custom status.
STATUS_WORKING = "Working"
STATUS_UNDER_OPERATION = "Under Operation"
STATUS_NO_ORDER = "No Order"
STATUS_OUT_OF_SERVICE = "Out of Service"
STATUS_CHANGEOVER = "Qalb"
STATUS_OTHER = "Other"
STATUS_STOPPED = "Stopped"

KNOWN_STATUSES = (
    STATUS_WORKING,
    STATUS_UNDER_OPERATION,
    STATUS_NO_ORDER,
    STATUS_OUT_OF_SERVICE,
    STATUS_CHANGEOVER,
    STATUS_OTHER,
    STATUS_STOPPED,
)

# Validation levels, lowest risk first.
SAFE = "SAFE"
WARNING = "WARNING"
ERROR = "ERROR"

_LEVEL_RANK = {SAFE: 0, WARNING: 1, ERROR: 2}


def escalate(current: str, proposed: str) -> str:
    """Return the higher of two validation levels."""
    return proposed if _LEVEL_RANK[proposed] > _LEVEL_RANK[current] else current


def _num(value: Any) -> float:
    if value is None or value == "":
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


@dataclass(frozen=True)
class DailyLog:
    log_date: date
    status: str
    fabric: str = ""
    client: str = ""
    day_production: float = 0.0
    scrap: float = 0.0
    remaining: float = 0.0
    reason: str = ""
    note: str = ""

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "DailyLog":
        """Build a log from its stored form.

        Older writers only set ``remaining``; newer ones set ``remainingMfg``.
        """
        if doc.get("remainingMfg") not in (None, ""):
            remaining = _num(doc.get("remainingMfg"))
        else:
            remaining = _num(doc.get("remaining"))
        return cls(
            log_date=date.fromisoformat(str(doc["date"])[:10]),
            status=str(doc.get("status") or STATUS_STOPPED),
            fabric=str(doc.get("fabric") or ""),
            client=str(doc.get("client") or ""),
            day_production=_num(doc.get("dayProduction")),
            scrap=_num(doc.get("scrap")),
            remaining=max(0.0, remaining),
            reason=str(doc.get("reason") or ""),
            note=str(doc.get("note") or ""),
        )

    def to_document(self) -> dict[str, Any]:
        remaining = max(0.0, float(self.remaining))
        return {
            "date": self.log_date.isoformat(),
            "status": self.status,
            "fabric": self.fabric,
            "client": self.client,
            "dayProduction": float(self.day_production),
            "scrap": float(self.scrap),
            # Both keys are written so older readers keep working.
            "remaining": remaining,
            "remainingMfg": remaining,
            "reason": self.reason,
            "note": self.note,
        }


@dataclass(frozen=True)
class Machine:
    machine_id: str
    name: str
    number: int | None = None
    machine_type: str = ""
    brand: str = ""
    daily_logs: tuple[DailyLog, ...] = ()
    work_center_aliases: tuple[str, ...] = ()

    def log_on(self, day: date) -> DailyLog | None:
        for log in self.daily_logs:
            if log.log_date == day:
                return log
        return None

    def latest_log_before(self, day: date) -> DailyLog | None:
        """The log with the greatest date strictly before ``day``."""
        best: DailyLog | None = None
        for log in self.daily_logs:
            if log.log_date < day and (best is None or log.log_date > best.log_date):
                best = log
        return best

    @property
    def latest_log(self) -> DailyLog | None:
        if not self.daily_logs:
            return None
        return max(self.daily_logs, key=lambda log: log.log_date)


_CLIENT_SPLIT_RE = re.compile(r"[\s-]")


def client_from_customer(customer: str | None) -> str:
    """Canonical client name: the first whitespace/hyphen delimited token."""
    s = str(customer or "").strip()
    if not s:
        return ""
    return _CLIENT_SPLIT_RE.split(s, maxsplit=1)[0].strip()


@dataclass(frozen=True)
class ImportRow:
    fabric: str
    production: float
    customer: str
    scrap: float
    work_center: str
    row_number: int | None = None

    @property
    def client(self) -> str:
        return client_from_customer(self.customer)


@dataclass(frozen=True)
class Fabric:
    name: str
    code: str = ""
    short_name: str = ""

    @property
    def display_name(self) -> str:
        return self.short_name or self.name


@dataclass(frozen=True)
class WorkCenterProposal:
    label: str
    fabrics: tuple[str, ...]
    machine_id: str | None
    source: str  # "saved" | "matched" | "unresolved"

    @property
    def is_resolved(self) -> bool:
        return self.machine_id is not None


@dataclass(frozen=True)
class SplitDetail:
    client: str
    fabric: str
    production: float


@dataclass
class StagedRow:
    machine_id: str
    machine_name: str
    import_date: date

    # previous-day snapshot
    previous_date: date | None
    previous_status: str
    previous_client: str
    previous_fabric: str
    previous_remaining: float
    is_stale: bool

    # import snapshot
    has_import_data: bool
    import_production: float
    import_scrap: float
    import_client: str
    import_fabric: str
    source_work_centers: list[str] = field(default_factory=list)
    is_split: bool = False
    split_details: list[SplitDetail] = field(default_factory=list)

    # forecast
    new_remaining: float = 0.0
    new_status: str = STATUS_STOPPED
    note: str = ""

    validation_status: str = SAFE
    validation_message: str = ""

    selected: bool = False

    def to_daily_log(self) -> DailyLog:
        return DailyLog(
            log_date=self.import_date,
            status=self.new_status,
            fabric=self.import_fabric,
            client=self.import_client,
            day_production=self.import_production,
            scrap=self.import_scrap,
            remaining=max(0.0, self.new_remaining),
            note=self.note,
        )


@dataclass
class AuditEntry:
    id: int
    timestamp: str
    category: str
    message: str
    details: str | None = None
