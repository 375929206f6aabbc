from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping
from datetime import date, datetime, timedelta

from knitboard.core.fabrics import DEFAULT_STRIP_KEYWORDS, new_fabric
from knitboard.core.models import AuditEntry, DailyLog, Fabric, Machine, StagedRow
from knitboard.core.reconcile import DEFAULT_OVERPRODUCTION_SLACK
from knitboard.data.batch import MAX_BATCH_OPERATIONS, Operation, commit_batches, plan_batches
from knitboard.data.db import Db
from knitboard.data.excel_io import parse_iso_date


logger = logging.getLogger(__name__)

CONFIG_OVERPRODUCTION_SLACK = "overproduction_slack"
CONFIG_FABRIC_STRIP_KEYWORDS = "fabric_strip_keywords"
CONFIG_ACTIVE_DAY = "active_day"


def _now() -> str:
    return datetime.now().isoformat(timespec="seconds")


def _json_list(raw) -> list:
    try:
        value = json.loads(raw or "[]")
    except (TypeError, ValueError):
        return []
    return value if isinstance(value, list) else []


def _latest_date(embedded_logs: list, *known: str | None) -> str | None:
    """Most recent ISO date across the embedded log array and stored dates.

    Legacy machines may carry history only in the embedded array, with no
    ``last_log_date`` set.
    """
    dates = [str(d)[:10] for d in known if d]
    for entry in embedded_logs:
        if isinstance(entry, dict) and entry.get("date"):
            dates.append(str(entry["date"])[:10])
    return max(dates) if dates else None


def _embedded_log_on(embedded_logs: list, day: str) -> dict | None:
    """The embedded log for ``day`` in its normalized stored form, if readable."""
    for entry in embedded_logs:
        if isinstance(entry, dict) and str(entry.get("date", ""))[:10] == day:
            try:
                return DailyLog.from_document(entry).to_document()
            except (KeyError, TypeError, ValueError):
                logger.warning("Unreadable embedded log for %s: %r", day, entry)
                return None
    return None


class Repository:
    """Store access for machines, daily logs, work-center mappings and fabrics."""

    def __init__(self, db: Db):
        self.db = db

    # ---------- Audit ----------
    def log_audit(self, category: str, message: str, details: str | None = None) -> None:
        """Record a business event in the audit log."""
        try:
            with self.db.connect() as con:
                con.execute(
                    "INSERT INTO core_audit_log (category, message, details) VALUES (?, ?, ?)",
                    (category, message, details),
                )
        except Exception:
            # Audit failures never abort the business operation.
            logger.exception("Failed to write audit log")

    def get_recent_audit_entries(self, limit: int = 100) -> list[AuditEntry]:
        with self.db.connect() as con:
            rows = con.execute(
                "SELECT * FROM core_audit_log ORDER BY id DESC LIMIT ?", (limit,)
            ).fetchall()
            return [
                AuditEntry(
                    id=row["id"],
                    timestamp=row["timestamp"],
                    category=row["category"],
                    message=row["message"],
                    details=row["details"],
                )
                for row in rows
            ]

    # ---------- Configuration ----------
    def get_config(self, *, key: str, default: str | None = None) -> str | None:
        key = str(key).strip()
        if not key:
            raise ValueError("empty config key")
        with self.db.connect() as con:
            row = con.execute("SELECT config_value FROM core_config WHERE config_key = ?", (key,)).fetchone()
        if row is None:
            return default
        return str(row[0])

    def set_config(self, *, key: str, value: str) -> None:
        key = str(key).strip()
        if not key:
            raise ValueError("empty config key")

        old = self.get_config(key=key, default="(none)")
        with self.db.connect() as con:
            con.execute(
                """
                INSERT INTO core_config(config_key, config_value, updated_at) VALUES(?, ?, ?)
                ON CONFLICT(config_key) DO UPDATE SET config_value=excluded.config_value, updated_at=excluded.updated_at
                """,
                (key, str(value).strip(), _now()),
            )
        self.log_audit("CONFIG", f"Updated '{key}'", f"From '{old}' to '{value}'")

    def get_overproduction_slack(self) -> float:
        raw = self.get_config(key=CONFIG_OVERPRODUCTION_SLACK, default=None)
        if raw is None:
            return DEFAULT_OVERPRODUCTION_SLACK
        try:
            return max(0.0, float(raw))
        except ValueError:
            logger.warning("Invalid %s=%r, using %s", CONFIG_OVERPRODUCTION_SLACK, raw, DEFAULT_OVERPRODUCTION_SLACK)
            return DEFAULT_OVERPRODUCTION_SLACK

    def set_overproduction_slack(self, value: float) -> None:
        value = float(value)
        if value < 0:
            raise ValueError("overproduction slack must be >= 0")
        self.set_config(key=CONFIG_OVERPRODUCTION_SLACK, value=f"{value:g}")

    def get_fabric_strip_keywords(self) -> tuple[str, ...]:
        raw = self.get_config(key=CONFIG_FABRIC_STRIP_KEYWORDS, default=None)
        if raw is None:
            return DEFAULT_STRIP_KEYWORDS
        return tuple(str(k) for k in _json_list(raw) if str(k))

    def set_fabric_strip_keywords(self, keywords: Iterable[str]) -> None:
        clean = [str(k) for k in keywords if str(k).strip()]
        self.set_config(key=CONFIG_FABRIC_STRIP_KEYWORDS, value=json.dumps(clean, ensure_ascii=False))

    def get_active_day(self) -> date | None:
        raw = self.get_config(key=CONFIG_ACTIVE_DAY, default=None)
        if not raw:
            return None
        try:
            return parse_iso_date(raw)
        except ValueError:
            logger.warning("Invalid %s=%r in config", CONFIG_ACTIVE_DAY, raw)
            return None

    def set_active_day(self, day: date | str) -> None:
        self.set_config(key=CONFIG_ACTIVE_DAY, value=parse_iso_date(day).isoformat())

    # ---------- Machines ----------
    def upsert_machine(
        self,
        *,
        machine_id: str,
        name: str,
        number: int | None = None,
        machine_type: str = "",
        brand: str = "",
        sort_order: int | None = None,
    ) -> None:
        machine_id = str(machine_id).strip()
        name = str(name or "").strip()
        if not machine_id:
            raise ValueError("empty machine id")
        if not name:
            raise ValueError("empty machine name")
        with self.db.connect() as con:
            con.execute(
                """
                INSERT INTO machine(machine_id, name, machine_number, machine_type, brand, sort_order, updated_at)
                VALUES(?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(machine_id) DO UPDATE SET
                    name=excluded.name,
                    machine_number=excluded.machine_number,
                    machine_type=excluded.machine_type,
                    brand=excluded.brand,
                    sort_order=COALESCE(excluded.sort_order, machine.sort_order),
                    updated_at=excluded.updated_at
                """,
                (machine_id, name, number, machine_type, brand, sort_order, _now()),
            )

    def count_machines(self) -> int:
        with self.db.connect() as con:
            return int(con.execute("SELECT COUNT(*) FROM machine").fetchone()[0])

    def list_machines(self) -> list[Machine]:
        """All machines with their full log history.

        The embedded log array and the per-date records are merged; for a given
        date the per-date record wins.
        """
        with self.db.connect() as con:
            machine_rows = con.execute(
                "SELECT * FROM machine ORDER BY COALESCE(sort_order, 1e9), name"
            ).fetchall()
            log_rows = con.execute("SELECT * FROM machine_daily_log ORDER BY machine_id, log_date").fetchall()

        by_machine: dict[str, dict[date, DailyLog]] = {}
        for r in machine_rows:
            logs: dict[date, DailyLog] = {}
            for doc in _json_list(r["daily_logs_json"]):
                try:
                    log = DailyLog.from_document(doc)
                except (AttributeError, KeyError, TypeError, ValueError):
                    logger.warning("Skipping malformed embedded log on machine %s: %r", r["machine_id"], doc)
                    continue
                logs[log.log_date] = log
            by_machine[str(r["machine_id"])] = logs

        for r in log_rows:
            logs = by_machine.get(str(r["machine_id"]))
            if logs is None:
                continue
            log = DailyLog.from_document(
                {
                    "date": r["log_date"],
                    "status": r["status"],
                    "fabric": r["fabric"],
                    "client": r["client"],
                    "dayProduction": r["day_production"],
                    "scrap": r["scrap"],
                    "remaining": r["remaining"],
                    "remainingMfg": r["remaining_mfg"],
                    "reason": r["reason"],
                    "note": r["note"],
                }
            )
            logs[log.log_date] = log

        machines: list[Machine] = []
        for r in machine_rows:
            mid = str(r["machine_id"])
            logs = by_machine[mid]
            machines.append(
                Machine(
                    machine_id=mid,
                    name=str(r["name"]),
                    number=r["machine_number"],
                    machine_type=str(r["machine_type"] or ""),
                    brand=str(r["brand"] or ""),
                    daily_logs=tuple(logs[d] for d in sorted(logs)),
                    work_center_aliases=tuple(str(a) for a in _json_list(r["work_center_aliases_json"])),
                )
            )
        return machines

    def get_machine(self, machine_id: str) -> Machine | None:
        for m in self.list_machines():
            if m.machine_id == str(machine_id):
                return m
        return None

    def get_machine_state_rows(self) -> list[dict]:
        """Latest-state fields per machine, as read by dashboard views."""
        with self.db.connect() as con:
            rows = con.execute(
                """
                SELECT machine_id, name, machine_type, brand, status, client, fabric,
                       remaining_mfg, last_log_date
                FROM machine
                ORDER BY COALESCE(sort_order, 1e9), name
                """
            ).fetchall()
        return [
            {
                "machine_id": r["machine_id"],
                "name": r["name"],
                "machine_type": r["machine_type"] or "",
                "brand": r["brand"] or "",
                "status": r["status"] or "",
                "client": r["client"] or "",
                "fabric": r["fabric"] or "",
                "remaining": float(r["remaining_mfg"] or 0),
                "last_log_date": r["last_log_date"] or "",
            }
            for r in rows
        ]

    # ---------- Work-center mappings ----------
    def get_work_center_mappings(self) -> dict[str, str]:
        with self.db.connect() as con:
            rows = con.execute("SELECT work_center, machine_id FROM work_center_mapping").fetchall()
        return {str(r["work_center"]): str(r["machine_id"]) for r in rows}

    def set_work_center_mapping(self, *, work_center: str, machine_id: str | None) -> None:
        """Persist one operator mapping. ``machine_id=None`` clears it."""
        self.save_work_center_mappings({work_center: machine_id})

    def save_work_center_mappings(self, mappings: Mapping[str, str | None]) -> None:
        changes: list[str] = []
        with self.db.connect() as con:
            known = {str(r[0]) for r in con.execute("SELECT machine_id FROM machine").fetchall()}
            current = {
                str(r["work_center"]): str(r["machine_id"])
                for r in con.execute("SELECT work_center, machine_id FROM work_center_mapping").fetchall()
            }
            for raw_label, raw_mid in mappings.items():
                label = str(raw_label or "").strip()
                if not label:
                    raise ValueError("empty work center label")
                mid = str(raw_mid).strip() if raw_mid not in (None, "") else None
                if mid is None:
                    if label in current:
                        con.execute("DELETE FROM work_center_mapping WHERE work_center = ?", (label,))
                        changes.append(f"{label} -> (cleared)")
                    continue
                if current.get(label) == mid:
                    continue
                if mid not in known:
                    raise ValueError(f"unknown machine id: {mid!r}")
                con.execute(
                    """
                    INSERT INTO work_center_mapping(work_center, machine_id, updated_at) VALUES(?, ?, ?)
                    ON CONFLICT(work_center) DO UPDATE SET machine_id=excluded.machine_id, updated_at=excluded.updated_at
                    """,
                    (label, mid, _now()),
                )
                self._add_alias(con, machine_id=mid, alias=label)
                changes.append(f"{label} -> {mid}")

        if changes:
            logger.info("Saved %d work center mapping changes", len(changes))
            self.log_audit("MAPPING", f"Updated {len(changes)} work center mappings", "; ".join(changes))

    @staticmethod
    def _add_alias(con, *, machine_id: str, alias: str) -> None:
        row = con.execute(
            "SELECT work_center_aliases_json FROM machine WHERE machine_id = ?", (machine_id,)
        ).fetchone()
        aliases = [str(a) for a in _json_list(row[0] if row else None)]
        if alias in aliases:
            return
        aliases.append(alias)
        con.execute(
            "UPDATE machine SET work_center_aliases_json = ? WHERE machine_id = ?",
            (json.dumps(aliases, ensure_ascii=False), machine_id),
        )

    # ---------- Fabrics ----------
    def list_fabrics(self) -> list[Fabric]:
        with self.db.connect() as con:
            rows = con.execute("SELECT name, code, short_name FROM fabric ORDER BY name").fetchall()
        return [Fabric(name=r["name"], code=r["code"] or "", short_name=r["short_name"] or "") for r in rows]

    def add_fabric(self, fabric: Fabric) -> bool:
        """Insert a fabric definition. Returns False if the name already exists."""
        name = str(fabric.name or "").strip()
        if not name:
            raise ValueError("empty fabric name")
        with self.db.connect() as con:
            cur = con.execute(
                "INSERT OR IGNORE INTO fabric(name, code, short_name) VALUES(?, ?, ?)",
                (name, fabric.code, fabric.short_name),
            )
            return cur.rowcount > 0

    def create_fabrics(self, names: Iterable[str]) -> list[Fabric]:
        """Create fabric definitions from raw names, deriving code and short name."""
        keywords = self.get_fabric_strip_keywords()
        created: list[Fabric] = []
        for name in names:
            if not str(name or "").strip():
                continue
            fabric = new_fabric(name, keywords=keywords)
            if self.add_fabric(fabric):
                created.append(fabric)
        if created:
            logger.info("Created %d fabrics", len(created))
            self.log_audit("FABRIC", f"Created {len(created)} fabrics", ", ".join(f.name for f in created))
        return created

    # ---------- Daily log writes ----------
    def _load_machine_docs(self, con) -> dict[str, dict]:
        rows = con.execute(
            """
            SELECT m.machine_id, m.daily_logs_json, m.last_log_date,
                   (SELECT MAX(l.log_date) FROM machine_daily_log l WHERE l.machine_id = m.machine_id) AS last_record_date
            FROM machine m
            """
        ).fetchall()
        docs: dict[str, dict] = {}
        for r in rows:
            logs = _json_list(r["daily_logs_json"])
            docs[str(r["machine_id"])] = {
                "daily_logs": logs,
                "latest_date": _latest_date(logs, r["last_log_date"], r["last_record_date"]),
            }
        return docs

    @staticmethod
    def _log_write_ops(machine_id: str, doc: dict, log: DailyLog) -> list[Operation]:
        """Writes for one log: the machine's log array plus the per-date record."""
        new_doc = log.to_document()
        day = new_doc["date"]

        logs = list(doc["daily_logs"])
        for i, existing in enumerate(logs):
            if isinstance(existing, dict) and str(existing.get("date", ""))[:10] == day:
                logs[i] = {**existing, **new_doc}
                break
        else:
            logs.append(new_doc)
        logs_json = json.dumps(logs, ensure_ascii=False)
        now = _now()

        latest = doc.get("latest_date")
        if not latest or day >= latest:
            current = new_doc
        else:
            # An older date: the top-level state keeps following the newest log.
            current = _embedded_log_on(logs, latest)

        if current is not None:
            machine_op = Operation(
                """
                UPDATE machine SET
                    daily_logs_json = ?, status = ?, client = ?, fabric = ?, remaining_mfg = ?,
                    last_log_date = ?, last_log_json = ?, updated_at = ?
                WHERE machine_id = ?
                """,
                (
                    logs_json,
                    current["status"],
                    current["client"],
                    current["fabric"],
                    current["remainingMfg"],
                    current["date"],
                    json.dumps(current, ensure_ascii=False),
                    now,
                    machine_id,
                ),
            )
        else:
            machine_op = Operation(
                "UPDATE machine SET daily_logs_json = ?, updated_at = ? WHERE machine_id = ?",
                (logs_json, now, machine_id),
            )

        record_op = Operation(
            """
            INSERT INTO machine_daily_log(
                machine_id, log_date, status, fabric, client, day_production, scrap,
                remaining, remaining_mfg, reason, note, updated_at
            ) VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(machine_id, log_date) DO UPDATE SET
                status=excluded.status,
                fabric=excluded.fabric,
                client=excluded.client,
                day_production=excluded.day_production,
                scrap=excluded.scrap,
                remaining=excluded.remaining,
                remaining_mfg=excluded.remaining_mfg,
                reason=excluded.reason,
                note=excluded.note,
                updated_at=excluded.updated_at
            """,
            (
                machine_id,
                day,
                log.status,
                log.fabric,
                log.client,
                new_doc["dayProduction"],
                new_doc["scrap"],
                new_doc["remaining"],
                new_doc["remainingMfg"],
                log.reason,
                log.note,
                now,
            ),
        )
        return [machine_op, record_op]

    def write_daily_logs(
        self,
        logs: Mapping[str, DailyLog],
        *,
        batch_limit: int = MAX_BATCH_OPERATIONS,
    ) -> int:
        """Upsert one log per machine in chunked atomic batches.

        Returns the number of machines written. Raises CommitError when a batch
        fails; batches submitted before it stay committed.
        """
        if not logs:
            return 0
        with self.db.connect() as con:
            docs = self._load_machine_docs(con)

        groups: list[list[Operation]] = []
        for machine_id, log in logs.items():
            doc = docs.get(str(machine_id))
            if doc is None:
                logger.warning("Skipping log for unknown machine %s", machine_id)
                continue
            groups.append(self._log_write_ops(str(machine_id), doc, log))

        batches = plan_batches(groups, limit=batch_limit)
        return commit_batches(self.db, batches)

    def commit_import(
        self,
        staged: Iterable[StagedRow],
        *,
        batch_limit: int = MAX_BATCH_OPERATIONS,
    ) -> int:
        """Write the selected staged rows. Returns the count of machines updated."""
        selected = [s for s in staged if s.selected]
        if not selected:
            return 0
        logs = {s.machine_id: s.to_daily_log() for s in selected}
        days = sorted({s.import_date.isoformat() for s in selected})
        count = self.write_daily_logs(logs, batch_limit=batch_limit)
        logger.info("Import applied: %d machines for %s", count, ", ".join(days))
        self.log_audit("IMPORT", f"Applied import for {', '.join(days)}", f"{count} machines updated")
        return count

    def carry_forward(
        self,
        *,
        target_date: date | str,
        source_date: date | str | None = None,
        batch_limit: int = MAX_BATCH_OPERATIONS,
    ) -> int:
        """Copy each machine's log on ``source_date`` to ``target_date``.

        The new log keeps status, fabric, client and remaining quantity, with
        zero production and scrap. ``source_date`` defaults to the day before
        ``target_date``. Returns the count of machines updated.
        """
        target = parse_iso_date(target_date)
        source = parse_iso_date(source_date) if source_date else target - timedelta(days=1)
        if source == target:
            raise ValueError("source date must differ from target date")

        logs: dict[str, DailyLog] = {}
        for m in self.list_machines():
            prev = m.log_on(source)
            if prev is None:
                continue
            logs[m.machine_id] = DailyLog(
                log_date=target,
                status=prev.status,
                fabric=prev.fabric,
                client=prev.client,
                day_production=0.0,
                scrap=0.0,
                remaining=prev.remaining,
            )

        count = self.write_daily_logs(logs, batch_limit=batch_limit)
        logger.info("Carried forward %d machines from %s to %s", count, source, target)
        self.log_audit("CARRY_FORWARD", f"{source.isoformat()} -> {target.isoformat()}", f"{count} machines updated")
        return count
