from __future__ import annotations

import sqlite3


def ensure_schema(con: sqlite3.Connection) -> None:
    con.executescript(
        """
        CREATE TABLE IF NOT EXISTS core_audit_log (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            timestamp TEXT NOT NULL DEFAULT(datetime('now', 'localtime')),
            category TEXT NOT NULL,
            message TEXT NOT NULL,
            details TEXT
        );

        CREATE TABLE IF NOT EXISTS core_config (
            config_key TEXT PRIMARY KEY,
            config_value TEXT NOT NULL,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        );

        -- Machine document: master data, the denormalized log array and the
        -- latest-state fields read by dashboard views.
        CREATE TABLE IF NOT EXISTS machine (
            machine_id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            machine_number INTEGER,
            machine_type TEXT,
            brand TEXT,
            sort_order INTEGER,
            status TEXT,
            client TEXT,
            fabric TEXT,
            remaining_mfg REAL NOT NULL DEFAULT 0,
            last_log_date TEXT,
            last_log_json TEXT,
            daily_logs_json TEXT NOT NULL DEFAULT '[]',
            work_center_aliases_json TEXT NOT NULL DEFAULT '[]',
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        );

        -- Normalized per-date record, one per (machine, date).
        CREATE TABLE IF NOT EXISTS machine_daily_log (
            machine_id TEXT NOT NULL,
            log_date TEXT NOT NULL,
            status TEXT NOT NULL,
            fabric TEXT,
            client TEXT,
            day_production REAL NOT NULL DEFAULT 0,
            scrap REAL NOT NULL DEFAULT 0,
            remaining REAL NOT NULL DEFAULT 0,
            remaining_mfg REAL NOT NULL DEFAULT 0,
            reason TEXT,
            note TEXT,
            updated_at TEXT NOT NULL,
            PRIMARY KEY(machine_id, log_date),
            FOREIGN KEY(machine_id) REFERENCES machine(machine_id),
            CHECK(remaining >= 0 AND remaining_mfg >= 0)
        );

        CREATE INDEX IF NOT EXISTS ix_machine_daily_log_date ON machine_daily_log(log_date);

        CREATE TABLE IF NOT EXISTS work_center_mapping (
            work_center TEXT PRIMARY KEY,
            machine_id TEXT NOT NULL,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS fabric (
            name TEXT PRIMARY KEY,
            code TEXT,
            short_name TEXT,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        );
        """
    )
