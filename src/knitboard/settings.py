from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class Settings:
    db_path: Path
    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "INFO"
    log_file: Path | None = None
    title: str = "Knitting Production"


def default_db_path() -> Path:
    # Repo-local database location, stable across machines.
    return Path("db") / "knitboard.db"
