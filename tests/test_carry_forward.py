from datetime import date
from pathlib import Path

import pytest

from knitboard.core.models import STATUS_NO_ORDER, STATUS_WORKING, DailyLog
from knitboard.data.db import Db
from knitboard.data.repository import Repository


@pytest.fixture()
def repo(tmp_path) -> Repository:
    db = Db(Path(tmp_path) / "test.db")
    db.ensure_schema()
    repo = Repository(db)
    for i in (1, 2, 3):
        repo.upsert_machine(machine_id=str(i), name=f"M{i}", number=i, sort_order=i)
    repo.write_daily_logs(
        {
            "1": DailyLog(
                log_date=date(2024, 1, 1),
                status=STATUS_WORKING,
                client="A",
                fabric="Jersey",
                day_production=120,
                scrap=3,
                remaining=400,
            ),
            "2": DailyLog(log_date=date(2024, 1, 1), status=STATUS_NO_ORDER, remaining=0),
        }
    )
    return repo


def test_carry_forward_copies_state_with_zero_production(repo):
    count = repo.carry_forward(target_date="2024-01-02")

    assert count == 2
    copied = repo.get_machine("1").log_on(date(2024, 1, 2))
    assert copied.status == STATUS_WORKING
    assert copied.client == "A"
    assert copied.fabric == "Jersey"
    assert copied.remaining == 400
    assert copied.day_production == 0
    assert copied.scrap == 0
    assert repo.get_machine("2").log_on(date(2024, 1, 2)).status == STATUS_NO_ORDER
    # no source log, nothing to carry
    assert repo.get_machine("3").daily_logs == ()


def test_carry_forward_from_explicit_source(repo):
    assert repo.carry_forward(target_date=date(2024, 1, 5), source_date=date(2024, 1, 1)) == 2
    assert repo.get_machine("1").log_on(date(2024, 1, 5)).remaining == 400
    assert repo.carry_forward(target_date=date(2024, 1, 5), source_date=date(2023, 12, 1)) == 0


def test_carry_forward_overwrites_target_day(repo):
    repo.write_daily_logs({"1": DailyLog(log_date=date(2024, 1, 2), status=STATUS_WORKING, remaining=1)})
    repo.carry_forward(target_date="2024-01-02")

    m = repo.get_machine("1")
    assert len(m.daily_logs) == 2
    assert m.log_on(date(2024, 1, 2)).remaining == 400


def test_carry_forward_is_audited(repo):
    repo.carry_forward(target_date="2024-01-02")
    entry = repo.get_recent_audit_entries(limit=1)[0]
    assert entry.category == "CARRY_FORWARD"
    assert entry.message == "2024-01-01 -> 2024-01-02"


def test_carry_forward_rejects_same_day(repo):
    with pytest.raises(ValueError):
        repo.carry_forward(target_date="2024-01-01", source_date="2024-01-01")
    with pytest.raises(ValueError):
        repo.carry_forward(target_date="soon")
