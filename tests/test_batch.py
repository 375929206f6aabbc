from datetime import date
from pathlib import Path

import pytest

from knitboard.core.models import STATUS_WORKING, DailyLog, StagedRow
from knitboard.data.batch import (
    CommitError,
    Operation,
    WriteBatch,
    commit_batches,
    plan_batches,
)
from knitboard.data.db import Db
from knitboard.data.repository import Repository


@pytest.fixture()
def db(tmp_path) -> Db:
    db = Db(Path(tmp_path) / "test.db")
    db.ensure_schema()
    return db


@pytest.fixture()
def repo(db) -> Repository:
    repo = Repository(db)
    for i in range(1, 6):
        repo.upsert_machine(machine_id=str(i), name=f"M{i}", number=i, sort_order=i)
    return repo


def config_op(key: str) -> Operation:
    return Operation("INSERT INTO core_config(config_key, config_value) VALUES(?, ?)", (key, "x"))


def config_keys(db) -> set[str]:
    with db.connect() as con:
        return {r[0] for r in con.execute("SELECT config_key FROM core_config").fetchall()}


def staged(machine_id: str, *, remaining: float, selected: bool = True) -> StagedRow:
    return StagedRow(
        machine_id=machine_id,
        machine_name=f"M{machine_id}",
        import_date=date(2024, 1, 2),
        previous_date=date(2024, 1, 1),
        previous_status=STATUS_WORKING,
        previous_client="A",
        previous_fabric="Jersey",
        previous_remaining=500.0,
        is_stale=False,
        has_import_data=True,
        import_production=10.0,
        import_scrap=0.0,
        import_client="A",
        import_fabric="Jersey",
        new_remaining=remaining,
        new_status=STATUS_WORKING,
        selected=selected,
    )


# ---------- Planning ----------
def test_groups_are_packed_without_splitting():
    groups = [[config_op("a"), config_op("b")], [config_op("c"), config_op("d")], [config_op("e"), config_op("f")]]
    batches = plan_batches(groups, limit=5)

    assert [len(b) for b in batches] == [4, 2]
    assert [b.groups for b in batches] == [2, 1]


def test_every_batch_respects_the_limit():
    groups = [[config_op(f"k{i}"), config_op(f"v{i}")] for i in range(300)]
    batches = plan_batches(groups)

    assert all(len(b) <= 500 for b in batches)
    assert [len(b) for b in batches] == [500, 100]
    assert sum(b.groups for b in batches) == 300


def test_invalid_limits_are_rejected():
    with pytest.raises(ValueError):
        plan_batches([[config_op("a")]], limit=0)
    with pytest.raises(ValueError):
        plan_batches([[config_op("a"), config_op("b")]], limit=1)

    batch = WriteBatch(limit=1)
    batch.add_group([config_op("a")])
    with pytest.raises(ValueError):
        batch.add_group([config_op("b")])


def test_no_groups_means_no_batches(db):
    assert plan_batches([]) == []
    assert commit_batches(db, []) == 0


# ---------- Commit ----------
def test_failed_batch_is_rolled_back_and_earlier_batches_stay(db):
    groups = [
        [config_op("a")],
        [config_op("b")],
        [config_op("c"), Operation("INSERT INTO no_such_table VALUES (1)")],
        [config_op("d")],
    ]
    batches = plan_batches(groups, limit=2)
    assert len(batches) == 3

    with pytest.raises(CommitError) as excinfo:
        commit_batches(db, batches)

    err = excinfo.value
    assert err.batches_committed == 1
    assert err.batches_total == 3
    assert err.machines_committed == 2
    assert err.partially_applied
    assert config_keys(db) == {"a", "b"}


def test_commit_import_writes_only_selected_rows(repo):
    rows = [staged("1", remaining=310), staged("2", remaining=50, selected=False), staged("3", remaining=0)]
    count = repo.commit_import(rows)

    assert count == 2
    assert repo.get_machine("1").log_on(date(2024, 1, 2)).remaining == 310
    assert repo.get_machine("2").log_on(date(2024, 1, 2)) is None
    assert repo.get_machine("3").log_on(date(2024, 1, 2)).remaining == 0
    assert any(e.category == "IMPORT" for e in repo.get_recent_audit_entries())


def test_commit_import_with_nothing_selected_writes_nothing(repo):
    assert repo.commit_import([staged("1", remaining=1, selected=False)]) == 0
    assert repo.get_machine("1").daily_logs == ()


def test_commit_import_in_small_batches(repo):
    rows = [staged(str(i), remaining=float(i)) for i in range(1, 6)]
    # two writes per machine, so two machines per batch
    count = repo.commit_import(rows, batch_limit=4)

    assert count == 5
    for i in range(1, 6):
        assert repo.get_machine(str(i)).log_on(date(2024, 1, 2)).remaining == float(i)


def test_partial_commit_reports_progress(monkeypatch, repo):
    original = WriteBatch.commit
    calls = {"n": 0}

    def flaky_commit(self, db):
        calls["n"] += 1
        if calls["n"] == 2:
            raise RuntimeError("store unavailable")
        original(self, db)

    monkeypatch.setattr(WriteBatch, "commit", flaky_commit)

    rows = [staged(str(i), remaining=float(i)) for i in range(1, 6)]
    with pytest.raises(CommitError) as excinfo:
        repo.commit_import(rows, batch_limit=4)

    err = excinfo.value
    assert err.batches_committed == 1
    assert err.batches_total == 3
    assert err.machines_committed == 2
    written = [m.machine_id for m in repo.list_machines() if m.log_on(date(2024, 1, 2)) is not None]
    assert written == ["1", "2"]


def test_retry_after_partial_commit_converges(monkeypatch, repo):
    rows = [staged(str(i), remaining=float(i)) for i in range(1, 6)]

    def broken(self, db):
        raise RuntimeError("down")

    with monkeypatch.context() as mp:
        mp.setattr(WriteBatch, "commit", broken)
        with pytest.raises(CommitError):
            repo.commit_import(rows, batch_limit=4)

    assert repo.commit_import(rows, batch_limit=4) == 5
    repo.commit_import(rows, batch_limit=4)
    for i in range(1, 6):
        m = repo.get_machine(str(i))
        assert len(m.daily_logs) == 1
        assert m.log_on(date(2024, 1, 2)).remaining == float(i)


def test_write_daily_logs_with_no_logs_is_a_noop(repo):
    assert repo.write_daily_logs({}) == 0
    assert repo.write_daily_logs({"1": DailyLog(log_date=date(2024, 1, 1), status=STATUS_WORKING)}) == 1
