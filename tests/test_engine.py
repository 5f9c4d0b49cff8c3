import logging

import pytest

from porter_sync.PorterConfig import WriterConfig
from porter_sync.engine import DatabaseWriter, _truncate_error

USERS = {
    "id": "bigint",
    "name": "varchar(100)",
    "keys": {"pk": {"type": "primary", "columns": ["id"]}},
}


def _writer(conn, **config):
    return DatabaseWriter(conn, WriterConfig(**config))


# ---------------------------------------------------------------------------
# prepare
# ---------------------------------------------------------------------------

def test_prepare_creates_missing_table(conn, db):
    info = _writer(conn).prepare("users", USERS)

    assert info["created"] is True
    assert info["truncated"] is False
    assert db.columns("users") == ["id", "name"]
    assert any(s.startswith('CREATE SCHEMA IF NOT EXISTS "public"') for s in db.statements)


def test_prepare_truncates_existing_table_once_per_run(conn, db):
    db.add_table("public", "users", ["id", "name"], [{"id": 1, "name": "old"}])
    w = _writer(conn)

    first = w.prepare("users", USERS)
    db.rows("users").append({"id": 2, "name": "page one"})
    second = w.prepare("users", USERS)

    assert first["truncated"] is True
    assert second["truncated"] is False
    assert db.truncates == ["users"]
    assert db.rows("users") == [{"id": 2, "name": "page one"}]


def test_prepare_only_adds_missing_columns(conn, db):
    db.add_table("public", "users", ["id"])
    w = _writer(conn)
    w.protect_table("users")

    info = w.prepare("users", {"id": "bigint", "name": "varchar(100)", "bot": "tinyint"})

    assert info["truncated"] is False
    assert info["missing_added"] == ["name", "bot"]
    assert db.columns("users") == ["id", "name", "bot"]
    assert not any("DROP" in s or "ALTER COLUMN" in s for s in db.statements)


def test_prefix_and_schema_are_applied(conn, db):
    w = _writer(conn, schema="porter", table_prefix="gdn_")
    w.prepare("users", USERS)
    assert ("porter", "gdn_users") in db.tables
    assert w.exists("users", ["id", "name"]) is True
    assert w.exists("users", ["id", "missing"]) is False
    assert w.exists("other") is False
    assert w.exists() is False


# ---------------------------------------------------------------------------
# batching
# ---------------------------------------------------------------------------

def test_stream_commits_nothing_until_the_batch_is_full(conn, db):
    w = _writer(conn)
    w.prepare("users", USERS)

    for i in range(999):
        w.stream({"id": i, "name": f"u{i}"}, USERS)
    assert db.inserts == []
    assert w.pending == 999

    info = w.stream({"id": 999, "name": "u999"}, USERS)
    assert [(t, n) for t, n, _ in db.inserts] == [("users", 1000)]
    assert w.pending == 0
    assert info["rows"] == 1000


def test_stream_final_flushes_the_tail(conn, db):
    w = _writer(conn)
    w.prepare("users", USERS)
    w.stream({"id": 1, "name": "a"}, USERS)
    info = w.stream(None, USERS, final=True)

    assert [(t, n) for t, n, _ in db.inserts] == [("users", 1)]
    assert info["rows"] == 1
    assert info["memory"] > 0


def test_stream_requires_a_prepared_table(conn):
    with pytest.raises(RuntimeError):
        _writer(conn).stream({"id": 1}, USERS)


def test_store_normalizes_and_reports(conn, db):
    w = _writer(conn, batch_size=2)
    w.prepare("users", USERS)
    rows = ({"UserID": i, "Name": "" if i == 2 else f"n{i}", "Junk": True} for i in range(1, 6))

    info = w.store("users", {"UserID": "id", "Name": "name"}, USERS, rows)

    assert info["rows"] == 5
    assert info["failed_rows"] == 0
    assert info["batches"] == 3
    assert db.rows("users")[1] == {"id": 2, "name": None}
    assert set(info) >= {"name", "rows", "memory", "failed_rows", "elapsed"}


def test_failed_batch_is_logged_and_the_run_continues(conn, db, caplog):
    w = _writer(conn, batch_size=2)
    w.prepare("users", USERS)
    db.fail_inserts = 1

    with caplog.at_level(logging.WARNING, logger="porter_sync.engine"):
        info = w.store("users", None, USERS, [{"id": i, "name": "x"} for i in range(4)])

    assert info["rows"] == 4
    assert info["failed_rows"] == 2
    assert len(db.rows("users")) == 2
    assert db.rollbacks == 1
    assert "value too long" in caplog.text


def test_duplicate_tolerant_tables_skip_conflicts(conn, db):
    w = _writer(conn)
    w.ignore_table("users")
    w.prepare("users", USERS)
    w.store("users", None, USERS, [{"id": 1, "name": "a"}])
    assert db.inserts[0][2].endswith("ON CONFLICT DO NOTHING")


def test_switching_tables_flushes_the_previous_batch(conn, db):
    w = _writer(conn)
    w.prepare("users", USERS)
    w.stream({"id": 1, "name": "a"}, USERS)
    w.prepare("groups", {"id": "int"})

    assert [(t, n) for t, n, _ in db.inserts] == [("users", 1)]
    assert w.pending == 0


def test_begin_and_end_toggle_replication_role(conn, db):
    w = _writer(conn)
    w.prepare("users", USERS)
    w.begin()
    w.stream({"id": 1, "name": "a"}, USERS)
    w.end()

    roles = [s for s in db.statements if s.startswith("SET session_replication_role")]
    assert roles == ["SET session_replication_role = replica", "SET session_replication_role = origin"]
    assert len(db.rows("users")) == 1


def test_select_column_reads_back_values(conn, db):
    db.add_table("public", "discord_channels", ["id"], [{"id": "10"}, {"id": "11"}])
    assert _writer(conn).select_column("discord_channels", "id") == ["10", "11"]


def test_progress_is_logged_on_the_increment(conn, db, caplog):
    w = _writer(conn, batch_size=10, log_threshold=20, log_increment=20)
    w.prepare("users", USERS)
    with caplog.at_level(logging.INFO, logger="porter_sync.engine"):
        w.store("users", None, USERS, [{"id": i, "name": "x"} for i in range(45)])
    progress = [r.getMessage() for r in caplog.records if "done..." in r.getMessage()]
    assert progress == ["inserting 'users': 20 done...", "inserting 'users': 40 done..."]


def test_truncate_error_keeps_head_and_tail():
    message = "H" * 600 + "T" * 400
    out = _truncate_error(message)
    assert out.startswith("H" * 500)
    assert out.endswith("T" * 300)
    assert "[...]" in out
    assert _truncate_error("short") == "short"
