"""
Shared fakes: an in-memory stand-in for a psycopg2 connection, HTTP responses
built as real requests.Response objects, and a cancel token that records
sleeps instead of waiting.
"""
import json
import re
from types import SimpleNamespace
from unittest.mock import MagicMock

import psycopg2
import pytest
import requests
from requests.structures import CaseInsensitiveDict
from urllib3._collections import HTTPHeaderDict

from porter_sync.PorterConfig import PullClientConfig
from porter_sync.cancel import CancelToken
from porter_sync.https import HttpsOrigin


_IDENT = r'"((?:[^"]|"")+)"'
_CREATE_RE = re.compile(rf'^CREATE TABLE IF NOT EXISTS {_IDENT}\.{_IDENT} \((.*)\)$', re.DOTALL)
_COLUMN_RE = re.compile(rf'(?:^|, ){_IDENT} ')
_ALTER_RE = re.compile(rf'^ALTER TABLE {_IDENT}\.{_IDENT} ADD COLUMN {_IDENT} ')
_TRUNCATE_RE = re.compile(rf'^TRUNCATE TABLE {_IDENT}\.{_IDENT}')
_SELECT_RE = re.compile(rf'^SELECT {_IDENT} FROM {_IDENT}\.{_IDENT}$')
_INSERT_RE = re.compile(rf'^INSERT INTO {_IDENT}\.{_IDENT} \((.*?)\) VALUES %s')


def _unquote(name):
    return name.replace('""', '"')


# ============================== Fake PostgreSQL ===============================

class FakeDatabase:
    def __init__(self):
        self.tables = {}            # (schema, table) -> {"columns": [...], "rows": [...]}
        self.statements = []
        self.inserts = []           # (table, row count, sql)
        self.truncates = []
        self.commits = 0
        self.rollbacks = 0
        self.fail_inserts = 0

    def add_table(self, schema, table, columns, rows=()):
        self.tables[(schema, table)] = {"columns": list(columns), "rows": [dict(r) for r in rows]}

    def rows(self, table, schema="public"):
        return self.tables[(schema, table)]["rows"]

    def columns(self, table, schema="public"):
        return self.tables[(schema, table)]["columns"]


class FakeCursor:
    def __init__(self, db):
        self.db = db
        self._result = []

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, sql, params=None):
        sql = " ".join(sql.split())
        self.db.statements.append(sql)
        self._result = []

        if "information_schema.tables" in sql:
            self._result = [(tuple(params) in self.db.tables,)]
        elif "information_schema.columns" in sql:
            table = self.db.tables.get(tuple(params))
            self._result = [(c,) for c in (table["columns"] if table else [])]
        elif m := _CREATE_RE.match(sql):
            key = (_unquote(m.group(1)), _unquote(m.group(2)))
            cols = []
            for name in _COLUMN_RE.findall(m.group(3)):
                if _unquote(name) not in cols:
                    cols.append(_unquote(name))
            self.db.tables.setdefault(key, {"columns": cols, "rows": []})
        elif m := _ALTER_RE.match(sql):
            key = (_unquote(m.group(1)), _unquote(m.group(2)))
            self.db.tables[key]["columns"].append(_unquote(m.group(3)))
        elif m := _TRUNCATE_RE.match(sql):
            key = (_unquote(m.group(1)), _unquote(m.group(2)))
            self.db.tables[key]["rows"].clear()
            self.db.truncates.append(key[1])
        elif m := _SELECT_RE.match(sql):
            key = (_unquote(m.group(2)), _unquote(m.group(3)))
            col = _unquote(m.group(1))
            self._result = [(r.get(col),) for r in self.db.tables[key]["rows"]]

    def fetchone(self):
        return self._result[0] if self._result else None

    def fetchall(self):
        return list(self._result)


class FakeConnection:
    def __init__(self, db):
        self.db = db

    def cursor(self):
        return FakeCursor(self.db)

    def commit(self):
        self.db.commits += 1

    def rollback(self):
        self.db.rollbacks += 1


def fake_execute_values(cur, sql, argslist, page_size=100):
    db = cur.db
    m = _INSERT_RE.match(sql)
    schema, table = _unquote(m.group(1)), _unquote(m.group(2))
    cols = [_unquote(c) for c in re.findall(_IDENT, m.group(3))]
    if db.fail_inserts:
        db.fail_inserts -= 1
        raise psycopg2.DataError("value too long for type character varying(100)")
    db.inserts.append((table, len(argslist), sql))
    for values in argslist:
        db.tables[(schema, table)]["rows"].append(dict(zip(cols, values)))


@pytest.fixture
def db(monkeypatch):
    monkeypatch.setattr("porter_sync.engine.extras.execute_values", fake_execute_values)
    return FakeDatabase()


@pytest.fixture
def conn(db):
    return FakeConnection(db)


# ============================== HTTP ===============================

def make_response(status=200, body=None, headers=None, raw_headers=None, text=None):
    """A real requests.Response; `raw_headers` is a list of (name, value) pairs, repeats allowed."""
    resp = requests.Response()
    resp.status_code = status
    if text is not None:
        resp._content = text.encode("utf-8")
    elif body is not None:
        resp._content = json.dumps(body).encode("utf-8")
    else:
        resp._content = b""
    resp.encoding = "utf-8"
    resp.headers = CaseInsensitiveDict(headers or {})
    if raw_headers:
        raw = HTTPHeaderDict()
        for name, value in raw_headers:
            raw.add(name, value)
        resp.raw = SimpleNamespace(headers=raw)
    return resp


class RecordingCancel(CancelToken):
    def __init__(self):
        super().__init__()
        self.sleeps = []

    def sleep(self, seconds):
        self.check()
        self.sleeps.append(seconds)


@pytest.fixture
def cancel():
    return RecordingCancel()


@pytest.fixture
def session():
    return MagicMock(spec=requests.Session)


@pytest.fixture
def make_origin(session, cancel):
    def _make(*responses, **config):
        session.get.side_effect = list(responses)
        cfg = PullClientConfig(base_url="https://api.example.test/v1", **config)
        return HttpsOrigin(session, cfg, cancel=cancel)
    return _make
