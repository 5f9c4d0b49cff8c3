from __future__ import annotations

import logging
import time
from typing import Any, Dict, Iterable, List, Mapping, Tuple

import psycopg2
import psycopg2.extras as extras

from porter_sync.PorterConfig import WriterConfig
from porter_sync.normalize import normalize_row
from porter_sync.reporting import _json_sanitize, log_storage, peak_memory
from porter_sync.structure import (
    TableStructure,
    add_column_sql,
    create_index_sql,
    create_table_sql,
    fq_table,
    insert_values_sql,
    qi,
)

# Module-level logger for helpers
LOG = logging.getLogger(__name__)

ERROR_HEAD = 500
ERROR_TAIL = 300

# ============================== Helpers (module-level; stateless) ===============================

def _truncate_error(message: str, head: int = ERROR_HEAD, tail: int = ERROR_TAIL) -> str:
    if len(message) <= head + tail:
        return message
    return f"{message[:head]}\n[...]\n{message[-tail:]}"


def _table_exists(conn, schema: str, table: str) -> bool:
    with conn.cursor() as c:
        c.execute(
            """
            SELECT EXISTS (
              SELECT 1 FROM information_schema.tables
              WHERE table_schema=%s AND table_name=%s
            )
            """,
            (schema, table),
        )
        exists = bool(c.fetchone()[0])
    if LOG.isEnabledFor(logging.DEBUG):
        LOG.debug("Table %s.%s exists? %s", schema, table, exists)
    return exists


def _get_columns(conn, schema: str, table: str) -> List[str]:
    t0 = time.perf_counter()
    with conn.cursor() as c:
        c.execute(
            """
            SELECT column_name
            FROM information_schema.columns
            WHERE table_schema = %s AND table_name = %s
            ORDER BY ordinal_position
            """,
            (schema, table),
        )
        cols = [r[0] for r in c.fetchall()]
    LOG.debug("Columns for %s.%s: %s (%.3fs)", schema, table, cols, time.perf_counter() - t0)
    return cols


# ============================== Batch state ===============================

class _Batch:
    """Rows waiting for one bulk insert, bound to exactly one table."""

    def __init__(self, table: str):
        self.table = table
        self.columns: Tuple[str, ...] | None = None
        self.pending: List[Dict[str, Any]] = []
        self.rows = 0
        self.failed_rows = 0
        self.batches = 0
        self.memory = 0

    def info(self) -> Dict[str, Any]:
        return {
            "name": self.table,
            "rows": self.rows,
            "failed_rows": self.failed_rows,
            "batches": self.batches,
            "memory": self.memory,
        }


# ============================== Writer ===============================

class DatabaseWriter:
    """
    Batched, schema-evolving writer for one PostgreSQL destination.

    • prepare() creates the table or adds missing columns (never drops/retypes),
      truncating it only the first time it is prepared in this run.
    • store()/stream() normalize rows and insert them in batches of
      config.batch_size with execute_values; a failed batch is logged and
      counted in failed_rows, the run carries on.
    • Only one table is buffered at a time; binding another table flushes first.
    """

    def __init__(self, conn, config: WriterConfig | None = None, logger: logging.Logger | None = None):
        self.conn = conn
        self.config = config or WriterConfig()
        self.log = logger or logging.getLogger(__name__)
        self._protected: set[str] = set()
        self._ignore_errors: set[str] = set()
        self._batch: _Batch | None = None
        self.log.debug("DatabaseWriter initialized (schema=%s, prefix=%r, batch_size=%d)",
                       self.config.schema, self.config.table_prefix, self.config.batch_size)

    # ------------------------ Table flags ------------------------

    def _name(self, table: str) -> str:
        return f"{self.config.table_prefix}{table}"

    def protect_table(self, table: str) -> None:
        """Do not truncate `table` again in this run."""
        self._protected.add(table)

    def ignore_table(self, table: str) -> None:
        """Insert into `table` with ON CONFLICT DO NOTHING."""
        self._ignore_errors.add(table)

    def is_protected(self, table: str) -> bool:
        return table in self._protected

    # ------------------------ Run bracket ------------------------

    def begin(self) -> None:
        """Stop FK triggers firing so tables can be filled in any order."""
        self._set_replication_role("replica")

    def end(self) -> None:
        """Re-enable FK triggers; rows written meanwhile are not re-validated."""
        self.flush()
        self._set_replication_role("origin")

    def _set_replication_role(self, role: str) -> None:
        try:
            with self.conn.cursor() as d:
                d.execute(f"SET session_replication_role = {role}")
            self.conn.commit()
            self.log.info("session_replication_role=%s", role)
        except psycopg2.Error as e:
            self.conn.rollback()
            self.log.warning("Could not set session_replication_role=%s (%s); FK checks stay as they are",
                             role, str(e).strip())

    # ------------------------ Schema alignment ------------------------

    def exists(self, table: str = "", columns: Iterable[str] = ()) -> bool:
        if not table:
            return False
        name = self._name(table)
        if not _table_exists(self.conn, self.config.schema, name):
            return False
        wanted = [c for c in columns if c != "keys"]
        if not wanted:
            return True
        have = set(_get_columns(self.conn, self.config.schema, name))
        return all(c in have for c in wanted)

    def prepare(self, table: str, structure: TableStructure | Mapping[str, Any]) -> Dict[str, Any]:
        """
        • Creates the table (columns + keys) when missing.
        • Existing, unprotected table: TRUNCATE first (a fresh run starts empty).
        • Existing table: adds the missing columns only.
        • Marks the table protected and binds the batch to it.
        """
        t0 = time.perf_counter()
        ts = TableStructure.parse(structure)
        schema, name = self.config.schema, self._name(table)
        self._bind(table)

        created = truncated = False
        added: List[str] = []
        try:
            with self.conn.cursor() as d:
                if not _table_exists(self.conn, schema, name):
                    self.log.info("Creating table %s", fq_table(schema, name))
                    d.execute(f"CREATE SCHEMA IF NOT EXISTS {qi(schema)}")
                    d.execute(create_table_sql(schema, name, ts))
                    for sql in create_index_sql(schema, name, ts):
                        d.execute(sql)
                    created = True
                else:
                    if not self.is_protected(table):
                        self.log.info("Truncating %s before first use in this run", fq_table(schema, name))
                        d.execute(f"TRUNCATE TABLE {fq_table(schema, name)} RESTART IDENTITY")
                        truncated = True
                    missing = ts.missing_from(_get_columns(self.conn, schema, name))
                    for col, tag in missing.columns.items():
                        d.execute(add_column_sql(schema, name, col, tag))
                        added.append(col)
            self.conn.commit()
        except psycopg2.Error:
            self.log.error("prepare failed for %s; rolling back", fq_table(schema, name), exc_info=True)
            self.conn.rollback()
            raise
        self.protect_table(table)

        if created:
            self.log.info("✅ Created table %s", fq_table(schema, name))
        if added:
            self.log.info("🆕 Added %d new column(s) to %s: %s", len(added), fq_table(schema, name), ", ".join(added))

        result = {
            "name": table,
            "created": created,
            "truncated": truncated,
            "missing_added": added,
            "elapsed": round(time.perf_counter() - t0, 3),
        }
        self.log.debug("prepare result: %s", result)
        return result

    def select_column(self, table: str, column: str) -> List[Any]:
        with self.conn.cursor() as c:
            c.execute(f"SELECT {qi(column)} FROM {fq_table(self.config.schema, self._name(table))}")
            values = [r[0] for r in c.fetchall()]
        self.conn.commit()
        return values

    # ------------------------ Batching ------------------------

    def _bind(self, table: str) -> _Batch:
        self.flush()
        self._batch = _Batch(table)
        return self._batch

    def _append(self, row: Dict[str, Any]) -> None:
        b = self._batch
        cols = tuple(row)
        if b.columns is not None and cols != b.columns:
            self.flush()
        b.columns = cols
        b.pending.append(row)
        b.rows += 1
        if len(b.pending) >= self.config.batch_size:
            self.flush()
        self._log_progress(b)

    def _log_progress(self, b: _Batch) -> None:
        if b.rows >= self.config.log_threshold and b.rows % self.config.log_increment == 0:
            self.log.info("inserting '%s': %s done...", b.table, f"{b.rows:,}")

    def flush(self) -> None:
        """Send whatever is buffered as one bulk insert."""
        b = self._batch
        if b is None or not b.pending:
            return
        b.memory = max(b.memory, peak_memory())
        schema, name = self.config.schema, self._name(b.table)
        cols = list(b.columns)
        sql = insert_values_sql(schema, name, cols, ignore_conflicts=b.table in self._ignore_errors)
        page = [tuple(r[c] for c in cols) for r in b.pending]
        t_batch = time.perf_counter()
        try:
            with self.conn.cursor() as d:
                extras.execute_values(d, sql, page, page_size=len(page))
            self.conn.commit()
            b.batches += 1
            self.log.debug("Batch committed on %s (batches=%d, rows=%d, took %.3fs)",
                           name, b.batches, len(page), time.perf_counter() - t_batch)
        except psycopg2.Error as e:
            self.conn.rollback()
            b.failed_rows += len(page)
            self.log.error("Batch insert error on %s, %d row(s) dropped: %s",
                           fq_table(schema, name), len(page), _truncate_error(str(e)))
        finally:
            b.pending.clear()

    # ------------------------ Storage ------------------------

    def store(
        self,
        table: str,
        rename_map: Mapping[str, Any] | None,
        structure: TableStructure | Mapping[str, Any],
        rows: Iterable[Mapping[str, Any]],
        filter_map: Mapping[str, Any] | None = None,
    ) -> Dict[str, Any]:
        """Normalize and insert every row of `rows` into `table`; returns counts and peak memory."""
        t0 = time.perf_counter()
        ts = TableStructure.parse(structure)
        b = self._bind(table)
        for row in rows:
            self._append(normalize_row(row, ts, rename_map, filter_map))
        self.flush()
        b.memory = max(b.memory, peak_memory())

        info = b.info()
        info["elapsed"] = round(time.perf_counter() - t0, 3)
        log_storage(self.log, "store", self._name(table), info["elapsed"], info["rows"], info["memory"])
        if info["failed_rows"]:
            self.log.warning("%s: %d of %d row(s) were not stored", table, info["failed_rows"], info["rows"])
        return _json_sanitize(info)

    def stream(
        self,
        row: Mapping[str, Any] | None,
        structure: TableStructure | Mapping[str, Any],
        final: bool = False,
        rename_map: Mapping[str, Any] | None = None,
        filter_map: Mapping[str, Any] | None = None,
    ) -> Dict[str, Any]:
        """
        One row at a time into the table bound by the last prepare().
        `final=True` must be passed on the last call or the tail of the batch is lost
        (row=None with final=True only flushes).
        """
        if self._batch is None:
            raise RuntimeError("stream() called before prepare()")
        if row is not None:
            self._append(normalize_row(row, structure, rename_map, filter_map))
        if final:
            self.flush()
            self._batch.memory = max(self._batch.memory, peak_memory())
        return self._batch.info()

    @property
    def pending(self) -> int:
        return len(self._batch.pending) if self._batch else 0
