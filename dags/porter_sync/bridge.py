from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping

from porter_sync.engine import DatabaseWriter
from porter_sync.https import HttpsOrigin
from porter_sync.reporting import _json_sanitize, log_storage
from porter_sync.structure import TableStructure

LOG = logging.getLogger(__name__)


# ============================== Helpers ===============================

def _records(body: Any, response_key: str | None) -> List[Any]:
    """
    Collection of records inside a decoded body.
    - `response_key` given: the list under that key ([] when absent or not a list).
    - a bare dict body is one record; a list body is the collection itself.
    """
    if response_key:
        inner = body.get(response_key) if isinstance(body, Mapping) else None
        return list(inner) if isinstance(inner, list) else []
    if isinstance(body, Mapping):
        return [body] if body else []
    if isinstance(body, list):
        return body
    return []


# ============================== Cursor ===============================

@dataclass(frozen=True)
class PullCursor:
    """What a paging loop needs from one page: where to resume, and whether to stop."""
    last_id: Any
    rows: int

    @classmethod
    def from_info(cls, info: Mapping[str, Any], id_field: str = "id") -> "PullCursor":
        last = info.get("last") or {}
        last_id = last.get(id_field) if isinstance(last, Mapping) else None
        return cls(last_id=last_id, rows=int(info.get("rows") or 0))

    @property
    def exhausted(self) -> bool:
        return self.rows == 0


# ============================== Bridge ===============================

class PullBridge:
    """One page: GET from the origin, store through the writer, report back."""

    def __init__(self, origin: HttpsOrigin, writer: DatabaseWriter, logger: logging.Logger | None = None):
        self.origin = origin
        self.writer = writer
        self.log = logger or logging.getLogger(__name__)

    def pull(
        self,
        endpoint: str,
        structure: TableStructure | Mapping[str, Any],
        table: str,
        query: Mapping[str, Any] | None = None,
        response_key: str | None = None,
        field_map: Mapping[str, Any] | None = None,
        filter_map: Mapping[str, Any] | None = None,
    ) -> Dict[str, Any]:
        t0 = time.perf_counter()
        ts = TableStructure.parse(structure)
        self.writer.prepare(table, ts)

        t_request = time.perf_counter()
        body, headers = self.origin.get(endpoint, query)
        request_elapsed = time.perf_counter() - t_request
        records = _records(body, response_key)
        if self.log.isEnabledFor(logging.DEBUG):
            self.log.debug("GET %s -> %d record(s) in %.3fs", endpoint, len(records), request_elapsed)

        stored = self.writer.store(table, field_map, ts, records, filter_map)
        elapsed = time.perf_counter() - t0

        info = {
            "name": table,
            "rows": stored.get("rows", 0),
            "memory": stored.get("memory", 0),
            "failed_rows": stored.get("failed_rows", 0),
            "request_elapsed": round(request_elapsed, 3),
            "elapsed": round(elapsed, 3),
            "first": records[0] if records else None,
            "last": records[-1] if records else None,
            "headers": headers,
        }
        log_storage(self.log, "pull", endpoint, elapsed, info["rows"], info["memory"])
        return _json_sanitize(info)
