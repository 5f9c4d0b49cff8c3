from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict

from porter_sync.bridge import PullBridge
from porter_sync.cancel import CancelToken
from porter_sync.engine import DatabaseWriter
from porter_sync.https import HttpsOrigin
from porter_sync.origins import get_origin
from porter_sync.reporting import _json_sanitize, format_elapsed, peak_memory

LOG = logging.getLogger(__name__)


@dataclass
class Pipeline:
    """Everything an origin adapter may touch during one run."""
    origin: HttpsOrigin
    writer: DatabaseWriter
    bridge: PullBridge | None = None
    cancel: CancelToken = field(default_factory=CancelToken)
    log: logging.Logger = LOG
    extra: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.bridge is None:
            self.bridge = PullBridge(self.origin, self.writer, self.log)


def run_origin(name: str, pipeline: Pipeline) -> Dict[str, Any]:
    """
    Run one registered origin adapter end to end.
    - writer.begin() before, writer.end() after (also when the adapter raises).
    - Returns a JSON-safe summary for XCom.
    """
    adapter = get_origin(name)()
    log = pipeline.log
    t0 = time.perf_counter()
    log.info("▶️ Starting origin %s", adapter.name)

    pipeline.writer.begin()
    try:
        adapter.run(pipeline)
        pipeline.writer.flush()
    finally:
        pipeline.writer.end()

    elapsed = time.perf_counter() - t0
    summary = {
        "origin": adapter.name,
        "elapsed": round(elapsed, 3),
        "memory": peak_memory(),
        "http_errors": len(pipeline.origin.ledger),
    }
    log.info("✅ Origin %s finished in %s", adapter.name, format_elapsed(elapsed))
    return _json_sanitize(summary)
