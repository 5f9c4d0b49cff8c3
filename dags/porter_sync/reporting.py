from __future__ import annotations

import json
import logging
import resource
import sys
from typing import Any

LOG = logging.getLogger(__name__)

# ============================== Helpers (module-level; stateless) ===============================

def _json_sanitize(value: Any) -> Any:
    """
    Ensure value is JSON-serializable (safe for Airflow XCom push).
    - Converts datetime/date/Decimal/bytes and other exotic types via default=str.
    """
    return json.loads(json.dumps(value, default=str))


def peak_memory() -> int:
    """Peak resident memory of this process, in bytes."""
    peak = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    # Linux reports KiB, macOS bytes
    return int(peak) if sys.platform == "darwin" else int(peak) * 1024


def format_bytes(size: int | float) -> str:
    size = float(size or 0)
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024:
            return f"{size:.0f}{unit}" if unit == "B" else f"{size:.1f}{unit}"
        size /= 1024
    return f"{size:.1f}TB"


def format_elapsed(seconds: float) -> str:
    seconds = max(float(seconds or 0), 0.0)
    if seconds < 60:
        return f"{seconds:.3f}s"
    minutes, secs = divmod(int(seconds), 60)
    if minutes < 60:
        return f"{minutes}m {secs:02d}s"
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h {minutes:02d}m"


def storage_line(action: str, table: str, elapsed: float, rows: int, memory: int) -> str:
    return f"{action}: {table} ({rows:,} rows, {format_elapsed(elapsed)}, peak {format_bytes(memory)})"


def log_storage(logger: logging.Logger, action: str, table: str,
                elapsed: float, rows: int, memory: int) -> None:
    logger.info("%s", storage_line(action, table, elapsed, rows, memory))
