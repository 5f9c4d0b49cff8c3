"""
Row normalization: reshape one source record into the exact column set of a
destination table.

Order matters and is fixed: filter -> rename/flatten -> projection -> fill
-> JSON-encode composites -> encoding repair -> "" to NULL.

Only one level of nested objects is pulled up by the rename map; anything
deeper stays nested and ends up as JSON text in its column.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, Iterable, Mapping, Tuple

from charset_normalizer import from_bytes

from porter_sync import transforms
from porter_sync.structure import TableStructure
from porter_sync.transforms import Transform

LOG = logging.getLogger(__name__)

CANONICAL_ENCODING = "utf_8"

RenameMap = Dict[str, Any]             # src -> dest | {nested_key: dest}
FilterMap = Dict[str, Transform]       # column -> transform


def filter_row(row: Dict[str, Any], filter_map: Mapping[str, Transform | str]) -> Dict[str, Any]:
    for column, kind in filter_map.items():
        if column in row:
            row[column] = transforms.apply(kind, row[column], column, row)
    return row


def map_row(row: Dict[str, Any], rename_map: Mapping[str, Any]) -> Dict[str, Any]:
    # Pass 1: pull named fields up out of nested source objects.
    for src, dest in rename_map.items():
        if not isinstance(dest, Mapping):
            continue
        nested = row.get(src)
        if isinstance(nested, Mapping):
            for old, new in dest.items():
                if nested.get(old) is not None:
                    row[new] = nested[old]
        row.pop(src, None)

    # Pass 2: plain renames.
    for src, dest in rename_map.items():
        if isinstance(dest, Mapping) or src not in row:
            continue
        value = row.pop(src)
        row[dest] = value
    return row


def flatten_row(row: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in row.items():
        if isinstance(value, (dict, list, tuple)):
            row[key] = json.dumps(value, default=str)
    return row


def _repair(value: Any) -> Any:
    if not isinstance(value, (bytes, bytearray)) or not value:
        return value
    raw = bytes(value)
    try:
        return raw.decode(CANONICAL_ENCODING)
    except UnicodeDecodeError:
        pass
    best = from_bytes(raw).best()
    if best is None:
        return value  # not text
    if LOG.isEnabledFor(logging.DEBUG):
        LOG.debug("Transcoding %d bytes from %s", len(raw), best.encoding)
    return str(best)


def fix_encoding(row: Dict[str, Any], binary_columns: Iterable[str] = ()) -> Dict[str, Any]:
    """Decode byte strings to text unless the column is binary; str values are already canonical."""
    skip = set(binary_columns)
    for key, value in row.items():
        if key not in skip:
            row[key] = _repair(value)
    return row


def normalize_row(
    row: Mapping[str, Any],
    structure: TableStructure | Mapping[str, Any] | Iterable[str],
    rename_map: Mapping[str, Any] | None = None,
    filter_map: Mapping[str, Transform | str] | None = None,
) -> Dict[str, Any]:
    ts = TableStructure.parse(structure)
    out = filter_row(dict(row), filter_map or {})
    out = map_row(out, rename_map or {})
    out = {c: out.get(c) for c in ts.names}
    out = flatten_row(out)
    out = fix_encoding(out, ts.binary_columns())
    return {k: (None if v == "" else v) for k, v in out.items()}


def split_rich_map(rich_map: Mapping[str, Any]) -> Tuple[RenameMap, FilterMap]:
    """
    Split a combined per-column map into (rename_map, filter_map).

    A destination may be given as {"column": "Dest", "filter": "timestamp_to_date"};
    the filter is keyed by the *source* column because filters run before renaming.
    Nested-flatten entries (dicts without "column") are kept untouched.
    """
    rename_map: RenameMap = {}
    filter_map: FilterMap = {}
    for src, dest in rich_map.items():
        if isinstance(dest, Mapping) and "column" in dest:
            rename_map[src] = dest["column"]
            if dest.get("filter") is not None:
                filter_map[src] = transforms.as_transform(dest["filter"])
        else:
            rename_map[src] = dest
    return rename_map, filter_map
