"""
Table structures and their PostgreSQL DDL.

A structure is declared as an ordered ``{column: type_tag}`` dict, optionally
with a reserved ``"keys"`` entry:

    {
        "id": "bigint",
        "name": "varchar(100)",
        "state": ["open", "closed"],
        "keys": {"name_ix": {"type": "index", "columns": ["name"]}},
    }

Tags come from a small vocabulary (bounded text, binary, text, the integer
family, enumerated lists); anything unknown is passed through as the literal
column type.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Tuple

LOG = logging.getLogger(__name__)

KEYS = "keys"
KEY_TYPES = ("primary", "unique", "index")
DEFAULT_VARCHAR_LENGTH = 100
ENUM_BASE_TYPE = "varchar(255)"

_VARCHAR_RE = re.compile(r"^varchar\s*(?:\(\s*(\d+)\s*\))?$", re.IGNORECASE)
_INT_RE = re.compile(r"^(tiny|small|medium|big)?int(?:eger)?\s*(?:\(\s*\d+\s*\))?(?:\s+unsigned)?$",
                     re.IGNORECASE)
_BINARY_RE = re.compile(r"^(var)?binary\b|^(tiny|medium|long)?blob$|^bytea$", re.IGNORECASE)

_INT_WIDTHS = {
    "tiny": "smallint",
    "small": "smallint",
    "medium": "integer",
    "": "integer",
    "big": "bigint",
}

# MySQL spellings that PostgreSQL does not know under the same name
_ALIASES = {
    "datetime": "timestamp",
    "double": "double precision",
    "tinytext": "text",
    "mediumtext": "text",
    "longtext": "text",
}


# ============================== Identifiers ===============================

def qi(ident: str) -> str:
    q = '"' + str(ident).replace('"', '""') + '"'
    if LOG.isEnabledFor(logging.DEBUG):
        LOG.debug("Quoted identifier: raw=%r quoted=%r", ident, q)
    return q


def fq_table(schema: str, table: str) -> str:
    return f"{qi(schema)}.{qi(table)}"


def _literal(value: Any) -> str:
    return "'" + str(value).replace("'", "''") + "'"


# ============================== Model ===============================

@dataclass(frozen=True)
class KeyDef:
    name: str
    kind: str                     # "primary" | "unique" | "index"
    columns: Tuple[str, ...]


@dataclass(frozen=True)
class TableStructure:
    columns: Dict[str, Any] = field(default_factory=dict)
    keys: Tuple[KeyDef, ...] = ()

    @classmethod
    def parse(cls, structure: "TableStructure | Mapping[str, Any] | Iterable[str]") -> "TableStructure":
        """Build from the wire format; a bare list of names means untyped text columns."""
        if isinstance(structure, TableStructure):
            return structure
        if not isinstance(structure, Mapping):
            return cls(columns={name: "text" for name in structure})

        columns = {k: v for k, v in structure.items() if k != KEYS}
        keys: List[KeyDef] = []
        for key_name, info in (structure.get(KEYS) or {}).items():
            kind = str(info.get("type", "")).lower()
            if kind not in KEY_TYPES:
                raise ValueError(f"Key {key_name!r}: unsupported key type {info.get('type')!r}")
            cols = info.get("columns") or []
            if isinstance(cols, str):
                cols = [cols]
            if not cols:
                raise ValueError(f"Key {key_name!r} names no columns")
            keys.append(KeyDef(name=str(key_name), kind=kind, columns=tuple(cols)))
        return cls(columns=columns, keys=tuple(keys))

    @property
    def names(self) -> List[str]:
        return list(self.columns)

    def binary_columns(self) -> List[str]:
        return [c for c, tag in self.columns.items() if is_binary(tag)]

    def missing_from(self, existing: Iterable[str]) -> "TableStructure":
        """Columns not in `existing`; keys are dropped since they only apply on create."""
        have = set(existing)
        return TableStructure(columns={c: t for c, t in self.columns.items() if c not in have})


# ============================== Type-tag grammar ===============================

def is_binary(tag: Any) -> bool:
    return isinstance(tag, str) and bool(_BINARY_RE.match(tag.strip()))


def column_type(tag: Any) -> str:
    """Map one type tag to a PostgreSQL column type (enums are handled by column_definition)."""
    if isinstance(tag, (list, tuple)):
        return ENUM_BASE_TYPE
    t = str(tag).strip()
    m = _VARCHAR_RE.match(t)
    if m:
        return f"varchar({int(m.group(1)) if m.group(1) else DEFAULT_VARCHAR_LENGTH})"
    if _BINARY_RE.match(t):
        return "bytea"
    m = _INT_RE.match(t)
    if m:
        return _INT_WIDTHS[(m.group(1) or "").lower()]
    return _ALIASES.get(t.lower(), t)


def column_definition(name: str, tag: Any) -> str:
    sql = f"{qi(name)} {column_type(tag)}"
    if isinstance(tag, (list, tuple)):
        allowed = ", ".join(_literal(v) for v in tag)
        sql += f" CHECK ({qi(name)} IN ({allowed}))"
    return sql


# ============================== DDL ===============================

def create_table_sql(schema: str, table: str, structure: TableStructure) -> str:
    parts = [column_definition(c, t) for c, t in structure.columns.items()]
    for key in structure.keys:
        cols = ", ".join(qi(c) for c in key.columns)
        if key.kind == "primary":
            parts.append(f"PRIMARY KEY ({cols})")
        elif key.kind == "unique":
            parts.append(f"CONSTRAINT {qi(f'{table}_{key.name}')} UNIQUE ({cols})")
    sql = f"CREATE TABLE IF NOT EXISTS {fq_table(schema, table)} ({', '.join(parts)})"
    if LOG.isEnabledFor(logging.DEBUG):
        LOG.debug("Generated CREATE TABLE SQL: %s", sql)
    return sql


def create_index_sql(schema: str, table: str, structure: TableStructure) -> List[str]:
    out = []
    for key in structure.keys:
        if key.kind != "index":
            continue
        cols = ", ".join(qi(c) for c in key.columns)
        out.append(f"CREATE INDEX IF NOT EXISTS {qi(f'{table}_{key.name}')} ON {fq_table(schema, table)} ({cols})")
    return out


def add_column_sql(schema: str, table: str, name: str, tag: Any) -> str:
    return f"ALTER TABLE {fq_table(schema, table)} ADD COLUMN {column_definition(name, tag)}"


def insert_values_sql(schema: str, table: str, cols: List[str], *, ignore_conflicts: bool = False) -> str:
    col_list = ", ".join(qi(c) for c in cols)
    sql = f"INSERT INTO {fq_table(schema, table)} ({col_list}) VALUES %s"
    if ignore_conflicts:
        sql += " ON CONFLICT DO NOTHING"
    if LOG.isEnabledFor(logging.DEBUG):
        LOG.debug("Generated INSERT SQL: %s", sql)
    return sql
