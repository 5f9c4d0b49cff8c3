"""Airflow connection ids -> live handles for the writer and the pull client."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator, Tuple

import psycopg2
import requests
from airflow.hooks.base import BaseHook

LOG = logging.getLogger(__name__)


@contextmanager
def dst_pg_conn(conn_id: str) -> Iterator["psycopg2.extensions.connection"]:
    uri = BaseHook.get_connection(conn_id).get_uri()
    conn = psycopg2.connect(uri)
    LOG.info("Connected to destination %s", conn_id)
    try:
        yield conn
    finally:
        conn.close()


def api_session(conn_id: str) -> Tuple[requests.Session, str, str]:
    """
    (session, base_url, token) for an HTTP connection.
    - base_url is host (+ schema and port when set), e.g. https://discord.com/api/v10
    - token is the connection password; adapters decide which header carries it.
    """
    c = BaseHook.get_connection(conn_id)
    host = (c.host or "").rstrip("/")
    if "://" not in host:
        host = f"{c.schema or 'https'}://{host}"
    if c.port:
        scheme, rest = host.split("://", 1)
        netloc, _, path = rest.partition("/")
        host = f"{scheme}://{netloc}:{c.port}" + (f"/{path}" if path else "")
    LOG.debug("API connection %s -> %s", conn_id, host)
    return requests.Session(), host, c.password or ""
