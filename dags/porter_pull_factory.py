from __future__ import annotations

import json
import logging
import signal
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict

import pendulum
from airflow.decorators import dag, task
from airflow.exceptions import AirflowFailException
from airflow.models import Variable

from porter_sync.PorterConfig import OriginRunConfig
from porter_sync.alerts import format_abort, send_discord_alert
from porter_sync.bridge import PullBridge
from porter_sync.cancel import CancelToken
from porter_sync.connections import api_session, dst_pg_conn
from porter_sync.engine import DatabaseWriter
from porter_sync.errors import FatalPullError
from porter_sync.https import HttpsOrigin
from porter_sync.origins import get_origin
from porter_sync.pipeline import Pipeline, run_origin

log = logging.getLogger(__name__)

# ------------------------ Catalog helpers (DAG-layer) ------------------------
def _load_catalog() -> Dict[str, Any]:
    catalog_path = Variable.get("PORTER_CATALOG_PATH", default_var="/opt/airflow/dags/porter_catalog.json").strip()
    path = Path(catalog_path)
    if not path.exists():
        raise FileNotFoundError(f"Catalog file not found: {path}")
    raw = path.read_text(encoding="utf-8").strip()
    if not raw:
        raise ValueError(f"Catalog file {path} is empty")
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in catalog file {path}: {e}") from e

# ------------------------ Configuration helpers ------------------------
def _cfg_get(root: Dict[str, Any], src: Dict[str, Any], run: Dict[str, Any], key: str, default=None):
    return run.get(key, src.get(key, root.get(key, default)))

def _create_run_config(root: Dict[str, Any], src: Dict[str, Any], run: Dict[str, Any]) -> OriginRunConfig:
    origin = src["origin"]
    get_origin(origin)  # fail at parse time on a typo
    return OriginRunConfig(
        origin=origin,
        name=run["name"],
        api_conn_id=_cfg_get(root, src, run, "api_conn_id"),
        dst_pg_conn_id=_cfg_get(root, src, run, "dst_pg_conn_id"),
        dst_schema=_cfg_get(root, src, run, "dst_schema", "public"),
        table_prefix=_cfg_get(root, src, run, "table_prefix", ""),
        batch_size=int(_cfg_get(root, src, run, "batch_size", 1000)),
        error_budget=int(_cfg_get(root, src, run, "error_budget", 5)),
        retry_ceiling=int(_cfg_get(root, src, run, "retry_ceiling", 50)),
        error_delay=float(_cfg_get(root, src, run, "error_delay", 5.0)),
        schedule=_cfg_get(root, src, run, "schedule"),
        debug=bool(_cfg_get(root, src, run, "debug", False)),
        extra=dict(run.get("extra") or {}),
        comments=run.get("comments", ""),
    )

# ------------------------ DAG creation helpers ------------------------
def _build_pull_dag(cfg: OriginRunConfig):
    dag_id = f"porter_pull_{cfg.origin}_{cfg.name}"
    # JSON-safe copy frozen at parse time
    rcfg: Dict[str, Any] = asdict(cfg)

    @dag(
        dag_id=dag_id,
        schedule=cfg.schedule,
        start_date=pendulum.datetime(2025, 8, 18, tz="UTC"),
        catchup=False,
        max_active_runs=1,
        tags=["porter", cfg.origin, cfg.dst_pg_conn_id],
        description=f"Pull {cfg.origin} ({cfg.name}) → {cfg.dst_pg_conn_id}:{cfg.dst_schema}",
    )
    def pull_dag():

        @task()
        def pull() -> Dict[str, Any]:
            cfg_obj = OriginRunConfig(**rcfg)
            cancel = CancelToken()
            previous = signal.getsignal(signal.SIGTERM)

            def _on_term(signum, frame):
                cancel.cancel()
                if callable(previous):
                    previous(signum, frame)

            signal.signal(signal.SIGTERM, _on_term)
            session, base_url, token = api_session(cfg_obj.api_conn_id)
            extra = {"token": token, **cfg_obj.extra}
            try:
                with session, dst_pg_conn(cfg_obj.dst_pg_conn_id) as dst:
                    origin = HttpsOrigin(session, cfg_obj.client_config(base_url), cancel=cancel)
                    writer = DatabaseWriter(dst, cfg_obj.writer_config())
                    pipeline = Pipeline(origin=origin, writer=writer, bridge=PullBridge(origin, writer),
                                        cancel=cancel, extra=extra)
                    return run_origin(cfg_obj.origin, pipeline)
            except FatalPullError as e:
                log.error("Pull %s aborted: %s", dag_id, e)
                send_discord_alert(format_abort(dag_id, e), Variable.get("DISCORD_WEBHOOK", default_var=""))
                raise AirflowFailException(str(e)) from e
            finally:
                signal.signal(signal.SIGTERM, previous)

        pull()

    return pull_dag()

# ------------------------ Generate all DAGs from catalog ------------------------
_catalog = _load_catalog()
for _src in _catalog["sources"]:
    for _run in _src["runs"]:
        cfg = _create_run_config(_catalog, _src, _run)
        dag_obj = _build_pull_dag(cfg)
        # Airflow UI shows this file as the DAG source
        dag_obj.fileloc = __file__
        globals()[dag_obj.dag_id] = dag_obj
