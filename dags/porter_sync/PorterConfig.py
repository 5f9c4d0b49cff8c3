from dataclasses import dataclass, field
from typing import Any, Dict

# ============================== Config model ===============================

@dataclass(frozen=True)
class WriterConfig:
    schema: str = "public"
    table_prefix: str = ""
    batch_size: int = 1000
    log_threshold: int = 100_000       # start progress lines once a table is this big
    log_increment: int = 100_000       # must be a multiple of batch_size


@dataclass(frozen=True)
class PullClientConfig:
    base_url: str
    error_budget: int = 5              # 4xx/5xx answers tolerated per client
    retry_ceiling: int = 50            # attempts per logical GET
    max_retry_after: float = 300.0     # 429 hints at or above this are not trusted
    error_delay: float = 5.0           # seconds between retries of a failed GET
    timeout: float = 30.0
    debug: bool = False


@dataclass(frozen=True)
class OriginRunConfig:
    origin: str                        # registry name, e.g. "discord"
    name: str                          # unique per catalog; becomes part of the dag_id
    api_conn_id: str
    dst_pg_conn_id: str
    dst_schema: str = "public"
    table_prefix: str = ""
    batch_size: int = 1000
    error_budget: int = 5
    retry_ceiling: int = 50
    error_delay: float = 5.0
    schedule: str | None = None
    debug: bool = False
    extra: Dict[str, Any] = field(default_factory=dict)
    comments: str = ""

    def writer_config(self) -> WriterConfig:
        return WriterConfig(
            schema=self.dst_schema,
            table_prefix=self.table_prefix,
            batch_size=self.batch_size,
        )

    def client_config(self, base_url: str) -> PullClientConfig:
        return PullClientConfig(
            base_url=base_url,
            error_budget=self.error_budget,
            retry_ceiling=self.retry_ceiling,
            error_delay=self.error_delay,
            debug=self.debug,
        )
