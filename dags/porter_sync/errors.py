from __future__ import annotations

from typing import Any, Dict, List


# ============================== Error taxonomy ===============================

class PorterError(Exception):
    """Base class for everything raised by porter_sync."""


class FatalPullError(PorterError):
    """
    A pull must not continue. Callers are expected to stop the run
    (the DAG layer turns this into AirflowFailException, no task retries).
    """


class TransportFailure(FatalPullError):
    """Host unreachable or malformed request; a configuration problem, never retried."""

    def __init__(self, endpoint: str, reason: str):
        super().__init__(f"GET {endpoint} failed before reaching the server: {reason}")
        self.endpoint = endpoint
        self.reason = reason


class ErrorBudgetExceeded(FatalPullError):
    """Too many 4xx/5xx answers from one origin; stop before the origin bans us."""

    def __init__(self, endpoint: str, ledger: List[Dict[str, Any]]):
        codes = ", ".join(str(e.get("code")) for e in ledger)
        super().__init__(f"GET {endpoint} aborted after {len(ledger)} HTTP errors ({codes})")
        self.endpoint = endpoint
        self.ledger = list(ledger)


class RetryCeilingExceeded(FatalPullError):
    def __init__(self, endpoint: str, attempts: int):
        super().__init__(f"GET {endpoint} gave up after {attempts} attempts")
        self.endpoint = endpoint
        self.attempts = attempts


class PullCancelled(PorterError):
    """Raised at a retry/backoff boundary once the run was asked to stop."""


class UnknownOriginError(PorterError, KeyError):
    def __init__(self, name: str, available: List[str]):
        super().__init__(f"Unknown origin {name!r}; available: {', '.join(available) or '<none>'}")
        self.name = name
