"""
Resilient GET client for one HTTP origin.

Meant to run unattended for hours against an API that throttles:

- 429 with a usable Retry-After: sleep what the server asked, retry, no penalty.
- other 4xx/5xx: recorded in the error ledger; the 5th one aborts the run.
- redirects / undecodable bodies / read timeouts: retried without penalty.
- transport failures (DNS, refused connection, bad URL): abort at once.

Requests are strictly sequential; there is no fan-out against one origin.
"""
from __future__ import annotations

import email.utils
import logging
import time
from datetime import timezone
from typing import Any, Dict, List, Mapping, Tuple

import requests
from requests import exceptions as rex

from porter_sync.PorterConfig import PullClientConfig
from porter_sync.cancel import CancelToken
from porter_sync.errors import ErrorBudgetExceeded, RetryCeilingExceeded, TransportFailure

LOG = logging.getLogger(__name__)

VERSION = "0.1.0"
USER_AGENT = f"porter-sync/{VERSION} (bulk data migration)"
MESSAGE_LIMIT = 500

# Problems on our side: retrying cannot help.
_TRANSPORT_ERRORS = (
    rex.ConnectionError,
    rex.InvalidURL,
    rex.MissingSchema,
    rex.InvalidSchema,
    rex.InvalidHeader,
)

# Odd but harmless answers.
_ANOMALIES = (
    rex.TooManyRedirects,
    rex.ReadTimeout,
    rex.ChunkedEncodingError,
    rex.ContentDecodingError,
)

Headers = Dict[str, List[str]]


def _header_lists(response: requests.Response) -> Headers:
    """Lower-cased header names mapped to every value received, in order."""
    raw = getattr(getattr(response, "raw", None), "headers", None)
    if raw is not None and hasattr(raw, "getlist"):
        out: Headers = {}
        for name in raw.keys():
            out.setdefault(name.lower(), []).extend(raw.getlist(name))
        return out
    return {k.lower(): [v] for k, v in response.headers.items()}


def _parse_retry_after(value: str) -> float | None:
    value = (value or "").strip()
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        pass
    try:
        when = email.utils.parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return when.timestamp() - time.time()


class HttpsOrigin:
    """
    Pull client for one origin. The error ledger is shared by every resource
    pulled through this instance, so a long multi-resource run has one budget.

    prepare/store/stream/begin/end are no-ops so an origin can stand where a
    storage object is expected.
    """

    def __init__(
        self,
        session: requests.Session,
        config: PullClientConfig,
        logger: logging.Logger | None = None,
        cancel: CancelToken | None = None,
    ):
        self.session = session
        self.config = config
        self.log = logger or logging.getLogger(__name__)
        self.cancel = cancel or CancelToken()
        self._headers: Dict[str, str] = {}
        self._ledger: List[Dict[str, Any]] = []

    # ------------------------ Headers ------------------------

    def set_header(self, name: str, value: str) -> None:
        self._headers[name] = value

    def headers(self, extra: Mapping[str, str] | None = None) -> Dict[str, str]:
        merged = {"Content-Type": "application/json", "User-Agent": USER_AGENT}
        merged.update(self._headers)
        merged.update(extra or {})
        return merged

    @property
    def ledger(self) -> List[Dict[str, Any]]:
        return list(self._ledger)

    def _url(self, endpoint: str) -> str:
        return f"{self.config.base_url.rstrip('/')}/{endpoint.lstrip('/')}"

    # ------------------------ GET ------------------------

    def get(
        self,
        endpoint: str,
        query: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Tuple[Any, Headers]:
        """Return (decoded body, response headers) or raise a FatalPullError."""
        url = self._url(endpoint)
        sent = self.headers(headers)
        params = dict(query or {})
        attempts = 0

        while True:
            self.cancel.check()
            if self.config.debug:
                shown = {k: ("{redacted}" if k.lower() == "authorization" else v) for k, v in sent.items()}
                self.log.debug("SENT: GET (%s) query=%s headers=%s", endpoint, params, shown)

            t0 = time.perf_counter()
            try:
                response = self.session.get(url, params=params, headers=sent,
                                            timeout=self.config.timeout, allow_redirects=True)
            except _TRANSPORT_ERRORS as e:
                self.log.error("ERROR: GET (%s) %s", endpoint, e)
                raise TransportFailure(endpoint, str(e)) from e
            except _ANOMALIES as e:
                attempts = self._next_attempt(endpoint, attempts)
                self.log.warning("GET (%s) transient problem, retrying: %s", endpoint, e)
                continue

            code = response.status_code
            resp_headers = _header_lists(response)
            self.log.debug("REPLY: HTTP %s (%s) in %.3fs", code, endpoint, time.perf_counter() - t0)

            if code == 429:
                wait = self._retry_after(response, resp_headers)
                if wait is not None:
                    self.log.warning("HTTP 429 (%s); waiting %.3fs as requested", endpoint, wait)
                    self.cancel.sleep(wait)
                    continue

            if code >= 400:
                self._record_failure(endpoint, code, response, resp_headers)
                attempts = self._next_attempt(endpoint, attempts)
                self.cancel.sleep(self.config.error_delay)
                continue

            if 300 <= code < 400:
                attempts = self._next_attempt(endpoint, attempts)
                self.log.warning("HTTP %s (%s) redirect not followed, retrying", code, endpoint)
                continue

            if not response.content:
                return [], resp_headers
            try:
                body = response.json()
            except ValueError as e:
                attempts = self._next_attempt(endpoint, attempts)
                self.log.warning("HTTP %s (%s) body is not JSON, retrying: %s", code, endpoint, e)
                continue
            if self.config.debug:
                self.log.debug("REPLY: HTTP %s %s", code, response.text[:MESSAGE_LIMIT])
            return body, resp_headers

    def _next_attempt(self, endpoint: str, attempts: int) -> int:
        attempts += 1
        if attempts >= self.config.retry_ceiling:
            self.log.error("Pull aborted: GET (%s) retried %d times", endpoint, attempts)
            raise RetryCeilingExceeded(endpoint, attempts)
        return attempts

    def _retry_after(self, response: requests.Response, headers: Headers) -> float | None:
        """Server-directed wait in seconds, or None when there is no sane hint."""
        wait = None
        for value in headers.get("retry-after", []):
            wait = _parse_retry_after(value)
            if wait is not None:
                break
        if wait is None:
            try:
                body = response.json()
            except ValueError:
                body = None
            if isinstance(body, dict) and body.get("retry_after") is not None:
                try:
                    wait = float(body["retry_after"])
                except (TypeError, ValueError):
                    wait = None
        if wait is None or not (0 < wait < self.config.max_retry_after):
            self.log.warning("HTTP 429 without a usable retry hint (%r)", wait)
            return None
        return wait

    def _record_failure(self, endpoint: str, code: int, response: requests.Response, headers: Headers) -> None:
        message = (response.text or "(Empty body)")[:MESSAGE_LIMIT]
        self._ledger.append({"code": code, "message": message, "headers": headers})
        self.log.error("HTTP %s (%s) %s | %s", code, endpoint, message, headers)
        if len(self._ledger) >= self.config.error_budget:
            self.log.error("Pull aborted after HTTP %s (%d errors recorded)", code, len(self._ledger))
            raise ErrorBudgetExceeded(endpoint, self._ledger)

    # ------------------------ Storage surface (no-ops) ------------------------

    def prepare(self, table: str, structure: Any) -> Dict[str, Any]:
        return {}

    def store(self, table: str, rename_map: Any, structure: Any, rows: Any, filter_map: Any = None) -> Dict[str, Any]:
        return {}

    def stream(self, row: Any, structure: Any, final: bool = False,
               rename_map: Any = None, filter_map: Any = None) -> Dict[str, Any]:
        return {}

    def begin(self) -> None:
        return None

    def end(self) -> None:
        return None

    def exists(self, table: str = "", columns: Any = ()) -> bool:
        return False
