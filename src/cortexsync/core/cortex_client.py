"""
Cortex HTTP client (ruler + alertmanager APIs).

- requests.Session with tenant header and basic/bearer auth.
- Methods per resource kind: fetch_*, put_*, delete_*.
- fetch_* return a typed result: Found(value) | NotFound() | Failed(detail).
  Callers never inspect error text to detect a missing object.
- put_* raise RemoteCallError; delete_* return False when already absent.
- Retries with exponential backoff on network errors and 5xx, none on 4xx.
- Errors from the transport layer are HttpError with status, url and body.

Usage:
    client = CortexClient(ConnectionParams(address="http://cortex:9009", tenant_id="team-a"))
    result = client.fetch_rule_group("infra", "node-alerts")
"""

from __future__ import annotations

import logging
import time
import warnings
from dataclasses import dataclass
from typing import Generic, Optional, TypeVar, Union
from urllib.parse import quote

import requests
import urllib3

from .errors import NotFoundError, RemoteCallError, TranslationError
from .rulefmt import (
    AlertmanagerDocument,
    NativeRuleGroup,
    alertmanager_from_yaml,
    alertmanager_to_yaml,
    rule_group_from_yaml,
    rule_group_to_yaml,
)

T = TypeVar("T")

RULER_PREFIX = "/api/v1/rules"
ALERTS_PATH = "/api/v1/alerts"

_LOG_PREVIEW = 200


@dataclass
class HttpError(Exception):
    """HTTP/transport error with context."""
    status: int
    url: str
    body: str = ""
    message: str = ""

    def __str__(self) -> str:
        base = f"HttpError(status={self.status}, url={self.url})"
        if self.message:
            base += f": {self.message}"
        if self.body:
            base += f" body={self.body[:_LOG_PREVIEW]}"
        return base


# ---------- Fetch results ----------

@dataclass(frozen=True)
class Found(Generic[T]):
    value: T


@dataclass(frozen=True)
class NotFound:
    pass


@dataclass(frozen=True)
class Failed:
    detail: str
    status: Optional[int] = None


FetchResult = Union[Found[T], NotFound, Failed]


def is_not_found(result: object) -> bool:
    """True for the NotFound variant (or a NotFoundError raised by a custom adapter)."""
    return isinstance(result, (NotFound, NotFoundError))


# ---------- Connection ----------

@dataclass(frozen=True)
class ConnectionParams:
    """Everything needed to talk to one Cortex tenant."""
    address: str
    tenant_id: str = ""
    user: str = ""
    key: str = ""
    token: str = ""

    def __repr__(self) -> str:
        # keep secrets out of logs and tracebacks
        return (
            f"ConnectionParams(address={self.address!r}, tenant_id={self.tenant_id!r}, "
            f"user={self.user!r}, key={'***' if self.key else ''!r}, token={'***' if self.token else ''!r})"
        )


class CortexClient:
    """Minimal Cortex API client with retries and timeouts."""

    def __init__(
        self,
        params: ConnectionParams,
        *,
        verify_tls: bool = True,
        timeout_sec: float = 30,
        retries: int = 2,
        backoff_base_sec: float = 0.05,
        session: Optional[requests.Session] = None,
        logger: Optional[Union[logging.Logger, logging.LoggerAdapter]] = None,
    ) -> None:
        if not params.address:
            raise ValueError("address is required")
        self.params = params
        self.base_url = params.address.rstrip("/")
        self.verify_tls = verify_tls
        self.timeout = float(timeout_sec)
        self.retries = max(0, int(retries))
        self.backoff = float(backoff_base_sec)
        self.log = logger or logging.getLogger("cs.http")

        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": "cortexsync/HTTPClient"})
        if params.tenant_id:
            self.session.headers["X-Scope-OrgID"] = params.tenant_id
        if params.user:
            self.session.auth = (params.user, params.key)
        elif params.key:
            self.session.auth = (params.tenant_id, params.key)
        if params.token:
            self.session.headers["Authorization"] = f"Bearer {params.token}"

        if not verify_tls:
            warnings.filterwarnings("ignore", category=urllib3.exceptions.InsecureRequestWarning)

    # ------------- Rule groups -------------

    @staticmethod
    def rule_group_path(namespace: str, group: str = "") -> str:
        path = f"{RULER_PREFIX}/{quote(namespace, safe='')}"
        if group:
            path += f"/{quote(group, safe='')}"
        return path

    def fetch_rule_group(self, namespace: str, group: str) -> FetchResult[NativeRuleGroup]:
        return self._fetch(self.rule_group_path(namespace, group), rule_group_from_yaml)

    def put_rule_group(self, namespace: str, group: NativeRuleGroup) -> None:
        self._mutate("POST", self.rule_group_path(namespace), rule_group_to_yaml(group))

    def delete_rule_group(self, namespace: str, group: str) -> bool:
        return self._delete(self.rule_group_path(namespace, group))

    # ------------- Alertmanager -------------

    def fetch_alertmanager_config(self) -> FetchResult[AlertmanagerDocument]:
        result = self._fetch(ALERTS_PATH, alertmanager_from_yaml)
        if isinstance(result, Found) and not result.value.alertmanager_config:
            return NotFound()
        return result

    def put_alertmanager_config(self, doc: AlertmanagerDocument) -> None:
        self._mutate("POST", ALERTS_PATH, alertmanager_to_yaml(doc))

    def delete_alertmanager_config(self) -> bool:
        return self._delete(ALERTS_PATH)

    # ------------- Internal -------------

    def _fetch(self, path: str, decode) -> FetchResult:
        try:
            body = self._request("GET", path)
        except HttpError as e:
            if e.status == 404:
                return NotFound()
            return Failed(detail=str(e), status=e.status or None)
        try:
            return Found(decode(body))
        except TranslationError as e:
            return Failed(detail=f"malformed response from {path}: {e}")

    def _mutate(self, method: str, path: str, body: str) -> None:
        try:
            self._request(method, path, body)
        except HttpError as e:
            raise RemoteCallError(f"{method} {path}", e.body or e.message, e.status or None) from e

    def _delete(self, path: str) -> bool:
        try:
            self._request("DELETE", path)
        except HttpError as e:
            if e.status == 404:
                return False
            raise RemoteCallError(f"DELETE {path}", e.body or e.message, e.status or None) from e
        return True

    def _full_url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def _request(self, method: str, path: str, body: Optional[str] = None) -> str:
        url = self._full_url(path)
        headers = {"Accept": "application/yaml, application/json"}
        data: Optional[bytes] = None
        if body is not None:
            headers["Content-Type"] = "application/yaml"
            data = body.encode("utf-8")

        attempts = self.retries + 1
        for attempt in range(attempts):
            start = time.time()
            try:
                resp = self.session.request(
                    method=method,
                    url=url,
                    data=data,
                    headers=headers,
                    timeout=self.timeout,
                    verify=self.verify_tls,
                )
            except requests.RequestException as e:
                err = HttpError(status=0, url=url, message=str(e))
                self.log.warning("%s %s failed (network): %s", method, path, e)
                if attempt < attempts - 1:
                    self._sleep_backoff(attempt)
                    continue
                raise err from e

            elapsed = (time.time() - start) * 1000
            if resp.status_code >= 400:
                err = HttpError(
                    status=resp.status_code,
                    url=url,
                    body=resp.text[:_LOG_PREVIEW],
                    message=resp.reason or "",
                )
                if resp.status_code == 404:
                    self.log.debug("%s %s -> 404 in %.1fms", method, path, elapsed)
                    raise err
                self.log.warning("%s %s -> %s: %s", method, path, resp.status_code, resp.text[:_LOG_PREVIEW])
                # Retry only on 5xx
                if 500 <= resp.status_code < 600 and attempt < attempts - 1:
                    self._sleep_backoff(attempt)
                    continue
                raise err

            self.log.debug("%s %s -> %s in %.1fms", method, path, resp.status_code, elapsed)
            return resp.text or ""

        raise AssertionError("unreachable")  # pragma: no cover

    def _sleep_backoff(self, attempt: int) -> None:
        time.sleep(self.backoff * (2 ** attempt))
