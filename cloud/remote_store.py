from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Protocol

import requests

from core import settings
from utils.redact import redact_text

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RemoteStoreError(Exception):
    """Hosted store call error with retry classification."""

    code: str
    status: Optional[int]
    retryable: bool
    detail: str

    def __str__(self) -> str:  # pragma: no cover
        s = f"{self.code}"
        if self.status is not None:
            s += f" (HTTP {self.status})"
        if self.retryable:
            s += " [retryable]"
        return f"{s}: {self.detail}"


class RemoteConflictError(RemoteStoreError):
    """The store rejected a write because another session changed the row."""


class RemoteStore(Protocol):
    """Row-level access to the hosted relational store.

    Implementations raise RemoteConflictError on write conflicts and
    RemoteStoreError (retry classified) on any other failure.
    """

    def insert(self, table: str, row: Mapping[str, Any]) -> Dict[str, Any]:
        ...

    def update(
        self,
        table: str,
        record_id: str,
        data: Mapping[str, Any],
        *,
        expected: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        ...

    def delete(self, table: str, record_id: str) -> None:
        ...

    def select(self, table: str, filters: Optional[Mapping[str, Any]] = None) -> List[Dict[str, Any]]:
        ...

    def get(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        ...


def _is_retryable_status(status: int) -> bool:
    return status == 408 or status == 429 or 500 <= status <= 599


def _eq_filters(filters: Optional[Mapping[str, Any]]) -> Dict[str, str]:
    return {str(k): f"eq.{v}" for k, v in (filters or {}).items()}


class RestRemoteStore:
    """PostgREST-compatible client (`{base_url}/rest/v1/{table}`)."""

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str = "",
        timeout_s: float = 20.0,
        retries: int = 1,
        session: Optional[requests.Session] = None,
    ) -> None:
        if not base_url:
            raise ValueError("base_url is required")
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout_s = float(timeout_s)
        self.retries = max(0, int(retries))
        self.session = session or requests.Session()

    @classmethod
    def from_env(cls) -> "RestRemoteStore":
        return cls(
            base_url=settings.remote_store_url(),
            api_key=settings.remote_store_api_key(),
            timeout_s=settings.remote_store_timeout_s(),
        )

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "Prefer": "return=representation",
        }
        if self.api_key:
            headers["apikey"] = self.api_key
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _request(
        self,
        method: str,
        table: str,
        *,
        params: Optional[Dict[str, str]] = None,
        body: Optional[Mapping[str, Any]] = None,
    ) -> Any:
        url = f"{self.base_url}/rest/v1/{table}"
        last_err: Optional[RemoteStoreError] = None

        for attempt in range(self.retries + 1):
            try:
                resp = self.session.request(
                    method,
                    url,
                    params=params,
                    json=dict(body) if body is not None else None,
                    headers=self._headers(),
                    timeout=self.timeout_s,
                )
            except requests.RequestException as e:
                last_err = RemoteStoreError(
                    code=type(e).__name__,
                    status=None,
                    retryable=True,
                    detail=redact_text(str(e), [self.api_key]),
                )
            else:
                if resp.status_code < 400:
                    return resp.json() if resp.content else None
                detail = redact_text(resp.text[:600], [self.api_key])
                if resp.status_code == 409:
                    raise RemoteConflictError(code="conflict", status=409, retryable=False, detail=detail)
                last_err = RemoteStoreError(
                    code="http_status_error",
                    status=resp.status_code,
                    retryable=_is_retryable_status(resp.status_code),
                    detail=detail,
                )

            if last_err.retryable and attempt < self.retries:
                logger.info(f"remote_store {method} {table} retrying: {last_err}")
                time.sleep(0.5 * (2 ** attempt))
                continue
            raise last_err

        raise RemoteStoreError(code="unknown", status=None, retryable=False, detail="Unexpected request loop exit")

    def insert(self, table: str, row: Mapping[str, Any]) -> Dict[str, Any]:
        rows = self._request("POST", table, body=row) or []
        return rows[0] if rows else dict(row)

    def update(
        self,
        table: str,
        record_id: str,
        data: Mapping[str, Any],
        *,
        expected: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        """PATCH one row by id.

        With `expected`, the write only applies while those columns still hold
        the given values; a row that exists but no longer matches is reported
        as RemoteConflictError.
        """
        params = _eq_filters({"id": record_id})
        params.update(_eq_filters(expected))
        rows = self._request("PATCH", table, params=params, body=data) or []
        if rows:
            return rows[0]
        if expected and self.get(table, record_id) is not None:
            raise RemoteConflictError(
                code="stale_write",
                status=None,
                retryable=False,
                detail=f"{table}/{record_id} changed since {dict(expected)}",
            )
        raise RemoteStoreError(code="not_found", status=None, retryable=False, detail=f"{table}/{record_id}")

    def delete(self, table: str, record_id: str) -> None:
        self._request("DELETE", table, params=_eq_filters({"id": record_id}))

    def select(self, table: str, filters: Optional[Mapping[str, Any]] = None) -> List[Dict[str, Any]]:
        params = {"select": "*"}
        params.update(_eq_filters(filters))
        return list(self._request("GET", table, params=params) or [])

    def get(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        rows = self.select(table, {"id": record_id})
        return rows[0] if rows else None
