"""Query executors: the two capability levels the workflow runs queries with.

An executor is either *as-user* (subject to the store's access control) or
*privileged* (``sudo``, bypasses it). Both expose the same two calls:

- :meth:`QueryExecutor.read` returns a SPARQL 1.1 JSON result dict
- :meth:`QueryExecutor.write` returns whether the store acknowledged the update

:class:`HttpExecutor` talks to a SPARQL endpoint over HTTP;
:class:`DatasetExecutor` runs against an in-memory ``rdflib.Dataset``.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Mapping

import httpx
from rdflib import Dataset

from mandataris_archive.errors import StoreError

log = logging.getLogger(__name__)

SPARQL_JSON = "application/sparql-results+json"

# Request headers identifying the caller to the authorization layer.
FORWARDED_HEADERS = ("mu-session-id", "mu-call-id", "mu-auth-allowed-groups")

_DENIED_STATUSES = (401, 403)


class QueryExecutor(ABC):
    """Runs SPARQL queries with one authorization context."""

    sudo: bool = False

    @property
    def capability(self) -> str:
        return "sudo" if self.sudo else "user"

    @abstractmethod
    def read(self, query: str) -> dict[str, Any]:
        """Run a SELECT/ASK query and return the SPARQL JSON result."""

    @abstractmethod
    def write(self, query: str) -> bool:
        """Run an update. Returns False when the store refused it."""


class HttpExecutor(QueryExecutor):
    """SPARQL-over-HTTP executor.

    Parameters
    ----------
    endpoint:
        SPARQL endpoint URL.
    client:
        Shared ``httpx.Client``; the caller owns its lifetime.
    sudo:
        Send ``mu-auth-sudo: true`` so access control is bypassed.
    headers:
        Incoming request headers; the caller-identifying ones are forwarded.
    timeout:
        Per-request timeout in seconds.
    """

    def __init__(
        self,
        endpoint: str,
        client: httpx.Client,
        sudo: bool = False,
        headers: Mapping[str, str] | None = None,
        timeout: float = 60,
    ) -> None:
        self._endpoint = endpoint
        self._client = client
        self._timeout = timeout
        self.sudo = sudo
        self._headers = {"Accept": SPARQL_JSON}
        if sudo:
            self._headers["mu-auth-sudo"] = "true"
        for name in FORWARDED_HEADERS:
            value = (headers or {}).get(name)
            if value is not None:
                self._headers[name] = value

    @property
    def headers(self) -> dict[str, str]:
        return dict(self._headers)

    def _post(self, query: str) -> httpx.Response:
        try:
            return self._client.post(
                self._endpoint,
                data={"query": query},
                headers=self._headers,
                timeout=self._timeout,
            )
        except httpx.HTTPError as exc:
            raise StoreError(f"SPARQL endpoint {self._endpoint} unreachable: {exc}") from exc

    def read(self, query: str) -> dict[str, Any]:
        response = self._post(query)
        if response.status_code >= 400:
            raise StoreError(
                f"SPARQL query failed ({response.status_code}): {response.text[:500]}"
            )
        try:
            return response.json()
        except ValueError as exc:
            raise StoreError(f"SPARQL endpoint returned invalid JSON: {exc}") from exc

    def write(self, query: str) -> bool:
        response = self._post(query)
        if response.status_code in _DENIED_STATUSES:
            log.warning(
                "SPARQL update refused (%d, %s)", response.status_code, self.capability,
            )
            return False
        if response.status_code >= 400:
            raise StoreError(
                f"SPARQL update failed ({response.status_code}): {response.text[:500]}"
            )
        return True


@dataclass
class Call:
    """One query recorded by :class:`DatasetExecutor`."""

    kind: str
    query: str
    capability: str
    applied: bool = True


class DatasetExecutor(QueryExecutor):
    """Executor over an in-memory ``rdflib.Dataset``.

    Several executors may share one dataset (e.g. an as-user and a sudo
    instance). Every call is appended to :attr:`calls`. With
    ``writable=False`` updates are not applied and :meth:`write` returns
    False, the way an access-controlled store refuses a write.
    """

    def __init__(
        self,
        dataset: Dataset,
        sudo: bool = False,
        writable: bool = True,
        calls: list[Call] | None = None,
    ) -> None:
        self.dataset = dataset
        self.sudo = sudo
        self.writable = writable
        self.calls: list[Call] = calls if calls is not None else []

    def read(self, query: str) -> dict[str, Any]:
        self.calls.append(Call("read", query, self.capability))
        try:
            result = self.dataset.query(query)
            payload = result.serialize(format="json")
        except Exception as exc:
            raise StoreError(f"Query failed: {exc}") from exc
        if isinstance(payload, bytes):
            payload = payload.decode("utf-8")
        return json.loads(payload)

    def write(self, query: str) -> bool:
        self.calls.append(Call("write", query, self.capability, applied=self.writable))
        if not self.writable:
            return False
        try:
            self.dataset.update(query)
        except Exception as exc:
            raise StoreError(f"Update failed: {exc}") from exc
        return True

    @property
    def writes(self) -> list[Call]:
        return [c for c in self.calls if c.kind == "write"]
