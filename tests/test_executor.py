"""Tests for mandataris_archive.store.executor."""

from __future__ import annotations

import httpx
import pytest
from rdflib import Dataset

from conftest import MANDATARIS, UUID, VOCAB, snapshot
from mandataris_archive.errors import StoreError
from mandataris_archive.store.executor import DatasetExecutor, HttpExecutor
from mandataris_archive.store.templates import render_query

ENDPOINT = "http://database:8890/sparql"

EMPTY_RESULT = {"head": {"vars": ["x"]}, "results": {"bindings": []}}


def make_client(handler) -> tuple[httpx.Client, list[httpx.Request]]:
    seen: list[httpx.Request] = []

    def recording(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request)

    return httpx.Client(transport=httpx.MockTransport(recording)), seen


class TestHttpExecutorHeaders:
    def test_user_forwards_session_headers(self):
        client, seen = make_client(lambda r: httpx.Response(200, json=EMPTY_RESULT))
        incoming = {
            "mu-session-id": "session-1",
            "mu-call-id": "call-1",
            "mu-auth-allowed-groups": '[{"name":"public"}]',
            "cookie": "secret",
        }
        executor = HttpExecutor(ENDPOINT, client, headers=incoming)
        executor.read("SELECT * WHERE { ?s ?p ?o }")

        request = seen[0]
        assert request.headers["mu-session-id"] == "session-1"
        assert request.headers["mu-call-id"] == "call-1"
        assert request.headers["mu-auth-allowed-groups"] == '[{"name":"public"}]'
        assert "cookie" not in request.headers
        assert "mu-auth-sudo" not in request.headers
        assert executor.capability == "user"

    def test_sudo_header(self):
        client, seen = make_client(lambda r: httpx.Response(204))
        executor = HttpExecutor(ENDPOINT, client, sudo=True)
        assert executor.write("INSERT DATA { <a:b> <a:c> <a:d> }")

        assert seen[0].headers["mu-auth-sudo"] == "true"
        assert executor.capability == "sudo"

    def test_query_sent_as_form(self):
        client, seen = make_client(lambda r: httpx.Response(200, json=EMPTY_RESULT))
        query = render_query("locate", vocab=VOCAB, uuid=UUID)
        HttpExecutor(ENDPOINT, client).read(query)

        request = seen[0]
        assert request.method == "POST"
        assert str(request.url) == ENDPOINT
        assert request.headers["accept"] == "application/sparql-results+json"
        assert b"query=" in request.content


class TestHttpExecutorErrors:
    @pytest.mark.parametrize("status", [401, 403])
    def test_denied_write_returns_false(self, status):
        client, _ = make_client(lambda r: httpx.Response(status))
        assert HttpExecutor(ENDPOINT, client).write("DELETE WHERE { ?s ?p ?o }") is False

    def test_server_error_on_write_raises(self):
        client, _ = make_client(lambda r: httpx.Response(500, text="Virtuoso 42000 Error"))
        with pytest.raises(StoreError, match="500"):
            HttpExecutor(ENDPOINT, client).write("DELETE WHERE { ?s ?p ?o }")

    def test_denied_read_raises(self):
        client, _ = make_client(lambda r: httpx.Response(403))
        with pytest.raises(StoreError, match="403"):
            HttpExecutor(ENDPOINT, client).read("SELECT * WHERE { ?s ?p ?o }")

    def test_transport_error_raises(self):
        def refuse(request):
            raise httpx.ConnectError("Connection refused", request=request)

        client, _ = make_client(refuse)
        with pytest.raises(StoreError, match="unreachable"):
            HttpExecutor(ENDPOINT, client).read("SELECT * WHERE { ?s ?p ?o }")

    def test_invalid_json_raises(self):
        client, _ = make_client(lambda r: httpx.Response(200, text="<html>oops</html>"))
        with pytest.raises(StoreError, match="invalid JSON"):
            HttpExecutor(ENDPOINT, client).read("SELECT * WHERE { ?s ?p ?o }")


class TestDatasetExecutor:
    def test_read_returns_sparql_json(self, user):
        result = user.read(render_query("locate", vocab=VOCAB, uuid=UUID))
        rows = result["results"]["bindings"]
        assert rows == [{"mandataris": {"type": "uri", "value": str(MANDATARIS)}}]

    def test_calls_are_recorded(self, user, sudo):
        user.read("SELECT * WHERE { ?s ?p ?o } LIMIT 1")
        sudo.write("INSERT DATA { GRAPH <http://example.org/g> { <a:b> <a:c> <a:d> } }")

        assert [(c.kind, c.capability) for c in user.calls] == [("read", "user"), ("write", "sudo")]
        assert len(user.writes) == 1

    def test_not_writable(self, dataset):
        executor = DatasetExecutor(dataset, writable=False)
        before = snapshot(dataset)
        assert executor.write("INSERT DATA { GRAPH <http://example.org/g> { <a:b> <a:c> <a:d> } }") is False
        assert snapshot(dataset) == before
        assert executor.writes[0].applied is False

    def test_syntax_error_raises_store_error(self):
        with pytest.raises(StoreError):
            DatasetExecutor(Dataset()).read("SELEKT nonsense")
