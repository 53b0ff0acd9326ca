"""FastAPI application exposing the archive workflow.

Endpoints:
 DELETE /{uuid}/archive   Archive a mandataris (204 / 404 / 400)
 GET    /{uuid}/archive   Ledger history of archive runs for a uuid
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Callable, Mapping

import httpx
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

from mandataris_archive.archive import Archiver
from mandataris_archive.config import Vocabulary
from mandataris_archive.ledger import ArchiveLedger
from mandataris_archive.store.executor import HttpExecutor, QueryExecutor

log = logging.getLogger(__name__)

ExecutorFactory = Callable[[Mapping[str, str]], QueryExecutor]


def _http_factories(
    config: dict[str, Any], client: httpx.Client,
) -> tuple[ExecutorFactory, QueryExecutor]:
    endpoint = config["sparql"]["endpoint"]
    timeout = config["sparql"]["timeout"]

    def user_factory(headers: Mapping[str, str]) -> QueryExecutor:
        return HttpExecutor(endpoint, client, sudo=False, headers=headers, timeout=timeout)

    sudo = HttpExecutor(endpoint, client, sudo=True, timeout=timeout)
    return user_factory, sudo


def create_app(
    config: dict[str, Any],
    user_factory: ExecutorFactory | None = None,
    sudo: QueryExecutor | None = None,
    ledger: ArchiveLedger | None = None,
) -> FastAPI:
    """Build the archive service.

    Without ``user_factory``/``sudo`` the app talks to ``sparql.endpoint``
    over a shared ``httpx.Client`` opened for the app's lifetime. The
    as-user executor is built per request from the caller's headers.
    """
    vocab = Vocabulary.from_config(config)
    if ledger is None and config["ledger"]["path"]:
        ledger = ArchiveLedger(config["ledger"]["path"])

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        client = None
        if user_factory is None or sudo is None:
            client = httpx.Client()
            app.state.user_factory, app.state.sudo = _http_factories(config, client)
        else:
            app.state.user_factory, app.state.sudo = user_factory, sudo
        try:
            yield
        finally:
            if client is not None:
                client.close()

    app = FastAPI(title="mandataris-archive", lifespan=lifespan)

    @app.delete("/{uuid}/archive")
    def archive_mandataris(uuid: str, request: Request) -> Response:
        archiver = Archiver(
            vocab,
            user=request.app.state.user_factory(request.headers),
            sudo=request.app.state.sudo,
            access=config["access"],
            on_write_denied=config["on_write_denied"],
            ledger=ledger,
        )
        result = archiver.archive(uuid)

        if result.not_found:
            log.info("Mandataris with uuid %s not found.", uuid)
            return Response(status_code=404)
        if result.failed:
            return JSONResponse(
                status_code=400,
                content={"errors": [{"title": result.message}]},
            )
        return Response(status_code=204)

    @app.get("/{uuid}/archive")
    def archive_history(uuid: str) -> Response:
        if ledger is None:
            return JSONResponse(
                status_code=404,
                content={"errors": [{"title": "Archive ledger is not enabled"}]},
            )
        runs = ledger.get_recent_runs(uuid)
        for run in runs:
            run.pop("snapshot", None)
            run["steps"] = ledger.get_steps(run["id"])
        return JSONResponse(content={"data": runs})

    return app
