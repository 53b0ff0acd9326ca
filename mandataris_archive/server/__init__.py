"""Archive HTTP service.

Entry point: :func:`run_server` serves :func:`create_app` under uvicorn in
the foreground.
"""

from __future__ import annotations

import logging
from typing import Any

import uvicorn

from mandataris_archive.server.app import create_app

log = logging.getLogger(__name__)

__all__ = ["create_app", "run_server"]


def run_server(config: dict[str, Any]) -> None:
    """Run the archive service until interrupted.

    Parameters
    ----------
    config:
        Archive service config dict.
    """
    host = config["server"]["host"]
    port = int(config["server"]["port"])
    log.info(
        "Archive service starting (endpoint=%s, graveyard=%s, %s:%d)",
        config["sparql"]["endpoint"], config["graphs"]["graveyard"], host, port,
    )
    uvicorn.run(create_app(config), host=host, port=port, log_level=config["log_level"].lower())
    log.info("Archive service stopped")
