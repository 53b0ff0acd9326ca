"""CLI entry point for mandataris-archive."""

from __future__ import annotations

from pathlib import Path

import click


# Default config template
CONFIG_TEMPLATE = """\
sparql:
  endpoint: http://database:8890/sparql  # MU_SPARQL_ENDPOINT overrides
  timeout: 60

graphs:
  graveyard: http://mu.semte.ch/graphs/graveyard/mandatarissen

vocabulary:
  identifier: http://mu.semte.ch/vocabularies/core/uuid
  live_class: http://data.vlaanderen.be/ns/mandaat#Mandataris
  archived_class: http://lblod.data.gift/vocabularies/mandaat/ArchivedMandataris
  same_as: http://www.w3.org/2002/07/owl#sameAs
  change_note: http://www.w3.org/2004/02/skos/core#changeNote
  history_note: http://www.w3.org/2004/02/skos/core#historyNote
  alias_of: http://data.vlaanderen.be/ns/mandaat#isBestuurlijkeAliasVan

annotation: Has been archived due to deletion in Loket.

# Which executor runs each step: user (access controlled) or sudo.
# live_triples_removed must stay 'user'.
access:
  located: user
  duplicate_checked: user
  live_triples_removed: user
  copied_to_graveyard: sudo
  type_reclassified: sudo
  annotated: sudo
  duplicate_branch_done: sudo
  no_duplicate_branch_done: sudo

on_write_denied: fail  # fail | log

ledger:
  path: null  # e.g. /data/archive-ledger.db

server:
  host: 0.0.0.0
  port: 80

log_level: INFO
"""

_CONFIG_OPTION = click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, resolve_path=True),
    default=None,
    help="Path to config.yaml (default: built-in defaults).",
)


def _setup_logging(level: str) -> None:
    import logging

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _load(config_path: str | None) -> dict:
    from mandataris_archive.config import ConfigError, load_config

    try:
        return load_config(Path(config_path) if config_path else None)
    except ConfigError as exc:
        click.echo(f"Config error: {exc}")
        raise SystemExit(1)


@click.group()
def cli() -> None:
    """Archive mandataris records into the graveyard graph."""


@cli.command()
@click.option(
    "--path",
    type=click.Path(dir_okay=False, resolve_path=True),
    default="config.yaml",
    help="Where to write the config (default: ./config.yaml).",
)
def init(path: str) -> None:
    """Write a default config.yaml."""
    config_path = Path(path)
    if config_path.exists():
        click.echo(f"{config_path} already exists")
        raise SystemExit(1)

    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(CONFIG_TEMPLATE)
    _load(str(config_path))
    click.echo(f"Created {config_path}")


@cli.command()
@_CONFIG_OPTION
def serve(config_path: str | None) -> None:
    """Run the archive HTTP service (foreground)."""
    from mandataris_archive.server import run_server

    config = _load(config_path)
    _setup_logging(config["log_level"])
    click.echo(f"Starting archive service on {config['server']['host']}:{config['server']['port']}...")
    run_server(config)


@cli.command()
@click.argument("uuid")
@_CONFIG_OPTION
@click.option(
    "--trig",
    "trig_path",
    type=click.Path(exists=True, dir_okay=False, resolve_path=True),
    default=None,
    help="Archive inside a local TriG file (rewritten in place) instead of the endpoint.",
)
def archive(uuid: str, config_path: str | None, trig_path: str | None) -> None:
    """Archive the mandataris with the given UUID."""
    from mandataris_archive.ledger import ArchiveLedger

    config = _load(config_path)
    _setup_logging(config["log_level"])
    ledger = ArchiveLedger(config["ledger"]["path"]) if config["ledger"]["path"] else None

    if trig_path:
        from rdflib import Dataset

        from mandataris_archive.store.executor import DatasetExecutor

        dataset = Dataset()
        dataset.parse(trig_path, format="trig")
        user = DatasetExecutor(dataset)
        sudo = DatasetExecutor(dataset, sudo=True, calls=user.calls)
        result = _run_archive(config, user, sudo, ledger, uuid)
        if not result.not_found:
            Path(trig_path).write_text(dataset.serialize(format="trig"))
    else:
        import httpx

        from mandataris_archive.store.executor import HttpExecutor

        endpoint = config["sparql"]["endpoint"]
        timeout = config["sparql"]["timeout"]
        with httpx.Client() as client:
            user = HttpExecutor(endpoint, client, timeout=timeout)
            sudo = HttpExecutor(endpoint, client, sudo=True, timeout=timeout)
            result = _run_archive(config, user, sudo, ledger, uuid)

    for step in result.steps:
        capability = f" [{step.capability}]" if step.capability else ""
        detail = f": {step.detail}" if step.detail else ""
        click.echo(f"  {step.state.value}{capability} {step.outcome.value}{detail}")

    if result.not_found:
        click.echo(f"Mandataris with uuid {uuid} not found.")
        raise SystemExit(1)
    if result.failed:
        click.echo(result.message)
        raise SystemExit(1)
    click.echo(f"Archived {result.uri}")


def _run_archive(config: dict, user, sudo, ledger, uuid: str):
    from mandataris_archive.archive import Archiver
    from mandataris_archive.config import Vocabulary

    archiver = Archiver(
        Vocabulary.from_config(config),
        user=user,
        sudo=sudo,
        access=config["access"],
        on_write_denied=config["on_write_denied"],
        ledger=ledger,
    )
    return archiver.archive(uuid)


@cli.command()
@click.argument("uuid", required=False)
@_CONFIG_OPTION
@click.option("--limit", type=int, default=10, show_default=True, help="Max runs to show.")
def history(uuid: str | None, config_path: str | None, limit: int) -> None:
    """Show recent archive runs from the ledger."""
    from mandataris_archive.ledger import ArchiveLedger

    config = _load(config_path)
    if not config["ledger"]["path"]:
        click.echo("Error: ledger.path is not set in the config.")
        raise SystemExit(1)

    ledger = ArchiveLedger(config["ledger"]["path"])
    runs = ledger.get_recent_runs(uuid, limit=limit)
    if not runs:
        click.echo("No archive runs recorded.")
        return

    for run in runs:
        line = f"#{run['id']} {run['uuid']} {run['state']}"
        if run["mandataris"]:
            line += f" {run['mandataris']}"
        click.echo(line)
        if run["duplicate"]:
            click.echo(f"  duplicate: {run['duplicate']}")
        if run["state"] == "failed":
            click.echo(f"  failed at {run['failed_step']}: {run['error']}")
        for step in ledger.get_steps(run["id"]):
            click.echo(f"  - {step['state']} ({step['outcome']})")
