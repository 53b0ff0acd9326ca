"""Integration tests for the mandataris-archive CLI."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml
from click.testing import CliRunner
from rdflib import Dataset
from rdflib.namespace import RDF

from conftest import GRAVEYARD, MANDATARIS, UUID, VOCAB, graphs_of, seed_mandataris
from mandataris_archive.cli import CONFIG_TEMPLATE, cli
from mandataris_archive.config import load_config


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def trig_file(tmp_path: Path) -> Path:
    path = tmp_path / "data.trig"
    path.write_text(seed_mandataris(Dataset()).serialize(format="trig"))
    return path


@pytest.fixture
def ledger_config(tmp_path: Path) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(yaml.dump({"ledger": {"path": str(tmp_path / "ledger.db")}}))
    return path


def load_trig(path: Path) -> Dataset:
    ds = Dataset()
    ds.parse(str(path), format="trig")
    return ds


class TestInit:
    def test_writes_template(self, runner: CliRunner, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        result = runner.invoke(cli, ["init", "--path", str(path)])

        assert result.exit_code == 0
        assert "Created" in result.output
        assert path.read_text() == CONFIG_TEMPLATE

    def test_template_matches_defaults(self, runner: CliRunner, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        runner.invoke(cli, ["init", "--path", str(path)])
        assert load_config(path) == load_config()

    def test_refuses_to_overwrite(self, runner: CliRunner, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text("log_level: DEBUG\n")
        result = runner.invoke(cli, ["init", "--path", str(path)])

        assert result.exit_code == 1
        assert "already exists" in result.output
        assert path.read_text() == "log_level: DEBUG\n"


class TestArchive:
    def test_archives_trig_file(self, runner: CliRunner, trig_file: Path) -> None:
        result = runner.invoke(cli, ["archive", UUID, "--trig", str(trig_file)])

        assert result.exit_code == 0, result.output
        assert f"Archived {MANDATARIS}" in result.output
        assert "live_triples_removed [user] applied" in result.output
        ds = load_trig(trig_file)
        assert graphs_of(ds, (MANDATARIS, RDF.type, VOCAB.archived_class)) == {GRAVEYARD}
        assert graphs_of(ds, (MANDATARIS, RDF.type, VOCAB.live_class)) == set()

    def test_unknown_uuid(self, runner: CliRunner, trig_file: Path) -> None:
        before = trig_file.read_text()
        result = runner.invoke(cli, ["archive", "missing", "--trig", str(trig_file)])

        assert result.exit_code == 1
        assert "Mandataris with uuid missing not found." in result.output
        assert trig_file.read_text() == before

    def test_bad_config(self, runner: CliRunner, trig_file: Path, tmp_path: Path) -> None:
        config = tmp_path / "bad.yaml"
        config.write_text(yaml.dump({"access": {"live_triples_removed": "sudo"}}))
        result = runner.invoke(
            cli, ["archive", UUID, "--trig", str(trig_file), "--config", str(config)],
        )

        assert result.exit_code == 1
        assert "Config error" in result.output


class TestHistory:
    def test_requires_ledger(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["history"])
        assert result.exit_code == 1
        assert "ledger.path is not set" in result.output

    def test_empty(self, runner: CliRunner, ledger_config: Path) -> None:
        result = runner.invoke(cli, ["history", "--config", str(ledger_config)])
        assert result.exit_code == 0
        assert "No archive runs recorded." in result.output

    def test_lists_runs(
        self, runner: CliRunner, trig_file: Path, ledger_config: Path,
    ) -> None:
        runner.invoke(
            cli, ["archive", UUID, "--trig", str(trig_file), "--config", str(ledger_config)],
        )
        runner.invoke(
            cli, ["archive", "missing", "--trig", str(trig_file), "--config", str(ledger_config)],
        )
        result = runner.invoke(cli, ["history", "--config", str(ledger_config)])

        assert result.exit_code == 0
        lines = result.output.splitlines()
        assert lines[0] == "#2 missing not_found"
        assert f"#1 {UUID} archived {MANDATARIS}" in lines
        assert "  - archived (applied)" in lines

    def test_filters_by_uuid(
        self, runner: CliRunner, trig_file: Path, ledger_config: Path,
    ) -> None:
        runner.invoke(
            cli, ["archive", "missing", "--trig", str(trig_file), "--config", str(ledger_config)],
        )
        result = runner.invoke(cli, ["history", UUID, "--config", str(ledger_config)])
        assert "No archive runs recorded." in result.output
