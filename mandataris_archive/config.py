"""Load and validate the archive service config.yaml."""

from __future__ import annotations

import copy
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from rdflib import URIRef


# Default config values
DEFAULTS: dict[str, Any] = {
    "sparql": {
        "endpoint": "http://database:8890/sparql",
        "timeout": 60,
    },
    "graphs": {
        "graveyard": "http://mu.semte.ch/graphs/graveyard/mandatarissen",
    },
    "vocabulary": {
        "identifier": "http://mu.semte.ch/vocabularies/core/uuid",
        "live_class": "http://data.vlaanderen.be/ns/mandaat#Mandataris",
        "archived_class": "http://lblod.data.gift/vocabularies/mandaat/ArchivedMandataris",
        "same_as": "http://www.w3.org/2002/07/owl#sameAs",
        "change_note": "http://www.w3.org/2004/02/skos/core#changeNote",
        "history_note": "http://www.w3.org/2004/02/skos/core#historyNote",
        "alias_of": "http://data.vlaanderen.be/ns/mandaat#isBestuurlijkeAliasVan",
    },
    "annotation": "Has been archived due to deletion in Loket.",
    "access": {
        "located": "user",
        "duplicate_checked": "user",
        "live_triples_removed": "user",
        "copied_to_graveyard": "sudo",
        "type_reclassified": "sudo",
        "annotated": "sudo",
        "duplicate_branch_done": "sudo",
        "no_duplicate_branch_done": "sudo",
    },
    "on_write_denied": "fail",
    "ledger": {
        "path": None,
    },
    "server": {
        "host": "0.0.0.0",
        "port": 80,
    },
    "log_level": "INFO",
}

REQUIRED_VOCABULARY_KEYS = {
    "identifier", "live_class", "archived_class", "same_as",
    "change_note", "history_note", "alias_of",
}
CAPABILITIES = ("user", "sudo")
WRITE_DENIED_POLICIES = ("fail", "log")

# First step that mutates the store; it has to prove the caller's rights.
FIRST_MUTATING_STEP = "live_triples_removed"

_INVALID_URI_CHARS = set('<>" {}|\\^`')


class ConfigError(Exception):
    """Raised when config is invalid or missing."""


@dataclass(frozen=True)
class Vocabulary:
    """Fixed terms the archive workflow reads and writes."""

    graveyard: URIRef
    identifier: URIRef
    live_class: URIRef
    archived_class: URIRef
    same_as: URIRef
    change_note: URIRef
    history_note: URIRef
    alias_of: URIRef
    annotation: str

    @classmethod
    def from_config(cls, config: dict) -> Vocabulary:
        terms = {key: URIRef(value) for key, value in config["vocabulary"].items()
                 if key in REQUIRED_VOCABULARY_KEYS}
        return cls(
            graveyard=URIRef(config["graphs"]["graveyard"]),
            annotation=config["annotation"],
            **terms,
        )


def _deep_merge(base: dict, override: dict) -> dict:
    """Merge override into base recursively. Override wins on conflicts."""
    result = base.copy()
    for key, val in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(val, dict):
            result[key] = _deep_merge(result[key], val)
        else:
            result[key] = val
    return result


def _is_uri(value: Any) -> bool:
    return isinstance(value, str) and ":" in value and not (_INVALID_URI_CHARS & set(value))


def validate_access(access: dict[str, str]) -> None:
    """Check the per-step capability mapping."""
    for step, capability in access.items():
        if capability not in CAPABILITIES:
            raise ConfigError(
                f"access.{step} must be one of {CAPABILITIES}, got '{capability}'"
            )
    if access.get(FIRST_MUTATING_STEP, "user") != "user":
        raise ConfigError(
            f"access.{FIRST_MUTATING_STEP} must be 'user': privileged writes "
            "are only allowed after an as-user write succeeded"
        )


def _validate(config: dict) -> None:
    """Validate required fields in config."""
    vocabulary = config.get("vocabulary")
    if not isinstance(vocabulary, dict):
        raise ConfigError("'vocabulary' must be a mapping")
    missing = REQUIRED_VOCABULARY_KEYS - set(vocabulary.keys())
    if missing:
        raise ConfigError(f"'vocabulary' missing required keys: {sorted(missing)}")
    for key in sorted(REQUIRED_VOCABULARY_KEYS):
        if not _is_uri(vocabulary[key]):
            raise ConfigError(f"vocabulary.{key} is not a valid URI: {vocabulary[key]!r}")

    graveyard = config.get("graphs", {}).get("graveyard")
    if not _is_uri(graveyard):
        raise ConfigError(f"graphs.graveyard is not a valid URI: {graveyard!r}")

    if not isinstance(config.get("annotation"), str) or not config["annotation"].strip():
        raise ConfigError("'annotation' must be a non-empty string")

    access = config.get("access")
    if not isinstance(access, dict):
        raise ConfigError("'access' must be a mapping")
    validate_access(access)

    policy = config.get("on_write_denied")
    if policy not in WRITE_DENIED_POLICIES:
        raise ConfigError(
            f"Unsupported on_write_denied '{policy}'. Expected one of {WRITE_DENIED_POLICIES}."
        )


def load_config(config_path: Path | None = None) -> dict:
    """Load config from a YAML file, or the defaults if no path is given.

    Merges with DEFAULTS so callers always get a full config dict. The
    ``MU_SPARQL_ENDPOINT`` environment variable wins over the file.
    """
    config = copy.deepcopy(DEFAULTS)

    if config_path is not None:
        path = Path(config_path)
        if not path.exists():
            raise ConfigError(f"Config not found: {path}")

        with open(path) as f:
            raw = yaml.safe_load(f)

        if not isinstance(raw, dict):
            raise ConfigError(f"Config must be a YAML mapping, got {type(raw).__name__}")
        config = _deep_merge(config, raw)

    endpoint = os.environ.get("MU_SPARQL_ENDPOINT")
    if endpoint:
        config["sparql"] = _deep_merge(config["sparql"], {"endpoint": endpoint})

    _validate(config)
    return config
