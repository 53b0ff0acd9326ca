"""Jinja2 rendering for the SPARQL query templates."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, StrictUndefined

from mandataris_archive.store.terms import escape_string, escape_uri

_TEMPLATES_DIR = Path(__file__).resolve().parent.parent / "templates"


@lru_cache(maxsize=1)
def _get_env() -> Environment:
    """Create a Jinja2 environment loading from mandataris_archive/templates/."""
    env = Environment(
        loader=FileSystemLoader(str(_TEMPLATES_DIR)),
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=True,
        undefined=StrictUndefined,
    )
    env.filters["uri"] = escape_uri
    env.filters["string"] = escape_string
    return env


def render_query(name: str, **context: Any) -> str:
    """Render ``templates/<name>.rq`` with the given context."""
    return _get_env().get_template(f"{name}.rq").render(**context)
