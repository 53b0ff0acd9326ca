"""Triple store access: term escaping, query templates and executors."""

from mandataris_archive.store.executor import (
    DatasetExecutor,
    HttpExecutor,
    QueryExecutor,
)
from mandataris_archive.store.templates import render_query
from mandataris_archive.store.terms import (
    Quad,
    TriplePattern,
    bindings,
    escape_string,
    escape_term,
    escape_uri,
    term_from_binding,
)

__all__ = [
    "DatasetExecutor",
    "HttpExecutor",
    "Quad",
    "QueryExecutor",
    "TriplePattern",
    "bindings",
    "escape_string",
    "escape_term",
    "escape_uri",
    "render_query",
    "term_from_binding",
]
