"""RDF term escaping and conversion between SPARQL JSON results and rdflib terms.

Everything interpolated into a query goes through :func:`escape_uri`,
:func:`escape_string` or :func:`escape_term`; templates never see raw
strings.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable

from rdflib import BNode, Dataset, Literal, URIRef
from rdflib.term import Node

_INVALID_URI_CHARS = frozenset('<>" {}|\\^`')


def escape_uri(value: str) -> str:
    """Serialize a URI as ``<...>``, refusing characters that break out of it."""
    text = str(value)
    bad = _INVALID_URI_CHARS.intersection(text)
    if not text or bad:
        raise ValueError(f"Not a valid URI: {text!r}")
    return f"<{text}>"


def escape_string(value: str) -> str:
    """Serialize a plain string literal."""
    return Literal(str(value)).n3()


def escape_term(term: Node) -> str:
    """Serialize any rdflib term (URI, plain/typed/language literal, blank node)."""
    if isinstance(term, URIRef):
        return escape_uri(term)
    if isinstance(term, (Literal, BNode)):
        return term.n3()
    raise TypeError(f"Cannot serialize {type(term).__name__} as an RDF term")


def term_from_binding(binding: dict[str, Any]) -> Node:
    """Convert one SPARQL 1.1 JSON result binding into an rdflib term."""
    kind = binding.get("type")
    value = binding.get("value")
    if value is None:
        raise ValueError(f"Binding without value: {binding!r}")
    if kind == "uri":
        return URIRef(value)
    if kind == "bnode":
        return BNode(value)
    if kind in ("literal", "typed-literal"):
        datatype = binding.get("datatype")
        lang = binding.get("xml:lang")
        if datatype:
            return Literal(value, datatype=URIRef(datatype))
        return Literal(value, lang=lang)
    raise ValueError(f"Unknown binding type '{kind}'")


def bindings(result: dict[str, Any]) -> list[dict[str, Any]]:
    """Return the bindings list of a SPARQL JSON result (empty when absent)."""
    return result.get("results", {}).get("bindings", [])


@dataclass(frozen=True)
class Quad:
    """A triple together with the named graph that holds it."""

    subject: Node
    predicate: URIRef
    object: Node
    graph: URIRef

    def n3(self) -> str:
        """Triple line for an INSERT DATA / DELETE DATA block."""
        return (
            f"{escape_term(self.subject)} {escape_term(self.predicate)} "
            f"{escape_term(self.object)} ."
        )


@dataclass(frozen=True)
class TriplePattern:
    """A triple pattern where ``None`` leaves a position open.

    Open positions become the variables ``?s``, ``?p`` and ``?o``.
    """

    subject: Node | None = None
    predicate: URIRef | None = None
    object: Node | None = None

    def __post_init__(self) -> None:
        if self.subject is None and self.predicate is None and self.object is None:
            raise ValueError("A triple pattern needs at least one fixed position")

    @property
    def variables(self) -> list[str]:
        names = []
        for name, value in (("s", self.subject), ("p", self.predicate), ("o", self.object)):
            if value is None:
                names.append(name)
        return names

    @property
    def projection(self) -> str:
        """SELECT clause variables: the graph plus every open position."""
        return " ".join(["?g"] + [f"?{name}" for name in self.variables])

    def n3(self) -> str:
        parts = []
        for name, value in (("s", self.subject), ("p", self.predicate), ("o", self.object)):
            parts.append(f"?{name}" if value is None else escape_term(value))
        return " ".join(parts)

    def resolve(self, row: dict[str, Any]) -> Quad:
        """Build the matched quad from a result row binding ``?g`` and the open positions."""
        def pick(name: str, fixed: Node | None) -> Node:
            return fixed if fixed is not None else term_from_binding(row[name])

        return Quad(
            subject=pick("s", self.subject),
            predicate=pick("p", self.predicate),  # type: ignore[arg-type]
            object=pick("o", self.object),
            graph=URIRef(row["g"]["value"]),
        )


def unique_quads(quads: Iterable[Quad]) -> list[Quad]:
    """Deduplicate quads, keeping first-seen order."""
    seen: set[Quad] = set()
    result = []
    for quad in quads:
        if quad not in seen:
            seen.add(quad)
            result.append(quad)
    return result


def to_nquads(quads: Iterable[Quad]) -> str:
    """Serialize quads as N-Quads text."""
    ds = Dataset()
    for quad in quads:
        ds.add((quad.subject, quad.predicate, quad.object, quad.graph))
    return ds.serialize(format="nquads")


def from_nquads(text: str) -> list[Quad]:
    """Parse the output of :func:`to_nquads` back into quads."""
    ds = Dataset()
    ds.parse(data=text, format="nquads")
    quads = []
    for s, p, o, g in ds.quads((None, None, None, None)):
        graph = getattr(g, "identifier", g)
        quads.append(Quad(s, p, o, URIRef(graph)))
    return quads
