"""Individual archive steps: locate, detect duplicates, move, reclassify, annotate.

Each function runs one or two queries against the executor it is handed and
never calls another step; sequencing lives in
:mod:`mandataris_archive.archive.orchestrator`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from rdflib import URIRef

from mandataris_archive.config import Vocabulary
from mandataris_archive.store.executor import QueryExecutor
from mandataris_archive.store.templates import render_query
from mandataris_archive.store.terms import (
    Quad,
    TriplePattern,
    bindings,
    term_from_binding,
    unique_quads,
)

log = logging.getLogger(__name__)


@dataclass
class MandateHolder:
    """A located mandataris and every quad it is the subject of."""

    uuid: str
    uri: URIRef
    quads: list[Quad] = field(default_factory=list)

    def live_quads(self, graveyard: URIRef) -> list[Quad]:
        return [q for q in self.quads if q.graph != graveyard]


@dataclass
class MoveResult:
    """Outcome of a graph move.

    ``deleted`` / ``inserted`` are the store acknowledgements; both are True
    when nothing matched, since no write was needed.
    """

    quads: list[Quad]
    deleted: bool = True
    inserted: bool = True

    @property
    def empty(self) -> bool:
        return not self.quads

    @property
    def acknowledged(self) -> bool:
        return self.deleted and self.inserted


# ---------------------------------------------------------------------------
# Locator
# ---------------------------------------------------------------------------

def locate(executor: QueryExecutor, vocab: Vocabulary, uuid: str) -> MandateHolder | None:
    """Resolve a uuid to the mandataris URI and its quads.

    Looks in every graph, the graveyard included, so a retried archive can
    still find an entity whose triples already moved. The first match wins.

    Returns
    -------
    MandateHolder | None
        ``None`` when no subject carries the identifier.
    """
    rows = bindings(executor.read(render_query("locate", vocab=vocab, uuid=uuid)))
    if not rows:
        return None
    uri = URIRef(rows[0]["mandataris"]["value"])

    quads = []
    for row in bindings(executor.read(render_query("entity_quads", subject=uri))):
        quads.append(Quad(
            subject=uri,
            predicate=URIRef(row["p"]["value"]),
            object=term_from_binding(row["o"]),
            graph=URIRef(row["g"]["value"]),
        ))
    return MandateHolder(uuid=uuid, uri=uri, quads=quads)


# ---------------------------------------------------------------------------
# Duplicate resolver
# ---------------------------------------------------------------------------

def find_duplicate(executor: QueryExecutor, vocab: Vocabulary, uri: URIRef) -> URIRef | None:
    """Return the URI this mandataris is marked ``owl:sameAs``, if any.

    Only live graphs count. The equivalence edge is one of the entity's own
    triples, so this has to run before those triples leave the live graphs.
    """
    query = render_query("find_duplicate", vocab=vocab, subject=uri)
    rows = bindings(executor.read(query))
    if not rows:
        return None
    return URIRef(rows[0]["duplicate"]["value"])


# ---------------------------------------------------------------------------
# Graph mover
# ---------------------------------------------------------------------------

def select_matching(
    executor: QueryExecutor,
    pattern: TriplePattern,
    exclude: URIRef,
) -> list[Quad]:
    """Read the quads matching ``pattern`` in every graph except ``exclude``."""
    query = render_query("select_matching", pattern=pattern, exclude=exclude)
    return unique_quads(pattern.resolve(row) for row in bindings(executor.read(query)))


def delete_matching(
    executor: QueryExecutor,
    pattern: TriplePattern,
    exclude: URIRef,
) -> bool:
    """Delete triples matching ``pattern`` from every graph except ``exclude``."""
    return executor.write(render_query("delete_matching", pattern=pattern, exclude=exclude))


def insert_quads(executor: QueryExecutor, quads: list[Quad], graph: URIRef) -> bool:
    """Insert the triples of ``quads`` into ``graph``. An empty list is a no-op."""
    if not quads:
        return True
    return executor.write(render_query("insert_data", quads=quads, graph=graph))


def move_triples(
    pattern: TriplePattern,
    destination: URIRef,
    *,
    source: QueryExecutor,
    target: QueryExecutor,
) -> MoveResult:
    """Relocate every triple matching ``pattern`` into ``destination``.

    Selection and deletion run with ``source``, insertion with ``target``.
    Nothing is inserted when the delete was refused, so a denied move never
    leaves the triples in both places.
    """
    quads = select_matching(source, pattern, destination)
    if not quads:
        return MoveResult(quads=[])

    result = MoveResult(quads=quads)
    result.deleted = delete_matching(source, pattern, destination)
    if not result.deleted:
        result.inserted = False
        return result
    result.inserted = insert_quads(target, quads, destination)
    return result


# ---------------------------------------------------------------------------
# Type reclassifier / annotation writer
# ---------------------------------------------------------------------------

def reclassify(executor: QueryExecutor, vocab: Vocabulary, uri: URIRef) -> bool:
    """Swap the live class for the archived class on the graveyard copy."""
    return executor.write(render_query("reclassify", vocab=vocab, subject=uri))


def annotate(executor: QueryExecutor, vocab: Vocabulary, uri: URIRef) -> bool:
    """Attach the history note to the graveyard copy, once."""
    return executor.write(render_query("annotate", vocab=vocab, subject=uri))


# ---------------------------------------------------------------------------
# Relationship rewriter
# ---------------------------------------------------------------------------

def move_duplication_info(
    executor: QueryExecutor,
    vocab: Vocabulary,
    uri: URIRef,
    duplicate: URIRef,
) -> bool:
    """Move the duplicate's ``owl:sameAs`` back-link and change note to the graveyard."""
    query = render_query("move_duplication_info", vocab=vocab, subject=uri, duplicate=duplicate)
    return executor.write(query)


def redirect_references(
    executor: QueryExecutor,
    vocab: Vocabulary,
    uri: URIRef,
    duplicate: URIRef,
) -> bool:
    """Point every live triple that references ``uri`` at ``duplicate`` instead."""
    query = render_query("redirect_references", vocab=vocab, subject=uri, duplicate=duplicate)
    return executor.write(query)


def inbound_pattern(uri: URIRef) -> TriplePattern:
    return TriplePattern(object=uri)


# ---------------------------------------------------------------------------
# Cache invalidator
# ---------------------------------------------------------------------------

def alias_targets(holder: MandateHolder, vocab: Vocabulary) -> list[URIRef]:
    """URIs the mandataris is an alias of (the person record it belongs to)."""
    targets = []
    for quad in holder.quads:
        if quad.predicate == vocab.alias_of and isinstance(quad.object, URIRef):
            if quad.object not in targets:
                targets.append(quad.object)
    return targets


def touch_entity(executor: QueryExecutor, vocab: Vocabulary, uri: URIRef) -> bool:
    """Delete and reinsert an entity's live triples in place.

    The data is unchanged; caches watching the graph see a change event.
    """
    log.debug("Touching %s to invalidate caches", uri)
    return executor.write(render_query("touch_entity", vocab=vocab, subject=uri))
