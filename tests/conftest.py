"""Shared fixtures: an in-memory dataset holding a mandataris and its neighbours."""

from __future__ import annotations

import pytest
from rdflib import Dataset, Literal, URIRef
from rdflib.namespace import RDF

from mandataris_archive.config import Vocabulary, load_config
from mandataris_archive.store.executor import DatasetExecutor

LIVE_GRAPH = URIRef("http://mu.semte.ch/graphs/organizations/kortrijk/LoketLB-mandaatGebruiker")
PUBLIC_GRAPH = URIRef("http://mu.semte.ch/graphs/public")

UUID = "abc-123"
MANDATARIS = URIRef("http://data.lblod.info/id/mandatarissen/abc-123")
DUPLICATE = URIRef("http://data.lblod.info/id/mandatarissen/dup-456")
PERSON = URIRef("http://data.lblod.info/id/personen/p-1")
FRACTIE = URIRef("http://data.lblod.info/id/fracties/f-1")
OTHER = URIRef("http://data.lblod.info/id/mandatarissen/other-789")

FOO = URIRef("http://example.org/foo")
HAS_MEMBER = URIRef("http://www.w3.org/ns/org#hasMember")
NAME = URIRef("http://xmlns.com/foaf/0.1/name")
PERSON_CLASS = URIRef("http://www.w3.org/ns/person#Person")

CONFIG = load_config()
VOCAB = Vocabulary.from_config(CONFIG)
GRAVEYARD = VOCAB.graveyard


def seed_mandataris(ds: Dataset, duplicate: bool = False) -> Dataset:
    """Populate ``ds`` with the abc-123 mandataris, its person and a fractie."""
    live = ds.graph(LIVE_GRAPH)
    live.add((MANDATARIS, VOCAB.identifier, Literal(UUID)))
    live.add((MANDATARIS, RDF.type, VOCAB.live_class))
    live.add((MANDATARIS, VOCAB.alias_of, PERSON))
    live.add((MANDATARIS, FOO, Literal("bar")))

    live.add((PERSON, RDF.type, PERSON_CLASS))
    live.add((PERSON, NAME, Literal("Jan Janssens", lang="nl")))

    ds.graph(PUBLIC_GRAPH).add((FRACTIE, HAS_MEMBER, MANDATARIS))

    # Someone else's archived record already in the graveyard.
    graveyard = ds.graph(GRAVEYARD)
    graveyard.add((OTHER, RDF.type, VOCAB.archived_class))
    graveyard.add((OTHER, VOCAB.history_note, Literal(VOCAB.annotation)))

    if duplicate:
        live.add((MANDATARIS, VOCAB.same_as, DUPLICATE))
        live.add((MANDATARIS, VOCAB.change_note, Literal("Merged into dup-456")))
        live.add((DUPLICATE, RDF.type, VOCAB.live_class))
        live.add((DUPLICATE, VOCAB.identifier, Literal("dup-456")))
        live.add((DUPLICATE, VOCAB.same_as, MANDATARIS))
        live.add((DUPLICATE, VOCAB.change_note, Literal("Duplicate of abc-123")))
    return ds


def graphs_of(ds: Dataset, triple: tuple) -> set[URIRef]:
    """Named graphs holding ``triple``."""
    s, p, o = triple
    return {URIRef(getattr(g, "identifier", g)) for _, _, _, g in ds.quads((s, p, o, None))}


def snapshot(ds: Dataset) -> set[tuple]:
    """Every quad in the dataset, graph identifiers normalised."""
    return {
        (s, p, o, URIRef(getattr(g, "identifier", g)))
        for s, p, o, g in ds.quads((None, None, None, None))
    }


@pytest.fixture
def vocab() -> Vocabulary:
    return VOCAB


@pytest.fixture
def dataset() -> Dataset:
    return seed_mandataris(Dataset())


@pytest.fixture
def dup_dataset() -> Dataset:
    return seed_mandataris(Dataset(), duplicate=True)


@pytest.fixture
def user(dataset: Dataset) -> DatasetExecutor:
    return DatasetExecutor(dataset)


@pytest.fixture
def sudo(dataset: Dataset, user: DatasetExecutor) -> DatasetExecutor:
    return DatasetExecutor(dataset, sudo=True, calls=user.calls)
