"""mandataris-archive: move mandataris records into a graveyard graph."""

__version__ = "0.1.0"
