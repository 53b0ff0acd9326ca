"""Archive workflow: move a mandataris into the graveyard graph.

Main entry point: :class:`Archiver`. ``Archiver.archive(uuid)`` runs the
state machine and returns an :class:`ArchiveResult`.
"""

from mandataris_archive.archive.orchestrator import (
    ArchiveResult,
    ArchiveState,
    Archiver,
    StepOutcome,
    StepResult,
    TERMINAL_STATES,
    next_state,
)
from mandataris_archive.archive.steps import MandateHolder, MoveResult

__all__ = [
    "ArchiveResult",
    "ArchiveState",
    "Archiver",
    "MandateHolder",
    "MoveResult",
    "StepOutcome",
    "StepResult",
    "TERMINAL_STATES",
    "next_state",
]
