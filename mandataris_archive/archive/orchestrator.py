"""Archive orchestrator: drives one mandataris through the archive state machine.

States::

    pending → located → duplicate_checked → live_triples_removed
            → copied_to_graveyard → type_reclassified → annotated
            → duplicate_branch_done | no_duplicate_branch_done → archived

``not_found`` ends a run before any mutation; ``failed`` ends it at the
first step that raises. Committed steps are never rolled back: every step
is a pattern-based delete/insert, so retrying the whole archive converges.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from rdflib import URIRef

from mandataris_archive.archive import steps
from mandataris_archive.config import (
    DEFAULTS,
    FIRST_MUTATING_STEP,
    Vocabulary,
    validate_access,
)
from mandataris_archive.errors import AuthorizationDenied, ExecutionFailure, NotFound
from mandataris_archive.store.executor import QueryExecutor
from mandataris_archive.store.terms import Quad, TriplePattern, from_nquads, to_nquads, unique_quads

log = logging.getLogger(__name__)


class ArchiveState(str, enum.Enum):
    PENDING = "pending"
    LOCATED = "located"
    DUPLICATE_CHECKED = "duplicate_checked"
    LIVE_TRIPLES_REMOVED = "live_triples_removed"
    COPIED_TO_GRAVEYARD = "copied_to_graveyard"
    TYPE_RECLASSIFIED = "type_reclassified"
    ANNOTATED = "annotated"
    DUPLICATE_BRANCH_DONE = "duplicate_branch_done"
    NO_DUPLICATE_BRANCH_DONE = "no_duplicate_branch_done"
    ARCHIVED = "archived"
    NOT_FOUND = "not_found"
    FAILED = "failed"


TERMINAL_STATES = frozenset({ArchiveState.ARCHIVED, ArchiveState.NOT_FOUND, ArchiveState.FAILED})

_LINEAR = {
    ArchiveState.PENDING: ArchiveState.LOCATED,
    ArchiveState.LOCATED: ArchiveState.DUPLICATE_CHECKED,
    ArchiveState.DUPLICATE_CHECKED: ArchiveState.LIVE_TRIPLES_REMOVED,
    ArchiveState.LIVE_TRIPLES_REMOVED: ArchiveState.COPIED_TO_GRAVEYARD,
    ArchiveState.COPIED_TO_GRAVEYARD: ArchiveState.TYPE_RECLASSIFIED,
    ArchiveState.TYPE_RECLASSIFIED: ArchiveState.ANNOTATED,
    ArchiveState.DUPLICATE_BRANCH_DONE: ArchiveState.ARCHIVED,
    ArchiveState.NO_DUPLICATE_BRANCH_DONE: ArchiveState.ARCHIVED,
}


def next_state(state: ArchiveState, has_duplicate: bool) -> ArchiveState:
    """Transition function of the archive state machine (success path)."""
    if state is ArchiveState.ANNOTATED:
        if has_duplicate:
            return ArchiveState.DUPLICATE_BRANCH_DONE
        return ArchiveState.NO_DUPLICATE_BRANCH_DONE
    if state in _LINEAR:
        return _LINEAR[state]
    raise ValueError(f"No transition out of terminal state '{state.value}'")


class StepOutcome(str, enum.Enum):
    APPLIED = "applied"
    NOOP = "noop"
    DENIED = "denied"


@dataclass
class StepResult:
    """What one step did."""

    state: ArchiveState
    outcome: StepOutcome
    capability: str | None = None
    detail: str | None = None


@dataclass
class ArchiveResult:
    """Final result of an archive run."""

    uuid: str
    state: ArchiveState
    uri: URIRef | None = None
    duplicate: URIRef | None = None
    steps: list[StepResult] = field(default_factory=list)
    failed_step: ArchiveState | None = None
    error: str | None = None
    run_id: int | None = None

    @property
    def ok(self) -> bool:
        return self.state is ArchiveState.ARCHIVED

    @property
    def not_found(self) -> bool:
        return self.state is ArchiveState.NOT_FOUND

    @property
    def failed(self) -> bool:
        return self.state is ArchiveState.FAILED

    @property
    def message(self) -> str:
        """Caller-facing description of a failed run."""
        target = self.uri or self.uuid
        return (
            f"Something unexpected happened while archiving the mandataris {target} "
            f"(step '{self.failed_step.value if self.failed_step else 'unknown'}'): {self.error}"
        )


@dataclass
class _Context:
    uuid: str
    holder: steps.MandateHolder | None = None
    duplicate: URIRef | None = None
    snapshot: list[Quad] = field(default_factory=list)
    authorized: bool = False
    run_id: int | None = None


class Archiver:
    """Runs the archive workflow for one mandataris at a time.

    Parameters
    ----------
    vocab:
        Graveyard graph, classes, predicates and annotation text.
    user:
        Executor running as the requesting user.
    sudo:
        Privileged executor; only used for writes once an as-user write
        has been acknowledged.
    access:
        Step name → ``"user"`` or ``"sudo"``. Defaults to the config defaults.
    on_write_denied:
        ``"fail"`` aborts on a non-acknowledged write, ``"log"`` logs it
        and continues.
    ledger:
        Optional :class:`~mandataris_archive.ledger.ArchiveLedger`.
    """

    def __init__(
        self,
        vocab: Vocabulary,
        user: QueryExecutor,
        sudo: QueryExecutor,
        access: dict[str, str] | None = None,
        on_write_denied: str = "fail",
        ledger: Any = None,
    ) -> None:
        self._vocab = vocab
        self._executors = {"user": user, "sudo": sudo}
        self._access = dict(DEFAULTS["access"])
        self._access.update(access or {})
        validate_access(self._access)
        if on_write_denied not in ("fail", "log"):
            raise ValueError(f"Unknown on_write_denied policy '{on_write_denied}'")
        self._on_write_denied = on_write_denied
        self._ledger = ledger
        self._handlers: dict[ArchiveState, Callable[[_Context], StepResult]] = {
            ArchiveState.LOCATED: self._locate,
            ArchiveState.DUPLICATE_CHECKED: self._check_duplicate,
            ArchiveState.LIVE_TRIPLES_REMOVED: self._remove_live_triples,
            ArchiveState.COPIED_TO_GRAVEYARD: self._copy_to_graveyard,
            ArchiveState.TYPE_RECLASSIFIED: self._reclassify,
            ArchiveState.ANNOTATED: self._annotate,
            ArchiveState.DUPLICATE_BRANCH_DONE: self._rewrite_to_duplicate,
            ArchiveState.NO_DUPLICATE_BRANCH_DONE: self._relocate_references,
            ArchiveState.ARCHIVED: self._finish,
        }

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def archive(self, uuid: str) -> ArchiveResult:
        """Archive the mandataris identified by ``uuid``.

        Never raises for workflow failures; inspect the returned result.
        """
        ctx = _Context(uuid=uuid)
        self._start_run(ctx)
        result = ArchiveResult(uuid=uuid, state=ArchiveState.PENDING, run_id=ctx.run_id)

        state = ArchiveState.PENDING
        while state not in TERMINAL_STATES:
            target = next_state(state, ctx.duplicate is not None)
            try:
                step = self._handlers[target](ctx)
            except NotFound as exc:
                log.info("%s", exc)
                result.state = ArchiveState.NOT_FOUND
                self._record_run(ctx, state=ArchiveState.NOT_FOUND.value)
                return result
            except Exception as exc:
                failure = exc if isinstance(exc, ExecutionFailure) else ExecutionFailure(
                    target.value, uuid, exc,
                )
                log.error(
                    "Archiving mandataris %s failed at '%s': %s",
                    ctx.holder.uri if ctx.holder else uuid, target.value, failure.cause,
                )
                result.state = ArchiveState.FAILED
                result.failed_step = target
                result.error = str(failure.cause)
                self._record_run(
                    ctx,
                    state=ArchiveState.FAILED.value,
                    failed_step=target.value,
                    error=result.error,
                )
                return self._fill(result, ctx)

            result.steps.append(step)
            self._record_step(ctx, step)
            log.info("Mandataris %s: %s (%s)", uuid, target.value, step.outcome.value)
            state = target

        result.state = state
        return self._fill(result, ctx)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _locate(self, ctx: _Context) -> StepResult:
        capability = self._access["located"]
        holder = steps.locate(self._executors[capability], self._vocab, ctx.uuid)
        if holder is None and ctx.snapshot:
            # Deleted but never copied by a failed run: only the snapshot is left.
            uri = ctx.snapshot[0].subject
            log.info("Mandataris %s only survives in a failed run's snapshot", uri)
            holder = steps.MandateHolder(uuid=ctx.uuid, uri=uri)
        if holder is None:
            raise NotFound(ctx.uuid)
        ctx.holder = holder
        self._record_run(ctx, mandataris=str(holder.uri))
        log.info("Archiving mandataris %s", holder.uri)
        return StepResult(
            ArchiveState.LOCATED, StepOutcome.APPLIED, capability,
            f"{len(holder.live_quads(self._vocab.graveyard))} live triple(s)",
        )

    def _check_duplicate(self, ctx: _Context) -> StepResult:
        capability = self._access["duplicate_checked"]
        duplicate = steps.find_duplicate(
            self._executors[capability], self._vocab, ctx.holder.uri,
        )
        if duplicate is None and ctx.duplicate is not None:
            log.info("Reusing duplicate %s captured by a failed run", ctx.duplicate)
            duplicate = ctx.duplicate
        ctx.duplicate = duplicate
        if duplicate is None:
            return StepResult(ArchiveState.DUPLICATE_CHECKED, StepOutcome.NOOP, capability)
        self._record_run(ctx, duplicate=str(duplicate))
        return StepResult(
            ArchiveState.DUPLICATE_CHECKED, StepOutcome.APPLIED, capability, str(duplicate),
        )

    def _remove_live_triples(self, ctx: _Context) -> StepResult:
        state = ArchiveState.LIVE_TRIPLES_REMOVED
        capability = self._access[FIRST_MUTATING_STEP]
        executor = self._executors[capability]
        pattern = TriplePattern(subject=ctx.holder.uri)

        selected = steps.select_matching(executor, pattern, self._vocab.graveyard)

        # Issued even when nothing matched: this write proves the caller's rights.
        acknowledged = steps.delete_matching(executor, pattern, self._vocab.graveyard)
        denied = self._check_write(ctx, state, capability, acknowledged)
        if denied:
            return denied

        # Only triples whose removal was acknowledged may be replayed by a retry.
        ctx.snapshot = unique_quads(ctx.snapshot + selected)
        self._record_run(ctx, snapshot=to_nquads(ctx.snapshot) if ctx.snapshot else None)
        outcome = StepOutcome.APPLIED if selected else StepOutcome.NOOP
        return StepResult(state, outcome, capability, f"{len(selected)} triple(s)")

    def _copy_to_graveyard(self, ctx: _Context) -> StepResult:
        state = ArchiveState.COPIED_TO_GRAVEYARD
        if not ctx.snapshot:
            return StepResult(state, StepOutcome.NOOP)
        capability, executor = self._writer(ctx, state)
        acknowledged = steps.insert_quads(executor, ctx.snapshot, self._vocab.graveyard)
        return self._check_write(ctx, state, capability, acknowledged) or StepResult(
            state, StepOutcome.APPLIED, capability, f"{len(ctx.snapshot)} triple(s)",
        )

    def _reclassify(self, ctx: _Context) -> StepResult:
        state = ArchiveState.TYPE_RECLASSIFIED
        capability, executor = self._writer(ctx, state)
        acknowledged = steps.reclassify(executor, self._vocab, ctx.holder.uri)
        return self._check_write(ctx, state, capability, acknowledged) or StepResult(
            state, StepOutcome.APPLIED, capability,
        )

    def _annotate(self, ctx: _Context) -> StepResult:
        state = ArchiveState.ANNOTATED
        capability, executor = self._writer(ctx, state)
        acknowledged = steps.annotate(executor, self._vocab, ctx.holder.uri)
        return self._check_write(ctx, state, capability, acknowledged) or StepResult(
            state, StepOutcome.APPLIED, capability,
        )

    def _rewrite_to_duplicate(self, ctx: _Context) -> StepResult:
        state = ArchiveState.DUPLICATE_BRANCH_DONE
        capability, executor = self._writer(ctx, state)
        uri, duplicate = ctx.holder.uri, ctx.duplicate

        acknowledged = steps.move_duplication_info(executor, self._vocab, uri, duplicate)
        denied = self._check_write(ctx, state, capability, acknowledged)
        if denied:
            return denied
        acknowledged = steps.redirect_references(executor, self._vocab, uri, duplicate)
        return self._check_write(ctx, state, capability, acknowledged) or StepResult(
            state, StepOutcome.APPLIED, capability, f"references now point at {duplicate}",
        )

    def _relocate_references(self, ctx: _Context) -> StepResult:
        state = ArchiveState.NO_DUPLICATE_BRANCH_DONE
        capability, executor = self._writer(ctx, state)

        # Cache touch first, while the associated records still look pre-archive.
        for target in steps.alias_targets(self._holder_with_snapshot(ctx), self._vocab):
            acknowledged = steps.touch_entity(executor, self._vocab, target)
            denied = self._check_write(ctx, state, capability, acknowledged)
            if denied:
                return denied

        moved = steps.move_triples(
            steps.inbound_pattern(ctx.holder.uri),
            self._vocab.graveyard,
            source=executor,
            target=executor,
        )
        denied = self._check_write(ctx, state, capability, moved.acknowledged)
        if denied:
            return denied
        outcome = StepOutcome.NOOP if moved.empty else StepOutcome.APPLIED
        return StepResult(state, outcome, capability, f"{len(moved.quads)} reference(s) relocated")

    def _finish(self, ctx: _Context) -> StepResult:
        log.info("Mandataris %s archived", ctx.holder.uri)
        return StepResult(ArchiveState.ARCHIVED, StepOutcome.APPLIED)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _writer(self, ctx: _Context, state: ArchiveState) -> tuple[str, QueryExecutor]:
        capability = self._access[state.value]
        if capability == "sudo" and not ctx.authorized:
            raise AuthorizationDenied(state.value, capability)
        return capability, self._executors[capability]

    def _check_write(
        self, ctx: _Context, state: ArchiveState, capability: str, acknowledged: bool,
    ) -> StepResult | None:
        """Apply the denied-write policy. Returns a DENIED result or None."""
        if acknowledged:
            if capability == "user":
                ctx.authorized = True
            return None
        if self._on_write_denied == "fail":
            raise AuthorizationDenied(state.value, capability)
        log.warning(
            "Write not acknowledged during '%s' (%s); continuing", state.value, capability,
        )
        return StepResult(state, StepOutcome.DENIED, capability, "write not acknowledged")

    @staticmethod
    def _holder_with_snapshot(ctx: _Context) -> steps.MandateHolder:
        quads = unique_quads(ctx.holder.quads + ctx.snapshot)
        return steps.MandateHolder(uuid=ctx.uuid, uri=ctx.holder.uri, quads=quads)

    @staticmethod
    def _fill(result: ArchiveResult, ctx: _Context) -> ArchiveResult:
        if ctx.holder is not None:
            result.uri = ctx.holder.uri
        result.duplicate = ctx.duplicate
        return result

    # ------------------------------------------------------------------
    # Ledger bookkeeping
    # ------------------------------------------------------------------

    def _start_run(self, ctx: _Context) -> None:
        if self._ledger is None:
            return
        previous = self._ledger.last_failed_run(ctx.uuid)
        if previous is not None and not self._removal_committed(previous):
            log.info(
                "Failed run %d never removed live triples; starting over", previous["id"],
            )
            previous = None
        if previous is not None:
            log.info(
                "Resuming after failed run %d (failed at '%s')",
                previous["id"], previous["failed_step"],
            )
            if previous["duplicate"]:
                ctx.duplicate = URIRef(previous["duplicate"])
            if previous["snapshot"]:
                ctx.snapshot = from_nquads(previous["snapshot"])
        ctx.run_id = self._ledger.create_run(ctx.uuid)

    def _removal_committed(self, run: dict[str, Any]) -> bool:
        """Whether ``run`` got an acknowledged delete of the live triples."""
        if run["failed_step"] == ArchiveState.LIVE_TRIPLES_REMOVED.value:
            return False
        return any(
            step["state"] == ArchiveState.LIVE_TRIPLES_REMOVED.value
            and step["outcome"] != StepOutcome.DENIED.value
            for step in self._ledger.get_steps(run["id"])
        )

    def _record_step(self, ctx: _Context, step: StepResult) -> None:
        if self._ledger is not None and ctx.run_id is not None:
            self._ledger.record_step(
                ctx.run_id, step.state.value, step.outcome.value, step.capability, step.detail,
            )

    def _record_run(self, ctx: _Context, **fields: Any) -> None:
        if self._ledger is not None and ctx.run_id is not None:
            self._ledger.update_run(ctx.run_id, **fields)
