"""Exceptions raised by the archive workflow and its store adapters."""

from __future__ import annotations


class ArchiveError(Exception):
    """Base class for archive workflow failures."""


class StoreError(ArchiveError):
    """The triple store could not be reached or answered with an error."""


class NotFound(ArchiveError):
    """No mandataris carries the requested identifier."""

    def __init__(self, uuid: str) -> None:
        super().__init__(f"Mandataris with uuid {uuid} not found.")
        self.uuid = uuid


class AuthorizationDenied(ArchiveError):
    """A write was executed but the store did not acknowledge it."""

    def __init__(self, step: str, capability: str) -> None:
        super().__init__(f"Write not acknowledged during '{step}' ({capability})")
        self.step = step
        self.capability = capability


class ExecutionFailure(ArchiveError):
    """A workflow step raised; the remaining steps were not run."""

    def __init__(self, step: str, uuid: str, cause: BaseException) -> None:
        super().__init__(f"Step '{step}' failed for mandataris {uuid}: {cause}")
        self.step = step
        self.uuid = uuid
        self.cause = cause
