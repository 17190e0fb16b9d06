"""Failure taxonomy for benchmark setup and query phases.

Every failure names the backend it came from and the phase it happened in,
so a report can say where a run broke without inspecting tracebacks.
"""

from __future__ import annotations

PHASE_SETUP = "setup"
PHASE_QUERY = "query"


class TagPerfError(Exception):
    phase: str | None = None

    def __init__(self, message, cause=None, *, backend=None, phase=None):
        self.message = message
        self.cause = cause
        self.backend = backend
        if phase is not None:
            self.phase = phase
        super().__init__(message)

    def __str__(self):
        prefix = ""
        if self.backend is not None:
            prefix = f"[{self.backend}/{self.phase or 'unknown'}] "
        if self.cause is None:
            return prefix + str(self.message)
        return f"{prefix}{self.message}: {self.cause!r}"


class SetupFailure(TagPerfError):
    phase = PHASE_SETUP


class SchemaTeardownFailure(SetupFailure):
    pass


class IDResolutionFailure(SetupFailure):
    pass


class DuplicateTag(IDResolutionFailure):
    def __init__(self, name, cause=None, *, backend=None):
        self.tag_name = name
        super().__init__(f"tag {name!r} is already registered", cause, backend=backend)


class BatchWriteFailure(SetupFailure):
    def __init__(self, message, cause=None, *, backend=None, batch_number=None, batch_size=None):
        self.batch_number = batch_number
        self.batch_size = batch_size
        super().__init__(message, cause, backend=backend)


class QueryExecutionFailure(TagPerfError):
    phase = PHASE_QUERY

    def __init__(self, message, cause=None, *, backend=None, predicate=None):
        self.predicate = predicate
        super().__init__(message, cause, backend=backend)


class PredicateTranslationMismatch(TagPerfError):
    phase = PHASE_QUERY

    def __init__(self, message, *, mismatches=()):
        self.mismatches = tuple(mismatches)
        super().__init__(message)
