from __future__ import annotations


class EngineError(Exception):
    pass


class ValidationError(EngineError):
    """Malformed input. Nothing was written."""


class PreconditionError(EngineError):
    """Operation requested in the wrong state. Nothing was written."""


class NotFoundError(PreconditionError):
    pass


class SeedCountError(ValidationError, PreconditionError):
    """Playoff seeding called with the wrong number of competitors."""


class ConsistencyError(EngineError):
    """An internal invariant does not hold; the enclosing transaction is aborted."""


class ConcurrencyConflict(EngineError):
    """A competing writer won. Retry the whole operation."""
