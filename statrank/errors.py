"""Exception taxonomy for the statrank engine."""


class StatRankError(Exception):
    """Base class for all statrank errors."""


class ValidationError(StatRankError, ValueError):
    """An input record is malformed or missing required key fields.

    Always recoverable by skipping the record.
    """


class ConflictError(StatRankError):
    """A store write for a single key failed (unique violation, lost race)."""


class NotFoundError(StatRankError, LookupError):
    """A query matched nothing where the caller expected at least one row."""


class FatalError(StatRankError, RuntimeError):
    """The whole operation cannot continue (store unreachable, source missing)."""


class BatchAbortedError(FatalError):
    """A batch merge stopped on a fatal store error.

    ``result`` holds the partial :class:`~statrank.engine.merger.BatchResult`;
    every key that was not written is counted in ``result.errors``.
    """

    def __init__(self, message: str, result) -> None:
        super().__init__(message)
        self.result = result
