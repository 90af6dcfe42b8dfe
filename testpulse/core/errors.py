class TestPulseError(Exception):
    """Base class for every error raised by testpulse."""


class ConfigurationError(TestPulseError):
    """Unknown backend name or a missing connection parameter.

    Raised while resolving the storage backend, before any query runs.
    """


class StorageError(TestPulseError):
    """A connection, statement or transaction failure inside a gateway."""


class RollbackError(StorageError):
    """A write failed and rolling the transaction back failed too.

    Both failures are kept so neither is lost.
    """

    def __init__(self, cause: Exception, rollback_error: Exception, phase: str):
        self.cause = cause
        self.rollback_error = rollback_error
        self.phase = phase
        super().__init__(
            f"failed to {phase}: {cause}; "
            f"error occurred during rollback: {rollback_error}"
        )
