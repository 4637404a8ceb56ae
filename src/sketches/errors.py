class HyperLogLogError(Exception):
    """Base class for every error raised by the HyperLogLog sketch."""


class InvalidConfiguration(HyperLogLogError, ValueError):
    """Raised when an estimator cannot be built from the given settings."""

    def __init__(self, message: str, register_count=None):
        self.register_count = register_count
        super().__init__(message)


class IncompatibleEstimators(HyperLogLogError, ValueError):
    """Raised when two estimators with different register counts are combined."""

    def __init__(self, left: int, right: int):
        self.left = left
        self.right = right
        super().__init__(
            f"number of registers doesn't match: {left} != {right}"
        )


class SerializationFailure(HyperLogLogError):
    """Raised when the register state cannot be encoded as text."""


class DeserializationFailure(HyperLogLogError, ValueError):
    """Raised when a snapshot cannot be decoded into an estimator."""
