# collector/errors.py
#
# Failure taxonomy for the collector. Everything derives from RuntimeError so
# callers that only know "device/IO went wrong" keep working.


class CollectorError(RuntimeError):
    """Base class for collector failures."""


class ConfigurationError(CollectorError):
    """Invalid range, missing output file, interval too short, bad import file."""


class TransportError(CollectorError):
    """Timeout, refused connection or device fault while reading registers."""


class DecodeError(CollectorError):
    """Unsupported data type or malformed word pairing."""


class ValidationError(CollectorError):
    """A batch failed validation badly enough that it must not be persisted."""

    def __init__(self, message: str, errors=None):
        super().__init__(message)
        self.errors = list(errors or [])


class PersistenceError(CollectorError):
    """The CSV sink could not be initialized or appended to."""
