"""Exception hierarchy for tabula."""


class TabulaError(Exception):
    """Base exception for all tabula errors."""


class ConfigurationError(TabulaError):
    """Missing or invalid settings for an external call (e.g. no API key)."""


class AIRequestError(TabulaError):
    """The classifier/summarizer call failed or returned nothing usable."""


class AIParseError(AIRequestError):
    """The model response did not contain a parsable JSON array."""


class StorageError(TabulaError):
    """A persisted document or screenshot could not be written."""


class CommandChannelError(TabulaError):
    """A command could not be delivered to any browser listener."""
