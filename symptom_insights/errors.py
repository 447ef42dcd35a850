"""Exceptions raised by the correlation engine."""


class CorrelationEngineError(Exception):
    """Base class for correlation engine failures."""


class DataUnavailableError(CorrelationEngineError):
    """Repository fetch failed or returned malformed records."""


class ConfigurationError(CorrelationEngineError, ValueError):
    """Engine configuration is invalid."""
