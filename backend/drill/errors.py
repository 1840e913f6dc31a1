"""Exceptions raised by the drill session engine."""


class DrillError(Exception):
    """Base class for session engine errors."""


class EmptyPoolError(DrillError):
    """No catalog words matched the session filters."""


class PoolUnavailableError(DrillError):
    """The word pool could not be reached. Safe to retry."""


class PersistenceError(DrillError):
    """A durable progress write failed. The in-memory result log is unaffected."""


class InvalidTransitionError(DrillError):
    """An action was invoked in a state that does not accept it."""
