"""Exceptions raised by the progression engine."""


# ========== Base Exception ==========


class ProgressionError(Exception):
    """Base exception for all progression engine errors."""

    pass


# ========== Input Exceptions ==========


class ConfigurationError(ProgressionError, ValueError):
    """Raised when engine inputs are invalid (team lists, group counts, opening pair, selections).

    Raised before any fixture is produced. Never retried.
    """

    pass


# ========== State Exceptions ==========


class StateTransitionError(ProgressionError):
    """Raised when a tournament status change is not in the transition table."""

    def __init__(self, current, requested, message: str = None):
        self.current = current
        self.requested = requested
        super().__init__(message or f"Cannot change tournament status from '{current}' to '{requested}'")


class InsufficientDataError(ProgressionError):
    """Raised when fewer than two teams are available to build a knockout round."""

    pass
