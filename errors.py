"""
errors.py
Exception types raised while replaying and auditing due dates.
"""


class DueDateError(Exception):
    """Base class for due-date replay failures."""
    pass


class ValidationError(DueDateError, ValueError):
    """Raised when an input record cannot be trusted (bad date, bad plan length)."""
    pass


class ComputationInvariantError(DueDateError):
    """Raised when a replay over a non-empty payment log produced no due date."""
    pass
