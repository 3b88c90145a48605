class SchoolFinError(Exception):
    """Base exception for finance rule violations."""


class InvalidInputError(SchoolFinError, ValueError):
    """Raised when input is rejected at the boundary before any computation."""


class NotFoundError(SchoolFinError, LookupError):
    """Raised when a referenced student, staff member, template or line does not exist."""


class WorksheetFinalizedError(SchoolFinError):
    """Raised when a finalized or discarded worksheet is mutated."""


class PersistenceError(SchoolFinError):
    """Raised when the payroll history store fails or times out during finalize."""


class AlreadyFinalizedError(PersistenceError):
    """Raised when a payroll batch already exists for the period."""
