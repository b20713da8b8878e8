"""
Exception hierarchy for the installment ledger.

Every error derives from ``ValueError`` so callers that only know about
``ValueError`` keep catching them.
"""


class LedgerError(ValueError):
    """Base exception for all ledger errors."""


class NotFoundError(LedgerError):
    """A referenced loan, installment or calendar exception does not exist."""


class LoanNotFoundError(NotFoundError):
    """Raised when a loan id does not resolve."""


class InstallmentNotFoundError(NotFoundError):
    """Raised when an installment (payment record) id does not resolve."""


class CalendarExceptionNotFoundError(NotFoundError):
    """Raised when a calendar exception id does not resolve."""


class InvalidStateError(LedgerError):
    """The loan is in a state that does not accept the operation."""


class ValidationError(LedgerError):
    """Input rejected before touching the ledger (amounts, fields, scope)."""


class DegradedDependencyError(LedgerError):
    """A collaborator (e.g. the skipped-date service) could not be reached."""


class ArithmeticAnomalyError(LedgerError):
    """Loan configuration would make coverage math undefined."""
