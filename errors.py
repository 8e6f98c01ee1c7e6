class LedgerError(ValueError):
    """Base class for every failure the ledger core raises to its callers."""


class ValidationError(LedgerError):
    pass


class NotFound(LedgerError):
    pass


class ReferenceViolation(LedgerError):
    """A foreign key could not be satisfied when a row was written.

    Usually means a referenced account or category disappeared between the
    caller looking it up and the write; retrying the whole operation is safe.
    """


class InvalidHierarchy(LedgerError):
    pass


class SelfParent(InvalidHierarchy):
    pass


class AccountInUse(ValidationError):
    pass


class StoreBusy(LedgerError):
    """Another writer held the store lock past the busy timeout; nothing was written."""
