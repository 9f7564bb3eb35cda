"""
Ledger Error Taxonomy

Every failure the ledger core can produce derives from LedgerError so callers
can catch the whole family at a boundary. Only StoreError and SigningError are
meant to reach a user; the rest describe untrusted input that the
synchronizer absorbs.
"""


class LedgerError(Exception):
    """Base class for all ledger errors."""
    pass


class DecodeError(LedgerError):
    """Raised when wire bytes or records cannot be decoded."""
    pass


class VerificationError(LedgerError):
    """Raised when a transaction signature does not verify."""
    pass


class IntegrityError(LedgerError):
    """Raised on a hash mismatch or broken linkage."""
    pass


class DuplicateError(LedgerError):
    """Raised when a block or transaction has already been seen."""
    pass


class StoreError(LedgerError):
    """Raised when the durable store fails to read or write."""
    pass


class SigningError(LedgerError):
    """Raised when key material is unavailable or signing fails."""
    pass
