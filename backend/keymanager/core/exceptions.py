"""Key manager exception hierarchy."""

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from keymanager.core.reconciler import ReconciliationReport


class KeyManagerError(Exception):
    """Base exception for key manager operations."""
    pass


class UnsupportedKeyTypeError(KeyManagerError):
    """Key type, key spec or signing option has no mapping.

    ``recognized`` is True for values the key manager knows about but
    deliberately refuses (RSA-1024), False for unknown values.
    """

    def __init__(self, message: str, recognized: bool = False):
        super().__init__(message)
        self.recognized = recognized


class KeyNotFoundError(KeyManagerError):
    """Logical key id has no current entry."""
    pass


class KMSError(KeyManagerError):
    """A call to the KMS backend failed.

    The originating botocore exception (if any) is chained as ``__cause__``.
    """

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.code = code


class KMSAuthenticationError(KMSError):
    """KMS credentials missing or rejected."""
    pass


class KMSTimeoutError(KMSError):
    """KMS call did not complete before the operation timeout."""
    pass


class ConfigurationError(KeyManagerError):
    """Configuration missing, malformed, or key manager not configured."""
    pass


class ReconciliationError(KeyManagerError):
    """One or more KMS keys could not be reconciled at startup."""

    def __init__(self, message: str, report: "ReconciliationReport"):
        super().__init__(message)
        self.report = report


class InvalidKeyLabelError(KeyManagerError):
    """KMS key carries the ownership tag but its label holds no key id."""
    pass
