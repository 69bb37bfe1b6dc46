"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.

Every failure of a single parse call surfaces as exactly one ReceiptError
subclass. Trust failures (NoSignerError, SignatureInvalidError) are kept
apart from format failures so callers can tell a forged receipt from a
corrupted one.
"""


class ReceiptError(Exception):
    """Base exception for all receipt validation errors."""

    pass


class MalformedEncodingError(ReceiptError):
    """Raised when the binary structure is truncated, inconsistent or too deep."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Malformed encoding: {message}")


class FieldDecodeError(ReceiptError):
    """Raised when a known tag's value does not decode as its expected type."""

    def __init__(self, tag: int, message: str) -> None:
        self.tag = tag
        self.message = message
        super().__init__(f"Unable to decode field {tag}: {message}")


class DateParseError(ReceiptError):
    """Raised when a timestamp does not match YYYY-MM-DDThh:mm:ssZ."""

    def __init__(self, value: str) -> None:
        self.value = value
        super().__init__(f"Invalid timestamp: {value!r}")


class NoSignerError(ReceiptError):
    """Raised when the signed envelope carries no signer information."""

    def __init__(self) -> None:
        super().__init__("Signed envelope has no signers")


class SignatureInvalidError(ReceiptError):
    """Raised when no signer chains to the trust anchor."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Signature invalid: {message}")


class IdentityMismatchError(ReceiptError):
    """Raised when the receipt belongs to a different application."""

    def __init__(self, expected: str, actual: str | None) -> None:
        self.expected = expected
        self.actual = actual
        decoded = repr(actual) if actual is not None else "absent"
        super().__init__(f"Invalid bundle_id: {decoded} (expected {expected!r})")
