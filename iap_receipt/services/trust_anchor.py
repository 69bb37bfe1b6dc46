"""
Trust anchor - the storefront root certificate every receipt must chain to.

Apple Inc. Root Certificate ships with the package and is used unless
ROOT_CERTIFICATE_PATH names another root. The anchor is loaded once by the
caller and passed into each verification call. Nothing here is cached at
module level, so tests can verify against a throwaway CA.
"""

from dataclasses import dataclass
from importlib import resources
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives.asymmetric.types import CertificatePublicKeyTypes
from structlog import get_logger

from iap_receipt.config import ConfigurationError, Settings

logger = get_logger(__name__)

_PEM_MARKER = b"-----BEGIN"

# https://www.apple.com/appleca/AppleIncRootCertificate.cer
BUNDLED_ROOT_CERTIFICATE = "AppleIncRootCertificate.cer"


@dataclass(frozen=True)
class TrustAnchor:
    """Immutable root certificate used for chain validation."""

    certificate: x509.Certificate

    @classmethod
    def from_der(cls, data: bytes) -> "TrustAnchor":
        """Load anchor from DER bytes."""
        try:
            return cls(x509.load_der_x509_certificate(data))
        except ValueError as e:
            raise ConfigurationError(f"Invalid DER trust anchor: {e}") from e

    @classmethod
    def from_pem(cls, data: bytes) -> "TrustAnchor":
        """Load anchor from PEM bytes."""
        try:
            return cls(x509.load_pem_x509_certificate(data))
        except ValueError as e:
            raise ConfigurationError(f"Invalid PEM trust anchor: {e}") from e

    @classmethod
    def from_file(cls, path: str | Path) -> "TrustAnchor":
        """Load anchor from a DER (.cer) or PEM (.pem) file."""
        try:
            data = Path(path).read_bytes()
        except OSError as e:
            raise ConfigurationError(f"Unable to read trust anchor {path}: {e}") from e
        if data.lstrip().startswith(_PEM_MARKER):
            return cls.from_pem(data)
        return cls.from_der(data)

    @classmethod
    def bundled(cls) -> "TrustAnchor":
        """Load the Apple Inc. root certificate shipped with the package."""
        resource = resources.files("iap_receipt") / "resources" / BUNDLED_ROOT_CERTIFICATE
        try:
            data = resource.read_bytes()
        except OSError as e:
            raise ConfigurationError(f"Bundled trust anchor is missing: {e}") from e
        return cls.from_der(data)

    @property
    def subject(self) -> str:
        """RFC 4514 subject of the root certificate."""
        return self.certificate.subject.rfc4514_string()

    def public_key(self) -> CertificatePublicKeyTypes:
        """Public key of the root certificate."""
        return self.certificate.public_key()


def load_trust_anchor(config: Settings) -> TrustAnchor:
    """
    Load the configured trust anchor, or the bundled Apple root when none is set.

    Raises:
        ConfigurationError: If the configured file is unreadable or not a certificate
    """
    if config.root_certificate_path:
        anchor = TrustAnchor.from_file(config.root_certificate_path)
        source = config.root_certificate_path
    else:
        anchor = TrustAnchor.bundled()
        source = BUNDLED_ROOT_CERTIFICATE

    logger.info("trust_anchor_loaded", source=source, subject=anchor.subject)
    return anchor
