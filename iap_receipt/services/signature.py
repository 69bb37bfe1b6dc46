"""
Signature & Chain Verifier for storefront receipt envelopes.

A receipt is a CMS (PKCS#7) SignedData message. Verification succeeds when
some signer's signature checks out against an embedded certificate, that
certificate was signed by an embedded intermediate, and the intermediate
was signed by the trust anchor.

The envelope may carry several signers and several candidate
intermediates, so the trust decision is a search over
signers x certificates x intermediates. Exactly one intermediate sits
between leaf and root; longer chains are reported as no match.

Everything the search compares is read while unwrapping, so an unreadable
certificate or signer fails as MalformedEncodingError before any trust
decision is made.

https://developer.apple.com/library/archive/releasenotes/General/ValidateAppStoreReceipt/Chapters/ValidateLocally.html
"""

import hmac
from collections.abc import Iterator
from dataclasses import dataclass

from asn1crypto import cms, core
from asn1crypto import x509 as asn1_x509
from cryptography import x509
from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, padding, rsa
from cryptography.hazmat.primitives.asymmetric.types import CertificatePublicKeyTypes
from cryptography.x509.oid import SignatureAlgorithmOID
from structlog import get_logger

from iap_receipt.exceptions import MalformedEncodingError, NoSignerError, SignatureInvalidError
from iap_receipt.services.der import DecodeLimits, decode
from iap_receipt.services.trust_anchor import TrustAnchor

logger = get_logger(__name__)

_HASHES: dict[str, type[hashes.HashAlgorithm]] = {
    "sha1": hashes.SHA1,
    "sha224": hashes.SHA224,
    "sha256": hashes.SHA256,
    "sha384": hashes.SHA384,
    "sha512": hashes.SHA512,
}

# DER identifier of SET; signed attributes are signed as a SET, not as [0]
_SET_TAG = b"\x31"


@dataclass(frozen=True)
class EmbeddedCertificate:
    """Certificate carried in the envelope, with its identifying fields pre-read."""

    asn1: asn1_x509.Certificate
    certificate: x509.Certificate  # signature checks
    subject: str  # normalized name, comparable with issuer
    issuer: str
    serial_number: int
    key_identifier: bytes | None


@dataclass(frozen=True)
class EnvelopeSigner:
    """Signer info and the certificate identifier it names."""

    info: cms.SignerInfo
    issuer: str | None = None
    serial_number: int | None = None
    key_identifier: bytes | None = None


@dataclass(frozen=True)
class SignedEnvelope:
    """Contents of a SignedData message needed for the trust decision."""

    certificates: tuple[EmbeddedCertificate, ...]
    signers: tuple[EnvelopeSigner, ...]
    content_type: str
    content: bytes


@dataclass(frozen=True)
class TrustedChain:
    """The signer, leaf and intermediate that satisfied every check."""

    signer: EnvelopeSigner
    leaf: EmbeddedCertificate
    intermediate: EmbeddedCertificate


def _embedded_certificates(certificate_set: cms.CertificateSet | core.Void) -> Iterator[EmbeddedCertificate]:
    if isinstance(certificate_set, core.Void):
        return
    for choice in certificate_set:
        # Attribute and legacy extended certificates cannot sign anything
        if choice.name != "certificate":
            continue
        cert = choice.chosen
        yield EmbeddedCertificate(
            asn1=cert,
            certificate=x509.load_der_x509_certificate(cert.dump()),
            subject=cert.subject.hashable,
            issuer=cert.issuer.hashable,
            serial_number=cert.serial_number,
            key_identifier=cert.key_identifier,
        )


def _envelope_signer(info: cms.SignerInfo) -> EnvelopeSigner:
    # Force the lazy parser so malformed signer infos fail here
    info.native
    sid = info["sid"]
    if sid.name == "issuer_and_serial_number":
        return EnvelopeSigner(
            info,
            issuer=sid.chosen["issuer"].hashable,
            serial_number=sid.chosen["serial_number"].native,
        )
    return EnvelopeSigner(info, key_identifier=sid.chosen.native)


def unwrap_envelope(data: bytes, *, limits: DecodeLimits = DecodeLimits()) -> SignedEnvelope:
    """
    Parse a SignedData envelope without making any trust decision.

    Raises:
        MalformedEncodingError: If the envelope is oversized, truncated, unreadable or not SignedData
        NoSignerError: If the envelope has no signer infos
    """
    limits.check_size(data)
    elements = decode(data, max_depth=limits.max_depth)
    if len(elements) != 1:
        raise MalformedEncodingError(f"expected one signed envelope, found {len(elements)} elements")

    try:
        content_info = cms.ContentInfo.load(bytes(data))
        content_type = content_info["content_type"].native
        if content_type != "signed_data":
            raise MalformedEncodingError(f"expected signed_data envelope, got {content_type}")

        signed_data = content_info["content"]
        certificates = tuple(_embedded_certificates(signed_data["certificates"]))
        signers = tuple(_envelope_signer(info) for info in signed_data["signer_infos"])
        encap_content_info = signed_data["encap_content_info"]
        encap_content_type = encap_content_info["content_type"].native
        content = encap_content_info["content"].native
    except (ValueError, TypeError, KeyError, x509.InvalidVersion) as e:
        raise MalformedEncodingError(f"unreadable signed envelope: {e}") from e

    if not signers:
        raise NoSignerError()
    if not isinstance(content, bytes):
        raise MalformedEncodingError("signed envelope carries no receipt content")

    return SignedEnvelope(
        certificates=certificates,
        signers=signers,
        content_type=encap_content_type,
        content=content,
    )


def _public_key(certificate: x509.Certificate) -> CertificatePublicKeyTypes | None:
    try:
        return certificate.public_key()
    except (ValueError, UnsupportedAlgorithm):
        return None


def _verify_signature(
    key: CertificatePublicKeyTypes | None,
    signature: bytes,
    data: bytes,
    hash_algorithm: hashes.HashAlgorithm | None,
    pss: bool = False,
) -> bool:
    try:
        if isinstance(key, ed25519.Ed25519PublicKey):
            key.verify(signature, data)
        elif hash_algorithm is None:
            return False
        elif isinstance(key, rsa.RSAPublicKey):
            scheme = (
                padding.PSS(mgf=padding.MGF1(hash_algorithm), salt_length=padding.PSS.AUTO)
                if pss
                else padding.PKCS1v15()
            )
            key.verify(signature, data, scheme, hash_algorithm)
        elif isinstance(key, ec.EllipticCurvePublicKey):
            key.verify(signature, data, ec.ECDSA(hash_algorithm))
        else:
            return False
    except InvalidSignature:
        return False
    return True


def _issued_by(child: x509.Certificate, issuer_key: CertificatePublicKeyTypes | None) -> bool:
    """Check child's signature was made with issuer_key."""
    try:
        hash_algorithm = child.signature_hash_algorithm
        pss = child.signature_algorithm_oid == SignatureAlgorithmOID.RSASSA_PSS
    except (UnsupportedAlgorithm, ValueError):
        return False
    return _verify_signature(
        issuer_key, child.signature, child.tbs_certificate_bytes, hash_algorithm, pss=pss
    )


def _signed_attribute(signed_attrs: cms.CMSAttributes, name: str) -> object | None:
    """Value of a single-valued signed attribute, or None when absent or multi-valued."""
    for attribute in signed_attrs:
        if attribute["type"].native == name:
            values = attribute["values"]
            return values[0].native if len(values) == 1 else None
    return None


def _digest(hash_algorithm: hashes.HashAlgorithm, content: bytes) -> bytes:
    digest = hashes.Hash(hash_algorithm)
    digest.update(content)
    return digest.finalize()


def _signer_signature_valid(
    signer: cms.SignerInfo, certificate: x509.Certificate, envelope: SignedEnvelope
) -> bool:
    """
    Check one signer's signature with one candidate certificate.

    With signed attributes the signature covers their DER SET encoding, the
    content-type attribute must name the encapsulated content type and the
    message-digest attribute binds the content. Without them the signature
    covers the content directly.
    """
    hash_type = _HASHES.get(signer["digest_algorithm"]["algorithm"].native)
    if hash_type is None:
        return False
    try:
        scheme = signer["signature_algorithm"].signature_algo
    except ValueError:
        return False

    signed_attrs = signer["signed_attrs"]
    if isinstance(signed_attrs, core.Void):
        signed_bytes = envelope.content
    else:
        if _signed_attribute(signed_attrs, "content_type") != envelope.content_type:
            return False
        expected = _signed_attribute(signed_attrs, "message_digest")
        if not isinstance(expected, bytes) or not hmac.compare_digest(
            expected, _digest(hash_type(), envelope.content)
        ):
            return False
        signed_bytes = _SET_TAG + signed_attrs.dump()[1:]

    return _verify_signature(
        _public_key(certificate),
        signer["signature"].native,
        signed_bytes,
        hash_type(),
        pss=scheme == "rsassa_pss",
    )


def _identifies(signer: EnvelopeSigner, candidate: EmbeddedCertificate) -> bool:
    if signer.key_identifier is not None:
        return candidate.key_identifier == signer.key_identifier
    return candidate.issuer == signer.issuer and candidate.serial_number == signer.serial_number


def _trusted_chains(envelope: SignedEnvelope, trust_anchor: TrustAnchor) -> Iterator[TrustedChain]:
    root_key = trust_anchor.public_key()
    return (
        TrustedChain(signer, leaf, intermediate)
        for signer in envelope.signers
        for leaf in envelope.certificates
        if _identifies(signer, leaf)
        and _signer_signature_valid(signer.info, leaf.certificate, envelope)
        for intermediate in envelope.certificates
        if intermediate.subject == leaf.issuer
        and _issued_by(leaf.certificate, _public_key(intermediate.certificate))
        and _issued_by(intermediate.certificate, root_key)
    )


def find_trusted_chain(envelope: SignedEnvelope, trust_anchor: TrustAnchor) -> TrustedChain | None:
    """
    Search for the first signer/certificate/intermediate that validates.

    Returns:
        The satisfying combination, or None when nothing chains to the anchor
    """
    return next(_trusted_chains(envelope, trust_anchor), None)


def verify_envelope(
    data: bytes,
    trust_anchor: TrustAnchor,
    *,
    limits: DecodeLimits = DecodeLimits(),
) -> bytes:
    """
    Verify a signed receipt envelope and return its content.

    Args:
        data: Raw envelope bytes (already base64 decoded)
        trust_anchor: Root certificate the signer must chain to
        limits: Size and nesting bounds for untrusted input

    Returns:
        Verified encapsulated content bytes

    Raises:
        MalformedEncodingError: If the envelope cannot be parsed
        NoSignerError: If the envelope has no signers
        SignatureInvalidError: If no signer chains to the trust anchor
    """
    envelope = unwrap_envelope(data, limits=limits)
    chain = find_trusted_chain(envelope, trust_anchor)
    if chain is None:
        raise SignatureInvalidError(f"no signer chains to {trust_anchor.subject}")

    logger.debug(
        "receipt_signature_verified",
        signer=chain.leaf.certificate.subject.rfc4514_string(),
        intermediate=chain.intermediate.certificate.subject.rfc4514_string(),
    )
    return envelope.content
