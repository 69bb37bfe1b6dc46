"""
Test data builders - DER receipt payloads, a throwaway PKI and CMS envelopes.

Receipt payloads are hand encoded so tests control element order exactly.
Envelopes are assembled with asn1crypto and signed with cryptography.
"""

import hashlib
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from asn1crypto import cms
from asn1crypto import x509 as asn1_x509
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.hazmat.primitives.asymmetric.padding import PKCS1v15
from cryptography.hazmat.primitives.serialization import Encoding
from cryptography.x509.oid import NameOID

# ============================================================================
# DER encoding
# ============================================================================


def _length(size: int) -> bytes:
    if size < 0x80:
        return bytes([size])
    body = size.to_bytes((size.bit_length() + 7) // 8, "big")
    return bytes([0x80 | len(body)]) + body


def tlv(tag: int, content: bytes) -> bytes:
    """Encode one definite-length element with a single identifier octet."""
    return bytes([tag]) + _length(len(content)) + content


def integer(value: int) -> bytes:
    return tlv(0x02, value.to_bytes(value.bit_length() // 8 + 1, "big", signed=True))


def octets(value: bytes) -> bytes:
    return tlv(0x04, value)


def utf8(value: str) -> bytes:
    return tlv(0x0C, value.encode("utf-8"))


def ia5(value: str) -> bytes:
    return tlv(0x16, value.encode("ascii"))


def sequence(*items: bytes) -> bytes:
    return tlv(0x30, b"".join(items))


def set_of(*items: bytes) -> bytes:
    return tlv(0x31, b"".join(items))


def attribute(tag: int, value: bytes, version: int = 1) -> bytes:
    """Encode one (type, version, value) receipt attribute."""
    return sequence(integer(tag), integer(version), octets(value))


def purchase(
    *,
    quantity: int | None = 1,
    product_id: str | None = "com.example.app.coins_100",
    transaction_id: str | None = "1000000000000001",
    purchase_date: str | None = "2024-03-01T12:30:45Z",
    original_transaction_id: str | None = None,
    original_purchase_date: str | None = None,
    extra: Sequence[bytes] = (),
) -> bytes:
    """Encode an in-app purchase attribute SET."""
    attributes = [
        attribute(tag, encoded)
        for tag, encoded in (
            (1701, integer(quantity) if quantity is not None else None),
            (1702, utf8(product_id) if product_id is not None else None),
            (1703, utf8(transaction_id) if transaction_id is not None else None),
            (1704, ia5(purchase_date) if purchase_date is not None else None),
            (1705, utf8(original_transaction_id) if original_transaction_id is not None else None),
            (1706, ia5(original_purchase_date) if original_purchase_date is not None else None),
        )
        if encoded is not None
    ]
    return set_of(*attributes, *extra)


def receipt_payload(
    *,
    bundle_id: str | None = "com.example.app",
    purchases: Sequence[bytes] = (),
    extra: Sequence[bytes] = (),
) -> bytes:
    """Encode a full receipt attribute SET with every outer field populated."""
    attributes = [
        attribute(0, utf8("Production")),
        attribute(1, integer(123456789)),
        attribute(3, utf8("42")),
        attribute(12, ia5("2024-03-02T08:00:00Z")),
        attribute(15, integer(987654321)),
        attribute(16, integer(830000000)),
        attribute(18, ia5("2023-12-24T18:15:00Z")),
        attribute(19, utf8("1.0")),
    ]
    if bundle_id is not None:
        attributes.insert(2, attribute(2, utf8(bundle_id)))
    attributes.extend(attribute(17, p) for p in purchases)
    return set_of(*attributes, *extra)


# ============================================================================
# PKI
# ============================================================================


PrivateKey = rsa.RSAPrivateKey | ec.EllipticCurvePrivateKey


@dataclass(frozen=True)
class Identity:
    """A private key and the certificate for it."""

    key: PrivateKey
    certificate: x509.Certificate

    @property
    def der(self) -> bytes:
        return self.certificate.public_bytes(Encoding.DER)


def make_identity(
    common_name: str,
    issuer: Identity | None = None,
    *,
    ca: bool = True,
    key: PrivateKey | None = None,
) -> Identity:
    """Issue a certificate; without an issuer it is self-signed."""
    key = key or rsa.generate_private_key(public_exponent=65537, key_size=2048)
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    now = datetime.now(UTC)
    certificate = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(issuer.certificate.subject if issuer else name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=365))
        .add_extension(x509.BasicConstraints(ca=ca, path_length=None), critical=True)
        .add_extension(x509.SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False)
        .sign(issuer.key if issuer else key, hashes.SHA256())
    )
    return Identity(key=key, certificate=certificate)


@dataclass(frozen=True)
class ReceiptPKI:
    """Trusted and rogue hierarchies shared by the whole session."""

    root: Identity
    intermediate: Identity
    leaf: Identity
    ec_leaf: Identity
    rogue_root: Identity
    rogue_intermediate: Identity
    rogue_leaf: Identity


def build_pki() -> ReceiptPKI:
    root = make_identity("Test Root CA")
    intermediate = make_identity("Test Worldwide Developer Relations", root)
    rogue_root = make_identity("Rogue Root CA")
    rogue_intermediate = make_identity("Rogue Intermediate", rogue_root)
    return ReceiptPKI(
        root=root,
        intermediate=intermediate,
        leaf=make_identity("Test Receipt Signing", intermediate, ca=False),
        ec_leaf=make_identity(
            "Test Receipt Signing EC",
            intermediate,
            ca=False,
            key=ec.generate_private_key(ec.SECP256R1()),
        ),
        rogue_root=rogue_root,
        rogue_intermediate=rogue_intermediate,
        rogue_leaf=make_identity("Rogue Receipt Signing", rogue_intermediate, ca=False),
    )


# RSAPublicKey SEQUENCE header for a 2048-bit modulus, as it sits inside the key BIT STRING
_RSA_2048_KEY_HEADER = b"\x30\x82\x01\x0a\x02\x82\x01\x01"


def with_unreadable_key(identity: Identity) -> bytes:
    """DER of identity's certificate with its RSA key retagged so it no longer loads."""
    der = identity.der
    assert der.count(_RSA_2048_KEY_HEADER) == 1
    return der.replace(_RSA_2048_KEY_HEADER, b"\x04" + _RSA_2048_KEY_HEADER[1:])


# ============================================================================
# CMS envelopes
# ============================================================================


def _asn1(certificate: Identity | bytes) -> asn1_x509.Certificate:
    der = certificate if isinstance(certificate, bytes) else certificate.der
    return asn1_x509.Certificate.load(der)


def _sign(key: PrivateKey, data: bytes) -> tuple[bytes, str]:
    if isinstance(key, ec.EllipticCurvePrivateKey):
        return key.sign(data, ec.ECDSA(hashes.SHA256())), "sha256_ecdsa"
    return key.sign(data, PKCS1v15(), hashes.SHA256()), "sha256_rsa"


def signer_info(
    content: bytes,
    signer: Identity,
    *,
    signed_attributes: bool = True,
    use_key_identifier: bool = False,
    content_type: str = "data",
) -> cms.SignerInfo:
    """Sign content with signer's key."""
    certificate = _asn1(signer)
    if use_key_identifier:
        sid = cms.SignerIdentifier(name="subject_key_identifier", value=certificate.key_identifier)
    else:
        sid = cms.SignerIdentifier(
            name="issuer_and_serial_number",
            value=cms.IssuerAndSerialNumber(
                {"issuer": certificate.issuer, "serial_number": certificate.serial_number}
            ),
        )

    fields = {
        "version": "v3" if use_key_identifier else "v1",
        "sid": sid,
        "digest_algorithm": {"algorithm": "sha256"},
    }
    if signed_attributes:
        attrs = cms.CMSAttributes(
            [
                cms.CMSAttribute({"type": "content_type", "values": [content_type]}),
                cms.CMSAttribute(
                    {"type": "message_digest", "values": [hashlib.sha256(content).digest()]}
                ),
            ]
        )
        signature, algorithm = _sign(signer.key, attrs.dump())
        fields["signed_attrs"] = attrs
    else:
        signature, algorithm = _sign(signer.key, content)

    fields["signature_algorithm"] = {"algorithm": algorithm}
    fields["signature"] = signature
    return cms.SignerInfo(fields)


def envelope(
    content: bytes | None,
    signers: Sequence[cms.SignerInfo],
    certificates: Sequence[Identity | bytes],
) -> bytes:
    """Assemble a ContentInfo around a SignedData message; certificates may be raw DER."""
    encap: dict[str, object] = {"content_type": "data"}
    if content is not None:
        encap["content"] = content
    signed_data = cms.SignedData(
        {
            "version": "v1",
            "digest_algorithms": [{"algorithm": "sha256"}],
            "encap_content_info": encap,
            "certificates": [
                cms.CertificateChoices(name="certificate", value=_asn1(certificate))
                for certificate in certificates
            ],
            "signer_infos": list(signers),
        }
    )
    return cms.ContentInfo({"content_type": "signed_data", "content": signed_data}).dump()


def signed_receipt(
    pki: ReceiptPKI,
    content: bytes,
    *,
    signer: Identity | None = None,
    chain: Sequence[Identity] | None = None,
    signed_attributes: bool = True,
    use_key_identifier: bool = False,
) -> bytes:
    """Sign content with the trusted leaf (or signer) and embed its chain."""
    signer = signer or pki.leaf
    certificates = chain if chain is not None else (signer, pki.intermediate)
    info = signer_info(
        content,
        signer,
        signed_attributes=signed_attributes,
        use_key_identifier=use_key_identifier,
    )
    return envelope(content, [info], certificates)


def signature_of(blob: bytes, index: int = 0) -> bytes:
    """Extract the raw signature bytes of one signer from an envelope."""
    signed_data = cms.ContentInfo.load(blob)["content"]
    return signed_data["signer_infos"][index]["signature"].native
