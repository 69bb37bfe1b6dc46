"""
Pytest Configuration and Centralized Fixtures.

Provides:
- A session-wide throwaway PKI (trusted root, intermediate, leaves, rogue chain)
- Trust anchors and decoders bound to it
- Ready-made signed receipts
"""

import os

import pytest

# Keep settings independent of the developer's environment
os.environ.setdefault("ROOT_CERTIFICATE_PATH", "")
os.environ.setdefault("LOG_FORMAT", "console")

from iap_receipt.services.receipt import ReceiptDecoder
from iap_receipt.services.trust_anchor import TrustAnchor
from tests.builders import ReceiptPKI, build_pki, purchase, receipt_payload, signed_receipt

BUNDLE_ID = "com.example.app"


@pytest.fixture(scope="session")
def pki() -> ReceiptPKI:
    """Generate keys and certificates once per test session."""
    return build_pki()


@pytest.fixture(scope="session")
def trust_anchor(pki: ReceiptPKI) -> TrustAnchor:
    """Trust anchor for the test root CA."""
    return TrustAnchor(pki.root.certificate)


@pytest.fixture(scope="session")
def rogue_anchor(pki: ReceiptPKI) -> TrustAnchor:
    """Trust anchor for an unrelated root CA."""
    return TrustAnchor(pki.rogue_root.certificate)


@pytest.fixture(scope="session")
def decoder(trust_anchor: TrustAnchor) -> ReceiptDecoder:
    """Receipt decoder trusting the test root."""
    return ReceiptDecoder(trust_anchor)


@pytest.fixture(scope="session")
def receipt_content() -> bytes:
    """Receipt payload with every outer field and two purchases."""
    return receipt_payload(
        bundle_id=BUNDLE_ID,
        purchases=[
            purchase(
                transaction_id="1000000000000001",
                original_transaction_id="1000000000000001",
                original_purchase_date="2024-03-01T12:30:45Z",
            ),
            purchase(
                quantity=3,
                product_id="com.example.app.gems_50",
                transaction_id="1000000000000002",
                purchase_date="2024-03-02T07:59:00Z",
            ),
        ],
    )


@pytest.fixture(scope="session")
def valid_receipt(pki: ReceiptPKI, receipt_content: bytes) -> bytes:
    """Envelope signed by the trusted leaf through the trusted intermediate."""
    return signed_receipt(pki, receipt_content)
