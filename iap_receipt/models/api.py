"""
API Models - Pydantic models for JSON output.

NO DICTIONARIES - All data structures are strongly typed.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from iap_receipt.models.receipt import PurchaseRecord, Receipt


class PurchaseRecordResponse(BaseModel):
    """One in-app purchase as rendered in JSON output."""

    model_config = ConfigDict(frozen=True)

    quantity: int | None = None
    product_id: str | None = None
    transaction_id: str | None = None
    purchase_date: datetime | None = None
    original_transaction_id: str | None = None
    original_purchase_date: datetime | None = None

    @classmethod
    def from_record(cls, record: PurchaseRecord) -> "PurchaseRecordResponse":
        """Build response from domain model."""
        return cls(
            quantity=record.quantity,
            product_id=record.product_id,
            transaction_id=record.transaction_id,
            purchase_date=record.purchase_date,
            original_transaction_id=record.original_transaction_id,
            original_purchase_date=record.original_purchase_date,
        )


class ReceiptResponse(BaseModel):
    """Verified receipt as rendered in JSON output."""

    model_config = ConfigDict(frozen=True)

    receipt_type: str | None = None
    app_item_id: int | None = None
    bundle_id: str | None = None
    application_version: str | None = None
    receipt_creation_date: datetime | None = None
    download_id: int | None = None
    version_external_identifier: int | None = None
    original_purchase_date: datetime | None = None
    original_application_version: str | None = None
    in_app: list[PurchaseRecordResponse] = Field(
        default_factory=list,
        description="In-app purchases in receipt order",
    )

    @classmethod
    def from_receipt(cls, receipt: Receipt) -> "ReceiptResponse":
        """Build response from domain model."""
        return cls(
            receipt_type=receipt.receipt_type,
            app_item_id=receipt.app_item_id,
            bundle_id=receipt.bundle_id,
            application_version=receipt.application_version,
            receipt_creation_date=receipt.receipt_creation_date,
            download_id=receipt.download_id,
            version_external_identifier=receipt.version_external_identifier,
            original_purchase_date=receipt.original_purchase_date,
            original_application_version=receipt.original_application_version,
            in_app=[PurchaseRecordResponse.from_record(p) for p in receipt.in_app_purchases],
        )
