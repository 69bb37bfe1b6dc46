"""
Receipt domain models - Immutable dataclasses for decoded receipts.

NO DICTIONARIES - All data uses strongly typed models.

Every attribute is optional: the storefront may omit any field, and an
omitted field is simply None.
"""

from collections.abc import Iterator
from dataclasses import dataclass, fields
from datetime import datetime

RECEIPT_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def _render(value: object) -> str:
    if isinstance(value, datetime):
        return value.strftime(RECEIPT_TIMESTAMP_FORMAT)
    return str(value)


def _populated(instance: object, skip: tuple[str, ...] = ()) -> list[str]:
    return [
        f"{field.name}: {_render(value)}"
        for field in fields(instance)  # type: ignore[arg-type]
        if field.name not in skip and (value := getattr(instance, field.name)) is not None
    ]


@dataclass(frozen=True)
class PurchaseRecord:
    """One in-app purchase transaction embedded in a receipt."""

    quantity: int | None = None
    product_id: str | None = None
    transaction_id: str | None = None
    purchase_date: datetime | None = None
    original_transaction_id: str | None = None
    original_purchase_date: datetime | None = None

    def __str__(self) -> str:
        return ", ".join(_populated(self))


@dataclass(frozen=True)
class Receipt:
    """Verified and decoded storefront receipt.

    A single receipt may carry many in-app purchases; iterating the
    receipt yields them in the order they were encoded.
    """

    receipt_type: str | None = None
    app_item_id: int | None = None
    bundle_id: str | None = None
    application_version: str | None = None
    receipt_creation_date: datetime | None = None
    download_id: int | None = None
    version_external_identifier: int | None = None
    original_purchase_date: datetime | None = None
    original_application_version: str | None = None
    in_app_purchases: tuple[PurchaseRecord, ...] = ()

    def __iter__(self) -> Iterator[PurchaseRecord]:
        return iter(self.in_app_purchases)

    def __str__(self) -> str:
        parts = _populated(self, skip=("in_app_purchases",))
        purchases = ", ".join(f"{{{purchase}}}" for purchase in self.in_app_purchases)
        parts.append(f"in_app: [{purchases}]")
        return ", ".join(parts)
