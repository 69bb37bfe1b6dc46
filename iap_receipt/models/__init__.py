from iap_receipt.models.api import PurchaseRecordResponse, ReceiptResponse
from iap_receipt.models.receipt import PurchaseRecord, Receipt

__all__ = [
    "PurchaseRecord",
    "PurchaseRecordResponse",
    "Receipt",
    "ReceiptResponse",
]
