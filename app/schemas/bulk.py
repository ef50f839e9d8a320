from typing import Optional, List
from app.schemas.phone_number import CamelModel


class BulkFailureItem(CamelModel):
    phone_number_id: str
    error: str
    number: str  # 'Unknown' when the number could not be loaded


class PurchaseSuccessItem(CamelModel):
    phone_number_id: str
    number: str
    country: str
    number_type: str
    monthly_rate: float
    setup_fee: float
    currency: str
    billing_cycle: str


class BulkPurchaseSummary(CamelModel):
    total: int
    successful: int
    failed: int
    total_cost: float
    total_setup_fees: float


class BulkPurchaseResponse(CamelModel):
    message: str
    successful: List[PurchaseSuccessItem]
    failed: List[BulkFailureItem]
    summary: BulkPurchaseSummary


class PreviousUser(CamelModel):
    id: Optional[str] = None
    email: Optional[str] = None
    name: Optional[str] = None


class UnassignSuccessItem(CamelModel):
    phone_number_id: str
    number: str
    previous_user: PreviousUser
    billings_cancelled: int
    refund_amount: float
    unassigned_at: str


class BulkUnassignSummary(CamelModel):
    total: int
    successful: int
    failed: int
    total_refunded: float
    total_billings_cancelled: int


class BulkUnassignResponse(CamelModel):
    message: str
    successful: List[UnassignSuccessItem]
    failed: List[BulkFailureItem]
    summary: BulkUnassignSummary
