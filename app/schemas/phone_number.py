from datetime import datetime
from typing import Optional, List, Dict, Union, Literal, Annotated
from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel
from app.config import settings
from app.models.phone_number import NumberType, BillingCycle


class CamelModel(BaseModel):
    """JSON uses camelCase; snake_case is accepted on input too"""

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


class UserSummary(CamelModel):
    id: str
    name: Optional[str] = None
    email: str
    company: Optional[str] = None


class RateDeckSummary(CamelModel):
    id: str
    name: str
    description: Optional[str] = None
    currency: str


class PhoneNumberBase(CamelModel):
    id: str
    number: str
    country: str
    number_type: str
    backorder_only: bool = False
    provider: Optional[str] = None
    description: Optional[str] = None
    capabilities: List[str] = []
    notes: Optional[str] = None
    rate_deck_id: Optional[str] = None
    rate_deck_name: Optional[str] = None
    rate_deck: Optional[RateDeckSummary] = None
    monthly_rate: float
    setup_fee: float
    currency: str
    billing_cycle: str
    next_billing_date: Optional[str] = None
    last_billed_date: Optional[str] = None
    created_at: str
    updated_at: str


class PhoneNumberWithAssignment(PhoneNumberBase):
    """A number currently held by a customer"""
    status: Literal["assigned"]
    assigned_to: str
    assigned_to_user: Optional[UserSummary] = None
    assigned_by: Optional[str] = None
    assigned_at: Optional[str] = None


class PhoneNumberUnassigned(PhoneNumberBase):
    """A number with no holder: available or in an administrative side-state"""
    status: Literal["available", "reserved", "suspended", "cancelled"]
    assigned_to: None = None
    assigned_to_user: None = None
    unassigned_at: Optional[str] = None
    unassigned_by: Optional[str] = None
    unassigned_reason: Optional[str] = None


PhoneNumberResponse = Union[PhoneNumberWithAssignment, PhoneNumberUnassigned]


def build_phone_number_response(data: Dict) -> PhoneNumberResponse:
    """Pick the response shape from the number's status"""
    if data.get("status") == "assigned":
        return PhoneNumberWithAssignment(**data)
    return PhoneNumberUnassigned(**data)


class AssignmentHistoryItem(CamelModel):
    id: str
    phone_number_id: str
    user_id: str
    user: Optional[UserSummary] = None
    status: str
    assigned_by: Optional[str] = None
    assigned_at: Optional[str] = None
    unassigned_at: Optional[str] = None
    unassigned_by: Optional[str] = None
    unassigned_reason: Optional[str] = None
    billing_start_date: Optional[str] = None
    billing_end_date: Optional[str] = None
    monthly_rate: float
    setup_fee: float
    currency: str
    billing_cycle: str


class PhoneNumberDetailsResponse(CamelModel):
    phone_number: PhoneNumberResponse
    assignment_history: List[AssignmentHistoryItem]


class PaginatedPhoneNumbersResponse(CamelModel):
    items: List[PhoneNumberResponse]
    total: int
    page: int
    limit: int
    total_pages: int


# Requests

class AssignPhoneNumberRequest(CamelModel):
    user_id: str = Field(..., min_length=1, description="User the number is assigned to")
    billing_start_date: Optional[datetime] = None
    notes: Optional[str] = Field(default=None, max_length=1000)


class UnassignPhoneNumberRequest(CamelModel):
    reason: Optional[str] = Field(default=None, max_length=500)
    cancel_pending_billing: bool = True
    create_refund: bool = False
    refund_amount: Optional[float] = Field(default=None, ge=0)


class PurchasePhoneNumberRequest(CamelModel):
    phone_number_id: str = Field(..., min_length=1)


PhoneNumberId = Annotated[str, Field(min_length=1)]


class BulkPurchaseRequest(CamelModel):
    phone_number_ids: List[PhoneNumberId] = Field(..., min_length=1, max_length=settings.BULK_PURCHASE_MAX_ITEMS)


class BulkUnassignRequest(CamelModel):
    phone_number_ids: List[PhoneNumberId] = Field(..., min_length=1, max_length=settings.BULK_UNASSIGN_MAX_ITEMS)
    reason: Optional[str] = Field(default=None, max_length=500)
    cancel_pending_billing: bool = True
    create_refund: bool = False
    refund_amount: Optional[float] = Field(default=None, ge=0)


class PhoneNumberUpdateRequest(CamelModel):
    provider: Optional[str] = Field(default=None, min_length=1)
    status: Optional[Literal["available", "reserved", "suspended", "cancelled"]] = None
    backorder_only: Optional[bool] = None
    rate_deck_id: Optional[str] = Field(default=None, min_length=1)
    monthly_rate: Optional[float] = Field(default=None, ge=0)
    setup_fee: Optional[float] = Field(default=None, ge=0)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    billing_cycle: Optional[BillingCycle] = None
    number_type: Optional[NumberType] = None
    description: Optional[str] = Field(default=None, max_length=500)
    capabilities: Optional[List[Literal["voice", "sms", "fax"]]] = None
    notes: Optional[str] = Field(default=None, max_length=1000)


# Responses

class AssignPhoneNumberResponse(CamelModel):
    message: str
    phone_number: PhoneNumberWithAssignment


class UnassignPhoneNumberResponse(CamelModel):
    message: str
    phone_number: PhoneNumberUnassigned
    cancelled_billings: int
    refund_created: Optional[float] = None
    integrity_warnings: List[str] = []


class PurchasePhoneNumberResponse(CamelModel):
    message: str
    phone_number: PhoneNumberWithAssignment


class BackorderPhoneNumber(CamelModel):
    id: str
    number: str
    country: str
    number_type: str
    description: Optional[str] = None
    capabilities: List[str] = []
    provider: Optional[str] = None
    currency: str
    billing_cycle: str
    rate_deck_id: Optional[str] = None
    monthly_rate: float
    setup_fee: float
    rate_prefix: Optional[str] = None
    rate_description: Optional[str] = None
    created_at: str
    updated_at: str


class BackorderFilters(CamelModel):
    countries: List[str]
    number_types: List[str]


class PaginatedBackorderResponse(CamelModel):
    phone_numbers: List[BackorderPhoneNumber]
    total: int
    page: int
    limit: int
    total_pages: int
    filters: BackorderFilters
