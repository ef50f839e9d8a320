import logging
from typing import List, Optional, NoReturn
from fastapi import APIRouter, HTTPException, Depends, Query, status
from fastapi.responses import JSONResponse
from app.schemas.phone_number import (
    AssignPhoneNumberRequest,
    AssignPhoneNumberResponse,
    UnassignPhoneNumberRequest,
    UnassignPhoneNumberResponse,
    PurchasePhoneNumberRequest,
    PurchasePhoneNumberResponse,
    BulkPurchaseRequest,
    BulkUnassignRequest,
    PaginatedBackorderResponse,
    PhoneNumberWithAssignment,
    PhoneNumberUnassigned,
)
from app.schemas.bulk import BulkPurchaseResponse, BulkUnassignResponse
from app.services.bulk_phone_number_service import (
    bulk_purchase_phone_numbers,
    bulk_unassign_phone_numbers,
    bulk_status_code,
)
from app.services.notification_service import BackgroundNotifier
from app.services.phone_number_catalog_service import list_backorder_available, get_user_phone_numbers
from app.services.phone_number_service import (
    assign_phone_number,
    unassign_phone_number,
    purchase_phone_number,
)
from app.utils.dependencies import get_current_user, get_current_admin, get_notification_dispatcher
from app.utils.exceptions import PhoneNumberError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/phone-numbers", tags=["Phone Numbers"])


def raise_http_error(error: PhoneNumberError) -> NoReturn:
    """Translate a domain error into the HTTP response the client sees"""
    raise HTTPException(status_code=error.status_code, detail=error.detail)


@router.post("/purchase", response_model=PurchasePhoneNumberResponse, status_code=status.HTTP_201_CREATED)
async def purchase_phone_number_endpoint(
    request: PurchasePhoneNumberRequest,
    user: dict = Depends(get_current_user),
    dispatcher: BackgroundNotifier = Depends(get_notification_dispatcher)
):
    """Purchase an available number for the current user"""
    try:
        result = await purchase_phone_number(request.phone_number_id, user, dispatcher=dispatcher)
    except PhoneNumberError as e:
        logger.warning(f"⚠️ [PHONE_PURCHASE] {request.phone_number_id} rejected: {e.message}")
        raise_http_error(e)

    return PurchasePhoneNumberResponse(
        message="Phone number purchased successfully",
        phone_number=PhoneNumberWithAssignment(**result["phone_number"]),
    )


@router.post("/purchase/bulk", response_model=BulkPurchaseResponse)
async def bulk_purchase_endpoint(
    request: BulkPurchaseRequest,
    user: dict = Depends(get_current_user),
    dispatcher: BackgroundNotifier = Depends(get_notification_dispatcher)
):
    """Purchase several numbers; 201 if all succeed, 207 on partial success, 400 if none do"""
    result = await bulk_purchase_phone_numbers(request.phone_number_ids, user, dispatcher=dispatcher)
    response = BulkPurchaseResponse(**result)
    return JSONResponse(
        status_code=bulk_status_code(len(response.successful), len(response.failed), status.HTTP_201_CREATED),
        content=response.model_dump(by_alias=True),
    )


@router.post("/bulk-unassign", response_model=BulkUnassignResponse)
async def bulk_unassign_endpoint(
    request: BulkUnassignRequest,
    admin: dict = Depends(get_current_admin)
):
    """Unassign several numbers (Admin only); 200 if all succeed, 207 on partial success, 400 if none do"""
    result = await bulk_unassign_phone_numbers(
        request.phone_number_ids,
        admin,
        reason=request.reason,
        cancel_pending_billing=request.cancel_pending_billing,
        create_refund=request.create_refund,
        refund_amount=request.refund_amount,
    )
    response = BulkUnassignResponse(**result)
    return JSONResponse(
        status_code=bulk_status_code(len(response.successful), len(response.failed), status.HTTP_200_OK),
        content=response.model_dump(by_alias=True),
    )


@router.get("/backorder-available", response_model=PaginatedBackorderResponse)
async def get_backorder_available(
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
    search: Optional[str] = None,
    country: Optional[str] = None,
    number_type: Optional[str] = Query(None, alias="numberType"),
    sort_by: str = Query("monthlyRate", alias="sortBy"),
    sort_order: str = Query("asc", alias="sortOrder", pattern="^(asc|desc)$"),
    user: dict = Depends(get_current_user)
):
    """Backorder-only numbers the current user can request"""
    result = await list_backorder_available(
        page=page,
        limit=limit,
        search=search,
        country=country,
        number_type=number_type,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return PaginatedBackorderResponse(**result)


@router.get("/my-numbers", response_model=List[PhoneNumberWithAssignment])
async def get_my_numbers(user: dict = Depends(get_current_user)):
    """Numbers currently assigned to the current user"""
    phones = await get_user_phone_numbers(user["id"])
    return [PhoneNumberWithAssignment(**phone) for phone in phones]


@router.post("/{phone_number_id}/assign", response_model=AssignPhoneNumberResponse)
async def assign_phone_number_endpoint(
    phone_number_id: str,
    request: AssignPhoneNumberRequest,
    admin: dict = Depends(get_current_admin),
    dispatcher: BackgroundNotifier = Depends(get_notification_dispatcher)
):
    """Assign a number to a user (Admin only)"""
    try:
        phone = await assign_phone_number(
            phone_number_id,
            request.user_id,
            assigned_by=admin["email"],
            billing_start_date=request.billing_start_date,
            notes=request.notes,
            dispatcher=dispatcher,
        )
    except PhoneNumberError as e:
        logger.warning(f"⚠️ [PHONE_ASSIGN] {phone_number_id} rejected: {e.message}")
        raise_http_error(e)

    return AssignPhoneNumberResponse(
        message="Phone number assigned successfully",
        phone_number=PhoneNumberWithAssignment(**phone),
    )


@router.post("/{phone_number_id}/unassign", response_model=UnassignPhoneNumberResponse)
async def unassign_phone_number_endpoint(
    phone_number_id: str,
    request: UnassignPhoneNumberRequest,
    admin: dict = Depends(get_current_admin),
    dispatcher: BackgroundNotifier = Depends(get_notification_dispatcher)
):
    """Unassign a number from its holder (Admin only)"""
    try:
        result = await unassign_phone_number(
            phone_number_id,
            unassigned_by=admin["email"],
            reason=request.reason,
            cancel_pending_billing=request.cancel_pending_billing,
            create_refund=request.create_refund,
            refund_amount=request.refund_amount,
            dispatcher=dispatcher,
        )
    except PhoneNumberError as e:
        logger.warning(f"⚠️ [PHONE_UNASSIGN] {phone_number_id} rejected: {e.message}")
        raise_http_error(e)

    return UnassignPhoneNumberResponse(
        message="Phone number unassigned successfully",
        phone_number=PhoneNumberUnassigned(**result["phone_number"]),
        cancelled_billings=result["cancelled_billings"],
        refund_created=result["refund_created"],
        integrity_warnings=result["integrity_warnings"],
    )
