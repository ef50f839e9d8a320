from typing import Optional
from fastapi import APIRouter, Depends, Query
from app.controllers.phone_number_controller import raise_http_error
from app.schemas.phone_number import (
    PhoneNumberUpdateRequest,
    PhoneNumberDetailsResponse,
    PaginatedPhoneNumbersResponse,
    PhoneNumberResponse,
    build_phone_number_response,
)
from app.services.phone_number_catalog_service import get_phone_number_details, list_phone_numbers
from app.services.phone_number_service import update_phone_number, delete_phone_number
from app.utils.dependencies import get_current_admin
from app.utils.exceptions import PhoneNumberError

router = APIRouter(prefix="/admin/phone-numbers", tags=["Admin Phone Numbers"])


@router.get("", response_model=PaginatedPhoneNumbersResponse)
async def list_phone_numbers_endpoint(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: Optional[str] = None,
    status: Optional[str] = None,
    country: Optional[str] = None,
    number_type: Optional[str] = Query(None, alias="numberType"),
    assigned_to: Optional[str] = Query(None, alias="assignedTo"),
    backorder_only: Optional[bool] = Query(None, alias="backorderOnly"),
    admin: dict = Depends(get_current_admin)
):
    """All numbers with filters (Admin only)"""
    items, total = await list_phone_numbers(
        page=page,
        limit=limit,
        search=search,
        status=status,
        country=country,
        number_type=number_type,
        assigned_to=assigned_to,
        backorder_only=backorder_only,
    )
    return PaginatedPhoneNumbersResponse(
        items=[build_phone_number_response(item) for item in items],
        total=total,
        page=page,
        limit=limit,
        total_pages=(total + limit - 1) // limit,
    )


@router.get("/{phone_number_id}", response_model=PhoneNumberDetailsResponse)
async def get_phone_number_endpoint(
    phone_number_id: str,
    admin: dict = Depends(get_current_admin)
):
    """Number details with assignment history (Admin only)"""
    try:
        details = await get_phone_number_details(phone_number_id)
    except PhoneNumberError as e:
        raise_http_error(e)

    return PhoneNumberDetailsResponse(
        phone_number=build_phone_number_response(details["phone_number"]),
        assignment_history=details["assignment_history"],
    )


@router.put("/{phone_number_id}", response_model=PhoneNumberResponse)
async def update_phone_number_endpoint(
    phone_number_id: str,
    request: PhoneNumberUpdateRequest,
    admin: dict = Depends(get_current_admin)
):
    """Update a number's non-assignment fields (Admin only)"""
    update_data = request.model_dump(mode="json", exclude_unset=True)
    try:
        phone = await update_phone_number(phone_number_id, update_data)
    except PhoneNumberError as e:
        raise_http_error(e)

    return build_phone_number_response(phone)


@router.delete("/{phone_number_id}")
async def delete_phone_number_endpoint(
    phone_number_id: str,
    admin: dict = Depends(get_current_admin)
):
    """Delete a number that is not assigned and has no pending billing (Admin only)"""
    try:
        await delete_phone_number(phone_number_id)
    except PhoneNumberError as e:
        raise_http_error(e)

    return {"message": "Phone number deleted successfully"}
