"""
Phone Number Catalog - read-only listings of the inventory
"""
import logging
import math
from typing import Optional, List, Dict, Tuple
from sqlalchemy import select, func, and_, or_, asc, desc
from sqlalchemy.orm import selectinload
from app.database.connection import AsyncSessionLocal
from app.models.number_rate import NumberRate
from app.models.phone_number import PhoneNumber, PhoneNumberStatus
from app.models.phone_number_assignment import PhoneNumberAssignment
from app.services.phone_number_service import phone_number_to_dict, user_to_dict
from app.services.rate_resolver_service import find_best_rate
from app.utils.dates import to_iso
from app.utils.exceptions import NotFoundError

logger = logging.getLogger(__name__)

SORTABLE_COLUMNS = {
    "monthlyRate": PhoneNumber.monthly_rate,
    "setupFee": PhoneNumber.setup_fee,
    "number": PhoneNumber.number,
    "country": PhoneNumber.country,
    "numberType": PhoneNumber.number_type,
    "createdAt": PhoneNumber.created_at,
}


def _search_condition(search: str):
    search_pattern = f"%{search}%"
    return or_(
        PhoneNumber.number.ilike(search_pattern),
        PhoneNumber.country.ilike(search_pattern),
        PhoneNumber.description.ilike(search_pattern),
    )


def _total_pages(total: int, limit: int) -> int:
    return math.ceil(total / limit) if limit else 0


async def list_backorder_available(
    page: int = 1,
    limit: int = 12,
    search: Optional[str] = None,
    country: Optional[str] = None,
    number_type: Optional[str] = None,
    sort_by: str = "monthlyRate",
    sort_order: str = "asc"
) -> Dict:
    """
    Backorder-only numbers a customer can request, priced from their deck.
    Numbers without a rate deck are never listed.
    """
    async with AsyncSessionLocal() as session:
        base_conditions = [
            PhoneNumber.status == PhoneNumberStatus.AVAILABLE.value,
            PhoneNumber.backorder_only == True,
            PhoneNumber.rate_deck_id.isnot(None),
        ]
        conditions = list(base_conditions)
        if search:
            conditions.append(_search_condition(search))
        if country:
            conditions.append(PhoneNumber.country == country)
        if number_type:
            conditions.append(PhoneNumber.number_type == number_type)
        where_clause = and_(*conditions)

        count_stmt = select(func.count()).select_from(PhoneNumber).where(where_clause)
        total = (await session.execute(count_stmt)).scalar_one() or 0

        sort_column = SORTABLE_COLUMNS.get(sort_by, PhoneNumber.monthly_rate)
        direction = asc if sort_order == "asc" else desc
        stmt = (
            select(PhoneNumber)
            .where(where_clause)
            .order_by(direction(sort_column), PhoneNumber.id)
            .execution_options(populate_existing=True)
            .offset(max(page - 1, 0) * limit)
            .limit(limit)
        )
        phones = (await session.execute(stmt)).scalars().all()

        # Each deck's rates are loaded once for the whole page
        deck_ids = {phone.rate_deck_id for phone in phones}
        rates_by_deck: Dict[str, List[NumberRate]] = {deck_id: [] for deck_id in deck_ids}
        if deck_ids:
            rates_stmt = select(NumberRate).where(NumberRate.rate_deck_id.in_(deck_ids))
            for rate in (await session.execute(rates_stmt)).scalars().all():
                rates_by_deck[rate.rate_deck_id].append(rate)

        countries_stmt = select(PhoneNumber.country).where(and_(*base_conditions)).distinct()
        types_stmt = select(PhoneNumber.number_type).where(and_(*base_conditions)).distinct()
        countries = sorted(c for c in (await session.execute(countries_stmt)).scalars().all() if c)
        number_types = sorted(t for t in (await session.execute(types_stmt)).scalars().all() if t)

    items = []
    for phone in phones:
        rate = find_best_rate(phone.number, phone.country, phone.number_type, rates_by_deck.get(phone.rate_deck_id, []))
        items.append({
            "id": phone.id,
            "number": phone.number,
            "country": phone.country,
            "number_type": phone.number_type,
            "description": phone.description,
            "capabilities": phone.capabilities or [],
            "provider": phone.provider,
            "currency": phone.currency,
            "billing_cycle": phone.billing_cycle,
            "rate_deck_id": phone.rate_deck_id,
            "monthly_rate": rate.rate if rate else 0,
            "setup_fee": (rate.setup_fee if rate else None) or phone.setup_fee or 0,
            "rate_prefix": rate.prefix if rate else None,
            "rate_description": rate.description if rate else None,
            "created_at": to_iso(phone.created_at) or "",
            "updated_at": to_iso(phone.updated_at) or "",
        })

    logger.info(f"📋 [BACKORDER] {len(items)} of {total} backorder-only numbers (page {page})")

    return {
        "phone_numbers": items,
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": _total_pages(total, limit),
        "filters": {
            "countries": countries,
            "number_types": number_types,
        },
    }


def assignment_to_dict(assignment: PhoneNumberAssignment) -> Dict:
    return {
        "id": assignment.id,
        "phone_number_id": assignment.phone_number_id,
        "user_id": assignment.user_id,
        "user": user_to_dict(assignment.user),
        "status": assignment.status,
        "assigned_by": assignment.assigned_by,
        "assigned_at": to_iso(assignment.assigned_at),
        "unassigned_at": to_iso(assignment.unassigned_at),
        "unassigned_by": assignment.unassigned_by,
        "unassigned_reason": assignment.unassigned_reason,
        "billing_start_date": to_iso(assignment.billing_start_date),
        "billing_end_date": to_iso(assignment.billing_end_date),
        "monthly_rate": assignment.monthly_rate or 0,
        "setup_fee": assignment.setup_fee or 0,
        "currency": assignment.currency,
        "billing_cycle": assignment.billing_cycle,
    }


async def get_phone_number_details(phone_number_id: str) -> Dict:
    """A number with its holder, rate deck and full assignment history, newest first"""
    async with AsyncSessionLocal() as session:
        stmt = (
            select(PhoneNumber)
            .options(selectinload(PhoneNumber.assigned_user), selectinload(PhoneNumber.rate_deck))
            .where(PhoneNumber.id == phone_number_id)
            .execution_options(populate_existing=True)
        )
        phone = (await session.execute(stmt)).scalar_one_or_none()
        if not phone:
            raise NotFoundError("Phone number not found")

        history_stmt = (
            select(PhoneNumberAssignment)
            .options(selectinload(PhoneNumberAssignment.user))
            .where(PhoneNumberAssignment.phone_number_id == phone_number_id)
            .order_by(desc(PhoneNumberAssignment.assigned_at))
            .execution_options(populate_existing=True)
        )
        history = (await session.execute(history_stmt)).scalars().all()

        return {
            "phone_number": phone_number_to_dict(phone),
            "assignment_history": [assignment_to_dict(assignment) for assignment in history],
        }


async def list_phone_numbers(
    page: int = 1,
    limit: int = 20,
    search: Optional[str] = None,
    status: Optional[str] = None,
    country: Optional[str] = None,
    number_type: Optional[str] = None,
    assigned_to: Optional[str] = None,
    backorder_only: Optional[bool] = None
) -> Tuple[List[Dict], int]:
    """Admin inventory listing, newest first. Returns (items, total)."""
    async with AsyncSessionLocal() as session:
        conditions = []
        if search:
            conditions.append(_search_condition(search))
        if status:
            conditions.append(PhoneNumber.status == status)
        if country:
            conditions.append(PhoneNumber.country == country)
        if number_type:
            conditions.append(PhoneNumber.number_type == number_type)
        if assigned_to:
            conditions.append(PhoneNumber.assigned_to == assigned_to)
        if backorder_only is not None:
            conditions.append(PhoneNumber.backorder_only == backorder_only)
        count_stmt = select(func.count()).select_from(PhoneNumber).where(*conditions)
        total = (await session.execute(count_stmt)).scalar_one() or 0

        stmt = (
            select(PhoneNumber)
            .options(selectinload(PhoneNumber.assigned_user), selectinload(PhoneNumber.rate_deck))
            .where(*conditions)
            .order_by(desc(PhoneNumber.created_at), PhoneNumber.id)
            .execution_options(populate_existing=True)
            .offset(max(page - 1, 0) * limit)
            .limit(limit)
        )
        phones = (await session.execute(stmt)).scalars().all()
        return [phone_number_to_dict(phone) for phone in phones], total


async def get_user_phone_numbers(user_id: str) -> List[Dict]:
    """Numbers currently held by a customer"""
    async with AsyncSessionLocal() as session:
        stmt = (
            select(PhoneNumber)
            .options(selectinload(PhoneNumber.assigned_user), selectinload(PhoneNumber.rate_deck))
            .where(
                PhoneNumber.assigned_to == user_id,
                PhoneNumber.status == PhoneNumberStatus.ASSIGNED.value
            )
            .order_by(desc(PhoneNumber.assigned_at))
            .execution_options(populate_existing=True)
        )
        phones = (await session.execute(stmt)).scalars().all()
        return [phone_number_to_dict(phone) for phone in phones]
