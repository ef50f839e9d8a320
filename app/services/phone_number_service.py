"""
Phone Number Service - assignment state machine

available -> assigned -> available is the only cycle driven here; reserved,
suspended and cancelled are administrative side-states.

The store gives per-row atomic writes only, so assign and unassign run as
sagas: each step commits on its own and a failure after the first step
triggers a best-effort compensating write. Ledger entries are never deleted;
compensation cancels them instead.
"""
import logging
import uuid
from datetime import datetime
from typing import Optional, List, Dict
from sqlalchemy import select, update, delete
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from app.config import settings
from app.database.connection import AsyncSessionLocal
from app.models.phone_number import PhoneNumber, PhoneNumberStatus
from app.models.phone_number_assignment import PhoneNumberAssignment
from app.models.phone_number_billing import PhoneNumberBilling
from app.models.number_rate import NumberRateDeck
from app.models.user import User
from app.services.billing_ledger_service import (
    open_ledger,
    close_ledger,
    add_billing_cycle,
    cancel_pending_billings,
)
from app.services.notification_service import Notifier
from app.services.rate_resolver_service import resolve_rate, get_user_rate_deck, get_rate_deck_by_id
from app.utils.dates import utc_now, as_utc, to_iso
from app.utils.exceptions import NotFoundError, PreconditionError, OperationFailure

logger = logging.getLogger(__name__)

ROLLBACK_REASON = "Assignment rolled back"
ASSIGN_FAILED_MESSAGE = "Failed to assign phone number due to database operation failure"
UNASSIGN_FAILED_MESSAGE = "Failed to unassign phone number due to database operation failure"
PURCHASE_FAILED_MESSAGE = "Failed to purchase phone number"

# Fields an admin may edit directly; assignment pointers are owned by the state machine
UPDATABLE_FIELDS = {
    "provider", "status", "backorder_only", "rate_deck_id", "monthly_rate", "setup_fee",
    "currency", "billing_cycle", "number_type", "description", "capabilities", "notes",
}

CLAIM_OVERWRITTEN_FIELDS = (
    "monthly_rate", "setup_fee", "currency", "next_billing_date", "last_billed_date",
    "unassigned_at", "unassigned_by", "unassigned_reason",
)


def user_to_dict(user: Optional[User]) -> Optional[Dict]:
    if not user:
        return None
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "company": user.company,
    }


def rate_deck_to_dict(rate_deck: Optional[NumberRateDeck]) -> Optional[Dict]:
    if not rate_deck:
        return None
    return {
        "id": rate_deck.id,
        "name": rate_deck.name,
        "description": rate_deck.description,
        "currency": rate_deck.currency,
    }


def phone_number_to_dict(phone: PhoneNumber) -> Dict:
    """Transform a loaded number (assigned_user and rate_deck eager-loaded) for the API"""
    rate_deck = rate_deck_to_dict(phone.rate_deck)
    is_assigned = phone.status == PhoneNumberStatus.ASSIGNED.value
    return {
        "id": phone.id,
        "number": phone.number,
        "country": phone.country,
        "number_type": phone.number_type,
        "status": phone.status,
        "backorder_only": bool(phone.backorder_only),
        "provider": phone.provider,
        "description": phone.description,
        "capabilities": phone.capabilities or [],
        "notes": phone.notes,
        "rate_deck_id": phone.rate_deck_id,
        "rate_deck_name": rate_deck["name"] if rate_deck else None,
        "rate_deck": rate_deck,
        "assigned_to": phone.assigned_to if is_assigned else None,
        "assigned_to_user": user_to_dict(phone.assigned_user) if is_assigned else None,
        "assigned_by": phone.assigned_by,
        "assigned_at": to_iso(phone.assigned_at),
        "unassigned_at": to_iso(phone.unassigned_at),
        "unassigned_by": phone.unassigned_by,
        "unassigned_reason": phone.unassigned_reason,
        "monthly_rate": phone.monthly_rate or 0,
        "setup_fee": phone.setup_fee or 0,
        "currency": phone.currency,
        "billing_cycle": phone.billing_cycle,
        "next_billing_date": to_iso(phone.next_billing_date),
        "last_billed_date": to_iso(phone.last_billed_date),
        "created_at": to_iso(phone.created_at) or "",
        "updated_at": to_iso(phone.updated_at) or "",
    }


async def load_phone_number(session: AsyncSession, phone_number_id: str) -> Optional[PhoneNumber]:
    """Fresh read of a number with its holder and rate deck"""
    stmt = (
        select(PhoneNumber)
        .options(selectinload(PhoneNumber.assigned_user), selectinload(PhoneNumber.rate_deck))
        .where(PhoneNumber.id == phone_number_id)
        .execution_options(populate_existing=True)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_active_assignments(session: AsyncSession, phone_number_id: str) -> List[PhoneNumberAssignment]:
    stmt = (
        select(PhoneNumberAssignment)
        .where(
            PhoneNumberAssignment.phone_number_id == phone_number_id,
            PhoneNumberAssignment.status == "active"
        )
        .order_by(PhoneNumberAssignment.assigned_at.desc())
        .execution_options(populate_existing=True)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def resolve_pricing(phone: PhoneNumber, user_id: str, require_rate: bool = False) -> Dict:
    """
    Effective price of a number for a user. The user's number rate deck is
    preferred, then the number's own deck. Without a matching rate the
    number's cached price is used, unless require_rate is set.
    """
    rate_deck = await get_user_rate_deck(user_id)
    if not rate_deck and phone.rate_deck_id:
        rate_deck = await get_rate_deck_by_id(phone.rate_deck_id)

    rate = None
    if rate_deck:
        rate = await resolve_rate(phone.number, phone.country, phone.number_type, rate_deck["id"])

    currency = (rate_deck or {}).get("currency") or phone.currency or settings.DEFAULT_CURRENCY

    if rate:
        return {
            "monthly_rate": rate["rate"],
            "setup_fee": rate["setup_fee"] or phone.setup_fee or 0,
            "currency": currency,
            "rate_deck": rate_deck,
            "rate": rate,
            "source": "rate_deck",
        }

    if require_rate:
        raise PreconditionError("No rate found for this phone number")

    logger.warning(
        f"⚠️ [PHONE_ASSIGN] No deck rate for {phone.number} ({phone.country} {phone.number_type}); "
        f"using cached price {phone.monthly_rate}/{phone.setup_fee}"
    )
    return {
        "monthly_rate": phone.monthly_rate or 0,
        "setup_fee": phone.setup_fee or 0,
        "currency": currency,
        "rate_deck": rate_deck,
        "rate": None,
        "source": "cached",
    }


async def _compensate_failed_assignment(
    session: AsyncSession,
    phone_number_id: str,
    assignment_id: str,
    previous_snapshot: Dict
) -> None:
    """
    Undo a half-finished assignment: release the number with the pricing and
    unassignment fields it had before the claim, end the orphaned episode if
    it was written and cancel whatever ledger entries it got.
    Not retried; a failure here is only logged.
    """
    try:
        await session.rollback()

        release_stmt = (
            update(PhoneNumber)
            .where(PhoneNumber.id == phone_number_id)
            .values(
                status=PhoneNumberStatus.AVAILABLE.value,
                assigned_to=None,
                assigned_by=None,
                assigned_at=None,
                **previous_snapshot,
            )
            .execution_options(synchronize_session="fetch")
        )
        await session.execute(release_stmt)
        await session.commit()

        assignment = await session.get(PhoneNumberAssignment, assignment_id)
        if assignment and assignment.status == "active":
            now = utc_now()
            assignment.status = "ended"
            assignment.billing_end_date = now
            assignment.unassigned_at = now
            assignment.unassigned_by = "system"
            assignment.unassigned_reason = ROLLBACK_REASON
            await session.commit()

            billing_stmt = select(PhoneNumberBilling.id).where(
                PhoneNumberBilling.assignment_id == assignment_id,
                PhoneNumberBilling.status == "pending"
            )
            billing_ids = list((await session.execute(billing_stmt)).scalars().all())
            await cancel_pending_billings(session, billing_ids, ROLLBACK_REASON, "system")

        logger.warning(f"↩️ [PHONE_ASSIGN] Rolled back assignment of {phone_number_id}")
    except Exception as rollback_error:
        logger.error(f"❌ [PHONE_ASSIGN] Error during rollback of {phone_number_id}: {str(rollback_error)}", exc_info=True)


async def _run_assignment_saga(
    session: AsyncSession,
    phone: PhoneNumber,
    user_id: str,
    assigned_by: str,
    episode_start: datetime,
    pricing: Dict,
    notes: Optional[str] = None,
    failure_message: str = ASSIGN_FAILED_MESSAGE
) -> Dict:
    """
    1. claim the number with a conditional update (only if still available)
    2. write the assignment record
    3. write the first ledger entries
    """
    # Plain values; a rollback expires the ORM object
    phone_id, number, billing_cycle = phone.id, phone.number, phone.billing_cycle
    # Fields the claim overwrites, restored if the saga is rolled back
    previous_snapshot = {field: getattr(phone, field) for field in CLAIM_OVERWRITTEN_FIELDS}
    now = utc_now()
    assignment_id = str(uuid.uuid4())
    next_billing_date = add_billing_cycle(episode_start, billing_cycle)

    claim_stmt = (
        update(PhoneNumber)
        .where(
            PhoneNumber.id == phone_id,
            PhoneNumber.status == PhoneNumberStatus.AVAILABLE.value
        )
        .values(
            status=PhoneNumberStatus.ASSIGNED.value,
            assigned_to=user_id,
            assigned_by=assigned_by,
            assigned_at=now,
            unassigned_at=None,
            unassigned_by=None,
            unassigned_reason=None,
            monthly_rate=pricing["monthly_rate"],
            setup_fee=pricing["setup_fee"],
            currency=pricing["currency"],
            next_billing_date=next_billing_date,
            last_billed_date=now,
        )
        .execution_options(synchronize_session="fetch")
    )
    result = await session.execute(claim_stmt)
    if result.rowcount != 1:
        await session.rollback()
        logger.warning(f"⚠️ [PHONE_ASSIGN] Lost the race for {number}; it is no longer available")
        raise PreconditionError("Phone number is no longer available", number=number)
    await session.commit()

    try:
        ledger = await open_ledger(
            session,
            phone_number=phone,
            user_id=user_id,
            assigned_by=assigned_by,
            episode_start=episode_start,
            monthly_rate=pricing["monthly_rate"],
            setup_fee=pricing["setup_fee"],
            currency=pricing["currency"],
            billing_cycle=billing_cycle,
            assignment_id=assignment_id,
            notes=notes,
        )
    except Exception as e:
        logger.error(f"❌ [PHONE_ASSIGN] Error during assignment operations for {number}: {str(e)}", exc_info=True)
        await _compensate_failed_assignment(session, phone_id, assignment_id, previous_snapshot)
        raise OperationFailure(str(e), failure_message, number=number) from e

    return ledger


async def assign_phone_number(
    phone_number_id: str,
    user_id: str,
    assigned_by: str,
    billing_start_date: Optional[datetime] = None,
    notes: Optional[str] = None,
    dispatcher: Optional[Notifier] = None
) -> Dict:
    """Assign an available number to a user (admin operation)"""
    logger.info(f"📞 [PHONE_ASSIGN] Assigning {phone_number_id} to user {user_id} (by {assigned_by})")

    async with AsyncSessionLocal() as session:
        phone = await load_phone_number(session, phone_number_id)
        if not phone:
            raise NotFoundError("Phone number not found")

        if phone.status != PhoneNumberStatus.AVAILABLE.value:
            raise PreconditionError(f"Phone number is {phone.status} and cannot be assigned", number=phone.number)

        target_user = await session.get(User, user_id)
        if not target_user:
            raise NotFoundError("User not found", number=phone.number)

        existing_stmt = select(PhoneNumberAssignment.id).where(
            PhoneNumberAssignment.phone_number_id == phone_number_id,
            PhoneNumberAssignment.user_id == user_id,
            PhoneNumberAssignment.status == "active"
        )
        if (await session.execute(existing_stmt)).first():
            raise PreconditionError("Phone number is already assigned to this user", number=phone.number)

        episode_start = as_utc(billing_start_date) or utc_now()
        pricing = await resolve_pricing(phone, user_id)
        logger.info(
            f"💰 [PHONE_ASSIGN] {phone.number}: {pricing['monthly_rate']} {pricing['currency']}/{phone.billing_cycle}, "
            f"setup {pricing['setup_fee']} ({pricing['source']})"
        )

        ledger = await _run_assignment_saga(session, phone, user_id, assigned_by, episode_start, pricing, notes)

        updated = await load_phone_number(session, phone_number_id)
        response = phone_number_to_dict(updated)
        user_data = user_to_dict(target_user)

    logger.info(f"✅ [PHONE_ASSIGN] {response['number']} assigned to {user_data['email']}")

    if dispatcher:
        await dispatcher.notify_assignment(
            response,
            user_data,
            {
                "assignment_id": ledger["assignment"].id,
                "assigned_by": assigned_by,
                "billing_start_date": to_iso(episode_start),
                "next_billing_date": to_iso(ledger["next_billing_date"]),
                "notes": notes,
            },
        )

    return response


async def _restore_assignment_pointers(session: AsyncSession, phone_number_id: str, previous: Dict) -> None:
    """Compensation for a failed unassign: give the number back to its holder"""
    try:
        await session.rollback()
        restore_stmt = (
            update(PhoneNumber)
            .where(PhoneNumber.id == phone_number_id)
            .values(
                status=PhoneNumberStatus.ASSIGNED.value,
                assigned_to=previous["assigned_to"],
                assigned_by=previous["assigned_by"],
                assigned_at=previous["assigned_at"],
                unassigned_at=previous["unassigned_at"],
                unassigned_by=previous["unassigned_by"],
                unassigned_reason=previous["unassigned_reason"],
            )
            .execution_options(synchronize_session="fetch")
        )
        await session.execute(restore_stmt)
        await session.commit()
        logger.warning(f"↩️ [PHONE_UNASSIGN] Restored assignment of {phone_number_id}")
    except Exception as rollback_error:
        logger.error(f"❌ [PHONE_UNASSIGN] Error during rollback of {phone_number_id}: {str(rollback_error)}", exc_info=True)


async def unassign_phone_number(
    phone_number_id: str,
    unassigned_by: str,
    reason: Optional[str] = None,
    cancel_pending_billing: bool = True,
    create_refund: bool = False,
    refund_amount: Optional[float] = None,
    dispatcher: Optional[Notifier] = None,
    default_reason: str = "Unassigned by admin",
    failure_reason: str = "Assignment terminated",
    refund_notes: Optional[str] = None
) -> Dict:
    """
    Return an assigned number to the pool, end its episode and close its ledger.
    Unassigning a number that is not assigned is rejected without side effects.
    """
    reason_text = reason or default_reason

    async with AsyncSessionLocal() as session:
        phone = await load_phone_number(session, phone_number_id)
        if not phone:
            raise NotFoundError("Phone number not found")

        if phone.status != PhoneNumberStatus.ASSIGNED.value:
            raise PreconditionError(f"Phone number is {phone.status} and cannot be unassigned", number=phone.number)

        if not phone.assigned_to:
            raise PreconditionError("Phone number is not assigned to any user", number=phone.number)

        active_assignments = await get_active_assignments(session, phone_number_id)
        if not active_assignments:
            raise NotFoundError("No active assignment found for this phone number", number=phone.number)
        current_assignment = active_assignments[0]

        previous_user = user_to_dict(phone.assigned_user)
        previous = {
            "assigned_to": phone.assigned_to,
            "assigned_by": phone.assigned_by,
            "assigned_at": phone.assigned_at,
            "unassigned_at": phone.unassigned_at,
            "unassigned_by": phone.unassigned_by,
            "unassigned_reason": phone.unassigned_reason,
        }
        number = phone.number
        logger.info(f"🔄 [PHONE_UNASSIGN] Unassigning {number} from {(previous_user or {}).get('email', 'Unknown')}: {reason_text}")

        now = utc_now()
        release_stmt = (
            update(PhoneNumber)
            .where(
                PhoneNumber.id == phone_number_id,
                PhoneNumber.status == PhoneNumberStatus.ASSIGNED.value,
                PhoneNumber.assigned_to == previous["assigned_to"]
            )
            .values(
                status=PhoneNumberStatus.AVAILABLE.value,
                assigned_to=None,
                assigned_by=None,
                assigned_at=None,
                unassigned_at=now,
                unassigned_by=unassigned_by,
                unassigned_reason=reason_text,
            )
            .execution_options(synchronize_session="fetch")
        )
        result = await session.execute(release_stmt)
        if result.rowcount != 1:
            await session.rollback()
            raise PreconditionError("Phone number changed while it was being unassigned", number=number)
        await session.commit()

        try:
            end_stmt = (
                update(PhoneNumberAssignment)
                .where(
                    PhoneNumberAssignment.id == current_assignment.id,
                    PhoneNumberAssignment.status == "active"
                )
                .values(
                    status="ended",
                    unassigned_at=now,
                    unassigned_by=unassigned_by,
                    unassigned_reason=reason_text,
                    billing_end_date=now,
                )
                .execution_options(synchronize_session="fetch")
            )
            end_result = await session.execute(end_stmt)
            if end_result.rowcount != 1:
                raise RuntimeError(f"Failed to update assignment record {current_assignment.id}")
            await session.commit()
        except Exception as e:
            logger.error(f"❌ [PHONE_UNASSIGN] Error ending assignment of {number}: {str(e)}", exc_info=True)
            await _restore_assignment_pointers(session, phone_number_id, previous)
            raise OperationFailure(str(e), UNASSIGN_FAILED_MESSAGE, number=number) from e

        logger.info(f"✅ [PHONE_UNASSIGN] Assignment record {current_assignment.id} ended")

        try:
            ledger = await close_ledger(
                session,
                current_assignment,
                reason=reason_text,
                cancel_pending_billing=cancel_pending_billing,
                refund_amount=refund_amount if create_refund else None,
                processed_by=unassigned_by,
                failure_reason=failure_reason,
                refund_notes=refund_notes,
            )
        except Exception as e:
            # Episode is already ended; the ledger needs manual review
            logger.error(f"❌ [PHONE_UNASSIGN] Error closing ledger of {number}: {str(e)}", exc_info=True)
            raise OperationFailure(str(e), UNASSIGN_FAILED_MESSAGE, number=number) from e

        remaining = await get_active_assignments(session, phone_number_id)
        integrity_warnings = []
        if remaining:
            logger.warning(f"⚠️ [PHONE_UNASSIGN] Found {len(remaining)} remaining active assignments for {number}:")
            for index, assignment in enumerate(remaining, start=1):
                logger.warning(f"   {index}. Assignment ID: {assignment.id}, User: {assignment.user_id}")
                integrity_warnings.append(
                    f"Assignment {assignment.id} for user {assignment.user_id} is still active"
                )
        else:
            logger.info(f"✅ [PHONE_UNASSIGN] Confirmed: no remaining active assignments for {number}")

        updated = await load_phone_number(session, phone_number_id)
        response = phone_number_to_dict(updated)

    refund_created = refund_amount if (create_refund and refund_amount) else None

    if dispatcher and previous_user:
        await dispatcher.notify_unassignment(
            response,
            previous_user,
            {"unassigned_at": to_iso(now), "reason": reason, "unassigned_by": unassigned_by},
        )

    return {
        "phone_number": response,
        "cancelled_billings": ledger["cancelled_count"],
        "refund_created": refund_created,
        "integrity_warnings": integrity_warnings,
        "previous_user": previous_user,
        "unassigned_at": to_iso(now),
    }


async def purchase_phone_number(
    phone_number_id: str,
    user: Dict,
    dispatcher: Optional[Notifier] = None
) -> Dict:
    """
    Self-service purchase: the caller assigns an available, directly
    purchasable number to themselves at the price found in the rate deck.
    """
    async with AsyncSessionLocal() as session:
        stmt = select(PhoneNumber).where(
            PhoneNumber.id == phone_number_id,
            PhoneNumber.status == PhoneNumberStatus.AVAILABLE.value
        ).execution_options(populate_existing=True)
        phone = (await session.execute(stmt)).scalar_one_or_none()

        if not phone:
            raise NotFoundError("Phone number not found or not available for purchase")

        if phone.backorder_only:
            raise PreconditionError(
                "This phone number requires a backorder request and cannot be purchased directly",
                number=phone.number
            )

        if not phone.rate_deck_id:
            raise PreconditionError("Phone number has no rate deck and cannot be purchased directly", number=phone.number)

        try:
            pricing = await resolve_pricing(phone, user["id"], require_rate=True)
        except PreconditionError as e:
            e.number = phone.number
            raise

        logger.info(
            f"🔄 [PHONE_PURCHASE] {user['email']} purchasing {phone.number}: "
            f"{pricing['monthly_rate']} {pricing['currency']}/{phone.billing_cycle}, setup {pricing['setup_fee']}"
        )

        episode_start = utc_now()
        ledger = await _run_assignment_saga(
            session, phone, user["id"], user["email"], episode_start, pricing,
            failure_message=PURCHASE_FAILED_MESSAGE
        )

        updated = await load_phone_number(session, phone_number_id)
        response = phone_number_to_dict(updated)

    logger.info(f"✅ [PHONE_PURCHASE] {user['email']} purchased {response['number']}")

    if dispatcher:
        await dispatcher.notify_purchase(
            response,
            user,
            {
                "total_amount": pricing["monthly_rate"] + pricing["setup_fee"],
                "next_billing_date": to_iso(ledger["next_billing_date"]),
            },
        )

    return {
        "phone_number": response,
        "monthly_rate": pricing["monthly_rate"],
        "setup_fee": pricing["setup_fee"],
        "currency": pricing["currency"],
        "billing_cycle": response["billing_cycle"],
    }


async def update_phone_number(phone_number_id: str, update_data: Dict) -> Dict:
    """Admin edit of a number's non-assignment fields"""
    async with AsyncSessionLocal() as session:
        phone = await load_phone_number(session, phone_number_id)
        if not phone:
            raise NotFoundError("Phone number not found")

        new_status = update_data.get("status")
        if new_status and new_status != phone.status:
            if new_status == PhoneNumberStatus.ASSIGNED.value:
                raise PreconditionError("Use the assign operation to assign a phone number", number=phone.number)
            if phone.status == PhoneNumberStatus.ASSIGNED.value:
                raise PreconditionError("Unassign the phone number before changing its status", number=phone.number)

        new_deck_id = update_data.get("rate_deck_id")
        if new_deck_id is not None and new_deck_id != phone.rate_deck_id:
            if not await session.get(NumberRateDeck, new_deck_id):
                raise NotFoundError("Rate deck not found", number=phone.number)

        for key, value in update_data.items():
            if key in UPDATABLE_FIELDS and value is not None:
                setattr(phone, key, value)

        await session.commit()

        updated = await load_phone_number(session, phone_number_id)
        return phone_number_to_dict(updated)


async def delete_phone_number(phone_number_id: str) -> None:
    """Delete a number that is neither held nor waiting on billing"""
    async with AsyncSessionLocal() as session:
        phone = await session.get(PhoneNumber, phone_number_id)
        if not phone:
            raise NotFoundError("Phone number not found")

        if phone.status == PhoneNumberStatus.ASSIGNED.value or phone.assigned_to:
            raise PreconditionError("Cannot delete phone number that is currently assigned to a user", number=phone.number)

        if await get_active_assignments(session, phone_number_id):
            raise PreconditionError("Cannot delete phone number with an active assignment", number=phone.number)

        pending_stmt = select(PhoneNumberBilling.id).where(
            PhoneNumberBilling.phone_number_id == phone_number_id,
            PhoneNumberBilling.status == "pending"
        ).limit(1)
        if (await session.execute(pending_stmt)).first():
            raise PreconditionError("Cannot delete phone number with pending billing", number=phone.number)

        number = phone.number
        await session.execute(delete(PhoneNumber).where(PhoneNumber.id == phone_number_id))
        await session.commit()
        logger.info(f"🗑️ [PHONE_DELETE] Deleted {number}")
