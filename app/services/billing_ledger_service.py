"""
Billing Ledger Service - opens and closes the ledger of an assignment episode

Writes are committed one document at a time; callers own compensation.
Ledger entries are never deleted, only cancelled.
"""
import calendar
import logging
import uuid
from datetime import datetime
from typing import Optional, List, Dict
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from app.models.phone_number import PhoneNumber, BillingCycle
from app.models.phone_number_assignment import PhoneNumberAssignment
from app.models.phone_number_billing import PhoneNumberBilling
from app.utils.dates import utc_now

logger = logging.getLogger(__name__)

NO_PRORATION_NOTE = "Full monthly charge - no proration policy"


def add_months(value: datetime, months: int) -> datetime:
    """Calendar month add; the day clamps to the end of shorter months"""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def add_billing_cycle(start: datetime, billing_cycle: str) -> datetime:
    """Start of the next billing period"""
    if billing_cycle == BillingCycle.YEARLY.value:
        return add_months(start, 12)
    return add_months(start, 1)


async def open_ledger(
    session: AsyncSession,
    phone_number: PhoneNumber,
    user_id: str,
    assigned_by: str,
    episode_start: datetime,
    monthly_rate: float,
    setup_fee: float,
    currency: str,
    billing_cycle: str,
    assignment_id: Optional[str] = None,
    notes: Optional[str] = None
) -> Dict:
    """
    Create the assignment record plus its first ledger entries:
    a setup fee (iff > 0) and one full monthly fee (iff > 0).
    The monthly fee is never prorated, whatever the episode start.
    """
    now = utc_now()
    next_billing_date = add_billing_cycle(episode_start, billing_cycle)

    assignment = PhoneNumberAssignment(
        id=assignment_id or str(uuid.uuid4()),
        phone_number_id=phone_number.id,
        user_id=user_id,
        assigned_by=assigned_by,
        assigned_at=now,
        status="active",
        billing_start_date=episode_start,
        monthly_rate=monthly_rate,
        setup_fee=setup_fee,
        currency=currency,
        billing_cycle=billing_cycle,
        notes=notes,
    )
    session.add(assignment)
    await session.commit()

    billing_entries: List[PhoneNumberBilling] = []

    if setup_fee and setup_fee > 0:
        setup_billing = PhoneNumberBilling(
            id=str(uuid.uuid4()),
            phone_number_id=phone_number.id,
            user_id=user_id,
            assignment_id=assignment.id,
            billing_period_start=episode_start,
            billing_period_end=episode_start,  # One-time charge
            amount=setup_fee,
            currency=currency,
            status="pending",
            billing_date=now,
            transaction_type="setup_fee",
            description=f"Setup fee for {phone_number.number}",
        )
        session.add(setup_billing)
        await session.commit()
        billing_entries.append(setup_billing)

    if monthly_rate and monthly_rate > 0:
        monthly_billing = PhoneNumberBilling(
            id=str(uuid.uuid4()),
            phone_number_id=phone_number.id,
            user_id=user_id,
            assignment_id=assignment.id,
            billing_period_start=episode_start,
            billing_period_end=next_billing_date,
            amount=monthly_rate,
            currency=currency,
            status="pending",
            billing_date=now,
            transaction_type="monthly_fee",
            description=f"Monthly charge for {phone_number.number}",
            notes=NO_PRORATION_NOTE,
        )
        session.add(monthly_billing)
        await session.commit()
        billing_entries.append(monthly_billing)

    logger.info(
        f"💳 [LEDGER] Opened assignment {assignment.id} for {phone_number.number}: "
        f"{len(billing_entries)} entries, monthly={monthly_rate} setup={setup_fee} {currency}"
    )

    return {
        "assignment": assignment,
        "billing_entries": billing_entries,
        "next_billing_date": next_billing_date,
    }


async def find_pending_billing_ids(session: AsyncSession, assignment: PhoneNumberAssignment) -> List[str]:
    """
    Pending entries of an episode: those linked by assignment id plus those
    matching (number, user), which covers entries written before the link
    existed. Deduplicated, first-seen order.
    """
    by_assignment_stmt = select(PhoneNumberBilling.id).where(
        PhoneNumberBilling.assignment_id == assignment.id,
        PhoneNumberBilling.status == "pending"
    )
    by_number_user_stmt = select(PhoneNumberBilling.id).where(
        PhoneNumberBilling.phone_number_id == assignment.phone_number_id,
        PhoneNumberBilling.user_id == assignment.user_id,
        PhoneNumberBilling.status == "pending"
    )
    by_assignment = (await session.execute(by_assignment_stmt)).scalars().all()
    by_number_user = (await session.execute(by_number_user_stmt)).scalars().all()

    billing_ids = list(dict.fromkeys([*by_assignment, *by_number_user]))
    logger.info(
        f"💳 [LEDGER] {len(billing_ids)} pending entries to cancel "
        f"({len(by_assignment)} by assignment, {len(by_number_user)} by number+user)"
    )
    return billing_ids


async def cancel_pending_billings(
    session: AsyncSession,
    billing_ids: List[str],
    failure_reason: str,
    processed_by: Optional[str] = None
) -> int:
    """Cancel still-pending entries in one update. Returns the number cancelled."""
    if not billing_ids:
        return 0

    stmt = (
        update(PhoneNumberBilling)
        .where(
            PhoneNumberBilling.id.in_(billing_ids),
            PhoneNumberBilling.status == "pending"  # Entries processed meanwhile stay untouched
        )
        .values(
            status="cancelled",
            failure_reason=failure_reason,
            processed_by=processed_by,
            updated_at=utc_now(),
        )
        .execution_options(synchronize_session="fetch")
    )
    result = await session.execute(stmt)
    await session.commit()
    return result.rowcount or 0


async def close_ledger(
    session: AsyncSession,
    assignment: PhoneNumberAssignment,
    reason: str,
    cancel_pending_billing: bool = True,
    refund_amount: Optional[float] = None,
    processed_by: Optional[str] = None,
    failure_reason: str = "Assignment terminated",
    refund_notes: Optional[str] = None
) -> Dict:
    """Cancel the episode's pending entries and optionally append a refund"""
    cancelled_count = 0
    if cancel_pending_billing:
        billing_ids = await find_pending_billing_ids(session, assignment)
        cancelled_count = await cancel_pending_billings(session, billing_ids, failure_reason, processed_by)
        logger.info(f"💳 [LEDGER] Cancelled {cancelled_count} pending entries for assignment {assignment.id}")

    refund_entry = None
    if refund_amount and refund_amount > 0:
        now = utc_now()
        refund_entry = PhoneNumberBilling(
            id=str(uuid.uuid4()),
            phone_number_id=assignment.phone_number_id,
            user_id=assignment.user_id,
            assignment_id=assignment.id,
            billing_period_start=now,
            billing_period_end=now,
            amount=-abs(refund_amount),
            currency=assignment.currency,
            status="pending",
            billing_date=now,
            transaction_type="refund",
            notes=refund_notes or f"Refund for unassigned number: {reason}",
        )
        session.add(refund_entry)
        await session.commit()
        logger.info(f"💰 [LEDGER] Refund of {refund_amount} {assignment.currency} recorded for assignment {assignment.id}")

    return {
        "cancelled_count": cancelled_count,
        "refund_entry": refund_entry,
    }
