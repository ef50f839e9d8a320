"""
Bulk Phone Number Service - sequential batch purchase and unassign

Items run one at a time; a failing item is recorded and the batch moves on.
Each item gets the same state machine, invariants and compensation as the
single-number operations.
"""
import logging
from typing import Optional, List, Dict
from app.config import settings
from app.database.connection import AsyncSessionLocal
from app.models.phone_number import PhoneNumber
from app.services.notification_service import Notifier
from app.services.phone_number_service import purchase_phone_number, unassign_phone_number
from app.utils.exceptions import PhoneNumberError

logger = logging.getLogger(__name__)

BULK_UNASSIGN_REASON = "Bulk unassigned by admin"
BULK_FAILURE_REASON = "Assignment terminated - bulk unassign"


def bulk_status_code(successful: int, failed: int, success_code: int) -> int:
    """success_code when everything worked, 400 when nothing did, 207 otherwise"""
    if failed == 0:
        return success_code
    if successful == 0:
        return 400
    return 207


async def _lookup_number(phone_number_id: str) -> str:
    """Number string for a failure entry, 'Unknown' if it cannot be loaded"""
    try:
        async with AsyncSessionLocal() as session:
            phone = await session.get(PhoneNumber, phone_number_id)
            return phone.number if phone else "Unknown"
    except Exception as e:
        logger.warning(f"⚠️ [BULK] Could not look up {phone_number_id}: {str(e)}")
        return "Unknown"


async def _failure_entry(phone_number_id: str, error: Exception) -> Dict:
    if isinstance(error, PhoneNumberError):
        message = error.detail
        number = error.number or await _lookup_number(phone_number_id)
    else:
        message = "Operation failed"
        number = await _lookup_number(phone_number_id)
    return {
        "phone_number_id": phone_number_id,
        "error": message,
        "number": number,
    }


async def bulk_purchase_phone_numbers(
    phone_number_ids: List[str],
    user: Dict,
    dispatcher: Optional[Notifier] = None
) -> Dict:
    """Purchase several numbers for the caller, then send one admin summary"""
    logger.info(f"🛒 [BULK_PURCHASE] {user['email']} purchasing {len(phone_number_ids)} numbers")

    successful: List[Dict] = []
    failed: List[Dict] = []
    total_cost = 0.0
    total_setup_fees = 0.0

    for phone_number_id in phone_number_ids:
        try:
            result = await purchase_phone_number(phone_number_id, user, dispatcher=None)
            phone = result["phone_number"]
            successful.append({
                "phone_number_id": phone["id"],
                "number": phone["number"],
                "country": phone["country"],
                "number_type": phone["number_type"],
                "monthly_rate": result["monthly_rate"],
                "setup_fee": result["setup_fee"],
                "currency": result["currency"],
                "billing_cycle": result["billing_cycle"],
            })
            total_cost += result["monthly_rate"]
            total_setup_fees += result["setup_fee"]
            logger.info(f"✅ [BULK_PURCHASE] {phone['number']} purchased")
        except Exception as e:
            logger.error(f"❌ [BULK_PURCHASE] {phone_number_id} failed: {str(e)}")
            failed.append(await _failure_entry(phone_number_id, e))

    if dispatcher and successful:
        await dispatcher.notify_admins_of_purchase(
            user,
            successful,
            total_monthly=total_cost,
            total_setup_fees=total_setup_fees,
            currency=successful[0]["currency"] or settings.DEFAULT_CURRENCY,
            purchase_type="bulk",
        )

    logger.info(f"🛒 [BULK_PURCHASE] Done: {len(successful)} successful, {len(failed)} failed")

    return {
        "message": f"Bulk purchase completed: {len(successful)} successful, {len(failed)} failed",
        "successful": successful,
        "failed": failed,
        "summary": {
            "total": len(phone_number_ids),
            "successful": len(successful),
            "failed": len(failed),
            "total_cost": total_cost,
            "total_setup_fees": total_setup_fees,
        },
    }


async def bulk_unassign_phone_numbers(
    phone_number_ids: List[str],
    admin: Dict,
    reason: Optional[str] = None,
    cancel_pending_billing: bool = True,
    create_refund: bool = False,
    refund_amount: Optional[float] = None
) -> Dict:
    """Unassign several numbers. No customer emails are sent for bulk unassigns."""
    reason_text = reason or BULK_UNASSIGN_REASON
    logger.info(f"🔄 [BULK_UNASSIGN] {admin['email']} unassigning {len(phone_number_ids)} numbers: {reason_text}")

    successful: List[Dict] = []
    failed: List[Dict] = []
    total_refunded = 0.0
    total_billings_cancelled = 0

    for phone_number_id in phone_number_ids:
        try:
            result = await unassign_phone_number(
                phone_number_id,
                unassigned_by=admin["email"],
                reason=reason_text,
                cancel_pending_billing=cancel_pending_billing,
                create_refund=create_refund,
                refund_amount=refund_amount,
                dispatcher=None,
                failure_reason=BULK_FAILURE_REASON,
                refund_notes=f"Bulk refund for unassigned number: {reason_text}",
            )
            refunded = result["refund_created"] or 0
            previous_user = result["previous_user"] or {}
            successful.append({
                "phone_number_id": phone_number_id,
                "number": result["phone_number"]["number"],
                "previous_user": {
                    "id": previous_user.get("id"),
                    "email": previous_user.get("email"),
                    "name": previous_user.get("name"),
                },
                "billings_cancelled": result["cancelled_billings"],
                "refund_amount": refunded,
                "unassigned_at": result["unassigned_at"],
            })
            total_refunded += refunded
            total_billings_cancelled += result["cancelled_billings"]
            if result["integrity_warnings"]:
                logger.warning(f"⚠️ [BULK_UNASSIGN] {phone_number_id}: {result['integrity_warnings']}")
        except Exception as e:
            logger.error(f"❌ [BULK_UNASSIGN] {phone_number_id} failed: {str(e)}")
            failed.append(await _failure_entry(phone_number_id, e))

    logger.info(f"🔄 [BULK_UNASSIGN] Done: {len(successful)} successful, {len(failed)} failed")

    return {
        "message": f"Bulk unassign completed: {len(successful)} successful, {len(failed)} failed",
        "successful": successful,
        "failed": failed,
        "summary": {
            "total": len(phone_number_ids),
            "successful": len(successful),
            "failed": len(failed),
            "total_refunded": total_refunded,
            "total_billings_cancelled": total_billings_cancelled,
        },
    }
