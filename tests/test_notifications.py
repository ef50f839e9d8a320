"""
Test Case Suite: Notification Module
Test ID Range: TC-073 to TC-076, TC-081

This test suite validates the email dispatcher: bounded send time, the email
log written for every attempt, and admin purchase summaries.
"""

import asyncio
import pytest
from unittest.mock import patch, AsyncMock
from sqlalchemy import select
from app.models.email_log import EmailLog
from app.services.notification_service import NotificationDispatcher
from conftest import create_user

PHONE = {
    "number": "+14155550501",
    "country": "United States",
    "number_type": "Geographic/Local",
    "monthly_rate": 9.99,
    "setup_fee": 2.5,
    "currency": "USD",
}


def make_dispatcher(smtp_host="smtp.example.com", timeout_seconds=1.0):
    return NotificationDispatcher(
        smtp_host=smtp_host,
        smtp_port=587,
        username="mailer",
        password="secret",
        from_address="support@example.com",
        company_name="Example Telecom",
        timeout_seconds=timeout_seconds,
    )


async def email_logs(session):
    stmt = select(EmailLog).execution_options(populate_existing=True)
    return list((await session.execute(stmt)).scalars().all())


class TestNotificationDispatcher:
    """
    Test Case TC-073: Successful Send Is Logged
    Description: Verify that a delivered email is recorded as sent
    Expected Result: True; one 'sent' log entry with alert data
    """
    @pytest.mark.asyncio
    async def test_tc073_send_success(self, patched_sessions, db_session):
        """TC-073: Successful send"""
        dispatcher = make_dispatcher()
        user = {"id": "u-1", "email": "jane@example.com", "name": "Jane"}

        with patch("app.services.notification_service.aiosmtplib.send", new=AsyncMock()) as send:
            delivered = await dispatcher.notify_assignment(PHONE, user, {"assigned_by": "admin@example.com"})

        assert delivered is True
        send.assert_awaited_once()
        assert send.await_args.kwargs["hostname"] == "smtp.example.com"
        logs = await email_logs(db_session)
        assert len(logs) == 1
        assert logs[0].status == "sent"
        assert logs[0].sent_at is not None
        assert logs[0].alert_data["phone_number"] == "+14155550501"

    """
    Test Case TC-074: Slow Relay Times Out
    Description: Verify that a send slower than the timeout is abandoned and logged
    Expected Result: False; one 'failed' log entry mentioning the timeout
    """
    @pytest.mark.asyncio
    async def test_tc074_send_timeout(self, patched_sessions, db_session):
        """TC-074: Send timeout"""
        dispatcher = make_dispatcher(timeout_seconds=0.05)

        async def slow_send(*args, **kwargs):
            await asyncio.sleep(5)

        with patch.object(dispatcher, "_send_email", new=slow_send):
            delivered = await dispatcher.notify_unassignment(PHONE, {"email": "jane@example.com"}, {"reason": "Moved"})

        assert delivered is False
        logs = await email_logs(db_session)
        assert [log.status for log in logs] == ["failed"]
        assert "timed out" in logs[0].error_message

    """
    Test Case TC-075: Unexpected Errors Never Escape
    Description: Verify that a bug inside a send is swallowed and still recorded
    Expected Result: False, no exception; one 'failed' log entry with the error
    """
    @pytest.mark.asyncio
    async def test_tc075_unexpected_error_swallowed(self, patched_sessions, db_session):
        """TC-075: Errors are swallowed"""
        dispatcher = make_dispatcher()

        with patch.object(dispatcher, "_send_email", new=AsyncMock(side_effect=RuntimeError("boom"))):
            delivered = await dispatcher.notify_purchase(PHONE, {"email": "jane@example.com"}, {"total_amount": 12.49})

        assert delivered is False
        logs = await email_logs(db_session)
        assert [log.status for log in logs] == ["failed"]
        assert "boom" in logs[0].error_message

    """
    Test Case TC-076: Admin Purchase Summary
    Description: Verify that every active admin gets one summary email
    Expected Result: Count of delivered emails equals the number of admins
    """
    @pytest.mark.asyncio
    async def test_tc076_admin_summary(self, patched_sessions, db_session):
        """TC-076: Admin purchase summary"""
        await create_user(db_session, role="admin")
        await create_user(db_session, role="admin")
        await create_user(db_session, role="user")
        dispatcher = make_dispatcher()

        with patch("app.services.notification_service.aiosmtplib.send", new=AsyncMock()) as send:
            sent = await dispatcher.notify_admins_of_purchase(
                {"email": "jane@example.com", "name": "Jane"}, [PHONE],
                total_monthly=9.99, total_setup_fees=2.5, currency="USD", purchase_type="single",
            )

        assert sent == 2
        assert send.await_count == 2
        logs = await email_logs(db_session)
        assert {log.notification_type for log in logs} == {"admin_user_purchase_single"}

    """
    Test Case TC-081: One Failing Admin Does Not Stop the Others
    Description: Verify that an unexpected network error for one admin is recorded
    and the remaining admins are still emailed
    Expected Result: Both sends attempted; one 'failed' and one 'sent' log entry
    """
    @pytest.mark.asyncio
    async def test_tc081_admin_failure_isolated(self, patched_sessions, db_session):
        """TC-081: Per-admin failure isolation"""
        await create_user(db_session, role="admin")
        await create_user(db_session, role="admin")
        dispatcher = make_dispatcher()
        send = AsyncMock(side_effect=[OSError("network unreachable"), None])

        with patch.object(dispatcher, "_send_email", new=send):
            sent = await dispatcher.notify_admins_of_purchase(
                {"email": "jane@example.com", "name": "Jane"}, [PHONE],
                total_monthly=9.99, total_setup_fees=2.5, currency="USD", purchase_type="bulk",
            )

        assert sent == 1
        assert send.await_count == 2
        logs = await email_logs(db_session)
        assert len(logs) == 2
        assert sorted(log.status for log in logs) == ["failed", "sent"]
        failed = next(log for log in logs if log.status == "failed")
        assert "network unreachable" in failed.error_message
