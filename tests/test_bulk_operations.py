"""
Test Case Suite: Bulk Operations Module
Test ID Range: TC-044 to TC-051

This test suite validates bulk purchase and bulk unassign: per-item outcome
reporting, the 200/201/207/400 status selection, aggregate totals and the
single admin summary email sent after a bulk purchase.
"""

import pytest
from sqlalchemy import select
from app.models.phone_number import PhoneNumber
from app.models.phone_number_billing import PhoneNumberBilling
from conftest import create_phone_number


async def phone_status(session, phone_number_id):
    stmt = select(PhoneNumber.status).where(PhoneNumber.id == phone_number_id)
    return (await session.execute(stmt)).scalar_one()


async def purchase_all(client, headers, ids):
    return await client.post("/phone-numbers/purchase/bulk", json={"phoneNumberIds": ids}, headers=headers)


class TestBulkPurchase:
    """
    Test Case TC-044: All Items Succeed
    Description: Verify that a fully successful bulk purchase returns 201 with totals
    Expected Result: 201; both numbers assigned; totals summed from resolved rates
    """
    @pytest.mark.asyncio
    async def test_tc044_bulk_purchase_all_success(self, client, db_session, customer_headers, us_rate_deck, mock_dispatcher):
        """TC-044: Bulk purchase success"""
        first = await create_phone_number(db_session, number="+14155550201", rate_deck_id=us_rate_deck)
        second = await create_phone_number(db_session, number="+12125550202", rate_deck_id=us_rate_deck)

        resp = await purchase_all(client, customer_headers, [first, second])

        assert resp.status_code == 201, resp.text
        data = resp.json()
        assert data["message"] == "Bulk purchase completed: 2 successful, 0 failed"
        assert [item["number"] for item in data["successful"]] == ["+14155550201", "+12125550202"]
        assert data["summary"]["total"] == 2
        assert data["summary"]["totalCost"] == pytest.approx(9.99 + 5.00)
        assert data["summary"]["totalSetupFees"] == pytest.approx(2.50 + 1.00)
        assert await phone_status(db_session, first) == "assigned"
        assert await phone_status(db_session, second) == "assigned"

        mock_dispatcher.notify_purchase.assert_not_awaited()
        mock_dispatcher.notify_admins_of_purchase.assert_awaited_once()
        assert mock_dispatcher.notify_admins_of_purchase.await_args.kwargs["purchase_type"] == "bulk"

    """
    Test Case TC-045: Partial Success
    Description: Verify that a failing item does not stop the batch
    Expected Result: 207; two successes and one failure with the reason and number
    """
    @pytest.mark.asyncio
    async def test_tc045_bulk_purchase_partial(self, client, db_session, customer_headers, us_rate_deck, mock_dispatcher):
        """TC-045: Bulk purchase partial success"""
        good = await create_phone_number(db_session, number="+14155550203", rate_deck_id=us_rate_deck)
        also_good = await create_phone_number(db_session, number="+14155550209", rate_deck_id=us_rate_deck)
        backorder = await create_phone_number(db_session, number="+14155550204", rate_deck_id=us_rate_deck,
                                              backorder_only=True)

        resp = await purchase_all(client, customer_headers, [good, backorder, also_good])

        assert resp.status_code == 207
        data = resp.json()
        assert data["summary"]["successful"] == 2
        assert data["summary"]["failed"] == 1
        assert data["failed"] == [{
            "phoneNumberId": backorder,
            "error": "This phone number requires a backorder request and cannot be purchased directly",
            "number": "+14155550204",
        }]
        assert await phone_status(db_session, backorder) == "available"
        mock_dispatcher.notify_admins_of_purchase.assert_awaited_once()

    """
    Test Case TC-046: Nothing Succeeds
    Description: Verify that a batch with no successes is a 400 and sends no admin email
    Expected Result: 400; unknown ids reported with number 'Unknown'; taken numbers by their number
    """
    @pytest.mark.asyncio
    async def test_tc046_bulk_purchase_all_fail(self, client, db_session, customer_headers, customer, mock_dispatcher):
        """TC-046: Bulk purchase with no successes"""
        taken = await create_phone_number(db_session, number="+14155550205", status="assigned", assigned_to=customer["id"])

        resp = await purchase_all(client, customer_headers, ["does-not-exist", taken])

        assert resp.status_code == 400
        failed = {item["phoneNumberId"]: item for item in resp.json()["failed"]}
        assert failed["does-not-exist"]["number"] == "Unknown"
        assert failed["does-not-exist"]["error"] == "Phone number not found or not available for purchase"
        assert failed[taken]["number"] == "+14155550205"
        mock_dispatcher.notify_admins_of_purchase.assert_not_awaited()

    """
    Test Case TC-047: Batch Size Limits
    Description: Verify that empty batches and batches over the limit are rejected
    Expected Result: 400 'Validation failed'
    """
    @pytest.mark.asyncio
    async def test_tc047_bulk_purchase_validation(self, client, customer_headers):
        """TC-047: Bulk purchase validation"""
        resp = await purchase_all(client, customer_headers, [])
        assert resp.status_code == 400
        assert resp.json()["error"] == "Validation failed"

        resp = await purchase_all(client, customer_headers, [f"id-{i}" for i in range(21)])
        assert resp.status_code == 400


class TestBulkUnassign:
    """
    Test Case TC-048: Bulk Unassign With Refunds
    Description: Verify that every number is released, billings cancelled and refunds totalled
    Expected Result: 200; totals across items; refunds stored negative with bulk notes
    """
    @pytest.mark.asyncio
    async def test_tc048_bulk_unassign_success(self, client, db_session, admin_headers, customer_headers, customer, us_rate_deck):
        """TC-048: Bulk unassign success"""
        ids = [
            await create_phone_number(db_session, number="+14155550206", rate_deck_id=us_rate_deck),
            await create_phone_number(db_session, number="+14155550207", rate_deck_id=us_rate_deck),
        ]
        resp = await purchase_all(client, customer_headers, ids)
        assert resp.status_code == 201

        resp = await client.post(
            "/phone-numbers/bulk-unassign",
            json={"phoneNumberIds": ids, "reason": "Account closed", "createRefund": True, "refundAmount": 5},
            headers=admin_headers,
        )

        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["message"] == "Bulk unassign completed: 2 successful, 0 failed"
        assert data["summary"]["totalRefunded"] == 10
        assert data["summary"]["totalBillingsCancelled"] == 4
        assert data["successful"][0]["previousUser"]["email"] == customer["email"]
        assert data["successful"][0]["billingsCancelled"] == 2

        for phone_id in ids:
            assert await phone_status(db_session, phone_id) == "available"
        refunds_stmt = (
            select(PhoneNumberBilling)
            .where(PhoneNumberBilling.transaction_type == "refund")
            .execution_options(populate_existing=True)
        )
        refunds = (await db_session.execute(refunds_stmt)).scalars().all()
        assert sorted(r.amount for r in refunds) == [-5, -5]
        assert all(r.notes == "Bulk refund for unassigned number: Account closed" for r in refunds)

    """
    Test Case TC-049: Bulk Unassign Default Reason
    Description: Verify that a bulk unassign without a reason records the bulk default
    Expected Result: Number's unassigned reason is 'Bulk unassigned by admin'
    """
    @pytest.mark.asyncio
    async def test_tc049_bulk_unassign_default_reason(self, client, db_session, admin_headers, customer_headers, us_rate_deck):
        """TC-049: Default bulk reason"""
        phone_id = await create_phone_number(db_session, rate_deck_id=us_rate_deck)
        await purchase_all(client, customer_headers, [phone_id])

        resp = await client.post("/phone-numbers/bulk-unassign", json={"phoneNumberIds": [phone_id]}, headers=admin_headers)

        assert resp.status_code == 200
        stmt = select(PhoneNumber.unassigned_reason).where(PhoneNumber.id == phone_id)
        assert (await db_session.execute(stmt)).scalar_one() == "Bulk unassigned by admin"

    """
    Test Case TC-050: Bulk Unassign Partial and Total Failure
    Description: Verify per-item failures for numbers that are not assigned
    Expected Result: 207 for a mixed batch, 400 when every item fails
    """
    @pytest.mark.asyncio
    async def test_tc050_bulk_unassign_failures(self, client, db_session, admin_headers, customer_headers, us_rate_deck):
        """TC-050: Bulk unassign failures"""
        held = await create_phone_number(db_session, rate_deck_id=us_rate_deck)
        free = await create_phone_number(db_session, number="+14155550208")
        await purchase_all(client, customer_headers, [held])

        resp = await client.post("/phone-numbers/bulk-unassign", json={"phoneNumberIds": [held, free]}, headers=admin_headers)
        assert resp.status_code == 207
        assert resp.json()["failed"] == [{
            "phoneNumberId": free,
            "error": "Phone number is available and cannot be unassigned",
            "number": "+14155550208",
        }]

        resp = await client.post("/phone-numbers/bulk-unassign", json={"phoneNumberIds": [free, "missing"]}, headers=admin_headers)
        assert resp.status_code == 400
        assert resp.json()["summary"]["failed"] == 2

    """
    Test Case TC-051: Bulk Unassign Requires Admin
    Description: Verify that a customer cannot bulk unassign
    Expected Result: 403
    """
    @pytest.mark.asyncio
    async def test_tc051_bulk_unassign_requires_admin(self, client, customer_headers):
        """TC-051: Admin only"""
        resp = await client.post("/phone-numbers/bulk-unassign", json={"phoneNumberIds": ["x"]}, headers=customer_headers)
        assert resp.status_code == 403
