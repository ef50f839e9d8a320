"""
Test Case Suite: Admin Phone Number Management Module
Test ID Range: TC-065 to TC-072, TC-078

This test suite validates the admin inventory endpoints: filtered listing,
number details with assignment history, field updates guarded by the
assignment state machine, and deletion rules.
"""

import pytest
from sqlalchemy import select
from app.models.phone_number import PhoneNumber
from app.services.phone_number_service import update_phone_number
from app.utils.exceptions import NotFoundError
from conftest import create_phone_number, create_rate_deck, create_billing, create_user


async def number_exists(session, phone_number_id):
    stmt = select(PhoneNumber.id).where(PhoneNumber.id == phone_number_id)
    return (await session.execute(stmt)).first() is not None


class TestAdminListing:
    """
    Test Case TC-065: Filtered Inventory Listing
    Description: Verify status, holder and backorder filters and the response shape per status
    Expected Result: Matching items; assigned items carry their holder
    """
    @pytest.mark.asyncio
    async def test_tc065_list_with_filters(self, client, db_session, admin_headers, customer, us_rate_deck):
        """TC-065: Admin listing"""
        held = await create_phone_number(db_session, number="+14155550401", rate_deck_id=us_rate_deck)
        await create_phone_number(db_session, number="+14155550402", backorder_only=True)
        await create_phone_number(db_session, number="+14155550403", status="suspended")
        resp = await client.post(f"/phone-numbers/{held}/assign", json={"userId": customer["id"]}, headers=admin_headers)
        assert resp.status_code == 200

        resp = await client.get("/admin/phone-numbers", headers=admin_headers)
        assert resp.status_code == 200
        data = resp.json()
        assert data["total"] == 3
        assert data["totalPages"] == 1

        resp = await client.get("/admin/phone-numbers", params={"assignedTo": customer["id"]}, headers=admin_headers)
        items = resp.json()["items"]
        assert [item["number"] for item in items] == ["+14155550401"]
        assert items[0]["assignedToUser"]["email"] == customer["email"]

        resp = await client.get("/admin/phone-numbers", params={"backorderOnly": "true"}, headers=admin_headers)
        assert [item["number"] for item in resp.json()["items"]] == ["+14155550402"]

        resp = await client.get("/admin/phone-numbers", params={"status": "suspended"}, headers=admin_headers)
        item = resp.json()["items"][0]
        assert item["status"] == "suspended"
        assert item["assignedTo"] is None

    """
    Test Case TC-066: Admin Endpoints Are Admin Only
    Description: Verify that customers cannot reach the inventory
    Expected Result: 403
    """
    @pytest.mark.asyncio
    async def test_tc066_admin_only(self, client, customer_headers):
        """TC-066: Admin only"""
        resp = await client.get("/admin/phone-numbers", headers=customer_headers)
        assert resp.status_code == 403
        assert resp.json()["detail"] == "Admin access required"


class TestAdminDetails:
    """
    Test Case TC-067: Details With Assignment History
    Description: Verify that every episode is listed newest first with its user
    Expected Result: Two episodes; the active one first
    """
    @pytest.mark.asyncio
    async def test_tc067_details_with_history(self, client, db_session, admin_headers, customer, us_rate_deck):
        """TC-067: Number details"""
        other = await create_user(db_session, name="Second Customer")
        phone_id = await create_phone_number(db_session, rate_deck_id=us_rate_deck)
        await client.post(f"/phone-numbers/{phone_id}/assign", json={"userId": customer["id"]}, headers=admin_headers)
        await client.post(f"/phone-numbers/{phone_id}/unassign", json={"reason": "Swap"}, headers=admin_headers)
        await client.post(f"/phone-numbers/{phone_id}/assign", json={"userId": other["id"]}, headers=admin_headers)

        resp = await client.get(f"/admin/phone-numbers/{phone_id}", headers=admin_headers)

        assert resp.status_code == 200
        data = resp.json()
        assert data["phoneNumber"]["assignedTo"] == other["id"]
        history = data["assignmentHistory"]
        assert [entry["status"] for entry in history] == ["active", "ended"]
        assert history[0]["user"]["email"] == other["email"]
        assert history[1]["unassignedReason"] == "Swap"
        assert history[1]["billingEndDate"] is not None

    """
    Test Case TC-068: Details of an Unknown Number
    Description: Verify the not found response
    Expected Result: 404
    """
    @pytest.mark.asyncio
    async def test_tc068_details_not_found(self, client, admin_headers):
        """TC-068: Unknown number"""
        resp = await client.get("/admin/phone-numbers/missing", headers=admin_headers)
        assert resp.status_code == 404
        assert resp.json()["detail"] == "Phone number not found"


class TestAdminUpdate:
    """
    Test Case TC-069: Update Plain Fields
    Description: Verify that admins can edit description, price and rate deck
    Expected Result: 200 with the new values
    """
    @pytest.mark.asyncio
    async def test_tc069_update_fields(self, client, db_session, admin_headers):
        """TC-069: Update fields"""
        deck_id = await create_rate_deck(db_session, [{"prefix": "+1", "rate": 1.0}], name="Wholesale")
        phone_id = await create_phone_number(db_session)

        resp = await client.put(
            f"/admin/phone-numbers/{phone_id}",
            json={"description": "Main line", "monthlyRate": 4.5, "rateDeckId": deck_id, "status": "reserved"},
            headers=admin_headers,
        )

        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["description"] == "Main line"
        assert data["monthlyRate"] == 4.5
        assert data["rateDeckName"] == "Wholesale"
        assert data["status"] == "reserved"

    """
    Test Case TC-070: Status Changes Respect the State Machine
    Description: Verify that 'assigned' cannot be set directly, an assigned number's
    status cannot be changed, and unknown rate decks are refused
    Expected Result: 400, 400 and 404
    """
    @pytest.mark.asyncio
    async def test_tc070_update_guards(self, client, db_session, admin_headers, customer, us_rate_deck):
        """TC-070: Update guards"""
        free = await create_phone_number(db_session)
        resp = await client.put(f"/admin/phone-numbers/{free}", json={"status": "assigned"}, headers=admin_headers)
        assert resp.status_code == 400

        held = await create_phone_number(db_session, rate_deck_id=us_rate_deck)
        await client.post(f"/phone-numbers/{held}/assign", json={"userId": customer["id"]}, headers=admin_headers)
        resp = await client.put(f"/admin/phone-numbers/{held}", json={"status": "available"}, headers=admin_headers)
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Unassign the phone number before changing its status"

        resp = await client.put(f"/admin/phone-numbers/{free}", json={"rateDeckId": "no-such-deck"}, headers=admin_headers)
        assert resp.status_code == 404
        assert resp.json()["detail"] == "Rate deck not found"

    """
    Test Case TC-078: Blank Rate Deck Id Is Refused
    Description: Verify that an empty rate deck id is rejected instead of being written
    as a dangling reference
    Expected Result: 400 at the API; NotFoundError from the service; deck unchanged
    """
    @pytest.mark.asyncio
    async def test_tc078_blank_rate_deck_id(self, client, db_session, admin_headers, us_rate_deck):
        """TC-078: Blank rate deck id"""
        phone_id = await create_phone_number(db_session, rate_deck_id=us_rate_deck)

        resp = await client.put(f"/admin/phone-numbers/{phone_id}", json={"rateDeckId": ""}, headers=admin_headers)
        assert resp.status_code == 400
        assert resp.json()["error"] == "Validation failed"

        with pytest.raises(NotFoundError):
            await update_phone_number(phone_id, {"rate_deck_id": ""})

        stmt = select(PhoneNumber.rate_deck_id).where(PhoneNumber.id == phone_id)
        assert (await db_session.execute(stmt)).scalar_one() == us_rate_deck


class TestAdminDelete:
    """
    Test Case TC-071: Delete an Idle Number
    Description: Verify that a number with no holder and no pending billing can be deleted
    Expected Result: 200; number gone
    """
    @pytest.mark.asyncio
    async def test_tc071_delete(self, client, db_session, admin_headers):
        """TC-071: Delete"""
        phone_id = await create_phone_number(db_session)

        resp = await client.delete(f"/admin/phone-numbers/{phone_id}", headers=admin_headers)

        assert resp.status_code == 200
        assert resp.json()["message"] == "Phone number deleted successfully"
        assert not await number_exists(db_session, phone_id)

    """
    Test Case TC-072: Delete Is Refused for Held or Billed Numbers
    Description: Verify that assigned numbers and numbers with pending billing are kept
    Expected Result: 400 for both; 404 for an unknown id
    """
    @pytest.mark.asyncio
    async def test_tc072_delete_guards(self, client, db_session, admin_headers, customer, us_rate_deck):
        """TC-072: Delete guards"""
        held = await create_phone_number(db_session, rate_deck_id=us_rate_deck)
        await client.post(f"/phone-numbers/{held}/assign", json={"userId": customer["id"]}, headers=admin_headers)
        resp = await client.delete(f"/admin/phone-numbers/{held}", headers=admin_headers)
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Cannot delete phone number that is currently assigned to a user"

        billed = await create_phone_number(db_session)
        await create_billing(db_session, billed, customer["id"], 9.99)
        resp = await client.delete(f"/admin/phone-numbers/{billed}", headers=admin_headers)
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Cannot delete phone number with pending billing"
        assert await number_exists(db_session, billed)

        resp = await client.delete("/admin/phone-numbers/missing", headers=admin_headers)
        assert resp.status_code == 404
