"""
HTTP surface: status codes, envelopes and staff authentication
"""

import uuid

import pytest


def _order_body(seed, hold_id=None, quantity=2, token="tok_visa", method="card"):
    body = {
        "customer": {"name": "Ada Lovelace", "email": "ada@example.com"},
        "payment": {"method": method, "token": token},
        "items": [{"ticket_type_id": str(seed.general_id), "quantity": quantity}],
    }
    if hold_id:
        body["hold_id"] = hold_id
    return body


class TestHealthEndpoints:

    @pytest.mark.asyncio
    async def test_liveness(self, client):
        response = await client.get("/api/v1/health/live")

        assert response.status_code == 200
        assert response.json()["status"] == "alive"
        assert "X-Request-ID" in response.headers

    @pytest.mark.asyncio
    async def test_readiness(self, client):
        response = await client.get("/api/v1/health/ready")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ready"
        assert data["checks"] == {"database": True}

    @pytest.mark.asyncio
    async def test_root(self, client):
        response = await client.get("/")
        assert response.status_code == 200
        assert response.json()["environment"] == "testing"


class TestHoldEndpoints:

    @pytest.mark.asyncio
    async def test_place_and_get_hold(self, client, seed):
        response = await client.post("/api/v1/holds", json={
            "unit_ids": [str(u) for u in seed.seats[:2]],
            "session_id": "browser-1",
        })

        assert response.status_code == 201
        hold = response.json()
        assert hold["status"] == "active"
        assert len(hold["unit_ids"]) == 2

        fetched = await client.get(f"/api/v1/holds/{hold['hold_id']}", params={"session_id": "browser-1"})
        assert fetched.status_code == 200
        assert fetched.json()["hold_id"] == hold["hold_id"]

    @pytest.mark.asyncio
    async def test_conflicting_hold_returns_envelope(self, client, seed):
        await client.post("/api/v1/holds", json={"unit_ids": [str(seed.seats[0])], "session_id": "a"})

        response = await client.post("/api/v1/holds", json={
            "unit_ids": [str(seed.seats[0]), str(seed.seats[1])],
            "session_id": "b",
        })

        assert response.status_code == 409
        body = response.json()
        assert body["success"] is False
        assert body["error"]["code"] == "UNITS_UNAVAILABLE"

    @pytest.mark.asyncio
    async def test_unknown_fields_rejected(self, client, seed):
        response = await client.post("/api/v1/holds", json={
            "unit_ids": [str(seed.seats[0])],
            "session_id": "a",
            "price_override": "0.01",
        })

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_release_hold(self, client, seed):
        created = await client.post("/api/v1/holds", json={"unit_ids": [str(seed.seats[0])], "session_id": "a"})
        hold_id = created.json()["hold_id"]

        response = await client.delete(f"/api/v1/holds/{hold_id}", params={"session_id": "a"})

        assert response.status_code == 200
        assert response.json()["status"] == "released"

    @pytest.mark.asyncio
    async def test_unknown_hold(self, client):
        response = await client.get(f"/api/v1/holds/{uuid.uuid4()}")
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "HOLD_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_list_and_release_session_holds(self, client, seed):
        for unit in seed.seats[:2]:
            await client.post("/api/v1/holds", json={"unit_ids": [str(unit)], "session_id": "browser-1"})
        await client.post("/api/v1/holds", json={"unit_ids": [str(seed.seats[2])], "session_id": "browser-2"})

        listed = await client.get("/api/v1/holds", params={"session_id": "browser-1"})
        assert listed.status_code == 200
        assert len(listed.json()) == 2
        assert {hold["session_id"] for hold in listed.json()} == {"browser-1"}

        released = await client.delete("/api/v1/holds", params={"session_id": "browser-1"})
        assert released.status_code == 200
        assert released.json() == {"session_id": "browser-1", "released": 2}

        after = await client.get("/api/v1/holds", params={"session_id": "browser-1"})
        assert after.json() == []
        others = await client.get("/api/v1/holds", params={"session_id": "browser-2"})
        assert len(others.json()) == 1

    @pytest.mark.asyncio
    async def test_session_holds_need_session_id(self, client):
        assert (await client.get("/api/v1/holds")).status_code == 422
        assert (await client.delete("/api/v1/holds")).status_code == 422


class TestCartEndpoint:

    @pytest.mark.asyncio
    async def test_validate_cart(self, client, seed):
        ok = await client.post("/api/v1/cart/validate", json={
            "items": [{"ticket_type_id": str(seed.general_id), "quantity": 3}],
        })
        short = await client.post("/api/v1/cart/validate", json={
            "items": [{"ticket_type_id": str(seed.vip_id), "quantity": 2}],
        })

        assert ok.json() == {"valid": True, "errors": []}
        assert short.status_code == 200
        assert short.json()["valid"] is False
        assert short.json()["errors"][0]["available"] == 1


class TestEventEndpoints:

    @pytest.mark.asyncio
    async def test_availability(self, client, seed):
        await client.post("/api/v1/holds", json={"unit_ids": [str(seed.seats[0])], "session_id": "a"})

        response = await client.get(f"/api/v1/events/{seed.event_id}/availability")

        assert response.status_code == 200
        body = response.json()
        assert body["event_id"] == str(seed.event_id)
        by_id = {row["ticket_type_id"]: row for row in body["ticket_types"]}
        assert by_id[str(seed.general_id)]["available"] == 9
        assert by_id[str(seed.general_id)]["capacity"] == 10
        assert by_id[str(seed.vip_id)]["available"] == 1
        assert by_id[str(seed.vip_id)]["name"] == "VIP"

    @pytest.mark.asyncio
    async def test_unknown_event(self, client):
        response = await client.get(f"/api/v1/events/{uuid.uuid4()}/availability")
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"


class TestOrderEndpoints:

    @pytest.mark.asyncio
    async def test_create_and_replay(self, client, seed, mock_gateway):
        hold = await client.post("/api/v1/holds", json={
            "unit_ids": [str(u) for u in seed.seats[:2]],
            "session_id": "browser-1",
        })
        body = _order_body(seed, hold_id=hold.json()["hold_id"])
        headers = {"Idempotency-Key": "checkout-abc-123"}

        created = await client.post("/api/v1/orders", json=body, headers=headers)
        replay = await client.post("/api/v1/orders", json=body, headers=headers)

        assert created.status_code == 201
        data = created.json()
        assert data["success"] is True
        assert data["total_amount"] == "103.00"
        assert len(data["ticket_ids"]) == 2
        assert replay.status_code == 200
        assert replay.json()["replayed"] is True
        assert replay.json()["order_id"] == data["order_id"]
        assert len(mock_gateway.charges) == 1

        order = await client.get(f"/api/v1/orders/{data['order_id']}")
        assert order.status_code == 200
        assert order.json()["status"] == "completed"
        assert sorted(order.json()["ticket_ids"]) == sorted(data["ticket_ids"])

    @pytest.mark.asyncio
    async def test_idempotency_header_required(self, client, seed):
        response = await client.post("/api/v1/orders", json=_order_body(seed))
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_declined_card(self, client, seed):
        response = await client.post(
            "/api/v1/orders",
            json=_order_body(seed, token="tok_decline"),
            headers={"Idempotency-Key": "declined-1"},
        )

        assert response.status_code == 402
        assert response.json()["error_code"] == "CARD_DECLINED"

    @pytest.mark.asyncio
    async def test_insufficient_inventory(self, client, seed):
        response = await client.post(
            "/api/v1/orders",
            json=_order_body(seed, quantity=11),
            headers={"Idempotency-Key": "too-many"},
        )

        assert response.status_code == 409
        assert response.json()["error_code"] == "INSUFFICIENT_INVENTORY"

    @pytest.mark.asyncio
    async def test_invalid_email(self, client, seed):
        body = _order_body(seed)
        body["customer"]["email"] = "not-an-email"

        response = await client.post("/api/v1/orders", json=body, headers={"Idempotency-Key": "bad-email"})

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_cash_flow(self, client, seed, staff_headers):
        created = await client.post(
            "/api/v1/orders",
            json=_order_body(seed, quantity=1, method="cash", token=None),
            headers={"Idempotency-Key": "cash-1"},
        )
        assert created.status_code == 201
        code = created.json()["verification_code"]
        assert created.json()["payment_status"] == "pending"

        anonymous = await client.post("/api/v1/orders/cash/confirm", json={"code": code})
        confirmed = await client.post("/api/v1/orders/cash/confirm", json={"code": code}, headers=staff_headers)

        assert anonymous.status_code == 401
        assert confirmed.status_code == 200
        assert confirmed.json()["success"] is True
        assert len(confirmed.json()["ticket_ids"]) == 1

    @pytest.mark.asyncio
    async def test_refund_requires_staff(self, client, paid_order, staff_headers):
        url = f"/api/v1/orders/{paid_order.order_id}/refund"

        anonymous = await client.post(url, json={})
        refunded = await client.post(url, json={"reason": "event rescheduled"}, headers=staff_headers)

        assert anonymous.status_code == 401
        assert anonymous.json()["error"]["code"] == "AUTH_ERROR"
        assert refunded.status_code == 200
        assert refunded.json()["status"] == "refunded"

    @pytest.mark.asyncio
    async def test_invalid_token(self, client, paid_order):
        response = await client.post(
            f"/api/v1/orders/{paid_order.order_id}/refund",
            json={},
            headers={"Authorization": "Bearer not-a-jwt"},
        )
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_cancel_needs_staff_or_verification_code(self, client, seed, staff_headers):
        first = await client.post(
            "/api/v1/orders",
            json=_order_body(seed, quantity=1, method="cash", token=None),
            headers={"Idempotency-Key": "cash-cancel-1"},
        )
        second = await client.post(
            "/api/v1/orders",
            json=_order_body(seed, quantity=1, method="cash", token=None),
            headers={"Idempotency-Key": "cash-cancel-2"},
        )
        first_url = f"/api/v1/orders/{first.json()['order_id']}/cancel"
        second_url = f"/api/v1/orders/{second.json()['order_id']}/cancel"

        anonymous = await client.post(first_url, json={})
        wrong_code = await client.post(first_url, json={"verification_code": second.json()["verification_code"]})
        assert anonymous.status_code == 401
        assert anonymous.json()["error"]["code"] == "AUTH_ERROR"
        assert wrong_code.status_code == 401

        by_customer = await client.post(first_url, json={"verification_code": first.json()["verification_code"]})
        by_staff = await client.post(second_url, json={}, headers=staff_headers)

        assert by_customer.status_code == 200
        assert by_customer.json()["status"] == "cancelled"
        assert by_staff.status_code == 200
        assert by_staff.json()["status"] == "cancelled"


class TestTicketAndCheckInEndpoints:

    @pytest.mark.asyncio
    async def test_ticket_and_qr(self, client, paid_order):
        ticket_id = paid_order.ticket_ids[0]

        ticket = await client.get(f"/api/v1/tickets/{ticket_id}")
        qr = await client.get(f"/api/v1/tickets/{ticket_id}/qr", params={"size": 200})

        assert ticket.status_code == 200
        assert ticket.json()["status"] == "active"
        assert qr.status_code == 200
        assert qr.headers["content-type"] == "image/png"
        assert qr.content.startswith(b"\x89PNG")

    @pytest.mark.asyncio
    async def test_qr_size_bounds(self, client, paid_order):
        response = await client.get(f"/api/v1/tickets/{paid_order.ticket_ids[0]}/qr", params={"size": 50})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_validate_is_public_and_read_only(self, client, paid_order):
        credential = f"QR_{paid_order.ticket_ids[0]}"

        first = await client.post("/api/v1/checkin/validate", json={"credential": credential})
        second = await client.post("/api/v1/checkin/validate", json={"credential": credential})

        assert first.status_code == 200
        assert first.json()["valid"] is True
        assert second.json()["valid"] is True

    @pytest.mark.asyncio
    async def test_check_in_once(self, client, paid_order, staff_headers):
        body = {"ticket_id": paid_order.ticket_ids[0]}

        anonymous = await client.post("/api/v1/checkin", json=body)
        first = await client.post("/api/v1/checkin", json=body, headers=staff_headers)
        second = await client.post("/api/v1/checkin", json=body, headers=staff_headers)

        assert anonymous.status_code == 401
        assert first.json()["success"] is True
        assert first.json()["ticket"]["checked_in_by"] == "scanner-1"
        assert second.json()["success"] is False
        assert second.json()["error"] == "ALREADY_USED"

    @pytest.mark.asyncio
    async def test_scan_and_bulk(self, client, paid_order, staff_headers):
        first, second = paid_order.ticket_ids

        scanned = await client.post("/api/v1/checkin/scan", json={"credential": f"QR_{first}"}, headers=staff_headers)
        bulk = await client.post(
            "/api/v1/checkin/bulk-validate",
            json={"credentials": [f"QR_{first}", f"QR_{second}", "garbage"]},
            headers=staff_headers,
        )

        assert scanned.json()["success"] is True
        assert bulk.status_code == 200
        summary = bulk.json()["summary"]
        assert summary["total"] == 3
        assert summary["valid"] == 1
