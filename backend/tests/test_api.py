"""End-to-end tests for the HTTP API."""
from unittest.mock import patch

import httpx
import pytest
import stripe

from main import app
from patronly.errors import GatewayRejected, GatewayUnavailable
from patronly.services.gateways import FlutterwaveGateway, get_gateway


async def subscribe(client, headers, owner_id="creator-1", amount=10000):
    response = await client.post(
        "/api/subscriptions",
        json={"owner_id": owner_id, "amount": amount},
        headers=headers,
    )
    assert response.status_code == 201, response.text
    return response.json()


@pytest.mark.asyncio
async def test_health_check(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_endpoints_require_authentication(client):
    assert (await client.post("/api/subscriptions", json={"owner_id": "creator-1"})).status_code == 401
    assert (await client.get("/api/earnings/me")).status_code == 401

    response = await client.get("/api/subscriptions/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_subscribe_poll_and_access(client, gateway, headers_for):
    """Subscriber pays, the status poll activates, access is granted and the creator is credited."""
    fan = headers_for("fan-1")
    creator = headers_for("creator-1")

    checkout = await subscribe(client, fan)
    assert checkout["checkout_url"].endswith(checkout["reference"])
    assert gateway.checkouts[0]["payer"].email == "fan-1@example.com"

    response = await client.get(f"/api/payments/{checkout['reference']}/status", headers=fan)
    assert response.json()["outcome"] == "pending"
    assert response.json()["status"] == "pending"

    access = await client.get("/api/subscriptions/access/creator-1", headers=fan)
    assert access.json()["has_access"] is False

    gateway.settle(checkout["reference"], 10000)
    response = await client.get(f"/api/payments/{checkout['reference']}/status", headers=fan)
    data = response.json()
    assert data["outcome"] == "activated"
    assert data["status"] == "active"
    assert data["expires_at"] is not None

    access = (await client.get("/api/subscriptions/access/creator-1", headers=fan)).json()
    assert access["has_access"] is True
    assert access["subscription"]["payment_reference"] == checkout["reference"]

    mine = (await client.get("/api/subscriptions/me", headers=fan)).json()
    assert mine["total"] == 1
    assert mine["items"][0]["status"] == "active"

    balance = (await client.get("/api/earnings/me/balance", headers=creator)).json()
    assert balance["pending_balance"] == 8500
    assert balance["can_withdraw"] is True

    earnings = (await client.get("/api/earnings/me", headers=creator)).json()
    assert earnings["total"] == 1
    assert earnings["items"][0]["percentage_rate"] == 0.85


@pytest.mark.asyncio
async def test_creator_always_has_access_to_own_content(client, headers_for):
    response = await client.get("/api/subscriptions/access/creator-1", headers=headers_for("creator-1"))

    assert response.json()["has_access"] is True


@pytest.mark.asyncio
async def test_self_subscription_rejected(client, headers_for):
    response = await client.post(
        "/api/subscriptions", json={"owner_id": "fan-1"}, headers=headers_for("fan-1")
    )

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_invalid_amount_rejected_by_validation(client, headers_for):
    response = await client.post(
        "/api/subscriptions", json={"owner_id": "creator-1", "amount": 0}, headers=headers_for("fan-1")
    )

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_amount_below_creator_fee_refused(client, gateway, headers_for):
    """A subscriber cannot buy access for less than the configured fee."""
    fan = headers_for("fan-1")

    response = await client.post(
        "/api/subscriptions", json={"owner_id": "creator-1", "amount": "0.01"}, headers=fan
    )

    assert response.status_code == 400
    assert gateway.checkouts == []
    mine = (await client.get("/api/subscriptions/me", headers=fan)).json()
    assert mine["total"] == 0
    access = (await client.get("/api/subscriptions/access/creator-1", headers=fan)).json()
    assert access["has_access"] is False

    await subscribe(client, fan, amount=12000)
    assert gateway.checkouts[-1]["amount"] == 12000


@pytest.mark.asyncio
async def test_gateway_outage_on_checkout(client, gateway, headers_for):
    gateway.create_error = GatewayUnavailable()

    response = await client.post(
        "/api/subscriptions", json={"owner_id": "creator-1", "amount": 10000}, headers=headers_for("fan-1")
    )

    assert response.status_code == 503
    mine = (await client.get("/api/subscriptions/me", headers=headers_for("fan-1"))).json()
    assert [s["status"] for s in mine["items"]] == ["pending"]


@pytest.mark.asyncio
async def test_gateway_rejection_on_checkout(client, gateway, headers_for):
    gateway.create_error = GatewayRejected("Card country not supported")

    response = await client.post(
        "/api/subscriptions", json={"owner_id": "creator-1", "amount": 10000}, headers=headers_for("fan-1")
    )

    assert response.status_code == 402
    assert response.json()["detail"] == "Card country not supported"


@pytest.mark.asyncio
async def test_status_of_someone_elses_payment_is_hidden(client, headers_for):
    checkout = await subscribe(client, headers_for("fan-1"))

    response = await client.get(f"/api/payments/{checkout['reference']}/status", headers=headers_for("fan-2"))
    assert response.status_code == 404

    response = await client.post(
        "/api/payments/verify", json={"reference": "sub_nope"}, headers=headers_for("fan-1")
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_manual_verify(client, gateway, headers_for):
    fan = headers_for("fan-1")
    checkout = await subscribe(client, fan)
    gateway.settle(checkout["reference"], 10000)

    first = await client.post("/api/payments/verify", json={"reference": checkout["reference"]}, headers=fan)
    second = await client.post("/api/payments/verify", json={"reference": checkout["reference"]}, headers=fan)

    assert first.json()["outcome"] == "activated"
    assert second.json()["outcome"] == "already_active"


@pytest.mark.asyncio
async def test_cancel_polling(client, headers_for):
    fan = headers_for("fan-1")
    checkout = await subscribe(client, fan)

    response = await client.delete(f"/api/payments/{checkout['reference']}/poll", headers=fan)

    assert response.status_code == 200
    assert response.json() == {"reference": checkout["reference"], "cancelled": False}
    other = await client.delete(f"/api/payments/{checkout['reference']}/poll", headers=headers_for("fan-2"))
    assert other.status_code == 404


class TestStripeWebhook:

    @pytest.mark.asyncio
    async def test_missing_signature(self, client):
        response = await client.post("/api/webhooks/stripe", content=b"{}")

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_bad_signature(self, client):
        error = stripe.SignatureVerificationError("bad signature", "t=1,v1=x")
        with patch("stripe.Webhook.construct_event", side_effect=error):
            response = await client.post(
                "/api/webhooks/stripe", content=b"{}", headers={"stripe-signature": "t=1,v1=x"}
            )

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_invalid_payload(self, client):
        with patch("stripe.Webhook.construct_event", side_effect=ValueError("bad json")):
            response = await client.post(
                "/api/webhooks/stripe", content=b"nope", headers={"stripe-signature": "t=1,v1=x"}
            )

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_completed_checkout_activates_once(self, client, gateway, headers_for):
        """Redelivered webhooks re-verify but never credit the creator twice."""
        checkout = await subscribe(client, headers_for("fan-1"))
        gateway.settle(checkout["reference"], 10000)
        event = {
            "type": "checkout.session.completed",
            "data": {"object": {"client_reference_id": checkout["reference"], "metadata": {}}},
        }

        with patch("stripe.Webhook.construct_event", return_value=event):
            first = await client.post("/api/webhooks/stripe", content=b"{}", headers={"stripe-signature": "sig"})
            second = await client.post("/api/webhooks/stripe", content=b"{}", headers={"stripe-signature": "sig"})

        assert first.json() == {"status": "activated"}
        assert second.json() == {"status": "already_active"}
        earnings = (await client.get("/api/earnings/me", headers=headers_for("creator-1"))).json()
        assert earnings["total"] == 1

    @pytest.mark.asyncio
    async def test_callback_does_not_trust_payload(self, client, gateway, headers_for):
        """A webhook for an unpaid reference leaves the subscription pending."""
        checkout = await subscribe(client, headers_for("fan-1"))
        event = {
            "type": "payment_intent.succeeded",
            "data": {"object": {"metadata": {"reference": checkout["reference"]}}},
        }

        with patch("stripe.Webhook.construct_event", return_value=event):
            response = await client.post("/api/webhooks/stripe", content=b"{}", headers={"stripe-signature": "sig"})

        assert response.json() == {"status": "pending"}
        assert gateway.verify_calls == 1

    @pytest.mark.asyncio
    async def test_unknown_reference_and_irrelevant_events_are_acknowledged(self, client, gateway):
        unknown = {
            "type": "checkout.session.completed",
            "data": {"object": {"client_reference_id": "sub_elsewhere", "metadata": {}}},
        }
        irrelevant = {"type": "customer.created", "data": {"object": {}}}

        with patch("stripe.Webhook.construct_event", side_effect=[unknown, irrelevant]):
            first = await client.post("/api/webhooks/stripe", content=b"{}", headers={"stripe-signature": "sig"})
            second = await client.post("/api/webhooks/stripe", content=b"{}", headers={"stripe-signature": "sig"})

        assert first.status_code == 200
        assert first.json() == {"status": "unknown_reference"}
        assert second.json() == {"status": "ignored"}
        assert gateway.verify_calls == 0

    @pytest.mark.asyncio
    async def test_gateway_outage_asks_for_redelivery(self, client, gateway, headers_for):
        checkout = await subscribe(client, headers_for("fan-1"))
        gateway.verify_error = GatewayUnavailable()
        event = {
            "type": "checkout.session.completed",
            "data": {"object": {"client_reference_id": checkout["reference"], "metadata": {}}},
        }

        with patch("stripe.Webhook.construct_event", return_value=event):
            response = await client.post("/api/webhooks/stripe", content=b"{}", headers={"stripe-signature": "sig"})

        assert response.status_code == 503


class TestFlutterwaveWebhook:

    @pytest.mark.asyncio
    async def test_rejects_bad_hash(self, client):
        response = await client.post(
            "/api/webhooks/flutterwave", json={"data": {"tx_ref": "x"}}, headers={"verif-hash": "wrong"}
        )

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_activates_with_valid_hash(self, client, gateway, headers_for):
        checkout = await subscribe(client, headers_for("fan-1"))
        gateway.settle(checkout["reference"], 10000)

        response = await client.post(
            "/api/webhooks/flutterwave",
            json={"event": "charge.completed", "data": {"tx_ref": checkout["reference"], "status": "successful"}},
            headers={"verif-hash": "flw-test-hash"},
        )

        assert response.status_code == 200
        assert response.json() == {"status": "activated"}

    @pytest.mark.asyncio
    async def test_rejected_verification_is_acknowledged(self, client, gateway, headers_for):
        checkout = await subscribe(client, headers_for("fan-1"))
        gateway.verify_error = GatewayRejected()

        response = await client.post(
            "/api/webhooks/flutterwave",
            json={"data": {"tx_ref": checkout["reference"]}},
            headers={"verif-hash": "flw-test-hash"},
        )

        assert response.json() == {"status": "verification_rejected"}

    @pytest.mark.asyncio
    async def test_html_error_page_from_provider_is_acknowledged(self, client, headers_for):
        checkout = await subscribe(client, headers_for("fan-1"))
        blocked = FlutterwaveGateway(
            secret_key="FLWSECK_TEST",
            base_url="https://flw.test",
            transport=httpx.MockTransport(lambda request: httpx.Response(403, text="<html>Forbidden</html>")),
        )
        app.dependency_overrides[get_gateway] = lambda: blocked

        response = await client.post(
            "/api/webhooks/flutterwave",
            json={"data": {"tx_ref": checkout["reference"]}},
            headers={"verif-hash": "flw-test-hash"},
        )

        assert response.status_code == 200
        assert response.json() == {"status": "verification_rejected"}


@pytest.mark.asyncio
async def test_withdrawal_flow_with_admin_decision(client, gateway, headers_for):
    fan = headers_for("fan-1")
    creator = headers_for("creator-1")
    admin = headers_for("admin-1", role="admin")

    checkout = await subscribe(client, fan)
    gateway.settle(checkout["reference"], 10000)
    await client.post("/api/payments/verify", json={"reference": checkout["reference"]}, headers=fan)

    response = await client.post("/api/withdrawals", headers=creator)
    assert response.status_code == 201
    withdrawal = response.json()
    assert withdrawal["amount"] == 8500
    assert withdrawal["status"] == "pending"

    again = await client.post("/api/withdrawals", headers=creator)
    assert again.status_code == 400

    balance = (await client.get("/api/earnings/me/balance", headers=creator)).json()
    assert balance["pending_balance"] == 0
    assert balance["can_withdraw"] is False

    # Only admins may decide
    forbidden = await client.post(
        f"/api/admin/withdrawals/{withdrawal['uuid']}/decision", json={"outcome": "approved"}, headers=creator
    )
    assert forbidden.status_code == 403

    pending = (await client.get("/api/admin/withdrawals?status=pending", headers=admin)).json()
    assert [w["uuid"] for w in pending["items"]] == [withdrawal["uuid"]]

    decided = await client.post(
        f"/api/admin/withdrawals/{withdrawal['uuid']}/decision",
        json={"outcome": "approved", "note": "paid out"},
        headers=admin,
    )
    assert decided.status_code == 200
    assert decided.json()["status"] == "approved"
    assert decided.json()["decided_by"] == "admin-1"

    repeat = await client.post(
        f"/api/admin/withdrawals/{withdrawal['uuid']}/decision", json={"outcome": "rejected"}, headers=admin
    )
    assert repeat.status_code == 409

    missing = await client.post(
        "/api/admin/withdrawals/does-not-exist/decision", json={"outcome": "approved"}, headers=admin
    )
    assert missing.status_code == 404

    history = (await client.get("/api/withdrawals/me", headers=creator)).json()
    assert history["items"][0]["status"] == "approved"


@pytest.mark.asyncio
async def test_withdrawal_below_minimum(client, headers_for):
    response = await client.post("/api/withdrawals", headers=headers_for("creator-1"))

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_admin_earnings_reports(client, gateway, headers_for):
    admin = headers_for("admin-1", role="admin")
    await client.put("/api/admin/subscription-fees/creator-1", json={"amount": 2000}, headers=admin)
    for fan, amount in (("fan-1", 10000), ("fan-2", 2000)):
        checkout = await subscribe(client, headers_for(fan), amount=amount)
        gateway.settle(checkout["reference"], amount)
        await client.get(f"/api/payments/{checkout['reference']}/status", headers=headers_for(fan))

    listing = (await client.get("/api/admin/earnings", headers=admin)).json()
    assert listing["total"] == 2

    summary = (await client.get("/api/admin/earnings/summary", headers=admin)).json()
    assert summary["gross_revenue"] == 12000
    assert summary["creator_earnings"] == 10200
    assert summary["platform_revenue"] == 1800
    assert summary["by_owner"][0]["owner_id"] == "creator-1"
    assert summary["by_owner"][0]["payment_count"] == 2

    assert (await client.get("/api/admin/earnings", headers=headers_for("fan-1"))).status_code == 403


@pytest.mark.asyncio
async def test_subscription_fee_configuration(client, gateway, headers_for):
    admin = headers_for("admin-1", role="admin")

    default = (await client.get("/api/admin/subscription-fees", headers=admin)).json()
    assert default["is_global"] is True
    assert default["amount"] == 10000

    response = await client.put("/api/admin/subscription-fees", json={"amount": 7500}, headers=admin)
    assert response.status_code == 200
    response = await client.put("/api/admin/subscription-fees/creator-2", json={"amount": 3000}, headers=admin)
    assert response.json()["creator_id"] == "creator-2"

    assert (await client.get("/api/subscription-fees/creator-1")).json()["amount"] == 7500
    assert (await client.get("/api/subscription-fees/creator-2")).json()["amount"] == 3000

    response = await client.post(
        "/api/subscriptions", json={"owner_id": "creator-2"}, headers=headers_for("fan-1")
    )
    assert response.status_code == 201
    assert gateway.checkouts[-1]["amount"] == 3000

    bad = await client.put("/api/admin/subscription-fees", json={"amount": -1}, headers=admin)
    assert bad.status_code == 422
    forbidden = await client.put("/api/admin/subscription-fees", json={"amount": 1}, headers=headers_for("fan-1"))
    assert forbidden.status_code == 403


@pytest.mark.asyncio
async def test_payment_state_is_never_cached(client, headers_for):
    checkout = await subscribe(client, headers_for("fan-1"))

    status_response = await client.get(f"/api/payments/{checkout['reference']}/status", headers=headers_for("fan-1"))
    health = await client.get("/health")

    assert status_response.headers["Cache-Control"] == "no-store"
    assert status_response.headers["X-Content-Type-Options"] == "nosniff"
    assert "Cache-Control" not in health.headers
