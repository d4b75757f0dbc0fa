"""
Integration Tests - POS Webhook Endpoint
"""
from typing import List

import httpx
import pytest
from sqlalchemy import func, select

from src.database.connection import get_db_dependency
from src.database.models import LineItem, Order
from src.serving.api import create_api_app
from src.serving.api.routes.webhooks import get_webhook_dispatcher
from src.webhooks import WebhookDispatcher
from src.pos.client import PosApiClient
from tests.helpers import RecordingSleep, make_event, make_order, signed_headers


class FakeOrdersApi:
    """Mock POS order retrieval"""

    def __init__(self):
        self.orders = {}
        self.requests: List[str] = []
        self.fail_with = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request.url.path)
        if self.fail_with is not None:
            return httpx.Response(self.fail_with, text="upstream failure")
        order_id = request.url.path.rsplit("/", 1)[-1]
        if order_id not in self.orders:
            return httpx.Response(404, json={"errors": [{"code": "NOT_FOUND"}]})
        return httpx.Response(200, json={"order": self.orders[order_id]})


@pytest.fixture
def orders_api() -> FakeOrdersApi:
    return FakeOrdersApi()


@pytest.fixture
def app(test_settings, session_factory, orders_api):
    def client_factory() -> PosApiClient:
        return PosApiClient(
            test_settings.pos_api,
            transport=httpx.MockTransport(orders_api),
            sleep=RecordingSleep(),
        )

    async def db_override():
        async with session_factory() as session:
            yield session

    api = create_api_app(with_lifespan=False)
    api.dependency_overrides[get_webhook_dispatcher] = lambda: WebhookDispatcher(
        session_factory, client_factory, test_settings
    )
    api.dependency_overrides[get_db_dependency] = db_override
    return api


@pytest.fixture
async def http(app):
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        yield client


async def _post(http, body: bytes, headers=None):
    return await http.post(
        "/api/webhooks/pos",
        content=body,
        headers=headers if headers is not None else signed_headers(body),
    )


async def _order_count(session_factory) -> int:
    async with session_factory() as session:
        return await session.scalar(select(func.count()).select_from(Order))


class TestAuthentication:

    async def test_non_production_is_ignored(self, http, session_factory):
        body = make_event("order.updated", "order", "ORD-1", {"order": make_order()})
        response = await _post(http, body, signed_headers(body, environment="Sandbox"))

        assert response.status_code == 200
        assert response.json()["status"] == "ignored"
        assert await _order_count(session_factory) == 0

    async def test_missing_signature_rejected(self, http):
        body = make_event("order.updated", "order", "ORD-1", {"order": make_order()})
        headers = signed_headers(body)
        del headers["x-signature"]

        response = await _post(http, body, headers)

        assert response.status_code == 400
        assert response.json() == {"status": "rejected", "error": "missing signature"}

    async def test_tampered_body_rejected(self, http, session_factory):
        body = make_event("order.updated", "order", "ORD-1", {"order": make_order()})
        headers = signed_headers(body)
        tampered = body.replace(b"ORD-1", b"ORD-X")

        response = await _post(http, tampered, headers)

        assert response.status_code == 400
        assert response.json()["error"] == "invalid signature"
        assert await _order_count(session_factory) == 0

    async def test_unconfigured_secret_rejected(self, test_settings, session_factory):
        settings = test_settings.model_copy(
            update={"webhook": test_settings.webhook.model_copy(update={"signature_key": None})}
        )
        dispatcher = WebhookDispatcher(session_factory, settings=settings)
        body = make_event("order.updated", "order", "ORD-1", {"order": make_order()})

        outcome = await dispatcher.dispatch(signed_headers(body), body)

        assert outcome.status.value == "rejected"
        assert outcome.reason == "webhook secret not configured"

    async def test_malformed_envelope_rejected(self, http):
        body = b'{"type": "order.updated"}'
        response = await _post(http, body)

        assert response.status_code == 400
        assert response.json()["error"] == "malformed event"

    async def test_invalid_json_rejected(self, http):
        body = b"not json at all"
        response = await _post(http, body)
        assert response.status_code == 400


class TestOrderEvents:

    async def test_duplicate_delivery_single_state(self, http, session_factory):
        body = make_event("order.updated", "order", "ORD-1", {"order": make_order("ORD-1")})

        first = await _post(http, body)
        second = await _post(http, body, signed_headers(body, **{"retry-number": "1"}))

        assert first.status_code == 200
        assert first.json() == {"status": "success", "event_id": "evt-1"}
        assert second.status_code == 200
        async with session_factory() as session:
            assert await session.scalar(select(func.count()).select_from(Order)) == 1
            assert await session.scalar(select(func.count()).select_from(LineItem)) == 2

    async def test_out_of_order_delivery_keeps_newest(self, http, session_factory):
        newer = make_event("order.updated", "order", "ORD-1",
                           {"order": make_order("ORD-1", version=2, state="COMPLETED")}, event_id="evt-2")
        older = make_event("order.updated", "order", "ORD-1",
                           {"order": make_order("ORD-1", version=1, state="OPEN")}, event_id="evt-1")

        assert (await _post(http, newer)).json()["status"] == "success"
        assert (await _post(http, older)).json()["status"] == "ignored"

        async with session_factory() as session:
            order = await session.scalar(select(Order))
        assert (order.version, order.state) == (2, "COMPLETED")

    async def test_summary_payload_fetches_order(self, http, orders_api, session_factory):
        orders_api.orders["ORD-9"] = make_order("ORD-9", version=2)
        body = make_event(
            "order.updated", "order", "ORD-9",
            {"order_updated": {"order_id": "ORD-9", "state": "COMPLETED", "version": 2}},
        )

        response = await _post(http, body)

        assert response.json()["status"] == "success"
        assert orders_api.requests == ["/v2/orders/ORD-9"]
        assert await _order_count(session_factory) == 1

    async def test_remote_not_found_is_ignored(self, http, orders_api):
        body = make_event("order.created", "order", "ORD-404", {"order_created": {"order_id": "ORD-404"}})

        response = await _post(http, body)

        assert response.status_code == 200
        assert response.json()["status"] == "ignored"

    async def test_remote_failure_returns_500(self, http, orders_api):
        orders_api.fail_with = 503
        body = make_event("order.created", "order", "ORD-1", {"order_created": {"order_id": "ORD-1"}})

        response = await _post(http, body)

        assert response.status_code == 500

    @pytest.mark.parametrize(
        "field,value",
        [("total_money", {"amount": "n/a", "currency": "CAD"}), ("source", "Register")],
    )
    async def test_malformed_order_payload_rejected(self, http, session_factory, field, value):
        order = make_order("ORD-1")
        order[field] = value
        body = make_event("order.updated", "order", "ORD-1", {"order": order})

        response = await _post(http, body)

        assert response.status_code == 400
        assert response.json() == {"status": "rejected", "error": "malformed order"}
        assert await _order_count(session_factory) == 0

    async def test_malformed_fetched_order_rejected(self, http, orders_api, session_factory):
        order = make_order("ORD-7")
        order["source"] = "Register"
        orders_api.orders["ORD-7"] = order
        body = make_event("order.updated", "order", "ORD-7", {"order_updated": {"order_id": "ORD-7"}})

        response = await _post(http, body)

        assert response.status_code == 400
        assert response.json()["error"] == "malformed order"
        assert await _order_count(session_factory) == 0


class TestPaymentEvents:

    async def test_completed_payment_applies_order(self, http, orders_api, session_factory):
        orders_api.orders["ORD-5"] = make_order("ORD-5")
        body = make_event(
            "payment.updated", "payment", "PAY-1",
            {"payment": {"id": "PAY-1", "status": "COMPLETED", "order_id": "ORD-5"}},
        )

        response = await _post(http, body)

        assert response.json()["status"] == "success"
        assert await _order_count(session_factory) == 1

    async def test_pending_payment_ignored_without_fetch(self, http, orders_api, session_factory):
        body = make_event(
            "payment.created", "payment", "PAY-2",
            {"payment": {"id": "PAY-2", "status": "APPROVED", "order_id": "ORD-5"}},
        )

        response = await _post(http, body)

        assert response.json()["status"] == "ignored"
        assert orders_api.requests == []
        assert await _order_count(session_factory) == 0

    async def test_payment_without_object_rejected(self, http):
        body = make_event("payment.updated", "payment", "PAY-3", {})
        response = await _post(http, body)
        assert response.status_code == 400


class TestOtherEvents:

    async def test_fulfillment_for_unknown_order_ignored(self, http, session_factory):
        body = make_event(
            "order.fulfillment.updated", "order_fulfillment_updated", "ORD-UNKNOWN",
            {"order_fulfillment_updated": {"order_id": "ORD-UNKNOWN"}},
        )

        response = await _post(http, body)

        assert response.status_code == 200
        assert response.json()["status"] == "ignored"
        assert await _order_count(session_factory) == 0

    async def test_fulfillment_for_known_order_applied(self, http):
        order = make_event("order.updated", "order", "ORD-1", {"order": make_order("ORD-1")})
        await _post(http, order)

        body = make_event(
            "order.fulfillment.updated", "order_fulfillment_updated", "ORD-1",
            {"order_fulfillment_updated": {"order_id": "ORD-1"}}, event_id="evt-3",
        )
        response = await _post(http, body)

        assert response.json()["status"] == "success"

    async def test_unknown_event_type_ignored(self, http):
        body = make_event("inventory.count.updated", "inventory_counts", "INV-1")
        response = await _post(http, body)

        assert response.status_code == 200
        assert response.json()["status"] == "ignored"


class TestSyncStatus:

    async def test_status_reports_counts(self, http):
        body = make_event("order.updated", "order", "ORD-1", {"order": make_order("ORD-1")})
        await _post(http, body)

        response = await http.get("/api/v1/sync/status")

        assert response.status_code == 200
        data = response.json()
        assert data["runs"] == []
        assert data["row_counts"]["orders"] == 1
        assert data["row_counts"]["line_items"] == 2
