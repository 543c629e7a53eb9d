import asyncio
import json
import re
import threading
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from marketplace_sync.services.etsy import EtsyService


API_BASE = "https://etsy.test/v3"
TOKEN_URL = "https://etsy.test/v3/public/oauth/token"

_PAYMENTS_PATH = re.compile(r"^/v3/application/shops/([^/]+)/payments$")
_ORDER_PATH = re.compile(r"^/v3/application/shops/([^/]+)/orders/([^/]+)$")


def iso_in(seconds: int) -> str:
    return (datetime.now(timezone.utc) + timedelta(seconds=seconds)).isoformat()


class FakeStore:
    """In-memory stand-in for SupabaseSyncStore with upsert-by-natural-key semantics."""

    def __init__(self, integrations=None, products=None):
        self.integrations = {str(row["id"]): dict(row) for row in (integrations or [])}
        self.products = list(products or [])
        self.orders = {}
        self.payments = {}
        self.token_updates = []
        self.order_writes = 0
        self.payment_writes = 0
        self.fail_list = False
        self.fail_payment_upsert_for_user = None
        self.write_threads = set()

    def list_active_integrations(self, provider, *, integration_id=None, user_id=None):
        if self.fail_list:
            raise RuntimeError("store unavailable")
        rows = [
            dict(row)
            for row in self.integrations.values()
            if row.get("provider") == provider and row.get("is_active")
        ]
        if integration_id:
            rows = [row for row in rows if str(row["id"]) == integration_id]
        if user_id:
            rows = [row for row in rows if row.get("user_id") == user_id]
        return rows

    def get_integration(self, integration_id):
        row = self.integrations.get(integration_id)
        return dict(row) if row else None

    def update_integration_tokens(self, integration_id, fields, *, expected_expires_at):
        self.token_updates.append((integration_id, dict(fields)))
        row = self.integrations.get(integration_id)
        if row is None or row.get("expires_at") != expected_expires_at:
            return None
        row.update(fields)
        return dict(row)

    def find_products_by_sku(self, sku):
        matches = [
            {"id": p["id"], "user_id": p["user_id"]}
            for p in self.products
            if p.get("skn") == sku
        ]
        return matches[:2]

    def get_order_by_remote_id(self, etsy_order_id):
        row = self.orders.get(etsy_order_id)
        return dict(row) if row else None

    def upsert_order(self, row):
        self.order_writes += 1
        merged = self.orders.get(row["etsy_order_id"], {})
        merged.update(row)
        self.orders[row["etsy_order_id"]] = merged

    def upsert_payment(self, row):
        self.write_threads.add(threading.get_ident())
        if self.fail_payment_upsert_for_user and row["user_id"] == self.fail_payment_upsert_for_user:
            raise RuntimeError("payments write rejected")
        self.payment_writes += 1
        key = (row["provider"], row["external_payment_id"])
        merged = self.payments.get(key, {})
        merged.update(row)
        self.payments[key] = merged


class FakeEtsyApi:
    """httpx.MockTransport handler emulating the three Etsy endpoints."""

    def __init__(self):
        self.payments = {}
        self.orders = {}
        self.token_response = {
            "access_token": "new-access",
            "refresh_token": "new-refresh",
            "expires_in": 3600,
            "token_type": "Bearer",
        }
        self.token_status = 200
        self.failing_token_clients = set()
        self.failing_payment_shops = set()
        self.failing_payment_pages = set()
        self.failing_orders = set()
        self.timeout_orders = set()
        self.empty_orders = set()
        self.token_delay = 0
        self.token_calls = []
        self.requests = []

    def add_order(self, shop_id, order_id, line_items):
        self.orders[(str(shop_id), str(order_id))] = {"order_id": order_id, "line_items": line_items}

    def _token(self, request):
        body = json.loads(request.content)
        self.token_calls.append(body)
        if self.token_status != 200 or body.get("client_id") in self.failing_token_clients:
            return httpx.Response(400, json={"error": "invalid_grant"})
        return httpx.Response(200, json=self.token_response)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if request.method == "POST" and request.url.path == "/v3/public/oauth/token":
            return self._token(request)

        match = _PAYMENTS_PATH.match(path)
        if match:
            shop_id = match.group(1)
            offset = int(request.url.params.get("offset", 0))
            limit = int(request.url.params.get("limit", 100))
            if shop_id in self.failing_payment_shops or (shop_id, offset) in self.failing_payment_pages:
                return httpx.Response(500, json={"error": "server_error"})
            payments = self.payments.get(shop_id, [])
            return httpx.Response(
                200,
                json={"count": len(payments), "results": payments[offset:offset + limit]},
            )

        match = _ORDER_PATH.match(path)
        if match:
            key = (match.group(1), match.group(2))
            if key in self.timeout_orders:
                raise httpx.ReadTimeout("timed out", request=request)
            if key in self.failing_orders:
                return httpx.Response(503, json={"error": "unavailable"})
            if key in self.empty_orders:
                return httpx.Response(200, json={"count": 0, "results": []})
            order = self.orders.get(key)
            if order is None:
                return httpx.Response(404, json={"error": "not_found"})
            return httpx.Response(200, json={"count": 1, "results": [order]})

        return httpx.Response(404, json={"error": "unknown_route"})

    async def async_handler(self, request: httpx.Request) -> httpx.Response:
        # Lets the token POST yield to the loop, like a real network call.
        if self.token_delay and request.url.path == "/v3/public/oauth/token":
            await asyncio.sleep(self.token_delay)
        return self.handler(request)

    def calls_to(self, suffix):
        return [r for r in self.requests if r.url.path.endswith(suffix)]


def build_etsy_service(api: FakeEtsyApi, **kwargs) -> EtsyService:
    client = httpx.AsyncClient(transport=httpx.MockTransport(api.async_handler))
    return EtsyService(client, api_base_url=API_BASE, token_url=TOKEN_URL, **kwargs)


@pytest.fixture
def etsy_api():
    return FakeEtsyApi()


@pytest.fixture
def etsy_service(etsy_api):
    return build_etsy_service(etsy_api)


def make_integration_row(integration_id="int-1", shop_id="shop-1", **overrides):
    row = {
        "id": integration_id,
        "provider": "etsy",
        "shop_id": shop_id,
        "api_key": f"client-{integration_id}",
        "access_token": f"access-{integration_id}",
        "refresh_token": f"refresh-{integration_id}",
        "expires_at": iso_in(3600),
        "is_active": True,
        "user_id": "U1",
    }
    row.update(overrides)
    return row
