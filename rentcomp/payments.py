import base64
import hashlib
import logging
import uuid
from abc import ABC, abstractmethod
from typing import Dict, Optional, TypedDict

import httpx
from fastapi import HTTPException

from .helpers import ct_equal

logger = logging.getLogger(__name__)

MIDTRANS_BASE_URLS = {
    "sandbox": "https://api.sandbox.midtrans.com",
    "production": "https://api.midtrans.com",
}

# statuses after which the money is ours
PAID_STATUSES = frozenset({"settlement", "capture"})

# status_code midtrans reports next to each transaction_status
MOCK_STATUS_CODES = {"pending": "201", "deny": "202", "expire": "407"}


class PaymentGatewayError(Exception):
    """The gateway could not be reached or rejected the request."""


# ----------------------------
# Payment Adapter Interface
# ----------------------------
class ChargeResult(TypedDict):
    transaction_id: str
    order_id: str
    gross_amount: str
    status: str
    payment_url: str


def notification_signature(
    order_id: str, status_code: str, gross_amount: str, server_key: str
) -> str:
    raw = f"{order_id}{status_code}{gross_amount}{server_key}"
    return hashlib.sha512(raw.encode()).hexdigest()


class PaymentAdapter(ABC):
    name = "abstract"

    def __init__(self, server_key: str) -> None:
        self.server_key = server_key

    @abstractmethod
    async def charge_gopay(self, order_id: str, amount: int) -> ChargeResult:
        ...

    # Midtrans-shaped status payload; transaction_status is the field that
    # matters
    @abstractmethod
    async def get_status(self, order_id: str) -> dict:
        ...

    def verify_notification(self, payload: dict) -> dict:
        order_id = str(payload.get("order_id") or "")
        status_code = str(payload.get("status_code") or "")
        gross_amount = str(payload.get("gross_amount") or "")
        sig = payload.get("signature_key")
        if not order_id or not isinstance(sig, str):
            raise HTTPException(status_code=400, detail="Invalid notification")
        expected = notification_signature(
            order_id, status_code, gross_amount, self.server_key
        )
        if not ct_equal(expected, sig):
            raise HTTPException(status_code=400, detail="Invalid signature")
        return payload


# ----------------------------
# Midtrans Core API
# ----------------------------
class MidtransGateway(PaymentAdapter):
    name = "midtrans"

    def __init__(
        self,
        server_key: str,
        *,
        env: str = "sandbox",
        callback_url: Optional[str] = None,
        http: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ) -> None:
        super().__init__(server_key)
        if env not in MIDTRANS_BASE_URLS:
            raise ValueError(f"unknown midtrans env: {env}")
        self.base_url = MIDTRANS_BASE_URLS[env]
        self.callback_url = callback_url
        self.http = http
        self.timeout = timeout

    def _headers(self) -> Dict[str, str]:
        token = base64.b64encode(f"{self.server_key}:".encode()).decode()
        return {
            "accept": "application/json",
            "content-type": "application/json",
            "authorization": f"Basic {token}",
        }

    async def _request(self, method: str, path: str, *,
                       status_lookup: bool = False, **kw) -> dict:
        client = self.http
        owns_client = client is None
        if owns_client:
            client = httpx.AsyncClient(timeout=self.timeout)
        try:
            r = await client.request(
                method, f"{self.base_url}{path}",
                headers=self._headers(), **kw
            )
            body = r.json()
        except (httpx.HTTPError, ValueError) as e:
            raise PaymentGatewayError(f"midtrans {path}: {e}") from e
        finally:
            if owns_client:
                await client.aclose()

        # midtrans answers HTTP 200 with the real outcome in status_code
        code = str(body.get("status_code", r.status_code))
        ok = code.startswith("2")
        if status_lookup and "transaction_status" in body:
            # final states keep their own codes, e.g. 407 for expire
            ok = True
        if r.status_code >= 400 or not ok:
            raise PaymentGatewayError(
                f"midtrans {path}: {code} {body.get('status_message', '')}"
            )
        return body

    async def charge_gopay(self, order_id: str, amount: int) -> ChargeResult:
        req = {
            "payment_type": "gopay",
            "transaction_details": {
                "order_id": order_id,
                "gross_amount": int(amount),
            },
            "gopay": {"enable_callback": True},
        }
        if self.callback_url:
            req["gopay"]["callback_url"] = self.callback_url

        body = await self._request("POST", "/v2/charge", json=req)
        actions = body.get("actions") or []
        if not actions or not actions[0].get("url"):
            raise PaymentGatewayError("midtrans charge: no payment action")
        return {
            "transaction_id": body.get("transaction_id", ""),
            "order_id": body.get("order_id", order_id),
            "gross_amount": body.get("gross_amount", f"{amount}.00"),
            "status": body.get("transaction_status", "pending"),
            "payment_url": actions[0]["url"],
        }

    async def get_status(self, order_id: str) -> dict:
        return await self._request(
            "GET", f"/v2/{order_id}/status", status_lookup=True
        )


# ----------------------------
# MockPay implementation
# ----------------------------
class MockPay(PaymentAdapter):
    """In-process gateway: every charge stays pending until someone emits a
    status for it from the MockPay page (or a test)."""

    name = "mock"

    def __init__(self, server_key: str = "mock-server-key") -> None:
        super().__init__(server_key)
        self._orders: Dict[str, dict] = {}

    async def charge_gopay(self, order_id: str, amount: int) -> ChargeResult:
        txid = str(uuid.uuid4())
        gross = f"{int(amount)}.00"
        self._orders[order_id] = {
            "transaction_id": txid,
            "gross_amount": gross,
            "transaction_status": "pending",
        }
        return {
            "transaction_id": txid,
            "order_id": order_id,
            "gross_amount": gross,
            "status": "pending",
            "payment_url": f"/mockpay/{order_id}",
        }

    async def get_status(self, order_id: str) -> dict:
        o = self._orders.get(order_id)
        if o is None:
            raise PaymentGatewayError(f"mockpay: unknown order {order_id}")
        status = o["transaction_status"]
        return {
            "status_code": MOCK_STATUS_CODES.get(status, "200"),
            "status_message": f"Success, transaction is {status}",
            "transaction_id": o["transaction_id"],
            "order_id": order_id,
            "gross_amount": o["gross_amount"],
            "payment_type": "gopay",
            "transaction_status": status,
        }

    def has_order(self, order_id: str) -> bool:
        return order_id in self._orders

    def set_status(self, order_id: str, status: str) -> None:
        if order_id not in self._orders:
            raise PaymentGatewayError(f"mockpay: unknown order {order_id}")
        self._orders[order_id]["transaction_status"] = status

    async def emit(self, order_id: str, status: str) -> dict:
        """Move an order to ``status`` and return the signed notification the
        real gateway would POST to our webhook."""
        self.set_status(order_id, status)
        event = await self.get_status(order_id)
        event["signature_key"] = notification_signature(
            order_id, event["status_code"], event["gross_amount"],
            self.server_key,
        )
        return event


def new_adapter(
    kind: str, *, server_key: str, env: str = "sandbox",
    callback_url: Optional[str] = None, timeout: float = 10.0,
) -> PaymentAdapter:
    if kind == "mock":
        return MockPay(server_key or "mock-server-key")
    if kind == "midtrans":
        if not server_key:
            logger.warning("MIDTRANS_SERVER_KEY is empty; charges will fail")
        return MidtransGateway(
            server_key, env=env, callback_url=callback_url, timeout=timeout
        )
    raise ValueError(f"unknown payment gateway: {kind}")
