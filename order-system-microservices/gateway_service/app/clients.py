"""
HTTP clients for the services behind the gateway.

Every call carries a timeout. Failures are turned into the gateway's error
classes here, so the retry policy only has to look at exception types.
"""
from dataclasses import dataclass
from urllib.parse import quote

import requests

from . import config
from .errors import DownstreamError, InvalidArgument, NotFound, PermanentError, TransientUnavailable

TRANSIENT_STATUS_CODES = (503, 504)
INVALID_ARGUMENT_STATUS_CODES = (400, 422)


@dataclass(frozen=True)
class CreatedOrder:
    order_id: str
    status: str


@dataclass(frozen=True)
class ChargeResult:
    success: bool
    code: str


def _error_detail(response):
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason
    if isinstance(body, dict):
        return body.get("error") or body.get("detail") or str(body)
    return str(body)


class ServiceClient:
    service = "service"

    def __init__(self, base_url, timeout=config.DOWNSTREAM_TIMEOUT_SECONDS, session=None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def request(self, method, path, **kwargs):
        url = f"{self.base_url}{path}"
        kwargs.setdefault("timeout", self.timeout)
        try:
            response = self.session.request(method, url, **kwargs)
        # Timeout first: ConnectTimeout is both a Timeout and a ConnectionError.
        except requests.exceptions.Timeout as e:
            raise TransientUnavailable(f"{self.service}: deadline exceeded", self.service) from e
        except requests.exceptions.ConnectionError as e:
            raise TransientUnavailable(f"{self.service}: unavailable", self.service) from e
        except requests.exceptions.RequestException as e:
            raise PermanentError(f"{self.service}: {e}", self.service) from e

        if response.status_code >= 400:
            raise self._classify(response)
        try:
            return response.json()
        except ValueError as e:
            raise PermanentError(f"{self.service}: malformed response body", self.service) from e

    def _classify(self, response) -> DownstreamError:
        message = f"{self.service}: {_error_detail(response)}"
        if response.status_code in TRANSIENT_STATUS_CODES:
            return TransientUnavailable(message, self.service)
        if response.status_code == 404:
            return NotFound(message, self.service)
        if response.status_code in INVALID_ARGUMENT_STATUS_CODES:
            return InvalidArgument(message, self.service)
        return PermanentError(message, self.service)

    def ping(self, timeout=None):
        """Liveness probe; raises DownstreamError when the service can't be reached."""
        self.request("GET", "/", timeout=timeout or self.timeout)


class OrderLedgerClient(ServiceClient):
    service = "orders"

    def create_order(self, user_id, amount_cents, currency, idempotency_key) -> CreatedOrder:
        body = self.request(
            "POST",
            "/api/v1/orders",
            json={
                "user_id": user_id,
                "amount_cents": amount_cents,
                "currency": currency,
                "idempotency_key": idempotency_key,
            },
        )
        return CreatedOrder(order_id=body["order_id"], status=body["status"])

    def get_order(self, order_id) -> dict:
        # escaped so "?" or "#" in the id cannot truncate the path
        return self.request("GET", f"/api/v1/orders/{quote(order_id, safe='')}")


class PaymentClient(ServiceClient):
    service = "payments"

    def charge(self, order_id, amount_cents, currency, idempotency_key) -> ChargeResult:
        body = self.request(
            "POST",
            "/api/v1/payments/charge",
            json={
                "order_id": order_id,
                "amount_cents": amount_cents,
                "currency": currency,
                "idempotency_key": idempotency_key,
            },
        )
        return ChargeResult(success=bool(body["success"]), code=body["code"])


class NotificationClient(ServiceClient):
    service = "notifications"

    def __init__(self, base_url, timeout=config.NOTIFY_TIMEOUT_SECONDS, session=None):
        super().__init__(base_url, timeout=timeout, session=session)

    def send(self, order_id, user_id) -> dict:
        return self.request(
            "POST",
            "/api/v1/notifications/receipts",
            json={"order_id": order_id, "user_id": user_id},
        )
