# In file: order-system-microservices/gateway_service/app/main.py

from contextlib import asynccontextmanager

import structlog
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from . import config
from .clients import NotificationClient, OrderLedgerClient, PaymentClient
from .errors import DownstreamError, NotFound, ValidationError
from .logging_config import setup_logging
from .orchestrator import Orchestrator

setup_logging("gateway_service")
logger = structlog.get_logger(__name__)


def build_orchestrator() -> Orchestrator:
    """
    Wire the downstream clients, probing each service first.

    The order and payment services are required: if either can't be reached
    the exception propagates and startup is aborted. Notifications are
    optional and are simply left out when unreachable.
    """
    ledger = OrderLedgerClient(config.ORDER_SERVICE_URL)
    payments = PaymentClient(config.PAYMENT_SERVICE_URL)
    for client in (ledger, payments):
        try:
            client.ping(timeout=config.STARTUP_PROBE_TIMEOUT_SECONDS)
        except DownstreamError:
            logger.critical("downstream_unreachable", service=client.service, url=client.base_url)
            raise

    notifier = None
    if config.NOTIFICATION_SERVICE_URL:
        candidate = NotificationClient(config.NOTIFICATION_SERVICE_URL)
        try:
            candidate.ping(timeout=config.STARTUP_PROBE_TIMEOUT_SECONDS)
            notifier = candidate
        except DownstreamError as e:
            logger.warning("notifications_disabled", url=candidate.base_url, error=str(e))

    return Orchestrator(ledger, payments, notifier=notifier)


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.orchestrator = build_orchestrator()
    logger.info("gateway_started")
    yield
    app.state.orchestrator.close()


app = FastAPI(lifespan=lifespan)


def get_orchestrator(request: Request) -> Orchestrator:
    return request.app.state.orchestrator


class CreateOrderRequest(BaseModel):
    """Defines the data model for an incoming order request."""
    user_id: str = ""
    amount_cents: int = 0
    currency: str = ""
    idempotency_key: str = ""


def _error(status_code, message):
    return JSONResponse(status_code=status_code, content={"error": message})


@app.exception_handler(RequestValidationError)
async def invalid_body(request: Request, exc: RequestValidationError):
    return _error(400, "invalid JSON")


@app.get("/")
def root():
    """Health check endpoint."""
    return {"message": "Gateway is running"}


# Places an order: order service, then payment service, then a best-effort receipt.
@app.post("/orders")
def create_order(req: CreateOrderRequest, orchestrator: Orchestrator = Depends(get_orchestrator)):
    try:
        outcome = orchestrator.create_order(req.user_id, req.amount_cents, req.currency, req.idempotency_key)
    except ValidationError as e:
        return _error(400, str(e))
    except DownstreamError as e:
        logger.error("create_order_failed", idempotency_key=req.idempotency_key, error=str(e))
        return _error(500, str(e))

    return outcome.to_dict()


# Retrieves a single order. The path converter lets ids with "/" reach validation.
@app.get("/orders/{order_id:path}")
def get_order(order_id: str, orchestrator: Orchestrator = Depends(get_orchestrator)):
    try:
        return orchestrator.get_order(order_id)
    except ValidationError as e:
        return _error(400, str(e))
    except NotFound:
        return _error(404, "order not found")
    except DownstreamError as e:
        logger.error("get_order_failed", order_id=order_id, error=str(e))
        return _error(500, str(e))
