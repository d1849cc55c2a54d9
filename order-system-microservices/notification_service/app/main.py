# --- Imports ---
from contextlib import asynccontextmanager

import pika
import structlog
from fastapi import Depends, FastAPI
from pydantic import BaseModel

from .logging_config import setup_logging
from .messaging.bus import RabbitMQPublisher

setup_logging("notification_service")
logger = structlog.get_logger(__name__)

RECEIPT_ROUTING_KEY = "receipt.sent"

publisher = RabbitMQPublisher()


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    publisher.close()
    logger.info("notification_service_stopped")


# --- App Instance ---
app = FastAPI(lifespan=lifespan)


def get_publisher() -> RabbitMQPublisher:
    return publisher


# --- Request Models ---
class ReceiptRequest(BaseModel):
    """A receipt to deliver for a placed order."""
    order_id: str
    user_id: str


# --- Endpoints ---
@app.get("/")
def root():
    """Health check endpoint."""
    return {"message": "Notification service is running"}


@app.post("/api/v1/notifications/receipts")
def send_receipt(req: ReceiptRequest, bus: RabbitMQPublisher = Depends(get_publisher)):
    """
    Records the receipt and publishes 'receipt.sent'.
    Delivery is best effort: a broker failure is logged and reported as ok=false.
    """
    logger.info("receipt_sent", order_id=req.order_id, user_id=req.user_id)
    try:
        bus.publish(routing_key=RECEIPT_ROUTING_KEY, message={"order_id": req.order_id, "user_id": req.user_id})
    except pika.exceptions.AMQPError as e:
        logger.warning("receipt_publish_failed", order_id=req.order_id, error=str(e))
        return {"ok": False}
    return {"ok": True}
