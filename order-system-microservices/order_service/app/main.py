# In file: order-system-microservices/order_service/app/main.py

from contextlib import asynccontextmanager

import structlog
from fastapi import Depends, FastAPI
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from . import ledger
from .database import get_db, init_db
from .logging_config import setup_logging

setup_logging("order_service")
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # An unreachable database is fatal: the exception aborts startup.
    init_db()
    logger.info("order_service_started")
    yield


app = FastAPI(lifespan=lifespan)


class OrderRequest(BaseModel):
    """Defines the data model for an incoming order request."""
    user_id: str = ""
    amount_cents: int = 0
    currency: str = ""
    idempotency_key: str = ""


def _error(status_code, message):
    return JSONResponse(status_code=status_code, content={"error": message})


@app.get("/")
def root():
    """Health check endpoint."""
    return {"message": "Order service is running"}


# Creates an order, or returns the order already stored for the idempotency key.
@app.post("/api/v1/orders")
def create_order(req: OrderRequest, db: Session = Depends(get_db)):
    try:
        order_id, status = ledger.create_order(
            db, req.user_id, req.amount_cents, req.currency, req.idempotency_key
        )
    except ledger.InvalidOrder as e:
        return _error(400, str(e))
    except ledger.StorageFailure as e:
        return _error(500, str(e))

    return {"order_id": order_id, "status": status}


# Retrieves a single order by its ID.
@app.get("/api/v1/orders/{order_id}")
def get_order(order_id: str, db: Session = Depends(get_db)):
    try:
        order = ledger.get_order(db, order_id)
    except ledger.InvalidOrder as e:
        return _error(400, str(e))
    except ledger.OrderNotFound:
        return _error(404, "order not found")
    except ledger.StorageFailure as e:
        return _error(500, str(e))

    return order.to_dict()
