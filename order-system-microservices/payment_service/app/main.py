# --- Imports ---
import structlog
from fastapi import Depends, FastAPI
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .authorizer import ChargeAuthorizer
from .logging_config import setup_logging

setup_logging("payment_service")
logger = structlog.get_logger(__name__)

# --- App Instance ---
app = FastAPI()

# One decision table per process.
authorizer = ChargeAuthorizer()


def get_authorizer() -> ChargeAuthorizer:
    return authorizer


# --- Request Models ---
class ChargeRequest(BaseModel):
    """Defines the request model for a charge."""
    order_id: str = ""
    amount_cents: int = 0
    currency: str = ""
    idempotency_key: str = ""


class FaultOverride(BaseModel):
    """Runtime fault-injection settings; replaces the environment until cleared."""
    latency_ms: int = 0
    force_fail: bool = False
    error_rate: float = 0.0


# --- Endpoints ---
@app.get("/")
def root():
    """Health check endpoint to verify the service is running."""
    return {"message": "Payment service is running"}


@app.post("/api/v1/payments/charge")
def charge(req: ChargeRequest, charges: ChargeAuthorizer = Depends(get_authorizer)):
    """
    Decides a charge once per idempotency key.
    - A decline is a normal 200 response with success=false.
    - Invalid requests are rejected with 400 and never decided.
    """
    if not req.order_id or not req.currency or not req.idempotency_key or req.amount_cents <= 0:
        return JSONResponse(status_code=400, content={"error": "missing or invalid required fields"})

    decision = charges.charge(req.order_id, req.amount_cents, req.currency, req.idempotency_key)
    return {"success": decision.success, "code": decision.code}


@app.get("/api/v1/faults")
def get_faults(charges: ChargeAuthorizer = Depends(get_authorizer)):
    return charges.faults.current().to_dict()


@app.put("/api/v1/faults")
def set_faults(req: FaultOverride, charges: ChargeAuthorizer = Depends(get_authorizer)):
    settings = charges.faults.override(req.latency_ms, req.force_fail, req.error_rate)
    logger.warning("fault_override_set", **settings.to_dict())
    return settings.to_dict()


@app.delete("/api/v1/faults")
def clear_faults(charges: ChargeAuthorizer = Depends(get_authorizer)):
    charges.faults.clear()
    logger.info("fault_override_cleared")
    return charges.faults.current().to_dict()
