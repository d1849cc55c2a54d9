"""
Order placement across the order, payment and notification services.

Each client request runs order -> charge -> notify, strictly in that order.
The same idempotency key goes to the order service and the payment service,
so a client retry lands on the existing order and the existing charge
decision instead of creating new ones.
"""
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

import structlog
from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from . import config
from .clients import ChargeResult
from .errors import TransientUnavailable, ValidationError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class OrderOutcome:
    order_id: str
    order_status: str
    payment_success: bool
    payment_code: str

    def to_dict(self):
        return {
            "order_id": self.order_id,
            "order_status": self.order_status,
            "payment_success": self.payment_success,
            "payment_code": self.payment_code,
        }


def validate_create_request(user_id, amount_cents, currency, idempotency_key):
    if not user_id or not currency or not idempotency_key or amount_cents is None or amount_cents <= 0:
        raise ValidationError(
            "missing or invalid required fields: user_id, amount_cents (>0), currency, idempotency_key"
        )


def validate_order_id(order_id):
    if not order_id or "/" in order_id:
        raise ValidationError("invalid order id")


def _log_retry(retry_state):
    logger.warning(
        "payment_retry_scheduled",
        attempt=retry_state.attempt_number,
        wait_seconds=round(retry_state.next_action.sleep, 3),
        error=str(retry_state.outcome.exception()),
    )


class Orchestrator:
    """
    Sequences one client request over the downstream services.

    ``notifier`` is optional; without it no receipt is sent. Receipts are
    handed to ``background`` and never waited for.
    """

    def __init__(
        self,
        ledger,
        payments,
        notifier=None,
        background=None,
        sleep=time.sleep,
        max_retries=config.PAYMENT_MAX_RETRIES,
    ):
        self.ledger = ledger
        self.payments = payments
        self.notifier = notifier
        self.background = background
        if notifier is not None and background is None:
            self.background = ThreadPoolExecutor(max_workers=config.NOTIFY_WORKERS, thread_name_prefix="notify")
        self.sleep = sleep
        self.max_retries = max_retries

    def create_order(self, user_id, amount_cents, currency, idempotency_key) -> OrderOutcome:
        validate_create_request(user_id, amount_cents, currency, idempotency_key)

        # Any ledger failure propagates; payment and notification are skipped.
        order = self.ledger.create_order(user_id, amount_cents, currency, idempotency_key)
        logger.info("order_accepted", order_id=order.order_id, idempotency_key=idempotency_key, status=order.status)

        charge = self.charge_with_retry(order.order_id, amount_cents, currency, idempotency_key)

        if self.notifier is not None:
            self.background.submit(self._notify, order.order_id, user_id)

        return OrderOutcome(
            order_id=order.order_id,
            order_status=order.status,
            payment_success=charge.success,
            payment_code=charge.code,
        )

    def charge_with_retry(self, order_id, amount_cents, currency, idempotency_key) -> ChargeResult:
        """
        Charge, retrying only transport-level transient failures.

        Before retry n (1-based) the wait is 100ms * 2**(n-1) plus 25-75ms of
        jitter. A decline comes back as a result and ends the loop like an
        approval. When all attempts fail the last transient error is raised.
        """
        retrying = Retrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_exponential(multiplier=config.RETRY_BASE_DELAY_SECONDS, exp_base=2)
            + wait_random(config.RETRY_JITTER_MIN_SECONDS, config.RETRY_JITTER_MAX_SECONDS),
            retry=retry_if_exception_type(TransientUnavailable),
            before_sleep=_log_retry,
            sleep=self.sleep,
            reraise=True,
        )
        result = retrying(self.payments.charge, order_id, amount_cents, currency, idempotency_key)
        logger.info(
            "payment_decided",
            order_id=order_id,
            idempotency_key=idempotency_key,
            success=result.success,
            code=result.code,
        )
        return result

    def get_order(self, order_id) -> dict:
        validate_order_id(order_id)
        return self.ledger.get_order(order_id)

    def _notify(self, order_id, user_id):
        # Receipts are best effort: whatever happens here, the order already succeeded.
        try:
            self.notifier.send(order_id, user_id)
        except Exception as e:
            logger.warning("receipt_failed", order_id=order_id, error=str(e))
        else:
            logger.debug("receipt_dispatched", order_id=order_id)

    def close(self):
        if self.background is not None:
            self.background.shutdown(wait=False)
