"""
Idempotent order storage.

Uniqueness of the idempotency key is enforced by the database, not by a lock
in this process: several order service instances can race on the same key and
exactly one INSERT wins. Everyone else gets the winner's row back.
"""
import uuid
from datetime import datetime, timezone

import structlog
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .models import ORDER_STATUS_CREATED, Order

logger = structlog.get_logger(__name__)

_DIALECT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class InvalidOrder(ValueError):
    """Request fields are missing or out of range."""


class OrderNotFound(LookupError):
    """No order exists with the requested id."""


class StorageFailure(RuntimeError):
    """The database failed while reading or writing an order."""


def validate_order_fields(user_id, amount_cents, currency, idempotency_key):
    if not user_id or not currency or not idempotency_key:
        raise InvalidOrder("missing or invalid required fields")
    if amount_cents is None or amount_cents <= 0:
        raise InvalidOrder("missing or invalid required fields")


def _upsert_statement(dialect_name, values):
    try:
        insert = _DIALECT_INSERTS[dialect_name]
    except KeyError:
        raise StorageFailure(f"unsupported database dialect: {dialect_name}")

    table = Order.__table__
    stmt = insert(table).values(**values)
    # The no-op update turns the conflict into a row RETURNING can report,
    # so the loser of the race reads the winner's id and status.
    stmt = stmt.on_conflict_do_update(
        index_elements=[table.c.idempotency_key],
        set_={"status": table.c.status},
    )
    return stmt.returning(table.c.id, table.c.status)


def create_order(db: Session, user_id: str, amount_cents: int, currency: str, idempotency_key: str):
    """
    Insert an order for ``idempotency_key`` or return the one already stored.

    Returns a ``(order_id, status)`` tuple. Repeated and concurrent calls with
    the same key always return the same pair.
    """
    validate_order_fields(user_id, amount_cents, currency, idempotency_key)

    values = {
        "id": str(uuid.uuid4()),
        "user_id": user_id,
        "amount_cents": amount_cents,
        "currency": currency,
        "status": ORDER_STATUS_CREATED,
        "idempotency_key": idempotency_key,
        "created_at": datetime.now(timezone.utc),
    }
    stmt = _upsert_statement(db.get_bind().dialect.name, values)

    try:
        row = db.execute(stmt).one()
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("order_create_failed", idempotency_key=idempotency_key, error=str(e))
        raise StorageFailure("failed to create order") from e

    order_id, status = row.id, row.status
    logger.info(
        "order_created" if order_id == values["id"] else "order_replayed",
        order_id=order_id,
        idempotency_key=idempotency_key,
        status=status,
    )
    return order_id, status


def get_order(db: Session, order_id: str) -> Order:
    if not order_id:
        raise InvalidOrder("order_id required")

    try:
        order = db.get(Order, order_id)
    except SQLAlchemyError as e:
        logger.error("order_lookup_failed", order_id=order_id, error=str(e))
        raise StorageFailure("failed to get order") from e

    if order is None:
        raise OrderNotFound(order_id)
    return order
