"""
Pytest configuration and fixtures.
"""
import threading

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from gateway_service.app.clients import ChargeResult, CreatedOrder
from gateway_service.app.errors import NotFound
from order_service.app import ledger
from order_service.app.database import Base
from order_service.app.models import Order


@pytest.fixture
def session_factory(tmp_path):
    """SQLite database file shared by every session the test opens."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'orders.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


def count_orders(db, idempotency_key):
    return db.query(Order).filter(Order.idempotency_key == idempotency_key).count()


class InlineExecutor:
    """Runs submitted work immediately so tests can assert on it."""

    def __init__(self):
        self.submitted = 0

    def submit(self, fn, *args, **kwargs):
        self.submitted += 1
        fn(*args, **kwargs)

    def shutdown(self, wait=True):
        pass


class InProcessLedger:
    """Gateway-side ledger client backed directly by the order service code."""

    def __init__(self, session_factory):
        self.session_factory = session_factory
        self.create_calls = 0
        self.get_calls = 0
        self._lock = threading.Lock()

    def create_order(self, user_id, amount_cents, currency, idempotency_key):
        with self._lock:
            self.create_calls += 1
        with self.session_factory() as db:
            order_id, status = ledger.create_order(db, user_id, amount_cents, currency, idempotency_key)
        return CreatedOrder(order_id=order_id, status=status)

    def get_order(self, order_id):
        self.get_calls += 1
        with self.session_factory() as db:
            try:
                return ledger.get_order(db, order_id).to_dict()
            except ledger.OrderNotFound:
                raise NotFound("orders: order not found", "orders")


class ScriptedPayments:
    """Payment client returning (or raising) a scripted outcome per attempt."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    def charge(self, order_id, amount_cents, currency, idempotency_key):
        self.calls.append((order_id, amount_cents, currency, idempotency_key))
        outcome = self.outcomes[min(len(self.calls), len(self.outcomes)) - 1]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class RecordingNotifier:
    def __init__(self, error=None):
        self.sent = []
        self.error = error

    def send(self, order_id, user_id):
        self.sent.append((order_id, user_id))
        if self.error is not None:
            raise self.error
        return {"ok": True}


@pytest.fixture
def approved():
    return ChargeResult(success=True, code="APPROVED")


@pytest.fixture
def declined():
    return ChargeResult(success=False, code="DECLINED")
