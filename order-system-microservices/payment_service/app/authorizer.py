"""
Idempotent charge decisions.

A decision is made at most once per idempotency key and then replayed
verbatim. Decisions live in process memory for the lifetime of the service;
nothing evicts them.
"""
import random
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone

import structlog

from .faults import FaultInjector

logger = structlog.get_logger(__name__)

CODE_APPROVED = "APPROVED"
CODE_DECLINED = "DECLINED"


@dataclass(frozen=True)
class ChargeDecision:
    idempotency_key: str
    success: bool
    code: str
    decided_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class ReadWriteLock:
    """Many readers or one writer."""

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False

    @contextmanager
    def read_locked(self):
        with self._cond:
            while self._writer:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write_locked(self):
        with self._cond:
            while self._writer or self._readers:
                self._cond.wait()
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class ChargeAuthorizer:
    """
    Decides charges once per idempotency key.

    Lookups share the table lock. A miss takes the mutex for its key and
    looks again before deciding, so check, decide and store happen as one
    unit per key. Without that per-key mutex two first calls for the same
    key could both miss, both decide and the later write would replace the
    earlier one, handing the two callers different answers.
    """

    def __init__(self, faults=None, rng=None, sleep=time.sleep):
        self.faults = faults or FaultInjector()
        self._rng = rng or random.Random()
        self._rng_lock = threading.Lock()
        self._sleep = sleep
        self._decisions = {}
        self._table_lock = ReadWriteLock()
        self._key_locks = {}
        self._key_locks_guard = threading.Lock()

    def lookup(self, idempotency_key):
        with self._table_lock.read_locked():
            return self._decisions.get(idempotency_key)

    def charge(self, order_id, amount_cents, currency, idempotency_key) -> ChargeDecision:
        cached = self.lookup(idempotency_key)
        if cached is not None:
            logger.info("charge_replayed", order_id=order_id, idempotency_key=idempotency_key, code=cached.code)
            return cached

        with self._lock_for(idempotency_key):
            cached = self.lookup(idempotency_key)
            if cached is not None:
                logger.info("charge_replayed", order_id=order_id, idempotency_key=idempotency_key, code=cached.code)
                return cached

            decision = self._decide(idempotency_key)
            with self._table_lock.write_locked():
                self._decisions[idempotency_key] = decision

        logger.info(
            "charge_decided",
            order_id=order_id,
            amount_cents=amount_cents,
            currency=currency,
            idempotency_key=idempotency_key,
            code=decision.code,
        )
        return decision

    def _decide(self, idempotency_key) -> ChargeDecision:
        settings = self.faults.current()

        if settings.latency_ms > 0:
            self._sleep(settings.latency_ms / 1000.0)

        if settings.force_fail:
            return ChargeDecision(idempotency_key, False, CODE_DECLINED)
        if self._sample() < settings.error_rate:
            return ChargeDecision(idempotency_key, False, CODE_DECLINED)
        return ChargeDecision(idempotency_key, True, CODE_APPROVED)

    def _sample(self):
        with self._rng_lock:
            return self._rng.random()

    def _lock_for(self, idempotency_key):
        with self._key_locks_guard:
            lock = self._key_locks.get(idempotency_key)
            if lock is None:
                lock = self._key_locks[idempotency_key] = threading.Lock()
            return lock

    def __len__(self):
        with self._table_lock.read_locked():
            return len(self._decisions)
