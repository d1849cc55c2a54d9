"""
Fault injection knobs for the payment service.

The settings are looked up again on every charge decision, so chaos
experiments can be switched on and off without restarting the process.
"""
import os
import threading
from dataclasses import asdict, dataclass
from typing import Optional

LATENCY_ENV = "PAYMENTS_LATENCY_MS"
FORCE_FAIL_ENV = "PAYMENTS_FORCE_FAIL"
ERROR_RATE_ENV = "PAYMENTS_ERROR_RATE"


@dataclass(frozen=True)
class FaultSettings:
    latency_ms: int = 0
    force_fail: bool = False
    error_rate: float = 0.0

    def to_dict(self):
        return asdict(self)


def parse_latency_ms(raw) -> int:
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return 0
    return max(value, 0)


def parse_error_rate(raw) -> float:
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return 0.0
    # Only (0, 1] is meaningful; anything else disables random declines.
    if not 0 < value <= 1:
        return 0.0
    return value


def parse_force_fail(raw) -> bool:
    return raw in ("true", "1")


def settings_from_env(environ=None) -> FaultSettings:
    environ = os.environ if environ is None else environ
    return FaultSettings(
        latency_ms=parse_latency_ms(environ.get(LATENCY_ENV, "")),
        force_fail=parse_force_fail(environ.get(FORCE_FAIL_ENV, "")),
        error_rate=parse_error_rate(environ.get(ERROR_RATE_ENV, "")),
    )


class FaultInjector:
    """
    Source of the current FaultSettings.

    An override set at runtime (through the admin endpoint) wins over the
    environment until it is cleared.
    """

    def __init__(self, environ=None):
        self._environ = environ
        self._override: Optional[FaultSettings] = None
        self._lock = threading.Lock()

    def current(self) -> FaultSettings:
        with self._lock:
            override = self._override
        if override is not None:
            return override
        return settings_from_env(self._environ)

    def override(self, latency_ms=0, force_fail=False, error_rate=0.0) -> FaultSettings:
        settings = FaultSettings(
            latency_ms=parse_latency_ms(latency_ms),
            force_fail=bool(force_fail),
            error_rate=parse_error_rate(error_rate),
        )
        with self._lock:
            self._override = settings
        return settings

    def clear(self):
        with self._lock:
            self._override = None
