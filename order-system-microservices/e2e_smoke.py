#!/usr/bin/env python3
"""
End-to-end smoke checks against a running gateway.

Run:
  python e2e_smoke.py

Optional env:
  GATEWAY_BASE=http://localhost:8080
  PAYMENT_BASE=http://localhost:8082
  CONCURRENCY=5
  DEBUG=1
"""

from __future__ import annotations

import os
import sys
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Dict, List

import requests


# =========================
# Simple CLI UI (ANSI)
# =========================

class Style:
    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"

    RED = "\033[91m"
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    BLUE = "\033[94m"
    CYAN = "\033[96m"
    GRAY = "\033[90m"


def section_title(text: str):
    line = "─" * (len(text) + 2)
    print(f"\n{Style.BLUE}┌{line}┐{Style.RESET}")
    print(f"{Style.BLUE}│ {Style.BOLD}{text}{Style.RESET}{Style.BLUE} │{Style.RESET}")
    print(f"{Style.BLUE}└{line}┘{Style.RESET}")


def info(msg: str):
    print(f"{Style.CYAN}ℹ {msg}{Style.RESET}")


def ok(msg: str):
    print(f"{Style.GREEN}✔ {msg}{Style.RESET}")


def fail(msg: str):
    print(f"{Style.RED}✘ {msg}{Style.RESET}")


# =========================
# Config
# =========================

GATEWAY_BASE = os.getenv("GATEWAY_BASE", "http://localhost:8080")
PAYMENT_BASE = os.getenv("PAYMENT_BASE", "http://localhost:8082")
CONCURRENCY = int(os.getenv("CONCURRENCY", "5"))
DEBUG = os.getenv("DEBUG", "0").strip() in {"1", "true", "True", "YES", "yes"}


def debug(msg: str):
    if DEBUG:
        print(f"{Style.GRAY}… {msg}{Style.RESET}")


@dataclass
class CheckResult:
    name: str
    success: bool
    details: str = ""


# =========================
# HTTP helpers
# =========================

def http(method: str, url: str, **kwargs) -> requests.Response:
    kwargs.setdefault("timeout", 15)
    debug(f"{method} {url} {kwargs.get('json', '')}")
    return requests.request(method, url, **kwargs)


def wait_for_health(base_url: str, service_name: str, timeout: int = 30) -> bool:
    start = time.time()
    while time.time() - start < timeout:
        try:
            if http("GET", f"{base_url}/").status_code == 200:
                ok(f"{service_name} is healthy.")
                return True
        except requests.RequestException as e:
            debug(f"{service_name} not ready: {e}")
        time.sleep(1)
    fail(f"{service_name} did not become healthy in {timeout} seconds.")
    return False


def order_payload(key: str, amount_cents: int = 1299) -> Dict[str, Any]:
    return {"user_id": f"u-{key}", "amount_cents": amount_cents, "currency": "USD", "idempotency_key": key}


def post_order(payload: Dict[str, Any]) -> requests.Response:
    return http("POST", f"{GATEWAY_BASE}/orders", json=payload)


def check(name: str, success: bool, details: str) -> CheckResult:
    (ok if success else fail)(f"{name}: {details}")
    return CheckResult(name, success, details)


# =========================
# Scenarios
# =========================

def scenario_create_and_replay() -> List[CheckResult]:
    section_title("Create, replay with the same key, look up")
    key = f"e2e-{uuid.uuid4()}"
    first = post_order(order_payload(key))
    if first.status_code != 200:
        return [check("Create order", False, f"HTTP {first.status_code}: {first.text}")]
    body = first.json()
    results = [check("Create order", True, f"order_id={body['order_id']} payment={body['payment_code']}")]

    second = post_order(order_payload(key)).json()
    results.append(check(
        "Replay returns same order and decision",
        second == body,
        f"first={body} second={second}",
    ))

    looked_up = http("GET", f"{GATEWAY_BASE}/orders/{body['order_id']}")
    results.append(check(
        "Lookup",
        looked_up.status_code == 200 and looked_up.json().get("idempotency_key") == key,
        f"HTTP {looked_up.status_code}",
    ))
    return results


def scenario_concurrent_same_key() -> List[CheckResult]:
    section_title(f"{CONCURRENCY} concurrent requests with one key")
    key = f"e2e-{uuid.uuid4()}"
    with ThreadPoolExecutor(max_workers=CONCURRENCY) as pool:
        responses = list(pool.map(lambda _: post_order(order_payload(key)), range(CONCURRENCY)))
    statuses = {r.status_code for r in responses}
    order_ids = {r.json().get("order_id") for r in responses if r.status_code == 200}
    return [check("Single order id", statuses == {200} and len(order_ids) == 1, f"statuses={statuses} ids={order_ids}")]


def scenario_forced_decline() -> List[CheckResult]:
    section_title("Forced decline is a normal response")
    set_faults = http("PUT", f"{PAYMENT_BASE}/api/v1/faults", json={"force_fail": True})
    if set_faults.status_code != 200:
        return [check("Force decline", False, f"could not set faults: HTTP {set_faults.status_code}")]
    try:
        resp = post_order(order_payload(f"e2e-{uuid.uuid4()}"))
        body = resp.json()
        return [check(
            "Decline passed through",
            resp.status_code == 200 and body.get("payment_success") is False and body.get("payment_code") == "DECLINED",
            f"HTTP {resp.status_code} body={body}",
        )]
    finally:
        http("DELETE", f"{PAYMENT_BASE}/api/v1/faults")


def scenario_client_errors() -> List[CheckResult]:
    section_title("Client errors")
    zero_amount = post_order(order_payload(f"e2e-{uuid.uuid4()}", amount_cents=0))
    no_key = post_order(order_payload(""))
    missing = http("GET", f"{GATEWAY_BASE}/orders/{uuid.uuid4()}")
    return [
        check("Zero amount rejected", zero_amount.status_code == 400, f"HTTP {zero_amount.status_code}"),
        check("Empty key rejected", no_key.status_code == 400, f"HTTP {no_key.status_code}"),
        check("Unknown order is 404", missing.status_code == 404, f"HTTP {missing.status_code}"),
    ]


# =========================
# Summary
# =========================

def print_results(results: List[CheckResult]) -> int:
    print(f"\n{Style.BOLD}================ RESULTS ================{Style.RESET}")
    for r in results:
        color = Style.GREEN if r.success else Style.RED
        print(f"{color}{'✅' if r.success else '❌'} {r.name}{Style.RESET}")
        if r.details:
            print(f"    {Style.DIM}{r.details}{Style.RESET}")
    failed = sum(1 for r in results if not r.success)
    print(f"Total: {len(results)}  |  Passed: {Style.GREEN}{len(results) - failed}{Style.RESET}  |  Failed: {Style.RED}{failed}{Style.RESET}")
    return failed


def main():
    info("Waiting for services to become healthy...")
    if not wait_for_health(GATEWAY_BASE, "gateway") or not wait_for_health(PAYMENT_BASE, "payment_service"):
        sys.exit(1)

    results: List[CheckResult] = []
    results.extend(scenario_create_and_replay())
    results.extend(scenario_concurrent_same_key())
    results.extend(scenario_forced_decline())
    results.extend(scenario_client_errors())

    sys.exit(1 if print_results(results) else 0)


if __name__ == "__main__":
    main()
