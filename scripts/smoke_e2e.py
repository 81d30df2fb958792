#!/usr/bin/env python3
"""
Smoke E2E test: runs one automation pass for an existing business.

The business must already exist with settings and at least one pending
review. Without LLM / Google / Brevo credentials the run still completes:
replies fall back to templates and publication failures are recorded.

Env vars:
  BASE_URL     (default http://localhost:8000)
  BUSINESS_ID  (required)
  USER_ID      (optional)
"""
from __future__ import annotations

import json
import os
import sys
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

BASE_URL = os.environ.get("BASE_URL", "http://localhost:8000").rstrip("/")
BUSINESS_ID = os.environ.get("BUSINESS_ID", "")
USER_ID = os.environ.get("USER_ID") or None

# ── Helpers ──────────────────────────────────────────────────

class SmokeError(Exception):
    pass


def _req(method: str, path: str, body: dict | None = None) -> dict:
    url = f"{BASE_URL}{path}"
    data = json.dumps(body).encode() if body else None
    req = Request(url, data=data, headers={"Content-Type": "application/json"}, method=method)
    try:
        with urlopen(req, timeout=120) as resp:
            raw = resp.read().decode()
            return json.loads(raw) if raw else {}
    except HTTPError as e:
        raise SmokeError(f"{method} {path} → {e.code}: {e.read().decode()[:500]}")
    except URLError as e:
        raise SmokeError(f"{method} {path} → URLError: {e}")


def step(name: str):
    print(f"\n{'='*60}")
    print(f"  STEP: {name}")
    print(f"{'='*60}")


def ok(msg: str):
    print(f"  ✅ {msg}")


def fail(msg: str):
    print(f"  ❌ {msg}")
    raise SmokeError(msg)


# ── Steps ────────────────────────────────────────────────────

def step1_ping():
    step("1. Ping")
    if _req("GET", "/ping").get("status") != "ok":
        fail("backend is not answering /ping")
    ok("Backend up")


def step2_process() -> dict:
    step("2. Run automation")
    result = _req("POST", "/api/automation/process", {"business_id": BUSINESS_ID, "user_id": USER_ID})
    ok(
        f"processed={result['processed']} generated={result['generated']} "
        f"approved={result['approved']} posted={result['posted']} notified={result['notified']} "
        f"duration={result['duration_ms']}ms"
    )
    for err in result.get("errors", []):
        print(f"  ⚠️  {err['step']}: {err['error']}")
    if result.get("deadline_exceeded"):
        print("  ⚠️  deadline exceeded, remaining reviews left for the next run")
    return result


def step3_status():
    step("3. Status")
    status = _req("GET", f"/api/automation/status?business_id={BUSINESS_ID}&limit=10")
    health = status["health"]
    ok(f"health={health['status']} errors={health['error_count']}")
    types = [a["type"] for a in status["recent_activities"]]
    if "automation_api_called" not in types:
        print("  ⚠️  no automation_api_called activity (automation toggles off?)")
    ok(f"activities: {', '.join(types)}")


def step4_recovery():
    step("4. Recovery")
    retried = _req("PATCH", "/api/automation/recovery", {"business_id": BUSINESS_ID, "action": "retry_failed"})
    ok(f"retry_failed: resolved={retried['resolved_errors']} remaining={retried['remaining_errors']}")


def main() -> int:
    if not BUSINESS_ID:
        print("BUSINESS_ID is required")
        return 2
    try:
        step1_ping()
        step2_process()
        step3_status()
        step4_recovery()
    except SmokeError as e:
        print(f"\nSMOKE FAILED: {e}")
        return 1
    print("\nSMOKE PASSED")
    return 0


if __name__ == "__main__":
    sys.exit(main())
