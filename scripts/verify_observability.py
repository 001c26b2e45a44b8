#!/usr/bin/env python3
"""Checks that /metrics moves as operations run on a live server."""
import asyncio
import re
from typing import Optional

import httpx

from bulkops_client import OperationsClient

API_URL = "http://localhost:8000"

def parse_metric(output: str, metric_name: str, labels: Optional[dict] = None) -> float:
    """
    Parses a Prometheus metric value from the text output.
    Supports basic label matching.
    """
    for line in output.split('\n'):
        if line.startswith('#') or not line.strip():
            continue

        match = re.match(r'^([a-zA-Z_0-9]+)(\{.*\})?\s+(.+)$', line)
        if not match or match.group(1) != metric_name:
            continue

        found_labels = match.group(2) or ""
        if labels is None or all(f'{k}="{v}"' in found_labels for k, v in labels.items()):
            return float(match.group(3))
    return 0.0

async def scrape() -> str:
    async with httpx.AsyncClient(base_url=API_URL, timeout=5.0) as http:
        return (await http.get("/metrics")).text

async def verify_metrics():
    print("--- Verifying Metrics Behavior (failed items) ---")

    before = await scrape()
    async with OperationsClient(API_URL, owner="verify-observability") as client:
        # Ids that cannot exist: every item fails, the operation ends failed
        operation_id = await client.submit("vanity_codes", "activate", [-1, -2, -3])
        progress = await client.wait_for(operation_id, interval=0.2, timeout=30)
        print(f"Operation {operation_id} finished as {progress['status']}")

    after = await scrape()

    checks = [
        ("bulk_operations_submitted_total", {"operation_type": "vanity_codes"}, 1),
        ("bulk_operation_items_total", {"operation_type": "vanity_codes", "result": "error"}, 3),
        ("bulk_operations_finished_total", {"operation_type": "vanity_codes", "status": "failed"}, 1),
    ]
    ok = True
    for name, labels, expected in checks:
        delta = parse_metric(after, name, labels) - parse_metric(before, name, labels)
        print(f"{name}{labels}: +{delta}")
        ok = ok and delta == expected

    print("SUCCESS: Metrics reflect the run." if ok else "FAILURE: Unexpected metric deltas.")

if __name__ == "__main__":
    asyncio.run(verify_metrics())
