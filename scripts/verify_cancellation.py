#!/usr/bin/env python3
"""
Cancels a long operation mid-run on a live server and checks that at most one
more item was processed after the cancel request.
"""
import asyncio
from uuid import uuid4

from bulkops.db.models import AuthorizedDomain
from bulkops.db.session import AsyncSessionLocal, create_all
from bulkops_client import OperationsClient, OperationsClientError

API_URL = "http://localhost:8000"
ITEMS = 300

async def seed_domains(count: int) -> list[int]:
    await create_all()
    prefix = uuid4().hex[:8]
    async with AsyncSessionLocal() as session:
        rows = [AuthorizedDomain(domain=f"{prefix}-{n}.example.com", status="active") for n in range(count)]
        session.add_all(rows)
        await session.commit()
        return [r.id for r in rows]

async def verify():
    print("--- Verifying cooperative cancellation ---")
    ids = await seed_domains(ITEMS)

    async with OperationsClient(API_URL, owner="verify-cancellation") as client:
        operation_id = await client.submit("domains", "suspend", ids, options={"reason": "cancellation check"})
        print(f"Operation submitted: {operation_id}")

        # Let a few items through first
        while (await client.progress(operation_id))["processed_items"] < 10:
            await asyncio.sleep(0.05)

        record = await client.cancel(operation_id)
        at_cancel = record["processed_items"]
        print(f"Cancelled at processed_items={at_cancel}")

        await asyncio.sleep(1)
        record = await client.get(operation_id)
        print(f"Final: status={record['status']} processed_items={record['processed_items']}")

        ok = record["status"] == "cancelled" and at_cancel <= record["processed_items"] <= at_cancel + 1
        print("SUCCESS: Cancellation stopped the run." if ok else "FAILURE: Items kept running after cancel.")

        try:
            await client.rollback(operation_id)
            print("FAILURE: Cancelled operation accepted a rollback.")
        except OperationsClientError as e:
            print(f"Rollback rejected as expected: {e}")

if __name__ == "__main__":
    asyncio.run(verify())
