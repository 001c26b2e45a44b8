#!/usr/bin/env python3
"""
End-to-end check against a running server (uvicorn bulkops.main:app) that
shares SQLALCHEMY_DATABASE_URI with this script: deactivate a batch of vanity
codes, wait for completion, roll back, and compare the rows.
"""
import asyncio
from uuid import uuid4

import httpx
from sqlalchemy import select

from bulkops.db.models import VanityCode
from bulkops.db.session import AsyncSessionLocal, create_all
from bulkops_client import OperationsClient

API_URL = "http://localhost:8000"

async def wait_ready():
    print("Waiting for API to be ready...")
    async with httpx.AsyncClient(base_url=API_URL, timeout=5.0) as check_client:
        for _ in range(30):
            try:
                resp = await check_client.get("/health")
                if resp.status_code == 200:
                    print("API is ready!")
                    return True
            except httpx.HTTPError:
                pass
            await asyncio.sleep(1)
    print("API failed to become ready.")
    return False

async def seed_codes(count: int) -> list[int]:
    await create_all()
    prefix = uuid4().hex[:8]
    async with AsyncSessionLocal() as session:
        codes = [VanityCode(vanity_code=f"E2E-{prefix}-{n}", status="active", usage_count=n) for n in range(count)]
        session.add_all(codes)
        await session.commit()
        return [c.id for c in codes]

async def statuses(ids: list[int]) -> dict[int, str]:
    async with AsyncSessionLocal() as session:
        rows = await session.execute(select(VanityCode.id, VanityCode.status).where(VanityCode.id.in_(ids)))
        return dict(rows.all())

async def verify():
    if not await wait_ready():
        return

    ids = await seed_codes(25)
    print(f"Seeded {len(ids)} vanity codes")

    async with OperationsClient(API_URL, owner="verify-e2e") as client:
        # 1. Submit
        operation_id = await client.submit("vanity_codes", "deactivate", ids)
        print(f"Operation submitted: {operation_id}")

        # 2. Poll
        progress = await client.wait_for(operation_id, interval=0.5, timeout=60)
        print(f"Final progress: {progress}")
        after = await statuses(ids)
        if progress["status"] != "completed" or set(after.values()) != {"inactive"}:
            print("FAILURE: Operation did not deactivate every code.")
            return

        record = await client.get(operation_id)
        print(f"can_rollback={record['can_rollback']} snapshots={len(record['rollback_data'])}")

        # 3. Roll back
        record = await client.rollback(operation_id)
        print(f"Rollback status: {record['status']}")
        restored = await statuses(ids)

        if record["status"] == "rolled_back" and set(restored.values()) == {"active"}:
            print("SUCCESS: Operation completed and rolled back.")
        else:
            print(f"FAILURE: Rollback left {restored}")

if __name__ == "__main__":
    asyncio.run(verify())
