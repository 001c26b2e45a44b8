import asyncio
import logging
import time
from typing import Any, Dict, List, Optional, Union
from uuid import UUID

import httpx

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = frozenset({"completed", "failed", "cancelled", "rolled_back", "rollback_failed"})

class OperationsClientError(Exception):
    def __init__(self, status_code: int, detail: Any):
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"HTTP {status_code}: {detail}")

class OperationsClient:
    """
    Async client for the bulk operations API, used by the administrative
    layer to submit operations and poll their outcome.
    """

    def __init__(
        self,
        base_url: str,
        owner: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 10.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.owner = owner
        self.client = httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=transport)

    async def __aenter__(self) -> "OperationsClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    @staticmethod
    def _path(operation_id: Union[UUID, str], suffix: str = "") -> str:
        return f"/api/v1/operations/{operation_id}{suffix}"

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        resp = await self.client.request(method, path, **kwargs)
        if resp.is_error:
            try:
                detail = resp.json().get("detail")
            except ValueError:
                detail = resp.text
            logger.info("%s %s rejected: status=%s detail=%s", method, path, resp.status_code, detail)
            raise OperationsClientError(resp.status_code, detail)
        return resp.json()

    async def submit(
        self,
        operation_type: str,
        operation_name: str,
        items: List[Union[int, str]],
        options: Optional[Dict[str, Any]] = None,
        owner: Optional[str] = None,
    ) -> UUID:
        data = await self._request("POST", "/api/v1/operations", json={
            "operation_type": operation_type,
            "operation_name": operation_name,
            "items": list(items),
            "options": options or {},
            "owner": owner or self.owner,
        })
        return UUID(data["operation_id"])

    async def progress(self, operation_id: Union[UUID, str]) -> Dict[str, Any]:
        return await self._request("GET", self._path(operation_id, "/progress"))

    async def get(self, operation_id: Union[UUID, str]) -> Dict[str, Any]:
        return await self._request("GET", self._path(operation_id))

    async def cancel(self, operation_id: Union[UUID, str]) -> Dict[str, Any]:
        return await self._request("POST", self._path(operation_id, "/cancel"))

    async def rollback(self, operation_id: Union[UUID, str]) -> Dict[str, Any]:
        return await self._request("POST", self._path(operation_id, "/rollback"))

    async def list(
        self,
        status: Optional[str] = None,
        owner: Optional[str] = None,
        operation_type: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"limit": limit, "offset": offset}
        if status:
            params["status"] = status
        if owner:
            params["owner"] = owner
        if operation_type:
            params["operation_type"] = operation_type
        return await self._request("GET", "/api/v1/operations", params=params)

    async def operation_types(self) -> List[Dict[str, Any]]:
        return await self._request("GET", "/api/v1/operations/types")

    async def wait_for(
        self,
        operation_id: Union[UUID, str],
        interval: float = 2.0,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        """
        Polls progress until the operation reaches a terminal status.
        Returns the last progress snapshot; raises TimeoutError if `timeout`
        elapses first.
        """
        deadline = time.monotonic() + timeout if timeout is not None else None
        while True:
            progress = await self.progress(operation_id)
            if progress["status"] in TERMINAL_STATUSES:
                return progress

            logger.debug(
                "Operation %s at %s%% (%s/%s)",
                operation_id,
                progress["progress_percentage"],
                progress["processed_items"],
                progress["total_items"],
            )
            if deadline is not None and time.monotonic() >= deadline:
                raise TimeoutError(f"Operation {operation_id} still {progress['status']} after {timeout}s")
            await asyncio.sleep(interval)

    async def close(self):
        await self.client.aclose()
