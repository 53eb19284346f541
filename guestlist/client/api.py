"""
HTTP client for the guest list REST API, scoped to one organization
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """Non-2xx response from the API"""

    def __init__(self, status_code: int, message: str, error_code: Optional[str] = None):
        self.status_code = status_code
        self.message = message
        self.error_code = error_code
        super().__init__(f"{status_code}: {message}")


class GuestApiClient:
    def __init__(self, client: httpx.AsyncClient, organization_id: str, *, base_path: str = "/api") -> None:
        self.client = client
        self.organization_id = organization_id
        self.base_path = base_path.rstrip("/")

    @classmethod
    def connect(cls, base_url: str, token: str, organization_id: str, *, timeout: float = 10.0) -> "GuestApiClient":
        client = httpx.AsyncClient(
            base_url=base_url,
            headers={"Authorization": f"Bearer {token}"},
            timeout=timeout,
        )
        return cls(client, organization_id)

    @property
    def organization_path(self) -> str:
        return f"{self.base_path}/organizations/{self.organization_id}"

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        resp = await self.client.request(method, path, **kwargs)
        if resp.status_code >= 400:
            message, code = resp.text, None
            try:
                body = resp.json()
                message = body.get("error") or message
                code = body.get("error_code")
            except ValueError:
                pass
            raise ApiError(resp.status_code, message, code)
        body = resp.json()
        return body.get("data") if isinstance(body, dict) and "success" in body else body

    async def list_guests(self) -> List[Dict[str, Any]]:
        return await self._request("GET", f"{self.organization_path}/guests")

    async def create_guest(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("POST", f"{self.organization_path}/guests", json=payload)

    async def update_guest(self, guest_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("PATCH", f"{self.organization_path}/guests/{guest_id}", json=updates)

    async def delete_guest(self, guest_id: str) -> Dict[str, Any]:
        return await self._request("DELETE", f"{self.organization_path}/guests/{guest_id}")

    async def reorder_guests(self, guest_ids: List[str]) -> Dict[str, Any]:
        return await self._request("POST", f"{self.organization_path}/guests/reorder", json={"guestIds": guest_ids})

    async def move_guest_to_end(self, guest_id: str) -> Dict[str, Any]:
        return await self._request("POST", f"{self.organization_path}/guests/{guest_id}/move-to-end")

    async def get_configuration(self) -> Dict[str, Any]:
        return await self._request("GET", f"{self.organization_path}/config")

    async def broadcast(self, event: Dict[str, Any]) -> Dict[str, Any]:
        """Ask the server to republish a guest mutation event"""
        return await self._request("POST", f"{self.organization_path}/broadcast", json=event)

    async def aclose(self) -> None:
        await self.client.aclose()
