"""
REST client for the protocol gateway — version discovery and health.
"""

from typing import Any, Optional

import httpx

from dansbot.errors import GatewayError

DEFAULT_GATEWAY_URL = "http://localhost:8787"


class HttpClient:
    def __init__(
        self,
        base_url: str = DEFAULT_GATEWAY_URL,
        token: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._client = httpx.AsyncClient(
            base_url=f"{self._base_url}/api",
            headers={"User-Agent": "dansbot/0.2.0", "Accept": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    def _auth_headers(self) -> dict[str, str]:
        if self._token:
            return {"Authorization": f"Bearer {self._token}"}
        return {}

    @staticmethod
    def _unwrap(json_data: Any) -> Any:
        """Unwrap the gateway response: { "status": "success", "data": <actual_data> }"""
        if isinstance(json_data, dict) and "status" in json_data and "data" in json_data:
            return json_data["data"]
        return json_data

    async def get(self, path: str) -> Any:
        try:
            resp = await self._client.get(path, headers=self._auth_headers())
        except httpx.HTTPError as e:
            raise GatewayError(f"GET {path} failed: {e}")
        if resp.status_code >= 400:
            raise GatewayError(f"HTTP {resp.status_code}: {resp.text[:200]}", details={"status": resp.status_code})
        return self._unwrap(resp.json())

    async def fetch_protocol_version(self) -> Optional[str]:
        """Latest wire-protocol version the gateway can speak, e.g. "2.3000.1015901307"."""
        result = await self.get("/v1/version")
        version = result.get("version") if isinstance(result, dict) else result
        if isinstance(version, (list, tuple)):
            return ".".join(str(part) for part in version)
        return str(version) if version else None

    async def health(self) -> bool:
        try:
            result = await self.get("/health")
        except GatewayError:
            return False
        return isinstance(result, dict) and result.get("status") == "ok"

    async def close(self) -> None:
        await self._client.aclose()
