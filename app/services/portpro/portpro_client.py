"""PortPro TMS API client (read-only)."""

import logging
from typing import Any, Dict, List, Optional

import httpx

from app.core.config import Settings, get_settings

logger = logging.getLogger(__name__)


class PortProError(Exception):
    """Base exception for PortPro API errors."""
    def __init__(self, message: str, status_code: int = None, response: Any = None):
        self.message = message
        self.status_code = status_code
        self.response = response
        super().__init__(self.message)


class PortProConfigurationError(PortProError):
    """Raised when PortPro credentials are missing."""


class PortProAPIError(PortProError):
    """Raised when a PortPro request fails (network error or non-2xx status)."""


class PortProClient:
    """Client for the PortPro TMS API (api1.app.portpro.io)."""

    DEFAULT_BASE_URL = "https://api1.app.portpro.io/v1"

    def __init__(
        self,
        access_token: str,
        refresh_token: Optional[str] = None,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize PortPro API client.

        Args:
            access_token: PortPro API access token
            refresh_token: Token exchanged for a new access token after a 401
            base_url: API root, including the version segment
            timeout: Per-request timeout in seconds
            http_client: Shared ``httpx.AsyncClient``; a short-lived client is
                opened per request when omitted
        """
        self.access_token = access_token
        self.refresh_token = refresh_token
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._http_client = http_client

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> "PortProClient":
        settings = settings or get_settings()
        if not settings.portpro_access_token or not settings.portpro_refresh_token:
            raise PortProConfigurationError("PortPro credentials not configured")
        return cls(
            access_token=settings.portpro_access_token,
            refresh_token=settings.portpro_refresh_token,
            base_url=settings.portpro_api_url,
            timeout=settings.portpro_request_timeout_seconds,
            http_client=http_client,
        )

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        if self._http_client is not None:
            return await self._http_client.request(method, url, timeout=self.timeout, **kwargs)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.request(method, url, **kwargs)

    async def _refresh_access_token(self) -> None:
        """Exchange the refresh token for a new access token."""
        if not self.refresh_token:
            raise PortProConfigurationError("PortPro refresh token not configured", status_code=401)

        try:
            response = await self._send(
                "POST",
                f"{self.base_url}/auth/refresh",
                json={"refreshToken": self.refresh_token},
                headers={"Content-Type": "application/json"},
            )
        except httpx.HTTPError as e:
            logger.error(f"PortPro token refresh error: {str(e)}")
            raise PortProAPIError(f"Failed to refresh PortPro access token: {e}") from e

        if response.status_code >= 400:
            raise PortProAPIError(
                "Failed to refresh PortPro access token",
                status_code=response.status_code,
                response=response.text,
            )

        token = (response.json() or {}).get("accessToken")
        if not token:
            raise PortProAPIError("No accessToken in PortPro refresh response", status_code=response.status_code)
        self.access_token = token
        logger.info("PortPro access token refreshed")

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        _retry: bool = True,
    ) -> Dict[str, Any]:
        """Make an authenticated request, refreshing the token once on 401."""
        url = f"{self.base_url}{endpoint}"
        try:
            response = await self._send(
                method,
                url,
                params=params,
                headers={
                    "Authorization": f"Bearer {self.access_token}",
                    "Content-Type": "application/json",
                },
            )
        except httpx.HTTPError as e:
            logger.error(f"PortPro request error: {str(e)}")
            raise PortProAPIError(f"PortPro request failed: {e}") from e

        if response.status_code == 401 and _retry:
            logger.info("PortPro returned 401, refreshing access token")
            await self._refresh_access_token()
            return await self._request(method, endpoint, params=params, _retry=False)

        if response.status_code >= 400:
            logger.error(f"PortPro API error {response.status_code}: {response.text}")
            raise PortProAPIError(
                f"PortPro API error: {response.status_code} - {response.text}",
                status_code=response.status_code,
                response=response.text,
            )

        try:
            return response.json()
        except ValueError as e:
            raise PortProAPIError("PortPro returned a non-JSON response", status_code=response.status_code) from e

    async def get_loads(
        self,
        skip: int = 0,
        limit: int = 50,
        status: Optional[str] = None,
        type_of_load: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        List loads, newest first.

        Args:
            skip: Pagination offset
            limit: Page size
            status: Optional PortPro status filter (e.g. ``DISPATCHED``)
            type_of_load: Optional ``IMPORT`` / ``EXPORT`` / ``ROAD`` filter

        Returns:
            The raw load documents of the ``data`` envelope
        """
        params: Dict[str, Any] = {}
        if status:
            params["status"] = status
        if type_of_load:
            params["type_of_load"] = type_of_load
        if skip:
            params["skip"] = skip
        if limit:
            params["limit"] = limit

        response = await self._request("GET", "/loads", params=params)
        return response.get("data") or []

    async def get_load(self, reference_or_id: str) -> Optional[Dict[str, Any]]:
        """Fetch a single load by reference number or PortPro id; ``None`` if it does not exist."""
        try:
            response = await self._request("GET", f"/loads/{reference_or_id}")
        except PortProAPIError as e:
            if e.status_code == 404:
                return None
            raise
        return response.get("data") or None

    async def search_by_container(self, container_no: str) -> List[Dict[str, Any]]:
        response = await self._request("GET", "/loads", params={"containerNo": container_no})
        return response.get("data") or []
