"""
Tessie API client.

Thin async wrapper over the Tessie REST API used by the tool handlers.
"""
from typing import Any, Dict, List, Optional

import httpx

from tessie_assistant.errors import ConfigurationError, TessieAPIError
from tessie_assistant.services.config import (
    CLIENT_TIMEOUT_SECONDS, DEFAULT_DRIVE_LIMIT, get_access_token, get_api_url
)
from tessie_assistant.services.response_cache import ResponseCache


def _unwrap_results(payload: Any) -> List[Dict[str, Any]]:
    """Tessie wraps list responses as {"results": [...]}; older endpoints return a bare list."""
    if isinstance(payload, dict) and "results" in payload:
        payload = payload["results"]
    if not isinstance(payload, list):
        raise TessieAPIError(f"Expected a list of results, got {type(payload).__name__}")
    return payload


class TessieClient:
    """Async client for the Tessie API with a small response cache."""

    def __init__(
        self,
        access_token: str,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        cache: Optional[ResponseCache] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        if not access_token:
            raise ConfigurationError("Tessie API token is required")
        self.cache = cache if cache is not None else ResponseCache()
        self._client = httpx.AsyncClient(
            base_url=base_url or get_api_url(),
            timeout=timeout or CLIENT_TIMEOUT_SECONDS,
            headers={
                "Authorization": f"Bearer {access_token}",
                "Content-Type": "application/json",
            },
            transport=transport,
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None, description: str = "request") -> Any:
        try:
            response = await self._client.get(path, params=params)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            print(f"Tessie API error on {path}: HTTP {e.response.status_code}")
            raise TessieAPIError(f"Failed to get {description}: HTTP {e.response.status_code}")
        except httpx.HTTPError as e:
            print(f"Tessie API request to {path} failed: {type(e).__name__}: {str(e)}")
            raise TessieAPIError(f"Failed to get {description}: {str(e)}")
        except ValueError:
            raise TessieAPIError(f"Failed to get {description}: response was not JSON")

    async def _cached_get(self, key: tuple, path: str, params: Optional[Dict[str, Any]], description: str) -> Any:
        cached = self.cache.get(key)
        if cached is not None:
            print(f"Cache hit for {description}")
            return cached
        data = await self._get(path, params, description)
        self.cache.set(key, data)
        return data

    async def get_vehicles(self) -> List[Dict[str, Any]]:
        data = await self._cached_get(("vehicles",), "/vehicles", None, "vehicles")
        return _unwrap_results(data)

    async def get_vehicle_state(self, vin: str, use_cache: bool = True) -> Dict[str, Any]:
        """
        Get the current vehicle state.

        With use_cache the request asks Tessie for its last known state
        instead of waking the car, and the response is cached locally too.
        """
        if use_cache:
            return await self._cached_get(
                ("state", vin), f"/{vin}/state", {"use_cache": "true"}, "vehicle state"
            )
        return await self._get(f"/{vin}/state", None, "vehicle state")

    async def get_drives(
        self,
        vin: str,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        limit: int = DEFAULT_DRIVE_LIMIT
    ) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"limit": limit}
        if start_date:
            params["start"] = start_date
        if end_date:
            params["end"] = end_date
        data = await self._get(f"/{vin}/drives", params, "drives")
        return _unwrap_results(data)


def create_client_from_env() -> TessieClient:
    """Build a client from TESSIE_ACCESS_TOKEN / TESSIE_API_URL."""
    token = get_access_token()
    if not token:
        raise ConfigurationError(
            "Tessie API token is required. Set TESSIE_ACCESS_TOKEN in the environment "
            "or .env file. Get your token from https://my.tessie.com/settings/api"
        )
    return TessieClient(token)
