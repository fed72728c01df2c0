"""
HTTP client for the remote environment endpoint.

When a remote is configured, it may designate where history is kept
(typically a location shared with other machines). The service asks once
at startup and falls back to the local history root if there is no remote,
the remote does not designate a root, or the probe fails.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

import httpx

from .errors import RemoteEnvironmentError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0


@dataclass(frozen=True)
class RemoteEnvironment:
    """What the remote tells us about itself."""
    history_home: Optional[Path] = None


@runtime_checkable
class RemoteEnvironmentProtocol(Protocol):
    """Probe for the remote environment. ``None`` means no remote."""

    async def get_environment(self) -> Optional[RemoteEnvironment]: ...

    async def aclose(self) -> None: ...


class HttpRemoteEnvironment:
    """Remote environment probe over HTTPS."""

    def __init__(
        self,
        api_url: str,
        api_key: str = "",
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._api_url = api_url.rstrip("/")

        # Refuse non-HTTPS for remote APIs (bearer token would be sent in cleartext)
        if not self._api_url.startswith("https://"):
            from urllib.parse import urlparse
            host = urlparse(self._api_url).hostname or ""
            if host not in ("localhost", "127.0.0.1", "::1"):
                raise ValueError(
                    f"Remote URL must use HTTPS (got {self._api_url}). "
                    "Use HTTPS to protect API credentials, or use localhost for local development."
                )

        headers: dict[str, str] = {"Accept": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"

        self._client = httpx.AsyncClient(
            base_url=self._api_url,
            headers=headers,
            timeout=DEFAULT_TIMEOUT,
            transport=transport,
        )

    async def get_environment(self) -> Optional[RemoteEnvironment]:
        """GET /v1/environment -> RemoteEnvironment, or None if unknown (404).

        Raises:
            RemoteEnvironmentError: On transport errors, other HTTP errors,
                or a malformed response body
        """
        try:
            resp = await self._client.get("/v1/environment")
            if resp.status_code == 404:
                return None
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as e:
            raise RemoteEnvironmentError(
                f"Environment request failed: {e.response.status_code}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise RemoteEnvironmentError(f"Environment request failed: {e}") from e

        if not isinstance(data, dict):
            raise RemoteEnvironmentError("Environment response is not an object")
        history_home = data.get("history_home")
        return RemoteEnvironment(history_home=Path(history_home) if history_home else None)

    async def aclose(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()
