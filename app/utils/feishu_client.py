"""
Feishu (Lark) open platform client.

Provides:
- Tenant access token management
- Message resource download (images, videos, files)
- Text replies to a chat
- Error classification for failed downloads
"""

import asyncio
import json
import time
from pathlib import Path
from typing import Optional

import httpx
from loguru import logger

from app.models.schemas import ResourceKind
from app.utils.config import get_settings
from app.utils.errors import (
    IOFailure,
    UpstreamFetchFailure,
    UpstreamNotFoundOrExpired,
    UpstreamTimeout,
)

TOKEN_PATH = "/open-apis/auth/v3/tenant_access_token/internal"
RESOURCE_PATH = "/open-apis/im/v1/messages/{message_id}/resources/{file_key}"
MESSAGE_PATH = "/open-apis/im/v1/messages"

# Refresh the token this many seconds before Feishu says it expires
TOKEN_REFRESH_MARGIN = 60.0


class FeishuClient:
    """Async client for the parts of the Feishu API the sync service needs."""

    def __init__(
        self,
        app_id: str = None,
        app_secret: str = None,
        base_url: str = None,
        timeout: float = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize Feishu client."""
        settings = get_settings()
        self.app_id = app_id or settings.feishu_app_id
        self.app_secret = app_secret or settings.feishu_app_secret
        self.base_url = (base_url or settings.feishu_base_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.feishu_timeout_seconds

        if not self.app_id or not self.app_secret:
            raise ValueError("Feishu App ID or App Secret is not set in environment variables.")

        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=transport,
        )
        self._token: Optional[str] = None
        self._token_expires_at = 0.0
        self._token_lock = asyncio.Lock()

    async def close(self):
        """Close the underlying HTTP connection pool."""
        await self._http.aclose()

    async def get_tenant_access_token(self) -> str:
        """Return a cached tenant access token, fetching a new one when needed."""
        async with self._token_lock:
            if self._token and time.monotonic() < self._token_expires_at - TOKEN_REFRESH_MARGIN:
                return self._token

            response = await self._http.post(
                TOKEN_PATH,
                json={"app_id": self.app_id, "app_secret": self.app_secret},
            )
            response.raise_for_status()
            data = response.json()

            if data.get("code") != 0 or not data.get("tenant_access_token"):
                raise UpstreamFetchFailure(
                    f"Feishu token request rejected: {data.get('msg', 'unknown error')}"
                )

            self._token = data["tenant_access_token"]
            self._token_expires_at = time.monotonic() + float(data.get("expire", 0))
            logger.debug("Obtained Feishu tenant access token")
            return self._token

    async def _auth_headers(self) -> dict:
        token = await self.get_tenant_access_token()
        return {"Authorization": f"Bearer {token}"}

    async def download_resource(
        self,
        message_id: str,
        file_key: str,
        kind: ResourceKind,
        destination: Path,
    ) -> int:
        """
        Download a message resource to a local file.

        Args:
            message_id: Message the resource is attached to
            file_key: Platform key of the resource
            kind: Resource type (image or file)
            destination: Local path to write

        Returns:
            Number of bytes written

        Raises:
            UpstreamNotFoundOrExpired: Resource missing or link expired
            UpstreamTimeout: Platform did not answer in time
            UpstreamFetchFailure: Any other HTTP or transport error
            IOFailure: The local file could not be written
        """
        url = RESOURCE_PATH.format(message_id=message_id, file_key=file_key)
        written = 0

        try:
            headers = await self._auth_headers()
            async with self._http.stream(
                "GET", url, params={"type": ResourceKind(kind).value}, headers=headers
            ) as response:
                if response.status_code == 404:
                    raise UpstreamNotFoundOrExpired(
                        f"Resource {file_key} not found or its link has expired"
                    )
                response.raise_for_status()

                try:
                    fh = await asyncio.to_thread(open, destination, "wb")
                    try:
                        async for chunk in response.aiter_bytes():
                            await asyncio.to_thread(fh.write, chunk)
                            written += len(chunk)
                    finally:
                        await asyncio.to_thread(fh.close)
                except OSError as e:
                    raise IOFailure(f"Failed to write {destination}: {e}", cause=e) from e

        except httpx.TimeoutException as e:
            raise UpstreamTimeout(f"Timed out downloading resource {file_key}", cause=e) from e
        except httpx.HTTPStatusError as e:
            raise UpstreamFetchFailure(
                f"Feishu returned HTTP {e.response.status_code} for resource {file_key}",
                cause=e,
                retryable=e.response.status_code >= 500 or e.response.status_code == 429,
            ) from e
        except httpx.TransportError as e:
            # Platform unreachable
            raise UpstreamFetchFailure(
                f"Failed to download resource {file_key}: {e}", cause=e, retryable=True
            ) from e
        except httpx.HTTPError as e:
            raise UpstreamFetchFailure(f"Failed to download resource {file_key}: {e}", cause=e) from e
        except ValueError as e:
            # Malformed token response
            raise UpstreamFetchFailure(f"Unexpected Feishu response: {e}", cause=e) from e

        logger.info(f"File downloaded to {destination} ({written} bytes)")
        return written

    async def send_text(self, chat_id: str, text: str) -> bool:
        """
        Send a text message to a chat.

        Fire and forget: failures are logged, never raised.

        Returns:
            True if Feishu accepted the message
        """
        try:
            headers = await self._auth_headers()
            response = await self._http.post(
                MESSAGE_PATH,
                params={"receive_id_type": "chat_id"},
                headers=headers,
                json={
                    "receive_id": chat_id,
                    "msg_type": "text",
                    "content": json.dumps({"text": text}, ensure_ascii=False),
                },
            )
            response.raise_for_status()
            data = response.json()
            if data.get("code") != 0:
                logger.error(f"Failed to reply to user: {data.get('msg')}")
                return False
            return True

        except (httpx.HTTPError, UpstreamFetchFailure, ValueError) as e:
            logger.error(f"Failed to reply to user: {e}")
            return False


# Global client instance
_feishu_client: Optional[FeishuClient] = None


def get_feishu_client() -> FeishuClient:
    """Get global Feishu client instance."""
    global _feishu_client
    if _feishu_client is None:
        _feishu_client = FeishuClient()
    return _feishu_client


async def close_feishu_client():
    """Close global Feishu client instance."""
    global _feishu_client
    if _feishu_client is not None:
        await _feishu_client.close()
        _feishu_client = None
