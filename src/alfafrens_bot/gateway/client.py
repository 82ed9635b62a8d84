"""HTTP client for the AlfaFrens channel API."""

import logging
import time
from typing import Any

import aiohttp

from alfafrens_bot.config import APIConfig
from alfafrens_bot.gateway.models import ChannelMessage, SendResult

logger = logging.getLogger(__name__)

MESSAGES_PATH = "/api/ai/getChannelMessages"
POST_PATH = "/api/ai/postMessage"

# Fetch window used when the caller has no checkpoint yet
DEFAULT_LOOKBACK_MS = 3_600_000


class GatewayError(Exception):
    """A request to the channel API did not succeed.

    ``status`` is None when the request never produced an HTTP response.
    """

    def __init__(self, message: str, status: int | None = None, body: str = ""):
        super().__init__(message)
        self.status = status
        self.body = body

    def __str__(self) -> str:
        base = super().__str__()
        if self.status is None:
            return base
        return f"{base} (status={self.status}, body={self.body[:200]!r})"


class ChannelGateway:
    """Thin request/response wrapper around the channel API.

    No retries happen here; a failed call raises GatewayError and the caller
    decides what to do.
    """

    def __init__(self, config: APIConfig, session: aiohttp.ClientSession | None = None):
        self._config = config
        self._base_url = config.base_url.rstrip("/")
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create the aiohttp session."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self._config.request_timeout_seconds)
            api_key = self._config.api_key.get_secret_value() if self._config.api_key else ""
            self._session = aiohttp.ClientSession(
                timeout=timeout,
                headers={"x-api-key": api_key, "Content-Type": "application/json"},
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Close the aiohttp session if we created it."""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()

    async def __aenter__(self) -> "ChannelGateway":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, str] | None = None,
        payload: dict[str, Any] | None = None,
    ) -> Any:
        session = await self._get_session()
        url = f"{self._base_url}{path}"
        logger.debug(f"API_REQUEST: {method} {path} params={params}")

        try:
            async with session.request(method, url, params=params, json=payload) as response:
                if response.status >= 400:
                    body = await response.text()
                    logger.error(
                        f"API_ERROR: {method} {path} status={response.status} "
                        f"reason={response.reason} body={body[:200]}"
                    )
                    raise GatewayError(
                        f"API request failed: {response.reason}",
                        status=response.status,
                        body=body,
                    )
                return await response.json(content_type=None)
        except aiohttp.ClientError as e:
            raise GatewayError(f"API request failed: {e}") from e
        except TimeoutError as e:
            raise GatewayError(f"API request timed out: {method} {path}") from e

    async def fetch_messages(
        self,
        channel_id: str,
        since_ms: int | None = None,
        until_ms: int | None = None,
        include_replies: bool = False,
        include_reactions: bool = False,
    ) -> list[ChannelMessage]:
        """Fetch channel messages created at or after ``since_ms``.

        The API key is bound to one channel, so ``channel_id`` is only used for
        logging. Messages come back in the remote system's order (createdAt
        ascending); no local re-sort happens.

        Args:
            channel_id: Target channel
            since_ms: Lower bound, epoch ms (defaults to one hour ago)
            until_ms: Optional upper bound, epoch ms
            include_replies: Expand reply threads (implies reactions)
            include_reactions: Include reaction tallies

        Returns:
            Messages oldest first
        """
        if since_ms is None:
            since_ms = int(time.time() * 1000) - DEFAULT_LOOKBACK_MS

        params = {"since": str(since_ms)}
        if until_ms:
            params["until"] = str(until_ms)

        include: list[str] = []
        if include_reactions:
            include.append("reactions")
        if include_replies:
            include = ["reactions", "replies"]
        if include:
            params["include"] = ",".join(include)

        data = await self._request("GET", MESSAGES_PATH, params=params)
        if not isinstance(data, list):
            raise GatewayError(f"Unexpected messages payload: {type(data).__name__}")

        messages = [ChannelMessage.model_validate(item) for item in data]
        if messages:
            logger.debug(f"API_FETCH: channel={channel_id} since={since_ms} -> {len(messages)} messages")
        return messages

    async def _send(self, body: str, reply_to: str | None = None) -> SendResult:
        payload: dict[str, Any] = {"content": body.strip()}
        if reply_to:
            payload["replyToPostId"] = reply_to
        data = await self._request("POST", POST_PATH, payload=payload)
        return SendResult.model_validate(data)

    async def post_message(self, channel_id: str, body: str) -> SendResult:
        """Send a new top-level message."""
        result = await self._send(body)
        logger.info(f"API_SEND: channel={channel_id} id={result.id} chars={len(body)}")
        return result

    async def reply_to_message(self, channel_id: str, body: str, parent_id: str) -> SendResult:
        """Reply to an existing message."""
        result = await self._send(body, reply_to=parent_id)
        logger.info(
            f"API_REPLY: channel={channel_id} id={result.id} parent={parent_id} chars={len(body)}"
        )
        return result

    async def create_post(self, channel_id: str, body: str) -> SendResult:
        """Create a post. Posts share the message endpoint."""
        result = await self._send(body)
        logger.info(f"API_POST: channel={channel_id} id={result.id} chars={len(body)}")
        return result
