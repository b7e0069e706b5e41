"""Broadcast dispatch through the LINE Messaging API.

Provides LineBroadcaster for sending one text message to every friend of
the channel. One outbound call per invocation: no retry, no queue, no
deduplication. A gateway rejection is surfaced with its raw status and
body so the caller can show exactly what LINE said.
"""

from dataclasses import dataclass

import aiohttp
import structlog

from kypipeline.core.config import Config
from kypipeline.core.errors import ConfigurationError, GatewayError, ValidationError

logger = structlog.get_logger()

BROADCAST_PATH = "/v2/bot/message/broadcast"


@dataclass(frozen=True)
class BroadcastResult:
    """Successful gateway response.

    Attributes:
        status: HTTP status returned by the gateway
        request_id: X-Line-Request-Id header, when present
    """

    status: int
    request_id: str | None = None


class LineBroadcaster:
    """Sends broadcast messages to all subscribers of the LINE channel."""

    def __init__(self, access_token: str, api_base: str = "https://api.line.me", timeout: float = 10.0):
        """Initialize broadcaster.

        Args:
            access_token: LINE channel access token
            api_base: Messaging API base URL (overridable for tests)
            timeout: Total timeout for the gateway call in seconds
        """
        self.access_token = access_token
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self.log = logger.bind(gateway="line", api_base=self.api_base)

    @classmethod
    def from_config(cls, config: Config) -> "LineBroadcaster":
        return cls(
            access_token=config.line_channel_access_token,
            api_base=config.line_api_base,
            timeout=config.http_timeout_seconds,
        )

    async def broadcast(self, text: str) -> BroadcastResult:
        """Send one text message to every subscriber.

        Args:
            text: Message text (must be non-blank)

        Returns:
            BroadcastResult on a 2xx gateway response

        Raises:
            ValidationError: If text is empty (nothing is sent)
            ConfigurationError: If no channel access token is configured
            GatewayError: On non-2xx status or transport failure
        """
        text = (text or "").strip()
        if not text:
            raise ValidationError("text empty")
        if not self.access_token:
            raise ConfigurationError("LINE_CHANNEL_ACCESS_TOKEN is not configured")

        url = f"{self.api_base}{BROADCAST_PATH}"
        payload = {"messages": [{"type": "text", "text": text}]}
        headers = {"Authorization": f"Bearer {self.access_token}"}
        timeout = aiohttp.ClientTimeout(total=self.timeout)

        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(url, json=payload, headers=headers) as response:
                    body = await response.text()
                    if response.status >= 300:
                        self.log.error(
                            "broadcast_failed",
                            status=response.status,
                            body=body[:500],
                        )
                        raise GatewayError(response.status, body)

                    request_id = response.headers.get("X-Line-Request-Id")
                    self.log.info("broadcast_sent", status=response.status, request_id=request_id, length=len(text))
                    return BroadcastResult(status=response.status, request_id=request_id)
        except aiohttp.ClientError as e:
            self.log.error("broadcast_unreachable", error=str(e))
            raise GatewayError(0, str(e)) from e
        except TimeoutError as e:
            self.log.error("broadcast_timeout", timeout=self.timeout)
            raise GatewayError(0, f"timed out after {self.timeout}s") from e
