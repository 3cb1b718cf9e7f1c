"""Twitter account activity webhook handling."""

import base64
import hashlib
import hmac
import logging
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class PushEventSink(Protocol):
    async def handle_push_events(self, payload: dict[str, Any]) -> int: ...


def crc_response_token(crc_token: str, consumer_secret: str) -> str:
    """Answer to the platform's challenge-response check."""
    digest = hmac.new(
        consumer_secret.encode("utf-8"), crc_token.encode("utf-8"), hashlib.sha256
    ).digest()
    return "sha256=" + base64.b64encode(digest).decode("ascii")


class WebhookHandler:
    """Routes webhook deliveries to the bot."""

    def __init__(self, bot: PushEventSink, consumer_secret: str, for_user_id: str | None = None):
        """Initialize webhook handler.

        Args:
            bot: Receiver of adapted push events
            consumer_secret: App consumer secret used for CRC responses
            for_user_id: If set, deliveries for other accounts are ignored
        """
        self.bot = bot
        self.consumer_secret = consumer_secret
        self.for_user_id = for_user_id

    def crc_response(self, crc_token: str) -> dict[str, str]:
        return {"response_token": crc_response_token(crc_token, self.consumer_secret)}

    async def handle_event(self, payload: Any) -> None:
        """Process one delivery. Errors are logged, never raised."""
        if not isinstance(payload, dict):
            logger.warning("Ignoring webhook payload of type %s", type(payload).__name__)
            return

        for_user_id = payload.get("for_user_id")
        logger.info(
            "Processing webhook delivery: for_user_id=%s, tweet_create_events=%d",
            for_user_id,
            len(payload.get("tweet_create_events") or []),
        )

        if self.for_user_id and for_user_id and str(for_user_id) != self.for_user_id:
            logger.info("Ignoring delivery for account %s", for_user_id)
            return

        try:
            await self.bot.handle_push_events(payload)
        except Exception as e:
            logger.error("Error processing webhook delivery: %s", e, exc_info=True)
