"""Twitter/X API client with OAuth 1.0a request signing and a request budget."""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Optional

import httpx
from oauthlib import oauth1

from .config import TwitterConfig
from .services.rate_limit_service import RateLimitService

logger = logging.getLogger(__name__)

SEARCH_TWEET_FIELDS = "id,text,author_id,created_at,attachments,referenced_tweets,entities"
SEARCH_EXPANSIONS = (
    "author_id,attachments.media_keys,referenced_tweets.id,"
    "referenced_tweets.id.attachments.media_keys,referenced_tweets.id.author_id"
)
SEARCH_MEDIA_FIELDS = "url,preview_image_url,type"


class TwitterAPIError(Exception):
    """Non-2xx response from the Twitter API."""

    def __init__(self, status_code: int, body: str, endpoint: str):
        self.status_code = status_code
        self.body = body
        self.endpoint = endpoint
        super().__init__(f"Twitter API error on {endpoint}: {status_code} - {body[:200]}")


@dataclass
class ReplyResult:
    """Outcome of posting a reply."""

    success: bool
    reply_id: Optional[str] = None
    error: Optional[str] = None


class OAuth1Signer:
    """Builds OAuth 1.0a HMAC-SHA1 Authorization headers with oauthlib.

    ``clock`` and ``nonce_factory`` are injectable so signatures can be
    reproduced exactly.
    """

    def __init__(
        self,
        consumer_key: str,
        consumer_secret: str,
        token: str,
        token_secret: str,
        clock: Callable[[], float] = time.time,
        nonce_factory: Callable[[], str] = lambda: uuid.uuid4().hex,
    ):
        self.consumer_key = consumer_key
        self.consumer_secret = consumer_secret
        self.token = token
        self.token_secret = token_secret
        self._clock = clock
        self._nonce_factory = nonce_factory

    def sign(
        self,
        method: str,
        url: str,
        params: Optional[dict[str, str]] = None,
        *,
        nonce: Optional[str] = None,
        timestamp: Optional[str] = None,
    ) -> str:
        """Return the Authorization header value for one request.

        Query parameters are signed; JSON bodies are not part of the base string.
        """
        client = oauth1.Client(
            self.consumer_key,
            client_secret=self.consumer_secret,
            resource_owner_key=self.token,
            resource_owner_secret=self.token_secret,
            signature_method=oauth1.SIGNATURE_HMAC_SHA1,
            nonce=nonce or self._nonce_factory(),
            timestamp=timestamp or str(int(self._clock())),
        )
        # Sign the URL exactly as httpx will send it
        signed_url = str(httpx.URL(url, params=params)) if params else url
        _, headers, _ = client.sign(signed_url, http_method=method.upper())
        return headers["Authorization"]


def classify_endpoint(method: str, url: str) -> str:
    """Coarse endpoint class used in call logs."""
    if "/2/tweets/search/recent" in url:
        return "search_tweets"
    if "/2/users" in url and "/likes" in url and method == "POST":
        return "like_tweet"
    if "/2/tweets" in url and method == "POST":
        return "post_tweet"
    if "/1.1/account/verify_credentials" in url:
        return "verify_credentials"
    return "unknown"


def classify_limit(limit_header: Optional[str]) -> str:
    """Guess which platform quota a 429 belongs to from its limit header."""
    try:
        limit = int(limit_header or 0)
    except ValueError:
        return "UNKNOWN"
    if limit >= 1_000_000:
        return "MONTHLY/APP_LEVEL"
    if limit >= 1000:
        return "HOURLY"
    if 0 < limit <= 100:
        return "DAILY_USER"
    return "UNKNOWN"


class TwitterClient:
    """Async wrapper for the Twitter endpoints the bot uses.

    Search uses the app bearer token; replies, likes and credential checks are
    OAuth 1.0a signed. Every call passes through the shared RateLimitService
    and is logged with the server's rate-limit headers.
    """

    def __init__(
        self,
        config: TwitterConfig,
        rate_limiter: RateLimitService,
        http_client: Optional[httpx.AsyncClient] = None,
        signer: Optional[OAuth1Signer] = None,
    ) -> None:
        self.config = config
        self.rate_limiter = rate_limiter
        self.base_url = config.api_base_url.rstrip("/")
        self.http = http_client or httpx.AsyncClient(timeout=httpx.Timeout(30.0))
        self.signer = signer or OAuth1Signer(
            consumer_key=config.api_key.get_secret_value(),
            consumer_secret=config.api_key_secret.get_secret_value(),
            token=config.access_token.get_secret_value(),
            token_secret=config.access_token_secret.get_secret_value(),
        )
        self._bot_user_id: Optional[str] = None
        self._background_tasks: set[asyncio.Task] = set()

    async def aclose(self) -> None:
        await self.http.aclose()

    def _limits_summary(self, headers: httpx.Headers) -> str:
        return (
            f"limit={headers.get('x-rate-limit-limit', 'unknown')} "
            f"remaining={headers.get('x-rate-limit-remaining', 'unknown')} "
            f"reset={headers.get('x-rate-limit-reset', 'unknown')} "
            f"internal={self.rate_limiter.count}/{self.rate_limiter.max_requests}"
        )

    def _log_api_call(
        self, method: str, url: str, response: httpx.Response, started: float
    ) -> None:
        endpoint = classify_endpoint(method, url)
        duration_ms = int((time.monotonic() - started) * 1000)
        headers = response.headers
        limits = self._limits_summary(headers)
        detail = {
            "endpoint": {"method": method, "url": url, "type": endpoint},
            "status": response.status_code,
            "duration_ms": duration_ms,
            "rate_limits": {
                "limit": headers.get("x-rate-limit-limit"),
                "remaining": headers.get("x-rate-limit-remaining"),
                "reset": headers.get("x-rate-limit-reset"),
                "internal_count": self.rate_limiter.count,
                "internal_remaining": self.rate_limiter.remaining(),
            },
        }

        if response.status_code == 429:
            logger.warning(
                "Twitter rate limit hit on %s %s (limit type %s, %s)",
                method,
                endpoint,
                classify_limit(headers.get("x-rate-limit-limit")),
                limits,
                extra={"event_type": "twitter_api_call", "detail": detail},
            )
        elif response.is_error:
            logger.error(
                "Twitter API %s %s: %d in %dms (%s): %s",
                method,
                endpoint,
                response.status_code,
                duration_ms,
                limits,
                response.text[:200],
                extra={"event_type": "twitter_api_call", "detail": detail},
            )
        else:
            logger.info(
                "Twitter API %s %s: %d in %dms (%s)",
                method,
                endpoint,
                response.status_code,
                duration_ms,
                limits,
                extra={"event_type": "twitter_api_call", "detail": detail},
            )

    async def _request(
        self,
        method: str,
        url: str,
        *,
        params: Optional[dict[str, str]] = None,
        json: Optional[dict[str, Any]] = None,
        signed: bool = True,
    ) -> httpx.Response:
        if signed:
            headers = {"Authorization": self.signer.sign(method, url, params)}
        else:
            headers = {"Authorization": f"Bearer {self.config.bearer_token.get_secret_value()}"}

        endpoint = classify_endpoint(method, url)
        self.rate_limiter.record_send()
        started = time.monotonic()
        try:
            response = await self.http.request(method, url, params=params, json=json, headers=headers)
        except httpx.HTTPError as e:
            duration_ms = int((time.monotonic() - started) * 1000)
            logger.error(
                "Twitter API %s %s: %s after %dms (internal=%d/%d): %s",
                method,
                endpoint,
                type(e).__name__,
                duration_ms,
                self.rate_limiter.count,
                self.rate_limiter.max_requests,
                e,
                extra={
                    "event_type": "twitter_api_call",
                    "detail": {
                        "endpoint": {"method": method, "url": url, "type": endpoint},
                        "error": type(e).__name__,
                        "duration_ms": duration_ms,
                    },
                },
            )
            raise
        self._log_api_call(method, url, response, started)

        if response.is_error:
            raise TwitterAPIError(response.status_code, response.text, endpoint)
        return response

    async def search_mentions(self, since_id: Optional[str] = None) -> Optional[dict[str, Any]]:
        """Search recent posts mentioning the bot.

        Returns:
            The decoded search response, or None when the request budget is spent.

        Raises:
            TwitterAPIError: On a non-2xx response.
        """
        if not self.rate_limiter.can_send():
            logger.info(
                "Request budget exhausted, skipping search (resets in %.0fs)",
                self.rate_limiter.seconds_until_reset(),
            )
            return None

        params = {
            "query": f"@{self.config.bot_username}",
            "tweet.fields": SEARCH_TWEET_FIELDS,
            "user.fields": "username",
            "media.fields": SEARCH_MEDIA_FIELDS,
            "expansions": SEARCH_EXPANSIONS,
            "max_results": "10",
            "sort_order": "recency",
        }
        if since_id:
            params["since_id"] = since_id

        response = await self._request(
            "GET", f"{self.base_url}/2/tweets/search/recent", params=params, signed=False
        )
        return response.json()

    async def post_reply(self, in_reply_to_id: str, text: str) -> ReplyResult:
        """Post a reply and, on success, like the original post in the background."""
        if not self.rate_limiter.can_send():
            logger.warning("Request budget exhausted, not replying to %s", in_reply_to_id)
            return ReplyResult(success=False, error="Rate limit budget exhausted")

        try:
            response = await self._request(
                "POST",
                f"{self.base_url}/2/tweets",
                json={"text": text, "reply": {"in_reply_to_tweet_id": in_reply_to_id}},
            )
            reply_id = response.json()["data"]["id"]
        except TwitterAPIError as e:
            logger.error("Failed to reply to %s: %s", in_reply_to_id, e)
            return ReplyResult(success=False, error=_describe_status(e.status_code, str(e)))
        except (httpx.HTTPError, KeyError, ValueError) as e:
            logger.error("Failed to reply to %s: %s", in_reply_to_id, e)
            return ReplyResult(success=False, error=str(e))

        logger.info("Posted reply %s to %s", reply_id, in_reply_to_id)
        self.like_in_background(in_reply_to_id)
        return ReplyResult(success=True, reply_id=reply_id)

    async def get_bot_user_id(self) -> Optional[str]:
        """Resolve (and cache) the bot's numeric user id."""
        if self._bot_user_id:
            return self._bot_user_id
        if not self.rate_limiter.can_send():
            return None
        try:
            response = await self._request(
                "GET", f"{self.base_url}/1.1/account/verify_credentials.json"
            )
            self._bot_user_id = response.json()["id_str"]
        except (TwitterAPIError, httpx.HTTPError, KeyError, ValueError) as e:
            logger.error("Failed to resolve bot user id: %s", e)
            return None
        return self._bot_user_id

    async def like(self, tweet_id: str) -> bool:
        """Like a post. Returns False on any failure."""
        user_id = await self.get_bot_user_id()
        if not user_id:
            logger.warning("Cannot like %s: bot user id unknown", tweet_id)
            return False
        if not self.rate_limiter.can_send():
            logger.info("Request budget exhausted, skipping like of %s", tweet_id)
            return False

        try:
            await self._request(
                "POST", f"{self.base_url}/2/users/{user_id}/likes", json={"tweet_id": tweet_id}
            )
        except (TwitterAPIError, httpx.HTTPError) as e:
            logger.warning("Failed to like %s (ignored): %s", tweet_id, e)
            return False
        logger.debug("Liked %s", tweet_id)
        return True

    def like_in_background(self, tweet_id: str) -> asyncio.Task:
        """Fire-and-forget like; errors only reach the log."""
        task = asyncio.create_task(self.like(tweet_id))
        self._background_tasks.add(task)

        def _done(t: asyncio.Task) -> None:
            self._background_tasks.discard(t)
            if not t.cancelled() and t.exception() is not None:
                logger.warning("Background like of %s failed: %s", tweet_id, t.exception())

        task.add_done_callback(_done)
        return task


def _describe_status(status_code: int, fallback: str) -> str:
    if status_code == 429:
        return "Rate limit exceeded"
    if status_code == 403:
        return "Permission denied - check API credentials and permissions"
    if status_code == 400:
        return "Bad request - invalid post id or message format"
    return fallback
