"""Inbound mention payloads and their adapters to MentionEvent.

Two payload shapes reach the bot: v1 tweet objects pushed by the account
activity webhook, and v2 search results with separate ``includes`` lookup
tables. Each is wrapped in its own payload type and adapted to the same
MentionEvent.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Literal, Optional, Union

logger = logging.getLogger(__name__)

HASHTAG_PATTERN = re.compile(r"#(\w+)")

MEDIA_KINDS = ("photo", "video", "animated_gif")


class PayloadError(ValueError):
    """Raised when an inbound payload lacks the fields a mention needs."""


@dataclass
class MediaItem:
    """An attachment on a post, normalized across API versions."""

    type: str
    url: Optional[str] = None
    preview_url: Optional[str] = None


@dataclass
class MentionEvent:
    """A post that mentions the bot, reduced to what the pipeline needs.

    ``media`` and ``link_urls`` come from the post that supplies the image
    context: the mention itself, or the post it replies to.
    """

    source_id: str
    author_handle: str
    text: str
    hashtags: list[str] = field(default_factory=list)
    media: list[MediaItem] = field(default_factory=list)
    link_urls: list[str] = field(default_factory=list)
    mentions_bot: bool = False
    referenced_source_id: Optional[str] = None
    candidate_image_urls: list[str] = field(default_factory=list)


@dataclass
class V1TweetPayload:
    """One entry of ``tweet_create_events`` from the webhook."""

    tweet: dict[str, Any]
    kind: Literal["v1"] = "v1"


@dataclass
class V2SearchPayload:
    """One post from a search response plus the response's ``includes``."""

    tweet: dict[str, Any]
    includes: dict[str, Any]
    kind: Literal["v2"] = "v2"


MentionPayload = Union[V1TweetPayload, V2SearchPayload]


def _require(tweet: dict[str, Any], *keys: str) -> str:
    for key in keys:
        value = tweet.get(key)
        if value:
            return str(value)
    raise PayloadError(f"Post is missing required field {' / '.join(keys)}")


def hashtags_from_text(text: str) -> list[str]:
    return HASHTAG_PATTERN.findall(text or "")


def _v1_media(tweet: dict[str, Any]) -> list[MediaItem]:
    # extended_entities carries every attachment; entities only the first
    entries = (tweet.get("extended_entities") or {}).get("media") or (
        tweet.get("entities") or {}
    ).get("media") or []

    items = []
    for entry in entries:
        kind = entry.get("type")
        if kind not in MEDIA_KINDS:
            continue
        url = entry.get("media_url_https") or entry.get("media_url")
        if kind == "photo":
            items.append(MediaItem(type=kind, url=url))
        else:
            # For video and gifs media_url_https is the poster frame
            items.append(MediaItem(type=kind, url=url, preview_url=url))
    return items


def from_v1(payload: V1TweetPayload, bot_username: str) -> MentionEvent:
    """Adapt a webhook tweet object."""
    tweet = payload.tweet
    if not isinstance(tweet, dict):
        raise PayloadError("Tweet event is not an object")

    source_id = _require(tweet, "id_str", "id")
    text = tweet.get("full_text") or tweet.get("text")
    if text is None:
        raise PayloadError(f"Post {source_id} has no text")

    user = tweet.get("user") or {}
    entities = tweet.get("entities") or {}

    mentioned = [m.get("screen_name", "") for m in entities.get("user_mentions") or []]
    hashtags = [h.get("text") for h in entities.get("hashtags") or [] if h.get("text")]
    links = [
        u.get("expanded_url") or u.get("url")
        for u in entities.get("urls") or []
        if u.get("expanded_url") or u.get("url")
    ]

    return MentionEvent(
        source_id=source_id,
        author_handle=user.get("screen_name") or "unknown",
        text=text,
        hashtags=hashtags,
        media=_v1_media(tweet),
        link_urls=links,
        mentions_bot=any(m.lower() == bot_username.lower() for m in mentioned),
    )


def _v2_media(tweet: dict[str, Any], includes: dict[str, Any]) -> list[MediaItem]:
    keys = (tweet.get("attachments") or {}).get("media_keys") or []
    if not keys:
        return []

    by_key = {m.get("media_key"): m for m in includes.get("media") or []}
    items = []
    for key in keys:
        media = by_key.get(key)
        if not media or media.get("type") not in MEDIA_KINDS:
            continue
        items.append(
            MediaItem(
                type=media["type"],
                url=media.get("url"),
                preview_url=media.get("preview_image_url"),
            )
        )
    return items


def _v2_links(tweet: dict[str, Any]) -> list[str]:
    urls = (tweet.get("entities") or {}).get("urls") or []
    return [u.get("expanded_url") or u.get("url") for u in urls if u.get("expanded_url") or u.get("url")]


def _v2_mentions_bot(tweet: dict[str, Any], bot_username: str) -> bool:
    mentions = (tweet.get("entities") or {}).get("mentions")
    if mentions is not None:
        return any(m.get("username", "").lower() == bot_username.lower() for m in mentions)
    return f"@{bot_username.lower()}" in (tweet.get("text") or "").lower()


def from_v2(payload: V2SearchPayload, bot_username: str) -> MentionEvent:
    """Adapt a search result.

    When the mention replies to another post, that post supplies the text,
    hashtags and images, and its author is credited.
    """
    tweet = payload.tweet
    includes = payload.includes or {}
    if not isinstance(tweet, dict):
        raise PayloadError("Search result entry is not an object")

    source_id = _require(tweet, "id")
    users = {u.get("id"): u.get("username") for u in includes.get("users") or []}
    mention_author = users.get(tweet.get("author_id")) or "unknown"

    context = tweet
    author = mention_author
    referenced_id = next(
        (
            ref.get("id")
            for ref in tweet.get("referenced_tweets") or []
            if ref.get("type") == "replied_to"
        ),
        None,
    )
    if referenced_id:
        original = next(
            (t for t in includes.get("tweets") or [] if t.get("id") == referenced_id), None
        )
        if original is not None:
            context = original
            author = users.get(original.get("author_id")) or mention_author
            if original.get("author_id") not in users:
                logger.debug(
                    "Original author of %s not in includes, crediting mention author %s",
                    referenced_id,
                    mention_author,
                )
        else:
            logger.debug("Replied-to post %s not in includes, using the mention", referenced_id)
            referenced_id = None

    text = context.get("text") or ""
    return MentionEvent(
        source_id=source_id,
        author_handle=author,
        text=text,
        hashtags=hashtags_from_text(text),
        media=_v2_media(context, includes),
        link_urls=_v2_links(context),
        mentions_bot=_v2_mentions_bot(tweet, bot_username),
        referenced_source_id=referenced_id,
    )


def to_mention_event(payload: MentionPayload, bot_username: str) -> MentionEvent:
    """Dispatch on the payload kind."""
    if payload.kind == "v1":
        return from_v1(payload, bot_username)
    if payload.kind == "v2":
        return from_v2(payload, bot_username)
    raise PayloadError(f"Unknown payload kind: {payload.kind}")


def search_payloads(response: dict[str, Any]) -> list[V2SearchPayload]:
    """Split a search response into one payload per post."""
    includes = response.get("includes") or {}
    return [V2SearchPayload(tweet=t, includes=includes) for t in response.get("data") or []]


def snowflake_key(tweet_id: str) -> tuple[int, str]:
    """Sort key ordering snowflake id strings numerically."""
    return (len(tweet_id), tweet_id)


def highest_id(ids: list[str], current: Optional[str] = None) -> Optional[str]:
    """Largest snowflake id, comparing numerically without int conversion."""
    candidates = [i for i in ids if i]
    if current:
        candidates.append(current)
    if not candidates:
        return None
    return max(candidates, key=snowflake_key)
