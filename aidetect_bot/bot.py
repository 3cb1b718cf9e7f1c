"""Mention-to-reply pipeline and the push/pull ingestion loops around it."""

import asyncio
import logging
import re
import uuid
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Coroutine, Optional

import httpx

from .config import Config
from .detection_client import DetectionClient, DetectionResult, DetectionSuccess
from .enrichment import Enrichment, EnrichmentClient
from .image_extractor import ImageExtractor
from .mentions import (
    MentionEvent,
    PayloadError,
    V1TweetPayload,
    highest_id,
    search_payloads,
    snowflake_key,
    to_mention_event,
)
from .orm.detection import NO_IMAGES_MARKER, DetectionRecord
from .reply_composer import ImageOutcome, compose_reply
from .services.database import DatabaseService
from .services.detection_service import DetectionService
from .services.rate_limit_service import RateLimitService
from .twitter_client import ReplyResult, TwitterAPIError, TwitterClient

logger = logging.getLogger(__name__)


class Bot:
    """Runs every mention that reaches it through detection, reply and storage.

    Collaborators are built from the config unless passed in, so tests can
    swap any of them for fakes.
    """

    def __init__(
        self,
        config: Config,
        db_service: DatabaseService,
        *,
        twitter: Optional[TwitterClient] = None,
        extractor: Optional[ImageExtractor] = None,
        detector: Optional[DetectionClient] = None,
        enricher: Optional[EnrichmentClient] = None,
        detection_service: Optional[DetectionService] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.config = config
        self.bot_username = config.twitter.bot_username
        self.detection_service = detection_service or DetectionService(db_service)
        self.rate_limit_service = RateLimitService(
            config.bot.rate_limit_max_requests, config.bot.rate_limit_window_seconds
        )
        self.twitter = twitter or TwitterClient(config.twitter, self.rate_limit_service)
        self.extractor = extractor or ImageExtractor(
            timeout=config.bot.link_preview_timeout_seconds
        )
        self.detector = detector or DetectionClient(config.detection)
        self.enricher = enricher or EnrichmentClient(config.llm)
        self._sleep = sleep

        # High-water mark for incremental search, kept across ticks
        self.since_id: Optional[str] = None
        self._in_flight: set[str] = set()
        self._background_tasks: set[asyncio.Task] = set()

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        return task

    async def wait_for_background_tasks(self) -> None:
        """Wait until every dispatched pipeline has finished."""
        while self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)

    async def dispatch(self, event: MentionEvent) -> bool:
        """Start the pipeline for a mention in the background.

        Returns:
            True if a pipeline was started.
        """
        if not event.mentions_bot:
            logger.debug("Post %s does not mention @%s, ignoring", event.source_id, self.bot_username)
            return False
        if event.author_handle.lower() == self.bot_username.lower() and not event.referenced_source_id:
            logger.debug("Ignoring own post %s", event.source_id)
            return False
        if not self._claim(event.source_id):
            logger.debug("Mention %s already being processed", event.source_id)
            return False
        try:
            processed = await self.detection_service.exists_by_source_id(event.source_id)
        except Exception:
            self._in_flight.discard(event.source_id)
            raise
        if processed:
            self._in_flight.discard(event.source_id)
            logger.debug("Mention %s already processed, skipping", event.source_id)
            return False

        logger.info(
            "Dispatching mention %s from @%s (%d attachment(s), %d link(s))",
            event.source_id,
            event.author_handle,
            len(event.media),
            len(event.link_urls),
        )
        self._spawn(self._run_claimed(event))
        return True

    def _claim(self, source_id: str) -> bool:
        if source_id in self._in_flight:
            return False
        self._in_flight.add(source_id)
        return True

    def _keyword_text(self, text: str) -> str:
        # Keep the bot's own handle out of the keywords
        return re.sub(rf"@{re.escape(self.bot_username)}\b", "", text, flags=re.IGNORECASE)

    async def process_mention(self, event: MentionEvent) -> int:
        """Run the full pipeline for one mention.

        Returns:
            Number of detection records stored.
        """
        if not self._claim(event.source_id):
            logger.debug("Mention %s already being processed", event.source_id)
            return 0
        return await self._run_claimed(event)

    async def _run_claimed(self, event: MentionEvent) -> int:
        """Pipeline body for a mention whose source id is already claimed."""
        try:
            return await self._process_mention(event)
        except Exception as e:
            logger.error("Pipeline failed for mention %s: %s", event.source_id, e, exc_info=True)
            return 0
        finally:
            self._in_flight.discard(event.source_id)

    async def _process_mention(self, event: MentionEvent) -> int:
        if await self.detection_service.exists_by_source_id(event.source_id):
            logger.info("Mention %s already processed, skipping", event.source_id)
            return 0

        image_urls = list(dict.fromkeys(event.candidate_image_urls)) or await self.extractor.extract_all(event)
        if not image_urls:
            logger.info("No images in mention %s, storing marker", event.source_id)
            await self._store_marker(event)
            return 1

        results: list[DetectionResult] = await asyncio.gather(
            *(self.detector.detect(url) for url in image_urls)
        )

        short_ids: list[Optional[str]] = []
        for _ in image_urls:
            short_ids.append(
                await self.detection_service.allocator.allocate(
                    reserved={s for s in short_ids if s}
                )
            )

        outcomes = [
            ImageOutcome(
                index=i + 1,
                ai_probability=r.ai_probability if isinstance(r, DetectionSuccess) else None,
                short_id=short_ids[i],
            )
            for i, r in enumerate(results)
        ]
        reply_text = compose_reply(
            outcomes,
            original_hashtags=event.hashtags,
            text=self._keyword_text(event.text),
            share_base_url=self.config.bot.share_base_url,
            default_hashtags=self.config.bot.default_hashtags,
        )

        reply, record_ids = await asyncio.gather(
            self.twitter.post_reply(event.source_id, reply_text),
            asyncio.gather(
                *(
                    self._enrich_and_store(event, url, result, short_id)
                    for url, result, short_id in zip(image_urls, results, short_ids)
                )
            ),
        )
        stored = [record_id for record_id in record_ids if record_id]
        await self._attach_reply(reply, stored)

        logger.info(
            "Mention %s done: %d/%d image(s) detected, %d stored, reply %s",
            event.source_id,
            sum(1 for o in outcomes if o.success),
            len(outcomes),
            len(stored),
            reply.reply_id if reply.success else f"failed ({reply.error})",
        )
        return len(stored)

    async def _enrich_and_store(
        self,
        event: MentionEvent,
        image_url: str,
        result: DetectionResult,
        short_id: Optional[str],
    ) -> Optional[str]:
        """Describe a detected image and persist it. Returns the stored record id."""
        record = DetectionRecord(
            id=str(uuid.uuid4()),
            source_id=event.source_id,
            captured_at=datetime.now(timezone.utc),
            image_url=image_url,
            author_handle=event.author_handle,
            provider=self.config.detection.provider_name,
            processing_time_ms=result.processing_time_ms,
            short_id=short_id,
        )

        if isinstance(result, DetectionSuccess):
            enrichment: Enrichment = await self.enricher.describe(
                image_url, result.ai_probability, event.text, event.hashtags
            )
            record.ai_probability = result.ai_probability
            record.classification = result.final_result
            record.image_bytes = result.image_bytes
            record.image_content_type = result.content_type
            record.description = enrichment.title
            record.meta_description = enrichment.meta_description
            record.detailed_description = enrichment.detailed_description
            record.confidence_narrative = enrichment.confidence_analysis
        else:
            record.classification = "Error"

        inserted = await self.detection_service.insert(record)
        return record.id if inserted.success else None

    async def _attach_reply(self, reply: ReplyResult, record_ids: list[str]) -> None:
        if not reply.success or not reply.reply_id:
            logger.error(
                "Reply failed, %d record(s) left without reply id: %s",
                len(record_ids),
                reply.error,
                extra={"event_type": "reply_failed", "detail": {"error": reply.error}},
            )
            return

        updates = await asyncio.gather(
            *(self.detection_service.update_reply_id(rid, reply.reply_id) for rid in record_ids),
            return_exceptions=True,
        )
        for record_id, outcome in zip(record_ids, updates):
            if isinstance(outcome, Exception):
                logger.error("Failed to set reply id on %s: %s", record_id, outcome)
            elif not outcome:
                logger.warning("Reply id not set on %s", record_id)

    async def _store_marker(self, event: MentionEvent) -> None:
        record = DetectionRecord(
            id=str(uuid.uuid4()),
            source_id=event.source_id,
            captured_at=datetime.now(timezone.utc),
            image_url=NO_IMAGES_MARKER,
            author_handle=event.author_handle,
            ai_probability=None,
            processing_time_ms=0,
            provider="none",
        )
        await self.detection_service.insert(record)

    async def handle_push_events(self, payload: dict[str, Any]) -> int:
        """Adapt and dispatch a webhook batch.

        Returns:
            Number of pipelines started.
        """
        events = payload.get("tweet_create_events") or []
        if not isinstance(events, list) or not events:
            logger.debug("Webhook payload has no tweet_create_events, ignoring")
            return 0

        dispatched = 0
        for tweet in events:
            try:
                event = to_mention_event(V1TweetPayload(tweet=tweet), self.bot_username)
            except PayloadError as e:
                logger.warning("Dropping malformed webhook event: %s", e)
                continue
            try:
                if await self.dispatch(event):
                    dispatched += 1
            except Exception as e:
                logger.error(
                    "Failed to dispatch webhook mention %s: %s", event.source_id, e, exc_info=True
                )

        logger.info("Webhook batch: %d of %d event(s) dispatched", dispatched, len(events))
        return dispatched

    async def poll_once(self) -> int:
        """Run one incremental search and dispatch new mentions.

        The cursor never moves past a mention whose dispatch failed, so the
        next search fetches it again.

        Returns:
            Number of pipelines started.
        """
        try:
            response = await self.twitter.search_mentions(self.since_id)
        except (TwitterAPIError, httpx.HTTPError, ValueError) as e:
            logger.error("Mention search failed: %s", e)
            return 0
        if response is None:
            return 0

        payloads = search_payloads(response)
        if not payloads:
            logger.debug("No new mentions since %s", self.since_id or "start")
            return 0

        dispatched = 0
        failed: list[str] = []
        for payload in payloads:
            try:
                event = to_mention_event(payload, self.bot_username)
            except PayloadError as e:
                logger.warning("Dropping malformed search result: %s", e)
                continue
            try:
                if await self.dispatch(event):
                    dispatched += 1
            except Exception as e:
                logger.error(
                    "Failed to dispatch mention %s, will retry: %s", event.source_id, e, exc_info=True
                )
                failed.append(event.source_id)

        ids = [str(p.tweet.get("id", "")) for p in payloads]
        if failed:
            oldest_failed = min(failed, key=snowflake_key)
            ids = [i for i in ids if i and snowflake_key(i) < snowflake_key(oldest_failed)]
        self.since_id = highest_id(ids, self.since_id)

        logger.info(
            "Search returned %d mention(s), %d dispatched, %d failed, cursor now %s",
            len(payloads),
            dispatched,
            len(failed),
            self.since_id,
        )
        return dispatched

    async def poll_tick(self) -> int:
        """Several spaced searches sharing the advancing cursor."""
        dispatched = 0
        for i in range(self.config.bot.polls_per_tick):
            if i > 0:
                await self._sleep(self.config.bot.poll_spacing_seconds)
            try:
                dispatched += await self.poll_once()
            except Exception as e:
                logger.error("Search %d of tick failed: %s", i + 1, e, exc_info=True)
        return dispatched

    async def run(self) -> None:
        """Poll on a fixed schedule until cancelled."""
        logger.info("Starting bot for @%s", self.bot_username)
        logger.info(
            "Tick every %ds: %d search(es) %ds apart",
            self.config.bot.tick_interval_seconds,
            self.config.bot.polls_per_tick,
            self.config.bot.poll_spacing_seconds,
        )

        try:
            while True:
                try:
                    await self.poll_tick()
                except Exception as e:
                    logger.error("Error in polling tick: %s", e, exc_info=True)
                await self._sleep(self.config.bot.tick_interval_seconds)
        finally:
            await self.wait_for_background_tasks()

    async def aclose(self) -> None:
        await self.twitter.aclose()
        await self.extractor.aclose()
        await self.detector.aclose()
