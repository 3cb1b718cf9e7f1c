"""Collect candidate image URLs from a mention's attachments and link previews."""

import asyncio
import html
import logging
import re
from typing import Optional
from urllib.parse import urljoin, urlparse

import httpx

from .mentions import MediaItem, MentionEvent

logger = logging.getLogger(__name__)

LINK_PREVIEW_USER_AGENT = "Mozilla/5.0 (compatible; AIDetectBot/1.0; +https://aidetect.example.com)"
LINK_PREVIEW_HEADERS = {
    "User-Agent": LINK_PREVIEW_USER_AGENT,
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
}

IMAGE_META_KEYS = {"og:image", "og:image:secure_url", "twitter:image", "twitter:image:src", "image"}

META_TAG = re.compile(r"<meta\b([^>]*)>", re.IGNORECASE)
TAG_ATTRIBUTE = re.compile(r"([\w:-]+)\s*=\s*(?:\"([^\"]*)\"|'([^']*)'|([^\s\"'>]+))")
IMAGE_EXTENSION = re.compile(r"\.(jpg|jpeg|png|gif|webp|bmp|svg)$", re.IGNORECASE)
PATH_HINTS = ("image", "photo", "picture", "thumbnail", "media", "og")
HOST_HINTS = ("twimg.com",)
DYNAMIC_IMAGE_PATHS = ("/api/", "/og/", "/thumbnails/")


def media_image_urls(media: list[MediaItem]) -> list[str]:
    """Image URLs for attachments; videos and gifs contribute their preview frame."""
    urls = []
    for item in media:
        if item.type == "photo":
            url = item.url
        else:
            url = item.preview_url or item.url
        if url:
            urls.append(url)
    return urls


def resolve_url(url: str, base_url: str) -> Optional[str]:
    """Make a meta tag URL absolute relative to the page it came from."""
    url = url.strip()
    if not url:
        return None
    if url.startswith(("http://", "https://")):
        return url
    if url.startswith("//"):
        return f"https:{url}"
    try:
        return urljoin(base_url, url)
    except ValueError:
        logger.debug("Could not resolve %r against %s", url, base_url)
        return None


def is_likely_image_url(url: str) -> bool:
    """Heuristic check that a URL points at an image served over HTTPS."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    if parsed.scheme != "https" or not parsed.netloc:
        return False

    path = parsed.path.lower()
    host = parsed.netloc.lower()
    return bool(
        IMAGE_EXTENSION.search(path)
        or any(hint in path for hint in PATH_HINTS)
        or any(hint in host for hint in HOST_HINTS)
        or any(pattern in path for pattern in DYNAMIC_IMAGE_PATHS)
    )


def parse_open_graph_images(page: str, base_url: str) -> list[str]:
    """Extract image URLs from Open Graph and Twitter card meta tags.

    Attribute order, quoting style and ``property`` versus ``name`` may all
    vary between sites.
    """
    found: list[str] = []
    for tag in META_TAG.finditer(page):
        attrs = {}
        for match in TAG_ATTRIBUTE.finditer(tag.group(1)):
            value = next(v for v in match.groups()[1:] if v is not None)
            attrs[match.group(1).lower()] = html.unescape(value)

        key = (attrs.get("property") or attrs.get("name") or "").lower()
        content = attrs.get("content")
        if key not in IMAGE_META_KEYS or not content:
            continue

        resolved = resolve_url(content, base_url)
        if resolved and resolved not in found:
            found.append(resolved)

    valid = [url for url in found if is_likely_image_url(url)]
    logger.debug("Parsed %d image meta tag(s) from %s, %d valid", len(found), base_url, len(valid))
    return valid


def _dedupe(urls: list[str]) -> list[str]:
    return list(dict.fromkeys(urls))


class ImageExtractor:
    """Turns a MentionEvent into an ordered, duplicate-free list of image URLs."""

    def __init__(self, http_client: Optional[httpx.AsyncClient] = None, timeout: float = 15.0):
        self.timeout = timeout
        self.http = http_client or httpx.AsyncClient(follow_redirects=True)

    async def aclose(self) -> None:
        await self.http.aclose()

    async def fetch_open_graph_images(self, url: str) -> list[str]:
        """Fetch a linked page and return its preview images.

        Timeouts, HTTP errors and non-HTML responses yield an empty list.
        """
        try:
            response = await self.http.get(
                url, headers=LINK_PREVIEW_HEADERS, timeout=self.timeout, follow_redirects=True
            )
        except httpx.TimeoutException:
            logger.info("Timed out fetching link preview from %s", url)
            return []
        except httpx.HTTPError as e:
            logger.info("Failed to fetch link preview from %s: %s", url, e)
            return []

        if response.is_error:
            logger.info("HTTP %d for %s, skipping link preview", response.status_code, url)
            return []

        content_type = response.headers.get("content-type", "")
        if "text/html" not in content_type:
            logger.debug("Non-HTML content type %r for %s, skipping", content_type, url)
            return []

        return parse_open_graph_images(response.text, str(response.url))

    async def link_preview_images(self, links: list[str]) -> list[str]:
        results = await asyncio.gather(*(self.fetch_open_graph_images(link) for link in links))
        return _dedupe([url for urls in results for url in urls])

    async def extract_all(self, event: MentionEvent) -> list[str]:
        """Attachment images first, then link preview images."""
        media_urls = media_image_urls(event.media)
        if not event.link_urls:
            return _dedupe(media_urls)

        try:
            preview_urls = await self.link_preview_images(event.link_urls)
        except Exception as e:
            logger.error(
                "Link preview extraction failed for %s, using attachments only: %s",
                event.source_id,
                e,
                exc_info=True,
            )
            return _dedupe(media_urls)

        urls = _dedupe(media_urls + preview_urls)
        logger.info(
            "Found %d image(s) for %s (%d attached, %d from links)",
            len(urls),
            event.source_id,
            len(media_urls),
            len(preview_urls),
        )
        return urls
