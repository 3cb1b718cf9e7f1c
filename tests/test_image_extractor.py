"""Tests for image URL extraction."""

import httpx

from aidetect_bot.image_extractor import (
    ImageExtractor,
    is_likely_image_url,
    media_image_urls,
    parse_open_graph_images,
    resolve_url,
)
from aidetect_bot.mentions import MediaItem, MentionEvent

ARTICLE_HTML = """<html><head>
<meta property="og:title" content="Breaking">
<meta content="https://news.test/media/hero.jpg" property="og:image">
<meta name='twitter:image' content='https://pbs.twimg.com/media/a.jpg'>
</head><body></body></html>"""


class TestOpenGraphParsing:
    """Test meta tag parsing."""

    def test_attribute_order_and_quoting_vary(self):
        page = """
        <meta property="og:image" content="https://cdn.test/photo.jpg" />
        <meta content='https://cdn.test/card.png' name='twitter:image'>
        <META PROPERTY="og:image:secure_url" CONTENT="https://cdn.test/secure.webp">
        """
        assert parse_open_graph_images(page, "https://site.test/post") == [
            "https://cdn.test/photo.jpg",
            "https://cdn.test/card.png",
            "https://cdn.test/secure.webp",
        ]

    def test_relative_urls_resolved(self):
        page = """
        <meta property="og:image" content="/images/card.png">
        <meta name="twitter:image:src" content="//cdn.test/thumb.jpg">
        """
        assert parse_open_graph_images(page, "https://site.test/post/1") == [
            "https://site.test/images/card.png",
            "https://cdn.test/thumb.jpg",
        ]

    def test_non_image_tags_ignored(self):
        page = '<meta property="og:title" content="https://site.test/a.jpg">'
        assert parse_open_graph_images(page, "https://site.test/") == []

    def test_entities_unescaped(self):
        page = '<meta property="og:image" content="https://cdn.test/a.jpg?w=1&amp;h=2">'
        assert parse_open_graph_images(page, "https://site.test/") == ["https://cdn.test/a.jpg?w=1&h=2"]

    def test_resolve_url(self):
        assert resolve_url("  ", "https://site.test/") is None
        assert resolve_url("//cdn.test/a.jpg", "https://site.test/") == "https://cdn.test/a.jpg"
        assert resolve_url("a.jpg", "https://site.test/dir/page") == "https://site.test/dir/a.jpg"


class TestImageUrlHeuristic:
    """Test is_likely_image_url."""

    def test_extensions_and_hints(self):
        assert is_likely_image_url("https://cdn.test/a.PNG")
        assert is_likely_image_url("https://site.test/photos/123")
        assert is_likely_image_url("https://pbs.twimg.com/profile_banners/1")
        assert is_likely_image_url("https://site.test/api/render?id=1")

    def test_rejects_plain_pages_and_http(self):
        assert not is_likely_image_url("https://site.test/about")
        assert not is_likely_image_url("http://cdn.test/a.jpg")
        assert not is_likely_image_url("not a url")


class TestMediaUrls:
    """Test attachment URL selection."""

    def test_video_uses_preview(self):
        media = [
            MediaItem(type="photo", url="https://pbs.twimg.com/media/a.jpg"),
            MediaItem(type="video", preview_url="https://pbs.twimg.com/thumb/v.jpg"),
            MediaItem(type="animated_gif"),
        ]
        assert media_image_urls(media) == [
            "https://pbs.twimg.com/media/a.jpg",
            "https://pbs.twimg.com/thumb/v.jpg",
        ]


class TestImageExtractor:
    """Test extraction across attachments and link previews."""

    def setup_method(self):
        """Set up test fixtures."""
        self.fetched: list[str] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.fetched.append(str(request.url))
        host = request.url.host
        if host == "news.test":
            return httpx.Response(200, text=ARTICLE_HTML, headers={"content-type": "text/html; charset=utf-8"})
        if host == "slow.test":
            raise httpx.ConnectTimeout("timed out", request=request)
        if host == "files.test":
            return httpx.Response(200, content=b"%PDF", headers={"content-type": "application/pdf"})
        return httpx.Response(500)

    def make_extractor(self) -> ImageExtractor:
        return ImageExtractor(http_client=httpx.AsyncClient(transport=httpx.MockTransport(self.handler)))

    async def test_attachments_then_previews_deduplicated(self):
        event = MentionEvent(
            source_id="1",
            author_handle="alice",
            text="look",
            media=[
                MediaItem(type="photo", url="https://pbs.twimg.com/media/a.jpg"),
                MediaItem(type="video", preview_url="https://pbs.twimg.com/thumb/v.jpg"),
            ],
            link_urls=[
                "https://news.test/article",
                "https://slow.test/x",
                "https://files.test/doc.pdf",
                "https://broken.test/",
            ],
        )

        urls = await self.make_extractor().extract_all(event)

        assert urls == [
            "https://pbs.twimg.com/media/a.jpg",
            "https://pbs.twimg.com/thumb/v.jpg",
            "https://news.test/media/hero.jpg",
        ]

    async def test_no_links_skips_fetching(self):
        event = MentionEvent(
            source_id="1",
            author_handle="alice",
            text="look",
            media=[MediaItem(type="photo", url="https://pbs.twimg.com/media/a.jpg")],
        )

        urls = await self.make_extractor().extract_all(event)

        assert urls == ["https://pbs.twimg.com/media/a.jpg"]
        assert self.fetched == []

    async def test_nothing_found(self):
        event = MentionEvent(source_id="1", author_handle="alice", text="hi", link_urls=["https://files.test/a"])
        assert await self.make_extractor().extract_all(event) == []
