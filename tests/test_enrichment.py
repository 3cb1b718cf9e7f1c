"""Tests for image enrichment."""

import asyncio

from aidetect_bot.enrichment import (
    CONFIDENCE_CATEGORIES,
    PLACEHOLDER_DETAILED_DESCRIPTION,
    PLACEHOLDER_TITLE,
    EnrichmentClient,
    ParsedSections,
    ParseFailure,
    build_prompt,
    parse_sections,
)

from .conftest import WELL_FORMED_ANSWER, FakeChatModel, make_config


class TestParseSections:
    """Test parsing of labelled model answers."""

    def test_well_formed_answer(self):
        parsed = parse_sections(WELL_FORMED_ANSWER)

        assert isinstance(parsed, ParsedSections)
        assert parsed.title == "Golden Retriever Portrait"
        assert parsed.meta_description == "a dog sitting on grass looking at the camera"
        assert parsed.detailed_description.startswith("A golden retriever")
        assert "The background is blurred and warm." in parsed.detailed_description
        assert "Confidence" not in parsed.detailed_description
        assert parsed.confidence_analysis.startswith("This image scored 85%")
        assert "• Other Details" in parsed.confidence_analysis

    def test_missing_section_fails_whole_answer(self):
        content = WELL_FORMED_ANSWER.replace("**Meta Description:**", "Meta:")
        parsed = parse_sections(content)

        assert isinstance(parsed, ParseFailure)
        assert "meta description" in parsed.reason

    def test_labels_are_case_insensitive(self):
        content = WELL_FORMED_ANSWER.replace("**Title:**", "**TITLE:**")
        assert isinstance(parse_sections(content), ParsedSections)


class TestBuildPrompt:
    """Test prompt construction."""

    def test_score_and_categories(self):
        prompt = build_prompt(84.6)

        assert "85% likelihood" in prompt
        for name in CONFIDENCE_CATEGORIES:
            assert f"• {name}:" in prompt
        assert "Context:" not in prompt

    def test_context_lines(self):
        prompt = build_prompt(10.0, text="my dog today", hashtags=["dogs", "sunday"])

        assert 'Original tweet: "my dog today"' in prompt
        assert "Hashtags: #dogs, #sunday" in prompt


class TestEnrichmentClient:
    """Test the describe call with a fake chat model."""

    def setup_method(self):
        """Set up test fixtures."""
        self.config = make_config().llm

    async def test_describe_success(self):
        llm = FakeChatModel()
        client = EnrichmentClient(self.config, llm=llm)

        result = await client.describe("https://pbs.twimg.com/media/a.jpg", 85.0, text="hello")

        assert result.success
        assert result.title == "Golden Retriever Portrait"
        assert result.error is None

        message = llm.calls[0][0]
        blocks = message.content
        assert blocks[0]["type"] == "text"
        assert "85%" in blocks[0]["text"]
        assert blocks[1] == {"type": "image_url", "image_url": {"url": "https://pbs.twimg.com/media/a.jpg"}}

    async def test_model_error_gives_placeholders(self):
        client = EnrichmentClient(self.config, llm=FakeChatModel(error=RuntimeError("503 upstream")))

        result = await client.describe("https://pbs.twimg.com/media/a.jpg", 40.0)

        assert not result.success
        assert result.title == PLACEHOLDER_TITLE
        assert result.detailed_description == PLACEHOLDER_DETAILED_DESCRIPTION
        assert "503" in result.error

    async def test_unparseable_answer_gives_placeholders(self):
        client = EnrichmentClient(self.config, llm=FakeChatModel(content="Sorry, I can't help with that."))

        result = await client.describe("https://pbs.twimg.com/media/a.jpg", 40.0)

        assert not result.success
        assert result.title == PLACEHOLDER_TITLE

    async def test_timeout_gives_placeholders(self):
        class SlowModel:
            async def ainvoke(self, messages):
                await asyncio.sleep(10)

        config = self.config.model_copy(update={"timeout_seconds": 0.01})
        client = EnrichmentClient(config, llm=SlowModel())

        result = await client.describe("https://pbs.twimg.com/media/a.jpg", 40.0)

        assert not result.success
        assert result.title == PLACEHOLDER_TITLE

    async def test_content_blocks_are_joined(self):
        llm = FakeChatModel()
        llm.content = [{"type": "text", "text": WELL_FORMED_ANSWER}]
        client = EnrichmentClient(self.config, llm=llm)

        result = await client.describe("https://pbs.twimg.com/media/a.jpg", 85.0)

        assert result.success
