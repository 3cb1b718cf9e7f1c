"""Image description and confidence narrative from a multimodal chat model."""

import asyncio
import logging
import re
import time
from dataclasses import dataclass
from typing import Optional, Union

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import HumanMessage

from .config import LLMConfig
from .reply_composer import round_percent

logger = logging.getLogger(__name__)

PLACEHOLDER_TITLE = "Image"
PLACEHOLDER_META_DESCRIPTION = "image"
PLACEHOLDER_DETAILED_DESCRIPTION = "Image analysis not available"
PLACEHOLDER_CONFIDENCE_ANALYSIS = ""

TITLE_PATTERN = re.compile(r"\*\*Title:\*\*\s*(.+)", re.IGNORECASE)
META_PATTERN = re.compile(r"\*\*Meta Description:\*\*\s*(.+)", re.IGNORECASE)
DETAILED_PATTERN = re.compile(
    r"\*\*Detailed Description:\*\*\s*([\s\S]+?)(?=\n\*\*|$)", re.IGNORECASE
)
CONFIDENCE_PATTERN = re.compile(
    r"\*\*Confidence Analysis:\*\*\s*([\s\S]+?)(?=\n\*\*|$)", re.IGNORECASE
)
NON_WORD_PUNCTUATION = re.compile(r"[^\w\s-]")

CONFIDENCE_CATEGORIES = {
    "Textures": (
        "Supporting the {score}% score, assess whether textures appear overly smooth, "
        "lack natural variation, or show signs of digital generation."
    ),
    "Lighting & Shadows": (
        "Given the {score}% detection score, evaluate whether lighting appears natural "
        "or shows signs of artificial enhancement."
    ),
    "Proportions & Anatomy": (
        "Consistent with the {score}% AI likelihood, identify any anatomical "
        "inconsistencies or unnatural proportions."
    ),
    "Symmetry": (
        "The {score}% score suggests examining whether symmetry appears too perfect "
        "or artificially enhanced."
    ),
    "Hyperreal Aesthetics": (
        "Supporting the {score}% detection rating, analyze whether the image appears "
        "unnaturally flawless."
    ),
    "Other Details": (
        "Given the {score}% AI-detection score, identify any additional visual "
        "evidence supporting this assessment."
    ),
}

PROMPT_TEMPLATE = """Analyze this image and provide exactly four descriptions in this simple format:

**Title:** [3-4 word title focusing on the main subject or scene]
**Meta Description:** [70-80 character description for meta tags, descriptive but concise]
**Detailed Description:** [A comprehensive 2-3 paragraph analysis describing all visual elements, composition, colors, lighting, mood, subjects, and artistic qualities. Describe the overall atmosphere and visual impact in rich, engaging detail.]
**Confidence Analysis:** [This image scored {score}% likelihood of being AI-generated. Analyze specific visual elements that support this {score}% AI-detection score across these categories:

{categories}

Each bullet should be 1-2 sentences focusing on specific visual evidence.]

Example:
**Title:** Beach Sunset Photo
**Meta Description:** sunset landscape with mountains and lake
**Detailed Description:** A coastal landscape at golden hour with dramatic lighting and a serene composition. Warm orange and pink hues reflect off the water while the mountain range forms a dark silhouette.
**Confidence Analysis:** The lighting is naturally graduated with realistic atmospheric effects, and the mountain silhouettes have irregular edges that suggest a genuine photograph.

Do not include any other text or formatting.{context}"""


@dataclass
class ParsedSections:
    title: str
    meta_description: str
    detailed_description: str
    confidence_analysis: str


@dataclass
class ParseFailure:
    reason: str


ParseResult = Union[ParsedSections, ParseFailure]


@dataclass
class Enrichment:
    """Description fields stored alongside a detection."""

    title: str = PLACEHOLDER_TITLE
    meta_description: str = PLACEHOLDER_META_DESCRIPTION
    detailed_description: str = PLACEHOLDER_DETAILED_DESCRIPTION
    confidence_analysis: str = PLACEHOLDER_CONFIDENCE_ANALYSIS
    success: bool = False
    processing_time_ms: int = 0
    error: Optional[str] = None


def build_prompt(
    ai_probability: float, text: Optional[str] = None, hashtags: Optional[list[str]] = None
) -> str:
    score = round_percent(ai_probability)
    categories = "\n\n".join(
        f"• {name}: {hint.format(score=score)}" for name, hint in CONFIDENCE_CATEGORIES.items()
    )

    context_lines = []
    if text:
        context_lines.append(f'Original tweet: "{text}"')
    if hashtags:
        context_lines.append("Hashtags: " + ", ".join(f"#{tag}" for tag in hashtags))
    context = "\n\nContext:\n" + "\n".join(context_lines) if context_lines else ""

    return PROMPT_TEMPLATE.format(score=score, categories=categories, context=context)


def _clean_label(value: str) -> str:
    return NON_WORD_PUNCTUATION.sub("", value.strip()).strip()


def parse_sections(content: str) -> ParseResult:
    """Pull the four labelled sections out of a model answer.

    All four are required; a missing one fails the whole answer.
    """
    matches = {
        "title": TITLE_PATTERN.search(content),
        "meta description": META_PATTERN.search(content),
        "detailed description": DETAILED_PATTERN.search(content),
        "confidence analysis": CONFIDENCE_PATTERN.search(content),
    }
    missing = [name for name, match in matches.items() if match is None]
    if missing:
        return ParseFailure(f"Missing section(s): {', '.join(missing)}")

    return ParsedSections(
        title=_clean_label(matches["title"].group(1)),
        meta_description=_clean_label(matches["meta description"].group(1)),
        detailed_description=matches["detailed description"].group(1).strip(),
        confidence_analysis=matches["confidence analysis"].group(1).strip(),
    )


def _message_text(content) -> str:
    if isinstance(content, str):
        return content
    # Some providers return a list of content blocks
    return "".join(
        block.get("text", "") if isinstance(block, dict) else str(block) for block in content
    )


class EnrichmentClient:
    """Asks a vision-capable chat model to describe an image."""

    def __init__(self, config: LLMConfig, llm: Optional[BaseChatModel] = None) -> None:
        self.config = config
        self.llm = llm or self._create_llm()

    def _create_llm(self) -> BaseChatModel:
        """Create the chat model named by the config."""
        if self.config.provider == "anthropic":
            from langchain_anthropic import ChatAnthropic

            return ChatAnthropic(
                model=self.config.model,
                api_key=self.config.api_key.get_secret_value(),
                max_tokens=self.config.max_tokens,
                temperature=self.config.temperature,
                timeout=self.config.timeout_seconds,
            )
        elif self.config.provider == "openai":
            from langchain_openai import ChatOpenAI

            return ChatOpenAI(
                model=self.config.model,
                api_key=self.config.api_key.get_secret_value(),
                base_url=self.config.base_url,
                max_tokens=self.config.max_tokens,
                temperature=self.config.temperature,
                timeout=self.config.timeout_seconds,
            )
        else:
            raise ValueError(f"Unsupported LLM provider: {self.config.provider}")

    async def describe(
        self,
        image_url: str,
        ai_probability: float,
        text: Optional[str] = None,
        hashtags: Optional[list[str]] = None,
    ) -> Enrichment:
        """Describe one image. Never raises; failures yield placeholder text."""
        started = time.monotonic()
        message = HumanMessage(
            content=[
                {"type": "text", "text": build_prompt(ai_probability, text, hashtags)},
                {"type": "image_url", "image_url": {"url": image_url}},
            ]
        )

        try:
            response = await asyncio.wait_for(
                self.llm.ainvoke([message]), timeout=self.config.timeout_seconds
            )
        except Exception as e:
            logger.error("Enrichment call failed for %s: %s", image_url, e, exc_info=True)
            return Enrichment(processing_time_ms=_elapsed_ms(started), error=str(e))

        content = _message_text(response.content).strip()
        parsed = parse_sections(content)
        if isinstance(parsed, ParseFailure):
            logger.error(
                "Could not parse enrichment answer for %s (%s): %s",
                image_url,
                parsed.reason,
                content[:200],
            )
            return Enrichment(processing_time_ms=_elapsed_ms(started), error=parsed.reason)

        result = Enrichment(
            title=parsed.title,
            meta_description=parsed.meta_description,
            detailed_description=parsed.detailed_description,
            confidence_analysis=parsed.confidence_analysis,
            success=True,
            processing_time_ms=_elapsed_ms(started),
        )
        logger.info(
            "Enrichment for %s: %r (%d chars detail) in %dms",
            image_url,
            result.title,
            len(result.detailed_description),
            result.processing_time_ms,
        )
        return result


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
