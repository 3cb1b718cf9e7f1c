"""Reply text for one or more detection results. Pure functions, no I/O."""

import math
from dataclasses import dataclass
from typing import Iterable, Optional

from .hashtags import format_hashtags

ORDINALS = ("1st", "2nd", "3rd", "4th")

# (minimum rounded percentage, label); first match wins
CONFIDENCE_TIERS = (
    (80, "🤖 High confidence: Very likely AI generated."),
    (60, "🦾 Medium confidence: Fairly likely AI generated."),
    (50, "🤔 Low confidence: More likely AI generated."),
    (40, "🤔 Low confidence: More likely a real image, not AI generated."),
    (20, "👩‍🎨 Medium confidence: Fairly likely a real image, not AI generated."),
    (0, "📸 High confidence: Very likely a real image, not AI generated."),
)


@dataclass
class ImageOutcome:
    """What the composer needs to know about one image.

    ``ai_probability`` is None when detection failed for the image.
    """

    index: int
    ai_probability: Optional[float] = None
    short_id: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.ai_probability is not None


def round_percent(value: float) -> int:
    """Whole percentage, rounding halves up."""
    return int(math.floor(value + 0.5))


def ordinal(index: int) -> str:
    """1-based ordinal label used in multi-image replies."""
    if 1 <= index <= len(ORDINALS):
        return ORDINALS[index - 1]
    return f"{index}th"


def confidence_label(percentage: int) -> str:
    for threshold, label in CONFIDENCE_TIERS:
        if percentage >= threshold:
            return label
    return CONFIDENCE_TIERS[-1][1]


def share_link(share_base_url: str, short_id: str) -> str:
    return f"{share_base_url.rstrip('/')}/{short_id}"


def compose_single_reply(
    ai_probability: float,
    hashtags: str,
    short_id: Optional[str] = None,
    share_base_url: str = "",
) -> str:
    percentage = round_percent(ai_probability)
    message = f"🧠 This image looks {percentage}% likely to be AI-generated. {confidence_label(percentage)}"
    if short_id:
        message += f"\n\n📊 View detailed analysis: {share_link(share_base_url, short_id)}"
    return f"{message} {hashtags}"


def compose_failure_reply(hashtags: str) -> str:
    return f"🧠 Unable to analyze the image. Please try again later. {hashtags}"


def aggregate_summary(probabilities: list[float]) -> Optional[str]:
    """Overall verdict across successfully scored images."""
    if not probabilities:
        return None
    average = sum(probabilities) / len(probabilities)
    if average >= 75:
        return "🤖 Multiple images show high AI probability"
    if average >= 25:
        return "🤔 Mixed results - some images may be AI-generated"
    return "👨‍🎨 Most images appear to be human-created"


def compose_multi_reply(outcomes: list[ImageOutcome], hashtags: str, share_base_url: str = "") -> str:
    lines = []
    for outcome in outcomes:
        if outcome.success:
            lines.append(f"{ordinal(outcome.index)} image: {round_percent(outcome.ai_probability)}% AI")
        else:
            lines.append(f"{ordinal(outcome.index)} image: Error")
    message = "🧠 AI Detection Results:\n" + "\n".join(lines)

    summary = aggregate_summary([o.ai_probability for o in outcomes if o.success])
    if summary:
        message += f"\n\n{summary}"

    links = [
        f"📊 {ordinal(o.index)}: {share_link(share_base_url, o.short_id)}"
        for o in outcomes
        if o.success and o.short_id
    ]
    if links:
        message += "\n\nDetailed analysis:\n" + "\n".join(links)

    return f"{message} {hashtags}"


def compose_reply(
    outcomes: list[ImageOutcome],
    original_hashtags: Iterable[str] = (),
    text: str = "",
    share_base_url: str = "",
    default_hashtags: Optional[list[str]] = None,
) -> str:
    """Render the reply for every image of a mention, failed ones included."""
    hashtags = format_hashtags(original_hashtags, text, default_hashtags)
    ordered = sorted(outcomes, key=lambda o: o.index)

    if len(ordered) == 1:
        only = ordered[0]
        if not only.success:
            return compose_failure_reply(hashtags)
        return compose_single_reply(only.ai_probability, hashtags, only.short_id, share_base_url)

    return compose_multi_reply(ordered, hashtags, share_base_url)
