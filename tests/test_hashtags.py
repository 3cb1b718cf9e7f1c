"""Tests for hashtag selection."""

import pytest

from aidetect_bot.hashtags import (
    base_form,
    extract_keywords,
    format_hashtags,
    is_spam_tag,
    select_hashtags,
)

DEFAULTS = ["AIDetection", "AIorNot"]


class TestBaseForm:
    """Test the suffix-stripping lemmatizer."""

    @pytest.mark.parametrize(
        "word,expected",
        [
            ("went", "go"),
            ("Thought", "think"),
            ("stopped", "stop"),
            ("walked", "walk"),
            ("running", "run"),
            ("walking", "walk"),
            ("stories", "story"),
            ("watches", "watch"),
            ("cats", "cat"),
            ("glass", "glass"),
            ("is", "is"),
        ],
    )
    def test_base_form(self, word, expected):
        assert base_form(word) == expected


class TestExtractKeywords:
    """Test keyword extraction from post text."""

    def test_proper_nouns_first(self):
        assert extract_keywords("Went to Paris with Alice yesterday!") == ["paris", "alice"]

    def test_sentence_initial_capitals_after_first_ignored(self):
        keywords = extract_keywords("Lovely Berlin morning. Sunset was great. Sunset again.")
        assert keywords[:2] == ["lovely", "berlin"]
        assert "sunset" not in keywords[:2]

    def test_mentions_take_priority(self):
        assert extract_keywords("@nasa is this real") == ["nasa", "real"]

    def test_frequency_fallback(self):
        assert extract_keywords("walking walking garden sunshine") == ["walk", "garden", "sunshine"]

    def test_stop_words_and_profanity_excluded(self):
        keywords = extract_keywords("this is just a damn good view")
        assert keywords == ["view"]

    def test_existing_hashtags_excluded(self):
        assert extract_keywords("Sunset at the Beach", ["#sunset"]) == ["beach"]

    def test_urls_ignored(self):
        assert extract_keywords("check https://example.com/photography mountains") == ["check", "mountain"]

    def test_limit(self):
        assert len(extract_keywords("alpha bravo charlie delta echo foxtrot")) == 3


class TestSelectHashtags:
    """Test the three-tag selection order."""

    def test_spam_tags_filtered(self):
        assert is_spam_tag("FollowBack")
        assert is_spam_tag("spambot")
        assert not is_spam_tag("nature")

    def test_originals_then_defaults(self):
        assert select_hashtags(["nature", "followback", "#sky"], "", DEFAULTS) == [
            "nature",
            "sky",
            "AIDetection",
        ]

    def test_originals_capped_at_three(self):
        assert select_hashtags(["one", "two", "three", "four"], "Paris", DEFAULTS) == ["one", "two", "three"]

    def test_keywords_fill_before_defaults(self):
        assert select_hashtags([], "Went to Paris with Alice yesterday!", DEFAULTS) == [
            "paris",
            "alice",
            "AIDetection",
        ]

    def test_only_defaults_when_nothing_else(self):
        assert select_hashtags([], "", DEFAULTS) == DEFAULTS

    def test_format(self):
        assert format_hashtags(["sky"], "", DEFAULTS) == "#sky #AIDetection #AIorNot"
