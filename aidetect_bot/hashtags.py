"""Hashtag selection for replies: reuse the post's tags, then keywords, then defaults."""

import re
from collections import Counter
from typing import Iterable, Optional

MAX_HASHTAGS = 3
MIN_KEYWORD_LENGTH = 3
MAX_KEYWORD_LENGTH = 15

SPAM_TAG_FRAGMENTS = ("bot", "spam", "follow", "like", "rt")

PROFANITY_WORDS = frozenset({
    "fuck", "fucking", "shit", "damn", "hell", "ass", "sex", "porn", "xxx",
    "bitch", "bastard", "piss", "crap", "whore", "slut", "nazi", "hitler",
})

STOP_WORDS = frozenset({
    # articles, conjunctions, prepositions
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with", "by",
    # auxiliaries
    "is", "are", "was", "were", "be", "been", "have", "has", "had", "will", "would", "could",
    # pronouns
    "this", "that", "these", "those", "i", "you", "he", "she", "it", "we", "they", "me", "him",
    "her", "us", "them", "my", "your", "his", "its", "our", "their", "can", "do", "does", "did",
    # common verbs and adjectives
    "get", "go", "going", "got", "just", "now", "like", "said", "say", "see", "know", "think",
    "take", "come", "good", "new", "first", "last", "long", "great", "little", "own", "other",
    "old", "right", "big", "high", "different", "small", "large", "next", "early", "young",
    "important", "few", "public", "bad", "same", "able", "rt", "via",
    "yes", "not", "never", "lose", "sight", "post", "exactly", "ago", "no", "officially",
    "who", "what", "when", "why", "getting", "location", "read", "write", "speak", "out",
    "wait", "fellow", "gonna", "wont", "how", "thing", "one", "two", "three", "four", "five",
    "six", "seven", "eight", "nine", "ten", "entire", "whole", "half", "don", "look", "aren", "didn",
    "where", "which", "whose", "none", "nothing", "nobody", "nowhere", "today", "tomorrow",
    "yesterday", "soon", "later", "before", "after", "during", "while", "won", "couldn",
    "shouldn", "wouldn", "hasn", "haven", "wasn", "weren", "isn", "doesn", "eleven", "twelve",
    "thirteen", "fourteen", "fifteen", "sixteen", "seventeen", "eighteen", "nineteen", "twenty",
    "hundred", "thousand", "million", "make", "made", "tell", "told", "find", "found", "give",
    "gave", "put", "let", "set", "run", "ran", "turn", "work", "worked", "play", "played", "try",
    "tried", "ask", "asked", "help", "helped", "show", "showed", "move", "moved", "live", "lived",
    "feel", "felt", "keep", "kept", "seem", "seemed", "become", "became", "leave", "left", "meet",
    "met", "bring", "brought", "begin", "began", "hold", "held", "sit", "sat", "stand", "stood",
    "hear", "heard", "call", "called", "talk", "talked", "start", "started", "end", "ended",
    "open", "opened", "close", "closed", "change", "changed", "follow", "followed", "want",
    "wanted", "need", "needed", "use", "used", "tweet", "retweet", "here", "there", "then",
    "than", "only", "also", "more", "most", "much", "many", "some", "any", "all", "each",
    "every", "both", "either", "neither", "another", "such", "really", "very", "too",
    "so", "well", "still", "even", "back", "way", "around", "down", "up", "off", "over",
    "under", "through", "into", "onto", "from", "about", "above", "below", "between", "among",
})

IRREGULAR_VERBS = {
    "went": "go", "ran": "run", "said": "say", "came": "come", "gave": "give",
    "took": "take", "made": "make", "told": "tell", "found": "find", "left": "leave",
    "met": "meet", "brought": "bring", "began": "begin", "held": "hold", "sat": "sit",
    "stood": "stand", "heard": "hear", "felt": "feel", "kept": "keep", "seemed": "seem",
    "became": "become", "thought": "think", "knew": "know", "saw": "see", "got": "get",
    "had": "have", "was": "be", "were": "be", "did": "do", "been": "be", "done": "do",
    "gone": "go", "seen": "see", "taken": "take", "given": "give", "known": "know",
    "shown": "show", "written": "write", "spoken": "speak", "broken": "break",
    "chosen": "choose", "driven": "drive", "eaten": "eat", "fallen": "fall",
    "forgotten": "forget", "hidden": "hide", "ridden": "ride", "risen": "rise",
    "stolen": "steal", "worn": "wear", "won": "win",
}

CONSONANTS = frozenset("bcdfghjklmnpqrstvwxyz")

URL_PATTERN = re.compile(r"https?://\S+")
MENTION_PATTERN = re.compile(r"@(\w+)")
SENTENCE_SPLIT = re.compile(r"[.!?]+")
NON_WORD = re.compile(r"[^\w\s]")
PROPER_NOUN = re.compile(r"^[A-Z][a-z]+$")
LETTERS_ONLY = re.compile(r"^[a-z]+$")


def base_form(word: str) -> str:
    """Crude lemmatizer: irregular verb table, then suffix stripping."""
    lower = word.lower()
    if lower in IRREGULAR_VERBS:
        return IRREGULAR_VERBS[lower]

    if lower.endswith("ed") and len(lower) > 3:
        base = lower[:-2]
        # stopped -> stop
        if len(base) >= 3 and base[-1] == base[-2] and base[-1] in CONSONANTS:
            return base[:-1]
        return base

    if lower.endswith("ing") and len(lower) > 4:
        base = lower[:-3]
        # running -> run
        if len(base) >= 2 and base[-1] == base[-2] and base[-1] in CONSONANTS:
            return base[:-1]
        return base

    if lower.endswith("ies") and len(lower) > 4:
        return lower[:-3] + "y"

    if lower.endswith("es") and len(lower) > 3:
        base = lower[:-2]
        if base in ("go", "do") or base.endswith(("ch", "sh", "x", "z")):
            return base

    if lower.endswith("s") and len(lower) > 2 and not lower.endswith(("ss", "es")):
        return lower[:-1]

    return lower


def _blocked(word: str, base: str, existing: set[str]) -> bool:
    return any(
        w in STOP_WORDS or w in PROFANITY_WORDS or w in existing for w in (word, base)
    )


def extract_keywords(text: str, existing_hashtags: Iterable[str] = (), limit: int = MAX_HASHTAGS) -> list[str]:
    """Pick up to ``limit`` hashtag-worthy keywords from post text.

    Order of preference: @-mentioned handles, capitalized words (ignoring
    the capital at the start of every sentence but the first), then the
    most frequent remaining words.
    """
    existing = {tag.lower().lstrip("#") for tag in existing_hashtags}
    selected: list[str] = []
    seen_surface: set[str] = set()

    def add(keyword: str, surface: str) -> None:
        if keyword not in selected:
            selected.append(keyword)
        seen_surface.add(surface)

    for handle in MENTION_PATTERN.findall(text):
        lower = handle.lower()
        base = base_form(handle)
        if MIN_KEYWORD_LENGTH <= len(handle) <= MAX_KEYWORD_LENGTH and not _blocked(lower, base, existing):
            add(base, lower)

    stripped = MENTION_PATTERN.sub("", URL_PATTERN.sub("", text))
    for i, sentence in enumerate(SENTENCE_SPLIT.split(stripped)):
        words = NON_WORD.sub(" ", sentence.strip()).split()
        for j, word in enumerate(words):
            if not (MIN_KEYWORD_LENGTH <= len(word) <= MAX_KEYWORD_LENGTH):
                continue
            if not PROPER_NOUN.match(word):
                continue
            if j == 0 and i > 0:
                continue
            lower = word.lower()
            if not _blocked(lower, base_form(word), existing):
                add(lower, lower)

    if len(selected) >= limit:
        return selected[:limit]

    counts: Counter = Counter()
    for word in NON_WORD.sub(" ", stripped).lower().split():
        if not (MIN_KEYWORD_LENGTH <= len(word) <= MAX_KEYWORD_LENGTH):
            continue
        if not LETTERS_ONLY.match(word) or word in seen_surface:
            continue
        base = base_form(word)
        if not _blocked(word, base, existing):
            counts[base] += 1

    # Counter.most_common keeps first-seen order among ties
    for keyword, _ in counts.most_common():
        if len(selected) >= limit:
            break
        if keyword not in selected:
            selected.append(keyword)

    return selected[:limit]


def is_spam_tag(tag: str) -> bool:
    lower = tag.lower()
    return any(fragment in lower for fragment in SPAM_TAG_FRAGMENTS)


def select_hashtags(
    original_hashtags: Iterable[str],
    text: str = "",
    defaults: Optional[list[str]] = None,
) -> list[str]:
    """Choose up to three tags without the leading '#'."""
    defaults = defaults if defaults is not None else ["AIDetection", "AIorNot"]
    original = [tag.lstrip("#") for tag in original_hashtags if tag]

    chosen = [tag for tag in original if not is_spam_tag(tag)][:MAX_HASHTAGS]

    if len(chosen) < MAX_HASHTAGS and text.strip():
        chosen.extend(extract_keywords(text, original)[: MAX_HASHTAGS - len(chosen)])

    for tag in defaults:
        if len(chosen) >= MAX_HASHTAGS:
            break
        chosen.append(tag)

    return chosen


def format_hashtags(
    original_hashtags: Iterable[str], text: str = "", defaults: Optional[list[str]] = None
) -> str:
    return " ".join(f"#{tag}" for tag in select_hashtags(original_hashtags, text, defaults))
