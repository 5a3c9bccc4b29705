"""Keyword tagging for transcripts."""

from __future__ import annotations

import re

MAX_TAGS = 8
MIN_TAGS = 4
FALLBACK_TAG = "misc"
PADDING_TAGS = ("personal", "talking", "self")

# (pattern, tags) checked in order; every match contributes its tags.
KEYWORD_RULES: list[tuple[re.Pattern[str], tuple[str, ...]]] = [
    (re.compile(r"\b(hello|hi|hey)\b", re.IGNORECASE), ("greeting",)),
    (re.compile(r"my name is", re.IGNORECASE), ("introduction",)),
    (re.compile(r"\b\d{2}\b"), ("age",)),
    (re.compile(r"family", re.IGNORECASE), ("family",)),
    (re.compile(r"\bfriends?\b", re.IGNORECASE), ("friends",)),
    (re.compile(r"celebrat", re.IGNORECASE), ("celebration",)),
    (re.compile(r"birthday", re.IGNORECASE), ("birthday", "celebration")),
    (re.compile(r"\b(trip|travel|road trip|vacation)\b", re.IGNORECASE), ("travel",)),
    (re.compile(r"\b(beach|mountain|river|park|sunset)\b", re.IGNORECASE), ("outdoors",)),
]


def keyword_tags(text: str | None) -> list[str]:
    """
    Tag a transcript by keyword.

    Empty text gets ["misc"]; otherwise matches are padded with generic tags
    up to MIN_TAGS and capped at MAX_TAGS, in first-seen order.
    """
    if not text or not text.strip():
        return [FALLBACK_TAG]

    tags: list[str] = []
    for pattern, rule_tags in KEYWORD_RULES:
        if pattern.search(text):
            for tag in rule_tags:
                if tag not in tags:
                    tags.append(tag)

    for tag in PADDING_TAGS:
        if len(tags) >= MIN_TAGS:
            break
        if tag not in tags:
            tags.append(tag)

    return tags[:MAX_TAGS]
