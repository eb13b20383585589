"""Cheap text checks that run without the classifier."""

from __future__ import annotations

import re
import unicodedata
from typing import Iterable

# Discord style custom emoji, e.g. <:wave:123> or <a:dance:456>
CUSTOM_EMOJI_PATTERN = re.compile(r"<a?:\w+:\d+>")

# Characters that only modify a neighbouring emoji
EMOJI_MODIFIERS = {"‍", "︎", "️", "⃣"}

# Share of visible characters that must be emoji
MOSTLY_EMOJI_RATIO = 0.5


def find_blocklisted_word(text: str, blocklist: Iterable[str]) -> str | None:
    """Return the first blocklist entry found in ``text`` as a whole word, ignoring case.

    Entries may contain several words; they then have to appear as a phrase.
    """
    lowered = text.lower()
    for word in blocklist:
        if word and re.search(rf"(?<!\w){re.escape(word)}(?!\w)", lowered):
            return word
    return None


def _is_emoji_char(char: str) -> bool:
    codepoint = ord(char)
    if 0x1F000 <= codepoint <= 0x1FAFF or 0x2600 <= codepoint <= 0x27BF:
        return True
    if 0x1F1E6 <= codepoint <= 0x1F1FF:  # regional indicators
        return True
    return unicodedata.category(char) == "So"


def is_mostly_emoji(text: str) -> bool:
    """True when more than half of the visible characters are emoji."""
    custom_count = len(CUSTOM_EMOJI_PATTERN.findall(text))
    remainder = CUSTOM_EMOJI_PATTERN.sub("", text)

    emoji_count = custom_count
    other_count = 0
    for char in remainder:
        if char.isspace() or char in EMOJI_MODIFIERS or unicodedata.category(char) == "Sk":
            continue
        if _is_emoji_char(char):
            emoji_count += 1
        else:
            other_count += 1

    total = emoji_count + other_count
    if emoji_count == 0:
        return False
    return emoji_count / total > MOSTLY_EMOJI_RATIO


def is_command(text: str) -> bool:
    return text.lstrip().startswith("/")
