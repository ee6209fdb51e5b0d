"""
mood.py
-------
This module reads the emotional tone of what the user just said, so the
client can switch Luna's expression and the canned backend can pick a
fitting line.

The output is one MOOD string:
    - "happy"   : clearly positive message (score >= happy threshold)
    - "sad"     : clearly negative message (score <= sad threshold)
    - "neutral" : everything else (default, safe)

Scoring is a small AFINN-style word list: every known word adds its
weight, a negator right before it flips the sign.
"""

from typing import Dict, Optional

from luna_server.core.config import settings
from luna_server.core.types import MoodLabel

# -------------------------------------------------------------------------
# Word catalogs (English-only for now)
# Weights follow the AFINN convention: -5 (very negative) .. +5.
# -------------------------------------------------------------------------

POSITIVE_WORDS: Dict[str, int] = {
    "love": 3,
    "loved": 3,
    "lovely": 3,
    "amazing": 4,
    "awesome": 4,
    "wonderful": 4,
    "fantastic": 4,
    "great": 3,
    "happy": 3,
    "glad": 3,
    "excited": 3,
    "fun": 4,
    "good": 3,
    "nice": 3,
    "cool": 1,
    "thanks": 2,
    "thank": 2,
    "yay": 2,
    "haha": 3,
    "lol": 3,
    "beautiful": 3,
    "best": 3,
    "like": 2,
    "enjoy": 2,
    "enjoyed": 2,
    "smile": 2,
    "proud": 2,
    "relaxed": 2,
    "calm": 2,
    "better": 2,
}

NEGATIVE_WORDS: Dict[str, int] = {
    "sad": -2,
    "unhappy": -2,
    "lonely": -2,
    "alone": -2,
    "tired": -2,
    "bad": -3,
    "awful": -3,
    "terrible": -3,
    "horrible": -3,
    "hate": -3,
    "hated": -3,
    "angry": -3,
    "upset": -2,
    "cry": -1,
    "crying": -2,
    "depressed": -2,
    "anxious": -2,
    "worried": -3,
    "scared": -2,
    "afraid": -2,
    "hurt": -2,
    "sick": -2,
    "stressed": -2,
    "bored": -2,
    "miss": -2,
    "worst": -3,
    "sorry": -1,
    "broke": -1,
    "failed": -2,
    "pain": -2,
}

NEGATORS = ("not", "no", "never", "dont", "don't", "isnt", "isn't", "wasnt", "wasn't")


# -------------------------------------------------------------------------
# Helpers
# -------------------------------------------------------------------------

def normalize(text: str) -> list[str]:
    """
    Lowercase and split into bare word tokens.

    Punctuation glued to words ("great!!", "(sad)") is stripped, but
    apostrophes inside words are kept so "don't" stays one token.
    """
    if not isinstance(text, str):
        return []
    tokens = []
    for raw in text.lower().split():
        token = raw.strip(".,!?;:\"()[]{}*_~")
        if token:
            tokens.append(token)
    return tokens


def score_text(text: str) -> int:
    """Return the summed word score of `text` (0 for empty / unknown words)."""
    score = 0
    tokens = normalize(text)
    for i, token in enumerate(tokens):
        weight = POSITIVE_WORDS.get(token) or NEGATIVE_WORDS.get(token)
        if not weight:
            continue
        if i > 0 and tokens[i - 1] in NEGATORS:
            weight = -weight
        score += weight
    return score


# -------------------------------------------------------------------------
# Public API
# -------------------------------------------------------------------------

def classify_mood(
    text: str,
    happy_threshold: Optional[int] = None,
    sad_threshold: Optional[int] = None,
) -> MoodLabel:
    """
    Map a user message to "happy" / "sad" / "neutral".

    Thresholds default to settings.mood_happy_threshold (2) and
    settings.mood_sad_threshold (-2).
    """
    happy_at = settings.mood_happy_threshold if happy_threshold is None else happy_threshold
    sad_at = settings.mood_sad_threshold if sad_threshold is None else sad_threshold

    score = score_text(text)
    if score >= happy_at:
        return "happy"
    if score <= sad_at:
        return "sad"
    return "neutral"
