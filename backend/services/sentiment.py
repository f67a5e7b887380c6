"""Lexicon sentiment: summed VADER word valences mapped to three labels."""

from __future__ import annotations

import logging
import re

import nltk

logger = logging.getLogger(__name__)

POSITIVE_THRESHOLD = 2
NEGATIVE_THRESHOLD = -2

_WORD_RE = re.compile(r"[a-z][a-z']*")


def classify_score(score: float) -> str:
    if score > POSITIVE_THRESHOLD:
        return "positive"
    if score < NEGATIVE_THRESHOLD:
        return "negative"
    return "neutral"


def load_vader_lexicon() -> dict[str, float]:
    try:
        nltk.data.find("sentiment/vader_lexicon.zip")
    except LookupError:
        nltk.download("vader_lexicon", quiet=True)
    from nltk.sentiment.vader import SentimentIntensityAnalyzer

    return dict(SentimentIntensityAnalyzer().lexicon)


class LexiconSentimentAnalyzer:
    def __init__(self, lexicon: dict[str, float] | None = None):
        self._lexicon = lexicon

    @property
    def lexicon(self) -> dict[str, float]:
        if self._lexicon is None:
            self._lexicon = load_vader_lexicon()
        return self._lexicon

    @property
    def ready(self) -> bool:
        return self._lexicon is not None

    def score(self, text: str) -> float:
        lexicon = self.lexicon
        return sum(lexicon.get(word, 0.0) for word in _WORD_RE.findall(text.lower()))

    def analyze(self, text: str) -> str:
        try:
            return classify_score(self.score(text))
        except Exception:
            logger.exception("Sentiment analysis error")
            return "neutral"
