"""Entity extraction on top of a spaCy pipeline."""

from __future__ import annotations

import logging

import spacy
from spacy.language import Language

from config import settings

logger = logging.getLogger(__name__)

ENTITY_TYPES = ("person", "place", "organization", "date", "number", "url")

_LABEL_MAP = {
    "PERSON": "person",
    "GPE": "place",
    "LOC": "place",
    "FAC": "place",
    "ORG": "organization",
    "DATE": "date",
    "TIME": "date",
    "CARDINAL": "number",
    "QUANTITY": "number",
    "MONEY": "number",
    "PERCENT": "number",
    "ORDINAL": "number",
}

_CONFIDENCE = {
    "person": 0.8,
    "place": 0.8,
    "organization": 0.8,
    "date": 0.9,
    "number": 0.9,
    "url": 0.9,
}

# ISO dates: the tokenizer splits "2024-01-01" on hyphens between digits
_DATE_PATTERNS = [
    {"label": "DATE", "pattern": [{"SHAPE": "dddd"}, {"ORTH": "-"}, {"SHAPE": "dd"}, {"ORTH": "-"}, {"SHAPE": "dd"}]},
    {"label": "DATE", "pattern": [{"TEXT": {"REGEX": r"^\d{4}-\d{2}-\d{2}$"}}]},
    {"label": "DATE", "pattern": [{"TEXT": {"REGEX": r"^\d{1,2}/\d{1,2}/\d{2,4}$"}}]},
]


def load_pipeline(model_name: str | None = None) -> Language:
    nlp = spacy.load(model_name or settings.SPACY_MODEL)
    if "entity_ruler" not in nlp.pipe_names:
        ruler = nlp.add_pipe("entity_ruler", before="ner")
        ruler.add_patterns(_DATE_PATTERNS)
    return nlp


class SpacyEntityExtractor:
    """EntityExtractor yielding {type, value, confidence} dicts grouped by type.

    The pipeline loads on first use; ``extract`` returns ``[]`` on any failure.
    """

    def __init__(self, nlp: Language | None = None, model_name: str | None = None):
        self._nlp = nlp
        self._model_name = model_name

    @property
    def nlp(self) -> Language:
        if self._nlp is None:
            self._nlp = load_pipeline(self._model_name)
            logger.info("Loaded spaCy pipeline %s", self._nlp.meta.get("name", "?"))
        return self._nlp

    @property
    def ready(self) -> bool:
        return self._nlp is not None

    def extract(self, text: str) -> list[dict]:
        try:
            doc = self.nlp(text)
            found: dict[str, list[str]] = {kind: [] for kind in ENTITY_TYPES}
            for ent in doc.ents:
                kind = _LABEL_MAP.get(ent.label_)
                if kind:
                    found[kind].append(ent.text)
            found["url"].extend(token.text for token in doc if token.like_url)
            return [
                {"type": kind, "value": value, "confidence": _CONFIDENCE[kind]}
                for kind in ENTITY_TYPES
                for value in found[kind]
            ]
        except Exception:
            logger.exception("Entity extraction error")
            return []
