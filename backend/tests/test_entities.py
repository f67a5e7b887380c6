"""Tests for services/entities.py.

Uses a blank English pipeline with rule patterns so no trained model is needed.
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
import spacy

from services.entities import _DATE_PATTERNS, SpacyEntityExtractor


@pytest.fixture(scope="module")
def nlp():
    pipeline = spacy.blank("en")
    ruler = pipeline.add_pipe("entity_ruler")
    ruler.add_patterns(
        [
            {"label": "PERSON", "pattern": "John"},
            {"label": "GPE", "pattern": "Paris"},
            {"label": "ORG", "pattern": "Acme"},
            {"label": "CARDINAL", "pattern": "three"},
            *_DATE_PATTERNS,
        ]
    )
    return pipeline


def test_person_place_and_date(nlp):
    entities = SpacyEntityExtractor(nlp=nlp).extract("Meet John in Paris on 2024-01-01")
    assert entities == [
        {"type": "person", "value": "John", "confidence": 0.8},
        {"type": "place", "value": "Paris", "confidence": 0.8},
        {"type": "date", "value": "2024-01-01", "confidence": 0.9},
    ]


def test_grouped_by_type_order(nlp):
    entities = SpacyEntityExtractor(nlp=nlp).extract("three people from Acme met John")
    assert [e["type"] for e in entities] == ["person", "organization", "number"]


def test_urls(nlp):
    entities = SpacyEntityExtractor(nlp=nlp).extract("see https://example.com for details")
    assert {"type": "url", "value": "https://example.com", "confidence": 0.9} in entities


def test_slash_date(nlp):
    entities = SpacyEntityExtractor(nlp=nlp).extract("due 12/31/2024")
    assert entities == [{"type": "date", "value": "12/31/2024", "confidence": 0.9}]


def test_no_entities(nlp):
    assert SpacyEntityExtractor(nlp=nlp).extract("nothing to see here") == []


def test_failure_yields_empty_list():
    broken = MagicMock(side_effect=RuntimeError("model crashed"))
    assert SpacyEntityExtractor(nlp=broken).extract("Meet John") == []


def test_pipeline_loads_lazily(nlp, monkeypatch):
    loader = MagicMock(return_value=nlp)
    monkeypatch.setattr("services.entities.load_pipeline", loader)
    extractor = SpacyEntityExtractor(model_name="en_core_web_sm")
    assert extractor.ready is False
    extractor.extract("John")
    extractor.extract("Paris")
    loader.assert_called_once_with("en_core_web_sm")
    assert extractor.ready is True
