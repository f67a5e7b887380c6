"""Intent detection: naive Bayes over a fixed phrase set, with optional LLM escalation."""

from __future__ import annotations

import logging
import threading

from langchain_core.messages import HumanMessage, SystemMessage
from sklearn.feature_extraction.text import CountVectorizer
from sklearn.naive_bayes import MultinomialNB

from services.llm import create_chat_model, message_text

logger = logging.getLogger(__name__)

ESCALATION_THRESHOLD = 0.6
CONFIDENCE_FLOOR = 0.3
ESCALATED_CONFIDENCE = 0.8

ESCALATION_LABELS = (
    "greeting",
    "farewell",
    "help",
    "question",
    "complaint",
    "compliment",
    "information_request",
    "task_request",
    "other",
)

_ESCALATION_PROMPT = (
    "You are an intent classifier. Analyze the user message and return only the intent "
    "category. Choose from: " + ", ".join(ESCALATION_LABELS) + "."
)

TRAINING_PHRASES: dict[str, tuple[str, ...]] = {
    "greeting": (
        "hello", "hi", "hey", "good morning", "good afternoon", "good evening",
        "sup", "yo", "morning", "afternoon",
    ),
    "farewell": (
        "goodbye", "bye", "see you", "talk to you later", "later", "take care",
        "have a good day", "good night",
    ),
    "help": (
        "help", "support", "assist", "what can you do", "how can you help",
        "what are your capabilities", "guide me", "show me",
    ),
    "question": (
        "what is", "how to", "can you explain", "tell me about", "what does",
        "how does", "why does", "when does", "where is", "who is",
    ),
    "information_request": (
        "i need information about", "can you tell me about", "i want to know about",
        "give me details about", "find information on", "search for", "look up",
    ),
    "task_request": (
        "can you help me with", "i need help with", "assist me with", "guide me through",
        "walk me through", "help me do", "i want to",
    ),
    "learning": (
        "i want to learn", "teach me about", "explain to me", "i don't understand",
        "break this down", "simplify this", "give me an example",
    ),
    "creative": (
        "i want to create", "help me design", "i need ideas for", "brainstorm with me",
        "help me write", "i'm working on a project", "give me inspiration",
    ),
    "complaint": (
        "problem", "issue", "not working", "broken", "doesn't work",
        "having trouble with", "frustrated with", "annoyed by",
    ),
    "compliment": (
        "thank you", "thanks", "great", "awesome", "amazing", "excellent",
        "you're the best", "love it",
    ),
}

# Labels that describe a failure, never fed back into training
_UNTRAINABLE = {"unknown", "fallback"}


def _parse_label(raw: str) -> str:
    """Normalise a free-form model reply to a single lowercase label."""
    text = raw.strip().strip(".\"'`").lower()
    first = text.split()[0] if text.split() else ""
    return first.strip(".,:;\"'`")


class NaiveBayesIntentDetector:
    """IntentDetector backed by scikit-learn's MultinomialNB.

    ``detect`` never raises: an internal failure yields ``unknown`` at 0.1.
    """

    def __init__(self, phrases: dict[str, tuple[str, ...]] | None = None, model_factory=create_chat_model):
        self._examples: list[tuple[str, str]] = [
            (text, label) for label, texts in (phrases or TRAINING_PHRASES).items() for text in texts
        ]
        self._model_factory = model_factory
        self._lock = threading.Lock()
        self._vectorizer: CountVectorizer | None = None
        self._classifier: MultinomialNB | None = None
        self.fit()

    @property
    def ready(self) -> bool:
        return self._classifier is not None

    @property
    def example_count(self) -> int:
        return len(self._examples)

    def fit(self) -> None:
        texts = [text for text, _ in self._examples]
        labels = [label for _, label in self._examples]
        vectorizer = CountVectorizer(lowercase=True)
        classifier = MultinomialNB(alpha=0.01)
        classifier.fit(vectorizer.fit_transform(texts), labels)
        with self._lock:
            self._vectorizer, self._classifier = vectorizer, classifier

    def add_examples(self, examples: list[tuple[str, str]]) -> int:
        """Append (text, label) pairs for the next ``fit``; returns how many were kept."""
        kept = [(text, label) for text, label in examples if text and label and label not in _UNTRAINABLE]
        self._examples.extend(kept)
        return len(kept)

    def classify(self, text: str) -> tuple[str, float]:
        """Return the top label and its posterior probability."""
        with self._lock:
            vectorizer, classifier = self._vectorizer, self._classifier
        features = vectorizer.transform([text])
        if features.nnz == 0:
            return "unknown", 0.0
        probabilities = classifier.predict_proba(features)[0]
        best = probabilities.argmax()
        return str(classifier.classes_[best]), float(probabilities[best])

    async def _escalate(self, text: str) -> str | None:
        llm = self._model_factory(temperature=0.1, max_tokens=10)
        if llm is None:
            return None
        try:
            response = await llm.ainvoke([SystemMessage(content=_ESCALATION_PROMPT), HumanMessage(content=text)])
        except Exception:
            logger.warning("LLM intent detection failed, using classifier result", exc_info=True)
            return None
        label = _parse_label(message_text(response))
        if label not in ESCALATION_LABELS:
            logger.warning("LLM intent detection returned unexpected label %r", label)
            return None
        return label

    async def detect(self, text: str) -> dict:
        try:
            name, confidence = self.classify(text)
            if confidence < ESCALATION_THRESHOLD:
                escalated = await self._escalate(text)
                if escalated:
                    return {"name": escalated, "confidence": ESCALATED_CONFIDENCE, "source": "openai"}
            return {"name": name, "confidence": max(confidence, CONFIDENCE_FLOOR), "source": "classifier"}
        except Exception:
            logger.exception("Intent detection error")
            return {"name": "unknown", "confidence": 0.1, "source": "fallback"}
