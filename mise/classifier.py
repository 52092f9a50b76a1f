"""
Keyword-based query classification.
"""
from typing import Dict, Optional, Tuple

from mise.models import Topic

# Checked in order; the first topic with a matching keyword wins.
TOPIC_KEYWORDS: Dict[Topic, Tuple[str, ...]] = {
    Topic.CODING: (
        "javascript",
        "typescript",
        "code",
        "function",
        "debug",
        "api",
        "react",
        "node",
    ),
    Topic.MLB: ("baseball", "mlb", "stats", "game", "player", "pitch", "batting"),
    Topic.COOKING: ("recipe", "cook", "ingredient", "kitchen", "food", "chef"),
    Topic.FITNESS: ("workout", "exercise", "kettlebell", "fitness", "training", "gym"),
}

DEFAULT_TOPIC = Topic.GENERAL


def classify(query: str, fallback: Optional[Topic] = None) -> Topic:
    """Return the topic for a query.

    Falls back to the session's current topic, then to ``general``, when no
    keyword matches.
    """
    lowered = query.lower()
    for topic, keywords in TOPIC_KEYWORDS.items():
        if any(keyword in lowered for keyword in keywords):
            return topic
    return fallback or DEFAULT_TOPIC
