"""Confidence scoring and the human handoff decision.

Confidence is a linear rescale of the mean surviving similarity score
plus a small corroboration bonus per matching chunk. The handoff
decision is a single comparison against the agent's threshold and keeps
no state between turns.
"""

from __future__ import annotations

from enum import Enum

NO_CONTEXT_CONFIDENCE = 0.3
DEFAULT_CONFIDENCE_THRESHOLD = 0.7
LEARNING_CONFIDENCE_BAR = 0.7   # fixed, independent of the agent threshold
FALLBACK_APPEND_BELOW = 0.5

_SCORE_FLOOR = 0.5
_BONUS_PER_MATCH = 0.02
_MAX_BONUS = 0.1


class TurnOutcome(str, Enum):
    ANSWERED = "ANSWERED"
    HANDED_OFF = "HANDED_OFF"


def _clamp(value: float, lo: float = 0.0, hi: float = 1.0) -> float:
    return max(lo, min(hi, value))


def compute_confidence(scores: list[float], has_relevant_context: bool) -> float:
    """Map surviving similarity scores to a confidence in [0, 1].

    Without relevant context the confidence is fixed at 0.3.
    """
    if not has_relevant_context or not scores:
        return NO_CONTEXT_CONFIDENCE

    mean = sum(scores) / len(scores)
    base = _clamp((mean - _SCORE_FLOOR) * 2)
    bonus = min(_MAX_BONUS, _BONUS_PER_MATCH * len(scores))
    return _clamp(base + bonus)


def should_handoff(confidence: float, threshold: float = DEFAULT_CONFIDENCE_THRESHOLD) -> bool:
    return confidence < threshold


def decide_outcome(confidence: float, threshold: float = DEFAULT_CONFIDENCE_THRESHOLD) -> TurnOutcome:
    if should_handoff(confidence, threshold):
        return TurnOutcome.HANDED_OFF
    return TurnOutcome.ANSWERED


def qualifies_for_learning(confidence: float) -> bool:
    return confidence >= LEARNING_CONFIDENCE_BAR
