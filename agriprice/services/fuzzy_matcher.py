"""
Market-name fuzzy matching.

similarity(a, b) = 1 - levenshtein(a, b) / max(len(a), len(b)), case-insensitive.
The best candidate (strictly highest score, first seen wins ties) is accepted
only at or above the threshold; callers never get a low-confidence substitute.
"""
from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Sequence, Union

from rapidfuzz.distance import Levenshtein

from ..models import MarketCandidate

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 0.70
LOCALITY_THRESHOLD = 0.75
LOCALITY_BONUS = 0.10
SUGGESTION_FLOOR = 0.5

Candidate = Union[str, MarketCandidate]


def similarity(a: str, b: str) -> float:
    left = a.strip().lower()
    right = b.strip().lower()
    longest = max(len(left), len(right))
    if longest == 0:
        return 1.0
    return 1.0 - Levenshtein.distance(left, right) / longest


def _as_candidate(candidate: Candidate) -> MarketCandidate:
    if isinstance(candidate, MarketCandidate):
        return candidate
    return MarketCandidate(name=candidate)


def _agrees(claimed: Optional[str], actual: Optional[str]) -> bool:
    if not claimed or not actual:
        return False
    claimed_l, actual_l = claimed.strip().lower(), actual.strip().lower()
    return claimed_l in actual_l or actual_l in claimed_l


class FuzzyMatcher:
    """Stateless scorer for requested market names against a candidate set."""

    def __init__(
        self,
        threshold: float = DEFAULT_THRESHOLD,
        locality_threshold: float = LOCALITY_THRESHOLD,
        locality_bonus: float = LOCALITY_BONUS,
    ):
        self.threshold = threshold
        self.locality_threshold = locality_threshold
        self.locality_bonus = locality_bonus

    def score(self, requested: str, candidate: str) -> float:
        return similarity(requested, candidate)

    def match(
        self,
        requested: str,
        candidates: Iterable[Candidate],
        threshold: Optional[float] = None,
    ) -> Optional[MarketCandidate]:
        """Best candidate by name similarity, or None below the threshold."""
        limit = self.threshold if threshold is None else threshold
        best: Optional[MarketCandidate] = None
        best_score = -1.0
        for raw in candidates:
            candidate = _as_candidate(raw)
            score = self.score(requested, candidate.name)
            if score > best_score:
                best, best_score = candidate, score

        if best is None or best_score < limit:
            if best is not None:
                logger.debug(
                    f"No confident match for '{requested}': best '{best.name}' scored {best_score:.2f}"
                )
            return None
        return best.model_copy(update={"similarity_score": best_score})

    def match_with_locality(
        self,
        requested: str,
        candidates: Sequence[MarketCandidate],
        district: Optional[str] = None,
        state: Optional[str] = None,
    ) -> Optional[MarketCandidate]:
        """Match that also respects a claimed district/state.

        A candidate is eligible only when its name alone clears the base
        threshold; agreeing district and state then add a bonus each, and the
        winner must reach the stricter locality threshold.
        """
        best: Optional[MarketCandidate] = None
        best_name_score = 0.0
        best_total = -1.0
        for candidate in candidates:
            name_score = self.score(requested, candidate.name)
            if name_score < self.threshold:
                continue
            total = name_score
            if _agrees(district, candidate.district):
                total += self.locality_bonus
            if _agrees(state, candidate.state):
                total += self.locality_bonus
            if total > best_total:
                best, best_name_score, best_total = candidate, name_score, total

        if best is None or best_total < self.locality_threshold:
            return None
        logger.debug(
            f"Locality match '{requested}' -> '{best.name}' "
            f"(name {best_name_score:.2f}, total {best_total:.2f})"
        )
        return best.model_copy(update={"similarity_score": best_name_score})

    def suggest(
        self,
        requested: str,
        candidates: Iterable[Candidate],
        limit: int = 5,
        floor: float = SUGGESTION_FLOOR,
    ) -> List[MarketCandidate]:
        """Up to `limit` distinct candidates scoring at least `floor`, best first."""
        scored: List[MarketCandidate] = []
        seen = set()
        for raw in candidates:
            candidate = _as_candidate(raw)
            name_key = candidate.name.strip().lower()
            if name_key in seen:
                continue
            seen.add(name_key)
            score = self.score(requested, candidate.name)
            if score >= floor:
                scored.append(candidate.model_copy(update={"similarity_score": score}))
        # sorted() is stable, so equal scores keep first-seen order
        return sorted(scored, key=lambda c: c.similarity_score, reverse=True)[:limit]
