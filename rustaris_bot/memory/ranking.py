from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Sequence, Tuple, TypeVar

from ..common import tokenize


DEFAULT_CONFIDENCE = 0.2

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class RankingPolicy:
    """Hybrid similarity knobs: semantic and lexical weights, the distance gate and the result cap."""

    semantic_weight: float = 0.7
    lexical_weight: float = 0.3
    distance_cutoff: float = 0.6
    limit: int = 6

    def passes_gate(self, distance: float, lexical: float) -> bool:
        return distance < self.distance_cutoff or lexical > 0.0

    def score(self, distance: float, lexical: float) -> float:
        return self.semantic_weight * (1.0 - distance) + self.lexical_weight * lexical


DEFAULT_POLICY = RankingPolicy()


def cosine_distance(left: Sequence[float], right: Sequence[float]) -> float:
    if len(left) != len(right):
        raise ValueError(f"vector size mismatch: {len(left)} != {len(right)}")
    dot = 0.0
    left_norm = 0.0
    right_norm = 0.0
    for a, b in zip(left, right):
        dot += a * b
        left_norm += a * a
        right_norm += b * b
    if left_norm <= 0.0 or right_norm <= 0.0:
        return 1.0
    return 1.0 - dot / (math.sqrt(left_norm) * math.sqrt(right_norm))


def lexical_rank(content: str, query: str) -> float:
    """Share of query terms found in the content, 0.0 when the query has no terms."""
    query_terms = tokenize(query)
    if not query_terms:
        return 0.0
    hits = query_terms & tokenize(content)
    return len(hits) / len(query_terms)


def rank(candidates: Iterable[Tuple[T, float, float]], policy: RankingPolicy = DEFAULT_POLICY) -> list[T]:
    """Gate then order (item, distance, lexical) triples by hybrid score, best first."""
    scored: list[tuple[float, int, T]] = []
    for index, (item, distance, lexical) in enumerate(candidates):
        if not policy.passes_gate(distance, lexical):
            continue
        scored.append((policy.score(distance, lexical), index, item))
    scored.sort(key=lambda entry: (-entry[0], entry[1]))
    return [item for _, _, item in scored[: policy.limit]]


def validate_confidence(value: float) -> float:
    confidence = float(value)
    if math.isnan(confidence) or confidence < 0.0 or confidence > 1.0:
        raise ValueError(f"confidence must be within [0, 1], got {value!r}")
    return confidence
