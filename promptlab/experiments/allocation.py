"""
Traffic allocation policies and bandit reallocation.

All policies map a point in ``[0, 100)`` onto the cumulative variant weights,
except round robin which chooses the variant furthest below its target
share.
"""

import hashlib
import random
from typing import Dict, Mapping, Optional, Sequence

from promptlab.experiments.schemas import Variant, VariantStatistics


def pick_weighted(variants: Sequence[Variant], point: float) -> Variant:
    """Walk cumulative weights and return the variant containing ``point``."""
    cumulative = 0.0
    for variant in variants:
        cumulative += variant.weight
        if point < cumulative:
            return variant
    # float slack at the top of the range
    return variants[-1]


def weighted_random(variants: Sequence[Variant], rng: random.Random) -> Variant:
    return pick_weighted(variants, rng.random() * 100.0)


def hash_bucket(subject_id: str, test_id: str) -> int:
    """Stable bucket in [0, 100) for a subject within a test."""
    digest = hashlib.md5(f"{subject_id}{test_id}".encode("utf-8")).hexdigest()
    return int(digest, 16) % 100


def deterministic_hash(
    variants: Sequence[Variant], subject_id: str, test_id: str
) -> Variant:
    return pick_weighted(variants, float(hash_bucket(subject_id, test_id)))


def round_robin(variants: Sequence[Variant], counts: Mapping[str, int]) -> Variant:
    """Variant with the largest deficit against its target share."""
    total = sum(counts.get(v.id, 0) for v in variants) + 1
    best: Optional[Variant] = None
    best_deficit = float("-inf")
    for variant in variants:
        deficit = variant.weight / 100.0 * total - counts.get(variant.id, 0)
        if deficit > best_deficit:
            best = variant
            best_deficit = deficit
    assert best is not None
    return best


def bandit_weights(
    variants: Sequence[Variant],
    statistics_by_variant: Mapping[str, VariantStatistics],
    higher_is_better: bool,
    min_observations: int = 10,
    min_weight: float = 5.0,
    max_weight: float = 95.0,
) -> Dict[str, float]:
    """
    Reallocate traffic towards better performing variants.

    Variants with more than ``min_observations`` samples score their metric
    mean (``1 / (mean + 1)`` when lower is better); others score a neutral
    0.5. Shares are clamped to ``[min_weight, max_weight]`` and rescaled so
    the weights sum to exactly 100.
    """
    scores: Dict[str, float] = {}
    for variant in variants:
        stats = statistics_by_variant.get(variant.id)
        if stats is None or stats.sample_size <= min_observations:
            scores[variant.id] = 0.5
        elif higher_is_better:
            scores[variant.id] = max(0.0, stats.mean)
        else:
            scores[variant.id] = 1.0 / (max(0.0, stats.mean) + 1.0)

    total = sum(scores.values())
    if total <= 0:
        raw = {v.id: 100.0 / len(variants) for v in variants}
    else:
        raw = {v.id: scores[v.id] / total * 100.0 for v in variants}

    clamped = {k: min(max_weight, max(min_weight, w)) for k, w in raw.items()}
    clamped_total = sum(clamped.values())

    weights: Dict[str, float] = {}
    for variant in variants[:-1]:
        weights[variant.id] = clamped[variant.id] / clamped_total * 100.0
    weights[variants[-1].id] = 100.0 - sum(weights.values())
    return weights
