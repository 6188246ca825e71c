"""
Statistics used by experiment analysis.

Confidence intervals use the normal approximation ``mean ± z·σ/√n`` with the
sample standard deviation. Significance is derived from a two-sample
z-statistic through the Abramowitz-Stegun approximation of the standard
normal CDF (absolute error below 1.5e-7).
"""

import math
import statistics
from typing import Optional, Sequence, Tuple

from promptlab.errors import ValidationError

Z_SCORES = {
    0.90: 1.645,
    0.95: 1.96,
    0.99: 2.576,
}

# Abramowitz & Stegun formula 7.1.26 coefficients
_A1 = 0.254829592
_A2 = -0.284496736
_A3 = 1.421413741
_A4 = -1.453152027
_A5 = 1.061405429
_P = 0.3275911


def z_score(confidence_level: float) -> float:
    """Critical value for a supported two-sided confidence level."""
    for level, z in Z_SCORES.items():
        if math.isclose(level, confidence_level, abs_tol=1e-9):
            return z
    raise ValidationError(
        f"Unsupported confidence level {confidence_level}; "
        f"expected one of {sorted(Z_SCORES)}",
        field="confidence_level",
    )


def mean_and_std(values: Sequence[float]) -> Tuple[float, float]:
    """Mean and sample standard deviation (0 below two samples)."""
    if not values:
        return 0.0, 0.0
    mean = statistics.mean(values)
    std_dev = statistics.stdev(values) if len(values) >= 2 else 0.0
    return float(mean), float(std_dev)


def confidence_interval(
    mean: float, std_dev: float, n: int, confidence_level: float
) -> Tuple[float, float]:
    if n <= 0:
        return mean, mean
    margin = z_score(confidence_level) * std_dev / math.sqrt(n)
    return mean - margin, mean + margin


def intervals_overlap(a: Tuple[float, float], b: Tuple[float, float]) -> bool:
    return a[0] <= b[1] and b[0] <= a[1]


def normal_cdf(x: float) -> float:
    """Standard normal CDF (Abramowitz-Stegun polynomial)."""
    if math.isinf(x):
        return 1.0 if x > 0 else 0.0
    sign = 1.0 if x >= 0 else -1.0
    x = abs(x) / math.sqrt(2.0)
    t = 1.0 / (1.0 + _P * x)
    y = 1.0 - (((((_A5 * t + _A4) * t) + _A3) * t + _A2) * t + _A1) * t * math.exp(-x * x)
    return 0.5 * (1.0 + sign * y)


def two_sample_z(
    mean_a: float, std_a: float, n_a: int, mean_b: float, std_b: float, n_b: int
) -> float:
    """Absolute two-sample z-statistic. Infinite for a difference with no variance."""
    if n_a <= 0 or n_b <= 0:
        return 0.0
    diff = abs(mean_b - mean_a)
    standard_error = math.sqrt(std_a ** 2 / n_a + std_b ** 2 / n_b)
    if standard_error == 0:
        return math.inf if diff > 0 else 0.0
    return diff / standard_error


def significance_from_z(z: float) -> float:
    """Two-sided confidence that the difference is real: ``2Φ(|z|) - 1``."""
    value = 1.0 - 2.0 * (1.0 - normal_cdf(abs(z)))
    return min(1.0, max(0.0, value))


def improvement_pct(control_mean: float, variant_mean: float) -> Optional[float]:
    """Relative change of the variant over the control in percent.

    Undefined (None) when the control mean is zero.
    """
    if control_mean == 0:
        return None
    return (variant_mean - control_mean) / abs(control_mean) * 100.0
