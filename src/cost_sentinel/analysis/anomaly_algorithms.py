"""
Independent anomaly detection algorithms.

Each algorithm consumes a prepared series and returns candidate anomalies
keyed by series index. Algorithms are pure: they share no state and return
an empty list when the series is too short or numerically degenerate.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable, Literal

from cost_sentinel.analysis.errors import NumericDegeneracyError
from cost_sentinel.analysis.timeseries import (
    PreparedSeries,
    linear_fit,
    mean,
    pstdev,
    quantile_sorted,
    series_values,
)

logger = logging.getLogger(__name__)

Severity = Literal["low", "medium", "high", "critical"]

DEFAULT_THRESHOLD = 2.5
MAX_ZSCORE_WINDOW = 14
REGRESSION_MIN_POINTS = 10
SEASONAL_MIN_POINTS = 21
IQR_MULTIPLIER = 1.5


@dataclass(frozen=True)
class CandidateAnomaly:
    """An index flagged by a single algorithm."""

    series_index: int
    value: float
    algorithm: str
    confidence: float  # 0-1
    severity: Severity
    stats: dict[str, Any] = field(default_factory=dict)


def zscore_confidence(z_score: float, threshold: float) -> float:
    """Confidence for a Z-score, saturating at 5x the threshold."""
    return min(z_score / threshold, 5) / 5


def _ratio_severity(deviation: float, cutoff: float) -> Severity:
    """Severity bucket shared by the residual-style algorithms."""
    if deviation > cutoff * 2:
        return "critical"
    if deviation > cutoff * 1.5:
        return "high"
    return "medium"


def detect_zscore_anomalies(
    series: PreparedSeries, threshold: float = DEFAULT_THRESHOLD
) -> list[CandidateAnomaly]:
    """
    Rolling Z-score against the preceding window.

    Window size is min(14, n // 2). Windows with zero standard deviation
    are skipped.
    """
    values = series_values(series)
    window_size = min(MAX_ZSCORE_WINDOW, len(values) // 2)
    if window_size < 2:
        return []

    anomalies = []
    for i in range(window_size, len(values)):
        window = values[i - window_size : i]
        window_mean = mean(window)
        std_dev = pstdev(window)
        if std_dev == 0:
            continue

        z_score = abs(values[i] - window_mean) / std_dev
        if z_score <= threshold:
            continue

        if z_score > threshold * 2:
            severity: Severity = "critical"
        elif z_score > threshold * 1.5:
            severity = "high"
        else:
            severity = "medium"

        anomalies.append(
            CandidateAnomaly(
                series_index=i,
                value=values[i],
                algorithm="zscore",
                confidence=zscore_confidence(z_score, threshold),
                severity=severity,
                stats={"z_score": z_score, "mean": window_mean, "std_dev": std_dev},
            )
        )

    logger.debug("Z-score detected %d anomalies", len(anomalies))
    return anomalies


def iqr_bounds(values: list[float]) -> tuple[float, float, float, float]:
    """
    Quartiles and outlier bounds of the whole series.

    Returns:
        (q1, q3, lower_bound, upper_bound)
    """
    sorted_values = sorted(values)
    q1 = quantile_sorted(sorted_values, 0.25)
    q3 = quantile_sorted(sorted_values, 0.75)
    iqr = q3 - q1
    return q1, q3, q1 - IQR_MULTIPLIER * iqr, q3 + IQR_MULTIPLIER * iqr


def detect_iqr_anomalies(
    series: PreparedSeries, threshold: float = DEFAULT_THRESHOLD
) -> list[CandidateAnomaly]:
    """Flag values outside the Tukey fences of the entire series."""
    values = series_values(series)
    if not values:
        return []

    q1, q3, lower_bound, upper_bound = iqr_bounds(values)
    iqr = q3 - q1
    max_deviation = max(abs(upper_bound - q3), abs(q1 - lower_bound))
    if iqr == 0 or max_deviation == 0:
        logger.debug("IQR skipped: zero interquartile range")
        return []

    anomalies = []
    for index, value in enumerate(values):
        if lower_bound <= value <= upper_bound:
            continue

        deviation = value - upper_bound if value > upper_bound else lower_bound - value
        if deviation > max_deviation * 2:
            severity: Severity = "critical"
        elif deviation > max_deviation:
            severity = "high"
        else:
            severity = "medium"

        anomalies.append(
            CandidateAnomaly(
                series_index=index,
                value=value,
                algorithm="iqr",
                confidence=min(deviation / max_deviation, 3) / 3,
                severity=severity,
                stats={
                    "q1": q1,
                    "q3": q3,
                    "iqr": iqr,
                    "lower_bound": lower_bound,
                    "upper_bound": upper_bound,
                },
            )
        )

    logger.debug("IQR detected %d anomalies", len(anomalies))
    return anomalies


def detect_regression_anomalies(
    series: PreparedSeries, threshold: float = DEFAULT_THRESHOLD
) -> list[CandidateAnomaly]:
    """
    Flag points far from an OLS trend line.

    The cut-off is mean + 2 std devs of the absolute residuals.
    """
    values = series_values(series)
    if len(values) < REGRESSION_MIN_POINTS:
        return []

    indices = [float(p.index) for p in series]
    try:
        slope, intercept = linear_fit(indices, values)
    except NumericDegeneracyError as e:
        logger.debug("Regression skipped: %s", e)
        return []

    predicted = [slope * x + intercept for x in indices]
    residuals = [abs(v - p) for v, p in zip(values, predicted)]
    cutoff = mean(residuals) + 2 * pstdev(residuals)
    if cutoff <= 0:
        return []

    anomalies = [
        CandidateAnomaly(
            series_index=index,
            value=values[index],
            algorithm="regression",
            confidence=min(residual / cutoff, 4) / 4,
            severity=_ratio_severity(residual, cutoff),
            stats={"predicted": predicted[index], "residual": residual},
        )
        for index, residual in enumerate(residuals)
        if residual > cutoff
    ]

    logger.debug("Regression detected %d anomalies", len(anomalies))
    return anomalies


def _profile(series: PreparedSeries, key: Callable[[Any], int]) -> dict[int, float]:
    """Mean value per calendar bucket."""
    buckets: dict[int, list[float]] = defaultdict(list)
    for point in series:
        buckets[key(point)].append(point.value)
    return {bucket: mean(values) for bucket, values in buckets.items()}


def detect_seasonal_anomalies(
    series: PreparedSeries, threshold: float = DEFAULT_THRESHOLD
) -> list[CandidateAnomaly]:
    """
    Compare each point to its weekly and hour-of-day profile.

    Needs at least three weeks of data. The profile value closer to the
    observation is used as the expectation.
    """
    values = series_values(series)
    if len(values) < SEASONAL_MIN_POINTS:
        return []

    cutoff = pstdev(values) * 2
    if cutoff == 0:
        return []

    overall_mean = mean(values)
    weekly = _profile(series, lambda p: p.day_of_week)
    daily = _profile(series, lambda p: p.hour)

    anomalies = []
    for point in series:
        weekly_expected = weekly.get(point.day_of_week, overall_mean)
        daily_expected = daily.get(point.hour, overall_mean)

        if abs(point.value - weekly_expected) < abs(point.value - daily_expected):
            expected = weekly_expected
        else:
            expected = daily_expected

        deviation = abs(point.value - expected)
        if deviation <= cutoff:
            continue

        anomalies.append(
            CandidateAnomaly(
                series_index=point.index,
                value=point.value,
                algorithm="seasonal",
                confidence=min(deviation / cutoff, 3) / 3,
                severity=_ratio_severity(deviation, cutoff),
                stats={
                    "expected": expected,
                    "deviation": deviation,
                    "day_of_week": point.day_of_week,
                    "hour_of_day": point.hour,
                    "weekly_expected": weekly_expected,
                    "daily_expected": daily_expected,
                },
            )
        )

    logger.debug("Seasonal analysis detected %d anomalies", len(anomalies))
    return anomalies


AnomalyAlgorithm = Callable[[PreparedSeries, float], list[CandidateAnomaly]]

ALGORITHMS: dict[str, AnomalyAlgorithm] = {
    "zscore": detect_zscore_anomalies,
    "iqr": detect_iqr_anomalies,
    "regression": detect_regression_anomalies,
    "seasonal": detect_seasonal_anomalies,
}
