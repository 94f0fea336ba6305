"""
Independent forecasting models.

Each model fits the prepared series and projects one prediction per day over
the horizon, together with a self-reported reliability bucket. Failures are
raised as ModelFitError so the ensemble can drop the model and carry on.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Callable, Literal

import numpy as np

from cost_sentinel.analysis.errors import ModelFitError, NumericDegeneracyError
from cost_sentinel.analysis.timeseries import (
    PreparedSeries,
    linear_fit,
    linear_slope,
    mean,
    r_squared,
    series_values,
)

logger = logging.getLogger(__name__)

Reliability = Literal["low", "medium", "high"]

# Holt-Winters smoothing constants
ALPHA = 0.3  # Level
BETA = 0.1  # Trend
GAMMA = 0.1  # Seasonal
SEASONAL_PERIOD = 7

SEASONAL_CONFIDENCE = 0.75
POLYNOMIAL_CONFIDENCE_CAP = 0.95


@dataclass(frozen=True)
class ForecastPoint:
    """A predicted value for one future day."""

    date: str  # YYYY-MM-DD
    predicted_value: float
    confidence: float
    model_contributions: dict[str, dict[str, float]] = field(default_factory=dict)


@dataclass(frozen=True)
class ModelResult:
    """Output of a single forecasting model."""

    model: str
    predictions: list[ForecastPoint]
    reliability: Reliability
    fit_quality: float | None = None  # R² where the model has one
    details: dict[str, Any] = field(default_factory=dict)


def future_dates(series: PreparedSeries, horizon: int) -> list[date]:
    """Consecutive calendar days following the last observation."""
    last = series[-1].timestamp.date()
    return [last + timedelta(days=i + 1) for i in range(horizon)]


def _safe_ratio(numerator: float, denominator: float, default: float = 1.0) -> float:
    return numerator / denominator if denominator != 0 else default


def linear_forecast(series: PreparedSeries, horizon: int) -> ModelResult:
    """Ordinary least squares trend projected past the end of the series."""
    values = series_values(series)
    indices = [float(p.index) for p in series]

    try:
        slope, intercept = linear_fit(indices, values)
    except NumericDegeneracyError as e:
        raise ModelFitError("linear", str(e)) from e

    r2 = r_squared(values, [slope * x + intercept for x in indices])
    start = len(series)
    predictions = [
        ForecastPoint(
            date=day.isoformat(),
            predicted_value=max(0.0, slope * (start + i) + intercept),
            confidence=r2,
        )
        for i, day in enumerate(future_dates(series, horizon))
    ]

    logger.debug("Linear forecast: R2=%.3f slope=%.4f", r2, slope)

    if r2 > 0.7:
        reliability: Reliability = "high"
    elif r2 > 0.4:
        reliability = "medium"
    else:
        reliability = "low"

    return ModelResult(
        model="linear",
        predictions=predictions,
        reliability=reliability,
        fit_quality=r2,
        details={
            "slope": slope,
            "intercept": intercept,
            "trend": "increasing" if slope > 0 else "decreasing",
        },
    )


def polynomial_forecast(series: PreparedSeries, horizon: int) -> ModelResult:
    """Least-squares polynomial of degree min(3, n // 10)."""
    values = series_values(series)
    degree = max(1, min(3, len(values) // 10))
    x = np.arange(len(values), dtype=float)

    try:
        coefficients = np.polyfit(x, np.asarray(values, dtype=float), degree)
    except (np.linalg.LinAlgError, ValueError) as e:
        raise ModelFitError("polynomial", str(e)) from e

    if not np.all(np.isfinite(coefficients)):
        raise ModelFitError("polynomial", "non-finite coefficients")

    fitted = np.polyval(coefficients, x).tolist()
    r2 = r_squared(values, fitted)

    future_x = np.arange(len(values), len(values) + horizon, dtype=float)
    projected = np.polyval(coefficients, future_x).tolist()
    confidence = min(r2, POLYNOMIAL_CONFIDENCE_CAP)

    predictions = [
        ForecastPoint(
            date=day.isoformat(),
            predicted_value=max(0.0, value),
            confidence=confidence,
        )
        for day, value in zip(future_dates(series, horizon), projected)
    ]

    logger.debug("Polynomial forecast (degree %d): R2=%.3f", degree, r2)

    if r2 > 0.8:
        reliability: Reliability = "high"
    elif r2 > 0.6:
        reliability = "medium"
    else:
        reliability = "low"

    return ModelResult(
        model="polynomial",
        predictions=predictions,
        reliability=reliability,
        fit_quality=r2,
        details={"degree": degree, "coefficients": coefficients.tolist()},
    )


def exponential_smoothing_forecast(series: PreparedSeries, horizon: int) -> ModelResult:
    """
    Triple exponential smoothing (Holt-Winters) with a weekly multiplicative season.

    Seasonal indices start from the first period relative to its mean and are
    updated at every step. Confidence decays from 0.8 to 0.5 over the horizon.
    """
    values = series_values(series)
    if len(values) < SEASONAL_PERIOD:
        raise ModelFitError(
            "exponential", f"needs at least {SEASONAL_PERIOD} points, got {len(values)}"
        )

    level = mean(values[:SEASONAL_PERIOD])
    trend = 0.0
    seasonal = [_safe_ratio(values[i], level) for i in range(SEASONAL_PERIOD)]

    smoothed = [level * seasonal[0]]
    for i in range(1, len(values)):
        s = i % SEASONAL_PERIOD
        new_level = ALPHA * _safe_ratio(values[i], seasonal[s], values[i]) + (1 - ALPHA) * (
            level + trend
        )
        new_trend = BETA * (new_level - level) + (1 - BETA) * trend
        seasonal[s] = GAMMA * _safe_ratio(values[i], new_level) + (1 - GAMMA) * seasonal[s]
        smoothed.append((level + trend) * seasonal[s])

        level = new_level
        trend = new_trend

    predictions = []
    for i, day in enumerate(future_dates(series, horizon)):
        s = (len(values) + i) % SEASONAL_PERIOD
        predictions.append(
            ForecastPoint(
                date=day.isoformat(),
                predicted_value=max(0.0, (level + (i + 1) * trend) * seasonal[s]),
                confidence=0.8 - (i / horizon) * 0.3,
            )
        )

    logger.debug("Exponential smoothing forecast: alpha=%s beta=%s gamma=%s", ALPHA, BETA, GAMMA)

    return ModelResult(
        model="exponential",
        predictions=predictions,
        reliability="medium",
        fit_quality=r_squared(values, smoothed),
        details={
            "level": level,
            "trend": trend,
            "seasonal_components": list(seasonal),
            "seasonal_period": SEASONAL_PERIOD,
        },
    )


def weekly_pattern(series: PreparedSeries) -> dict[int, float]:
    """Multiplicative index per day of week (Monday = 0); 1.0 where unknown."""
    overall = mean(series_values(series))
    buckets: dict[int, list[float]] = defaultdict(list)
    for point in series:
        buckets[point.day_of_week].append(point.value)

    return {
        day: _safe_ratio(mean(buckets[day]), overall) if buckets.get(day) else 1.0
        for day in range(7)
    }


def monthly_pattern(series: PreparedSeries) -> dict[int, float]:
    """Multiplicative index per week of month (days 1-7, 8-14, 15-21, 22-28)."""
    overall = mean(series_values(series))
    buckets: dict[int, list[float]] = defaultdict(list)
    for point in series:
        buckets[(point.day_of_month - 1) // 7].append(point.value)

    return {
        week: _safe_ratio(mean(buckets[week]), overall) if buckets.get(week) else 1.0
        for week in range(4)
    }


def seasonal_forecast(series: PreparedSeries, horizon: int) -> ModelResult:
    """Weekly and monthly seasonal indices around the mean, plus a linear trend."""
    values = series_values(series)
    weekly = weekly_pattern(series)
    monthly = monthly_pattern(series)
    trend = linear_slope(values)
    base_value = mean(values)

    predictions = []
    for i, day in enumerate(future_dates(series, horizon)):
        weekly_multiplier = weekly.get(day.weekday(), 1.0)
        monthly_multiplier = monthly.get((day.day - 1) // 7, 1.0)
        seasonal_value = base_value * (weekly_multiplier * 0.7 + monthly_multiplier * 0.3)

        predictions.append(
            ForecastPoint(
                date=day.isoformat(),
                predicted_value=max(0.0, seasonal_value + trend * (i + 1)),
                confidence=SEASONAL_CONFIDENCE,
            )
        )

    logger.debug("Seasonal forecast: trend=%.4f", trend)

    return ModelResult(
        model="seasonal",
        predictions=predictions,
        reliability="medium",
        details={
            "weekly_pattern": weekly,
            "monthly_pattern": monthly,
            "trend": trend,
        },
    )


ForecastModel = Callable[[PreparedSeries, int], ModelResult]

MODELS: dict[str, ForecastModel] = {
    "linear": linear_forecast,
    "polynomial": polynomial_forecast,
    "exponential": exponential_smoothing_forecast,
    "seasonal": seasonal_forecast,
}
