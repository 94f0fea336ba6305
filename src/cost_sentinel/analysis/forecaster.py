"""Ensemble cost forecasting with confidence intervals."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Iterable, Mapping

from cost_sentinel.analysis.cache import ResultCache, fingerprint
from cost_sentinel.analysis.errors import (
    CostAnalysisError,
    InsufficientDataError,
    ModelFitError,
    NoViableModelError,
)
from cost_sentinel.analysis.forecast_models import MODELS, ForecastPoint, ModelResult
from cost_sentinel.analysis.insights import ForecastInsights, generate_forecast_insights
from cost_sentinel.analysis.timeseries import (
    ObservedPoint,
    PreparedSeries,
    coefficient_of_variation,
    mean,
    prepare_series,
    pstdev,
    pvariance,
    series_values,
)
from cost_sentinel.config.schema import ForecastConfig

logger = logging.getLogger(__name__)

# (base accuracy, volatility penalty) per model
MODEL_ACCURACY_PARAMS: dict[str, tuple[float, float]] = {
    "linear": (0.75, 0.2),
    "polynomial": (0.80, 0.3),
    "exponential": (0.78, 0.25),
    "seasonal": (0.73, 0.2),
}
DEFAULT_ACCURACY = 0.7
MIN_ACCURACY = 0.4
MAX_ACCURACY = 0.95
FULL_HISTORY_DAYS = 30

RELIABILITY_MULTIPLIER = {"high": 1.2, "medium": 1.0, "low": 0.8}

Z_SCORES = {0.95: 1.96, 0.90: 1.645}
DEFAULT_Z_SCORE = 1.96


@dataclass(frozen=True)
class ConfidenceInterval:
    """Prediction band for one forecast day."""

    date: str
    predicted: float
    lower_bound: float
    upper_bound: float
    confidence: float


@dataclass
class EnsembleForecast:
    """Weighted combination of model forecasts."""

    predictions: list[ForecastPoint]
    total: float
    average_daily: float
    trend: str
    volatility: float
    seasonality: float
    accuracy: float
    model_weights: dict[str, float]
    used_models: list[str]


@dataclass
class ForecastReport:
    """Complete forecast for one series."""

    service_name: str
    horizon: int
    confidence_level: float
    generated_at: str
    ensemble: EnsembleForecast
    confidence_intervals: list[ConfidenceInterval]
    model_accuracy: dict[str, float]
    model_results: dict[str, ModelResult]
    insights: ForecastInsights

    @property
    def predictions(self) -> list[ForecastPoint]:
        return self.ensemble.predictions

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the forecast report contract."""
        return {
            "service_name": self.service_name,
            "horizon": self.horizon,
            "confidence_level": self.confidence_level,
            "generated_at": self.generated_at,
            "predictions": [
                {"date": p.date, "value": p.predicted_value, "confidence": p.confidence}
                for p in self.ensemble.predictions
            ],
            "confidence_intervals": [
                {
                    "date": ci.date,
                    "predicted": ci.predicted,
                    "lower_bound": ci.lower_bound,
                    "upper_bound": ci.upper_bound,
                    "confidence": ci.confidence,
                }
                for ci in self.confidence_intervals
            ],
            "model_accuracy": dict(self.model_accuracy),
            "ensemble_accuracy": self.ensemble.accuracy,
            "model_weights": dict(self.ensemble.model_weights),
            "insights": self.insights.to_dict(),
            "summary": {
                "predicted_total": self.ensemble.total,
                "average_daily_cost": self.ensemble.average_daily,
                "trend_direction": self.ensemble.trend,
                "volatility": self.ensemble.volatility,
                "seasonality_strength": self.ensemble.seasonality,
            },
        }


@dataclass(frozen=True)
class ForecastFailure:
    """Typed failure returned instead of a forecast."""

    error_type: str
    message: str
    required_data_points: int | None = None
    actual_data_points: int | None = None
    attempted_models: list[str] = field(default_factory=list)

    @classmethod
    def from_error(cls, error: CostAnalysisError) -> "ForecastFailure":
        return cls(
            error_type=type(error).__name__,
            message=str(error),
            required_data_points=getattr(error, "required", None),
            actual_data_points=getattr(error, "actual", None),
            attempted_models=list(getattr(error, "attempted", [])),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": False,
            "error_type": self.error_type,
            "error": self.message,
            "required_data_points": self.required_data_points,
            "actual_data_points": self.actual_data_points,
            "attempted_models": list(self.attempted_models),
        }


@dataclass(frozen=True)
class ForecastOutcome:
    """Either a forecast report or a typed failure."""

    report: ForecastReport | None = None
    failure: ForecastFailure | None = None

    @property
    def success(self) -> bool:
        return self.report is not None

    def to_dict(self) -> dict[str, Any]:
        if self.report is not None:
            return {"success": True, "forecast": self.report.to_dict()}
        return self.failure.to_dict()


def calculate_model_accuracy(values: list[float], model: str) -> float:
    """
    Estimate a model's accuracy from series volatility and length.

    Higher volatility lowers the estimate by a per-model penalty; series
    shorter than 30 points are scaled down proportionally.
    """
    base, penalty = MODEL_ACCURACY_PARAMS.get(model, (DEFAULT_ACCURACY, 0.0))
    volatility = coefficient_of_variation(values)
    length_factor = min(1.0, len(values) / FULL_HISTORY_DAYS)
    accuracy = (base - volatility * penalty) * length_factor
    return max(MIN_ACCURACY, min(MAX_ACCURACY, accuracy))


def calculate_seasonality_strength(values: list[float], period: int = 7) -> float:
    """
    Share of variance explained by within-phase variation over a weekly cycle.

    Returns 0 for fewer than two full periods or a constant series.
    """
    if len(values) < period * 2:
        return 0.0

    total_variance = pvariance(values)
    if total_variance == 0:
        return 0.0

    seasonal_variance = 0.0
    for phase in range(period):
        phase_values = values[phase::period]
        if len(phase_values) > 1:
            seasonal_variance += pvariance(phase_values)

    return min(1.0, seasonal_variance / total_variance)


def combine_forecasts(
    results: Mapping[str, ModelResult],
    accuracy: Mapping[str, float],
    horizon: int,
) -> EnsembleForecast:
    """
    Combine model forecasts weighted by accuracy and reliability.

    Only models with predictions take part; their weights are normalized to 1.

    Raises:
        NoViableModelError: If no model produced predictions.
    """
    models = [name for name, result in results.items() if result.predictions]
    if not models:
        raise NoViableModelError(list(results))

    raw_weights = {
        name: accuracy.get(name, 0.5) * RELIABILITY_MULTIPLIER[results[name].reliability]
        for name in models
    }
    total_weight = sum(raw_weights.values())
    if total_weight > 0:
        weights = {name: w / total_weight for name, w in raw_weights.items()}
    else:
        weights = {name: 1 / len(models) for name in models}

    predictions = []
    for i in range(horizon):
        value = 0.0
        confidence = 0.0
        day = None
        contributions = {}
        for name in models:
            model_predictions = results[name].predictions
            if i >= len(model_predictions):
                continue
            point = model_predictions[i]
            value += point.predicted_value * weights[name]
            confidence += point.confidence * weights[name]
            day = day or point.date
            contributions[name] = {"value": point.predicted_value, "weight": weights[name]}

        predictions.append(
            ForecastPoint(
                date=day,
                predicted_value=value,
                confidence=confidence,
                model_contributions=contributions,
            )
        )

    values = [p.predicted_value for p in predictions]
    total = sum(values)

    return EnsembleForecast(
        predictions=predictions,
        total=total,
        average_daily=total / horizon if horizon else 0.0,
        trend="increasing" if values and values[-1] > values[0] else "decreasing",
        volatility=coefficient_of_variation(values),
        seasonality=calculate_seasonality_strength(values),
        accuracy=sum(accuracy.get(name, 0.5) * weights[name] for name in models),
        model_weights=weights,
        used_models=models,
    )


def calculate_confidence_intervals(
    history: list[float],
    predictions: list[ForecastPoint],
    confidence_level: float = 0.95,
) -> list[ConfidenceInterval]:
    """
    Prediction bands that widen linearly with distance into the horizon.

    margin = z * stddev(history) * (1 + (i / horizon) * 0.5); lower bounds
    are clamped at zero.
    """
    z_score = Z_SCORES.get(round(confidence_level, 3), DEFAULT_Z_SCORE)
    std_dev = pstdev(history)
    horizon = len(predictions)

    intervals = []
    for i, prediction in enumerate(predictions):
        time_decay = 1 + (i / horizon) * 0.5
        margin = z_score * std_dev * time_decay
        intervals.append(
            ConfidenceInterval(
                date=prediction.date,
                predicted=prediction.predicted_value,
                lower_bound=max(0.0, prediction.predicted_value - margin),
                upper_bound=prediction.predicted_value + margin,
                confidence=prediction.confidence,
            )
        )
    return intervals


class ForecastEngine:
    """
    Multi-model ensemble cost forecaster.

    Models:
    1. Linear regression - long-term trend
    2. Polynomial regression - non-linear trend
    3. Holt-Winters exponential smoothing - trend plus weekly season
    4. Seasonal pattern - weekly/monthly indices around the mean
    """

    def __init__(
        self,
        config: ForecastConfig | None = None,
        cache: ResultCache | None = None,
    ):
        """
        Initialize the forecast engine.

        Args:
            config: Forecasting configuration.
            cache: Optional result cache shared between invocations.
        """
        self.config = config or ForecastConfig()
        self.cache = cache

    def generate_forecast(
        self,
        records: Iterable[Mapping[str, Any] | ObservedPoint],
        horizon: int | None = None,
        confidence_level: float | None = None,
        service_name: str = "Total",
        algorithms: list[str] | None = None,
    ) -> ForecastOutcome:
        """
        Forecast daily cost over the horizon.

        Args:
            records: Historical cost records (any order).
            horizon: Days to forecast. Defaults to the configured horizon.
            confidence_level: Interval confidence level (0.90 or 0.95).
            service_name: Name of the forecast series.
            algorithms: Model names. Defaults to the configured models.

        Returns:
            ForecastOutcome holding a ForecastReport, or a ForecastFailure for
            insufficient data or when every model failed.
        """
        horizon = horizon if horizon is not None else self.config.horizon
        confidence_level = (
            confidence_level if confidence_level is not None else self.config.confidence_level
        )
        algorithms = list(algorithms if algorithms is not None else self.config.algorithms)
        if horizon < 1:
            raise ValueError(f"Forecast horizon must be at least 1 day, got {horizon}")

        try:
            series = prepare_series(
                records, self.config.min_data_points, context="forecasting"
            )
        except InsufficientDataError as e:
            logger.info("Cannot forecast %s: %s", service_name, e)
            return ForecastOutcome(failure=ForecastFailure.from_error(e))

        def compute() -> ForecastOutcome:
            try:
                report = self.forecast_series(
                    series, horizon, confidence_level, service_name, algorithms
                )
            except NoViableModelError as e:
                logger.warning("Forecast failed for %s: %s", service_name, e)
                return ForecastOutcome(failure=ForecastFailure.from_error(e))
            return ForecastOutcome(report=report)

        if self.cache is None:
            return compute()

        key = fingerprint(
            series,
            kind="forecast",
            horizon=horizon,
            confidence_level=confidence_level,
            algorithms=algorithms,
            service_name=service_name,
        )
        return self.cache.get_or_compute(key, compute)

    def forecast_series(
        self,
        series: PreparedSeries,
        horizon: int,
        confidence_level: float,
        service_name: str,
        algorithms: list[str],
    ) -> ForecastReport:
        """
        Run every model on a prepared series and combine them.

        Raises:
            NoViableModelError: If every model failed.
        """
        unknown = [name for name in algorithms if name not in MODELS]
        if unknown:
            raise ValueError(f"Unknown forecasting models: {', '.join(unknown)}")

        logger.info(
            "Generating %d-day forecast for %s using %d models",
            horizon,
            service_name,
            len(algorithms),
        )

        values = series_values(series)
        results = self.run_models(series, horizon, algorithms)
        accuracy = {name: calculate_model_accuracy(values, name) for name in results}

        try:
            ensemble = combine_forecasts(results, accuracy, horizon)
        except NoViableModelError as e:
            raise NoViableModelError(algorithms, required=1, actual=0) from e

        intervals = calculate_confidence_intervals(
            values, ensemble.predictions, confidence_level
        )
        insights = generate_forecast_insights(
            historical_average=mean(values),
            predicted_average=ensemble.average_daily,
            volatility=ensemble.volatility,
            seasonality=ensemble.seasonality,
            predicted_total=ensemble.total,
            horizon=horizon,
        )

        logger.info(
            "Forecast for %s complete: %d models combined, ensemble accuracy %.2f",
            service_name,
            len(ensemble.used_models),
            ensemble.accuracy,
        )

        return ForecastReport(
            service_name=service_name,
            horizon=horizon,
            confidence_level=confidence_level,
            generated_at=datetime.now(UTC).isoformat(),
            ensemble=ensemble,
            confidence_intervals=intervals,
            model_accuracy=accuracy,
            model_results=results,
            insights=insights,
        )

    def run_models(
        self,
        series: PreparedSeries,
        horizon: int,
        algorithms: list[str],
    ) -> dict[str, ModelResult]:
        """Fit each model, dropping any that fail."""
        results = {}
        for name in algorithms:
            try:
                results[name] = MODELS[name](series, horizon)
            except ModelFitError as e:
                logger.warning("Excluding model from ensemble: %s", e)
            except (ArithmeticError, ValueError) as e:
                logger.warning("Excluding model from ensemble: %s", ModelFitError(name, str(e)))
        return results
