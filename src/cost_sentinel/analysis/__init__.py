"""Cost anomaly detection and forecasting for Cost Sentinel."""

from cost_sentinel.analysis.anomaly_detector import AnomalyDetector, EnsembleAnomaly
from cost_sentinel.analysis.cache import ResultCache
from cost_sentinel.analysis.errors import (
    CostAnalysisError,
    InsufficientDataError,
    ModelFitError,
    NoViableModelError,
    NumericDegeneracyError,
)
from cost_sentinel.analysis.forecaster import (
    ForecastEngine,
    ForecastFailure,
    ForecastOutcome,
    ForecastReport,
)
from cost_sentinel.analysis.report_builder import build_anomaly_report
from cost_sentinel.analysis.timeseries import daily_totals, prepare_series

__all__ = [
    "AnomalyDetector",
    "EnsembleAnomaly",
    "ForecastEngine",
    "ForecastReport",
    "ForecastFailure",
    "ForecastOutcome",
    "ResultCache",
    "build_anomaly_report",
    "prepare_series",
    "daily_totals",
    "CostAnalysisError",
    "InsufficientDataError",
    "NumericDegeneracyError",
    "ModelFitError",
    "NoViableModelError",
]
