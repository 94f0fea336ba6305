"""Business insights derived from an ensemble forecast."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

TREND_CHANGE_PERCENT = 15
HIGH_IMPACT_PERCENT = 30
VOLATILITY_ALERT = 0.3
SEASONALITY_RECOMMENDATION = 0.4
BUDGET_RISK_MULTIPLIER = 1.2


@dataclass
class ForecastInsights:
    """Advisory output of a forecast run."""

    significant_changes: list[dict[str, Any]] = field(default_factory=list)
    recommendations: list[dict[str, Any]] = field(default_factory=list)
    alerts: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "significant_changes": list(self.significant_changes),
            "recommendations": list(self.recommendations),
            "alerts": list(self.alerts),
        }


def generate_forecast_insights(
    historical_average: float,
    predicted_average: float,
    volatility: float,
    seasonality: float,
    predicted_total: float,
    horizon: int,
) -> ForecastInsights:
    """
    Derive trend, volatility, seasonality and budget insights.

    Args:
        historical_average: Mean daily cost of the history.
        predicted_average: Mean daily cost of the ensemble forecast.
        volatility: Coefficient of variation of the forecast.
        seasonality: Weekly seasonality strength of the forecast (0-1).
        predicted_total: Sum of the forecast over the horizon.
        horizon: Forecast horizon in days.

    Returns:
        ForecastInsights with significant changes, recommendations and alerts.
    """
    insights = ForecastInsights()

    change_percent = 0.0
    if historical_average != 0:
        change_percent = (predicted_average - historical_average) / historical_average * 100

    if abs(change_percent) > TREND_CHANGE_PERCENT:
        direction = "increase" if change_percent > 0 else "decrease"
        insights.significant_changes.append({
            "type": "trend_change",
            "description": (
                f"Predicted {direction} of {abs(change_percent):.1f}% in average daily costs"
            ),
            "impact": "high" if abs(change_percent) > HIGH_IMPACT_PERCENT else "medium",
            "value": change_percent,
        })

    if volatility > VOLATILITY_ALERT:
        insights.alerts.append({
            "type": "high_volatility",
            "description": "High cost volatility predicted - consider implementing cost controls",
            "severity": "warning",
        })

    if seasonality > SEASONALITY_RECOMMENDATION:
        insights.recommendations.append({
            "type": "seasonal_optimization",
            "description": (
                "Strong seasonal patterns detected - optimize resources based on "
                "predicted low-cost periods"
            ),
            "action": "Consider scheduled scaling or reserved instances",
        })

    expected_total = historical_average * horizon
    if predicted_total > expected_total * BUDGET_RISK_MULTIPLIER:
        insights.alerts.append({
            "type": "budget_risk",
            "description": (
                f"Predicted {horizon}-day total of ${predicted_total:.2f} exceeds "
                f"expected budget of ${expected_total:.2f}"
            ),
            "severity": "high",
        })

    return insights
