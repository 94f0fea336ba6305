"""
Cost Analysis Lambda Handler.

This Lambda is triggered by EventBridge on a schedule to:
1. Detect per-service cost anomalies
2. Build the anomaly report
3. Forecast daily total cost
4. Send Slack alerts for critical anomalies and forecast changes
"""

import json
from datetime import UTC, datetime
from typing import Any

from cost_sentinel.analysis.anomaly_detector import AnomalyDetector
from cost_sentinel.analysis.cache import ResultCache
from cost_sentinel.analysis.errors import CostAnalysisError
from cost_sentinel.analysis.forecaster import ForecastEngine
from cost_sentinel.analysis.report_builder import build_anomaly_report
from cost_sentinel.analysis.timeseries import daily_totals
from cost_sentinel.config import get_cached_config
from cost_sentinel.notifications.dispatcher import AlertDispatcher, DispatchResult

# Shared across warm invocations
_cache: ResultCache | None = None


def _get_cache(ttl_seconds: int, max_entries: int) -> ResultCache:
    global _cache
    if _cache is None:
        _cache = ResultCache(ttl_seconds=ttl_seconds, max_entries=max_entries)
    return _cache


def handler(event: dict[str, Any], context: Any) -> dict[str, Any]:
    """
    Lambda handler for scheduled cost analysis.

    Event parameters:
    - records: list - Billing records (date, service_name, cost_amount)
    - service_name: str - Name of the forecast series (default "Total")
    - horizon: int - Forecast horizon in days (default from config)
    - skip_forecast: bool - If true, only runs anomaly detection
    - skip_slack: bool - If true, doesn't send Slack notifications
    - dry_run: bool - Analyze but don't notify
    """
    print(f"Cost analysis invoked at {datetime.now(UTC).isoformat()}")

    records = event.get("records")
    if not isinstance(records, list):
        return {
            "statusCode": 400,
            "body": {"error": "Event must contain a 'records' list"},
        }

    service_name = event.get("service_name", "Total")
    skip_forecast = event.get("skip_forecast", False)
    skip_slack = event.get("skip_slack", False) or event.get("dry_run", False)

    config = get_cached_config()
    cache = (
        _get_cache(config.cache.ttl_seconds, config.cache.max_entries)
        if config.cache.enabled
        else None
    )

    detector = AnomalyDetector(config.anomaly_detection, cache=cache)
    forecaster = ForecastEngine(config.forecasting, cache=cache)

    print(f"Analyzing {len(records)} records...")

    try:
        anomalies = detector.detect_service_anomalies(records)
        report = build_anomaly_report(
            anomalies,
            limit=config.anomaly_detection.report_limit,
            top_services=config.anomaly_detection.top_services,
        )
        print(detector.get_anomaly_summary(anomalies))

        forecast: dict[str, Any] | None = None
        if config.forecasting.enabled and not skip_forecast:
            outcome = forecaster.generate_forecast(
                daily_totals(records, label=service_name),
                horizon=event.get("horizon"),
                service_name=service_name,
            )
            forecast = outcome.to_dict()
            if outcome.success:
                summary = outcome.report.ensemble
                print(
                    f"Forecast: ${summary.total:.2f} over {outcome.report.horizon} days "
                    f"({summary.trend}, accuracy {summary.accuracy:.0%})"
                )
            else:
                print(f"Forecast unavailable: {outcome.failure.message}")
    except (CostAnalysisError, ValueError) as e:
        print(f"Error analyzing costs: {e}")
        return {
            "statusCode": 500,
            "body": {"error": str(e)},
        }

    notifications = DispatchResult()
    real_time = config.anomaly_detection.real_time
    if config.slack.enabled and real_time and not skip_slack:
        print("Sending Slack notifications...")
        dispatcher = AlertDispatcher(config)
        notifications = dispatcher.dispatch_anomalies(anomalies)
        if forecast and forecast.get("success"):
            notifications = notifications.merge(
                dispatcher.dispatch_forecast_changes(forecast["forecast"])
            )
        print(f"Notifications: {notifications.sent} sent, {notifications.failed} failed")
    elif skip_slack:
        immediate = sum(1 for a in anomalies if a.needs_immediate_alert)
        print(f"[SKIP] Would send {immediate} anomaly alerts")

    body = {
        "anomaly_report": report,
        "forecast": forecast,
        "notifications": notifications.to_dict(),
    }
    print(f"Analysis complete: {report['total_anomalies']} anomalies")

    return {
        "statusCode": 200,
        "body": json.loads(json.dumps(body, default=str)),
    }
