"""Build anomaly reports for the alerting and reporting collaborators."""

from __future__ import annotations

from collections import Counter, defaultdict
from typing import Any

from cost_sentinel.analysis.anomaly_detector import EnsembleAnomaly, deduplicate_anomalies


def build_anomaly_report(
    anomalies: list[EnsembleAnomaly],
    requested_date_range: dict[str, str] | None = None,
    limit: int = 50,
    top_services: int = 5,
) -> dict[str, Any]:
    """
    Build a summary report of detected anomalies.

    Anomalies from overlapping runs are collapsed by date and service before
    counting.

    Args:
        anomalies: Ensemble anomalies, possibly from several detection runs.
        requested_date_range: Date range to report ({"start", "end"}).
            Defaults to the range spanned by the anomalies.
        limit: Maximum number of anomalies included in the report.
        top_services: Number of services in the top services list.

    Returns:
        Dict with: total_anomalies, severity_breakdown, top_services,
        date_range, recommendations, anomalies.
    """
    if not anomalies:
        return {
            "total_anomalies": 0,
            "severity_breakdown": {"high": 0, "medium": 0, "low": 0},
            "top_services": [],
            "date_range": requested_date_range or {"start": None, "end": None},
            "recommendations": [],
            "anomalies": [],
        }

    unique = sorted(
        deduplicate_anomalies(anomalies), key=lambda a: a.confidence, reverse=True
    )

    severity_breakdown = {
        "high": sum(1 for a in unique if a.severity in ("high", "critical")),
        "medium": sum(1 for a in unique if a.severity == "medium"),
        "low": sum(1 for a in unique if a.severity == "low"),
    }

    service_counts = Counter(a.label for a in unique)
    ranked_services = sorted(service_counts.items(), key=lambda x: x[1], reverse=True)

    if requested_date_range:
        date_range = requested_date_range
    else:
        dates = sorted(a.date for a in unique)
        date_range = {"start": dates[0], "end": dates[-1]}

    return {
        "total_anomalies": len(unique),
        "severity_breakdown": severity_breakdown,
        "top_services": [
            {"service": service, "count": count}
            for service, count in ranked_services[:top_services]
        ],
        "date_range": date_range,
        "recommendations": generate_recommendations(unique),
        "anomalies": [a.to_dict() for a in unique[:limit]],
    }


def generate_recommendations(anomalies: list[EnsembleAnomaly]) -> list[dict[str, str]]:
    """
    Generate follow-up recommendations from detected anomalies.

    Args:
        anomalies: Deduplicated anomalies.

    Returns:
        List of recommendation dicts (type, priority, title, description, action).
    """
    if not anomalies:
        return []

    recommendations = []
    high = [a for a in anomalies if a.severity in ("high", "critical")]
    medium = [a for a in anomalies if a.severity == "medium"]

    if high:
        recommendations.append({
            "type": "immediate_action",
            "priority": "high",
            "title": "Immediate Cost Investigation Required",
            "description": (
                f"Found {len(high)} high-severity cost anomalies that require "
                "immediate investigation."
            ),
            "action": (
                "Review the identified high-cost anomalies and determine if they "
                "represent unauthorized usage or configuration issues."
            ),
        })

    if medium:
        recommendations.append({
            "type": "review",
            "priority": "medium",
            "title": "Cost Pattern Review",
            "description": (
                f"Found {len(medium)} medium-severity cost anomalies worth reviewing."
            ),
            "action": (
                "Analyze the medium-severity anomalies to identify potential cost "
                "optimization opportunities."
            ),
        })

    service_costs: dict[str, float] = defaultdict(float)
    for anomaly in anomalies:
        service_costs[anomaly.label] += anomaly.value

    service, _ = max(service_costs.items(), key=lambda x: x[1])
    recommendations.append({
        "type": "optimization",
        "priority": "medium",
        "title": "Service Cost Optimization",
        "description": f'The service "{service}" has shown significant cost anomalies.',
        "action": (
            f"Review usage patterns for {service} and consider rightsizing or "
            "optimizing resources."
        ),
    })

    return recommendations
