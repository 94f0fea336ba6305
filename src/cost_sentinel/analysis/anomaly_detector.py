"""Ensemble anomaly detection for cost time series."""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Mapping

from cost_sentinel.analysis.anomaly_algorithms import (
    ALGORITHMS,
    CandidateAnomaly,
    Severity,
)
from cost_sentinel.analysis.cache import ResultCache, fingerprint
from cost_sentinel.analysis.errors import InsufficientDataError
from cost_sentinel.analysis.timeseries import (
    ObservedPoint,
    PreparedSeries,
    prepare_series,
)
from cost_sentinel.config.schema import AnomalyDetectionConfig

logger = logging.getLogger(__name__)

ALGORITHM_COUNT = len(ALGORITHMS)


@dataclass(frozen=True)
class EnsembleAnomaly:
    """An anomaly agreed on by one or more algorithms at a single series index."""

    series_index: int
    timestamp: datetime
    label: str
    value: float
    algorithms: tuple[str, ...]
    confidence: float
    severity: Severity
    needs_immediate_alert: bool
    is_real_time: bool = False
    candidates: tuple[CandidateAnomaly, ...] = ()
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def date(self) -> str:
        return self.timestamp.date().isoformat()

    @property
    def unique_key(self) -> str:
        """Deduplication key shared by overlapping detection runs."""
        return f"{self.date}_{self.label}"

    @property
    def anomaly_id(self) -> str:
        return f"anomaly_{self.unique_key}_{self.series_index}"

    @property
    def algorithm_count(self) -> int:
        return len(self.algorithms)

    @property
    def z_score(self) -> float | None:
        for candidate in self.candidates:
            if candidate.algorithm == "zscore":
                return candidate.stats.get("z_score")
        return None

    def stats_for(self, algorithm: str) -> dict[str, Any] | None:
        """Algorithm-specific statistics, if that algorithm flagged this point."""
        for candidate in self.candidates:
            if candidate.algorithm == algorithm:
                return candidate.stats
        return None

    @property
    def description(self) -> str:
        """Human-readable description of the anomaly."""
        return (
            f"{self.label} cost ${self.value:.2f} on {self.date} flagged by "
            f"{', '.join(self.algorithms)} ({self.confidence:.0%} confidence)"
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize for reports and notification payloads."""
        return {
            **self.extra,
            "anomaly_id": self.anomaly_id,
            "unique_key": self.unique_key,
            "date": self.date,
            "service_name": self.label,
            "cost_amount": self.value,
            "algorithms": list(self.algorithms),
            "algorithm_count": self.algorithm_count,
            "confidence": self.confidence,
            "severity": self.severity,
            "needs_immediate_alert": self.needs_immediate_alert,
            "is_real_time": self.is_real_time,
            "z_score": self.z_score,
            "iqr_data": self.stats_for("iqr"),
            "regression_data": self.stats_for("regression"),
            "seasonal_data": self.stats_for("seasonal"),
        }


def ensemble_severity(candidates: list[CandidateAnomaly]) -> Severity:
    """Combine per-algorithm severities and the number of agreeing algorithms."""
    algorithm_count = len(candidates)
    severities = {c.severity for c in candidates}

    if "critical" in severities:
        return "critical"
    if "high" in severities or algorithm_count >= 3:
        return "high"
    if algorithm_count >= 2:
        return "medium"
    return "low"


def deduplicate_anomalies(anomalies: Iterable[EnsembleAnomaly]) -> list[EnsembleAnomaly]:
    """Keep the first anomaly seen for each date and service."""
    seen: set[str] = set()
    unique = []
    for anomaly in anomalies:
        if anomaly.unique_key in seen:
            continue
        seen.add(anomaly.unique_key)
        unique.append(anomaly)
    return unique


def combine_detection_results(
    detection_results: Mapping[str, list[CandidateAnomaly]],
    series: PreparedSeries,
    real_time: bool = False,
    min_agreement: int = 1,
) -> list[EnsembleAnomaly]:
    """
    Merge per-algorithm candidates into ensemble anomalies.

    Candidates are grouped by series index. Duplicates by date and service
    are dropped (first wins) and the result is sorted by confidence.

    Args:
        detection_results: Candidates keyed by algorithm name.
        series: The series the candidates refer to.
        real_time: Mark anomalies as coming from a scheduled run.
        min_agreement: Number of algorithms that must flag an index.

    Returns:
        Ensemble anomalies, highest confidence first.
    """
    by_index: dict[int, list[CandidateAnomaly]] = defaultdict(list)
    for candidates in detection_results.values():
        for candidate in candidates:
            by_index[candidate.series_index].append(candidate)

    combined = []
    for index in sorted(by_index):
        candidates = by_index[index]
        algorithm_count = len(candidates)
        if algorithm_count < min_agreement:
            continue

        avg_confidence = sum(c.confidence for c in candidates) / algorithm_count
        confidence = avg_confidence * 0.7 + algorithm_count * 0.3 / ALGORITHM_COUNT
        severity = ensemble_severity(candidates)
        point = series[index]

        combined.append(
            EnsembleAnomaly(
                series_index=index,
                timestamp=point.timestamp,
                label=point.label,
                value=point.value,
                algorithms=tuple(c.algorithm for c in candidates),
                confidence=confidence,
                severity=severity,
                needs_immediate_alert=(
                    severity == "critical"
                    or (severity == "high" and algorithm_count >= 3)
                ),
                is_real_time=real_time,
                candidates=tuple(candidates),
                extra=point.extra,
            )
        )

    deduplicated = deduplicate_anomalies(combined)
    if len(deduplicated) != len(combined):
        logger.info(
            "Deduplication: %d -> %d anomalies", len(combined), len(deduplicated)
        )

    return sorted(deduplicated, key=lambda a: a.confidence, reverse=True)


class AnomalyDetector:
    """
    Detect cost anomalies using an ensemble of statistical algorithms.

    Detection algorithms:
    1. Rolling Z-score - value deviates from the preceding window
    2. IQR - value falls outside the Tukey fences of the whole series
    3. Regression residual - value is far from the linear trend
    4. Seasonal deviation - value differs from its weekday/hour profile

    By default a single algorithm is enough to report an index; agreement
    raises confidence and severity.
    """

    def __init__(
        self,
        config: AnomalyDetectionConfig | None = None,
        cache: ResultCache | None = None,
    ):
        """
        Initialize the anomaly detector.

        Args:
            config: Anomaly detection configuration.
            cache: Optional result cache shared between invocations.
        """
        self.config = config or AnomalyDetectionConfig()
        self.cache = cache

    def detect(
        self,
        records: Iterable[Mapping[str, Any] | ObservedPoint],
        threshold: float | None = None,
        algorithms: list[str] | None = None,
    ) -> list[EnsembleAnomaly]:
        """
        Detect anomalies in a single cost series.

        Args:
            records: Cost records for one service (any order).
            threshold: Z-score threshold. Defaults to the configured threshold.
            algorithms: Algorithm names. Defaults to the configured algorithms.

        Returns:
            Deduplicated anomalies sorted by confidence, or an empty list if
            the series is too short.

        Raises:
            ValueError: If threshold is not positive or an algorithm is unknown.
        """
        if not self.config.enabled:
            return []

        try:
            series = prepare_series(
                records, self.config.min_data_points, context="anomaly detection"
            )
        except InsufficientDataError as e:
            logger.info("Skipping anomaly detection: %s", e)
            return []

        return self.detect_series(series, threshold=threshold, algorithms=algorithms)

    def detect_series(
        self,
        series: PreparedSeries,
        threshold: float | None = None,
        algorithms: list[str] | None = None,
    ) -> list[EnsembleAnomaly]:
        """Run the ensemble on an already prepared series."""
        threshold = threshold if threshold is not None else self.config.threshold
        algorithms = list(algorithms if algorithms is not None else self.config.algorithms)
        if threshold <= 0:
            raise ValueError(f"Anomaly threshold must be positive, got {threshold}")

        if len(series) < self.config.min_data_points:
            return []

        def compute() -> tuple[EnsembleAnomaly, ...]:
            results = self.run_algorithms(series, threshold, algorithms)
            combined = combine_detection_results(
                results,
                series,
                real_time=self.config.real_time,
                min_agreement=self.config.min_algorithm_agreement,
            )
            logger.info(
                "Detected %d anomalies in %d points using %d algorithms",
                len(combined),
                len(series),
                len(algorithms),
            )
            return tuple(combined)

        if self.cache is None:
            return list(compute())

        key = fingerprint(
            series,
            kind="anomalies",
            threshold=threshold,
            algorithms=algorithms,
            min_agreement=self.config.min_algorithm_agreement,
            real_time=self.config.real_time,
        )
        return list(self.cache.get_or_compute(key, compute))

    def run_algorithms(
        self,
        series: PreparedSeries,
        threshold: float,
        algorithms: list[str],
    ) -> dict[str, list[CandidateAnomaly]]:
        """Run each named algorithm independently."""
        unknown = [name for name in algorithms if name not in ALGORITHMS]
        if unknown:
            raise ValueError(f"Unknown anomaly algorithms: {', '.join(unknown)}")

        return {name: ALGORITHMS[name](series, threshold) for name in algorithms}

    def detect_service_anomalies(
        self,
        records: Iterable[Mapping[str, Any] | ObservedPoint],
    ) -> list[EnsembleAnomaly]:
        """
        Detect anomalies separately for every service in the records.

        Services with fewer than the minimum number of points are skipped.
        Uses the more sensitive per-service threshold and algorithm set.

        Args:
            records: Cost records for any number of services.

        Returns:
            Anomalies across all services, highest confidence first.
        """
        if not self.config.enabled:
            return []

        groups: dict[str, list[ObservedPoint]] = defaultdict(list)
        for record in records:
            point = record if isinstance(record, ObservedPoint) else ObservedPoint.from_record(record)
            groups[point.label].append(point)

        anomalies: list[EnsembleAnomaly] = []
        for service, points in groups.items():
            service_anomalies = self.detect(
                points,
                threshold=self.config.service_threshold,
                algorithms=list(self.config.service_algorithms),
            )
            if service_anomalies:
                logger.info("Found %d anomalies in %s", len(service_anomalies), service)
            anomalies.extend(service_anomalies)

        return sorted(anomalies, key=lambda a: a.confidence, reverse=True)

    def get_anomaly_summary(self, anomalies: list[EnsembleAnomaly]) -> str:
        """Generate a summary of detected anomalies."""
        if not anomalies:
            return "No anomalies detected."

        parts = [f"Detected {len(anomalies)} anomalies:"]
        for severity in ("critical", "high", "medium", "low"):
            count = sum(1 for a in anomalies if a.severity == severity)
            if count:
                parts.append(f"  - {count} {severity}")

        immediate = sum(1 for a in anomalies if a.needs_immediate_alert)
        if immediate:
            parts.append(f"{immediate} require immediate attention")

        return "\n".join(parts)
