"""Tests for ensemble anomaly detection and reporting."""

import pytest
from datetime import UTC, datetime
from unittest.mock import patch

from cost_sentinel.analysis.anomaly_algorithms import CandidateAnomaly
from cost_sentinel.analysis.anomaly_detector import (
    AnomalyDetector,
    EnsembleAnomaly,
    combine_detection_results,
    deduplicate_anomalies,
    ensemble_severity,
)
from cost_sentinel.analysis.cache import ResultCache
from cost_sentinel.analysis.report_builder import build_anomaly_report, generate_recommendations
from cost_sentinel.analysis.timeseries import prepare_series
from cost_sentinel.config.schema import AnomalyDetectionConfig

from conftest import make_records


def create_anomaly(
    day: int,
    service: str = "Amazon EC2",
    severity: str = "medium",
    confidence: float = 0.5,
    value: float = 100.0,
    hour: int = 0,
) -> EnsembleAnomaly:
    """Helper to create a test anomaly."""
    return EnsembleAnomaly(
        series_index=day,
        timestamp=datetime(2024, 1, day, hour, tzinfo=UTC),
        label=service,
        value=value,
        algorithms=("zscore",),
        confidence=confidence,
        severity=severity,
        needs_immediate_alert=severity == "critical",
    )


def candidate(index: int, algorithm: str, confidence: float, severity: str = "medium"):
    return CandidateAnomaly(
        series_index=index,
        value=0.0,
        algorithm=algorithm,
        confidence=confidence,
        severity=severity,
    )


class TestAnomalyDetector:
    """Tests for AnomalyDetector."""

    @pytest.fixture
    def detector(self):
        return AnomalyDetector(AnomalyDetectionConfig())

    def test_spike_detected_as_critical(self, detector, spike_values):
        """Test the seven point spike."""
        anomalies = detector.detect(make_records(spike_values))

        assert len(anomalies) == 1
        anomaly = anomalies[0]
        assert anomaly.date == "2024-01-05"
        assert anomaly.value == 1000
        assert set(anomaly.algorithms) == {"zscore", "iqr"}
        assert anomaly.severity == "critical"
        assert anomaly.needs_immediate_alert is True
        assert anomaly.confidence == pytest.approx(0.85)

    def test_insufficient_data_returns_empty(self, detector):
        """Test that six points are not enough."""
        assert detector.detect(make_records([100, 105, 95, 102, 1000, 98])) == []

    def test_stable_costs(self, detector):
        """Test that constant costs don't trigger anomalies."""
        assert detector.detect(make_records([100.0] * 30)) == []

    def test_disabled(self, spike_values):
        """Test that a disabled detector reports nothing."""
        detector = AnomalyDetector(AnomalyDetectionConfig(enabled=False))
        assert detector.detect(make_records(spike_values)) == []

    def test_unknown_algorithm(self, detector, spike_values):
        """Test that unknown algorithm names are rejected."""
        with pytest.raises(ValueError):
            detector.detect(make_records(spike_values), algorithms=["zscore", "magic"])

    @pytest.mark.parametrize("threshold", [0, -1.5])
    def test_non_positive_threshold(self, detector, spike_values, threshold):
        """Test that a threshold override must be positive."""
        with pytest.raises(ValueError, match="threshold"):
            detector.detect(make_records(spike_values), threshold=threshold)

    def test_min_algorithm_agreement(self, spike_values):
        """Test that a higher agreement requirement filters single-algorithm hits."""
        detector = AnomalyDetector(AnomalyDetectionConfig(min_algorithm_agreement=3))
        assert detector.detect(make_records(spike_values)) == []

    def test_real_time_flag(self, spike_values):
        """Test that anomalies are tagged in real-time mode."""
        detector = AnomalyDetector(AnomalyDetectionConfig(real_time=True))
        anomalies = detector.detect(make_records(spike_values))
        assert anomalies[0].is_real_time is True

    def test_result_is_cached(self, spike_values):
        """Test that identical input is only analysed once."""
        cache = ResultCache()
        detector = AnomalyDetector(AnomalyDetectionConfig(), cache=cache)
        records = make_records(spike_values)

        with patch.object(detector, "run_algorithms", wraps=detector.run_algorithms) as run:
            first = detector.detect(records)
            second = detector.detect(records)

        assert first == second
        assert run.call_count == 1
        assert len(cache) == 1

    def test_different_threshold_not_cached(self, spike_values):
        """Test that parameters are part of the cache key."""
        cache = ResultCache()
        detector = AnomalyDetector(AnomalyDetectionConfig(), cache=cache)
        records = make_records(spike_values)

        detector.detect(records, threshold=2.5)
        detector.detect(records, threshold=3.0)
        assert len(cache) == 2

    def test_service_anomalies(self, multi_service_records):
        """Test that each service is analysed on its own."""
        detector = AnomalyDetector(AnomalyDetectionConfig())
        anomalies = detector.detect_service_anomalies(multi_service_records)

        assert len(anomalies) == 1
        assert anomalies[0].label == "Amazon EC2"
        assert anomalies[0].date == "2024-01-21"
        assert set(anomalies[0].algorithms) == {"zscore", "iqr", "regression"}

    def test_service_with_too_few_points_skipped(self, multi_service_records):
        """Test that short services are ignored."""
        records = multi_service_records + make_records([1, 500], "AWS Lambda")
        anomalies = AnomalyDetector().detect_service_anomalies(records)
        assert "AWS Lambda" not in {a.label for a in anomalies}

    def test_summary(self, detector, spike_values):
        """Test the text summary."""
        anomalies = detector.detect(make_records(spike_values))
        summary = detector.get_anomaly_summary(anomalies)
        assert "1 critical" in summary
        assert "1 require immediate attention" in summary
        assert detector.get_anomaly_summary([]) == "No anomalies detected."


class TestEnsemble:
    """Tests for combining algorithm results."""

    @pytest.fixture
    def series(self):
        return prepare_series(make_records([float(i) for i in range(10)]), min_points=1)

    def test_confidence_formula(self, series):
        """Test average confidence plus agreement bonus."""
        results = {
            "zscore": [candidate(3, "zscore", 0.4)],
            "iqr": [candidate(3, "iqr", 0.8)],
        }
        combined = combine_detection_results(results, series)

        assert len(combined) == 1
        assert combined[0].confidence == pytest.approx(0.6 * 0.7 + 2 * 0.3 / 4)
        assert combined[0].algorithms == ("zscore", "iqr")

    def test_sorted_by_confidence(self, series):
        """Test that higher confidence comes first."""
        results = {
            "zscore": [candidate(2, "zscore", 0.2), candidate(5, "zscore", 0.9)],
        }
        combined = combine_detection_results(results, series)
        assert [a.series_index for a in combined] == [5, 2]

    def test_point_attributes_carried(self, series):
        """Test that value, label and timestamp come from the series."""
        combined = combine_detection_results({"iqr": [candidate(7, "iqr", 0.5)]}, series)
        assert combined[0].value == 7.0
        assert combined[0].label == "Amazon EC2"
        assert combined[0].date == "2024-01-08"

    @pytest.mark.parametrize(
        "severities,expected",
        [
            (["medium"], "low"),
            (["medium", "medium"], "medium"),
            (["medium", "medium", "medium"], "high"),
            (["high"], "high"),
            (["medium", "critical"], "critical"),
        ],
    )
    def test_severity(self, severities, expected):
        """Test ensemble severity from per-algorithm severities and agreement."""
        candidates = [candidate(0, f"alg{i}", 0.5, s) for i, s in enumerate(severities)]
        assert ensemble_severity(candidates) == expected

    def test_immediate_alert(self, series):
        """Test that three agreeing high severity hits need an immediate alert."""
        results = {
            name: [candidate(4, name, 0.5, "high")]
            for name in ("zscore", "iqr", "regression")
        }
        combined = combine_detection_results(results, series)
        assert combined[0].severity == "high"
        assert combined[0].needs_immediate_alert is True

    def test_single_high_not_immediate(self, series):
        """Test that a lone high severity hit is not escalated."""
        combined = combine_detection_results({"iqr": [candidate(4, "iqr", 0.5, "high")]}, series)
        assert combined[0].needs_immediate_alert is False


class TestEnsembleAnomaly:
    """Tests for EnsembleAnomaly serialization."""

    def test_unique_key(self):
        """Test the date and service deduplication key."""
        assert create_anomaly(3).unique_key == "2024-01-03_Amazon EC2"

    def test_to_dict(self):
        """Test the serialized fields."""
        data = create_anomaly(3, severity="critical").to_dict()

        assert data["date"] == "2024-01-03"
        assert data["service_name"] == "Amazon EC2"
        assert data["cost_amount"] == 100.0
        assert data["algorithm_count"] == 1
        assert data["needs_immediate_alert"] is True
        assert data["iqr_data"] is None


class TestDeduplication:
    """Tests for deduplication."""

    def test_first_occurrence_wins(self):
        """Test that later duplicates are dropped."""
        first = create_anomaly(3, confidence=0.2)
        duplicate = create_anomaly(3, confidence=0.9, hour=12)
        other_service = create_anomaly(3, service="Amazon RDS")

        unique = deduplicate_anomalies([first, duplicate, other_service])
        assert unique == [first, other_service]


class TestAnomalyReport:
    """Tests for build_anomaly_report."""

    def test_empty(self):
        """Test the report for no anomalies."""
        report = build_anomaly_report([])
        assert report["total_anomalies"] == 0
        assert report["severity_breakdown"] == {"high": 0, "medium": 0, "low": 0}
        assert report["recommendations"] == []
        assert report["date_range"] == {"start": None, "end": None}

    def test_severity_breakdown_counts_critical_as_high(self):
        """Test the three-bucket breakdown."""
        anomalies = [
            create_anomaly(1, severity="critical"),
            create_anomaly(2, severity="high"),
            create_anomaly(3, severity="medium"),
            create_anomaly(4, severity="low"),
        ]
        report = build_anomaly_report(anomalies)
        assert report["severity_breakdown"] == {"high": 2, "medium": 1, "low": 1}
        assert report["date_range"] == {"start": "2024-01-01", "end": "2024-01-04"}

    def test_dedup_and_ordering(self):
        """Test that duplicates are removed before ranking."""
        anomalies = [
            create_anomaly(1, confidence=0.3),
            create_anomaly(1, confidence=0.99, hour=6),
            create_anomaly(2, confidence=0.8),
        ]
        report = build_anomaly_report(anomalies)

        assert report["total_anomalies"] == 2
        assert [a["confidence"] for a in report["anomalies"]] == [0.8, 0.3]

    def test_overlapping_runs_reported_once(self, multi_service_records):
        """Test that a spike seen by two overlapping detection windows is counted once."""
        detector = AnomalyDetector(AnomalyDetectionConfig())
        ec2 = [r for r in multi_service_records if r["service_name"] == "Amazon EC2"]

        first_run = detector.detect(ec2[:25])
        second_run = detector.detect(ec2[10:])
        assert "2024-01-21" in {a.date for a in first_run}
        assert "2024-01-21" in {a.date for a in second_run}

        report = build_anomaly_report(first_run + second_run)

        keys = [(a["date"], a["service_name"]) for a in report["anomalies"]]
        assert len(keys) == len(set(keys))
        assert keys.count(("2024-01-21", "Amazon EC2")) == 1
        assert report["total_anomalies"] == len(keys)

    def test_top_services_and_limit(self):
        """Test service ranking and truncation."""
        anomalies = [create_anomaly(d, "Amazon EC2") for d in range(1, 4)]
        anomalies += [create_anomaly(d, "Amazon S3") for d in range(1, 3)]
        report = build_anomaly_report(anomalies, limit=2, top_services=1)

        assert report["top_services"] == [{"service": "Amazon EC2", "count": 3}]
        assert len(report["anomalies"]) == 2
        assert report["total_anomalies"] == 5

    def test_requested_date_range(self):
        """Test that an explicit range is reported as given."""
        requested = {"start": "2023-12-01", "end": "2024-01-31"}
        report = build_anomaly_report([create_anomaly(1)], requested_date_range=requested)
        assert report["date_range"] == requested

    def test_recommendations(self):
        """Test recommendation types."""
        anomalies = [
            create_anomaly(1, "Amazon EC2", severity="critical", value=50.0),
            create_anomaly(2, "Amazon RDS", severity="medium", value=500.0),
        ]
        recommendations = generate_recommendations(anomalies)

        assert [r["type"] for r in recommendations] == [
            "immediate_action",
            "review",
            "optimization",
        ]
        assert "Amazon RDS" in recommendations[2]["description"]
