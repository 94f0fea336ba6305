"""Time series preparation and shared statistics helpers."""

from __future__ import annotations

import math
import statistics
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, time
from typing import Any, Iterable, Mapping

from cost_sentinel.analysis.errors import InsufficientDataError, NumericDegeneracyError

# Field aliases used by the billing data collaborator
TIMESTAMP_FIELDS = ("date", "timestamp", "created_at")
LABEL_FIELDS = ("service_name", "service", "label")
VALUE_FIELDS = ("cost_amount", "total_cost", "value")

UNKNOWN_LABEL = "Unknown"


def parse_timestamp(raw: Any) -> datetime:
    """
    Parse a timestamp into a timezone-aware datetime.

    Accepts datetime, date, or ISO 8601 strings. Naive values are treated as UTC.
    """
    if isinstance(raw, datetime):
        parsed = raw
    elif isinstance(raw, date):
        parsed = datetime.combine(raw, time.min)
    elif isinstance(raw, str):
        parsed = datetime.fromisoformat(raw.strip())
    else:
        raise ValueError(f"Unsupported timestamp: {raw!r}")

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def coerce_value(raw: Any) -> float | None:
    """Return the value as a float, or None if it is missing or not numeric."""
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        value = float(raw)
    elif isinstance(raw, str):
        try:
            value = float(raw.strip())
        except ValueError:
            return None
    else:
        return None

    if math.isnan(value) or math.isinf(value):
        return None
    return value


def _first_present(record: Mapping[str, Any], fields: tuple[str, ...]) -> Any:
    for name in fields:
        if record.get(name) is not None:
            return record[name]
    return None


@dataclass(frozen=True)
class ObservedPoint:
    """A single cost observation for one service."""

    timestamp: datetime
    label: str
    value: float | None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "ObservedPoint":
        """Build an observation from a billing record dict."""
        raw_timestamp = _first_present(record, TIMESTAMP_FIELDS)
        if raw_timestamp is None:
            raise ValueError(f"Record has no timestamp field: {dict(record)!r}")

        label = _first_present(record, LABEL_FIELDS) or UNKNOWN_LABEL
        known = set(TIMESTAMP_FIELDS) | set(LABEL_FIELDS) | set(VALUE_FIELDS)

        return cls(
            timestamp=parse_timestamp(raw_timestamp),
            label=str(label),
            value=coerce_value(_first_present(record, VALUE_FIELDS)),
            extra={k: v for k, v in record.items() if k not in known},
        )


@dataclass(frozen=True)
class PreparedPoint:
    """A point of a prepared series. `index` correlates results across algorithms."""

    index: int
    timestamp: datetime
    value: float
    day_of_week: int  # Monday = 0
    day_of_month: int
    label: str = UNKNOWN_LABEL
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def date(self) -> str:
        """Calendar date of the point (YYYY-MM-DD)."""
        return self.timestamp.date().isoformat()

    @property
    def hour(self) -> int:
        return self.timestamp.hour


PreparedSeries = tuple[PreparedPoint, ...]


def prepare_series(
    records: Iterable[Mapping[str, Any] | ObservedPoint],
    min_points: int = 7,
    context: str = "analysis",
) -> PreparedSeries:
    """
    Normalize raw records into a sorted, typed series.

    Points without a numeric value are dropped. Points are sorted by
    timestamp; ties keep their original order.

    Args:
        records: Billing records (dicts) or ObservedPoint instances.
        min_points: Minimum number of usable points.
        context: Name of the caller, used in the error message.

    Returns:
        Tuple of PreparedPoint with 0-based indices.

    Raises:
        InsufficientDataError: If fewer than min_points usable points remain.
    """
    observed = [
        r if isinstance(r, ObservedPoint) else ObservedPoint.from_record(r)
        for r in records
    ]
    usable = sorted(
        (p for p in observed if p.value is not None),
        key=lambda p: p.timestamp,
    )

    if len(usable) < min_points:
        raise InsufficientDataError(min_points, len(usable), context)

    return tuple(
        PreparedPoint(
            index=i,
            timestamp=p.timestamp,
            value=p.value,
            day_of_week=p.timestamp.weekday(),
            day_of_month=p.timestamp.day,
            label=p.label,
            extra=p.extra,
        )
        for i, p in enumerate(usable)
    )


def daily_totals(
    records: Iterable[Mapping[str, Any] | ObservedPoint],
    label: str = "Total",
) -> list[ObservedPoint]:
    """
    Sum observations per calendar day into a single labelled series.

    Points without a numeric value are ignored. Days are returned in order.
    """
    totals: dict[date, float] = {}
    for record in records:
        point = record if isinstance(record, ObservedPoint) else ObservedPoint.from_record(record)
        if point.value is None:
            continue
        day = point.timestamp.date()
        totals[day] = totals.get(day, 0.0) + point.value

    return [
        ObservedPoint(timestamp=parse_timestamp(day), label=label, value=total)
        for day, total in sorted(totals.items())
    ]


def series_values(series: PreparedSeries) -> list[float]:
    return [p.value for p in series]


def mean(values: list[float]) -> float:
    return statistics.fmean(values) if values else 0.0


def pstdev(values: list[float]) -> float:
    """Population standard deviation (0 for fewer than 2 values)."""
    if len(values) < 2:
        return 0.0
    return statistics.pstdev(values)


def pvariance(values: list[float]) -> float:
    if len(values) < 2:
        return 0.0
    return statistics.pvariance(values)


def coefficient_of_variation(values: list[float]) -> float:
    """Standard deviation relative to the mean; 0 when the mean is 0."""
    avg = mean(values)
    if avg == 0:
        return 0.0
    return pstdev(values) / avg


def quantile_sorted(sorted_values: list[float], p: float) -> float:
    """
    Quantile of an already sorted list.

    Fractional positions take the next element; integral positions on an
    even-length list take the midpoint of the two neighbours.
    """
    n = len(sorted_values)
    if n == 0:
        raise NumericDegeneracyError("quantile of an empty series")
    if p <= 0:
        return sorted_values[0]
    if p >= 1:
        return sorted_values[-1]

    idx = n * p
    if idx % 1 != 0:
        return sorted_values[math.ceil(idx) - 1]
    idx = int(idx)
    if n % 2 == 0:
        return (sorted_values[idx - 1] + sorted_values[idx]) / 2
    return sorted_values[idx]


def linear_fit(x: list[float], y: list[float]) -> tuple[float, float]:
    """
    Ordinary least squares fit of y against x.

    Returns:
        (slope, intercept)

    Raises:
        NumericDegeneracyError: If x has zero variance.
    """
    n = len(x)
    if n == 0:
        raise NumericDegeneracyError("regression on an empty series")

    x_mean = sum(x) / n
    y_mean = sum(y) / n
    denominator = sum((xi - x_mean) ** 2 for xi in x)
    if denominator == 0:
        raise NumericDegeneracyError("regression with zero variance in x")

    numerator = sum((xi - x_mean) * (yi - y_mean) for xi, yi in zip(x, y))
    slope = numerator / denominator
    return slope, y_mean - slope * x_mean


def linear_slope(values: list[float]) -> float:
    """Slope of values against their position; 0 when undefined."""
    try:
        slope, _ = linear_fit([float(i) for i in range(len(values))], values)
    except NumericDegeneracyError:
        return 0.0
    return slope


def r_squared(actual: list[float], predicted: list[float]) -> float:
    """
    Coefficient of determination, floored at 0.

    A constant series scores 1 when reproduced exactly and 0 otherwise.
    """
    avg = mean(actual)
    total = sum((a - avg) ** 2 for a in actual)
    residual = sum((a - p) ** 2 for a, p in zip(actual, predicted))

    if total == 0:
        return 1.0 if residual < 1e-12 else 0.0
    return max(0.0, 1 - residual / total)
