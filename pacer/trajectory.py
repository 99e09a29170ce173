"""Usage trajectory: linear trend over recent aggregates, projected to reset time.

Everything here is pure computation over already aggregated data; calling it
twice on the same input gives the same output.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from pacer.models import (
    METRIC_FIVE_HOUR,
    METRIC_SEVEN_DAY,
    AggregateSnapshot,
    Projection,
    TrendEstimate,
    clamp_pct,
    utc_now,
)

DEFAULT_TREND_WINDOW = 30
MIN_TREND_POINTS = 3

_SECONDS_PER_HOUR = 3600.0


@dataclass(frozen=True)
class Trajectory:
    snapshots: List[AggregateSnapshot] = field(default_factory=list)
    five_hour: Projection = field(default_factory=lambda: Projection(METRIC_FIVE_HOUR))
    seven_day: Projection = field(default_factory=lambda: Projection(METRIC_SEVEN_DAY))
    five_hour_trend_per_hour: Optional[float] = None
    seven_day_trend_per_day: Optional[float] = None

    @property
    def has_data(self) -> bool:
        return bool(self.snapshots)

    @property
    def projections(self) -> List[Projection]:
        return [self.five_hour, self.seven_day]


def linear_regression(x: Sequence[float], y: Sequence[float]) -> Optional[TrendEstimate]:
    """Least-squares fit of y = slope * x + intercept; None when degenerate."""
    n = len(x)
    if n < 2 or n != len(y):
        return None

    sum_x = sum(x)
    sum_y = sum(y)
    sum_xy = sum(a * b for a, b in zip(x, y))
    sum_xx = sum(a * a for a in x)

    denominator = n * sum_xx - sum_x * sum_x
    if denominator == 0:
        return None

    slope = (n * sum_xy - sum_x * sum_y) / denominator
    intercept = (sum_y - slope * sum_x) / n
    return TrendEstimate(slope=slope, intercept=intercept)


def fit_trends(
    points: Sequence[AggregateSnapshot],
) -> Tuple[Optional[TrendEstimate], Optional[TrendEstimate]]:
    """Fit the 5-hour and 7-day trends against hours since the first point."""
    if len(points) < MIN_TREND_POINTS:
        return None, None

    first = points[0].timestamp
    x = [(p.timestamp - first).total_seconds() / _SECONDS_PER_HOUR for p in points]
    return (
        linear_regression(x, [p.five_hour_pct for p in points]),
        linear_regression(x, [p.seven_day_pct for p in points]),
    )


def project(
    metric: str,
    trend: Optional[TrendEstimate],
    first_sample: datetime,
    reset_time: Optional[datetime],
    now: datetime,
) -> Projection:
    """Evaluate the trend at reset time; absent unless reset is strictly after now."""
    if trend is None or reset_time is None or reset_time <= now:
        return Projection(metric=metric, value=None, reset_time=reset_time)

    hours_to_now = (now - first_sample).total_seconds() / _SECONDS_PER_HOUR
    hours_until_reset = (reset_time - now).total_seconds() / _SECONDS_PER_HOUR
    value = trend.slope * (hours_to_now + hours_until_reset) + trend.intercept
    return Projection(metric=metric, value=clamp_pct(value), reset_time=reset_time)


def latest_resets(
    aggregates: Sequence[AggregateSnapshot],
) -> Tuple[Optional[datetime], Optional[datetime]]:
    reset_5h = None
    reset_7d = None
    for aggregate in aggregates:
        if aggregate.five_hour_reset is not None:
            reset_5h = aggregate.five_hour_reset
        if aggregate.seven_day_reset is not None:
            reset_7d = aggregate.seven_day_reset
    return reset_5h, reset_7d


def compute_trajectory(
    aggregates: Sequence[AggregateSnapshot],
    now: Optional[datetime] = None,
    window: int = DEFAULT_TREND_WINDOW,
) -> Trajectory:
    """Build the trajectory for an ascending sequence of aggregates.

    Reset times come from the most recent aggregate carrying one; the trend
    uses only the last ``window`` points.
    """
    if not aggregates:
        return Trajectory()

    now = now or utc_now()
    snapshots = list(aggregates)
    reset_5h, reset_7d = latest_resets(snapshots)

    recent = snapshots[-window:]
    trend_5h, trend_7d = fit_trends(recent)
    first_sample = recent[0].timestamp

    return Trajectory(
        snapshots=snapshots,
        five_hour=project(METRIC_FIVE_HOUR, trend_5h, first_sample, reset_5h, now),
        seven_day=project(METRIC_SEVEN_DAY, trend_7d, first_sample, reset_7d, now),
        five_hour_trend_per_hour=trend_5h.slope if trend_5h else None,
        seven_day_trend_per_day=trend_7d.slope * 24 if trend_7d else None,
    )
