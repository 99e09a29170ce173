"""Reduce per-key readings into pool-wide utilization."""

from typing import Dict, Iterable, List, Optional

from pacer.models import (
    STATUS_ACTIVE,
    AggregateSnapshot,
    KeyRecord,
    Snapshot,
    clamp_pct,
)


def aggregate_snapshot(snapshot: Snapshot) -> Optional[AggregateSnapshot]:
    """Average every key's readings in a snapshot.

    A snapshot without keys has no aggregate (None), never 0%.
    Reset times come from the last key carrying one, in iteration order.
    """
    readings = list(snapshot.keys.values())
    if not readings:
        return None

    sum_5h = 0.0
    sum_7d = 0.0
    reset_5h = None
    reset_7d = None
    for reading in readings:
        sum_5h += clamp_pct(reading.five_hour_pct)
        sum_7d += clamp_pct(reading.seven_day_pct)
        if reading.five_hour_reset is not None:
            reset_5h = reading.five_hour_reset
        if reading.seven_day_reset is not None:
            reset_7d = reading.seven_day_reset

    return AggregateSnapshot(
        timestamp=snapshot.timestamp,
        five_hour_pct=clamp_pct(sum_5h / len(readings)),
        seven_day_pct=clamp_pct(sum_7d / len(readings)),
        five_hour_reset=reset_5h,
        seven_day_reset=reset_7d,
        key_count=len(readings),
    )


def aggregate_all(snapshots: Iterable[Snapshot]) -> List[AggregateSnapshot]:
    """Aggregate a sequence of snapshots, skipping those with no keys."""
    aggregates: List[AggregateSnapshot] = []
    for snapshot in snapshots:
        aggregate = aggregate_snapshot(snapshot)
        if aggregate is not None:
            aggregates.append(aggregate)
    return aggregates


def aggregate_key_usage(keys: Iterable[KeyRecord]) -> Optional[Dict[str, object]]:
    """Pool aggregate from the rotation state: mean last usage of active keys."""
    five_hour_sum = 0.0
    seven_day_sum = 0.0
    counted = 0
    for record in keys:
        if record.status != STATUS_ACTIVE or record.last_usage is None:
            continue
        five_hour_sum += clamp_pct(record.last_usage.five_hour)
        seven_day_sum += clamp_pct(record.last_usage.seven_day)
        counted += 1

    if counted == 0:
        return None

    return {
        "active_keys": counted,
        "five_hour_pct": round(five_hour_sum / counted),
        "seven_day_pct": round(seven_day_sum / counted),
    }
