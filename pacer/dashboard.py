"""Read-only endpoints for dashboards and schedulers."""

from datetime import timedelta
from typing import Dict, List, Optional

from fastapi import APIRouter, Query, Request

from pacer.cooldown import round_half_up
from pacer.models import (
    AggregateSnapshot,
    CooldownState,
    Projection,
    ScheduleEntry,
    format_instant,
    utc_now,
)
from pacer.pipeline import load_trajectory
from pacer.trajectory import Trajectory

dashboard_router = APIRouter(prefix="/usage", tags=["usage"])

MIN_LOOKBACK_HOURS = 1
MAX_LOOKBACK_HOURS = 168
DEFAULT_LOOKBACK_HOURS = 24

# Factors within this band of 1.0 are reported as stable.
STABLE_FACTOR_BAND = 0.05


def adjusting_direction(factor: float) -> str:
    """Which way task intervals are moving: "up", "down" or "stable"."""
    if factor > 1 + STABLE_FACTOR_BAND:
        return "up"
    if factor < 1 - STABLE_FACTOR_BAND:
        return "down"
    return "stable"


def interval_change_pct(
    default_minutes: Optional[int], effective: Optional[int]
) -> Optional[int]:
    """Signed percentage change of the effective interval over the default."""
    if not default_minutes or effective is None:
        return None
    return round_half_up((effective - default_minutes) / default_minutes * 100)


def format_projection(projection: Projection) -> Dict[str, object]:
    return {
        "metric": projection.metric,
        "projected_at_reset_pct": projection.value,
        "reset_time": format_instant(projection.reset_time),
    }


def format_aggregate(aggregate: AggregateSnapshot) -> Dict[str, object]:
    return {
        "timestamp": format_instant(aggregate.timestamp),
        "five_hour_pct": aggregate.five_hour_pct,
        "seven_day_pct": aggregate.seven_day_pct,
        "key_count": aggregate.key_count,
    }


def format_trajectory(trajectory: Trajectory) -> Dict[str, object]:
    return {
        "has_data": trajectory.has_data,
        "snapshots": [format_aggregate(s) for s in trajectory.snapshots],
        "five_hour": format_projection(trajectory.five_hour),
        "seven_day": format_projection(trajectory.seven_day),
        "five_hour_trend_per_hour": trajectory.five_hour_trend_per_hour,
        "seven_day_trend_per_day": trajectory.seven_day_trend_per_day,
    }


def format_cooldowns(state: CooldownState) -> Dict[str, object]:
    adjustment = state.adjustment
    return {
        "factor": adjustment.factor,
        "target_pct": adjustment.target_pct,
        "projected_at_reset_pct": adjustment.projected_at_reset_pct,
        "constraining_metric": adjustment.constraining_metric,
        "adjusting_direction": adjusting_direction(adjustment.factor),
        "last_updated": format_instant(adjustment.last_updated),
        "default_cooldowns": dict(state.defaults),
        "effective_cooldowns": dict(state.effective),
    }


def format_entry(entry: ScheduleEntry) -> Dict[str, object]:
    return {
        "name": entry.name,
        "trigger": entry.trigger,
        "default_interval_minutes": entry.default_interval_minutes,
        "effective_interval_minutes": entry.effective_interval_minutes,
        "interval_change_pct": interval_change_pct(
            entry.default_interval_minutes, entry.effective_interval_minutes
        ),
        "last_run": format_instant(entry.last_run),
        "next_run": format_instant(entry.next_run),
        "seconds_until_next": entry.seconds_until_next,
    }


def current_schedule(request: Request, due_only: bool = False) -> List[ScheduleEntry]:
    state = request.app.state
    run_states = state.task_runs.load()
    cooldowns = state.controller.current()
    overrides = state.config.cooldown_overrides
    if due_only:
        return state.registry.due(run_states, cooldowns, overrides=overrides)
    return state.registry.entries(run_states, cooldowns, overrides=overrides)


@dashboard_router.get("/trajectory")
async def get_trajectory(
    request: Request,
    hours: int = Query(
        DEFAULT_LOOKBACK_HOURS, ge=MIN_LOOKBACK_HOURS, le=MAX_LOOKBACK_HOURS
    ),
) -> Dict[str, object]:
    """Aggregated usage over the lookback window plus projections at reset."""
    config = request.app.state.config
    now = utc_now()
    trajectory = load_trajectory(
        request.app.state.snapshot_store,
        now,
        config.trend_window,
        since=now - timedelta(hours=hours),
    )
    result = format_trajectory(trajectory)
    result["hours"] = hours
    return result


@dashboard_router.get("/projection")
async def get_projection(request: Request) -> Dict[str, object]:
    """Current cooldown adjustment, neutral when none has been written."""
    return format_cooldowns(request.app.state.controller.current())


@dashboard_router.get("/keys")
async def get_keys(
    request: Request,
    hours: int = Query(
        DEFAULT_LOOKBACK_HOURS, ge=MIN_LOOKBACK_HOURS, le=MAX_LOOKBACK_HOURS
    ),
) -> Dict[str, object]:
    """Key rotation metrics over the lookback window."""
    key_manager = request.app.state.key_manager
    result = key_manager.get_status(hours)
    result["hours"] = hours
    return result


@dashboard_router.get("/schedule")
async def get_schedule(request: Request) -> Dict[str, object]:
    """Next eligible run for every registered task."""
    return {"tasks": [format_entry(entry) for entry in current_schedule(request)]}
