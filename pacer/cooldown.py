"""Adaptive cooldown controller.

Closes the feedback loop between the usage projection and how often the
background automation tasks run. One pool-wide factor scales every default
cooldown: above target the factor exceeds 1 and tasks slow down, below target
it drops under 1 and they may run more often.
"""

import logging
import math
from datetime import datetime
from typing import Dict, Iterable, Mapping, Optional

from pacer.config import Config
from pacer.models import (
    METRIC_FIVE_HOUR,
    METRIC_SEVEN_DAY,
    CooldownAdjustment,
    CooldownState,
    Projection,
    format_instant,
    parse_instant,
    utc_now,
)
from pacer.storage import read_json, write_json_atomic

logger = logging.getLogger(__name__)

STATE_VERSION = 1

DEFAULT_COOLDOWNS: Dict[str, int] = {
    "hourly_tasks": 55,
    "triage_check": 5,
    "plan_executor": 55,
    "antipattern_hunter": 360,
    "schema_mapper": 1440,
    "lint_checker": 30,
    "todo_maintenance": 15,
    "task_runner": 15,
    "triage_per_item": 60,
}


def _minutes_map(raw: object) -> Dict[str, int]:
    if not isinstance(raw, dict):
        return {}
    result: Dict[str, int] = {}
    for key, value in raw.items():
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            continue
        if not math.isfinite(value) or value <= 0:
            continue
        result[str(key)] = int(value)
    return result


def _optional_number(raw: object) -> Optional[float]:
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        return None
    value = float(raw)
    return value if math.isfinite(value) else None


def default_state(target_pct: float = 90.0) -> CooldownState:
    """Neutral record used when nothing has been written yet."""
    return CooldownState(
        defaults=dict(DEFAULT_COOLDOWNS),
        effective=dict(DEFAULT_COOLDOWNS),
        adjustment=CooldownAdjustment(factor=1.0, target_pct=target_pct),
    )


class CooldownStore:
    """Adjustment record persisted as a version 1 JSON file."""

    def __init__(self, path: str):
        self.path = path

    def load(self) -> Optional[CooldownState]:
        """Return the stored record, or None when absent or malformed."""
        data = read_json(self.path)
        if not isinstance(data, dict) or data.get("version") != STATE_VERSION:
            return None

        defaults = dict(DEFAULT_COOLDOWNS)
        defaults.update(_minutes_map(data.get("defaults")))
        effective = dict(defaults)
        effective.update(_minutes_map(data.get("effective")))

        adjustment = CooldownAdjustment()
        raw = data.get("adjustment")
        if isinstance(raw, dict):
            factor = _optional_number(raw.get("factor"))
            target = _optional_number(raw.get("target_pct"))
            metric = raw.get("constraining_metric")
            adjustment = CooldownAdjustment(
                factor=factor if factor is not None and factor > 0 else 1.0,
                target_pct=target if target is not None else 90.0,
                projected_at_reset_pct=_optional_number(raw.get("projected_at_reset")),
                constraining_metric=(
                    metric if metric in (METRIC_FIVE_HOUR, METRIC_SEVEN_DAY) else None
                ),
                last_updated=parse_instant(raw.get("last_updated")),
            )
        return CooldownState(defaults=defaults, effective=effective, adjustment=adjustment)

    def save(self, state: CooldownState) -> None:
        adjustment = state.adjustment
        write_json_atomic(
            self.path,
            {
                "version": STATE_VERSION,
                "defaults": dict(state.defaults),
                "effective": dict(state.effective),
                "adjustment": {
                    "factor": adjustment.factor,
                    "target_pct": adjustment.target_pct,
                    "projected_at_reset": adjustment.projected_at_reset_pct,
                    "constraining_metric": adjustment.constraining_metric,
                    "last_updated": format_instant(adjustment.last_updated),
                },
            },
        )


def select_constraining(projections: Iterable[Projection]) -> Optional[Projection]:
    """Pick the present projection with the highest value (first wins ties)."""
    constraining: Optional[Projection] = None
    for projection in projections:
        if projection.value is None:
            continue
        if constraining is None or projection.value > constraining.value:
            constraining = projection
    return constraining


def compute_factor(
    projected_pct: float,
    target_pct: float,
    min_factor: float = 0.25,
    max_factor: float = 4.0,
) -> float:
    """Proportional mapping ``projected / target``, clamped to the bounds."""
    if target_pct <= 0:
        raise ValueError("target_pct must be positive")
    if projected_pct == target_pct:
        return 1.0
    return max(min_factor, min(max_factor, projected_pct / target_pct))


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def effective_minutes(
    default_minutes: int,
    factor: float,
    floor_minutes: int = 1,
    override: Optional[int] = None,
) -> int:
    if override is not None:
        return override
    return max(floor_minutes, round_half_up(default_minutes * factor))


def effective_cooldowns(
    defaults: Mapping[str, int],
    factor: float,
    floor_minutes: int = 1,
    overrides: Optional[Mapping[str, int]] = None,
) -> Dict[str, int]:
    overrides = overrides or {}
    return {
        key: effective_minutes(minutes, factor, floor_minutes, overrides.get(key))
        for key, minutes in defaults.items()
    }


class CooldownController:
    """Turns projections into a persisted CooldownState, once per cycle."""

    def __init__(self, store: CooldownStore, config: Config):
        self.store = store
        self.config = config

    def current(self) -> CooldownState:
        state = self.store.load()
        if state is None:
            return default_state(self.config.target_pct)
        return state

    def run_cycle(
        self, projections: Iterable[Projection], now: Optional[datetime] = None
    ) -> Optional[CooldownState]:
        """Compute and persist a new adjustment.

        Returns None without writing when no projection is available; the
        previous adjustment stays in place.
        """
        constraining = select_constraining(projections)
        if constraining is None:
            logger.info("No usage projection available; keeping previous cooldowns")
            return None

        defaults = self.current().defaults
        factor = compute_factor(
            constraining.value,
            self.config.target_pct,
            self.config.min_factor,
            self.config.max_factor,
        )
        state = CooldownState(
            defaults=dict(defaults),
            effective=effective_cooldowns(
                defaults,
                factor,
                self.config.min_cooldown_minutes,
                self.config.cooldown_overrides,
            ),
            adjustment=CooldownAdjustment(
                factor=factor,
                target_pct=self.config.target_pct,
                projected_at_reset_pct=constraining.value,
                constraining_metric=constraining.metric,
                last_updated=now or utc_now(),
            ),
        )
        self.store.save(state)
        logger.info(
            "Cooldown factor %.2f (%s projected %.1f%% vs target %.1f%%)",
            factor,
            constraining.metric,
            constraining.value,
            self.config.target_pct,
        )
        return state
