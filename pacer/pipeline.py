"""One control cycle: snapshots -> aggregate -> trajectory -> cooldowns."""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from pacer.aggregator import aggregate_all
from pacer.config import Config
from pacer.cooldown import CooldownController
from pacer.models import CooldownState, utc_now
from pacer.snapshot_store import SnapshotStore
from pacer.trajectory import Trajectory, compute_trajectory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CycleResult:
    trajectory: Trajectory
    adjustment: Optional[CooldownState]

    @property
    def adjusted(self) -> bool:
        return self.adjustment is not None


def load_trajectory(
    store: SnapshotStore,
    now: Optional[datetime] = None,
    window: int = 30,
    since: Optional[datetime] = None,
) -> Trajectory:
    """Project from the last ``window`` snapshots.

    With ``since`` the returned series covers that lookback window, while the
    trend still uses the most recent ``window`` points.
    """
    now = now or utc_now()
    trajectory = compute_trajectory(aggregate_all(store.read_recent(window)), now, window)
    if since is None:
        return trajectory

    history = aggregate_all(store.read_since(since))
    return Trajectory(
        snapshots=history,
        five_hour=trajectory.five_hour,
        seven_day=trajectory.seven_day,
        five_hour_trend_per_hour=trajectory.five_hour_trend_per_hour,
        seven_day_trend_per_day=trajectory.seven_day_trend_per_day,
    )


class ControlLoop:
    def __init__(self, store: SnapshotStore, controller: CooldownController, config: Config):
        self.store = store
        self.controller = controller
        self.config = config

    def run_once(self, now: Optional[datetime] = None) -> CycleResult:
        now = now or utc_now()
        self.store.prune(now - timedelta(days=self.config.snapshot_retention_days))
        trajectory = load_trajectory(self.store, now, self.config.trend_window)
        adjustment = self.controller.run_cycle(trajectory.projections, now)
        return CycleResult(trajectory=trajectory, adjustment=adjustment)

    async def run_forever(self) -> None:
        interval = self.config.control_interval_seconds
        logger.info("Control loop running every %d seconds", interval)
        while True:
            try:
                self.run_once()
            except Exception:
                logger.exception("Control cycle failed")
            await asyncio.sleep(interval)
