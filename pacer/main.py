"""FastAPI application for the usage pacer."""

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Dict

from fastapi import FastAPI, Request

from pacer.admin import admin_router
from pacer.config import Config, load_config
from pacer.cooldown import CooldownController, CooldownStore
from pacer.dashboard import dashboard_router
from pacer.key_rotation import KeyRotationManager, KeyRotationStore
from pacer.pipeline import ControlLoop
from pacer.runner import runner_router
from pacer.schedule import ScheduleRegistry, TaskRunStore
from pacer.snapshot_store import JsonSnapshotStore

logger = logging.getLogger(__name__)


def init_app_state(app: FastAPI, config: Config) -> None:
    """Build the stores and components and attach them to ``app.state``."""
    snapshot_store = JsonSnapshotStore(config.snapshots_file)
    controller = CooldownController(CooldownStore(config.automation_config_file), config)

    app.state.config = config
    app.state.snapshot_store = snapshot_store
    app.state.key_manager = KeyRotationManager(
        KeyRotationStore(config.key_rotation_file),
        exhausted_threshold_pct=config.exhausted_threshold_pct,
    )
    app.state.controller = controller
    app.state.task_runs = TaskRunStore(config.automation_state_file)
    app.state.registry = ScheduleRegistry()
    app.state.control_loop = ControlLoop(snapshot_store, controller, config)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle: startup and shutdown."""
    config = load_config()

    logging.basicConfig(level=getattr(logging, config.log_level))

    init_app_state(app, config)

    loop_task = None
    if config.control_interval_seconds > 0:
        loop_task = asyncio.create_task(app.state.control_loop.run_forever())

    logger.info(
        "Usage pacer started (target %.0f%%, retention %s)",
        config.target_pct,
        timedelta(days=config.snapshot_retention_days),
    )

    yield

    if loop_task is not None:
        loop_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await loop_task
    logger.info("Usage pacer stopped")


app = FastAPI(title="Usage Pacer", lifespan=lifespan)

app.include_router(dashboard_router)
app.include_router(admin_router)
app.include_router(runner_router)


@app.get("/")
async def root(request: Request) -> Dict[str, object]:
    key_manager = request.app.state.key_manager
    status = key_manager.get_status()
    return {
        "service": "Usage Pacer",
        "status": "running",
        "active_keys": status["active_keys"],
        "total_keys": status["total_keys"],
    }


@app.get("/health")
async def health_check(request: Request) -> Dict[str, object]:
    """Health check endpoint with key pool and adjustment status."""
    key_manager = request.app.state.key_manager
    status = key_manager.get_status()
    adjustment = request.app.state.controller.current().adjustment
    return {
        "status": "healthy",
        "active_keys": status["active_keys"],
        "total_keys": status["total_keys"],
        "has_active_key": status["current_key_id"] is not None,
        "factor": adjustment.factor,
    }
