"""Schedule registry for automated tasks."""

import logging
import math
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Mapping, Optional

from pacer.models import (
    TRIGGER_COMMIT,
    TRIGGER_CONTINUOUS,
    TRIGGER_FILE_CHANGE,
    TRIGGER_PROMPT,
    CooldownState,
    ScheduleEntry,
    TaskDefinition,
    TaskRunState,
    from_epoch,
    utc_now,
)
from pacer.storage import read_json, write_json_atomic

logger = logging.getLogger(__name__)

BUILTIN_TASKS: List[TaskDefinition] = [
    TaskDefinition(
        name="Triage Check",
        description="Check for pending reports to triage",
        trigger=TRIGGER_CONTINUOUS,
        cooldown_key="triage_check",
        default_minutes=5,
    ),
    TaskDefinition(
        name="Task Runner",
        description="Spawn agents for pending todo tasks",
        trigger=TRIGGER_CONTINUOUS,
        cooldown_key="task_runner",
        default_minutes=15,
    ),
    TaskDefinition(
        name="Lint Check",
        description="Run lint fixer on codebase",
        trigger=TRIGGER_CONTINUOUS,
        cooldown_key="lint_checker",
        default_minutes=30,
    ),
    TaskDefinition(
        name="Hourly Tasks",
        description="Plan executor and documentation refactor",
        trigger=TRIGGER_CONTINUOUS,
        cooldown_key="hourly_tasks",
        default_minutes=55,
    ),
    TaskDefinition(
        name="Antipattern Hunter",
        description="Scan for coding-standard violations",
        trigger=TRIGGER_CONTINUOUS,
        cooldown_key="antipattern_hunter",
        default_minutes=360,
    ),
    TaskDefinition(
        name="Pre-Commit Review",
        description="Review commits before they land",
        trigger=TRIGGER_COMMIT,
    ),
    TaskDefinition(
        name="Compliance Checker",
        description="Verify design-document-to-code mappings",
        trigger=TRIGGER_FILE_CHANGE,
    ),
    TaskDefinition(
        name="CTO Notification",
        description="Show status on each prompt",
        trigger=TRIGGER_PROMPT,
    ),
]


class TaskRunStore:
    """Last-run times per task name, as ``{name: epoch_seconds}``."""

    def __init__(self, path: str):
        self.path = path

    def load(self) -> Dict[str, TaskRunState]:
        data = read_json(self.path)
        if not isinstance(data, dict):
            return {}

        states: Dict[str, TaskRunState] = {}
        for name, value in data.items():
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                logger.debug("Skipping malformed last-run value for %s", name)
                continue
            try:
                states[str(name)] = TaskRunState(task_name=str(name), last_run=from_epoch(value))
            except (OverflowError, OSError, ValueError):
                continue
        return states

    def record_run(self, task_name: str, when: Optional[datetime] = None) -> TaskRunState:
        """Write path for the external task runner."""
        when = when or utc_now()
        data = read_json(self.path)
        if not isinstance(data, dict):
            data = {}
        data[task_name] = when.timestamp()
        write_json_atomic(self.path, data)
        return TaskRunState(task_name=task_name, last_run=when)


class ScheduleRegistry:
    """Computes next eligible run times; never changes last-run state."""

    def __init__(self, tasks: Optional[Iterable[TaskDefinition]] = None):
        self.tasks: Dict[str, TaskDefinition] = {}
        for task in BUILTIN_TASKS if tasks is None else tasks:
            self.register(task)

    def register(self, task: TaskDefinition) -> None:
        if task.name in self.tasks:
            raise ValueError(f"Task {task.name} already registered")
        if task.cooldown_key is not None and task.default_minutes is None:
            raise ValueError(f"Task {task.name} needs default_minutes")
        self.tasks[task.name] = task

    def entry_for(
        self,
        task: TaskDefinition,
        run_state: Optional[TaskRunState],
        cooldowns: CooldownState,
        now: datetime,
        overrides: Optional[Mapping[str, int]] = None,
    ) -> ScheduleEntry:
        last_run = run_state.last_run if run_state else None

        if task.cooldown_key is None:
            return ScheduleEntry(
                name=task.name,
                trigger=task.trigger,
                default_interval_minutes=task.default_minutes,
                effective_interval_minutes=task.default_minutes,
                last_run=last_run,
                next_run=None,
                seconds_until_next=None,
            )

        key = task.cooldown_key
        default_interval = cooldowns.defaults.get(key, task.default_minutes)
        if overrides and key in overrides:
            effective_interval = overrides[key]
        else:
            effective_interval = cooldowns.effective.get(key, default_interval)

        if last_run is None:
            next_run = now
            seconds_until_next = 0
        else:
            next_run = last_run + timedelta(minutes=effective_interval)
            remaining = (next_run - now).total_seconds()
            seconds_until_next = max(0, int(math.ceil(remaining)))

        return ScheduleEntry(
            name=task.name,
            trigger=task.trigger,
            default_interval_minutes=default_interval,
            effective_interval_minutes=effective_interval,
            last_run=last_run,
            next_run=next_run,
            seconds_until_next=seconds_until_next,
        )

    def entries(
        self,
        run_states: Mapping[str, TaskRunState],
        cooldowns: CooldownState,
        now: Optional[datetime] = None,
        overrides: Optional[Mapping[str, int]] = None,
    ) -> List[ScheduleEntry]:
        now = now or utc_now()
        return [
            self.entry_for(task, run_states.get(task.name), cooldowns, now, overrides)
            for task in self.tasks.values()
        ]

    def due(
        self,
        run_states: Mapping[str, TaskRunState],
        cooldowns: CooldownState,
        now: Optional[datetime] = None,
        overrides: Optional[Mapping[str, int]] = None,
    ) -> List[ScheduleEntry]:
        return [
            entry
            for entry in self.entries(run_states, cooldowns, now, overrides)
            if entry.seconds_until_next == 0
        ]
