import json
from datetime import datetime, timedelta, timezone

import pytest

from pacer.cooldown import DEFAULT_COOLDOWNS, default_state, effective_cooldowns
from pacer.models import (
    TRIGGER_COMMIT,
    TRIGGER_CONTINUOUS,
    CooldownAdjustment,
    CooldownState,
    TaskDefinition,
    TaskRunState,
)
from pacer.schedule import BUILTIN_TASKS, ScheduleRegistry, TaskRunStore

NOW = datetime(2026, 2, 14, 12, 0, tzinfo=timezone.utc)

LINT = TaskDefinition(
    name="Lint Check",
    trigger=TRIGGER_CONTINUOUS,
    cooldown_key="lint_checker",
    default_minutes=30,
)
REVIEW = TaskDefinition(name="Pre-Commit Review", trigger=TRIGGER_COMMIT)


def doubled_state() -> CooldownState:
    defaults = {"lint_checker": 30}
    return CooldownState(
        defaults=defaults,
        effective=effective_cooldowns(defaults, 2.0),
        adjustment=CooldownAdjustment(factor=2.0),
    )


def test_interval_task_not_yet_eligible():
    registry = ScheduleRegistry([LINT])
    runs = {"Lint Check": TaskRunState("Lint Check", NOW - timedelta(minutes=45))}

    [entry] = registry.entries(runs, doubled_state(), now=NOW)

    assert entry.default_interval_minutes == 30
    assert entry.effective_interval_minutes == 60
    assert entry.next_run == NOW + timedelta(minutes=15)
    assert entry.seconds_until_next == 15 * 60


def test_interval_task_eligible_after_effective_interval():
    registry = ScheduleRegistry([LINT])
    runs = {"Lint Check": TaskRunState("Lint Check", NOW - timedelta(minutes=61))}

    [entry] = registry.entries(runs, doubled_state(), now=NOW)

    assert entry.effective_interval_minutes == 60
    assert entry.seconds_until_next == 0


def test_task_without_last_run_is_eligible_immediately():
    registry = ScheduleRegistry([LINT])

    [entry] = registry.entries({}, doubled_state(), now=NOW)

    assert entry.last_run is None
    assert entry.next_run == NOW
    assert entry.seconds_until_next == 0


def test_event_triggered_task_has_no_schedule():
    registry = ScheduleRegistry([REVIEW])
    runs = {"Pre-Commit Review": TaskRunState("Pre-Commit Review", NOW)}

    [entry] = registry.entries(runs, doubled_state(), now=NOW)

    assert entry.trigger == TRIGGER_COMMIT
    assert entry.default_interval_minutes is None
    assert entry.effective_interval_minutes is None
    assert entry.next_run is None
    assert entry.seconds_until_next is None
    assert entry.last_run == NOW


def test_override_takes_precedence():
    registry = ScheduleRegistry([LINT])
    runs = {"Lint Check": TaskRunState("Lint Check", NOW - timedelta(minutes=45))}

    [entry] = registry.entries(
        runs, doubled_state(), now=NOW, overrides={"lint_checker": 40}
    )

    assert entry.effective_interval_minutes == 40
    assert entry.seconds_until_next == 0


def test_falls_back_to_task_default_minutes():
    registry = ScheduleRegistry(
        [
            TaskDefinition(
                name="Nightly",
                trigger=TRIGGER_CONTINUOUS,
                cooldown_key="nightly",
                default_minutes=720,
            )
        ]
    )
    empty = CooldownState(defaults={}, effective={})

    [entry] = registry.entries({}, empty, now=NOW)

    assert entry.default_interval_minutes == 720
    assert entry.effective_interval_minutes == 720


def test_falls_back_to_default_cooldowns_when_no_effective():
    registry = ScheduleRegistry([LINT])
    state = CooldownState(defaults={"lint_checker": 25}, effective={})

    [entry] = registry.entries({}, state, now=NOW)

    assert entry.effective_interval_minutes == 25


def test_builtin_tasks_with_empty_state_are_all_eligible():
    registry = ScheduleRegistry()

    entries = registry.entries({}, default_state(), now=NOW)

    interval = [e for e in entries if e.effective_interval_minutes is not None]
    assert len(entries) == len(BUILTIN_TASKS)
    assert len(interval) == 5
    assert all(e.seconds_until_next == 0 for e in interval)
    assert {e.name: e.effective_interval_minutes for e in interval}["Lint Check"] == (
        DEFAULT_COOLDOWNS["lint_checker"]
    )


def test_due_lists_only_eligible_interval_tasks():
    registry = ScheduleRegistry([LINT, REVIEW])
    runs = {"Lint Check": TaskRunState("Lint Check", NOW - timedelta(minutes=61))}

    due = registry.due(runs, doubled_state(), now=NOW)

    assert [entry.name for entry in due] == ["Lint Check"]


def test_register_rejects_duplicates():
    registry = ScheduleRegistry([LINT])

    with pytest.raises(ValueError, match="already registered"):
        registry.register(LINT)


def test_register_requires_default_for_interval_tasks():
    registry = ScheduleRegistry([])

    with pytest.raises(ValueError, match="default_minutes"):
        registry.register(
            TaskDefinition(name="Broken", trigger=TRIGGER_CONTINUOUS, cooldown_key="x")
        )


def test_entries_do_not_touch_run_state(tmp_path):
    store = TaskRunStore(str(tmp_path / "automation-state.json"))
    store.record_run("Lint Check", NOW - timedelta(minutes=5))
    before = (tmp_path / "automation-state.json").read_text()

    ScheduleRegistry().entries(store.load(), default_state(), now=NOW)

    assert (tmp_path / "automation-state.json").read_text() == before


def test_task_run_store_round_trip(tmp_path):
    store = TaskRunStore(str(tmp_path / "automation-state.json"))

    store.record_run("Lint Check", NOW)
    store.record_run("Task Runner", NOW - timedelta(minutes=3))

    states = store.load()
    assert states["Lint Check"].last_run == NOW
    assert states["Task Runner"].last_run == NOW - timedelta(minutes=3)


def test_task_run_store_skips_malformed_values(tmp_path):
    path = tmp_path / "automation-state.json"
    path.write_text(json.dumps({"Lint Check": "yesterday", "Task Runner": NOW.timestamp()}))

    states = TaskRunStore(str(path)).load()

    assert list(states) == ["Task Runner"]


def test_task_run_store_missing_file_is_empty(tmp_path):
    assert TaskRunStore(str(tmp_path / "nope.json")).load() == {}
