import json
from datetime import datetime, timezone

import pytest

from pacer.config import Config
from pacer.cooldown import (
    DEFAULT_COOLDOWNS,
    CooldownController,
    CooldownStore,
    compute_factor,
    effective_cooldowns,
    effective_minutes,
    select_constraining,
)
from pacer.models import METRIC_FIVE_HOUR, METRIC_SEVEN_DAY, Projection

NOW = datetime(2026, 2, 14, 8, 0, tzinfo=timezone.utc)


def make_controller(tmp_path, **overrides) -> CooldownController:
    config = Config(state_dir=str(tmp_path), **overrides)
    return CooldownController(CooldownStore(config.automation_config_file), config)


def test_factor_above_target_slows_tasks():
    assert compute_factor(95, 90) > 1


def test_factor_below_target_speeds_tasks():
    assert compute_factor(60, 90) < 1


def test_factor_at_target_is_one():
    assert compute_factor(90, 90) == pytest.approx(1.0)
    assert compute_factor(72.5, 72.5) == 1.0


def test_factor_is_clamped():
    assert compute_factor(0, 90) == 0.25
    assert compute_factor(100, 10, max_factor=4.0) == 4.0
    assert compute_factor(100, 10, max_factor=2.0) == 2.0


def test_select_constraining_prefers_higher_projection():
    five_hour = Projection(METRIC_FIVE_HOUR, 40.0)
    seven_day = Projection(METRIC_SEVEN_DAY, 75.0)

    assert select_constraining([five_hour, seven_day]) is seven_day


def test_select_constraining_ignores_absent_projections():
    five_hour = Projection(METRIC_FIVE_HOUR, None)
    seven_day = Projection(METRIC_SEVEN_DAY, 10.0)

    assert select_constraining([five_hour, seven_day]) is seven_day
    assert select_constraining([five_hour, Projection(METRIC_SEVEN_DAY)]) is None


def test_effective_minutes_rounds_and_floors():
    assert effective_minutes(30, 2.0) == 60
    assert effective_minutes(15, 0.5) == 8
    assert effective_minutes(5, 0.25) == 1
    assert effective_minutes(2, 0.25, floor_minutes=1) == 1
    assert effective_minutes(30, 0.25, floor_minutes=10) == 10


def test_effective_minutes_override_wins():
    assert effective_minutes(30, 2.0, override=7) == 7


def test_effective_cooldowns_applies_overrides_per_key():
    result = effective_cooldowns({"a": 10, "b": 20}, 1.5, overrides={"b": 3})

    assert result == {"a": 15, "b": 3}


def test_current_without_record_is_neutral(tmp_path):
    controller = make_controller(tmp_path)

    state = controller.current()

    assert state.adjustment.factor == 1.0
    assert state.adjustment.target_pct == 90
    assert state.adjustment.projected_at_reset_pct is None
    assert state.adjustment.last_updated is None
    assert state.defaults == DEFAULT_COOLDOWNS
    assert state.effective == DEFAULT_COOLDOWNS


def test_run_cycle_writes_adjustment(tmp_path):
    controller = make_controller(tmp_path)

    state = controller.run_cycle(
        [Projection(METRIC_FIVE_HOUR, 45.0), Projection(METRIC_SEVEN_DAY, 180 / 2)],
        now=NOW,
    )

    assert state is not None
    assert state.adjustment.factor == 1.0
    assert state.adjustment.constraining_metric == METRIC_SEVEN_DAY
    assert state.adjustment.projected_at_reset_pct == 90
    assert state.adjustment.last_updated == NOW
    assert controller.current() == state


def test_run_cycle_scales_effective_cooldowns(tmp_path):
    controller = make_controller(tmp_path, cooldown_overrides={"lint_checker": 12})

    state = controller.run_cycle([Projection(METRIC_FIVE_HOUR, 99.0)], now=NOW)

    assert state.adjustment.factor == pytest.approx(1.1)
    assert state.effective["task_runner"] == 17
    assert state.effective["hourly_tasks"] == 61
    assert state.effective["lint_checker"] == 12
    assert state.defaults["task_runner"] == 15


def test_run_cycle_without_projection_keeps_previous(tmp_path):
    controller = make_controller(tmp_path)
    previous = controller.run_cycle([Projection(METRIC_FIVE_HOUR, 45.0)], now=NOW)
    path = tmp_path / "automation-config.json"
    written = path.read_text()

    result = controller.run_cycle(
        [Projection(METRIC_FIVE_HOUR), Projection(METRIC_SEVEN_DAY)]
    )

    assert result is None
    assert path.read_text() == written
    assert controller.current() == previous
    assert controller.current().adjustment.factor == 0.5


def test_run_cycle_without_projection_and_no_record_writes_nothing(tmp_path):
    controller = make_controller(tmp_path)

    assert controller.run_cycle([Projection(METRIC_FIVE_HOUR)]) is None
    assert not (tmp_path / "automation-config.json").exists()


def test_record_defaults_override_builtins(tmp_path):
    path = tmp_path / "automation-config.json"
    path.write_text(json.dumps({"version": 1, "defaults": {"task_runner": 40}}))
    controller = make_controller(tmp_path)

    state = controller.run_cycle([Projection(METRIC_FIVE_HOUR, 45.0)], now=NOW)

    assert state.defaults["task_runner"] == 40
    assert state.effective["task_runner"] == 20


def test_store_round_trip_file_format(tmp_path):
    controller = make_controller(tmp_path)
    controller.run_cycle([Projection(METRIC_SEVEN_DAY, 120 * 0.75)], now=NOW)

    data = json.loads((tmp_path / "automation-config.json").read_text())

    assert data["version"] == 1
    assert set(data["defaults"]) == set(DEFAULT_COOLDOWNS)
    assert data["adjustment"]["factor"] == 1.0
    assert data["adjustment"]["target_pct"] == 90
    assert data["adjustment"]["projected_at_reset"] == 90
    assert data["adjustment"]["constraining_metric"] == METRIC_SEVEN_DAY
    assert data["adjustment"]["last_updated"] == "2026-02-14T08:00:00Z"


@pytest.mark.parametrize(
    "content",
    ["{broken", json.dumps({"version": 2}), json.dumps([1, 2, 3])],
)
def test_malformed_record_falls_back_to_defaults(tmp_path, content):
    (tmp_path / "automation-config.json").write_text(content)
    controller = make_controller(tmp_path)

    state = controller.current()

    assert state.adjustment.factor == 1.0
    assert state.effective == DEFAULT_COOLDOWNS


def test_store_ignores_invalid_fields(tmp_path):
    (tmp_path / "automation-config.json").write_text(
        json.dumps(
            {
                "version": 1,
                "effective": {"task_runner": "soon", "lint_checker": 45},
                "adjustment": {"factor": -2, "constraining_metric": "1h"},
            }
        )
    )
    state = CooldownStore(str(tmp_path / "automation-config.json")).load()

    assert state.effective["task_runner"] == 15
    assert state.effective["lint_checker"] == 45
    assert state.adjustment.factor == 1.0
    assert state.adjustment.constraining_metric is None


@pytest.mark.parametrize(
    "content",
    [
        '{"version": 1, "defaults": {"lint_checker": Infinity}}',
        '{"version": 1, "effective": {"lint_checker": NaN}}',
        '{"version": 1, "defaults": {"lint_checker": 1e400}}',
    ],
)
def test_non_finite_minutes_fall_back_to_defaults(tmp_path, content):
    (tmp_path / "automation-config.json").write_text(content)
    controller = make_controller(tmp_path)

    assert controller.current().effective["lint_checker"] == 30


def test_non_finite_adjustment_fields_are_ignored(tmp_path):
    (tmp_path / "automation-config.json").write_text(
        '{"version": 1, "adjustment": {"factor": NaN, "target_pct": Infinity,'
        ' "projected_at_reset": -Infinity}}'
    )
    state = CooldownStore(str(tmp_path / "automation-config.json")).load()

    assert state.adjustment.factor == 1.0
    assert state.adjustment.target_pct == 90.0
    assert state.adjustment.projected_at_reset_pct is None


def test_cycle_overwrites_record_with_non_finite_values(tmp_path):
    (tmp_path / "automation-config.json").write_text(
        '{"version": 1, "effective": {"lint_checker": NaN}}'
    )
    controller = make_controller(tmp_path)

    state = controller.run_cycle([Projection(METRIC_FIVE_HOUR, 95.0)], now=NOW)

    assert state is not None
    assert state.adjustment.factor > 1
    stored = json.loads((tmp_path / "automation-config.json").read_text())
    assert stored["effective"]["lint_checker"] == state.effective["lint_checker"]
