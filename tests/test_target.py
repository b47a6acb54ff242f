import math

import numpy as np
import pytest

from chain import arm_storage
from mocap_ik.errors import Interrupted
from mocap_ik.target import EvalContext, IKTarget
from mocap_ik.tasks import CoordinateTask, MarkerTask, ValueType

MARKER_TASKS = [MarkerTask("upper_mid"), MarkerTask("elbow_m", weight=2.0), MarkerTask("wrist", weight=0.5)]
POSES = [
    {"shoulder": 0.3, "elbow": 0.5},
    {"shoulder": 0.4, "elbow": 0.7},
]


def _target(arm, tasks=MARKER_TASKS, coordinates=None, poses=POSES):
    return IKTarget(arm, tasks, arm_storage(arm, poses, coordinates=coordinates))


def _manual_objective(target):
    total = 0.0
    for m in target.maps.markers:
        if not m.valid:
            continue
        marker_error = 0.0
        for j in range(3):
            err = float(m.experimental_position[j]) - float(m.computed_position[j])
            marker_error += err * err
        total += m.weight * marker_error
    for info in target.maps.weighted_entries():
        err = info.experimental_value - target.model.get_coordinate_value(info.index)
        total += info.weight * (err * err)
    return total


# ── Frame binding ─────────────────────────────────────────────────────────

def test_prescribed_from_file_is_pushed_and_lock_restored(arm):
    target = _target(
        arm,
        MARKER_TASKS + [CoordinateTask("tx", value_type=ValueType.FROM_FILE)],
        coordinates={"tx": np.array([0.1, 0.2])},
    )
    target.prepare_to_solve(1)
    assert arm.get_coordinate_value(0) == pytest.approx(0.2)
    assert arm.get_locked(0)
    assert target.time == pytest.approx(0.01)


def test_prescribed_constant_uses_default(arm):
    arm.coords[0].default = 0.05
    target = _target(arm)
    arm.set_locked(0, False)
    arm.set_coordinate_value(0, 0.9)
    arm.set_locked(0, True)
    target.prepare_to_solve(0)
    assert arm.get_coordinate_value(0) == pytest.approx(0.05)


def test_initial_guess_from_file_or_current_value(arm):
    arm.set_coordinate_value(1, 0.25)
    target = _target(
        arm,
        MARKER_TASKS + [CoordinateTask("elbow", value_type=ValueType.FROM_FILE)],
        coordinates={"elbow": np.array([0.5, 0.7])},
    )
    guess = target.prepare_to_solve(1)
    np.testing.assert_allclose(guess, [0.25, 0.7])
    # unprescribed coordinates are not written by the binder
    assert arm.get_coordinate_value(2) == 0.0


def test_weighted_targets_bound_per_frame(arm):
    target = _target(
        arm,
        MARKER_TASKS + [
            CoordinateTask("shoulder", weight=1.0, value_type=ValueType.MANUAL_VALUE, value=0.1),
            CoordinateTask("elbow", weight=2.0, value_type=ValueType.FROM_FILE),
        ],
        coordinates={"elbow": np.array([0.5, 0.7])},
    )
    target.prepare_to_solve(1)
    shoulder, elbow = target.maps.weighted_entries()
    assert shoulder.experimental_value == pytest.approx(0.1)
    assert elbow.experimental_value == pytest.approx(0.7)


def test_nan_marker_is_invalid(arm):
    storage = arm_storage(arm, POSES, missing=[(1, "wrist", 1)])
    target = IKTarget(arm, MARKER_TASKS, storage)

    target.prepare_to_solve(0)
    assert all(m.valid for m in target.maps.markers)
    target.prepare_to_solve(1)
    assert [m.valid for m in target.maps.markers] == [True, True, False]


# ── Evaluation ────────────────────────────────────────────────────────────

def test_zero_residual_at_true_pose(arm):
    target = _target(arm)
    target.prepare_to_solve(0)
    e = target.residuals(np.array([0.3, 0.5]))
    np.testing.assert_allclose(e, 0.0, atol=1e-12)
    assert target.objective(np.array([0.3, 0.5])) == pytest.approx(0.0, abs=1e-20)


def test_residual_layout_and_weights(arm):
    target = _target(arm, MARKER_TASKS + [CoordinateTask("elbow", weight=4.0, value_type=ValueType.MANUAL_VALUE, value=1.0)])
    target.prepare_to_solve(0)
    x = np.array([0.0, 0.0])
    e = target.residuals(x)
    assert e.shape == (10,)

    for k, m in enumerate(target.maps.markers):
        expected = math.sqrt(m.weight) * (m.experimental_position - m.computed_position)
        np.testing.assert_allclose(e[3 * k:3 * k + 3], expected)
    assert e[9] == pytest.approx(2.0 * (1.0 - 0.0))


def test_residual_size_is_fixed_across_frames(arm):
    target = _target(arm)
    for frame in range(2):
        target.prepare_to_solve(frame)
        assert target.residuals(np.zeros(2)).shape == (target.residual_size,)


def test_objective_matches_manual_sum(arm):
    target = _target(arm, MARKER_TASKS + [CoordinateTask("elbow", weight=3.0, value_type=ValueType.MANUAL_VALUE, value=0.2)])
    target.prepare_to_solve(1)
    f = target.objective(np.array([0.1, -0.4]))
    assert f == _manual_objective(target)
    assert f == target.error_summary.total_weighted


def test_objective_equals_squared_residual_norm(arm):
    target = _target(arm)
    target.prepare_to_solve(0)
    x = np.array([0.2, 0.1])
    e = target.residuals(x)
    assert target.objective(x) == pytest.approx(float(e @ e))


def test_invalid_marker_rows_zero_and_excluded_from_diagnostics(arm):
    storage = arm_storage(arm, POSES, missing=[(0, "wrist", 0)])
    target = IKTarget(arm, MARKER_TASKS, storage)
    target.prepare_to_solve(0)

    e = target.residuals(np.array([-1.0, 2.0]))
    np.testing.assert_array_equal(e[6:9], 0.0)
    assert target.error_summary.worst_marker != "wrist"
    assert target.objective(np.array([-1.0, 2.0])) == _manual_objective(target)

    target.objective(np.array([0.4, 0.0]))
    valid = [m for m in target.maps.markers if m.valid]
    assert len(valid) == 2
    sq = [float(np.sum((m.experimental_position - m.computed_position) ** 2)) for m in valid]
    assert target.error_summary.marker_rms == pytest.approx(math.sqrt(sum(sq) / 2))


def test_reevaluation_is_deterministic(arm):
    target = _target(arm)
    target.prepare_to_solve(1)
    x = np.array([0.05, 0.9])
    e1 = target.residuals(x).copy()
    target.residuals(np.array([1.0, -1.0]))
    e2 = target.residuals(x)
    np.testing.assert_array_equal(e1, e2)


def test_only_last_write_recomputes(arm):
    target = _target(arm)
    target.prepare_to_solve(0)
    before = arm.forward_calls
    target.set_parameters(np.array([0.1, 0.2]))
    assert arm.forward_calls == before + 1


def test_zero_weight_file_coordinate_guesses_but_does_not_track(arm):
    target = _target(
        arm,
        MARKER_TASKS + [CoordinateTask("elbow", weight=0.0, value_type=ValueType.FROM_FILE)],
        coordinates={"elbow": np.array([0.5, 0.7])},
    )
    guess = target.prepare_to_solve(0)
    assert guess[1] == pytest.approx(0.5)
    assert target.residual_size == 9
    e = target.residuals(guess)
    assert e.shape == (9,)


def test_diagnostics_worst_marker(arm):
    target = _target(arm)
    target.prepare_to_solve(0)
    target.objective(np.array([0.3, 1.5]))   # only the lower link is off
    s = target.error_summary
    assert s.worst_marker == "wrist"
    assert s.worst_marker_error > 0
    assert s.marker_rms > 0
    assert s.worst_coordinate == ""
    assert "wrist" in s.format()


def test_gradient_context_leaves_summary(arm):
    target = _target(arm)
    target.prepare_to_solve(0)
    target.objective(np.array([0.3, 0.5]))
    before = target.error_summary
    target.objective(np.array([1.0, 1.0]), context=EvalContext.GRADIENT)
    assert target.error_summary is before


def test_verbose_logs_summary(arm, caplog):
    target = _target(arm)
    target.prepare_to_solve(0)
    with caplog.at_level("INFO", logger="mocap_ik"):
        target.print_performance(np.array([0.0, 0.0]))
    assert "total weighted squared error" in caplog.text


# ── Cancellation ──────────────────────────────────────────────────────────

def test_interrupt_stops_every_evaluation(arm):
    target = _target(arm)
    target.prepare_to_solve(0)
    target.objective(np.array([0.1, 0.1]))
    summary = target.error_summary
    calls = arm.forward_calls

    target.interrupt()
    with pytest.raises(Interrupted):
        target.objective(np.array([0.2, 0.2]))
    with pytest.raises(Interrupted):
        target.residuals(np.array([0.2, 0.2]))
    assert arm.forward_calls == calls
    assert target.error_summary is summary

    target.clear_interrupt()
    target.objective(np.array([0.2, 0.2]))


# ── Reporting ─────────────────────────────────────────────────────────────

def test_reporting_arrays(arm):
    target = _target(arm)
    target.prepare_to_solve(1)
    target.objective(np.array([0.4, 0.7]))

    np.testing.assert_allclose(target.computed_marker_locations(), target.experimental_marker_locations(), atol=1e-12)
    assert target.computed_marker_locations().shape == (3, 3)
    assert target.output_marker_names() == ["upper_mid", "elbow_m", "wrist"]
    assert target.unprescribed_coordinate_names() == ["shoulder", "elbow"]
    assert target.prescribed_coordinate_names() == ["tx"]
    np.testing.assert_allclose(target.prescribed_coordinate_values(), [0.0])


def test_describe_tasks(arm):
    target = _target(
        arm,
        MARKER_TASKS + [
            CoordinateTask("elbow", weight=2.0, value_type=ValueType.MANUAL_VALUE, value=0.25),
            CoordinateTask("tx", value_type=ValueType.FROM_FILE),
        ],
        coordinates={"tx": np.array([0.1, 0.2])},
    )
    text = target.describe_tasks()
    assert "Marker Tasks:" in text
    assert "elbow_m: weight 2 from file (columns 3-5)" in text
    assert "elbow: weight 2 constant target value of 0.25" in text
    assert "Prescribed Coordinate Tasks:" in text
    assert "tx: from file (column 9)" in text
