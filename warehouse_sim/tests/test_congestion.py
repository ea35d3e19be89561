from collections import deque

import pytest

from warehouse_sim.sim.congestion import (
    HISTORY_CAP,
    MAX_LEARNING_RATE,
    MIN_LEARNING_RATE,
    CongestionLearner,
    LearningState,
    efficiency_gain,
    optimal_speed,
)
from warehouse_sim.sim.entities import Robot


def _robot(robot_id, x, y, status="moving", speed=1.0, path=()):
    return Robot(
        id=robot_id,
        x=float(x),
        y=float(y),
        speed=speed,
        status=status,
        path=deque(path),
        cell=(int(x), int(y)),
    )


def _cluster(start_id=1):
    """Three moving robots packed into zone (0, 0)."""
    return [
        _robot(start_id, 0, 0),
        _robot(start_id + 1, 1, 0),
        _robot(start_id + 2, 0, 1),
    ]


def test_invalid_zone_size_rejected():
    with pytest.raises(ValueError):
        CongestionLearner(18, 14, zone_size=0)
    with pytest.raises(ValueError):
        CongestionLearner(0, 14, zone_size=3)


@pytest.mark.parametrize("width,height,zone_size", [(18, 14, 3), (10, 7, 3), (5, 5, 5), (4, 9, 2)])
def test_zones_tile_grid_exactly(width, height, zone_size):
    learner = CongestionLearner(width, height, zone_size)
    zones = learner.get_zones()

    assert sum(z.width * z.height for z in zones) == width * height
    for y in range(height):
        for x in range(width):
            containing = [z for z in zones if z.contains(x, y)]
            assert len(containing) == 1
            assert learner.zone_at(x, y) is containing[0]


def test_zone_lookup_is_floor_division():
    learner = CongestionLearner(18, 14, 3)
    assert learner.zone_key(2.99, 0.0) == (0, 0)
    assert learner.zone_key(3.0, 5.5) == (1, 1)
    assert learner.zone_at(-0.5, 0.0) is None


def test_congestion_counts_only_moving_robots():
    learner = CongestionLearner(18, 14, 3)
    idle = [_robot(i, x, y, status="idle") for i, (x, y) in enumerate([(0, 0), (1, 0), (0, 1)], start=1)]

    learner.analyze(idle)

    zone = learner.zone_at(0, 0)
    assert zone.congestion_level == 0.0
    assert zone.robot_count == 0


def test_congestion_level_from_neighbours():
    learner = CongestionLearner(18, 14, 3)
    learner.analyze([_robot(1, 0, 0), _robot(2, 1, 0)])

    zone = learner.zone_at(0, 0)
    assert zone.robot_count == 2
    assert zone.congestion_level == pytest.approx(1 / 3)


def test_congestion_level_is_bounded():
    learner = CongestionLearner(18, 14, 3)
    robots = [_robot(i, (i % 3) * 0.5, (i // 3) * 0.5) for i in range(1, 9)]

    learner.analyze(robots)

    for zone in learner.get_zones():
        assert 0.0 <= zone.congestion_level <= 1.0
    assert learner.zone_at(0, 0).congestion_level == 1.0


def test_history_is_capped():
    learner = CongestionLearner(6, 6, 3)
    for _ in range(HISTORY_CAP + 10):
        learner.analyze(_cluster())
    assert len(learner.zone_at(0, 0).history) == HISTORY_CAP


def test_optimal_speed_bands():
    assert optimal_speed(1.0, 1.0) == 0.4
    assert optimal_speed(0.6, 0.6) == 0.6
    assert optimal_speed(0.4, 0.4) == 0.8
    assert optimal_speed(0.0, 0.0) == 1.0
    assert optimal_speed(0.0, 1.0) == 1.0


def test_speed_is_smoothed_toward_target():
    learner = CongestionLearner(18, 14, 3)
    robot = _robot(1, 9, 9, speed=0.5)
    learner.analyze([robot])

    assert learner.get_adaptive_speed(robot, [robot]) == pytest.approx(0.55)
    assert learner.state.speed_adjustments == 1


@pytest.mark.parametrize("speed", [-5.0, 0.0, 0.1, 0.5, 1.0, 1.5, 3.0, 100.0])
@pytest.mark.parametrize("priority", [None, "low", "critical"])
def test_adaptive_speed_is_clamped(speed, priority):
    learner = CongestionLearner(18, 14, 3)
    robots = _cluster()
    robots[0].speed = speed
    learner.analyze(robots)

    result = learner.get_adaptive_speed(robots[0], robots, priority)

    assert 0.2 <= result <= 1.2


def test_out_of_grid_robot_keeps_clamped_speed():
    learner = CongestionLearner(6, 6, 3)
    robot = _robot(1, 40, 40, speed=5.0)
    assert learner.get_adaptive_speed(robot, [robot]) == 1.2


def test_low_priority_slowed_in_congested_zone():
    learner = CongestionLearner(18, 14, 3)
    robots = _cluster()
    learner.analyze(robots)

    without_priority = learner.get_adaptive_speed(robots[0], robots)
    low_priority = learner.get_adaptive_speed(robots[0], robots, "low")

    assert without_priority == pytest.approx(0.98)
    assert low_priority == pytest.approx(0.95)
    assert learner.state.total_congestion_events == 2


def test_lookahead_into_congested_zone_caps_target():
    learner = CongestionLearner(18, 14, 3)
    robots = _cluster()
    runner = _robot(10, 9, 0, path=[(8, 0), (2, 0), (1, 0)])
    learner.analyze(robots + [runner])

    assert learner.zone_at(0, 0).congestion_level > 0.6
    assert learner.get_adaptive_speed(runner, robots + [runner]) == pytest.approx(0.95)

    runner.path = deque([(10, 0)])
    assert learner.get_adaptive_speed(runner, robots + [runner]) == pytest.approx(1.0)


def test_record_collision_slows_zone_and_raises_learning_rate():
    learner = CongestionLearner(18, 14, 3)
    zone = learner.zone_at(4, 4)

    learner.record_collision(4, 4)

    assert zone.collision_count == 1
    assert zone.avg_speed == pytest.approx(0.85)
    assert learner.state.learning_rate == pytest.approx(0.11)

    for _ in range(50):
        learner.record_collision(4, 4)
    assert zone.avg_speed == 0.3
    assert learner.state.learning_rate == MAX_LEARNING_RATE


def test_learning_state_outcome_transitions():
    state = LearningState()

    assert state.after_task_outcome(0.95).learning_rate == pytest.approx(0.095)
    assert state.after_task_outcome(0.5).learning_rate == pytest.approx(0.11)
    assert state.after_task_outcome(0.8) == state

    decayed = state
    boosted = state
    for _ in range(100):
        decayed = decayed.after_task_outcome(1.0)
        boosted = boosted.after_task_outcome(0.0)
    assert decayed.learning_rate == MIN_LEARNING_RATE
    assert boosted.learning_rate == MAX_LEARNING_RATE


def test_learning_state_is_immutable_between_steps():
    state = LearningState()
    next_state = state.after_collision()
    assert state.learning_rate == 0.1
    assert next_state.learning_rate == pytest.approx(0.11)


def test_baseline_captured_once_on_first_nonzero_reading():
    learner = CongestionLearner(6, 6, 3)

    assert learner.capture_baseline() is False
    assert learner.get_metrics()["efficiency_gain"] == 0.0

    learner.analyze(_cluster())
    assert learner.capture_baseline() is True
    baseline = learner.state.baseline_congestion
    assert baseline == pytest.approx(learner.average_congestion())

    learner.analyze([_robot(1, 0, 0), _robot(2, 1, 0)])
    learner.capture_baseline()
    assert learner.state.baseline_congestion == baseline
    assert learner.get_metrics()["efficiency_gain"] == pytest.approx(50.0)


def test_efficiency_gain_is_floored():
    assert efficiency_gain(None, 0.5) == 0.0
    assert efficiency_gain(0.5, 0.25) == pytest.approx(50.0)
    assert efficiency_gain(0.5, 0.75) == 0.0


def test_metrics_report_high_traffic_zones():
    learner = CongestionLearner(18, 14, 3)
    learner.analyze(_cluster())
    metrics = learner.get_metrics()

    assert metrics["high_traffic_zones"] == 1
    assert metrics["learning_rate"] == 0.1
    assert metrics["avg_congestion_level"] == pytest.approx((2 / 3) / 30)


def test_reset_restores_initial_state():
    learner = CongestionLearner(18, 14, 3)
    learner.analyze(_cluster())
    learner.record_collision(0, 0)
    learner.capture_baseline()

    learner.reset()

    assert learner.state == LearningState()
    assert all(z.congestion_level == 0.0 and not z.history for z in learner.get_zones())
