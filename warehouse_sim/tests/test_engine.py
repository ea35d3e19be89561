import logging

import pytest

from warehouse_sim.sim.engine import SimulationEngine
from warehouse_sim.sim.grid import WarehouseGrid
from warehouse_sim.sim.world import TaskGenerator


def _open_layout(width, height):
    return WarehouseGrid(width, height)


def _collapse(values):
    seen = []
    for value in values:
        if not seen or seen[-1] != value:
            seen.append(value)
    return seen


def _run_busy(seed, ticks, min_tasks=5, check=None):
    engine = SimulationEngine(scenario="standard", seed=seed)
    generator = TaskGenerator(seed)
    for _ in range(ticks):
        while len(engine.tasks) < min_tasks:
            engine.submit_task(**generator.draw(engine.grid))
        engine.tick(0.05, 1.0)
        if check is not None:
            check(engine)
    return engine


def test_single_robot_delivers_across_the_floor():
    engine = SimulationEngine(robot_starts=[(2, 2)])
    task = engine.submit_task("pickup", 15, 11, "high")
    robot = engine.robots[0]

    robot_states = [robot.status]
    task_states = [task.status]
    total_distance = 0.0
    for _ in range(100):
        delta = engine.tick(0.05, 1.0)
        total_distance += delta.distance
        robot_states.append(robot.status)
        task_states.append(task.status)

    assert _collapse(robot_states) == ["idle", "moving", "idle"]
    assert _collapse(task_states) == ["pending", "assigned", "in_progress", "completed"]
    assert (robot.x, robot.y) == (15.0, 11.0)
    assert robot.current_task_id is None
    assert 22 <= total_distance <= 26
    assert engine.counters.tasks_completed == 1
    assert engine.get_performance_metrics()["total_distance"] == pytest.approx(total_distance)
    assert robot.battery < 100.0


def test_task_is_retained_briefly_after_completion():
    engine = SimulationEngine(robot_starts=[(2, 2)], task_retention_s=1.0)
    task = engine.submit_task("scan", 2, 3)

    for _ in range(5):
        engine.tick(0.05, 1.0)
    assert task.status == "completed"
    assert task.id in engine.tasks

    for _ in range(30):
        engine.tick(0.05, 1.0)
    assert task.id not in engine.tasks


def test_no_cell_has_two_owners_and_invariants_hold():
    def check(engine):
        owners = engine.grid.occupied_cells()
        assert sorted(owners.values()) == [r.id for r in engine.robots]
        for robot in engine.robots:
            assert owners[robot.cell] == robot.id
            assert engine.grid.cell_at(*robot.cell).kind != "obstacle"
            assert 0.2 <= robot.speed <= 1.2
        for zone in engine.learner.get_zones():
            assert 0.0 <= zone.congestion_level <= 1.0

    engine = _run_busy(seed=7, ticks=400, check=check)

    assert engine.counters.tasks_completed > 0
    assert engine.counters.paths_calculated > 0


def test_busy_runs_are_deterministic_for_same_seed():
    engine_a = _run_busy(seed=42, ticks=250)
    engine_b = _run_busy(seed=42, ticks=250)

    assert engine_a.get_performance_metrics() == engine_b.get_performance_metrics()
    assert engine_a.get_learning_metrics() == engine_b.get_learning_metrics()
    assert engine_a.snapshot() == engine_b.snapshot()


def test_reset_is_idempotent():
    engine = _run_busy(seed=3, ticks=60)

    engine.reset()
    first = engine.snapshot()
    engine.reset()
    second = engine.snapshot()

    assert first == second
    assert first == SimulationEngine(scenario="standard", seed=3).snapshot()
    assert first["tasks"] == []
    assert first["metrics"]["tasks_completed"] == 0


def test_reset_restores_fleet_positions_and_occupancy():
    engine = _run_busy(seed=11, ticks=80)

    engine.reset()

    assert [(r.x, r.y) for r in engine.robots] == [(float(x), float(y)) for x, y in engine.robot_starts]
    assert all(r.status == "idle" and r.speed == 1.0 for r in engine.robots)
    assert len(engine.grid.occupied_cells()) == len(engine.robots)


def test_recalled_robot_releases_task_and_stops():
    engine = SimulationEngine(robot_starts=[(2, 2)])
    task = engine.submit_task("delivery", 2, 8)
    robot = engine.robots[0]
    for _ in range(3):
        engine.tick(0.05, 1.0)
    assert robot.status == "moving"

    assert engine.recall_robot(robot.id)
    assert not engine.recall_robot(robot.id)
    assert robot.status == "charging"
    assert task.status == "pending"
    assert task.assigned_robot_id is None

    position = (robot.x, robot.y)
    for _ in range(5):
        engine.tick(0.05, 1.0)
    assert (robot.x, robot.y) == position
    assert task.status == "pending"

    assert engine.resume_robot(robot.id)
    engine.tick(0.05, 1.0)
    assert robot.status == "moving"
    assert task.status == "assigned"


def test_faulted_robot_is_never_assigned():
    engine = SimulationEngine(robot_starts=[(2, 2)])
    assert engine.fault_robot(1)
    task = engine.submit_task("pickup", 2, 5)

    for _ in range(10):
        engine.tick(0.05, 1.0)

    assert task.status == "pending"
    assert engine.robots[0].status == "error"
    assert not engine.resume_robot(99)


def test_blocked_robot_replans_around_obstruction():
    engine = SimulationEngine(
        grid_width=6,
        grid_height=3,
        robot_starts=[(0, 1)],
        layout=_open_layout,
        replan_after_blocked_ticks=2,
        fail_after_blocked_ticks=50,
    )
    task = engine.submit_task("pickup", 5, 1)
    engine.tick(0.05, 1.0)
    engine.grid.claim(3, 1, 99)

    visited = set()
    for _ in range(30):
        engine.tick(0.05, 1.0)
        visited.add(engine.robots[0].cell)

    assert task.status == "completed"
    assert (3, 1) not in visited
    assert engine.counters.paths_calculated >= 2
    assert engine.counters.tasks_failed == 0


def test_robot_gives_up_when_permanently_blocked():
    engine = SimulationEngine(
        grid_width=6,
        grid_height=1,
        robot_starts=[(0, 0)],
        layout=_open_layout,
        replan_after_blocked_ticks=2,
        fail_after_blocked_ticks=5,
    )
    task = engine.submit_task("pickup", 5, 0)
    engine.tick(0.05, 1.0)
    engine.grid.claim(3, 0, 99)

    for _ in range(12):
        engine.tick(0.05, 1.0)

    robot = engine.robots[0]
    assert task.status == "failed"
    assert task.completed_at is not None
    assert robot.status == "idle"
    assert robot.cell == (2, 0)
    assert engine.grid.owner_of(2, 0) == robot.id
    assert engine.counters.tasks_failed == 1
    assert engine.get_performance_metrics()["tasks_failed"] == 1


def test_submit_task_validates_input():
    engine = SimulationEngine(robot_starts=[(2, 2)])
    with pytest.raises(ValueError):
        engine.submit_task("pickup", 18, 0)
    with pytest.raises(ValueError):
        engine.submit_task("pickup", 2, 3, "urgent")
    with pytest.raises(ValueError):
        engine.submit_task("recharge", 2, 3)


def test_invalid_configuration_is_rejected():
    with pytest.raises(ValueError):
        SimulationEngine(scenario="nope")
    with pytest.raises(ValueError):
        SimulationEngine(zone_size=0)
    with pytest.raises(ValueError):
        SimulationEngine(grid_width=0)
    with pytest.raises(ValueError):
        SimulationEngine(robot_starts=[(0, 0)])
    with pytest.raises(ValueError):
        SimulationEngine(robot_starts=[(2, 2), (2, 2)])


def test_snapshots_are_copies():
    engine = SimulationEngine(robot_starts=[(2, 2)])
    robots = engine.get_robot_states()
    robots[0].x = 99.0
    zones = engine.get_zones()
    zones[0].congestion_level = 1.0

    assert engine.robots[0].x == 2.0
    assert engine.learner.get_zones()[0].congestion_level == 0.0


def test_learning_metrics_stay_in_range_under_load():
    engine = _run_busy(seed=5, ticks=200, min_tasks=8)
    metrics = engine.get_learning_metrics()

    assert 0.05 <= metrics["learning_rate"] <= 0.3
    assert metrics["efficiency_gain"] >= 0.0
    assert 0.0 <= metrics["avg_congestion_level"] <= 1.0


def test_assignment_is_logged_with_waypoint_count(caplog):
    caplog.set_level(logging.DEBUG, logger="warehouse_sim.sim.engine")
    engine = SimulationEngine(robot_starts=[(2, 2)])
    engine.submit_task("pickup", 2, 3)

    engine.tick(0.05, 1.0)

    assert "task assigned task_id=task_1 robot_id=1 waypoints=2" in caplog.text


def test_baseline_waits_for_congestion_then_holds():
    engine = SimulationEngine(robot_starts=[(2, 2)])
    engine.submit_task("pickup", 15, 11, "high")
    for _ in range(100):
        engine.tick(0.05, 1.0)
    assert engine.learner.state.baseline_congestion is None

    engine = SimulationEngine(scenario="chaos", seed=5)
    generator = TaskGenerator(5)
    baselines = []
    for _ in range(200):
        while len(engine.tasks) < 12:
            engine.submit_task(**generator.draw(engine.grid))
        engine.tick(0.05, 1.0)
        if engine.learner.state.baseline_congestion is not None:
            baselines.append(engine.learner.state.baseline_congestion)

    assert baselines
    assert baselines[0] > 0.0
    assert set(baselines) == {baselines[0]}
