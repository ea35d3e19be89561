from __future__ import annotations

"""
File: warehouse_sim/sim/engine.py
Purpose: Deterministic tick orchestrator for the warehouse fleet.
Key responsibilities:
- Sequence congestion analysis, motion, collision arbitration and task assignment per tick.
- Own the robot/task arenas; components work on ids and in-place records.
- Expose snapshots, robot commands and an atomic reset to the host.
"""

from collections import deque
import copy
import logging
from typing import Any, Callable, Sequence

from warehouse_sim.sim.assigner import assign_pending_tasks
from warehouse_sim.sim.collision import resolve_collisions
from warehouse_sim.sim.congestion import CongestionLearner, CongestionZone
from warehouse_sim.sim.entities import (
    PRIORITY_RANK,
    TASK_PRIORITIES,
    TASK_TYPES,
    TERMINAL_TASK_STATES,
    Cell,
    Robot,
    Task,
    TaskPriority,
    TaskType,
)
from warehouse_sim.sim.grid import WarehouseGrid, build_default_layout
from warehouse_sim.sim.metrics import RunCounters, TickMetrics, compute_performance_metrics
from warehouse_sim.sim.motion import advance_robot
from warehouse_sim.sim.pathfinding import find_path
from warehouse_sim.sim.world import build_fleet, generate_scenario, scenario_hash

logger = logging.getLogger(__name__)


class SimulationEngine:
    """Simulation engine that advances robot/task state per tick.

    Robots are processed in ascending id order and tasks in submission order;
    both orders are part of the engine's contract.
    """
    def __init__(
        self,
        grid_width: int = 18,
        grid_height: int = 14,
        zone_size: int = 3,
        scenario: str = "standard",
        seed: int = 42,
        robots_override: int | None = None,
        robot_starts: Sequence[Cell] | None = None,
        layout: Callable[[int, int], WarehouseGrid] = build_default_layout,
        task_retention_s: float = 5.0,
        replan_after_blocked_ticks: int = 10,
        fail_after_blocked_ticks: int = 200,
    ) -> None:
        """Initialize the engine and build the initial scenario."""
        if replan_after_blocked_ticks <= 0 or fail_after_blocked_ticks <= 0:
            raise ValueError("blocked tick thresholds must be > 0")

        self.grid_width = grid_width
        self.grid_height = grid_height
        self.scenario = scenario
        self.seed = seed
        self.layout = layout
        self.task_retention_s = task_retention_s
        self.replan_after_blocked_ticks = replan_after_blocked_ticks
        self.fail_after_blocked_ticks = fail_after_blocked_ticks

        if robot_starts is None:
            grid, starts, self.scenario_hash = generate_scenario(
                scenario=scenario,
                seed=seed,
                grid_width=grid_width,
                grid_height=grid_height,
                robots_override=robots_override,
                layout=layout,
            )
        else:
            grid = layout(grid_width, grid_height)
            starts = list(robot_starts)
            self.scenario_hash = scenario_hash(scenario, seed, grid, starts)
        self.robot_starts: list[Cell] = starts

        self.learner = CongestionLearner(grid_width, grid_height, zone_size)
        self.grid = grid
        self.robots: list[Robot] = []
        self.tasks: dict[str, Task] = {}
        self.counters = RunCounters()
        self.tick_count = 0
        self.sim_time_s = 0.0
        self._task_seq = 0
        self._populate(grid)

    def _populate(self, grid: WarehouseGrid) -> None:
        self.grid = grid
        self.robots = build_fleet(grid, self.robot_starts)
        self.robots_by_id = {robot.id: robot for robot in self.robots}

    def reset(self) -> None:
        """Restore the initial fleet and clear tasks, zones and learner state."""
        self.tasks = {}
        self.counters = RunCounters()
        self.tick_count = 0
        self.sim_time_s = 0.0
        self._task_seq = 0
        self.learner.reset()
        self._populate(self.layout(self.grid_width, self.grid_height))
        logger.info("engine reset scenario=%s seed=%s robots=%s", self.scenario, self.seed, len(self.robots))

    def submit_task(
        self,
        task_type: TaskType,
        x: int,
        y: int,
        priority: TaskPriority = "medium",
    ) -> Task:
        """Enqueue a pending task and return it."""
        if task_type not in TASK_TYPES:
            raise ValueError(f"invalid task type: {task_type}")
        if priority not in TASK_PRIORITIES:
            raise ValueError(f"invalid priority: {priority}")
        if not self.grid.in_bounds(x, y):
            raise ValueError(f"task target out of bounds: ({x}, {y})")

        self._task_seq += 1
        task = Task(
            id=f"task_{self._task_seq}",
            type=task_type,
            x=x,
            y=y,
            priority=priority,
            status="pending",
            created_at=self.sim_time_s,
        )
        self.tasks[task.id] = task
        return task

    def tick(self, delta_time: float, speed_multiplier: float = 1.0) -> TickMetrics:
        """Advance the simulation by one step and return the metrics delta."""
        delta = TickMetrics(tick=self.tick_count)
        self.sim_time_s += delta_time
        now = self.sim_time_s

        self.learner.analyze(self.robots)

        for robot in self.robots:
            if robot.status != "moving":
                continue
            robot.speed = self.learner.get_adaptive_speed(robot, self.robots, self._task_priority(robot))
            result = advance_robot(robot, self.grid, delta_time, speed_multiplier)
            delta.distance += result.distance
            if result.arrived:
                self._finish_task(robot, "completed", now, delta)
            elif result.blocked:
                self._handle_blocked(robot, now, delta)

        report = resolve_collisions(self.robots, self._priority_rank)
        for event in report.events:
            if event.kind == "critical_avoidance":
                first = self.robots_by_id[event.robot_ids[0]]
                self.learner.record_collision(first.x, first.y)
        delta.collisions_avoided = report.collisions_avoided
        delta.near_misses = report.near_misses
        delta.critical_avoidances = report.critical_avoidances
        delta.events = report.events

        for task in self.tasks.values():
            if task.status == "assigned":
                task.status = "in_progress"
        self._purge_finished_tasks(now)

        assignments = assign_pending_tasks(list(self.tasks.values()), self.robots, self.grid)
        delta.paths_calculated += len(assignments)
        for assignment in assignments:
            logger.debug(
                "task assigned task_id=%s robot_id=%s waypoints=%s",
                assignment.task_id,
                assignment.robot_id,
                len(assignment.path),
            )

        # Baseline is the first nonzero average congestion, taken at end of tick.
        if self.learner.state.baseline_congestion is None:
            self.learner.capture_baseline()

        self.counters.add(delta)
        self.tick_count += 1
        return delta

    def _task_priority(self, robot: Robot) -> TaskPriority | None:
        task = self.tasks.get(robot.current_task_id or "")
        return task.priority if task is not None else None

    def _priority_rank(self, robot: Robot) -> int:
        priority = self._task_priority(robot)
        return PRIORITY_RANK[priority] if priority is not None else 0

    def _finish_task(self, robot: Robot, outcome: str, now: float, delta: TickMetrics) -> None:
        """Close out the robot's task as completed or failed and free the robot."""
        task = self.tasks.get(robot.current_task_id or "")
        robot.current_task_id = None
        robot.status = "idle"
        robot.target = None
        robot.path.clear()
        robot.blocked_ticks = 0
        if task is None:
            return

        task.status = outcome
        task.completed_at = now
        if outcome == "completed":
            delta.tasks_completed += 1
            self.counters.tasks_completed += 1
            self.counters.completion_times.append(now - task.created_at)
        else:
            delta.tasks_failed += 1
            self.counters.tasks_failed += 1
            logger.info("task failed task_id=%s robot_id=%s", task.id, robot.id)
        self.learner.update_learning_rate(self.counters.success_ratio())

    def _handle_blocked(self, robot: Robot, now: float, delta: TickMetrics) -> None:
        """Detour around, or eventually give up on, a waypoint held by another robot."""
        if robot.blocked_ticks >= self.fail_after_blocked_ticks:
            self._finish_task(robot, "failed", now, delta)
            return
        if robot.target is None or robot.blocked_ticks % self.replan_after_blocked_ticks != 0:
            return
        path = find_path(robot.cell, robot.target, self.grid, exclude_robot_id=robot.id)
        if path:
            robot.path = deque(path)
            delta.paths_calculated += 1
            logger.debug("robot replanned robot_id=%s blocked_ticks=%s", robot.id, robot.blocked_ticks)

    def _purge_finished_tasks(self, now: float) -> None:
        self.tasks = {
            task_id: task
            for task_id, task in self.tasks.items()
            if task.status not in TERMINAL_TASK_STATES
            or task.completed_at is None
            or now - task.completed_at < self.task_retention_s
        }

    def _release_robot(self, robot: Robot, status: str) -> None:
        """Stop a robot and hand its task back to the pending queue."""
        task = self.tasks.get(robot.current_task_id or "")
        if task is not None and task.status not in TERMINAL_TASK_STATES:
            task.status = "pending"
            task.assigned_robot_id = None
        robot.current_task_id = None
        robot.path.clear()
        robot.target = None
        robot.blocked_ticks = 0
        robot.status = status

    def recall_robot(self, robot_id: int) -> bool:
        """Send a robot to charge. Returns False for unknown or already charging robots."""
        robot = self.robots_by_id.get(robot_id)
        if robot is None or robot.status == "charging":
            return False
        self._release_robot(robot, "charging")
        logger.info("robot recalled robot_id=%s", robot_id)
        return True

    def fault_robot(self, robot_id: int) -> bool:
        """Put a robot into the error state; it neither moves nor takes tasks."""
        robot = self.robots_by_id.get(robot_id)
        if robot is None or robot.status == "error":
            return False
        self._release_robot(robot, "error")
        logger.info("robot faulted robot_id=%s", robot_id)
        return True

    def resume_robot(self, robot_id: int) -> bool:
        """Return a charging or faulted robot to the idle pool."""
        robot = self.robots_by_id.get(robot_id)
        if robot is None or robot.status not in {"charging", "error"}:
            return False
        robot.status = "idle"
        return True

    def get_robot_states(self) -> list[Robot]:
        return copy.deepcopy(self.robots)

    def get_tasks(self) -> list[Task]:
        return copy.deepcopy(list(self.tasks.values()))

    def get_zones(self) -> list[CongestionZone]:
        return copy.deepcopy(self.learner.get_zones())

    def get_learning_metrics(self) -> dict[str, float | int]:
        return self.learner.get_metrics()

    def get_performance_metrics(self) -> dict[str, float | int]:
        return compute_performance_metrics(list(self.tasks.values()), self.robots, self.counters)

    def snapshot(self) -> dict[str, Any]:
        """Return a serializable snapshot of current sim state."""
        return {
            "scenario": self.scenario,
            "seed": self.seed,
            "scenario_hash": self.scenario_hash,
            "tick": self.tick_count,
            "sim_time_s": round(self.sim_time_s, 3),
            "robots": [
                {
                    "id": r.id,
                    "label": r.label,
                    "x": round(r.x, 3),
                    "y": round(r.y, 3),
                    "speed": round(r.speed, 3),
                    "battery": round(r.battery, 3),
                    "status": r.status,
                    "target": list(r.target) if r.target is not None else None,
                    "path": [list(cell) for cell in r.path],
                    "current_task_id": r.current_task_id,
                }
                for r in self.robots
            ],
            "tasks": [
                {
                    "id": t.id,
                    "type": t.type,
                    "x": t.x,
                    "y": t.y,
                    "priority": t.priority,
                    "status": t.status,
                    "assigned_robot_id": t.assigned_robot_id,
                    "created_at": round(t.created_at, 3),
                    "completed_at": round(t.completed_at, 3) if t.completed_at is not None else None,
                }
                for t in self.tasks.values()
            ],
            "zones": [
                {
                    "x": z.x,
                    "y": z.y,
                    "width": z.width,
                    "height": z.height,
                    "congestion_level": round(z.congestion_level, 3),
                    "robot_count": z.robot_count,
                    "avg_speed": round(z.avg_speed, 3),
                    "collision_count": z.collision_count,
                }
                for z in self.learner.get_zones()
            ],
            "learning": {k: round(v, 6) if isinstance(v, float) else v for k, v in self.get_learning_metrics().items()},
            "metrics": self.get_performance_metrics(),
        }
