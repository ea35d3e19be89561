from __future__ import annotations

"""
File: warehouse_sim/sim/metrics.py
Purpose: Per-tick metric deltas and cumulative run metrics.
Key responsibilities:
- Carry what one tick produced (distance, paths, proximity events).
- Accumulate run counters and derive UI-facing performance metrics.
"""

from collections import deque
from dataclasses import dataclass, field
from typing import Sequence

from warehouse_sim.sim.entities import CollisionEvent, Robot, Task


COMPLETION_WINDOW = 20


@dataclass
class TickMetrics:
    """Metrics delta returned by a single engine tick."""
    tick: int
    distance: float = 0.0
    paths_calculated: int = 0
    collisions_avoided: int = 0
    near_misses: int = 0
    critical_avoidances: int = 0
    tasks_completed: int = 0
    tasks_failed: int = 0
    events: list[CollisionEvent] = field(default_factory=list)


@dataclass
class RunCounters:
    """Cumulative counters for the current run."""
    tasks_completed: int = 0
    tasks_failed: int = 0
    collisions_avoided: int = 0
    near_misses: int = 0
    critical_avoidances: int = 0
    paths_calculated: int = 0
    total_distance: float = 0.0
    completion_times: deque[float] = field(default_factory=lambda: deque(maxlen=COMPLETION_WINDOW))

    def add(self, delta: TickMetrics) -> None:
        """Fold a tick delta in. Task outcomes are counted as they happen."""
        self.collisions_avoided += delta.collisions_avoided
        self.near_misses += delta.near_misses
        self.critical_avoidances += delta.critical_avoidances
        self.paths_calculated += delta.paths_calculated
        self.total_distance += delta.distance

    def success_ratio(self) -> float:
        """Share of completions against avoidance interventions and failures."""
        return self.tasks_completed / (self.tasks_completed + self.collisions_avoided + self.tasks_failed + 1)


def compute_performance_metrics(
    tasks: Sequence[Task],
    robots: Sequence[Robot],
    counters: RunCounters,
) -> dict[str, float | int]:
    """Compute fleet-level metrics used by the host UI."""
    moving = sum(1 for r in robots if r.status == "moving")
    utilization = (moving / len(robots) * 100.0) if robots else 0.0
    times = list(counters.completion_times)
    avg_completion_time = sum(times) / len(times) if times else 0.0

    return {
        "tasks_completed": counters.tasks_completed,
        "tasks_failed": counters.tasks_failed,
        "tasks_in_progress": sum(1 for t in tasks if t.status in {"assigned", "in_progress"}),
        "tasks_pending": sum(1 for t in tasks if t.status == "pending"),
        "average_completion_time": round(avg_completion_time, 6),
        "robot_utilization": round(utilization, 6),
        "collisions_avoided": counters.collisions_avoided,
        "near_misses": counters.near_misses,
        "critical_avoidances": counters.critical_avoidances,
        "paths_calculated": counters.paths_calculated,
        "total_distance": round(counters.total_distance, 6),
    }
