from __future__ import annotations

"""
File: warehouse_sim/sim/congestion.py
Purpose: Zone-based congestion learning that biases robot speed.
Key responsibilities:
- Partition the grid into fixed-size zones and track rolling congestion history.
- Recommend a per-zone speed and smooth each robot's speed toward an adaptive target.
- Self-tune the smoothing coefficient from collisions and task outcomes.
"""

from collections import deque
from dataclasses import dataclass, field, replace
from itertools import islice
from math import ceil, floor
from typing import Sequence

from warehouse_sim.sim.entities import Robot, TaskPriority
from warehouse_sim.sim.pathfinding import distance


HISTORY_CAP = 50
NEARBY_RADIUS = 2.0
LOOKAHEAD_WAYPOINTS = 5
HIGH_TRAFFIC_LEVEL = 0.6

DEFAULT_LEARNING_RATE = 0.1
MIN_LEARNING_RATE = 0.05
MAX_LEARNING_RATE = 0.3

MIN_SPEED = 0.2
MAX_SPEED = 1.2


@dataclass
class CongestionZone:
    """Rectangular grid partition with rolling congestion statistics."""
    x: int
    y: int
    width: int
    height: int
    congestion_level: float = 0.0
    robot_count: int = 0
    history: deque[float] = field(default_factory=lambda: deque(maxlen=HISTORY_CAP))
    avg_speed: float = 1.0
    collision_count: int = 0

    def contains(self, x: float, y: float) -> bool:
        return self.x <= x < self.x + self.width and self.y <= y < self.y + self.height


@dataclass(frozen=True)
class LearningState:
    """Global learner counters. Every transition returns a new state."""
    learning_rate: float = DEFAULT_LEARNING_RATE
    total_congestion_events: int = 0
    speed_adjustments: int = 0
    baseline_congestion: float | None = None

    def after_collision(self) -> LearningState:
        return replace(self, learning_rate=min(MAX_LEARNING_RATE, self.learning_rate * 1.1))

    def after_task_outcome(self, success_ratio: float) -> LearningState:
        if success_ratio > 0.9:
            return replace(self, learning_rate=max(MIN_LEARNING_RATE, self.learning_rate * 0.95))
        if success_ratio < 0.7:
            return replace(self, learning_rate=min(MAX_LEARNING_RATE, self.learning_rate * 1.1))
        return self

    def after_speed_sample(self, speed_diff: float, zone_congestion: float) -> LearningState:
        return replace(
            self,
            speed_adjustments=self.speed_adjustments + (1 if abs(speed_diff) > 0.05 else 0),
            total_congestion_events=self.total_congestion_events + (1 if zone_congestion > 0.5 else 0),
        )

    def with_baseline(self, avg_congestion: float) -> LearningState:
        if self.baseline_congestion is not None or avg_congestion <= 0:
            return self
        return replace(self, baseline_congestion=avg_congestion)


def optimal_speed(historical_avg: float, current_level: float) -> float:
    """Map a blended congestion prediction onto one of four speed bands."""
    predicted = historical_avg * 0.7 + current_level * 0.3
    if predicted > 0.7:
        return 0.4
    if predicted > 0.5:
        return 0.6
    if predicted > 0.3:
        return 0.8
    return 1.0


def efficiency_gain(baseline: float | None, current: float) -> float:
    """Percentage drop of average congestion against the baseline, floored at 0."""
    if not baseline:
        return 0.0
    return max(0.0, (baseline - current) / baseline * 100.0)


def clamp_speed(speed: float) -> float:
    return max(MIN_SPEED, min(MAX_SPEED, speed))


class CongestionLearner:
    """Tracks per-zone congestion and produces adaptive robot speeds."""
    def __init__(self, grid_width: int, grid_height: int, zone_size: int = 3) -> None:
        if zone_size <= 0:
            raise ValueError(f"invalid zone size: {zone_size}")
        if grid_width <= 0 or grid_height <= 0:
            raise ValueError(f"invalid grid size: {grid_width}x{grid_height}")
        self.grid_width = grid_width
        self.grid_height = grid_height
        self.zone_size = zone_size
        self.state = LearningState()
        self.zones: dict[tuple[int, int], CongestionZone] = {}
        self._build_zones()

    def _build_zones(self) -> None:
        """Tile the grid; edge zones are clipped to the grid bounds."""
        self.zones = {}
        for zy in range(ceil(self.grid_height / self.zone_size)):
            for zx in range(ceil(self.grid_width / self.zone_size)):
                x = zx * self.zone_size
                y = zy * self.zone_size
                self.zones[(zx, zy)] = CongestionZone(
                    x=x,
                    y=y,
                    width=min(self.zone_size, self.grid_width - x),
                    height=min(self.zone_size, self.grid_height - y),
                )

    def zone_key(self, x: float, y: float) -> tuple[int, int]:
        return (floor(x / self.zone_size), floor(y / self.zone_size))

    def zone_at(self, x: float, y: float) -> CongestionZone | None:
        return self.zones.get(self.zone_key(x, y))

    def analyze(self, robots: Sequence[Robot]) -> None:
        """Recompute instantaneous congestion from moving robots and roll history."""
        for zone in self.zones.values():
            zone.robot_count = 0
            zone.congestion_level = 0.0

        moving = [r for r in robots if r.status == "moving"]
        for robot in moving:
            zone = self.zone_at(robot.x, robot.y)
            if zone is None:
                continue
            zone.robot_count += 1
            nearby = sum(
                1
                for other in moving
                if other.id != robot.id and distance(robot.x, robot.y, other.x, other.y) < self.zone_size
            )
            zone.congestion_level = max(zone.congestion_level, min(1.0, nearby / 3))

        for zone in self.zones.values():
            zone.history.append(zone.congestion_level)
            historical_avg = sum(zone.history) / len(zone.history)
            zone.avg_speed = optimal_speed(historical_avg, zone.congestion_level)

    def get_adaptive_speed(
        self,
        robot: Robot,
        robots: Sequence[Robot],
        priority: TaskPriority | None = None,
    ) -> float:
        """Return the robot's next speed, smoothed toward the adaptive target."""
        zone = self.zone_at(robot.x, robot.y)
        if zone is None:
            return clamp_speed(robot.speed)

        target = zone.avg_speed

        nearby = [
            other
            for other in robots
            if other.id != robot.id
            and other.status == "moving"
            and distance(robot.x, robot.y, other.x, other.y) < NEARBY_RADIUS
        ]
        if nearby:
            target = (target + sum(o.speed for o in nearby) / len(nearby)) / 2

        path_congestion = 0.0
        for cx, cy in islice(robot.path, LOOKAHEAD_WAYPOINTS):
            ahead = self.zone_at(cx, cy)
            if ahead is not None:
                path_congestion = max(path_congestion, ahead.congestion_level)
        if path_congestion > HIGH_TRAFFIC_LEVEL:
            target = min(target, 0.5)

        if priority == "critical":
            target = min(1.0, target * 1.2)
        elif priority == "low" and zone.congestion_level > 0.5:
            target = min(target, 0.5)

        speed_diff = target - robot.speed
        adjusted = robot.speed + speed_diff * self.state.learning_rate
        self.state = self.state.after_speed_sample(speed_diff, zone.congestion_level)
        return clamp_speed(adjusted)

    def record_collision(self, x: float, y: float) -> None:
        """Slow the zone down and make the learner more reactive."""
        zone = self.zone_at(x, y)
        if zone is None:
            return
        zone.collision_count += 1
        zone.avg_speed = max(0.3, zone.avg_speed * 0.85)
        self.state = self.state.after_collision()

    def update_learning_rate(self, success_ratio: float) -> None:
        self.state = self.state.after_task_outcome(success_ratio)

    def average_congestion(self) -> float:
        return sum(z.congestion_level for z in self.zones.values()) / len(self.zones)

    def capture_baseline(self) -> bool:
        """Freeze the current average congestion as the efficiency baseline.

        Only the first nonzero reading is kept. Returns True once a baseline exists.
        """
        self.state = self.state.with_baseline(self.average_congestion())
        return self.state.baseline_congestion is not None

    def get_metrics(self) -> dict[str, float | int]:
        avg_congestion = self.average_congestion()
        return {
            "total_congestion_events": self.state.total_congestion_events,
            "speed_adjustments": self.state.speed_adjustments,
            "avg_congestion_level": avg_congestion,
            "high_traffic_zones": sum(1 for z in self.zones.values() if z.congestion_level > HIGH_TRAFFIC_LEVEL),
            "learning_rate": self.state.learning_rate,
            "efficiency_gain": efficiency_gain(self.state.baseline_congestion, avg_congestion),
        }

    def get_zones(self) -> list[CongestionZone]:
        return list(self.zones.values())

    def reset(self) -> None:
        self.state = LearningState()
        self._build_zones()
