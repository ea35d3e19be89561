from __future__ import annotations

"""
File: warehouse_sim/sim/entities.py
Purpose: Core dataclasses and type aliases for simulation state.
"""

from collections import deque
from dataclasses import dataclass, field
from typing import Literal


Cell = tuple[int, int]

RobotStatus = Literal["idle", "moving", "charging", "error"]
TaskType = Literal["pickup", "delivery", "scan"]
TaskPriority = Literal["low", "medium", "high", "critical"]
TaskStatus = Literal["pending", "assigned", "in_progress", "completed", "failed"]
CollisionKind = Literal["near_miss", "collision_avoided", "critical_avoidance"]

TASK_TYPES: tuple[TaskType, ...] = ("pickup", "delivery", "scan")
TASK_PRIORITIES: tuple[TaskPriority, ...] = ("low", "medium", "high", "critical")
PRIORITY_RANK: dict[str, int] = {"low": 1, "medium": 2, "high": 3, "critical": 4}

TERMINAL_TASK_STATES = {"completed", "failed"}


@dataclass
class Robot:
    """Robot state tracked by the simulation engine."""
    id: int
    x: float
    y: float
    speed: float = 1.0
    battery: float = 100.0
    status: RobotStatus = "idle"
    path: deque[Cell] = field(default_factory=deque)
    target: Cell | None = None
    current_task_id: str | None = None
    # Grid cell the robot owns; fixed until the next waypoint is reached.
    cell: Cell = (0, 0)
    blocked_ticks: int = 0
    distance_traveled: float = 0.0

    @property
    def label(self) -> str:
        return f"robot-{self.id:02d}"


@dataclass
class Task:
    """Task definition and lifecycle tracking for the simulation."""
    id: str
    type: TaskType
    x: int
    y: int
    priority: TaskPriority = "medium"
    status: TaskStatus = "pending"
    assigned_robot_id: int | None = None
    created_at: float = 0.0
    completed_at: float | None = None

    @property
    def position(self) -> Cell:
        return (self.x, self.y)


@dataclass
class CollisionEvent:
    """Proximity event produced by the collision arbitration pass."""
    kind: CollisionKind
    robot_ids: tuple[int, int]
    distance: float
    description: str
