from __future__ import annotations

"""
File: warehouse_sim/sim/assigner.py
Purpose: Nearest-idle-robot dispatch for pending tasks.
Key responsibilities:
- Walk pending tasks in submission order.
- Pick the nearest idle robot (ties to the lowest robot id) and plan a path.
- Commit robot and task state only when a path exists.
"""

from collections import deque
from dataclasses import dataclass
from typing import Sequence

from warehouse_sim.sim.entities import Cell, Robot, Task
from warehouse_sim.sim.grid import WarehouseGrid
from warehouse_sim.sim.pathfinding import find_nearest_idle_robot, find_path


@dataclass
class Assignment:
    """Task assignment for a specific robot."""
    task_id: str
    robot_id: int
    path: list[Cell]


def assign_pending_tasks(
    tasks: Sequence[Task],
    robots: Sequence[Robot],
    grid: WarehouseGrid,
) -> list[Assignment]:
    """Assign every pending task that can be served this pass.

    Matched robots switch to "moving" immediately, so a robot is never
    picked twice in one pass. A task whose path search fails stays pending.
    """
    assignments: list[Assignment] = []

    for task in tasks:
        if task.status != "pending":
            continue

        robot = find_nearest_idle_robot(task.x, task.y, robots)
        if robot is None:
            continue

        path = find_path(robot.cell, task.position, grid, exclude_robot_id=robot.id)
        if not path:
            continue

        robot.status = "moving"
        robot.path = deque(path)
        robot.target = task.position
        robot.current_task_id = task.id
        robot.blocked_ticks = 0

        task.status = "assigned"
        task.assigned_robot_id = robot.id

        assignments.append(Assignment(task_id=task.id, robot_id=robot.id, path=path))

    return assignments
