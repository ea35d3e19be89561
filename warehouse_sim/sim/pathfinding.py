from __future__ import annotations

"""
File: warehouse_sim/sim/pathfinding.py
Purpose: A* search over the warehouse grid and nearest-robot lookup.
Key responsibilities:
- Produce a 4-connected cell route between two cells, or [] when none exists.
- Respect obstacles and occupancy, excluding the calling robot's own cell.
"""

from dataclasses import dataclass
from math import hypot
from typing import Iterable, Sequence

from warehouse_sim.sim.entities import Cell, Robot
from warehouse_sim.sim.grid import WarehouseGrid


# Up, right, down, left. Neighbor expansion order feeds the open-set tie-break.
DIRECTIONS_4: tuple[Cell, ...] = ((0, -1), (1, 0), (0, 1), (-1, 0))


@dataclass
class _Node:
    cell: Cell
    g: int
    f: int
    parent: _Node | None


def distance(ax: float, ay: float, bx: float, by: float) -> float:
    """Euclidean distance helper."""
    return hypot(ax - bx, ay - by)


def manhattan(a: Cell, b: Cell) -> int:
    return abs(a[0] - b[0]) + abs(a[1] - b[1])


def _neighbors(cell: Cell, grid: WarehouseGrid, exclude_robot_id: int | None) -> Iterable[Cell]:
    x, y = cell
    for dx, dy in DIRECTIONS_4:
        nx, ny = x + dx, y + dy
        if grid.is_traversable(nx, ny, exclude_robot_id):
            yield (nx, ny)


def _reconstruct(node: _Node) -> list[Cell]:
    path: list[Cell] = []
    current: _Node | None = node
    while current is not None:
        path.append(current.cell)
        current = current.parent
    path.reverse()
    return path


def find_path(
    start: Cell,
    goal: Cell,
    grid: WarehouseGrid,
    exclude_robot_id: int | None = None,
) -> list[Cell]:
    """Return the full route from start to goal inclusive, or [] if unreachable.

    The open set is re-sorted by f = g + h on every iteration; the sort is
    stable, so nodes with equal f keep their insertion order. Never returns a
    partial route.
    """
    if start == goal:
        return [start]

    if not grid.is_traversable(goal[0], goal[1], exclude_robot_id):
        return []

    open_set: list[_Node] = [_Node(cell=start, g=0, f=manhattan(start, goal), parent=None)]
    open_index: dict[Cell, _Node] = {start: open_set[0]}
    closed: set[Cell] = set()

    while open_set:
        open_set.sort(key=lambda n: n.f)
        current = open_set.pop(0)
        del open_index[current.cell]

        if current.cell == goal:
            return _reconstruct(current)

        closed.add(current.cell)

        for neighbor in _neighbors(current.cell, grid, exclude_robot_id):
            if neighbor in closed:
                continue

            g_score = current.g + 1
            f_score = g_score + manhattan(neighbor, goal)

            existing = open_index.get(neighbor)
            if existing is not None:
                if g_score < existing.g:
                    existing.g = g_score
                    existing.f = f_score
                    existing.parent = current
                continue

            node = _Node(cell=neighbor, g=g_score, f=f_score, parent=current)
            open_set.append(node)
            open_index[neighbor] = node

    return []


def find_nearest_idle_robot(x: float, y: float, robots: Sequence[Robot]) -> Robot | None:
    """Return the idle robot closest to (x, y); ties go to the lowest robot id."""
    best_robot: Robot | None = None
    best_distance = float("inf")
    for robot in robots:
        if robot.status != "idle":
            continue
        d = distance(robot.x, robot.y, x, y)
        if d < best_distance or (best_robot is not None and d == best_distance and robot.id < best_robot.id):
            best_distance = d
            best_robot = robot
    return best_robot
