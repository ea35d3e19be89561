from __future__ import annotations

"""
File: warehouse_sim/sim/world.py
Purpose: Deterministic scenario generation for the warehouse floor, fleet and tasks.
Key responsibilities:
- Build the default floor and place the fleet at fixed (or seeded) start cells.
- Draw random tasks from a seeded RNG.
- Compute a scenario hash for comparability across runs.
"""

import hashlib
import json
import random
from typing import Any, Callable, Sequence

from warehouse_sim.settings import SCENARIO_MAP
from warehouse_sim.sim.entities import TASK_PRIORITIES, TASK_TYPES, Cell, Robot
from warehouse_sim.sim.grid import WarehouseGrid, build_default_layout


DEFAULT_ROBOT_STARTS: tuple[Cell, ...] = (
    (2, 2),
    (15, 2),
    (2, 11),
    (15, 11),
    (8, 2),
    (11, 2),
    (8, 11),
    (11, 11),
    (5, 6),
    (12, 6),
)

TASK_CELL_ATTEMPTS = 100


def _is_start_cell(grid: WarehouseGrid, cell: Cell) -> bool:
    x, y = cell
    return grid.in_bounds(x, y) and grid.cell_at(x, y).kind not in {"obstacle", "charging"}


def fleet_starts(grid: WarehouseGrid, robot_count: int, seed: int) -> list[Cell]:
    """Return start cells: the stock layout first, then seeded free cells."""
    if robot_count <= 0:
        raise ValueError("robot_count must be > 0")

    starts = [cell for cell in DEFAULT_ROBOT_STARTS if _is_start_cell(grid, cell)][:robot_count]
    if len(starts) < robot_count:
        taken = set(starts)
        candidates = [
            (x, y)
            for y in range(grid.height)
            for x in range(grid.width)
            if (x, y) not in taken and _is_start_cell(grid, (x, y))
        ]
        needed = robot_count - len(starts)
        if needed > len(candidates):
            raise ValueError(f"grid has room for {len(starts) + len(candidates)} robots, need {robot_count}")
        starts.extend(random.Random(seed).sample(candidates, needed))
    return starts


def build_fleet(grid: WarehouseGrid, starts: Sequence[Cell]) -> list[Robot]:
    """Create robots with ids 1..N and claim their start cells."""
    if len(set(starts)) != len(starts):
        raise ValueError("robot start cells must be unique")

    robots: list[Robot] = []
    for idx, (x, y) in enumerate(starts, start=1):
        if not grid.in_bounds(x, y) or grid.cell_at(x, y).kind == "obstacle":
            raise ValueError(f"invalid robot start: ({x}, {y})")
        robot = Robot(id=idx, x=float(x), y=float(y), cell=(x, y))
        grid.claim(x, y, robot.id)
        robots.append(robot)
    return robots


def scenario_hash(scenario: str, seed: int, grid: WarehouseGrid, starts: Sequence[Cell]) -> str:
    payload = {
        "scenario": scenario,
        "seed": seed,
        "grid": [grid.width, grid.height],
        "starts": [list(cell) for cell in starts],
    }
    encoded = json.dumps(payload, sort_keys=True, separators=(",", ":")).encode("utf-8")
    return hashlib.sha256(encoded).hexdigest()


def generate_scenario(
    scenario: str,
    seed: int,
    grid_width: int,
    grid_height: int,
    robots_override: int | None = None,
    layout: Callable[[int, int], WarehouseGrid] = build_default_layout,
) -> tuple[WarehouseGrid, list[Cell], str]:
    """Build the floor and start cells for a scenario preset and return its hash."""
    if scenario not in SCENARIO_MAP:
        raise ValueError(f"invalid scenario: {scenario}")
    if robots_override is not None and robots_override <= 0:
        raise ValueError("robots_override must be > 0")

    robot_count = robots_override if robots_override is not None else SCENARIO_MAP[scenario]["robots"]
    grid = layout(grid_width, grid_height)
    starts = fleet_starts(grid, robot_count, seed)
    return grid, starts, scenario_hash(scenario, seed, grid, starts)


class TaskGenerator:
    """Seeded source of random task requests."""
    def __init__(self, seed: int) -> None:
        self.rng = random.Random(seed)

    def draw(self, grid: WarehouseGrid) -> dict[str, Any]:
        """Return submit_task keyword arguments for a random task.

        Obstacle and charging cells are re-drawn up to a fixed number of times;
        the last draw is kept even if it is still unsuitable.
        """
        x = y = 0
        for _ in range(TASK_CELL_ATTEMPTS):
            x = self.rng.randrange(grid.width)
            y = self.rng.randrange(grid.height)
            if grid.cell_at(x, y).kind not in {"obstacle", "charging"}:
                break
        return {
            "task_type": self.rng.choice(TASK_TYPES),
            "x": x,
            "y": y,
            "priority": self.rng.choice(TASK_PRIORITIES),
        }
