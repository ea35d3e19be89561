from __future__ import annotations

"""
File: warehouse_sim/sim/grid.py
Purpose: Warehouse cell grid with cell kinds and per-cell occupancy.
Key responsibilities:
- Validate grid dimensions at construction.
- Answer traversability queries for the pathfinder.
- Track which robot owns each cell (at most one owner per cell).
"""

from dataclasses import dataclass
from typing import Literal

from warehouse_sim.sim.entities import Cell


CellKind = Literal["empty", "obstacle", "storage", "charging", "pickup", "delivery"]


@dataclass
class GridCell:
    """A single warehouse cell."""
    kind: CellKind = "empty"
    occupied: bool = False
    owner_robot_id: int | None = None


class WarehouseGrid:
    """Row-major grid of cells, addressed as (x, y)."""
    def __init__(self, width: int, height: int) -> None:
        if width <= 0 or height <= 0:
            raise ValueError(f"invalid grid size: {width}x{height}")
        self.width = width
        self.height = height
        self.cells = [[GridCell() for _ in range(width)] for _ in range(height)]

    def in_bounds(self, x: int, y: int) -> bool:
        return 0 <= x < self.width and 0 <= y < self.height

    def cell_at(self, x: int, y: int) -> GridCell:
        return self.cells[y][x]

    def set_kind(self, x: int, y: int, kind: CellKind) -> None:
        self.cells[y][x].kind = kind

    def is_traversable(self, x: int, y: int, exclude_robot_id: int | None = None) -> bool:
        """Return True if a robot may plan through (x, y).

        Obstacles are never traversable; a cell owned by a robot other than
        ``exclude_robot_id`` is treated as blocked for this query.
        """
        if not self.in_bounds(x, y):
            return False
        cell = self.cells[y][x]
        if cell.kind == "obstacle":
            return False
        if cell.occupied and cell.owner_robot_id != exclude_robot_id:
            return False
        return True

    def owner_of(self, x: int, y: int) -> int | None:
        cell = self.cells[y][x]
        return cell.owner_robot_id if cell.occupied else None

    def claim(self, x: int, y: int, robot_id: int) -> bool:
        """Mark (x, y) as owned by robot_id. Returns False if another robot owns it."""
        cell = self.cells[y][x]
        if cell.kind == "obstacle":
            return False
        if cell.occupied and cell.owner_robot_id != robot_id:
            return False
        cell.occupied = True
        cell.owner_robot_id = robot_id
        return True

    def release(self, x: int, y: int, robot_id: int) -> None:
        """Release (x, y) if robot_id currently owns it."""
        cell = self.cells[y][x]
        if cell.owner_robot_id == robot_id:
            cell.occupied = False
            cell.owner_robot_id = None

    def occupied_cells(self) -> dict[Cell, int]:
        """Return {cell: owner_robot_id} for every occupied cell."""
        owners: dict[Cell, int] = {}
        for y, row in enumerate(self.cells):
            for x, cell in enumerate(row):
                if cell.occupied and cell.owner_robot_id is not None:
                    owners[(x, y)] = cell.owner_robot_id
        return owners

    def cells_of_kind(self, kind: CellKind) -> list[Cell]:
        return [
            (x, y)
            for y, row in enumerate(self.cells)
            for x, cell in enumerate(row)
            if cell.kind == kind
        ]


def build_default_layout(width: int, height: int) -> WarehouseGrid:
    """Build the stock warehouse floor: walled border, two charging bays,
    four storage blocks and two aisle walls."""
    grid = WarehouseGrid(width, height)
    inner_corners = {(1, 1), (width - 2, 1), (1, height - 2), (width - 2, height - 2)}

    for y in range(height):
        for x in range(width):
            kind: CellKind = "empty"

            on_border = y == 0 or y == height - 1 or x == 0 or x == width - 1
            if on_border and (x, y) not in inner_corners:
                kind = "obstacle"

            if (x, y) in {(1, 1), (width - 2, 1)}:
                kind = "charging"

            if (5 <= x <= 7 or 10 <= x <= 12) and (3 <= y <= 5 or 8 <= y <= 10):
                kind = "storage"

            if x in (3, 14) and 2 <= y <= 11:
                kind = "obstacle"

            grid.set_kind(x, y, kind)

    return grid
