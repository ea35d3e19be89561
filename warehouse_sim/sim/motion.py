from __future__ import annotations

"""
File: warehouse_sim/sim/motion.py
Purpose: Per-tick motion of a single robot along its planned path.
Key responsibilities:
- Interpolate toward the next waypoint by a time-scaled step.
- Hand over grid occupancy when a waypoint is reached.
- Drain battery while moving.
"""

from dataclasses import dataclass
from math import atan2, cos, sin

from warehouse_sim.sim.entities import Robot
from warehouse_sim.sim.grid import WarehouseGrid
from warehouse_sim.sim.pathfinding import distance


# Step sizes are expressed against a 60 ticks/s reference rate.
REFERENCE_TICK_RATE = 60
BATTERY_DRAIN_RATE = 0.01


@dataclass
class MotionResult:
    """What happened to one robot during a motion step."""
    distance: float = 0.0
    reached_waypoint: bool = False
    arrived: bool = False
    blocked: bool = False


def advance_robot(
    robot: Robot,
    grid: WarehouseGrid,
    delta_time: float,
    speed_multiplier: float,
) -> MotionResult:
    """Advance a moving robot for the current tick.

    On arrival the robot becomes idle and its target is cleared; task
    bookkeeping is left to the caller.
    """
    result = MotionResult()
    if robot.status != "moving" or not robot.path:
        return result

    wx, wy = robot.path[0]
    owner = grid.owner_of(wx, wy)
    if owner is not None and owner != robot.id:
        robot.blocked_ticks += 1
        result.blocked = True
        return result
    robot.blocked_ticks = 0

    remaining = distance(robot.x, robot.y, wx, wy)
    move_distance = robot.speed * speed_multiplier * delta_time * REFERENCE_TICK_RATE

    if remaining <= move_distance:
        grid.release(robot.cell[0], robot.cell[1], robot.id)
        robot.x = float(wx)
        robot.y = float(wy)
        robot.cell = (wx, wy)
        grid.claim(wx, wy, robot.id)
        robot.path.popleft()
        result.distance = remaining
        result.reached_waypoint = True

        if not robot.path:
            robot.status = "idle"
            robot.target = None
            result.arrived = True
    else:
        angle = atan2(wy - robot.y, wx - robot.x)
        robot.x += cos(angle) * move_distance
        robot.y += sin(angle) * move_distance
        result.distance = move_distance

    robot.distance_traveled += result.distance
    robot.battery = max(0.0, robot.battery - BATTERY_DRAIN_RATE * delta_time * speed_multiplier)
    return result
