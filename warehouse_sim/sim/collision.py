from __future__ import annotations

"""
File: warehouse_sim/sim/collision.py
Purpose: All-pairs proximity arbitration between robots.
Key responsibilities:
- Classify robot pairs into critical / collision-avoided / near-miss tiers.
- Throttle the robot that must give way, by task priority then robot order.
- Relax speeds back toward nominal when a robot has clear space.
"""

from dataclasses import dataclass, field
from typing import Callable, Sequence

from warehouse_sim.sim.entities import CollisionEvent, Robot
from warehouse_sim.sim.pathfinding import distance


COLLISION_DISTANCE = 0.5
CRITICAL_DISTANCE = 1.0
WARNING_DISTANCE = 2.0

YIELD_SPEED = 0.2
HEAD_ON_SPEED = 0.3
CLOSING_SPEED = 0.4
NEAR_MISS_SPEED_CAP = 0.7
RELAX_STEP = 0.15


@dataclass
class CollisionReport:
    """Counters and ordered events produced by one arbitration pass."""
    collisions_avoided: int = 0
    near_misses: int = 0
    critical_avoidances: int = 0
    events: list[CollisionEvent] = field(default_factory=list)


def is_closing(robot: Robot, other: Robot) -> bool:
    """True if robot's next waypoint is nearer to other than robot is now."""
    if not robot.path:
        return False
    nx, ny = robot.path[0]
    return distance(nx, ny, other.x, other.y) < distance(robot.x, robot.y, other.x, other.y)


def _gives_way(a: Robot, b: Robot, priority_of: Callable[[Robot], int]) -> Robot:
    """Return the robot that yields. Equal priority: the later robot in order yields."""
    if priority_of(a) < priority_of(b):
        return a
    return b


def resolve_collisions(
    robots: Sequence[Robot],
    priority_of: Callable[[Robot], int],
) -> CollisionReport:
    """Run one arbitration pass and mutate robot speeds in place.

    ``robots`` must be in ascending id order; that order is the tie-break.
    ``priority_of`` maps a robot to its task priority rank (0 without a task).
    """
    report = CollisionReport()
    nearest: dict[int, float] = {r.id: float("inf") for r in robots}

    for i, a in enumerate(robots):
        for b in robots[i + 1:]:
            d = distance(a.x, a.y, b.x, b.y)
            nearest[a.id] = min(nearest[a.id], d)
            nearest[b.id] = min(nearest[b.id], d)

            if d < COLLISION_DISTANCE:
                loser = _gives_way(a, b, priority_of)
                loser.speed = YIELD_SPEED
                report.critical_avoidances += 1
                report.events.append(
                    CollisionEvent(
                        kind="critical_avoidance",
                        robot_ids=(a.id, b.id),
                        distance=round(d, 3),
                        description=f"{a.label} and {b.label} within {d:.2f}; {loser.label} yields",
                    )
                )
                continue

            both_moving = a.status == "moving" and b.status == "moving"
            if both_moving and d < CRITICAL_DISTANCE:
                report.collisions_avoided += 1
                a_closing = is_closing(a, b)
                b_closing = is_closing(b, a)
                if a_closing and b_closing:
                    _gives_way(a, b, priority_of).speed = HEAD_ON_SPEED
                elif a_closing:
                    a.speed = CLOSING_SPEED
                elif b_closing:
                    b.speed = CLOSING_SPEED
                if a_closing or b_closing:
                    report.events.append(
                        CollisionEvent(
                            kind="collision_avoided",
                            robot_ids=(a.id, b.id),
                            distance=round(d, 3),
                            description=f"{a.label} and {b.label} converging at {d:.2f}",
                        )
                    )
            elif CRITICAL_DISTANCE <= d < WARNING_DISTANCE and is_closing(a, b):
                report.near_misses += 1
                a.speed = min(a.speed, NEAR_MISS_SPEED_CAP)
                report.events.append(
                    CollisionEvent(
                        kind="near_miss",
                        robot_ids=(a.id, b.id),
                        distance=round(d, 3),
                        description=f"{a.label} approaching {b.label} at {d:.2f}",
                    )
                )

    for robot in robots:
        if nearest[robot.id] > WARNING_DISTANCE and robot.speed < 1.0:
            robot.speed = min(1.0, robot.speed + RELAX_STEP)

    return report
