from __future__ import annotations

"""
File: warehouse_sim/schemas.py
Purpose: Pydantic models for inbound runner messages.
Key responsibilities:
- Validate task.submitted, robot.command and sim.reset payloads.
Key entrypoints:
- TaskSubmission, RobotCommand, ResetRequest
"""

from pydantic import BaseModel, Field
from typing import Literal, Optional


TaskType = Literal["pickup", "delivery", "scan"]
TaskPriority = Literal["low", "medium", "high", "critical"]


class TaskSubmission(BaseModel):
    """Request to enqueue a task at a grid cell."""
    type: TaskType
    x: int = Field(ge=0)
    y: int = Field(ge=0)
    priority: TaskPriority = "medium"


class RobotCommand(BaseModel):
    """Operator command for a single robot."""
    robot_id: int = Field(ge=1)
    command: Literal["recall", "resume", "fault"]


class ResetRequest(BaseModel):
    """Reset the run, optionally switching scenario or seed."""
    scenario: Optional[str] = None
    seed: Optional[int] = None
