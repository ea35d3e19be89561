from __future__ import annotations

"""
File: warehouse_sim/main.py
Purpose: Simulation runner that drives the warehouse engine on a fixed tick.
Key responsibilities:
- Consume task submissions, robot commands and reset requests.
- Tick the engine, keep the task queue topped up from a seeded generator.
- Publish snapshots, collision events and task outcomes.
Key entrypoints:
- SimRunner.run()
Config/env vars:
- FLEET_SCENARIO, FLEET_SEED, FLEET_ROBOTS, GRID_*, ZONE_SIZE
- SIM_TICK_HZ, SIM_SPEED_MULTIPLIER, TELEMETRY_HZ
- TASK_RETENTION_S, MIN_ACTIVE_TASKS, TASK_SPAWN_DELAY_S
- REPLAN_AFTER_BLOCKED_TICKS, FAIL_AFTER_BLOCKED_TICKS
- RABBITMQ_*
"""

import asyncio
from dataclasses import asdict
from datetime import datetime, timezone
import hashlib
import json
import logging

import aio_pika
from pydantic import ValidationError

from warehouse_sim.mq import connect, publish_event, setup_topology
from warehouse_sim.schemas import ResetRequest, RobotCommand, TaskSubmission
from warehouse_sim.settings import SCENARIO_MAP, TASK_RATE_MIN_ACTIVE, rabbit_url, settings
from warehouse_sim.sim.engine import SimulationEngine
from warehouse_sim.sim.entities import TERMINAL_TASK_STATES
from warehouse_sim.sim.world import TaskGenerator

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s warehouse-sim %(message)s")
logger = logging.getLogger("warehouse-sim")


def build_engine(scenario: str, seed: int) -> SimulationEngine:
    """Create an engine from environment settings."""
    return SimulationEngine(
        grid_width=settings.grid_width,
        grid_height=settings.grid_height,
        zone_size=settings.zone_size,
        scenario=scenario,
        seed=seed,
        task_retention_s=settings.task_retention_s,
        replan_after_blocked_ticks=settings.replan_after_blocked_ticks,
        fail_after_blocked_ticks=settings.fail_after_blocked_ticks,
    )


def min_active_tasks(scenario: str) -> int:
    if settings.min_active_tasks > 0:
        return settings.min_active_tasks
    return TASK_RATE_MIN_ACTIVE[SCENARIO_MAP[scenario]["task_rate"]]


class SimRunner:
    """RabbitMQ-driven runner for the warehouse simulation."""
    def __init__(self) -> None:
        self.exchange: aio_pika.abc.AbstractExchange | None = None
        self.scenario = settings.fleet_scenario
        self.seed = settings.fleet_seed
        self.engine = build_engine(self.scenario, self.seed)
        self.task_generator = TaskGenerator(self.seed)
        self.pending_reset: ResetRequest | None = None
        self.reported_tasks: set[str] = set()
        self.shortfall_s = 0.0
        self.last_telemetry_tick = -1

    async def run(self) -> None:
        """Connect to RabbitMQ, declare queues, and run the tick loop."""
        connection = await connect(rabbit_url())
        channel = await connection.channel()
        await channel.set_qos(prefetch_count=200)

        self.exchange, queues = await setup_topology(channel, settings.exchange_name)

        await queues["task.submitted"].consume(self._on_task_submitted)
        await queues["robot.command"].consume(self._on_robot_command)
        await queues["sim.reset"].consume(self._on_reset)

        logger.info(
            "warehouse-sim started scenario=%s seed=%s robots=%s tick_hz=%s",
            self.scenario,
            self.seed,
            len(self.engine.robots),
            settings.sim_tick_hz,
        )
        await self._tick_loop()

    async def _on_task_submitted(self, message: aio_pika.IncomingMessage) -> None:
        """Validate and enqueue a submitted task."""
        try:
            submission = TaskSubmission.model_validate(json.loads(message.body.decode("utf-8")))
            task = self.engine.submit_task(submission.type, submission.x, submission.y, submission.priority)
            logger.info("task submitted task_id=%s x=%s y=%s priority=%s", task.id, task.x, task.y, task.priority)
        except (ValidationError, ValueError) as exc:
            logger.warning("task.submitted rejected: %s", exc)
        except Exception as exc:  # noqa: BLE001
            logger.exception("task.submitted handler error: %s", exc)
        finally:
            await message.ack()

    async def _on_robot_command(self, message: aio_pika.IncomingMessage) -> None:
        """Apply recall/resume/fault to a robot."""
        try:
            command = RobotCommand.model_validate(json.loads(message.body.decode("utf-8")))
            handlers = {
                "recall": self.engine.recall_robot,
                "resume": self.engine.resume_robot,
                "fault": self.engine.fault_robot,
            }
            if not handlers[command.command](command.robot_id):
                logger.warning("robot.command ignored robot_id=%s command=%s", command.robot_id, command.command)
        except (ValidationError, ValueError) as exc:
            logger.warning("robot.command rejected: %s", exc)
        except Exception as exc:  # noqa: BLE001
            logger.exception("robot.command handler error: %s", exc)
        finally:
            await message.ack()

    async def _on_reset(self, message: aio_pika.IncomingMessage) -> None:
        """Queue a reset; it is applied between ticks."""
        try:
            request = ResetRequest.model_validate(json.loads(message.body.decode("utf-8") or "{}"))
            if request.scenario is not None and request.scenario not in SCENARIO_MAP:
                logger.warning("sim.reset rejected: invalid scenario: %s", request.scenario)
                return
            self.pending_reset = request
        except (ValidationError, ValueError) as exc:
            logger.warning("sim.reset rejected: %s", exc)
        except Exception as exc:  # noqa: BLE001
            logger.exception("sim.reset handler error: %s", exc)
        finally:
            await message.ack()

    def _apply_reset(self, request: ResetRequest) -> None:
        scenario = request.scenario or self.scenario
        seed = request.seed if request.seed is not None else self.seed
        if scenario == self.scenario and seed == self.seed:
            self.engine.reset()
        else:
            self.scenario = scenario
            self.seed = seed
            self.engine = build_engine(scenario, seed)
        self.task_generator = TaskGenerator(seed)
        self.reported_tasks.clear()
        self.shortfall_s = 0.0
        self.last_telemetry_tick = -1
        logger.info("run reset scenario=%s seed=%s hash=%s", scenario, seed, self.engine.scenario_hash)

    def _top_up_tasks(self, dt: float) -> None:
        """Keep a minimum number of live tasks once the shortfall has lasted long enough."""
        wanted = min_active_tasks(self.scenario)
        active = sum(1 for task in self.engine.tasks.values() if task.status not in TERMINAL_TASK_STATES)
        if active >= wanted:
            self.shortfall_s = 0.0
            return
        self.shortfall_s += dt
        if self.shortfall_s < settings.task_spawn_delay_s:
            return
        for _ in range(wanted - active):
            self.engine.submit_task(**self.task_generator.draw(self.engine.grid))
        self.shortfall_s = 0.0

    async def _tick_loop(self) -> None:
        dt = 1.0 / settings.sim_tick_hz
        ticks_per_telemetry = max(1, settings.sim_tick_hz // max(1, settings.telemetry_hz))

        while True:
            if self.pending_reset is not None:
                self._apply_reset(self.pending_reset)
                self.pending_reset = None

            try:
                self._top_up_tasks(dt)
                delta = self.engine.tick(dt, settings.sim_speed_multiplier)

                for event in delta.events:
                    await publish_event(
                        self.exchange,
                        "collision.detected",
                        {
                            "event_id": self._event_id("collision.detected", "-".join(map(str, event.robot_ids)), delta.tick),
                            "event_type": "collision.detected",
                            "scenario": self.scenario,
                            "seed": self.seed,
                            "tick": delta.tick,
                            **asdict(event),
                            "ts_utc": datetime.now(timezone.utc).isoformat(),
                        },
                    )

                await self._publish_task_outcomes(delta.tick)

                if delta.tick - self.last_telemetry_tick >= ticks_per_telemetry:
                    await publish_event(
                        self.exchange,
                        "snapshot.tick",
                        {
                            "event_id": self._event_id("snapshot.tick", "snapshot", delta.tick),
                            "event_type": "snapshot.tick",
                            "snapshot": self.engine.snapshot(),
                            "ts_utc": datetime.now(timezone.utc).isoformat(),
                        },
                    )
                    self.last_telemetry_tick = delta.tick
            except Exception as exc:  # noqa: BLE001
                logger.exception("tick failed tick=%s err=%s", self.engine.tick_count, exc)

            await asyncio.sleep(dt)

    async def _publish_task_outcomes(self, tick: int) -> None:
        """Publish task.completed / task.failed once per task."""
        live_ids = set(self.engine.tasks)
        self.reported_tasks &= live_ids
        for task in self.engine.tasks.values():
            if task.status not in TERMINAL_TASK_STATES or task.id in self.reported_tasks:
                continue
            self.reported_tasks.add(task.id)
            routing_key = f"task.{task.status}"
            await publish_event(
                self.exchange,
                routing_key,
                {
                    "event_id": self._event_id(routing_key, task.id, tick),
                    "event_type": routing_key,
                    "scenario": self.scenario,
                    "seed": self.seed,
                    "tick": tick,
                    "task_id": task.id,
                    "robot_id": task.assigned_robot_id,
                    "priority": task.priority,
                    "duration_s": round((task.completed_at or 0.0) - task.created_at, 3),
                    "ts_utc": datetime.now(timezone.utc).isoformat(),
                },
            )

    def _event_id(self, event_type: str, entity_id: str, tick: int) -> str:
        raw = f"{self.engine.scenario_hash}:{event_type}:{entity_id}:{tick}"
        return hashlib.sha1(raw.encode("utf-8")).hexdigest()


async def main() -> None:
    runner = SimRunner()
    await runner.run()


def run_cli() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run_cli()
