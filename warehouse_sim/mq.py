from __future__ import annotations

"""
File: warehouse_sim/mq.py
Purpose: Broker plumbing for the simulation runner.
Key responsibilities:
- Connect with retries until the broker is reachable.
- Declare the topic exchange and one durable queue per inbound routing key.
- Publish outbound events as persistent JSON, keyed by their event id.
"""

import asyncio
import json
import logging
from typing import Any

import aio_pika
from aio_pika import ExchangeType

logger = logging.getLogger(__name__)

# routing key -> queue name
INBOUND_BINDINGS: dict[str, str] = {
    "task.submitted": "warehouse_sim.task_submitted",
    "robot.command": "warehouse_sim.robot_command",
    "sim.reset": "warehouse_sim.reset",
}


async def connect(rabbit_url: str, attempts: int = 10, backoff_s: float = 2.0) -> aio_pika.abc.AbstractRobustConnection:
    """Open a robust connection, retrying while the broker is still starting."""
    for attempt in range(1, attempts):
        try:
            return await aio_pika.connect_robust(rabbit_url)
        except (ConnectionError, OSError) as exc:
            logger.warning("broker not reachable attempt=%s/%s err=%s", attempt, attempts, exc)
            await asyncio.sleep(backoff_s)
    return await aio_pika.connect_robust(rabbit_url)


async def setup_topology(
    channel: aio_pika.abc.AbstractRobustChannel,
    exchange_name: str,
) -> tuple[aio_pika.abc.AbstractExchange, dict[str, aio_pika.abc.AbstractQueue]]:
    """Declare the exchange and inbound queues; returns queues by routing key."""
    exchange = await channel.declare_exchange(exchange_name, ExchangeType.TOPIC, durable=True)
    queues: dict[str, aio_pika.abc.AbstractQueue] = {}
    for routing_key, queue_name in INBOUND_BINDINGS.items():
        queue = await channel.declare_queue(queue_name, durable=True)
        await queue.bind(exchange, routing_key=routing_key)
        queues[routing_key] = queue
    return exchange, queues


async def publish_event(exchange: aio_pika.abc.AbstractExchange, routing_key: str, payload: dict[str, Any]) -> None:
    body = json.dumps(payload, separators=(",", ":"), sort_keys=True).encode("utf-8")
    await exchange.publish(
        aio_pika.Message(
            body=body,
            content_type="application/json",
            delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
            message_id=payload.get("event_id"),
            type=routing_key,
        ),
        routing_key=routing_key,
    )
