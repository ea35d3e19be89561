"""
File: warehouse_sim/settings.py
Purpose: Environment-backed configuration for the warehouse simulation runner.
Key responsibilities:
- Parse RabbitMQ settings.
- Define scenario presets and simulation parameters.
"""

from dataclasses import dataclass
import os


DEFAULT_SCENARIO_MAP = {
    "standard": {"robots": 10, "task_rate": "medium"},
    "peak": {"robots": 10, "task_rate": "high"},
    "small_fleet": {"robots": 5, "task_rate": "medium"},
    "large_fleet": {"robots": 15, "task_rate": "extreme"},
    "chaos": {"robots": 20, "task_rate": "extreme"},
}

# Minimum number of live tasks the runner keeps queued for each task rate.
TASK_RATE_MIN_ACTIVE = {
    "low": 3,
    "medium": 5,
    "high": 8,
    "extreme": 12,
}


def _int_env(name: str, default: int = 0) -> int:
    """Parse an integer env var with a fallback."""
    raw = os.getenv(name, "")
    if raw == "":
        return default
    return int(raw)


def _build_scenario_map() -> dict[str, dict]:
    """Return the scenario map with an optional global robot override."""
    scenario_map = {key: value.copy() for key, value in DEFAULT_SCENARIO_MAP.items()}
    robots = _int_env("FLEET_ROBOTS", 0)
    if robots > 0:
        for key in scenario_map:
            scenario_map[key]["robots"] = robots
    return scenario_map


SCENARIO_MAP = _build_scenario_map()


@dataclass(frozen=True)
class Settings:
    """Simulation configuration parsed from environment."""
    rabbit_host: str = os.getenv("RABBITMQ_HOST", "rabbitmq")
    rabbit_port: int = int(os.getenv("RABBITMQ_PORT", "5672"))
    rabbit_user: str = os.getenv("RABBITMQ_USER", "warehouse")
    rabbit_pass: str = os.getenv("RABBITMQ_PASS", "warehousepass")
    exchange_name: str = "warehouse.events"
    fleet_scenario: str = os.getenv("FLEET_SCENARIO", "standard")
    fleet_seed: int = int(os.getenv("FLEET_SEED", "42"))
    grid_width: int = int(os.getenv("GRID_WIDTH", "18"))
    grid_height: int = int(os.getenv("GRID_HEIGHT", "14"))
    zone_size: int = int(os.getenv("ZONE_SIZE", "3"))
    sim_tick_hz: int = int(os.getenv("SIM_TICK_HZ", "20"))
    sim_speed_multiplier: float = float(os.getenv("SIM_SPEED_MULTIPLIER", "1.0"))
    telemetry_hz: int = int(os.getenv("TELEMETRY_HZ", "2"))
    task_retention_s: float = float(os.getenv("TASK_RETENTION_S", "5"))
    # 0 means "use the scenario task rate".
    min_active_tasks: int = _int_env("MIN_ACTIVE_TASKS", 0)
    task_spawn_delay_s: float = float(os.getenv("TASK_SPAWN_DELAY_S", "1.5"))
    replan_after_blocked_ticks: int = int(os.getenv("REPLAN_AFTER_BLOCKED_TICKS", "10"))
    fail_after_blocked_ticks: int = int(os.getenv("FAIL_AFTER_BLOCKED_TICKS", "200"))


settings = Settings()


def rabbit_url() -> str:
    return f"amqp://{settings.rabbit_user}:{settings.rabbit_pass}@{settings.rabbit_host}:{settings.rabbit_port}/"
