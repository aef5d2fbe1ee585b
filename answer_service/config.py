"""Static service configuration."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class HealthCheck:
    """Settings of the health-check endpoint."""

    port: str = ""
    use: bool = False


@dataclass
class RetrierOpts:
    """Retry policy: attempt count and the pause between attempts in seconds."""

    max_retries: int = 0
    interval: float = 0.0


@dataclass
class Config:
    """Broker names, retry policy, service URLs and health-check settings."""

    exchanges: dict[str, str] = field(default_factory=dict)
    queues: dict[str, str] = field(default_factory=dict)
    retrier_opts: RetrierOpts = field(default_factory=RetrierOpts)
    urls: dict[str, str] = field(default_factory=dict)
    health_check: HealthCheck = field(default_factory=HealthCheck)


def new_config() -> Config:
    """Return the default configuration of the service."""
    return Config(
        exchanges={"form": "form", "answer": "answer"},
        queues={"form": "form", "answer": "answer"},
        retrier_opts=RetrierOpts(max_retries=3, interval=5.0),
        urls={"rabbitmq": "amqp://rabbitmq:5672", "redis": "redis:6379"},
        health_check=HealthCheck(port="8080", use=True),
    )