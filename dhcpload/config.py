from __future__ import annotations

import argparse
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Mapping, TypeVar

T = TypeVar("T", int, float)

DEFAULT_INTERFACE = "eth0"
DEFAULT_WORKERS = 5
DEFAULT_RATE = 5.0
DEFAULT_BURST = 1
DEFAULT_DEADLINE_S = 2.0
DEFAULT_METRICS_PORT = 2112
DEFAULT_METRICS_ADDR = "0.0.0.0"
DEFAULT_LOG_LEVEL = "INFO"


class ConfigError(Exception):
    """Raised when the load generator configuration is unusable."""


@dataclass(frozen=True)
class LoadConfig:
    interface: str = DEFAULT_INTERFACE
    workers: int = DEFAULT_WORKERS
    rate: float = DEFAULT_RATE
    burst: int = DEFAULT_BURST
    deadline_s: float = DEFAULT_DEADLINE_S
    metrics_port: int = DEFAULT_METRICS_PORT
    metrics_addr: str = DEFAULT_METRICS_ADDR
    log_level: str = DEFAULT_LOG_LEVEL
    log_path: Path | None = None

    def validate(self) -> None:
        if self.workers <= 0:
            raise ConfigError(f"workers must be > 0, got {self.workers}")
        if self.rate <= 0:
            raise ConfigError(f"rate must be > 0, got {self.rate}")
        if self.burst < 1:
            raise ConfigError(f"burst must be >= 1, got {self.burst}")
        if self.deadline_s <= 0:
            raise ConfigError(f"deadline must be > 0, got {self.deadline_s}")
        if not 0 < self.metrics_port < 65536:
            raise ConfigError(f"metrics port out of range: {self.metrics_port}")


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="DHCP lease load generator")
    parser.add_argument("--interface", help="Network interface to broadcast on")
    parser.add_argument("--workers", type=int, help="Number of concurrent workers")
    parser.add_argument(
        "--rate",
        type=float,
        help="Sustained transaction start rate across all workers (per second)",
    )
    parser.add_argument("--burst", type=int, help="Token bucket burst capacity")
    parser.add_argument(
        "--deadline",
        type=float,
        help="Seconds allowed for Discover through Ack in one transaction",
    )
    parser.add_argument("--metrics-port", type=int, help="Port for the /metrics endpoint")
    parser.add_argument("--metrics-addr", help="Address for the /metrics endpoint")
    parser.add_argument("--log-level", help="Logging level")
    parser.add_argument("--log-path", type=str, help="Optional path to a log file")
    return parser.parse_args(argv)


def _from_env(
    env: Mapping[str, str],
    key: str,
    default: T,
    cast: Callable[[str], T],
) -> T:
    value = env.get(key)
    if value is None:
        return default
    try:
        return cast(value)
    except ValueError:
        print(f"invalid {key} value {value!r}; defaulting to {default}", file=sys.stderr)
        return default


def load_config(
    argv: list[str] | None = None,
    env: Mapping[str, str] | None = None,
) -> LoadConfig:
    args = parse_args(argv if argv is not None else sys.argv[1:])
    env = os.environ if env is None else env

    def pick(flag_value, key: str, default: T, cast: Callable[[str], T]) -> T:
        if flag_value is not None:
            return flag_value
        return _from_env(env, key, default, cast)

    log_path_value = args.log_path or env.get("DHCPLOAD_LOG_PATH")

    config = LoadConfig(
        interface=args.interface or env.get("DHCPLOAD_INTERFACE", DEFAULT_INTERFACE),
        workers=pick(args.workers, "DHCPLOAD_WORKERS", DEFAULT_WORKERS, int),
        rate=pick(args.rate, "DHCPLOAD_RATE", DEFAULT_RATE, float),
        burst=pick(args.burst, "DHCPLOAD_BURST", DEFAULT_BURST, int),
        deadline_s=pick(args.deadline, "DHCPLOAD_DEADLINE_SECONDS", DEFAULT_DEADLINE_S, float),
        metrics_port=pick(args.metrics_port, "DHCPLOAD_METRICS_PORT", DEFAULT_METRICS_PORT, int),
        metrics_addr=args.metrics_addr or env.get("DHCPLOAD_METRICS_ADDR", DEFAULT_METRICS_ADDR),
        log_level=args.log_level or env.get("DHCPLOAD_LOG_LEVEL", DEFAULT_LOG_LEVEL),
        log_path=Path(log_path_value) if log_path_value else None,
    )
    config.validate()
    return config


__all__ = ["ConfigError", "LoadConfig", "load_config", "parse_args"]
