from __future__ import annotations

import logging
import signal
import sys
from functools import partial
from pathlib import Path

from .config import ConfigError, LoadConfig, load_config
from .engine import LoadEngine
from .metrics import MetricsSink, start_exporter
from .ratelimit import TokenBucketLimiter
from .report import format_summary, summarise
from .transport import RawTransport

LOGGER = logging.getLogger("dhcpload")
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
    )
    logging.getLogger("scapy").setLevel(logging.ERROR)


def configure_log_file(log_path: Path) -> logging.Handler:
    log_path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_path, mode="w", encoding="utf-8")
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logging.getLogger().addHandler(handler)
    return handler


def build_engine(config: LoadConfig, sink: MetricsSink) -> LoadEngine:
    limiter = TokenBucketLimiter(rate=config.rate, burst=config.burst)
    return LoadEngine(
        workers=config.workers,
        limiter=limiter,
        sink=sink,
        transport_factory=partial(RawTransport, config.interface),
        deadline_s=config.deadline_s,
    )


def run(argv: list[str] | None = None) -> int:
    try:
        config = load_config(argv)
    except ConfigError as exc:
        print(f"invalid configuration: {exc}", file=sys.stderr)
        return 1

    setup_logging(config.log_level)
    if config.log_path is not None:
        configure_log_file(config.log_path)

    LOGGER.info(
        "Interface %s, %d worker(s), rate=%.2f/s burst=%d deadline=%.2fs",
        config.interface,
        config.workers,
        config.rate,
        config.burst,
        config.deadline_s,
    )

    sink = MetricsSink()
    try:
        start_exporter(sink, config.metrics_port, config.metrics_addr)
    except OSError:
        LOGGER.exception(
            "Unable to serve metrics on %s:%d", config.metrics_addr, config.metrics_port
        )
        return 1
    engine = build_engine(config, sink)

    def handle_signal(signum, frame) -> None:
        print("stopping load generator", file=sys.stderr)
        engine.stop()

    previous = {
        signum: signal.signal(signum, handle_signal)
        for signum in (signal.SIGINT, signal.SIGTERM)
    }
    try:
        statistics = engine.run()
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, handler)

    print(format_summary(summarise(sink, statistics)))

    if statistics.setup_failures == config.workers:
        print("\nLoad generator status: NO WORKERS STARTED", file=sys.stderr)
        return 1
    return 0


def main() -> None:
    sys.exit(run())


if __name__ == "__main__":
    main()
