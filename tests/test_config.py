from __future__ import annotations

from pathlib import Path

import pytest

from dhcpload.config import ConfigError, LoadConfig, load_config


def test_defaults_match_the_reference_run() -> None:
    config = load_config([], env={})

    assert config == LoadConfig()
    assert (config.workers, config.rate, config.burst, config.deadline_s) == (5, 5.0, 1, 2.0)
    assert config.metrics_port == 2112
    assert config.interface == "eth0"


def test_environment_is_used_when_flags_are_absent() -> None:
    env = {
        "DHCPLOAD_INTERFACE": "ens3",
        "DHCPLOAD_WORKERS": "12",
        "DHCPLOAD_RATE": "250",
        "DHCPLOAD_BURST": "20",
        "DHCPLOAD_DEADLINE_SECONDS": "1.5",
        "DHCPLOAD_LOG_PATH": "/tmp/dhcpload.log",
    }

    config = load_config([], env=env)

    assert config.interface == "ens3"
    assert config.workers == 12
    assert config.rate == 250.0
    assert config.burst == 20
    assert config.deadline_s == 1.5
    assert config.log_path == Path("/tmp/dhcpload.log")


def test_flags_override_environment() -> None:
    config = load_config(
        ["--workers", "2", "--rate", "10", "--interface", "lo"],
        env={"DHCPLOAD_WORKERS": "12", "DHCPLOAD_INTERFACE": "ens3"},
    )

    assert config.workers == 2
    assert config.rate == 10.0
    assert config.interface == "lo"


def test_invalid_environment_value_falls_back(capsys) -> None:
    config = load_config([], env={"DHCPLOAD_RATE": "fast"})

    assert config.rate == 5.0
    assert "invalid DHCPLOAD_RATE value 'fast'" in capsys.readouterr().err


@pytest.mark.parametrize(
    "argv",
    [["--workers", "0"], ["--rate", "0"], ["--burst", "0"], ["--deadline", "-1"], ["--metrics-port", "70000"]],
)
def test_invalid_values_are_rejected(argv: list[str]) -> None:
    with pytest.raises(ConfigError):
        load_config(argv, env={})
