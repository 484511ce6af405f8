from __future__ import annotations

import re
from dataclasses import dataclass

import pandas as pd

DEFAULT_URL = "grpc.oasiscloud.io:443"
DEFAULT_TIMEOUT = "60s"
DEFAULT_DELAY = "0s"

_BARE_NUMBER = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)$")
_GO_UNITS = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")
_UNIT_PANDAS = {"ns": "ns", "us": "us", "µs": "us", "ms": "ms", "s": "s", "m": "min", "h": "h"}


class ConfigError(Exception):
    """Raised when run settings are missing or out of range."""


@dataclass(frozen=True)
class RunConfig:
    """Settings fixed before the first task is launched; shared read-only."""

    url: str
    concurrency: int
    delay_s: float
    timeout_s: float

    def __post_init__(self) -> None:
        if self.concurrency < 1:
            raise ConfigError(f"concurrency must be >= 1, got {self.concurrency}")
        if self.delay_s < 0:
            raise ConfigError(f"delay must be >= 0, got {self.delay_s}")
        if self.timeout_s <= 0:
            raise ConfigError(f"timeout must be > 0, got {self.timeout_s}")


def parse_duration(value: str | float | int) -> float:
    """Parse ``250ms``, ``1m30s``, ``2h`` or a bare number of seconds."""
    if isinstance(value, (int, float)):
        return float(value)

    text = value.strip()
    if not text:
        raise ConfigError("empty duration")
    if _BARE_NUMBER.match(text):
        return float(text)

    sign = 1.0
    if text[0] in "+-":
        sign = -1.0 if text[0] == "-" else 1.0
        text = text[1:]

    # Go duration strings are a plain concatenation of number+unit pairs.
    parts = _GO_UNITS.findall(text)
    if not parts or "".join(number + unit for number, unit in parts) != text:
        raise ConfigError(f"invalid duration {value!r}")

    total = pd.Timedelta(0)
    for number, unit in parts:
        total += pd.Timedelta(float(number), unit=_UNIT_PANDAS[unit])
    return sign * total.total_seconds()


__all__ = [
    "DEFAULT_URL",
    "DEFAULT_TIMEOUT",
    "DEFAULT_DELAY",
    "ConfigError",
    "RunConfig",
    "parse_duration",
]
