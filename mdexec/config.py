from __future__ import annotations

import math
import os
from dataclasses import dataclass
from typing import Mapping, Optional


DEFAULT_SHELL = "/bin/sh"


class ConfigError(ValueError):
    pass


@dataclass
class Defaults:
    delay: float = 0.0
    shell: str = DEFAULT_SHELL
    strict: bool = False


def parse_delay(value: str) -> float:
    try:
        delay = float(value)
    except ValueError:
        raise ConfigError(f"Delay must be a number of seconds, got {value!r}")
    if not math.isfinite(delay):
        raise ConfigError(f"Delay must be a finite number of seconds, got {value!r}")
    if delay < 0:
        raise ConfigError(f"Delay must not be negative, got {value!r}")
    return delay


def load_defaults(environ: Optional[Mapping[str, str]] = None) -> Defaults:
    """Read MDEXEC_* overrides from the environment. CLI flags win over these."""
    env = os.environ if environ is None else environ
    return Defaults(
        delay=parse_delay(env.get("MDEXEC_DELAY", "0")),
        shell=env.get("MDEXEC_SHELL") or DEFAULT_SHELL,
        strict=env.get("MDEXEC_STRICT") == "1",
    )
