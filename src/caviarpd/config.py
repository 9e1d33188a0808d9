"""
Runtime configuration for caviarpd.

Loads process-wide defaults from environment variables (typically from a .env
file). Uses python-dotenv to load .env automatically.

Usage:
    from caviarpd.config import config

    n_lanes = config.runtime.n_lanes
    seed = config.runtime.seed

Per-run parameters (cluster window, grid length, ...) live in
``caviarpd.algorithms.calibration.CalibrationConfig`` instead.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Look for .env in project root (parent of src/)
env_path = Path(__file__).parent.parent.parent / ".env"
if env_path.exists():
    load_dotenv(env_path)

VALID_BACKENDS = ("thread", "process")
VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class RuntimeConfig:
    """Defaults used when a call leaves lanes, backend or seed unset."""
    n_lanes: int = 0
    backend: str = "thread"
    seed: Optional[int] = None
    log_level: str = "WARNING"

    def __post_init__(self):
        """Validate values coming from the environment."""
        if self.n_lanes < 0:
            raise ValueError(f"CAVIARPD_N_LANES must be >= 0, got {self.n_lanes}")
        if self.backend not in VALID_BACKENDS:
            raise ValueError(
                f"CAVIARPD_BACKEND must be one of {VALID_BACKENDS}, got '{self.backend}'"
            )
        self.log_level = self.log_level.upper()
        if self.log_level not in VALID_LOG_LEVELS:
            raise ValueError(
                f"CAVIARPD_LOG_LEVEL must be one of {VALID_LOG_LEVELS}, got '{self.log_level}'"
            )


def _int_from_env(name: str, default: Optional[int]) -> Optional[int]:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got '{raw}'") from e


class Config:
    """
    Application configuration loaded from environment variables.

    Environment variables can be set:
    1. In a .env file in the project root
    2. In the system environment
    3. In a container/deployment environment

    Recognised variables:
        CAVIARPD_N_LANES: worker lanes for batch sampling (0 = all cores)
        CAVIARPD_BACKEND: "thread" or "process"
        CAVIARPD_SEED: master seed; unset means fresh OS entropy per run
        CAVIARPD_LOG_LEVEL: level used by ``setup_logging()``
    """

    def __init__(self):
        """Environment is read lazily so tests can patch it."""
        self._runtime: Optional[RuntimeConfig] = None

    @property
    def runtime(self) -> RuntimeConfig:
        """Runtime defaults, parsed on first access."""
        if self._runtime is None:
            self._runtime = RuntimeConfig(
                n_lanes=_int_from_env("CAVIARPD_N_LANES", 0),
                backend=os.getenv("CAVIARPD_BACKEND", "thread").strip().lower() or "thread",
                seed=_int_from_env("CAVIARPD_SEED", None),
                log_level=os.getenv("CAVIARPD_LOG_LEVEL", "WARNING").strip() or "WARNING",
            )
        return self._runtime

    def reload(self) -> RuntimeConfig:
        """Drop cached values and re-read the environment."""
        self._runtime = None
        return self.runtime


# Global config instance
config = Config()
