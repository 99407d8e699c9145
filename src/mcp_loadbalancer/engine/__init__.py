"""Runners invoking the configuration engine (lbctl)."""
from ..config.settings import EngineSettings
from .base import EngineRunner
from .local import LocalEngineRunner
from .ssh import SSHEngineRunner

__all__ = [
    "EngineRunner",
    "LocalEngineRunner",
    "SSHEngineRunner",
    "create_runner",
]

# Engine mode registry
RUNNER_TYPES = {
    "local": LocalEngineRunner,
    "ssh": SSHEngineRunner,
}


def create_runner(settings: EngineSettings) -> EngineRunner:
    """Factory function to create the runner for the configured engine mode."""
    mode = settings.mode.lower()
    if mode not in RUNNER_TYPES:
        raise ValueError(f"Unknown engine mode: {mode}")
    if mode == "local":
        return LocalEngineRunner(binary=settings.binary, timeout=settings.timeout)
    return SSHEngineRunner(settings)
