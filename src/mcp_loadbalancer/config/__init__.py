"""Client settings."""
from .settings import Settings, EngineSettings

__all__ = ["Settings", "EngineSettings"]
