"""Client settings loaded from YAML, with environment overrides.

Example ``lbcraft.yaml``:

```yaml
engine:
  mode: ssh            # local | ssh
  binary: lbctl
  host: 10.0.0.2
  port: 22
  username: root
  password_env: LBCRAFT_PASSWORD
  timeout: 30
  retries: 3

cache_enabled: true
use_validation: true
state_dir: ~/.lbcraft/state
audit_log_dir: ~/.lbcraft
```

Environment variables:
    LBCRAFT_CONFIG: Path to the settings file
    LBCRAFT_CACHE: "0" disables the configuration cache
    LBCRAFT_VALIDATION: "0" disables payload validation
    LBCRAFT_ENGINE_MODE / LBCRAFT_ENGINE_HOST / LBCRAFT_ENGINE_BINARY
    LBCRAFT_STATE_DIR: Directory for versions and transactions
"""
import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Optional

import yaml

logger = logging.getLogger(__name__)

DEFAULT_BASE_DIR = Path.home() / ".lbcraft"

TRUE_VALUES = {"1", "true", "yes", "on"}
FALSE_VALUES = {"0", "false", "no", "off"}


@dataclass
class EngineSettings:
    """How to reach the configuration engine."""
    mode: str = "local"  # local, ssh
    binary: str = "lbctl"
    host: Optional[str] = None
    port: int = 22
    username: str = "root"
    password: Optional[str] = None
    password_env: str = "LBCRAFT_PASSWORD"
    timeout: int = 30
    retries: int = 3

    def get_password(self) -> str:
        """Get password from config or environment variable."""
        if self.password:
            return self.password
        return os.environ.get(self.password_env, "")


@dataclass
class Settings:
    engine: EngineSettings = field(default_factory=EngineSettings)
    cache_enabled: bool = True
    use_validation: bool = True
    state_dir: Path = DEFAULT_BASE_DIR / "state"
    audit_log_dir: Path = DEFAULT_BASE_DIR
    source: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict, source: Optional[str] = None) -> "Settings":
        engine_data = data.get("engine") or {}
        known = {f.name for f in fields(EngineSettings)}
        unknown = set(engine_data) - known
        if unknown:
            logger.warning(f"Ignoring unknown engine settings: {', '.join(sorted(unknown))}")

        settings = cls(
            engine=EngineSettings(**{k: v for k, v in engine_data.items() if k in known}),
            cache_enabled=bool(data.get("cache_enabled", True)),
            use_validation=bool(data.get("use_validation", True)),
            source=source,
        )
        if data.get("state_dir"):
            settings.state_dir = Path(data["state_dir"]).expanduser()
        if data.get("audit_log_dir"):
            settings.audit_log_dir = Path(data["audit_log_dir"]).expanduser()
        return settings

    @classmethod
    def load(cls, config_path: Optional[str] = None) -> "Settings":
        """Load settings from a file (or the first one found), then apply env overrides."""
        path = config_path or os.environ.get("LBCRAFT_CONFIG") or _find_config()
        if path:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
            settings = cls.from_dict(data, source=str(path))
            logger.info(f"Loaded settings from {path}")
        else:
            settings = cls()
            logger.info("No settings file found, using defaults")
        settings.apply_env()
        return settings

    def apply_env(self) -> None:
        """Apply LBCRAFT_* environment overrides."""
        env = os.environ
        if "LBCRAFT_CACHE" in env:
            self.cache_enabled = _env_flag("LBCRAFT_CACHE", self.cache_enabled)
        if "LBCRAFT_VALIDATION" in env:
            self.use_validation = _env_flag("LBCRAFT_VALIDATION", self.use_validation)
        if "LBCRAFT_ENGINE_MODE" in env:
            self.engine.mode = env["LBCRAFT_ENGINE_MODE"]
        if "LBCRAFT_ENGINE_HOST" in env:
            self.engine.host = env["LBCRAFT_ENGINE_HOST"]
        if "LBCRAFT_ENGINE_BINARY" in env:
            self.engine.binary = env["LBCRAFT_ENGINE_BINARY"]
        if "LBCRAFT_STATE_DIR" in env:
            self.state_dir = Path(env["LBCRAFT_STATE_DIR"]).expanduser()


def _env_flag(name: str, current: bool) -> bool:
    value = os.environ[name].strip().lower()
    if value in TRUE_VALUES:
        return True
    if value in FALSE_VALUES:
        return False
    logger.warning(f"Ignoring {name}={os.environ[name]!r}, expected one of 1/0, true/false, yes/no, on/off")
    return current


def _find_config() -> Optional[str]:
    """Find the settings file, if any."""
    search_paths = [
        Path.cwd() / "configs" / "lbcraft.yaml",
        Path.cwd() / "lbcraft.yaml",
        Path.home() / ".config" / "lbcraft" / "lbcraft.yaml",
        Path("/etc/lbcraft/lbcraft.yaml"),
    ]

    for path in search_paths:
        if path.exists():
            return str(path)
    return None
