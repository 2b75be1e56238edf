"""Configuration loading with layered overrides."""

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml


class ConfigError(Exception):
    """Error in a configuration value."""

    pass


PROJECT_CONFIG = Path(".scriptdeck.yaml")

DEFAULT_TERMINALS = [
    "gnome-terminal",
    "konsole",
    "xfce4-terminal",
    "mate-terminal",
    "x-terminal-emulator",
    "xterm",
]


def user_config_path() -> Path:
    """Location of the per-user config file."""
    return Path.home() / ".config" / "scriptdeck" / "config.yaml"


@dataclass
class Settings:
    """Resolved configuration values."""

    scripts_dir: Path = field(default_factory=Path.cwd)
    extension: str = ".sh"
    timeout: float = 30
    elevated_timeout: float | None = None
    prompt_timeout: float = 30
    terminal_delay: float = 0.5
    terminals: list[str] = field(default_factory=lambda: list(DEFAULT_TERMINALS))
    store_path: Path = field(
        default_factory=lambda: Path.home() / ".config" / "scriptdeck" / "catalog.yaml"
    )
    log_dir: Path = field(
        default_factory=lambda: Path.home() / "var" / "log" / "scriptdeck"
    )

    @property
    def effective_elevated_timeout(self) -> float:
        """Timeout for elevated runs; falls back to the plain timeout."""
        if self.elevated_timeout is None:
            return self.timeout
        return self.elevated_timeout


def load_config_file(path: Path) -> dict[str, Any]:
    """Load a YAML config file if it exists."""
    if not path.exists():
        return {}
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError):
        return {}
    if not isinstance(data, dict):
        return {}
    return data


def get_config_value(key: str, paths: list[Path] | None = None) -> Any:
    """Get config value with project -> user -> None precedence."""
    if paths is None:
        paths = [PROJECT_CONFIG, user_config_path()]

    for path in paths:
        data = load_config_file(path)
        if key in data:
            return data[key]

    return None


def _coerce(name: str, value: Any, default: Any) -> Any:
    """Convert a raw YAML value to the type of the default."""
    if name in ("scripts_dir", "store_path", "log_dir"):
        if not isinstance(value, str):
            raise ConfigError(f"'{name}' must be a path string, got {value!r}")
        return Path(value).expanduser()

    if name == "elevated_timeout":
        if value is None:
            return None
        return _coerce_number(name, value)

    if name == "terminals":
        if not isinstance(value, list) or not all(isinstance(t, str) for t in value):
            raise ConfigError("'terminals' must be a list of program names")
        return [t for t in value if t.strip()]

    if name == "extension":
        if not isinstance(value, str) or not value.startswith("."):
            raise ConfigError(f"'extension' must look like '.sh', got {value!r}")
        return value

    if isinstance(default, (int, float)):
        return _coerce_number(name, value)

    return value


def _coerce_number(name: str, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"'{name}' must be a number, got {value!r}")
    if value <= 0:
        raise ConfigError(f"'{name}' must be positive, got {value!r}")
    return value


def load_settings(
    paths: list[Path] | None = None,
    overrides: dict[str, Any] | None = None,
) -> Settings:
    """
    Build Settings from config files and explicit overrides.

    Args:
        paths: Config files in precedence order (default: project, user)
        overrides: Values that win over every file (e.g. CLI flags)

    Returns:
        Resolved Settings

    Raises:
        ConfigError: If a value has the wrong type
    """
    if paths is None:
        paths = [PROJECT_CONFIG, user_config_path()]

    merged: dict[str, Any] = {}
    # Lowest precedence first so later files are overwritten
    for path in reversed(paths):
        merged.update(load_config_file(path))

    settings = Settings()
    for f in fields(Settings):
        if f.name in merged:
            default = getattr(settings, f.name)
            setattr(settings, f.name, _coerce(f.name, merged[f.name], default))

    for key, value in (overrides or {}).items():
        if value is not None:
            setattr(settings, key, value)

    return settings
