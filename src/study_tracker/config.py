"""TOML-backed configuration for the study tracker.

The config file lives at ``<workspace>/config/tracker.toml`` unless
``STUDY_TRACKER_CONFIG`` points elsewhere. A missing file means defaults.
"""

from __future__ import annotations

import copy
import os
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, MutableMapping, Optional

from .core import workspace

__all__ = [
    "CONFIG_PATH_ENV",
    "ConfigError",
    "AIConfig",
    "SessionConfig",
    "LoggingConfig",
    "TrackerConfig",
    "load_config",
    "resolve_config_path",
    "config_template",
    "write_template",
    "default_config",
]

CONFIG_PATH_ENV = "STUDY_TRACKER_CONFIG"
CONFIG_FILENAME = "tracker.toml"


class ConfigError(RuntimeError):
    """Raised when configuration parsing or validation fails."""


@dataclass(frozen=True)
class AIConfig:
    chat_model: str
    search_model: str
    temperature: float
    max_tokens: int
    request_timeout_seconds: int


@dataclass(frozen=True)
class SessionConfig:
    tick_seconds: float


@dataclass(frozen=True)
class LoggingConfig:
    level: str
    verbose: bool


@dataclass(frozen=True)
class TrackerConfig:
    data_home: Optional[Path]
    ai: AIConfig
    session: SessionConfig
    logging: LoggingConfig


_DEFAULTS: Dict[str, Any] = {
    "paths": {
        "data_home": None,
    },
    "ai": {
        "chat_model": "gpt-4o-mini",
        "search_model": "gpt-4o-mini-search-preview",
        "temperature": 0.2,
        "max_tokens": 2000,
        "request_timeout_seconds": 60,
    },
    "session": {
        "tick_seconds": 1.0,
    },
    "logging": {
        "level": "INFO",
        "verbose": False,
    },
}


_CONFIG_TEMPLATE = """
# Study tracker configuration

[paths]
# Override the workspace directory (~/.study-tracker-data)
# data_home = "~/my-study-data"

[ai]
# Model used to generate quizzes
chat_model = "gpt-4o-mini"
# Search-enabled model used to suggest reading resources
search_model = "gpt-4o-mini-search-preview"
# Sampling temperature (0.0-2.0)
temperature = 0.2
max_tokens = 2000
request_timeout_seconds = 60

[session]
# How often (in seconds) the session clock checks elapsed time
tick_seconds = 1.0

[logging]
level = "INFO"
verbose = false
"""


def _require_string(value: Any, *, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"'{field}' must be a non-empty string.")
    return value.strip()


def _require_positive_int(value: Any, *, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ConfigError(f"'{field}' must be a positive integer.")
    return value


def _require_positive_number(value: Any, *, field: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"'{field}' must be a number.")
    if value <= 0:
        raise ConfigError(f"'{field}' must be greater than zero.")
    return float(value)


def _require_float_range(
    value: Any, *, field: str, min_value: float, max_value: float
) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"'{field}' must be a number.")
    number = float(value)
    if not (min_value <= number <= max_value):
        raise ConfigError(
            f"'{field}' must be between {min_value} and {max_value}."
        )
    return number


def _require_bool(value: Any, *, field: str) -> bool:
    if not isinstance(value, bool):
        raise ConfigError(f"'{field}' must be a boolean.")
    return value


def _coerce_optional_path(value: Any, *, field: str) -> Optional[Path]:
    if value is None:
        return None
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"'{field}' must be a non-empty string when set.")
    return Path(value).expanduser().resolve()


def _build_ai(section: Mapping[str, Any]) -> AIConfig:
    return AIConfig(
        chat_model=_require_string(
            section.get("chat_model"), field="ai.chat_model"
        ),
        search_model=_require_string(
            section.get("search_model"), field="ai.search_model"
        ),
        temperature=_require_float_range(
            section.get("temperature"),
            field="ai.temperature",
            min_value=0.0,
            max_value=2.0,
        ),
        max_tokens=_require_positive_int(
            section.get("max_tokens"), field="ai.max_tokens"
        ),
        request_timeout_seconds=_require_positive_int(
            section.get("request_timeout_seconds"),
            field="ai.request_timeout_seconds",
        ),
    )


def _build_logging(section: Mapping[str, Any]) -> LoggingConfig:
    level = _require_string(section.get("level"), field="logging.level").upper()
    allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
    if level not in allowed:
        raise ConfigError(
            "logging.level must be one of "
            "DEBUG, INFO, WARNING, ERROR, CRITICAL."
        )
    verbose = _require_bool(section.get("verbose"), field="logging.verbose")
    return LoggingConfig(level=level, verbose=verbose)


def _read_toml(path: Path) -> Mapping[str, Any]:
    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Failed to parse {path.name}: {exc}") from exc
    except OSError as exc:
        raise ConfigError(f"Unable to read config file {path}: {exc}") from exc


def _overlay(
    tree: MutableMapping[str, Any], data: Mapping[str, Any], *, prefix: str = ""
) -> None:
    """Copy user values onto the defaults; unknown keys are errors."""

    for key, value in data.items():
        name = prefix + key
        if key not in tree:
            raise ConfigError(f"Unknown setting '{name}' in tracker.toml.")
        if isinstance(tree[key], MutableMapping):
            if not isinstance(value, Mapping):
                raise ConfigError(f"'{name}' must be a table.")
            _overlay(tree[key], value, prefix=f"{name}.")
        else:
            tree[key] = value


def _build_config(tree: Mapping[str, Any]) -> TrackerConfig:
    return TrackerConfig(
        data_home=_coerce_optional_path(
            tree["paths"].get("data_home"), field="paths.data_home"
        ),
        ai=_build_ai(tree["ai"]),
        session=SessionConfig(
            tick_seconds=_require_positive_number(
                tree["session"].get("tick_seconds"),
                field="session.tick_seconds",
            )
        ),
        logging=_build_logging(tree["logging"]),
    )


def resolve_config_path(
    *,
    explicit_path: Optional[Path] = None,
    env: Mapping[str, str] | None = None,
) -> Path:
    env_map = os.environ if env is None else env
    if explicit_path is not None:
        return explicit_path.expanduser().resolve()
    env_override = env_map.get(CONFIG_PATH_ENV)
    if env_override:
        return Path(env_override).expanduser().resolve()
    layout = workspace.ensure_workspace(env=env_map, create=False)
    return layout.path_for("config") / CONFIG_FILENAME


def load_config(
    *,
    explicit_path: Optional[Path] = None,
    env: Mapping[str, str] | None = None,
) -> TrackerConfig:
    """Load the TOML config, applying defaults and validation."""

    path = resolve_config_path(explicit_path=explicit_path, env=env)
    tree = copy.deepcopy(_DEFAULTS)
    if path.exists():
        _overlay(tree, _read_toml(path))
    elif explicit_path is not None:
        raise ConfigError(f"Config file not found: {path}")
    return _build_config(tree)


def default_config() -> TrackerConfig:
    return _build_config(copy.deepcopy(_DEFAULTS))


def config_template() -> str:
    """Return the TOML template recommended for new installs."""

    return _CONFIG_TEMPLATE.strip() + "\n"


def write_template(path: Path, *, overwrite: bool = False) -> Path:
    """Write the default tracker.toml, readable by the owner only."""

    if path.exists() and not overwrite:
        raise ConfigError(f"Config already exists: {path}")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(config_template(), encoding="utf-8")
    try:
        path.chmod(0o600)
    except PermissionError:  # pragma: no cover - depends on filesystem
        pass
    return path
