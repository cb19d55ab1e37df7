"""
Configuration for the network simulation.

Settings live in config.yaml under the base directory. Missing keys fall
back to defaults. The base directory is resolved as:

    explicit argument / --data-dir > MESHSIM_BASE_PATH > ~/.meshsim

The assistant API key is only ever read from MESHSIM_ASSISTANT_API_KEY or
the config file, never from source.
"""

import copy
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

DEFAULT_BASE_PATH = Path.home() / ".meshsim"
CONFIG_FILENAME = "config.yaml"

ENV_BASE_PATH = "MESHSIM_BASE_PATH"
ENV_API_KEY = "MESHSIM_ASSISTANT_API_KEY"

DEFAULTS: Dict[str, Any] = {
    "storage": {
        "db_path": "network.sqlite",
        "fallback": True,
        "retry_attempts": 3,
        "retry_delay": 0.3,
    },
    "network": {
        "seed": None,
    },
    "delivery": {
        "min_delay": 0.3,
        "max_delay": 1.0,
    },
    "assistant": {
        "provider": "canned",
        "model": "gemini-1.5-flash",
        "base_url": "https://generativelanguage.googleapis.com/v1beta",
        "max_output_tokens": 200,
        "timeout": 30,
        "api_key": None,
    },
    "backend": {
        "enabled": False,
        "tick_interval": 5.0,
    },
}

CONFIG_TEMPLATE = """# meshsim configuration

storage:
  db_path: network.sqlite   # relative to the data directory
  fallback: true            # use in-memory storage if the database is blocked
  retry_attempts: 3
  retry_delay: 0.3          # seconds between write attempts

network:
  seed: null                # set an integer for reproducible topologies

delivery:
  min_delay: 0.3            # seconds
  max_delay: 1.0

assistant:
  provider: canned          # or generative
  model: gemini-1.5-flash
  base_url: https://generativelanguage.googleapis.com/v1beta
  max_output_tokens: 200
  timeout: 30
  # api_key: prefer the MESHSIM_ASSISTANT_API_KEY environment variable

backend:
  enabled: false
  tick_interval: 5.0
"""


def get_base_path(data_dir: Optional[Path] = None) -> Path:
    """Get the base path for simulation data.

    Priority: explicit data_dir > MESHSIM_BASE_PATH env var > default path.
    """
    if data_dir:
        return Path(data_dir)
    env_path = os.getenv(ENV_BASE_PATH)
    if env_path:
        return Path(env_path)
    return DEFAULT_BASE_PATH


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def get_dotted(data: Dict[str, Any], key: str) -> Any:
    """Look up a nested key like 'delivery.min_delay'. Raises KeyError."""
    current = data
    for part in key.split("."):
        if not isinstance(current, dict) or part not in current:
            raise KeyError(key)
        current = current[part]
    return current


def set_dotted(data: Dict[str, Any], key: str, value: Any) -> None:
    """Set a nested key like 'assistant.provider', creating sections."""
    parts = key.split(".")
    current = data
    for part in parts[:-1]:
        if not isinstance(current.get(part), dict):
            current[part] = {}
        current = current[part]
    current[parts[-1]] = value


def load_config_data(base_path: Path) -> Dict[str, Any]:
    """Defaults merged with config.yaml, if present."""
    config_path = Path(base_path) / CONFIG_FILENAME
    data: Dict[str, Any] = {}
    if config_path.exists():
        data = yaml.safe_load(config_path.read_text()) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Invalid configuration in {config_path}: expected a mapping")
    return _merge(DEFAULTS, data)


@dataclass
class SimulationConfig:
    """Resolved settings for a SimulationContext."""
    base_path: Path = DEFAULT_BASE_PATH
    db_path: Optional[Path] = None  # None: in-memory storage only
    fallback: bool = True
    retry_attempts: int = 3
    retry_delay: float = 0.3
    seed: Optional[int] = None
    min_delay: float = 0.3
    max_delay: float = 1.0
    assistant_provider: str = "canned"
    assistant_model: str = "gemini-1.5-flash"
    assistant_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    assistant_max_output_tokens: int = 200
    assistant_timeout: float = 30.0
    assistant_api_key: Optional[str] = None
    backend_enabled: bool = False
    tick_interval: float = 5.0

    @classmethod
    def from_dict(cls, data: Dict[str, Any], base_path: Path) -> "SimulationConfig":
        data = _merge(DEFAULTS, data)
        storage = data["storage"]
        assistant = data["assistant"]
        db_path = storage.get("db_path")
        if db_path:
            db_path = Path(db_path).expanduser()
            if not db_path.is_absolute():
                db_path = Path(base_path) / db_path

        return cls(
            base_path=Path(base_path),
            db_path=db_path,
            fallback=bool(storage["fallback"]),
            retry_attempts=int(storage["retry_attempts"]),
            retry_delay=float(storage["retry_delay"]),
            seed=data["network"].get("seed"),
            min_delay=float(data["delivery"]["min_delay"]),
            max_delay=float(data["delivery"]["max_delay"]),
            assistant_provider=str(assistant["provider"]),
            assistant_model=str(assistant["model"]),
            assistant_base_url=str(assistant["base_url"]),
            assistant_max_output_tokens=int(assistant["max_output_tokens"]),
            assistant_timeout=float(assistant["timeout"]),
            assistant_api_key=os.getenv(ENV_API_KEY) or assistant.get("api_key"),
            backend_enabled=bool(data["backend"]["enabled"]),
            tick_interval=float(data["backend"]["tick_interval"]),
        )

    @classmethod
    def load(cls, data_dir: Optional[Path] = None) -> "SimulationConfig":
        """Resolve the base path and read its config.yaml."""
        base_path = get_base_path(data_dir)
        return cls.from_dict(load_config_data(base_path), base_path)


__all__ = [
    "DEFAULT_BASE_PATH",
    "CONFIG_FILENAME",
    "CONFIG_TEMPLATE",
    "ENV_BASE_PATH",
    "ENV_API_KEY",
    "DEFAULTS",
    "get_base_path",
    "get_dotted",
    "set_dotted",
    "load_config_data",
    "SimulationConfig",
]
