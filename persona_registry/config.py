"""
Configuration management for Persona Registry.

Supports YAML configuration with environment variable expansion,
plus a handful of PERSONA_* environment overrides.
"""

import os
import re
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional, Dict, Any

import yaml


@dataclass
class RegistryConfig:
    """Registry core behaviour."""
    debounce_interval_ms: int = 5000
    auto_save_enabled: bool = True

    @property
    def debounce_interval(self) -> float:
        """Debounce interval in seconds."""
        return self.debounce_interval_ms / 1000.0


@dataclass
class StorageConfig:
    """Where personas are persisted."""
    backend: str = "json"  # json | memory
    path: str = "./data/personas.json"


@dataclass
class ServerConfig:
    """Single-shot stdio JSON-RPC process."""
    stdin_timeout_seconds: float = 5.0
    log_level: str = "WARNING"


@dataclass
class AppConfig:
    """Root configuration for Persona Registry."""
    registry: RegistryConfig = field(default_factory=RegistryConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    server: ServerConfig = field(default_factory=ServerConfig)


def expand_env_vars(value: Any) -> Any:
    """Recursively expand environment variables in config values."""
    if isinstance(value, str):
        # Match ${VAR} or $VAR patterns
        pattern = r'\$\{([^}]+)\}|\$([A-Za-z_][A-Za-z0-9_]*)'

        def replace(match):
            var_name = match.group(1) or match.group(2)
            return os.environ.get(var_name, match.group(0))

        return re.sub(pattern, replace, value)
    elif isinstance(value, dict):
        return {k: expand_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [expand_env_vars(v) for v in value]
    return value


def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def parse_config(data: Optional[Dict[str, Any]]) -> AppConfig:
    """Build an AppConfig from a (possibly partial) dict."""
    data = expand_env_vars(data or {})

    registry_data = data.get("registry") or {}
    registry = RegistryConfig(
        debounce_interval_ms=int(registry_data.get("debounce_interval_ms", 5000)),
        auto_save_enabled=parse_bool(registry_data.get("auto_save_enabled", True)),
    )

    storage_data = data.get("storage") or {}
    storage = StorageConfig(
        backend=storage_data.get("backend", "json"),
        path=storage_data.get("path", "./data/personas.json"),
    )
    if storage.backend not in ("json", "memory"):
        raise ValueError(f"Unknown storage backend: {storage.backend}")

    server_data = data.get("server") or {}
    server = ServerConfig(
        stdin_timeout_seconds=float(server_data.get("stdin_timeout_seconds", 5.0)),
        log_level=str(server_data.get("log_level", "WARNING")).upper(),
    )

    return AppConfig(registry=registry, storage=storage, server=server)


def load_config(path: str | Path) -> AppConfig:
    """Load configuration from YAML file."""
    path = Path(path)

    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path) as f:
        raw = yaml.safe_load(f)

    return parse_config(raw)


def config_from_env(config: AppConfig = None, environ: Dict[str, str] = None) -> AppConfig:
    """Apply PERSONA_* environment overrides on top of ``config``."""
    config = config or AppConfig()
    env = os.environ if environ is None else environ

    if env.get("PERSONA_STORAGE_PATH"):
        config.storage.path = env["PERSONA_STORAGE_PATH"]
    if env.get("PERSONA_DEBOUNCE_MS"):
        config.registry.debounce_interval_ms = int(env["PERSONA_DEBOUNCE_MS"])
    if env.get("PERSONA_AUTOSAVE"):
        config.registry.auto_save_enabled = parse_bool(env["PERSONA_AUTOSAVE"])
    if env.get("PERSONA_LOG_LEVEL"):
        config.server.log_level = env["PERSONA_LOG_LEVEL"].upper()

    return config


def build_storage(config: StorageConfig):
    """Instantiate the storage adapter named by ``config.backend``."""
    from .personas.storage import JsonFileStorage, MemoryStorage

    if config.backend == "memory":
        return MemoryStorage()
    return JsonFileStorage(config.path)


def create_default_config() -> str:
    """Generate default configuration YAML."""
    return """# Persona Registry Configuration

registry:
  # Quiet period after the last change before an automatic save
  debounce_interval_ms: 5000
  auto_save_enabled: true

storage:
  backend: json  # json | memory
  path: ./data/personas.json  # PERSONA_STORAGE_PATH overrides

# Single-shot stdio JSON-RPC process
server:
  stdin_timeout_seconds: 5
  log_level: WARNING
"""
