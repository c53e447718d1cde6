"""
Persona Registry - named persona records with debounced JSON persistence

Library use goes through PersonaRegistry + a StorageAdapter; processes
talk to it through the single-shot stdio JSON-RPC server.
"""

__version__ = "0.1.0"

from .config import AppConfig, RegistryConfig, load_config
from .personas import (
    PersonaRegistry,
    PersonaRecord,
    PersonaCreate,
    PersonaUpdate,
    JsonFileStorage,
    MemoryStorage,
)

__all__ = [
    "__version__",
    "AppConfig",
    "RegistryConfig",
    "load_config",
    "PersonaRegistry",
    "PersonaRecord",
    "PersonaCreate",
    "PersonaUpdate",
    "JsonFileStorage",
    "MemoryStorage",
]
