# src/simstate_core/config/__init__.py
from .exceptions import ConfigFileError, ConfigSchemaError
from .schema import EnhancedValidator, SystemConfig, SystemConfigParser, VariableConfig, VectorConfig
from .builder import InitialConditions, build_system, load_system_config

__all__ = [
    # Exceptions
    "ConfigFileError",
    "ConfigSchemaError",
    # Core Classes
    "EnhancedValidator",
    "SystemConfig",
    "SystemConfigParser",
    "VariableConfig",
    "VectorConfig",
    "InitialConditions",
    # Facades
    "build_system",
    "load_system_config",
]
