"""
Operator DAO Configuration

Loads all sections of config.toml at startup.
Environment variables override TOML values.
"""

from .loader import (
    DAOConfig,
    DAOSectionConfig,
    BootstrapConfig,
    GenesisConfig,
    StorageConfig,
    LoggingConfig,
    REFERENCE_ACTIONS,
    REFERENCE_OPERATORS,
    load_config,
)

__all__ = [
    "DAOConfig",
    "DAOSectionConfig",
    "BootstrapConfig",
    "GenesisConfig",
    "StorageConfig",
    "LoggingConfig",
    "REFERENCE_ACTIONS",
    "REFERENCE_OPERATORS",
    "load_config",
]
