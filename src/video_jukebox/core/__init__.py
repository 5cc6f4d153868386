"""Core infrastructure layer - no business logic dependencies.

This module provides foundation-level services:
- Configuration management (TOML)
- Logging (Loguru)
- Hub storage (SQLite)

Clean architecture principle: The core layer has no dependencies on
domain or application layers.
"""

# Configuration
from .config import (
    Config,
    load_config,
    get_config_dir,
    get_config_path,
    get_data_dir,
    create_default_config,
    ensure_directories,
)

# Logging
from .output import setup_loguru, setup_from_config, log

# Database
from .database import (
    get_database_path,
    get_db_connection,
    init_database,
)

__all__ = [
    # Config
    "Config",
    "load_config",
    "get_config_dir",
    "get_config_path",
    "get_data_dir",
    "create_default_config",
    "ensure_directories",
    # Logging
    "setup_loguru",
    "setup_from_config",
    "log",
    # Database
    "get_database_path",
    "get_db_connection",
    "init_database",
]
