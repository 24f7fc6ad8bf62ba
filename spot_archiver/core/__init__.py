"""
Core module for spot-archiver.

This module provides the foundational components used throughout the application:
    - exceptions: Custom exception classes for error handling
    - config: Configuration loading and validation
    - state: Thread-safe JSON state store (tokens, snapshots, blacklists)
    - logger: Logging system with console and rotating file outputs

Usage:
    from spot_archiver.core import (
        Config, load_config,
        StateStore,
        setup_logging, get_logger,
        SpotArchiverError, ConfigError
    )
"""

from spot_archiver.core.config import (
    ArchiverPair,
    Config,
    LoggingConfig,
    PlaylistDescriptor,
    ServerConfig,
    SpotifyConfig,
    load_config,
)
from spot_archiver.core.exceptions import (
    AmbiguousPlaylistError,
    ArchiverError,
    AuthorizationError,
    ConfigError,
    PlaylistNotFoundError,
    SpotArchiverError,
    SpotifyError,
    StateError,
)
from spot_archiver.core.logger import (
    get_logger,
    setup_logging,
    shutdown_logging,
)
from spot_archiver.core.state import (
    PlaylistRecord,
    State,
    StateStore,
    TokenState,
)

__all__ = [
    # Config
    "Config",
    "SpotifyConfig",
    "ServerConfig",
    "LoggingConfig",
    "PlaylistDescriptor",
    "ArchiverPair",
    "load_config",
    # State
    "StateStore",
    "State",
    "PlaylistRecord",
    "TokenState",
    # Exceptions
    "SpotArchiverError",
    "ConfigError",
    "StateError",
    "SpotifyError",
    "AuthorizationError",
    "ArchiverError",
    "PlaylistNotFoundError",
    "AmbiguousPlaylistError",
    # Logger
    "setup_logging",
    "get_logger",
    "shutdown_logging",
]
