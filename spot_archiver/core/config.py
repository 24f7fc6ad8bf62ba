"""
Configuration management for spot-archiver.

This module handles loading, validating, and providing access to the
application configuration. Values come from three layers, later layers
overriding earlier ones:

    1. config.yaml (optional when credentials come from the environment)
    2. Environment variables (a .env file in the working directory is honoured)
    3. Explicit overrides passed by the CLI (--port, --read-only, ...)

Environment Variables:
    SPOT_ARCHIVER_CLIENT_ID / SPOTIFY_CLIENT_ID
    SPOT_ARCHIVER_CLIENT_SECRET / SPOTIFY_CLIENT_SECRET
    SPOT_ARCHIVER_PORT
    SPOT_ARCHIVER_REDIRECT_URI
    SPOT_ARCHIVER_STATE_FILE
    SPOT_ARCHIVER_SCHEDULE
    SPOT_ARCHIVER_READ_ONLY
    SPOT_ARCHIVER_VERBOSITY
    SPOT_ARCHIVER_LOG_DIR

Example config.yaml:
    spotify:
      client_id: "your_client_id_here"
      client_secret: "your_client_secret_here"

    server:
      port: 8888

    state_file: "~/.spot-archiver/state.json"
    schedule: "0 4 * * *"
    read_only: false

    logging:
      level: info
      directory: null

    blacklist: "Blocked tracks"

    archivers:
      - "Discover Weekly"
      - source: {id: "37i9dQZF1DX4WYpdgoIcn6"}
        target: {name: "Chill (archive)", replaceCoverOnRefresh: true}
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from spot_archiver.core.exceptions import ConfigError
from spot_archiver.utils import extract_spotify_id


# Default configuration file name (looked up in the current working directory)
CONFIG_FILENAME = "config.yaml"

ENV_PREFIX = "SPOT_ARCHIVER_"

DEFAULT_PORT = 8888
DEFAULT_SCHEDULE = "0 4 * * *"
DEFAULT_STATE_FILE = "~/.spot-archiver/state.json"
DEFAULT_LOG_LEVEL = "info"

# Suffix of the proxy playlist created for a bare-name archiver entry
SAVE_SUFFIX = " (save)"

LOG_LEVELS = ("error", "warn", "warning", "info", "debug")


@dataclass(frozen=True)
class SpotifyConfig:
    """
    Spotify application credentials.

    Obtained from the Spotify Developer Dashboard:
    https://developer.spotify.com/dashboard

    Attributes:
        client_id: The Spotify application client ID.
        client_secret: The Spotify application client secret.
    """
    client_id: str
    client_secret: str


@dataclass(frozen=True)
class ServerConfig:
    """
    Login/callback HTTP server configuration.

    Attributes:
        port: Local port the server listens on.
        redirect_uri: Redirect URI registered in the Spotify dashboard.
                      Defaults to http://localhost:<port>/callback.
    """
    port: int
    redirect_uri: str


@dataclass(frozen=True)
class LoggingConfig:
    """
    Attributes:
        level: One of error, warn, info, debug.
        directory: Directory for the rotating log files, or None for console only.
    """
    level: str
    directory: Path | None


@dataclass(frozen=True)
class PlaylistDescriptor:
    """
    Configured reference to a playlist, by ID and/or display name.

    Attributes:
        name: Display name to look up (exact, case-sensitive).
        id: Spotify playlist ID. Takes precedence over name when given.
        find_by_persistence: Look the name up in the state store before
                             asking Spotify. Survives renames of playlists
                             created by spot-archiver itself.
        replace_cover_on_refresh: Target only. Copy the source cover on
                                  every run instead of only at creation.
    """
    name: str | None = None
    id: str | None = None
    find_by_persistence: bool = False
    replace_cover_on_refresh: bool = False

    def describe(self) -> str:
        """Short human-readable form for log lines."""
        if self.id:
            return f"id={self.id}"
        return f"'{self.name}'"


@dataclass(frozen=True)
class ArchiverPair:
    """One configured source -> target archiving relation."""
    source: PlaylistDescriptor
    target: PlaylistDescriptor


@dataclass(frozen=True)
class Config:
    """
    Complete application configuration.

    Created by load_config() and treated as immutable (frozen dataclass).

    Attributes:
        spotify: Spotify API credentials.
        server: Login/callback server settings.
        state_file: Path of the JSON state document.
        schedule: Cron expression for the archival job.
        read_only: Compute everything but never write to Spotify.
        logging: Logging settings.
        blacklist: Descriptor of the global blacklist playlist, if any.
        archivers: Configured archiver pairs, in file order.
    """
    spotify: SpotifyConfig
    server: ServerConfig
    state_file: Path
    schedule: str
    read_only: bool
    logging: LoggingConfig
    blacklist: PlaylistDescriptor | None
    archivers: tuple[ArchiverPair, ...]


def load_config(
    config_path: Path | None = None,
    overrides: dict[str, Any] | None = None
) -> Config:
    """
    Load and validate configuration from config.yaml, environment and overrides.

    Args:
        config_path: Optional explicit path to the config file. If None,
                     looks for config.yaml in the current working directory,
                     and tolerates its absence.
        overrides: Values from the command line. Recognised keys:
                   client_id, client_secret, port, read_only, verbosity,
                   state_file, schedule. None values are ignored.

    Returns:
        Config: A frozen dataclass containing all configuration values.

    Raises:
        ConfigError: If an explicit config file is missing, the YAML is
                     invalid, credentials are missing everywhere, or any
                     value is malformed.

    Behavior:
        1. Load .env into the process environment (existing vars win)
        2. Read and parse the YAML file if present
        3. Merge environment variables, then explicit overrides
        4. Validate each section and build frozen dataclasses
    """
    load_dotenv()

    explicit = config_path is not None
    if config_path is None:
        config_path = Path.cwd() / CONFIG_FILENAME

    raw_config = _read_config_file(config_path, required=explicit)
    _validate_config(raw_config)

    _apply_environment(raw_config, os.environ)
    _apply_overrides(raw_config, overrides or {})

    spotify_config = _parse_spotify_config(raw_config.get("spotify") or {})
    server_config = _parse_server_config(raw_config.get("server") or {})
    logging_config = _parse_logging_config(raw_config.get("logging") or {})

    state_file = raw_config.get("state_file") or DEFAULT_STATE_FILE
    if not isinstance(state_file, str):
        raise ConfigError(
            "'state_file' must be a string path",
            details={"field": "state_file"}
        )

    schedule = _parse_schedule(raw_config.get("schedule", DEFAULT_SCHEDULE))

    blacklist = None
    if raw_config.get("blacklist") is not None:
        blacklist = _parse_descriptor(raw_config["blacklist"], "blacklist")

    archivers = tuple(
        _parse_archiver(entry, index)
        for index, entry in enumerate(raw_config.get("archivers") or [], start=1)
    )

    return Config(
        spotify=spotify_config,
        server=server_config,
        state_file=Path(state_file).expanduser().resolve(),
        schedule=schedule,
        read_only=_parse_bool(raw_config.get("read_only", False), "read_only"),
        logging=logging_config,
        blacklist=blacklist,
        archivers=archivers
    )


def _read_config_file(config_path: Path, required: bool) -> dict[str, Any]:
    if not config_path.exists():
        if required:
            raise ConfigError(
                f"Configuration file not found: {config_path}",
                details={"file_path": str(config_path)}
            )
        return {}

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            content = f.read()
    except IOError as e:
        raise ConfigError(
            f"Failed to read configuration file: {e}",
            details={"file_path": str(config_path), "original_error": str(e)}
        ) from e

    try:
        raw_config = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigError(
            f"Invalid YAML syntax in configuration file: {e}",
            details={"file_path": str(config_path), "original_error": str(e)}
        ) from e

    # An empty file parses to None
    if raw_config is None:
        return {}

    if not isinstance(raw_config, dict):
        raise ConfigError(
            "Configuration file must contain a YAML dictionary",
            details={"file_path": str(config_path)}
        )

    return raw_config


def _apply_environment(raw_config: dict[str, Any], environ: Any) -> None:
    """
    Merge environment variables into the raw configuration in place.

    The prefixed SPOT_ARCHIVER_* names win over the generic SPOTIFY_* ones.
    """
    def _env(*names: str) -> str | None:
        for name in names:
            value = environ.get(name)
            if value:
                return value
        return None

    spotify = raw_config.get("spotify") or {}
    raw_config["spotify"] = spotify

    client_id = _env(ENV_PREFIX + "CLIENT_ID", "SPOTIFY_CLIENT_ID")
    if client_id:
        spotify["client_id"] = client_id
    client_secret = _env(ENV_PREFIX + "CLIENT_SECRET", "SPOTIFY_CLIENT_SECRET")
    if client_secret:
        spotify["client_secret"] = client_secret

    server = raw_config.get("server") or {}
    port = _env(ENV_PREFIX + "PORT")
    if port:
        server["port"] = port
    redirect_uri = _env(ENV_PREFIX + "REDIRECT_URI")
    if redirect_uri:
        server["redirect_uri"] = redirect_uri
    raw_config["server"] = server

    logging_section = raw_config.get("logging") or {}
    verbosity = _env(ENV_PREFIX + "VERBOSITY")
    if verbosity:
        logging_section["level"] = verbosity
    log_dir = _env(ENV_PREFIX + "LOG_DIR")
    if log_dir:
        logging_section["directory"] = log_dir
    raw_config["logging"] = logging_section

    for key in ("state_file", "schedule", "read_only"):
        value = _env(ENV_PREFIX + key.upper())
        if value:
            raw_config[key] = value


def _apply_overrides(raw_config: dict[str, Any], overrides: dict[str, Any]) -> None:
    for key, value in overrides.items():
        if value is None:
            continue
        if key in ("client_id", "client_secret"):
            raw_config["spotify"][key] = value
        elif key == "port":
            raw_config["server"]["port"] = value
        elif key == "verbosity":
            raw_config["logging"]["level"] = value
        elif key in ("read_only", "state_file", "schedule"):
            raw_config[key] = value
        else:
            raise ConfigError(
                f"Unknown configuration override: '{key}'",
                details={"override": key}
            )


def _validate_config(raw_config: dict[str, Any]) -> None:
    """
    Validate the raw configuration dictionary structure.

    Args:
        raw_config: Dictionary parsed from config.yaml.

    Raises:
        ConfigError: If a section has the wrong type.
    """
    for section in ("spotify", "server", "logging"):
        value = raw_config.get(section)
        if value is not None and not isinstance(value, dict):
            raise ConfigError(
                f"Section '{section}' must be a dictionary",
                details={"section": section}
            )

    archivers = raw_config.get("archivers")
    if archivers is not None and not isinstance(archivers, list):
        raise ConfigError(
            "'archivers' must be a list",
            details={"section": "archivers"}
        )


def _parse_spotify_config(spotify_section: dict[str, Any]) -> SpotifyConfig:
    """
    Parse and validate the Spotify credentials.

    Raises:
        ConfigError: If client_id or client_secret is missing or empty.
    """
    client_id = spotify_section.get("client_id", "")
    client_secret = spotify_section.get("client_secret", "")

    if not isinstance(client_id, str) or not client_id.strip():
        raise ConfigError(
            "'spotify.client_id' must be set in config.yaml or "
            f"{ENV_PREFIX}CLIENT_ID",
            details={"field": "spotify.client_id"}
        )

    if not isinstance(client_secret, str) or not client_secret.strip():
        raise ConfigError(
            "'spotify.client_secret' must be set in config.yaml or "
            f"{ENV_PREFIX}CLIENT_SECRET",
            details={"field": "spotify.client_secret"}
        )

    return SpotifyConfig(
        client_id=client_id.strip(),
        client_secret=client_secret.strip()
    )


def _parse_server_config(server_section: dict[str, Any]) -> ServerConfig:
    raw_port = server_section.get("port", DEFAULT_PORT)
    try:
        port = int(raw_port)
    except (TypeError, ValueError):
        port = -1
    if not 0 < port < 65536:
        raise ConfigError(
            "'server.port' must be an integer between 1 and 65535",
            details={"field": "server.port", "value": raw_port}
        )

    redirect_uri = server_section.get("redirect_uri") or f"http://localhost:{port}/callback"
    if not isinstance(redirect_uri, str):
        raise ConfigError(
            "'server.redirect_uri' must be a string",
            details={"field": "server.redirect_uri"}
        )

    return ServerConfig(port=port, redirect_uri=redirect_uri)


def _parse_logging_config(logging_section: dict[str, Any]) -> LoggingConfig:
    level = str(logging_section.get("level") or DEFAULT_LOG_LEVEL).lower()
    if level not in LOG_LEVELS:
        raise ConfigError(
            f"'logging.level' must be one of: {', '.join(LOG_LEVELS)}",
            details={"field": "logging.level", "value": level}
        )

    directory = logging_section.get("directory")
    if directory is not None:
        if not isinstance(directory, str) or not directory.strip():
            raise ConfigError(
                "'logging.directory' must be a non-empty string or null",
                details={"field": "logging.directory"}
            )
        directory = Path(directory.strip()).expanduser().resolve()

    return LoggingConfig(level=level, directory=directory)


def _parse_schedule(raw_schedule: Any) -> str:
    """
    Validate a cron expression.

    Accepts the classic 5-field crontab form and the 6-field form with a
    leading seconds field (e.g. "0 0 4 * * *"). Field values are checked
    by building the trigger the scheduler will use.
    """
    # archiver imports this module
    from spot_archiver.archiver.scheduler import build_trigger

    if not isinstance(raw_schedule, str) or len(raw_schedule.split()) not in (5, 6):
        raise ConfigError(
            "'schedule' must be a cron expression with 5 or 6 fields",
            details={"field": "schedule", "value": raw_schedule}
        )
    schedule = " ".join(raw_schedule.split())
    build_trigger(schedule)
    return schedule


def _parse_bool(value: Any, field: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("1", "true", "yes", "on"):
        return True
    if isinstance(value, str) and value.strip().lower() in ("0", "false", "no", "off", ""):
        return False
    raise ConfigError(
        f"'{field}' must be a boolean",
        details={"field": field, "value": value}
    )


def _flag(section: dict[str, Any], camel: str, snake: str, field: str) -> bool:
    """Read a boolean that may be spelled in camelCase or snake_case."""
    if snake in section:
        return _parse_bool(section[snake], field)
    return _parse_bool(section.get(camel, False), field)


def _parse_descriptor(raw: Any, field: str) -> PlaylistDescriptor:
    """
    Parse a playlist descriptor: a bare name string or a {name, id, ...} mapping.

    Raises:
        ConfigError: If neither name nor id is given.
    """
    if isinstance(raw, str):
        if not raw.strip():
            raise ConfigError(
                f"'{field}' must not be empty",
                details={"field": field}
            )
        return PlaylistDescriptor(name=raw)

    if not isinstance(raw, dict):
        raise ConfigError(
            f"'{field}' must be a playlist name or a mapping with 'name' or 'id'",
            details={"field": field}
        )

    name = raw.get("name")
    playlist_id = raw.get("id")
    if name is not None and not isinstance(name, str):
        raise ConfigError(f"'{field}.name' must be a string", details={"field": field})
    if playlist_id is not None and not isinstance(playlist_id, str):
        raise ConfigError(f"'{field}.id' must be a string", details={"field": field})
    if not name and not playlist_id:
        raise ConfigError(
            f"'{field}' needs a 'name' or an 'id'",
            details={"field": field}
        )

    return PlaylistDescriptor(
        name=name or None,
        id=extract_spotify_id(playlist_id.strip()) if playlist_id else None,
        find_by_persistence=_flag(raw, "findByPersistence", "find_by_persistence", field),
        replace_cover_on_refresh=_flag(
            raw, "replaceCoverOnRefresh", "replace_cover_on_refresh", field
        )
    )


def _parse_archiver(entry: Any, index: int) -> ArchiverPair:
    """
    Parse one entry of the 'archivers' list.

    A bare string "X" is shorthand for source {name: X} and target
    {name: "X (save)", find_by_persistence: true}.
    """
    field = f"archivers[{index}]"

    if isinstance(entry, str):
        if not entry.strip():
            raise ConfigError(f"'{field}' must not be empty", details={"entry": index})
        return ArchiverPair(
            source=PlaylistDescriptor(name=entry),
            target=PlaylistDescriptor(name=entry + SAVE_SUFFIX, find_by_persistence=True)
        )

    if not isinstance(entry, dict) or "source" not in entry:
        raise ConfigError(
            f"'{field}' must be a playlist name or a mapping with 'source' and 'target'",
            details={"entry": index}
        )

    source = _parse_descriptor(entry["source"], f"{field}.source")

    raw_target = entry.get("target")
    if raw_target is None:
        if not source.name:
            raise ConfigError(
                f"'{field}.target' is required when the source is given by id",
                details={"entry": index}
            )
        target = PlaylistDescriptor(name=source.name + SAVE_SUFFIX, find_by_persistence=True)
    else:
        target = _parse_descriptor(raw_target, f"{field}.target")
        if not target.name and not target.id:
            raise ConfigError(f"'{field}.target' needs a 'name' or an 'id'", details={"entry": index})

    return ArchiverPair(source=source, target=target)
