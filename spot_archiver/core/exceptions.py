"""
Exception classes for spot-archiver.

This module defines all custom exceptions used throughout the application.
Each exception carries a human-readable message plus an optional details
dictionary, so that callers can log a short line to the console and the
full context to the log file.

Exception Hierarchy:
    SpotArchiverError (base)
        ConfigError - Configuration file / environment issues
        StateError - Persistent state document issues
        SpotifyError - Spotify Web API issues
        AuthorizationError - OAuth grant or refresh failures
        ArchiverError - Archival run / pair failures
            PlaylistNotFoundError - A descriptor matched nothing
            AmbiguousPlaylistError - A descriptor matched several playlists
"""


class SpotArchiverError(Exception):
    """
    Base exception for all spot-archiver errors.

    All custom exceptions in this project inherit from this class,
    allowing callers to catch every spot-archiver error with a single
    except clause.

    Attributes:
        message: Human-readable error description.
        details: Dictionary with additional context (playlist IDs, HTTP status...).

    Example:
        try:
            job.run()
        except SpotArchiverError as e:
            logger.error(f"Run failed: {e.message}")
            if e.details:
                logger.debug(f"Details: {e.details}")
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        """
        Initialize the base exception.

        Args:
            message: Human-readable error description shown to the user.
            details: Optional dictionary containing additional context.
                     Common keys include:
                     - 'playlist_id': Spotify playlist ID involved in the error
                     - 'http_status': HTTP status returned by Spotify
                     - 'original_error': The underlying exception as a string
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        """Return the error message for display."""
        return self.message


class ConfigError(SpotArchiverError):
    """
    Raised when the configuration is invalid.

    This is a CRITICAL error that stops the program at startup.

    Common causes:
        - config.yaml has invalid YAML syntax
        - Spotify credentials missing from both file and environment
        - Malformed archiver entries (no name and no id)
        - Invalid cron expression in 'schedule'

    Example:
        raise ConfigError(
            "Archiver entry #2 needs a source name or id",
            details={'entry': 2}
        )
    """
    pass


class StateError(SpotArchiverError):
    """
    Raised when the persistent state document cannot be used.

    NON-CRITICAL at runtime: the state store logs write failures and
    retries on the next mutation instead of raising.
    """
    pass


class SpotifyError(SpotArchiverError):
    """
    Raised when a Spotify Web API call fails.

    Attributes:
        is_auth_error: True if the access token was rejected (401/403).
        is_rate_limit: True if Spotify answered 429.
        http_status: HTTP status of the failing call, if known.

    Example:
        raise SpotifyError(
            "Failed to add tracks to playlist",
            details={'playlist_id': playlist_id, 'http_status': 500},
            http_status=500
        )
    """

    def __init__(
        self,
        message: str,
        details: dict | None = None,
        is_auth_error: bool = False,
        is_rate_limit: bool = False,
        http_status: int | None = None
    ) -> None:
        """
        Initialize Spotify error with additional flags.

        Args:
            message: Human-readable error description.
            details: Optional dictionary with additional context.
            is_auth_error: Set to True if the token was rejected.
            is_rate_limit: Set to True if this is a rate limit error.
            http_status: HTTP status code of the failing request.
        """
        super().__init__(message, details)
        self.is_auth_error = is_auth_error
        self.is_rate_limit = is_rate_limit
        self.http_status = http_status


class AuthorizationError(SpotArchiverError):
    """
    Raised when the OAuth authorization-code or refresh-token grant fails.

    Attributes:
        is_revoked: True when Spotify answered 'invalid_grant'. The refresh
                    token is dead and the user has to log in again.
    """

    def __init__(
        self,
        message: str,
        details: dict | None = None,
        is_revoked: bool = False
    ) -> None:
        super().__init__(message, details)
        self.is_revoked = is_revoked


class ArchiverError(SpotArchiverError):
    """
    Raised when an archival run or a single archiver pair cannot proceed.

    Example:
        raise ArchiverError(
            "Global blacklist playlist could not be resolved",
            details={'name': 'Blocked tracks'}
        )
    """
    pass


class PlaylistNotFoundError(ArchiverError):
    """Raised when a playlist descriptor resolves to nothing."""
    pass


class AmbiguousPlaylistError(ArchiverError):
    """
    Raised when a playlist name matches more than one playlist.

    The pair is aborted rather than guessing: writing into the wrong
    playlist cannot be undone automatically.

    Attributes:
        candidates: IDs of all matching playlists.
    """

    def __init__(self, message: str, candidates: list[str], details: dict | None = None) -> None:
        super().__init__(message, details)
        self.candidates = candidates
