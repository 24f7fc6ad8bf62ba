"""
Spotify API client for spot-archiver.

This module wraps the spotipy library and exposes exactly the remote
operations the archiver consumes:

    - current_user()            cheap authorization probe, owner of new playlists
    - all_user_playlists()      every playlist in the user's library (drained)
    - playlist()                playlist metadata
    - playlist_track_uris()     ordered track URIs of a playlist (drained)
    - add_tracks()              append tracks in chunks of 100
    - create_playlist()         new private playlist
    - playlist_cover_url()      URL of a playlist's cover image
    - upload_cover_image()      replace a playlist's cover

Authentication:
    The client does not own any credentials. It asks a token provider
    (normally CredentialManager.access_token) for the current access token
    before each call and rebuilds the spotipy instance when the token was
    refreshed in the background.

Errors:
    Every spotipy / requests failure is translated into SpotifyError with
    is_auth_error / is_rate_limit set from the HTTP status.

Usage:
    client = SpotifyClient(credentials.access_token)
    uris = client.playlist_track_uris("37i9dQZF1DX4WYpdgoIcn6")
"""

import threading
from typing import Any, Callable, Sequence

import requests
import spotipy

from spot_archiver.core.exceptions import SpotifyError
from spot_archiver.core.logger import get_logger
from spot_archiver.utils import chunked

logger = get_logger(__name__)


# Spotify accepts at most 100 items per "add items to playlist" request
ADD_TRACKS_CHUNK_SIZE = 100

# Page sizes allowed by the Web API
PLAYLIST_ITEMS_PAGE_SIZE = 100
USER_PLAYLISTS_PAGE_SIZE = 50

REQUESTS_TIMEOUT = 30


class SpotifyClient:
    """
    Thin, error-translating wrapper over spotipy.Spotify.

    Attributes:
        _token_provider: Callable returning the current access token or None.
        _spotify: Cached spotipy instance for _token.

    Thread Safety:
        The spotipy instance is swapped under a lock; calls themselves are
        not serialized (spotipy keeps its own requests session).

    Example:
        client = SpotifyClient(lambda: "BQD...")
        me = client.current_user()
        print(me["id"])
    """

    def __init__(
        self,
        token_provider: Callable[[], str | None],
        requests_timeout: int = REQUESTS_TIMEOUT,
        retries: int = 3
    ) -> None:
        self._token_provider = token_provider
        self._requests_timeout = requests_timeout
        self._retries = retries
        self._lock = threading.Lock()
        self._spotify: spotipy.Spotify | None = None
        self._token: str | None = None
        self._user: dict[str, Any] | None = None

    def _api(self) -> spotipy.Spotify:
        """
        Return a spotipy instance bound to the current access token.

        Raises:
            SpotifyError: If no access token is available (is_auth_error=True).
        """
        token = self._token_provider()
        if not token:
            raise SpotifyError(
                "Not authorized: no access token available, log in first",
                is_auth_error=True
            )

        with self._lock:
            if self._spotify is None or token != self._token:
                self._spotify = spotipy.Spotify(
                    auth=token,
                    requests_timeout=self._requests_timeout,
                    retries=self._retries
                )
                self._token = token
            return self._spotify

    def _translate(self, error: Exception, action: str, details: dict[str, Any]) -> SpotifyError:
        """
        Convert a spotipy/requests failure into a SpotifyError.

        Args:
            error: The original exception.
            action: Short description used in the message ("fetch playlist").
            details: Context for the log file.
        """
        details = dict(details, original_error=str(error))

        if isinstance(error, spotipy.SpotifyException):
            status = error.http_status
            details["http_status"] = status
            if status == 429:
                return SpotifyError(
                    f"Rate limited while trying to {action}",
                    details=details,
                    is_rate_limit=True,
                    http_status=status
                )
            if status in (401, 403):
                return SpotifyError(
                    f"Spotify rejected the access token while trying to {action}",
                    details=details,
                    is_auth_error=True,
                    http_status=status
                )
            if status == 404:
                return SpotifyError(
                    f"Not found while trying to {action}",
                    details=details,
                    http_status=status
                )
            return SpotifyError(
                f"Failed to {action}: {error.msg}",
                details=details,
                http_status=status
            )

        return SpotifyError(f"Failed to {action}: {error}", details=details)

    def _call(self, action: str, details: dict[str, Any], method: str, *args: Any, **kwargs: Any) -> Any:
        """Invoke a spotipy method by name with error translation."""
        spotify = self._api()
        try:
            return getattr(spotify, method)(*args, **kwargs)
        except (spotipy.SpotifyException, requests.exceptions.RequestException) as e:
            raise self._translate(e, action, details) from e

    # =========================================================================
    # User Operations
    # =========================================================================

    def current_user(self) -> dict[str, Any]:
        """
        Get the profile of the authorized user.

        Returns:
            Dictionary with at least 'id' and 'display_name'.

        Raises:
            SpotifyError: If the token is missing or rejected.
        """
        user = self._call("fetch current user", {}, "current_user")
        if not user:
            raise SpotifyError("Spotify returned an empty user profile", is_auth_error=True)
        self._user = user
        return user

    def all_user_playlists(self) -> list[dict[str, Any]]:
        """
        Get every playlist in the user's library, handling pagination.

        Returns:
            List of simplified playlist objects ('id', 'name', 'owner', ...).
            Order is the library order reported by Spotify.

        Raises:
            SpotifyError: On any failed page. No partial list is returned.
        """
        playlists: list[dict[str, Any]] = []
        offset = 0

        while True:
            response = self._call(
                "list user playlists",
                {"offset": offset},
                "current_user_playlists",
                limit=USER_PLAYLISTS_PAGE_SIZE,
                offset=offset
            ) or {}
            items = response.get("items") or []
            playlists.extend(item for item in items if item)

            if response.get("next") is None or not items:
                break
            offset += len(items)

        logger.debug(f"Fetched {len(playlists)} user playlists")
        return playlists

    # =========================================================================
    # Playlist Operations
    # =========================================================================

    def playlist(self, playlist_id: str) -> dict[str, Any]:
        """
        Get playlist metadata (no track list).

        Raises:
            SpotifyError: If the playlist does not exist or is not accessible.
        """
        result = self._call(
            "fetch playlist",
            {"playlist_id": playlist_id},
            "playlist",
            playlist_id,
            fields="id,name,description,owner(id),images,uri"
        )
        if result is None:
            raise SpotifyError(
                f"Playlist not found: {playlist_id}",
                details={"playlist_id": playlist_id},
                http_status=404
            )
        return result

    def playlist_track_uris(self, playlist_id: str) -> list[str]:
        """
        Get the ordered track URIs of a playlist, handling pagination.

        Items without a track URI (removed tracks, podcast episodes without
        track data) are dropped. Local files keep their spotify:local: URI.

        Args:
            playlist_id: Spotify playlist ID.

        Returns:
            Track URIs in playlist order. Duplicates are kept.

        Raises:
            SpotifyError: On any failed page. No partial list is returned.
        """
        uris: list[str] = []
        offset = 0

        while True:
            response = self._call(
                "fetch playlist items",
                {"playlist_id": playlist_id, "offset": offset},
                "playlist_items",
                playlist_id,
                fields="items(track(uri)),next",
                limit=PLAYLIST_ITEMS_PAGE_SIZE,
                offset=offset,
                additional_types=["track"]
            ) or {}
            items = response.get("items") or []

            for item in items:
                track = (item or {}).get("track") or {}
                uri = track.get("uri")
                if uri:
                    uris.append(uri)

            if response.get("next") is None or not items:
                break
            offset += len(items)

        return uris

    def add_tracks(self, playlist_id: str, uris: Sequence[str]) -> int:
        """
        Append tracks to a playlist, preserving order.

        Args:
            playlist_id: Target playlist ID.
            uris: Track URIs to append. An empty sequence makes no request.

        Returns:
            Number of requests issued (one per chunk of 100).

        Raises:
            SpotifyError: If a chunk fails. Earlier chunks stay committed on
                          Spotify; details['committed'] tells how many URIs.
        """
        requests_made = 0
        committed = 0

        for chunk in chunked(list(uris), ADD_TRACKS_CHUNK_SIZE):
            self._call(
                "add tracks to playlist",
                {"playlist_id": playlist_id, "committed": committed, "chunk_size": len(chunk)},
                "playlist_add_items",
                playlist_id,
                list(chunk)
            )
            requests_made += 1
            committed += len(chunk)

        return requests_made

    def create_playlist(self, name: str, description: str = "") -> dict[str, Any]:
        """
        Create a private playlist owned by the authorized user.

        Returns:
            The created playlist object ('id', 'name', ...).
        """
        user = self._user or self.current_user()
        return self._call(
            "create playlist",
            {"name": name},
            "user_playlist_create",
            user["id"],
            name,
            public=False,
            description=description
        )

    def playlist_cover_url(self, playlist_id: str) -> str | None:
        """
        Get the URL of the largest cover image of a playlist.

        Returns:
            Image URL, or None when the playlist has no cover.
        """
        images = self._call(
            "fetch playlist cover",
            {"playlist_id": playlist_id},
            "playlist_cover_image",
            playlist_id
        ) or []
        if not images:
            return None
        # Spotify lists the largest image first; mosaic covers have no size
        return images[0].get("url")

    def upload_cover_image(self, playlist_id: str, image_b64: str) -> None:
        """
        Replace the cover image of a playlist.

        Args:
            playlist_id: Target playlist ID.
            image_b64: Base64-encoded JPEG, at most 256 KB once encoded.

        Note:
            Requires the ugc-image-upload scope.
        """
        self._call(
            "upload playlist cover",
            {"playlist_id": playlist_id, "size": len(image_b64)},
            "playlist_upload_cover_image",
            playlist_id,
            image_b64
        )
