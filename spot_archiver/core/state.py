"""
Persistent state store for spot-archiver.

The state document is a single JSON file holding:
    - the OAuth token pair (so a restart does not need a new login)
    - one record per playlist ever touched: last observed name, the target
      track list at the end of the previous run, and the blacklist of tracks
      the user removed on purpose

File format:
    {
      "tokens": {"accessToken": "...", "refreshToken": "..."},
      "playlists": {
        "<playlist id>": {
          "name": "Discover Weekly (save)",
          "tracks": ["spotify:track:...", ...],
          "blacklist": ["spotify:track:...", ...]
        }
      }
    }

Every mutation goes through a StateStore method, which takes the store
lock, applies the change and schedules a debounced rewrite of the whole
document. Blacklists only ever grow.

Usage:
    store = StateStore(Path("~/.spot-archiver/state.json").expanduser())
    store.load()

    store.ensure_record(playlist_id, name="Discover Weekly (save)")
    store.extend_blacklist(playlist_id, removed_uris)
    store.set_tracks(playlist_id, current_uris)

    store.close()  # flush pending changes at shutdown
"""

import json
import os
import tempfile
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterable

from spot_archiver.core.exceptions import StateError
from spot_archiver.core.logger import get_logger
from spot_archiver.utils import ensure_directory

logger = get_logger(__name__)


DEFAULT_DEBOUNCE_SECONDS = 1.0
STATE_FILE_MODE = 0o600


@dataclass
class TokenState:
    """OAuth token pair as persisted between restarts."""
    access_token: str | None = None
    refresh_token: str | None = None


@dataclass
class PlaylistRecord:
    """
    Persisted knowledge about one remote playlist.

    Attributes:
        name: Last observed display name.
        tracks: Target-side track URIs at the end of the previous run.
                This is the diff baseline, not the truth.
        blacklist: Track URIs the user removed from this playlist. Never shrinks.
    """
    name: str = ""
    tracks: list[str] = field(default_factory=list)
    blacklist: set[str] = field(default_factory=set)

    def copy(self) -> "PlaylistRecord":
        return PlaylistRecord(self.name, list(self.tracks), set(self.blacklist))


@dataclass
class State:
    """Whole state document."""
    tokens: TokenState = field(default_factory=TokenState)
    playlists: dict[str, PlaylistRecord] = field(default_factory=dict)


class StateStore:
    """
    Thread-safe owner of the persistent state document.

    All public methods acquire self._lock. Readers get copies, so a caller
    can never change the document behind the store's back.

    Args:
        path: Location of the JSON document. Parent directories are created
              on first write.
        debounce: Seconds to wait before writing after a mutation. Further
                  mutations inside the window share the same write.
                  None or 0 writes synchronously on every mutation.
        timer_factory: Callable with the threading.Timer signature.
                       Replaced in tests.
    """

    def __init__(
        self,
        path: Path,
        debounce: float | None = DEFAULT_DEBOUNCE_SECONDS,
        timer_factory: Callable[..., Any] = threading.Timer
    ) -> None:
        self.path = path
        self.debounce = debounce
        self._timer_factory = timer_factory
        self._lock = threading.RLock()
        self._state = State()
        self._timer: Any = None
        self._dirty = False

    # =========================================================================
    # Loading and Saving
    # =========================================================================

    def load(self) -> State:
        """
        Read the state document from disk.

        A missing, empty or unreadable document yields an empty state.
        This never raises: losing the state only means the next run starts
        without a baseline, while refusing to start would stop archiving.

        Returns:
            The loaded state (a reference owned by the store, do not mutate).
        """
        with self._lock:
            self._state = self._read()
            self._dirty = False
            return self._state

    def _read(self) -> State:
        if not self.path.exists():
            logger.debug(f"No state file at {self.path}, starting empty")
            return State()

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                content = f.read()
        except OSError as e:
            logger.warning(f"Could not read state file {self.path}: {e}")
            return State()

        if not content.strip():
            return State()

        try:
            raw = json.loads(content)
        except json.JSONDecodeError as e:
            logger.warning(f"State file {self.path} is corrupted, starting empty: {e}")
            return State()

        if not isinstance(raw, dict):
            logger.warning(f"State file {self.path} has an unexpected structure, starting empty")
            return State()

        return _deserialize(raw)

    def save(self) -> None:
        """
        Schedule a write of the whole document.

        With a debounce window a single timer is armed; saves requested while
        it is pending are absorbed by it.
        """
        with self._lock:
            self._dirty = True
            if not self.debounce:
                self.flush()
                return
            if self._timer is None:
                self._timer = self._timer_factory(self.debounce, self.flush)
                self._timer.daemon = True
                self._timer.start()

    def flush(self) -> bool:
        """
        Write pending changes now.

        Returns:
            True if the document on disk is up to date, False if the write
            failed. Failures are logged, not raised; the store stays dirty and
            the next mutation tries again.
        """
        with self._lock:
            self._timer = None
            if not self._dirty:
                return True

            document = _serialize(self._state)
            try:
                self._write(document)
            except StateError as e:
                logger.error(f"{e.message} (will retry on next change)")
                return False

            self._dirty = False
            return True

    def _write(self, document: dict[str, Any]) -> None:
        """
        Atomically replace the state file (temp file + rename).

        Raises:
            StateError: If the directory, temp file or rename fails.
        """
        try:
            self._replace_file(document)
        except (OSError, TypeError, ValueError) as e:
            raise StateError(
                f"Failed to write state file {self.path}: {e}",
                details={"path": str(self.path), "original_error": str(e)}
            ) from e

    def _replace_file(self, document: dict[str, Any]) -> None:
        ensure_directory(self.path.parent)
        fd, tmp_name = tempfile.mkstemp(
            dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(document, f, indent=2, ensure_ascii=False)
                f.flush()
                os.fsync(f.fileno())
            try:
                # Tokens live in this file
                os.chmod(tmp_name, STATE_FILE_MODE)
            except OSError:
                pass
            os.replace(tmp_name, self.path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise

    def close(self) -> None:
        """Cancel the pending timer and write pending changes."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self.flush()

    @property
    def dirty(self) -> bool:
        with self._lock:
            return self._dirty

    @property
    def state(self) -> State:
        """Copy of the whole document."""
        with self._lock:
            return State(tokens=self.tokens, playlists=self.records())

    # =========================================================================
    # Token Operations
    # =========================================================================

    @property
    def tokens(self) -> TokenState:
        with self._lock:
            return TokenState(self._state.tokens.access_token, self._state.tokens.refresh_token)

    def set_tokens(self, access_token: str, refresh_token: str | None = None) -> None:
        """
        Store a new access token and, if given, a new refresh token.

        A refresh that does not rotate the refresh token passes None and
        keeps the stored one.
        """
        with self._lock:
            self._state.tokens.access_token = access_token
            if refresh_token is not None:
                self._state.tokens.refresh_token = refresh_token
            self.save()

    def clear_tokens(self) -> None:
        with self._lock:
            self._state.tokens = TokenState()
            self.save()

    # =========================================================================
    # Playlist Records
    # =========================================================================

    def record(self, playlist_id: str) -> PlaylistRecord | None:
        """Return a copy of the record for playlist_id, or None."""
        with self._lock:
            record = self._state.playlists.get(playlist_id)
            return record.copy() if record is not None else None

    def records(self) -> dict[str, PlaylistRecord]:
        """Return copies of all records keyed by playlist ID."""
        with self._lock:
            return {pid: rec.copy() for pid, rec in self._state.playlists.items()}

    def ensure_record(self, playlist_id: str, name: str | None = None) -> PlaylistRecord:
        """
        Create an empty record for playlist_id if there is none.

        Args:
            playlist_id: Spotify playlist ID.
            name: Display name for a new record. An existing record keeps
                  its name (use set_name() to update it).

        Returns:
            A copy of the (possibly new) record.
        """
        with self._lock:
            record = self._state.playlists.get(playlist_id)
            if record is None:
                record = PlaylistRecord(name=name or "")
                self._state.playlists[playlist_id] = record
                self.save()
            return record.copy()

    def set_name(self, playlist_id: str, name: str) -> None:
        with self._lock:
            record = self._state.playlists.get(playlist_id)
            if record is None:
                self._state.playlists[playlist_id] = PlaylistRecord(name=name)
                self.save()
            elif record.name != name:
                record.name = name
                self.save()

    def set_tracks(self, playlist_id: str, tracks: Iterable[str]) -> None:
        """Replace the track snapshot of a playlist."""
        with self._lock:
            record = self._state.playlists.setdefault(playlist_id, PlaylistRecord())
            record.tracks = list(tracks)
            self.save()

    def extend_blacklist(self, playlist_id: str, uris: Iterable[str]) -> set[str]:
        """
        Add track URIs to the blacklist of a playlist.

        Returns:
            The URIs that were not blacklisted before. Nothing is written
            when this set is empty.
        """
        with self._lock:
            record = self._state.playlists.setdefault(playlist_id, PlaylistRecord())
            added = set(uris) - record.blacklist
            if added:
                record.blacklist |= added
                self.save()
            return added

    def find_by_name(self, name: str) -> list[str]:
        """Return the IDs of all records whose stored name equals name exactly."""
        with self._lock:
            return [pid for pid, rec in self._state.playlists.items() if rec.name == name]


def _serialize(state: State) -> dict[str, Any]:
    return {
        "tokens": {
            "accessToken": state.tokens.access_token,
            "refreshToken": state.tokens.refresh_token,
        },
        "playlists": {
            playlist_id: {
                "name": record.name,
                "tracks": list(record.tracks),
                "blacklist": sorted(record.blacklist),
            }
            for playlist_id, record in state.playlists.items()
        },
    }


def _deserialize(raw: dict[str, Any]) -> State:
    """Build a State from a parsed document, skipping malformed entries."""
    state = State()

    tokens = raw.get("tokens")
    if isinstance(tokens, dict):
        state.tokens = TokenState(
            access_token=tokens.get("accessToken") or None,
            refresh_token=tokens.get("refreshToken") or None,
        )

    playlists = raw.get("playlists")
    if not isinstance(playlists, dict):
        return state

    for playlist_id, entry in playlists.items():
        if not isinstance(entry, dict):
            logger.warning(f"Skipping malformed state record for playlist {playlist_id}")
            continue
        tracks = entry.get("tracks") or []
        blacklist = entry.get("blacklist") or []
        state.playlists[playlist_id] = PlaylistRecord(
            name=str(entry.get("name") or ""),
            tracks=[uri for uri in tracks if isinstance(uri, str)],
            blacklist={uri for uri in blacklist if isinstance(uri, str)},
        )

    return state
