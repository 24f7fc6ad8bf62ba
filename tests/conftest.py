"""Test configuration and fixtures"""

import tempfile
from pathlib import Path

import pytest

from spot_archiver.core.config import (
    ArchiverPair,
    Config,
    LoggingConfig,
    PlaylistDescriptor,
    ServerConfig,
    SpotifyConfig,
)
from spot_archiver.core.exceptions import SpotifyError
from spot_archiver.core.state import StateStore


class FakeTimer:
    """Stand-in for threading.Timer that only fires when told to"""

    def __init__(self, interval, function):
        self.interval = interval
        self.function = function
        self.daemon = False
        self.started = False
        self.cancelled = False
        self.fired = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        self.fired = True
        self.function()


class TimerRecorder:
    """timer_factory that records every timer it creates"""

    def __init__(self):
        self.timers = []

    def __call__(self, interval, function):
        timer = FakeTimer(interval, function)
        self.timers.append(timer)
        return timer

    @property
    def active(self):
        return [t for t in self.timers if t.started and not t.cancelled and not t.fired]


class FakeSpotifyClient:
    """In-memory replacement for SpotifyClient"""

    def __init__(self):
        self.tracks = {}
        self.names = {}
        self.add_calls = []
        self.created = []
        self.fail_add_on_call = None
        self.fail_read = set()
        self.cover_urls = {}
        self.uploaded_covers = {}
        self.authorized = True

    def add_playlist(self, playlist_id, name, uris=()):
        self.names[playlist_id] = name
        self.tracks[playlist_id] = list(uris)

    def current_user(self):
        if not self.authorized:
            raise SpotifyError("token rejected", is_auth_error=True, http_status=401)
        return {"id": "me", "display_name": "Me"}

    def all_user_playlists(self):
        return [{"id": pid, "name": name} for pid, name in self.names.items()]

    def playlist(self, playlist_id):
        return {"id": playlist_id, "name": self.names.get(playlist_id, "")}

    def playlist_track_uris(self, playlist_id):
        if playlist_id in self.fail_read or playlist_id not in self.tracks:
            raise SpotifyError(
                "Not found while trying to fetch playlist items",
                details={"playlist_id": playlist_id},
                http_status=404
            )
        return list(self.tracks[playlist_id])

    def add_tracks(self, playlist_id, uris):
        uris = list(uris)
        requests_made = 0
        for start in range(0, len(uris), 100):
            chunk = uris[start:start + 100]
            if self.fail_add_on_call is not None and len(self.add_calls) + 1 == self.fail_add_on_call:
                raise SpotifyError("Failed to add tracks to playlist", http_status=500)
            self.add_calls.append((playlist_id, chunk))
            self.tracks[playlist_id].extend(chunk)
            requests_made += 1
        return requests_made

    def create_playlist(self, name, description=""):
        playlist_id = f"created{len(self.created) + 1}"
        self.add_playlist(playlist_id, name)
        self.created.append(playlist_id)
        return {"id": playlist_id, "name": name}

    def playlist_cover_url(self, playlist_id):
        return self.cover_urls.get(playlist_id)

    def upload_cover_image(self, playlist_id, image_b64):
        self.uploaded_covers[playlist_id] = image_b64


def make_config(archivers=(), blacklist=None, read_only=False):
    """Build a Config without touching the filesystem"""
    return Config(
        spotify=SpotifyConfig(client_id="client-id", client_secret="client-secret"),
        server=ServerConfig(port=8888, redirect_uri="http://localhost:8888/callback"),
        state_file=Path("/tmp/unused-state.json"),
        schedule="0 4 * * *",
        read_only=read_only,
        logging=LoggingConfig(level="info", directory=None),
        blacklist=blacklist,
        archivers=tuple(archivers)
    )


def pair(source, target, **target_flags):
    """ArchiverPair from two names, or dicts of descriptor fields"""
    source = source if isinstance(source, dict) else {"name": source}
    target = target if isinstance(target, dict) else {"name": target}
    return ArchiverPair(
        source=PlaylistDescriptor(**source),
        target=PlaylistDescriptor(**target, **target_flags)
    )


@pytest.fixture
def temp_dir():
    """Create temporary directory for tests"""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


@pytest.fixture
def store(temp_dir):
    """State store writing synchronously into a temp directory"""
    store = StateStore(temp_dir / "state.json", debounce=None)
    store.load()
    return store


@pytest.fixture
def fake_client():
    """Empty in-memory Spotify"""
    return FakeSpotifyClient()


@pytest.fixture
def timers():
    """Recorder usable as timer_factory"""
    return TimerRecorder()


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep the developer's Spotify credentials out of the tests"""
    for name in (
        "SPOTIFY_CLIENT_ID",
        "SPOTIFY_CLIENT_SECRET",
        "SPOT_ARCHIVER_CLIENT_ID",
        "SPOT_ARCHIVER_CLIENT_SECRET",
        "SPOT_ARCHIVER_PORT",
        "SPOT_ARCHIVER_REDIRECT_URI",
        "SPOT_ARCHIVER_STATE_FILE",
        "SPOT_ARCHIVER_SCHEDULE",
        "SPOT_ARCHIVER_READ_ONLY",
        "SPOT_ARCHIVER_VERBOSITY",
        "SPOT_ARCHIVER_LOG_DIR",
    ):
        monkeypatch.delenv(name, raising=False)
