"""
Tests for configuration loading
"""

from pathlib import Path

import pytest

from spot_archiver.core.config import (
    DEFAULT_PORT,
    DEFAULT_SCHEDULE,
    PlaylistDescriptor,
    load_config,
)
from spot_archiver.core.exceptions import ConfigError


CREDENTIALS = """
spotify:
  client_id: "cid"
  client_secret: "secret"
"""


def write_config(temp_dir, text):
    path = temp_dir / "config.yaml"
    path.write_text(text, encoding="utf-8")
    return path


class TestLoadConfig:
    """Test reading config.yaml"""

    def test_defaults(self, temp_dir):
        config = load_config(write_config(temp_dir, CREDENTIALS))

        assert config.spotify.client_id == "cid"
        assert config.server.port == DEFAULT_PORT
        assert config.server.redirect_uri == "http://localhost:8888/callback"
        assert config.schedule == DEFAULT_SCHEDULE
        assert config.read_only is False
        assert config.blacklist is None
        assert config.archivers == ()
        assert config.logging.level == "info"
        assert config.logging.directory is None
        assert config.state_file == Path("~/.spot-archiver/state.json").expanduser().resolve()

    def test_bare_name_shorthand(self, temp_dir):
        """Test that "X" archives into a persisted "X (save)" target"""
        config = load_config(write_config(temp_dir, CREDENTIALS + """
archivers:
  - "Discover Weekly"
"""))

        pair = config.archivers[0]
        assert pair.source == PlaylistDescriptor(name="Discover Weekly")
        assert pair.target == PlaylistDescriptor(
            name="Discover Weekly (save)", find_by_persistence=True
        )

    def test_explicit_entry(self, temp_dir):
        """Test camelCase flags and id extraction from a URL"""
        config = load_config(write_config(temp_dir, CREDENTIALS + """
archivers:
  - source:
      id: "https://open.spotify.com/playlist/37i9dQZF1DX4WYpdgoIcn6?si=x"
    target:
      name: "Chill (archive)"
      findByPersistence: true
      replaceCoverOnRefresh: true
  - source: "Radar"
    target: {name: "Radar archive", find_by_persistence: "yes"}
blacklist: {id: "spotify:playlist:blk"}
"""))

        first, second = config.archivers
        assert first.source.id == "37i9dQZF1DX4WYpdgoIcn6"
        assert first.target.find_by_persistence
        assert first.target.replace_cover_on_refresh
        assert second.source.name == "Radar"
        assert second.target.find_by_persistence
        assert not second.target.replace_cover_on_refresh
        assert config.blacklist.id == "blk"

    def test_source_without_target(self, temp_dir):
        config = load_config(write_config(temp_dir, CREDENTIALS + """
archivers:
  - source: {name: "Weekly"}
"""))

        assert config.archivers[0].target.name == "Weekly (save)"

    def test_six_field_schedule(self, temp_dir):
        config = load_config(write_config(temp_dir, CREDENTIALS + 'schedule: "0 0 4 * * *"\n'))

        assert config.schedule == "0 0 4 * * *"

    def test_missing_default_file_is_tolerated(self, temp_dir, monkeypatch):
        """Test that credentials from the environment suffice without config.yaml"""
        monkeypatch.chdir(temp_dir)
        monkeypatch.setenv("SPOTIFY_CLIENT_ID", "env-id")
        monkeypatch.setenv("SPOTIFY_CLIENT_SECRET", "env-secret")

        config = load_config()

        assert config.spotify.client_id == "env-id"
        assert config.spotify.client_secret == "env-secret"


class TestPrecedence:
    """Test environment and command-line overrides"""

    def test_environment_beats_file(self, temp_dir, monkeypatch):
        monkeypatch.setenv("SPOT_ARCHIVER_CLIENT_ID", "prefixed")
        monkeypatch.setenv("SPOTIFY_CLIENT_ID", "generic")
        monkeypatch.setenv("SPOT_ARCHIVER_PORT", "9999")
        monkeypatch.setenv("SPOT_ARCHIVER_READ_ONLY", "true")

        config = load_config(write_config(temp_dir, CREDENTIALS))

        assert config.spotify.client_id == "prefixed"
        assert config.server.port == 9999
        assert config.server.redirect_uri == "http://localhost:9999/callback"
        assert config.read_only is True

    def test_overrides_beat_environment(self, temp_dir, monkeypatch):
        monkeypatch.setenv("SPOT_ARCHIVER_PORT", "9999")

        config = load_config(
            write_config(temp_dir, CREDENTIALS),
            overrides={"port": 7777, "client_secret": "cli-secret", "verbosity": "debug", "read_only": None}
        )

        assert config.server.port == 7777
        assert config.spotify.client_secret == "cli-secret"
        assert config.logging.level == "debug"
        assert config.read_only is False

    def test_unknown_override(self, temp_dir):
        with pytest.raises(ConfigError, match="Unknown configuration override"):
            load_config(write_config(temp_dir, CREDENTIALS), overrides={"colour": "red"})


class TestInvalidConfig:
    """Test rejection of malformed configuration"""

    def test_explicit_file_missing(self, temp_dir):
        with pytest.raises(ConfigError, match="not found"):
            load_config(temp_dir / "nope.yaml")

    def test_invalid_yaml(self, temp_dir):
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_config(write_config(temp_dir, "spotify: [unclosed"))

    def test_missing_credentials(self, temp_dir):
        with pytest.raises(ConfigError, match="client_id"):
            load_config(write_config(temp_dir, "archivers: []\n"))

    def test_section_not_a_mapping(self, temp_dir):
        with pytest.raises(ConfigError, match="must be a dictionary"):
            load_config(write_config(temp_dir, "spotify: nope\n"))

    def test_bad_schedule(self, temp_dir):
        with pytest.raises(ConfigError, match="schedule"):
            load_config(write_config(temp_dir, CREDENTIALS + 'schedule: "daily"\n'))

    def test_schedule_value_out_of_range(self, temp_dir):
        """Test that field values are checked, not only the field count"""
        with pytest.raises(ConfigError, match="Invalid schedule"):
            load_config(write_config(temp_dir, CREDENTIALS + 'schedule: "99 4 * * *"\n'))

    def test_bad_port(self, temp_dir):
        with pytest.raises(ConfigError, match="server.port"):
            load_config(write_config(temp_dir, CREDENTIALS + "server: {port: 70000}\n"))

    def test_entry_without_name_or_id(self, temp_dir):
        with pytest.raises(ConfigError, match="archivers\\[1\\]"):
            load_config(write_config(temp_dir, CREDENTIALS + """
archivers:
  - source: {findByPersistence: true}
"""))

    def test_id_source_needs_target(self, temp_dir):
        with pytest.raises(ConfigError, match="target"):
            load_config(write_config(temp_dir, CREDENTIALS + """
archivers:
  - source: {id: "abc"}
"""))

    def test_bad_flag(self, temp_dir):
        with pytest.raises(ConfigError, match="boolean"):
            load_config(write_config(temp_dir, CREDENTIALS + """
archivers:
  - source: "A"
    target: {name: "B", findByPersistence: "maybe"}
"""))
