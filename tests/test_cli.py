"""
Tests for the command-line interface
"""

from unittest.mock import patch

import pytest
from click.testing import CliRunner

from spot_archiver import __version__
from spot_archiver.archiver.job import JobReport, PairOutcome, PairStatus, RunStatus
from spot_archiver.archiver.reconcile import ReconcileResult
from spot_archiver.cli import cli
from spot_archiver.core.exceptions import AuthorizationError
from spot_archiver.core.state import StateStore

from tests.conftest import pair


@pytest.fixture
def config_file(temp_dir):
    path = temp_dir / "config.yaml"
    path.write_text(f"""
spotify:
  client_id: "cid"
  client_secret: "secret"
state_file: "{temp_dir / 'state.json'}"
archivers:
  - "Discover Weekly"
""", encoding="utf-8")
    return path


@pytest.fixture
def quiet_logging():
    """Leave the test runner's logging setup alone"""
    with patch("spot_archiver.cli.setup_logging"), patch("spot_archiver.cli.shutdown_logging"):
        yield


class TestCli:
    """Test command dispatch and exit codes"""

    def test_version(self):
        result = CliRunner().invoke(cli, ["--version"])

        assert result.exit_code == 0
        assert __version__ in result.output

    def test_status(self, config_file, temp_dir):
        """Test that status lists archivers and stored playlists"""
        store = StateStore(temp_dir / "state.json", debounce=None)
        store.load()
        store.set_name("p1", "Discover Weekly (save)")
        store.set_tracks("p1", ["a", "b"])
        store.extend_blacklist("p1", ["c"])

        result = CliRunner().invoke(cli, ["-c", str(config_file), "status"])

        assert result.exit_code == 0
        assert "Authorized:  no" in result.output
        assert "'Discover Weekly' -> 'Discover Weekly (save)'" in result.output
        assert "p1" in result.output

    def test_config_error_exit_code(self, temp_dir):
        result = CliRunner().invoke(cli, ["-c", str(temp_dir / "missing.yaml"), "status"])

        assert result.exit_code == 1
        assert "Configuration error" in result.output

    def test_run_success(self, config_file, quiet_logging):
        report = JobReport(
            status=RunStatus.COMPLETED,
            outcomes=[PairOutcome(
                pair=pair("Discover Weekly", "Discover Weekly (save)"),
                status=PairStatus.OK,
                result=ReconcileResult("src", "dst", added=["a", "b"])
            )]
        )
        with patch("spot_archiver.cli.CredentialManager"), \
                patch("spot_archiver.cli.SpotifyClient"), \
                patch("spot_archiver.cli.ArchivalJob") as mock_job:
            mock_job.return_value.run.return_value = report

            result = CliRunner().invoke(cli, ["-c", str(config_file), "--read-only", "run"])

        assert result.exit_code == 0
        assert "added 2" in result.output
        assert mock_job.call_args.args[0].read_only is True

    def test_run_aborted(self, config_file, quiet_logging):
        report = JobReport(status=RunStatus.ABORTED, error="Not authorized!")
        with patch("spot_archiver.cli.CredentialManager"), \
                patch("spot_archiver.cli.SpotifyClient"), \
                patch("spot_archiver.cli.ArchivalJob") as mock_job:
            mock_job.return_value.run.return_value = report

            result = CliRunner().invoke(cli, ["-c", str(config_file), "run"])

        assert result.exit_code == 1
        assert "aborted" in result.output

    def test_run_without_login(self, config_file, quiet_logging):
        """Test that a failed refresh exits with the Spotify error code"""
        with patch("spot_archiver.cli.CredentialManager") as mock_credentials:
            mock_credentials.return_value.refresh.side_effect = AuthorizationError(
                "No refresh token stored, log in first"
            )

            result = CliRunner().invoke(cli, ["-c", str(config_file), "run"])

        assert result.exit_code == 3
        assert "log in first" in result.output
