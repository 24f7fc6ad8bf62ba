"""
Command-line interface for spot-archiver.

This module implements the CLI using Click, with rich-click for colored
help output.

Commands:
    spot-archiver                     Same as 'serve'
    spot-archiver serve               Run the service: login server, token
                                      refresh and scheduled archival runs
    spot-archiver run                 Run every archiver once and exit
    spot-archiver status              Show authorization, schedule and stored playlists

Options (before the command):
    -c, --config <path>               Path to config.yaml
    -p, --port <port>                 Port of the login/callback server
    -i, --client-id <id>              Spotify application client ID
    -s, --client-secret <secret>      Spotify application client secret
    --read-only                       Never write to Spotify
    -v, --verbosity <level>           error, warn, info, debug

Usage:
    # First start: open http://localhost:8888/login in a browser
    spot-archiver --client-id ... --client-secret ...

    # Dry run of all archivers with debug output
    spot-archiver --read-only -v debug run

Exit Codes:
    0    success
    1    configuration error or unexpected error
    2    state file error
    3    Spotify / authorization error
    4    other spot-archiver error
    130  interrupted
"""

import signal
import sys
import threading
from datetime import datetime
from pathlib import Path
from typing import Optional

import rich_click as click

# Configure rich-click for better help formatting
click.rich_click.USE_RICH_MARKUP = True
click.rich_click.SHOW_ARGUMENTS = True
click.rich_click.GROUP_ARGUMENTS_OPTIONS = True
click.rich_click.STYLE_ERRORS_SUGGESTION = "magenta italic"
click.rich_click.ERRORS_SUGGESTION = ""
click.rich_click.MAX_WIDTH = 100
click.rich_click.OPTION_GROUPS = {
    "cli": [
        {
            "name": "Spotify Application",
            "options": ["--client-id", "--client-secret", "--port"],
        },
        {
            "name": "Behavior",
            "options": ["--config", "--read-only", "--verbosity"],
        },
        {
            "name": "Info",
            "options": ["--version", "--help"],
        },
    ],
}

from spot_archiver import __version__
from spot_archiver.archiver import ArchivalJob, JobReport, JobScheduler, PairStatus, RunStatus
from spot_archiver.archiver.scheduler import build_trigger
from spot_archiver.auth import CallbackServer, CredentialManager
from spot_archiver.core import (
    AuthorizationError,
    Config,
    ConfigError,
    SpotArchiverError,
    SpotifyError,
    StateError,
    StateStore,
    get_logger,
    load_config,
    setup_logging,
    shutdown_logging,
)
from spot_archiver.spotify import SpotifyClient

logger = get_logger(__name__)


@click.group(invoke_without_command=True)
@click.option(
    "-c", "--config", "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    metavar="<config.yaml>",
    help="Configuration file (default: ./config.yaml)"
)
@click.option(
    "-p", "--port",
    type=int,
    default=None,
    help="Local port for the login/callback server [default: 8888]"
)
@click.option(
    "-i", "--client-id",
    type=str,
    default=None,
    help="Client ID of your Spotify app (https://developer.spotify.com/dashboard)"
)
@click.option(
    "-s", "--client-secret",
    type=str,
    default=None,
    help="Client secret of your Spotify app"
)
@click.option(
    "--read-only",
    is_flag=True,
    help="Compute everything but never modify playlists (for testing)"
)
@click.option(
    "-v", "--verbosity",
    type=click.Choice(["error", "warn", "info", "debug"], case_sensitive=False),
    default=None,
    help="Console log level [default: info]"
)
@click.option(
    "--version",
    is_flag=True,
    help="Show version and exit."
)
@click.pass_context
def cli(
    ctx: click.Context,
    config_path: Optional[Path],
    port: Optional[int],
    client_id: Optional[str],
    client_secret: Optional[str],
    read_only: bool,
    verbosity: Optional[str],
    version: bool
) -> None:
    """
    spot-archiver: keep your own copy of playlists someone else curates.

    New tracks of a source playlist are appended to your proxy playlist.
    Tracks you remove from the proxy are remembered and never added again.

    \b
    FIRST START:
        spot-archiver -i <client-id> -s <client-secret>
        then open http://localhost:8888/login in a browser

    \b
    COMMANDS:
        serve      run the service (default)
        run        archive once and exit
        status     show authorization and stored playlists
    """
    if version:
        click.echo(f"spot-archiver {__version__}")
        ctx.exit(0)

    ctx.obj = {
        "config_path": config_path,
        "overrides": {
            "port": port,
            "client_id": client_id,
            "client_secret": client_secret,
            "read_only": True if read_only else None,
            "verbosity": verbosity,
        },
    }

    if ctx.invoked_subcommand is None:
        _run_serve(ctx.obj)


@cli.command()
@click.pass_obj
def serve(options: dict) -> None:
    """Run the login server, the token refresh and the scheduled archival runs."""
    _run_serve(options)


@cli.command()
@click.pass_obj
def run(options: dict) -> None:
    """Run every configured archiver once, using the stored login."""
    _run_once(options)


@cli.command()
@click.pass_obj
def status(options: dict) -> None:
    """Show authorization state, schedule and stored playlists."""
    _run_status(options)


def _run_serve(options: dict) -> None:
    """
    Run the long-lived service until interrupted.

    Startup order:
        1. configuration and logging
        2. state store and credential manager
        3. callback server (so /login works even if the refresh fails)
        4. refresh chain from persisted tokens
        5. cron scheduler
    """
    store: StateStore | None = None
    credentials: CredentialManager | None = None
    scheduler: JobScheduler | None = None
    server: CallbackServer | None = None

    try:
        config = _load_configuration(options)
        setup_logging(config.logging.level, config.logging.directory)
        logger.info(f"spot-archiver {__version__} starting")
        logger.debug(f"Loaded config: {_describe_config(config)}")

        store = _open_state(config)
        credentials = CredentialManager(config.spotify, config.server.redirect_uri, store)
        client = SpotifyClient(credentials.access_token)
        job = ArchivalJob(config, client, credentials, store)
        scheduler = JobScheduler(job, config.schedule)

        if not config.archivers:
            logger.warning("No archivers configured, runs will do nothing")

        server = CallbackServer(credentials, config.server.port, on_authorized=scheduler.run_now)
        server.start()

        credentials.start()
        scheduler.start()

        _wait_for_shutdown()
        logger.info("Shutting down")

    except KeyboardInterrupt:
        click.echo("\nInterrupted by user", err=True)
        logger.info("Interrupted by user")

    except OSError as e:
        click.echo(f"Startup failed: {e}", err=True)
        logger.error(f"Startup failed: {e}")
        sys.exit(1)

    except SpotArchiverError as e:
        _exit_with_error(e)

    finally:
        if scheduler is not None:
            scheduler.shutdown()
        if server is not None:
            server.shutdown()
        if credentials is not None:
            credentials.stop()
        if store is not None:
            store.close()
        shutdown_logging()


def _run_once(options: dict) -> None:
    """Refresh the stored login, run the job once, print the report."""
    store: StateStore | None = None

    try:
        config = _load_configuration(options)
        setup_logging(config.logging.level, config.logging.directory)

        store = _open_state(config)
        credentials = CredentialManager(config.spotify, config.server.redirect_uri, store)
        credentials.refresh()

        client = SpotifyClient(credentials.access_token)
        report = ArchivalJob(config, client, credentials, store).run()
        _print_report(report)

        if not report.ok:
            sys.exit(1)

    except KeyboardInterrupt:
        click.echo("\nInterrupted by user", err=True)
        logger.info("Interrupted by user")
        sys.exit(130)

    except SpotArchiverError as e:
        _exit_with_error(e)

    finally:
        if store is not None:
            store.close()
        shutdown_logging()


def _run_status(options: dict) -> None:
    """Print local information only; makes no Spotify request."""
    try:
        config = _load_configuration(options)
        store = StateStore(config.state_file)
        state = store.load()
        trigger = build_trigger(config.schedule)
    except SpotArchiverError as e:
        _exit_with_error(e)
        return

    authorized = bool(state.tokens.refresh_token)
    click.echo(f"spot-archiver {__version__}")
    click.echo(f"State file:  {config.state_file}")
    click.echo(
        f"Authorized:  {'yes' if authorized else 'no'}"
        + ("" if authorized else f" (open http://localhost:{config.server.port}/login)")
    )
    click.echo(f"Schedule:    {config.schedule}")
    click.echo(f"Next run:    {trigger.get_next_fire_time(None, datetime.now(trigger.timezone))}")
    click.echo(f"Read-only:   {'yes' if config.read_only else 'no'}")

    click.echo("")
    click.echo(f"Archivers ({len(config.archivers)}):")
    for pair in config.archivers:
        click.echo(f"  {pair.source.describe()} -> {pair.target.describe()}")

    click.echo("")
    click.echo(f"Stored playlists ({len(state.playlists)}):")
    for playlist_id, record in sorted(state.playlists.items(), key=lambda item: item[1].name):
        click.echo(
            f"  {record.name or '?':40} {playlist_id}  "
            f"{len(record.tracks):5} tracks  {len(record.blacklist):4} blacklisted"
        )


def _load_configuration(options: dict) -> Config:
    """
    Load configuration with the command line overrides applied.

    Raises:
        ConfigError: If configuration is invalid or missing.
    """
    return load_config(options.get("config_path"), overrides=options.get("overrides"))


def _open_state(config: Config) -> StateStore:
    store = StateStore(config.state_file)
    state = store.load()
    logger.debug(
        f"State loaded from {config.state_file}: {len(state.playlists)} playlist record(s)"
    )
    return store


def _wait_for_shutdown() -> None:
    """Block the main thread until SIGINT or SIGTERM."""
    stop = threading.Event()

    def _handle_signal(signum, frame) -> None:
        logger.info(f"Received signal {signum}")
        stop.set()

    signal.signal(signal.SIGTERM, _handle_signal)

    # Short waits keep Ctrl+C responsive
    while not stop.wait(1.0):
        pass


def _exit_with_error(error: SpotArchiverError) -> None:
    if isinstance(error, ConfigError):
        click.echo(f"Configuration error: {error.message}", err=True)
        sys.exit(1)

    if isinstance(error, StateError):
        click.echo(f"State error: {error.message}", err=True)
        logger.error(f"State error: {error.message}", exc_info=True)
        sys.exit(2)

    if isinstance(error, (AuthorizationError, SpotifyError)):
        click.echo(f"Spotify error: {error.message}", err=True)
        if isinstance(error, AuthorizationError) or error.is_auth_error:
            click.echo("Start 'spot-archiver serve' and open /login to authorize again", err=True)
        logger.error(f"Spotify error: {error.message}", exc_info=True)
        sys.exit(3)

    click.echo(f"Error: {error.message}", err=True)
    logger.error(f"Error: {error.message}", exc_info=True)
    sys.exit(4)


def _print_report(report: JobReport) -> None:
    if report.status is not RunStatus.COMPLETED:
        click.echo(f"Run {report.status.value}: {report.error or ''}".rstrip(": "))
        return

    for outcome in report.outcomes:
        label = f"{outcome.pair.source.describe()} -> {outcome.pair.target.describe()}"
        if outcome.status is PairStatus.OK and outcome.result is not None:
            result = outcome.result
            verb = "would add" if result.read_only else "added"
            click.echo(
                f"[ok]      {label}: {verb} {len(result.added)}, "
                f"newly blacklisted {len(result.deleted_by_user)}"
            )
        else:
            click.echo(f"[{outcome.status.value}] {label}: {outcome.error}")


def _describe_config(config: Config) -> dict:
    """Loggable view of the configuration without the client secret."""
    return {
        "client_id": config.spotify.client_id,
        "port": config.server.port,
        "redirect_uri": config.server.redirect_uri,
        "state_file": str(config.state_file),
        "schedule": config.schedule,
        "read_only": config.read_only,
        "archivers": len(config.archivers),
        "blacklist": config.blacklist.describe() if config.blacklist else None,
    }


def main() -> None:
    """Entry point for the spot-archiver console script."""
    cli()


if __name__ == "__main__":
    main()
