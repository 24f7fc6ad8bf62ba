"""
Archival job: one complete pass over all configured archiver pairs.

Run sequence:
    1. skip if another run is still in progress
    2. abort if Spotify does not accept the current access token
    3. fetch the user's playlists once
    4. load the global blacklist (abort the run if configured but unusable)
    5. for each pair: resolve source and target, refresh stored names,
       optionally refresh the target cover, reconcile

Pair failures are isolated: every pair's errors are caught and logged, and
the remaining pairs still run. Only run-level failures (authorization,
global blacklist) abort the whole run.
"""

import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from spot_archiver.archiver.reconcile import Reconciler, ReconcileResult
from spot_archiver.archiver.resolver import PlaylistResolver
from spot_archiver.core.config import ArchiverPair, Config, PlaylistDescriptor
from spot_archiver.core.exceptions import (
    AmbiguousPlaylistError,
    ArchiverError,
    PlaylistNotFoundError,
    SpotArchiverError,
)
from spot_archiver.core.logger import get_logger
from spot_archiver.core.state import StateStore
from spot_archiver.spotify.cover import copy_cover

logger = get_logger(__name__)


class PairStatus(Enum):
    OK = "ok"
    SKIPPED = "skipped"
    FAILED = "failed"


class RunStatus(Enum):
    COMPLETED = "completed"
    ABORTED = "aborted"
    SKIPPED = "skipped"


@dataclass
class PairOutcome:
    """Result of one archiver pair within a run."""
    pair: ArchiverPair
    status: PairStatus
    source_id: str | None = None
    target_id: str | None = None
    result: ReconcileResult | None = None
    error: str | None = None


@dataclass
class JobReport:
    """
    Result of one archival run.

    Attributes:
        status: COMPLETED even when single pairs failed; ABORTED when the run
                could not start (authorization, global blacklist);
                SKIPPED when another run was in progress.
        outcomes: One entry per configured pair, in configuration order.
        error: Reason for an aborted run.
    """
    status: RunStatus
    started_at: datetime = field(default_factory=datetime.now)
    finished_at: datetime | None = None
    outcomes: list[PairOutcome] = field(default_factory=list)
    error: str | None = None

    @property
    def failed(self) -> list[PairOutcome]:
        return [o for o in self.outcomes if o.status is PairStatus.FAILED]

    @property
    def tracks_added(self) -> int:
        return sum(len(o.result.added) for o in self.outcomes if o.result is not None)

    @property
    def ok(self) -> bool:
        return self.status is RunStatus.COMPLETED and not self.failed


def load_global_blacklist(
    client,
    resolver: PlaylistResolver,
    descriptor: PlaylistDescriptor | None
) -> frozenset[str]:
    """
    Read the global blacklist playlist.

    Args:
        client: SpotifyClient.
        resolver: Resolver of the current run (never creates the playlist).
        descriptor: Configured blacklist playlist, or None.

    Returns:
        Track URIs of the blacklist playlist; empty when not configured.

    Raises:
        ArchiverError: If the playlist is configured but cannot be resolved
                       or read. Archiving without it would re-add tracks the
                       user excluded everywhere.
        PlaylistNotFoundError: If the descriptor matches no playlist.
    """
    if descriptor is None:
        return frozenset()

    try:
        playlist_id = resolver.resolve(descriptor)
    except AmbiguousPlaylistError as e:
        raise ArchiverError(
            f"Global blacklist is ambiguous: {e.message}",
            details=e.details
        ) from e

    if playlist_id is None:
        raise PlaylistNotFoundError(
            f"Global blacklist playlist {descriptor.describe()} not found",
            details={"name": descriptor.name, "id": descriptor.id}
        )

    try:
        uris = client.playlist_track_uris(playlist_id)
    except SpotArchiverError as e:
        raise ArchiverError(
            f"Global blacklist playlist {playlist_id} could not be read: {e.message}",
            details={"playlist_id": playlist_id, "original_error": e.message}
        ) from e

    logger.debug(f"Global blacklist has {len(uris)} tracks")
    return frozenset(uris)


class ArchivalJob:
    """
    Runs all archiver pairs once per call to run().

    Args:
        config: Application configuration (pairs and global blacklist).
        client: SpotifyClient bound to the credential manager's token.
        credentials: CredentialManager providing check_auth().
        store: StateStore for records, snapshots and blacklists.
        read_only: Override config.read_only.
    """

    def __init__(
        self,
        config: Config,
        client,
        credentials,
        store: StateStore,
        read_only: bool | None = None
    ) -> None:
        self.config = config
        self.client = client
        self.credentials = credentials
        self.store = store
        self.read_only = config.read_only if read_only is None else read_only
        self._run_lock = threading.Lock()
        self.last_report: JobReport | None = None

    def run(self) -> JobReport:
        """
        Execute one archival run.

        Returns:
            JobReport describing the run. Never raises for Spotify or
            configuration problems; those end up in the report and the log.
        """
        if not self._run_lock.acquire(blocking=False):
            logger.warning("Previous archival run still in progress, skipping this one")
            return JobReport(status=RunStatus.SKIPPED, finished_at=datetime.now())

        try:
            report = self._run()
        finally:
            self._run_lock.release()

        report.finished_at = datetime.now()
        self.last_report = report
        return report

    def _run(self) -> JobReport:
        logger.info("Archival run started" + (" (read-only)" if self.read_only else ""))

        if not self.credentials.check_auth(self.client):
            message = "Not authorized! Log in via /login before the next run."
            logger.error(message)
            return JobReport(status=RunStatus.ABORTED, error=message)

        try:
            user_playlists = self.client.all_user_playlists()
            resolver = PlaylistResolver(
                self.store, user_playlists, client=self.client, read_only=self.read_only
            )
            global_blacklist = load_global_blacklist(self.client, resolver, self.config.blacklist)
        except SpotArchiverError as e:
            logger.error(f"Archival run aborted: {e.message}")
            return JobReport(status=RunStatus.ABORTED, error=e.message)

        reconciler = Reconciler(self.client, self.store, read_only=self.read_only)
        report = JobReport(status=RunStatus.COMPLETED)

        for pair in self.config.archivers:
            report.outcomes.append(
                self._run_pair(pair, resolver, reconciler, global_blacklist)
            )

        failed = len(report.failed)
        logger.info(
            f"Archival run finished: {len(report.outcomes) - failed} pair(s) processed, "
            f"{failed} failed, {report.tracks_added} track(s) added"
        )
        return report

    def _run_pair(
        self,
        pair: ArchiverPair,
        resolver: PlaylistResolver,
        reconciler: Reconciler,
        global_blacklist: frozenset[str]
    ) -> PairOutcome:
        label = f"{pair.source.describe()} -> {pair.target.describe()}"
        outcome = PairOutcome(pair=pair, status=PairStatus.FAILED)

        try:
            source_id = resolver.resolve(pair.source)
            if source_id is None:
                logger.warning(f"Source playlist {pair.source.describe()} not found, skipping")
                outcome.status = PairStatus.SKIPPED
                outcome.error = "source not found"
                return outcome
            outcome.source_id = source_id

            target_id = resolver.resolve_target(pair.target, source_id)
            if target_id is None:
                logger.warning(f"Target playlist {pair.target.describe()} not available, skipping")
                outcome.status = PairStatus.SKIPPED
                outcome.error = "target not available"
                return outcome
            outcome.target_id = target_id

            self._remember_names(pair, source_id, target_id, resolver)

            # A freshly created target already got the source cover
            if (
                pair.target.replace_cover_on_refresh
                and not self.read_only
                and target_id not in resolver.created
            ):
                copy_cover(self.client, source_id, target_id)

            logger.info(f"Archiving {label}")
            outcome.result = reconciler.reconcile(source_id, target_id, global_blacklist)
            outcome.status = PairStatus.OK

        except AmbiguousPlaylistError as e:
            logger.error(f"Skipping {label}: {e.message}")
            outcome.error = e.message
        except SpotArchiverError as e:
            logger.error(f"Archiving {label} failed: {e.message}")
            logger.debug(f"Details: {e.details}", exc_info=True)
            outcome.error = e.message
        except Exception as e:
            logger.error(f"Archiving {label} failed unexpectedly: {e}", exc_info=True)
            outcome.error = str(e) or type(e).__name__

        return outcome

    def _remember_names(
        self,
        pair: ArchiverPair,
        source_id: str,
        target_id: str,
        resolver: PlaylistResolver
    ) -> None:
        """
        Create records for both playlists and store their names.

        Descriptors looked up by persistence keep their configured name, so
        a playlist renamed in Spotify is still found on the next run. Other
        records follow the live name.
        """
        live_names = {p.get("id"): p.get("name") for p in resolver.user_playlists}

        for playlist_id, descriptor in ((source_id, pair.source), (target_id, pair.target)):
            if descriptor.find_by_persistence and descriptor.name:
                name = descriptor.name
            else:
                name = live_names.get(playlist_id)
            if name is None and descriptor.id:
                name = self.client.playlist(playlist_id).get("name")
            self.store.set_name(playlist_id, name or descriptor.name or "")
