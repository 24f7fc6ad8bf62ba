"""
Reconciliation engine.

Keeps a target (proxy) playlist in sync with a source playlist while
honouring the user's own removals on the target.

The only inputs are two live track lists with no change history, plus the
target snapshot stored at the end of the previous run. A track that was in
the snapshot but is no longer on the target was removed by the user, so it
is blacklisted for that target and never re-added.

Algorithm (per pair):
    1. ensure a record for the target exists
    2. deleted_by_user = snapshot - live target   ->  blacklist
    3. read the source
    4. new = source - target - blacklist - global blacklist  (source order)
       local files (spotify:local:) are never added, the API rejects them
    5. append new to the target in chunks of 100
    6. re-read the target and store it as the next snapshot

Example:
    reconciler = Reconciler(client, store)
    result = reconciler.reconcile(source_id, target_id, global_blacklist)
    print(f"Added {len(result.added)} tracks")
"""

from dataclasses import dataclass, field
from typing import Iterable, Sequence

from spot_archiver.core.logger import get_logger
from spot_archiver.core.state import StateStore
from spot_archiver.utils import unique

logger = get_logger(__name__)


LOCAL_URI_PREFIX = "spotify:local:"


@dataclass
class ReconcileResult:
    """
    Outcome of one reconciliation.

    Attributes:
        source_id: Source playlist ID.
        target_id: Target playlist ID.
        deleted_by_user: Tracks newly detected as removed from the target.
        added: Tracks appended to the target (or that would have been in
               read-only mode), in source order.
        excluded_by_blacklist: Source tracks skipped because of the target blacklist.
        excluded_by_global_blacklist: Source tracks skipped because of the global blacklist.
        skipped_local: Source local files missing from the target. Spotify
                       cannot add them through the API.
        read_only: True if nothing was written to Spotify.
    """
    source_id: str
    target_id: str
    deleted_by_user: list[str] = field(default_factory=list)
    added: list[str] = field(default_factory=list)
    excluded_by_blacklist: list[str] = field(default_factory=list)
    excluded_by_global_blacklist: list[str] = field(default_factory=list)
    skipped_local: list[str] = field(default_factory=list)
    read_only: bool = False

    @property
    def changed(self) -> bool:
        return bool(self.added or self.deleted_by_user)


def compute_additions(
    source: Iterable[str],
    target: Iterable[str],
    blacklist: Iterable[str] = (),
    global_blacklist: Iterable[str] = ()
) -> list[str]:
    """
    Tracks of source that must be appended to target.

    Both blacklists are always subtracted. Source order is preserved and
    duplicated source entries collapse to their first occurrence.

    Example:
        compute_additions(["a", "b", "c", "b"], ["a"], {"c"})
        # Returns: ["b"]
    """
    excluded = set(target) | set(blacklist) | set(global_blacklist)
    return [uri for uri in unique(source) if uri not in excluded]


class Reconciler:
    """
    Applies the reconciliation algorithm to one source/target pair at a time.

    Args:
        client: SpotifyClient (or any object with playlist_track_uris and add_tracks).
        store: StateStore owning the target records.
        read_only: Compute and persist blacklists and snapshots, but never
                   call add_tracks.
    """

    def __init__(self, client, store: StateStore, read_only: bool = False) -> None:
        self.client = client
        self.store = store
        self.read_only = read_only

    def reconcile(
        self,
        source_id: str,
        target_id: str,
        global_blacklist: frozenset[str] = frozenset()
    ) -> ReconcileResult:
        """
        Reconcile target_id against source_id.

        Raises:
            SpotifyError: If a read or a chunked add fails. Chunks appended
                          before the failure stay on Spotify, the snapshot is
                          not updated, and the next run picks up the rest.
        """
        result = ReconcileResult(source_id, target_id, read_only=self.read_only)

        record = self.store.ensure_record(target_id)

        tracks_target = self.client.playlist_track_uris(target_id)
        logger.debug(f"Target {target_id} has {len(tracks_target)} tracks")

        result.deleted_by_user = _removed(record.tracks, tracks_target)
        if result.deleted_by_user:
            logger.info(
                f"{len(result.deleted_by_user)} track(s) removed from {record.name or target_id} "
                "by the user, blacklisting them"
            )
            logger.debug(f"Removed by user: {result.deleted_by_user}")
        blacklist = record.blacklist | set(result.deleted_by_user)
        self.store.extend_blacklist(target_id, result.deleted_by_user)

        tracks_source = self.client.playlist_track_uris(source_id)
        logger.debug(f"Source {source_id} has {len(tracks_source)} tracks")

        target_set = set(tracks_target)
        candidates = [uri for uri in unique(tracks_source) if uri not in target_set]
        result.excluded_by_blacklist = [uri for uri in candidates if uri in blacklist]
        result.excluded_by_global_blacklist = [
            uri for uri in candidates if uri not in blacklist and uri in global_blacklist
        ]
        result.skipped_local = [uri for uri in candidates if is_local(uri)]
        if result.skipped_local:
            logger.debug(
                f"Skipping {len(result.skipped_local)} local file(s) of {source_id}: "
                f"{result.skipped_local}"
            )
        result.added = compute_additions(
            [uri for uri in tracks_source if not is_local(uri)],
            tracks_target,
            blacklist,
            global_blacklist
        )

        if result.added:
            if self.read_only:
                logger.info(
                    f"[read-only] Would add {len(result.added)} track(s) to "
                    f"{record.name or target_id}"
                )
            else:
                logger.info(f"Adding {len(result.added)} track(s) to {record.name or target_id}")
                self.client.add_tracks(target_id, result.added)
        logger.debug(f"New tracks: {result.added}")

        self.store.set_tracks(target_id, self.client.playlist_track_uris(target_id))

        return result


def is_local(uri: str) -> bool:
    return uri.startswith(LOCAL_URI_PREFIX)


def _removed(previous: Sequence[str], current: Sequence[str]) -> list[str]:
    """Entries of previous missing from current, first-occurrence order."""
    current_set = set(current)
    return [uri for uri in unique(previous) if uri not in current_set]
