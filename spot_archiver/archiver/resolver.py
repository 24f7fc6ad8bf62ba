"""
Playlist identity resolution.

Turns a configured PlaylistDescriptor (name and/or id) into a concrete
Spotify playlist ID. Resolution order:

    1. explicit id                         used verbatim
    2. persisted name (find_by_persistence)  records in the state store
    3. live name                           the user's playlists, fetched once per run
    4. create (targets only)               new private playlist + cover copy

A name lookup that matches several playlists raises AmbiguousPlaylistError
instead of guessing. Matching is exact and case-sensitive.
"""

from typing import Any

from spot_archiver.core.config import PlaylistDescriptor
from spot_archiver.core.exceptions import AmbiguousPlaylistError
from spot_archiver.core.logger import get_logger
from spot_archiver.core.state import StateStore
from spot_archiver.spotify.cover import copy_cover
from spot_archiver.utils import extract_spotify_id

logger = get_logger(__name__)


class PlaylistResolver:
    """
    Resolves descriptors for one archival run.

    Args:
        store: State store for persisted name lookups.
        user_playlists: The user's playlists as returned by
                        SpotifyClient.all_user_playlists(). Playlists created
                        during the run are appended to this list.
        client: SpotifyClient used to create targets and copy covers.
                Not needed when only resolve() is used.
        read_only: Never create playlists.

    Attributes:
        created: IDs of the playlists created (and given a cover) by this resolver.
    """

    def __init__(
        self,
        store: StateStore,
        user_playlists: list[dict[str, Any]],
        client=None,
        read_only: bool = False
    ) -> None:
        self.store = store
        self.user_playlists = user_playlists
        self.client = client
        self.read_only = read_only
        self.created: list[str] = []

    def resolve(self, descriptor: PlaylistDescriptor) -> str | None:
        """
        Resolve a descriptor without creating anything.

        Returns:
            The playlist ID, or None if nothing matched.

        Raises:
            AmbiguousPlaylistError: If a name lookup matched several playlists.
        """
        if descriptor.id:
            return extract_spotify_id(descriptor.id)

        if not descriptor.name:
            return None

        if descriptor.find_by_persistence:
            playlist_id = self._pick(
                self.store.find_by_name(descriptor.name), descriptor.name, "stored"
            )
            if playlist_id is not None:
                logger.debug(f"Resolved '{descriptor.name}' from state: {playlist_id}")
                return playlist_id

        matches = [p["id"] for p in self.user_playlists if p.get("name") == descriptor.name]
        playlist_id = self._pick(matches, descriptor.name, "library")
        if playlist_id is not None:
            logger.debug(f"Resolved '{descriptor.name}' from library: {playlist_id}")
        return playlist_id

    def resolve_target(self, descriptor: PlaylistDescriptor, source_id: str) -> str | None:
        """
        Resolve a target descriptor, creating the playlist if it does not exist.

        Args:
            descriptor: Target descriptor. Needs a name for creation.
            source_id: Source playlist, named in the description and used
                       as the cover donor.

        Returns:
            The target ID, or None when nothing matched and creation is not
            possible (read-only mode or no name).
        """
        playlist_id = self.resolve(descriptor)
        if playlist_id is not None:
            return playlist_id

        if not descriptor.name:
            return None

        if self.read_only:
            logger.info(f"[read-only] Would create playlist '{descriptor.name}'")
            return None

        created = self.client.create_playlist(
            descriptor.name,
            description=f"Archive of spotify:playlist:{source_id}, kept by spot-archiver"
        )
        playlist_id = created["id"]
        self.user_playlists.append(created)
        self.created.append(playlist_id)
        self.store.ensure_record(playlist_id, name=descriptor.name)
        logger.info(f"Created playlist '{descriptor.name}' ({playlist_id})")

        copy_cover(self.client, source_id, playlist_id)
        return playlist_id

    def _pick(self, matches: list[str], name: str, where: str) -> str | None:
        unique_matches = list(dict.fromkeys(matches))
        if not unique_matches:
            return None
        if len(unique_matches) > 1:
            raise AmbiguousPlaylistError(
                f"Name '{name}' matches {len(unique_matches)} {where} playlists: "
                f"{', '.join(unique_matches)}. Configure the playlist by id instead.",
                candidates=unique_matches,
                details={"name": name, "lookup": where}
            )
        return unique_matches[0]
