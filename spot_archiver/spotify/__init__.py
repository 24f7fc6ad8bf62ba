"""
Spotify integration for spot-archiver.

    - client: error-translating wrapper over spotipy
    - cover: cover image download, JPEG conversion and upload
"""

from spot_archiver.spotify.client import ADD_TRACKS_CHUNK_SIZE, SpotifyClient
from spot_archiver.spotify.cover import copy_cover, prepare_cover

__all__ = [
    "SpotifyClient",
    "ADD_TRACKS_CHUNK_SIZE",
    "copy_cover",
    "prepare_cover",
]
