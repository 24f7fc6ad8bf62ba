"""
spot-archiver: keep a personal copy of a playlist that someone else curates.

Spotify's generated and editorial playlists change under you: tracks come
and go every week. spot-archiver keeps a proxy playlist that only grows
with the source, while tracks you delete from the proxy stay deleted.

Architecture:
    A long-running process with three background activities:

    auth/       - /login and /callback HTTP endpoints, OAuth token pair,
                  background refresh chain
    archiver/   - cron-scheduled archival job: playlist resolution and
                  blacklist-preserving reconciliation per pair
    spotify/    - spotipy wrapper and cover image handling

    core/       - configuration, state store, logging, exceptions
    utils/      - small helpers (ID extraction, chunking)
    cli.py      - command-line interface

Usage:
    Command Line:
        spot-archiver --client-id ... --client-secret ...
        spot-archiver run
        spot-archiver status

    Python API:
        from spot_archiver.core import load_config, StateStore
        from spot_archiver.auth import CredentialManager
        from spot_archiver.spotify import SpotifyClient
        from spot_archiver.archiver import ArchivalJob

        config = load_config()
        store = StateStore(config.state_file)
        store.load()
        credentials = CredentialManager(config.spotify, config.server.redirect_uri, store)
        credentials.refresh()
        client = SpotifyClient(credentials.access_token)
        report = ArchivalJob(config, client, credentials, store).run()
"""

__version__ = "1.0.0"
