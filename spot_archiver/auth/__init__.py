"""
Spotify authorization for spot-archiver.

    - credentials: token pair ownership, code grant, background refresh chain
    - server: /login and /callback HTTP endpoints
"""

from spot_archiver.auth.credentials import SCOPES, AuthState, CredentialManager
from spot_archiver.auth.server import CallbackServer

__all__ = [
    "AuthState",
    "CallbackServer",
    "CredentialManager",
    "SCOPES",
]
