"""
OAuth2 credential lifecycle for spot-archiver.

The archiver runs unattended for months, so it cannot rely on an access
token obtained once at login. CredentialManager owns the token pair and
keeps it fresh with a background refresh chain:

    UNAUTHENTICATED --authorize_url()--> AUTHENTICATING
    AUTHENTICATING  --complete_authorization(code)--> AUTHORIZED
    AUTHORIZED      --refresh rejected with invalid_grant--> UNAUTHENTICATED

Refresh Timer:
    A one-shot threading.Timer is re-armed after every refresh with half
    of the reported token lifetime. When a refresh reports a lifetime that
    differs from the armed interval, the pending timer is cancelled and
    restarted with the new interval.

Failure Policy:
    - Transient failures (network, 5xx) are retried with exponential
      backoff: 30s, 60s, 120s, ... capped at 15 minutes. After 5
      consecutive failures a CRITICAL line is logged once per streak.
    - invalid_grant means the refresh token is dead. Tokens are cleared,
      the chain stops and a CRITICAL line asks the operator to log in again.

Token requests go directly to the Spotify accounts service with requests,
and every new token is persisted through the StateStore.
"""

import threading
import urllib.parse
from enum import Enum
from typing import Any, Callable

import requests

from spot_archiver.core.config import SpotifyConfig
from spot_archiver.core.exceptions import AuthorizationError, SpotArchiverError
from spot_archiver.core.logger import get_logger
from spot_archiver.core.state import StateStore, TokenState

logger = get_logger(__name__)


AUTHORIZE_URL = "https://accounts.spotify.com/authorize"
TOKEN_URL = "https://accounts.spotify.com/api/token"

SCOPES = (
    "playlist-read-private",
    "playlist-read-collaborative",
    "playlist-modify-public",
    "playlist-modify-private",
    "ugc-image-upload",
)

DEFAULT_EXPIRES_IN = 3600
MIN_REFRESH_INTERVAL = 30.0

RETRY_BASE_DELAY = 30.0
RETRY_MAX_DELAY = 15 * 60.0
ALERT_AFTER_FAILURES = 5

TOKEN_REQUEST_TIMEOUT = 30


class AuthState(Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    AUTHORIZED = "authorized"


class CredentialManager:
    """
    Owner of the OAuth token pair and of the background refresh chain.

    Args:
        spotify_config: Client ID and secret of the Spotify application.
        redirect_uri: Redirect URI registered for the application.
        store: State store persisting the tokens.
        timer_factory: Callable with the threading.Timer signature.
                       Replaced in tests.
        session: Optional requests session for token requests.

    Example:
        credentials = CredentialManager(config.spotify, redirect_uri, store)
        credentials.start()                      # resume from persisted tokens
        client = SpotifyClient(credentials.access_token)
        ...
        credentials.stop()
    """

    def __init__(
        self,
        spotify_config: SpotifyConfig,
        redirect_uri: str,
        store: StateStore,
        timer_factory: Callable[..., Any] = threading.Timer,
        session: requests.Session | None = None
    ) -> None:
        self.client_id = spotify_config.client_id
        self.client_secret = spotify_config.client_secret
        self.redirect_uri = redirect_uri
        self.store = store
        self._timer_factory = timer_factory
        self._session = session or requests.Session()

        self._lock = threading.RLock()
        self._timer: Any = None
        self._interval: float | None = None
        self._failures = 0
        self._stopped = False
        self._pending_state: str | None = None

        if store.tokens.refresh_token:
            self._auth_state = AuthState.AUTHORIZED
        else:
            self._auth_state = AuthState.UNAUTHENTICATED

    # =========================================================================
    # State
    # =========================================================================

    @property
    def auth_state(self) -> AuthState:
        with self._lock:
            return self._auth_state

    @property
    def refresh_interval(self) -> float | None:
        """Interval of the armed refresh timer, None when idle or backing off."""
        with self._lock:
            return self._interval

    @property
    def consecutive_failures(self) -> int:
        with self._lock:
            return self._failures

    @property
    def tokens(self) -> TokenState:
        return self.store.tokens

    def access_token(self) -> str | None:
        """Current access token. Used as the SpotifyClient token provider."""
        return self.store.tokens.access_token

    @property
    def login_url(self) -> str:
        """Local /login URL derived from the redirect URI, for log hints."""
        parsed = urllib.parse.urlparse(self.redirect_uri)
        return urllib.parse.urlunparse(parsed._replace(path="/login", query=""))

    # =========================================================================
    # Authorization Code Grant
    # =========================================================================

    def authorize_url(self, state: str | None = None) -> str:
        """
        Build the Spotify authorization URL the user is redirected to.

        Args:
            state: Opaque value echoed back on the callback. The callback
                   server rejects callbacks carrying a different value.
        """
        params = {
            "client_id": self.client_id,
            "response_type": "code",
            "redirect_uri": self.redirect_uri,
            "scope": " ".join(SCOPES),
        }
        if state is not None:
            params["state"] = state

        with self._lock:
            self._pending_state = state
            if self._auth_state is AuthState.UNAUTHENTICATED:
                self._auth_state = AuthState.AUTHENTICATING

        return f"{AUTHORIZE_URL}?{urllib.parse.urlencode(params)}"

    def expected_state(self) -> str | None:
        with self._lock:
            return self._pending_state

    def complete_authorization(self, code: str) -> TokenState:
        """
        Exchange an authorization code for tokens and start the refresh chain.

        Right after the code grant one extra refresh is made: access tokens
        straight from the code grant are refused by the cover upload endpoint.

        Args:
            code: Authorization code received on /callback.

        Returns:
            The persisted token pair.

        Raises:
            AuthorizationError: If the code exchange fails.
        """
        token_data = self._token_request({
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.redirect_uri,
        })

        refresh_token = token_data.get("refresh_token")
        if not refresh_token:
            raise AuthorizationError(
                "Spotify did not return a refresh token",
                details={"fields": sorted(token_data)}
            )

        expires_in = _expires_in(token_data)
        self.store.set_tokens(token_data["access_token"], refresh_token)

        with self._lock:
            self._auth_state = AuthState.AUTHORIZED
            self._failures = 0
            self._pending_state = None

        logger.info(f"Successfully retrieved access token. Expires in {expires_in} s.")

        try:
            expires_in = self.refresh()
        except AuthorizationError as e:
            logger.warning(f"Immediate token refresh after login failed: {e.message}")

        self._schedule_refresh(expires_in)
        return self.store.tokens

    # =========================================================================
    # Refresh Token Grant
    # =========================================================================

    def refresh(self) -> int:
        """
        Exchange the refresh token for a new access token.

        Returns:
            Lifetime of the new access token in seconds.

        Raises:
            AuthorizationError: If no refresh token is stored or the request
                                fails (is_revoked=True for invalid_grant).
        """
        refresh_token = self.store.tokens.refresh_token
        if not refresh_token:
            raise AuthorizationError("No refresh token stored, log in first")

        token_data = self._token_request({
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        })

        # Spotify may rotate the refresh token; None keeps the stored one
        self.store.set_tokens(token_data["access_token"], token_data.get("refresh_token"))

        expires_in = _expires_in(token_data)
        logger.debug(f"Access token refreshed, expires in {expires_in} s")
        return expires_in

    def _token_request(self, data: dict[str, str]) -> dict[str, Any]:
        """
        POST to the token endpoint with client credentials in the body.

        Raises:
            AuthorizationError: On network errors, HTTP errors or a response
                                without an access token.
        """
        payload = dict(data, client_id=self.client_id, client_secret=self.client_secret)
        grant_type = data["grant_type"]

        try:
            response = self._session.post(
                TOKEN_URL,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                data=payload,
                timeout=TOKEN_REQUEST_TIMEOUT
            )
        except requests.RequestException as e:
            raise AuthorizationError(
                f"Token request ({grant_type}) failed: {e}",
                details={"grant_type": grant_type, "original_error": str(e)}
            ) from e

        if response.status_code >= 400:
            error, description = _error_fields(response)
            raise AuthorizationError(
                f"Token request ({grant_type}) rejected with HTTP {response.status_code}: "
                f"{error or 'unknown error'}",
                details={
                    "grant_type": grant_type,
                    "http_status": response.status_code,
                    "error": error,
                    "error_description": description,
                },
                is_revoked=(error == "invalid_grant" and grant_type == "refresh_token")
            )

        try:
            token_data = response.json()
        except ValueError as e:
            raise AuthorizationError(
                f"Token response ({grant_type}) is not valid JSON",
                details={"grant_type": grant_type}
            ) from e

        if not isinstance(token_data, dict) or not token_data.get("access_token"):
            raise AuthorizationError(
                f"Token response ({grant_type}) has no access token",
                details={"grant_type": grant_type}
            )

        return token_data

    # =========================================================================
    # Authorization Probe
    # =========================================================================

    def check_auth(self, client) -> bool:
        """
        Check that Spotify accepts the current access token.

        Args:
            client: SpotifyClient bound to this manager's access token.

        Returns:
            True if the current user could be fetched, False otherwise.
            Never raises.
        """
        if not self.store.tokens.access_token:
            logger.debug("Check auth: no access token")
            return False
        try:
            client.current_user()
        except SpotArchiverError as e:
            logger.debug(f"Check auth failed: {e.message}")
            return False
        return True

    # =========================================================================
    # Refresh Chain
    # =========================================================================

    def start(self) -> bool:
        """
        Resume the refresh chain from persisted tokens.

        Refreshes once immediately (a persisted access token is most likely
        expired) and arms the timer. Refresh failures follow the retry policy.

        Returns:
            True if a refresh token was available, False if a login is needed.
        """
        with self._lock:
            self._stopped = False

        if not self.store.tokens.refresh_token:
            logger.warning(f"Not authorized yet. Open {self.login_url} to log in to Spotify.")
            return False

        self._refresh_and_rearm()
        return True

    def stop(self) -> None:
        """Cancel the pending refresh. No timer fires after this returns."""
        with self._lock:
            self._stopped = True
            if self._timer is not None:
                self._timer.cancel()
            self._timer = None
            self._interval = None

    def _refresh_and_rearm(self) -> None:
        """
        Timer callback: refresh, then arm the next timer or back off.

        Also called by start(), possibly while a timer is already armed
        (after a login). Whatever timer is pending is cancelled first, so
        only one chain ever runs.
        """
        with self._lock:
            if self._stopped:
                return
            if self._timer is not None:
                self._timer.cancel()
            self._timer = None
            self._interval = None

        try:
            expires_in = self.refresh()
        except AuthorizationError as e:
            if e.is_revoked:
                self._revoke(e)
            else:
                self._back_off(e)
            return

        with self._lock:
            self._failures = 0
            self._auth_state = AuthState.AUTHORIZED
        self._schedule_refresh(expires_in)

    def _schedule_refresh(self, expires_in: int) -> None:
        interval = max(expires_in / 2, MIN_REFRESH_INTERVAL)
        with self._lock:
            if self._stopped:
                return
            if self._timer is not None:
                if self._interval == interval:
                    return
                logger.debug(f"Refresh interval changed from {self._interval}s to {interval}s")
                self._timer.cancel()
            self._start_timer(interval)
            self._interval = interval
        logger.debug(f"Next token refresh in {interval:.0f} s")

    def _back_off(self, error: AuthorizationError) -> None:
        with self._lock:
            self._failures += 1
            failures = self._failures
            delay = min(RETRY_BASE_DELAY * 2 ** (failures - 1), RETRY_MAX_DELAY)

            logger.error(
                f"Token refresh failed ({failures} in a row): {error.message}. "
                f"Retrying in {delay:.0f} s"
            )
            if failures == ALERT_AFTER_FAILURES:
                logger.critical(
                    f"Token refresh has failed {failures} times in a row. "
                    "Archival runs will fail until Spotify can be reached again."
                )

            if not self._stopped:
                self._start_timer(delay)

    def _revoke(self, error: AuthorizationError) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = None
            self._interval = None
            self._failures = 0
            self._auth_state = AuthState.UNAUTHENTICATED
        self.store.clear_tokens()
        logger.critical(
            f"Spotify rejected the refresh token ({error.message}). "
            f"Open {self.login_url} to authorize spot-archiver again."
        )

    def _start_timer(self, delay: float) -> None:
        if self._timer is not None:
            self._timer.cancel()
        timer = self._timer_factory(delay, self._refresh_and_rearm)
        timer.daemon = True
        timer.start()
        self._timer = timer


def _expires_in(token_data: dict[str, Any]) -> int:
    try:
        return int(token_data.get("expires_in", DEFAULT_EXPIRES_IN))
    except (TypeError, ValueError):
        return DEFAULT_EXPIRES_IN


def _error_fields(response: requests.Response) -> tuple[str | None, str | None]:
    """Extract (error, error_description) from an OAuth error response."""
    try:
        body = response.json()
    except ValueError:
        return None, response.text[:200] or None
    if not isinstance(body, dict):
        return None, None
    error = body.get("error")
    # The accounts service uses the OAuth shape, the Web API nests it
    if isinstance(error, dict):
        return error.get("message"), None
    return error, body.get("error_description")
