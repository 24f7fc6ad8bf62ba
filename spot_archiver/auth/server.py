"""
Login and OAuth callback HTTP server.

Two endpoints are served on the configured port:

    GET /login      302 redirect to the Spotify authorization page
    GET /callback   receives ?code=... (or ?error=...) from Spotify,
                    completes the authorization and triggers one
                    immediate archival run

The server runs on a daemon thread next to the scheduler. It is the only
way to obtain a first refresh token; afterwards the refresh chain in
CredentialManager keeps the session alive across restarts.
"""

import html
import secrets
import threading
import urllib.parse
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Callable

from spot_archiver.auth.credentials import CredentialManager
from spot_archiver.core.exceptions import AuthorizationError
from spot_archiver.core.logger import get_logger

logger = get_logger(__name__)


PAGE_TEMPLATE = """<html>
<head><title>{title}</title></head>
<body style="font-family: Arial, sans-serif; text-align: center; margin-top: 50px;">
    <h1 style="color: {color};">{title}</h1>
    {body}
</body>
</html>
"""

SUCCESS_COLOR = "#1DB954"
ERROR_COLOR = "#E22134"


class CallbackHandler(BaseHTTPRequestHandler):
    """
    HTTP request handler for /login and /callback.

    Attributes:
        server: Parent CallbackHTTPServer carrying the credential manager
                and the on_authorized hook.
    """

    server: "CallbackHTTPServer"

    def do_GET(self) -> None:
        parsed_url = urllib.parse.urlparse(self.path)
        query_params = urllib.parse.parse_qs(parsed_url.query)

        if parsed_url.path == "/login":
            self._handle_login()
        elif parsed_url.path == "/callback":
            self._handle_callback(query_params)
        else:
            self._send_page(404, "Not Found", "<p>Use /login to authorize spot-archiver.</p>")

    def _handle_login(self) -> None:
        state = secrets.token_urlsafe(16)
        url = self.server.credentials.authorize_url(state=state)
        logger.debug("Redirecting to Spotify authorization page")

        self.send_response(302)
        self.send_header("Location", url)
        self.end_headers()

    def _handle_callback(self, query_params: dict[str, list[str]]) -> None:
        """
        Process the OAuth callback.

        Callback URL format:
            - Success: /callback?code=AUTHORIZATION_CODE&state=STATE
            - Error:   /callback?error=access_denied&state=STATE
        """
        credentials = self.server.credentials

        if "error" in query_params:
            error = query_params["error"][0]
            logger.error(f"Callback error: {error}")
            self._send_page(
                400,
                "Authorization Failed",
                f"<p>Spotify reported: {html.escape(error)}</p>"
                '<p><a href="/login">Try again</a></p>'
            )
            return

        if "code" not in query_params:
            self._send_page(400, "Authorization Failed", "<p>Missing authorization code.</p>")
            return

        state = query_params.get("state", [None])[0]
        if state != credentials.expected_state():
            logger.warning("Callback rejected: state does not match the last /login request")
            self._send_page(
                400,
                "Authorization Failed",
                '<p>This login link has expired. <a href="/login">Start again</a>.</p>'
            )
            return

        try:
            credentials.complete_authorization(query_params["code"][0])
        except AuthorizationError as e:
            logger.error(f"Error getting tokens: {e.message}")
            self._send_page(
                500,
                "Authorization Failed",
                f"<p>Error getting tokens: {html.escape(e.message)}</p>"
            )
            return

        self._send_page(
            200,
            "Authorization Successful!",
            "<p>You can now close this window.</p>"
            "<p>spot-archiver has been granted access to your Spotify account.</p>"
        )

        if self.server.on_authorized is not None:
            try:
                self.server.on_authorized()
            except Exception:
                logger.exception("Failed to start the archival run after authorization")

    def _send_page(self, status: int, title: str, body: str) -> None:
        color = SUCCESS_COLOR if status < 400 else ERROR_COLOR
        content = PAGE_TEMPLATE.format(title=title, color=color, body=body).encode("utf-8")

        self.send_response(status)
        self.send_header("Content-Type", "text/html; charset=utf-8")
        self.send_header("Content-Length", str(len(content)))
        self.end_headers()
        self.wfile.write(content)

    def log_message(self, format, *args) -> None:
        # Route access logs through logging instead of stderr
        logger.debug(f"{self.address_string()} - {format % args}")


class CallbackHTTPServer(ThreadingHTTPServer):
    """ThreadingHTTPServer carrying the objects the handler needs."""

    daemon_threads = True

    def __init__(
        self,
        server_address: tuple[str, int],
        credentials: CredentialManager,
        on_authorized: Callable[[], None] | None = None
    ) -> None:
        super().__init__(server_address, CallbackHandler)
        self.credentials = credentials
        self.on_authorized = on_authorized


class CallbackServer:
    """
    Runs CallbackHTTPServer on a background thread.

    Args:
        credentials: Credential manager completing the authorization.
        port: Port to listen on (0 picks a free port).
        on_authorized: Called after a successful login, typically
                       JobScheduler.run_now.
        host: Interface to bind. Empty string means all interfaces.

    Example:
        server = CallbackServer(credentials, 8888, on_authorized=scheduler.run_now)
        server.start()
        ...
        server.shutdown()
    """

    def __init__(
        self,
        credentials: CredentialManager,
        port: int,
        on_authorized: Callable[[], None] | None = None,
        host: str = ""
    ) -> None:
        self.httpd = CallbackHTTPServer((host, port), credentials, on_authorized)
        self._thread: threading.Thread | None = None

    @property
    def port(self) -> int:
        return self.httpd.server_address[1]

    def start(self) -> None:
        self._thread = threading.Thread(
            target=self.httpd.serve_forever,
            name="callback-server",
            daemon=True
        )
        self._thread.start()
        logger.info(f"spot-archiver listening on port {self.port}")

    def shutdown(self) -> None:
        if self._thread is not None:
            self.httpd.shutdown()
            self._thread.join(timeout=5)
            self._thread = None
        self.httpd.server_close()
