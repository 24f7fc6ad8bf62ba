"""
Tests for the /login and /callback HTTP server
"""

import threading
from unittest.mock import Mock

import pytest
import requests

from spot_archiver.auth.server import CallbackServer
from spot_archiver.core.exceptions import AuthorizationError


@pytest.fixture
def credentials():
    credentials = Mock()
    credentials.authorize_url.return_value = "https://accounts.spotify.com/authorize?client_id=cid"
    credentials.expected_state.return_value = "s1"
    return credentials


@pytest.fixture
def authorized_event():
    return threading.Event()


@pytest.fixture
def server(credentials, authorized_event):
    server = CallbackServer(
        credentials, 0, on_authorized=authorized_event.set, host="127.0.0.1"
    )
    server.start()
    yield server
    server.shutdown()


def get(server, path):
    return requests.get(
        f"http://127.0.0.1:{server.port}{path}", allow_redirects=False, timeout=5
    )


class TestCallbackServer:
    """Test the authorization endpoints"""

    def test_login_redirects_to_spotify(self, server, credentials):
        response = get(server, "/login")

        assert response.status_code == 302
        assert response.headers["Location"] == credentials.authorize_url.return_value
        state = credentials.authorize_url.call_args.kwargs["state"]
        assert state

    def test_callback_success(self, server, credentials, authorized_event):
        """Test that a valid callback exchanges the code and triggers a run"""
        response = get(server, "/callback?code=abc&state=s1")

        assert response.status_code == 200
        assert "Authorization Successful" in response.text
        credentials.complete_authorization.assert_called_once_with("abc")
        assert authorized_event.wait(5)

    def test_callback_state_mismatch(self, server, credentials, authorized_event):
        response = get(server, "/callback?code=abc&state=forged")

        assert response.status_code == 400
        credentials.complete_authorization.assert_not_called()
        assert not authorized_event.is_set()

    def test_callback_error_param(self, server, credentials):
        """Test that a denied authorization is reported, not exchanged"""
        response = get(server, "/callback?error=access_denied&state=s1")

        assert response.status_code == 400
        assert "access_denied" in response.text
        credentials.complete_authorization.assert_not_called()

    def test_callback_without_code(self, server):
        assert get(server, "/callback?state=s1").status_code == 400

    def test_token_exchange_failure(self, server, credentials, authorized_event):
        credentials.complete_authorization.side_effect = AuthorizationError("invalid_grant")

        response = get(server, "/callback?code=abc&state=s1")

        assert response.status_code == 500
        assert "invalid_grant" in response.text
        assert not authorized_event.is_set()

    def test_unknown_path(self, server):
        assert get(server, "/favicon.ico").status_code == 404
