"""Tests for OAuth state encoding and return URL sanitising."""

import base64
import json
from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from auth.state import create_state, decode_state, safe_return_url
from config import settings


def _client_state(payload) -> str:
    return base64.b64encode(json.dumps(payload).encode()).decode()


class TestSignedState:

    def test_round_trip(self):
        state, nonce = create_state("/reports/7")
        parsed = decode_state(state)

        assert parsed.signed is True
        assert parsed.nonce == nonce
        assert parsed.return_url == "/reports/7"

    def test_without_return_url(self):
        state, _ = create_state()
        assert decode_state(state).return_url is None

    def test_nonces_differ(self):
        assert create_state()[1] != create_state()[1]

    def test_expired_state_is_unreadable(self):
        past = datetime.now(timezone.utc) - timedelta(hours=1)
        token = jwt.encode(
            {"nonce": "n", "return_url": "/x", "iat": past, "exp": past, "type": "oauth_state"},
            settings.STATE_SECRET,
            algorithm=settings.STATE_ALGORITHM,
        )
        assert decode_state(token) is None

    def test_wrong_secret_is_unreadable(self):
        token = jwt.encode(
            {"nonce": "n", "return_url": "/x", "type": "oauth_state"},
            "some-other-secret",
            algorithm=settings.STATE_ALGORITHM,
        )
        assert decode_state(token) is None


class TestClientState:

    def test_base64_json_state(self):
        parsed = decode_state(_client_state({"random": "r1", "returnUrl": "/stores/3"}))

        assert parsed.signed is False
        assert parsed.nonce == "r1"
        assert parsed.return_url == "/stores/3"

    def test_unpadded_base64(self):
        state = _client_state({"random": "r", "returnUrl": "/a"}).rstrip("=")
        assert decode_state(state).return_url == "/a"

    @pytest.mark.parametrize("state", [None, "", "%%%", "bm90IGpzb24=", _client_state([1, 2])])
    def test_unreadable_state(self, state):
        assert decode_state(state) is None


class TestSafeReturnUrl:

    @pytest.mark.parametrize("url", ["/", "/dashboard", "/reports?id=5&x=y", "/a/b#frag"])
    def test_local_paths_kept(self, url):
        assert safe_return_url(url) == url

    @pytest.mark.parametrize(
        "url",
        [
            None,
            "",
            "dashboard",
            "https://evil.example/",
            "//evil.example",
            "/\\evil.example",
            "javascript:alert(1)",
            42,
        ],
    )
    def test_everything_else_dropped(self, url):
        assert safe_return_url(url) is None
