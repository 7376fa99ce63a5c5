"""
Tests for the /auth endpoints.

Covers:
- Login redirect with signed state and nonce cookie
- Callback: user provisioning, session cookie, landing routes, return URLs
- Callback failures (provider error, missing code, exchange/profile errors)
- Logout, pending page, session info and client config
"""

import base64
import json
from datetime import timedelta
from urllib.parse import parse_qs, urlparse

import pytest
from sqlalchemy import select

from auth import oauth_service
from auth import session_store as session_store_module
from auth.errors import ProfileFetchError, TokenExchangeError
from auth.oauth_service import TokenSet, UserProfile
from auth.session_store import get_session_store, is_valid_token_format
from auth.state import create_state, decode_state
from config import settings
from main import app
from models import Role, User, UserSession


def _profile(email="new.person@example.com", display_name="New Person", **overrides):
    fields = dict(
        external_id="aad-" + email.split("@")[0],
        email=email,
        display_name=display_name,
        job_title="Clerk",
        department="Operations",
        photo_url=None,
    )
    fields.update(overrides)
    return UserProfile(**fields)


@pytest.fixture
def idp(monkeypatch):
    """
    Replace the provider calls. Tests set ``idp.profile`` (and optionally
    ``idp.exchange_error`` / ``idp.profile_error``) before calling the callback.
    """

    class FakeProvider:
        profile = _profile()
        exchange_error = None
        profile_error = None
        codes = []

        async def exchange_code(self, code, redirect_uri=None, client=None):
            self.codes.append(code)
            if self.exchange_error:
                raise self.exchange_error
            return TokenSet(access_token=f"graph-{code}", refresh_token="refresh", expires_in=3600)

        async def fetch_profile(self, access_token, client=None):
            if self.profile_error:
                raise self.profile_error
            return self.profile

    fake = FakeProvider()
    fake.codes = []
    monkeypatch.setattr(oauth_service, "exchange_code", fake.exchange_code)
    monkeypatch.setattr(oauth_service, "fetch_profile", fake.fetch_profile)
    return fake


def _set_cookie_headers(response):
    return response.headers.get_list("set-cookie")


def _session_cookie_header(response):
    prefix = f"{settings.SESSION_COOKIE_NAME}="
    matches = [h for h in _set_cookie_headers(response) if h.startswith(prefix)]
    return matches[0] if matches else None


def _client_state(return_url):
    raw = json.dumps({"random": "abc123", "returnUrl": return_url}).encode()
    return base64.b64encode(raw).decode().rstrip("=")


# ──────────────────────────────────────────────────────────────────────────────
# LOGIN
# ──────────────────────────────────────────────────────────────────────────────


class TestLogin:
    """Tests for GET /auth/login."""

    @pytest.mark.asyncio
    async def test_login_redirects_to_provider(self, async_client):
        response = await async_client.get("/auth/login", params={"returnUrl": "/reports?id=5"})

        assert response.status_code == 302
        location = urlparse(response.headers["location"])
        assert location.netloc == "login.microsoftonline.com"
        assert location.path.endswith("/oauth2/v2.0/authorize")

        query = parse_qs(location.query)
        assert query["response_type"] == ["code"]
        assert query["redirect_uri"] == [settings.REDIRECT_URI]
        assert "offline_access" in query["scope"][0].split()

        state = decode_state(query["state"][0])
        assert state.signed
        assert state.return_url == "/reports?id=5"
        assert response.cookies[settings.STATE_COOKIE_NAME] == state.nonce

    @pytest.mark.asyncio
    async def test_login_drops_external_return_url(self, async_client):
        response = await async_client.get(
            "/auth/login", params={"returnUrl": "https://evil.example/phish"}
        )

        query = parse_qs(urlparse(response.headers["location"]).query)
        assert decode_state(query["state"][0]).return_url is None

    @pytest.mark.asyncio
    async def test_login_with_error_returns_status_json(self, async_client):
        response = await async_client.get("/auth/login", params={"error": "authentication_failed"})

        assert response.status_code == 200
        data = response.json()
        assert data["error"] == "authentication_failed"
        assert data["message"] is None
        assert "/oauth2/v2.0/authorize?" in data["authorize_url"]

    @pytest.mark.asyncio
    async def test_client_config(self, async_client):
        response = await async_client.get("/auth/config")

        assert response.status_code == 200
        data = response.json()
        assert data["redirect_uri"] == settings.REDIRECT_URI
        assert data["scopes"] == settings.OAUTH_SCOPES
        assert data["authorization_endpoint"].endswith("/oauth2/v2.0/authorize")
        assert "client_secret" not in data


# ──────────────────────────────────────────────────────────────────────────────
# CALLBACK
# ──────────────────────────────────────────────────────────────────────────────


class TestCallback:
    """Tests for GET /auth/callback."""

    @pytest.mark.asyncio
    async def test_first_login_creates_pending_user(
        self, async_client, idp, session_factory, session_store
    ):
        response = await async_client.get("/auth/callback", params={"code": "code-1"})

        assert response.status_code == 302
        assert response.headers["location"] == "/auth/pending"

        cookie = _session_cookie_header(response)
        assert cookie is not None
        lowered = cookie.lower()
        assert "httponly" in lowered
        assert "max-age=86400" in lowered
        assert "samesite=lax" in lowered
        assert "path=/" in lowered
        assert "secure" not in lowered

        token = response.cookies[settings.SESSION_COOKIE_NAME]
        assert is_valid_token_format(token)

        async with session_factory() as db:
            user = (
                await db.execute(select(User).where(User.email == "new.person@example.com"))
            ).scalar_one()
        assert user.role == "Pending"
        assert user.is_active is True
        assert user.is_approved is False
        assert user.external_id == "aad-new.person"
        assert user.last_login_at is not None

        session = await session_store.lookup(token)
        assert session.user_id == user.id
        assert session.access_token == "graph-code-1"
        assert session.refresh_token == "refresh"

    @pytest.mark.asyncio
    async def test_second_login_keeps_role_and_first_session(
        self, async_client, idp, make_user, session_store, session_factory
    ):
        await make_user(email="boss@example.com", role=Role.ADMIN, display_name="Old Name")
        idp.profile = _profile(email="boss@example.com", display_name="New Name")

        first = await async_client.get("/auth/callback", params={"code": "one"})
        second = await async_client.get("/auth/callback", params={"code": "two"})

        assert first.headers["location"] == "/dashboard"
        assert second.headers["location"] == "/dashboard"

        token_1 = first.cookies[settings.SESSION_COOKIE_NAME]
        token_2 = second.cookies[settings.SESSION_COOKIE_NAME]
        assert token_1 != token_2
        assert await session_store.lookup(token_1) is not None
        assert await session_store.lookup(token_2) is not None

        async with session_factory() as db:
            users = (await db.execute(select(User))).scalars().all()
        assert len(users) == 1
        assert users[0].role == "Admin"
        assert users[0].display_name == "New Name"

    @pytest.mark.asyncio
    async def test_auditor_lands_on_selection(self, async_client, idp, make_user):
        await make_user(email="aud@example.com", role=Role.AUDITOR)
        idp.profile = _profile(email="aud@example.com")

        response = await async_client.get("/auth/callback", params={"code": "c"})
        assert response.headers["location"] == "/auditor/selection"

    @pytest.mark.asyncio
    async def test_session_expires_after_24_hours(self, async_client, idp, session_store, clock):
        response = await async_client.get("/auth/callback", params={"code": "c"})
        token = response.cookies[settings.SESSION_COOKIE_NAME]

        session = await session_store.lookup(token)
        assert session.expires_at - session.created_at == timedelta(hours=24)

        clock.advance(hours=24)
        assert await session_store.lookup(token) is None

    @pytest.mark.asyncio
    async def test_provider_error_is_not_echoed(self, async_client, idp):
        response = await async_client.get(
            "/auth/callback",
            params={"error": "access_denied", "error_description": "AADSTS50105 internal detail"},
        )

        assert response.status_code == 302
        assert response.headers["location"] == "/auth/login?error=authentication_failed"
        assert _session_cookie_header(response) is None
        assert idp.codes == []

    @pytest.mark.asyncio
    async def test_missing_code(self, async_client, idp):
        response = await async_client.get("/auth/callback")

        assert response.status_code == 302
        assert response.headers["location"] == "/auth/login?error=no_code"

    @pytest.mark.asyncio
    async def test_exchange_failure(self, async_client, idp, session_factory):
        idp.exchange_error = TokenExchangeError("invalid_grant")

        response = await async_client.get("/auth/callback", params={"code": "stale"})

        assert response.headers["location"] == "/auth/login?error=authentication_failed"
        assert _session_cookie_header(response) is None
        async with session_factory() as db:
            assert (await db.execute(select(User))).scalars().all() == []

    @pytest.mark.asyncio
    async def test_profile_failure(self, async_client, idp):
        idp.profile_error = ProfileFetchError("401 from Graph")

        response = await async_client.get("/auth/callback", params={"code": "c"})

        assert response.headers["location"] == "/auth/login?error=authentication_failed"
        assert _session_cookie_header(response) is None

    @pytest.mark.asyncio
    async def test_unknown_stored_role(self, async_client, idp, make_user):
        await make_user(email="odd@example.com", role="Superuser")
        idp.profile = _profile(email="odd@example.com")

        response = await async_client.get("/auth/callback", params={"code": "c"})

        assert response.headers["location"] == "/auth/login?error=unknown_role"
        assert _session_cookie_header(response) is None

    @pytest.mark.asyncio
    async def test_deactivated_user_gets_no_session(
        self, async_client, idp, make_user, session_factory
    ):
        """A deactivated account ends on the login page instead of looping through SSO."""
        await make_user(email="gone@example.com", role=Role.ADMIN, is_active=False)
        idp.profile = _profile(email="gone@example.com")

        response = await async_client.get("/auth/callback", params={"code": "c"})

        assert response.status_code == 302
        assert response.headers["location"] == "/auth/login?error=account_disabled"
        assert _session_cookie_header(response) is None
        async with session_factory() as db:
            assert (await db.execute(select(UserSession))).scalars().all() == []

        login_page = await async_client.get(response.headers["location"])
        assert login_page.status_code == 200
        assert login_page.json()["error"] == "account_disabled"

    @pytest.mark.asyncio
    async def test_session_token_collision_is_retried(
        self, async_client, idp, make_user, session_store, monkeypatch
    ):
        existing_user = await make_user(email="someone.else@example.com")
        taken = "a" * 64
        fresh = "b" * 64
        monkeypatch.setattr(session_store_module, "generate_session_token", lambda: taken)
        await session_store.create(existing_user.id, "access")

        tokens = iter([taken, fresh])
        monkeypatch.setattr(session_store_module, "generate_session_token", lambda: next(tokens))

        response = await async_client.get("/auth/callback", params={"code": "c"})

        assert response.status_code == 302
        assert response.cookies[settings.SESSION_COOKIE_NAME] == fresh


# ──────────────────────────────────────────────────────────────────────────────
# STATE / RETURN URL
# ──────────────────────────────────────────────────────────────────────────────


class TestReturnUrl:
    """Post-login return URL handling through the state parameter."""

    @pytest.mark.asyncio
    async def test_full_login_round_trip_honours_return_url(self, async_client, idp, make_user):
        await make_user(email="boss@example.com", role=Role.ADMIN)
        idp.profile = _profile(email="boss@example.com")

        login = await async_client.get("/auth/login", params={"returnUrl": "/reports?id=5"})
        state = parse_qs(urlparse(login.headers["location"]).query)["state"][0]

        response = await async_client.get("/auth/callback", params={"code": "c", "state": state})

        assert response.headers["location"] == "/reports?id=5"

    @pytest.mark.asyncio
    async def test_pending_user_ignores_return_url(self, async_client, idp):
        state, nonce = create_state("/reports")
        async_client.cookies.set(settings.STATE_COOKIE_NAME, nonce)

        response = await async_client.get("/auth/callback", params={"code": "c", "state": state})

        assert response.headers["location"] == "/auth/pending"

    @pytest.mark.asyncio
    async def test_client_built_state_accepted(self, async_client, idp, make_user):
        await make_user(email="aud@example.com", role=Role.AUDITOR)
        idp.profile = _profile(email="aud@example.com")

        response = await async_client.get(
            "/auth/callback",
            params={"code": "c", "state": _client_state("/auditor/selection?store=3")},
        )

        assert response.headers["location"] == "/auditor/selection?store=3"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "return_url",
        ["https://evil.example/", "//evil.example/path", "/\\evil.example", "javascript:alert(1)"],
    )
    async def test_unsafe_return_url_falls_back_to_landing(
        self, async_client, idp, make_user, return_url
    ):
        await make_user(email="boss@example.com", role=Role.ADMIN)
        idp.profile = _profile(email="boss@example.com")

        response = await async_client.get(
            "/auth/callback", params={"code": "c", "state": _client_state(return_url)}
        )

        assert response.headers["location"] == "/dashboard"

    @pytest.mark.asyncio
    async def test_garbage_state_is_ignored(self, async_client, idp, make_user):
        await make_user(email="boss@example.com", role=Role.ADMIN)
        idp.profile = _profile(email="boss@example.com")

        response = await async_client.get(
            "/auth/callback", params={"code": "c", "state": "%%%not-base64%%%"}
        )

        assert response.headers["location"] == "/dashboard"

    @pytest.mark.asyncio
    async def test_state_from_another_browser_rejected(self, async_client, idp):
        state, _ = create_state("/reports")
        async_client.cookies.set(settings.STATE_COOKIE_NAME, "some-other-nonce")

        response = await async_client.get("/auth/callback", params={"code": "c", "state": state})

        assert response.headers["location"] == "/auth/login?error=invalid_state"
        assert _session_cookie_header(response) is None
        assert idp.codes == []


# ──────────────────────────────────────────────────────────────────────────────
# LOGOUT / PENDING / SESSION INFO
# ──────────────────────────────────────────────────────────────────────────────


class TestLogout:
    """Tests for GET /auth/logout."""

    @pytest.mark.asyncio
    async def test_logout_destroys_session(self, async_client, login_as, session_store):
        _, token = await login_as(Role.ADMIN)

        response = await async_client.get("/auth/logout")

        assert response.status_code == 302
        assert response.headers["location"] == "/auth/login?message=logged_out"
        cleared = _session_cookie_header(response)
        assert cleared is not None
        assert 'auth_token=""' in cleared or "max-age=0" in cleared.lower()
        assert await session_store.lookup(token) is None

    @pytest.mark.asyncio
    async def test_logout_without_session(self, async_client):
        response = await async_client.get("/auth/logout")

        assert response.status_code == 302
        assert response.headers["location"] == "/auth/login?message=logged_out"

    @pytest.mark.asyncio
    async def test_logout_with_store_outage(self, async_client, login_as, broken_store):
        await login_as(Role.ADMIN)
        app.dependency_overrides[get_session_store] = lambda: broken_store

        response = await async_client.get("/auth/logout")

        assert response.status_code == 302
        assert response.headers["location"] == "/auth/login?error=logout_error"
        assert _session_cookie_header(response) is not None

    @pytest.mark.asyncio
    async def test_logged_out_cookie_no_longer_authenticates(self, async_client, login_as):
        _, token = await login_as(Role.ADMIN)
        await async_client.get("/auth/logout")

        async_client.cookies.clear()
        async_client.cookies.set(settings.SESSION_COOKIE_NAME, token)
        response = await async_client.get("/api/admin/users")

        assert response.status_code == 401


class TestPendingAndSession:
    """Tests for GET /auth/pending and GET /auth/session."""

    @pytest.mark.asyncio
    async def test_pending_user_sees_status(self, async_client, login_as):
        await login_as(Role.PENDING, email="wait@example.com", is_approved=False)

        response = await async_client.get("/auth/pending")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "pending"
        assert data["email"] == "wait@example.com"

    @pytest.mark.asyncio
    async def test_approved_user_redirected_from_pending(self, async_client, login_as):
        await login_as(Role.AUDITOR)

        response = await async_client.get("/auth/pending")

        assert response.status_code == 302
        assert response.headers["location"] == "/auditor/selection"

    @pytest.mark.asyncio
    async def test_pending_requires_login(self, async_client):
        response = await async_client.get("/auth/pending")

        assert response.status_code == 302
        assert response.headers["location"] == "/auth/login?returnUrl=%2Fauth%2Fpending"

    @pytest.mark.asyncio
    async def test_session_info(self, async_client, login_as, clock):
        user, _ = await login_as(
            Role.STORE_MANAGER,
            email="manager@example.com",
            assigned_stores=["S-001", "S-002"],
            assigned_department="Produce",
        )

        response = await async_client.get("/auth/session")

        assert response.status_code == 200
        data = response.json()
        assert data["user"]["id"] == user.id
        assert data["user"]["role"] == "StoreManager"
        assert data["user"]["assigned_stores"] == ["S-001", "S-002"]
        assert data["user"]["assigned_department"] == "Produce"
        assert data["session"]["created_at"] == clock.now.isoformat()
        assert data["session"]["expires_at"] == (clock.now + timedelta(hours=24)).isoformat()
        assert "access_token" not in json.dumps(data)
