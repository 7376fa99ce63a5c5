"""
Azure AD OAuth2 + Microsoft Graph service.

Handles the authorize URL, authorization code exchange, the "current user"
profile lookup and the app-only directory listing used by the user sync.
Uses ``httpx`` for HTTP calls with a bounded timeout; timeouts and transport
failures are reported the same way as provider rejections.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import httpx

from config import settings

from .errors import DirectoryError, ProfileFetchError, TokenExchangeError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenSet:
    access_token: str
    refresh_token: Optional[str]
    expires_in: Optional[int]


@dataclass(frozen=True)
class UserProfile:
    external_id: Optional[str]
    email: str
    display_name: Optional[str]
    job_title: Optional[str]
    department: Optional[str]
    photo_url: Optional[str] = None


def _requested_scope() -> str:
    # offline_access is what makes the provider return a refresh token
    scopes = list(settings.OAUTH_SCOPES)
    if "offline_access" not in scopes:
        scopes.append("offline_access")
    return " ".join(scopes)


def authorize_endpoint() -> str:
    return f"{settings.authority_url}/oauth2/v2.0/authorize"


def token_endpoint() -> str:
    return f"{settings.authority_url}/oauth2/v2.0/token"


def build_authorize_url(state: str, redirect_uri: Optional[str] = None) -> str:
    """Build the browser redirect URL for the provider's authorize endpoint."""
    params = {
        "client_id": settings.AZURE_CLIENT_ID or "",
        "response_type": "code",
        "redirect_uri": redirect_uri or settings.REDIRECT_URI,
        "response_mode": "query",
        "scope": _requested_scope(),
        "state": state,
    }
    return f"{authorize_endpoint()}?{urlencode(params)}"


def _client(client: Optional[httpx.AsyncClient]) -> httpx.AsyncClient:
    if client is not None:
        return client
    return httpx.AsyncClient(timeout=settings.IDP_TIMEOUT_SECONDS)


async def exchange_code(
    code: str,
    redirect_uri: Optional[str] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> TokenSet:
    """
    Exchange an authorization code for tokens at the provider's token endpoint.

    Args:
        code: Authorization code from the callback.
        redirect_uri: The redirect URI used in the original authorize request.
        client: Optional pre-built client (tests pass one with a mock transport).

    Raises:
        TokenExchangeError: if the provider rejects the code, the call times
            out, or the response carries no access token.
    """
    data = {
        "grant_type": "authorization_code",
        "code": code,
        "redirect_uri": redirect_uri or settings.REDIRECT_URI,
        "client_id": settings.AZURE_CLIENT_ID or "",
        "client_secret": settings.AZURE_CLIENT_SECRET or "",
        "scope": _requested_scope(),
    }

    http = _client(client)
    try:
        resp = await http.post(
            token_endpoint(),
            data=data,
            headers={"Accept": "application/json"},
            timeout=settings.IDP_TIMEOUT_SECONDS,
        )
        result: Dict[str, Any] = resp.json() if resp.content else {}
    except httpx.HTTPError as exc:
        raise TokenExchangeError(f"Token endpoint unreachable: {exc}") from exc
    except ValueError as exc:
        raise TokenExchangeError("Token endpoint returned a non-JSON body") from exc
    finally:
        if client is None:
            await http.aclose()

    if resp.status_code >= 400 or "error" in result:
        error = result.get("error", f"http_{resp.status_code}")
        desc = result.get("error_description", "")
        raise TokenExchangeError(
            f"Token endpoint returned error: {error}" + (f" ({desc})" if desc else "")
        )

    if not result.get("access_token"):
        raise TokenExchangeError("Token endpoint response missing access_token")

    expires_in = result.get("expires_in")
    return TokenSet(
        access_token=result["access_token"],
        refresh_token=result.get("refresh_token"),
        expires_in=int(expires_in) if expires_in is not None else None,
    )


async def fetch_profile(
    access_token: str,
    client: Optional[httpx.AsyncClient] = None,
) -> UserProfile:
    """
    Fetch the signed-in principal from Microsoft Graph ``/me``.

    The email prefers ``mail`` and falls back to ``userPrincipalName``.

    Raises:
        ProfileFetchError: on an unauthorized/failed call, a timeout, or a
            profile without any usable email.
    """
    headers = {"Authorization": f"Bearer {access_token}"}
    base = settings.GRAPH_API_URL.rstrip("/")

    http = _client(client)
    try:
        try:
            resp = await http.get(
                f"{base}/me", headers=headers, timeout=settings.IDP_TIMEOUT_SECONDS
            )
            resp.raise_for_status()
            profile = resp.json()
        except httpx.HTTPError as exc:
            raise ProfileFetchError(
                f"Failed to fetch user profile from Microsoft Graph: {exc}"
            ) from exc
        except ValueError as exc:
            raise ProfileFetchError("Graph profile response was not JSON") from exc

        email = profile.get("mail") or profile.get("userPrincipalName")
        if not email:
            raise ProfileFetchError("Graph profile has neither mail nor userPrincipalName")

        photo_url = await _fetch_photo_ref(http, base, headers, profile.get("id"))
    finally:
        if client is None:
            await http.aclose()

    return UserProfile(
        external_id=profile.get("id"),
        email=email,
        display_name=profile.get("displayName"),
        job_title=profile.get("jobTitle"),
        department=profile.get("department"),
        photo_url=photo_url,
    )


async def _fetch_photo_ref(
    http: httpx.AsyncClient,
    base: str,
    headers: Dict[str, str],
    external_id: Optional[str],
) -> Optional[str]:
    """
    Check whether the principal has a profile photo. Returns a reference URL
    for it, or ``None`` when there is none or the lookup fails.
    """
    if not external_id:
        return None
    try:
        resp = await http.get(
            f"{base}/me/photo/$value",
            headers=headers,
            timeout=settings.IDP_TIMEOUT_SECONDS,
        )
    except httpx.HTTPError as exc:
        logger.info(f"Could not fetch user photo: {exc}")
        return None
    if resp.status_code != 200:
        return None
    return f"{base}/users/{external_id}/photo/$value"


# ── Directory (app-only) ───────────────────────────────────────────────


@dataclass(frozen=True)
class DirectoryUser:
    external_id: Optional[str]
    display_name: Optional[str]
    mail: Optional[str]
    user_principal_name: Optional[str]

    @property
    def email(self) -> Optional[str]:
        return self.mail or self.user_principal_name


async def acquire_app_token(client: Optional[httpx.AsyncClient] = None) -> str:
    """
    Get an application token with the client credentials grant.

    Raises:
        DirectoryError: if the token endpoint is unreachable or refuses.
    """
    data = {
        "grant_type": "client_credentials",
        "client_id": settings.AZURE_CLIENT_ID or "",
        "client_secret": settings.AZURE_CLIENT_SECRET or "",
        "scope": settings.GRAPH_APP_SCOPE,
    }

    http = _client(client)
    try:
        resp = await http.post(
            token_endpoint(),
            data=data,
            headers={"Accept": "application/json"},
            timeout=settings.IDP_TIMEOUT_SECONDS,
        )
        result: Dict[str, Any] = resp.json() if resp.content else {}
    except httpx.HTTPError as exc:
        raise DirectoryError(f"Token endpoint unreachable: {exc}") from exc
    except ValueError as exc:
        raise DirectoryError("Token endpoint returned a non-JSON body") from exc
    finally:
        if client is None:
            await http.aclose()

    if resp.status_code >= 400 or not result.get("access_token"):
        error = result.get("error", f"http_{resp.status_code}")
        raise DirectoryError(f"Client credentials grant failed: {error}")
    return result["access_token"]


async def list_directory_users(client: Optional[httpx.AsyncClient] = None) -> List[DirectoryUser]:
    """
    List every user in the tenant directory, following ``@odata.nextLink``
    until the last page.

    Raises:
        DirectoryError: if the app token cannot be acquired or any page fails.
    """
    http = _client(client)
    try:
        token = await acquire_app_token(http)
        headers = {"Authorization": f"Bearer {token}"}
        base = settings.GRAPH_API_URL.rstrip("/")
        url: Optional[str] = (
            f"{base}/users?$select=id,displayName,mail,userPrincipalName"
            f"&$top={settings.DIRECTORY_PAGE_SIZE}"
        )

        users: List[DirectoryUser] = []
        while url:
            try:
                resp = await http.get(url, headers=headers, timeout=settings.IDP_TIMEOUT_SECONDS)
                resp.raise_for_status()
                page = resp.json()
            except httpx.HTTPError as exc:
                raise DirectoryError(f"Failed to list directory users: {exc}") from exc
            except ValueError as exc:
                raise DirectoryError("Directory page was not JSON") from exc

            for entry in page.get("value", []):
                users.append(
                    DirectoryUser(
                        external_id=entry.get("id"),
                        display_name=entry.get("displayName"),
                        mail=entry.get("mail"),
                        user_principal_name=entry.get("userPrincipalName"),
                    )
                )
            url = page.get("@odata.nextLink")
    finally:
        if client is None:
            await http.aclose()

    logger.info(f"Fetched {len(users)} users from the directory")
    return users
