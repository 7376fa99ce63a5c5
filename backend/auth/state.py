"""
OAuth ``state`` parameter encoding using python-jose.

The server signs a short-lived JWT carrying a nonce and the optional
post-login return URL. Client-built states (base64 JSON with ``random`` and
``returnUrl`` keys) are still accepted. Decoding is best-effort: anything
unreadable simply means "no return URL".
"""

import base64
import binascii
import json
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt

from config import settings

logger = logging.getLogger(__name__)

_STATE_TYPE = "oauth_state"


@dataclass(frozen=True)
class OAuthState:
    nonce: Optional[str]
    return_url: Optional[str]
    signed: bool


def create_state(return_url: Optional[str] = None) -> tuple[str, str]:
    """
    Create a signed state value.

    Returns:
        ``(state, nonce)``. The nonce is also set as a cookie so the callback
        can tie the state to the browser that started the login.
    """
    nonce = secrets.token_urlsafe(16)
    now = datetime.now(timezone.utc)
    payload = {
        "nonce": nonce,
        "return_url": safe_return_url(return_url),
        "iat": now,
        "exp": now + timedelta(minutes=settings.STATE_EXPIRATION_MINUTES),
        "type": _STATE_TYPE,
    }
    token = jwt.encode(payload, settings.STATE_SECRET, algorithm=settings.STATE_ALGORITHM)
    return token, nonce


def decode_state(state: Optional[str]) -> Optional[OAuthState]:
    """Decode a state value, returning ``None`` when it cannot be read."""
    if not state:
        return None

    try:
        payload = jwt.decode(
            state,
            settings.STATE_SECRET,
            algorithms=[settings.STATE_ALGORITHM],
        )
        if payload.get("type") == _STATE_TYPE:
            return OAuthState(
                nonce=payload.get("nonce"),
                return_url=safe_return_url(payload.get("return_url")),
                signed=True,
            )
    except JWTError:
        pass

    try:
        padded = state + "=" * (-len(state) % 4)
        data = json.loads(base64.b64decode(padded).decode("utf-8"))
    except (binascii.Error, ValueError, UnicodeDecodeError):
        logger.debug("Could not parse state, ignoring return URL")
        return None

    if not isinstance(data, dict):
        return None
    return OAuthState(
        nonce=data.get("random"),
        return_url=safe_return_url(data.get("returnUrl")),
        signed=False,
    )


def safe_return_url(url) -> Optional[str]:
    """Only local absolute paths are honoured as post-login destinations."""
    if not url or not isinstance(url, str):
        return None
    if not url.startswith("/") or url.startswith("//") or "\\" in url:
        return None
    return url
