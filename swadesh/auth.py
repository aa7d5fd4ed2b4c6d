from __future__ import annotations

import base64
from dataclasses import dataclass
from datetime import timedelta
import hashlib
import hmac
import json
import logging
import os
import secrets
import time
from typing import Dict, Optional
from urllib.parse import urlencode

import httpx
from pydantic import BaseModel

from .storage import SessionRecord, Storage, UserRecord, UserUpsert

SESSION_SECRET = os.getenv("SESSION_SECRET", "default_dev_secret")
SESSION_TTL_DAYS = int(os.getenv("SESSION_TTL_DAYS", "7"))
SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "session")
OAUTH_STATE_COOKIE_NAME = "oauth_state"
OAUTH_STATE_TTL_SECONDS = int(os.getenv("OAUTH_STATE_TTL_SECONDS", "600"))
COOKIE_SECURE = (
    os.getenv("COOKIE_SECURE", "").lower() == "true"
    or os.getenv("ENVIRONMENT", "development").lower() == "production"
)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://openidconnect.googleapis.com/v1/userinfo"
GOOGLE_SCOPE = "openid email profile"
GOOGLE_CALLBACK_PATH = "/api/auth/callback/google"

LOGGER = logging.getLogger("swadesh.auth")


class OAuthError(Exception):
    """The identity provider rejected or failed the login exchange."""


@dataclass(frozen=True)
class AuthContext:
    user: UserRecord
    session: SessionRecord


def session_ttl() -> timedelta:
    return timedelta(days=SESSION_TTL_DAYS)


def _sign(payload: Dict[str, object], secret: str) -> str:
    payload_bytes = json.dumps(payload, separators=(",", ":")).encode("utf-8")
    b64_payload = base64.urlsafe_b64encode(payload_bytes).decode("utf-8").rstrip("=")
    signature = hmac.new(
        secret.encode("utf-8"),
        b64_payload.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()
    return f"{b64_payload}.{signature}"


def _unsign(token: str, secret: str, kind: str) -> Optional[Dict[str, object]]:
    try:
        b64_payload, signature = token.split(".", 1)
    except ValueError:
        return None
    expected = hmac.new(
        secret.encode("utf-8"),
        b64_payload.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()
    if not hmac.compare_digest(signature.encode("utf-8"), expected.encode("utf-8")):
        return None
    padded = b64_payload + "=" * (-len(b64_payload) % 4)
    try:
        data = json.loads(base64.urlsafe_b64decode(padded))
    except ValueError:
        return None
    if not isinstance(data, dict) or data.get("kind") != kind:
        return None
    expires = data.get("exp")
    if not isinstance(expires, int) or expires <= int(time.time()):
        return None
    return data


def encode_session_token(session: SessionRecord, secret: str = SESSION_SECRET) -> str:
    return _sign(
        {
            "kind": "session",
            "sid": session.session_id,
            "exp": int(session.expires_at.timestamp()),
        },
        secret,
    )


def decode_session_token(token: str, secret: str = SESSION_SECRET) -> Optional[str]:
    data = _unsign(token, secret, "session")
    if not data:
        return None
    session_id = data.get("sid")
    return session_id if isinstance(session_id, str) else None


def encode_state_token(state: str, secret: str = SESSION_SECRET) -> str:
    return _sign(
        {
            "kind": "oauth_state",
            "state": state,
            "exp": int(time.time()) + OAUTH_STATE_TTL_SECONDS,
        },
        secret,
    )


def verify_state_token(token: Optional[str], state: str, secret: str = SESSION_SECRET) -> bool:
    if not token or not state:
        return False
    data = _unsign(token, secret, "oauth_state")
    if not data or not isinstance(data.get("state"), str):
        return False
    return hmac.compare_digest(data["state"].encode("utf-8"), state.encode("utf-8"))


def start_session(storage: Storage, user: UserRecord) -> SessionRecord:
    return storage.create_session(
        user.id, session_id=secrets.token_urlsafe(32), ttl=session_ttl()
    )


def resolve_auth_context(
    storage: Storage, token: Optional[str], secret: str = SESSION_SECRET
) -> Optional[AuthContext]:
    """Map a session token to its live session and user, or None."""
    if not token:
        return None
    session_id = decode_session_token(token, secret)
    if not session_id:
        return None
    session = storage.get_session(session_id)
    if not session:
        return None
    user = storage.get_user(session.user_id)
    if not user:
        return None
    return AuthContext(user=user, session=session)


def is_authenticated(
    storage: Storage, token: Optional[str], secret: str = SESSION_SECRET
) -> bool:
    return resolve_auth_context(storage, token, secret) is not None


class GoogleProfile(BaseModel):
    sub: str
    email: Optional[str] = None
    given_name: Optional[str] = None
    family_name: Optional[str] = None
    picture: Optional[str] = None

    def to_user_upsert(self) -> UserUpsert:
        return UserUpsert(
            id=self.sub,
            email=self.email or "",
            first_name=self.given_name or "User",
            last_name=self.family_name or "",
            profile_image_url=self.picture,
        )


class GoogleOAuthClient:
    def __init__(
        self,
        client_id: str,
        client_secret: str,
        base_url: str,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 10.0,
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.base_url = base_url.rstrip("/")
        self.transport = transport
        self.timeout = timeout

    @classmethod
    def from_env(cls) -> Optional["GoogleOAuthClient"]:
        client_id = os.getenv("GOOGLE_CLIENT_ID")
        client_secret = os.getenv("GOOGLE_CLIENT_SECRET")
        base_url = os.getenv("BASE_URL")
        if not client_id or not client_secret or not base_url:
            LOGGER.warning(
                "Google auth credentials missing; set GOOGLE_CLIENT_ID, "
                "GOOGLE_CLIENT_SECRET and BASE_URL to enable login."
            )
            return None
        return cls(client_id, client_secret, base_url)

    @property
    def redirect_uri(self) -> str:
        return f"{self.base_url}{GOOGLE_CALLBACK_PATH}"

    def authorization_url(self, state: str) -> str:
        query = {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "scope": GOOGLE_SCOPE,
            "state": state,
        }
        return f"{GOOGLE_AUTH_URL}?{urlencode(query)}"

    async def fetch_profile(self, code: str) -> GoogleProfile:
        token_payload = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "code": code,
            "redirect_uri": self.redirect_uri,
            "grant_type": "authorization_code",
        }
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self.transport
            ) as client:
                token_response = await client.post(
                    GOOGLE_TOKEN_URL,
                    data=token_payload,
                    headers={"Accept": "application/json"},
                )
                if token_response.status_code >= 400:
                    raise OAuthError(
                        f"Token exchange failed with status {token_response.status_code}."
                    )
                access_token = token_response.json().get("access_token")
                if not access_token:
                    raise OAuthError("OAuth access token missing.")
                user_response = await client.get(
                    GOOGLE_USERINFO_URL,
                    headers={"Authorization": f"Bearer {access_token}"},
                )
                if user_response.status_code >= 400:
                    raise OAuthError(
                        f"User lookup failed with status {user_response.status_code}."
                    )
                user_data = user_response.json()
        except httpx.HTTPError as exc:
            raise OAuthError(f"Error contacting Google: {exc}") from exc
        except ValueError as exc:
            raise OAuthError(f"Invalid JSON from Google: {exc}") from exc
        if not isinstance(user_data, dict) or not user_data.get("sub"):
            raise OAuthError("Google did not return a subject identifier.")
        known = {k: v for k, v in user_data.items() if k in GoogleProfile.model_fields}
        return GoogleProfile(**known)
