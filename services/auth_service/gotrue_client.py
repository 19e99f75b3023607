"""Client for the remote identity provider (Supabase GoTrue REST API)."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID

import httpx

from shared.models import utc_now
from shared.retry import retry_with_exponential_backoff

logger = logging.getLogger(__name__)


class AuthError(Exception):
    """Raised when the identity provider rejects or fails a request."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

    @property
    def is_session_revoked(self) -> bool:
        """The refresh token or user no longer exists on the server."""
        return self.status_code in (400, 401, 403, 404)

    @property
    def retryable(self) -> bool:
        return self.status_code is None or self.status_code == 429 or self.status_code >= 500


@dataclass
class AuthSession:
    """An authenticated session as returned by the identity provider."""
    user_id: UUID
    email: Optional[str]
    access_token: str
    refresh_token: str
    expires_at: datetime  # naive UTC

    @property
    def is_anonymous(self) -> bool:
        return self.email is None

    def expires_within(self, seconds: float) -> bool:
        return self.expires_at <= utc_now() + timedelta(seconds=seconds)

    @classmethod
    def from_response(cls, data: dict) -> "AuthSession":
        user = data.get("user") or {}
        if data.get("expires_at"):
            expires_at = datetime.fromtimestamp(int(data["expires_at"]), tz=timezone.utc).replace(tzinfo=None)
        else:
            expires_at = utc_now() + timedelta(seconds=int(data.get("expires_in", 3600)))
        return cls(
            user_id=UUID(user["id"]),
            email=user.get("email") or None,
            access_token=data["access_token"],
            refresh_token=data["refresh_token"],
            expires_at=expires_at,
        )


class GoTrueClient:
    """Thin async wrapper over the /auth/v1 endpoints."""

    def __init__(self, client: httpx.AsyncClient, api_key: str):
        """
        Args:
            client: HTTP client whose base_url points at the backend root
            api_key: Public (anon) API key
        """
        self.client = client
        self.api_key = api_key

    def _headers(self, access_token: Optional[str] = None) -> dict:
        return {
            "apikey": self.api_key,
            "Authorization": f"Bearer {access_token or self.api_key}",
        }

    async def _post(self, path: str, json: dict, access_token: Optional[str] = None,
                    params: Optional[dict] = None) -> httpx.Response:
        try:
            response = await self.client.post(
                f"/auth/v1{path}", json=json, params=params, headers=self._headers(access_token)
            )
        except httpx.TransportError as e:
            raise AuthError(f"Auth request {path} failed: {e}") from e

        if response.status_code >= 400:
            raise AuthError(
                f"Auth request {path} returned {response.status_code}: {response.text}",
                status_code=response.status_code,
            )
        return response

    async def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        response = await self._post(
            "/token", {"email": email, "password": password}, params={"grant_type": "password"}
        )
        session = AuthSession.from_response(response.json())
        logger.info(f"Signed in as {session.user_id}")
        return session

    async def sign_in_anonymously(self) -> AuthSession:
        response = await self._post("/signup", {"data": {}})
        session = AuthSession.from_response(response.json())
        logger.info(f"Signed in anonymously as {session.user_id}")
        return session

    @retry_with_exponential_backoff(
        max_retries=3,
        initial_delay=1.0,
        exponential_base=2.0,
        exceptions=(AuthError,),
        should_retry=lambda e: e.retryable
    )
    async def refresh_session(self, refresh_token: str) -> AuthSession:
        """Exchange a refresh token for a new session."""
        response = await self._post(
            "/token", {"refresh_token": refresh_token}, params={"grant_type": "refresh_token"}
        )
        return AuthSession.from_response(response.json())

    async def sign_out(self, access_token: str):
        await self._post("/logout", {}, access_token=access_token)
