"""Subject identity acquisition.

The engine only needs an opaque, stable subject id. For the Firestore backend
it comes from Firebase Auth (anonymous or custom-token sign-in through the
Identity Toolkit REST API); the local backends use a configured static id.
"""

import asyncio
import base64
import json
from typing import Protocol

import requests

from src.schedule_sync.errors import AuthFailure
from src.schedule_sync.logging import get_logger

logger = get_logger(__name__)

IDENTITY_TOOLKIT_BASE = "https://identitytoolkit.googleapis.com/v1"


class IdentityProvider(Protocol):
    async def acquire_identity(self) -> str:
        """Return the subject id, or raise AuthFailure."""
        ...


class StaticIdentityProvider:
    """Identity fixed by configuration."""

    def __init__(self, subject_id: str) -> None:
        self.subject_id = subject_id

    async def acquire_identity(self) -> str:
        if not self.subject_id:
            raise AuthFailure("No subject id configured")
        return self.subject_id


def _jwt_subject(token: str) -> str | None:
    """Read the ``user_id``/``sub`` claim of a JWT without verifying it."""
    try:
        payload_b64 = token.split(".")[1]
        payload_b64 += "=" * (-len(payload_b64) % 4)
        claims = json.loads(base64.urlsafe_b64decode(payload_b64))
    except (IndexError, ValueError):
        return None
    return claims.get("user_id") or claims.get("sub")


class FirebaseIdentityProvider:
    """Signs in to Firebase Auth and exposes the resulting uid and ID token.

    With ``custom_token`` the provider signs in with that token, otherwise it
    creates an anonymous account. Sign-in happens once; failures are not
    retried.
    """

    def __init__(
        self,
        api_key: str,
        custom_token: str | None = None,
        *,
        timeout: float = 10.0,
        session: requests.Session | None = None,
    ) -> None:
        self.api_key = api_key
        self.custom_token = custom_token or None
        self.timeout = timeout
        self.session = session or requests.Session()
        self.subject_id: str | None = None
        self.id_token: str | None = None

    def current_token(self) -> str | None:
        return self.id_token

    def sign_in(self) -> str:
        """Blocking sign-in. Returns the uid.

        Raises:
            AuthFailure: If the request fails or the response has no uid.
        """
        if not self.api_key:
            raise AuthFailure("Firebase API key is not configured")

        if self.custom_token:
            endpoint = "accounts:signInWithCustomToken"
            body = {"token": self.custom_token, "returnSecureToken": True}
        else:
            endpoint = "accounts:signUp"
            body = {"returnSecureToken": True}

        logger.info("identity_sign_in_started", method=endpoint)
        try:
            resp = self.session.post(
                f"{IDENTITY_TOOLKIT_BASE}/{endpoint}",
                params={"key": self.api_key},
                json=body,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error("identity_sign_in_error", error=str(e), type=type(e).__name__)
            raise AuthFailure(f"Failed to authenticate: {e}") from e

        if resp.status_code != 200:
            logger.error("identity_sign_in_failed", status=resp.status_code)
            raise AuthFailure(f"Failed to authenticate: HTTP {resp.status_code}")

        try:
            data = resp.json()
        except ValueError as e:
            raise AuthFailure(f"Failed to authenticate: invalid response: {e}") from e
        id_token = data.get("idToken")
        uid = data.get("localId") or (id_token and _jwt_subject(id_token))
        if not uid:
            logger.error("identity_sign_in_failed", reason="missing_uid")
            raise AuthFailure("Failed to authenticate: response carried no user id")

        self.subject_id = uid
        self.id_token = id_token
        logger.info("identity_sign_in_succeeded", subject_id=uid)
        return uid

    async def acquire_identity(self) -> str:
        if self.subject_id is not None:
            return self.subject_id
        return await asyncio.to_thread(self.sign_in)
