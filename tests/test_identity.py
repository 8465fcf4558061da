"""Tests for identity providers. Identity Toolkit calls are mocked."""

import base64
import json
from unittest.mock import MagicMock

import pytest
import requests

from src.schedule_sync.errors import AuthFailure
from src.schedule_sync.identity import FirebaseIdentityProvider, StaticIdentityProvider

pytestmark = pytest.mark.asyncio


def _response(status_code, body=None):
    resp = MagicMock()
    resp.status_code = status_code
    resp.json.return_value = body or {}
    return resp


def _jwt(claims):
    payload = base64.urlsafe_b64encode(json.dumps(claims).encode()).rstrip(b"=").decode()
    return f"header.{payload}.signature"


class TestStaticIdentityProvider:
    async def test_returns_configured_subject(self):
        assert await StaticIdentityProvider("user-1").acquire_identity() == "user-1"

    async def test_empty_subject_fails(self):
        with pytest.raises(AuthFailure):
            await StaticIdentityProvider("").acquire_identity()


class TestFirebaseIdentityProvider:
    async def test_anonymous_sign_up(self):
        session = MagicMock()
        session.post.return_value = _response(200, {"localId": "uid-1", "idToken": "tok"})
        provider = FirebaseIdentityProvider("api-key", session=session)

        assert await provider.acquire_identity() == "uid-1"
        assert provider.current_token() == "tok"

        call = session.post.call_args
        assert call.args[0].endswith("/accounts:signUp")
        assert call.kwargs["params"] == {"key": "api-key"}
        assert call.kwargs["json"] == {"returnSecureToken": True}

    async def test_custom_token_sign_in_reads_uid_from_id_token(self):
        session = MagicMock()
        session.post.return_value = _response(200, {"idToken": _jwt({"user_id": "uid-9"})})
        provider = FirebaseIdentityProvider("api-key", "custom", session=session)

        assert await provider.acquire_identity() == "uid-9"
        call = session.post.call_args
        assert call.args[0].endswith("/accounts:signInWithCustomToken")
        assert call.kwargs["json"]["token"] == "custom"

    async def test_identity_is_acquired_once(self):
        session = MagicMock()
        session.post.return_value = _response(200, {"localId": "uid-1", "idToken": "tok"})
        provider = FirebaseIdentityProvider("api-key", session=session)

        await provider.acquire_identity()
        await provider.acquire_identity()

        assert session.post.call_count == 1

    @pytest.mark.parametrize(
        "response",
        [
            _response(400, {"error": {"message": "ADMIN_ONLY_OPERATION"}}),
            _response(200, {}),
        ],
    )
    async def test_bad_responses_raise_auth_failure(self, response):
        session = MagicMock()
        session.post.return_value = response

        with pytest.raises(AuthFailure):
            await FirebaseIdentityProvider("api-key", session=session).acquire_identity()

    async def test_network_error_raises_auth_failure(self):
        session = MagicMock()
        session.post.side_effect = requests.ConnectionError("offline")

        with pytest.raises(AuthFailure):
            await FirebaseIdentityProvider("api-key", session=session).acquire_identity()
        assert session.post.call_count == 1

    async def test_missing_api_key(self):
        session = MagicMock()
        with pytest.raises(AuthFailure):
            await FirebaseIdentityProvider("", session=session).acquire_identity()
        session.post.assert_not_called()
