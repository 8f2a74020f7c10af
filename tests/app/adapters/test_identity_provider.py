"""Tests for the GoTrue identity provider."""

from unittest.mock import MagicMock, patch

import pytest
import requests

from livechat.adapters.identity_provider import GoTrueIdentityProvider
from livechat.core.errors import AuthError


def _response(status_code, body=None):
    resp = MagicMock()
    resp.status_code = status_code
    if body is None:
        resp.json.side_effect = ValueError("no body")
    else:
        resp.json.return_value = body
    return resp


@pytest.fixture
def provider():
    return GoTrueIdentityProvider("https://auth.example.com/", "anon-key")


@patch("livechat.adapters.identity_provider.requests.request")
def test_get_user(mock_request, provider):
    mock_request.return_value = _response(200, {"id": "u1", "email": "u1@example.com"})

    user = provider.get_user("tok")

    assert user.user_id == "u1"
    method, url = mock_request.call_args.args
    assert (method, url) == ("GET", "https://auth.example.com/auth/v1/user")
    headers = mock_request.call_args.kwargs["headers"]
    assert headers["Authorization"] == "Bearer tok"
    assert headers["apikey"] == "anon-key"


@patch("livechat.adapters.identity_provider.requests.request")
def test_get_user_invalid_token_returns_none(mock_request, provider):
    mock_request.return_value = _response(401, {"msg": "invalid JWT"})
    assert provider.get_user("expired") is None


@patch("livechat.adapters.identity_provider.requests.request")
def test_sign_in(mock_request, provider):
    mock_request.return_value = _response(
        200,
        {
            "access_token": "at",
            "refresh_token": "rt",
            "user": {"id": "u1", "email": "u1@example.com"},
        },
    )

    session = provider.sign_in("u1@example.com", "secret")

    assert session.access_token == "at"
    assert session.user.email == "u1@example.com"
    assert mock_request.call_args.kwargs["params"] == {"grant_type": "password"}


@patch("livechat.adapters.identity_provider.requests.request")
def test_sign_in_failure_uses_provider_message(mock_request, provider):
    mock_request.return_value = _response(400, {"error_description": "Invalid login credentials"})
    with pytest.raises(AuthError) as exc_info:
        provider.sign_in("u1@example.com", "wrong")
    assert exc_info.value.message == "Invalid login credentials"


@patch("livechat.adapters.identity_provider.requests.request")
def test_sign_up_pending_confirmation(mock_request, provider):
    mock_request.return_value = _response(200, {"id": "u2", "email": "new@example.com"})
    assert provider.sign_up("new@example.com", "secret", name="New") is None
    assert mock_request.call_args.kwargs["json"]["data"] == {"name": "New"}


@patch("livechat.adapters.identity_provider.requests.request")
def test_sign_out_error_without_body(mock_request, provider):
    mock_request.return_value = _response(500)
    with pytest.raises(AuthError) as exc_info:
        provider.sign_out("tok")
    assert exc_info.value.message == "Unable to sign out"


@patch("livechat.adapters.identity_provider.requests.request")
def test_network_failure_becomes_auth_error(mock_request, provider):
    mock_request.side_effect = requests.ConnectionError("unreachable")
    with pytest.raises(AuthError):
        provider.get_user("tok")
