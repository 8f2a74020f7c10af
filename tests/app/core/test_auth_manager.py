"""Tests for AuthManager session tracking and listener notification."""

from unittest.mock import MagicMock

import pytest

from livechat.adapters.identity_provider import BaseIdentityProvider
from livechat.core.auth import AuthManager
from livechat.core.errors import AuthError
from livechat.schemas.auth import AuthEvent, AuthSession, AuthUser


@pytest.fixture
def provider():
    return MagicMock(spec=BaseIdentityProvider)


@pytest.fixture
def auth_session():
    return AuthSession(
        user=AuthUser(user_id="u1", email="u1@example.com"), access_token="tok"
    )


def test_sign_in_sets_session_and_notifies(provider, auth_session):
    provider.sign_in.return_value = auth_session
    manager = AuthManager(provider)
    events = []
    manager.on_auth_state_change(lambda event, session: events.append((event, session)))

    result = manager.sign_in("u1@example.com", "secret")

    assert result == auth_session
    assert manager.current_user() == auth_session.user
    assert events == [(AuthEvent.SIGNED_IN, auth_session)]


def test_unsubscribe_stops_notifications(provider, auth_session):
    provider.sign_in.return_value = auth_session
    manager = AuthManager(provider)
    events = []
    unsubscribe = manager.on_auth_state_change(lambda e, s: events.append(e))
    unsubscribe()
    manager.sign_in("u1@example.com", "secret")
    assert events == []


def test_sign_up_pending_confirmation_keeps_no_session(provider):
    provider.sign_up.return_value = None
    manager = AuthManager(provider)
    assert manager.sign_up("new@example.com", "secret") is None
    assert manager.get_current_session() is None


def test_sign_out_clears_session(provider, auth_session):
    provider.sign_in.return_value = auth_session
    manager = AuthManager(provider)
    manager.sign_in("u1@example.com", "secret")
    events = []
    manager.on_auth_state_change(lambda e, s: events.append((e, s)))

    manager.sign_out()

    provider.sign_out.assert_called_once_with("tok")
    assert manager.current_user() is None
    assert events == [(AuthEvent.SIGNED_OUT, None)]


def test_sign_out_failure_keeps_session(provider, auth_session):
    provider.sign_in.return_value = auth_session
    provider.sign_out.side_effect = AuthError("boom")
    manager = AuthManager(provider)
    manager.sign_in("u1@example.com", "secret")
    with pytest.raises(AuthError):
        manager.sign_out()
    assert manager.current_user() == auth_session.user


def test_restore_with_invalid_token(provider):
    provider.get_user.return_value = None
    manager = AuthManager(provider)
    events = []
    manager.on_auth_state_change(lambda e, s: events.append((e, s)))
    manager.restore("expired")
    assert manager.get_current_session() is None
    assert events == [(AuthEvent.INITIAL_SESSION, None)]
