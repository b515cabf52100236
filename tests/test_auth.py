"""Unit tests for TokenProvider."""
import time
from unittest.mock import Mock
from urllib.parse import parse_qs, urlparse

import pytest
import responses

from gcal.auth import (
    GOOGLE_TOKEN_URL,
    AccountNotFoundError,
    MissingTokenError,
    TokenExchangeError,
    TokenExpiredError,
    TokenProvider,
    TokenRefreshError,
)


def make_store(account=None, token=None):
    if account is not None and token is not None:
        account = dict(account, googleCalendarToken=token)
    store = Mock()
    store.get_account.return_value = account
    return store


@pytest.fixture
def provider_factory():
    def factory(store, **kwargs):
        kwargs.setdefault('client_id', 'client-id')
        kwargs.setdefault('client_secret', 'client-secret')
        return TokenProvider(store, **kwargs)
    return factory


class TestGetAccessToken:
    """Test cases for resolving access tokens."""

    def test_missing_account(self, provider_factory):
        """Test an unknown account fails fast."""
        provider = provider_factory(make_store(account=None))

        with pytest.raises(AccountNotFoundError):
            provider.get_access_token('user-1')

    @pytest.mark.parametrize('token', [None, {}, {'access_token': ''}])
    def test_missing_token(self, provider_factory, token):
        """Test missing or empty tokens fail fast."""
        provider = provider_factory(make_store(account={'id': 'user-1'}, token=token))

        with pytest.raises(MissingTokenError):
            provider.get_access_token('user-1')

    def test_token_without_expiry_is_used_as_is(self, provider_factory):
        """Test legacy tokens with no expiry information are returned."""
        store = make_store(account={'id': 'user-1'}, token={'access_token': 'abc'})

        assert provider_factory(store).get_access_token('user-1') == 'abc'
        store.save_token.assert_not_called()

    def test_account_is_read_once(self, provider_factory):
        """Test the token comes from the single account read."""
        store = make_store(account={'id': 'user-1'}, token={'access_token': 'abc'})

        provider_factory(store).get_access_token('user-1')

        store.get_account.assert_called_once_with('user-1')
        store.get_token.assert_not_called()

    def test_valid_token(self, provider_factory):
        """Test a token expiring well in the future is returned unchanged."""
        token = {'access_token': 'abc', 'expires_at': time.time() + 3600}
        store = make_store(account={'id': 'user-1'}, token=token)

        assert provider_factory(store).get_access_token('user-1') == 'abc'

    @responses.activate
    def test_expired_token_is_refreshed(self, provider_factory):
        """Test an expiring token is refreshed and persisted."""
        token = {
            'access_token': 'old',
            'refresh_token': 'refresh-1',
            'expires_at': time.time() + 60
        }
        store = make_store(account={'id': 'user-1'}, token=token)
        responses.add(
            responses.POST,
            GOOGLE_TOKEN_URL,
            json={'access_token': 'new', 'expires_in': 3600},
            status=200
        )

        access_token = provider_factory(store).get_access_token('user-1')

        assert access_token == 'new'
        sent = parse_qs(responses.calls[0].request.body)
        assert sent['grant_type'] == ['refresh_token']
        assert sent['refresh_token'] == ['refresh-1']

        saved_account, saved_token = store.save_token.call_args.args
        assert saved_account == 'user-1'
        assert saved_token['access_token'] == 'new'
        assert saved_token['refresh_token'] == 'refresh-1'
        assert saved_token['expires_at'] > time.time() + 3000

    def test_expired_token_without_refresh_token(self, provider_factory):
        """Test expiry without a refresh token is a hard failure."""
        token = {'access_token': 'old', 'expires_at': time.time() - 10}
        store = make_store(account={'id': 'user-1'}, token=token)

        with pytest.raises(TokenExpiredError):
            provider_factory(store).get_access_token('user-1')

    def test_expired_token_without_client_credentials(self, provider_factory):
        """Test refresh is impossible without OAuth client credentials."""
        token = {'access_token': 'old', 'refresh_token': 'r', 'expires_at': time.time() - 10}
        store = make_store(account={'id': 'user-1'}, token=token)
        provider = provider_factory(store, client_id=None, client_secret=None)

        with pytest.raises(TokenExpiredError):
            provider.get_access_token('user-1')

    @responses.activate
    def test_refresh_rejected(self, provider_factory):
        """Test a rejected refresh raises with the provider response."""
        token = {'access_token': 'old', 'refresh_token': 'r', 'expires_at': time.time() - 10}
        store = make_store(account={'id': 'user-1'}, token=token)
        responses.add(
            responses.POST,
            GOOGLE_TOKEN_URL,
            json={'error': 'invalid_grant'},
            status=400
        )

        with pytest.raises(TokenRefreshError, match='invalid_grant'):
            provider_factory(store).get_access_token('user-1')

        store.save_token.assert_not_called()


class TestExchangeCode:
    """Test cases for the OAuth callback exchange."""

    @responses.activate
    def test_exchange_code_stores_tokens(self, provider_factory):
        """Test the authorization code is exchanged and the tokens saved."""
        store = make_store()
        responses.add(
            responses.POST,
            GOOGLE_TOKEN_URL,
            json={'access_token': 'abc', 'refresh_token': 'def', 'expires_in': 3599},
            status=200
        )

        token = provider_factory(store).exchange_code(
            'user-1', 'auth-code', 'https://studio.example.com/calendar/callback'
        )

        sent = parse_qs(responses.calls[0].request.body)
        assert sent['code'] == ['auth-code']
        assert sent['grant_type'] == ['authorization_code']
        assert sent['client_id'] == ['client-id']
        assert sent['redirect_uri'] == ['https://studio.example.com/calendar/callback']
        assert token['access_token'] == 'abc'
        assert 'expires_at' in token
        store.save_token.assert_called_once_with('user-1', token)

    @responses.activate
    def test_exchange_code_failure(self, provider_factory):
        """Test a failed exchange raises and stores nothing."""
        store = make_store()
        responses.add(responses.POST, GOOGLE_TOKEN_URL, json={'error': 'bad'}, status=400)

        with pytest.raises(TokenExchangeError):
            provider_factory(store).exchange_code('user-1', 'code', 'https://x/cb')

        store.save_token.assert_not_called()


def test_authorization_url(provider_factory):
    """Test the consent URL asks for offline calendar access."""
    url = provider_factory(make_store()).authorization_url(
        'https://studio.example.com/calendar/callback', state='user-1'
    )

    query = parse_qs(urlparse(url).query)
    assert url.startswith('https://accounts.google.com/o/oauth2/v2/auth?')
    assert query['client_id'] == ['client-id']
    assert query['access_type'] == ['offline']
    assert query['prompt'] == ['consent']
    assert query['scope'] == ['https://www.googleapis.com/auth/calendar.events']
    assert query['state'] == ['user-1']
