"""OAuth token handling for the Google Calendar API."""
import logging
import time
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import requests

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
CALENDAR_SCOPE = "https://www.googleapis.com/auth/calendar.events"
TOKEN_ATTRIBUTE = "googleCalendarToken"


class CalendarAuthError(Exception):
    """The account cannot be authorized against the calendar API."""


class AccountNotFoundError(CalendarAuthError):
    pass


class MissingTokenError(CalendarAuthError):
    pass


class TokenExpiredError(CalendarAuthError):
    pass


class TokenRefreshError(CalendarAuthError):
    pass


class TokenExchangeError(CalendarAuthError):
    pass


class TokenProvider:
    """Resolve a usable access token for an account, refreshing it when expired."""

    EXPIRY_MARGIN_SECONDS = 300

    def __init__(
        self,
        token_store,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        timeout: int = 30
    ):
        """
        Args:
            token_store: Object exposing get_account and save_token
            client_id: OAuth client id, needed for refresh and code exchange
            client_secret: OAuth client secret
            timeout: HTTP request timeout in seconds
        """
        self.token_store = token_store
        self.client_id = client_id
        self.client_secret = client_secret
        self.timeout = timeout

    def get_access_token(self, account_id: str) -> str:
        """
        Return a valid access token for the account.

        Raises:
            AccountNotFoundError: If the account record does not exist
            MissingTokenError: If no access token is stored
            TokenExpiredError: If the token expired and cannot be refreshed
            TokenRefreshError: If the provider rejects the refresh
        """
        account = self.token_store.get_account(account_id)
        if not account:
            raise AccountNotFoundError(f"Account {account_id} not found")

        token = account.get(TOKEN_ATTRIBUTE)
        if not token or not token.get('access_token'):
            raise MissingTokenError(
                f"No Google Calendar token stored for account {account_id}"
            )

        if not self._is_expired(token):
            return token['access_token']

        logger.info(f"Calendar token for account {account_id} expired, refreshing")
        return self._refresh(account_id, token)

    def exchange_code(
        self,
        account_id: str,
        code: str,
        redirect_uri: str
    ) -> Dict[str, Any]:
        """
        Exchange an authorization code for tokens and store them on the account.

        Args:
            account_id: Account that granted access
            code: Authorization code from the OAuth redirect
            redirect_uri: Redirect URI used in the consent request

        Returns:
            The stored token map
        """
        self._require_client_credentials(TokenExchangeError)

        response = requests.post(
            GOOGLE_TOKEN_URL,
            data={
                'code': code,
                'client_id': self.client_id,
                'client_secret': self.client_secret,
                'redirect_uri': redirect_uri,
                'grant_type': 'authorization_code'
            },
            timeout=self.timeout
        )
        if not response.ok:
            logger.error(f"Token exchange failed for account {account_id}: {response.text}")
            raise TokenExchangeError(
                f"Error exchanging authorization code: {response.text}"
            )

        token = self._with_expiry(response.json())
        self.token_store.save_token(account_id, token)
        logger.info(f"Google Calendar connected for account {account_id}")
        return token

    def authorization_url(self, redirect_uri: str, state: Optional[str] = None) -> str:
        """Build the consent URL that starts the OAuth flow."""
        params = {
            'client_id': self.client_id,
            'redirect_uri': redirect_uri,
            'response_type': 'code',
            'scope': CALENDAR_SCOPE,
            'access_type': 'offline',
            'prompt': 'consent'
        }
        if state:
            params['state'] = state
        return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"

    def _refresh(self, account_id: str, token: Dict[str, Any]) -> str:
        refresh_token = token.get('refresh_token')
        if not refresh_token:
            raise TokenExpiredError(
                f"Calendar token for account {account_id} expired and has no refresh token"
            )
        self._require_client_credentials(TokenExpiredError)

        response = requests.post(
            GOOGLE_TOKEN_URL,
            data={
                'client_id': self.client_id,
                'client_secret': self.client_secret,
                'refresh_token': refresh_token,
                'grant_type': 'refresh_token'
            },
            timeout=self.timeout
        )
        if not response.ok:
            logger.error(f"Token refresh failed for account {account_id}: {response.text}")
            raise TokenRefreshError(f"Error refreshing calendar token: {response.text}")

        refreshed = self._with_expiry(response.json())
        if not refreshed.get('access_token'):
            raise TokenRefreshError("No access token in refresh response")

        # Google omits the refresh token on refresh responses
        new_token = dict(token)
        new_token.update(refreshed)
        self.token_store.save_token(account_id, new_token)

        logger.info(f"Calendar token for account {account_id} refreshed")
        return new_token['access_token']

    def _require_client_credentials(self, error_class) -> None:
        if not self.client_id or not self.client_secret:
            raise error_class("Google OAuth client credentials are not configured")

    def _is_expired(self, token: Dict[str, Any]) -> bool:
        expires_at = token.get('expires_at')
        if expires_at is None:
            return False
        return float(expires_at) <= time.time() + self.EXPIRY_MARGIN_SECONDS

    def _with_expiry(self, token: Dict[str, Any]) -> Dict[str, Any]:
        token = dict(token)
        if 'expires_in' in token:
            token['expires_at'] = int(time.time()) + int(token['expires_in'])
        return token
