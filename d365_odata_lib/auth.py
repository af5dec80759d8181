"""
OAuth2 client-credentials token exchange and the process-wide bearer token cache.
"""

import asyncio
import sys
import time
from datetime import datetime
from typing import Awaitable, Callable, Optional
import requests

from .config import ServiceConfig
from .constants import DEFAULT_REFRESH_MARGIN, USER_AGENT
from .errors import CredentialError
from .models import Credential, TokenGrant
from .single_flight import SingleFlight


class ClientCredentialsExchange:
    """Exchanges the app registration's client id/secret for an access token."""

    def __init__(self, config: ServiceConfig, session: Optional[requests.Session] = None, verbose: bool = False):
        self.config = config
        self.verbose = verbose
        self.session = session or requests.Session()
        self.session.headers.update({
            'Accept': 'application/json',
            'User-Agent': USER_AGENT
        })

    def _log_verbose(self, message: str):
        """Prints message to stderr only if verbose mode is enabled."""
        if self.verbose:
            timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S.%f')[:-3]
            print(f"[{timestamp} Auth VERBOSE] {message}", file=sys.stderr)

    async def __call__(self) -> TokenGrant:
        return await asyncio.to_thread(self.exchange)

    def exchange(self) -> TokenGrant:
        """Perform the token request. Blocking; call through ``__call__`` from async code."""
        data = {
            'grant_type': 'client_credentials',
            'client_id': self.config.client_id,
            'client_secret': self.config.client_secret,
            'resource': self.config.resource_url,
        }
        self._log_verbose(f"Requesting token from {self.config.token_url} for {self.config.resource_url}")
        try:
            response = self.session.post(self.config.token_url, data=data, timeout=self.config.request_timeout)
        except requests.exceptions.RequestException as e:
            raise CredentialError(f"Token request failed: {e}") from e

        if not response.ok:
            detail = self._error_detail(response)
            raise CredentialError(f"Token endpoint returned {response.status_code}: {detail}")

        try:
            payload = response.json()
            grant = TokenGrant(
                access_token=payload['access_token'],
                expires_in=int(payload['expires_in'])
            )
        except (ValueError, KeyError, TypeError) as e:
            raise CredentialError(f"Malformed token response: {e}") from e

        if not grant.access_token:
            raise CredentialError("Token endpoint returned an empty access token")
        self._log_verbose(f"Token acquired, valid for {grant.expires_in}s")
        return grant

    def _error_detail(self, response: requests.Response) -> str:
        try:
            payload = response.json()
        except ValueError:
            return response.text[:500]
        # Gateways in front of the token endpoint may answer with a list or a bare string
        if isinstance(payload, dict):
            detail = payload.get('error_description') or payload.get('error')
            if detail:
                return str(detail)
        return response.text[:500] or str(payload)[:500]


class CredentialCache:
    """Caches one bearer credential and refreshes it shortly before it expires.

    Concurrent callers share a single in-flight exchange. A failed refresh
    leaves the previous credential in place; it keeps being served until it
    actually expires.
    """

    def __init__(self, exchange: Callable[[], Awaitable[TokenGrant]],
                 refresh_margin: float = DEFAULT_REFRESH_MARGIN,
                 clock: Callable[[], float] = time.time, verbose: bool = False):
        self._exchange = exchange
        self.refresh_margin = refresh_margin
        self._clock = clock
        self.verbose = verbose
        self._credential: Optional[Credential] = None
        self._flight = SingleFlight()

    def _log_verbose(self, message: str):
        """Prints message to stderr only if verbose mode is enabled."""
        if self.verbose:
            timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S.%f')[:-3]
            print(f"[{timestamp} Credentials VERBOSE] {message}", file=sys.stderr)

    @property
    def credential(self) -> Optional[Credential]:
        return self._credential

    def _is_fresh(self) -> bool:
        if self._credential is None:
            return False
        return self._credential.remaining(self._clock()) >= self.refresh_margin

    async def get_token(self) -> str:
        """Return a valid bearer token, refreshing it when needed."""
        if self._is_fresh():
            return self._credential.value

        try:
            credential = await self._flight.run(self._refresh)
        except CredentialError as e:
            previous = self._credential
            if previous is not None and not previous.is_expired(self._clock()):
                self._log_verbose(f"Token refresh failed, keeping current token: {e}")
                return previous.value
            print(f"ERROR: Could not acquire access token: {e}", file=sys.stderr)
            raise
        return credential.value

    async def _refresh(self) -> Credential:
        self._log_verbose("Refreshing access token...")
        grant = await self._exchange()
        credential = Credential(
            value=grant.access_token,
            expires_at=self._clock() + grant.expires_in
        )
        if self._flight.is_current():
            self._credential = credential
        return credential

    def reset(self):
        """Discard the cached credential and any pending refresh."""
        self._credential = None
        self._flight.reset()
