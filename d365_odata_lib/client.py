"""
HTTP client for the D365 OData service: entity catalog, $metadata and planned queries.
"""

import asyncio
import json
import sys
from datetime import datetime
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode
import requests

from .auth import CredentialCache
from .config import ServiceConfig
from .constants import USER_AGENT
from .errors import FetchFailure
from .models import CatalogEntry, QueryPlan


def encode_query_params(params):
    """Encode query parameters properly for OData compatibility.

    OData servers don't reliably accept '+' for spaces in URL parameters.
    They require '%20' according to RFC 3986.
    """
    encoded = urlencode(params, doseq=True, safe='$')
    return encoded.replace('+', '%20')


class ODataClient:
    """Client for the D365 Finance & Operations OData endpoint, authenticated with a bearer token."""

    def __init__(self, config: ServiceConfig, credentials: CredentialCache,
                 session: Optional[requests.Session] = None, verbose: bool = False):
        self.config = config
        self.credentials = credentials
        self.verbose = verbose
        self.base_url = config.data_url
        self.session = session or requests.Session()
        self.session.headers.update({
            'Accept': 'application/json',
            'User-Agent': USER_AGENT,
            'OData-MaxVersion': '4.0',
            'OData-Version': '4.0'
        })

    def _log_verbose(self, message: str):
        """Prints message to stderr only if verbose mode is enabled."""
        if self.verbose:
            timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S.%f')[:-3]
            print(f"[{timestamp} Client VERBOSE] {message}", file=sys.stderr)

    def _make_request(self, method: str, url: str, token: str, **kwargs) -> requests.Response:
        """Internal helper to make an authenticated request."""
        request_headers = self.session.headers.copy()
        if 'headers' in kwargs:
            request_headers.update(kwargs.pop('headers'))
        request_headers['Authorization'] = f"Bearer {token}"
        kwargs['headers'] = request_headers
        kwargs.setdefault('timeout', self.config.request_timeout)

        # Handle OData-compatible URL encoding for query parameters
        if 'params' in kwargs:
            params = kwargs.pop('params')
            if params:
                encoded_params = encode_query_params(params)
                url = f"{url}&{encoded_params}" if '?' in url else f"{url}?{encoded_params}"

        return self.session.request(method, url, **kwargs)

    async def _get(self, url: str, **kwargs) -> requests.Response:
        token = await self.credentials.get_token()
        self._log_verbose(f"Requesting: GET {url} {kwargs.get('params') or ''}")
        return await asyncio.to_thread(self._make_request, 'GET', url, token, **kwargs)

    def _parse_odata_error(self, response: requests.Response) -> str:
        """Attempt to extract a meaningful error message from an OData error response."""
        try:
            data = response.json()
        except ValueError:
            text = response.text[:500] if response.text else ''
            return f"HTTP {response.status_code}: {text or response.reason}"

        if isinstance(data, dict) and isinstance(data.get('error'), dict):
            error_obj = data['error']
            msg = error_obj.get('message')
            if isinstance(msg, dict) and 'value' in msg:
                return msg['value']
            if isinstance(msg, str):
                if error_obj.get('code'):
                    return f"{error_obj['code']}: {msg}"
                return msg
            inner = error_obj.get('innererror')
            if isinstance(inner, dict) and inner.get('message'):
                return str(inner['message'])
            return json.dumps(error_obj)[:1000]
        return json.dumps(data)[:1000]

    async def fetch_catalog(self) -> List[CatalogEntry]:
        """Fetch the service document listing every entity set.

        Raises FetchFailure on transport errors, non-2xx responses or a
        malformed body. CredentialError from the token cache propagates.
        """
        try:
            response = await self._get(self.base_url)
        except requests.exceptions.RequestException as e:
            raise FetchFailure(f"Could not fetch entity list: {e}") from e

        if not response.ok:
            raise FetchFailure(f"Failed to fetch entity list: {self._parse_odata_error(response)}")

        try:
            records = response.json()['value']
            entries = []
            for record in records:
                name = record.get('name')
                url = record.get('url') or name
                if not name or not url:
                    continue
                entries.append(CatalogEntry(logical_name=name, canonical_name=url))
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise FetchFailure(f"Malformed entity list response: {e}") from e

        self._log_verbose(f"Fetched {len(entries)} entity sets.")
        return entries

    async def fetch_metadata(self) -> bytes:
        """Download the raw $metadata document."""
        url = f"{self.base_url}/$metadata"
        try:
            response = await self._get(url, headers={'Accept': 'application/xml'})
        except requests.exceptions.RequestException as e:
            raise FetchFailure(f"Could not fetch metadata: {e}") from e

        if not response.ok:
            raise FetchFailure(f"Failed to fetch metadata: {self._parse_odata_error(response)}")
        if not response.content:
            raise FetchFailure("Metadata response was empty")

        self._log_verbose(f"Fetched metadata document ({len(response.content):,} bytes).")
        return response.content

    async def execute(self, plan: QueryPlan) -> Any:
        """Run a planned GET query and return the decoded result.

        Count queries return an int; everything else returns the JSON body.
        """
        response = await self._get(plan.url, params=plan.params)

        if not response.ok:
            error_message = self._parse_odata_error(response)
            print(f"ERROR: Query on {plan.entity_set} failed: {error_message}", file=sys.stderr)
            raise requests.exceptions.RequestException(error_message, response=response)

        if response.status_code == 204:
            return {"message": "Operation successful (No Content)."}
        if plan.count:
            try:
                return int(response.text.strip().lstrip('\ufeff'))
            except ValueError as e:
                raise ValueError(f"Unexpected $count response: {response.text[:100]}") from e
        try:
            return response.json()
        except ValueError:
            return {"content": response.text}

    def close(self):
        self.session.close()
