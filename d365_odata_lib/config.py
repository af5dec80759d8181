"""
Service configuration read from the environment (optionally via a .env file).
"""

import os
from typing import Dict, Optional
from pydantic import BaseModel

from .constants import (
    DEFAULT_AUTHORITY_HOST,
    DEFAULT_MATCH_THRESHOLD,
    DEFAULT_REFRESH_MARGIN,
    DEFAULT_REQUEST_TIMEOUT,
)

REQUIRED_ENV_VARS = {
    'tenant_id': 'DYNAMICS_TENANT_ID',
    'client_id': 'DYNAMICS_CLIENT_ID',
    'client_secret': 'DYNAMICS_CLIENT_SECRET',
    'resource_url': 'DYNAMICS_RESOURCE_URL',
}


class ServiceConfig(BaseModel):
    tenant_id: str
    client_id: str
    client_secret: str
    resource_url: str
    authority_host: str = DEFAULT_AUTHORITY_HOST
    refresh_margin: int = DEFAULT_REFRESH_MARGIN
    match_threshold: float = DEFAULT_MATCH_THRESHOLD
    request_timeout: int = DEFAULT_REQUEST_TIMEOUT

    @property
    def data_url(self) -> str:
        return f"{self.resource_url.rstrip('/')}/data"

    @property
    def token_url(self) -> str:
        return f"{self.authority_host.rstrip('/')}/{self.tenant_id}/oauth2/token"

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> 'ServiceConfig':
        """Build the configuration from DYNAMICS_* environment variables."""
        env = os.environ if environ is None else environ

        values = {}
        missing = []
        for field_name, var in REQUIRED_ENV_VARS.items():
            value = (env.get(var) or '').strip()
            if not value:
                missing.append(var)
            values[field_name] = value
        if missing:
            raise ValueError(f"Missing required environment variable(s): {', '.join(missing)}")

        values['resource_url'] = values['resource_url'].rstrip('/')
        values['authority_host'] = env.get('DYNAMICS_AUTHORITY_HOST') or DEFAULT_AUTHORITY_HOST

        try:
            values['refresh_margin'] = int(env.get('DYNAMICS_TOKEN_REFRESH_MARGIN', DEFAULT_REFRESH_MARGIN))
            values['match_threshold'] = float(env.get('DYNAMICS_MATCH_THRESHOLD', DEFAULT_MATCH_THRESHOLD))
            values['request_timeout'] = int(env.get('DYNAMICS_REQUEST_TIMEOUT', DEFAULT_REQUEST_TIMEOUT))
        except ValueError as e:
            raise ValueError(f"Invalid numeric setting in environment: {e}") from e

        if not 0.0 <= values['match_threshold'] <= 1.0:
            raise ValueError("DYNAMICS_MATCH_THRESHOLD must be between 0 and 1")

        return cls(**values)
