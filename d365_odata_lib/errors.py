"""
Exceptions raised by the D365 OData library.

Resolution misses are not exceptions: lookups return None.
"""


class CredentialError(Exception):
    """The OAuth2 token exchange failed (bad secret, network error, non-2xx or malformed response)."""


class FetchFailure(Exception):
    """Downloading or decoding the entity catalog or the $metadata document failed.

    Raised by the client and absorbed by the caches, which treat it as an
    empty result and retry on the next call.
    """
