"""
D365 OData Library - entity resolution, schema-typed filters and token caching
for Dynamics 365 Finance & Operations OData services.
"""

from .models import (
    Credential,
    TokenGrant,
    CatalogEntry,
    FieldKind,
    EntityField,
    EntityTypeSchema,
    SchemaIndex,
    QueryPlan
)
from .errors import CredentialError, FetchFailure
from .config import ServiceConfig
from .auth import ClientCredentialsExchange, CredentialCache
from .entity_catalog import EntityCatalog
from .metadata_parser import MetadataParser
from .schema_registry import SchemaRegistry
from .filter_builder import build_filter, build_string_filter
from .client import ODataClient
from .query import EntityQueryBuilder

__all__ = [
    'Credential',
    'TokenGrant',
    'CatalogEntry',
    'FieldKind',
    'EntityField',
    'EntityTypeSchema',
    'SchemaIndex',
    'QueryPlan',
    'CredentialError',
    'FetchFailure',
    'ServiceConfig',
    'ClientCredentialsExchange',
    'CredentialCache',
    'EntityCatalog',
    'MetadataParser',
    'SchemaRegistry',
    'build_filter',
    'build_string_filter',
    'ODataClient',
    'EntityQueryBuilder'
]
