"""
Query planning: loosely named entity + filters -> request URL and OData parameters.
"""

import sys
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from .constants import COMPANY_FIELD
from .entity_catalog import EntityCatalog
from .filter_builder import build_filter, build_string_filter
from .models import QueryPlan
from .schema_registry import SchemaRegistry


class EntityQueryBuilder:
    """Resolves the entity name, types the filter and assembles the GET request."""

    def __init__(self, catalog: EntityCatalog, registry: SchemaRegistry, base_url: str, verbose: bool = False):
        self.catalog = catalog
        self.registry = registry
        self.base_url = base_url.rstrip('/')
        self.verbose = verbose

    def _log_verbose(self, message: str):
        """Prints message to stderr only if verbose mode is enabled."""
        if self.verbose:
            timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S.%f')[:-3]
            print(f"[{timestamp} Query VERBOSE] {message}", file=sys.stderr)

    async def prepare(self, entity: str, filters: Optional[Mapping[str, Any]] = None,
                      select: Optional[str] = None, expand: Optional[str] = None,
                      top: Optional[int] = None, cross_company: Optional[bool] = None,
                      count: bool = False) -> Optional[QueryPlan]:
        """Plan a query, or return None when the entity name cannot be resolved."""
        entity_set = await self.catalog.resolve(entity)
        if entity_set is None:
            self._log_verbose(f"Could not find a matching entity for '{entity}'.")
            return None

        notices = []
        if entity_set != entity:
            notices.append(f"Corrected entity name from '{entity}' to '{entity_set}'.")

        filter_string = None
        if filters:
            schema = await self.registry.schema_for(entity_set)
            if schema is None:
                notices.append(f"No schema available for '{entity_set}'; filter values are compared as strings.")
                filter_string = build_string_filter(filters)
            else:
                filter_string = build_filter(filters, schema, on_warning=notices.append, verbose=self.verbose)

            # Filtering on a company only works across companies; an explicit False wins
            mentions_company = any(k.lower() == COMPANY_FIELD.lower() for k in filters)
            if mentions_company and cross_company is None:
                notices.append(f"Filter on company ('{COMPANY_FIELD}') detected. Automatically enabling cross-company search.")
                cross_company = True

        params: Dict[str, Any] = {}
        if cross_company:
            params['cross-company'] = 'true'
        if filter_string:
            params['$filter'] = filter_string
        if not count:
            if select:
                params['$select'] = select
            if expand:
                params['$expand'] = expand
            if top is not None:
                if top < 0:
                    raise ValueError("$top must not be negative.")
                params['$top'] = int(top)

        url = f"{self.base_url}/{entity_set}"
        if count:
            url = f"{url}/$count"

        for notice in notices:
            self._log_verbose(notice)
        return QueryPlan(
            entity_set=entity_set,
            url=url,
            params=params,
            filter=filter_string,
            count=count,
            notices=notices
        )
