"""
Lazily loaded registry of entity type schemas, looked up by entity set name.
"""

import sys
from datetime import datetime
from typing import Awaitable, Callable, List, Optional
from lxml import etree

from .errors import FetchFailure
from .metadata_parser import MetadataParser
from .models import EntityTypeSchema, SchemaIndex
from .single_flight import SingleFlight


def singular_candidates(set_name: str) -> List[str]:
    """Best-effort singular forms of an entity set name (Categories -> Category, Boxes -> Box, Orders -> Order)."""
    candidates = []
    if set_name.endswith('ies') and len(set_name) > 3:
        candidates.append(set_name[:-3] + 'y')
    if set_name.endswith('es') and len(set_name) > 2:
        candidates.append(set_name[:-2])
    if set_name.endswith('s') and len(set_name) > 1:
        candidates.append(set_name[:-1])
    return candidates


class SchemaRegistry:
    """Downloads and parses $metadata once, then serves field schemas per entity set.

    Every lookup goes through the entity set -> entity type map declared in
    the service's EntityContainer. When a set is missing from that map a
    singularization guess is tried, but a guessed type is only returned if it
    exists and no declared entity set is bound to it.
    """

    def __init__(self, fetch_metadata: Callable[[], Awaitable[bytes]],
                 parser: Optional[MetadataParser] = None, verbose: bool = False):
        self._fetch_metadata = fetch_metadata
        self.verbose = verbose
        self.parser = parser or MetadataParser(verbose=verbose)
        self._index: Optional[SchemaIndex] = None
        self._flight = SingleFlight()

    def _log_verbose(self, message: str):
        """Prints message to stderr only if verbose mode is enabled."""
        if self.verbose:
            timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S.%f')[:-3]
            print(f"[{timestamp} Schema VERBOSE] {message}", file=sys.stderr)

    @property
    def is_loaded(self) -> bool:
        return self._index is not None

    async def index(self) -> SchemaIndex:
        """Return the parsed metadata, loading it on first use.

        Fetch or parse failures yield an empty index that is not kept, so the
        next call tries again.
        """
        if self._index is not None:
            return self._index
        return await self._flight.run(self._load)

    async def _load(self) -> SchemaIndex:
        self._log_verbose("Fetching OData metadata for the first time...")
        try:
            content = await self._fetch_metadata()
            index = self.parser.parse(content)
        except FetchFailure as e:
            print(f"ERROR: Error fetching metadata: {e}", file=sys.stderr)
            return SchemaIndex()
        except etree.XMLSyntaxError as e:
            print(f"ERROR: Error parsing XML metadata: {e}", file=sys.stderr)
            return SchemaIndex()

        if not self._flight.is_current():
            self._log_verbose("Registry was reset while loading; not keeping this result.")
            return index
        self._index = index
        return index

    async def schema_for(self, entity_set_name: str) -> Optional[EntityTypeSchema]:
        """Field schema of the entity type behind an entity set, or None."""
        index = await self.index()

        type_name = index.entity_sets.get(entity_set_name)
        if type_name is None:
            lowered = entity_set_name.lower()
            type_name = next((t for s, t in index.entity_sets.items() if s.lower() == lowered), None)

        if type_name is not None:
            schema = index.entity_types.get(type_name)
            if schema is None:
                self._log_verbose(f"Entity set '{entity_set_name}' maps to undeclared type '{type_name}'.")
            return schema

        return self._guess_schema(index, entity_set_name)

    def _guess_schema(self, index: SchemaIndex, entity_set_name: str) -> Optional[EntityTypeSchema]:
        bound_types = set(index.entity_sets.values())
        for candidate in singular_candidates(entity_set_name):
            matches = [
                type_name for type_name in index.entity_types
                if type_name.rpartition('.')[2] == candidate
            ]
            unbound = [t for t in matches if t not in bound_types]
            if len(unbound) == 1:
                self._log_verbose(f"Warning: '{entity_set_name}' is not a declared entity set; using type '{unbound[0]}'.")
                return index.entity_types[unbound[0]]
            if matches:
                # Bound to another set, or ambiguous across namespaces
                self._log_verbose(f"Not guessing a type for '{entity_set_name}' from candidates {matches}.")
                return None
        self._log_verbose(f"No schema found for entity set '{entity_set_name}'.")
        return None

    async def entity_set_names(self) -> List[str]:
        index = await self.index()
        return list(index.entity_sets.keys())

    def reset(self):
        """Forget the parsed metadata so the next lookup downloads it again."""
        self._index = None
        self._flight.reset()
