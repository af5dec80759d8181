"""
Entity catalog with approximate matching of user-typed entity names.
"""

import re
import sys
from datetime import datetime
from difflib import SequenceMatcher
from typing import Awaitable, Callable, List, Optional, Tuple

from .constants import DEFAULT_MATCH_THRESHOLD
from .errors import FetchFailure
from .models import CatalogEntry
from .single_flight import SingleFlight

_NON_ALNUM = re.compile(r'[^0-9a-z]')


def normalize_name(name: str) -> str:
    """Lower-case and drop everything but letters and digits ("Customers V3" -> "customersv3")."""
    return _NON_ALNUM.sub('', name.lower())


def _distance(a: str, b: str) -> float:
    if a == b:
        return 0.0
    if not a or not b:
        return 1.0
    return 1.0 - SequenceMatcher(None, a, b).ratio()


def name_distance(a: str, b: str) -> float:
    """Normalized distance in [0, 1] between two names; 0 means identical after normalization."""
    return _distance(normalize_name(a), normalize_name(b))


def _build_index(entries: List[CatalogEntry]) -> List[Tuple[str, int]]:
    index = []
    for position, entry in enumerate(entries):
        index.append((normalize_name(entry.logical_name), position))
        if entry.canonical_name != entry.logical_name:
            index.append((normalize_name(entry.canonical_name), position))
    return index


class EntityCatalog:
    """Lazily fetched list of entity sets, resolved by approximate name."""

    def __init__(self, fetch_entries: Callable[[], Awaitable[List[CatalogEntry]]],
                 threshold: float = DEFAULT_MATCH_THRESHOLD, verbose: bool = False):
        self._fetch_entries = fetch_entries
        self.threshold = threshold
        self.verbose = verbose
        self._entries: Optional[List[CatalogEntry]] = None
        # (normalized candidate, position in catalog), logical and canonical names alike
        self._index: List[Tuple[str, int]] = []
        self._flight = SingleFlight()

    def _log_verbose(self, message: str):
        """Prints message to stderr only if verbose mode is enabled."""
        if self.verbose:
            timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S.%f')[:-3]
            print(f"[{timestamp} Catalog VERBOSE] {message}", file=sys.stderr)

    @property
    def is_loaded(self) -> bool:
        return self._entries is not None

    async def entries(self) -> List[CatalogEntry]:
        """Return the catalog, fetching it on first use.

        A failed fetch returns an empty list that is not kept, so the next
        call tries again.
        """
        if self._entries is not None:
            return self._entries
        return await self._flight.run(self._load)

    async def _load(self) -> List[CatalogEntry]:
        self._log_verbose("Fetching OData entity list for the first time...")
        try:
            entries = await self._fetch_entries()
        except FetchFailure as e:
            print(f"ERROR: Error fetching entity list: {e}", file=sys.stderr)
            return []

        if not self._flight.is_current():
            self._log_verbose("Catalog was reset while loading; not keeping this result.")
            return list(entries)
        self._index = _build_index(entries)
        self._entries = list(entries)
        self._log_verbose(f"Indexed {len(self._entries)} entity sets.")
        return self._entries

    async def best_match(self, raw_name: str) -> Optional[Tuple[CatalogEntry, float]]:
        """Best scoring catalog entry and its distance, regardless of the threshold."""
        entries = await self.entries()
        if not entries or not raw_name or not raw_name.strip():
            return None

        for entry in entries:
            if entry.canonical_name == raw_name:
                return entry, 0.0

        query = normalize_name(raw_name)
        if not query:
            return None

        # A result loaded across a reset() is not cached, so it has no stored index
        index = self._index if entries is self._entries else _build_index(entries)
        best_position, best_score = None, None
        for candidate, position in index:
            score = _distance(query, candidate)
            # Ties go to the earlier catalog entry
            if best_score is None or score < best_score or (score == best_score and position < best_position):
                best_position, best_score = position, score
        return entries[best_position], best_score

    async def resolve(self, raw_name: str) -> Optional[str]:
        """Canonical entity set name for a loosely typed name, or None when nothing is close enough."""
        match = await self.best_match(raw_name)
        if match is None:
            return None

        entry, score = match
        if score > self.threshold:
            self._log_verbose(f"No entity close enough to '{raw_name}' (best '{entry.canonical_name}', distance {score:.3f}).")
            return None

        if entry.canonical_name != raw_name:
            self._log_verbose(f"Resolved '{raw_name}' to '{entry.canonical_name}' (distance {score:.3f}).")
        return entry.canonical_name

    def reset(self):
        """Forget the fetched catalog so the next lookup downloads it again."""
        self._entries = None
        self._index = []
        self._flight.reset()
