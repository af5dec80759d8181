"""
Builds OData $filter expressions from key/value maps, typed by the entity schema.
"""

import sys
from typing import Any, Callable, Mapping, Optional

from .models import EntityTypeSchema, FieldKind


def quote_literal(value: Any) -> str:
    """OData string literal: single-quoted, embedded quotes doubled."""
    return "'" + str(value).replace("'", "''") + "'"


def build_string_filter(filters: Optional[Mapping[str, Any]]) -> Optional[str]:
    """Untyped filter: every value compared as a string literal."""
    if not filters:
        return None
    return " and ".join(f"{key} eq {quote_literal(value)}" for key, value in filters.items())


def build_filter(filters: Optional[Mapping[str, Any]], schema: Optional[EntityTypeSchema],
                 on_warning: Optional[Callable[[str], None]] = None,
                 verbose: bool = False) -> Optional[str]:
    """Render ``filters`` as a $filter expression using the field types in ``schema``.

    Returns None when there is nothing to filter on or no schema is available;
    the caller decides whether to fall back to ``build_string_filter``.

    Enumeration fields get their qualified type as literal prefix
    (``Status eq Ns.PurchStatus'Received'``). Keys that match no field are
    still emitted as string comparisons, and ``on_warning`` is told about it.
    """
    if not filters or schema is None:
        return None

    def warn(message: str):
        if verbose:
            print(f"Warning: {message}", file=sys.stderr)
        if on_warning is not None:
            on_warning(message)

    clauses = []
    for key, value in filters.items():
        field = schema.find_field(key)
        if field is None:
            warn(f"Field '{key}' is not declared on {schema.type_name}; filtering on it as a string.")
            clauses.append(f"{key} eq {quote_literal(value)}")
        elif field.kind == FieldKind.ENUMERATION:
            if field.enum_members is None:
                warn(f"Type '{field.enum_type}' of field '{field.name}' is not a declared enumeration; the server may reject this comparison.")
            elif str(value) not in field.enum_members:
                warn(f"'{value}' is not a member of {field.enum_type} (expected one of: {', '.join(field.enum_members)}).")
            clauses.append(f"{field.name} eq {field.enum_type}{quote_literal(value)}")
        else:
            clauses.append(f"{field.name} eq {quote_literal(value)}")

    return " and ".join(clauses)
