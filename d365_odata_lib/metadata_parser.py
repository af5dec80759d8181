"""
OData CSDL metadata parser for extracting entity types, entity sets and enumerations.
"""

import sys
from datetime import datetime
from typing import Dict, List, Optional
from lxml import etree

from .models import EntityField, EntityTypeSchema, FieldKind, SchemaIndex


def _children(element, local_name: str) -> list:
    """Direct children by local name, whatever EDM namespace version the document uses."""
    return element.xpath(f"./*[local-name()='{local_name}']")


class MetadataParser:
    """Parses an OData $metadata document into a SchemaIndex in a single pass."""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose

    def _log_verbose(self, message: str):
        """Prints message to stderr only if verbose mode is enabled."""
        if self.verbose:
            timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S.%f')[:-3]
            print(f"[{timestamp} Parser VERBOSE] {message}", file=sys.stderr)

    def parse(self, content: bytes) -> SchemaIndex:
        """Parse the metadata document.

        Raises ``etree.XMLSyntaxError`` when the content is not well-formed XML.
        A well-formed document without Schema sections yields an empty index.
        """
        parser = etree.XMLParser(resolve_entities=False, no_network=True, huge_tree=True)
        root = etree.fromstring(content, parser=parser)

        schemas = root.xpath("//*[local-name()='Schema']")
        if not schemas:
            self._log_verbose("Warning: No Schema element found in metadata.")
            return SchemaIndex()

        # Aliases can be used anywhere in the document, so collect them first
        aliases: Dict[str, str] = {}
        for schema in schemas:
            namespace = schema.get('Namespace')
            alias = schema.get('Alias')
            if namespace and alias:
                aliases[alias] = namespace

        entity_types: Dict[str, EntityTypeSchema] = {}
        entity_sets: Dict[str, str] = {}
        enum_members: Dict[str, List[str]] = {}

        for schema in schemas:
            namespace = schema.get('Namespace')
            if not namespace:
                self._log_verbose("Warning: Skipping Schema element without Namespace.")
                continue

            for enum_elem in _children(schema, 'EnumType'):
                name = enum_elem.get('Name')
                if not name: continue
                members = [m.get('Name') for m in _children(enum_elem, 'Member') if m.get('Name')]
                enum_members[f"{namespace}.{name}"] = members

            for et_elem in _children(schema, 'EntityType'):
                name = et_elem.get('Name')
                if not name: continue
                qualified = f"{namespace}.{name}"
                entity_types[qualified] = self._parse_entity_type(et_elem, qualified, aliases)

            for container in _children(schema, 'EntityContainer'):
                for es_elem in _children(container, 'EntitySet'):
                    set_name = es_elem.get('Name')
                    type_ref = es_elem.get('EntityType')
                    if not set_name or not type_ref: continue
                    entity_sets[set_name] = self._qualify(type_ref, aliases)

        self._attach_enum_members(entity_types, enum_members)

        unbound = [s for s, t in entity_sets.items() if t not in entity_types]
        if unbound:
            self._log_verbose(f"Warning: {len(unbound)} entity sets reference undeclared types, e.g. {unbound[:3]}")

        self._log_verbose(f"Parsing complete. Found {len(entity_types)} types, {len(entity_sets)} sets, {len(enum_members)} enums.")
        return SchemaIndex(entity_types=entity_types, entity_sets=entity_sets)

    def _parse_entity_type(self, et_elem, qualified_name: str, aliases: Dict[str, str]) -> EntityTypeSchema:
        """Parse one EntityType element into its ordered field list."""
        key_names = set()
        for key_elem in _children(et_elem, 'Key'):
            for prop_ref in _children(key_elem, 'PropertyRef'):
                if prop_ref.get('Name'):
                    key_names.add(prop_ref.get('Name'))

        fields = []
        for prop_elem in _children(et_elem, 'Property'):
            prop_name = prop_elem.get('Name')
            prop_type = prop_elem.get('Type')
            if not prop_name or not prop_type: continue

            fields.append(EntityField.from_declaration(
                name=prop_name,
                declared_type=self._qualify(prop_type, aliases),
                is_key=prop_name in key_names,
                nullable=prop_elem.get('Nullable', 'true').lower() == 'true'
            ))

        return EntityTypeSchema(type_name=qualified_name, fields=fields)

    def _qualify(self, type_ref: str, aliases: Dict[str, str]) -> str:
        """Replace a schema alias prefix (e.g. ``mscrm.Account``) with its namespace."""
        prefix, sep, name = type_ref.rpartition('.')
        if sep and prefix in aliases:
            return f"{aliases[prefix]}.{name}"
        return type_ref

    def _attach_enum_members(self, entity_types: Dict[str, EntityTypeSchema],
                             enum_members: Dict[str, List[str]]):
        for schema in entity_types.values():
            for f in schema.fields:
                if f.kind == FieldKind.ENUMERATION and f.enum_type in enum_members:
                    f.enum_members = enum_members[f.enum_type]

    @staticmethod
    def describe(schema: Optional[EntityTypeSchema]) -> List[Dict[str, object]]:
        """Plain dict view of a schema's fields, for display."""
        if schema is None:
            return []
        return [
            {
                "name": f.name,
                "type": f.declared_type,
                "kind": f.kind.value,
                "is_key": f.is_key,
                "nullable": f.nullable,
            } for f in schema.fields
        ]
