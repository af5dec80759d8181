"""
Data models for credentials, the entity catalog and parsed OData metadata.
"""

from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel

from .constants import PRIMITIVE_TYPE_PREFIX


class Credential(BaseModel):
    value: str
    expires_at: float  # epoch seconds

    def remaining(self, now: float) -> float:
        return self.expires_at - now

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class TokenGrant(BaseModel):
    """Parsed response of an OAuth2 token endpoint."""
    access_token: str
    expires_in: int


class CatalogEntry(BaseModel):
    logical_name: str
    canonical_name: str  # entity set name used in request URLs

    model_config = {'frozen': True}


class FieldKind(str, Enum):
    PRIMITIVE = "primitive"
    ENUMERATION = "enumeration"


class EntityField(BaseModel):
    name: str
    declared_type: str  # e.g. "Edm.String" or "Microsoft.Dynamics.DataEntities.PurchStatus"
    is_key: bool = False
    nullable: bool = True
    kind: FieldKind = FieldKind.PRIMITIVE
    enum_type: Optional[str] = None
    enum_members: Optional[List[str]] = None

    @classmethod
    def from_declaration(cls, name: str, declared_type: str, is_key: bool = False,
                         nullable: bool = True) -> 'EntityField':
        """Build a field, classifying its declared type once."""
        if declared_type.startswith(PRIMITIVE_TYPE_PREFIX):
            return cls(name=name, declared_type=declared_type, is_key=is_key, nullable=nullable,
                       kind=FieldKind.PRIMITIVE)
        return cls(name=name, declared_type=declared_type, is_key=is_key, nullable=nullable,
                   kind=FieldKind.ENUMERATION, enum_type=declared_type)


class EntityTypeSchema(BaseModel):
    type_name: str  # fully qualified, e.g. "Microsoft.Dynamics.DataEntities.CustomerV3"
    fields: List[EntityField] = []

    def key_fields(self) -> List[EntityField]:
        return [f for f in self.fields if f.is_key]

    def find_field(self, label: str) -> Optional[EntityField]:
        """Case-insensitive field lookup."""
        wanted = label.lower()
        for f in self.fields:
            if f.name.lower() == wanted:
                return f
        return None


class SchemaIndex(BaseModel):
    entity_types: Dict[str, EntityTypeSchema] = {}
    entity_sets: Dict[str, str] = {}  # entity set name -> qualified entity type name

    def is_empty(self) -> bool:
        return not self.entity_types and not self.entity_sets


class QueryPlan(BaseModel):
    entity_set: str
    url: str
    params: Dict[str, Any] = {}
    filter: Optional[str] = None
    count: bool = False
    notices: List[str] = []
