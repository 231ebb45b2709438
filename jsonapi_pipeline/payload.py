"""Operation results, handed to the codec for rendering."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .mapping import ModelStruct, StructField
from .pagination import PaginationLinks
from .query import FieldSet, IncludedRelation


class LinkType(enum.Enum):
    """Kind of the links rendered in the resource objects of a document"""

    NONE = "none"
    RESOURCE = "resource"
    RELATED = "related"
    RELATIONSHIP = "relationship"


@dataclass
class LinkOptions:
    """
    base_url: url path prefix of the api
    root_id, collection, relation_field: the root resource of related and relationship documents
    """

    type: LinkType = LinkType.NONE
    base_url: str = ""
    root_id: str = ""
    collection: str = ""
    relation_field: Optional[StructField] = None


@dataclass
class Payload:
    """
    Unmarshaled request document or operation result

    data: model instances, at most one for the operations of this package
    field_sets: the fields of each data item: the submitted fields of a request payload,
        the rendered fields of a result
    included_relations: the relations submitted with a request payload, or the include tree of a result
    marshal_singular_format: render data as a single resource object (or null) instead of an array
    """

    model_struct: Optional[ModelStruct] = None
    data: List[Any] = field(default_factory=list)
    field_sets: List[FieldSet] = field(default_factory=list)
    included_relations: List[IncludedRelation] = field(default_factory=list)
    meta: Dict[str, Any] = field(default_factory=dict)
    marshal_links: LinkOptions = field(default_factory=LinkOptions)
    pagination_links: Optional[PaginationLinks] = None
    marshal_singular_format: bool = False

    @property
    def field_set(self) -> FieldSet:
        return self.field_sets[0] if self.field_sets else []


@dataclass
class OperationResult:
    """
    Outcome of an API operation: http status, response document (None for 204) and response headers
    """

    status: int
    document: Optional[Dict[str, Any]] = None
    headers: Dict[str, str] = field(default_factory=dict)
