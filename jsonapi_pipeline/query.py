"""Query scope: one logical query against the storage.

A scope is created per request, filled by the codec parameter parser and the resolver,
passed once to the handler chain and discarded when the response is built.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from .mapping import ModelStruct, StructField
from .pagination import Pagination

FieldSet = List[StructField]


class QueryMethod(enum.Enum):
    INSERT = "insert"
    GET = "get"
    LIST = "list"
    UPDATE = "update"
    DELETE = "delete"
    GET_RELATED = "get_related"
    GET_RELATIONSHIP = "get_relationship"
    INSERT_RELATIONSHIP = "insert_relationship"
    UPDATE_RELATIONSHIP = "update_relationship"
    DELETE_RELATIONSHIP = "delete_relationship"


class Operator(enum.Enum):
    """filter[field][op]= operators"""

    EQUAL = "eq"
    NOT_EQUAL = "ne"
    GREATER_THAN = "gt"
    GREATER_EQUAL = "ge"
    LESS_THAN = "lt"
    LESS_EQUAL = "le"
    IN = "in"
    NOT_IN = "notin"
    CONTAINS = "contains"
    STARTS_WITH = "startswith"
    ENDS_WITH = "endswith"
    IS_NULL = "isnull"
    NOT_NULL = "notnull"

    @property
    def takes_values(self) -> bool:
        return self not in (Operator.IS_NULL, Operator.NOT_NULL)

    @property
    def multi_valued(self) -> bool:
        return self in (Operator.IN, Operator.NOT_IN)


@dataclass
class FilterField:
    struct_field: StructField
    operator: Operator
    values: List[Any] = field(default_factory=list)


@dataclass
class SortField:
    struct_field: StructField
    descending: bool = False


@dataclass
class IncludedRelation:
    """
    Node of the include tree: a relation field, the fieldset of the related resources
    and the nested includes
    """

    struct_field: StructField
    field_set: FieldSet = field(default_factory=list)
    included_relations: List["IncludedRelation"] = field(default_factory=list)

    @property
    def related_struct(self) -> ModelStruct:
        return self.struct_field.relationship.related_struct

    def depth(self) -> int:
        return 1 + max((nested.depth() for nested in self.included_relations), default=0)


def find_include(includes: Sequence[IncludedRelation], relation: StructField) -> Optional[IncludedRelation]:
    for included in includes:
        if included.struct_field is relation:
            return included
    return None


@dataclass
class Scope:
    """
    model_struct: the queried model struct
    models: seed model instances, f.i. the instance identified by the url id
    field_sets: fieldsets parallel to the models, at most one for the operations in this package
    store: side channel for operation specific flags, f.i. "links"
    """

    model_struct: ModelStruct
    models: List[Any] = field(default_factory=list)
    field_sets: List[FieldSet] = field(default_factory=list)
    filters: List[FilterField] = field(default_factory=list)
    sorting_order: List[SortField] = field(default_factory=list)
    pagination: Optional[Pagination] = None
    included_relations: List[IncludedRelation] = field(default_factory=list)
    store: Dict[str, Any] = field(default_factory=dict)

    @property
    def field_set(self) -> FieldSet:
        return self.field_sets[0] if self.field_sets else []

    def filter(self, filter_field: FilterField) -> None:
        self.filters.append(filter_field)

    def filter_primary(self, value: Any) -> None:
        self.filter(FilterField(self.model_struct.primary, Operator.EQUAL, [value]))

    def include(self, relation: StructField, *fields: StructField) -> IncludedRelation:
        """
        Include the relation with the given related fields, the related primary key is always included
        :raise ValueError: relation isn't a relation field of the scope model
        """
        if relation.model_struct is not self.model_struct or not relation.is_relation:
            raise ValueError(f"field: '{relation.name}' is not a relation of '{self.model_struct.collection}'")
        related = relation.relationship.related_struct
        included = find_include(self.included_relations, relation)
        if included is None:
            included = IncludedRelation(relation, [related.primary])
            self.included_relations.append(included)
        elif related.primary not in included.field_set:
            included.field_set.insert(0, related.primary)
        for related_field in fields:
            if related_field not in included.field_set:
                included.field_set.append(related_field)
        return included

    def copy(self) -> "Scope":
        """Copy of the scope, the models and the include tree are shared"""
        return Scope(
            model_struct=self.model_struct,
            models=list(self.models),
            field_sets=[list(field_set) for field_set in self.field_sets],
            filters=list(self.filters),
            sorting_order=list(self.sorting_order),
            pagination=self.pagination,
            included_relations=list(self.included_relations),
            store=dict(self.store),
        )
