# Sparse fieldsets and includes
#
# https://jsonapi.org/format/#fetching-sparse-fieldsets
# https://jsonapi.org/format/#fetching-includes
#
# A json:api fieldset mixes attributes and relations, the storage needs the columns to select
# and the relations to load. resolve() splits the requested fields accordingly:
# - the primary key is always selected
# - a belongs-to relation needs its foreign key column
# - every relation is loaded, at least with the related primary key (a "link-only" include),
#   so that the resource relationships linkage can be rendered
#
from typing import List, Optional, Sequence, Tuple

from .errors import InvalidQueryParameter
from .mapping import ModelStruct, RelationKind, StructField
from .query import FieldSet, IncludedRelation, find_include


def resolve(
    model_struct: ModelStruct,
    fields: Sequence[StructField],
    includes: Sequence[IncludedRelation],
    nested_limit: Optional[int] = None,
) -> Tuple[FieldSet, List[IncludedRelation]]:
    """Resolve the requested fields and includes into the storage fieldset and include tree

    The input is not modified: the result include tree is built from new nodes, so resolving
    twice yields equal results.

    :param model_struct: model struct of the requested resources
    :param fields: requested fields (attributes and relations), an empty list is resolved by the caller
    :param includes: requested include tree
    :param nested_limit: maximum depth of the include tree
    :return: (fieldset, includes)
    :raise InvalidQueryParameter: the include tree is nested deeper than nested_limit
    """
    return _resolve(model_struct, fields, includes, nested_limit, 0)


def _resolve(model_struct, fields, includes, nested_limit, depth):
    if nested_limit is not None and includes and depth >= nested_limit:
        raise InvalidQueryParameter(f"included relations are nested deeper than the limit: {nested_limit}")

    result_fields: FieldSet = [model_struct.primary]
    result_includes: List[IncludedRelation] = []
    for included in includes:
        nested_fields, nested_includes = _resolve(
            included.related_struct, included.field_set, included.included_relations, nested_limit, depth + 1
        )
        result_includes.append(IncludedRelation(included.struct_field, nested_fields, nested_includes))

    for field in fields:
        if field is model_struct.primary:
            continue
        if field.is_relation:
            relationship = field.relationship
            foreign_key = relationship.foreign_key
            if relationship.kind is RelationKind.BELONGS_TO and foreign_key is not None and foreign_key not in result_fields:
                result_fields.append(foreign_key)
            related_primary = relationship.related_struct.primary
            included = find_include(result_includes, field)
            if included is None:
                result_includes.append(IncludedRelation(field, [related_primary]))
            elif related_primary not in included.field_set:
                included.field_set.insert(0, related_primary)
            continue
        if field not in result_fields:
            result_fields.append(field)
    return result_fields, result_includes


def default_fields(model_struct: ModelStruct) -> FieldSet:
    """
    The fields rendered when the client doesn't request a fieldset: all attributes and relations
    """
    return [*model_struct.attributes, *model_struct.relation_fields]
