"""Relationship member set reconciliation.

https://jsonapi.org/format/#crud-updating-relationships

- PATCH replaces all the members of a relationship
- POST adds the members that aren't present yet, already present members are left alone
- DELETE removes the submitted members, removing an absent member is not an error

Members are identified by their primary key: two submitted members with the same id are the
same member, whatever their other content.
"""

from dataclasses import dataclass
from typing import Any, Callable, Hashable, List, Sequence

PrimaryKey = Callable[[Any], Hashable]


@dataclass
class Reconciliation:
    """
    members: the member set to persist
    changed: False when the members equal the current set and nothing has to be written
    """

    members: List[Any]
    changed: bool


def reconcile_update(current: Sequence[Any], submitted: Sequence[Any], primary_key: PrimaryKey) -> Reconciliation:
    """Full replace: the submitted set becomes the member set, regardless of the current members"""
    return Reconciliation(_unique(submitted, primary_key), True)


def reconcile_insert(current: Sequence[Any], submitted: Sequence[Any], primary_key: PrimaryKey) -> Reconciliation:
    """
    :return: current members followed by the submitted members that aren't present yet
    """
    members = list(current)
    seen = {primary_key(member) for member in members}
    for member in submitted:
        key = primary_key(member)
        if key in seen:
            continue
        seen.add(key)
        members.append(member)
    return Reconciliation(members, len(members) != len(current))


def reconcile_delete(current: Sequence[Any], submitted: Sequence[Any], primary_key: PrimaryKey) -> Reconciliation:
    """
    :return: current members without the submitted ones, in their current order
    """
    to_delete = {primary_key(member) for member in submitted}
    members = [member for member in current if primary_key(member) not in to_delete]
    return Reconciliation(members, len(members) != len(current))


def _unique(members: Sequence[Any], primary_key: PrimaryKey) -> List[Any]:
    result = []
    seen = set()
    for member in members:
        key = primary_key(member)
        if key in seen:
            continue
        seen.add(key)
        result.append(member)
    return result
