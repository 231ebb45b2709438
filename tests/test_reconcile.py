from types import SimpleNamespace

from jsonapi_pipeline.reconcile import reconcile_delete, reconcile_insert, reconcile_update


def member(id: int, name: str = "") -> SimpleNamespace:
    return SimpleNamespace(id=id, name=name)


def primary_key(model: SimpleNamespace) -> int:
    return model.id


def ids(members: list) -> list:
    return [m.id for m in members]


def test_update_replaces_the_members() -> None:
    result = reconcile_update([member(1), member(2)], [member(3), member(1)], primary_key)

    assert ids(result.members) == [3, 1]
    assert result.changed


def test_update_with_no_members_clears() -> None:
    result = reconcile_update([member(1)], [], primary_key)

    assert result.members == []
    assert result.changed


def test_insert_appends_missing_members() -> None:
    result = reconcile_insert([member(1), member(2)], [member(2), member(3)], primary_key)

    assert ids(result.members) == [1, 2, 3]
    assert result.changed


def test_insert_of_present_members_is_unchanged() -> None:
    current = [member(1, "current"), member(2)]
    result = reconcile_insert(current, [member(1, "submitted")], primary_key)

    assert not result.changed
    assert result.members[0].name == "current"


def test_insert_deduplicates_submitted_members() -> None:
    result = reconcile_insert([], [member(4, "a"), member(4, "b")], primary_key)

    assert ids(result.members) == [4]
    assert result.members[0].name == "a"


def test_delete_removes_submitted_members() -> None:
    result = reconcile_delete([member(1), member(2), member(3)], [member(2)], primary_key)

    assert ids(result.members) == [1, 3]
    assert result.changed


def test_delete_of_absent_members_is_unchanged() -> None:
    result = reconcile_delete([member(1)], [member(9)], primary_key)

    assert ids(result.members) == [1]
    assert not result.changed
