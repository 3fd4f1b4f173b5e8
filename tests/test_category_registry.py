# tests/test_category_registry.py

from __future__ import annotations

import pytest

from voice_todo.categories.registry import CATEGORY_COLORS, CategoryRegistry
from voice_todo.core.errors import RecordNotFoundError
from voice_todo.core.models import PENDING_CATEGORY
from voice_todo.storage.record_store import RecordStore


def test_ensure_is_create_if_absent(store: RecordStore, categories: CategoryRegistry) -> None:
    first = categories.ensure("Work")
    second = categories.ensure("Work")

    assert first.id == second.id
    assert len(store.list_categories()) == 1


def test_names_are_case_sensitive(categories: CategoryRegistry) -> None:
    categories.ensure("RepNet")
    categories.ensure("repnet")
    assert categories.list_categories() == ["RepNet", "repnet"]


@pytest.mark.parametrize("name", ["", "   ", PENDING_CATEGORY])
def test_ensure_rejects_invalid_names(categories: CategoryRegistry, name: str) -> None:
    with pytest.raises(ValueError):
        categories.ensure(name)


def test_list_includes_unregistered_names_of_open_tasks(store: RecordStore, categories: CategoryRegistry) -> None:
    categories.ensure("Work")
    store.create_task(content="a", category="Errands")
    store.create_task(content="b", category="Work")
    store.create_task(content="c", category=PENDING_CATEGORY, is_processing=True)

    assert categories.list_categories() == ["Work", "Errands"]


def test_delete_moves_tasks_to_fallback(store: RecordStore, categories: CategoryRegistry) -> None:
    categories.ensure("Work")
    a = store.create_task(content="a", category="Work")
    b = store.create_task(content="b", category="Work")

    assert categories.delete("Work") == 2

    assert store.get_task(a.id).category == "General"
    assert store.get_task(b.id).category == "General"
    assert "Work" not in categories.list_categories()
    assert "General" in categories.list_categories()


def test_delete_of_a_name_only_referenced_by_tasks(store: RecordStore, categories: CategoryRegistry) -> None:
    t = store.create_task(content="a", category="Orphan")
    assert categories.delete("Orphan") == 1
    assert store.get_task(t.id).category == "General"


def test_delete_unknown_category_raises(categories: CategoryRegistry) -> None:
    with pytest.raises(RecordNotFoundError):
        categories.delete("Nope")


def test_fallback_category_cannot_be_deleted(categories: CategoryRegistry) -> None:
    categories.ensure("General")
    with pytest.raises(ValueError):
        categories.delete("General")


def test_colors_follow_sorted_order(categories: CategoryRegistry, store: RecordStore) -> None:
    categories.ensure("Work")
    categories.ensure("Home")
    categories.ensure("Art", color="#000000")

    colors = categories.colors()

    assert colors["Art"] == "#000000"
    assert colors["Home"] == CATEGORY_COLORS[1]
    assert colors["Work"] == CATEGORY_COLORS[2]


def test_deleting_a_category_with_two_tasks(store: RecordStore, categories: CategoryRegistry) -> None:
    categories.ensure("Courses")
    ids = [store.create_task(content=c, category="Courses").id for c in ("milk", "bread")]

    categories.delete("Courses")

    assert [store.get_task(i).category for i in ids] == ["General", "General"]
    assert "Courses" not in categories.list_categories()
