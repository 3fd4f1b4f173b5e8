# src/voice_todo/categories/registry.py

from __future__ import annotations

import logging

from ..core.errors import RecordNotFoundError
from ..core.models import DEFAULT_FALLBACK_CATEGORY, PENDING_CATEGORY, Category
from ..storage.record_store import RecordStore

logger = logging.getLogger(__name__)

# Pastel colors assigned by index in the alphabetically sorted category list.
CATEGORY_COLORS = [
    "#7CA5D8",  # blue
    "#D88C8C",  # coral
    "#8BC49A",  # sage
    "#C9A0D8",  # violet
    "#D8B86C",  # amber
    "#6CB8B8",  # teal
    "#D87CAA",  # pink
    "#8B8BD8",  # indigo
    "#B8D86C",  # lime
    "#D8A06C",  # peach
]


def category_color(index: int) -> str:
    return CATEGORY_COLORS[index % len(CATEGORY_COLORS)]


class CategoryRegistry:
    """
    Canonical set of category names.

    Names are exact-match and case-sensitive: "repnet" and "RepNet" are two
    categories. A task may reference a name before ensure() has run for it;
    list_categories() tolerates that by including names referenced by open tasks.
    """

    def __init__(self, store: RecordStore, *, fallback: str = DEFAULT_FALLBACK_CATEGORY) -> None:
        self._store = store
        self.fallback = fallback

    def ensure(self, name: str, color: str | None = None) -> Category:
        """Create-if-absent; returns the existing entry on an exact match."""
        name = (name or "").strip()
        if not name or name == PENDING_CATEGORY:
            raise ValueError(f"Invalid category name: {name!r}")

        with self._store.transaction() as tx:
            existing = tx.get_category(name)
            if existing is not None:
                return existing
            category = tx.insert_category_if_absent(name, color)

        logger.info("Category created name=%s", name)
        return category

    def delete(self, name: str) -> int:
        """
        Move every task of `name` to the fallback category, then drop `name`.

        Returns the number of reassigned tasks.
        """
        if name == self.fallback:
            raise ValueError(f"The fallback category {self.fallback!r} cannot be deleted")

        with self._store.transaction() as tx:
            referenced = tx.list_tasks_by_category(name)
            if tx.get_category(name) is None and not referenced:
                raise RecordNotFoundError("Category", name)

            tx.insert_category_if_absent(self.fallback)
            moved = tx.reassign_category(name, self.fallback)
            tx.delete_category(name)

        logger.info("Category deleted name=%s reassigned=%d to=%s", name, moved, self.fallback)
        return moved

    def list_categories(self) -> list[str]:
        """Registered names plus names referenced by open tasks, without duplicates."""
        with self._store.transaction() as tx:
            registered = [c.name for c in tx.list_categories()]
            referenced = tx.open_task_categories()

        out: list[str] = []
        seen: set[str] = set()
        for name in [*registered, *referenced]:
            if not name or name == PENDING_CATEGORY or name in seen:
                continue
            seen.add(name)
            out.append(name)
        return out

    def colors(self) -> dict[str, str]:
        explicit = {c.name: c.color for c in self._store.list_categories() if c.color}
        names = sorted(self.list_categories())
        return {name: explicit.get(name) or category_color(i) for i, name in enumerate(names)}
