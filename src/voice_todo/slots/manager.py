# src/voice_todo/slots/manager.py

"""
Work slots: a short row of focus containers.

Each slot holds at most one task plus scratch notes, and a task sits in at
most one slot. Every operation runs in a single store transaction, so readers
never observe a task in two slots or two slots sharing a position.
"""

from __future__ import annotations

import logging

from ..core.models import ArchivedNote, WorkSlot
from ..storage.record_store import RecordStore, StoreSession
from .suggestions import SuggestionService

logger = logging.getLogger(__name__)


class WorkSlotManager:
    def __init__(self, store: RecordStore, suggestions: SuggestionService | None = None) -> None:
        self._store = store
        self._suggestions = suggestions

    # ---- queries ----

    def list_slots(self) -> list[WorkSlot]:
        return self._store.list_slots()

    def archived_notes(self, task_id: int) -> list[ArchivedNote]:
        return self._store.list_archived_notes(task_id)

    # ---- mutations ----

    def create_slot(self) -> WorkSlot:
        with self._store.transaction() as tx:
            top = tx.max_slot_position()
            slot = tx.insert_slot(0 if top is None else top + 1)
        logger.info("Work slot created id=%s position=%s", slot.id, slot.position)
        return slot

    def assign(self, slot_id: int, task_id: int) -> WorkSlot:
        with self._store.transaction() as tx:
            slot = tx.get_slot(slot_id)
            tx.get_task(task_id)

            # Detach from any other slot before attaching here.
            for other in tx.find_slots_by_task(task_id):
                if other.id != slot.id:
                    tx.patch_slot(other.id, task_id=None)

            if slot.task_id is not None and slot.task_id != task_id:
                tx.update_task(slot.task_id, is_active=False)

            tx.patch_slot(slot.id, task_id=task_id)
            tx.update_task(task_id, is_active=True)
            slot = tx.get_slot(slot.id)

        logger.info("Task %s assigned to slot %s", task_id, slot_id)
        return slot

    def update_notes(self, slot_id: int, notes: str) -> WorkSlot:
        with self._store.transaction() as tx:
            tx.patch_slot(slot_id, notes=notes)
            return tx.get_slot(slot_id)

    def clear(self, slot_id: int) -> ArchivedNote | None:
        """Archive notes (if any), release the task, empty the slot."""
        with self._store.transaction() as tx:
            archived = self._detach(tx, tx.get_slot(slot_id))
        logger.info("Work slot %s cleared (archived=%s)", slot_id, archived is not None)
        return archived

    def delete(self, slot_id: int) -> ArchivedNote | None:
        """Same as clear(), then remove the slot and close the gap in positions."""
        with self._store.transaction() as tx:
            archived = self._detach(tx, tx.get_slot(slot_id))
            tx.delete_slot(slot_id)
            self._compact(tx)
        logger.info("Work slot %s deleted (archived=%s)", slot_id, archived is not None)
        return archived

    def reorder(self, slot_id: int, new_position: int) -> WorkSlot:
        with self._store.transaction() as tx:
            slots = tx.list_slots()
            moving = tx.get_slot(slot_id)
            new_position = max(0, min(int(new_position), len(slots) - 1))

            others = [s for s in slots if s.id != moving.id]
            others.insert(new_position, moving)
            for index, s in enumerate(others):
                if s.position != index:
                    tx.patch_slot(s.id, position=index, touch=s.id == moving.id)
            return tx.get_slot(slot_id)

    def release_task(self, task_id: int) -> list[ArchivedNote]:
        """Clear whichever slot holds `task_id` (task completed or removed)."""
        archived: list[ArchivedNote] = []
        with self._store.transaction() as tx:
            for slot in tx.find_slots_by_task(task_id):
                note = self._detach(tx, slot)
                if note is not None:
                    archived.append(note)
        return archived

    async def suggest(self, slot_id: int) -> str | None:
        """AI hint for the task in a slot; None for an empty slot."""
        if self._suggestions is None:
            return None
        with self._store.transaction() as tx:
            slot = tx.get_slot(slot_id)
            task = tx.find_task(slot.task_id) if slot.task_id is not None else None
        if task is None:
            return None
        return await self._suggestions.suggest(content=task.content, category=task.category, notes=slot.notes)

    # ---- internals ----

    @staticmethod
    def _detach(tx: StoreSession, slot: WorkSlot) -> ArchivedNote | None:
        archived = None
        if slot.task_id is not None:
            if slot.notes.strip():
                archived = tx.insert_archived_note(slot.task_id, slot.notes)
            tx.update_task(slot.task_id, is_active=False)
        tx.patch_slot(slot.id, task_id=None, notes="")
        return archived

    @staticmethod
    def _compact(tx: StoreSession) -> None:
        for index, s in enumerate(tx.list_slots()):
            if s.position != index:
                tx.patch_slot(s.id, position=index, touch=False)
