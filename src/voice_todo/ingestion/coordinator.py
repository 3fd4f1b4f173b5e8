# src/voice_todo/ingestion/coordinator.py

"""
Ingestion coordinator.

Submit calls create a placeholder task (is_processing=True) and spawn one
enrichment run in the background, then return immediately so the input is
free for the next submission. Runs are never awaited by the caller and cannot
be cancelled; a failed run leaves its placeholder visibly stuck until the user
retries or removes it.
"""

from __future__ import annotations

import asyncio
import contextlib
import functools
import logging
from collections.abc import Callable
from dataclasses import dataclass

from ..categories.registry import CategoryRegistry
from ..core.errors import RecordNotFoundError
from ..core.models import (
    PENDING_CATEGORY,
    AudioArtifact,
    DropEvent,
    DropTargetKind,
    ImageUpload,
    Priority,
    Submission,
    Task,
)
from ..enrichment.pipeline import EnrichmentPipeline
from ..slots.manager import WorkSlotManager
from ..storage.record_store import RecordStore

logger = logging.getLogger(__name__)

PLACEHOLDER_AUDIO = "(voice note)"
PLACEHOLDER_IMAGES = "(image)"

# (task_id, materialized task or None, error or None)
RunListener = Callable[[int, Task | None, BaseException | None], None]


@dataclass(frozen=True, slots=True)
class TaskBoard:
    """What the user sees: tasks partitioned by lifecycle."""

    processing: list[Task]
    stuck: list[Task]
    open: list[Task]
    completed: list[Task]
    categories: list[str]


class IngestionCoordinator:
    def __init__(
            self,
            store: RecordStore,
            pipeline: EnrichmentPipeline,
            categories: CategoryRegistry,
            slots: WorkSlotManager,
    ) -> None:
        self._store = store
        self._pipeline = pipeline
        self._categories = categories
        self._slots = slots

        self._inflight: dict[int, asyncio.Task] = {}
        self._submissions: dict[int, Submission] = {}
        self.failures: dict[int, str] = {}
        self._listeners: list[RunListener] = []

    # ---- submissions ----

    def submit_text(self, text: str) -> int | None:
        text = (text or "").strip()
        if not text:
            return None
        return self._submit(Submission.from_text(text), placeholder=text)

    def submit_audio(self, artifact: AudioArtifact | None) -> int | None:
        if artifact is None or not artifact.data:
            return None
        return self._submit(Submission.from_audio(artifact), placeholder=PLACEHOLDER_AUDIO)

    def submit_images(self, images: list[ImageUpload], text: str | None = None) -> int | None:
        images = [img for img in images if img.data]
        if not images:
            return None
        text = (text or "").strip() or None
        return self._submit(Submission.from_images(images, text), placeholder=text or PLACEHOLDER_IMAGES)

    def _submit(self, submission: Submission, *, placeholder: str) -> int:
        # Raises outside an event loop, before any placeholder is written.
        loop = asyncio.get_running_loop()
        task = self._store.create_task(
            content=placeholder,
            category=PENDING_CATEGORY,
            priority=Priority.MEDIUM,
            is_processing=True,
        )
        self._spawn(loop, task.id, submission)
        logger.info("Submission accepted kind=%s task_id=%s", submission.kind.value, task.id)
        return task.id

    def _spawn(self, loop: asyncio.AbstractEventLoop, task_id: int, submission: Submission) -> None:
        self._submissions[task_id] = submission
        self.failures.pop(task_id, None)
        job = loop.create_task(
            self._pipeline.run(submission, placeholder_id=task_id),
            name=f"enrich-{task_id}",
        )
        self._inflight[task_id] = job
        job.add_done_callback(functools.partial(self._on_done, task_id))

    def _on_done(self, task_id: int, job: asyncio.Task) -> None:
        if self._inflight.get(task_id) is job:
            del self._inflight[task_id]

        if job.cancelled():
            self.failures[task_id] = "Enrichment was interrupted."
            logger.warning("Enrichment interrupted task_id=%s", task_id)
            self._notify(task_id, None, asyncio.CancelledError())
            return

        exc = job.exception()
        if exc is None:
            self._submissions.pop(task_id, None)
            logger.info("Enrichment done task_id=%s", task_id)
            self._notify(task_id, job.result(), None)
            return

        msg = str(exc) or exc.__class__.__name__
        self.failures[task_id] = msg
        logger.warning(
            "Enrichment failed task_id=%s (%s): %s",
            task_id,
            exc.__class__.__name__,
            msg,
            exc_info=(type(exc), exc, exc.__traceback__),
        )
        self._notify(task_id, None, exc)

    def subscribe(self, listener: RunListener) -> Callable[[], None]:
        """Be told when each enrichment run finishes."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self, task_id: int, task: Task | None, exc: BaseException | None) -> None:
        for listener in list(self._listeners):
            try:
                listener(task_id, task, exc)
            except Exception:
                logger.exception("Run listener failed")

    def retry(self, task_id: int) -> bool:
        """Re-run enrichment for a stuck task from its original submission."""
        if task_id in self._inflight:
            return False
        submission = self._submissions.get(task_id)
        task = self._store.find_task(task_id)
        if submission is None or task is None or not task.is_processing:
            return False
        self._spawn(asyncio.get_running_loop(), task_id, submission)
        logger.info("Enrichment retried task_id=%s", task_id)
        return True

    @property
    def inflight(self) -> frozenset[int]:
        return frozenset(self._inflight)

    async def drain(self) -> None:
        """Wait until no enrichment run is in flight (tests / shutdown)."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight.values()), return_exceptions=True)

    # ---- task actions ----

    def handle_drop(self, event: DropEvent) -> bool:
        """Apply a drag-and-drop; returns False when it was a no-op."""
        if event.target_kind is None or event.target_id is None:
            return False

        if event.target_kind == DropTargetKind.CATEGORY:
            name = str(event.target_id).strip()
            if not name:
                return False
            with self._store.transaction() as tx:
                task = tx.find_task(event.task_id)
                if task is None or task.is_processing or task.category == name:
                    return False
                self._categories.ensure(name)
                tx.update_task(task.id, category=name)
            logger.info("Task %s moved to category %s", event.task_id, name)
            return True

        if event.target_kind == DropTargetKind.WORK_SLOT:
            task = self._store.find_task(event.task_id)
            if task is None or task.is_processing:
                return False
            try:
                slot_id = int(event.target_id)
            except (TypeError, ValueError):
                return False
            try:
                self._slots.assign(slot_id, task.id)
            except RecordNotFoundError:
                logger.info("Drop ignored: work slot %s is gone", slot_id)
                return False
            return True

        return False

    def toggle_complete(self, task_id: int) -> Task:
        with self._store.transaction() as tx:
            task = tx.toggle_complete(task_id)
            if task.is_completed:
                # A finished task leaves its work slot; the notes are archived.
                self._slots.release_task(task_id)
                task = tx.get_task(task_id)
        return task

    def edit_task(self, task_id: int, content: str) -> Task:
        content = (content or "").strip()
        if not content:
            raise ValueError("Task content cannot be empty")
        with self._store.transaction() as tx:
            tx.get_task(task_id)
            tx.update_task(task_id, content=content)
            return tx.get_task(task_id)

    def remove_task(self, task_id: int) -> bool:
        with self._store.transaction() as tx:
            self._slots.release_task(task_id)
            removed = tx.remove_task(task_id)
        self.failures.pop(task_id, None)
        if task_id not in self._inflight:
            self._submissions.pop(task_id, None)
        return removed

    # ---- view ----

    def board(self) -> TaskBoard:
        processing: list[Task] = []
        stuck: list[Task] = []
        open_: list[Task] = []
        completed: list[Task] = []

        for task in self._store.list_tasks():
            if task.is_completed:
                completed.append(task)
            elif task.is_processing:
                # In flight -> processing; failed or orphaned (e.g. after restart) -> stuck.
                (processing if task.id in self._inflight else stuck).append(task)
            else:
                open_.append(task)

        return TaskBoard(
            processing=processing,
            stuck=stuck,
            open=open_,
            completed=completed,
            categories=self._categories.list_categories(),
        )
