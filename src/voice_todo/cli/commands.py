# src/voice_todo/cli/commands.py

from __future__ import annotations

import inspect
import logging
import mimetypes
from collections.abc import Awaitable, Callable
from datetime import datetime
from pathlib import Path
from typing import cast

from ..core.errors import RecordNotFoundError
from ..core.models import DropEvent, DropTargetKind, ImageUpload, RecordingState, Task
from ..core.state import AppState

CommandEmitter = Callable[[str], None]
CommandReply = str | Awaitable[str]
CommandHandler2 = Callable[[AppState, list[str]], CommandReply]
CommandHandler3 = Callable[[AppState, list[str], CommandEmitter | None], CommandReply]
CommandHandler = CommandHandler2 | CommandHandler3

logger = logging.getLogger(__name__)


class CommandRegistry:
    """Simple slash-command registry used by connectors (/help, /rec, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    def handle(
        self,
        state: AppState,
        line: str,
        emit: CommandEmitter | None = None,
    ) -> CommandReply | None:
        """
        Handle a string like "/command args".
        Returns a reply (a string, or an awaitable resolving to one) or None if not a command.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        try:
            nparams = len(inspect.signature(handler).parameters)
        except (TypeError, ValueError):
            nparams = 3

        if nparams >= 3:
            h3 = cast(CommandHandler3, handler)
            return h3(state, args, emit)

        h2 = cast(CommandHandler2, handler)
        return h2(state, args)

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


def _ts(value: float | None) -> str:
    if value is None:
        return "-"
    return datetime.fromtimestamp(value).astimezone().strftime("%Y-%m-%d %H:%M")


def _parse_id(raw: str) -> int | None:
    try:
        return int(raw.lstrip("#"))
    except ValueError:
        return None


def _task_line(task: Task, *, failure: str | None = None) -> str:
    mark = "x" if task.is_completed else ("*" if task.is_active else " ")
    imgs = f" [{len(task.image_refs)} img]" if task.image_refs else ""
    line = f"  [{mark}] #{task.id} ({task.priority.value}) {task.content}{imgs}"
    if failure:
        line += f"  <- {failure}"
    return line


def cmd_help(state: AppState, args: list[str]) -> str:
    return registry.build_help()


def cmd_status(state: AppState, args: list[str]) -> str:
    models = ", ".join(list(getattr(state.settings, "llm_models", []) or []))
    ai = "OFFLINE (rule-based, no speech-to-text)" if state.offline else f"ONLINE ({models})"
    board = state.coordinator.board()
    return (
        "Status:\n"
        f"  AI services: {ai}\n"
        f"  Microphone: {state.permissions.state.value}, {state.recorder.state.value}\n"
        f"  Tasks: {len(board.open)} open, {len(board.processing)} processing, "
        f"{len(board.stuck)} stuck, {len(board.completed)} done\n"
        f"  Categories: {len(board.categories)}  Work slots: {len(state.slots.list_slots())}"
    )


def cmd_mic(state: AppState, args: list[str]) -> str:
    """
    /mic          -> show permission state
    /mic check    -> re-query the permission
    /mic request  -> prompt for access (opens the device once)
    """
    gate = state.permissions
    sub = args[0].lower() if args else ""
    if sub == "check":
        gate.check()
    elif sub == "request":
        gate.request()
    elif sub:
        return "Usage: /mic | /mic check | /mic request."

    msg = gate.message
    return f"Microphone permission: {gate.state.value}" + (f"\n  {msg}" if msg else "")


def cmd_rec(state: AppState, args: list[str]) -> str:
    """
    /rec          -> start, or stop and submit when already recording
    /rec cancel   -> discard the current recording
    """
    recorder = state.recorder
    sub = args[0].lower() if args else ""

    if sub == "cancel":
        recorder.reset()
        return "Recording discarded."
    if sub:
        return "Usage: /rec | /rec cancel."

    if recorder.state != RecordingState.RECORDING:
        if recorder.start():
            return "Recording... type /rec again to stop and submit."
        return f"Cannot record: {recorder.error}"

    recorder.stop()
    artifact = recorder.take_artifact()
    if artifact is None:
        return f"Nothing submitted: {recorder.error or 'no audio.'}"
    task_id = state.coordinator.submit_audio(artifact)
    if task_id is None:
        return "Nothing submitted: no audio."
    return f"Voice note submitted as #{task_id} (processing)."


def cmd_img(state: AppState, args: list[str]) -> str:
    """/img <path> [text...] -> submit an image with optional context."""
    if not args:
        return "Usage: /img <path> [text]."

    path = Path(args[0]).expanduser()
    try:
        data = path.read_bytes()
    except OSError as e:
        return f"Cannot read image {path}: {e.strerror or e}"

    mime = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
    if not mime.startswith("image/"):
        return f"Not an image: {path.name}"

    upload = ImageUpload(data=data, mime_type=mime, filename=path.name)
    task_id = state.coordinator.submit_images([upload], " ".join(args[1:]) or None)
    if task_id is None:
        return "Nothing submitted: the image is empty."
    return f"Image submitted as #{task_id} (processing)."


def cmd_tasks(state: AppState, args: list[str]) -> str:
    """/tasks [all] -> open tasks grouped by category (all: include completed)."""
    board = state.coordinator.board()
    failures = state.coordinator.failures
    show_done = bool(args) and args[0].lower() == "all"

    lines: list[str] = []
    if board.processing:
        lines.append("Processing:")
        lines.extend(_task_line(t) for t in board.processing)
    if board.stuck:
        lines.append("Stuck (use /retry <id> or /rm <id>):")
        lines.extend(_task_line(t, failure=failures.get(t.id)) for t in board.stuck)

    by_category: dict[str, list[Task]] = {}
    for task in board.open:
        by_category.setdefault(task.category, []).append(task)
    for name in board.categories:
        tasks = by_category.pop(name, [])
        if tasks:
            lines.append(f"{name}:")
            lines.extend(_task_line(t) for t in tasks)
    for name, tasks in by_category.items():
        lines.append(f"{name}:")
        lines.extend(_task_line(t) for t in tasks)

    if show_done and board.completed:
        lines.append("Completed:")
        lines.extend(f"{_task_line(t)}  ({_ts(t.completed_at)})" for t in board.completed)

    return "\n".join(lines) if lines else "No tasks yet. Type a note or use /rec to dictate one."


def cmd_done(state: AppState, args: list[str]) -> str:
    task_id = _parse_id(args[0]) if args else None
    if task_id is None:
        return "Usage: /done <task id>."
    try:
        task = state.coordinator.toggle_complete(task_id)
    except RecordNotFoundError:
        return f"No task #{task_id}."
    return f"#{task.id} marked {'done' if task.is_completed else 'open'}."


def cmd_edit(state: AppState, args: list[str]) -> str:
    task_id = _parse_id(args[0]) if args else None
    text = " ".join(args[1:]).strip()
    if task_id is None or not text:
        return "Usage: /edit <task id> <new text>."
    try:
        task = state.coordinator.edit_task(task_id, text)
    except RecordNotFoundError:
        return f"No task #{task_id}."
    return f"#{task.id} updated: {task.content}"


def cmd_rm(state: AppState, args: list[str]) -> str:
    task_id = _parse_id(args[0]) if args else None
    if task_id is None:
        return "Usage: /rm <task id>."
    if not state.coordinator.remove_task(task_id):
        return f"No task #{task_id}."
    return f"#{task_id} removed."


def cmd_retry(state: AppState, args: list[str]) -> str:
    task_id = _parse_id(args[0]) if args else None
    if task_id is None:
        return "Usage: /retry <task id>."
    if state.coordinator.retry(task_id):
        return f"#{task_id} is processing again."
    return f"#{task_id} cannot be retried (not stuck, or its input is no longer available)."


def cmd_cat(state: AppState, args: list[str]) -> str:
    """
    /cat              -> list categories
    /cat add <name>   -> create a category
    /cat rm <name>    -> delete a category (its tasks move to the fallback)
    """
    registry_ = state.categories
    sub = args[0].lower() if args else ""
    name = " ".join(args[1:]).strip()

    if not sub:
        colors = registry_.colors()
        names = registry_.list_categories()
        if not names:
            return "No categories yet."
        return "Categories:\n" + "\n".join(f"  {n} ({colors.get(n, '-')})" for n in names)

    if sub == "add" and name:
        try:
            category = registry_.ensure(name)
        except ValueError as e:
            return str(e)
        return f"Category ready: {category.name}"

    if sub == "rm" and name:
        try:
            moved = registry_.delete(name)
        except ValueError as e:
            return str(e)
        except RecordNotFoundError:
            return f"No category named {name!r}."
        return f"Category {name!r} deleted; {moved} task(s) moved to {registry_.fallback!r}."

    return "Usage: /cat | /cat add <name> | /cat rm <name>."


def cmd_move(state: AppState, args: list[str]) -> str:
    """/move <task id> <category>  or  /move <task id> slot <slot id>"""
    task_id = _parse_id(args[0]) if args else None
    if task_id is None or len(args) < 2:
        return "Usage: /move <task id> <category> | /move <task id> slot <slot id>."

    if args[1].lower() == "slot" and len(args) == 3:
        slot_id = _parse_id(args[2])
        if slot_id is None:
            return "Usage: /move <task id> slot <slot id>."
        event = DropEvent(task_id=task_id, target_kind=DropTargetKind.WORK_SLOT, target_id=slot_id)
    else:
        event = DropEvent(task_id=task_id, target_kind=DropTargetKind.CATEGORY, target_id=" ".join(args[1:]))

    moved = state.coordinator.handle_drop(event)
    return f"#{task_id} moved." if moved else "Nothing to move."


async def _slot_hint(state: AppState, slot_id: int) -> str:
    try:
        hint = await state.slots.suggest(slot_id)
    except RecordNotFoundError:
        return f"No work slot #{slot_id}."
    return hint or f"Work slot #{slot_id} is empty."


def cmd_slot(state: AppState, args: list[str]) -> CommandReply:
    """
    /slot                       -> list work slots
    /slot add                   -> new slot at the end
    /slot clear|rm <slot id>    -> empty / delete a slot (notes are archived)
    /slot pos <slot id> <index> -> reorder
    /slot hint <slot id>        -> AI suggestion for the slot's task
    /slot log <task id>         -> archived notes of a task
    """
    slots = state.slots
    sub = args[0].lower() if args else ""
    ids = [_parse_id(a) for a in args[1:]]

    if not sub:
        rows = slots.list_slots()
        if not rows:
            return "No work slots. Use /slot add."
        lines = ["Work slots:"]
        for s in rows:
            task = state.store.find_task(s.task_id) if s.task_id is not None else None
            label = f"#{task.id} {task.content}" if task else "(empty)"
            lines.append(f"  [{s.position}] slot {s.id}: {label}")
            if s.notes.strip():
                lines.append(f"      notes: {s.notes.strip()}")
        return "\n".join(lines)

    if sub == "add":
        slot = slots.create_slot()
        return f"Work slot {slot.id} created at position {slot.position}."

    if not ids or ids[0] is None:
        return "Usage: /slot | /slot add | /slot clear|rm|hint <slot id> | /slot pos <slot id> <index> | /slot log <task id>."
    target = cast(int, ids[0])

    try:
        if sub == "clear":
            archived = slots.clear(target)
            return f"Work slot {target} cleared." + (" Notes archived." if archived else "")
        if sub == "rm":
            archived = slots.delete(target)
            return f"Work slot {target} deleted." + (" Notes archived." if archived else "")
        if sub == "pos" and len(ids) > 1 and ids[1] is not None:
            slot = slots.reorder(target, cast(int, ids[1]))
            return f"Work slot {slot.id} is now at position {slot.position}."
        if sub == "log":
            notes = slots.archived_notes(target)
            if not notes:
                return f"No archived notes for #{target}."
            return "\n".join(f"  {_ts(n.archived_at)}: {n.notes}" for n in notes)
    except RecordNotFoundError as e:
        return str(e)

    if sub == "hint":
        return _slot_hint(state, target)

    return "Unknown /slot subcommand. Use /help."


def cmd_notes(state: AppState, args: list[str]) -> str:
    slot_id = _parse_id(args[0]) if args else None
    if slot_id is None:
        return "Usage: /notes <slot id> <text>."
    try:
        slot = state.slots.update_notes(slot_id, " ".join(args[1:]))
    except RecordNotFoundError:
        return f"No work slot #{slot_id}."
    return f"Notes saved for work slot {slot.id}."


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("status", cmd_status, help_text="Show AI mode, microphone and task counts.")
registry.register("mic", cmd_mic, help_text="Microphone permission: /mic | /mic check | /mic request.")
registry.register("rec", cmd_rec, help_text="Start/stop a voice note: /rec | /rec cancel.")
registry.register("img", cmd_img, help_text="Submit an image: /img <path> [text].")
registry.register("tasks", cmd_tasks, help_text="Show the board: /tasks | /tasks all.", aliases=["ls"])
registry.register("done", cmd_done, help_text="Toggle completion: /done <id>.")
registry.register("edit", cmd_edit, help_text="Edit a task: /edit <id> <text>.")
registry.register("rm", cmd_rm, help_text="Remove a task: /rm <id>.")
registry.register("retry", cmd_retry, help_text="Retry a stuck task: /retry <id>.")
registry.register("cat", cmd_cat, help_text="Categories: /cat | /cat add <name> | /cat rm <name>.")
registry.register("move", cmd_move, help_text="Move a task: /move <id> <category> | /move <id> slot <slot id>.")
registry.register(
    "slot", cmd_slot, help_text="Work slots: /slot | add | clear | rm | pos | hint | log."
)
registry.register("notes", cmd_notes, help_text="Slot notes: /notes <slot id> <text>.")
