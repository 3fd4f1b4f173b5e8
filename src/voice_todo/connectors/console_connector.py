# src/voice_todo/connectors/console_connector.py

from __future__ import annotations

import asyncio
import inspect
import logging
import sys
from datetime import datetime

from ..cli.commands import registry as command_registry
from ..core.errors import RecordNotFoundError
from ..core.models import Task
from ..core.state import AppState
from ..llm.client import friendly_llm_error_message

logger = logging.getLogger(__name__)


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _rewrite_prev_line(line: str) -> None:
    """
    Replace the last terminal line with `line`.
    Best-effort: if not a TTY, just print a new line.
    """
    if sys.stdout.isatty():
        sys.stdout.write("\033[1A\033[2K\r")
        sys.stdout.write(line + "\n")
        sys.stdout.flush()
    else:
        print(line)


def _print_ts(text: str) -> None:
    print(f"[{_ts_local()}] {text}", flush=True)


def _on_run_finished(task_id: int, task: Task | None, exc: BaseException | None) -> None:
    # Enrichment runs finish while the prompt is waiting; report them inline.
    if exc is not None:
        msg = friendly_llm_error_message(exc) if isinstance(exc, Exception) else "interrupted"
        _print_ts(f"[TASK] #{task_id} is stuck: {msg} (/retry {task_id} or /rm {task_id})")
    elif task is not None:
        _print_ts(f"[TASK] #{task.id} -> {task.category} ({task.priority.value}): {task.content}")


async def run_console_loop(state: AppState) -> None:
    logger.info("Console connector started (offline=%s).", state.offline)
    _print_ts("[CONSOLE] Type a note to add a task. Use /help for commands. Use /exit to quit.\n")

    coordinator = state.coordinator
    unsubscribe = coordinator.subscribe(_on_run_finished)

    def emit(text: str) -> None:
        # Immediate user-visible feedback for long operations.
        _print_ts(text)

    try:
        while True:
            try:
                user_input = (await asyncio.to_thread(input, ">>> You: ")).strip()
                _rewrite_prev_line(f"[{_ts_local()}] >>> You: {user_input}")
            except EOFError:
                logger.info("Console EOF received, exiting.")
                break
            except KeyboardInterrupt:
                logger.info("Console KeyboardInterrupt, exiting.")
                print()
                break

            if not user_input:
                continue

            if user_input.lower() in ("/exit", "/quit"):
                logger.info("Console exit command received.")
                break

            # Commands (/help, /rec, ...)
            try:
                reply = command_registry.handle(state, user_input, emit=emit)
                if inspect.isawaitable(reply):
                    reply = await reply
            except (RecordNotFoundError, ValueError) as e:
                reply = str(e)
            except Exception:
                logger.exception("Command handler crashed.")
                reply = "Internal error while handling a command."

            if reply is not None:
                _print_ts(str(reply))
                continue

            # Plain text: one new task, enriched in the background.
            task_id = coordinator.submit_text(user_input)
            if task_id is not None:
                _print_ts(f"[TASK] #{task_id} added (processing).")
    finally:
        unsubscribe()

    logger.info("Console connector finished.")
