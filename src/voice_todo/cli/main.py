# src/voice_todo/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, then runs the asyncio console loop.
On exit, in-flight enrichment runs get a short grace period; whatever is
still processing afterwards shows up as stuck on the next start.
"""

from __future__ import annotations

import asyncio
import logging

from ..cli.bootstrap import create_initial_state
from ..config import get_settings
from ..connectors.console_connector import run_console_loop
from ..core.state import AppState
from ..logging_setup import setup_logging

logger = logging.getLogger(__name__)

SHUTDOWN_GRACE_SECONDS = 15.0


def _shutdown(state: AppState) -> None:
    """Best-effort shutdown (no exceptions should escape)."""
    try:
        state.recorder.reset()
    except Exception:
        logger.debug("Recorder reset failed.", exc_info=True)

    # RecordStore uses short-lived sqlite connections per operation; close() is a no-op hook.
    try:
        state.store.close()
    except Exception:
        logger.debug("Store close failed.", exc_info=True)


async def _run(state: AppState) -> None:
    try:
        if state.settings.console_enabled:
            await run_console_loop(state)
        else:
            logger.info("Console disabled; nothing to run.")
    finally:
        pending = len(state.coordinator.inflight)
        if pending:
            logger.info("Waiting for %d enrichment run(s) to finish...", pending)
            try:
                await asyncio.wait_for(state.coordinator.drain(), timeout=SHUTDOWN_GRACE_SECONDS)
            except asyncio.TimeoutError:
                logger.warning("Enrichment still running after %.0fs; leaving it unfinished.", SHUTDOWN_GRACE_SECONDS)


def main() -> None:
    settings = get_settings()

    # choose console log level from settings.log_level
    level_name = str(getattr(settings, "log_level", "INFO")).upper()
    console_level = getattr(logging, level_name, logging.INFO)

    setup_logging(log_dir=settings.data_dir, console_level=console_level)

    # keep noisy libs readable
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)

    logger.info("Starting %s...", settings.app_name)

    # IMPORTANT: reuse same settings object
    state = create_initial_state(settings=settings)

    try:
        asyncio.run(_run(state))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down...")
    finally:
        _shutdown(state)
        logger.info("Bye.")


if __name__ == "__main__":
    main()
