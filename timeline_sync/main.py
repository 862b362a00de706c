"""
Timeline Sync - command line entry point.

Starts a TimelineEngine against the configured backends and logs every
published view until interrupted.

Usage:
    python -m timeline_sync.main [--token TOKEN] [--app-scope SCOPE]

Configuration is via TIMELINE_* environment variables.
See config.py for all available settings.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from typing import Optional, Sequence

import json_log_formatter

from .config import Settings
from .context import EngineContext
from .engine import TimelineEngine
from .errors import AuthError
from .models import SyncState

logger = logging.getLogger(__name__)


def setup_logging(settings: Settings) -> None:
    """Configure logging based on configuration.

    Args:
        settings: Engine settings
    """
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    if settings.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("aiobotocore").setLevel(logging.WARNING)


def log_state(state: SyncState) -> None:
    """Log a published view."""
    logger.info(
        f"View {state.status.value}: {len(state.entries)} entries",
        extra={
            "status": state.status.value,
            "uid": state.identity.uid if state.identity else None,
            "entries": len(state.entries),
            "notes": sum(len(entry.notes) for entry in state.entries),
            "error": str(state.error) if state.error else None,
        },
    )
    for entry in state.entries:
        created = entry.created_at.isoformat() if entry.created_at else "pending"
        logger.debug(f"  [{created}] {entry.title} ({len(entry.notes)} notes)")


async def run(settings: Settings, token: Optional[str] = None) -> int:
    """Run the engine until SIGINT/SIGTERM."""
    settings.log_config()
    context = await EngineContext.from_settings(settings)
    stop = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    async with TimelineEngine(context, on_state=log_state) as engine:
        try:
            identity = await engine.start(token)
        except AuthError as e:
            logger.error(f"Could not establish identity: {e}")
            return 1

        logger.info("Watching timeline", extra={"uid": identity.uid})
        await stop.wait()

    logger.info("Shutdown complete")
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Watch a synchronized timeline")
    parser.add_argument("--token", help="Sign-in token (anonymous when omitted)")
    parser.add_argument("--app-scope", help="Override TIMELINE_APP_SCOPE")
    args = parser.parse_args(argv)

    settings = Settings()
    if args.app_scope:
        settings = settings.model_copy(update={"app_scope": args.app_scope})

    setup_logging(settings)
    return asyncio.run(run(settings, args.token))


if __name__ == "__main__":
    sys.exit(main())
