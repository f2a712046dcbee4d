"""Centralized logging for backend calls, failovers and evolution cycles."""

import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from loguru import logger

from kajig.config import settings

LOG_DIR = Path("logs")
LOG_DIR.mkdir(exist_ok=True)

logger.remove()

logger.add(
    sys.stderr,
    format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
    level=settings.app_log_level.upper(),
    colorize=True,
)

logger.add(
    LOG_DIR / "kajig_{time:YYYY-MM-DD}.log",
    format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}",
    level="DEBUG",
    rotation="00:00",
    retention="7 days",
    compression="zip",
)

# Framework and network libraries log through stdlib logging
import logging

for logger_name in (
    "uvicorn",
    "uvicorn.error",
    "uvicorn.access",
    "fastapi",
    "sse_starlette.sse",
    "httpx",
    "httpcore",
    "openai._base_client",
    "asyncio",
):
    logging.getLogger(logger_name).setLevel(settings.noisy_log_level.upper())


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def log_backend_call(
    backend_id: str,
    caller: str,
    duration_ms: int = 0,
    status: str = "success",
    error: Optional[str] = None,
) -> None:
    """Log a single backend chat call."""
    call_data = {
        "timestamp": _now(),
        "backend_id": backend_id,
        "caller": caller,
        "duration_ms": duration_ms,
        "status": status,
        "error": error,
    }
    if error:
        logger.error(f"BACKEND_CALL_FAILED: {call_data}")
    else:
        logger.info(f"BACKEND_CALL: {call_data}")


def log_switch(from_id: str, to_id: str, reason: str) -> None:
    """Log a backend failover."""
    switch_data = {
        "timestamp": _now(),
        "from": from_id,
        "to": to_id,
        "reason": reason,
    }
    logger.warning(f"BACKEND_SWITCH: {switch_data}")


def log_evolution_cycle(
    cycle: int,
    candidates: int,
    derived: int,
    failed: int = 0,
) -> None:
    """Log the outcome of one evolution cycle."""
    cycle_data = {
        "timestamp": _now(),
        "cycle": cycle,
        "candidates": candidates,
        "derived": derived,
        "failed": failed,
    }
    logger.info(f"EVOLUTION_CYCLE: {cycle_data}")


def log_event(
    event_type: str,
    message: str,
    **kwargs,
) -> None:
    """Log a generic event."""
    event_data = {
        "timestamp": _now(),
        "event_type": event_type,
        "message": message,
        **kwargs,
    }
    logger.info(f"EVENT: {event_data}")
