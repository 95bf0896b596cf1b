"""Loguru setup and the one-line structured log records the pipeline emits."""

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from deepcite.config import Settings

NOISY_LOGGERS = (
    "httpx",
    "httpcore",
    "hpack",
    "openai",
    "openai._base_client",
    "chromadb",
    "chromadb.telemetry",
    "asyncpg",
    "asyncio",
)

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}"

_configured = False


def setup_logging(settings: Settings) -> None:
    """Install console and daily file sinks. Later calls are no-ops."""
    global _configured
    if _configured:
        return

    log_dir = Path(settings.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    logger.remove()
    logger.add(sys.stderr, format=CONSOLE_FORMAT, level=settings.app_log_level.upper(), colorize=True)
    logger.add(
        log_dir / "deepcite_{time:YYYY-MM-DD}.log",
        format=FILE_FORMAT,
        level="DEBUG",
        rotation="00:00",
        retention="7 days",
        compression="zip",
    )

    for logger_name in NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(settings.noisy_log_level.upper())

    _configured = True


def _emit(tag: str, payload: dict[str, Any], *, failed: bool = False) -> None:
    record = {"timestamp": datetime.now(timezone.utc).isoformat(), **payload}
    if failed:
        logger.error(f"{tag}_FAILED: {record}")
    else:
        logger.info(f"{tag}: {record}")


def log_llm_call(
    model: str,
    caller: str,
    input_tokens: int = 0,
    output_tokens: int = 0,
    duration_ms: int = 0,
    status: str = "success",
    error: Optional[str] = None,
) -> None:
    """Record one model or embedding request with token usage and latency."""
    _emit(
        "LLM_CALL",
        {
            "model": model,
            "caller": caller,
            "input_tokens": input_tokens,
            "output_tokens": output_tokens,
            "total_tokens": input_tokens + output_tokens,
            "duration_ms": duration_ms,
            "status": status,
            "error": error,
        },
        failed=bool(error),
    )


def log_research_step(
    session_id: str,
    stage: str,
    status: str,
    data: Optional[dict] = None,
) -> None:
    _emit(
        "RESEARCH_STEP",
        {"session_id": session_id, "stage": stage, "status": status, "data": data},
        failed=status == "error",
    )


def log_checkpoint(
    session_id: str,
    stage: str,
    backend: str,
    error: Optional[str] = None,
) -> None:
    _emit(
        "CHECKPOINT",
        {"session_id": session_id, "stage": stage, "backend": backend, "error": error},
        failed=bool(error),
    )


def log_event(event_type: str, message: str, **kwargs: Any) -> None:
    _emit("EVENT", {"event_type": event_type, "message": message, **kwargs})
