"""Loguru setup plus structured log helpers for the search pipeline.

Importing this module configures the sinks once. Each helper writes a
single line tagged with an upper-case kind (``LLM_CALL``, ``PROVIDER_CALL``,
``PIPELINE_STEP``, ``EVENT``) followed by a dict payload, so the daily log
files can be grepped per kind.
"""

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from supersearch.config import settings

LOG_DIR = Path(settings.log_dir)
LOG_DIR.mkdir(parents=True, exist_ok=True)

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> <level>{level: <7}</level> "
    "<cyan>{name}</cyan> {message}"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} {level: <7} {name}:{line} {message}"

NOISY_LOGGERS = (
    "uvicorn.access",
    "sse_starlette.sse",
    "httpx",
    "httpcore",
    "openai._base_client",
    "asyncpg",
)

logger.remove()
logger.add(sys.stderr, format=CONSOLE_FORMAT, level=settings.app_log_level.upper())
logger.add(
    LOG_DIR / "supersearch_{time:YYYY-MM-DD}.log",
    format=FILE_FORMAT,
    level="DEBUG",
    rotation="00:00",
    retention="14 days",
    enqueue=True,
)

for _name in NOISY_LOGGERS:
    logging.getLogger(_name).setLevel(settings.noisy_log_level.upper())


def _emit(kind: str, payload: dict[str, Any], *, failed: bool = False, level: str = "ERROR") -> None:
    payload = {"timestamp": datetime.now(timezone.utc).isoformat(), **payload}
    if failed:
        logger.opt(depth=1).log(level, f"{kind}_FAILED: {payload}")
    else:
        logger.opt(depth=1).info(f"{kind}: {payload}")


def log_llm_call(
    model: str,
    caller: str,
    input_tokens: int = 0,
    output_tokens: int = 0,
    duration_ms: int = 0,
    status: str = "success",
    error: Optional[str] = None,
) -> None:
    """One request to the structured-output service, with token usage."""
    _emit(
        "LLM_CALL",
        {
            "model": model,
            "caller": caller,
            "tokens": {"in": input_tokens, "out": output_tokens},
            "duration_ms": duration_ms,
            "status": status,
            "error": error,
        },
        failed=error is not None,
    )


def log_provider_call(
    provider: str,
    entity: str,
    duration_ms: int,
    status: str = "success",
    chars: int = 0,
    error: Optional[str] = None,
) -> None:
    # Provider failures are recovered per entity, so they log as warnings.
    _emit(
        "PROVIDER_CALL",
        {
            "provider": provider,
            "entity": entity,
            "duration_ms": duration_ms,
            "status": status,
            "chars": chars,
            "error": error,
        },
        failed=error is not None,
        level="WARNING",
    )


def log_pipeline_step(
    run_id: str,
    phase: str,
    status: str,
    data: Optional[dict] = None,
) -> None:
    _emit("PIPELINE_STEP", {"run_id": run_id, "phase": phase, "status": status, "data": data or {}})


def log_event(event_type: str, message: str, **fields: Any) -> None:
    _emit("EVENT", {"event_type": event_type, "message": message, **fields})
