from __future__ import annotations

import json
import logging
from typing import Any

from core.config import settings

_configured = False


def configure_logging(level: str | None = None) -> None:
    global _configured
    if _configured:
        return
    logging.basicConfig(
        level=getattr(logging, (level or settings.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    _configured = True


def _render(value: Any) -> str:
    if isinstance(value, (list, dict)):
        return json.dumps(value, default=str)
    return str(value)


def log_event(logger: logging.Logger, event: str, level: int = logging.INFO, **fields: Any) -> None:
    """Emit a structured event: `event key=value ...`, or one JSON object when log_json is set."""
    if not logger.isEnabledFor(level):
        return
    if settings.log_json:
        logger.log(level, json.dumps({"event": event, **fields}, default=str))
        return
    pairs = " ".join(f"{k}={_render(v)}" for k, v in fields.items())
    logger.log(level, "%s %s", event, pairs)
