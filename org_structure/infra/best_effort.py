from __future__ import annotations

from collections.abc import Callable
from typing import Any

import structlog

LOGGER = structlog.get_logger(__name__)


def best_effort(operation: str, func: Callable[..., Any], *args: Any, **kwargs: Any) -> bool:
    """Call a collaborator; log and swallow any failure.

    Returns ``True`` when the call completed.
    """
    try:
        func(*args, **kwargs)
    except Exception:
        LOGGER.warning("org.collaborator.failed", operation=operation, exc_info=True)
        return False
    return True
