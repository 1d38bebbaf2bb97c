from __future__ import annotations

from contextvars import ContextVar

import structlog

employee_id_ctx: ContextVar[str | None] = ContextVar("employee_id", default=None)


def set_request_context(employee_id: str | None) -> None:
    employee_id_ctx.set(employee_id)
    structlog.contextvars.bind_contextvars(actor_id=employee_id)


def get_employee_id() -> str | None:
    return employee_id_ctx.get()


def clear_request_context() -> None:
    employee_id_ctx.set(None)
    structlog.contextvars.clear_contextvars()
