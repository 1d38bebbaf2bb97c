from __future__ import annotations

from typing import Any


class OrgStructureError(Exception):
    pass


class NotFoundError(OrgStructureError):
    pass


class ConflictError(OrgStructureError):
    pass


class InvalidArgumentError(OrgStructureError):
    pass


class PreconditionFailedError(OrgStructureError):
    """A structural rule blocks the operation, e.g. dependents still attached."""

    def __init__(self, reason_code: str, message: str, detail: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.reason_code = reason_code
        self.message = message
        self.detail = detail or {}

    def to_body(self) -> dict[str, Any]:
        return {
            "reason_code": self.reason_code,
            "message": self.message,
            "detail": self.detail,
        }
