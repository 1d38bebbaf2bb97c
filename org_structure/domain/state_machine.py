from __future__ import annotations

from enum import StrEnum


class StructureRequestStatus(StrEnum):
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    UNDER_REVIEW = "UNDER_REVIEW"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELED = "CANCELED"


# Historical rows may carry this value, in any letter case.
LEGACY_PENDING_STATUS = "PENDING"

ALLOWED_TRANSITIONS: dict[StructureRequestStatus, set[StructureRequestStatus]] = {
    StructureRequestStatus.DRAFT: {
        StructureRequestStatus.SUBMITTED,
        StructureRequestStatus.CANCELED,
    },
    StructureRequestStatus.SUBMITTED: {
        StructureRequestStatus.UNDER_REVIEW,
        StructureRequestStatus.APPROVED,
        StructureRequestStatus.REJECTED,
        StructureRequestStatus.CANCELED,
    },
    StructureRequestStatus.UNDER_REVIEW: {
        StructureRequestStatus.APPROVED,
        StructureRequestStatus.REJECTED,
        StructureRequestStatus.CANCELED,
    },
    StructureRequestStatus.APPROVED: set(),
    StructureRequestStatus.REJECTED: set(),
    StructureRequestStatus.CANCELED: set(),
}

# Terminal, non-terminal, cancelable and actionable sets are read off the table.
TERMINAL_STATUSES: frozenset[str] = frozenset(
    status for status, targets in ALLOWED_TRANSITIONS.items() if not targets
)
NON_TERMINAL_STATUSES: frozenset[str] = frozenset(
    {*(status for status, targets in ALLOWED_TRANSITIONS.items() if targets), LEGACY_PENDING_STATUS}
)
CANCELABLE_STATUSES: frozenset[str] = frozenset(
    {
        *(
            status
            for status, targets in ALLOWED_TRANSITIONS.items()
            if StructureRequestStatus.CANCELED in targets
        ),
        LEGACY_PENDING_STATUS,
    }
)
ACTIONABLE_STATUSES: frozenset[str] = frozenset(
    {
        *(
            status
            for status, targets in ALLOWED_TRANSITIONS.items()
            if {StructureRequestStatus.APPROVED, StructureRequestStatus.REJECTED} <= targets
        ),
        LEGACY_PENDING_STATUS,
    }
)
EDITABLE_STATUSES: frozenset[str] = frozenset(
    {
        StructureRequestStatus.DRAFT,
        StructureRequestStatus.SUBMITTED,
    }
)
PENDING_REVIEW_STATUSES: frozenset[str] = frozenset(
    {
        StructureRequestStatus.SUBMITTED,
        StructureRequestStatus.UNDER_REVIEW,
    }
)


def normalize_status(status: str | None) -> str:
    return (status or "").strip().upper()


def can_transition(source: str, target: StructureRequestStatus) -> bool:
    normalized = normalize_status(source)
    if normalized == LEGACY_PENDING_STATUS:
        normalized = StructureRequestStatus.SUBMITTED
    try:
        source_state = StructureRequestStatus(normalized)
    except ValueError:
        return False
    return target in ALLOWED_TRANSITIONS.get(source_state, set())


def is_editable(status: str) -> bool:
    return normalize_status(status) in EDITABLE_STATUSES


def is_actionable(status: str) -> bool:
    """Whether an approval decision may still be recorded.

    Comparison is case-insensitive so rows written before the status enum was
    introduced (``pending``, ``Submitted``) keep working.
    """
    return normalize_status(status) in ACTIONABLE_STATUSES
