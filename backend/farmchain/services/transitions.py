"""Batch status values and the allowed-transition table.

Status is stored as a free-form string.  The table below describes the
lifecycle the marketplace actually follows; it is only enforced when
``settings.enforce_status_transitions`` is on.  With enforcement off any
label may be written, which is what existing clients rely on.
"""

import enum

from farmchain.config import settings
from farmchain.exceptions import InvalidOperation


class BatchStatus(str, enum.Enum):
    PLANTED = "PLANTED"
    HARVESTED = "HARVESTED"
    SUBMITTED_FOR_APPROVAL = "SUBMITTED_FOR_APPROVAL"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    ACTIVE = "ACTIVE"
    MERGED = "MERGED"


# Distributors see HARVESTED batches in their pending queue, so approval
# and rejection are reachable without an explicit submit.
ALLOWED_TRANSITIONS: dict[BatchStatus, frozenset[BatchStatus]] = {
    BatchStatus.PLANTED: frozenset({BatchStatus.HARVESTED}),
    BatchStatus.HARVESTED: frozenset({
        BatchStatus.SUBMITTED_FOR_APPROVAL,
        BatchStatus.APPROVED,
        BatchStatus.REJECTED,
    }),
    BatchStatus.SUBMITTED_FOR_APPROVAL: frozenset({
        BatchStatus.APPROVED,
        BatchStatus.REJECTED,
    }),
    BatchStatus.APPROVED: frozenset({BatchStatus.ACTIVE, BatchStatus.MERGED}),
    BatchStatus.ACTIVE: frozenset({
        BatchStatus.SUBMITTED_FOR_APPROVAL,
        BatchStatus.APPROVED,
        BatchStatus.MERGED,
    }),
    BatchStatus.REJECTED: frozenset(),
    BatchStatus.MERGED: frozenset(),
}

TERMINAL_STATUSES = frozenset(
    status for status, successors in ALLOWED_TRANSITIONS.items() if not successors
)


def _coerce(value: str | None) -> BatchStatus | None:
    if value is None:
        return None
    try:
        return BatchStatus(value.strip().upper())
    except ValueError:
        return None


def is_allowed(current: str | None, new: str) -> bool:
    """Whether ``current → new`` appears in the transition table.

    A batch with no status yet may take any known status; writing the
    status a batch already has is always allowed.
    """
    target = _coerce(new)
    if target is None:
        return False
    source = _coerce(current)
    if source is None:
        return current is None
    if source == target:
        return True
    return target in ALLOWED_TRANSITIONS[source]


def check_transition(
    current: str | None,
    new: str,
    *,
    enforce: bool | None = None,
) -> None:
    """Raise InvalidOperation for a disallowed move when enforcement is on."""
    if enforce is None:
        enforce = settings.enforce_status_transitions
    if not enforce:
        return
    if not is_allowed(current, new):
        raise InvalidOperation(
            f"Status transition {current} -> {new} is not allowed",
            error_code="INVALID_TRANSITION",
        )
