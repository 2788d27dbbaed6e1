# src/tracking/state_machine.py — v1
"""File lifecycle state machine.

    discovered → queued → processing → completed
         │         │            └────→ failed ⇄ retrying → processing
         └─────────┴──→ skipped

``failed`` is terminal unless the orchestrator moves it to ``retrying``
(automatic retry with budget left, or a manual retry).
"""

from __future__ import annotations

from callbatch.core.errors import InvalidTransition
from callbatch.core.models import FileStatus

TRANSITIONS: dict[FileStatus, frozenset[FileStatus]] = {
    FileStatus.DISCOVERED: frozenset({FileStatus.QUEUED, FileStatus.SKIPPED}),
    FileStatus.QUEUED: frozenset({FileStatus.PROCESSING, FileStatus.SKIPPED}),
    FileStatus.PROCESSING: frozenset({FileStatus.COMPLETED, FileStatus.FAILED}),
    FileStatus.FAILED: frozenset({FileStatus.RETRYING}),
    FileStatus.RETRYING: frozenset({FileStatus.PROCESSING, FileStatus.FAILED}),
    FileStatus.COMPLETED: frozenset(),
    FileStatus.SKIPPED: frozenset(),
}

# States that end a processing attempt; ``failed`` may still be retried.
SETTLED_STATES: frozenset[FileStatus] = frozenset(
    {FileStatus.COMPLETED, FileStatus.FAILED, FileStatus.SKIPPED}
)

# States a worker may still act on.
ACTIVE_STATES: frozenset[FileStatus] = frozenset(
    {FileStatus.DISCOVERED, FileStatus.QUEUED, FileStatus.PROCESSING, FileStatus.RETRYING}
)

STATUS_DESCRIPTIONS: dict[FileStatus, str] = {
    FileStatus.DISCOVERED: "File discovered in external folder",
    FileStatus.QUEUED: "File queued for processing",
    FileStatus.PROCESSING: "File currently being processed",
    FileStatus.COMPLETED: "File processing completed successfully",
    FileStatus.FAILED: "File processing failed",
    FileStatus.RETRYING: "File being retried after failure",
    FileStatus.SKIPPED: "File skipped due to validation issues",
}


def can_transition(from_status: FileStatus, to_status: FileStatus) -> bool:
    return FileStatus(to_status) in TRANSITIONS[FileStatus(from_status)]


def check_transition(
    record_id: int | None, from_status: FileStatus, to_status: FileStatus
) -> None:
    """Raise InvalidTransition unless ``from → to`` is allowed."""
    if not can_transition(from_status, to_status):
        raise InvalidTransition(record_id, FileStatus(from_status).value, FileStatus(to_status).value)


def is_valid_path(statuses: list[FileStatus]) -> bool:
    """True if a status sequence starts at ``discovered`` and only takes allowed moves."""
    if not statuses or statuses[0] != FileStatus.DISCOVERED:
        return False
    return all(can_transition(a, b) for a, b in zip(statuses, statuses[1:]))
