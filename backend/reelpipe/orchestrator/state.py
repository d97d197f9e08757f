"""State machine constants and transition logic for the reel orchestrator.

A job's status is a closed set of kinds with a payload on exactly one of
them (the failure reason). Progress is derived from the status and is
never stored independently of it.
"""

from enum import Enum
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, model_validator


class StatusKind(str, Enum):
    """Persisted status discriminators, in pipeline order."""

    PROCESSING = "processing"
    ANALYZING = "analyzing"
    GENERATING_VOICEOVER = "generatingVoiceover"
    GATHERING_VISUALS = "gatheringVisuals"
    ASSEMBLING_VIDEO = "assemblingVideo"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


# Pipeline states in execution order
PIPELINE_STATES = {
    StatusKind.PROCESSING: "Job accepted, run starting",
    StatusKind.ANALYZING: "Breaking the script into a scene timeline",
    StatusKind.GENERATING_VOICEOVER: "Synthesizing narration audio",
    StatusKind.GATHERING_VISUALS: "Searching and downloading stock media",
    StatusKind.ASSEMBLING_VIDEO: "Compositing scenes and audio into one video",
    StatusKind.FINALIZING: "Uploading video and thumbnail",
    StatusKind.COMPLETED: "Video available",
    StatusKind.FAILED: "Pipeline encountered unrecoverable error",
    StatusKind.CANCELLED: "Cancelled by the owner",
}

# State transitions for active pipeline steps
STEP_TRANSITIONS = {
    StatusKind.PROCESSING: StatusKind.ANALYZING,
    StatusKind.ANALYZING: StatusKind.GENERATING_VOICEOVER,
    StatusKind.GENERATING_VOICEOVER: StatusKind.GATHERING_VISUALS,
    StatusKind.GATHERING_VISUALS: StatusKind.ASSEMBLING_VIDEO,
    StatusKind.ASSEMBLING_VIDEO: StatusKind.FINALIZING,
    StatusKind.FINALIZING: StatusKind.COMPLETED,
}

_PROGRESS: Dict[StatusKind, float] = {
    StatusKind.PROCESSING: 0.0,
    StatusKind.ANALYZING: 0.1,
    StatusKind.GENERATING_VOICEOVER: 0.3,
    StatusKind.GATHERING_VISUALS: 0.5,
    StatusKind.ASSEMBLING_VIDEO: 0.7,
    StatusKind.FINALIZING: 0.9,
    StatusKind.COMPLETED: 1.0,
    # Progress is not preserved on abort
    StatusKind.FAILED: 0.0,
    StatusKind.CANCELLED: 0.0,
}

TERMINAL_KINDS = frozenset({StatusKind.COMPLETED, StatusKind.FAILED, StatusKind.CANCELLED})

# Statuses an external actor may cancel from
CANCELLABLE_KINDS = frozenset(StatusKind) - TERMINAL_KINDS

_ORDER = {kind: index for index, kind in enumerate(StatusKind)}


class StatusDecodeError(ValueError):
    """Raised when a persisted record carries an unrecognized status."""


class Status(BaseModel):
    """Immutable job status value.

    Two failed statuses with different reasons compare unequal, but both
    are terminal failures.
    """

    model_config = ConfigDict(frozen=True)

    kind: StatusKind
    reason: Optional[str] = None

    @model_validator(mode="after")
    def _reason_only_on_failure(self) -> "Status":
        if self.kind is StatusKind.FAILED:
            if self.reason is None:
                raise ValueError("failed status requires a reason")
        elif self.reason is not None:
            raise ValueError(f"status '{self.kind.value}' cannot carry a reason")
        return self

    def __str__(self) -> str:
        if self.kind is StatusKind.FAILED:
            return f"failed({self.reason})"
        return self.kind.value


PROCESSING = Status(kind=StatusKind.PROCESSING)
ANALYZING = Status(kind=StatusKind.ANALYZING)
GENERATING_VOICEOVER = Status(kind=StatusKind.GENERATING_VOICEOVER)
GATHERING_VISUALS = Status(kind=StatusKind.GATHERING_VISUALS)
ASSEMBLING_VIDEO = Status(kind=StatusKind.ASSEMBLING_VIDEO)
FINALIZING = Status(kind=StatusKind.FINALIZING)
COMPLETED = Status(kind=StatusKind.COMPLETED)
CANCELLED = Status(kind=StatusKind.CANCELLED)


def failed(reason: str) -> Status:
    """Build a failure status carrying a human-readable reason."""
    return Status(kind=StatusKind.FAILED, reason=reason)


def progress_for(status: Status) -> float:
    """Return the fixed progress fraction for a status."""
    return _PROGRESS[status.kind]


def is_terminal(status: Status) -> bool:
    """Check if no further transition may occur from this status."""
    return status.kind in TERMINAL_KINDS


def is_failure(status: Status) -> bool:
    return status.kind is StatusKind.FAILED


def next_status(status: Status) -> Optional[Status]:
    """Return the successor in the fixed pipeline order, or None when terminal."""
    successor = STEP_TRANSITIONS.get(status.kind)
    if successor is None:
        return None
    return Status(kind=successor)


def precedes(earlier: Status, later: Status) -> bool:
    """Check if `earlier` comes strictly before `later` in pipeline order.

    Terminal kinds are ordered after every active kind.
    """
    return _ORDER[earlier.kind] < _ORDER[later.kind]


def to_record(status: Status) -> Dict[str, Any]:
    """Serialize a status into its persisted fields.

    Returns:
        Dict with the ``status`` discriminator, the ``error`` reason (None
        unless failed) and the derived ``progress``.
    """
    return {
        "status": status.kind.value,
        "error": status.reason if status.kind is StatusKind.FAILED else None,
        "progress": progress_for(status),
    }


def from_record(record: Mapping[str, Any]) -> Status:
    """Decode a status from its persisted fields.

    ``error`` is ignored for non-failure discriminators; a failure record
    without an error decodes to an empty reason.

    Raises:
        StatusDecodeError: If the discriminator is missing or unrecognized.
    """
    raw = record.get("status")
    try:
        kind = StatusKind(raw)
    except ValueError as e:
        raise StatusDecodeError(f"Unrecognized status discriminator: {raw!r}") from e

    if kind is StatusKind.FAILED:
        return failed(record.get("error") or "")
    return Status(kind=kind)
