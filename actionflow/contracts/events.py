"""
Event Contracts

Immutable records exchanged between layers:

- Segment / SegmentationResult   (segmentation -> state machine)
- Transition / RejectedTransition / UnmappedLabelRecord
                                 (state machine -> transition log)
- QuotaStatus / BudgetAlarm      (quota enforcer -> callers)
- AuditLogEntry                  (all layers -> observability)

All types are frozen dataclasses. Nothing here has behavior beyond
derived properties.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple, Union

from .base import Error, Timestamp


# =============================================================================
# SEGMENTATION OUTPUT
# =============================================================================

@dataclass(frozen=True)
class Segment:
    """
    Contiguous run of observations assigned one dominant label.

    start_frame / end_frame are inclusive positions inside the window
    that was segmented. first_frame_index / last_frame_index are the
    detector frame numbers at those positions.
    """
    start_frame: int
    end_frame: int
    dominant_label: str
    mean_confidence: float
    cost: float
    first_frame_index: int
    last_frame_index: int
    start_timestamp: float
    end_timestamp: float

    def __post_init__(self):
        if self.start_frame > self.end_frame:
            raise ValueError("Segment start_frame must be <= end_frame")
        if self.end_timestamp < self.start_timestamp:
            raise ValueError("Segment end_timestamp must be >= start_timestamp")

    @property
    def length(self) -> int:
        return self.end_frame - self.start_frame + 1

    @property
    def span(self) -> float:
        return self.end_timestamp - self.start_timestamp


@dataclass(frozen=True)
class SegmentationResult:
    """Output of one segmentation pass over a closed window."""
    session_id: str
    preset_id: str
    segments: Tuple[Segment, ...]
    observation_count: int
    total_cost: float
    result_hash: str

    @property
    def boundaries(self) -> Tuple[int, ...]:
        """Start positions of every segment after the first."""
        return tuple(s.start_frame for s in self.segments[1:])

    @property
    def labels(self) -> Tuple[str, ...]:
        return tuple(s.dominant_label for s in self.segments)


# =============================================================================
# STATE MACHINE LOG RECORDS
# =============================================================================

@dataclass(frozen=True)
class Transition:
    """
    Accepted state change.

    coerced_from is set when the segment's own target was rejected and
    the configured fallback node was entered instead.
    """
    from_node_id: str
    to_node_id: str
    segment: Segment
    accepted_at: int
    coerced_from: Optional[str] = None

    @property
    def is_self_loop(self) -> bool:
        return self.from_node_id == self.to_node_id


@dataclass(frozen=True)
class RejectedTransition:
    """Attempted but disallowed state change. Recorded, never dropped."""
    from_node_id: str
    attempted_node_id: str
    segment: Segment
    recorded_at: int
    reason: str


@dataclass(frozen=True)
class UnmappedLabelRecord:
    """Segment whose label resolved to no node of the preset."""
    segment: Segment
    label: str
    recorded_at: int
    error: Error


LogRecord = Union[Transition, RejectedTransition, UnmappedLabelRecord]


# =============================================================================
# SESSION AND QUOTA STATUS
# =============================================================================

class SessionStatus(Enum):
    """
    Lifecycle of one state machine run.

    IDLE -> RUNNING -> (COMPLETED | INCOMPLETE | QUOTA_EXCEEDED | ABORTED)
    A session may return to RUNNING from COMPLETED or INCOMPLETE when
    another window is advanced. QUOTA_EXCEEDED and ABORTED are final.
    """
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    INCOMPLETE = "incomplete"
    QUOTA_EXCEEDED = "quota_exceeded"
    ABORTED = "aborted"

    @property
    def is_final(self) -> bool:
        return self in (SessionStatus.QUOTA_EXCEEDED, SessionStatus.ABORTED)


class QuotaDecision(Enum):
    ALLOW = "allow"
    DENY = "deny"


@dataclass(frozen=True)
class BudgetAlarm:
    """A node whose accumulated dwell went past its upper budget."""
    node_id: str
    dwell: float
    upper: float

    @property
    def overrun(self) -> float:
        return self.dwell - self.upper


@dataclass(frozen=True)
class QuotaStatus:
    """Read-only snapshot of a session's quota."""
    max_transitions: Optional[int]
    max_span: Optional[float]
    consumed_transitions: int
    consumed_span: float
    exceeded: bool
    node_dwell: Tuple[Tuple[str, float], ...] = field(default_factory=tuple)
    alarms: Tuple[BudgetAlarm, ...] = field(default_factory=tuple)

    @property
    def is_unlimited(self) -> bool:
        return self.max_transitions is None and self.max_span is None

    @property
    def remaining_transitions(self) -> Optional[int]:
        if self.max_transitions is None:
            return None
        return self.max_transitions - self.consumed_transitions

    @property
    def remaining_span(self) -> Optional[float]:
        if self.max_span is None:
            return None
        return self.max_span - self.consumed_span


# =============================================================================
# AUDIT
# =============================================================================

class AuditEventType(Enum):
    SESSION_LIFECYCLE = "session_lifecycle"
    SEGMENTATION = "segmentation"
    STATE_CHANGE = "state_change"
    REJECTION = "rejection"
    QUOTA = "quota"
    ERROR = "error"


@dataclass(frozen=True)
class AuditLogEntry:
    """Immutable audit record collected by the observability layer."""
    entry_id: str
    event_type: AuditEventType
    timestamp: Timestamp
    layer: str
    action: str
    entity_id: Optional[str] = None
    metadata: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)
