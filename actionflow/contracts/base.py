"""
Base Contracts and Shared Types

These are the foundational types used across all layers.
Data types here are IMMUTABLE and represent pure data.

BOUNDARY ENFORCEMENT:
=====================
- This module is READ-ONLY from all layers
- Layers may import types but MUST NOT modify this module
- Errors that are stored (log records, audit) are frozen dataclasses
- Errors that are surfaced to a caller are ActionFlowError subclasses
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Tuple
from enum import Enum, auto


# Label assigned to an observation that carries neither an action nor an object.
UNKNOWN_LABEL = "<unknown>"


# =============================================================================
# ERROR STATES (Explicit, never silent)
# =============================================================================

class ErrorCode(Enum):
    """
    Explicit error codes for deterministic error handling.
    No silent fallbacks - every error state is enumerated.
    """
    # Observation errors
    MALFORMED_OBSERVATION = auto()

    # Preset errors
    INVALID_PRESET = auto()
    PRESET_NOT_FOUND = auto()

    # Execution errors
    UNMAPPED_LABEL = auto()
    INVALID_STATE_TRANSITION = auto()
    QUOTA_EXCEEDED = auto()

    # Session errors
    SESSION_NOT_FOUND = auto()
    SESSION_CONFLICT = auto()


@dataclass(frozen=True)
class Error:
    """
    Immutable error representation with full context.
    Errors are data, not exceptions - they can be stored and queried.
    """
    code: ErrorCode
    message: str
    timestamp: datetime
    context: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)

    def with_context(self, key: str, value: str) -> Error:
        """Return new Error with additional context (immutable)."""
        return Error(
            code=self.code,
            message=self.message,
            timestamp=self.timestamp,
            context=self.context + ((key, value),)
        )


# =============================================================================
# TEMPORAL TYPES
# =============================================================================

@dataclass(frozen=True)
class Timestamp:
    """
    Wall-clock timestamp for audit records.
    All timestamps are UTC, never local time.

    Frame timestamps inside observations are plain floats (seconds on
    the detector clock); this type is only for when the engine did
    something.
    """
    value: datetime

    def __post_init__(self):
        if self.value.tzinfo is None:
            object.__setattr__(self, 'value', self.value.replace(tzinfo=timezone.utc))

    @staticmethod
    def now() -> Timestamp:
        return Timestamp(value=datetime.now(timezone.utc))

    def to_iso(self) -> str:
        return self.value.isoformat()


# =============================================================================
# EXCEPTIONS (Caller-facing failures)
# =============================================================================

class ActionFlowError(Exception):
    """
    Base class for every failure this package raises.

    Each subclass is bound to one ErrorCode so a caller can convert
    the exception into a storable Error record with to_error().
    """
    code: ErrorCode = ErrorCode.INVALID_STATE_TRANSITION

    def __init__(self, message: str, context: Tuple[Tuple[str, str], ...] = ()):
        super().__init__(message)
        self.message = message
        self.context = tuple(context)

    def to_error(self) -> Error:
        return Error(
            code=self.code,
            message=self.message,
            timestamp=datetime.now(timezone.utc),
            context=self.context
        )


class MalformedObservation(ActionFlowError):
    """Observation failed validation and was not admitted."""
    code = ErrorCode.MALFORMED_OBSERVATION


class InvalidPreset(ActionFlowError):
    """Preset definition is structurally invalid."""
    code = ErrorCode.INVALID_PRESET


class PresetNotFound(ActionFlowError):
    code = ErrorCode.PRESET_NOT_FOUND


class UnmappedLabel(ActionFlowError):
    """A segment label has no target node in the bound preset."""
    code = ErrorCode.UNMAPPED_LABEL

    def __init__(self, label: str, preset_id: str):
        super().__init__(
            f"Label '{label}' has no target node in preset '{preset_id}'",
            context=(("label", label), ("preset_id", preset_id))
        )
        self.label = label
        self.preset_id = preset_id


class SessionNotFound(ActionFlowError):
    code = ErrorCode.SESSION_NOT_FOUND


class SessionConflict(ActionFlowError):
    code = ErrorCode.SESSION_CONFLICT
