"""
Contracts shared by every layer.

Immutable data types, the error taxonomy and the observation model.
Layers import from here and never from each other's internals.
"""

from .base import (
    UNKNOWN_LABEL,
    ErrorCode, Error, Timestamp,
    ActionFlowError, MalformedObservation, InvalidPreset, PresetNotFound,
    UnmappedLabel, SessionNotFound, SessionConflict,
)
from .observation import BoundingRegion, Observation, ObservationNormalizer
from .events import (
    Segment, SegmentationResult,
    Transition, RejectedTransition, UnmappedLabelRecord, LogRecord,
    SessionStatus, QuotaDecision, QuotaStatus, BudgetAlarm,
    AuditEventType, AuditLogEntry,
)

__all__ = [
    'UNKNOWN_LABEL',
    'ErrorCode', 'Error', 'Timestamp',
    'ActionFlowError', 'MalformedObservation', 'InvalidPreset', 'PresetNotFound',
    'UnmappedLabel', 'SessionNotFound', 'SessionConflict',
    'BoundingRegion', 'Observation', 'ObservationNormalizer',
    'Segment', 'SegmentationResult',
    'Transition', 'RejectedTransition', 'UnmappedLabelRecord', 'LogRecord',
    'SessionStatus', 'QuotaDecision', 'QuotaStatus', 'BudgetAlarm',
    'AuditEventType', 'AuditLogEntry',
]
