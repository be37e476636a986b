"""
Action Flow Engine

Turns a time-ordered stream of per-frame vision detections into a clean
sequence of workflow states. The package is strictly layered; each layer
communicates only through explicit contracts.

LAYER STRUCTURE:
================

1. CONTRACTS (contracts/)
   - Immutable data types, error taxonomy, observation normalization
   - MUST NOT: Depend on any other layer

2. PRESET GRAPH (graph/)
   - Responsibility: Load and validate presets, adjacency, label mapping
   - Outputs: Immutable Preset shared by every session
   - MUST NOT: Track session state

3. SEGMENTATION (segmentation/)
   - Responsibility: Optimal DP partition of a closed observation window
   - Outputs: SegmentationResult (deterministic, hashed)
   - MUST NOT: Know about presets or nodes

4. QUOTA (quota/)
   - Responsibility: Atomic check-and-reserve, per-node dwell budgets
   - MUST NOT: Decide transition legality

5. TEMPORAL (temporal/)
   - Responsibility: State machine execution, hash-chained transition log
   - MUST NOT: Edit or delete committed log entries

6. OBSERVABILITY (observability/)
   - Responsibility: Logging setup, audit collection, dwell statistics
   - MUST NOT: Modify system behavior

engine.py composes the layers behind WorkflowEngine.ingest / advance.

Logging is silent until the host calls observability.configure_logging().
"""

from loguru import logger

from .contracts import (
    UNKNOWN_LABEL, ActionFlowError, MalformedObservation, InvalidPreset,
    PresetNotFound, UnmappedLabel, SessionNotFound, SessionConflict,
    Observation, ObservationNormalizer, Segment, SegmentationResult,
    Transition, RejectedTransition, UnmappedLabelRecord,
    SessionStatus, QuotaDecision, QuotaStatus,
)
from .graph import Preset, PresetRegistry, load_preset, load_preset_file, is_transition_allowed
from .segmentation import SegmentationConfig, SegmentPartitioner
from .quota import QuotaConfig, QuotaMode, QuotaEnforcer
from .temporal import ExecutionConfig, StateMachine, StateMachineLog
from .engine import EngineConfig, WorkflowEngine, SessionReport
from .observability import configure_logging

logger.disable("actionflow")

__version__ = "0.1.0"

__all__ = [
    'UNKNOWN_LABEL',
    'ActionFlowError', 'MalformedObservation', 'InvalidPreset', 'PresetNotFound',
    'UnmappedLabel', 'SessionNotFound', 'SessionConflict',
    'Observation', 'ObservationNormalizer', 'Segment', 'SegmentationResult',
    'Transition', 'RejectedTransition', 'UnmappedLabelRecord',
    'SessionStatus', 'QuotaDecision', 'QuotaStatus',
    'Preset', 'PresetRegistry', 'load_preset', 'load_preset_file', 'is_transition_allowed',
    'SegmentationConfig', 'SegmentPartitioner',
    'QuotaConfig', 'QuotaMode', 'QuotaEnforcer',
    'ExecutionConfig', 'StateMachine', 'StateMachineLog',
    'EngineConfig', 'WorkflowEngine', 'SessionReport',
    'configure_logging',
]
