"""
Temporal Layer

RESPONSIBILITY: Apply segments to a session's state machine, in order
ALLOWED INPUTS: Segments, an immutable Preset, a session Quota
OUTPUTS: StateMachineLog (hash-chained), SessionStatus

WHAT THIS LAYER MUST NOT DO:
============================
- Re-segment observations
- Edit or delete log entries
- Share a StateMachine between sessions
"""

from .transition_log import LogEntry, LogState, StateMachineLog
from .state_machine import ExecutionConfig, StateMachine

__all__ = [
    'LogEntry',
    'LogState',
    'StateMachineLog',
    'ExecutionConfig',
    'StateMachine',
]
