"""
Observability & Audit Layer

RESPONSIBILITY: Logging setup, audit collection, step statistics
ALLOWED INPUTS: Audit entries and finished transition logs
OUTPUTS: AuditLogEntry lists, per-node dwell statistics

WHAT THIS LAYER MUST NOT DO:
============================
- Modify system behavior
- Filter or interpret events beyond what it is asked to report
- Make decisions based on logged data

BOUNDARY ENFORCEMENT:
=====================
- Receives immutable records, never references to mutable state
- Provides read-only access to what it collected
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple
import hashlib
import itertools
import sys
import threading

import numpy as np
from loguru import logger

# ONLY import from contracts - never from other layers' implementations
from ..contracts.base import Timestamp
from ..contracts.events import AuditEventType, AuditLogEntry, Transition


# =============================================================================
# LOGGING
# =============================================================================

_CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> | <level>{message}</level>"
)


def configure_logging(level: str = "INFO", sink=None, log_file: Optional[str] = None) -> List[int]:
    """
    Turn on this package's log output for a host application.

    The package disables its own logger on import; this enables it,
    replaces loguru's default handler and installs the given sink
    (stderr by default) plus an optional rotating file.

    Returns the loguru handler ids so the host can remove them.
    """
    logger.enable("actionflow")
    logger.remove()

    handler_ids = [logger.add(
        sink if sink is not None else sys.stderr,
        level=level,
        format=_CONSOLE_FORMAT,
        colorize=sink is None,
    )]
    if log_file:
        handler_ids.append(logger.add(
            log_file,
            level="DEBUG",
            format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{line} | {message}",
            rotation="10 MB",
            retention="7 days",
        ))
    return handler_ids


# =============================================================================
# AUDIT COLLECTOR
# =============================================================================

class AuditCollector:
    """
    Append-only collector of audit entries.

    Thread-safe; the engine feeds it from every session.
    """

    def __init__(self, layer_name: str = "engine"):
        self._layer_name = layer_name
        self._entries: List[AuditLogEntry] = []
        self._counter = itertools.count(1)
        self._lock = threading.Lock()

    def collect(self, entry: AuditLogEntry):
        """Collect an audit entry (append-only)."""
        with self._lock:
            self._entries.append(entry)

    def record(
        self,
        event_type: AuditEventType,
        action: str,
        entity_id: Optional[str] = None,
        metadata: Tuple[Tuple[str, str], ...] = ()
    ) -> AuditLogEntry:
        """Build and collect an entry for this collector's layer."""
        timestamp = Timestamp.now()
        digest = hashlib.sha256(
            f"{self._layer_name}_{action}|{entity_id}|{next(self._counter)}|"
            f"{timestamp.value.timestamp()}".encode()
        ).hexdigest()[:16]
        entry = AuditLogEntry(
            entry_id=f"audit_{digest}",
            event_type=event_type,
            timestamp=timestamp,
            layer=self._layer_name,
            action=action,
            entity_id=entity_id,
            metadata=tuple(metadata),
        )
        self.collect(entry)
        return entry

    def get_entries(
        self,
        event_type: Optional[AuditEventType] = None,
        entity_id: Optional[str] = None
    ) -> List[AuditLogEntry]:
        """Get entries, optionally filtered."""
        with self._lock:
            entries = list(self._entries)
        if event_type:
            entries = [e for e in entries if e.event_type == event_type]
        if entity_id:
            entries = [e for e in entries if e.entity_id == entity_id]
        return entries

    @property
    def layer_name(self) -> str:
        return self._layer_name

    @property
    def entry_count(self) -> int:
        return len(self._entries)


# =============================================================================
# STEP STATISTICS
# =============================================================================

@dataclass(frozen=True)
class NodeStatistics:
    """Dwell statistics of one node across accepted transitions."""
    node_id: str
    count: int
    mean_dwell: float
    std_dwell: float
    total_dwell: float


class StepStatistics:
    """
    Per-node dwell statistics over one or more sessions.

    Every accepted transition contributes its segment span as one
    dwell sample of the node it entered. Standard deviation is the
    sample deviation (ddof=1), 0 for a single sample.
    """

    def __init__(self):
        self._samples: Dict[str, List[float]] = {}

    @staticmethod
    def from_transitions(transitions: Iterable[Transition]) -> StepStatistics:
        stats = StepStatistics()
        stats.add_transitions(transitions)
        return stats

    def add_transitions(self, transitions: Iterable[Transition]):
        for transition in transitions:
            self._samples.setdefault(transition.to_node_id, []).append(transition.segment.span)

    def node(self, node_id: str) -> Optional[NodeStatistics]:
        samples = self._samples.get(node_id)
        if not samples:
            return None
        values = np.array(samples, dtype=float)
        return NodeStatistics(
            node_id=node_id,
            count=len(samples),
            mean_dwell=float(values.mean()),
            std_dwell=float(values.std(ddof=1)) if len(samples) > 1 else 0.0,
            total_dwell=float(values.sum()),
        )

    def summary(self) -> Tuple[NodeStatistics, ...]:
        return tuple(self.node(node_id) for node_id in sorted(self._samples))


__all__ = [
    'configure_logging',
    'AuditCollector',
    'NodeStatistics',
    'StepStatistics',
]
