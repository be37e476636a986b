"""
State Machine Log
=================

Append-only record of every segment outcome in a session.

INVARIANTS:
- No updates or deletes - append only
- Every entry has a monotonic sequence number starting at 1
- Hash chain for integrity verification
- Deterministic: same records in same order -> same head hash
  (wall-clock time never enters the hash)

This is the SOURCE OF TRUTH for what a session did.
Current node, counts and statistics are DERIVED from it.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterator, List, Optional, Tuple
import hashlib

from ..contracts.base import Error, ErrorCode
from ..contracts.events import (
    LogRecord, RejectedTransition, Segment, Transition, UnmappedLabelRecord,
)


@dataclass(frozen=True)
class LogEntry:
    """
    Immutable log entry.

    INVARIANTS:
    - Once written, never modified.
    - Entries form a hash chain for integrity verification.
    """
    sequence: int
    record: LogRecord
    previous_hash: str
    entry_hash: str

    @staticmethod
    def create(sequence: int, record: LogRecord, previous_hash: str) -> LogEntry:
        """Factory for deterministic entry creation."""
        entry_hash = _entry_hash(sequence, record, previous_hash)
        return LogEntry(
            sequence=sequence,
            record=record,
            previous_hash=previous_hash,
            entry_hash=entry_hash,
        )


@dataclass(frozen=True)
class LogState:
    """Immutable snapshot of log state."""
    head_sequence: int
    head_hash: str
    entry_count: int

    @staticmethod
    def empty() -> LogState:
        return LogState(head_sequence=0, head_hash="", entry_count=0)


class StateMachineLog:
    """
    Append-only transition log.

    GUARANTEES:
    ===========
    1. NO updates - entries are immutable once written
    2. NO deletes - log only grows
    3. Deterministic - same records in same order -> same head hash
    4. Verifiable - hash chain ensures integrity
    """

    def __init__(self):
        self._entries: List[LogEntry] = []
        self._head_hash = ""

    @property
    def state(self) -> LogState:
        return LogState(
            head_sequence=len(self._entries),
            head_hash=self._head_hash,
            entry_count=len(self._entries),
        )

    @property
    def head_hash(self) -> str:
        return self._head_hash

    @property
    def next_sequence(self) -> int:
        return len(self._entries) + 1

    def append(self, record: LogRecord) -> LogEntry:
        """
        Append one record.

        This is the ONLY write operation.
        """
        entry = LogEntry.create(
            sequence=self.next_sequence,
            record=record,
            previous_hash=self._head_hash,
        )
        self._entries.append(entry)
        self._head_hash = entry.entry_hash
        return entry

    def snapshot(self) -> StateMachineLog:
        """Detached copy holding the entries written so far."""
        copy = StateMachineLog()
        copy._entries = list(self._entries)
        copy._head_hash = self._head_hash
        return copy

    def replay(
        self,
        from_seq: Optional[int] = None,
        until_seq: Optional[int] = None
    ) -> Iterator[LogEntry]:
        """
        Replay entries in sequence order.

        Args:
            from_seq: Start from this sequence (inclusive), None = start
            until_seq: Stop at this sequence (inclusive), None = end
        """
        start = from_seq if from_seq else 1
        end = until_seq if until_seq else len(self._entries)
        for entry in self._entries:
            if entry.sequence < start:
                continue
            if entry.sequence > end:
                break
            yield entry

    def get_entry(self, sequence: int) -> Optional[LogEntry]:
        if sequence < 1 or sequence > len(self._entries):
            return None
        return self._entries[sequence - 1]

    def records(self) -> Tuple[LogRecord, ...]:
        return tuple(e.record for e in self._entries)

    def transitions(self) -> Tuple[Transition, ...]:
        return tuple(r for r in self.records() if isinstance(r, Transition))

    def rejections(self) -> Tuple[RejectedTransition, ...]:
        return tuple(r for r in self.records() if isinstance(r, RejectedTransition))

    def unmapped(self) -> Tuple[UnmappedLabelRecord, ...]:
        return tuple(r for r in self.records() if isinstance(r, UnmappedLabelRecord))

    def current_node_id(self, start_node_id: str) -> str:
        """Node reached by replaying accepted transitions from start_node_id."""
        node_id = start_node_id
        for transition in self.transitions():
            node_id = transition.to_node_id
        return node_id

    def verify_integrity(self) -> Tuple[bool, Optional[Error]]:
        """
        Verify hash chain integrity.

        Returns (is_valid, error) tuple.
        Error contains details if integrity check fails.
        """
        expected_previous = ""
        for entry in self._entries:
            recomputed = _entry_hash(entry.sequence, entry.record, entry.previous_hash)
            if entry.previous_hash != expected_previous or recomputed != entry.entry_hash:
                return (False, Error(
                    code=ErrorCode.INVALID_STATE_TRANSITION,
                    message=f"Hash chain broken at sequence {entry.sequence}",
                    timestamp=datetime.now(timezone.utc),
                    context=(
                        ("expected_hash", expected_previous),
                        ("actual_hash", entry.previous_hash),
                    )
                ))
            expected_previous = entry.entry_hash
        return (True, None)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[LogEntry]:
        return iter(self._entries)


# =============================================================================
# HASHING
# =============================================================================

def _segment_key(segment: Segment) -> str:
    return (
        f"{segment.first_frame_index}-{segment.last_frame_index}:"
        f"{segment.dominant_label}:{segment.start_timestamp!r}:{segment.end_timestamp!r}"
    )


def _record_key(record: LogRecord) -> str:
    if isinstance(record, Transition):
        return (
            f"T|{record.accepted_at}|{record.from_node_id}|{record.to_node_id}|"
            f"{record.coerced_from or ''}|{_segment_key(record.segment)}"
        )
    if isinstance(record, RejectedTransition):
        return (
            f"R|{record.recorded_at}|{record.from_node_id}|{record.attempted_node_id}|"
            f"{record.reason}|{_segment_key(record.segment)}"
        )
    if isinstance(record, UnmappedLabelRecord):
        return (
            f"U|{record.recorded_at}|{record.label}|{record.error.code.name}|"
            f"{_segment_key(record.segment)}"
        )
    raise TypeError(f"Unsupported log record: {type(record).__name__}")


def _entry_hash(sequence: int, record: LogRecord, previous_hash: str) -> str:
    hash_content = f"{sequence}|{_record_key(record)}|{previous_hash}"
    return hashlib.sha256(hash_content.encode()).hexdigest()
