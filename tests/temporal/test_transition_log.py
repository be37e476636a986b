"""
Transition Log Tests
====================

INVARIANTS TESTED:
1. Sequence numbers are monotonic from 1
2. Entries form a verifiable hash chain
3. Same records in same order -> same head hash, regardless of wall clock
4. Tampering is detected
"""

from dataclasses import replace
from datetime import datetime, timedelta, timezone

from actionflow.contracts.base import Error, ErrorCode
from actionflow.contracts.events import (
    RejectedTransition, Segment, Transition, UnmappedLabelRecord,
)
from actionflow.temporal.transition_log import LogEntry, LogState, StateMachineLog


def make_segment(start, end, label="A", frame_gap=1.0):
    return Segment(
        start_frame=start,
        end_frame=end,
        dominant_label=label,
        mean_confidence=0.9,
        cost=0.1 * (end - start + 1),
        first_frame_index=start,
        last_frame_index=end,
        start_timestamp=start * frame_gap,
        end_timestamp=(end + 1) * frame_gap,
    )


def unmapped_error(at: datetime) -> Error:
    return Error(
        code=ErrorCode.UNMAPPED_LABEL,
        message="Label 'X' has no target node",
        timestamp=at,
        context=(("label", "X"),)
    )


def build_log(error_time=None) -> StateMachineLog:
    error_time = error_time or datetime(2024, 1, 1, tzinfo=timezone.utc)
    log = StateMachineLog()
    log.append(Transition("Idle", "Idle", make_segment(0, 2), accepted_at=1))
    log.append(UnmappedLabelRecord(make_segment(3, 3, "X"), "X", 2, unmapped_error(error_time)))
    log.append(RejectedTransition("Idle", "Done", make_segment(4, 5, "C"), 3, "not allowed"))
    log.append(Transition("Idle", "Working", make_segment(6, 8, "B"), accepted_at=4))
    return log


class TestAppendAndReplay:

    def test_empty_log(self):
        log = StateMachineLog()

        assert len(log) == 0
        assert log.state == LogState.empty()
        assert log.verify_integrity() == (True, None)

    def test_sequences_and_chain(self):
        log = build_log()
        entries = list(log.replay())

        assert [e.sequence for e in entries] == [1, 2, 3, 4]
        assert entries[0].previous_hash == ""
        for previous, entry in zip(entries, entries[1:]):
            assert entry.previous_hash == previous.entry_hash
        assert log.head_hash == entries[-1].entry_hash
        assert log.state.entry_count == 4

    def test_replay_window(self):
        log = build_log()

        assert [e.sequence for e in log.replay(from_seq=2, until_seq=3)] == [2, 3]
        assert [e.sequence for e in log.replay(from_seq=4)] == [4]
        assert log.get_entry(0) is None
        assert log.get_entry(5) is None
        assert log.get_entry(2).record.label == "X"

    def test_record_views(self):
        log = build_log()

        assert [t.to_node_id for t in log.transitions()] == ["Idle", "Working"]
        assert [r.attempted_node_id for r in log.rejections()] == ["Done"]
        assert [u.label for u in log.unmapped()] == ["X"]
        assert len(log.records()) == 4

    def test_current_node_is_derived_from_transitions(self):
        assert build_log().current_node_id("Idle") == "Working"
        assert StateMachineLog().current_node_id("Idle") == "Idle"

    def test_snapshot_is_detached(self):
        log = build_log()
        copy = log.snapshot()
        log.append(Transition("Working", "Idle", make_segment(9, 9), accepted_at=5))

        assert len(copy) == 4
        assert copy.head_hash != log.head_hash
        assert copy.verify_integrity() == (True, None)
        assert copy.next_sequence == 5

    def test_self_loop_flag(self):
        (loop, move) = build_log().transitions()
        assert loop.is_self_loop
        assert not move.is_self_loop


class TestDeterminism:

    def test_same_records_same_head_hash(self):
        assert build_log().head_hash == build_log().head_hash

    def test_wall_clock_does_not_enter_the_hash(self):
        early = build_log(datetime(2020, 1, 1, tzinfo=timezone.utc))
        late = build_log(datetime(2020, 1, 1, tzinfo=timezone.utc) + timedelta(days=900))
        assert early.head_hash == late.head_hash

    def test_different_records_different_hash(self):
        log = build_log()
        other = build_log()
        other.append(Transition("Working", "Idle", make_segment(9, 9), accepted_at=5))
        assert log.head_hash != other.head_hash

    def test_entry_factory_is_pure(self):
        record = Transition("Idle", "Idle", make_segment(0, 0), accepted_at=1)
        assert LogEntry.create(1, record, "") == LogEntry.create(1, record, "")


class TestIntegrity:

    def test_intact_log_verifies(self):
        assert build_log().verify_integrity() == (True, None)

    def test_tampered_record_is_detected(self):
        log = build_log()
        original = log._entries[1]
        forged_record = replace(original.record, label="Y")
        log._entries[1] = replace(original, record=forged_record)

        is_valid, error = log.verify_integrity()
        assert is_valid is False
        assert "sequence 2" in error.message

    def test_broken_link_is_detected(self):
        log = build_log()
        log._entries[2] = replace(log._entries[2], previous_hash="0" * 64)

        is_valid, error = log.verify_integrity()
        assert is_valid is False
        assert ("actual_hash", "0" * 64) in error.context
