"""
Observability Layer Tests
=========================

Logging opt-in, audit collection and per-node dwell statistics.
"""

import pytest
from loguru import logger

from actionflow.contracts.events import AuditEventType, Segment, Transition
from actionflow.engine import WorkflowEngine
from actionflow.graph.preset import load_preset
from actionflow.observability import AuditCollector, StepStatistics, configure_logging


def transition_into(node_id, span, start=0.0):
    segment = Segment(
        start_frame=0,
        end_frame=0,
        dominant_label=node_id,
        mean_confidence=1.0,
        cost=0.0,
        first_frame_index=0,
        last_frame_index=0,
        start_timestamp=start,
        end_timestamp=start + span,
    )
    return Transition("Idle", node_id, segment, accepted_at=1)


@pytest.fixture
def captured_logs():
    messages = []
    handler_ids = configure_logging(level="DEBUG", sink=messages.append)
    yield messages
    for handler_id in handler_ids:
        logger.remove(handler_id)
    logger.disable("actionflow")


class TestLogging:

    def test_package_is_silent_by_default(self):
        messages = []
        handler_id = logger.add(messages.append, level="DEBUG")
        try:
            load_preset({"id": "quiet", "start": "a", "nodes": [{"id": "a"}]})
        finally:
            logger.remove(handler_id)
        assert messages == []

    def test_configure_logging_enables_package_output(self, captured_logs):
        preset = load_preset({
            "id": "loud",
            "start": "a",
            "nodes": [{"id": "a", "next": ["a"]}, {"id": "island"}],
        })
        engine = WorkflowEngine()
        engine.advance("s", engine.ingest("s", preset, [
            {"frame_index": 0, "timestamp": 0.0, "confidence": 0.9, "action_label": "juggle"},
        ]))

        text = "".join(captured_logs)
        assert "Loaded preset 'loud'" in text
        assert "unreachable" in text
        assert "Started session 's'" in text
        assert "Segmented 1 observations" in text
        assert "juggle" in text


class TestAuditCollector:

    def test_record_and_filter(self):
        audit = AuditCollector("engine")
        first = audit.record(AuditEventType.SESSION_LIFECYCLE, "session_started", entity_id="a")
        audit.record(AuditEventType.ERROR, "label_unmapped", entity_id="b",
                     metadata=(("label", "X"),))

        assert audit.entry_count == 2
        assert audit.layer_name == "engine"
        assert first.entry_id.startswith("audit_")
        assert [e.action for e in audit.get_entries(entity_id="b")] == ["label_unmapped"]
        assert audit.get_entries(event_type=AuditEventType.ERROR)[0].metadata == (("label", "X"),)

    def test_entry_ids_are_unique(self):
        audit = AuditCollector()
        ids = {audit.record(AuditEventType.STATE_CHANGE, "same").entry_id for _ in range(50)}
        assert len(ids) == 50

    def test_returned_entries_are_copies(self):
        audit = AuditCollector()
        audit.record(AuditEventType.STATE_CHANGE, "x")
        audit.get_entries().clear()
        assert audit.entry_count == 1


class TestStepStatistics:

    def test_mean_and_sample_deviation(self):
        stats = StepStatistics.from_transitions([
            transition_into("Working", 2.0),
            transition_into("Working", 4.0),
            transition_into("Working", 6.0),
            transition_into("Idle", 3.0),
        ])

        working = stats.node("Working")
        assert working.count == 3
        assert working.mean_dwell == pytest.approx(4.0)
        assert working.std_dwell == pytest.approx(2.0)
        assert working.total_dwell == pytest.approx(12.0)

        idle = stats.node("Idle")
        assert idle.count == 1
        assert idle.std_dwell == 0.0

    def test_summary_is_sorted_and_accumulates(self):
        stats = StepStatistics()
        stats.add_transitions([transition_into("b", 1.0)])
        stats.add_transitions([transition_into("a", 1.0), transition_into("b", 3.0)])

        summary = stats.summary()
        assert [s.node_id for s in summary] == ["a", "b"]
        assert summary[1].count == 2
        assert stats.node("missing") is None
