import json
from dataclasses import asdict
from datetime import datetime, date
from enum import Enum
from typing import Any, Dict, List

from ..contracts.base import Error, Timestamp
from ..contracts.events import (
    QuotaStatus, RejectedTransition, Segment, Transition, UnmappedLabelRecord,
)
from ..temporal.transition_log import LogEntry, StateMachineLog


class RecordEncoder(json.JSONEncoder):
    """
    JSON Encoder for hand-off to persistence collaborators.

    RULES:
    1. Dates MUST be ISO 8601 strings (UTC).
    2. Enums MUST use their .value.
    3. Sets -> Lists (sorted for determinism).
    4. Log entries and statuses go through the explicit converters below,
       so field names stay stable when the dataclasses grow.
    """

    def default(self, obj: Any) -> Any:
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()
        if isinstance(obj, Timestamp):
            return obj.to_iso()
        if isinstance(obj, Enum):
            return obj.value
        if isinstance(obj, (set, frozenset)):
            return sorted(obj)
        if isinstance(obj, StateMachineLog):
            return dump_log(obj)
        if isinstance(obj, QuotaStatus):
            return quota_status_to_dict(obj)
        if hasattr(obj, "__dataclass_fields__"):
            return asdict(obj)

        return super().default(obj)


def to_json(obj: Any, **kwargs) -> str:
    """Serialize with RecordEncoder and sorted keys."""
    kwargs.setdefault("sort_keys", True)
    return json.dumps(obj, cls=RecordEncoder, **kwargs)


def segment_to_dict(segment: Segment) -> Dict[str, Any]:
    return {
        "start_frame": segment.start_frame,
        "end_frame": segment.end_frame,
        "first_frame_index": segment.first_frame_index,
        "last_frame_index": segment.last_frame_index,
        "start_timestamp": segment.start_timestamp,
        "end_timestamp": segment.end_timestamp,
        "dominant_label": segment.dominant_label,
        "mean_confidence": segment.mean_confidence,
        "cost": segment.cost,
    }


def error_to_dict(error: Error) -> Dict[str, Any]:
    return {
        "code": error.code.name,
        "message": error.message,
        "timestamp": error.timestamp.isoformat(),
        "context": [list(pair) for pair in error.context],
    }


def entry_to_dict(entry: LogEntry) -> Dict[str, Any]:
    record = entry.record
    data: Dict[str, Any] = {
        "sequence": entry.sequence,
        "previous_hash": entry.previous_hash,
        "entry_hash": entry.entry_hash,
        "segment": segment_to_dict(record.segment),
    }
    if isinstance(record, Transition):
        data.update(
            type="transition",
            from_node_id=record.from_node_id,
            to_node_id=record.to_node_id,
            accepted_at=record.accepted_at,
            coerced_from=record.coerced_from,
        )
    elif isinstance(record, RejectedTransition):
        data.update(
            type="rejected_transition",
            from_node_id=record.from_node_id,
            attempted_node_id=record.attempted_node_id,
            recorded_at=record.recorded_at,
            reason=record.reason,
        )
    elif isinstance(record, UnmappedLabelRecord):
        data.update(
            type="unmapped_label",
            label=record.label,
            recorded_at=record.recorded_at,
            error=error_to_dict(record.error),
        )
    else:
        raise TypeError(f"Unsupported log record: {type(record).__name__}")
    return data


def dump_log(log: StateMachineLog) -> List[Dict[str, Any]]:
    """Ordered JSON-safe entries of a transition log."""
    return [entry_to_dict(entry) for entry in log.replay()]


def quota_status_to_dict(status: QuotaStatus) -> Dict[str, Any]:
    return {
        "max_transitions": status.max_transitions,
        "max_span": status.max_span,
        "consumed_transitions": status.consumed_transitions,
        "consumed_span": status.consumed_span,
        "exceeded": status.exceeded,
        "remaining_transitions": status.remaining_transitions,
        "remaining_span": status.remaining_span,
        "node_dwell": {node_id: dwell for node_id, dwell in status.node_dwell},
        "alarms": [
            {"node_id": a.node_id, "dwell": a.dwell, "upper": a.upper, "overrun": a.overrun}
            for a in status.alarms
        ],
    }


def session_report_to_dict(report) -> Dict[str, Any]:
    """JSON-safe view of an engine SessionReport."""
    return {
        "session_id": report.session_id,
        "preset_id": report.preset_id,
        "status": report.status.value,
        "current_node_id": report.current_node_id,
        "head_hash": report.head_hash,
        "started_at": report.started_at.to_iso(),
        "closed_at": report.closed_at.to_iso(),
        "window_count": report.window_count,
        "observation_count": report.observation_count,
        "quota": quota_status_to_dict(report.quota_status),
        "statistics": [asdict(s) for s in report.statistics],
        "log": dump_log(report.log),
    }
