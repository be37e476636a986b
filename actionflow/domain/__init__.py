"""Outbound data shapes for persistence and reporting collaborators."""

from .serialization import (
    RecordEncoder, to_json, dump_log, entry_to_dict, segment_to_dict,
    quota_status_to_dict, session_report_to_dict,
)

__all__ = [
    'RecordEncoder',
    'to_json',
    'dump_log',
    'entry_to_dict',
    'segment_to_dict',
    'quota_status_to_dict',
    'session_report_to_dict',
]
