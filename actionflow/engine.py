"""
Engine Orchestration Module

This module provides the unified interface for coordinating all
layers while maintaining strict boundary separation.

LAYER FLOW:
===========
1. Observation model: raw detections -> Observation (per-session normalizer)
2. Segmentation: closed window -> SegmentationResult
3. Temporal: segments -> StateMachineLog, gated by the Quota layer
4. Observability: records every session lifecycle step and outcome

DESIGN PRINCIPLES:
==================
1. Layers communicate ONLY through contracts
2. Presets are shared read-only; everything mutable is per session
3. The session table is the only shared mutable state and is locked
"""

from __future__ import annotations
from dataclasses import dataclass, field, fields
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple, Union
import threading

from loguru import logger

from .contracts.base import (
    MalformedObservation, PresetNotFound, SessionConflict, SessionNotFound, Timestamp,
)
from .contracts.events import (
    AuditEventType, QuotaStatus, RejectedTransition, SegmentationResult,
    SessionStatus, Transition, UnmappedLabelRecord,
)
from .contracts.observation import ObservationNormalizer
from .graph.mapping import LabelMapper
from .graph.preset import Preset, PresetRegistry
from .observability import AuditCollector, NodeStatistics, StepStatistics
from .quota.enforcer import QuotaConfig, QuotaEnforcer
from .segmentation.partitioner import SegmentationConfig, SegmentPartitioner
from .temporal.state_machine import ExecutionConfig, StateMachine
from .temporal.transition_log import StateMachineLog


@dataclass
class EngineConfig:
    """Unified configuration for the whole engine."""
    segmentation: SegmentationConfig = None
    execution: ExecutionConfig = None
    quota: QuotaConfig = None

    def __post_init__(self):
        self.segmentation = self.segmentation or SegmentationConfig()
        self.execution = self.execution or ExecutionConfig()
        self.quota = self.quota or QuotaConfig()

    @staticmethod
    def from_mapping(data: Optional[Mapping[str, Any]]) -> EngineConfig:
        """
        Build the composite config from a plain mapping::

            {"segmentation": {"boundary_penalty": 0.8},
             "quota": {"max_transitions": 50, "mode": "enforced"}}

        Raises:
            ValueError: unknown section or key, or an invalid value.
        """
        data = dict(data or {})
        sections = {
            "segmentation": SegmentationConfig,
            "execution": ExecutionConfig,
            "quota": QuotaConfig,
        }
        unknown = sorted(set(data) - set(sections))
        if unknown:
            raise ValueError(f"Unknown config sections: {', '.join(unknown)}")

        built = {}
        for name, config_type in sections.items():
            values = dict(data.get(name) or {})
            allowed = {f.name for f in fields(config_type)}
            bad = sorted(set(values) - allowed)
            if bad:
                raise ValueError(f"Unknown keys in '{name}' config: {', '.join(bad)}")
            built[name] = config_type(**values)
        return EngineConfig(**built)


# =============================================================================
# SESSIONS
# =============================================================================

@dataclass
class Session:
    """
    One workflow run: its normalizer, state machine and counters.

    Owned by the engine's session table; never shared across runs.
    """
    session_id: str
    preset: Preset
    normalizer: ObservationNormalizer
    machine: StateMachine
    started_at: Timestamp
    window_count: int = 0
    observation_count: int = 0
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @property
    def status(self) -> SessionStatus:
        return self.machine.status

    @property
    def current_node_id(self) -> str:
        return self.machine.current_node_id

    @property
    def log(self) -> StateMachineLog:
        return self.machine.log


@dataclass(frozen=True)
class SessionReport:
    """Final, archived outcome of a closed session."""
    session_id: str
    preset_id: str
    status: SessionStatus
    current_node_id: str
    log: StateMachineLog
    quota_status: QuotaStatus
    statistics: Tuple[NodeStatistics, ...]
    started_at: Timestamp
    closed_at: Timestamp
    window_count: int
    observation_count: int

    @property
    def head_hash(self) -> str:
        return self.log.head_hash


# =============================================================================
# ENGINE
# =============================================================================

class WorkflowEngine:
    """
    In-process entry point for host collaborators.

    ingest() turns one closed window of observations into segments;
    advance() applies those segments to the session's state machine.
    Sessions are independent and may be driven from separate threads.
    """

    def __init__(
        self,
        registry: Optional[PresetRegistry] = None,
        config: Optional[EngineConfig] = None,
        audit: Optional[AuditCollector] = None
    ):
        self._config = config or EngineConfig()
        self._registry = registry if registry is not None else PresetRegistry()
        self._audit = audit or AuditCollector("engine")

        self._partitioner = SegmentPartitioner(self._config.segmentation)
        self._enforcer = QuotaEnforcer(self._config.quota)
        self._mapper = LabelMapper(fuzzy=self._config.execution.fuzzy_label_matching)

        self._sessions: Dict[str, Session] = {}
        self._sessions_lock = threading.Lock()

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def registry(self) -> PresetRegistry:
        return self._registry

    @property
    def audit(self) -> AuditCollector:
        return self._audit

    # =========================================================================
    # SESSION TABLE
    # =========================================================================

    def start_session(self, session_id: str, preset: Union[Preset, str]) -> Session:
        """
        Create a session bound to a preset.

        Raises:
            SessionConflict: the session id is already active.
            PresetNotFound: preset id is not registered.
        """
        preset = self._resolve_preset(preset)
        with self._sessions_lock:
            if session_id in self._sessions:
                raise SessionConflict(
                    f"Session '{session_id}' is already active",
                    context=(("session_id", session_id),)
                )
            session = self._create_session(session_id, preset)
            self._sessions[session_id] = session
        self._on_session_started(session)
        return session

    def get_session(self, session_id: str) -> Session:
        with self._sessions_lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(
                f"Session '{session_id}' is not active",
                context=(("session_id", session_id),)
            )
        return session

    def active_sessions(self) -> Tuple[str, ...]:
        with self._sessions_lock:
            return tuple(sorted(self._sessions))

    def abort(self, session_id: str) -> SessionStatus:
        """Stop a session between segments; its committed log is kept."""
        session = self.get_session(session_id)
        session.machine.abort()
        self._audit.record(
            AuditEventType.SESSION_LIFECYCLE, "session_aborted", entity_id=session_id
        )
        return session.status

    def close_session(self, session_id: str) -> SessionReport:
        """Remove a session from the table and return its final report."""
        with self._sessions_lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            raise SessionNotFound(
                f"Session '{session_id}' is not active",
                context=(("session_id", session_id),)
            )

        with session.lock:
            log = session.log.snapshot()
            report = SessionReport(
                session_id=session_id,
                preset_id=session.preset.preset_id,
                status=session.status,
                current_node_id=session.current_node_id,
                log=log,
                quota_status=session.machine.quota_status(),
                statistics=StepStatistics.from_transitions(log.transitions()).summary(),
                started_at=session.started_at,
                closed_at=Timestamp.now(),
                window_count=session.window_count,
                observation_count=session.observation_count,
            )

        self._audit.record(
            AuditEventType.SESSION_LIFECYCLE,
            "session_closed",
            entity_id=session_id,
            metadata=(
                ("status", report.status.value),
                ("log_length", str(len(log))),
                ("head_hash", log.head_hash),
            )
        )
        logger.info(
            f"Closed session '{session_id}' ({report.status.value}, "
            f"{len(log)} log entries, {report.quota_status.consumed_transitions} transitions)"
        )
        return report

    # =========================================================================
    # INBOUND INTERFACE
    # =========================================================================

    def ingest(
        self,
        session_id: str,
        preset: Union[Preset, str],
        observations: Iterable[Any]
    ) -> SegmentationResult:
        """
        Normalize and segment one closed window of observations.

        Binds the session to the preset on first use. A window containing
        any malformed observation is rejected as a whole; a session created
        for that window is discarded with it.

        Raises:
            MalformedObservation: a raw observation failed validation.
            SessionConflict: the session is bound to a different preset.
            PresetNotFound: preset id is not registered.
        """
        session, created = self._bind(session_id, self._resolve_preset(preset))
        with session.lock:
            try:
                window = session.normalizer.normalize_all(observations)
            except MalformedObservation:
                if created and session.window_count == 0:
                    self._discard(session)
                raise
            result = self._partitioner.segment(session_id, session.preset.preset_id, window)
            session.window_count += 1
            session.observation_count += len(window)

        if created:
            self._on_session_started(session)

        self._audit.record(
            AuditEventType.SEGMENTATION,
            "window_segmented",
            entity_id=session_id,
            metadata=(
                ("observations", str(result.observation_count)),
                ("segments", str(len(result.segments))),
                ("result_hash", result.result_hash),
            )
        )
        return result

    def advance(
        self,
        session_id: str,
        result: SegmentationResult
    ) -> Tuple[StateMachineLog, QuotaStatus]:
        """
        Apply a segmentation result to the session's state machine.

        The returned log is a snapshot; later calls do not change it.

        Raises:
            SessionNotFound: no active session with this id.
            SessionConflict: result belongs to another session or preset.
        """
        session = self.get_session(session_id)
        if result.session_id != session_id or result.preset_id != session.preset.preset_id:
            raise SessionConflict(
                f"Result for session '{result.session_id}' / preset '{result.preset_id}' "
                f"cannot advance session '{session_id}'",
                context=(("session_id", session_id), ("result_session_id", result.session_id))
            )

        with session.lock:
            first_new = len(session.log) + 1
            status = session.machine.advance(result.segments)
            quota_status = session.machine.quota_status()
            log = session.log.snapshot()
            new_entries = list(log.replay(from_seq=first_new))

        for entry in new_entries:
            self._audit_record(session_id, entry.record)
        if status is SessionStatus.QUOTA_EXCEEDED:
            self._audit.record(
                AuditEventType.QUOTA,
                "quota_exceeded",
                entity_id=session_id,
                metadata=(
                    ("consumed_transitions", str(quota_status.consumed_transitions)),
                    ("consumed_span", f"{quota_status.consumed_span:.6f}"),
                )
            )
        return log, quota_status

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _resolve_preset(self, preset: Union[Preset, str]) -> Preset:
        if isinstance(preset, Preset):
            return preset
        if isinstance(preset, str):
            return self._registry.get(preset)
        raise PresetNotFound(
            f"Expected a Preset or preset id, got {type(preset).__name__}",
            context=(("preset", repr(preset)),)
        )

    def _bind(self, session_id: str, preset: Preset) -> Tuple[Session, bool]:
        created = False
        with self._sessions_lock:
            session = self._sessions.get(session_id)
            if session is None:
                session = self._create_session(session_id, preset)
                self._sessions[session_id] = session
                created = True
            elif session.preset.preset_id != preset.preset_id:
                raise SessionConflict(
                    f"Session '{session_id}' is bound to preset "
                    f"'{session.preset.preset_id}', not '{preset.preset_id}'",
                    context=(
                        ("session_id", session_id),
                        ("bound_preset_id", session.preset.preset_id),
                        ("preset_id", preset.preset_id),
                    )
                )
        return session, created

    def _discard(self, session: Session):
        with self._sessions_lock:
            if self._sessions.get(session.session_id) is session:
                del self._sessions[session.session_id]

    def _create_session(self, session_id: str, preset: Preset) -> Session:
        machine = StateMachine(
            session_id=session_id,
            preset=preset,
            quota=self._enforcer.new_quota(preset),
            enforcer=self._enforcer,
            mapper=self._mapper,
            config=self._config.execution,
        )
        return Session(
            session_id=session_id,
            preset=preset,
            normalizer=ObservationNormalizer(session_id),
            machine=machine,
            started_at=Timestamp.now(),
        )

    def _on_session_started(self, session: Session):
        self._audit.record(
            AuditEventType.SESSION_LIFECYCLE,
            "session_started",
            entity_id=session.session_id,
            metadata=(("preset_id", session.preset.preset_id),)
        )
        logger.info(
            f"Started session '{session.session_id}' on preset '{session.preset.preset_id}'"
        )

    def _audit_record(self, session_id: str, record):
        if isinstance(record, Transition):
            self._audit.record(
                AuditEventType.STATE_CHANGE,
                "transition_accepted",
                entity_id=session_id,
                metadata=(
                    ("from", record.from_node_id),
                    ("to", record.to_node_id),
                    ("coerced_from", record.coerced_from or ""),
                )
            )
        elif isinstance(record, RejectedTransition):
            self._audit.record(
                AuditEventType.REJECTION,
                "transition_rejected",
                entity_id=session_id,
                metadata=(
                    ("from", record.from_node_id),
                    ("attempted", record.attempted_node_id),
                )
            )
        elif isinstance(record, UnmappedLabelRecord):
            self._audit.record(
                AuditEventType.ERROR,
                "label_unmapped",
                entity_id=session_id,
                metadata=(("label", record.label), ("code", record.error.code.name))
            )
