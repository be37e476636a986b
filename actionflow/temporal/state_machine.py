"""
State Machine Execution
=======================

Consumes segments in order and advances one session's current node.

PER SEGMENT:
============
1. Resolve dominant_label -> candidate node (LabelMapper).
   Unmapped -> UnmappedLabelRecord, session flagged incomplete, continue.
2. Candidate not adjacent to the current node -> RejectedTransition.
   If a fallback label is configured and its node is adjacent, the
   fallback is attempted next and recorded with coerced_from.
3. Adjacent -> QuotaEnforcer.check_and_reserve(segment.span).
   Allow -> Transition appended, current node advanced, dwell recorded.
   Deny  -> processing stops, status QUOTA_EXCEEDED.

INVARIANTS:
- Every accepted Transition satisfies is_transition_allowed
- Log order is a total order; nothing committed is ever rolled back
- Abort takes effect between segments, never inside one
- Self-loops and returns to earlier nodes never end a run
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Iterable, Optional
import threading

from loguru import logger

from ..contracts.base import UnmappedLabel
from ..contracts.events import (
    QuotaDecision, QuotaStatus, RejectedTransition, Segment, SessionStatus,
    Transition, UnmappedLabelRecord,
)
from ..graph.mapping import LabelMapper
from ..graph.preset import Preset, is_transition_allowed
from ..quota.enforcer import Quota, QuotaEnforcer
from .transition_log import StateMachineLog


@dataclass(frozen=True)
class ExecutionConfig:
    """
    State machine behavior knobs.

    fallback_label: label (or node id) tried after a rejected transition
    fuzzy_label_matching: allow prefix/suffix matching on node actions
    """
    fallback_label: Optional[str] = None
    fuzzy_label_matching: bool = True


class StateMachine:
    """
    One run of a preset for one session.

    The preset is shared and read-only; the machine stores only the id
    of its current node and re-resolves it on every step.
    """

    def __init__(
        self,
        session_id: str,
        preset: Preset,
        quota: Quota,
        enforcer: QuotaEnforcer,
        mapper: Optional[LabelMapper] = None,
        config: Optional[ExecutionConfig] = None
    ):
        self._config = config or ExecutionConfig()
        self._session_id = session_id
        self._preset = preset
        self._quota = quota
        self._enforcer = enforcer
        self._mapper = mapper or LabelMapper(fuzzy=self._config.fuzzy_label_matching)

        self._log = StateMachineLog()
        self._current_node_id = preset.start_node_id
        self._status = SessionStatus.IDLE
        self._incomplete = False
        self._abort_requested = threading.Event()
        self._status_lock = threading.Lock()

    # -------------------------------------------------------------------------
    # Read access
    # -------------------------------------------------------------------------

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def preset(self) -> Preset:
        return self._preset

    @property
    def current_node_id(self) -> str:
        return self._current_node_id

    @property
    def log(self) -> StateMachineLog:
        return self._log

    @property
    def quota(self) -> Quota:
        return self._quota

    @property
    def status(self) -> SessionStatus:
        return self._status

    def quota_status(self) -> QuotaStatus:
        return self._enforcer.status(self._quota)

    # -------------------------------------------------------------------------
    # Control
    # -------------------------------------------------------------------------

    def abort(self):
        """
        Request a stop. Safe from any thread.

        A running advance() stops before its next segment. Committed
        records stay in the log.
        """
        self._abort_requested.set()
        with self._status_lock:
            if self._status not in (SessionStatus.RUNNING, SessionStatus.QUOTA_EXCEEDED):
                self._status = SessionStatus.ABORTED
        logger.info(f"Abort requested for session '{self._session_id}'")

    def advance(self, segments: Iterable[Segment]) -> SessionStatus:
        """
        Apply segments in order and return the resulting status.

        A session in a final status (QUOTA_EXCEEDED, ABORTED) ignores
        further segments.
        """
        with self._status_lock:
            if self._status.is_final:
                logger.debug(
                    f"Session '{self._session_id}' is {self._status.value}; segments ignored"
                )
                return self._status
            self._status = SessionStatus.RUNNING

        for segment in segments:
            if self._abort_requested.is_set():
                break
            self._process(segment)
            if self._quota.exceeded:
                break

        with self._status_lock:
            self._status = self._settled_status()
        return self._status

    # -------------------------------------------------------------------------
    # Per-segment processing
    # -------------------------------------------------------------------------

    def _process(self, segment: Segment):
        try:
            candidate = self._mapper.resolve(self._preset, segment.dominant_label)
        except UnmappedLabel as e:
            self._incomplete = True
            self._log.append(UnmappedLabelRecord(
                segment=segment,
                label=segment.dominant_label,
                recorded_at=self._log.next_sequence,
                error=e.to_error().with_context("session_id", self._session_id),
            ))
            logger.warning(f"Session '{self._session_id}': {e.message}")
            return

        if is_transition_allowed(self._preset, self._current_node_id, candidate):
            self._commit(segment, candidate)
            return

        self._log.append(RejectedTransition(
            from_node_id=self._current_node_id,
            attempted_node_id=candidate,
            segment=segment,
            recorded_at=self._log.next_sequence,
            reason=f"'{self._current_node_id}' -> '{candidate}' is not an allowed transition",
        ))
        logger.warning(
            f"Session '{self._session_id}': rejected {self._current_node_id} -> {candidate} "
            f"(frames {segment.first_frame_index}-{segment.last_frame_index})"
        )

        fallback = self._fallback_node_id()
        if fallback is not None and fallback != candidate \
                and is_transition_allowed(self._preset, self._current_node_id, fallback):
            self._commit(segment, fallback, coerced_from=candidate)

    def _commit(self, segment: Segment, target: str, coerced_from: Optional[str] = None) -> bool:
        decision = self._enforcer.check_and_reserve(self._quota, segment.span)
        if decision is QuotaDecision.DENY:
            logger.warning(
                f"Session '{self._session_id}': quota denied {self._current_node_id} -> {target}"
            )
            return False

        self._log.append(Transition(
            from_node_id=self._current_node_id,
            to_node_id=target,
            segment=segment,
            accepted_at=self._log.next_sequence,
            coerced_from=coerced_from,
        ))
        self._current_node_id = target
        self._enforcer.record_dwell(self._quota, target, segment.span)
        return True

    def _fallback_node_id(self) -> Optional[str]:
        label = self._config.fallback_label
        if label is None:
            return None
        node_id = self._mapper.try_resolve(self._preset, label)
        if node_id is None and label in self._preset.nodes:
            node_id = label
        return node_id

    def _settled_status(self) -> SessionStatus:
        if self._quota.exceeded:
            return SessionStatus.QUOTA_EXCEEDED
        if self._abort_requested.is_set():
            return SessionStatus.ABORTED
        if self._incomplete:
            return SessionStatus.INCOMPLETE
        return SessionStatus.COMPLETED
