"""
DP Segment Partitioner
======================

Optimal partition of a closed observation window into labelled segments.

COST MODEL:
===========
support s_k(L)      = confidence_k if observation k carries label L, else 0
cost(i, j, L)       = mismatch_weight * sum over k in [i, j) of (1 - s_k(L))
bestCost[0]         = 0
bestCost[k]         = min over i < k of
                      bestCost[i] + min_L cost(i, k, L) + boundary_penalty

A member that agrees with the segment label costs (1 - confidence); a
member that disagrees costs a full unit. The per-segment penalty absorbs
single-frame flicker.

INVARIANTS:
- Segments cover [0, N) with no gap and no overlap
- Identical input and config -> identical segments and result_hash
- Equal cost (within tie_tolerance): fewer segments first, then the
  lexicographically smallest boundary sequence
- Equal label cost inside one window: the label seen first in the input
- Unlabelled observations carry UNKNOWN_LABEL and are never dropped
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple
import hashlib
import json

import numpy as np
from loguru import logger

from ..contracts.base import MalformedObservation
from ..contracts.events import Segment, SegmentationResult
from ..contracts.observation import Observation


@dataclass(frozen=True)
class SegmentationConfig:
    """
    Tunable weights of the DP cost model.

    boundary_penalty: cost added once per segment
    mismatch_weight: scale of the per-member mismatch cost
    tie_tolerance: absolute slack under which two costs are equal
    """
    boundary_penalty: float = 0.5
    mismatch_weight: float = 1.0
    tie_tolerance: float = 1e-9

    def __post_init__(self):
        if self.boundary_penalty < 0:
            raise ValueError("boundary_penalty must be non-negative")
        if self.mismatch_weight <= 0:
            raise ValueError("mismatch_weight must be positive")
        if self.tie_tolerance < 0:
            raise ValueError("tie_tolerance must be non-negative")


@dataclass(frozen=True)
class _Plan:
    """Chosen partition before it is turned into Segments."""
    starts: Tuple[int, ...]
    label_indices: Tuple[int, ...]
    window_costs: Tuple[float, ...]
    total_cost: float


class SegmentPartitioner:
    """
    Stateless DP partitioner. Safe to share across sessions.

    Prefix sums of per-label support make every window cost O(1);
    each end position evaluates all start positions in one numpy step.
    """

    def __init__(self, config: Optional[SegmentationConfig] = None):
        self._config = config or SegmentationConfig()

    @property
    def config(self) -> SegmentationConfig:
        return self._config

    def partition(self, observations: Sequence[Observation]) -> Tuple[Segment, ...]:
        """
        Partition a closed window. Empty input yields an empty tuple.

        Observations must be in normalizer order: strictly increasing
        frame_index and non-decreasing timestamp.

        Raises:
            MalformedObservation: the window is out of order.
        """
        observations = tuple(observations)
        if not observations:
            return ()
        _check_window_order(observations)

        labels, support = self._support_matrix(observations)
        plan = self._solve(support)
        return self._build_segments(observations, labels, support, plan)

    def segment(
        self,
        session_id: str,
        preset_id: str,
        observations: Sequence[Observation]
    ) -> SegmentationResult:
        """Partition a window and wrap it with its reproducibility hash."""
        observations = tuple(observations)
        segments = self.partition(observations)
        penalty = self._config.boundary_penalty * len(segments)
        total_cost = float(sum(s.cost for s in segments) + penalty)

        result = SegmentationResult(
            session_id=session_id,
            preset_id=preset_id,
            segments=segments,
            observation_count=len(observations),
            total_cost=total_cost,
            result_hash=compute_result_hash(segments),
        )
        logger.debug(
            f"Segmented {len(observations)} observations for session '{session_id}' "
            f"into {len(segments)} segments (cost={total_cost:.4f})"
        )
        return result

    # -------------------------------------------------------------------------
    # DP core
    # -------------------------------------------------------------------------

    def _support_matrix(
        self,
        observations: Tuple[Observation, ...]
    ) -> Tuple[List[str], np.ndarray]:
        """Labels in first-appearance order and an (L, N) support array."""
        labels: List[str] = []
        index: Dict[str, int] = {}
        for obs in observations:
            if obs.label not in index:
                index[obs.label] = len(labels)
                labels.append(obs.label)

        support = np.zeros((len(labels), len(observations)), dtype=float)
        for k, obs in enumerate(observations):
            support[index[obs.label], k] = obs.confidence
        return labels, support

    def _solve(self, support: np.ndarray) -> _Plan:
        cfg = self._config
        tol = cfg.tie_tolerance
        n = support.shape[1]

        prefix = np.zeros((support.shape[0], n + 1), dtype=float)
        prefix[:, 1:] = np.cumsum(support, axis=1)

        best = np.zeros(n + 1, dtype=float)
        count = np.zeros(n + 1, dtype=int)
        back = np.zeros(n + 1, dtype=int)
        back_label = np.zeros(n + 1, dtype=int)
        back_cost = np.zeros(n + 1, dtype=float)

        for k in range(1, n + 1):
            starts = np.arange(k)
            window_support = prefix[:, k][:, None] - prefix[:, :k]
            costs = cfg.mismatch_weight * ((k - starts)[None, :] - window_support)

            # first label (in appearance order) within tolerance of the minimum
            min_cost = costs.min(axis=0)
            label_choice = np.argmax(costs <= min_cost[None, :] + tol, axis=0)
            window_cost = costs[label_choice, starts]

            totals = best[:k] + window_cost + cfg.boundary_penalty
            floor = totals.min()
            candidates = np.flatnonzero(totals <= floor + tol)

            if len(candidates) == 1:
                chosen = int(candidates[0])
            else:
                chosen = min(
                    (int(i) for i in candidates),
                    key=lambda i: (count[i] + 1, _boundaries(back, i) + ((i,) if i else ()))
                )

            best[k] = totals[chosen]
            count[k] = count[chosen] + 1
            back[k] = chosen
            back_label[k] = label_choice[chosen]
            back_cost[k] = window_cost[chosen]

        ends: List[int] = []
        k = n
        while k > 0:
            ends.append(k)
            k = back[k]
        ends.reverse()

        return _Plan(
            starts=tuple(int(back[e]) for e in ends),
            label_indices=tuple(int(back_label[e]) for e in ends),
            window_costs=tuple(float(back_cost[e]) for e in ends),
            total_cost=float(best[n]),
        )

    # -------------------------------------------------------------------------
    # Segment assembly
    # -------------------------------------------------------------------------

    def _build_segments(
        self,
        observations: Tuple[Observation, ...],
        labels: List[str],
        support: np.ndarray,
        plan: _Plan
    ) -> Tuple[Segment, ...]:
        n = len(observations)
        timestamps = np.array([o.timestamp for o in observations], dtype=float)
        interval = float(np.median(np.diff(timestamps))) if n > 1 else 0.0

        segments: List[Segment] = []
        bounds = plan.starts + (n,)
        for pos, start in enumerate(plan.starts):
            stop = bounds[pos + 1]
            label_index = plan.label_indices[pos]
            length = stop - start

            start_ts = float(timestamps[start])
            if stop < n:
                end_ts = float(timestamps[stop])
            else:
                end_ts = max(float(timestamps[-1]) + interval, start_ts)

            segments.append(Segment(
                start_frame=start,
                end_frame=stop - 1,
                dominant_label=labels[label_index],
                mean_confidence=float(support[label_index, start:stop].sum()) / length,
                cost=plan.window_costs[pos],
                first_frame_index=observations[start].frame_index,
                last_frame_index=observations[stop - 1].frame_index,
                start_timestamp=start_ts,
                end_timestamp=end_ts,
            ))
        return tuple(segments)


def _check_window_order(observations: Tuple[Observation, ...]):
    frames = np.array([o.frame_index for o in observations], dtype=np.int64)
    timestamps = np.array([o.timestamp for o in observations], dtype=float)
    bad_frames = np.flatnonzero(np.diff(frames) <= 0)
    bad_times = np.flatnonzero(np.diff(timestamps) < 0)
    if len(bad_frames) or len(bad_times):
        pos = int(min(np.concatenate([bad_frames, bad_times]))) + 1
        raise MalformedObservation(
            f"Window out of order at position {pos} "
            f"(frame_index {observations[pos].frame_index}, "
            f"timestamp {observations[pos].timestamp})",
            context=(("position", str(pos)),)
        )


def _boundaries(back: np.ndarray, end: int) -> Tuple[int, ...]:
    """Boundary sequence of the best partition of the first `end` positions."""
    starts: List[int] = []
    k = end
    while k > 0:
        k = int(back[k])
        if k:
            starts.append(k)
    return tuple(reversed(starts))


def compute_result_hash(segments: Sequence[Segment]) -> str:
    """SHA-256 over segment boundaries and labels."""
    content = json.dumps(
        [[s.start_frame, s.end_frame, s.dominant_label] for s in segments],
        separators=(",", ":"),
    )
    return hashlib.sha256(content.encode()).hexdigest()
