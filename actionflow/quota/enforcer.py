"""
Quota Enforcer
==============

Consumption ceilings for one session.

INVARIANTS:
- check_and_reserve decides and commits in one step under the quota lock
- Counters only grow; a Deny leaves them untouched
- After any Allow, counters never exceed their ceilings
- A quota with no ceilings never denies

Per-node offset budgets flag nodes whose accumulated dwell ran past
expected_span * (1 + offset_ratio). Alarms are reported, never enforced.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Tuple
import math
import threading

from loguru import logger

from ..contracts.events import BudgetAlarm, QuotaDecision, QuotaStatus
from ..graph.preset import Preset


class QuotaMode(Enum):
    ENFORCED = "enforced"
    DISABLED = "disabled"


@dataclass(frozen=True)
class QuotaConfig:
    """
    Ceilings applied to every new session.

    None means "no ceiling". mode=DISABLED ignores both ceilings and
    the per-node budgets.
    """
    max_transitions: Optional[int] = None
    max_span: Optional[float] = None
    mode: QuotaMode = QuotaMode.ENFORCED
    offset_ratio: float = 0.6

    def __post_init__(self):
        if isinstance(self.mode, str):
            object.__setattr__(self, 'mode', QuotaMode(self.mode))
        if self.max_transitions is not None and self.max_transitions < 0:
            raise ValueError("max_transitions must be non-negative")
        if self.max_span is not None and (self.max_span < 0 or math.isnan(self.max_span)):
            raise ValueError("max_span must be non-negative")
        if not 0.0 <= self.offset_ratio <= 1.0:
            raise ValueError("offset_ratio must be within [0, 1]")


@dataclass(frozen=True)
class NodeBudget:
    """Allowed dwell band around a node's expected span."""
    node_id: str
    expected: float
    lower: float
    upper: float

    @staticmethod
    def from_expected(node_id: str, expected: float, offset_ratio: float) -> NodeBudget:
        return NodeBudget(
            node_id=node_id,
            expected=expected,
            lower=expected * (1.0 - offset_ratio),
            upper=expected * (1.0 + offset_ratio),
        )


@dataclass
class Quota:
    """
    Mutable counters of one session.

    Only QuotaEnforcer writes these fields, and only while holding lock.
    """
    max_transitions: Optional[int] = None
    max_span: Optional[float] = None
    consumed_transitions: int = 0
    consumed_span: float = 0.0
    exceeded: bool = False
    node_dwell: Dict[str, float] = field(default_factory=dict)
    budgets: Dict[str, NodeBudget] = field(default_factory=dict)
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)


class QuotaEnforcer:
    """Creates session quotas and gates every accepted transition."""

    def __init__(self, config: Optional[QuotaConfig] = None):
        self._config = config or QuotaConfig()

    @property
    def config(self) -> QuotaConfig:
        return self._config

    @property
    def enabled(self) -> bool:
        return self._config.mode is QuotaMode.ENFORCED

    def new_quota(self, preset: Optional[Preset] = None) -> Quota:
        """Fresh quota from the configured ceilings and the preset's node budgets."""
        if not self.enabled:
            return Quota()
        budgets: Dict[str, NodeBudget] = {}
        if preset is not None:
            for node in preset.ordered_nodes():
                if node.expected_span is not None:
                    budgets[node.id] = NodeBudget.from_expected(
                        node.id, node.expected_span, self._config.offset_ratio
                    )
        return Quota(
            max_transitions=self._config.max_transitions,
            max_span=self._config.max_span,
            budgets=budgets,
        )

    def check_and_reserve(self, quota: Quota, delta_span: float) -> QuotaDecision:
        """
        Atomically decide and commit one transition of delta_span.

        Raises:
            ValueError: negative or non-finite delta_span.
        """
        if not math.isfinite(delta_span) or delta_span < 0:
            raise ValueError(f"delta_span must be a non-negative finite number, got {delta_span}")

        with quota.lock:
            if quota.max_transitions is not None \
                    and quota.consumed_transitions + 1 > quota.max_transitions:
                quota.exceeded = True
                logger.warning(
                    f"Transition ceiling reached ({quota.consumed_transitions}"
                    f"/{quota.max_transitions})"
                )
                return QuotaDecision.DENY
            if quota.max_span is not None \
                    and quota.consumed_span + delta_span > quota.max_span:
                quota.exceeded = True
                logger.warning(
                    f"Span ceiling reached ({quota.consumed_span:.3f} + {delta_span:.3f}"
                    f" > {quota.max_span:.3f})"
                )
                return QuotaDecision.DENY

            quota.consumed_transitions += 1
            quota.consumed_span += delta_span
            return QuotaDecision.ALLOW

    def record_dwell(self, quota: Quota, node_id: str, span: float) -> Optional[BudgetAlarm]:
        """
        Add span to a node's dwell.

        Returns the alarm when this dwell pushes the node past its
        upper budget for the first time, else None.
        """
        with quota.lock:
            before = quota.node_dwell.get(node_id, 0.0)
            after = before + span
            quota.node_dwell[node_id] = after
            budget = quota.budgets.get(node_id)

        if budget is None or not self.enabled:
            return None
        if before <= budget.upper < after:
            logger.warning(
                f"Node '{node_id}' dwell {after:.3f} passed its budget {budget.upper:.3f}"
            )
            return BudgetAlarm(node_id=node_id, dwell=after, upper=budget.upper)
        return None

    def status(self, quota: Quota) -> QuotaStatus:
        """Immutable snapshot of the quota, with current budget alarms."""
        with quota.lock:
            dwell = tuple(sorted(quota.node_dwell.items()))
            alarms = tuple(
                BudgetAlarm(node_id=node_id, dwell=value, upper=quota.budgets[node_id].upper)
                for node_id, value in dwell
                if node_id in quota.budgets and value > quota.budgets[node_id].upper
            ) if self.enabled else ()
            return QuotaStatus(
                max_transitions=quota.max_transitions,
                max_span=quota.max_span,
                consumed_transitions=quota.consumed_transitions,
                consumed_span=quota.consumed_span,
                exceeded=quota.exceeded,
                node_dwell=dwell,
                alarms=alarms,
            )

    def budgets(self, quota: Quota) -> Tuple[NodeBudget, ...]:
        with quota.lock:
            return tuple(quota.budgets[k] for k in sorted(quota.budgets))
