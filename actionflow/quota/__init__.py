"""
Quota Layer

RESPONSIBILITY: Bound how much a session may consume
ALLOWED INPUTS: Segment spans, node ids
OUTPUTS: Allow / Deny decisions, QuotaStatus snapshots

WHAT THIS LAYER MUST NOT DO:
============================
- Decide whether a transition is legal (graph layer)
- Roll back counters after an Allow
"""

from .enforcer import QuotaMode, QuotaConfig, NodeBudget, Quota, QuotaEnforcer

__all__ = [
    'QuotaMode',
    'QuotaConfig',
    'NodeBudget',
    'Quota',
    'QuotaEnforcer',
]
