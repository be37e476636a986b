"""
Preset Graph Layer

RESPONSIBILITY: Load, validate and share preset graphs
ALLOWED INPUTS: Plain preset definitions (mappings or JSON files)
OUTPUTS: Immutable Preset objects, adjacency answers, label resolution

WHAT THIS LAYER MUST NOT DO:
============================
- Track which node a session is in (sessions hold node ids)
- Mutate a preset after load
- Decide quota or segmentation questions

Modules:
- preset: Node / Preset types, load_preset, is_transition_allowed, registry
- mapping: label -> node resolution
- topology: networkx structural analysis
"""

from .preset import (
    Node, Preset, PresetRegistry,
    load_preset, load_preset_file, is_transition_allowed,
)
from .mapping import LabelMapper
from .topology import PresetTopology, GraphMetrics

__all__ = [
    'Node',
    'Preset',
    'PresetRegistry',
    'load_preset',
    'load_preset_file',
    'is_transition_allowed',
    'LabelMapper',
    'PresetTopology',
    'GraphMetrics',
]
