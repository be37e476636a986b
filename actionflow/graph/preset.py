"""
Preset Graph
============

Validated, read-mostly definition of allowed states and transitions.

INVARIANTS:
- Every allowed_next_ids entry references a node of the same preset
- start_node_id references a node of the same preset
- Every label_map target references a node of the same preset
- The graph need not be acyclic (self-loops and returns are legal)
- No mutation API after load

All nodes of one preset are owned by one immutable Preset and are
referenced by id. Sessions store only the id of their current node.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Tuple
import json
import threading
from pathlib import Path

from loguru import logger

from ..contracts.base import InvalidPreset, PresetNotFound


@dataclass(frozen=True)
class Node:
    """
    One state of a preset graph.

    actions are the detector labels that map to this node.
    expected_span is the typical dwell time (seconds) used to derive
    the node's offset budget.
    """
    id: str
    label: str
    allowed_next_ids: FrozenSet[str] = field(default_factory=frozenset)
    actions: Tuple[str, ...] = field(default_factory=tuple)
    expected_span: Optional[float] = None


@dataclass(frozen=True)
class Preset:
    """
    Named graph of legal states for a workflow.

    nodes and label_map are read-only mappings. node_order preserves
    the definition order, which label matching relies on.
    """
    preset_id: str
    name: str
    nodes: Mapping[str, Node]
    start_node_id: str
    label_map: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    node_order: Tuple[str, ...] = field(default_factory=tuple)

    def node(self, node_id: str) -> Node:
        return self.nodes[node_id]

    def ordered_nodes(self) -> Tuple[Node, ...]:
        return tuple(self.nodes[node_id] for node_id in self.node_order)

    @property
    def edge_count(self) -> int:
        return sum(len(n.allowed_next_ids) for n in self.nodes.values())


# =============================================================================
# LOADING AND VALIDATION
# =============================================================================

def load_preset(definition: Mapping[str, Any]) -> Preset:
    """
    Build a Preset from a plain definition.

    Expected shape::

        {
            "id": "assembly",
            "name": "Assembly line",
            "start": "Idle",
            "nodes": [
                {"id": "Idle", "label": "Idle", "next": ["Idle", "Working"],
                 "actions": ["idle"], "expected_span": 30.0},
                ...
            ],
            "label_map": {"A": "Idle"}
        }

    "nodes" may also be a mapping of node id -> node spec.

    Raises:
        InvalidPreset: listing every structural problem found.
    """
    if not isinstance(definition, Mapping):
        raise InvalidPreset("Preset definition must be a mapping")

    problems: List[str] = []

    preset_id = str(definition.get("id") or "").strip()
    if not preset_id:
        problems.append("preset id is missing")
    name = str(definition.get("name") or preset_id)

    raw_nodes = _node_specs(definition.get("nodes"), problems)
    nodes: Dict[str, Node] = {}
    order: List[str] = []

    for spec in raw_nodes:
        node_id = str(spec.get("id") or "").strip()
        if not node_id:
            problems.append("node without id")
            continue
        if node_id in nodes:
            problems.append(f"duplicate node id '{node_id}'")
            continue

        expected_span = spec.get("expected_span")
        if expected_span is not None:
            try:
                expected_span = float(expected_span)
            except (TypeError, ValueError):
                problems.append(f"node '{node_id}' expected_span is not a number")
                expected_span = None
            else:
                if expected_span < 0:
                    problems.append(f"node '{node_id}' expected_span is negative")

        nodes[node_id] = Node(
            id=node_id,
            label=str(spec.get("label") or node_id),
            allowed_next_ids=frozenset(str(n) for n in spec.get("next", ()) or ()),
            actions=tuple(str(a) for a in spec.get("actions", ()) or ()),
            expected_span=expected_span,
        )
        order.append(node_id)

    if not nodes:
        problems.append("preset has no nodes")

    for node_id in order:
        for next_id in sorted(nodes[node_id].allowed_next_ids):
            if next_id not in nodes:
                problems.append(f"node '{node_id}' references unknown node '{next_id}'")

    start_node_id = str(definition.get("start") or "").strip()
    if not start_node_id:
        problems.append("start node is missing")
    elif start_node_id not in nodes:
        problems.append(f"start node '{start_node_id}' does not exist")

    label_map = {str(k): str(v) for k, v in (definition.get("label_map") or {}).items()}
    for label, target in sorted(label_map.items()):
        if target not in nodes:
            problems.append(f"label '{label}' maps to unknown node '{target}'")

    if problems:
        raise InvalidPreset(
            f"Preset '{preset_id or '?'}' is invalid: {'; '.join(problems)}",
            context=tuple(("problem", p) for p in problems)
        )

    preset = Preset(
        preset_id=preset_id,
        name=name,
        nodes=MappingProxyType(nodes),
        start_node_id=start_node_id,
        label_map=MappingProxyType(label_map),
        node_order=tuple(order),
    )

    # Local import: topology depends on this module's types
    from .topology import PresetTopology
    unreachable = PresetTopology(preset).unreachable_nodes()
    if unreachable:
        logger.warning(
            f"Preset '{preset_id}' has nodes unreachable from '{start_node_id}': "
            f"{', '.join(sorted(unreachable))}"
        )
    logger.info(f"Loaded preset '{preset_id}' ({len(nodes)} nodes, {preset.edge_count} edges)")
    return preset


def load_preset_file(path) -> Preset:
    """Load a preset from a JSON definition file."""
    path = Path(path)
    try:
        definition = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise InvalidPreset(
            f"Cannot read preset file {path}: {e}",
            context=(("path", str(path)),)
        ) from e
    return load_preset(definition)


def is_transition_allowed(preset: Preset, from_id: str, to_id: str) -> bool:
    """O(1) adjacency lookup. Unknown source nodes allow nothing."""
    node = preset.nodes.get(from_id)
    if node is None:
        return False
    return to_id in node.allowed_next_ids


def _node_specs(raw: Any, problems: List[str]) -> List[Mapping[str, Any]]:
    if raw is None:
        return []
    if isinstance(raw, Mapping):
        specs = []
        for node_id, spec in raw.items():
            spec = dict(spec or {})
            spec.setdefault("id", node_id)
            specs.append(spec)
        return specs
    if isinstance(raw, (list, tuple)):
        specs = []
        for spec in raw:
            if not isinstance(spec, Mapping):
                problems.append(f"node spec must be a mapping, got {type(spec).__name__}")
                continue
            specs.append(spec)
        return specs
    problems.append("nodes must be a list or a mapping")
    return []


# =============================================================================
# REGISTRY (Populated at startup, read-only thereafter)
# =============================================================================

class PresetRegistry:
    """
    Process-scoped preset table with explicit lifecycle.

    register() during startup, freeze(), then only get().
    """

    def __init__(self):
        self._presets: Dict[str, Preset] = {}
        self._frozen = False
        self._lock = threading.Lock()

    def register(self, preset: Preset) -> Preset:
        with self._lock:
            if self._frozen:
                raise InvalidPreset(
                    f"Registry is frozen; cannot register '{preset.preset_id}'",
                    context=(("preset_id", preset.preset_id),)
                )
            if preset.preset_id in self._presets:
                raise InvalidPreset(
                    f"Preset '{preset.preset_id}' is already registered",
                    context=(("preset_id", preset.preset_id),)
                )
            self._presets[preset.preset_id] = preset
        return preset

    def register_definition(self, definition: Mapping[str, Any]) -> Preset:
        return self.register(load_preset(definition))

    def freeze(self):
        with self._lock:
            self._frozen = True

    @property
    def is_frozen(self) -> bool:
        return self._frozen

    def get(self, preset_id: str) -> Preset:
        preset = self._presets.get(preset_id)
        if preset is None:
            raise PresetNotFound(
                f"Preset '{preset_id}' is not registered",
                context=(("preset_id", preset_id),)
            )
        return preset

    def __contains__(self, preset_id: str) -> bool:
        return preset_id in self._presets

    def __len__(self) -> int:
        return len(self._presets)

    def preset_ids(self) -> Tuple[str, ...]:
        return tuple(sorted(self._presets))
