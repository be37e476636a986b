"""
Label Mapping and Preset Topology Tests
=======================================

Tests for label -> node resolution and the networkx structural view.
"""

import pytest
import networkx as nx

from actionflow.contracts.base import ErrorCode, UnmappedLabel
from actionflow.graph.mapping import LabelMapper
from actionflow.graph.preset import load_preset
from actionflow.graph.topology import GraphMetrics, PresetTopology


def packing_preset():
    return load_preset({
        "id": "packing",
        "start": "Idle",
        "nodes": [
            {"id": "Idle", "next": ["Idle", "Pick"], "actions": ["idle"]},
            {"id": "Pick", "next": ["Place"], "actions": ["pick up box"]},
            {"id": "Place", "next": ["Idle", "Done"], "actions": ["place box on shelf"]},
            {"id": "Done", "next": []},
            {"id": "Audit", "next": ["Idle"]},
        ],
        "label_map": {"A": "Idle", "wave": "Idle"},
    })


class TestLabelMapper:

    def test_exact_label_map(self):
        assert LabelMapper().resolve(packing_preset(), "A") == "Idle"

    def test_case_insensitive_label_map(self):
        assert LabelMapper().resolve(packing_preset(), "WAVE") == "Idle"

    def test_action_equal_ignoring_case(self):
        assert LabelMapper().resolve(packing_preset(), "Pick Up Box") == "Pick"

    def test_action_prefix_and_suffix(self):
        mapper = LabelMapper()
        preset = packing_preset()

        assert mapper.resolve(preset, "pick") == "Pick"
        assert mapper.resolve(preset, "shelf") == "Place"
        # first node in definition order wins
        assert mapper.resolve(preset, "box") == "Pick"

    def test_unmapped_label(self):
        with pytest.raises(UnmappedLabel) as exc:
            LabelMapper().resolve(packing_preset(), "juggle")

        assert exc.value.code is ErrorCode.UNMAPPED_LABEL
        assert exc.value.label == "juggle"
        assert exc.value.preset_id == "packing"

    def test_fuzzy_matching_can_be_disabled(self):
        mapper = LabelMapper(fuzzy=False)
        preset = packing_preset()

        assert mapper.resolve(preset, "a") == "Idle"
        assert mapper.try_resolve(preset, "pick") is None
        with pytest.raises(UnmappedLabel):
            mapper.resolve(preset, "pick up box")

    def test_empty_label_is_never_fuzzy_matched(self):
        assert LabelMapper().try_resolve(packing_preset(), "") is None


class TestPresetTopology:

    def test_graph_mirrors_preset(self):
        topology = PresetTopology(packing_preset())

        assert isinstance(topology.graph, nx.DiGraph)
        assert topology.graph.has_edge("Pick", "Place")
        assert not topology.graph.has_edge("Place", "Pick")

    def test_reachability(self):
        topology = PresetTopology(packing_preset())

        assert topology.reachable_nodes() == {"Idle", "Pick", "Place", "Done"}
        assert topology.unreachable_nodes() == {"Audit"}

    def test_cycles_and_terminals(self):
        topology = PresetTopology(packing_preset())

        assert topology.has_cycles()
        assert topology.terminal_nodes() == {"Done"}

    def test_acyclic_line(self):
        preset = load_preset({
            "id": "line",
            "start": "a",
            "nodes": [{"id": "a", "next": ["b"]}, {"id": "b"}],
        })
        assert not PresetTopology(preset).has_cycles()

    def test_shortest_route(self):
        topology = PresetTopology(packing_preset())

        assert topology.shortest_route("Idle", "Done") == ["Idle", "Pick", "Place", "Done"]
        assert topology.shortest_route("Done", "Idle") is None
        assert topology.shortest_route("Idle", "Ghost") is None

    def test_metrics(self):
        metrics = PresetTopology(packing_preset()).compute_metrics()

        assert isinstance(metrics, GraphMetrics)
        assert metrics.node_count == 5
        assert metrics.edge_count == 6
        assert metrics.self_loop_count == 1
        assert metrics.has_cycles is True
        assert metrics.reachable_count == 4
        assert 0.0 < metrics.density < 1.0
