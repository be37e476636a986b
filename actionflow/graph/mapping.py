"""
Label -> node resolution for a bound preset.
"""

from __future__ import annotations
from typing import Optional

from ..contracts.base import UnmappedLabel
from .preset import Preset


class LabelMapper:
    """
    Resolve a segment's dominant label to a node id.

    Resolution order (first hit wins):
    1. exact key in preset.label_map
    2. case-insensitive key in preset.label_map
    3. fuzzy: first node in definition order whose actions equal the
       label ignoring case, or start or end with it
    """

    def __init__(self, fuzzy: bool = True):
        self._fuzzy = fuzzy

    def resolve(self, preset: Preset, label: str) -> str:
        node_id = self.try_resolve(preset, label)
        if node_id is None:
            raise UnmappedLabel(label, preset.preset_id)
        return node_id

    def try_resolve(self, preset: Preset, label: str) -> Optional[str]:
        if label in preset.label_map:
            return preset.label_map[label]

        folded = label.casefold()
        for key in sorted(preset.label_map):
            if key.casefold() == folded:
                return preset.label_map[key]

        if not self._fuzzy or not label:
            return None

        for node in preset.ordered_nodes():
            for action in node.actions:
                if action.casefold() == folded:
                    return node.id
        for node in preset.ordered_nodes():
            for action in node.actions:
                if action.startswith(label) or action.endswith(label):
                    return node.id
        return None
