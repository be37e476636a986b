"""
Segmentation Layer

RESPONSIBILITY: Turn a closed window of observations into labelled segments
ALLOWED INPUTS: Normalized Observations (contracts.observation)
OUTPUTS: Segment tuples and SegmentationResult

WHAT THIS LAYER MUST NOT DO:
============================
- Resolve labels to preset nodes
- Re-segment a window that was already partitioned
- Keep state between calls
"""

from .partitioner import SegmentationConfig, SegmentPartitioner, compute_result_hash

__all__ = [
    'SegmentationConfig',
    'SegmentPartitioner',
    'compute_result_hash',
]
