"""
Observation Model Tests
=======================

INVARIANTS TESTED:
1. Confidence outside [0, 1] (or not a number) is rejected
2. Frame order is strictly increasing within a session
3. A rejected observation never advances the normalizer
4. Unlabelled observations carry the distinct unknown label
"""

import math

import numpy as np
import pytest
from hypothesis import given, strategies as st

from actionflow.contracts.base import (
    UNKNOWN_LABEL, ErrorCode, MalformedObservation,
)
from actionflow.contracts.observation import (
    BoundingRegion, Observation, ObservationNormalizer,
)


def raw(frame_index, confidence=0.9, action="pick", obj=None, timestamp=0.0):
    data = {
        "frame_index": frame_index,
        "timestamp": timestamp,
        "confidence": confidence,
        "action_label": action,
    }
    if obj is not None:
        data["object_label"] = obj
    return data


class TestNormalize:

    def test_mapping_with_snake_case_keys(self):
        normalizer = ObservationNormalizer("s1")
        obs = normalizer.normalize(raw(0, 0.8, "pick", "box", timestamp=1.5))

        assert obs == Observation(
            frame_index=0, timestamp=1.5, confidence=0.8,
            action_label="pick", object_label="box"
        )
        assert obs.label == "pick box"
        assert normalizer.last_frame_index == 0

    def test_camel_case_aliases(self):
        normalizer = ObservationNormalizer()
        obs = normalizer.normalize({
            "frameIndex": 3,
            "timestamp": 0.1,
            "confidence": 1,
            "actionLabel": "scan",
            "boundingRegion": {"x": 1, "y": 2, "width": 3, "height": 4},
        })

        assert obs.frame_index == 3
        assert obs.label == "scan"
        assert obs.bounding_region == BoundingRegion(1.0, 2.0, 3.0, 4.0)
        assert obs.bounding_region.area == 12.0

    def test_numpy_scalars_are_admitted(self):
        normalizer = ObservationNormalizer()
        obs = normalizer.normalize({
            "frame_index": np.int64(3),
            "timestamp": np.float64(1.0),
            "confidence": np.float32(0.5),
            "action_label": "pick",
        })

        assert obs == Observation(frame_index=3, timestamp=1.0, confidence=0.5, action_label="pick")
        assert type(obs.frame_index) is int
        assert type(obs.confidence) is float
        assert normalizer.last_frame_index == 3

    def test_numpy_observation_fields_are_cast(self):
        obs = ObservationNormalizer().normalize(
            Observation(frame_index=np.uint32(2), timestamp=np.float32(0.25), confidence=np.float64(1.0))
        )
        assert (type(obs.frame_index), type(obs.timestamp)) == (int, float)
        assert obs.timestamp == 0.25

    def test_blank_labels_become_unknown(self):
        obs = ObservationNormalizer().normalize(raw(0, action="   "))
        assert obs.action_label is None
        assert obs.label == UNKNOWN_LABEL
        assert obs.is_labelled is False

    def test_single_object_label(self):
        obs = ObservationNormalizer().normalize(raw(0, action=None, obj="box"))
        assert obs.label == "box"

    def test_observation_instances_are_rechecked(self):
        normalizer = ObservationNormalizer()
        normalizer.normalize(Observation(frame_index=5, timestamp=5.0, confidence=0.5))

        with pytest.raises(MalformedObservation):
            normalizer.normalize(Observation(frame_index=5, timestamp=6.0, confidence=0.5))


class TestRejection:

    @pytest.mark.parametrize("confidence", [-0.01, 1.01, math.nan, math.inf, "0.5", None, True])
    def test_bad_confidence(self, confidence):
        with pytest.raises(MalformedObservation) as exc:
            ObservationNormalizer().normalize(raw(0, confidence))
        assert exc.value.code is ErrorCode.MALFORMED_OBSERVATION

    @pytest.mark.parametrize("frame_index", [-1, 1.5, None, "3", False])
    def test_bad_frame_index(self, frame_index):
        with pytest.raises(MalformedObservation):
            ObservationNormalizer().normalize(raw(frame_index))

    def test_non_finite_timestamp(self):
        with pytest.raises(MalformedObservation):
            ObservationNormalizer().normalize(raw(0, timestamp=math.nan))

    def test_missing_timestamp(self):
        normalizer = ObservationNormalizer()
        with pytest.raises(MalformedObservation):
            normalizer.normalize({"frame_index": 7, "confidence": 0.9})
        assert normalizer.last_frame_index is None

    @pytest.mark.parametrize("value", [np.bool_(True), np.float64(0.5), np.int32(-1)])
    def test_bad_numpy_frame_index(self, value):
        with pytest.raises(MalformedObservation):
            ObservationNormalizer().normalize(raw(value))

    def test_duplicate_and_decreasing_frames(self):
        normalizer = ObservationNormalizer()
        normalizer.normalize(raw(4))

        with pytest.raises(MalformedObservation):
            normalizer.normalize(raw(4))
        with pytest.raises(MalformedObservation):
            normalizer.normalize(raw(2))

    def test_timestamp_may_not_go_backwards(self):
        normalizer = ObservationNormalizer()
        normalizer.normalize(raw(0, timestamp=10.0))

        with pytest.raises(MalformedObservation):
            normalizer.normalize(raw(1, timestamp=9.0))
        assert normalizer.normalize(raw(1, timestamp=10.0)).timestamp == 10.0

    def test_rejected_observation_does_not_advance(self):
        normalizer = ObservationNormalizer()
        normalizer.normalize(raw(0))

        with pytest.raises(MalformedObservation):
            normalizer.normalize(raw(1, confidence=2.0))
        assert normalizer.last_frame_index == 0
        assert normalizer.normalize(raw(1)).frame_index == 1

    def test_window_is_all_or_nothing(self):
        normalizer = ObservationNormalizer()

        with pytest.raises(MalformedObservation):
            normalizer.normalize_all([raw(0), raw(1), raw(1)])
        assert normalizer.last_frame_index is None

        window = normalizer.normalize_all([raw(0), raw(1)])
        assert [o.frame_index for o in window] == [0, 1]

    def test_unsupported_type(self):
        with pytest.raises(MalformedObservation):
            ObservationNormalizer().normalize(("pick", 0.5))

    def test_bad_region(self):
        with pytest.raises(MalformedObservation):
            ObservationNormalizer().normalize({
                "frame_index": 0, "timestamp": 0.0, "confidence": 0.5,
                "bounding_region": {"x": 1},
            })

    def test_error_is_convertible_to_data(self):
        with pytest.raises(MalformedObservation) as exc:
            ObservationNormalizer("cam-1").normalize(raw(0, 3.0))

        error = exc.value.to_error()
        assert error.code is ErrorCode.MALFORMED_OBSERVATION
        assert ("session_id", "cam-1") in error.context


class TestDetections:

    def test_best_action_and_object_are_paired(self):
        normalizer = ObservationNormalizer()
        obs = normalizer.from_detections(0, 0.0, [
            {"kind": "action", "label": "pick", "confidence": 0.8},
            {"kind": "object", "label": "box", "confidence": 0.5},
            {"kind": "object", "class": "bin", "confidence": 0.9,
             "x": 10, "y": 20, "width": 30, "height": 40},
        ])

        assert obs.label == "pick bin"
        assert obs.confidence == pytest.approx(0.72)
        assert obs.bounding_region == BoundingRegion(10.0, 20.0, 30.0, 40.0)

    def test_action_only(self):
        obs = ObservationNormalizer().from_detections(0, 0.0, [
            {"kind": "action", "label": "wave", "confidence": 0.6},
        ])
        assert obs.label == "wave"
        assert obs.confidence == pytest.approx(0.6)
        assert obs.bounding_region is None

    def test_no_detections(self):
        obs = ObservationNormalizer().from_detections(2, 0.2, [])
        assert obs.label == UNKNOWN_LABEL
        assert obs.confidence == 0.0

    def test_unknown_kind(self):
        with pytest.raises(MalformedObservation):
            ObservationNormalizer().from_detections(0, 0.0, [
                {"kind": "pose", "label": "x", "confidence": 0.5}
            ])


class TestProperties:

    @given(st.floats(min_value=0.0, max_value=1.0))
    def test_any_unit_confidence_is_admitted(self, confidence):
        obs = ObservationNormalizer().normalize(raw(0, confidence))
        assert obs.confidence == confidence

    @given(st.floats(allow_nan=False).filter(lambda c: c < 0.0 or c > 1.0))
    def test_any_confidence_outside_unit_is_rejected(self, confidence):
        with pytest.raises(MalformedObservation):
            ObservationNormalizer().normalize(raw(0, confidence))

    @given(st.lists(st.integers(min_value=0, max_value=1000), min_size=1, max_size=30))
    def test_admitted_frames_are_strictly_increasing(self, frames):
        normalizer = ObservationNormalizer()
        admitted = []
        for frame in frames:
            try:
                admitted.append(normalizer.normalize(raw(frame, timestamp=0.0)).frame_index)
            except MalformedObservation:
                pass
        assert admitted == sorted(set(admitted))
