"""
Observation Model
=================

Canonical representation of one frame's detection evidence.

INVARIANTS:
- Observations are immutable once created
- confidence is a finite number in [0, 1]
- frame_index is strictly increasing within a session
- timestamps never go backwards within a session

The normalizer is the ONLY way raw detector output enters the engine.
A rejected observation never reaches a segmentation window.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from numbers import Integral, Real
from typing import Any, Iterable, Mapping, Optional
import math

from .base import UNKNOWN_LABEL, MalformedObservation


@dataclass(frozen=True)
class BoundingRegion:
    """Axis-aligned box in pixel coordinates."""
    x: float
    y: float
    width: float
    height: float

    def __post_init__(self):
        if self.width < 0 or self.height < 0:
            raise ValueError("BoundingRegion width and height must be non-negative")

    @property
    def area(self) -> float:
        return self.width * self.height


@dataclass(frozen=True)
class Observation:
    """
    One frame of vision-model output.

    The dominant label of an observation combines action and object
    the same way the detector pairs them ("<action> <object>").
    """
    frame_index: int
    timestamp: float
    confidence: float
    action_label: Optional[str] = None
    object_label: Optional[str] = None
    bounding_region: Optional[BoundingRegion] = None

    @property
    def label(self) -> str:
        if self.action_label and self.object_label:
            return f"{self.action_label} {self.object_label}"
        if self.action_label:
            return self.action_label
        if self.object_label:
            return self.object_label
        return UNKNOWN_LABEL

    @property
    def is_labelled(self) -> bool:
        return self.label != UNKNOWN_LABEL


# camelCase keys produced by the upstream vision pipeline
_KEY_ALIASES = {
    "frameIndex": "frame_index",
    "actionLabel": "action_label",
    "objectLabel": "object_label",
    "boundingRegion": "bounding_region",
}


class ObservationNormalizer:
    """
    Validate raw detections into Observations for ONE session.

    Tracks the last accepted frame index so that frame order is
    strictly increasing across every window the session ingests.
    """

    def __init__(self, session_id: str = ""):
        self._session_id = session_id
        self._last_frame_index: Optional[int] = None
        self._last_timestamp: Optional[float] = None

    @property
    def last_frame_index(self) -> Optional[int]:
        return self._last_frame_index

    def normalize(self, raw: Any) -> Observation:
        """
        Validate one raw observation.

        Accepts an Observation (re-checked for ordering) or a mapping
        with snake_case or camelCase keys. Numeric fields may be any
        integral / real number, numpy scalars included; they are stored
        as plain int and float.

        Raises:
            MalformedObservation: bad confidence, bad frame index,
                missing or non-finite timestamp, non-increasing frame
                order or a timestamp earlier than the previous one.
        """
        if isinstance(raw, Observation):
            self._check_frame_index(raw.frame_index)
            self._check_confidence(raw.confidence, raw.frame_index)
            self._check_timestamp(raw.timestamp, raw.frame_index)
            candidate = replace(
                raw,
                frame_index=int(raw.frame_index),
                timestamp=float(raw.timestamp),
                confidence=float(raw.confidence),
            )
        elif isinstance(raw, Mapping):
            candidate = self._from_mapping(raw)
        else:
            raise MalformedObservation(
                f"Unsupported observation type: {type(raw).__name__}",
                context=(("session_id", self._session_id),)
            )

        self._check_order(candidate.frame_index, candidate.timestamp)
        self._last_frame_index = candidate.frame_index
        self._last_timestamp = candidate.timestamp
        return candidate

    def normalize_all(self, raws: Iterable[Any]) -> tuple:
        """Normalize a whole window; on failure nothing of it is admitted."""
        mark = (self._last_frame_index, self._last_timestamp)
        try:
            return tuple(self.normalize(raw) for raw in raws)
        except MalformedObservation:
            self._last_frame_index, self._last_timestamp = mark
            raise

    def from_detections(
        self,
        frame_index: int,
        timestamp: float,
        detections: Iterable[Mapping[str, Any]]
    ) -> Observation:
        """
        Collapse one frame's raw detections into a single Observation.

        The most confident action is paired with the most confident
        object; the pair's confidence is the product of both. The box
        is taken from the object detection. A frame with no detections
        becomes an unlabelled observation with zero confidence.
        """
        best = {"action": None, "object": None}
        for detection in detections:
            kind = str(detection.get("kind", "")).lower()
            if kind not in best:
                raise MalformedObservation(
                    f"Detection kind must be 'action' or 'object', got '{kind}'",
                    context=(("frame_index", str(frame_index)),)
                )
            confidence = detection.get("confidence")
            self._check_confidence(confidence, frame_index)
            current = best[kind]
            if current is None or confidence > current["confidence"]:
                best[kind] = detection

        action, obj = best["action"], best["object"]
        if action is not None and obj is not None:
            confidence = float(action["confidence"]) * float(obj["confidence"])
        elif action is not None:
            confidence = float(action["confidence"])
        elif obj is not None:
            confidence = float(obj["confidence"])
        else:
            confidence = 0.0

        region = None
        if obj is not None and obj.get("width") is not None:
            region = self._parse_region(obj, frame_index)

        return self.normalize({
            "frame_index": frame_index,
            "timestamp": timestamp,
            "confidence": confidence,
            "action_label": _detection_label(action),
            "object_label": _detection_label(obj),
            "bounding_region": region,
        })

    # -------------------------------------------------------------------------
    # Validation helpers
    # -------------------------------------------------------------------------

    def _from_mapping(self, raw: Mapping[str, Any]) -> Observation:
        data = {_KEY_ALIASES.get(k, k): v for k, v in raw.items()}

        frame_index = data.get("frame_index")
        self._check_frame_index(frame_index)

        confidence = data.get("confidence")
        self._check_confidence(confidence, frame_index)

        timestamp = data.get("timestamp")
        self._check_timestamp(timestamp, frame_index)

        region = data.get("bounding_region")
        if region is not None and not isinstance(region, BoundingRegion):
            region = self._parse_region(region, frame_index)

        return Observation(
            frame_index=int(frame_index),
            timestamp=float(timestamp),
            confidence=float(confidence),
            action_label=_clean_label(data.get("action_label")),
            object_label=_clean_label(data.get("object_label")),
            bounding_region=region,
        )

    def _check_confidence(self, confidence: Any, frame_index: int):
        if isinstance(confidence, bool) or not isinstance(confidence, Real):
            raise MalformedObservation(
                f"confidence must be a number, got {confidence!r}",
                context=(("frame_index", str(frame_index)), ("session_id", self._session_id))
            )
        if not math.isfinite(confidence) or not 0.0 <= confidence <= 1.0:
            raise MalformedObservation(
                f"confidence {confidence} outside [0, 1]",
                context=(("frame_index", str(frame_index)), ("session_id", self._session_id))
            )

    def _check_timestamp(self, timestamp: Any, frame_index: int):
        if isinstance(timestamp, bool) or not isinstance(timestamp, Real) \
                or not math.isfinite(timestamp):
            raise MalformedObservation(
                f"timestamp must be a finite number, got {timestamp!r}",
                context=(("frame_index", str(frame_index)), ("session_id", self._session_id))
            )

    def _check_frame_index(self, frame_index: Any):
        if isinstance(frame_index, bool) or not isinstance(frame_index, Integral) or frame_index < 0:
            raise MalformedObservation(
                f"frame_index must be a non-negative integer, got {frame_index!r}",
                context=(("session_id", self._session_id),)
            )

    def _check_order(self, frame_index: int, timestamp: float):
        if self._last_frame_index is not None and frame_index <= self._last_frame_index:
            raise MalformedObservation(
                f"frame_index {frame_index} does not follow {self._last_frame_index}",
                context=(
                    ("frame_index", str(frame_index)),
                    ("last_frame_index", str(self._last_frame_index)),
                    ("session_id", self._session_id),
                )
            )
        if self._last_timestamp is not None and timestamp < self._last_timestamp:
            raise MalformedObservation(
                f"timestamp {timestamp} precedes {self._last_timestamp}",
                context=(
                    ("frame_index", str(frame_index)),
                    ("session_id", self._session_id),
                )
            )

    def _parse_region(self, region: Any, frame_index: int) -> BoundingRegion:
        try:
            if isinstance(region, Mapping):
                return BoundingRegion(
                    x=float(region["x"]),
                    y=float(region["y"]),
                    width=float(region["width"]),
                    height=float(region["height"]),
                )
            x, y, width, height = region
            return BoundingRegion(float(x), float(y), float(width), float(height))
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedObservation(
                f"Invalid bounding region: {e}",
                context=(("frame_index", str(frame_index)),)
            ) from e


def _detection_label(detection: Optional[Mapping[str, Any]]) -> Optional[str]:
    # detector payloads name the class either "label" or "class"
    if detection is None:
        return None
    return detection.get("label") or detection.get("class")


def _clean_label(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None
