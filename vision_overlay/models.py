"""
Pydantic data models shared across the pipeline.
"""
from __future__ import annotations
from enum import Enum
from typing import Dict, List, Optional

import numpy as np
from pydantic import BaseModel, ConfigDict, Field


class Capability(str, Enum):
    """Which perception result an adapter produces."""
    OBJECT = "object"
    FACE = "face"
    GESTURE = "gesture"
    SEGMENTATION = "segmentation"


class PipelineState(str, Enum):
    IDLE = "Idle"
    STARTING = "Starting"
    RUNNING = "Running"
    STOPPING = "Stopping"
    FAILED = "Failed"


class InterestRating(str, Enum):
    VERY_GOOD = "VeryGood"
    GOOD = "Good"
    NEUTRAL = "Neutral"
    BAD = "Bad"
    VERY_BAD = "VeryBad"


class Frame(BaseModel):
    """One timestamped BGR image from the frame source."""
    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    image: np.ndarray
    timestamp_ms: int
    seq: int

    @property
    def width(self) -> int:
        return int(self.image.shape[1])

    @property
    def height(self) -> int:
        return int(self.image.shape[0])


# ---- detector results ----

class Category(BaseModel):
    category_name: str
    score: float = 0.0
    display_name: Optional[str] = None
    index: Optional[int] = None


class BoundingBox(BaseModel):
    origin_x: int
    origin_y: int
    width: int
    height: int


class Detection(BaseModel):
    bounding_box: BoundingBox
    categories: List[Category] = Field(default_factory=list)

    @property
    def label(self) -> Optional[Category]:
        return self.categories[0] if self.categories else None


class DetectionResult(BaseModel):
    detections: List[Detection] = Field(default_factory=list)

    @property
    def person_count(self) -> int:
        return sum(
            1 for d in self.detections
            if any(c.category_name.lower() == "person" for c in d.categories)
        )


class Landmark(BaseModel):
    x: float
    y: float
    z: float = 0.0


class FaceEntry(BaseModel):
    landmarks: List[Landmark] = Field(default_factory=list)
    blendshapes: List[Category] = Field(default_factory=list)


class FaceResult(BaseModel):
    faces: List[FaceEntry] = Field(default_factory=list)

    def blendshape_scores(self, index: int = 0) -> Dict[str, float]:
        if index >= len(self.faces):
            return {}
        return {c.category_name: c.score for c in self.faces[index].blendshapes}


class HandEntry(BaseModel):
    gesture: Optional[Category] = None
    handedness: Optional[Category] = None
    landmarks: List[Landmark] = Field(default_factory=list)


class GestureResult(BaseModel):
    hands: List[HandEntry] = Field(default_factory=list)


class SegmentationMask(BaseModel):
    """Per-pixel person probability aligned to the source frame."""
    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    mask: np.ndarray

    def binary(self, threshold: float) -> np.ndarray:
        return self.mask >= threshold


# ---- derived / per-cycle views ----

class EngagementScore(BaseModel):
    focus: float = 0.0
    interest: float = 0.0
    rating: InterestRating = InterestRating.VERY_BAD


class PipelineSnapshot(BaseModel):
    """Immutable view of the result buffer handed to the compositor."""
    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    frame: Frame
    detections: DetectionResult = Field(default_factory=DetectionResult)
    faces: FaceResult = Field(default_factory=FaceResult)
    gestures: GestureResult = Field(default_factory=GestureResult)
    segmentation: Optional[SegmentationMask] = None
    engagement: EngagementScore = Field(default_factory=EngagementScore)
    # frame seq each retained result was computed from
    result_seqs: Dict[Capability, int] = Field(default_factory=dict)

    @property
    def person_count(self) -> int:
        return self.detections.person_count


class CompositeFrame(BaseModel):
    """Overlay image plus the results it was drawn from, for host-side result panels."""
    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    image: np.ndarray
    frame_seq: int
    timestamp_ms: int
    engagement: EngagementScore
    person_count: int = 0
    detections: DetectionResult = Field(default_factory=DetectionResult)
    faces: FaceResult = Field(default_factory=FaceResult)
    gestures: GestureResult = Field(default_factory=GestureResult)
