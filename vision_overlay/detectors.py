"""
Detector adapters: one per perception capability, over MediaPipe Tasks.

Every adapter exposes the same contract:
  - initialize(settings): load the model off the event loop; ModelLoadError on failure
  - infer(frame, timestamp_ms): run one inference off the event loop; InferenceError on failure
At most one infer() call may be in flight per adapter (models are not reentrant).

NOTE: mediapipe is imported lazily inside _load so tests can inject a fake
module through sys.modules, and so importing this module stays cheap.
"""
from __future__ import annotations
import abc
import asyncio
import logging
from typing import Any, List

import cv2

from vision_overlay.config import Settings
from vision_overlay.errors import InferenceError, ModelLoadError
from vision_overlay.models import (
    BoundingBox,
    Capability,
    Category,
    Detection,
    DetectionResult,
    FaceEntry,
    FaceResult,
    Frame,
    GestureResult,
    HandEntry,
    Landmark,
    SegmentationMask,
)

logger = logging.getLogger(__name__)


def _category(c: Any) -> Category:
    return Category(
        category_name=getattr(c, "category_name", "") or "",
        score=float(getattr(c, "score", 0.0) or 0.0),
        display_name=getattr(c, "display_name", None) or None,
        index=getattr(c, "index", None),
    )


def _landmarks(points: Any) -> List[Landmark]:
    return [Landmark(x=float(p.x), y=float(p.y), z=float(getattr(p, "z", 0.0) or 0.0)) for p in points or []]


class DetectorAdapter(abc.ABC):
    """Common lifecycle + single-flight guard for a perception capability."""

    capability: Capability

    def __init__(self) -> None:
        self._model = None
        self._mp = None
        self._in_flight = False
        self._last_ts = -1

    @property
    def ready(self) -> bool:
        return self._model is not None

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    async def initialize(self, settings: Settings) -> None:
        if self.ready:
            return
        logger.debug(f"[detectors] initializing {self.capability.value}")
        try:
            self._model = await asyncio.to_thread(self._load, settings)
        except Exception as e:
            raise ModelLoadError(f"{self.capability.value} model failed to load: {e}") from e
        logger.info(f"[detectors] {self.capability.value} ready")

    async def infer(self, frame: Frame, timestamp_ms: int):
        if not self.ready:
            raise InferenceError(f"{self.capability.value} adapter is not initialized")
        if self._in_flight:
            raise InferenceError(f"{self.capability.value} adapter already has a call in flight")
        if timestamp_ms <= self._last_ts:
            raise InferenceError(
                f"{self.capability.value} timestamp {timestamp_ms} not after last {self._last_ts}"
            )
        self._in_flight = True
        self._last_ts = timestamp_ms
        try:
            return await asyncio.to_thread(self._run, frame, timestamp_ms)
        except InferenceError:
            raise
        except Exception as e:
            raise InferenceError(f"{self.capability.value} inference failed: {e}") from e
        finally:
            self._in_flight = False

    def close(self) -> None:
        model, self._model = self._model, None
        if model is not None and hasattr(model, "close"):
            try:
                model.close()
            except Exception:
                logger.exception(f"[detectors] failed to close {self.capability.value} model")

    # ---- helpers for concrete adapters ----
    def _import_mediapipe(self):
        import mediapipe as mp
        self._mp = mp
        return mp

    def _mp_image(self, frame: Frame):
        rgb = cv2.cvtColor(frame.image, cv2.COLOR_BGR2RGB)
        return self._mp.Image(image_format=self._mp.ImageFormat.SRGB, data=rgb)

    @abc.abstractmethod
    def _load(self, settings: Settings):
        """Build and return the underlying model (runs in a worker thread)."""

    @abc.abstractmethod
    def _run(self, frame: Frame, timestamp_ms: int):
        """Run one inference and return a typed result (runs in a worker thread)."""


class ObjectDetectorAdapter(DetectorAdapter):
    capability = Capability.OBJECT

    def __init__(self) -> None:
        super().__init__()
        self.person_only = False

    def _load(self, settings: Settings):
        mp = self._import_mediapipe()
        vision = mp.tasks.vision
        self.person_only = settings.PERSON_ONLY
        options = vision.ObjectDetectorOptions(
            base_options=mp.tasks.BaseOptions(model_asset_path=settings.OBJECT_MODEL_PATH),
            running_mode=vision.RunningMode.VIDEO,
            score_threshold=settings.SCORE_THRESHOLD,
            max_results=-1,
        )
        return vision.ObjectDetector.create_from_options(options)

    def _run(self, frame: Frame, timestamp_ms: int) -> DetectionResult:
        result = self._model.detect_for_video(self._mp_image(frame), timestamp_ms)
        detections: List[Detection] = []
        for d in getattr(result, "detections", None) or []:
            box = d.bounding_box
            det = Detection(
                bounding_box=BoundingBox(
                    origin_x=int(box.origin_x), origin_y=int(box.origin_y),
                    width=int(box.width), height=int(box.height),
                ),
                categories=[_category(c) for c in d.categories or []],
            )
            if self.person_only and not (det.label and det.label.category_name.lower() == "person"):
                continue
            detections.append(det)
        return DetectionResult(detections=detections)


class FaceLandmarkerAdapter(DetectorAdapter):
    capability = Capability.FACE

    def _load(self, settings: Settings):
        mp = self._import_mediapipe()
        vision = mp.tasks.vision
        options = vision.FaceLandmarkerOptions(
            base_options=mp.tasks.BaseOptions(model_asset_path=settings.FACE_MODEL_PATH),
            running_mode=vision.RunningMode.VIDEO,
            output_face_blendshapes=True,
            num_faces=settings.NUM_FACES,
        )
        return vision.FaceLandmarker.create_from_options(options)

    def _run(self, frame: Frame, timestamp_ms: int) -> FaceResult:
        result = self._model.detect_for_video(self._mp_image(frame), timestamp_ms)
        landmarks = getattr(result, "face_landmarks", None) or []
        shapes = getattr(result, "face_blendshapes", None) or []
        faces = []
        for i, points in enumerate(landmarks):
            blend = shapes[i] if i < len(shapes) else []
            faces.append(FaceEntry(landmarks=_landmarks(points), blendshapes=[_category(c) for c in blend]))
        return FaceResult(faces=faces)


class GestureRecognizerAdapter(DetectorAdapter):
    capability = Capability.GESTURE

    def _load(self, settings: Settings):
        mp = self._import_mediapipe()
        vision = mp.tasks.vision
        options = vision.GestureRecognizerOptions(
            base_options=mp.tasks.BaseOptions(model_asset_path=settings.GESTURE_MODEL_PATH),
            running_mode=vision.RunningMode.VIDEO,
            num_hands=settings.NUM_HANDS,
        )
        return vision.GestureRecognizer.create_from_options(options)

    def _run(self, frame: Frame, timestamp_ms: int) -> GestureResult:
        result = self._model.recognize_for_video(self._mp_image(frame), timestamp_ms)
        gestures = getattr(result, "gestures", None) or []
        handedness = getattr(result, "handedness", None) or []
        hand_points = getattr(result, "hand_landmarks", None) or []
        hands = []
        for i, points in enumerate(hand_points):
            g = gestures[i] if i < len(gestures) else []
            h = handedness[i] if i < len(handedness) else []
            hands.append(HandEntry(
                gesture=_category(g[0]) if g else None,
                handedness=_category(h[0]) if h else None,
                landmarks=_landmarks(points),
            ))
        return GestureResult(hands=hands)


class SegmentationAdapter(DetectorAdapter):
    capability = Capability.SEGMENTATION

    def _load(self, settings: Settings):
        mp = self._import_mediapipe()
        vision = mp.tasks.vision
        options = vision.ImageSegmenterOptions(
            base_options=mp.tasks.BaseOptions(model_asset_path=settings.SEGMENTATION_MODEL_PATH),
            running_mode=vision.RunningMode.VIDEO,
            output_confidence_masks=True,
            output_category_mask=False,
        )
        return vision.ImageSegmenter.create_from_options(options)

    def _run(self, frame: Frame, timestamp_ms: int) -> SegmentationMask:
        result = self._model.segment_for_video(self._mp_image(frame), timestamp_ms)
        masks = getattr(result, "confidence_masks", None) or []
        if not masks:
            raise InferenceError("segmenter returned no confidence mask")
        # last mask is the person class for both single- and two-class selfie models
        prob = masks[-1].numpy_view()
        prob = prob.reshape(prob.shape[0], prob.shape[1]).astype("float32")
        if prob.shape[:2] != frame.image.shape[:2]:
            prob = cv2.resize(prob, (frame.width, frame.height), interpolation=cv2.INTER_LINEAR)
        return SegmentationMask(mask=prob)


ADAPTERS = {
    Capability.OBJECT: ObjectDetectorAdapter,
    Capability.FACE: FaceLandmarkerAdapter,
    Capability.GESTURE: GestureRecognizerAdapter,
    Capability.SEGMENTATION: SegmentationAdapter,
}


def build_adapters(settings: Settings) -> dict[Capability, DetectorAdapter]:
    """Instantiate the capability set named by settings.ENABLED_CAPABILITIES."""
    out: dict[Capability, DetectorAdapter] = {}
    for name in settings.ENABLED_CAPABILITIES:
        cap = Capability(name)
        if cap is Capability.SEGMENTATION and not settings.SEGMENTATION_ENABLED:
            continue
        out[cap] = ADAPTERS[cap]()
    return out
