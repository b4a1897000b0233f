"""Compositing of per-cycle results into a single overlay image.

Layers are drawn back to front:
  base frame -> virtual-background fill -> masked foreground -> face connectors
  -> object boxes -> hand connectors + points -> metrics band

The layer list is filtered once, from Settings and the capabilities that are
actually available, when the Compositor is built. Each layer skips silently
when its result set is empty.
"""
from __future__ import annotations
import logging
from typing import Iterable, List, Optional, Sequence, Tuple

import cv2
import numpy as np

from vision_overlay.config import Settings
from vision_overlay.errors import RenderError
from vision_overlay.models import Capability, CompositeFrame, HandEntry, Landmark, PipelineSnapshot

logger = logging.getLogger(__name__)

Connection = Tuple[int, int]
BGR = Tuple[int, int, int]

BOX_COLOR: BGR = (0, 0, 255)
HAND_CONNECTION_COLOR: BGR = (0, 255, 0)
HAND_POINT_COLOR: BGR = (0, 0, 255)
BAND_HEIGHT = 50


def _hand_connections() -> List[Connection]:
    """21-point hand topology from MediaPipe's hand landmarker tables."""
    from mediapipe.tasks.python.vision.hand_landmarker import HandLandmarksConnections

    return [(c.start, c.end) for c in HandLandmarksConnections.HAND_CONNECTIONS]


def _face_connection_groups() -> List[Tuple[List[Connection], BGR, int]]:
    """Face mesh connector groups with their colors, from MediaPipe's topology tables."""
    from mediapipe.tasks.python.vision.face_landmarker import FaceLandmarksConnections as C

    def pairs(conns) -> List[Connection]:
        return [(c.start, c.end) for c in conns]

    return [
        (pairs(C.FACE_LANDMARKS_TESSELATION), (192, 192, 192), 1),
        (pairs(C.FACE_LANDMARKS_RIGHT_EYE), (48, 48, 255), 1),
        (pairs(C.FACE_LANDMARKS_RIGHT_EYEBROW), (48, 48, 255), 1),
        (pairs(C.FACE_LANDMARKS_LEFT_EYE), (48, 255, 48), 1),
        (pairs(C.FACE_LANDMARKS_LEFT_EYEBROW), (48, 255, 48), 1),
        (pairs(C.FACE_LANDMARKS_FACE_OVAL), (224, 224, 224), 1),
        (pairs(C.FACE_LANDMARKS_LIPS), (224, 224, 224), 1),
        (pairs(C.FACE_LANDMARKS_RIGHT_IRIS), (48, 48, 255), 1),
        (pairs(C.FACE_LANDMARKS_LEFT_IRIS), (48, 255, 48), 1),
    ]


def _to_px(p: Landmark, w: int, h: int) -> Tuple[int, int]:
    return int(p.x * w), int(p.y * h)


def draw_connectors(canvas: np.ndarray,
                    landmarks: Sequence[Landmark],
                    connections: Iterable[Connection],
                    color: BGR,
                    thickness: int = 1) -> None:
    h, w = canvas.shape[:2]
    n = len(landmarks)
    for a, b in connections:
        if a >= n or b >= n:
            continue
        cv2.line(canvas, _to_px(landmarks[a], w, h), _to_px(landmarks[b], w, h), color, thickness, cv2.LINE_AA)


def draw_points(canvas: np.ndarray, landmarks: Sequence[Landmark], color: BGR, radius: int = 2) -> None:
    h, w = canvas.shape[:2]
    for p in landmarks:
        cv2.circle(canvas, _to_px(p, w, h), radius, color, -1, cv2.LINE_AA)


# -----------------------------------------------------------------------------
# Layers
# -----------------------------------------------------------------------------
class Layer:
    """One drawing step; draws in place on the canvas."""
    name = "layer"
    requires: Optional[Capability] = None

    def render(self, snapshot: PipelineSnapshot, canvas: np.ndarray) -> None:
        raise NotImplementedError


class BaseFrameLayer(Layer):
    name = "base"

    def render(self, snapshot, canvas):
        canvas[...] = snapshot.frame.image


class VirtualBackgroundLayer(Layer):
    """Blend a flat RGBA fill over the whole canvas."""
    name = "virtual_background"
    requires = Capability.SEGMENTATION

    def __init__(self, rgba: Tuple[int, int, int, int], transparency: float):
        r, g, b, a = rgba
        self.color = np.array([b, g, r], dtype=np.float32)
        self.alpha = float(transparency) * (a / 255.0)

    def render(self, snapshot, canvas):
        if snapshot.segmentation is None:
            return
        blended = canvas.astype(np.float32) * (1.0 - self.alpha) + self.color * self.alpha
        canvas[...] = blended.astype(np.uint8)


class ForegroundLayer(Layer):
    """Restore person pixels from the source frame where the mask clears the threshold."""
    name = "foreground"
    requires = Capability.SEGMENTATION

    def __init__(self, threshold: float):
        self.threshold = float(threshold)

    def render(self, snapshot, canvas):
        seg = snapshot.segmentation
        if seg is None:
            return
        mask = seg.mask
        h, w = canvas.shape[:2]
        if mask.shape[:2] != (h, w):
            mask = cv2.resize(mask, (w, h), interpolation=cv2.INTER_LINEAR)
        person = mask >= self.threshold
        canvas[person] = snapshot.frame.image[person]


class FaceLandmarksLayer(Layer):
    name = "face_landmarks"
    requires = Capability.FACE

    def __init__(self, groups: Optional[List[Tuple[List[Connection], BGR, int]]] = None):
        self._groups = groups

    @property
    def groups(self):
        if self._groups is None:
            self._groups = _face_connection_groups()
        return self._groups

    def render(self, snapshot, canvas):
        if not snapshot.faces.faces:
            return
        for face in snapshot.faces.faces:
            for conns, color, thickness in self.groups:
                draw_connectors(canvas, face.landmarks, conns, color, thickness)


class ObjectBoxesLayer(Layer):
    name = "object_boxes"
    requires = Capability.OBJECT

    def render(self, snapshot, canvas):
        h, w = canvas.shape[:2]
        for det in snapshot.detections.detections:
            box = det.bounding_box
            # clamp to image bounds
            x = max(0, min(box.origin_x, w - 1)); y = max(0, min(box.origin_y, h - 1))
            bw = max(0, min(box.width, w - x)); bh = max(0, min(box.height, h - y))
            cv2.rectangle(canvas, (x, y), (x + bw, y + bh), BOX_COLOR, 2)
            label = det.label
            if label is None:
                continue
            text = f"{label.category_name} - {label.score * 100:.2f}%"
            ty = y - 5 if y > 100 else 10
            cv2.putText(canvas, text, (x, ty), cv2.FONT_HERSHEY_SIMPLEX, 0.5, BOX_COLOR, 1, cv2.LINE_AA)


class HandLandmarksLayer(Layer):
    """Hand connectors and points, with the recognized gesture labelled at the wrist."""
    name = "hand_landmarks"
    requires = Capability.GESTURE

    def __init__(self, connections: Optional[List[Connection]] = None):
        self._connections = connections

    @property
    def connections(self) -> List[Connection]:
        if self._connections is None:
            self._connections = _hand_connections()
        return self._connections

    def render(self, snapshot, canvas):
        h, w = canvas.shape[:2]
        for hand in snapshot.gestures.hands:
            if not hand.landmarks:
                continue
            draw_connectors(canvas, hand.landmarks, self.connections, HAND_CONNECTION_COLOR, 5)
            draw_points(canvas, hand.landmarks, HAND_POINT_COLOR, 2)
            text = gesture_label(hand)
            if text:
                x, y = _to_px(hand.landmarks[0], w, h)
                cv2.putText(canvas, text, (x, min(h - 5, y + 20)), cv2.FONT_HERSHEY_SIMPLEX, 0.5,
                            HAND_CONNECTION_COLOR, 1, cv2.LINE_AA)


def gesture_label(hand: HandEntry) -> str:
    """'Thumb_Up - 80.00% (Right)'; empty when nothing was recognized."""
    parts = []
    if hand.gesture is not None and hand.gesture.category_name:
        parts.append(f"{hand.gesture.category_name} - {hand.gesture.score * 100:.2f}%")
    if hand.handedness is not None and hand.handedness.category_name:
        parts.append(f"({hand.handedness.category_name})")
    return " ".join(parts)


class MetricsBandLayer(Layer):
    name = "metrics_band"

    def render(self, snapshot, canvas):
        h, w = canvas.shape[:2]
        band_h = min(BAND_HEIGHT, h)
        band = canvas[:band_h]
        band[...] = (band.astype(np.float32) * 0.5).astype(np.uint8)
        e = snapshot.engagement
        font = cv2.FONT_HERSHEY_SIMPLEX
        white = (255, 255, 255)
        cv2.putText(canvas, f"Focus Score: {e.focus:.2f}%", (10, 25), font, 0.5, white, 1, cv2.LINE_AA)
        cv2.putText(canvas, f"Interest Score: {e.interest:.2f}%", (200, 25), font, 0.5, white, 1, cv2.LINE_AA)
        cv2.putText(canvas, f"Interest: {e.rating.value}", (420, 25), font, 0.5, white, 1, cv2.LINE_AA)
        cv2.putText(canvas, f"Persons: {snapshot.person_count}", (580, 25), font, 0.5, white, 1, cv2.LINE_AA)


def build_layers(settings: Settings, capabilities: Iterable[Capability] | None = None) -> List[Layer]:
    """
    Build the ordered layer list for the given settings.

    Args:
        settings: layer toggles and virtual-background options.
        capabilities: capabilities available this session; layers whose
            capability is missing are dropped. None keeps every toggled layer.
    """
    layers: List[Layer] = [BaseFrameLayer()]
    if settings.SEGMENTATION_ENABLED:
        layers.append(VirtualBackgroundLayer(settings.VIRTUAL_BACKGROUND_COLOR,
                                             settings.VIRTUAL_BACKGROUND_TRANSPARENCY))
        layers.append(ForegroundLayer(settings.SEGMENTATION_THRESHOLD))
    if settings.SHOW_FACE_LANDMARKS:
        layers.append(FaceLandmarksLayer())
    if settings.SHOW_OBJECT_DETECTIONS:
        layers.append(ObjectBoxesLayer())
    if settings.SHOW_HAND_LANDMARKS:
        layers.append(HandLandmarksLayer())
    layers.append(MetricsBandLayer())

    if capabilities is not None:
        available = set(capabilities)
        layers = [l for l in layers if l.requires is None or l.requires in available]
    logger.debug(f"[compositor] layers={[l.name for l in layers]}")
    return layers


class Compositor:
    """Runs the layer list over a snapshot and returns the composite image."""

    def __init__(self, settings: Settings,
                 capabilities: Iterable[Capability] | None = None,
                 layers: Optional[List[Layer]] = None):
        self.layers = layers if layers is not None else build_layers(settings, capabilities)

    @property
    def layer_names(self) -> List[str]:
        return [l.name for l in self.layers]

    def render(self, snapshot: PipelineSnapshot) -> CompositeFrame:
        canvas = np.empty_like(snapshot.frame.image)
        layer = None
        try:
            for layer in self.layers:
                layer.render(snapshot, canvas)
        except Exception as e:
            name = layer.name if layer is not None else "?"
            raise RenderError(f"layer '{name}' failed: {e}") from e
        return CompositeFrame(
            image=canvas,
            frame_seq=snapshot.frame.seq,
            timestamp_ms=snapshot.frame.timestamp_ms,
            engagement=snapshot.engagement,
            person_count=snapshot.person_count,
            detections=snapshot.detections,
            faces=snapshot.faces,
            gestures=snapshot.gestures,
        )
