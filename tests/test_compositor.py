import sys
import types

import numpy as np
import pytest

from vision_overlay.compositor import (
    BaseFrameLayer,
    Compositor,
    FaceLandmarksLayer,
    Layer,
    build_layers,
    gesture_label,
)
from vision_overlay.config import Settings
from vision_overlay.errors import RenderError
from vision_overlay.models import (
    BoundingBox,
    Capability,
    Category,
    Detection,
    DetectionResult,
    EngagementScore,
    FaceEntry,
    FaceResult,
    GestureResult,
    HandEntry,
    Landmark,
    PipelineSnapshot,
    SegmentationMask,
)
from fakes import make_frame

ALL_ON = dict(SHOW_FACE_LANDMARKS=True, SHOW_HAND_LANDMARKS=True,
              SHOW_OBJECT_DETECTIONS=True, SEGMENTATION_ENABLED=True)


def test_layer_order_with_everything_enabled():
    names = [l.name for l in build_layers(Settings(**ALL_ON))]
    assert names == ["base", "virtual_background", "foreground", "face_landmarks",
                     "object_boxes", "hand_landmarks", "metrics_band"]


def test_layers_follow_toggles_and_capabilities():
    s = Settings(**ALL_ON)
    names = Compositor(s, capabilities=[Capability.OBJECT, Capability.FACE]).layer_names
    assert "hand_landmarks" not in names
    assert "virtual_background" not in names and "foreground" not in names
    assert "object_boxes" in names and "metrics_band" in names

    names = Compositor(Settings(SHOW_HAND_LANDMARKS=False, SHOW_OBJECT_DETECTIONS=False,
                                SHOW_FACE_LANDMARKS=False, SEGMENTATION_ENABLED=False)).layer_names
    assert names == ["base", "metrics_band"]


def test_empty_results_render_cleanly():
    frame = make_frame(7, w=120, h=120, value=90)
    out = Compositor(Settings(**ALL_ON)).render(PipelineSnapshot(frame=frame))
    assert out.image.shape == frame.image.shape
    assert out.frame_seq == 7 and out.timestamp_ms == frame.timestamp_ms
    assert out.person_count == 0
    # below the band the frame passes through untouched
    assert (out.image[60:] == 90).all()
    # source frame is never drawn on
    assert (frame.image == 90).all()


def test_object_boxes_are_drawn():
    frame = make_frame(1, w=120, h=120)
    det = Detection(bounding_box=BoundingBox(origin_x=10, origin_y=70, width=20, height=20),
                    categories=[Category(category_name="person", score=0.87)])
    snap = PipelineSnapshot(frame=frame, detections=DetectionResult(detections=[det]))
    out = Compositor(Settings(SHOW_OBJECT_DETECTIONS=True)).render(snap)
    assert out.image[70, 20].tolist() == [0, 0, 255]
    assert out.person_count == 1


HAND_TABLE = "mediapipe.tasks.python.vision.hand_landmarker"


def _fake_hand_tables(monkeypatch, pairs):
    for name in ("mediapipe", "mediapipe.tasks", "mediapipe.tasks.python", "mediapipe.tasks.python.vision"):
        monkeypatch.setitem(sys.modules, name, types.ModuleType(name))
    mod = types.ModuleType(HAND_TABLE)
    mod.HandLandmarksConnections = types.SimpleNamespace(
        HAND_CONNECTIONS=[types.SimpleNamespace(start=a, end=b) for a, b in pairs])
    monkeypatch.setitem(sys.modules, HAND_TABLE, mod)


def test_hand_landmarks_use_mediapipe_topology_and_label_gesture(monkeypatch):
    _fake_hand_tables(monkeypatch, [(0, 1)])
    frame = make_frame(1, w=120, h=120)
    points = [Landmark(x=0.2, y=0.7), Landmark(x=0.9, y=0.7)]
    hand = HandEntry(landmarks=points,
                     gesture=Category(category_name="Thumb_Up", score=0.8),
                     handedness=Category(category_name="Right", score=0.99))
    snap = PipelineSnapshot(frame=frame, gestures=GestureResult(hands=[hand]))
    comp = Compositor(Settings(SHOW_HAND_LANDMARKS=True))
    out = comp.render(snap)
    assert comp.layers[1].connections == [(0, 1)]
    # connector between the two points
    assert out.image[82:87, 66, 1].max() > 0
    # gesture label below the wrist
    assert out.image[95:110, 24:110].any()
    assert out.gestures.hands[0].gesture.category_name == "Thumb_Up"


def test_gesture_label_text():
    hand = HandEntry(gesture=Category(category_name="Thumb_Up", score=0.8),
                     handedness=Category(category_name="Right", score=0.99))
    assert gesture_label(hand) == "Thumb_Up - 80.00% (Right)"
    assert gesture_label(HandEntry()) == ""


def test_face_layer_uses_given_connection_groups():
    frame = make_frame(1, w=120, h=120)
    face = FaceEntry(landmarks=[Landmark(x=0.1, y=0.8), Landmark(x=0.9, y=0.8)])
    layer = FaceLandmarksLayer(groups=[([(0, 1)], (255, 255, 255), 1)])
    out = Compositor(Settings(), layers=[BaseFrameLayer(), layer]).render(
        PipelineSnapshot(frame=frame, faces=FaceResult(faces=[face])))
    assert out.image[94:99, 60].max() > 0
    assert not out.image[:80].any()


def test_virtual_background_keeps_person_pixels():
    frame = make_frame(1, w=120, h=120, value=200)
    mask = np.zeros((120, 120), dtype=np.float32)
    mask[:, :60] = 1.0
    s = Settings(SEGMENTATION_ENABLED=True, SHOW_HAND_LANDMARKS=False, SEGMENTATION_THRESHOLD=0.7,
                 VIRTUAL_BACKGROUND_COLOR=(0, 0, 0, 255), VIRTUAL_BACKGROUND_TRANSPARENCY=0.5)
    out = Compositor(s).render(PipelineSnapshot(frame=frame, segmentation=SegmentationMask(mask=mask)))
    assert (out.image[100, 10] == 200).all()
    assert (out.image[100, 100] == 100).all()

    # no mask yet: the frame passes through
    out = Compositor(s).render(PipelineSnapshot(frame=frame))
    assert (out.image[100, 100] == 200).all()


def test_metrics_band_is_drawn():
    frame = make_frame(1, w=640, h=120, value=200)
    snap = PipelineSnapshot(frame=frame, engagement=EngagementScore(focus=70.0, interest=22.5))
    out = Compositor(Settings(SHOW_HAND_LANDMARKS=False)).render(snap)
    assert out.image[45, 5].tolist() == [100, 100, 100]
    assert (out.image[:50] > 150).any()


class _Broken(Layer):
    name = "broken"

    def render(self, snapshot, canvas):
        raise ValueError("bad geometry")


def test_layer_failure_is_render_error():
    with pytest.raises(RenderError, match="broken"):
        Compositor(Settings(), layers=[_Broken()]).render(PipelineSnapshot(frame=make_frame()))
