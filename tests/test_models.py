import numpy as np

from vision_overlay.models import (
    BoundingBox,
    Category,
    Detection,
    DetectionResult,
    FaceEntry,
    FaceResult,
    PipelineSnapshot,
    SegmentationMask,
)
from fakes import make_frame


def _det(name, score=0.9):
    return Detection(bounding_box=BoundingBox(origin_x=0, origin_y=0, width=4, height=4),
                     categories=[Category(category_name=name, score=score)])


def test_person_count_counts_person_detections_only():
    res = DetectionResult(detections=[_det("person"), _det("Person"), _det("cup")])
    assert res.person_count == 2
    snap = PipelineSnapshot(frame=make_frame(), detections=res)
    assert snap.person_count == 2
    assert _det("cup").label.category_name == "cup"
    assert Detection(bounding_box=BoundingBox(origin_x=0, origin_y=0, width=1, height=1)).label is None


def test_blendshape_scores_first_face_and_missing_face():
    face = FaceResult(faces=[FaceEntry(blendshapes=[Category(category_name="smile", score=0.4)])])
    assert face.blendshape_scores() == {"smile": 0.4}
    assert face.blendshape_scores(1) == {}
    assert FaceResult().blendshape_scores() == {}


def test_frame_dimensions_and_mask_binary():
    f = make_frame(w=40, h=30)
    assert (f.width, f.height) == (40, 30)
    m = SegmentationMask(mask=np.array([[0.2, 0.7], [0.69, 1.0]], dtype=np.float32))
    assert m.binary(0.7).tolist() == [[False, True], [False, True]]
