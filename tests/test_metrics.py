import pytest

from vision_overlay.metrics import compute_engagement, focus_score, interest_rating, interest_score
from vision_overlay.models import Category, FaceEntry, FaceResult, InterestRating
from fakes import face_with


def test_no_face_scores_zero():
    e = compute_engagement(FaceResult())
    assert e.focus == 0.0 and e.interest == 0.0
    assert e.rating == InterestRating.VERY_BAD


def test_focus_from_blinks():
    assert focus_score(face_with(eyeBlinkLeft=0.2, eyeBlinkRight=0.1)) == pytest.approx(70.0)
    # missing shapes count as zero
    assert focus_score(face_with(smile=0.9)) == pytest.approx(100.0)
    # not clamped
    assert focus_score(face_with(eyeBlinkLeft=0.8, eyeBlinkRight=0.7)) == pytest.approx(-50.0)


def test_interest_from_mouth_shapes():
    face = face_with(smile=0.1, mouthOpen=0.2, mouthSmileLeft=0.3, mouthSmileRight=0.3, eyeBlinkLeft=0.5)
    assert interest_score(face) == pytest.approx(22.5)
    assert compute_engagement(face).rating == InterestRating.BAD


def test_only_first_face_is_scored():
    first = FaceEntry(blendshapes=[Category(category_name="smile", score=0.4)])
    second = FaceEntry(blendshapes=[Category(category_name="smile", score=1.0)])
    assert interest_score(FaceResult(faces=[first, second])) == pytest.approx(10.0)


@pytest.mark.parametrize("score,rating", [
    (100.0, InterestRating.VERY_GOOD),
    (80.0, InterestRating.VERY_GOOD),
    (79.999, InterestRating.GOOD),
    (60.0, InterestRating.GOOD),
    (59.999, InterestRating.NEUTRAL),
    (40.0, InterestRating.NEUTRAL),
    (39.999, InterestRating.BAD),
    (20.0, InterestRating.BAD),
    (19.999, InterestRating.VERY_BAD),
    (0.0, InterestRating.VERY_BAD),
])
def test_interest_rating_bands(score, rating):
    assert interest_rating(score) == rating
