"""
Engagement metrics from facial blend-shapes.
"""
from __future__ import annotations
from vision_overlay.models import EngagementScore, FaceResult, InterestRating

BLINK_SHAPES = ("eyeBlinkLeft", "eyeBlinkRight")
INTEREST_SHAPES = ("smile", "mouthOpen", "mouthSmileLeft", "mouthSmileRight")


def _sum_shapes(face: FaceResult, names) -> float:
    scores = face.blendshape_scores(0)
    return sum(scores.get(n, 0.0) for n in names)


def focus_score(face: FaceResult) -> float:
    """
    (1 - (eyeBlinkLeft + eyeBlinkRight)) * 100 for the first face, 0 with no face.

    Not clamped: heavy blinking on both eyes yields a negative score.
    """
    if not face.faces:
        return 0.0
    return (1.0 - _sum_shapes(face, BLINK_SHAPES)) * 100.0


def interest_score(face: FaceResult) -> float:
    """25 * (smile + mouthOpen + mouthSmileLeft + mouthSmileRight), 0 with no face."""
    if not face.faces:
        return 0.0
    return 25.0 * _sum_shapes(face, INTEREST_SHAPES)


def interest_rating(score: float) -> InterestRating:
    if score >= 80:
        return InterestRating.VERY_GOOD
    if score >= 60:
        return InterestRating.GOOD
    if score >= 40:
        return InterestRating.NEUTRAL
    if score >= 20:
        return InterestRating.BAD
    return InterestRating.VERY_BAD


def compute_engagement(face: FaceResult) -> EngagementScore:
    interest = interest_score(face)
    return EngagementScore(
        focus=focus_score(face),
        interest=interest,
        rating=interest_rating(interest),
    )
