"""
Configuration for the live overlay pipeline.
"""
from pydantic import BaseModel
from typing import Tuple, List
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_rgba(name: str, default: Tuple[int, int, int, int]) -> Tuple[int, int, int, int]:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        parts = [int(p) for p in raw.replace(" ", "").split(",") if p]
    except ValueError:
        raise ValueError(f"{name} must be comma-separated integers r,g,b[,a], got {raw!r}") from None
    if len(parts) == 3:
        parts.append(255)
    return tuple(parts[:4])  # type: ignore[return-value]


def _env_list(name: str, default: str) -> List[str]:
    raw = os.getenv(name, default) or default
    return [p.strip().lower() for p in raw.split(",") if p.strip()]


class Settings(BaseModel):
    """
    Runtime settings with environment-variable overrides.
    """
    CAMERA_INDEX: int = int(os.getenv("CAMERA_INDEX", "0"))
    CAPTURE_WIDTH: int = int(os.getenv("CAPTURE_WIDTH", "1280"))
    CAPTURE_HEIGHT: int = int(os.getenv("CAPTURE_HEIGHT", "720"))

    # Layer toggles
    SHOW_FACE_LANDMARKS: bool = _env_bool("SHOW_FACE_LANDMARKS", False)
    SHOW_HAND_LANDMARKS: bool = _env_bool("SHOW_HAND_LANDMARKS", True)
    SHOW_OBJECT_DETECTIONS: bool = _env_bool("SHOW_OBJECT_DETECTIONS", False)
    SEGMENTATION_ENABLED: bool = _env_bool("SEGMENTATION_ENABLED", False)

    SEGMENTATION_THRESHOLD: float = float(os.getenv("SEGMENTATION_THRESHOLD", "0.7"))
    SCORE_THRESHOLD: float = float(os.getenv("SCORE_THRESHOLD", "0.5"))
    VIRTUAL_BACKGROUND_COLOR: Tuple[int, int, int, int] = _env_rgba("VIRTUAL_BACKGROUND_COLOR", (0, 0, 0, 255))
    VIRTUAL_BACKGROUND_TRANSPARENCY: float = float(os.getenv("VIRTUAL_BACKGROUND_TRANSPARENCY", "0.5"))

    # Detector options
    PERSON_ONLY: bool = _env_bool("PERSON_ONLY", False)
    NUM_FACES: int = int(os.getenv("NUM_FACES", "1"))
    NUM_HANDS: int = int(os.getenv("NUM_HANDS", "2"))
    ENABLED_CAPABILITIES: List[str] = _env_list("ENABLED_CAPABILITIES", "object,face,gesture,segmentation")

    OBJECT_MODEL_PATH: str = os.getenv("OBJECT_MODEL_PATH", "models/efficientdet_lite0.tflite")
    FACE_MODEL_PATH: str = os.getenv("FACE_MODEL_PATH", "models/face_landmarker.task")
    GESTURE_MODEL_PATH: str = os.getenv("GESTURE_MODEL_PATH", "models/gesture_recognizer.task")
    SEGMENTATION_MODEL_PATH: str = os.getenv("SEGMENTATION_MODEL_PATH", "models/selfie_segmenter.tflite")

    # Scheduling
    INFER_TIMEOUT_S: float = float(os.getenv("INFER_TIMEOUT_S", "0.5"))
    IDLE_YIELD_S: float = float(os.getenv("IDLE_YIELD_S", "0.005"))
    # back-off when the camera has not produced a new frame (about half a 30 fps frame)
    STALE_YIELD_S: float = float(os.getenv("STALE_YIELD_S", "0.015"))

    def __init__(self, **data):
        super().__init__(**data)
        for name in ("SEGMENTATION_THRESHOLD", "SCORE_THRESHOLD", "VIRTUAL_BACKGROUND_TRANSPARENCY"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be within [0, 1], got {value}")
        if len(self.VIRTUAL_BACKGROUND_COLOR) != 4:
            raise ValueError("VIRTUAL_BACKGROUND_COLOR must be an (r, g, b, a) tuple")
        if any(not 0 <= c <= 255 for c in self.VIRTUAL_BACKGROUND_COLOR):
            raise ValueError(f"VIRTUAL_BACKGROUND_COLOR channels must be within 0..255, got {self.VIRTUAL_BACKGROUND_COLOR}")
        # Normalize capability names: lower-case, drop unknown/duplicate entries
        known = ("object", "face", "gesture", "segmentation")
        caps = []
        for c in self.ENABLED_CAPABILITIES:
            c = c.strip().lower()
            if c in known and c not in caps:
                caps.append(c)
        object.__setattr__(self, "ENABLED_CAPABILITIES", caps)
