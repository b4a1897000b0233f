"""Test doubles for the frame source and detector adapters."""
import asyncio
import time

import numpy as np

from vision_overlay.detectors import DetectorAdapter
from vision_overlay.errors import DeviceUnavailable
from vision_overlay.models import (
    Category,
    FaceEntry,
    FaceResult,
    Frame,
    Landmark,
)


def make_frame(seq: int = 1, w: int = 64, h: int = 48, value: int = 0) -> Frame:
    img = np.full((h, w, 3), value, dtype=np.uint8)
    img.setflags(write=False)
    return Frame(image=img, timestamp_ms=1000 + seq * 33, seq=seq)


def face_with(**scores) -> FaceResult:
    shapes = [Category(category_name=k, score=v) for k, v in scores.items()]
    return FaceResult(faces=[FaceEntry(landmarks=[Landmark(x=0.5, y=0.5)], blendshapes=shapes)])


class FakeSource:
    """Frame source without hardware; produces a fresh frame per read when `advance` is set."""

    def __init__(self, fail: bool = False, advance: bool = True, w: int = 64, h: int = 48):
        self.fail = fail
        self.advance = advance
        self.w, self.h = w, h
        self.frame = None
        self.starts = 0
        self.release_count = 0
        self.constraints = None
        self._open = False
        self._seq = 0

    def start(self, constraints=None):
        if self.fail:
            raise DeviceUnavailable("no camera attached")
        self.starts += 1
        self.constraints = constraints
        self._open = True

    def stop(self):
        if not self._open:
            return
        self._open = False
        self.release_count += 1
        self.frame = None

    def current_frame(self):
        if self._open and self.advance:
            self._seq += 1
            self.frame = make_frame(self._seq, self.w, self.h)
        return self.frame


class FakeAdapter(DetectorAdapter):
    """Adapter over a canned result; can be slow, fail to load, or fail to infer."""

    def __init__(self, capability, result=None, delay=0.0, fail_load=False, fail_infer=False, load_delay=0.0):
        super().__init__()
        self.capability = capability
        self.result = result
        self.delay = delay
        self.fail_load = fail_load
        self.fail_infer = fail_infer
        self.load_delay = load_delay
        self.init_calls = 0
        self.calls = []

    def _load(self, settings):
        self.init_calls += 1
        if self.load_delay:
            time.sleep(self.load_delay)
        if self.fail_load:
            raise RuntimeError("model file missing")
        return object()

    def _run(self, frame, timestamp_ms):
        self.calls.append(frame.seq)
        if self.delay:
            time.sleep(self.delay)
        if self.fail_infer:
            raise RuntimeError("boom")
        return self.result(frame) if callable(self.result) else self.result


async def wait_for(predicate, timeout: float = 2.0, step: float = 0.005) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        await asyncio.sleep(step)
    return predicate()
