"""
Render surfaces: where composited frames are handed to the host UI.
"""
from __future__ import annotations
import logging
import threading
from typing import Optional

import cv2

from vision_overlay.models import CompositeFrame

logger = logging.getLogger(__name__)


class RenderSurface:
    """In-process handoff of one composite per cycle."""

    def present(self, composite: CompositeFrame) -> None:
        raise NotImplementedError

    def close(self) -> None:
        pass


class LatestFrameSurface(RenderSurface):
    """Keeps only the newest composite for a host UI to pull."""

    def __init__(self):
        self._lock = threading.Lock()
        self._latest: Optional[CompositeFrame] = None
        self.presented = 0

    def present(self, composite: CompositeFrame) -> None:
        with self._lock:
            self._latest = composite
            self.presented += 1

    def latest(self) -> Optional[CompositeFrame]:
        with self._lock:
            return self._latest


class OpenCVWindowSurface(RenderSurface):
    """Shows composites in a cv2 window; 'q' requests quit."""

    def __init__(self, title: str = "Live Overlay (q to quit)", quit_key: str = "q"):
        self.title = title
        self.quit_key = quit_key
        self.quit_requested = False

    def present(self, composite: CompositeFrame) -> None:
        cv2.imshow(self.title, composite.image)
        if (cv2.waitKey(1) & 0xFF) == ord(self.quit_key):
            logger.debug("[surface] quit key pressed")
            self.quit_requested = True

    def close(self) -> None:
        try:
            cv2.destroyWindow(self.title)
        except cv2.error:
            logger.debug("[surface] window already closed")
