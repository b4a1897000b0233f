"""
Frame source backed by an OpenCV capture device.

A daemon reader thread pulls frames from cv2.VideoCapture and publishes only
the latest one; the pipeline reads it with current_frame() without blocking.
"""
from __future__ import annotations
import logging
import threading
import time
from typing import Optional, Tuple

import cv2

from vision_overlay.errors import DeviceUnavailable
from vision_overlay.models import Frame

logger = logging.getLogger(__name__)

READ_RETRY_SLEEP = 0.01   # seconds to back off after a failed read
JOIN_TIMEOUT_S = 2.0


class CameraSource:
    """Latest-frame publisher over a local capture device."""

    def __init__(self, camera_index: int = 0):
        self.camera_index = camera_index
        self._cap = None
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._lock = threading.Lock()
        self._latest: Optional[Frame] = None
        self._seq = 0
        self._last_ts = -1
        self.release_count = 0

    @property
    def running(self) -> bool:
        return self._cap is not None

    # ---- lifecycle ----
    def start(self, constraints: Tuple[int, int] | None = None) -> None:
        """
        Open the device and start the reader thread.

        Args:
            constraints: optional (width, height) requested from the driver.

        Raises:
            DeviceUnavailable: the device cannot be opened.
        """
        if self._cap is not None:
            return
        logger.debug(f"[camera] opening device index={self.camera_index} constraints={constraints}")
        cap = cv2.VideoCapture(self.camera_index)
        if not cap.isOpened():
            cap.release()
            raise DeviceUnavailable(f"Could not open camera index {self.camera_index}")
        if constraints is not None:
            width, height = constraints
            cap.set(cv2.CAP_PROP_FRAME_WIDTH, int(width))
            cap.set(cv2.CAP_PROP_FRAME_HEIGHT, int(height))

        self._cap = cap
        self._seq = 0
        self._last_ts = -1
        self._stop_event = threading.Event()
        self._thread = threading.Thread(target=self._reader_loop, args=(cap, self._stop_event),
                                        name="camera-reader", daemon=True)
        self._thread.start()
        logger.info(f"[camera] started index={self.camera_index}")

    def stop(self) -> None:
        """Stop the reader and release the device. Safe to call repeatedly."""
        if self._cap is None:
            return
        self._stop_event.set()
        thread, self._thread = self._thread, None
        self._cap = None
        # the reader releases the device once its current read returns
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=JOIN_TIMEOUT_S)
            if thread.is_alive():
                logger.warning(f"[camera] reader still blocked in read after {JOIN_TIMEOUT_S}s; "
                               f"device {self.camera_index} is released when it returns")
        self.release_count += 1
        with self._lock:
            self._latest = None
        logger.info(f"[camera] stopped index={self.camera_index}")

    def current_frame(self) -> Optional[Frame]:
        with self._lock:
            return self._latest

    # ---- reader ----
    def _next_timestamp(self) -> int:
        # VIDEO-mode detectors require strictly increasing timestamps
        ts = int(time.monotonic() * 1000)
        if ts <= self._last_ts:
            ts = self._last_ts + 1
        self._last_ts = ts
        return ts

    def _reader_loop(self, cap, stop: threading.Event) -> None:
        try:
            while not stop.is_set():
                ok, image = cap.read()
                if stop.is_set():
                    break
                if not ok or image is None:
                    time.sleep(READ_RETRY_SLEEP)
                    continue
                image.setflags(write=False)
                self._seq += 1
                frame = Frame(image=image, timestamp_ms=self._next_timestamp(), seq=self._seq)
                with self._lock:
                    if not stop.is_set():
                        self._latest = frame
        finally:
            cap.release()
            logger.debug(f"[camera] reader exited; device {self.camera_index} closed")

    def __enter__(self) -> "CameraSource":
        return self

    def __exit__(self, *_) -> None:
        self.stop()
