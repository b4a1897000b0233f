# vision_overlay/live.py
"""
Live (real-time) overlay host.

Wires the webcam, the enabled detector adapters, the lifecycle controller and
an OpenCV window together, and runs until the window's quit key is pressed:
- object boxes + labels, face mesh, hand landmarks (per layer toggles)
- optional virtual background from person segmentation
- focus / interest scores and interest rating in a top band
"""
from __future__ import annotations

import asyncio
import logging
from typing import Optional

from vision_overlay.camera import CameraSource
from vision_overlay.config import Settings
from vision_overlay.detectors import build_adapters
from vision_overlay.lifecycle import LifecycleController
from vision_overlay.surface import OpenCVWindowSurface, RenderSurface

logger = logging.getLogger(__name__)

POLL_INTERVAL_S = 0.05


async def run_pipeline(settings: Settings,
                       source: CameraSource,
                       surface: RenderSurface,
                       controller: Optional[LifecycleController] = None) -> LifecycleController:
    """
    Start the pipeline and keep it running until the surface asks to quit
    (or the pipeline leaves Running on its own), then stop it cleanly.
    """
    if controller is None:
        controller = LifecycleController(settings, source, build_adapters(settings), surface=surface)
    try:
        await controller.start()
        while controller.is_running() and not getattr(surface, "quit_requested", False):
            await asyncio.sleep(POLL_INTERVAL_S)
    finally:
        await controller.stop()
        controller.close()
        surface.close()
    return controller


def run_live_overlay(settings: Settings, camera_index: Optional[int] = None) -> None:
    """
    Open the webcam and show the annotated stream in a window.

    Press 'q' to quit.

    Raises:
        DeviceUnavailable: the camera could not be opened.
    """
    cam_idx = settings.CAMERA_INDEX if camera_index is None else camera_index
    logger.debug(f"[live] starting overlay camera_index={cam_idx} capabilities={settings.ENABLED_CAPABILITIES}")
    asyncio.run(run_pipeline(settings, CameraSource(cam_idx), OpenCVWindowSurface()))
