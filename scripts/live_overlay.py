"""Run live camera overlay.

Usage:
    python scripts/live_overlay.py  # (to see camera overlay window)

Model files are read from the *_MODEL_PATH settings (see vision_overlay/config.py).
Press 'q' to quit the window.
"""
import logging

from vision_overlay.config import Settings
from vision_overlay.live import run_live_overlay

if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO)
    s = Settings()
    run_live_overlay(s)
