"""
Error taxonomy for the overlay pipeline.

Only DeviceUnavailable is fatal (to start); everything else degrades locally.
"""


class OverlayError(RuntimeError):
    pass


class DeviceUnavailable(OverlayError):
    """The capture device could not be acquired."""


class ModelLoadError(OverlayError):
    """A detector adapter failed to initialize; its capability is disabled for the session."""


class InferenceError(OverlayError):
    """A single adapter call failed; treated as no update for that adapter this cycle."""


class RenderError(OverlayError):
    """Compositing failed; the frame's visual output is skipped."""
