"""
Lifecycle controller: the only owner of PipelineState and of the capture device.

    Idle --start()--> Starting --device live & adapters ready--> Running
    Running --stop()--> Stopping --device released--> Idle
    Starting --DeviceUnavailable--> Failed --acknowledge()--> Idle
"""
from __future__ import annotations
import asyncio
import logging
from typing import Callable, Dict, Optional

from vision_overlay.camera import CameraSource
from vision_overlay.compositor import Compositor
from vision_overlay.config import Settings
from vision_overlay.detectors import DetectorAdapter
from vision_overlay.errors import DeviceUnavailable, ModelLoadError
from vision_overlay.models import Capability, PipelineState
from vision_overlay.orchestrator import PipelineOrchestrator
from vision_overlay.surface import RenderSurface

logger = logging.getLogger(__name__)


class LifecycleController:
    """Starts and stops the whole pipeline without leaking the device or stale work."""

    def __init__(self,
                 settings: Settings,
                 source: CameraSource,
                 adapters: Dict[Capability, DetectorAdapter],
                 surface: Optional[RenderSurface] = None,
                 on_state: Optional[Callable[[PipelineState], None]] = None):
        self.s = settings
        self._source = source
        self._adapters = dict(adapters)
        self._surface = surface
        self._on_state = on_state

        self._state = PipelineState.IDLE
        self._disabled: Dict[Capability, str] = {}
        self._stop_requested = False
        self._loop_task: Optional[asyncio.Task] = None
        self.orchestrator: Optional[PipelineOrchestrator] = None
        self.last_error: Optional[BaseException] = None

    # ---- read-only views ----
    @property
    def state(self) -> PipelineState:
        return self._state

    def is_running(self) -> bool:
        return self._state == PipelineState.RUNNING

    @property
    def disabled_capabilities(self) -> Dict[Capability, str]:
        return dict(self._disabled)

    @property
    def active_capabilities(self):
        return [c for c, a in self._adapters.items() if c not in self._disabled and a.ready]

    def _set_state(self, state: PipelineState) -> None:
        if state == self._state:
            return
        logger.info(f"[lifecycle] {self._state.value} -> {state.value}")
        self._state = state
        if self._on_state is not None:
            self._on_state(state)

    # ---- transitions ----
    async def start(self) -> None:
        """
        Acquire the device, initialize adapters, then begin the cycle loop.

        Raises:
            DeviceUnavailable: the capture device could not be opened; state becomes Failed.
        """
        if self._state in (PipelineState.STARTING, PipelineState.RUNNING):
            logger.debug(f"[lifecycle] start ignored in state {self._state.value}")
            return
        if self._state != PipelineState.IDLE:
            logger.debug(f"[lifecycle] start ignored in state {self._state.value}; acknowledge or wait first")
            return

        self._stop_requested = False
        self._set_state(PipelineState.STARTING)

        constraints = (self.s.CAPTURE_WIDTH, self.s.CAPTURE_HEIGHT)
        # the open runs in a worker thread and cannot be interrupted; shield it
        # so a cancelled start can wait for it before releasing the device
        device_task = asyncio.ensure_future(asyncio.to_thread(self._source.start, constraints))
        try:
            results = await asyncio.gather(asyncio.shield(device_task), self._initialize_adapters(),
                                           return_exceptions=True)
        except asyncio.CancelledError:
            logger.info("[lifecycle] start cancelled; releasing device")
            await self._settle_cancelled_open(device_task)
            self._set_state(PipelineState.IDLE)
            raise
        device_err = results[0] if isinstance(results[0], BaseException) else None
        if device_err is not None:
            self.last_error = device_err
            await asyncio.to_thread(self._source.stop)
            self._set_state(PipelineState.FAILED)
            if isinstance(device_err, DeviceUnavailable):
                raise device_err
            raise DeviceUnavailable(f"capture device failed to start: {device_err}") from device_err

        active = self.active_capabilities
        if self._disabled:
            logger.warning(f"[lifecycle] running degraded; disabled={[c.value for c in self._disabled]}")
        self.orchestrator = PipelineOrchestrator(
            source=self._source,
            adapters={c: self._adapters[c] for c in active},
            compositor=Compositor(self.s, capabilities=active),
            settings=self.s,
            is_running=self.is_running,
            surface=self._surface,
        )
        self._set_state(PipelineState.RUNNING)
        self._loop_task = asyncio.create_task(self.orchestrator.run(), name="overlay-cycle-loop")

        if self._stop_requested:
            logger.debug("[lifecycle] stop was requested during start")
            await self.stop()

    async def _settle_cancelled_open(self, device_task: asyncio.Future) -> None:
        await asyncio.wait({device_task})
        if not device_task.cancelled() and device_task.exception() is not None:
            logger.debug(f"[lifecycle] device open failed during cancelled start: {device_task.exception()}")
        await asyncio.to_thread(self._source.stop)

    async def _initialize_adapters(self) -> None:
        pending = {c: a for c, a in self._adapters.items() if c not in self._disabled and not a.ready}
        if not pending:
            return
        results = await asyncio.gather(*(a.initialize(self.s) for a in pending.values()), return_exceptions=True)
        for cap, res in zip(pending, results):
            if isinstance(res, ModelLoadError):
                # disabled for the rest of the session
                logger.warning(f"[lifecycle] {cap.value} disabled: {res}")
                self._disabled[cap] = str(res)
            elif isinstance(res, BaseException):
                logger.error(f"[lifecycle] {cap.value} disabled by unexpected error: {res!r}")
                self._disabled[cap] = repr(res)

    async def stop(self) -> None:
        """Stop the loop after its current cycle, drain in-flight calls, release the device."""
        if self._state == PipelineState.STARTING:
            self._stop_requested = True
            return
        if self._state != PipelineState.RUNNING:
            logger.debug(f"[lifecycle] stop ignored in state {self._state.value}")
            return

        self._set_state(PipelineState.STOPPING)
        try:
            if self._loop_task is not None:
                await self._loop_task
        except Exception:
            logger.exception("[lifecycle] cycle loop ended with an error")
        finally:
            self._loop_task = None
            if self.orchestrator is not None:
                await self.orchestrator.drain(timeout=self.s.INFER_TIMEOUT_S * 4)
            await asyncio.to_thread(self._source.stop)
            self._set_state(PipelineState.IDLE)

    def acknowledge(self) -> None:
        """Clear a Failed start so the pipeline can be started again."""
        if self._state != PipelineState.FAILED:
            return
        self.last_error = None
        self._set_state(PipelineState.IDLE)

    def close(self) -> None:
        """Release adapter models; call once the controller is Idle for good."""
        for adapter in self._adapters.values():
            adapter.close()

    async def wait(self) -> None:
        """Wait until the cycle loop ends (after stop())."""
        if self._loop_task is not None:
            await asyncio.shield(self._loop_task)
