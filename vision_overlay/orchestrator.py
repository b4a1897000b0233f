# vision_overlay/orchestrator.py
"""
Per-frame scheduling loop.

Each cycle: read the latest frame -> fan out to every ready adapter ->
await them (bounded) -> engagement metrics -> composite -> hand to the surface
-> yield to the event loop. Exactly one cycle is in flight at a time; the
result buffer is only mutated inside a cycle, after all of its awaits
resolve, and the compositor only ever sees an immutable snapshot.
"""
from __future__ import annotations
import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Dict, Optional

from vision_overlay.camera import CameraSource
from vision_overlay.compositor import Compositor
from vision_overlay.config import Settings
from vision_overlay.detectors import DetectorAdapter
from vision_overlay.errors import RenderError
from vision_overlay.metrics import compute_engagement
from vision_overlay.models import (
    Capability,
    CompositeFrame,
    DetectionResult,
    EngagementScore,
    FaceResult,
    Frame,
    GestureResult,
    PipelineSnapshot,
)
from vision_overlay.surface import RenderSurface

logger = logging.getLogger(__name__)


class CycleState(str, Enum):
    IDLE = "Idle"
    DISPATCHING = "Dispatching"
    AGGREGATING = "Aggregating"
    RENDERED = "Rendered"


class PipelineOrchestrator:
    """Owns the result buffer and drives dispatch/aggregate/render cycles."""

    def __init__(self,
                 source: CameraSource,
                 adapters: Dict[Capability, DetectorAdapter],
                 compositor: Compositor,
                 settings: Settings,
                 is_running: Callable[[], bool],
                 surface: Optional[RenderSurface] = None):
        self._source = source
        self._adapters = dict(adapters)
        self._compositor = compositor
        self._settings = settings
        self._is_running = is_running
        self._surface = surface

        # result buffer: latest committed value per capability + its frame seq
        self._results: Dict[Capability, Any] = {}
        self._result_seqs: Dict[Capability, int] = {}
        self._engagement = EngagementScore()
        # calls that outlived the bounded wait of an earlier cycle
        self._pending: Dict[Capability, asyncio.Task] = {}
        self._last_seq: Optional[int] = None

        self.state = CycleState.IDLE
        self.cycles = 0
        self.dispatches = 0
        self.renders = 0
        self.last_composite: Optional[CompositeFrame] = None
        # False when the last cycle had no new frame to dispatch
        self.fresh_frame = False

    @property
    def capabilities(self):
        return list(self._adapters)

    # ---- loop ----
    async def run(self) -> None:
        """Run cycles until the pipeline leaves Running."""
        logger.info(f"[orchestrator] loop start capabilities={[c.value for c in self._adapters]}")
        try:
            while self._is_running():
                try:
                    await self.run_cycle()
                except Exception:
                    logger.exception("[orchestrator] cycle failed; continuing")
                # cooperative yield so stop requests are observed between cycles;
                # longer when the camera had nothing new
                pause = self._settings.IDLE_YIELD_S if self.fresh_frame else self._settings.STALE_YIELD_S
                await asyncio.sleep(pause)
        finally:
            self.state = CycleState.IDLE
            logger.info(f"[orchestrator] loop end cycles={self.cycles} dispatches={self.dispatches}")

    async def run_cycle(self) -> Optional[CompositeFrame]:
        frame = self._source.current_frame()
        if frame is None:
            self.fresh_frame = False
            return None
        self.cycles += 1

        self.fresh_frame = frame.seq != self._last_seq
        if self.fresh_frame:
            await self._dispatch(frame)
            self._last_seq = frame.seq
        else:
            logger.debug(f"[orchestrator] no new frame (seq={frame.seq}); re-rendering retained results")

        faces = self._results.get(Capability.FACE) or FaceResult()
        self._engagement = compute_engagement(faces)
        return self._render(self.snapshot(frame))

    async def drain(self, timeout: float | None = None) -> None:
        """Let calls still running from earlier cycles finish; their results are discarded."""
        if not self._pending:
            return
        tasks = list(self._pending.values())
        self._pending.clear()
        logger.debug(f"[orchestrator] draining {len(tasks)} in-flight call(s)")
        done, not_done = await asyncio.wait(tasks, timeout=timeout)
        for t in done:
            if not t.cancelled():
                t.exception()
        if not_done:
            logger.warning(f"[orchestrator] {len(not_done)} call(s) still running after drain")

    # ---- steps ----
    def _settle_pending(self) -> None:
        for cap, task in list(self._pending.items()):
            if not task.done():
                continue
            del self._pending[cap]
            exc = None if task.cancelled() else task.exception()
            logger.debug(f"[orchestrator] discarding late {cap.value} result (error={exc!r})")

    async def _dispatch(self, frame: Frame) -> None:
        self.state = CycleState.DISPATCHING
        self._settle_pending()

        tasks: Dict[Capability, asyncio.Task] = {}
        for cap, adapter in self._adapters.items():
            if not adapter.ready or cap in self._pending or adapter.in_flight:
                continue
            tasks[cap] = asyncio.create_task(
                adapter.infer(frame, frame.timestamp_ms), name=f"infer-{cap.value}-{frame.seq}"
            )
        self.dispatches += len(tasks)
        if not tasks:
            return

        done, _ = await asyncio.wait(tasks.values(), timeout=self._settings.INFER_TIMEOUT_S)
        self.state = CycleState.AGGREGATING

        for cap, task in tasks.items():
            if task not in done:
                logger.warning(f"[orchestrator] {cap.value} missed frame seq={frame.seq}; keeping last result")
                self._pending[cap] = task
                continue
            exc = task.exception()
            if exc is not None:
                logger.warning(f"[orchestrator] {cap.value} no update for seq={frame.seq}: {exc}")
                continue
            self._results[cap] = task.result()
            self._result_seqs[cap] = frame.seq

    def snapshot(self, frame: Frame) -> PipelineSnapshot:
        return PipelineSnapshot(
            frame=frame,
            detections=self._results.get(Capability.OBJECT) or DetectionResult(),
            faces=self._results.get(Capability.FACE) or FaceResult(),
            gestures=self._results.get(Capability.GESTURE) or GestureResult(),
            segmentation=self._results.get(Capability.SEGMENTATION),
            engagement=self._engagement,
            result_seqs=dict(self._result_seqs),
        )

    def _render(self, snapshot: PipelineSnapshot) -> Optional[CompositeFrame]:
        try:
            composite = self._compositor.render(snapshot)
        except RenderError:
            logger.exception(f"[orchestrator] render failed for seq={snapshot.frame.seq}; skipping output")
            return None
        self.state = CycleState.RENDERED
        self.renders += 1
        self.last_composite = composite
        if self._surface is not None:
            try:
                self._surface.present(composite)
            except Exception:
                logger.exception("[orchestrator] surface rejected composite")
        return composite
