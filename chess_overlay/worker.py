"""
Analysis Worker – capture → detect → reconstruct → analyse → geometry
======================================================================

One background thread runs the whole pipeline at ``fps`` cycles per
second.  Per cycle it:

  1. takes a configuration snapshot (the lock is released immediately),
  2. grabs the board region,
  3. recognises the board (skips quietly if the king count is wrong),
  4. asks the engine for each requested side,
  5. publishes an ``OverlayFrame`` to a single-slot ``LatestResult``.

Failure policy:
  • Capture / inference errors skip the cycle.
  • Engine stream errors trigger one restart (options are re-applied);
    the cycle is skipped either way.  A failed restart is retried on the
    next cycle.
  • Nothing raised inside a cycle ends the thread, and a skipped cycle
    never clears the last published frame.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

import numpy as np

from chess_overlay.config import AppConfig, ConfigStore, Region
from chess_overlay.engine.uci import EngineState, UciEngine
from chess_overlay.errors import (
    CaptureUnavailable,
    EngineError,
    EngineStreamClosed,
    EngineTimeout,
    InferenceError,
    RestartFailed,
)
from chess_overlay.inference.geometry import BoardRect, Orientation
from chess_overlay.inference.pipeline import RecognitionPipeline
from chess_overlay.overlay import Arrow, arrows_for_moves

log = logging.getLogger(__name__)

EngineFactory = Callable[[AppConfig], UciEngine]


def default_engine_factory(cfg: AppConfig) -> UciEngine:
    return UciEngine(cfg.engine_path, analysis_timeout=cfg.analysis_timeout)


# ── Hand-off ──────────────────────────────────────────────────────────

@dataclass
class OverlayFrame:
    """Everything the presentation side needs to draw one result."""
    region: Region
    rect: BoardRect                                # board, screen pixels
    orientation: Orientation
    fens: Dict[str, str]
    moves: Dict[str, List[str]]
    arrows: List[Arrow]
    image: Optional[np.ndarray] = None             # the analysed capture
    timestamp: float = field(default_factory=time.time)


class LatestResult:
    """Single-slot mailbox: newer frames overwrite unread older ones."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._frame: Optional[OverlayFrame] = None

    def publish(self, frame: OverlayFrame) -> None:
        with self._lock:
            self._frame = frame

    def take(self) -> Optional[OverlayFrame]:
        """Return and clear the pending frame; never blocks."""
        with self._lock:
            frame, self._frame = self._frame, None
            return frame


# ── Worker ────────────────────────────────────────────────────────────

class AnalysisWorker:
    """Owns the engine session and runs the per-cycle pipeline.

    Parameters
    ----------
    store : ConfigStore
        Shared settings; read once per cycle.
    capture : object
        Has ``grab(region) -> BGR ndarray`` (``ScreenCapture``).
    pipeline : RecognitionPipeline
        Detection + reconstruction.
    engine_factory : callable
        Builds an *unstarted* ``UciEngine`` from a config snapshot.
    results : LatestResult, optional
        Where frames are published.
    """

    def __init__(
        self,
        store: ConfigStore,
        capture,
        pipeline: RecognitionPipeline,
        engine_factory: EngineFactory = default_engine_factory,
        results: Optional[LatestResult] = None,
    ) -> None:
        self.store = store
        self.capture = capture
        self.pipeline = pipeline
        self.engine_factory = engine_factory
        self.results = results if results is not None else LatestResult()

        self._engine: Optional[UciEngine] = None
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # ── Thread control ─────────────────────────────────────────────────

    def start(self) -> None:
        self._stop.clear()
        self._thread = threading.Thread(target=self.run, name="analysis-worker", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        self.join(timeout)

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def run(self) -> None:
        log.info("Analysis worker started")
        try:
            while not self._stop.is_set():
                cfg = self.store.snapshot()
                self.tick(cfg)
                self._stop.wait(1.0 / max(cfg.fps, 1))
        finally:
            self.shutdown()
            log.info("Analysis worker stopped")

    def shutdown(self) -> None:
        if self._engine is not None:
            self._engine.close()
            self._engine = None
        close = getattr(self.capture, "close", None)
        if close is not None:
            close()

    # ── One cycle ──────────────────────────────────────────────────────

    def tick(self, cfg: AppConfig) -> Optional[OverlayFrame]:
        """Run one cycle, publishing on success; never raises."""
        try:
            frame = self.run_cycle(cfg)
        except (CaptureUnavailable, InferenceError) as exc:
            log.warning("Skipping cycle: %s", exc)
            return None
        except EngineError as exc:
            log.warning("Skipping cycle, engine unavailable: %s", exc)
            return None
        except Exception:
            log.exception("Unexpected error in analysis cycle")
            return None

        if frame is not None:
            self.results.publish(frame)
        return frame

    def run_cycle(self, cfg: AppConfig) -> Optional[OverlayFrame]:
        """Capture, recognise and analyse once.

        Returns ``None`` when there is nothing to publish (stopped, no
        region, board rejected, or the engine had to be restarted).
        """
        if not cfg.running or cfg.region is None:
            return None

        image = self.capture.grab(cfg.region)
        result = self.pipeline.recognize(
            image,
            confidence_threshold=cfg.confidence_threshold,
            iou_threshold=cfg.iou_threshold,
        )
        reading = result.reading
        if reading is None:
            return None

        engine = self._ensure_engine(cfg)
        fens: Dict[str, str] = {}
        moves: Dict[str, List[str]] = {}
        try:
            for side in cfg.sides():
                fens[side] = reading.fen(side)
                moves[side] = engine.analyze(fens[side], cfg.depth, cfg.lines)
        except (EngineStreamClosed, EngineTimeout) as exc:
            log.warning("Engine failure (%s); attempting restart", exc)
            self._restart(cfg)
            return None

        region = cfg.region
        screen_rect = reading.rect.to_screen(region.x, region.y, region.width, region.height)
        arrows: List[Arrow] = []
        for side, side_moves in moves.items():
            arrows.extend(arrows_for_moves(side_moves, screen_rect, reading.orientation, side))

        log.debug("%s → %s", reading.placement, moves)
        return OverlayFrame(
            region=region,
            rect=screen_rect,
            orientation=reading.orientation,
            fens=fens,
            moves=moves,
            arrows=arrows,
            image=image,
        )

    # ── Engine ownership ───────────────────────────────────────────────

    def _configure(self, engine: UciEngine, cfg: AppConfig) -> None:
        engine.analysis_timeout = cfg.analysis_timeout
        engine.configure(threads=cfg.threads, hash_mb=cfg.hash_mb)

    def _ensure_engine(self, cfg: AppConfig) -> UciEngine:
        """Start the engine on first use; restart it if a previous cycle faulted it."""
        if self._engine is None:
            engine = self.engine_factory(cfg)
            try:
                engine.start()
                self._configure(engine, cfg)
            except EngineError:
                engine.close()
                raise
            self._engine = engine
        elif self._engine.state is EngineState.FAULTED:
            self._restart(cfg)
        else:
            self._engine.analysis_timeout = cfg.analysis_timeout
        return self._engine

    def _restart(self, cfg: AppConfig) -> None:
        try:
            self._engine.restart()
            self._configure(self._engine, cfg)
        except RestartFailed as exc:
            log.error("%s; will retry next cycle", exc)
            raise
