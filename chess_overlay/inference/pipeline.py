"""
Recognition Pipeline – Image → Board Reading
=============================================

This is the single-call entry point for turning one captured frame into
something the engine can search.

Pipeline stages:
  1. Detection          – YOLOv8 forward pass (board + 12 piece classes)
  2. Decoding & NMS     – raw tensor → deduplicated detections
  3. Board anchoring    – neutral-orientation pass locates the board
  4. Orientation        – pawn distribution decides which side is down
  5. Placement          – grid rebuilt with that orientation, kings checked

Optional extras:
  • Debug visualisation (detection boxes, grid, move arrows)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol, Sequence

import cv2
import numpy as np

from chess_overlay.inference.board import (
    MIN_BOARD_SIZE,
    BoardReading,
    detect_orientation,
    detections_to_placement,
    reconstruct,
)
from chess_overlay.inference.detections import Detection
from chess_overlay.inference.geometry import BoardRect, Orientation

log = logging.getLogger(__name__)


class Detector(Protocol):
    """Anything that turns a BGR image into normalised detections."""

    def detect(
        self,
        image: np.ndarray,
        conf_threshold: float,
        iou_threshold: float = 0.45,
    ) -> List[Detection]:
        ...


# ── Result dataclass ──────────────────────────────────────────────────

@dataclass
class RecognitionResult:
    """Full output of one recognition pass."""
    detections: List[Detection]                    # After NMS
    orientation: Orientation                       # Inferred this frame
    rect: BoardRect                                # Normalised board bounds
    placement: str                                 # Placement (even if rejected)
    reading: Optional[BoardReading] = None         # None → skip analysis
    moves: Dict[str, List[str]] = field(default_factory=dict)

    @property
    def is_valid(self) -> bool:
        return self.reading is not None

    def fen(self, side: str) -> Optional[str]:
        if self.reading is None:
            return None
        return self.reading.fen(side)


# ── Pipeline class ─────────────────────────────────────────────────────

class RecognitionPipeline:
    """Captured frame → validated board reading.

    Parameters
    ----------
    detector : Detector
        Typically a ``YoloDetector``; tests pass a stub.
    confidence_threshold : float
        Minimum class score for a detection to be kept.
    iou_threshold : float
        NMS overlap threshold.
    min_board_size : float
        Board detections narrower or shorter than this (normalised) are
        ignored.
    """

    def __init__(
        self,
        detector: Detector,
        confidence_threshold: float = 0.5,
        iou_threshold: float = 0.45,
        min_board_size: float = MIN_BOARD_SIZE,
    ) -> None:
        self.detector = detector
        self.confidence_threshold = confidence_threshold
        self.iou_threshold = iou_threshold
        self.min_board_size = min_board_size

    # ── Public API ─────────────────────────────────────────────────────

    def recognize(
        self,
        image: np.ndarray,
        confidence_threshold: Optional[float] = None,
        iou_threshold: Optional[float] = None,
    ) -> RecognitionResult:
        """Run detection and reconstruction on a BGR image.

        Threshold arguments override the instance defaults for this call
        only, so a long-running worker can follow live settings.
        """
        conf = self.confidence_threshold if confidence_threshold is None else confidence_threshold
        iou = self.iou_threshold if iou_threshold is None else iou_threshold

        detections = self.detector.detect(image, conf, iou)
        return self.recognize_detections(detections)

    def recognize_detections(self, detections: Sequence[Detection]) -> RecognitionResult:
        """Reconstruction half of ``recognize`` for already-decoded detections."""
        detections = list(detections)
        reading = reconstruct(detections, self.min_board_size)

        if reading is not None:
            return RecognitionResult(
                detections=detections,
                orientation=reading.orientation,
                rect=reading.rect,
                placement=reading.placement,
                reading=reading,
            )

        orientation = detect_orientation(detections)
        placement, rect = detections_to_placement(
            detections, orientation, self.min_board_size,
        )
        return RecognitionResult(
            detections=detections,
            orientation=orientation,
            rect=rect,
            placement=placement,
        )

    # ── Debug visualisation ────────────────────────────────────────────

    def visualize(
        self,
        image: np.ndarray,
        result: RecognitionResult,
        show: bool = True,
        save_path: Optional[str] = None,
    ) -> np.ndarray:
        """Draw detections, the board grid and any move arrows on *image*.

        Parameters
        ----------
        image : np.ndarray
            The BGR frame that was recognised.
        result : RecognitionResult
            Output of ``recognize()`` (``moves`` filled in by the caller).
        show : bool
            Display with ``cv2.imshow`` (blocks until key press).
        save_path : str, optional
            Save the annotated image to disk.

        Returns
        -------
        np.ndarray
            Annotated BGR image.
        """
        from chess_overlay.overlay import arrows_for_moves, draw_arrows

        vis = image.copy()
        h, w = vis.shape[:2]

        for det in result.detections:
            x1, y1, x2, y2 = det.bounds()
            p1 = (int(x1 * w), int(y1 * h))
            p2 = (int(x2 * w), int(y2 * h))
            color = (255, 200, 0) if det.class_id == 0 else (0, 200, 255)
            cv2.rectangle(vis, p1, p2, color, 1)
            cv2.putText(
                vis, f"{det.class_name} {det.confidence:.0%}",
                (p1[0], max(p1[1] - 3, 10)),
                cv2.FONT_HERSHEY_SIMPLEX, 0.35, color, 1,
            )

        # Pixel-space board rect for the grid and arrows
        rect = result.rect.to_screen(0, 0, w, h)
        if not rect.is_empty:
            cell_w, cell_h = rect.cell_size()
            for i in range(9):
                x = int(rect.x + i * cell_w)
                y = int(rect.y + i * cell_h)
                cv2.line(vis, (x, int(rect.y)), (x, int(rect.y + rect.h)), (80, 80, 80), 1)
                cv2.line(vis, (int(rect.x), y), (int(rect.x + rect.w), y), (80, 80, 80), 1)

        arrows = []
        for side, moves in result.moves.items():
            arrows.extend(arrows_for_moves(moves, rect, result.orientation, side))
        vis = draw_arrows(vis, arrows)

        cv2.putText(
            vis, f"FEN: {result.placement}  ({result.orientation.value})",
            (10, h - 10),
            cv2.FONT_HERSHEY_SIMPLEX, 0.45, (255, 255, 255), 1,
        )

        if save_path:
            cv2.imwrite(save_path, vis)
            log.info("Saved debug image to %s", save_path)

        if show:
            cv2.imshow("Chess Overlay", vis)
            cv2.waitKey(0)
            cv2.destroyAllWindows()

        return vis
