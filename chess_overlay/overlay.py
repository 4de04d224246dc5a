"""
Overlay Rendering – Arrows, Region Selection & Preview Window
==============================================================

The analysis worker only produces data (screen-space segments and
colours).  Everything here consumes that data with OpenCV:

  • ``arrows_for_moves`` – ranked moves → coloured ``Arrow`` segments.
    The best line is opaque, the second 160/255, the rest 80/255.
  • ``draw_arrows``      – alpha-blend arrows onto a BGR image, scaled by
    the display's pixel density.
  • ``select_region``    – drag a rectangle on a screenshot.
  • ``OverlayPreview``   – window that shows the latest analysed frame.
    Keys: ``b`` toggles the analysed side, ``q`` / Esc quits.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

import cv2
import numpy as np

from chess_overlay.config import ConfigStore, Region
from chess_overlay.inference.geometry import (
    BoardRect,
    Orientation,
    Point,
    move_to_segment,
)

log = logging.getLogger(__name__)

# BGR base colour per analysed side
SIDE_COLORS = {
    "white": (0, 255, 0),
    "black": (255, 140, 0),
}
RANK_OPACITY = (255, 160, 80)

ARROW_THICKNESS = 5
ARROW_HEAD = 15


@dataclass(frozen=True)
class Arrow:
    """One move arrow in screen coordinates."""
    start: Point
    end: Point
    color: Tuple[int, int, int]    # BGR
    alpha: int                     # 0–255
    move: str


def arrows_for_moves(
    moves: Sequence[str],
    rect: BoardRect,
    orientation: Orientation,
    side: str = "white",
) -> List[Arrow]:
    """Build arrows for ranked *moves*; malformed moves are skipped."""
    color = SIDE_COLORS.get(side, SIDE_COLORS["white"])
    arrows: List[Arrow] = []
    for rank, move in enumerate(moves):
        segment = move_to_segment(move, rect, orientation)
        if segment is None:
            log.debug("Skipping unplottable move %r", move)
            continue
        alpha = RANK_OPACITY[min(rank, len(RANK_OPACITY) - 1)]
        arrows.append(Arrow(segment[0], segment[1], color, alpha, move))
    return arrows


def draw_arrows(
    image: np.ndarray,
    arrows: Iterable[Arrow],
    origin: Tuple[float, float] = (0.0, 0.0),
    scale: float = 1.0,
) -> np.ndarray:
    """Alpha-blend *arrows* onto a copy of *image*.

    Screen coordinates are shifted by *origin* (the captured region's
    top-left) and multiplied by *scale* (physical pixels per logical
    pixel).  Lower-ranked arrows are drawn first so the best move ends up
    on top.
    """
    out = image.copy()
    ox, oy = origin
    thickness = max(1, int(round(ARROW_THICKNESS * scale)))

    for arrow in reversed(list(arrows)):
        p1 = (int(round((arrow.start.x - ox) * scale)), int(round((arrow.start.y - oy) * scale)))
        p2 = (int(round((arrow.end.x - ox) * scale)), int(round((arrow.end.y - oy) * scale)))
        length = float(np.hypot(p2[0] - p1[0], p2[1] - p1[1]))
        if length < 1.0:
            continue

        layer = out.copy()
        cv2.arrowedLine(
            layer, p1, p2, arrow.color, thickness,
            line_type=cv2.LINE_AA,
            tipLength=min(ARROW_HEAD * scale / length, 0.5),
        )
        alpha = arrow.alpha / 255.0
        out = cv2.addWeighted(layer, alpha, out, 1.0 - alpha, 0)

    return out


def select_region(
    image: np.ndarray,
    origin: Tuple[int, int] = (0, 0),
    window: str = "Drag to select board",
) -> Optional[Region]:
    """Let the user drag a rectangle on *image*; ``None`` if cancelled."""
    x, y, w, h = cv2.selectROI(window, image, showCrosshair=False, fromCenter=False)
    cv2.destroyWindow(window)
    if w == 0 or h == 0:
        return None
    return Region(x=int(x) + origin[0], y=int(y) + origin[1], width=int(w), height=int(h))


class OverlayPreview:
    """Presentation loop: shows the most recent analysed frame.

    Never blocks on the worker.  When several frames were published
    between repaints only the newest is shown; when none was, the previous
    one stays up, so arrows persist through skipped cycles.
    """

    WINDOW = "Chess Overlay"

    def __init__(self, store: ConfigStore, results, refresh_ms: int = 50) -> None:
        self.store = store
        self.results = results
        self.refresh_ms = refresh_ms
        self.current = None

    def render(self) -> Optional[np.ndarray]:
        frame = self.results.take()
        if frame is not None:
            self.current = frame
        if self.current is None or self.current.image is None:
            return None

        region = self.current.region
        scale = self.store.snapshot().arrow_scale
        return draw_arrows(
            self.current.image, self.current.arrows,
            origin=(region.x, region.y), scale=scale,
        )

    def run(self) -> None:
        log.info("Preview running – 'b' toggles side, 'q' quits")
        try:
            while True:
                vis = self.render()
                if vis is not None:
                    cv2.imshow(self.WINDOW, vis)
                key = cv2.waitKey(self.refresh_ms) & 0xFF
                if key in (ord("q"), 27):
                    break
                if key == ord("b"):
                    self.store.toggle_side()
        finally:
            cv2.destroyAllWindows()
