"""
Move Geometry – Squares ↔ Screen Points
========================================

Board-relative indexing used throughout the package:

  • column 0 = file ``a`` … column 7 = file ``h``
  • row 0 = rank 8 (top when White is at the bottom) … row 7 = rank 1

``orient_cell`` is the single place that maps between *visual* cells (as
they appear in the captured image, row 0 at the top) and board-relative
cells.  The board reconstructor and the arrow geometry both go through it,
so ``point_to_square(square_to_point(sq))`` always returns ``sq``.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import NamedTuple, Optional, Tuple

FILES = "abcdefgh"


class Orientation(enum.Enum):
    """Which side of the captured image holds rank 1."""
    WHITE_BOTTOM = "white_bottom"
    BLACK_BOTTOM = "black_bottom"


class Point(NamedTuple):
    x: float
    y: float


@dataclass(frozen=True)
class BoardRect:
    """Axis-aligned board bounds (top-left corner + size)."""
    x: float
    y: float
    w: float
    h: float

    @property
    def is_empty(self) -> bool:
        return self.w <= 0.0 or self.h <= 0.0

    def cell_size(self) -> Tuple[float, float]:
        return self.w / 8.0, self.h / 8.0

    def to_screen(self, region_x: float, region_y: float,
                  region_w: float, region_h: float) -> "BoardRect":
        """Scale a rect normalised to a captured region into screen pixels."""
        return BoardRect(
            x=region_x + self.x * region_w,
            y=region_y + self.y * region_h,
            w=self.w * region_w,
            h=self.h * region_h,
        )


EMPTY_RECT = BoardRect(0.0, 0.0, 0.0, 0.0)


# ── Orientation mapping ────────────────────────────────────────────────

def orient_cell(row: int, col: int, orientation: Orientation) -> Tuple[int, int]:
    """Map a visual cell to a board-relative cell (and back – it is an involution)."""
    if orientation is Orientation.BLACK_BOTTOM:
        return 7 - row, 7 - col
    return row, col


def square_to_cell(square: str) -> Optional[Tuple[int, int]]:
    """``"e4"`` → board-relative ``(row, col)``, or ``None`` if malformed."""
    if len(square) != 2:
        return None
    file_ch, rank_ch = square[0], square[1]
    if file_ch not in FILES or rank_ch not in "12345678":
        return None
    return 8 - int(rank_ch), FILES.index(file_ch)


def cell_to_square(row: int, col: int) -> Optional[str]:
    if not (0 <= row <= 7 and 0 <= col <= 7):
        return None
    return f"{FILES[col]}{8 - row}"


# ── Squares → screen ───────────────────────────────────────────────────

def square_to_point(
    square: str,
    rect: BoardRect,
    orientation: Orientation,
) -> Optional[Point]:
    """Centre of *square* inside *rect*, honouring the board orientation."""
    cell = square_to_cell(square)
    if cell is None:
        return None
    row, col = orient_cell(cell[0], cell[1], orientation)
    if not (0 <= row <= 7 and 0 <= col <= 7):
        return None

    cell_w, cell_h = rect.cell_size()
    return Point(
        rect.x + (col + 0.5) * cell_w,
        rect.y + (row + 0.5) * cell_h,
    )


def move_to_segment(
    move: str,
    rect: BoardRect,
    orientation: Orientation,
) -> Optional[Tuple[Point, Point]]:
    """Turn a UCI move (``"e2e4"``, ``"e7e8q"``) into arrow endpoints.

    Returns ``None`` for malformed codes or squares off the board.
    Promotion suffixes are ignored.
    """
    if len(move) < 4:
        return None
    start = square_to_point(move[0:2], rect, orientation)
    end = square_to_point(move[2:4], rect, orientation)
    if start is None or end is None:
        return None
    return start, end


# ── Screen → squares ───────────────────────────────────────────────────

def point_to_cell(
    x: float,
    y: float,
    rect: BoardRect,
    orientation: Orientation,
) -> Optional[Tuple[int, int]]:
    """Board-relative ``(row, col)`` under point ``(x, y)``.

    Points outside *rect* (or an empty rect) yield ``None``.
    """
    if rect.is_empty:
        return None
    if x < rect.x or x > rect.x + rect.w or y < rect.y or y > rect.y + rect.h:
        return None

    cell_w, cell_h = rect.cell_size()
    v_col = int((x - rect.x) // cell_w)
    v_row = int((y - rect.y) // cell_h)
    if not (0 <= v_col < 8 and 0 <= v_row < 8):
        return None
    return orient_cell(v_row, v_col, orientation)


def point_to_square(
    x: float,
    y: float,
    rect: BoardRect,
    orientation: Orientation,
) -> Optional[str]:
    cell = point_to_cell(x, y, rect, orientation)
    if cell is None:
        return None
    return cell_to_square(*cell)
