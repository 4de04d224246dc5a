"""
Board Reconstruction – Detections → FEN Placement
==================================================

Responsibilities:
  1. Anchor piece detections to the board detection and map each piece
     centre to one of the 64 cells.
  2. Infer which side of the image holds White (pawn distribution).
  3. Repair the one confusion the detector is known to make: reporting
     *both* kings as white.
  4. Serialise the 8×8 grid into a FEN placement field.
  5. Refuse positions an engine cannot search (king counts).

Two-stage pipeline (``reconstruct``):
  • Stage 1 – neutral orientation pass, which locates the board.
  • Stage 2 – infer orientation, then rebuild the grid with it.

Both stages are pure functions of the detection list, so each can be
tested on its own.  Nothing is carried over between frames.

The validity check is *deliberately minimal*: exactly one king per
colour.  Legal-move generation, pawn counts, checks and so on are left
to the engine.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import List, Optional, Sequence, Tuple

from chess_overlay.inference.detections import Detection
from chess_overlay.inference.geometry import (
    EMPTY_RECT,
    BoardRect,
    Orientation,
    point_to_cell,
)
from chess_overlay.models.detector import (
    BLACK_KING,
    BLACK_PAWN,
    BOARD_CLASS,
    CLASS_TO_FEN,
    WHITE_KING,
    WHITE_PAWN,
)

log = logging.getLogger(__name__)

EMPTY_PLACEMENT = "8/8/8/8/8/8/8/8"
MIN_BOARD_SIZE = 0.2  # in normalised frame units; smaller "boards" are noise

Grid = List[List[Optional[str]]]


# ── Data structures ────────────────────────────────────────────────────

@dataclass(frozen=True)
class PlacedPiece:
    """A piece detection resolved to a board-relative cell."""
    row: int                   # 0 = rank 8 … 7 = rank 1
    col: int                   # 0 = file a … 7 = file h
    class_id: int
    confidence: float

    @property
    def fen_char(self) -> str:
        return CLASS_TO_FEN[self.class_id]


@dataclass
class BoardReading:
    """A validated board ready for engine analysis."""
    placement: str
    rect: BoardRect
    orientation: Orientation
    pieces: List[PlacedPiece] = field(default_factory=list)

    def fen(self, side: str) -> str:
        """Full FEN with *side* (``"white"``/``"black"``) to move."""
        return to_fen(self.placement, side)


# ── Board anchor ───────────────────────────────────────────────────────

def find_board(
    detections: Sequence[Detection],
    min_board_size: float = MIN_BOARD_SIZE,
) -> Optional[Detection]:
    """Highest-confidence board detection that is not tiny, or ``None``."""
    boards = [
        d for d in detections
        if d.class_id == BOARD_CLASS and d.w > min_board_size and d.h > min_board_size
    ]
    if not boards:
        return None
    return max(boards, key=lambda d: d.confidence)


def board_rect(board: Detection) -> BoardRect:
    x1, y1, x2, y2 = board.bounds()
    return BoardRect(x=x1, y=y1, w=x2 - x1, h=y2 - y1)


# ── Square assignment ──────────────────────────────────────────────────

def assign_squares(
    detections: Sequence[Detection],
    rect: BoardRect,
    orientation: Orientation,
) -> List[PlacedPiece]:
    """Map every piece whose centre lies on the board to a cell.

    Detections off the board, or of unknown classes, are dropped.
    Input order is preserved.
    """
    pieces: List[PlacedPiece] = []
    for det in detections:
        if det.class_id == BOARD_CLASS or det.class_id not in CLASS_TO_FEN:
            continue
        cell = point_to_cell(det.x, det.y, rect, orientation)
        if cell is None:
            continue
        row, col = cell
        pieces.append(PlacedPiece(
            row=row, col=col, class_id=det.class_id, confidence=det.confidence,
        ))
    return pieces


def resolve_duplicate_kings(pieces: Sequence[PlacedPiece]) -> List[PlacedPiece]:
    """Relabel one of two white kings as black when no black king was seen.

    The detector sometimes reports the black king as white.  Only the
    exact pattern *two white kings, zero black kings* is repaired: the
    king nearest rank 8 (smallest row; first seen on ties) becomes black.
    Any other bad count is left alone for validation to reject.
    """
    resolved = list(pieces)
    white_idx = [i for i, p in enumerate(resolved) if p.class_id == WHITE_KING]
    black_idx = [i for i, p in enumerate(resolved) if p.class_id == BLACK_KING]

    if len(white_idx) == 2 and not black_idx:
        target = min(white_idx, key=lambda i: resolved[i].row)
        resolved[target] = replace(resolved[target], class_id=BLACK_KING)
        log.debug(
            "Relabelled white king at row %d as black king", resolved[target].row,
        )
    return resolved


# ── Grid & FEN ─────────────────────────────────────────────────────────

def build_grid(pieces: Sequence[PlacedPiece]) -> Grid:
    """Fill an 8×8 grid; a later piece on the same cell overwrites an earlier one."""
    grid: Grid = [[None] * 8 for _ in range(8)]
    for p in pieces:
        grid[p.row][p.col] = p.fen_char
    return grid


def grid_to_placement(grid: Grid) -> str:
    """Run-length encode the grid into a FEN placement field (rank 8 first)."""
    rows: List[str] = []
    for row in grid:
        row_chars: List[str] = []
        empty_count = 0

        for cell in row:
            if cell is None:
                empty_count += 1
            else:
                if empty_count > 0:
                    row_chars.append(str(empty_count))
                    empty_count = 0
                row_chars.append(cell)

        if empty_count > 0:
            row_chars.append(str(empty_count))

        rows.append("".join(row_chars))

    return "/".join(rows)


def to_fen(placement: str, side: str) -> str:
    """Append side-to-move and neutral castling / en-passant / clock fields.

    Castling rights cannot be seen on a screenshot, so none are claimed.
    """
    turn = "w" if side == "white" else "b"
    return f"{placement} {turn} - - 0 1"


def detections_to_placement(
    detections: Sequence[Detection],
    orientation: Orientation,
    min_board_size: float = MIN_BOARD_SIZE,
) -> Tuple[str, BoardRect]:
    """Build a placement string for one orientation.

    Returns ``(EMPTY_PLACEMENT, EMPTY_RECT)`` when no usable board
    detection exists; this is a neutral value, not an error.
    """
    placement, rect, _ = _place(detections, orientation, min_board_size)
    return placement, rect


def _place(
    detections: Sequence[Detection],
    orientation: Orientation,
    min_board_size: float,
) -> Tuple[str, BoardRect, List[PlacedPiece]]:
    board = find_board(detections, min_board_size)
    if board is None:
        return EMPTY_PLACEMENT, EMPTY_RECT, []

    rect = board_rect(board)
    pieces = resolve_duplicate_kings(assign_squares(detections, rect, orientation))
    return grid_to_placement(build_grid(pieces)), rect, pieces


# ── Orientation ────────────────────────────────────────────────────────

def detect_orientation(detections: Sequence[Detection]) -> Orientation:
    """Decide which colour sits at the bottom of the image.

    Compares the mean centre-y of white and black pawns; larger y is lower
    on screen.  Without pawns of both colours White is assumed at the
    bottom.
    """
    white_ys = [d.y for d in detections if d.class_id == WHITE_PAWN]
    black_ys = [d.y for d in detections if d.class_id == BLACK_PAWN]

    if not white_ys or not black_ys:
        return Orientation.WHITE_BOTTOM

    avg_white = sum(white_ys) / len(white_ys)
    avg_black = sum(black_ys) / len(black_ys)
    if avg_white > avg_black:
        return Orientation.WHITE_BOTTOM
    return Orientation.BLACK_BOTTOM


# ── Validation ─────────────────────────────────────────────────────────

def count_kings(pieces: Sequence[PlacedPiece]) -> Tuple[int, int]:
    white = sum(1 for p in pieces if p.class_id == WHITE_KING)
    black = sum(1 for p in pieces if p.class_id == BLACK_KING)
    return white, black


def validate_kings(pieces: Sequence[PlacedPiece]) -> Tuple[bool, List[str]]:
    """Check that exactly one king of each colour was placed.

    Counts run over the resolved piece list, before grid overwrites: pieces
    whose centre falls outside the board were already dropped, so a king
    detected off the board (a captured-piece tray, a second board) no longer
    invalidates the frame.

    Returns ``(is_valid, list_of_violation_strings)``.
    """
    violations: List[str] = []
    white, black = count_kings(pieces)
    if white != 1:
        violations.append(f"White king count = {white} (expected 1)")
    if black != 1:
        violations.append(f"Black king count = {black} (expected 1)")
    return not violations, violations


# ── Two-stage reconstruction ───────────────────────────────────────────

def reconstruct(
    detections: Sequence[Detection],
    min_board_size: float = MIN_BOARD_SIZE,
) -> Optional[BoardReading]:
    """Full detections → validated board reading.

    Returns ``None`` when there is no board or the king count is wrong;
    callers skip engine analysis for that frame.
    """
    # Stage 1: neutral pass to locate the board
    _, rect = detections_to_placement(
        detections, Orientation.WHITE_BOTTOM, min_board_size,
    )
    if rect.is_empty:
        log.debug("No board detection above %.2f; skipping frame", min_board_size)
        return None

    # Stage 2: rebuild with the inferred orientation
    orientation = detect_orientation(detections)
    placement, rect, pieces = _place(detections, orientation, min_board_size)

    is_valid, violations = validate_kings(pieces)
    if not is_valid:
        log.debug("Board rejected: %s", "; ".join(violations))
        return None

    return BoardReading(
        placement=placement,
        rect=rect,
        orientation=orientation,
        pieces=pieces,
    )
