"""Detection builders shared by the test modules."""

from __future__ import annotations

from typing import Dict, List

from chess_overlay.inference.detections import Detection
from chess_overlay.inference.geometry import BoardRect, Orientation, square_to_point
from chess_overlay.models.detector import CLASS_TO_FEN

FEN_TO_CLASS = {ch: cid for cid, ch in CLASS_TO_FEN.items()}

# Board detection centred in the frame, covering 0.1 … 0.9 on both axes
BOARD = Detection(class_id=0, confidence=0.95, x=0.5, y=0.5, w=0.8, h=0.8)
BOARD_RECT = BoardRect(0.1, 0.1, 0.8, 0.8)

START = {
    "a8": "r", "b8": "n", "c8": "b", "d8": "q", "e8": "k", "f8": "b", "g8": "n", "h8": "r",
    "a1": "R", "b1": "N", "c1": "B", "d1": "Q", "e1": "K", "f1": "B", "g1": "N", "h1": "R",
    **{f"{f}7": "p" for f in "abcdefgh"},
    **{f"{f}2": "P" for f in "abcdefgh"},
}
START_PLACEMENT = "rnbqkbnr/pppppppp/8/8/8/8/PPPPPPPP/RNBQKBNR"


def det(class_id: int, x: float, y: float, w: float = 0.08, h: float = 0.08,
        conf: float = 0.9) -> Detection:
    return Detection(class_id=class_id, confidence=conf, x=x, y=y, w=w, h=h)


def piece(square: str, fen_char: str,
          orientation: Orientation = Orientation.WHITE_BOTTOM,
          conf: float = 0.9) -> Detection:
    """Detection centred on *square* as it would appear on screen."""
    point = square_to_point(square, BOARD_RECT, orientation)
    assert point is not None, square
    return det(FEN_TO_CLASS[fen_char], point.x, point.y, conf=conf)


def position(pieces: Dict[str, str],
             orientation: Orientation = Orientation.WHITE_BOTTOM,
             with_board: bool = True) -> List[Detection]:
    dets = [BOARD] if with_board else []
    dets.extend(piece(sq, ch, orientation) for sq, ch in pieces.items())
    return dets
