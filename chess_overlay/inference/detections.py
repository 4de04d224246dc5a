"""
Detection Decoding – Raw YOLO Tensor → Detections
==================================================

Responsibilities:
  1. Turn the raw detector output ``[1, 4+C, N]`` (four box parameters,
     then one score per class, for each of N anchors) into typed
     ``Detection`` objects.
  2. Remove overlapping duplicates with greedy non-maximum suppression.

Notes:
  • Suppression is **class-agnostic**: a high-confidence detection also
    removes overlapping boxes of *other* classes.  Two different pieces
    cannot occupy one square, and the board box is large enough that
    pieces rarely reach the overlap threshold against it.
  • Box parameters are divided by ``scale`` so that callers can normalise
    pixel outputs to the analysed frame (``scale = input_size``).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Sequence, Tuple

import numpy as np

from chess_overlay.errors import InputShapeError
from chess_overlay.models.detector import CLASS_NAMES, NUM_CLASSES

log = logging.getLogger(__name__)


# ── Data structures ────────────────────────────────────────────────────

@dataclass(frozen=True)
class Detection:
    """A single decoded detection (centre / size box)."""
    class_id: int              # 0 = board, 1–12 = pieces
    confidence: float          # max class score
    x: float                   # centre x
    y: float                   # centre y
    w: float                   # width
    h: float                   # height

    def bounds(self) -> Tuple[float, float, float, float]:
        """Return ``(x1, y1, x2, y2)``."""
        half_w = self.w / 2.0
        half_h = self.h / 2.0
        return (self.x - half_w, self.y - half_h, self.x + half_w, self.y + half_h)

    @property
    def area(self) -> float:
        return self.w * self.h

    @property
    def class_name(self) -> str:
        if 0 <= self.class_id < len(CLASS_NAMES):
            return CLASS_NAMES[self.class_id]
        return f"class_{self.class_id}"


# ── Geometry ───────────────────────────────────────────────────────────

def iou(a: Detection, b: Detection) -> float:
    """Intersection over union of two axis-aligned boxes."""
    ax1, ay1, ax2, ay2 = a.bounds()
    bx1, by1, bx2, by2 = b.bounds()

    inter_x1 = max(ax1, bx1)
    inter_y1 = max(ay1, by1)
    inter_x2 = min(ax2, bx2)
    inter_y2 = min(ay2, by2)

    if inter_x2 <= inter_x1 or inter_y2 <= inter_y1:
        return 0.0

    inter_area = (inter_x2 - inter_x1) * (inter_y2 - inter_y1)
    union = a.area + b.area - inter_area
    if union <= 0.0:
        return 0.0
    return inter_area / union


# ── Suppression ────────────────────────────────────────────────────────

def non_max_suppression(
    detections: Sequence[Detection],
    iou_threshold: float,
) -> List[Detection]:
    """Greedy, class-agnostic NMS.

    Detections are visited in descending confidence; each kept detection
    discards every remaining one whose IoU with it exceeds
    *iou_threshold*.

    Returns
    -------
    list[Detection]
        Survivors, highest confidence first.
    """
    ordered = sorted(detections, key=lambda d: d.confidence, reverse=True)
    active = [True] * len(ordered)
    keep: List[Detection] = []

    for i, best in enumerate(ordered):
        if not active[i]:
            continue
        keep.append(best)
        for j in range(i + 1, len(ordered)):
            if active[j] and iou(best, ordered[j]) > iou_threshold:
                active[j] = False

    return keep


# ── Decoding ───────────────────────────────────────────────────────────

def _as_output_matrix(output: np.ndarray, num_classes: int) -> np.ndarray:
    """Validate the raw tensor and return it as a ``(4+C, N)`` matrix."""
    arr = np.asarray(output, dtype=np.float32)
    channels = 4 + num_classes

    if arr.ndim == 1:
        if arr.size == 0 or arr.size % channels != 0:
            raise InputShapeError(
                f"Flat output of {arr.size} values is not a multiple of {channels}"
            )
        return arr.reshape(channels, -1)

    if arr.ndim != 3:
        raise InputShapeError(f"Expected a 3-D output tensor, got shape {arr.shape}")
    if arr.shape[0] != 1:
        raise InputShapeError(f"Expected batch size 1, got {arr.shape[0]}")
    if arr.shape[1] != channels:
        raise InputShapeError(
            f"Expected {channels} channels (4 box + {num_classes} classes), "
            f"got {arr.shape[1]}"
        )
    if arr.shape[2] == 0:
        raise InputShapeError("Output tensor has no anchors")
    return arr[0]


def decode_output(
    output: np.ndarray,
    conf_threshold: float,
    iou_threshold: float,
    num_classes: int = NUM_CLASSES,
    scale: float = 1.0,
) -> List[Detection]:
    """Decode a raw YOLOv8 output tensor into deduplicated detections.

    Parameters
    ----------
    output : np.ndarray
        ``[1, 4+num_classes, num_anchors]`` tensor, or a flat buffer of
        the same number of values.
    conf_threshold : float
        Anchors whose best class score does not exceed this are dropped.
    iou_threshold : float
        Overlap above which the lower-confidence detection is suppressed.
    num_classes : int
        Number of class score rows (13 for the chess detector).
    scale : float
        Divisor applied to the four box parameters.

    Returns
    -------
    list[Detection]
        Highest confidence first.

    Raises
    ------
    InputShapeError
        If the buffer does not have the documented layout.
    """
    matrix = _as_output_matrix(output, num_classes)
    boxes = matrix[:4, :]
    scores = matrix[4:, :]

    # argmax returns the first maximal index, so ties go to the lower class
    class_ids = scores.argmax(axis=0)
    confidences = scores.max(axis=0)
    kept = np.nonzero(confidences > conf_threshold)[0]

    candidates: List[Detection] = []
    for i in kept:
        cx, cy, w, h = (float(v) / scale for v in boxes[:, i])
        candidates.append(Detection(
            class_id=int(class_ids[i]),
            confidence=float(confidences[i]),
            x=cx,
            y=cy,
            w=w,
            h=h,
        ))

    result = non_max_suppression(candidates, iou_threshold)
    log.debug(
        "Decoded %d anchors → %d candidates → %d after NMS",
        matrix.shape[1], len(candidates), len(result),
    )
    return result
