"""
Piece & Board Detector – YOLOv8 ONNX via OpenCV DNN
====================================================

Architectural decisions:
  • The detector is a single YOLOv8 model trained on 13 classes: the
    board itself (class 0) and the twelve piece identities.  One forward
    pass yields both the board anchor and every piece.
  • Inference runs through ``cv2.dnn`` on an ONNX export, so the
    runtime needs nothing beyond OpenCV and NumPy.  Ultralytics is only
    imported lazily by ``export_to_onnx``.
  • ``infer`` returns the **raw** output tensor ``[1, 4+C, N]``; the
    decoding & NMS live in ``chess_overlay.inference.detections`` so they
    can be tested without a model file.
  • Captures are stretched (not letterboxed) to the square input size,
    which keeps the normalised detection frame a linear map of the
    captured region.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, List

import cv2
import numpy as np

from chess_overlay.errors import InferenceError

if TYPE_CHECKING:
    from chess_overlay.inference.detections import Detection

log = logging.getLogger(__name__)


# ── Canonical class list (index ↔ label mapping) ──────────────────────

CLASS_NAMES: list[str] = [
    "board",
    "white_king",
    "white_queen",
    "white_rook",
    "white_bishop",
    "white_knight",
    "white_pawn",
    "black_king",
    "black_queen",
    "black_rook",
    "black_bishop",
    "black_knight",
    "black_pawn",
]

NUM_CLASSES: int = len(CLASS_NAMES)

BOARD_CLASS: int = 0
WHITE_KING: int = CLASS_NAMES.index("white_king")
WHITE_PAWN: int = CLASS_NAMES.index("white_pawn")
BLACK_KING: int = CLASS_NAMES.index("black_king")
BLACK_PAWN: int = CLASS_NAMES.index("black_pawn")

# Class index → FEN character
CLASS_TO_FEN: dict[int, str] = {
    1: "K", 2: "Q", 3: "R", 4: "B", 5: "N", 6: "P",
    7: "k", 8: "q", 9: "r", 10: "b", 11: "n", 12: "p",
}

INPUT_SIZE: int = 640  # YOLOv8 default export resolution


# ── Model ──────────────────────────────────────────────────────────────

class YoloDetector:
    """YOLOv8 chess detector loaded from an ONNX file.

    Parameters
    ----------
    model_path : str | Path
        Path to the exported ``.onnx`` model.
    input_size : int
        Square input resolution the model was exported with.
    """

    def __init__(self, model_path: str | Path, input_size: int = INPUT_SIZE) -> None:
        path = Path(model_path)
        if not path.exists():
            raise InferenceError(f"Model file not found: {path}")

        try:
            self.net = cv2.dnn.readNetFromONNX(str(path))
        except cv2.error as exc:
            raise InferenceError(f"Could not load ONNX model {path}: {exc}") from exc

        self.model_path = str(path)
        self.input_size = input_size
        log.info("Detector ready  model=%s  input=%dpx", self.model_path, input_size)

    def preprocess(self, image: np.ndarray) -> np.ndarray:
        """BGR image → ``(1, 3, S, S)`` float32 blob, RGB, scaled to [0, 1]."""
        if image is None or image.ndim != 3 or image.shape[2] not in (3, 4):
            raise InferenceError("Expected an HxWx3 BGR image")
        if image.shape[2] == 4:
            image = cv2.cvtColor(image, cv2.COLOR_BGRA2BGR)
        return cv2.dnn.blobFromImage(
            image,
            scalefactor=1.0 / 255.0,
            size=(self.input_size, self.input_size),
            swapRB=True,
            crop=False,
        )

    def infer(self, image: np.ndarray) -> np.ndarray:
        """Run one forward pass and return the raw ``[1, 4+C, N]`` output."""
        blob = self.preprocess(image)
        try:
            self.net.setInput(blob)
            output = self.net.forward()
        except cv2.error as exc:
            raise InferenceError(f"Forward pass failed: {exc}") from exc
        return np.asarray(output, dtype=np.float32)

    def detect(
        self,
        image: np.ndarray,
        conf_threshold: float,
        iou_threshold: float = 0.45,
    ) -> List[Detection]:
        """Infer and decode in one call.

        Box coordinates are divided by ``input_size`` so detections come
        back normalised to the captured frame.
        """
        from chess_overlay.inference.detections import decode_output

        raw = self.infer(image)
        return decode_output(
            raw,
            conf_threshold=conf_threshold,
            iou_threshold=iou_threshold,
            num_classes=NUM_CLASSES,
            scale=float(self.input_size),
        )


# ── ONNX Export ────────────────────────────────────────────────────────

def export_to_onnx(
    weights: str | Path,
    output_path: str | Path = "best.onnx",
    img_size: int = INPUT_SIZE,
) -> Path:
    """Export an Ultralytics YOLOv8 ``.pt`` detector to ONNX.

    Parameters
    ----------
    weights : str | Path
        Trained Ultralytics checkpoint.
    output_path : str | Path
        Destination ``.onnx`` file.
    img_size : int
        Export resolution (default 640).

    Returns
    -------
    Path
        Where the ONNX file was written.
    """
    from ultralytics import YOLO  # lazy import – optional dependency

    model = YOLO(str(weights))
    exported = Path(model.export(format="onnx", imgsz=img_size, opset=12, simplify=False))

    target = Path(output_path)
    if exported.resolve() != target.resolve():
        target.parent.mkdir(parents=True, exist_ok=True)
        exported.replace(target)
    log.info("Exported ONNX model to %s", target)
    return target
