import numpy as np
import pytest

from chess_overlay.errors import InferenceError
from chess_overlay.inference.board import EMPTY_PLACEMENT
from chess_overlay.inference.geometry import Orientation
from chess_overlay.inference.pipeline import RecognitionPipeline
from chess_overlay.models.detector import NUM_CLASSES, YoloDetector

from factories import START, START_PLACEMENT, position


class ListDetector:
    def __init__(self, detections):
        self.detections = detections

    def detect(self, image, conf_threshold, iou_threshold=0.45):
        return list(self.detections)


class FakeNet:
    """Stands in for ``cv2.dnn.Net``; returns one board anchor."""

    def __init__(self):
        self.blob = None

    def setInput(self, blob):
        self.blob = blob

    def forward(self):
        out = np.zeros((1, 4 + NUM_CLASSES, 4), dtype=np.float32)
        out[0, 0:4, 0] = (32, 32, 48, 48)
        out[0, 4 + 0, 0] = 0.9
        return out


def _detector(input_size=64):
    det = YoloDetector.__new__(YoloDetector)
    det.net = FakeNet()
    det.model_path = "fake.onnx"
    det.input_size = input_size
    return det


# ── Detector adapter ───────────────────────────────────────────────────

def test_missing_model_file(tmp_path) -> None:
    with pytest.raises(InferenceError):
        YoloDetector(tmp_path / "missing.onnx")


def test_preprocess_makes_rgb_blob() -> None:
    image = np.zeros((30, 50, 3), dtype=np.uint8)
    image[:, :, 0] = 255                       # pure blue in BGR

    blob = _detector().preprocess(image)

    assert blob.shape == (1, 3, 64, 64)
    assert blob.dtype == np.float32
    assert blob[0, 2].min() == pytest.approx(1.0)   # blue moved to the last channel
    assert blob[0, 0].max() == pytest.approx(0.0)


def test_preprocess_accepts_bgra() -> None:
    blob = _detector().preprocess(np.zeros((10, 10, 4), dtype=np.uint8))
    assert blob.shape == (1, 3, 64, 64)


@pytest.mark.parametrize("image", [None, np.zeros((10, 10), dtype=np.uint8)])
def test_preprocess_rejects_non_images(image) -> None:
    with pytest.raises(InferenceError):
        _detector().preprocess(image)


def test_detect_normalises_by_input_size() -> None:
    (board,) = _detector(input_size=64).detect(np.zeros((20, 20, 3), np.uint8), 0.5)

    assert board.class_id == 0
    assert (board.x, board.y, board.w, board.h) == pytest.approx((0.5, 0.5, 0.75, 0.75))


# ── Recognition ────────────────────────────────────────────────────────

def test_recognize_valid_board() -> None:
    pipeline = RecognitionPipeline(ListDetector(position(START, Orientation.BLACK_BOTTOM)))
    result = pipeline.recognize(np.zeros((8, 8, 3), np.uint8))

    assert result.is_valid
    assert result.orientation is Orientation.BLACK_BOTTOM
    assert result.placement == START_PLACEMENT
    assert result.fen("black") == START_PLACEMENT + " b - - 0 1"


def test_recognize_rejected_board_still_reports_placement() -> None:
    pipeline = RecognitionPipeline(ListDetector(position({"d4": "Q"})))
    result = pipeline.recognize(np.zeros((8, 8, 3), np.uint8))

    assert not result.is_valid
    assert result.fen("white") is None
    assert result.placement == "8/8/8/8/3Q4/8/8/8"
    assert not result.rect.is_empty


def test_recognize_without_board() -> None:
    result = RecognitionPipeline(ListDetector([])).recognize(np.zeros((8, 8, 3), np.uint8))

    assert not result.is_valid
    assert result.placement == EMPTY_PLACEMENT
    assert result.rect.is_empty


def test_visualize_writes_debug_image(tmp_path) -> None:
    pipeline = RecognitionPipeline(ListDetector(position(START)))
    image = np.zeros((400, 400, 3), np.uint8)
    result = pipeline.recognize(image)
    result.moves["white"] = ["e2e4"]
    target = tmp_path / "debug.png"

    vis = pipeline.visualize(image, result, show=False, save_path=str(target))

    assert target.exists()
    assert vis.shape == image.shape
    assert vis.any()
    assert not image.any()
