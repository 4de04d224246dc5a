import numpy as np
import pytest

from chess_overlay.errors import InputShapeError
from chess_overlay.inference.detections import (
    Detection,
    decode_output,
    iou,
    non_max_suppression,
)

from factories import det

NUM_CLASSES = 13


def _raw(anchors: list) -> np.ndarray:
    """Build a ``[1, 17, N]`` tensor from ``(cx, cy, w, h, {class: score})`` tuples."""
    out = np.zeros((1, 4 + NUM_CLASSES, len(anchors)), dtype=np.float32)
    for i, (cx, cy, w, h, scores) in enumerate(anchors):
        out[0, 0:4, i] = (cx, cy, w, h)
        for cls, score in scores.items():
            out[0, 4 + cls, i] = score
    return out


def test_decode_keeps_argmax_class_above_threshold() -> None:
    raw = _raw([
        (320, 320, 500, 500, {0: 0.95, 3: 0.2}),
        (100, 100, 40, 40, {6: 0.3, 12: 0.8}),
        (500, 500, 40, 40, {2: 0.4}),            # below threshold
    ])
    dets = decode_output(raw, conf_threshold=0.5, iou_threshold=0.45)

    assert [(d.class_id, round(d.confidence, 2)) for d in dets] == [(0, 0.95), (12, 0.8)]


def test_decode_threshold_is_strict() -> None:
    raw = _raw([(100, 100, 40, 40, {1: 0.5})])
    assert decode_output(raw, conf_threshold=0.5, iou_threshold=0.45) == []


def test_decode_scale_normalises_boxes() -> None:
    raw = _raw([(320, 160, 64, 32, {5: 0.9})])
    (d,) = decode_output(raw, 0.5, 0.45, scale=640.0)
    assert d.x == pytest.approx(0.5)
    assert d.y == pytest.approx(0.25)
    assert d.w == pytest.approx(0.1)
    assert d.h == pytest.approx(0.05)


def test_decode_accepts_flat_buffer() -> None:
    raw = _raw([(10, 10, 5, 5, {7: 0.9}), (300, 300, 5, 5, {8: 0.7})])
    dets = decode_output(raw.ravel(), 0.5, 0.45)
    assert [d.class_id for d in dets] == [7, 8]


@pytest.mark.parametrize("shape", [
    (1, 10, 8),          # wrong channel count
    (2, 17, 8),          # batch of two
    (17, 8),             # missing batch axis
    (1, 17, 0),          # no anchors
    (18,),               # flat, not a multiple of 17
    (0,),                # empty
])
def test_decode_rejects_malformed_output(shape) -> None:
    with pytest.raises(InputShapeError):
        decode_output(np.zeros(shape, dtype=np.float32), 0.5, 0.45)


def test_iou_basic_values() -> None:
    a = det(1, 0.5, 0.5, 0.2, 0.2)
    assert iou(a, a) == pytest.approx(1.0)
    assert iou(a, det(1, 0.9, 0.9, 0.1, 0.1)) == 0.0
    # shifted by half a width: intersection 0.02, union 0.06
    assert iou(a, det(1, 0.6, 0.5, 0.2, 0.2)) == pytest.approx(1 / 3)


def test_iou_degenerate_boxes() -> None:
    assert iou(det(1, 0.5, 0.5, 0.0, 0.0), det(1, 0.5, 0.5, 0.0, 0.0)) == 0.0


def test_nms_removes_lower_confidence_overlap() -> None:
    strong = det(6, 0.50, 0.50, 0.1, 0.1, conf=0.9)
    weak = det(6, 0.51, 0.50, 0.1, 0.1, conf=0.6)
    apart = det(6, 0.80, 0.80, 0.1, 0.1, conf=0.7)

    kept = non_max_suppression([weak, apart, strong], iou_threshold=0.45)

    assert kept == [strong, apart]


def test_nms_is_class_agnostic() -> None:
    # A queen and a king detected on the same square: only the stronger survives
    queen = det(2, 0.5, 0.5, 0.1, 0.1, conf=0.85)
    king = det(1, 0.5, 0.5, 0.1, 0.1, conf=0.80)

    assert non_max_suppression([king, queen], iou_threshold=0.45) == [queen]


def test_nms_keeps_overlap_at_threshold() -> None:
    a = det(1, 0.5, 0.5, 0.2, 0.2, conf=0.9)
    b = det(1, 0.6, 0.5, 0.2, 0.2, conf=0.8)          # IoU == 1/3
    assert non_max_suppression([a, b], iou_threshold=1 / 3 + 1e-9) == [a, b]
    assert non_max_suppression([a, b], iou_threshold=0.3) == [a]


def test_nms_survivors_never_exceed_threshold() -> None:
    rng = np.random.default_rng(7)
    dets = [
        Detection(
            class_id=int(rng.integers(0, 13)),
            confidence=float(rng.uniform(0.3, 1.0)),
            x=float(rng.uniform(0, 1)),
            y=float(rng.uniform(0, 1)),
            w=float(rng.uniform(0.05, 0.3)),
            h=float(rng.uniform(0.05, 0.3)),
        )
        for _ in range(200)
    ]
    kept = non_max_suppression(dets, iou_threshold=0.45)

    assert kept
    for i, a in enumerate(kept):
        for b in kept[i + 1:]:
            assert iou(a, b) <= 0.45
    assert [d.confidence for d in kept] == sorted((d.confidence for d in kept), reverse=True)


def test_decode_runs_nms_across_classes() -> None:
    raw = _raw([
        (100, 100, 40, 40, {1: 0.9}),
        (102, 100, 40, 40, {7: 0.7}),
    ])
    dets = decode_output(raw, 0.5, 0.45)
    assert [d.class_id for d in dets] == [1]


def test_detection_bounds_and_name() -> None:
    d = det(12, 0.5, 0.4, 0.2, 0.1)
    assert d.bounds() == pytest.approx((0.4, 0.35, 0.6, 0.45))
    assert d.class_name == "black_pawn"
    assert det(0, 0.5, 0.5).class_name == "board"
