import numpy as np

from chess_overlay.inference.geometry import BoardRect, Orientation, Point
from chess_overlay.overlay import SIDE_COLORS, Arrow, arrows_for_moves, draw_arrows

RECT = BoardRect(0.0, 0.0, 400.0, 400.0)


def test_arrow_opacity_by_rank() -> None:
    arrows = arrows_for_moves(["e2e4", "d2d4", "c2c4", "g1f3"], RECT, Orientation.WHITE_BOTTOM)

    assert [a.alpha for a in arrows] == [255, 160, 80, 80]
    assert {a.color for a in arrows} == {SIDE_COLORS["white"]}


def test_black_arrows_use_black_colour() -> None:
    (arrow,) = arrows_for_moves(["e7e5"], RECT, Orientation.BLACK_BOTTOM, side="black")

    assert arrow.color == SIDE_COLORS["black"]
    # black at the bottom: e7 is the second row from the bottom of the screen
    assert arrow.start == Point(175.0, 325.0)
    assert arrow.end == Point(175.0, 225.0)


def test_unplottable_moves_are_skipped() -> None:
    arrows = arrows_for_moves(["xx", "e2e4", "z9z9"], RECT, Orientation.WHITE_BOTTOM)

    assert [a.move for a in arrows] == ["e2e4"]
    assert arrows[0].alpha == 160        # keeps its rank


def test_draw_arrows_returns_new_image() -> None:
    image = np.zeros((400, 400, 3), dtype=np.uint8)
    arrows = arrows_for_moves(["e2e4"], RECT, Orientation.WHITE_BOTTOM)

    out = draw_arrows(image, arrows)

    assert not image.any()
    assert out.any()
    # the arrow runs straight up the e-file
    assert out[300, 225].any()
    assert not out[50, 50].any()


def test_draw_arrows_applies_origin_and_scale() -> None:
    image = np.zeros((200, 200, 3), dtype=np.uint8)
    arrow = Arrow(Point(1050.0, 1010.0), Point(1050.0, 1090.0), (0, 0, 255), 255, "x")

    out = draw_arrows(image, [arrow], origin=(1000.0, 1000.0), scale=2.0)

    assert out[100, 100, 2] > 0
    assert not out[100, 10].any()


def test_translucent_arrow_blends() -> None:
    image = np.zeros((100, 100, 3), dtype=np.uint8)
    arrow = Arrow(Point(10.0, 50.0), Point(90.0, 50.0), (0, 0, 255), 80, "x")

    out = draw_arrows(image, [arrow])

    assert 0 < out[50, 40, 2] < 255


def test_zero_length_arrow_is_not_drawn() -> None:
    image = np.zeros((50, 50, 3), dtype=np.uint8)
    arrow = Arrow(Point(20.0, 20.0), Point(20.0, 20.0), (255, 255, 255), 255, "x")

    assert not draw_arrows(image, [arrow]).any()
