import pytest

from chess_overlay.inference.geometry import (
    EMPTY_RECT,
    FILES,
    BoardRect,
    Orientation,
    Point,
    cell_to_square,
    move_to_segment,
    orient_cell,
    point_to_cell,
    point_to_square,
    square_to_cell,
    square_to_point,
)

RECT = BoardRect(100.0, 50.0, 800.0, 800.0)
ALL_SQUARES = [f"{f}{r}" for f in FILES for r in range(1, 9)]


@pytest.mark.parametrize("orientation", list(Orientation))
def test_every_square_round_trips(orientation) -> None:
    for square in ALL_SQUARES:
        point = square_to_point(square, RECT, orientation)
        assert point_to_square(point.x, point.y, RECT, orientation) == square


def test_square_centres_white_bottom() -> None:
    wb = Orientation.WHITE_BOTTOM
    assert square_to_point("a8", RECT, wb) == Point(150.0, 100.0)
    assert square_to_point("h1", RECT, wb) == Point(850.0, 800.0)
    assert square_to_point("e2", RECT, wb) == Point(550.0, 700.0)


def test_black_bottom_mirrors_both_axes() -> None:
    bb = Orientation.BLACK_BOTTOM
    assert square_to_point("a8", RECT, bb) == Point(850.0, 800.0)
    assert square_to_point("h1", RECT, bb) == Point(150.0, 100.0)
    assert square_to_point("e2", RECT, bb) == Point(450.0, 200.0)


def test_orient_cell_is_an_involution() -> None:
    for row in range(8):
        for col in range(8):
            for orientation in Orientation:
                once = orient_cell(row, col, orientation)
                assert orient_cell(*once, orientation) == (row, col)


def test_move_to_segment() -> None:
    start, end = move_to_segment("e2e4", RECT, Orientation.WHITE_BOTTOM)
    assert start == Point(550.0, 700.0)
    assert end == Point(550.0, 500.0)


def test_promotion_suffix_is_ignored() -> None:
    wb = Orientation.WHITE_BOTTOM
    assert move_to_segment("e7e8q", RECT, wb) == move_to_segment("e7e8", RECT, wb)


@pytest.mark.parametrize("move", ["", "e2", "e2e", "i2e4", "e0e4", "e2e9", "E2E4", "0000"])
def test_malformed_moves_have_no_segment(move) -> None:
    assert move_to_segment(move, RECT, Orientation.WHITE_BOTTOM) is None


@pytest.mark.parametrize("square", ["", "e", "e10", "z1", "a0", "a٣"])
def test_malformed_squares(square) -> None:
    assert square_to_cell(square) is None
    assert square_to_point(square, RECT, Orientation.WHITE_BOTTOM) is None


def test_cell_square_conversion() -> None:
    assert square_to_cell("a8") == (0, 0)
    assert square_to_cell("h1") == (7, 7)
    assert cell_to_square(4, 4) == "e4"
    assert cell_to_square(8, 0) is None
    assert cell_to_square(0, -1) is None


def test_points_off_the_board() -> None:
    wb = Orientation.WHITE_BOTTOM
    assert point_to_cell(99.0, 400.0, RECT, wb) is None
    assert point_to_cell(500.0, 851.0, RECT, wb) is None
    assert point_to_cell(500.0, 400.0, EMPTY_RECT, wb) is None


def test_board_edges_are_inclusive() -> None:
    wb = Orientation.WHITE_BOTTOM
    assert point_to_square(100.0, 50.0, RECT, wb) == "a8"
    # the far edge divides to cell 8, which is off the board
    assert point_to_cell(900.0, 850.0, RECT, wb) is None


def test_rect_to_screen() -> None:
    rect = BoardRect(0.1, 0.2, 0.5, 0.25).to_screen(10, 20, 1000, 800)
    assert rect.x == pytest.approx(110.0)
    assert rect.y == pytest.approx(180.0)
    assert rect.w == pytest.approx(500.0)
    assert rect.h == pytest.approx(200.0)
    assert rect.cell_size() == pytest.approx((62.5, 25.0))


def test_empty_rect() -> None:
    assert EMPTY_RECT.is_empty
    assert BoardRect(0, 0, 10, 0).is_empty
    assert not RECT.is_empty
