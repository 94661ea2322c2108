import math

import numpy as np
import pytest

from pytubegen.errors import OutlineError
from pytubegen.geometry2d import (
    close_outline,
    generate_triangle_grid,
    is_clockwise,
    perimeter,
    points_in_polygon,
    reparameterize,
    segment_distance,
    signed_area,
    triangulate,
)

SQUARE = np.array([[0.0, 0.0], [10.0, 0.0], [10.0, 10.0], [0.0, 10.0]])


def test_reparameterize_square_count_and_spacing():
    P = reparameterize(SQUARE, 2.5)
    assert P.shape == (16, 2)
    gaps = np.linalg.norm(np.roll(P, -1, axis=0) - P, axis=1)
    assert np.allclose(gaps, 2.5)
    assert np.allclose(P[0], SQUARE[0])


def test_reparameterize_count_is_floor_of_length():
    t = np.linspace(0.0, 2.0 * np.pi, 50, endpoint=False)
    circle = np.column_stack([30.0 * np.cos(t), 30.0 * np.sin(t)])
    total = perimeter(circle)
    for d in (3.0, 7.3, 11.0):
        P = reparameterize(circle, d)
        assert P.shape[0] == math.floor(total / d)
        assert math.isclose(perimeter(P), total, rel_tol=0.05)


def test_reparameterize_rejects_coarse_spacing():
    with pytest.raises(OutlineError):
        reparameterize(SQUARE, 15.0)
    with pytest.raises(ValueError):
        reparameterize(SQUARE, 0.0)


def test_orientation_helpers():
    assert not is_clockwise(SQUARE)
    assert is_clockwise(SQUARE[::-1])
    assert signed_area(SQUARE) == pytest.approx(100.0)
    assert signed_area(SQUARE[::-1]) == pytest.approx(-100.0)


def test_close_outline_drops_duplicates():
    raw = np.vstack([SQUARE, SQUARE[:1]])
    raw = np.insert(raw, 1, raw[0], axis=0)
    P = close_outline(raw)
    assert np.allclose(P, SQUARE)


@pytest.mark.parametrize(
    "outline",
    [
        [[0.0, 0.0], [1.0, 1.0]],
        [[0.0, 0.0], [1.0, 1.0], [2.0, 2.0]],
        [[0.0, 0.0], [np.nan, 1.0], [1.0, 0.0]],
        [],
    ],
)
def test_close_outline_rejects_degenerate(outline):
    with pytest.raises(OutlineError):
        close_outline(outline)


def test_triangulate_square_is_ccw_and_complete():
    P = reparameterize(SQUARE, 2.5)
    F = triangulate(P)
    assert F.shape[0] == P.shape[0] - 2
    for f in F:
        assert signed_area(P[f]) > 0
    assert np.isclose(sum(signed_area(P[f]) for f in F), 100.0)


def test_triangulate_self_intersection_raises():
    bowtie = np.array([[0.0, 0.0], [10.0, 10.0], [10.0, 0.0], [0.0, 10.0]])
    with pytest.raises(OutlineError):
        triangulate(bowtie)
    F = triangulate(bowtie, allow_steiner=True)
    assert F.shape[0] > 0


def test_points_in_polygon_and_segment_distance():
    inside = points_in_polygon([[5.0, 5.0], [11.0, 5.0], [0.5, 9.5]], SQUARE)
    assert inside.tolist() == [True, False, True]
    d = segment_distance([[5.0, 3.0], [-4.0, 0.0], [12.0, 0.0]], [0.0, 0.0], [10.0, 0.0])
    assert np.allclose(d, [3.0, 4.0, 2.0])


def test_triangle_grid_stays_inside():
    grid = generate_triangle_grid(SQUARE, 2.0)
    assert grid.shape[0] > 10
    assert np.all(points_in_polygon(grid, SQUARE))
    # nearest-neighbour spacing equals the lattice step
    D = np.linalg.norm(grid[:, None, :] - grid[None, :, :], axis=2)
    np.fill_diagonal(D, np.inf)
    assert np.allclose(D.min(axis=1), 2.0)
