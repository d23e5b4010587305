"""Tests for the quick triangle matcher."""

import numpy as np
import pytest

from star_matcher.errors import NoMatchFound
from star_matcher.models import Transform
from star_matcher.quick_match import apply_and_find_matches, check_trans_properties, find_quick_match
from star_matcher.triangles import stars_to_triangles

from conftest import make_star_field


def _prepare(points_a, points_b, nbright=20):
    sorted_a, tris_a = stars_to_triangles(points_a, nbright)
    sorted_b, tris_b = stars_to_triangles(points_b, nbright)
    return sorted_a, tris_a, sorted_b, tris_b


def test_finds_rotated_scaled_field(star_field, rotated_field):
    sorted_a, tris_a, sorted_b, tris_b = _prepare(star_field, rotated_field)

    transform, pairs = find_quick_match(sorted_a, tris_a, sorted_b, tris_b)

    assert transform.scale == pytest.approx(1.5, abs=0.02)
    assert transform.rotation == pytest.approx(30.0, abs=1.0)
    assert transform.pairs_matched == len(pairs) >= 10
    for pair in pairs:
        assert sorted_a[pair.index_a].id == sorted_b[pair.index_b].id


@pytest.mark.parametrize("order", ["quadratic", "cubic"])
def test_returns_transform_of_requested_order(star_field, rotated_field, order):
    sorted_a, tris_a, sorted_b, tris_b = _prepare(star_field, rotated_field)

    transform, pairs = find_quick_match(sorted_a, tris_a, sorted_b, tris_b, order=order)

    assert transform.order == order
    assert transform.scale == pytest.approx(1.5, abs=0.02)
    assert len(pairs) >= 10


def test_scale_and_rotation_bounds_are_honoured(star_field, rotated_field):
    sorted_a, tris_a, sorted_b, tris_b = _prepare(star_field, rotated_field)

    transform, _ = find_quick_match(sorted_a, tris_a, sorted_b, tris_b,
                                    min_scale=1.4, max_scale=1.6,
                                    rotation_deg=30.0, rotation_tol_deg=2.0)
    assert transform.scale == pytest.approx(1.5, abs=0.02)

    with pytest.raises(NoMatchFound):
        find_quick_match(sorted_a, tris_a, sorted_b, tris_b, min_scale=0.5, max_scale=0.8)
    with pytest.raises(NoMatchFound):
        find_quick_match(sorted_a, tris_a, sorted_b, tris_b, rotation_deg=-60.0, rotation_tol_deg=5.0)


def test_unrelated_fields_do_not_match():
    sorted_a, tris_a, sorted_b, tris_b = _prepare(make_star_field(25, seed=1), make_star_field(25, seed=2), 12)

    with pytest.raises(NoMatchFound):
        find_quick_match(sorted_a, tris_a, sorted_b, tris_b)


def test_candidate_limit_stops_search(star_field):
    sorted_a, tris_a, sorted_b, tris_b = _prepare(star_field, star_field, 10)

    with pytest.raises(NoMatchFound):
        find_quick_match(sorted_a, tris_a, sorted_b, tris_b, max_candidates=0)


def test_check_trans_properties():
    theta = np.radians(25.0)
    transform = Transform(order="linear",
                          x_coeffs=np.array([0.0, 2.0 * np.cos(theta), -2.0 * np.sin(theta)]),
                          y_coeffs=np.array([0.0, 2.0 * np.sin(theta), 2.0 * np.cos(theta)]))

    assert transform.scale == pytest.approx(2.0)
    assert transform.rotation == pytest.approx(25.0)
    assert check_trans_properties(transform)
    assert check_trans_properties(transform, 1.9, 2.1, 25.0, 1.0)
    assert not check_trans_properties(transform, 2.5, 3.0)
    assert not check_trans_properties(transform, rotation_deg=-25.0, rotation_tol_deg=1.0)


def test_apply_and_find_matches_prunes_distant_pairs():
    xy_a = np.array([[10.0 * i, 0.0] for i in range(20)])
    xy_b = xy_a.copy()
    xy_b[:19, 1] += 0.01
    xy_b[19, 1] += 4.0

    pairs, dist = apply_and_find_matches(Transform(), xy_a, xy_b, radius=5.0)

    assert [p.index_a for p in pairs] == list(range(19))
    np.testing.assert_allclose(dist, 0.01)
