"""Tests for the complete matching workflow."""

import logging
from dataclasses import replace
from math import comb

import numpy as np
import pytest

from star_matcher.config import Config
from star_matcher.errors import ConstraintViolation, InsufficientPoints, NoMatchFound, SingularSystem
from star_matcher.matcher import (
    ReferenceSession,
    StarMatcher,
    find_transform,
    recompute_transform,
    resolve_rotation,
    resolve_scale_bounds,
)
from star_matcher.models import StarPoint, Transform
from star_matcher.list_matcher import apply_transform

from conftest import make_star_field, rotate_scale


def test_identical_lists_give_identity(star_field):
    transform = find_transform(star_field, star_field)

    np.testing.assert_allclose(transform.x_coeffs, [0.0, 1.0, 0.0], atol=1e-6)
    np.testing.assert_allclose(transform.y_coeffs, [0.0, 0.0, 1.0], atol=1e-6)
    assert transform.sigma == pytest.approx(0.0, abs=1e-9)
    assert transform.pairs_used == len(star_field)
    assert transform.pairs_matched == len(star_field)


def test_rotated_scaled_field_with_noise(star_field, rotated_field):
    result = StarMatcher().match(star_field, rotated_field)
    transform = result.transform

    assert result.success
    assert transform.rotation == pytest.approx(30.0, abs=1.0)
    assert transform.scale == pytest.approx(1.5, abs=0.02)
    assert transform.translation == pytest.approx((120.0, -45.0), abs=0.1)
    assert result.matches.num_matched == len(star_field)
    assert all(a.id == b.id for a, b in zip(result.matches.matched_a, result.matches.matched_b))
    assert sorted(p.id for p in result.matches.unmatched_b) == list(range(1000, 1006))
    assert result.matches.unmatched_a == []


@pytest.mark.parametrize("method", ["vote", "auto"])
def test_other_methods_find_the_same_transform(star_field, rotated_field, method):
    transform = find_transform(star_field, rotated_field, method=method)

    assert transform.rotation == pytest.approx(30.0, abs=1.0)
    assert transform.scale == pytest.approx(1.5, abs=0.02)
    assert transform.pairs_matched == len(star_field)


def test_too_few_points():
    points = make_star_field(2)
    with pytest.raises(InsufficientPoints):
        find_transform(points, make_star_field(20))
    with pytest.raises(InsufficientPoints):
        find_transform(make_star_field(20), points)


def test_unrelated_lists_raise_no_match():
    with pytest.raises(NoMatchFound):
        find_transform(make_star_field(25, seed=1), make_star_field(25, seed=2), nbright=12)


def test_scale_bounds_retry_without_them(star_field, rotated_field, caplog):
    with caplog.at_level(logging.WARNING, logger="star_matcher.matcher"):
        transform = find_transform(star_field, rotated_field, scale_bounds=(3.0, 4.0))
    assert transform.scale == pytest.approx(1.5, abs=0.02)
    assert "retrying without them" in caplog.text
    assert "3-4" in caplog.text

    config = Config()
    config.constraints.min_scale, config.constraints.max_scale = 3.0, 4.0
    config.constraints.retry_without_scale = False
    with pytest.raises(NoMatchFound):
        StarMatcher(config).match(star_field, rotated_field)


def test_refined_transform_outside_bounds_raises(star_field, rotated_field, monkeypatch):
    refine = StarMatcher.refine

    def drifting_refine(self, points_a, points_b, transform):
        refined, matches = refine(self, points_a, points_b, transform)
        return replace(refined, x_coeffs=refined.x_coeffs * 2.0, y_coeffs=refined.y_coeffs * 2.0), matches

    monkeypatch.setattr(StarMatcher, "refine", drifting_refine)
    config = Config()
    config.constraints.scale = 1.5

    with pytest.raises(ConstraintViolation):
        StarMatcher(config).match(star_field, rotated_field)


def test_single_scale_and_rotation_constraint(star_field, rotated_field):
    transform = find_transform(star_field, rotated_field, scale_bounds=1.5, rotation=(30.0, 2.0))
    assert transform.rotation == pytest.approx(30.0, abs=1.0)


def test_quadratic_order_refines_to_quadratic(star_field, rotated_field):
    transform = find_transform(star_field, rotated_field, order="quadratic")

    assert transform.order == "quadratic"
    assert len(transform.coefficients) == 12
    moved = apply_transform(star_field, transform)
    truth = rotate_scale(star_field, 30.0, 1.5, dx=120.0, dy=-45.0)
    for m, t in zip(moved, truth):
        assert m.x == pytest.approx(t.x, abs=1e-3)
        assert m.y == pytest.approx(t.y, abs=1e-3)


def test_recompute_transform_on_matched_lists():
    matched_a = make_star_field(30, seed=3, size=4.0)
    truth = Transform(order="quadratic",
                      x_coeffs=np.array([1.0, 1.1, 0.05, 0.01, -0.02, 0.005]),
                      y_coeffs=np.array([-2.0, -0.05, 1.1, 0.002, 0.01, -0.01]))
    matched_b = apply_transform(matched_a, truth)

    transform = recompute_transform(matched_a, matched_b, order="quadratic")

    np.testing.assert_allclose(transform.x_coeffs, truth.x_coeffs, atol=1e-8)
    np.testing.assert_allclose(transform.y_coeffs, truth.y_coeffs, atol=1e-8)
    assert transform.pairs_used == transform.pairs_matched == 30
    assert transform.sigma_x == pytest.approx(0.0, abs=1e-8)


def test_recompute_transform_errors():
    points = [StarPoint(i, float(i), 3.0 * i + 2.0) for i in range(10)]
    with pytest.raises(SingularSystem):
        recompute_transform(points, points)
    with pytest.raises(InsufficientPoints):
        recompute_transform(points[:2], points[:2])
    with pytest.raises(ValueError):
        recompute_transform(points, points, order="quintic")


def test_reference_session_reuses_reference_triangles(star_field):
    config = Config()
    session = ReferenceSession(star_field, config)
    assert session.num_triangles == comb(20, 3)

    first = session.match(rotate_scale(star_field, 10.0, 1.0, dx=5.0))
    second = session.match(rotate_scale(star_field, -45.0, 0.8, dy=30.0))

    assert first.transform.rotation == pytest.approx(10.0, abs=0.5)
    assert second.transform.rotation == pytest.approx(-45.0, abs=0.5)
    assert second.transform.scale == pytest.approx(0.8, abs=0.01)


def test_homography_is_fitted_when_enabled(star_field, rotated_field):
    config = Config()
    config.homography.enabled = True
    config.homography.model = "similarity"

    result = StarMatcher(config).match(star_field, rotated_field)

    assert result.homography is not None
    assert result.homography.inliers == len(star_field)
    assert result.to_dict()["homography"]["model"] == "similarity"


def test_resolve_scale_bounds():
    assert resolve_scale_bounds(None) == (None, None)
    assert resolve_scale_bounds(2.0) == pytest.approx((1.8, 2.2))
    assert resolve_scale_bounds((0.5, 1.5)) == (0.5, 1.5)
    with pytest.raises(ConstraintViolation):
        resolve_scale_bounds((3.0, 1.0))
    with pytest.raises(ConstraintViolation):
        resolve_scale_bounds(-1.0)


def test_resolve_rotation():
    assert resolve_rotation(None) == (None, None)
    assert resolve_rotation((None, None)) == (None, None)
    assert resolve_rotation((15.0, 2.0)) == (15.0, 2.0)
    with pytest.raises(ConstraintViolation):
        resolve_rotation((15.0, None))
    with pytest.raises(ConstraintViolation):
        resolve_rotation((15.0, -1.0))


def test_invalid_configuration_is_rejected():
    config = Config()
    config.constraints.min_scale = 1.0
    with pytest.raises(ConstraintViolation):
        StarMatcher(config)

    config = Config()
    config.constraints.scale = 1.5
    config.constraints.min_scale, config.constraints.max_scale = 1.0, 2.0
    with pytest.raises(ConstraintViolation):
        StarMatcher(config)

    config = Config()
    config.fit.order = "quartic"
    with pytest.raises(ValueError):
        StarMatcher(config)
