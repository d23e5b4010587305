"""Tests for the OpenCV models fitted to matched stars."""

import numpy as np
import pytest

from star_matcher.errors import InsufficientPoints
from star_matcher.homography import estimate_homography
from star_matcher.models import positions

from conftest import make_star_field, rotate_scale


@pytest.fixture
def matched_pair_lists():
    points = make_star_field(25, seed=3)
    return points, rotate_scale(points, 12.0, 0.8, dx=40.0, dy=15.0)


@pytest.mark.parametrize("model", ["homography", "affine", "similarity"])
def test_models_recover_similarity(matched_pair_lists, model):
    matched_a, matched_b = matched_pair_lists
    result = estimate_homography(matched_a, matched_b, model=model)

    assert result.model == model
    assert result.pair_matched == 25
    assert result.inliers == 25
    assert result.matrix.shape == (3, 3)
    np.testing.assert_allclose(result.apply(positions(matched_a)), positions(matched_b), atol=0.05)


def test_shift_model_is_mean_offset():
    matched_a = make_star_field(5, seed=1)
    matched_b = rotate_scale(matched_a, 0.0, 1.0, dx=3.0, dy=-7.0)
    result = estimate_homography(matched_a, matched_b, model="shift")

    np.testing.assert_allclose(result.matrix[:2, 2], [3.0, -7.0])
    assert result.to_dict()["inliers"] == 5


def test_too_few_pairs():
    points = make_star_field(3, seed=2)
    with pytest.raises(InsufficientPoints):
        estimate_homography(points, points, model="homography")


def test_unknown_model_and_length_mismatch():
    points = make_star_field(6, seed=2)
    with pytest.raises(ValueError):
        estimate_homography(points, points, model="perspective")
    with pytest.raises(ValueError):
        estimate_homography(points, points[:5], model="affine")
