"""Shared fixtures for the star matcher tests."""

import math
from typing import List

import numpy as np
import pytest

from star_matcher.models import StarPoint


def make_star_field(n: int, seed: int = 0, size: float = 1000.0) -> List[StarPoint]:
    """Random stars with distinct magnitudes."""
    rng = np.random.default_rng(seed)
    xy = rng.uniform(0.0, size, (n, 2))
    mags = 8.0 + 0.25 * rng.permutation(n)
    return [StarPoint(id=i, x=float(x), y=float(y), mag=float(m)) for i, ((x, y), m) in enumerate(zip(xy, mags))]


def rotate_scale(points: List[StarPoint], angle_deg: float, scale: float,
                 dx: float = 0.0, dy: float = 0.0) -> List[StarPoint]:
    """Rotate counter-clockwise, scale and shift a star list."""
    theta = math.radians(angle_deg)
    c, s = math.cos(theta), math.sin(theta)
    return [
        StarPoint(
            id=p.id,
            x=scale * (c * p.x - s * p.y) + dx,
            y=scale * (s * p.x + c * p.y) + dy,
            mag=p.mag,
        )
        for p in points
    ]


def add_noise_stars(points: List[StarPoint], n: int, seed: int = 1, size: float = 1500.0,
                    first_id: int = 1000) -> List[StarPoint]:
    """Append ``n`` random false detections with ids from ``first_id``."""
    rng = np.random.default_rng(seed)
    mags = [p.mag for p in points]
    noise = [
        StarPoint(
            id=first_id + i,
            x=float(rng.uniform(-size / 2, size)),
            y=float(rng.uniform(0.0, size)),
            mag=float(rng.uniform(min(mags), max(mags))),
        )
        for i in range(n)
    ]
    return list(points) + noise


@pytest.fixture
def star_field():
    return make_star_field(30, seed=42)


@pytest.fixture
def rotated_field(star_field):
    """The star field rotated 30 degrees, scaled 1.5x and shifted, plus 20% noise."""
    moved = rotate_scale(star_field, 30.0, 1.5, dx=120.0, dy=-45.0)
    return add_noise_stars(moved, 6, seed=7)
