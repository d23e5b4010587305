"""
Projective and affine models fitted to matched star pairs.

The polynomial transform is the primary result of matching; a homography is
what image warping code expects, so one can be derived from the final pairs.
"""

import logging
from dataclasses import dataclass
from typing import Literal, Sequence

import numpy as np
import cv2

from .errors import InsufficientPoints, SingularSystem
from .models import StarPoint, positions


logger = logging.getLogger(__name__)

HomographyModel = Literal["homography", "affine", "similarity", "shift"]

MIN_PAIRS = {"shift": 1, "similarity": 2, "affine": 3, "homography": 4}


@dataclass
class Homography:
    """3x3 matrix mapping list A onto list B in homogeneous coordinates."""

    matrix: np.ndarray
    model: str
    pair_matched: int
    inliers: int

    def apply(self, xy: np.ndarray) -> np.ndarray:
        """Map an N x 2 coordinate array."""
        ones = np.ones((len(xy), 1))
        mapped = np.hstack([xy, ones]) @ self.matrix.T
        return mapped[:, :2] / mapped[:, 2:3]

    def to_dict(self) -> dict:
        return {
            "model": self.model,
            "matrix": self.matrix.tolist(),
            "pair_matched": self.pair_matched,
            "inliers": self.inliers,
        }


def estimate_homography(
    matched_a: Sequence[StarPoint],
    matched_b: Sequence[StarPoint],
    model: HomographyModel = "homography",
    ransac_threshold: float = 3.0,
) -> Homography:
    """
    Fit a model to index-aligned matched lists with RANSAC.

    Args:
        matched_a: Matched points in frame A
        matched_b: Their partners in frame B
        model: "homography", "affine", "similarity" or "shift"
        ransac_threshold: Reprojection threshold in units of B

    Returns:
        Homography with the inlier count

    Raises:
        InsufficientPoints: Too few pairs for the model
        SingularSystem: OpenCV could not estimate the model
    """
    if model not in MIN_PAIRS:
        raise ValueError(f"Unknown homography model: {model}")
    if len(matched_a) != len(matched_b):
        raise ValueError("Matched lists must have the same length")
    n = len(matched_a)
    if n < MIN_PAIRS[model]:
        raise InsufficientPoints(f"A {model} model needs {MIN_PAIRS[model]} pairs, got {n}")

    src_pts = positions(matched_a)
    dst_pts = positions(matched_b)

    if model == "shift":
        offset = np.mean(dst_pts - src_pts, axis=0)
        matrix = np.array([
            [1.0, 0.0, offset[0]],
            [0.0, 1.0, offset[1]],
            [0.0, 0.0, 1.0],
        ])
        return Homography(matrix=matrix, model=model, pair_matched=n, inliers=n)

    src = src_pts.reshape(-1, 1, 2).astype(np.float32)
    dst = dst_pts.reshape(-1, 1, 2).astype(np.float32)

    if model == "homography":
        transform, mask = cv2.findHomography(
            src, dst,
            method=cv2.RANSAC,
            ransacReprojThreshold=ransac_threshold
        )
    elif model == "affine":
        transform, mask = cv2.estimateAffine2D(
            src, dst,
            method=cv2.RANSAC,
            ransacReprojThreshold=ransac_threshold
        )
    else:
        transform, mask = cv2.estimateAffinePartial2D(
            src, dst,
            method=cv2.RANSAC,
            ransacReprojThreshold=ransac_threshold
        )

    if transform is None:
        raise SingularSystem(f"OpenCV could not estimate a {model} model from {n} pairs")

    matrix = np.asarray(transform, dtype=float)
    if matrix.shape == (2, 3):
        matrix = np.vstack([matrix, [0.0, 0.0, 1.0]])

    inliers = int(np.count_nonzero(mask)) if mask is not None else n
    logger.debug(f"{model} fit: {inliers}/{n} inliers")
    return Homography(matrix=matrix, model=model, pair_matched=n, inliers=inliers)
