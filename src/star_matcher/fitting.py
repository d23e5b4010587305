"""
Least-squares polynomial fits between matched point lists.

- calc_trans: single least-squares fit of a given order
- iter_trans: iterative sigma-clipping fit, robust against false pairs
- calc_rms: per-axis RMS of residuals after a 3-sigma clip
- find_median_translation: mean and median shift between matched lists
"""

import logging
import math
from dataclasses import dataclass, field, replace
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .errors import InsufficientPoints
from .linear_solver import solve_linear_system
from .models import (
    NUM_TERMS,
    REQUIRED_PAIRS,
    START_PAIRS,
    MatchPair,
    StarPoint,
    Transform,
    check_order,
    polynomial_terms,
    positions,
)


logger = logging.getLogger(__name__)

# Pairs further apart than this after transforming are always discarded
MAX_MATCH_DIST = 50.0

# Percentile of the squared residuals used as the robust scale estimate
ONE_STDEV_PERCENTILE = 0.683

# Pairs with squared residual above NSIGMA * sigma are clipped
NSIGMA = 3.0

# Stop iterating once sigma falls below this (squared units)
HALT_SIGMA = 1.0

MAX_ITER = 3


def find_percentile(sorted_values: np.ndarray, fraction: float) -> float:
    """Value at ``fraction`` of an ascending array, by nearest index."""
    n = len(sorted_values)
    if n == 0:
        raise ValueError("Cannot take a percentile of an empty array")
    index = min(int(math.floor(n * fraction + 0.5)), n - 1)
    return float(sorted_values[index])


def calc_trans(xy_a: np.ndarray, xy_b: np.ndarray, order: str = "linear") -> Transform:
    """
    Fit the polynomial mapping ``xy_a`` onto ``xy_b`` by least squares.

    Args:
        xy_a: N x 2 coordinates in frame A
        xy_b: N x 2 coordinates in frame B
        order: Polynomial order

    Returns:
        Transform with ``pairs_used`` set

    Raises:
        InsufficientPoints: Fewer than the pairs the order needs
        SingularSystem: The normal equations are degenerate
    """
    check_order(order)
    n = len(xy_a)
    if n < REQUIRED_PAIRS[order]:
        raise InsufficientPoints(f"A {order} fit needs {REQUIRED_PAIRS[order]} pairs, got {n}")

    # Solve in centred, unit-RMS coordinates, then map back
    center = xy_a.mean(axis=0)
    scale = math.sqrt(float(np.mean(np.sum((xy_a - center) ** 2, axis=1)))) or 1.0
    uv = (xy_a - center) / scale

    terms = polynomial_terms(uv[:, 0], uv[:, 1], order)
    normal = terms.T @ terms
    x_coeffs = solve_linear_system(normal, terms.T @ xy_b[:, 0])
    y_coeffs = solve_linear_system(normal, terms.T @ xy_b[:, 1])

    to_raw = _denormalize_matrix(order, center[0], center[1], scale)
    return Transform(order=order, x_coeffs=to_raw @ x_coeffs, y_coeffs=to_raw @ y_coeffs, pairs_used=n)


def _denormalize_matrix(order: str, cx: float, cy: float, s: float) -> np.ndarray:
    """
    Change of basis from terms in ``u = (x - cx)/s, v = (y - cy)/s`` to terms in x, y.

    Column j holds the coefficients of normalized term j expanded over the
    raw terms.
    """
    k = NUM_TERMS[order]
    m = np.zeros((k, k))
    m[0, 0] = 1.0
    m[[0, 1], 1] = [-cx / s, 1.0 / s]
    m[[0, 2], 2] = [-cy / s, 1.0 / s]
    if k >= 6:
        s2 = s * s
        m[[0, 1, 3], 3] = np.array([cx * cx, -2.0 * cx, 1.0]) / s2
        m[[0, 1, 2, 4], 4] = np.array([cx * cy, -cy, -cx, 1.0]) / s2
        m[[0, 2, 5], 5] = np.array([cy * cy, -2.0 * cy, 1.0]) / s2
    if k == 8:
        s3 = s * s * s
        c2 = cx * cx + cy * cy
        m[:, 6] = np.array([-cx * c2, c2 + 2.0 * cx * cx, 2.0 * cx * cy, -3.0 * cx, -2.0 * cy, -cx, 1.0, 0.0]) / s3
        m[:, 7] = np.array([-cy * c2, 2.0 * cx * cy, c2 + 2.0 * cy * cy, -cy, -2.0 * cx, -3.0 * cy, 0.0, 1.0]) / s3
    return m


def squared_residuals(transform: Transform, xy_a: np.ndarray, xy_b: np.ndarray) -> np.ndarray:
    x, y = transform.evaluate(xy_a[:, 0], xy_a[:, 1])
    return (x - xy_b[:, 0]) ** 2 + (y - xy_b[:, 1]) ** 2


def pair_positions(
    points_a: Sequence[StarPoint],
    points_b: Sequence[StarPoint],
    pairs: Sequence[MatchPair],
) -> Tuple[np.ndarray, np.ndarray]:
    """Coordinates of the paired points, index-aligned."""
    xy_a = positions([points_a[p.index_a] for p in pairs])
    xy_b = positions([points_b[p.index_b] for p in pairs])
    return xy_a, xy_b


@dataclass
class FitHistory:
    """Sigma and pair count seen at each iteration of ``iter_trans``."""
    sigmas: List[float] = field(default_factory=list)
    pairs: List[int] = field(default_factory=list)

    def record(self, sigma: float, num_pairs: int) -> None:
        self.sigmas.append(sigma)
        self.pairs.append(num_pairs)


def iter_trans(
    points_a: Sequence[StarPoint],
    points_b: Sequence[StarPoint],
    pairs: Sequence[MatchPair],
    order: str = "linear",
    recalc: bool = False,
    max_iter: int = MAX_ITER,
    halt_sigma: float = HALT_SIGMA,
    max_dist: float = MAX_MATCH_DIST,
    percentile: float = ONE_STDEV_PERCENTILE,
    nsigma: float = NSIGMA,
    history: Optional[FitHistory] = None,
) -> Tuple[Transform, List[MatchPair]]:
    """
    Fit a transform to candidate pairs, clipping outliers between fits.

    Without ``recalc`` the first fit uses only the leading ``START_PAIRS``
    candidates (they are expected to be ranked best first); with it, all
    candidates are used from the start. Each iteration then measures the
    squared residual of every remaining pair, drops pairs beyond
    ``max_dist``, takes the ``percentile`` residual as sigma and stops once
    sigma is at most ``halt_sigma``. Otherwise pairs above ``nsigma * sigma``
    are dropped and the fit is repeated.

    Args:
        points_a, points_b: Point lists the pairs index into
        pairs: Candidate correspondences, best first
        order: Polynomial order
        recalc: Fit all pairs from the start
        max_iter: Maximum clip-and-refit iterations
        halt_sigma: Sigma (squared units) at which to stop
        max_dist: Hard residual ceiling
        percentile: Percentile used for sigma
        nsigma: Clip factor applied to sigma
        history: Optional recorder of per-iteration sigma and pair count

    Returns:
        Tuple of (transform, surviving pairs)

    Raises:
        InsufficientPoints: Too few pairs at the start or after clipping
        SingularSystem: A fit could not be solved
    """
    check_order(order)
    required = REQUIRED_PAIRS[order]
    current = list(pairs)
    if len(current) < required:
        raise InsufficientPoints(f"A {order} fit needs {required} pairs, got {len(current)}")

    initial = current if recalc else current[:START_PAIRS[order]]
    transform = calc_trans(*pair_positions(points_a, points_b, initial), order)

    max_dist2 = max_dist * max_dist
    for iteration in range(max_iter):
        xy_a, xy_b = pair_positions(points_a, points_b, current)
        dist2 = squared_residuals(transform, xy_a, xy_b)

        keep = dist2 <= max_dist2
        current = [p for p, k in zip(current, keep) if k]
        dist2 = dist2[keep]
        if len(current) < required:
            raise InsufficientPoints(f"Only {len(current)} pairs within {max_dist} after iteration {iteration}")

        sigma = find_percentile(np.sort(dist2), percentile)
        if history is not None:
            history.record(sigma, len(current))
        logger.debug(f"iter_trans {iteration}: {len(current)} pairs, sigma {sigma:.4g}")

        if sigma <= halt_sigma:
            break

        keep = dist2 <= nsigma * sigma
        if np.all(keep):
            break
        current = [p for p, k in zip(current, keep) if k]
        if len(current) < required:
            raise InsufficientPoints(f"Only {len(current)} pairs left after clipping at iteration {iteration}")

        transform = calc_trans(*pair_positions(points_a, points_b, current), order)

    # Final statistics always describe the returned transform over its pairs
    xy_a, xy_b = pair_positions(points_a, points_b, current)
    sigma = find_percentile(np.sort(squared_residuals(transform, xy_a, xy_b)), percentile)

    transform = replace(transform, pairs_used=len(current), sigma=sigma)
    return transform, current


def calc_rms(transformed_a: Sequence[StarPoint], matched_b: Sequence[StarPoint]) -> Tuple[float, float]:
    """
    Per-axis RMS of ``B - A`` over matched lists already in the same frame.

    Pairs whose squared offset on either axis reaches 9 times the mean
    square are left out. Empty lists give ``(0.0, 0.0)``.
    """
    if len(transformed_a) != len(matched_b):
        raise ValueError("Matched lists must have the same length")
    if len(transformed_a) == 0:
        return 0.0, 0.0

    d2 = (positions(matched_b) - positions(transformed_a)) ** 2
    xms, yms = d2.mean(axis=0)
    keep = (d2[:, 0] < 9 * xms) & (d2[:, 1] < 9 * yms)
    nkeep = int(np.count_nonzero(keep))

    sum_x, sum_y = d2[keep].sum(axis=0) if nkeep else (0.0, 0.0)
    sigma_x = math.sqrt(sum_x / nkeep) if sum_x > 0.0 else 0.0
    sigma_y = math.sqrt(sum_y / nkeep) if sum_y > 0.0 else 0.0
    return sigma_x, sigma_y


@dataclass
class MedianTranslation:
    """Shift statistics between two matched lists (B minus A)."""
    mdx: float  # median shift in x
    mdy: float
    adx: float  # mean shift in x
    ady: float
    sdx: float  # standard deviation of the x shift
    sdy: float
    nm: int  # pairs used


def _shift_stats(dx: np.ndarray, dy: np.ndarray) -> Tuple[float, float, float, float, float, float]:
    adx, ady = float(dx.mean()), float(dy.mean())
    sdx = math.sqrt(max(float((dx * dx).mean()) - adx * adx, 0.0))
    sdy = math.sqrt(max(float((dy * dy).mean()) - ady * ady, 0.0))
    mdx = find_percentile(np.sort(dx), 0.5)
    mdy = find_percentile(np.sort(dy), 0.5)
    return mdx, mdy, adx, ady, sdx, sdy


def find_median_translation(
    matched_a: Sequence[StarPoint],
    matched_b: Sequence[StarPoint],
    sigma_clip: float = 0.0,
) -> MedianTranslation:
    """
    Measure the translation between two matched lists.

    With ``sigma_clip > 0`` the statistics are recomputed using only pairs
    whose shift lies within ``sigma_clip * sqrt(sdx * sdy)`` of the median.

    Raises:
        InsufficientPoints: Fewer than 3 pairs, before or after clipping
    """
    if len(matched_a) != len(matched_b):
        raise ValueError("Matched lists must have the same length")
    if len(matched_a) < 3:
        raise InsufficientPoints(f"Need at least 3 matched pairs, got {len(matched_a)}")
    if sigma_clip < 0:
        raise ValueError("sigma_clip must not be negative")

    shift = positions(matched_b) - positions(matched_a)
    dx, dy = shift[:, 0], shift[:, 1]
    mdx, mdy, adx, ady, sdx, sdy = _shift_stats(dx, dy)
    nm = len(dx)

    if sigma_clip > 0:
        if sdx <= 0.0 or sdy <= 0.0:
            logger.warning("Shift RMS is zero, skipping clipped statistics")
        else:
            clip = sigma_clip * math.sqrt(sdx * sdy)
            if abs(mdx - adx) > 0.5 * clip or abs(mdy - ady) > 0.5 * clip:
                logger.warning("Shift distribution is strongly skewed")
            keep = (np.abs(dx - mdx) <= clip) & (np.abs(dy - mdy) <= clip)
            if np.count_nonzero(keep) < 3:
                raise InsufficientPoints(
                    f"Only {np.count_nonzero(keep)} pairs within {clip:.4g} of the median shift"
                )
            mdx, mdy, adx, ady, sdx, sdy = _shift_stats(dx[keep], dy[keep])
            nm = int(np.count_nonzero(keep))

    return MedianTranslation(mdx=mdx, mdy=mdy, adx=adx, ady=ady, sdx=sdx, sdy=sdy, nm=nm)
