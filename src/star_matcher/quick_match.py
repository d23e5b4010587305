"""
Quick triangle matcher.

Triangles of list A are visited from the most distinctive (largest ``D``)
down. For each, shape-compatible triangles of list B are found by binary
search on ``yt``; every compatible pair seeds a transform that is refined
against the full lists. The first transform that explains enough stars
tightly enough is returned.
"""

import logging
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .errors import MatchError, NoMatchFound
from .fitting import calc_trans
from .models import MatchPair, StarPoint, Transform, Triangle, positions
from .triangles import find_yt_index, sort_by_discriminant, sort_by_yt
from .voting import is_desired_rotation, is_desired_scale


logger = logging.getLogger(__name__)

# Half-width of the yt search window, as a percentage of yt
YT_PERCENT = 2.0

# Largest difference allowed in each of ba, ca and cb
RATIO_DIFF = 0.02

MIN_REQUIRED_PAIRS = 10

# Largest acceptable variance of the match distances
MAX_SIGMA = 10.0

# Upper bound on triangle pairs tried before giving up
MAX_CANDIDATES = 100000


def check_trans_properties(
    transform: Transform,
    min_scale: Optional[float] = None,
    max_scale: Optional[float] = None,
    rotation_deg: Optional[float] = None,
    rotation_tol_deg: Optional[float] = None,
) -> bool:
    """Check a transform against optional scale and rotation bounds."""
    if not is_desired_scale(transform.scale, min_scale, max_scale):
        return False
    return is_desired_rotation(transform.rotation, rotation_deg, rotation_tol_deg)


def _nearest_within(xy_a: np.ndarray, xy_b: np.ndarray, radius: float) -> List[MatchPair]:
    """
    Closest B point within ``radius`` of each A point.

    Several A points may share one B point.
    """
    order = np.argsort(xy_b[:, 0], kind="stable")
    xs = xy_b[order, 0]
    lo_idx = np.searchsorted(xs, xy_a[:, 0] - radius, side="left")
    hi_idx = np.searchsorted(xs, xy_a[:, 0] + radius, side="right")

    radius2 = radius * radius
    pairs = []
    for ia, (lo, hi) in enumerate(zip(lo_idx, hi_idx)):
        if lo >= hi:
            continue
        window = order[lo:hi]
        d2 = np.sum((xy_b[window] - xy_a[ia]) ** 2, axis=1)
        best = int(np.argmin(d2))
        if d2[best] <= radius2:
            pairs.append(MatchPair(ia, int(window[best])))
    return pairs


def apply_and_find_matches(
    transform: Transform,
    xy_a: np.ndarray,
    xy_b: np.ndarray,
    radius: float,
) -> Tuple[List[MatchPair], np.ndarray]:
    """
    Transform A, match it against B and drop pairs beyond mean + 3 stdev.

    Returns:
        Tuple of (surviving pairs, their match distances)
    """
    x, y = transform.evaluate(xy_a[:, 0], xy_a[:, 1])
    moved = np.column_stack([x, y])
    pairs = _nearest_within(moved, xy_b, radius)
    if not pairs:
        return [], np.zeros(0)

    dist = np.array([np.hypot(*(moved[p.index_a] - xy_b[p.index_b])) for p in pairs])
    limit = dist.mean() + 3.0 * dist.std()
    keep = dist <= limit
    return [p for p, k in zip(pairs, keep) if k], dist[keep]


def find_quick_match(
    points_a: Sequence[StarPoint],
    triangles_a: Sequence[Triangle],
    points_b: Sequence[StarPoint],
    triangles_b: Sequence[Triangle],
    order: str = "linear",
    match_radius: float = 5.0,
    max_iter: int = 3,
    max_sigma: float = MAX_SIGMA,
    min_pairs: int = MIN_REQUIRED_PAIRS,
    min_scale: Optional[float] = None,
    max_scale: Optional[float] = None,
    rotation_deg: Optional[float] = None,
    rotation_tol_deg: Optional[float] = None,
    yt_percent: float = YT_PERCENT,
    ratio_diff: float = RATIO_DIFF,
    max_candidates: int = MAX_CANDIDATES,
) -> Tuple[Transform, List[MatchPair]]:
    """
    Find a transform from A to B by seeding fits with similar triangles.

    Args:
        points_a, points_b: Point lists the triangles were built from
        triangles_a, triangles_b: Triangle sets (any order)
        order: Order of the final transform; seeds are fitted linearly first
        match_radius: Radius for matching stars under a trial transform
        max_iter: Refinement iterations per seed
        max_sigma: Largest accepted variance of the match distances
        min_pairs: Fewest matched stars for a transform to be accepted
        min_scale, max_scale: Optional bounds on the B/A scale
        rotation_deg, rotation_tol_deg: Optional rotation constraint
        yt_percent: Width of the yt search window in percent
        ratio_diff: Tolerance on each shape ratio
        max_candidates: Triangle pairs to try before giving up

    Returns:
        Tuple of (transform, matched pairs under that transform)

    Raises:
        NoMatchFound: No seed produced an acceptable transform
    """
    xy_a = positions(points_a)
    xy_b = positions(points_b)
    tris_a = sort_by_discriminant(triangles_a)
    tris_b = sort_by_yt(triangles_b)

    candidates = 0
    for tri_a in tris_a:
        eps = tri_a.yt * yt_percent / 100.0
        start = max(find_yt_index(tris_b, tri_a.yt + eps) - 1, 0)
        end = min(find_yt_index(tris_b, tri_a.yt - eps) + 1, len(tris_b))

        for tri_b in tris_b[start:end]:
            if (abs(tri_a.ba - tri_b.ba) > ratio_diff
                    or abs(tri_a.ca - tri_b.ca) > ratio_diff
                    or abs(tri_a.cb - tri_b.cb) > ratio_diff):
                continue
            if min_scale is not None and tri_a.a_length > 0.0:
                if not is_desired_scale(tri_b.a_length / tri_a.a_length, min_scale, max_scale):
                    continue
            if not is_desired_rotation(tri_b.orientation - tri_a.orientation, rotation_deg, rotation_tol_deg):
                continue

            candidates += 1
            if candidates > max_candidates:
                raise NoMatchFound(f"Gave up after {max_candidates} candidate triangle pairs")

            found = _refine_candidate(
                tri_a, tri_b, xy_a, xy_b, order, match_radius, max_iter, max_sigma,
                min_pairs, min_scale, max_scale, rotation_deg, rotation_tol_deg,
            )
            if found is not None:
                transform, pairs = found
                logger.info(
                    f"Quick match after {candidates} candidates: {transform.pairs_matched} stars, "
                    f"scale {transform.scale:.4f}, rotation {transform.rotation:.2f} deg"
                )
                return transform, pairs

    raise NoMatchFound(f"No acceptable transform among {candidates} candidate triangle pairs")


def _refine_candidate(
    tri_a: Triangle,
    tri_b: Triangle,
    xy_a: np.ndarray,
    xy_b: np.ndarray,
    order: str,
    match_radius: float,
    max_iter: int,
    max_sigma: float,
    min_pairs: int,
    min_scale: Optional[float],
    max_scale: Optional[float],
    rotation_deg: Optional[float],
    rotation_tol_deg: Optional[float],
) -> Optional[Tuple[Transform, List[MatchPair]]]:
    """Iterate fit and match from one triangle pair; None if it never qualifies."""
    pairs = [MatchPair(a, b) for a, b in zip(tri_a.vertices, tri_b.vertices)]
    fit_order = "linear"
    # A higher order needs at least one pass after the linear seed
    passes = max_iter if order == "linear" else max(max_iter, 2)

    for iteration in range(passes):
        try:
            transform = calc_trans(
                xy_a[[p.index_a for p in pairs]], xy_b[[p.index_b for p in pairs]], fit_order
            )
        except MatchError:
            return None

        if not check_trans_properties(transform, min_scale, max_scale, rotation_deg, rotation_tol_deg):
            return None

        new_pairs, dist = apply_and_find_matches(transform, xy_a, xy_b, match_radius)
        if not new_pairs:
            return None

        variance = float(dist.std()) ** 2
        if fit_order == order and len(new_pairs) >= min_pairs and variance <= max_sigma:
            transform.pairs_matched = len(new_pairs)
            transform.sigma = variance
            return transform, new_pairs

        if new_pairs == pairs and fit_order == order:
            return None
        pairs = new_pairs
        fit_order = order

    return None
