"""
Applying transforms to point lists and matching lists by proximity.
"""

import dataclasses
import logging
from typing import Dict, List, Sequence, Tuple

import numpy as np
from scipy.spatial import KDTree

from .models import MatchedLists, MatchPair, StarPoint, Transform, positions


logger = logging.getLogger(__name__)

# Default radius for final proximity matching, in units of list B
MATCH_RADIUS = 5.0


def apply_transform(points: Sequence[StarPoint], transform: Transform) -> List[StarPoint]:
    """
    Map every point through ``transform``.

    Returns new points; ids, magnitudes and colours are carried over.
    """
    if len(points) == 0:
        return []
    xy = positions(points)
    x, y = transform.evaluate(xy[:, 0], xy[:, 1])
    return [dataclasses.replace(p, x=float(px), y=float(py)) for p, px, py in zip(points, x, y)]


def match_indices(xy_a: np.ndarray, xy_b: np.ndarray, radius: float) -> List[MatchPair]:
    """
    Pair each A coordinate with its closest B coordinate within ``radius``.

    When several A points claim the same B point, only the closest A point
    keeps it. On equal distances the earlier index wins. Pairs are returned
    in A order.
    """
    if len(xy_a) == 0 or len(xy_b) == 0:
        return []

    radius2 = radius * radius
    tree = KDTree(xy_b)

    best_b: Dict[int, Tuple[float, int]] = {}
    for ia, candidates in enumerate(tree.query_ball_point(xy_a, radius)):
        for ib in sorted(candidates):
            d2 = float(np.sum((xy_a[ia] - xy_b[ib]) ** 2))
            if d2 >= radius2:
                continue
            if ia not in best_b or d2 < best_b[ia][0]:
                best_b[ia] = (d2, ib)

    owner: Dict[int, Tuple[float, int]] = {}
    for ia in sorted(best_b):
        d2, ib = best_b[ia]
        if ib not in owner or d2 < owner[ib][0]:
            owner[ib] = (d2, ia)

    pairs = [MatchPair(ia, ib) for ib, (_, ia) in owner.items()]
    pairs.sort(key=lambda p: p.index_a)
    return pairs


def partition(
    points_a: Sequence[StarPoint],
    points_b: Sequence[StarPoint],
    pairs: Sequence[MatchPair],
) -> MatchedLists:
    """Split both lists into matched (index-aligned) and unmatched points."""
    result = MatchedLists()
    used_a = set()
    used_b = set()
    for pair in pairs:
        a = points_a[pair.index_a]
        b = points_b[pair.index_b]
        result.matched_a.append(dataclasses.replace(a, match_id=b.id))
        result.matched_b.append(dataclasses.replace(b, match_id=a.id))
        used_a.add(pair.index_a)
        used_b.add(pair.index_b)

    result.unmatched_a = [p for i, p in enumerate(points_a) if i not in used_a]
    result.unmatched_b = [p for i, p in enumerate(points_b) if i not in used_b]
    return result


def match_lists(
    points_a: Sequence[StarPoint],
    points_b: Sequence[StarPoint],
    radius: float = MATCH_RADIUS,
) -> MatchedLists:
    """
    Match two lists that are already in the same coordinate frame.

    Args:
        points_a: First list
        points_b: Second list
        radius: Maximum separation of a matched pair

    Returns:
        MatchedLists with matched A/B points index-aligned
    """
    if radius <= 0:
        raise ValueError("Match radius must be positive")
    pairs = match_indices(positions(points_a), positions(points_b), radius)
    logger.debug(f"match_lists: {len(pairs)} pairs from {len(points_a)} x {len(points_b)} points")
    return partition(points_a, points_b, pairs)
