"""
Triangle generation from the brightest points of a list.

Every combination of three of the ``nbright`` brightest points becomes one
``Triangle``. Shape ratios (``ba``, ``ca``, ``cb``) do not change under
translation, rotation or scaling, which is what lets two lists in unrelated
frames be compared.
"""

import bisect
import dataclasses
import logging
import math
from typing import List, Sequence, Tuple

import numpy as np
from scipy.spatial.distance import cdist

from .models import StarPoint, Triangle, positions


logger = logging.getLogger(__name__)

# Triangles with b/a above this are too close to isosceles to be reliable
MAX_BA_RATIO = 0.9


def sort_by_magnitude(points: Sequence[StarPoint]) -> List[StarPoint]:
    """
    Return copies of ``points`` sorted brightest first, with ``rank`` set.

    The sort is stable, so points of equal magnitude keep their input order.
    """
    ordered = sorted(points, key=lambda p: p.mag)
    return [dataclasses.replace(p, rank=i) for i, p in enumerate(ordered)]


def make_triangle(points: Sequence[StarPoint], dist: np.ndarray, i: int, j: int, k: int) -> Triangle:
    """
    Build the triangle with vertices ``i``, ``j`` and ``k``.

    Args:
        points: Sorted point list
        dist: Pairwise distance matrix of the points
        i, j, k: Vertex indices into ``points``
    """
    # Each side paired with the vertex opposite it; the stable sort keeps
    # this order among sides of equal length.
    sides = [(dist[i, j], k), (dist[j, k], i), (dist[i, k], j)]
    sides.sort(key=lambda s: -s[0])
    (a, a_index), (b, b_index), (c, c_index) = sides

    if a > 0.0:
        ba = b / a
        ca = c / a
    else:
        ba = ca = 1.0
    cb = c / b if b > 0.0 else 1.0

    pa, pb, pc = points[a_index], points[b_index], points[c_index]

    # The longest side runs between the b- and c-opposite vertices
    orientation = math.degrees(math.atan2(pb.y - pc.y, pb.x - pc.x))

    # Dot product of the two longest sides, taken from their shared vertex
    xt = (pa.x - pc.x) * (pb.x - pc.x) + (pa.y - pc.y) * (pb.y - pc.y)
    yt = 1.0 / ca if ca > 0.0 else 0.0

    return Triangle(
        a_index=a_index, b_index=b_index, c_index=c_index,
        a_length=float(a), b_length=float(b), c_length=float(c),
        ba=float(ba), ca=float(ca), cb=float(cb),
        orientation=orientation,
        xt=xt, yt=yt, D=xt * yt,
    )


def build_triangles(points: Sequence[StarPoint], nbright: int) -> List[Triangle]:
    """
    Build every triangle among the first ``nbright`` points.

    Args:
        points: Point list already sorted by magnitude
        nbright: Number of points to use (clamped to the list length)

    Returns:
        ``C(nbright, 3)`` triangles, in ``i < j < k`` order
    """
    n = min(nbright, len(points))
    if n < 3:
        return []

    xy = positions(points[:n])
    dist = cdist(xy, xy)

    triangles = []
    for i in range(n):
        for j in range(i + 1, n):
            for k in range(j + 1, n):
                triangles.append(make_triangle(points, dist, i, j, k))

    logger.debug(f"Built {len(triangles)} triangles from {n} points")
    return triangles


def stars_to_triangles(points: Sequence[StarPoint], nbright: int) -> Tuple[List[StarPoint], List[Triangle]]:
    """Sort ``points`` by magnitude and build triangles from the brightest."""
    ordered = sort_by_magnitude(points)
    return ordered, build_triangles(ordered, nbright)


def sort_by_ba(triangles: Sequence[Triangle]) -> List[Triangle]:
    return sorted(triangles, key=lambda t: t.ba)


def prune_triangles(triangles: Sequence[Triangle], max_ratio: float = MAX_BA_RATIO) -> List[Triangle]:
    """
    Sort by ``ba`` and keep only triangles with ``ba <= max_ratio``.
    """
    ordered = sort_by_ba(triangles)
    cut = bisect.bisect_right([t.ba for t in ordered], max_ratio)
    if cut < len(ordered):
        logger.debug(f"Pruned {len(ordered) - cut} of {len(ordered)} near-isosceles triangles")
    return ordered[:cut]


def find_ba_index(triangles: Sequence[Triangle], ba: float) -> int:
    """
    Index of the first triangle (sorted by ``ba``) whose ``ba`` is >= ``ba``.
    """
    lo, hi = 0, len(triangles)
    while lo < hi:
        mid = (lo + hi) // 2
        if triangles[mid].ba < ba:
            lo = mid + 1
        else:
            hi = mid
    return lo


def sort_by_discriminant(triangles: Sequence[Triangle]) -> List[Triangle]:
    """Sort by ``D``, largest (most distinctive) first."""
    return sorted(triangles, key=lambda t: -t.D)


def sort_by_yt(triangles: Sequence[Triangle]) -> List[Triangle]:
    """Sort by ``yt``, largest first."""
    return sorted(triangles, key=lambda t: -t.yt)


def find_yt_index(triangles: Sequence[Triangle], yt: float) -> int:
    """
    Index of the first triangle (sorted by ``yt`` descending) with ``yt <= yt``.
    """
    lo, hi = 0, len(triangles)
    while lo < hi:
        mid = (lo + hi) // 2
        if triangles[mid].yt > yt:
            lo = mid + 1
        else:
            hi = mid
    return lo
