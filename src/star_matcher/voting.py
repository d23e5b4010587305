"""
Correspondence voting between two triangle sets.

Each pair of similar triangles casts one vote for each of its three vertex
correspondences. Point pairs that collect many votes are likely to be the
same star seen in both lists.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import numpy as np

from .models import MatchPair, Triangle
from .triangles import find_ba_index


logger = logging.getLogger(__name__)

# Maximum distance between two triangles in (ba, ca) space
TRIANGLE_RADIUS = 0.002

# Point pairs with fewer votes than this are discarded
MIN_VOTES = 2


def is_desired_rotation(delta: float, angle: Optional[float], tolerance: Optional[float]) -> bool:
    """
    Check that a measured rotation ``delta`` is within ``tolerance`` of ``angle``.

    All values are in degrees; the difference is wrapped into [-180, 180).
    """
    if angle is None:
        return True
    diff = (delta - angle + 180.0) % 360.0 - 180.0
    return abs(diff) <= tolerance


def is_desired_scale(ratio: float, min_scale: Optional[float], max_scale: Optional[float]) -> bool:
    if min_scale is None:
        return True
    return min_scale <= ratio <= max_scale


def make_vote_matrix(
    triangles_a: Sequence[Triangle],
    triangles_b: Sequence[Triangle],
    nbright: int,
    radius: float = TRIANGLE_RADIUS,
    min_scale: Optional[float] = None,
    max_scale: Optional[float] = None,
    rotation_deg: Optional[float] = None,
    rotation_tol_deg: Optional[float] = None,
) -> np.ndarray:
    """
    Count votes for every (point of A, point of B) correspondence.

    Args:
        triangles_a: Triangles of list A sorted by ``ba``
        triangles_b: Triangles of list B
        nbright: Size of the vote matrix; triangles using a point ranked
            at or beyond it are ignored
        radius: Maximum triangle-space distance for a shape match
        min_scale, max_scale: Optional bounds on the B/A size ratio
        rotation_deg, rotation_tol_deg: Optional rotation constraint

    Returns:
        ``nbright x nbright`` integer array of vote counts
    """
    votes = np.zeros((nbright, nbright), dtype=int)
    radius2 = radius * radius

    for tri_b in triangles_b:
        if max(tri_b.vertices) >= nbright:
            continue

        for i in range(find_ba_index(triangles_a, tri_b.ba - radius), len(triangles_a)):
            tri_a = triangles_a[i]
            if tri_a.ba > tri_b.ba + radius:
                break
            if max(tri_a.vertices) >= nbright:
                continue

            dba = tri_a.ba - tri_b.ba
            dca = tri_a.ca - tri_b.ca
            if dba * dba + dca * dca >= radius2:
                continue

            if min_scale is not None and tri_a.a_length > 0.0:
                if not is_desired_scale(tri_b.a_length / tri_a.a_length, min_scale, max_scale):
                    continue

            if not is_desired_rotation(tri_b.orientation - tri_a.orientation, rotation_deg, rotation_tol_deg):
                continue

            votes[tri_a.a_index, tri_b.a_index] += 1
            votes[tri_a.b_index, tri_b.b_index] += 1
            votes[tri_a.c_index, tri_b.c_index] += 1

    return votes


@dataclass
class VoteResult:
    """Top vote getters, best first."""
    votes: List[int] = field(default_factory=list)
    pairs: List[MatchPair] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.pairs)


def top_vote_getters(vote_matrix: np.ndarray, num: int, min_votes: int = MIN_VOTES) -> VoteResult:
    """
    Extract the ``num`` cells with the most votes.

    Ties are broken by row-major scan order. Entries below ``min_votes``
    are dropped, so the result may hold fewer than ``num`` pairs.
    """
    flat = vote_matrix.ravel()
    order = np.argsort(-flat, kind="stable")[:num]
    ncols = vote_matrix.shape[1]

    result = VoteResult()
    for cell in order:
        count = int(flat[cell])
        if count < min_votes:
            break
        result.votes.append(count)
        result.pairs.append(MatchPair(int(cell // ncols), int(cell % ncols)))

    logger.debug(f"Top vote getters: {len(result)} pairs, best {result.votes[:5]}")
    return result
