"""
Star Matcher
============

A Python library for matching two lists of star positions observed in
unrelated coordinate systems and solving for the polynomial transform
(linear, quadratic or cubic) between them.

Main components:
- models: Star points, triangles, transforms and matched lists
- linear_solver: Gaussian elimination with scaled partial pivoting
- triangles: Triangle generation from the brightest stars
- voting: Vote matrix between two triangle sets
- quick_match: Fast triangle matcher seeding trial transforms
- fitting: Least-squares and sigma-clipping transform fits
- list_matcher: Apply transforms and match lists by proximity
- homography: OpenCV models fitted to matched stars
- matcher: The complete matching workflow
"""

__version__ = "0.1.0"
__author__ = "Your Name"

from .config import Config
from .errors import ConstraintViolation, InsufficientPoints, MatchError, NoMatchFound, SingularSystem
from .models import MatchedLists, MatchPair, StarPoint, Transform, Triangle
from .linear_solver import solve_linear_system
from .triangles import build_triangles, prune_triangles, sort_by_magnitude
from .voting import make_vote_matrix, top_vote_getters
from .quick_match import find_quick_match
from .fitting import calc_rms, calc_trans, find_median_translation, iter_trans
from .list_matcher import apply_transform, match_lists
from .homography import Homography, estimate_homography
from .matcher import MatchResult, ReferenceSession, StarMatcher, find_transform, recompute_transform

__all__ = [
    "Config",
    "MatchError",
    "InsufficientPoints",
    "SingularSystem",
    "NoMatchFound",
    "ConstraintViolation",
    "StarPoint",
    "Triangle",
    "Transform",
    "MatchPair",
    "MatchedLists",
    "solve_linear_system",
    "sort_by_magnitude",
    "build_triangles",
    "prune_triangles",
    "make_vote_matrix",
    "top_vote_getters",
    "find_quick_match",
    "calc_trans",
    "iter_trans",
    "calc_rms",
    "find_median_translation",
    "apply_transform",
    "match_lists",
    "Homography",
    "estimate_homography",
    "StarMatcher",
    "MatchResult",
    "ReferenceSession",
    "find_transform",
    "recompute_transform",
    "__version__",
]
