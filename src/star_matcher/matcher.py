"""
Top-level matching workflow.

This module ties the stages together:

1. Build triangles from the brightest stars of both lists
2. Find an initial transform with the quick matcher or by voting
3. Apply it to list A, match by proximity and refit on the matched pairs
4. Repeat the refit once, then report matched and unmatched stars
"""

from dataclasses import dataclass, field, replace
from typing import List, Optional, Sequence, Tuple, Union
import logging
import time

from .config import Config
from .errors import ConstraintViolation, InsufficientPoints, MatchError, NoMatchFound
from .fitting import calc_rms, iter_trans
from .homography import Homography, estimate_homography
from .list_matcher import apply_transform, match_indices, partition
from .models import (
    REQUIRED_PAIRS,
    START_PAIRS,
    MatchedLists,
    MatchPair,
    StarPoint,
    Transform,
    Triangle,
    check_order,
    positions,
)
from .quick_match import check_trans_properties, find_quick_match
from .triangles import build_triangles, prune_triangles, sort_by_magnitude
from .voting import make_vote_matrix, top_vote_getters


logger = logging.getLogger(__name__)

ScaleBounds = Union[float, Tuple[float, float], None]

# Number of apply / match / refit passes after the initial transform
REFINE_PASSES = 2


def resolve_scale_bounds(
    scale_bounds: ScaleBounds,
    scale_percent: float = 10.0,
) -> Tuple[Optional[float], Optional[float]]:
    """
    Turn a scale or (min, max) pair into explicit bounds.

    A single value ``s`` becomes ``s * (1 -/+ scale_percent / 100)``.

    Raises:
        ConstraintViolation: Non-positive or inverted bounds
    """
    if scale_bounds is None:
        return None, None
    if isinstance(scale_bounds, (int, float)):
        if scale_bounds <= 0:
            raise ConstraintViolation(f"Scale must be positive, got {scale_bounds}")
        delta = scale_bounds * scale_percent / 100.0
        return scale_bounds - delta, scale_bounds + delta

    min_scale, max_scale = scale_bounds
    if min_scale <= 0 or max_scale <= 0:
        raise ConstraintViolation(f"Scale bounds must be positive, got {scale_bounds}")
    if min_scale > max_scale:
        raise ConstraintViolation(f"Minimum scale {min_scale} exceeds maximum {max_scale}")
    return float(min_scale), float(max_scale)


def resolve_rotation(rotation: Optional[Tuple[float, float]]) -> Tuple[Optional[float], Optional[float]]:
    """
    Validate an (angle, tolerance) rotation constraint in degrees.

    Raises:
        ConstraintViolation: Only one of the two values given, or a
            negative tolerance
    """
    if rotation is None:
        return None, None
    angle, tolerance = rotation
    if (angle is None) != (tolerance is None):
        raise ConstraintViolation("Rotation angle and tolerance must be given together")
    if angle is None:
        return None, None
    if tolerance < 0:
        raise ConstraintViolation(f"Rotation tolerance must not be negative, got {tolerance}")
    return float(angle), float(tolerance)


@dataclass
class MatchResult:
    """Result of matching two star lists."""

    transform: Transform
    matches: MatchedLists
    method: str
    homography: Optional[Homography] = None
    elapsed_seconds: float = 0.0

    @property
    def success(self) -> bool:
        return self.matches.num_matched >= REQUIRED_PAIRS[self.transform.order]

    def to_dict(self) -> dict:
        data = {
            "method": self.method,
            "transform": self.transform.to_dict(),
            "num_matched": self.matches.num_matched,
            "num_unmatched_a": len(self.matches.unmatched_a),
            "num_unmatched_b": len(self.matches.unmatched_b),
            "pairs": [
                {"id_a": a.id, "id_b": b.id}
                for a, b in zip(self.matches.matched_a, self.matches.matched_b)
            ],
            "elapsed_seconds": self.elapsed_seconds,
        }
        if self.homography is not None:
            data["homography"] = self.homography.to_dict()
        return data


@dataclass
class _PreparedList:
    """A point list sorted by magnitude with its triangles."""

    points: List[StarPoint]
    triangles: List[Triangle]
    pruned: List[Triangle] = field(default_factory=list)


class StarMatcher:
    """
    Match star lists and solve for the transform between them.

    All state lives in the configuration; every call works on its own
    copies of the input lists.
    """

    def __init__(self, config: Optional[Config] = None):
        self.config = config or Config()
        check_order(self.config.fit.order)
        if self.config.fit.method not in ("quick", "vote", "auto"):
            raise ValueError(f"Unknown matching method: {self.config.fit.method}")

        constraints = self.config.constraints
        if constraints.scale is not None:
            if constraints.min_scale is not None or constraints.max_scale is not None:
                raise ConstraintViolation("Give either scale or min_scale/max_scale, not both")
            bounds = constraints.scale
        elif constraints.min_scale is not None or constraints.max_scale is not None:
            if constraints.min_scale is None or constraints.max_scale is None:
                raise ConstraintViolation("Both min_scale and max_scale are needed")
            bounds = (constraints.min_scale, constraints.max_scale)
        else:
            bounds = None
        self.min_scale, self.max_scale = resolve_scale_bounds(bounds, constraints.scale_percent)
        self.rotation_deg, self.rotation_tol_deg = resolve_rotation(
            (constraints.rotation_deg, constraints.rotation_tol_deg)
        )

    @property
    def order(self) -> str:
        return self.config.fit.order

    def nbright_for(self, num_a: int, num_b: int) -> int:
        """Number of bright stars to use given the two list lengths."""
        smallest = min(num_a, num_b)
        nbright = min(self.config.triangles.nbright, smallest)
        return max(nbright, min(START_PAIRS[self.order], smallest))

    def check_sizes(self, num_a: int, num_b: int) -> None:
        required = REQUIRED_PAIRS[self.order]
        if min(num_a, num_b) < required:
            raise InsufficientPoints(
                f"A {self.order} match needs {required} stars in each list, got {num_a} and {num_b}"
            )

    def prepare(self, points: Sequence[StarPoint], nbright: int) -> _PreparedList:
        ordered = sort_by_magnitude(points)
        triangles = build_triangles(ordered, nbright)
        pruned = []
        if self.config.fit.method in ("vote", "auto"):
            pruned = prune_triangles(triangles, self.config.triangles.max_ba_ratio)
        return _PreparedList(points=ordered, triangles=triangles, pruned=pruned)

    def match(self, points_a: Sequence[StarPoint], points_b: Sequence[StarPoint]) -> MatchResult:
        """
        Find the transform from list A to list B and the matched stars.

        Raises:
            InsufficientPoints: Either list is too short
            NoMatchFound: No acceptable transform exists
            ConstraintViolation: The final transform breaks the bounds
            SingularSystem: A required fit is degenerate
        """
        self.check_sizes(len(points_a), len(points_b))
        nbright = self.nbright_for(len(points_a), len(points_b))
        prepared_a = self.prepare(points_a, nbright)
        return self.match_prepared(points_a, prepared_a, points_b, nbright)

    def match_prepared(
        self,
        points_a: Sequence[StarPoint],
        prepared_a: _PreparedList,
        points_b: Sequence[StarPoint],
        nbright: int,
    ) -> MatchResult:
        start_time = time.time()
        prepared_b = self.prepare(points_b, nbright)

        attempts = [(self.min_scale, self.max_scale)]
        if self.min_scale is not None and self.config.constraints.retry_without_scale:
            attempts.append((None, None))

        for min_scale, max_scale in attempts:
            try:
                initial, method = self.initial_transform(prepared_a, prepared_b, nbright, min_scale, max_scale)
                break
            except NoMatchFound as e:
                if min_scale is not None and len(attempts) > 1:
                    logger.warning(
                        f"No match within scale bounds {min_scale:.4g}-{max_scale:.4g} ({e}), "
                        f"retrying without them; the result will not be checked against them"
                    )
                    continue
                raise
        transform, matches = self.refine(points_a, points_b, initial)

        if not check_trans_properties(transform, min_scale, max_scale, self.rotation_deg, self.rotation_tol_deg):
            raise ConstraintViolation(
                f"Transform scale {transform.scale:.4f} / rotation {transform.rotation:.2f} deg "
                f"outside the requested bounds"
            )

        homography = None
        if self.config.homography.enabled:
            homography = estimate_homography(
                matches.matched_a, matches.matched_b,
                model=self.config.homography.model,
                ransac_threshold=self.config.homography.ransac_threshold,
            )

        elapsed = time.time() - start_time
        logger.info(
            f"Matched {matches.num_matched} stars ({self.order}, {method}): "
            f"sigma {transform.sigma:.4g}, scale {transform.scale:.4f}, rotation {transform.rotation:.2f} deg"
        )
        return MatchResult(
            transform=transform,
            matches=matches,
            method=method,
            homography=homography,
            elapsed_seconds=elapsed,
        )

    def initial_transform(
        self,
        prepared_a: _PreparedList,
        prepared_b: _PreparedList,
        nbright: int,
        min_scale: Optional[float],
        max_scale: Optional[float],
    ) -> Tuple[Transform, str]:
        """Run the triangle stage; returns the transform and the method used."""
        method = self.config.fit.method
        if method in ("quick", "auto"):
            try:
                transform, _ = self.quick_transform(prepared_a, prepared_b, min_scale, max_scale)
                return transform, "quick"
            except NoMatchFound:
                if method == "quick":
                    raise
                logger.info("Quick matcher failed, falling back to voting")
        return self.vote_transform(prepared_a, prepared_b, nbright, min_scale, max_scale), "vote"

    def quick_transform(
        self,
        prepared_a: _PreparedList,
        prepared_b: _PreparedList,
        min_scale: Optional[float],
        max_scale: Optional[float],
    ) -> Tuple[Transform, List[MatchPair]]:
        quick = self.config.quick_match
        return find_quick_match(
            prepared_a.points, prepared_a.triangles,
            prepared_b.points, prepared_b.triangles,
            order=self.order,
            match_radius=self.config.fit.match_radius,
            max_iter=self.config.fit.max_iter,
            max_sigma=quick.max_sigma,
            min_pairs=quick.min_pairs,
            min_scale=min_scale,
            max_scale=max_scale,
            rotation_deg=self.rotation_deg,
            rotation_tol_deg=self.rotation_tol_deg,
            yt_percent=quick.yt_percent,
            ratio_diff=quick.ratio_diff,
            max_candidates=quick.max_candidates,
        )

    def vote_transform(
        self,
        prepared_a: _PreparedList,
        prepared_b: _PreparedList,
        nbright: int,
        min_scale: Optional[float],
        max_scale: Optional[float],
    ) -> Transform:
        """Initial transform from the top vote getters."""
        triangles = self.config.triangles
        pruned_a = prepared_a.pruned or prune_triangles(prepared_a.triangles, triangles.max_ba_ratio)
        pruned_b = prepared_b.pruned or prune_triangles(prepared_b.triangles, triangles.max_ba_ratio)

        votes = make_vote_matrix(
            pruned_a, pruned_b, nbright,
            radius=triangles.triangle_radius,
            min_scale=min_scale,
            max_scale=max_scale,
            rotation_deg=self.rotation_deg,
            rotation_tol_deg=self.rotation_tol_deg,
        )
        top = top_vote_getters(votes, nbright, triangles.min_votes)
        if len(top) < REQUIRED_PAIRS[self.order]:
            raise NoMatchFound(f"Only {len(top)} point pairs received enough votes")

        try:
            transform, pairs = self.fit(prepared_a.points, prepared_b.points, top.pairs, recalc=False)
        except MatchError as e:
            raise NoMatchFound(f"Voting candidates did not yield a transform: {e}") from e

        if not check_trans_properties(transform, min_scale, max_scale, self.rotation_deg, self.rotation_tol_deg):
            raise NoMatchFound("Voting transform violates the scale or rotation bounds")
        return replace(transform, pairs_matched=len(pairs))

    def fit(
        self,
        points_a: Sequence[StarPoint],
        points_b: Sequence[StarPoint],
        pairs: Sequence[MatchPair],
        recalc: bool,
    ) -> Tuple[Transform, List[MatchPair]]:
        fit = self.config.fit
        return iter_trans(
            points_a, points_b, pairs,
            order=self.order,
            recalc=recalc,
            max_iter=fit.max_iter,
            halt_sigma=fit.halt_sigma,
            max_dist=fit.max_match_dist,
            percentile=fit.clip_percentile,
            nsigma=fit.clip_nsigma,
        )

    def refine(
        self,
        points_a: Sequence[StarPoint],
        points_b: Sequence[StarPoint],
        transform: Transform,
    ) -> Tuple[Transform, MatchedLists]:
        """
        Improve a transform using every star it matches.

        Each pass applies the transform to the unsorted list A, matches by
        proximity and refits on the matched pairs only.
        """
        xy_b = positions(points_b)
        radius = self.config.fit.match_radius

        for _ in range(REFINE_PASSES):
            moved = positions(apply_transform(points_a, transform))
            pairs = match_indices(moved, xy_b, radius)
            transform, _ = self.fit(points_a, points_b, pairs, recalc=True)

        moved_a = apply_transform(points_a, transform)
        pairs = match_indices(positions(moved_a), xy_b, radius)
        matches = partition(points_a, points_b, pairs)

        sigma_x, sigma_y = calc_rms([moved_a[p.index_a] for p in pairs], matches.matched_b)
        transform = replace(
            transform,
            pairs_matched=len(pairs),
            sigma_x=sigma_x,
            sigma_y=sigma_y,
        )
        return transform, matches


class ReferenceSession:
    """
    Reusable matcher for one reference list.

    The reference list is sorted and turned into triangles once; each call
    to ``match`` only builds triangles for the new list.
    """

    def __init__(self, reference: Sequence[StarPoint], config: Optional[Config] = None):
        self.matcher = StarMatcher(config)
        self.reference = list(reference)
        self.matcher.check_sizes(len(self.reference), len(self.reference))
        self.nbright = self.matcher.nbright_for(len(self.reference), len(self.reference))
        self._prepared = self.matcher.prepare(self.reference, self.nbright)
        logger.debug(f"Reference session: {len(self._prepared.triangles)} triangles from {self.nbright} stars")

    @property
    def num_triangles(self) -> int:
        return len(self._prepared.triangles)

    def match(self, points: Sequence[StarPoint]) -> MatchResult:
        """Match ``points`` (list B) against the cached reference (list A)."""
        self.matcher.check_sizes(len(self.reference), len(points))
        nbright = self.matcher.nbright_for(len(self.reference), len(points))
        return self.matcher.match_prepared(self.reference, self._prepared, points, nbright)


def find_transform(
    points_a: Sequence[StarPoint],
    points_b: Sequence[StarPoint],
    order: str = "linear",
    match_radius: float = 5.0,
    triangle_radius: float = 0.002,
    nbright: int = 20,
    scale_bounds: ScaleBounds = None,
    rotation: Optional[Tuple[float, float]] = None,
    max_iter: int = 3,
    max_sigma: float = 10.0,
    min_pairs: int = 10,
    method: str = "quick",
    halt_sigma: float = 1.0,
) -> Transform:
    """
    Find the transform taking list A onto list B.

    Args:
        points_a, points_b: The two star lists
        order: "linear", "quadratic" or "cubic"
        match_radius: Radius for matching stars under a transform
        triangle_radius: Triangle-space radius used when voting
        nbright: Brightest stars used to build triangles
        scale_bounds: Scale or (min, max) scale of B relative to A
        rotation: (angle, tolerance) in degrees, counter-clockwise A to B
        max_iter: Iterations for the quick matcher and the fitter
        max_sigma: Largest variance of match distances the quick matcher accepts
        min_pairs: Fewest matched stars the quick matcher accepts
        method: "quick", "vote" or "auto"
        halt_sigma: Sigma at which the fitter stops clipping

    Returns:
        The fitted Transform

    Raises:
        InsufficientPoints, SingularSystem, NoMatchFound, ConstraintViolation
    """
    config = Config()
    config.fit.order = order
    config.fit.method = method
    config.fit.match_radius = match_radius
    config.fit.max_iter = max_iter
    config.fit.halt_sigma = halt_sigma
    config.triangles.triangle_radius = triangle_radius
    config.triangles.nbright = nbright
    config.quick_match.max_sigma = max_sigma
    config.quick_match.min_pairs = min_pairs
    if isinstance(scale_bounds, (int, float)):
        config.constraints.scale = scale_bounds
    elif scale_bounds is not None:
        config.constraints.min_scale, config.constraints.max_scale = scale_bounds
    if rotation is not None:
        config.constraints.rotation_deg, config.constraints.rotation_tol_deg = rotation

    return StarMatcher(config).match(points_a, points_b).transform


def recompute_transform(
    matched_a: Sequence[StarPoint],
    matched_b: Sequence[StarPoint],
    order: str = "linear",
    max_iter: int = 3,
    halt_sigma: float = 1.0,
) -> Transform:
    """
    Fit a transform to lists that are already matched index by index.

    Raises:
        InsufficientPoints: Too few pairs for ``order``
        SingularSystem: The pairs do not constrain the fit
    """
    check_order(order)
    if len(matched_a) != len(matched_b):
        raise ValueError("Matched lists must have the same length")

    pairs = [MatchPair(i, i) for i in range(len(matched_a))]
    transform, used = iter_trans(
        matched_a, matched_b, pairs,
        order=order,
        recalc=True,
        max_iter=max_iter,
        halt_sigma=halt_sigma,
    )
    moved = apply_transform([matched_a[p.index_a] for p in used], transform)
    sigma_x, sigma_y = calc_rms(moved, [matched_b[p.index_b] for p in used])
    return replace(transform, pairs_matched=len(matched_a), sigma_x=sigma_x, sigma_y=sigma_y)
