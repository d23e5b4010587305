"""
Value types shared by the matching stages.

A point list is a plain ``list`` of ``StarPoint``. Triangles refer to the
points of one sorted list by index, and a ``Transform`` holds the polynomial
that maps coordinates of list A onto list B.
"""

import math
from dataclasses import dataclass, field
from typing import Dict, List, Literal, Optional, Sequence, Tuple

import numpy as np

from .errors import SingularSystem


Order = Literal["linear", "quadratic", "cubic"]

ORDERS: Tuple[str, ...] = ("linear", "quadratic", "cubic")

# Number of polynomial terms per output coordinate
NUM_TERMS: Dict[str, int] = {"linear": 3, "quadratic": 6, "cubic": 8}

# Minimum number of pairs needed to solve for each order
REQUIRED_PAIRS: Dict[str, int] = {"linear": 3, "quadratic": 6, "cubic": 8}

# Pairs used for the first fit when starting from ranked candidates
START_PAIRS: Dict[str, int] = {"linear": 6, "quadratic": 12, "cubic": 16}


def check_order(order: str) -> str:
    """Return ``order`` unchanged, raising ValueError if it is unknown."""
    if order not in NUM_TERMS:
        raise ValueError(f"Unknown transform order: {order!r} (expected one of {ORDERS})")
    return order


@dataclass
class StarPoint:
    """A detected star or catalog entry."""
    id: int
    x: float
    y: float
    mag: float = 0.0
    color: Optional[float] = None  # B-V colour index, if known
    match_id: int = -1  # id of the partner in the other list
    rank: int = -1  # position after sorting by magnitude

    @property
    def position(self) -> Tuple[float, float]:
        return (self.x, self.y)


def positions(points: Sequence[StarPoint]) -> np.ndarray:
    """Return the coordinates of ``points`` as an N x 2 array."""
    if len(points) == 0:
        return np.zeros((0, 2))
    return np.array([[p.x, p.y] for p in points], dtype=float)


@dataclass(frozen=True)
class Triangle:
    """
    Triangle built from three points of one sorted list.

    Sides are labelled so that ``a_length >= b_length >= c_length``;
    ``a_index``, ``b_index`` and ``c_index`` are the indices of the vertices
    opposite those sides.
    """
    a_index: int
    b_index: int
    c_index: int
    a_length: float
    b_length: float
    c_length: float
    ba: float
    ca: float
    cb: float
    orientation: float  # degrees, direction of the longest side
    xt: float
    yt: float
    D: float

    @property
    def vertices(self) -> Tuple[int, int, int]:
        return (self.a_index, self.b_index, self.c_index)


@dataclass(frozen=True)
class MatchPair:
    """Correspondence between point ``index_a`` of A and ``index_b`` of B."""
    index_a: int
    index_b: int


def polynomial_terms(x: np.ndarray, y: np.ndarray, order: str) -> np.ndarray:
    """
    Evaluate the polynomial basis at every point.

    Columns are ``1, x, y`` for linear, then ``xx, xy, yy`` for quadratic,
    then ``x(xx+yy), y(xx+yy)`` for cubic.
    """
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    columns = [np.ones_like(x), x, y]
    if order in ("quadratic", "cubic"):
        columns += [x * x, x * y, y * y]
    if order == "cubic":
        r2 = x * x + y * y
        columns += [x * r2, y * r2]
    return np.column_stack(columns)


@dataclass
class Transform:
    """
    Polynomial mapping from the coordinates of list A to those of list B.

    For a linear transform::

        x' = a + b*x + c*y
        y' = d + e*x + f*y

    ``x_coeffs`` holds ``(a, b, c, ...)`` and ``y_coeffs`` holds
    ``(d, e, f, ...)`` in the term order of ``polynomial_terms``.
    ``sigma`` is in squared units of list B.
    """
    order: Order = "linear"
    x_coeffs: Optional[np.ndarray] = None
    y_coeffs: Optional[np.ndarray] = None
    pairs_used: int = 0
    pairs_matched: int = 0
    sigma: float = 0.0
    sigma_x: float = 0.0
    sigma_y: float = 0.0

    def __post_init__(self):
        check_order(self.order)
        n = NUM_TERMS[self.order]
        if self.x_coeffs is None:
            self.x_coeffs = np.zeros(n)
            self.x_coeffs[1] = 1.0
        if self.y_coeffs is None:
            self.y_coeffs = np.zeros(n)
            self.y_coeffs[2] = 1.0
        self.x_coeffs = np.asarray(self.x_coeffs, dtype=float)
        self.y_coeffs = np.asarray(self.y_coeffs, dtype=float)
        if self.x_coeffs.shape != (n,) or self.y_coeffs.shape != (n,):
            raise ValueError(f"A {self.order} transform needs {n} coefficients per axis")

    @classmethod
    def identity(cls, order: str = "linear") -> "Transform":
        return cls(order=order)

    @property
    def coefficients(self) -> np.ndarray:
        """All coefficients, x equation first (6, 12 or 16 values)."""
        return np.concatenate([self.x_coeffs, self.y_coeffs])

    @property
    def scale(self) -> float:
        """Linear scale factor from A to B."""
        return math.hypot(self.x_coeffs[1], self.x_coeffs[2])

    @property
    def rotation(self) -> float:
        """Counter-clockwise rotation from A to B in degrees."""
        return math.degrees(math.atan2(-self.x_coeffs[2], self.x_coeffs[1]))

    @property
    def translation(self) -> Tuple[float, float]:
        return (float(self.x_coeffs[0]), float(self.y_coeffs[0]))

    def evaluate(self, x, y) -> Tuple[np.ndarray, np.ndarray]:
        """Map coordinate arrays through the polynomial."""
        terms = polynomial_terms(np.atleast_1d(x), np.atleast_1d(y), self.order)
        return terms @ self.x_coeffs, terms @ self.y_coeffs

    def invert(self) -> "Transform":
        """
        Return the inverse of a linear transform.

        Raises:
            ValueError: If the transform is not linear
            SingularSystem: If the linear part has no inverse
        """
        if self.order != "linear":
            raise ValueError("Only linear transforms can be inverted")
        a, b, c = self.x_coeffs
        d, e, f = self.y_coeffs
        det = b * f - c * e
        if abs(det) < 1e-12:
            raise SingularSystem("Linear transform is not invertible")
        inv_b, inv_c = f / det, -c / det
        inv_e, inv_f = -e / det, b / det
        return Transform(
            order="linear",
            x_coeffs=np.array([-(inv_b * a + inv_c * d), inv_b, inv_c]),
            y_coeffs=np.array([-(inv_e * a + inv_f * d), inv_e, inv_f]),
        )

    def to_dict(self) -> dict:
        return {
            "order": self.order,
            "x_coeffs": [float(v) for v in self.x_coeffs],
            "y_coeffs": [float(v) for v in self.y_coeffs],
            "pairs_used": int(self.pairs_used),
            "pairs_matched": int(self.pairs_matched),
            "sigma": float(self.sigma),
            "sigma_x": float(self.sigma_x),
            "sigma_y": float(self.sigma_y),
            "scale": self.scale,
            "rotation": self.rotation,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Transform":
        return cls(
            order=data.get("order", "linear"),
            x_coeffs=np.array(data["x_coeffs"], dtype=float),
            y_coeffs=np.array(data["y_coeffs"], dtype=float),
            pairs_used=data.get("pairs_used", 0),
            pairs_matched=data.get("pairs_matched", 0),
            sigma=data.get("sigma", 0.0),
            sigma_x=data.get("sigma_x", 0.0),
            sigma_y=data.get("sigma_y", 0.0),
        )


@dataclass
class MatchedLists:
    """The four partitions produced by proximity matching."""
    matched_a: List[StarPoint] = field(default_factory=list)
    matched_b: List[StarPoint] = field(default_factory=list)
    unmatched_a: List[StarPoint] = field(default_factory=list)
    unmatched_b: List[StarPoint] = field(default_factory=list)

    @property
    def num_matched(self) -> int:
        return len(self.matched_a)
