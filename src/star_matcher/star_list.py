"""
Reading and writing star lists and match results.

Star lists are whitespace separated text, one star per line, ``#`` starts a
comment. Accepted layouts:

    x y mag
    id x y mag
    id x y mag color
"""

import json
import logging
from pathlib import Path
from typing import List, Sequence

import numpy as np

from .models import StarPoint, Transform


logger = logging.getLogger(__name__)


def read_star_list(path: Path) -> List[StarPoint]:
    """Load a star list from a text file."""
    data = np.loadtxt(path, comments="#", ndmin=2)
    if data.size == 0:
        return []

    ncols = data.shape[1]
    if ncols == 3:
        points = [
            StarPoint(id=i, x=float(row[0]), y=float(row[1]), mag=float(row[2]))
            for i, row in enumerate(data)
        ]
    elif ncols in (4, 5):
        points = [
            StarPoint(
                id=int(row[0]), x=float(row[1]), y=float(row[2]), mag=float(row[3]),
                color=float(row[4]) if ncols == 5 else None,
            )
            for row in data
        ]
    else:
        raise ValueError(f"{path}: expected 3 to 5 columns, found {ncols}")

    logger.debug(f"Read {len(points)} stars from {path}")
    return points


def write_star_list(path: Path, points: Sequence[StarPoint]) -> None:
    """Write ``points`` as ``id x y mag`` rows."""
    rows = np.array([[p.id, p.x, p.y, p.mag] for p in points], dtype=float).reshape(-1, 4)
    np.savetxt(path, rows, fmt=["%d", "%.6f", "%.6f", "%.4f"], header="id x y mag")


def load_transform(path: Path) -> Transform:
    """Read a transform from a JSON file written by ``save_result``."""
    with open(path, "r") as f:
        data = json.load(f)
    return Transform.from_dict(data.get("transform", data))


def save_result(path: Path, result, indent: int = 2) -> None:
    """Write a match result (anything with ``to_dict``) as JSON."""
    with open(path, "w") as f:
        json.dump(result.to_dict(), f, indent=indent)
