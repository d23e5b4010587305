"""
Dense linear solver for the normal equations of the polynomial fits.

Gaussian elimination with scaled partial pivoting. The row scales are taken
once from the input matrix, and a pivot whose magnitude relative to its row
scale drops below ``MATRIX_TOL`` marks the system as singular.
"""

import logging

import numpy as np

from .errors import SingularSystem


logger = logging.getLogger(__name__)

MATRIX_TOL = 1e-12


def solve_linear_system(
    matrix: np.ndarray,
    vector: np.ndarray,
    tolerance: float = MATRIX_TOL,
) -> np.ndarray:
    """
    Solve ``matrix @ x = vector``.

    Args:
        matrix: Square n x n matrix (not modified)
        vector: Right-hand side of length n (not modified)
        tolerance: Smallest acceptable pivot relative to its row scale

    Returns:
        Solution vector of length n

    Raises:
        SingularSystem: If a row is all zeros or a pivot is too small
    """
    m = np.array(matrix, dtype=float)
    v = np.array(vector, dtype=float)
    n = m.shape[0]
    if m.shape != (n, n) or v.shape != (n,):
        raise ValueError(f"Expected a square matrix and matching vector, got {m.shape} and {v.shape}")

    scale = np.max(np.abs(m), axis=1)
    if np.any(scale == 0.0):
        raise SingularSystem("Matrix has a row of zeros")

    for i in range(n - 1):
        ratios = np.abs(m[i:, i]) / scale[i:]
        pivot = i + int(np.argmax(ratios))
        if pivot != i:
            m[[i, pivot], i:] = m[[pivot, i], i:]
            v[[i, pivot]] = v[[pivot, i]]
            scale[[i, pivot]] = scale[[pivot, i]]

        if abs(m[i, i] / scale[i]) < tolerance:
            logger.debug(f"Pivot {i} below tolerance: {m[i, i]:.3e} (row scale {scale[i]:.3e})")
            raise SingularSystem(f"Matrix is singular at column {i}")

        factors = m[i + 1:, i] / m[i, i]
        m[i + 1:, i:] -= np.outer(factors, m[i, i:])
        v[i + 1:] -= factors * v[i]

    if abs(m[n - 1, n - 1] / scale[n - 1]) < tolerance:
        raise SingularSystem(f"Matrix is singular at column {n - 1}")

    # Back substitution
    solution = np.zeros(n)
    for i in range(n - 1, -1, -1):
        solution[i] = (v[i] - m[i, i + 1:] @ solution[i + 1:]) / m[i, i]

    return solution
