# TabFit/optimizers/linalg.py
import warnings
from typing import NamedTuple

import numpy as np
from scipy.linalg import LinAlgWarning, lu_factor, lu_solve

from ..exceptions import SingularMatrixError


class LUDecomposition(NamedTuple):
    """Packed LU factors of a square matrix with LAPACK row-interchange indices."""
    lu: np.ndarray
    piv: np.ndarray
    parity: float


def Decompose(A: np.ndarray, eps: float = 1e-12) -> LUDecomposition:
    """
    LU-decompose a square matrix with partial pivoting on magnitude.

    Parameters
    ----------
    A : np.ndarray
        Matrix of shape (n, n); not modified.
    eps : float, default 1e-12
        Pivots (and row maxima) with magnitude below eps count as zero.

    Returns
    -------
    LUDecomposition
        `lu` holds L (unit diagonal, below) and U (on and above the diagonal),
        `piv` the row interchanges, `parity` +1/-1 for an even/odd number of
        interchanges.

    Raises
    ------
    SingularMatrixError
        A row of A is zero or a pivot vanishes.
    """
    A = np.asarray(A, dtype=float)
    if A.ndim != 2 or A.shape[0] != A.shape[1] or A.shape[0] == 0:
        raise ValueError(f"expected a non-empty square matrix, got shape {A.shape}")
    if not np.all(np.isfinite(A)):
        raise ValueError("matrix contains non-finite entries")

    row_max = np.max(np.abs(A), axis=1)
    zero_rows = np.flatnonzero(row_max < eps)
    if zero_rows.size:
        raise SingularMatrixError(f"Singular matrix: row {zero_rows[0]} is zero")

    with warnings.catch_warnings():
        # exact zero pivots are reported below
        warnings.simplefilter("ignore", LinAlgWarning)
        lu, piv = lu_factor(A, check_finite=False)

    small = np.flatnonzero(np.abs(np.diag(lu)) < eps)
    if small.size:
        raise SingularMatrixError(f"Singular matrix: zero pivot in column {small[0]}")

    n_swaps = int(np.count_nonzero(piv != np.arange(A.shape[0])))
    parity = -1.0 if n_swaps % 2 else 1.0
    return LUDecomposition(lu, piv, parity)


def Solve(decomposition: LUDecomposition, b: np.ndarray) -> np.ndarray:
    """Solve A x = b by forward and back substitution on the LU factors."""
    return lu_solve((decomposition.lu, decomposition.piv), np.asarray(b, dtype=float),
                    check_finite=False)


def Refine(A: np.ndarray, decomposition: LUDecomposition, b: np.ndarray, x: np.ndarray) -> np.ndarray:
    """
    One step of iterative refinement of a solution x of A x = b.

    The residual A x - b is accumulated in extended precision, then the
    correction delta solving A delta = A x - b is subtracted from x.
    """
    A = np.asarray(A, dtype=float)
    x = np.asarray(x, dtype=float)
    r = (A.astype(np.longdouble) @ x.astype(np.longdouble)
         - np.asarray(b, dtype=np.longdouble)).astype(float)
    delta = Solve(decomposition, r)
    return x - delta
