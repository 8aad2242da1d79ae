# TabFit/optimizers/jacobian.py
import warnings
from typing import Callable

import numpy as np

from ..evaluators.base import trial_residual


class JacobianApproximator:
    """
    Sensitivity matrix of the residuals along the current search directions.

    Row k of `gamma` approximates dr/dt along `directions[k]`. Rows are kept
    at unit length; whenever a row is rescaled, the matching direction is
    rescaled by the same factor so the pair stays consistent.

    Parameters
    ----------
    evaluate : callable
        Residual evaluator, xi -> r.
    n : int
        Number of free parameters.
    m : int
        Number of residuals.
    step : float, default 1e-4
        Forward-difference step used by `init`.
    tiny : float, default 1e-12
        Rows with a norm below `tiny` are treated as zero.
    """

    def __init__(self, evaluate: Callable[[np.ndarray], np.ndarray], n: int, m: int,
                 step: float = 1e-4, tiny: float = 1e-12):
        if step <= 0.0:
            raise ValueError(f"step must be > 0, got {step}")
        self.evaluate = evaluate
        self.n = n
        self.m = m
        self.step = step
        self.tiny = tiny
        self.gamma = np.zeros((n, m), dtype=float)

    def _normalize(self, j: int, directions: np.ndarray) -> bool:
        norm = np.linalg.norm(self.gamma[j])
        if norm < self.tiny:
            return False
        self.gamma[j] /= norm
        directions[j] /= norm
        return True

    def init(self, xi: np.ndarray, residual0: np.ndarray, directions: np.ndarray) -> np.ndarray:
        """
        Build gamma by forward differences along the coordinate axes.

        Issues one evaluator call per free parameter. `xi` itself is not
        modified; `directions` (the coordinate axes) is rescaled in place.
        A perturbed point without finite residuals leaves its row at zero.
        """
        x = np.array(xi, dtype=float)
        residual0 = np.asarray(residual0, dtype=float)
        outside = set()
        for i in range(self.n):
            store = x[i]
            x[i] = store + self.step
            r = trial_residual(self.evaluate, x)
            x[i] = store
            if r is None:
                warnings.warn(f"Residuals are not finite after perturbing free parameter {i}",
                              RuntimeWarning)
                outside.add(i)
                self.gamma[i] = 0.0
            else:
                self.gamma[i] = (r - residual0) / self.step

        for i in range(self.n):
            if not self._normalize(i, directions) and i not in outside:
                warnings.warn(f"Residuals do not depend on free parameter {i}", RuntimeWarning)
        return self.gamma

    def update(self, j: int, a: float, b: float, ra: np.ndarray, rb: np.ndarray,
               directions: np.ndarray) -> bool:
        """
        Secant update of row j from two points of a finished line search.

        Parameters
        ----------
        j : int
            Index of the direction the line search ran along.
        a, b : float
            Abscissae along `directions[j]` with residuals `ra`, `rb`.

        Returns
        -------
        bool
            False if the row was left unchanged (a == b or vanishing secant).
        """
        if a == b:
            return False
        row = (np.asarray(ra, dtype=float) - np.asarray(rb, dtype=float)) / (a - b)
        norm = np.linalg.norm(row)
        if norm < self.tiny:
            return False
        self.gamma[j] = row / norm
        directions[j] /= norm
        return True

    def assign(self, j: int, row: np.ndarray, direction: np.ndarray,
               directions: np.ndarray) -> bool:
        """
        Replace direction j and its sensitivity row together.

        Returns False (nothing replaced) if `row` vanishes.
        """
        row = np.asarray(row, dtype=float)
        norm = np.linalg.norm(row)
        if norm < self.tiny:
            return False
        self.gamma[j] = row / norm
        directions[j] = np.asarray(direction, dtype=float) / norm
        return True
