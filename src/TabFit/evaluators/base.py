# TabFit/evaluators/base.py
from abc import ABC, abstractmethod
from typing import Callable, Optional

import numpy as np

from ..exceptions import NonFiniteResidualError
from ..potentials.table import SplinePotentialTable


class BaseEvaluator(ABC):
    """
    Residual evaluator consumed by the least-squares optimizer.

    Subclasses implement `evaluate(xi)`, a pure function of the free-parameter
    vector returning the residual vector. Calling the evaluator validates the
    result and counts invocations in `n_calls`.
    """

    def __init__(self):
        self.n_calls = 0
        self.m: Optional[int] = None

    @abstractmethod
    def evaluate(self, xi: np.ndarray) -> np.ndarray:
        """Return the residual vector for free parameters `xi`."""
        pass

    def __call__(self, xi: np.ndarray) -> np.ndarray:
        self.n_calls += 1
        r = np.asarray(self.evaluate(np.asarray(xi, dtype=float)), dtype=float)
        if r.ndim != 1:
            raise ValueError(f"residual must be a 1D array, got shape {r.shape}")
        if self.m is None:
            self.m = r.size
        elif r.size != self.m:
            raise ValueError(f"residual length changed from {self.m} to {r.size}")
        if not np.all(np.isfinite(r)):
            raise NonFiniteResidualError("evaluator returned non-finite residuals")
        return r

    def objective(self, xi: np.ndarray) -> float:
        """Sum of squared residuals at `xi`."""
        r = self(xi)
        return float(r @ r)


class CallableEvaluator(BaseEvaluator):
    """Wrap a plain function `func(xi, *args) -> residual`."""

    def __init__(self, func: Callable[..., np.ndarray], *args):
        super().__init__()
        self.func = func
        self.args = args

    def evaluate(self, xi: np.ndarray) -> np.ndarray:
        return self.func(xi, *self.args)


class TableEvaluator(BaseEvaluator):
    """
    Wrap a function of the full table values.

    `func(values, *args)` receives a copy of `table.table` with the free
    positions replaced by the trial `xi`; the table itself is left untouched
    until the optimizer accepts a point.
    """

    def __init__(self, table: SplinePotentialTable, func: Callable[..., np.ndarray], *args):
        super().__init__()
        self.table = table
        self.func = func
        self.args = args

    def evaluate(self, xi: np.ndarray) -> np.ndarray:
        return self.func(self.table.with_params(xi), *self.args)


def as_evaluator(obj) -> BaseEvaluator:
    """Return `obj` as a BaseEvaluator (wrapping objects with `.evaluate` or callables)."""
    if isinstance(obj, BaseEvaluator):
        return obj
    if hasattr(obj, "evaluate") and callable(obj.evaluate):
        return CallableEvaluator(obj.evaluate)
    if callable(obj):
        return CallableEvaluator(obj)
    raise TypeError(f"{type(obj).__name__} is neither an evaluator nor callable")


def trial_residual(evaluate: Callable[[np.ndarray], np.ndarray], xi: np.ndarray) -> Optional[np.ndarray]:
    """
    Residual at a trial point, or None where it is not finite.

    Bracketing and finite differences may step outside the evaluator's
    domain (e.g. a negative density); such points count as infinitely bad.
    """
    try:
        r = np.asarray(evaluate(xi), dtype=float)
    except NonFiniteResidualError:
        return None
    if not np.all(np.isfinite(r)):
        return None
    return r
