# TabFit/optimizers/powell_lsq.py
import copy
import warnings
from dataclasses import dataclass
from typing import Optional

import numpy as np

from ..exceptions import LineSearchDivergence, SingularMatrixError
from ..potentials.table import SplinePotentialTable
from ..utils.config import FitConfig
from .base import BaseOptimizer
from .jacobian import JacobianApproximator
from .linalg import Decompose, Refine, Solve
from .linesearch import LineMinimize, LineSearchResult


@dataclass
class FitResult:
    """
    Outcome of a least-squares fit.

    Attributes
    ----------
    final_objective : float
        Sum of squared residuals at the final point.
    iterations : int
        Number of completed outer iterations.
    converged : bool
        False if an iteration or evaluation cap ended the fit.
    degenerate : bool
        True if the fit stopped because no direction could be bracketed.
    residual : np.ndarray
        Residual vector at the final point.
    n_evaluations : int
        Evaluator calls made by the fit.
    message : str
        Why the fit stopped.
    """
    final_objective: float
    iterations: int
    converged: bool
    degenerate: bool = False
    residual: Optional[np.ndarray] = None
    n_evaluations: int = 0
    message: str = ""


class PowellLSQOptimizer(BaseOptimizer):
    """
    Modified Powell conjugate-direction minimizer for sums of squares.

    Each outer iteration line-minimizes along every direction of the current
    set and secant-updates the matching row of the sensitivity matrix gamma
    from the line search's own evaluations. The Gauss-Newton system
    (gamma gamma^T) q = gamma r is then solved for a combined direction
    s = -sum_k q_k d_k, which replaces the direction that gave the smallest
    decrease. Accepted points are written into the table through its index map.

    Parameters
    ----------
    table : SplinePotentialTable
        Table to fit; its free positions are updated in place.
    evaluator : BaseEvaluator or callable
        Residual evaluator, xi -> r.
    config : FitConfig, optional
        Fit settings; keyword `overrides` replace individual fields.
    logger : SummaryWriter or None
        TensorBoard-like writer for per-iteration metrics.
    """

    def __init__(self, table: SplinePotentialTable, evaluator, config: Optional[FitConfig] = None,
                 logger=None, **overrides):
        super().__init__(table, evaluator, logger)
        self.cfg = copy.copy(config) if config is not None else FitConfig()
        for k, v in overrides.items():
            if not hasattr(self.cfg, k):
                raise AttributeError(f"Unknown FitConfig field '{k}'")
            setattr(self.cfg, k, v)

        n = table.idxlen
        self.n = n
        self.directions = np.eye(n)
        self.lineqsys = np.zeros((n, n))
        self.p = np.zeros(n)
        self.jacobian: Optional[JacobianApproximator] = None
        self.residual: Optional[np.ndarray] = None
        self.F: Optional[float] = None
        self.n_bracketed = 0
        self._solved = False
        self._calls0 = 0

    @property
    def n_evaluations(self) -> int:
        return self.evaluator.n_calls - self._calls0

    # --- states ---------------------------------------------------------------
    def initialize(self):
        """Extract xi from the table and evaluate the base residual."""
        self._calls0 = self.evaluator.n_calls
        self.L = self.table.get_params()
        self.residual = self.evaluator(self.L)
        self.F = float(self.residual @ self.residual)
        self.directions = np.eye(self.n)
        self.jacobian = JacobianApproximator(
            self.evaluator, self.n, self.residual.size,
            step=self.cfg.jacobian_step,
        )

    def step(self, step_index: int = 0) -> np.ndarray:
        """
        One outer iteration: a line search per direction, then the
        direction-set update.

        Returns
        -------
        update : np.ndarray
            Change of the free-parameter vector over the iteration.
        """
        if self.jacobian is None:
            raise RuntimeError("initialize() must be called before step()")
        L_old = self.L.copy()
        self.n_bracketed = 0
        self._solved = False
        smallest, j_min = None, None

        for j in range(self.n):
            F_before = self.F
            res = self._line_search(self.directions[j])
            if res is not None:
                self.n_bracketed += 1
                self._accept(res)
                self.jacobian.update(j, res.xmin, res.xmin2, res.residual, res.residual2,
                                     self.directions)
                decrease = F_before - self.F
                if smallest is None or decrease < smallest:
                    smallest, j_min = decrease, j
            if self._budget_exhausted():
                return self.L - L_old

        if j_min is not None:
            self._replace_direction(j_min)
        return self.L - L_old

    def run(self) -> FitResult:
        """Fit until converged or a cap is reached."""
        cfg = self.cfg
        self.initialize()
        if self.n == 0:
            return self._result(0, True, message="no free parameters")
        if self._target_reached():
            return self._result(0, True, message="objective at or below target")

        self.jacobian.init(self.L, self.residual, self.directions)

        for it in range(1, cfg.max_outer_iterations + 1):
            F_start = self.F
            update = self.step(it)
            self._log(it, F_start, update)

            if self._target_reached():
                return self._result(it, True, message="objective at or below target")
            if self._budget_exhausted():
                return self._result(it, False, message="evaluation budget exhausted")
            if self.n_bracketed == 0:
                warnings.warn(
                    f"No search direction bracketed a minimum in iteration {it}; "
                    "stopping at the current point", RuntimeWarning,
                )
                return self._result(it, True, degenerate=True,
                                    message="no direction could be bracketed")
            if 2.0 * (F_start - self.F) <= cfg.tolerance * (abs(F_start) + abs(self.F)) + cfg.tiny:
                return self._result(it, True, message="fractional decrease below tolerance")

        return self._result(cfg.max_outer_iterations, False,
                            message="maximum outer iterations reached")

    # --- helpers --------------------------------------------------------------
    def _line_search(self, direction: np.ndarray) -> Optional[LineSearchResult]:
        try:
            return LineMinimize(
                self.evaluator, self.L, direction, residual0=self.residual,
                bracket_maxiter=self.cfg.bracket_maxiter,
                tol=self.cfg.brent_tol, maxiter=self.cfg.brent_maxiter,
            )
        except LineSearchDivergence:
            return None

    def _accept(self, res: LineSearchResult) -> bool:
        if res.fmin > self.F:
            return False
        self.set_params(res.point)
        self.F = res.fmin
        self.residual = res.residual
        return True

    def _replace_direction(self, j: int) -> bool:
        """Solve the normal equations and put the combined direction in slot j."""
        gamma = self.jacobian.gamma
        np.matmul(gamma, gamma.T, out=self.lineqsys)
        np.matmul(gamma, self.residual, out=self.p)
        try:
            lu = Decompose(self.lineqsys, eps=self.cfg.singular_eps)
            q = Solve(lu, self.p)
            if self.cfg.refine:
                q = Refine(self.lineqsys, lu, self.p, q)
        except SingularMatrixError as err:
            warnings.warn(f"Keeping the direction set: {err}", RuntimeWarning)
            return False
        self._solved = True

        combined = -(q @ self.directions)
        if not np.any(combined):
            return False
        row = -(q @ gamma)
        res = self._line_search(combined)
        if res is not None:
            self._accept(res)
            if res.xmin != res.xmin2:
                row = (res.residual - res.residual2) / (res.xmin - res.xmin2)
        return self.jacobian.assign(j, row, combined, self.directions)

    def _target_reached(self) -> bool:
        target = self.cfg.target_objective
        return self.F == 0.0 or (target is not None and self.F <= target)

    def _budget_exhausted(self) -> bool:
        cap = self.cfg.max_evaluations
        return cap is not None and self.n_evaluations >= cap

    def _result(self, iterations: int, converged: bool, degenerate: bool = False,
                message: str = "") -> FitResult:
        return FitResult(
            final_objective=self.F,
            iterations=iterations,
            converged=converged,
            degenerate=degenerate,
            residual=self.residual.copy(),
            n_evaluations=self.n_evaluations,
            message=message,
        )

    def _log(self, it: int, F_start: float, update: np.ndarray):
        if self.cfg.verbose:
            print(f"[powell_lsq] iter={it} F={self.F:.10e} dF={F_start - self.F:.3e} "
                  f"bracketed={self.n_bracketed}/{self.n} evals={self.n_evaluations}")
        if self.logger is not None:
            self.logger.add_scalar("PowellLSQ/objective", self.F, it)
            self.logger.add_scalar("PowellLSQ/decrease", F_start - self.F, it)
            self.logger.add_scalar("PowellLSQ/n_bracketed", self.n_bracketed, it)
            self.logger.add_scalar("PowellLSQ/n_evaluations", self.n_evaluations, it)
            self.logger.add_scalar("PowellLSQ/update_norm", np.linalg.norm(update), it)
            if self._solved:
                self.logger.add_scalar("PowellLSQ/lineqsys_cond", np.linalg.cond(self.lineqsys), it)


def fit(
    table: SplinePotentialTable,
    evaluator,
    tolerance: Optional[float] = None,
    max_outer_iterations: Optional[int] = None,
    target_objective: Optional[float] = None,
    config: Optional[FitConfig] = None,
    logger=None,
    **overrides,
) -> FitResult:
    """
    Fit the free parameters of `table` by least squares.

    Parameters
    ----------
    table : SplinePotentialTable
        Table to fit; mutated in place with the accepted parameters.
    evaluator : BaseEvaluator or callable
        Residual evaluator, xi -> r.
    tolerance : float, optional
        Fractional-decrease convergence tolerance (default from config).
    max_outer_iterations : int, optional
        Outer-iteration cap (default from config).
    target_objective : float, optional
        Stop once the objective reaches this value. Without it the fit runs
        until the fractional decrease over an outer iteration satisfies
        2*(F_start - F) <= tolerance*(|F_start| + |F|) + config.tiny, so the
        objective scale never ends a fit by itself (only an exact zero does).
    config : FitConfig, optional
        Remaining settings.
    logger : SummaryWriter or None
        TensorBoard-like writer.

    Returns
    -------
    FitResult
    """
    cfg = copy.copy(config) if config is not None else FitConfig()
    if tolerance is not None:
        cfg.tolerance = tolerance
    if max_outer_iterations is not None:
        cfg.max_outer_iterations = max_outer_iterations
    if target_objective is not None:
        cfg.target_objective = target_objective
    return PowellLSQOptimizer(table, evaluator, config=cfg, logger=logger, **overrides).run()
