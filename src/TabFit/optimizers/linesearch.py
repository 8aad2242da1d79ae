# TabFit/optimizers/linesearch.py
import math
import warnings
from typing import Callable, Dict, NamedTuple, Optional

import numpy as np
from scipy import optimize

from ..evaluators.base import trial_residual
from ..exceptions import LineSearchDivergence

CGOLD = 0.3819660
ZEPS = 1.0e-10


class BracketResult(NamedTuple):
    ax: float
    bx: float
    cx: float
    fa: float
    fb: float
    fc: float


class BrentResult(NamedTuple):
    xmin: float
    fmin: float
    xmin2: float
    fmin2: float
    n_iter: int


class LineSearchResult(NamedTuple):
    """Outcome of a line minimization along `direction` starting at `origin`."""
    point: np.ndarray
    fmin: float
    xmin: float
    xmin2: float
    fmin2: float
    residual: np.ndarray
    residual2: np.ndarray


class LineFunction:
    """
    Objective restricted to a line: x -> sum(r(origin + x * direction)**2).

    Residual vectors of every evaluated point are kept, so callers can reuse
    them (e.g. for secant updates) without new evaluator calls. Points where
    the residuals are not finite evaluate to inf.

    Parameters
    ----------
    evaluate : callable
        Residual evaluator, xi -> r.
    origin, direction : np.ndarray
        Line definition.
    residual0 : np.ndarray, optional
        Known residual at the origin (x = 0).
    """

    def __init__(self, evaluate: Callable[[np.ndarray], np.ndarray],
                 origin: np.ndarray, direction: np.ndarray,
                 residual0: Optional[np.ndarray] = None):
        self.evaluate = evaluate
        self.origin = np.array(origin, dtype=float)
        self.direction = np.array(direction, dtype=float)
        self.n_evaluations = 0
        self._cache: Dict[float, Optional[np.ndarray]] = {}
        if residual0 is not None:
            self._cache[0.0] = np.asarray(residual0, dtype=float)

    def point(self, x: float) -> np.ndarray:
        return self.origin + float(x) * self.direction

    def residual(self, x: float) -> Optional[np.ndarray]:
        """Residual vector at x, None if it is not finite there."""
        x = float(x)
        if x not in self._cache:
            self._cache[x] = trial_residual(self.evaluate, self.point(x))
            self.n_evaluations += 1
        return self._cache[x]

    def __call__(self, x: float) -> float:
        r = self.residual(x)
        if r is None:
            return math.inf
        return float(r @ r)


def Bracket(f: Callable[[float], float], a: float = 0.0, b: float = 1.0,
            maxiter: int = 1000, grow_limit: float = 110.0) -> BracketResult:
    """
    Bracket a minimum of f by golden-ratio expansion from the pair (a, b).

    Returns
    -------
    BracketResult
        Points (ax, bx, cx) with fb <= fa and fb <= fc.

    Raises
    ------
    LineSearchDivergence
        No valid bracket within `maxiter` expansion steps (f monotone or flat
        along the line).
    """
    try:
        xa, xb, xc, fa, fb, fc, _ = optimize.bracket(
            f, xa=a, xb=b, grow_limit=grow_limit, maxiter=maxiter
        )
    except RuntimeError as err:
        raise LineSearchDivergence(f"no minimum bracketed: {err}") from err
    valid = (fb < fc and fb <= fa) or (fb < fa and fb <= fc)
    if not valid or not np.all(np.isfinite([xa, xb, xc])):
        raise LineSearchDivergence(
            f"no minimum bracketed: f({xa})={fa}, f({xb})={fb}, f({xc})={fc}"
        )
    return BracketResult(float(xa), float(xb), float(xc), float(fa), float(fb), float(fc))


def Minimize(bracket: BracketResult, f: Callable[[float], float],
             tol: float = 1.48e-8, maxiter: int = 500) -> BrentResult:
    """
    Brent's method inside a bracket.

    A parabolic step through the three best points is taken when it lands
    strictly inside the current interval and is shorter than half the step
    before last; otherwise the larger segment is split by the golden section.
    Iteration stops once the interval around the best point x is within
    2*(tol*|x| + 1e-10).

    Parameters
    ----------
    bracket : BracketResult
        Starting bracket; fb must be f(bx).
    f : callable
        Function of one variable.
    tol : float
        Fractional precision of the abscissa.
    maxiter : int
        Iteration cap; reaching it issues a RuntimeWarning.

    Returns
    -------
    BrentResult
        Best point and value, and the second-best point and value.
    """
    a, b = sorted((bracket.ax, bracket.cx))
    x = w = v = bracket.bx
    fx = fw = fv = bracket.fb
    d = e = 0.0

    for it in range(1, maxiter + 1):
        xm = 0.5 * (a + b)
        tol1 = tol * abs(x) + ZEPS
        tol2 = 2.0 * tol1
        if abs(x - xm) <= tol2 - 0.5 * (b - a):
            return BrentResult(x, fx, w, fw, it - 1)

        if abs(e) > tol1:
            # trial parabolic fit through x, v, w
            r = (x - w) * (fx - fv)
            q = (x - v) * (fx - fw)
            p = (x - v) * q - (x - w) * r
            q = 2.0 * (q - r)
            if q > 0.0:
                p = -p
            q = abs(q)
            etemp = e
            e = d
            # inf values (points outside the evaluator domain) give no usable parabola
            if (not (math.isfinite(p) and math.isfinite(q))
                    or abs(p) >= abs(0.5 * q * etemp) or p <= q * (a - x) or p >= q * (b - x)):
                e = (a - x) if x >= xm else (b - x)
                d = CGOLD * e
            else:
                d = p / q
                u = x + d
                if u - a < tol2 or b - u < tol2:
                    d = math.copysign(tol1, xm - x)
        else:
            e = (a - x) if x >= xm else (b - x)
            d = CGOLD * e

        u = x + d if abs(d) >= tol1 else x + math.copysign(tol1, d)
        fu = f(u)

        if fu <= fx:
            if u >= x:
                a = x
            else:
                b = x
            v, w, x = w, x, u
            fv, fw, fx = fw, fx, fu
        else:
            if u < x:
                a = u
            else:
                b = u
            if fu <= fw or w == x:
                v, w = w, u
                fv, fw = fw, fu
            elif fu <= fv or v == x or v == w:
                v, fv = u, fu

    warnings.warn(f"Brent minimization stopped after {maxiter} iterations", RuntimeWarning)
    return BrentResult(x, fx, w, fw, maxiter)


def LineMinimize(
    evaluate: Callable[[np.ndarray], np.ndarray],
    origin: np.ndarray,
    direction: np.ndarray,
    residual0: Optional[np.ndarray] = None,
    bracket_maxiter: int = 1000,
    tol: float = 1.48e-8,
    maxiter: int = 500,
) -> LineSearchResult:
    """
    Minimize the sum of squared residuals along `direction` from `origin`.

    Brackets from (0, 1), refines with Brent's method, and returns the new
    point together with the residual vectors at the best and second-best
    abscissae, both taken from the evaluations already made. If the
    second-best point has no finite residual, the best point stands in for it
    (xmin2 == xmin), which callers read as "no secant information".

    Raises
    ------
    LineSearchDivergence
        If the objective cannot be bracketed along the line.
    """
    line = LineFunction(evaluate, origin, direction, residual0=residual0)
    bracket = Bracket(line, 0.0, 1.0, maxiter=bracket_maxiter)
    res = Minimize(bracket, line, tol=tol, maxiter=maxiter)
    xmin2, fmin2 = res.xmin2, res.fmin2
    if not math.isfinite(fmin2):
        xmin2, fmin2 = res.xmin, res.fmin
    return LineSearchResult(
        point=line.point(res.xmin),
        fmin=res.fmin,
        xmin=res.xmin,
        xmin2=xmin2,
        fmin2=fmin2,
        residual=line.residual(res.xmin),
        residual2=line.residual(xmin2),
    )
