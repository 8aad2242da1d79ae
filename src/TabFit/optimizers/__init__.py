from .base import BaseOptimizer
from .linalg import Decompose, Solve, Refine, LUDecomposition
from .linesearch import Bracket, Minimize, LineMinimize, LineFunction, BracketResult, BrentResult
from .jacobian import JacobianApproximator
from .powell_lsq import PowellLSQOptimizer, FitResult, fit
