"""
TabFit: least-squares fitting of tabulated (spline) potentials with a modified Powell minimizer.
"""

# Potential tables
from .potentials.layout import BlockKind, BlockLayout, SecondPairRule
from .potentials.table import FunctionBlock, FreeIndexMap, SplinePotentialTable, TableView

# Evaluators
from .evaluators.base import BaseEvaluator, CallableEvaluator, TableEvaluator

# Optimizers
from .optimizers.base import BaseOptimizer
from .optimizers.powell_lsq import PowellLSQOptimizer, FitResult, fit
from .optimizers.jacobian import JacobianApproximator
from .optimizers.linalg import Decompose, Solve, Refine
from .optimizers.linesearch import Bracket, Minimize, LineMinimize

# Utilities
from .utils.ffio import ParsePotTable, ReadPotTable, WritePotTable
from .utils.mask import FreeParamMask, DescribeIndexMap
from .utils.config import FitConfig, TableConfig, load_config_yaml, dump_config_yaml
from .exceptions import (
    FormatError, ConfigError, SingularMatrixError, LineSearchDivergence, NonFiniteResidualError,
)

__all__ = [
    "BlockKind",
    "BlockLayout",
    "SecondPairRule",
    "FunctionBlock",
    "FreeIndexMap",
    "SplinePotentialTable",
    "TableView",
    "BaseEvaluator",
    "CallableEvaluator",
    "TableEvaluator",
    "BaseOptimizer",
    "PowellLSQOptimizer",
    "FitResult",
    "fit",
    "JacobianApproximator",
    "Decompose",
    "Solve",
    "Refine",
    "Bracket",
    "Minimize",
    "LineMinimize",
    "ParsePotTable",
    "ReadPotTable",
    "WritePotTable",
    "FreeParamMask",
    "DescribeIndexMap",
    "FitConfig",
    "TableConfig",
    "load_config_yaml",
    "dump_config_yaml",
    "FormatError",
    "ConfigError",
    "SingularMatrixError",
    "LineSearchDivergence",
    "NonFiniteResidualError",
]
