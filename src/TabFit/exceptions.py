# TabFit/exceptions.py
from typing import Optional

import numpy as np


class FormatError(ValueError):
    """A potential table could not be read (short read or malformed field)."""

    def __init__(self, message: str, filename: Optional[str] = None,
                 block: Optional[int] = None, line: Optional[int] = None):
        self.filename = filename
        self.block = block
        self.line = line
        where = []
        if filename is not None:
            where.append(f"file {filename}")
        if block is not None:
            where.append(f"block {block}")
        if line is not None:
            where.append(f"line {line}")
        if where:
            message = f"{message} ({', '.join(where)})"
        super().__init__(message)


class ConfigError(ValueError):
    """The table or layout configuration cannot be used for fitting."""


class SingularMatrixError(np.linalg.LinAlgError):
    """LU decomposition hit a (numerically) zero pivot."""


class LineSearchDivergence(RuntimeError):
    """No minimum could be bracketed along a search direction."""


class NonFiniteResidualError(ValueError):
    """The evaluator returned NaN or infinite residuals."""
