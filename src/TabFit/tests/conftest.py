import numpy as np
import pytest

from TabFit.potentials.layout import BlockLayout
from TabFit.potentials.table import SplinePotentialTable


def _format_table(headers, values, gradients=None, headers_first=False):
    lines = ["# test table"]
    if headers_first:
        lines.extend(f"{b} {e} {n}" for b, e, n in headers)
    for i, (b, e, n) in enumerate(headers):
        lines.append("")
        if not headers_first:
            lines.append(f"{b} {e} {n}")
        if gradients is not None:
            lines.append(f"{gradients[i][0]} {gradients[i][1]}")
        lines.extend(repr(float(v)) for v in values[i])
    return [line + "\n" for line in lines]


@pytest.fixture
def table_lines():
    """Factory building table text: table_lines(headers, values, gradients=None, headers_first=False)."""
    return _format_table


@pytest.fixture
def free_table():
    """Factory for a single pair-block table with `n` free knots, all zero."""
    def make(n, gradient=0):
        layout = BlockLayout.from_flavor("pair", 1)
        return SplinePotentialTable.from_headers(layout, [(0.0, 1.0, n + 1)], gradient=[gradient])
    return make


class CountingResidual:
    """Linear residual r = M @ xi - b that counts its calls."""

    def __init__(self, M, b):
        self.M = np.asarray(M, dtype=float)
        self.b = np.asarray(b, dtype=float)
        self.calls = 0

    def __call__(self, xi):
        self.calls += 1
        return self.M @ xi - self.b


@pytest.fixture
def linear_residual():
    return CountingResidual


class FakeWriter:
    """Collects add_scalar calls like a TensorBoard SummaryWriter."""

    def __init__(self):
        self.scalars = []

    def add_scalar(self, tag, value, step):
        self.scalars.append((tag, float(value), step))

    def tags(self):
        return {t for t, _, _ in self.scalars}


@pytest.fixture
def writer():
    return FakeWriter()
