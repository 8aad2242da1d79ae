# TabFit/utils/ffio.py
import os
import numpy as np
from typing import Iterable, List, Optional, Sequence, Tuple

from ..exceptions import ConfigError, FormatError
from ..potentials.layout import BlockLayout
from ..potentials.table import SplinePotentialTable


class _LineReader:
    """Yield numeric fields line by line, skipping blanks and '#' comments."""

    def __init__(self, lines: Iterable[str], filename: Optional[str]):
        self._it = enumerate(lines, start=1)
        self.filename = filename
        self.lineno = 0

    def fields(self, n: int, what: str, block: int) -> List[str]:
        for lineno, raw in self._it:
            self.lineno = lineno
            s = raw.split("#", 1)[0].strip()
            if not s:
                continue
            parts = s.split()
            if len(parts) != n:
                raise FormatError(f"expected {n} field(s) for {what}, got {len(parts)}",
                                  self.filename, block, lineno)
            return parts
        raise FormatError(f"Premature end of potential table ({what})",
                          self.filename, block, self.lineno + 1)

    def floats(self, n: int, what: str, block: int) -> List[float]:
        parts = self.fields(n, what, block)
        try:
            return [float(p) for p in parts]
        except ValueError:
            raise FormatError(f"cannot read {what} from {parts}",
                              self.filename, block, self.lineno) from None


def _read_header(reader: _LineReader, i: int) -> Tuple[float, float, int]:
    parts = reader.fields(3, "header 'begin end npoints'", i)
    try:
        begin, end, npoints = float(parts[0]), float(parts[1]), int(parts[2])
    except ValueError:
        raise FormatError(f"cannot read header 'begin end npoints' from {parts}",
                          reader.filename, i, reader.lineno) from None
    if npoints < 2:
        raise FormatError(f"need at least 2 sampling points, got {npoints}",
                          reader.filename, i, reader.lineno)
    if begin == end:
        raise FormatError(f"empty sampling range [{begin}, {end}]",
                          reader.filename, i, reader.lineno)
    return begin, end, npoints


def _check_gauge_point(layout: BlockLayout, i: int, header: Tuple[float, float, int]):
    begin, end, _ = header
    if layout.needs_gauge_point(i) and (begin > 1.0 or end < 1.0):
        raise ConfigError(
            f"Embedding function {layout.labels()[i]} is sampled on [{begin}, {end}]; "
            "F'(1.0) is needed to fix the gauge degrees of freedom, "
            "so the range must include 1.0 (or enable rescale)."
        )


def ParsePotTable(
    lines: Iterable[str],
    layout: BlockLayout,
    have_gradient: bool = False,
    invariant: Optional[Sequence[bool]] = None,
    gradient: Optional[Sequence[int]] = None,
    headers_first: bool = False,
    filename: Optional[str] = None,
) -> SplinePotentialTable:
    """
    Parse an equidistant potential table.

    Per block the input holds a header line `begin end npoints`, an optional
    line `value slope` with the boundary gradient (when `have_gradient`),
    and `npoints` lines with one knot value each. Blank lines and text after
    '#' are ignored.

    Parameters
    ----------
    lines : iterable of str
        Table text, one entry per line.
    layout : BlockLayout
        Block kinds in file order.
    have_gradient : bool, default False
        Whether every block carries a boundary-gradient line. Without it the
        gradient slots receive the layout defaults (1e30 = natural boundary).
    invariant : sequence of bool, optional
        Per-block flag; invariant blocks contribute no free parameters.
    gradient : sequence of int, optional
        Per-block two-bit flag; bit 1 frees the boundary value, bit 0 the
        boundary slope.
    headers_first : bool, default False
        If True, all header lines come first, followed by the gradient and
        value lines of each block in turn.
    filename : str, optional
        Used in error messages.

    Returns
    -------
    SplinePotentialTable

    Raises
    ------
    FormatError
        Short read or malformed field; names filename, block and line.
    ConfigError
        An embedding block does not sample 1.0 (and the layout does not rescale),
        or the flag sequences do not match the layout.
    """
    reader = _LineReader(lines, filename)
    nblocks = len(layout)
    headers: List[Tuple[float, float, int]] = []
    grads: List[Optional[List[float]]] = []
    values: List[np.ndarray] = []

    if headers_first:
        for i in range(nblocks):
            headers.append(_read_header(reader, i))
            _check_gauge_point(layout, i, headers[i])

    for i in range(nblocks):
        if not headers_first:
            headers.append(_read_header(reader, i))
            _check_gauge_point(layout, i, headers[i])
        grads.append(reader.floats(2, "boundary gradient", i) if have_gradient else None)
        npoints = headers[i][2]
        vals = np.empty(npoints, dtype=float)
        for j in range(npoints):
            vals[j] = reader.floats(1, f"knot value {j}", i)[0]
        values.append(vals)

    table = SplinePotentialTable.from_headers(layout, headers, invariant=invariant, gradient=gradient)
    for i, block in enumerate(table.blocks):
        if grads[i] is not None:
            table.gradient_values(i)[:] = grads[i]
        table.table[block.knots] = values[i]
    return table


def ReadPotTable(
    table_path: str,
    layout: BlockLayout,
    have_gradient: bool = False,
    invariant: Optional[Sequence[bool]] = None,
    gradient: Optional[Sequence[int]] = None,
    headers_first: bool = False,
) -> SplinePotentialTable:
    """
    Read a potential table file. See ParsePotTable for the format and arguments.
    """
    if not os.path.exists(table_path):
        raise FileNotFoundError(table_path)
    with open(table_path, "r") as f:
        return ParsePotTable(
            f, layout,
            have_gradient=have_gradient, invariant=invariant, gradient=gradient,
            headers_first=headers_first, filename=table_path,
        )


def WritePotTable(
    filename: str,
    table: SplinePotentialTable,
    have_gradient: bool = True,
    headers_first: bool = False,
    comment: Optional[str] = "Potential table written by TabFit",
):
    """
    Write a SplinePotentialTable in the format read by ReadPotTable.

    Values are written with 17 significant digits, so reading the file back
    reproduces the table exactly.

    Parameters
    ----------
    filename : str
        Output file path.
    table : SplinePotentialTable
        Table to write.
    have_gradient : bool, default True
        Write the boundary-gradient line of every block.
    headers_first : bool, default False
        Write all header lines before the block bodies.
    comment : str, optional
        Comment written at the top of the file as '#' lines.
    """
    def header(b):
        return f"{b.begin:.17g} {b.end:.17g} {b.npoints:d}\n"

    with open(filename, "w") as f:
        if comment is not None:
            for line in comment.splitlines():
                f.write(f"# {line}\n")

        if headers_first:
            for b in table.blocks:
                f.write(header(b))

        for i, b in enumerate(table.blocks):
            f.write("\n")
            if not headers_first:
                f.write(header(b))
            if have_gradient:
                g0, g1 = table.gradient_values(i)
                f.write(f"{g0:.17g} {g1:.17g}\n")
            for v in table.block_values(i):
                f.write(f"{v:.17g}\n")
