# TabFit/potentials/table.py
from dataclasses import dataclass
from typing import Iterator, List, Optional, Sequence, Tuple

import numpy as np

from ..exceptions import ConfigError
from .layout import BlockKind, BlockLayout


@dataclass
class FunctionBlock:
    """
    One equidistantly sampled function inside a SplinePotentialTable.

    The knots occupy table[first:last+1]; the two slots table[first-2] and
    table[first-1] hold the boundary value and boundary slope.
    """
    kind: BlockKind
    label: str
    begin: float
    end: float
    npoints: int
    first: int
    invariant: bool = False
    gradient: int = 0

    @property
    def step(self) -> float:
        return (self.end - self.begin) / (self.npoints - 1)

    @property
    def invstep(self) -> float:
        return 1.0 / self.step

    @property
    def last(self) -> int:
        return self.first + self.npoints - 1

    @property
    def knots(self) -> slice:
        return slice(self.first, self.last + 1)

    @property
    def grad_slots(self) -> Tuple[int, int]:
        return self.first - 2, self.first - 1

    def xcoord(self) -> np.ndarray:
        return self.begin + np.arange(self.npoints) * self.step


class FreeIndexMap:
    """
    Strictly increasing set of table positions that are optimized.

    Parameters
    ----------
    positions : sequence of int
        Table positions, in increasing order.
    length : int
        Length of the table the positions index into.
    """

    def __init__(self, positions: Sequence[int], length: int):
        pos = np.asarray(positions, dtype=np.intp).ravel()
        if pos.size:
            if pos[0] < 0 or pos[-1] >= length:
                raise ValueError(f"free positions must lie in [0, {length}), got [{pos[0]}, {pos[-1]}]")
            if np.any(np.diff(pos) <= 0):
                raise ValueError("free positions must be unique and strictly increasing")
        pos.flags.writeable = False
        self._pos = pos
        self.length = int(length)

    @property
    def positions(self) -> np.ndarray:
        return self._pos

    def __len__(self) -> int:
        return int(self._pos.size)

    def __iter__(self) -> Iterator[int]:
        return (int(p) for p in self._pos)

    def __getitem__(self, k):
        return self._pos[k]

    def __contains__(self, position) -> bool:
        k = np.searchsorted(self._pos, position)
        return bool(k < self._pos.size and self._pos[k] == position)

    def __array__(self, dtype=None, copy=None):
        if dtype is None:
            return self._pos
        return self._pos.astype(dtype)

    def mask(self) -> np.ndarray:
        """Boolean array of table length, True at free positions."""
        m = np.zeros(self.length, dtype=bool)
        m[self._pos] = True
        return m

    def __repr__(self) -> str:
        return f"FreeIndexMap(idxlen={len(self)}, len={self.length})"


@dataclass(frozen=True)
class TableView:
    """
    Evaluation-side view of a SplinePotentialTable.

    All arrays alias the owning table's buffers, so updates of free
    positions are visible immediately. Only `d2tab` is writable; it is
    scratch space for the spline curvature computed by the evaluator.
    """
    table: np.ndarray
    xcoord: np.ndarray
    d2tab: np.ndarray
    begin: np.ndarray
    end: np.ndarray
    step: np.ndarray
    invstep: np.ndarray
    first: np.ndarray
    last: np.ndarray
    idx: np.ndarray

    @property
    def len(self) -> int:
        return int(self.table.size)

    @property
    def idxlen(self) -> int:
        return int(self.idx.size)


def _readonly(a: np.ndarray) -> np.ndarray:
    v = a.view()
    v.flags.writeable = False
    return v


def _free_positions(block: FunctionBlock, i: int, layout: BlockLayout) -> List[int]:
    """Table positions of block `i` that enter the index map."""
    if block.invariant:
        return []
    out = []
    g0, g1 = block.grad_slots
    if block.gradient >> 1:
        out.append(g0)
    if block.gradient % 2:
        out.append(g1)
    for j in range(block.npoints):
        if j == block.npoints - 1 and layout.pins_last(i):
            continue
        if j == 0 and layout.clamps_first(i):
            continue
        out.append(block.first + j)
    return out


class SplinePotentialTable:
    """
    Flat knot table of a tabulated potential with its free-parameter index map.

    Attributes
    ----------
    blocks : list of FunctionBlock
        Function blocks in file order.
    table : np.ndarray
        Knot values and boundary-gradient slots, length `len`.
    xcoord : np.ndarray
        Sample coordinate of every knot (gradient slots hold 0).
    d2tab : np.ndarray
        Spline curvature, left for the evaluator to fill.
    idx : FreeIndexMap
        Positions of `table` that are optimized.
    """

    def __init__(self, layout: BlockLayout, blocks: List[FunctionBlock],
                 table: np.ndarray, xcoord: np.ndarray, idx: FreeIndexMap):
        self.layout = layout
        self.blocks = blocks
        self.table = table
        self.xcoord = xcoord
        self.d2tab = np.zeros_like(table)
        self.idx = idx

    @classmethod
    def from_headers(
        cls,
        layout: BlockLayout,
        headers: Sequence[Tuple[float, float, int]],
        invariant: Optional[Sequence[bool]] = None,
        gradient: Optional[Sequence[int]] = None,
    ) -> "SplinePotentialTable":
        """
        Allocate a table for the given (begin, end, npoints) headers.

        Knot values start at zero and gradient slots at the layout defaults;
        the free-parameter index map is built from the layout's exclusion
        rules, the per-block `invariant` flags and the two-bit `gradient`
        flags (bit 1 frees the boundary value, bit 0 the boundary slope).
        """
        nblocks = len(layout)
        if len(headers) != nblocks:
            raise ConfigError(f"layout has {nblocks} blocks, got {len(headers)} headers")
        invariant = [False] * nblocks if invariant is None else [bool(v) for v in invariant]
        gradient = [0] * nblocks if gradient is None else [int(g) for g in gradient]
        if len(invariant) != nblocks:
            raise ConfigError(f"invariant flags: expected {nblocks}, got {len(invariant)}")
        if len(gradient) != nblocks:
            raise ConfigError(f"gradient flags: expected {nblocks}, got {len(gradient)}")
        if any(g < 0 or g > 3 for g in gradient):
            raise ConfigError(f"gradient flags must be in 0..3, got {gradient}")

        labels = layout.labels()
        blocks: List[FunctionBlock] = []
        first = 2
        for i, (begin, end, npoints) in enumerate(headers):
            if int(npoints) < 2 or float(begin) == float(end):
                raise ConfigError(f"{labels[i]}: need npoints >= 2 and begin != end, "
                                  f"got ({begin}, {end}, {npoints})")
            blocks.append(FunctionBlock(
                kind=layout.kind(i), label=labels[i],
                begin=float(begin), end=float(end), npoints=int(npoints),
                first=first, invariant=invariant[i], gradient=gradient[i],
            ))
            first += int(npoints) + 2
        size = blocks[-1].first + blocks[-1].npoints

        table = np.zeros(size, dtype=float)
        xcoord = np.zeros(size, dtype=float)
        positions: List[int] = []
        for i, block in enumerate(blocks):
            g0, g1 = block.grad_slots
            table[g0], table[g1] = layout.default_gradient(i)
            xcoord[block.knots] = block.xcoord()
            positions.extend(_free_positions(block, i, layout))
        return cls(layout, blocks, table, xcoord, FreeIndexMap(positions, size))

    # --- geometry -----------------------------------------------------------
    @property
    def len(self) -> int:
        return int(self.table.size)

    @property
    def idxlen(self) -> int:
        return len(self.idx)

    @property
    def begin(self) -> np.ndarray:
        return np.array([b.begin for b in self.blocks])

    @property
    def end(self) -> np.ndarray:
        return np.array([b.end for b in self.blocks])

    @property
    def step(self) -> np.ndarray:
        return np.array([b.step for b in self.blocks])

    @property
    def invstep(self) -> np.ndarray:
        return np.array([b.invstep for b in self.blocks])

    @property
    def first(self) -> np.ndarray:
        return np.array([b.first for b in self.blocks], dtype=np.intp)

    @property
    def last(self) -> np.ndarray:
        return np.array([b.last for b in self.blocks], dtype=np.intp)

    def block_values(self, i: int) -> np.ndarray:
        """Knot values of block `i` (a view into `table`)."""
        return self.table[self.blocks[i].knots]

    def gradient_values(self, i: int) -> np.ndarray:
        """(boundary value, boundary slope) of block `i` (a view into `table`)."""
        g0, _ = self.blocks[i].grad_slots
        return self.table[g0:g0 + 2]

    # --- parameter vector ---------------------------------------------------
    def n_params(self) -> int:
        return self.idxlen

    def get_params(self) -> np.ndarray:
        """Return the free-parameter vector xi = table[idx] (a copy)."""
        return self.table[self.idx.positions].copy()

    def set_params(self, xi: np.ndarray):
        """Write the free-parameter vector back into the table through idx."""
        xi = np.asarray(xi, dtype=float)
        if xi.shape != (self.idxlen,):
            raise ValueError(f"Parameter shape mismatch: expected ({self.idxlen},), got {xi.shape}")
        if not np.all(np.isfinite(xi)):
            raise ValueError("Refusing to write non-finite parameters into the table")
        self.table[self.idx.positions] = xi

    def with_params(self, xi: np.ndarray) -> np.ndarray:
        """Return a copy of the full table with the free positions replaced by xi."""
        xi = np.asarray(xi, dtype=float)
        if xi.shape != (self.idxlen,):
            raise ValueError(f"Parameter shape mismatch: expected ({self.idxlen},), got {xi.shape}")
        out = self.table.copy()
        out[self.idx.positions] = xi
        return out

    def param_names(self) -> List[str]:
        """Names of the free parameters, e.g. 'pair[0]:k3' or 'embedding[1]:grad0'."""
        names = []
        for block in self.blocks:
            g0, g1 = block.grad_slots
            names.append((g0, f"{block.label}:grad0"))
            names.append((g1, f"{block.label}:grad1"))
            names.extend((block.first + j, f"{block.label}:k{j}") for j in range(block.npoints))
        by_pos = dict(names)
        return [by_pos[p] for p in self.idx]

    def evaluation_view(self) -> TableView:
        """Read-only aliases of the table arrays for the residual evaluator."""
        return TableView(
            table=_readonly(self.table),
            xcoord=_readonly(self.xcoord),
            d2tab=self.d2tab.view(),
            begin=self.begin,
            end=self.end,
            step=self.step,
            invstep=self.invstep,
            first=self.first,
            last=self.last,
            idx=self.idx.positions,
        )

    def copy(self) -> "SplinePotentialTable":
        blocks = [FunctionBlock(**vars(b)) for b in self.blocks]
        new = SplinePotentialTable(self.layout, blocks, self.table.copy(),
                                   self.xcoord.copy(), FreeIndexMap(self.idx.positions, self.len))
        new.d2tab = self.d2tab.copy()
        return new

    def __repr__(self) -> str:
        return (f"SplinePotentialTable(blocks={len(self.blocks)}, len={self.len}, "
                f"idxlen={self.idxlen})")
