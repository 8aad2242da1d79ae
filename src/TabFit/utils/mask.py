# TabFit/utils/mask.py
import numpy as np

from ..potentials.table import SplinePotentialTable


def FreeParamMask(table: SplinePotentialTable) -> np.ndarray:
    """
    Boolean mask aligned with `table.table`, True = free (optimized),
    False = fixed.
    """
    return table.idx.mask()


def DescribeIndexMap(table: SplinePotentialTable) -> str:
    """
    Pretty-print which table slots of each block are free vs fixed.

    Parameters
    ----------
    table : SplinePotentialTable

    Returns
    -------
    report : str
        One line per block: sampling range, knot count, number of free knots,
        and the state of the two boundary-gradient slots.
    """
    mask = FreeParamMask(table)
    lines = []
    lines.append("=== Free Parameter Summary ===")
    lines.append(f"{'block':<20s} {'begin':>10s} {'end':>10s} {'npts':>5s} "
                 f"{'free':>5s}  grad0   grad1   note")
    for i, b in enumerate(table.blocks):
        g0, g1 = b.grad_slots
        n_free = int(np.count_nonzero(mask[b.knots]))
        notes = []
        if b.invariant:
            notes.append("invariant")
        else:
            if not mask[b.last]:
                notes.append("last knot pinned")
            if not mask[b.first]:
                notes.append("first knot clamped")
        lines.append(
            f"{b.label:<20s} {b.begin:>10.4f} {b.end:>10.4f} {b.npoints:>5d} {n_free:>5d}  "
            f"{'train' if mask[g0] else 'frozen':<7s} {'train' if mask[g1] else 'frozen':<7s} "
            f"{', '.join(notes)}"
        )
    lines.append(f"total: {table.idxlen} free of {table.len} slots")
    report = "\n".join(lines)
    return report
