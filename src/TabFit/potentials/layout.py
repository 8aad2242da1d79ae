# TabFit/potentials/layout.py
from enum import Enum
from typing import Dict, List, Sequence, Tuple, Union

from ..exceptions import ConfigError

NATURAL_BOUNDARY = 1e30


class BlockKind(Enum):
    """Kinds of tabulated functions that can appear in a potential table."""
    PAIR = "pair"
    TRANSFER = "transfer"
    EMBEDDING = "embedding"
    SBAND_TRANSFER = "sband_transfer"
    SBAND_EMBEDDING = "sband_embedding"
    DIPOLE = "dipole"
    QUADRUPOLE = "quadrupole"
    SECOND_PAIR = "second_pair"
    ANGULAR = "angular"


class SecondPairRule(Enum):
    """
    Which knots of second-pair (MEAM f) blocks take part in the fit.

    CLAMP_FIRST : last knot pinned to zero, and knot 0 of the first
        second-pair block held fixed to remove the f*f*g scaling degeneracy.
    FREE_ALL    : every knot of a non-invariant second-pair block is free.
    """
    CLAMP_FIRST = "clamp_first"
    FREE_ALL = "free_all"


# functions that must vanish at the cutoff: their last knot is never free
_PINNED_LAST = {
    BlockKind.PAIR,
    BlockKind.TRANSFER,
    BlockKind.SBAND_TRANSFER,
    BlockKind.DIPOLE,
    BlockKind.QUADRUPOLE,
    BlockKind.SECOND_PAIR,
}

# (boundary value, boundary slope) stored when the file carries no gradients
_DEFAULT_GRADIENT: Dict[BlockKind, Tuple[float, float]] = {
    BlockKind.PAIR: (NATURAL_BOUNDARY, 0.0),
    BlockKind.TRANSFER: (NATURAL_BOUNDARY, 0.0),
    BlockKind.EMBEDDING: (NATURAL_BOUNDARY, NATURAL_BOUNDARY),
    BlockKind.SBAND_TRANSFER: (NATURAL_BOUNDARY, 0.0),
    BlockKind.SBAND_EMBEDDING: (NATURAL_BOUNDARY, NATURAL_BOUNDARY),
    BlockKind.DIPOLE: (NATURAL_BOUNDARY, 0.0),
    BlockKind.QUADRUPOLE: (NATURAL_BOUNDARY, NATURAL_BOUNDARY),
    BlockKind.SECOND_PAIR: (NATURAL_BOUNDARY, 0.0),
    BlockKind.ANGULAR: (0.0, 0.0),
}

# block groups per model flavor; counts are "paircol" or "ntypes"
FLAVORS: Dict[str, List[Tuple[BlockKind, str]]] = {
    "pair": [(BlockKind.PAIR, "paircol")],
    "eam": [
        (BlockKind.PAIR, "paircol"),
        (BlockKind.TRANSFER, "ntypes"),
        (BlockKind.EMBEDDING, "ntypes"),
    ],
    "tbeam": [
        (BlockKind.PAIR, "paircol"),
        (BlockKind.TRANSFER, "ntypes"),
        (BlockKind.EMBEDDING, "ntypes"),
        (BlockKind.SBAND_TRANSFER, "ntypes"),
        (BlockKind.SBAND_EMBEDDING, "ntypes"),
    ],
    "adp": [
        (BlockKind.PAIR, "paircol"),
        (BlockKind.TRANSFER, "ntypes"),
        (BlockKind.EMBEDDING, "ntypes"),
        (BlockKind.DIPOLE, "paircol"),
        (BlockKind.QUADRUPOLE, "paircol"),
    ],
    "meam": [
        (BlockKind.PAIR, "paircol"),
        (BlockKind.TRANSFER, "ntypes"),
        (BlockKind.EMBEDDING, "ntypes"),
        (BlockKind.SECOND_PAIR, "paircol"),
        (BlockKind.ANGULAR, "ntypes"),
    ],
}


def n_pair_columns(ntypes: int) -> int:
    """Number of distinct unordered type pairs for `ntypes` atom types."""
    return ntypes * (ntypes + 1) // 2


class BlockLayout:
    """
    Ordered description of the function blocks stored in a potential table.

    Parameters
    ----------
    groups : sequence of (BlockKind or str, int)
        Block kinds in file order, each with the number of consecutive blocks.
    second_pair_rule : SecondPairRule or str, default "clamp_first"
        Exclusion rule applied to second-pair blocks.
    rescale : bool, default False
        True when the model rescales embedding functions globally; the
        F(1.0) sampling requirement on embedding blocks is then dropped.
    """

    def __init__(
        self,
        groups: Sequence[Tuple[Union[BlockKind, str], int]],
        second_pair_rule: Union[SecondPairRule, str] = SecondPairRule.CLAMP_FIRST,
        rescale: bool = False,
    ):
        self.groups: List[Tuple[BlockKind, int]] = []
        for kind, count in groups:
            kind = BlockKind(kind)
            if int(count) < 0:
                raise ConfigError(f"negative block count {count} for {kind.value}")
            self.groups.append((kind, int(count)))
        self.second_pair_rule = SecondPairRule(second_pair_rule)
        self.rescale = bool(rescale)

        self._kinds: List[BlockKind] = []
        self._labels: List[str] = []
        for kind, count in self.groups:
            for n in range(count):
                self._kinds.append(kind)
                self._labels.append(f"{kind.value}[{n}]")
        if not self._kinds:
            raise ConfigError("block layout contains no function blocks")

        second = [i for i, k in enumerate(self._kinds) if k is BlockKind.SECOND_PAIR]
        self._first_second_pair = second[0] if second else None

    @classmethod
    def from_flavor(
        cls,
        flavor: str,
        ntypes: int,
        second_pair_rule: Union[SecondPairRule, str] = SecondPairRule.CLAMP_FIRST,
        rescale: bool = False,
    ) -> "BlockLayout":
        """
        Build the layout of a standard model flavor.

        Parameters
        ----------
        flavor : {"pair", "eam", "tbeam", "adp", "meam"}
        ntypes : int
            Number of atom types.
        """
        key = flavor.lower()
        if key not in FLAVORS:
            raise ConfigError(f"Unknown model flavor '{flavor}'. Available: {list(FLAVORS)}")
        if ntypes < 1:
            raise ConfigError(f"ntypes must be >= 1, got {ntypes}")
        counts = {"paircol": n_pair_columns(ntypes), "ntypes": ntypes}
        groups = [(kind, counts[size]) for kind, size in FLAVORS[key]]
        return cls(groups, second_pair_rule=second_pair_rule, rescale=rescale)

    def __len__(self) -> int:
        return len(self._kinds)

    def kinds(self) -> List[BlockKind]:
        return list(self._kinds)

    def kind(self, i: int) -> BlockKind:
        return self._kinds[i]

    def labels(self) -> List[str]:
        return list(self._labels)

    def pins_last(self, i: int) -> bool:
        """True if the last knot of block `i` is held at its tabulated value."""
        kind = self._kinds[i]
        if kind is BlockKind.SECOND_PAIR and self.second_pair_rule is SecondPairRule.FREE_ALL:
            return False
        return kind in _PINNED_LAST

    def clamps_first(self, i: int) -> bool:
        """True if knot 0 of block `i` is clamped to break the MEAM f*f*g degeneracy."""
        return (self.second_pair_rule is SecondPairRule.CLAMP_FIRST
                and i == self._first_second_pair)

    def needs_gauge_point(self, i: int) -> bool:
        """True if block `i` must be sampled at 1.0 (F'(1.0) is used for gauge fixing)."""
        return self._kinds[i] is BlockKind.EMBEDDING and not self.rescale

    def default_gradient(self, i: int) -> Tuple[float, float]:
        return _DEFAULT_GRADIENT[self._kinds[i]]

    def __repr__(self) -> str:
        body = ", ".join(f"{k.value}x{n}" for k, n in self.groups)
        return f"BlockLayout({body}; {self.second_pair_rule.value}, rescale={self.rescale})"
