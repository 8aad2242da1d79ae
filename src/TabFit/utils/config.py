# TabFit/utils/config.py
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import yaml

from ..potentials.layout import BlockLayout
from ..potentials.table import SplinePotentialTable


def _apply_overrides(cfg, overrides: Dict[str, Any], name: str):
    for k, v in overrides.items():
        if not hasattr(cfg, k):
            raise AttributeError(f"Unknown {name} field '{k}'")
        # YAML 1.1 reads "1e-8" (no dot) as a string
        if isinstance(v, str) and k in getattr(cfg, "_float_fields", ()):
            v = float(v)
        setattr(cfg, k, v)
    return cfg


@dataclass
class FitConfig:
    """
    Settings of the Powell least-squares fit.

    Parameters
    ----------
    tolerance : float
        Fractional decrease of the objective over one outer iteration below
        which the fit counts as converged.
    max_outer_iterations : int
        Cap on outer iterations; hitting it ends the fit unconverged.
    target_objective : float, optional
        Stop as soon as the objective is at or below this value.
    max_evaluations : int, optional
        Cap on evaluator calls, checked between line searches.
    jacobian_step : float
        Forward-difference step for the initial sensitivity matrix.
    bracket_maxiter : int
        Expansion steps allowed when bracketing a line minimum.
    brent_tol : float
        Fractional abscissa tolerance of Brent's method.
    brent_maxiter : int
        Iteration cap of Brent's method.
    refine : bool
        Apply one step of iterative refinement to the normal-equation solve.
    singular_eps : float
        Pivot magnitude below which the normal equations count as singular.
    tiny : float
        Absolute term of the fractional convergence test; lets an objective
        that has reached round-off level count as converged.
    verbose : bool
        Print one progress line per outer iteration.
    """
    tolerance: float = 1e-8
    max_outer_iterations: int = 100
    target_objective: Optional[float] = None
    max_evaluations: Optional[int] = None

    jacobian_step: float = 1e-4
    bracket_maxiter: int = 1000
    brent_tol: float = 1.48e-8
    brent_maxiter: int = 500

    refine: bool = True
    singular_eps: float = 1e-12
    tiny: float = 1e-25
    verbose: bool = False

    _float_fields = ("tolerance", "target_objective", "jacobian_step",
                     "brent_tol", "singular_eps", "tiny")

    @classmethod
    def from_dict(cls, d: Optional[Dict[str, Any]] = None, **overrides) -> "FitConfig":
        cfg = cls()
        _apply_overrides(cfg, dict(d or {}), "FitConfig")
        return _apply_overrides(cfg, overrides, "FitConfig")


@dataclass
class TableConfig:
    """
    How to read a potential table.

    Parameters
    ----------
    flavor : {"pair", "eam", "tbeam", "adp", "meam"}
        Model flavor selecting the block layout.
    ntypes : int
        Number of atom types.
    have_gradient : bool
        Whether each block carries a boundary-gradient line.
    invariant : list of bool, optional
        Per-block invariant flags.
    gradient : list of int, optional
        Per-block two-bit gradient flags.
    rescale : bool
        Embedding functions are rescaled globally (drops the F(1.0) check).
    second_pair_rule : {"clamp_first", "free_all"}
        Exclusion rule for second-pair blocks.
    headers_first : bool
        All block headers precede the block bodies.
    """
    flavor: str = "pair"
    ntypes: int = 1
    have_gradient: bool = False
    invariant: Optional[List[bool]] = None
    gradient: Optional[List[int]] = None
    rescale: bool = False
    second_pair_rule: str = "clamp_first"
    headers_first: bool = False

    @classmethod
    def from_dict(cls, d: Optional[Dict[str, Any]] = None, **overrides) -> "TableConfig":
        cfg = cls()
        _apply_overrides(cfg, dict(d or {}), "TableConfig")
        return _apply_overrides(cfg, overrides, "TableConfig")

    def layout(self) -> BlockLayout:
        return BlockLayout.from_flavor(
            self.flavor, self.ntypes,
            second_pair_rule=self.second_pair_rule, rescale=self.rescale,
        )

    def read(self, table_path: Union[str, Path]) -> SplinePotentialTable:
        """Read `table_path` with these settings."""
        from .ffio import ReadPotTable
        return ReadPotTable(
            str(table_path), self.layout(),
            have_gradient=self.have_gradient, invariant=self.invariant,
            gradient=self.gradient, headers_first=self.headers_first,
        )


def load_config_yaml(path: Union[str, Path]) -> Tuple[TableConfig, FitConfig]:
    """
    Load table and fit settings from a YAML file.

    Expected layout (both sections optional)::

        table:
          flavor: eam
          ntypes: 2
          have_gradient: true
        fit:
          tolerance: 1.0e-8
          max_outer_iterations: 200
    """
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at top level, got {type(data).__name__}")
    unknown = set(data) - {"table", "fit"}
    if unknown:
        raise AttributeError(f"{path}: unknown config sections {sorted(unknown)}")
    return TableConfig.from_dict(data.get("table")), FitConfig.from_dict(data.get("fit"))


def dump_config_yaml(path: Union[str, Path], table: TableConfig, fit: FitConfig):
    """Write table and fit settings in the format read by load_config_yaml."""
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump({"table": asdict(table), "fit": asdict(fit)}, f, sort_keys=False)
