# TabFit/potentials/__init__.py
from .layout import BlockKind, BlockLayout, SecondPairRule, NATURAL_BOUNDARY, n_pair_columns
from .table import FunctionBlock, FreeIndexMap, SplinePotentialTable, TableView
