# TabFit/optimizers/base.py
from abc import ABC, abstractmethod
import numpy as np

from ..evaluators.base import BaseEvaluator, as_evaluator
from ..potentials.table import SplinePotentialTable


class BaseOptimizer(ABC):
    def __init__(self, table: SplinePotentialTable, evaluator, logger=None):
        """
        Parameters
        ----------
        table : SplinePotentialTable
            Table whose free positions (table.idx) are optimized in place.
        evaluator : BaseEvaluator or callable
            Residual evaluator, xi -> r.
        logger : SummaryWriter or None
            TensorBoard-like writer (anything with `add_scalar(tag, value, step)`).
        """
        self.table = table
        self.evaluator: BaseEvaluator = as_evaluator(evaluator)
        self.logger = logger
        self.L = table.get_params()

    def set_params(self, L_new: np.ndarray):
        """
        Update the internal parameter vector L and write it into the table.

        Parameters
        ----------
        L_new : np.ndarray
            New free-parameter values (must match shape of self.L).
        """
        assert L_new.shape == self.L.shape, "Parameter shape mismatch"
        self.table.set_params(L_new)
        self.L = np.array(L_new, dtype=float)

    @abstractmethod
    def step(self, step_index: int = 0) -> np.ndarray:
        """
        Apply one optimization step.

        Parameters
        ----------
        step_index : int
            Current step index (used for logging).

        Returns
        -------
        update : np.ndarray
            The update vector applied to self.L.
        """
        pass
