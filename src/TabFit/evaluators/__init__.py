from .base import BaseEvaluator, CallableEvaluator, TableEvaluator, as_evaluator, trial_residual
