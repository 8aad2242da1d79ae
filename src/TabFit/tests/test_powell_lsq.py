import numpy as np
import pytest

from TabFit import (
    BlockLayout,
    FitConfig,
    PowellLSQOptimizer,
    SplinePotentialTable,
    TableEvaluator,
    fit,
)


TARGET = np.array([1.0, 2.0, 3.0, 4.0, 5.0])


def _exp_residual():
    t = np.linspace(0.0, 4.0, 12)
    y = 2.0 * np.exp(-0.5 * t)
    return lambda xi: xi[0] * np.exp(-xi[1] * t) - y


class TestFit:

    def test_quadratic_target(self, free_table):
        table = free_table(5)
        res = fit(table, lambda xi: xi - TARGET, tolerance=1e-8, max_outer_iterations=50)
        assert res.converged
        assert not res.degenerate
        assert res.iterations < 50
        assert np.allclose(table.get_params(), TARGET, atol=1e-6)
        assert np.allclose(table.table[2:7], TARGET, atol=1e-6)
        # pinned last knot
        assert table.table[7] == 0.0
        assert res.final_objective == pytest.approx(float(res.residual @ res.residual))

    def test_second_fit_is_idempotent(self, free_table):
        table = free_table(5)
        fit(table, lambda xi: xi - TARGET, tolerance=1e-8, max_outer_iterations=50)
        xi = table.get_params()
        res = fit(table, lambda xi: xi - TARGET, tolerance=1e-8, max_outer_iterations=50)
        assert res.iterations <= 1
        assert np.allclose(table.get_params(), xi, atol=1e-8)

    def test_nonlinear_exponential(self, free_table):
        table = free_table(2)
        table.set_params(np.array([1.5, 0.8]))
        res = fit(table, _exp_residual(), tolerance=1e-12, max_outer_iterations=200)
        assert np.allclose(table.get_params(), [2.0, 0.5], atol=1e-4)
        assert res.final_objective < 1e-8

    def test_table_evaluator_respects_index_map(self):
        layout = BlockLayout.from_flavor("eam", 1)
        table = SplinePotentialTable.from_headers(
            layout, [(0.5, 3.0, 5), (0.5, 3.0, 4), (0.0, 2.0, 4)]
        )
        knots = np.concatenate([np.arange(b.first, b.last + 1) for b in table.blocks])
        ref = np.sin(table.xcoord[knots])
        pinned = [b.last for b in table.blocks[:2]]
        ref[np.isin(knots, pinned)] = 0.0
        before = table.table.copy()

        evaluator = TableEvaluator(table, lambda values: values[knots] - ref)
        res = fit(table, evaluator, tolerance=1e-10, max_outer_iterations=50)
        assert res.converged
        assert np.allclose(table.table[knots], ref, atol=1e-6)
        fixed = ~table.idx.mask()
        assert np.array_equal(table.table[fixed], before[fixed])
        assert res.n_evaluations == evaluator.n_calls

    def test_target_objective(self, free_table):
        res = fit(free_table(5), lambda xi: xi - TARGET, target_objective=10.0)
        assert res.converged
        assert res.final_objective <= 10.0
        assert "target" in res.message

    def test_iteration_cap(self, free_table):
        table = free_table(2)
        table.set_params(np.array([1.5, 0.8]))
        res = fit(table, _exp_residual(), max_outer_iterations=1)
        assert not res.converged
        assert res.iterations == 1

    def test_evaluation_cap(self, free_table):
        res = fit(free_table(5), lambda xi: xi - TARGET, max_evaluations=10)
        assert not res.converged
        assert res.n_evaluations >= 10
        assert "evaluation budget" in res.message

    def test_no_free_parameters(self):
        layout = BlockLayout.from_flavor("pair", 1)
        table = SplinePotentialTable.from_headers(layout, [(0.0, 1.0, 4)], invariant=[True])
        res = fit(table, lambda xi: np.ones(3))
        assert res.converged
        assert res.iterations == 0
        assert res.final_objective == 3.0

    def test_non_finite_residual(self, free_table):
        with pytest.raises(ValueError, match="non-finite"):
            fit(free_table(2), lambda xi: np.full(2, np.nan))

    def test_trial_points_outside_domain(self, free_table):
        table = free_table(1)
        table.set_params(np.array([0.5]))

        def residual(xi):
            with np.errstate(invalid="ignore", divide="ignore"):
                return np.log(xi) - np.log(0.4)

        res = fit(table, residual, tolerance=1e-10, max_outer_iterations=50)
        assert res.converged
        assert table.get_params()[0] == pytest.approx(0.4, abs=1e-6)

    def test_small_residual_scale(self, free_table):
        table = free_table(3)
        target = np.array([1.0, 2.0, 3.0])
        with pytest.warns(RuntimeWarning):
            res = fit(table, lambda xi: 1e-14 * (xi - target))
        assert res.iterations >= 1
        assert np.allclose(table.get_params(), target, atol=1e-6)

    def test_config_and_overrides(self, free_table):
        cfg = FitConfig(max_outer_iterations=1)
        table = free_table(2)
        table.set_params(np.array([1.5, 0.8]))
        res = fit(table, _exp_residual(), config=cfg, refine=False)
        assert res.iterations == 1
        assert cfg.refine is True


class TestDegenerateProblems:

    def test_constant_residual_is_degenerate(self, free_table):
        with pytest.warns(RuntimeWarning):
            res = fit(free_table(2), lambda xi: np.array([1.0, 2.0]))
        assert res.degenerate
        assert res.converged
        assert res.iterations == 1
        assert res.final_objective == 5.0

    def test_irrelevant_parameter(self, free_table, linear_residual):
        table = free_table(2)
        with pytest.warns(RuntimeWarning):
            res = fit(table, linear_residual([[1.0, 0.0]], [2.0]))
        assert res.converged
        assert table.get_params()[0] == pytest.approx(2.0, abs=1e-6)
        assert table.get_params()[1] == 0.0

    def test_singular_normal_equations_keep_directions(self, free_table):
        opt = PowellLSQOptimizer(free_table(2), lambda xi: xi - np.array([1.0, 2.0]))
        opt.initialize()
        opt.jacobian.gamma[:] = [[1.0, 0.0], [1.0, 0.0]]
        with pytest.warns(RuntimeWarning, match="direction set"):
            assert opt._replace_direction(0) is False
        assert np.array_equal(opt.directions, np.eye(2))


class TestOptimizer:

    def test_unknown_override(self, free_table):
        with pytest.raises(AttributeError, match="Unknown FitConfig field"):
            PowellLSQOptimizer(free_table(2), lambda xi: xi, foo=1)

    def test_step_requires_initialize(self, free_table):
        opt = PowellLSQOptimizer(free_table(2), lambda xi: xi)
        with pytest.raises(RuntimeError, match="initialize"):
            opt.step()

    def test_state_is_free_parameter_vector(self, free_table):
        opt = PowellLSQOptimizer(free_table(3), lambda xi: xi)
        assert opt.L.shape == (3,)
        assert not hasattr(opt, "mask")

    def test_logger_receives_metrics(self, free_table, writer):
        fit(free_table(5), lambda xi: xi - TARGET, logger=writer)
        assert {
            "PowellLSQ/objective",
            "PowellLSQ/decrease",
            "PowellLSQ/n_bracketed",
            "PowellLSQ/n_evaluations",
            "PowellLSQ/update_norm",
        } <= writer.tags()
        steps = [s for tag, _, s in writer.scalars if tag == "PowellLSQ/objective"]
        assert steps[0] == 1

    def test_verbose_prints_progress(self, free_table, capsys):
        fit(free_table(5), lambda xi: xi - TARGET, verbose=True)
        assert "[powell_lsq] iter=1" in capsys.readouterr().out

    def test_table_holds_accepted_point_during_evaluation(self, free_table):
        table = free_table(3)
        target = np.array([0.5, -1.0, 2.0])
        trials = [tuple(np.zeros(3))]

        def residual(xi):
            # the table only holds the start or a point evaluated before
            assert tuple(table.get_params()) in trials
            trials.append(tuple(xi))
            return xi - target

        PowellLSQOptimizer(table, residual).run()
        assert np.allclose(table.get_params(), target, atol=1e-6)
