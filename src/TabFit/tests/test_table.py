import numpy as np
import pytest

from TabFit.exceptions import ConfigError
from TabFit.potentials.layout import (
    NATURAL_BOUNDARY,
    BlockKind,
    BlockLayout,
    SecondPairRule,
    n_pair_columns,
)
from TabFit.potentials.table import FreeIndexMap, SplinePotentialTable


def _table(flavor, ntypes, npoints=5, **kwargs):
    rule = kwargs.pop("second_pair_rule", SecondPairRule.CLAMP_FIRST)
    layout = BlockLayout.from_flavor(flavor, ntypes, second_pair_rule=rule)
    headers = [(0.0, 2.0, npoints)] * len(layout)
    return SplinePotentialTable.from_headers(layout, headers, **kwargs)


class TestBlockLayout:

    @pytest.mark.parametrize(
        "flavor, ntypes, expected",
        [
            ("pair", 1, 1),
            ("pair", 3, 6),
            ("eam", 1, 3),
            ("eam", 2, 7),
            ("tbeam", 2, 11),
            ("adp", 2, 13),
            ("meam", 2, 12),
        ],
    )
    def test_block_count(self, flavor, ntypes, expected):
        assert len(BlockLayout.from_flavor(flavor, ntypes)) == expected

    def test_meam_order(self):
        layout = BlockLayout.from_flavor("meam", 1)
        assert layout.kinds() == [
            BlockKind.PAIR,
            BlockKind.TRANSFER,
            BlockKind.EMBEDDING,
            BlockKind.SECOND_PAIR,
            BlockKind.ANGULAR,
        ]
        assert layout.labels()[3] == "second_pair[0]"

    def test_unknown_flavor(self):
        with pytest.raises(ConfigError, match="Unknown model flavor"):
            BlockLayout.from_flavor("reaxff", 1)

    def test_rule_from_string(self):
        layout = BlockLayout.from_flavor("meam", 1, second_pair_rule="free_all")
        assert layout.second_pair_rule is SecondPairRule.FREE_ALL

    def test_pair_columns(self):
        assert [n_pair_columns(n) for n in (1, 2, 3, 4)] == [1, 3, 6, 10]


class TestTableGeometry:

    def test_offsets(self):
        layout = BlockLayout.from_flavor("eam", 1)
        table = SplinePotentialTable.from_headers(
            layout, [(0.0, 1.0, 4), (0.5, 2.0, 6), (0.0, 3.0, 7)]
        )
        assert list(table.first) == [2, 8, 16]
        assert list(table.last) == [5, 13, 22]
        assert table.len == 23

    def test_step_and_xcoord(self):
        layout = BlockLayout.from_flavor("pair", 1)
        table = SplinePotentialTable.from_headers(layout, [(1.0, 3.0, 5)])
        assert table.step[0] == pytest.approx(0.5)
        assert table.invstep[0] == pytest.approx(2.0)
        assert np.allclose(table.xcoord[2:7], [1.0, 1.5, 2.0, 2.5, 3.0])

    def test_gradient_defaults(self):
        layout = BlockLayout([
            (BlockKind.PAIR, 1),
            (BlockKind.EMBEDDING, 1),
            (BlockKind.QUADRUPOLE, 1),
            (BlockKind.ANGULAR, 1),
        ])
        table = SplinePotentialTable.from_headers(layout, [(0.0, 2.0, 3)] * 4)
        assert list(table.gradient_values(0)) == [NATURAL_BOUNDARY, 0.0]
        assert list(table.gradient_values(1)) == [NATURAL_BOUNDARY, NATURAL_BOUNDARY]
        assert list(table.gradient_values(2)) == [NATURAL_BOUNDARY, NATURAL_BOUNDARY]
        assert list(table.gradient_values(3)) == [0.0, 0.0]

    def test_flag_length_mismatch(self):
        layout = BlockLayout.from_flavor("eam", 1)
        with pytest.raises(ConfigError, match="invariant"):
            SplinePotentialTable.from_headers(layout, [(0.0, 2.0, 3)] * 3, invariant=[True])

    def test_too_few_points(self):
        layout = BlockLayout.from_flavor("pair", 1)
        with pytest.raises(ConfigError, match="npoints"):
            SplinePotentialTable.from_headers(layout, [(0.0, 2.0, 1)])


class TestIndexMap:

    def test_single_pair_block(self):
        table = _table("pair", 1, npoints=10)
        assert table.idxlen == 9
        assert list(table.idx) == list(range(2, 11))

    @pytest.mark.parametrize(
        "gradient, slots",
        [(0, []), (1, [1]), (2, [0]), (3, [0, 1])],
    )
    def test_gradient_bits(self, gradient, slots):
        table = _table("pair", 1, npoints=10, gradient=[gradient])
        assert [p for p in table.idx if p < 2] == slots
        assert table.idxlen == 9 + len(slots)

    def test_invariant_block(self):
        table = _table("eam", 1, invariant=[False, True, False], gradient=[3, 3, 3])
        assert table.idxlen == (2 + 4) + 0 + (2 + 5)

    def test_eam(self):
        table = _table("eam", 1, npoints=5)
        # embedding keeps its last knot free
        assert table.idxlen == 4 + 4 + 5
        bound = 3 * 5 + 2 * 3
        assert table.idxlen <= bound

    def test_meam_clamp_first(self):
        table = _table("meam", 1, npoints=5)
        second = table.blocks[3]
        assert second.first not in table.idx
        assert second.last not in table.idx
        assert table.idxlen == 4 + 4 + 5 + 3 + 5

    def test_meam_free_all(self):
        table = _table("meam", 1, npoints=5, second_pair_rule="free_all")
        second = table.blocks[3]
        assert second.first in table.idx
        assert second.last in table.idx
        assert table.idxlen == 4 + 4 + 5 + 5 + 5

    def test_meam_clamp_only_first_second_pair_block(self):
        table = _table("meam", 2, npoints=5)
        second = [b for b in table.blocks if b.kind is BlockKind.SECOND_PAIR]
        assert len(second) == 3
        assert second[0].first not in table.idx
        assert second[1].first in table.idx
        assert second[2].first in table.idx

    @pytest.mark.parametrize("flavor", ["pair", "eam", "tbeam", "adp", "meam"])
    def test_idx_invariants(self, flavor):
        table = _table(flavor, 2, npoints=6, gradient=None)
        pos = table.idx.positions
        assert np.all(np.diff(pos) > 0)
        assert pos[0] >= 0 and pos[-1] < table.len
        assert table.idxlen <= sum(b.npoints + 2 for b in table.blocks)

    @pytest.mark.parametrize(
        "flavor, expected",
        [
            ("pair", 4),
            ("eam", 4 + 4 + 5),
            ("tbeam", 4 + 4 + 5 + 4 + 5),
            ("adp", 4 + 4 + 5 + 4 + 4),
            ("meam", 4 + 4 + 5 + 3 + 5),
        ],
    )
    def test_exact_counts(self, flavor, expected):
        table = _table(flavor, 1, npoints=5)
        assert table.idxlen == expected

    def test_tbeam_sband_rules(self):
        table = _table("tbeam", 1, npoints=5)
        kinds = {b.kind: b for b in table.blocks}
        assert kinds[BlockKind.SBAND_TRANSFER].last not in table.idx
        assert kinds[BlockKind.SBAND_EMBEDDING].last in table.idx
        assert kinds[BlockKind.SBAND_EMBEDDING].first in table.idx

    def test_adp_dipole_quadrupole_pinned(self):
        table = _table("adp", 1, npoints=5)
        kinds = {b.kind: b for b in table.blocks}
        for kind in (BlockKind.DIPOLE, BlockKind.QUADRUPOLE):
            assert kinds[kind].last not in table.idx
            assert kinds[kind].first in table.idx

    def test_index_map_rejects_bad_positions(self):
        with pytest.raises(ValueError, match="strictly increasing"):
            FreeIndexMap([2, 2, 3], 10)
        with pytest.raises(ValueError, match="lie in"):
            FreeIndexMap([2, 10], 10)

    def test_index_map_contains_and_mask(self):
        idx = FreeIndexMap([1, 4, 7], 9)
        assert 4 in idx
        assert 5 not in idx
        assert idx.mask().sum() == 3
        assert np.array_equal(np.asarray(idx), [1, 4, 7])


class TestParams:

    def test_get_set_params(self):
        table = _table("pair", 1, npoints=6)
        xi = np.arange(1.0, 6.0)
        table.set_params(xi)
        assert np.array_equal(table.get_params(), xi)
        assert np.array_equal(table.table[2:7], xi)
        # pinned last knot untouched
        assert table.table[7] == 0.0

    def test_get_params_is_a_copy(self):
        table = _table("pair", 1, npoints=6)
        xi = table.get_params()
        xi[:] = 5.0
        assert np.all(table.get_params() == 0.0)

    def test_set_params_validation(self):
        table = _table("pair", 1, npoints=6)
        with pytest.raises(ValueError, match="shape mismatch"):
            table.set_params(np.zeros(4))
        with pytest.raises(ValueError, match="non-finite"):
            table.set_params(np.array([0.0, 1.0, np.nan, 0.0, 0.0]))

    def test_with_params_leaves_table(self):
        table = _table("pair", 1, npoints=6)
        full = table.with_params(np.ones(5))
        assert np.array_equal(full[2:7], np.ones(5))
        assert np.all(table.get_params() == 0.0)

    def test_param_names(self):
        table = _table("eam", 1, npoints=3, gradient=[2, 0, 0])
        names = table.param_names()
        assert names[0] == "pair[0]:grad0"
        assert names[1] == "pair[0]:k0"
        assert "transfer[0]:k2" not in names
        assert names[-1] == "embedding[0]:k2"
        assert len(names) == table.idxlen


class TestEvaluationView:

    def test_view_aliases_table(self):
        table = _table("pair", 1, npoints=6)
        view = table.evaluation_view()
        assert np.shares_memory(view.table, table.table)
        table.set_params(np.full(5, 2.5))
        assert np.all(view.table[view.idx] == 2.5)

    def test_view_is_read_only(self):
        table = _table("pair", 1, npoints=6)
        view = table.evaluation_view()
        with pytest.raises(ValueError):
            view.table[3] = 1.0
        view.d2tab[3] = 1.0
        assert table.d2tab[3] == 1.0

    def test_view_geometry(self):
        table = _table("eam", 1, npoints=4)
        view = table.evaluation_view()
        assert view.len == table.len
        assert view.idxlen == table.idxlen
        assert list(view.first) == list(table.first)
