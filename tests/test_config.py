import numpy as np
import pytest

from nonlin_min import default_settings, optimset
from nonlin_min.config import OptionalVector, resolve_config
from nonlin_min.params import ParameterLayout
from nonlin_min.settings import Options


def _layout() -> ParameterLayout:
    return ParameterLayout.from_order(["a", "b"], [3, 1])


# ---- settings -----------------------------------------------------------------


def test_option_lookup_is_case_insensitive():
    opts = Options({"algorithm": "siman", "tolfun": 1e-3})
    assert opts.get("Algorithm") == "siman"
    assert opts.get("TolFun") == 1e-3
    assert opts.given("TOLFUN")
    assert not opts.given("TolX")
    assert opts.get("T_init") == 0.01


def test_unknown_option_raises():
    with pytest.raises(ValueError, match="Unknown option 'tol_fun'"):
        Options({"tol_fun": 1.0})


def test_option_given_twice_raises():
    with pytest.raises(ValueError, match="more than once"):
        Options({"TolFun": 1.0, "tolfun": 2.0})


def test_optimset_and_defaults():
    assert optimset(TolFun=1e-3, algorithm="d2_min") == {
        "TolFun": 1e-3,
        "Algorithm": "d2_min",
    }
    defaults = default_settings()
    assert defaults["Algorithm"] == "lm_feasible"
    assert defaults["cstep"] == 1e-20
    assert defaults["mu_T"] == 1.005
    with pytest.raises(ValueError):
        optimset(not_an_option=1)


# ---- resolution -----------------------------------------------------------------


def test_all_defaults():
    cfg = resolve_config(3, Options({}))

    assert np.all(cfg.lbound == -np.inf)
    assert np.all(cfg.ubound == np.inf)
    assert not np.any(cfg.fixed)
    assert not np.any(cfg.diff_onesided)
    for item in (cfg.diffp, cfg.TypicalX, cfg.fract_prec, cfg.max_fract_change, cfg.max_rand_step):
        assert isinstance(item, OptionalVector)
        assert not item.any_given
        assert len(item) == 3


def test_scalar_broadcast_and_column_vectors():
    cfg = resolve_config(3, Options({"lbound": 0.0, "ubound": [[1.0], [2.0], [3.0]]}))
    np.testing.assert_array_equal(cfg.lbound, [0.0, 0.0, 0.0])
    np.testing.assert_array_equal(cfg.ubound, [1.0, 2.0, 3.0])


def test_nan_means_unset():
    cfg = resolve_config(3, Options({"diffp": [1e-4, np.nan, 1e-5], "fixed": [1, np.nan, 0]}))
    np.testing.assert_array_equal(cfg.diffp.given, [True, False, True])
    np.testing.assert_array_equal(cfg.diffp.filled(9.0), [1e-4, 9.0, 1e-5])
    np.testing.assert_array_equal(cfg.fixed, [True, False, False])


def test_table_and_vector_modes_agree():
    layout = _layout()
    table = {
        "a": {
            "lbound": [0.0, 1.0, 2.0],
            "fixed": [False, True, False],
            "diffp": np.full(3, 1e-4),
        },
        "b": {"ubound": 5.0, "TypicalX": 2.0},
    }
    cfg_t = resolve_config(4, Options({"param_config": table}), layout)

    vectors = {
        "lbound": [0.0, 1.0, 2.0, -np.inf],
        "ubound": [np.inf, np.inf, np.inf, 5.0],
        "fixed": [0, 1, 0, 0],
        "diffp": [1e-4, 1e-4, 1e-4, np.nan],
        "TypicalX": [np.nan, np.nan, np.nan, 2.0],
    }
    cfg_v = resolve_config(4, Options(vectors), layout)

    np.testing.assert_array_equal(cfg_t.lbound, cfg_v.lbound)
    np.testing.assert_array_equal(cfg_t.ubound, cfg_v.ubound)
    np.testing.assert_array_equal(cfg_t.fixed, cfg_v.fixed)
    np.testing.assert_array_equal(cfg_t.diff_onesided, cfg_v.diff_onesided)
    assert cfg_t.diffp == cfg_v.diffp
    assert cfg_t.TypicalX == cfg_v.TypicalX
    assert cfg_t.max_rand_step == cfg_v.max_rand_step


def test_table_scalar_for_multi_element_block():
    layout = _layout()
    with pytest.raises(ValueError, match="has 1 elements"):
        resolve_config(4, Options({"param_config": {"a": {"lbound": 0.0}}}), layout)
    with pytest.raises(ValueError, match="has 2 elements"):
        resolve_config(4, Options({"param_config": {"a": {"lbound": [0.0, 1.0]}}}), layout)

    cfg = resolve_config(
        4, Options({"param_config": {"a": {"lbound": [0.0, 0.0, 0.0]}, "b": {"lbound": 1.0}}}), layout
    )
    np.testing.assert_array_equal(cfg.lbound, [0.0, 0.0, 0.0, 1.0])


def test_table_errors():
    layout = _layout()
    with pytest.raises(ValueError, match="unknown parameter names"):
        resolve_config(4, Options({"param_config": {"z": {}}}), layout)
    with pytest.raises(ValueError, match="unknown item 'lower'"):
        resolve_config(4, Options({"param_config": {"b": {"lower": 1.0}}}), layout)
    with pytest.raises(ValueError, match="must not be configured in another way"):
        resolve_config(
            4, Options({"param_config": {"b": {"lbound": 1.0}}, "ubound": 3.0}), layout
        )
    with pytest.raises(ValueError, match="require specification of parameter order"):
        resolve_config(4, Options({"param_config": {"b": {"lbound": 1.0}}}))


def test_lower_bound_above_upper_bound_raises():
    with pytest.raises(ValueError, match="some lower bounds larger than upper bounds"):
        resolve_config(1, Options({"lbound": [2.0], "ubound": [1.0]}))


def test_wrong_dimensions_raise():
    with pytest.raises(ValueError, match="diffp: wrong dimensions"):
        resolve_config(3, Options({"diffp": [1e-3, 1e-3]}))


@pytest.mark.parametrize(
    "settings, match",
    [
        ({"TypicalX": [1.0, 0.0]}, "TypicalX must not be zero"),
        ({"diffp": [1e-3, 0.0]}, "'diffp' non-positive"),
        ({"fract_prec": -1.0}, "'fract_prec' negative"),
        ({"max_fract_change": [-0.1, 1.0]}, "'max_fract_change' negative"),
        ({"FinDiffType": "sideways"}, "invalid value of 'FinDiffType'"),
    ],
)
def test_invalid_values_raise(settings, match):
    with pytest.raises(ValueError, match=match):
        resolve_config(2, Options(settings))


def test_fin_diff_type_overrides_diff_onesided_with_warning():
    with pytest.warns(UserWarning, match="'FinDiffType' overrides option 'diff_onesided'"):
        cfg = resolve_config(2, Options({"diff_onesided": [1, 0], "FinDiffType": "central"}))
    np.testing.assert_array_equal(cfg.diff_onesided, [False, False])

    cfg = resolve_config(2, Options({"FinDiffType": "forward"}))
    np.testing.assert_array_equal(cfg.diff_onesided, [True, True])


def test_fin_diff_rel_step_overrides_diffp():
    with pytest.warns(UserWarning, match="'FinDiffRelStep' overrides option 'diffp'"):
        cfg = resolve_config(
            2, Options({"FinDiffRelStep": 1e-2, "diffp": 1e-3, "FinDiffType": "forward"})
        )
    np.testing.assert_allclose(cfg.diffp.filled(0.0), [1e-2, 1e-2])

    # central differences use half the relative step
    cfg = resolve_config(2, Options({"FinDiffRelStep": 1e-2}))
    np.testing.assert_allclose(cfg.diffp.filled(0.0), [5e-3, 5e-3])


def test_subset_keeps_given_masks():
    cfg = resolve_config(3, Options({"diffp": [1e-4, np.nan, 1e-5], "lbound": [0.0, 1.0, 2.0]}))
    sub = cfg.subset(np.array([True, False, True]))
    assert sub.n == 2
    np.testing.assert_array_equal(sub.lbound, [0.0, 2.0])
    np.testing.assert_array_equal(sub.diffp.given, [True, True])
