import numpy as np
import pytest

from nonlin_min import ConstraintSpec
from nonlin_min.constraints import (
    as_constraint_spec,
    initial_constraint_values,
    linear_part,
    stack_constraints,
)
from nonlin_min.params import ParameterLayout


def _none(n):
    return np.zeros((n, 0)), np.zeros((0,))


# ---- input forms --------------------------------------------------------------


def test_accepted_input_forms():
    f = lambda p: p[:1]
    jac = lambda p: np.eye(1, p.size)

    assert not as_constraint_spec(None).has_linear
    assert as_constraint_spec(f).function is f
    assert as_constraint_spec((f, jac)).jacobian is jac

    spec = as_constraint_spec(([[1.0], [1.0]], [-1.0]))
    assert spec.has_linear and not spec.has_general

    spec = as_constraint_spec({"matrix": [[1.0]], "offset": [0.0], "function": f}, "equc")
    assert spec.has_linear and spec.has_general

    spec = ConstraintSpec.linear([[1.0]])
    assert as_constraint_spec(spec) is spec


def test_invalid_input_forms():
    with pytest.raises(ValueError, match="unknown keys"):
        as_constraint_spec({"matrix": [[1.0]], "rhs": [0.0]})
    with pytest.raises(TypeError, match="unsupported specification"):
        as_constraint_spec(3.0)
    with pytest.raises(ValueError, match="jacobian given without function"):
        as_constraint_spec({"jacobian": lambda p: p})
    with pytest.raises(ValueError, match="offset given without matrix"):
        as_constraint_spec({"offset": [1.0]})


def test_linear_part_wrong_dimensions():
    spec = ConstraintSpec.linear([[1.0, 0.0], [0.0, 1.0]], [0.0])
    with pytest.raises(ValueError, match="linear inequality constraints: wrong dimensions"):
        linear_part(spec, 2, "inequc")
    with pytest.raises(ValueError, match="linear equality constraints: wrong dimensions"):
        linear_part(ConstraintSpec.linear([[1.0], [1.0]]), 3, "equc")


def test_linear_part_defaults_offset_and_accepts_structures():
    m, v = linear_part(ConstraintSpec.linear([1.0, 1.0]), 2, "inequc")
    assert m.shape == (2, 1)
    np.testing.assert_array_equal(v, [0.0])

    layout = ParameterLayout.from_order(["a", "b"], [1, 2])
    spec = ConstraintSpec.linear({"b": [[1.0], [-1.0]]}, [[2.0]])
    m, v = linear_part(spec, 3, "inequc", layout)
    np.testing.assert_array_equal(m, [[0.0], [1.0], [-1.0]])
    np.testing.assert_array_equal(v, [2.0])

    with pytest.raises(ValueError, match="require specification of parameter order"):
        linear_part(spec, 3, "inequc")


# ---- stacking -----------------------------------------------------------------


def test_bound_rows_are_nonnegative_when_satisfied():
    st = stack_constraints(
        lbound=np.array([1.0, -np.inf]),
        ubound=np.array([np.inf, 3.0]),
        lin_inequ=_none(2),
        lin_equ=_none(2),
    )
    assert st.n_bounds == 2 and st.m == 2
    np.testing.assert_array_equal(st.f_cstr(np.array([1.5, 2.0])), [0.5, 1.0])
    np.testing.assert_array_equal(st.df_cstr(np.zeros(2)), [[1.0, 0.0], [0.0, -1.0]])


def test_row_order_and_equality_flags():
    st = stack_constraints(
        lbound=np.array([0.0, -np.inf]),
        ubound=np.array([np.inf, np.inf]),
        lin_inequ=(np.ones((2, 2)), np.zeros(2)),
        lin_equ=(np.ones((2, 1)), np.array([-1.0])),
        f_inequc=lambda p, idx=None: np.zeros(2),
        f_equc=lambda p, idx=None: np.zeros(3),
        n_gen_inequ=2,
        n_gen_equ=3,
    )
    np.testing.assert_array_equal(
        st.eq_idx, [False, False, False, True, False, False, True, True, True]
    )
    assert st.n_lin == 4 and st.n_gen == 5 and st.has_equalities
    np.testing.assert_array_equal(st.lin_equ_rows, np.arange(9) == 3)
    np.testing.assert_array_equal(st.gen_equ_rows, np.arange(9) >= 6)
    assert st.f_cstr(np.array([1.0, 2.0])).shape == (9,)


def test_general_rows_receive_block_indices():
    received = {"inequ": [], "equ": []}

    def f_in(p, idx=None):
        received["inequ"].append(idx)
        v = np.array([p[0], p[1], p[0] + p[1]])
        return v if idx is None else v[idx]

    def f_eq(p, idx=None):
        received["equ"].append(idx)
        v = np.array([p[0] - 1.0])
        return v if idx is None else v[idx]

    st = stack_constraints(
        lbound=np.full(2, -np.inf),
        ubound=np.full(2, np.inf),
        lin_inequ=(np.array([[1.0], [0.0]]), np.array([0.0])),
        lin_equ=_none(2),
        f_inequc=f_in,
        f_equc=f_eq,
        n_gen_inequ=3,
        n_gen_equ=1,
    )
    p = np.array([2.0, 3.0])

    np.testing.assert_array_equal(st.f_cstr(p), [2.0, 2.0, 3.0, 5.0, 1.0])
    assert received["inequ"][-1] is None and received["equ"][-1] is None

    out = st.f_cstr(p, np.array([True, False, True, False, False]))
    np.testing.assert_array_equal(out, [2.0, 3.0])
    np.testing.assert_array_equal(received["inequ"][-1], [False, True, False])
    assert len(received["equ"]) == 1

    # integer indices select the same rows
    np.testing.assert_array_equal(st.f_cstr(p, [0, 4]), [2.0, 1.0])


def test_values_are_passed_to_block_jacobians():
    got = []

    def df_in(p, idx=None, values=None):
        got.append(values)
        return np.array([[1.0, 1.0]])

    st = stack_constraints(
        lbound=np.array([0.0, -np.inf]),
        ubound=np.full(2, np.inf),
        lin_inequ=_none(2),
        lin_equ=_none(2),
        f_inequc=lambda p, idx=None: np.array([p.sum()]),
        df_inequc=df_in,
        n_gen_inequ=1,
    )
    jac = st.df_cstr(np.zeros(2), values=np.array([0.0, 7.0]))
    np.testing.assert_array_equal(jac, [[1.0, 0.0], [1.0, 1.0]])
    np.testing.assert_array_equal(got[0], [7.0])


def test_general_rows_need_a_function():
    with pytest.raises(ValueError, match="without constraint function"):
        stack_constraints(
            lbound=np.zeros(1),
            ubound=np.ones(1),
            lin_inequ=_none(1),
            lin_equ=_none(1),
            n_gen_equ=1,
        )


def test_initial_constraint_values():
    p = np.array([1.0, 2.0])
    vals = initial_constraint_values(
        p,
        (np.array([[1.0], [1.0]]), np.array([-1.0])),
        (np.array([[1.0], [-1.0]]), np.array([0.0])),
        lambda q: np.array([q[0] * q[1]]),
        None,
    )
    np.testing.assert_array_equal(vals["inequ"]["lin_except_bounds"], [2.0])
    np.testing.assert_array_equal(vals["inequ"]["gen"], [2.0])
    np.testing.assert_array_equal(vals["equ"]["lin"], [-1.0])
    assert vals["equ"]["gen"].shape == (0,)
