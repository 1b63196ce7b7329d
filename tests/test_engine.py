"""
Unit Tests: Operators and Gradient Rules
========================================

Every operator must produce the right forward value, put the right number
of nodes on the tape and push the right local derivatives back. Where
PyTorch is installed, gradients are also checked against it.

Run with: pytest tests/test_engine.py -v
"""

import math

import pytest

from micrograd_tape import (
    OpKind,
    Session,
    StaleReferenceError,
    add,
    divide,
    exp,
    multiply,
    power,
    relu,
    subtract,
    tanh,
    true_divide,
)

try:
    import torch
    TORCH_AVAILABLE = True
except ImportError:
    TORCH_AVAILABLE = False


# =============================================================================
# Test Configuration
# =============================================================================

TOLERANCE = 1e-6


def assert_close(actual: float, expected: float, tol: float = TOLERANCE) -> None:
    """Assert two values are approximately equal."""
    diff = abs(actual - expected)
    assert diff < tol, f"Values differ: {actual} vs {expected} (diff={diff})"


@pytest.fixture
def s() -> Session:
    with Session() as session:
        yield session


# =============================================================================
# Forward Values
# =============================================================================

class TestForward:
    """Forward values and tape layout of each operator."""

    def test_constant(self, s: Session) -> None:
        v = s.constant(3.14)
        assert v.data == 3.14
        assert v.grad == 0.0
        assert v.op is OpKind.NOOP
        assert v.prev == ()
        assert v.tape_idx == 0

    def test_constant_with_label(self, s: Session) -> None:
        v = s.constant(2.0, label='x')
        assert v.label == 'x'
        assert 'x' in repr(v)

    def test_addition(self, s: Session) -> None:
        c = add(s.constant(2.0), s.constant(3.0))
        assert c.data == 5.0
        assert c.op is OpKind.ADD

    def test_subtraction(self, s: Session) -> None:
        c = subtract(s.constant(5.0), s.constant(3.0))
        assert c.data == 2.0

    def test_multiplication(self, s: Session) -> None:
        c = multiply(s.constant(2.0), s.constant(3.0))
        assert c.data == 6.0

    def test_power(self, s: Session) -> None:
        c = power(s.constant(2.0), 3)
        assert c.data == 8.0
        # exponent is a leaf created just before the output
        base, exponent = c.prev
        assert exponent.data == 3.0
        assert exponent.op is OpKind.NOOP
        assert exponent.tape_idx == c.tape_idx - 1

    def test_divide_uses_reciprocal(self, s: Session) -> None:
        a, b = s.constant(6.0), s.constant(2.0)
        c = divide(a, b)
        assert c.data == 3.0
        assert c.op is OpKind.MUL
        # a, b, exponent leaf, b**-1, product
        assert len(s.tape) == 5
        reciprocal = c.prev[1]
        assert reciprocal.op is OpKind.POW
        assert reciprocal.tape_idx < c.tape_idx

    def test_true_divide_is_one_node(self, s: Session) -> None:
        c = true_divide(s.constant(6.0), s.constant(2.0))
        assert c.data == 3.0
        assert c.op is OpKind.DIV
        assert len(s.tape) == 3

    def test_exp(self, s: Session) -> None:
        assert_close(exp(s.constant(2.0)).data, math.exp(2.0))

    def test_tanh(self, s: Session) -> None:
        assert_close(tanh(s.constant(0.5)).data, math.tanh(0.5))

    def test_tanh_zero(self, s: Session) -> None:
        assert abs(tanh(s.constant(0.0)).data) < 1e-4

    def test_relu(self, s: Session) -> None:
        assert relu(s.constant(-2.0)).data == 0.0
        assert relu(s.constant(5.0)).data == 5.0

    def test_operator_overloading(self, s: Session) -> None:
        a = s.constant(2.0)
        assert (a + 3).data == 5.0
        assert (3 + a).data == 5.0
        assert (a - 3).data == -1.0
        assert (3 - a).data == 1.0
        assert (a * 3).data == 6.0
        assert (3 * a).data == 6.0
        assert (a / 4).data == 0.5
        assert (4 / a).data == 2.0
        assert (-a).data == -2.0
        assert (a ** 2).data == 4.0

    def test_method_forms(self, s: Session) -> None:
        a = s.constant(0.5)
        assert_close(a.exp().data, math.exp(0.5))
        assert_close(a.tanh().data, math.tanh(0.5))
        assert a.relu().data == 0.5

    def test_item_returns_float(self, s: Session) -> None:
        v = s.constant(1.5)
        assert isinstance(v.item(), float)
        assert v.item() == 1.5

    def test_creation_index_exceeds_predecessors(self, s: Session) -> None:
        a, b = s.constant(1.0), s.constant(2.0)
        out = ((a * b + a) / b).tanh().relu() ** 2
        for node in s.tape:
            for parent in node.prev:
                assert parent.tape_idx < node.tape_idx
        assert out.tape_idx == len(s.tape) - 1


# =============================================================================
# Backward Pass
# =============================================================================

class TestBackwardBasics:
    """Local gradient rules through a linear-sweep backward pass."""

    def test_scale_expression(self, s: Session) -> None:
        """z = a*b + c at a=2, b=3, c=1."""
        a, b, c = s.constant(2.0), s.constant(3.0), s.constant(1.0)
        z = add(multiply(a, b), c)
        assert z.data == 7.0

        s.backward(z, retain_graph=True)
        assert a.grad == 3.0
        assert b.grad == 2.0
        assert c.grad == 1.0
        assert z.grad == 1.0

    def test_subtraction_backward(self, s: Session) -> None:
        a, b = s.constant(5.0), s.constant(3.0)
        s.backward(a - b, retain_graph=True)
        assert a.grad == 1.0
        assert b.grad == -1.0

    def test_divide_backward(self, s: Session) -> None:
        a, b = s.constant(6.0), s.constant(2.0)
        s.backward(a / b, retain_graph=True)
        assert_close(a.grad, 0.5)
        assert_close(b.grad, -1.5)

    def test_true_divide_backward(self, s: Session) -> None:
        a, b = s.constant(6.0), s.constant(2.0)
        s.backward(true_divide(a, b), retain_graph=True)
        assert_close(a.grad, 0.5)
        assert_close(b.grad, -1.5)

    def test_power_backward(self, s: Session) -> None:
        x = s.constant(3.0)
        y = x ** 2
        s.backward(y, retain_graph=True)
        assert x.grad == 6.0
        # the exponent leaf is never differentiated
        assert y.prev[1].grad == 0.0

    def test_exp_backward(self, s: Session) -> None:
        x = s.constant(1.5)
        s.backward(x.exp(), retain_graph=True)
        assert_close(x.grad, math.exp(1.5))

    def test_tanh_backward(self, s: Session) -> None:
        x = s.constant(0.5)
        s.backward(x.tanh(), retain_graph=True)
        assert_close(x.grad, 1 - math.tanh(0.5) ** 2)

    def test_relu_backward_negative(self, s: Session) -> None:
        x = s.constant(-2.0)
        r = x.relu()
        s.backward(r, retain_graph=True)
        assert r.data == 0.0
        assert x.grad == 0.0

    def test_relu_backward_positive(self, s: Session) -> None:
        x = s.constant(5.0)
        r = x.relu()
        s.backward(r, retain_graph=True)
        assert r.data == 5.0
        assert x.grad == 1.0

    def test_chain_rule(self, s: Session) -> None:
        x = s.constant(2.0)
        y = x * x
        z = y * y
        s.backward(z, retain_graph=True)
        # dz/dx = 4x^3
        assert x.grad == 32.0

    def test_fan_out_accumulates(self, s: Session) -> None:
        a = s.constant(2.0)
        b = a + a
        s.backward(b, retain_graph=True)
        assert a.grad == 2.0

    def test_polynomial(self, s: Session) -> None:
        """f(a, b) = a^2 + 3b - 5 at a=3, b=2."""
        a, b = s.constant(3.0), s.constant(2.0)
        f = a ** 2 + 3 * b + (-5)
        assert f.data == 10.0
        s.backward(f, retain_graph=True)
        assert a.grad == 6.0
        assert b.grad == 3.0

    def test_neuron_expression(self, s: Session) -> None:
        """out = tanh(w*x + b)."""
        x, w, b = s.constant(1.0), s.constant(0.5), s.constant(0.2)
        out = (w * x + b).tanh()
        s.backward(out, retain_graph=True)
        local = 1 - math.tanh(0.7) ** 2
        assert_close(out.data, math.tanh(0.7))
        assert_close(w.grad, local * 1.0)
        assert_close(x.grad, local * 0.5)

    def test_node_backward_method(self, s: Session) -> None:
        x = s.constant(3.0)
        y = x * x
        y.backward(retain_graph=True)
        assert x.grad == 6.0

    def test_default_backward_resets_tape(self, s: Session) -> None:
        x = s.constant(3.0)
        w = s.create_parameter(2.0)
        y = x * w
        s.backward(y)
        assert len(s.tape) == 0
        assert w.grad == 3.0
        with pytest.raises(StaleReferenceError):
            x.grad

    def test_parameter_root(self, s: Session) -> None:
        w = s.create_parameter(4.0)
        s.backward(w, retain_graph=True)
        assert w.grad == 1.0
        assert s.last_backward.visited == 0


# =============================================================================
# PyTorch Comparison Tests
# =============================================================================

@pytest.mark.skipif(not TORCH_AVAILABLE, reason="PyTorch not installed")
class TestPyTorchComparison:
    """Compare our gradients against PyTorch's gradients."""

    def test_complex_expression_1(self, s: Session) -> None:
        """(a + b) * (b + 1)."""
        a, b = s.constant(2.0), s.constant(3.0)
        c = (a + b) * (b + 1)
        s.backward(c, retain_graph=True)

        a_t = torch.tensor(2.0, dtype=torch.float64, requires_grad=True)
        b_t = torch.tensor(3.0, dtype=torch.float64, requires_grad=True)
        c_t = (a_t + b_t) * (b_t + 1)
        c_t.backward()

        assert_close(c.data, c_t.item())
        assert_close(a.grad, a_t.grad.item())
        assert_close(b.grad, b_t.grad.item())

    def test_complex_expression_2(self, s: Session) -> None:
        """tanh(a * b + a^2)."""
        a, b = s.constant(1.0), s.constant(2.0)
        c = (a * b + a ** 2).tanh()
        s.backward_dfs(c, retain_graph=True)

        a_t = torch.tensor(1.0, dtype=torch.float64, requires_grad=True)
        b_t = torch.tensor(2.0, dtype=torch.float64, requires_grad=True)
        c_t = torch.tanh(a_t * b_t + a_t ** 2)
        c_t.backward()

        assert_close(c.data, c_t.item())
        assert_close(a.grad, a_t.grad.item())
        assert_close(b.grad, b_t.grad.item())

    def test_neuron_like(self, s: Session) -> None:
        """relu(w1*x1 + w2*x2 + b) / exp(b)."""
        w1, w2 = s.create_parameter(0.5), s.create_parameter(-0.3)
        b = s.create_parameter(0.1)
        x1, x2 = s.constant(2.0), s.constant(3.0)
        out = (w1 * x1 + w2 * x2 + b).relu() / b.exp()
        data = out.item()
        s.backward(out)

        w1_t = torch.tensor(0.5, dtype=torch.float64, requires_grad=True)
        w2_t = torch.tensor(-0.3, dtype=torch.float64, requires_grad=True)
        b_t = torch.tensor(0.1, dtype=torch.float64, requires_grad=True)
        out_t = torch.relu(w1_t * 2.0 + w2_t * 3.0 + b_t) / torch.exp(b_t)
        out_t.backward()

        assert_close(data, out_t.item())
        assert_close(w1.grad, w1_t.grad.item())
        assert_close(w2.grad, w2_t.grad.item())
        assert_close(b.grad, b_t.grad.item())

    def test_long_chain(self, s: Session) -> None:
        a = s.constant(0.5)
        b = a
        for _ in range(10):
            b = b * a + a
        s.backward(b, retain_graph=True)

        a_t = torch.tensor(0.5, dtype=torch.float64, requires_grad=True)
        b_t = a_t
        for _ in range(10):
            b_t = b_t * a_t + a_t
        b_t.backward()

        assert_close(b.data, b_t.item())
        assert_close(a.grad, a_t.grad.item(), tol=1e-4)


# =============================================================================
# Edge Cases and Error Handling
# =============================================================================

class TestEdgeCases:
    """Numeric degeneracy and input validation."""

    def test_division_by_zero_is_inf(self, s: Session) -> None:
        c = s.constant(1.0) / s.constant(0.0)
        assert math.isinf(c.data)

    def test_true_division_by_zero_is_inf(self, s: Session) -> None:
        c = true_divide(s.constant(1.0), s.constant(0.0))
        assert math.isinf(c.data)

    def test_zero_over_zero_is_nan(self, s: Session) -> None:
        c = true_divide(s.constant(0.0), s.constant(0.0))
        assert math.isnan(c.data)

    def test_degenerate_backward_does_not_raise(self, s: Session) -> None:
        x = s.constant(0.0)
        y = s.constant(1.0) / x
        s.backward(y, retain_graph=True)
        assert not math.isfinite(x.grad)

    def test_negative_base_fractional_power_is_nan(self, s: Session) -> None:
        c = s.constant(-8.0) ** (1 / 3)
        assert math.isnan(c.data)

    def test_exp_overflow_is_inf(self, s: Session) -> None:
        assert math.isinf(s.constant(1000.0).exp().data)

    def test_tanh_saturates(self, s: Session) -> None:
        assert s.constant(1000.0).tanh().data == 1.0

    def test_negative_power(self, s: Session) -> None:
        assert (s.constant(2.0) ** -1).data == 0.5

    def test_fractional_power(self, s: Session) -> None:
        assert (s.constant(4.0) ** 0.5).data == 2.0

    def test_small_values(self, s: Session) -> None:
        assert_close((s.constant(1e-10) * s.constant(1e-10)).data, 1e-20)

    def test_type_error_on_invalid_data(self, s: Session) -> None:
        with pytest.raises(TypeError):
            s.constant("not a number")
        with pytest.raises(TypeError):
            s.constant(True)

    def test_node_exponent_rejected(self, s: Session) -> None:
        a, b = s.constant(2.0), s.constant(3.0)
        with pytest.raises(TypeError):
            a ** b
        with pytest.raises(TypeError):
            power(a, b)

    def test_sessions_do_not_mix(self, s: Session) -> None:
        with Session() as other:
            with pytest.raises(ValueError):
                s.constant(1.0) + other.constant(2.0)
            with pytest.raises(ValueError):
                s.backward(other.constant(1.0))
