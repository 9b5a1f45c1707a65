"""Tests for the standard-gate circuit builder and the in-circuit Poseidon."""

import pytest

from constraints.builder import CircuitBuilder, CustomGate
from constraints.expression import Advice
from constraints.gadgets import SpongeGadget, hash_gadget, permute as permute_gadget
from primitives.field import FFq, P, Q
from primitives.poseidon import Domain, Sponge, hash_elements, permute
from protocol.errors import ConstraintViolation
from tests.conftest import SMALL_POSEIDON


def _check(builder: CircuitBuilder) -> None:
    """The builder's region must satisfy its own standalone system."""
    system, advice = builder.to_system()
    system.check_assignment(advice)


class TestArithmetic:

    def test_basic_gates(self) -> None:
        b = CircuitBuilder()
        x, y = b.assign(6), b.assign(7)
        assert b.value(b.add(x, y)) == 13
        assert b.value(b.sub(x, y)) == P - 1
        assert b.value(b.mul(x, y)) == 42
        assert b.value(b.add_constant(x, -10)) == P - 4
        assert b.value(b.scale(y, 3)) == 21
        assert b.value(b.mul_add(x, y, x)) == 48
        _check(b)

    def test_linear_over_many_terms(self) -> None:
        b = CircuitBuilder()
        xs = [b.assign(i + 1) for i in range(7)]
        out = b.linear([(x, i) for i, x in enumerate(xs)], constant=5)
        assert b.value(out) == (sum(i * (i + 1) for i in range(7)) + 5) % P
        _check(b)

    def test_constants_shared(self) -> None:
        b = CircuitBuilder()
        assert b.constant(9) == b.constant(9)
        assert b.num_rows == 1
        _check(b)

    @pytest.mark.parametrize("value, expected", [(0, 1), (5, 0), (P - 1, 0)])
    def test_is_zero(self, value, expected) -> None:
        b = CircuitBuilder()
        flag = b.is_zero(b.assign(value))
        assert b.value(flag) == expected
        assert b.value(b.negate_bool(flag)) == 1 - expected
        _check(b)

    def test_select(self) -> None:
        b = CircuitBuilder()
        one, zero = b.assign(1), b.assign(0)
        x, y = b.assign(10), b.assign(20)
        assert b.value(b.select(one, x, y)) == 10
        assert b.value(b.select(zero, x, y)) == 20
        _check(b)


class TestAssertions:

    def test_assert_zero(self) -> None:
        b = CircuitBuilder()
        b.assert_zero(b.sub(b.assign(3), b.assign(3)))
        _check(b)
        with pytest.raises(ConstraintViolation):
            b.assert_zero(b.assign(1))

    def test_assert_equal_uses_copies(self) -> None:
        b = CircuitBuilder()
        x = b.add(b.assign(1), b.assign(2))
        y = b.add(b.assign(2), b.assign(1))
        rows = b.num_rows
        b.assert_equal(x, y)
        assert b.num_rows == rows
        layout = b.layout()
        x_cell, y_cell = (2, 0), (2, 1)
        assert (x_cell, y_cell) in layout.copies
        _check(b)

    def test_assert_equal_mismatch(self) -> None:
        b = CircuitBuilder()
        with pytest.raises(ConstraintViolation):
            b.assert_equal(b.assign(1), b.assign(2))

    def test_conditional_assertions(self) -> None:
        b = CircuitBuilder()
        on, off = b.assign(1), b.assign(0)
        x, y = b.assign(4), b.assign(5)
        b.assert_equal_if(off, x, y)
        b.assert_constant_if(off, x, 9)
        b.assert_constant_if(on, x, 4)
        _check(b)
        with pytest.raises(ConstraintViolation):
            b.assert_equal_if(on, x, y)
        with pytest.raises(ConstraintViolation):
            b.assert_constant_if(on, y, 4)

    def test_assert_zero_if(self) -> None:
        b = CircuitBuilder()
        on, off = b.assign(1), b.assign(0)
        b.assert_zero_if(off, b.assign(7))
        b.assert_zero_if(on, b.assign(0))
        _check(b)
        with pytest.raises(ConstraintViolation):
            b.assert_zero_if(on, b.assign(7))

    def test_inverse(self) -> None:
        b = CircuitBuilder()
        x = b.assign(12345)
        assert b.value(b.mul(x, b.inverse(x))) == 1
        _check(b)
        with pytest.raises(ConstraintViolation):
            b.inverse(b.assign(0))


class TestCustomGates:

    @staticmethod
    def _double_gate() -> CustomGate:
        """Column 1 holds twice column 0 of the same row."""
        return CustomGate("double", (Advice(1) - 2 * Advice(0),))

    def test_gates_multiply_constraints_by_their_selector(self) -> None:
        b = CircuitBuilder(custom_gates=[self._double_gate()])
        gates = b.gates()
        assert [g.name for g in gates] == ["standard", "double_0"]
        assert gates[1].expression.degree() == 1
        assert b.num_columns == 8 and b.num_selectors == 7

    def test_gate_row_enables_selector(self) -> None:
        b = CircuitBuilder(custom_gates=[self._double_gate()])
        x = b.assign(21)
        b.gate_row([x, b.assign(42)], "double")
        layout = b.layout()
        assert layout.selectors[6] == [1]
        _check(b)

    def test_custom_gate_is_enforced(self) -> None:
        b = CircuitBuilder(custom_gates=[self._double_gate()])
        b.gate_row([b.assign(21), b.assign(41)], "double")
        system, advice = b.to_system()
        with pytest.raises(ConstraintViolation):
            system.check_assignment(advice)

    def test_row_wider_than_region(self) -> None:
        with pytest.raises(ValueError):
            CircuitBuilder().gate_row([None] * 5)

    def test_builder_over_base_field(self) -> None:
        b = CircuitBuilder(FFq)
        out = b.add(b.assign(Q - 1), b.assign(2))
        assert b.value(out) == 1
        system, advice = b.to_system()
        assert system.field is FFq
        system.check_assignment(advice)


class TestLayout:

    def test_public_cells(self) -> None:
        b = CircuitBuilder()
        out = b.mul(b.assign(3), b.assign(4))
        b.public(out)
        system, advice = b.to_system()
        assert system.num_public == 1
        system.check_assignment(advice, public_inputs=[12])

    def test_padding(self) -> None:
        b = CircuitBuilder()
        b.mul(b.assign(3), b.assign(4))
        layout = b.layout(8)
        assert layout.num_rows == 8
        assert all(len(w) == 8 for w in layout.wires)
        with pytest.raises(ValueError):
            b.layout(0)

    def test_layout_independent_of_values(self) -> None:
        def region(v):
            b = CircuitBuilder()
            x = b.assign(v)
            flag = b.is_zero(x)
            b.public(b.mul_add(flag, x, b.constant(3)))
            return b.layout()

        a, c = region(0), region(17)
        assert a.selectors == c.selectors
        assert a.copies == c.copies
        assert a.public_cells == c.public_cells


class TestPoseidonGadget:

    def test_permutation_matches_native(self) -> None:
        b = CircuitBuilder()
        state = [b.assign(v) for v in (1, 2, 3)]
        out = permute_gadget(b, state, SMALL_POSEIDON)
        assert [b.value(v) for v in out] == permute([1, 2, 3], SMALL_POSEIDON)
        _check(b)

    @pytest.mark.parametrize("count", [0, 1, 2, 5])
    def test_hash_matches_native(self, count) -> None:
        values = [7 * i + 1 for i in range(count)]
        b = CircuitBuilder()
        out = hash_gadget(b, SMALL_POSEIDON, Domain.DIGEST, [b.assign(v) for v in values])
        assert b.value(out) == hash_elements(SMALL_POSEIDON, Domain.DIGEST, values)
        _check(b)

    def test_sponge_squeezes_match(self) -> None:
        b = CircuitBuilder()
        gadget = SpongeGadget(b, SMALL_POSEIDON, Domain.CHALLENGE)
        native = Sponge(SMALL_POSEIDON, Domain.CHALLENGE)
        for v in (5, 6, 7):
            gadget.absorb(b.assign(v))
            native.absorb(v)
        assert [b.value(gadget.squeeze()) for _ in range(3)] == [native.squeeze() for _ in range(3)]
        _check(b)
