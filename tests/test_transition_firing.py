"""
Tests for Transition.execute().

Run with: pytest tests/test_transition_firing.py -v
"""

import pytest

from cpnkit.cpn.colorsets import ColorSet, ColorTag
from cpnkit.cpn.cpn_imp import CPN, InputArc, OutputArc, Place, Token, Transition
from cpnkit.cpn.exceptions import FiringError, InsufficientTokensError, TransitionNotEnabledError


def total_tokens(*places):
    return sum(p.token_count() for p in places)


class TestTokenFlow:

    def test_weights_are_consumed_and_produced(self):
        a = Place("A", tokens=[1, 2, 3])
        b = Place("B", tokens=["x", "y"])
        out1, out2 = Place("O1"), Place("O2")
        t = Transition("T", ColorSet("int", "string"))
        t.add_input(InputArc(a, 2)).add_input(InputArc(b, 1))
        t.add_output(OutputArc(out1, 3)).add_output(OutputArc(out2, 1))

        before = total_tokens(a, b, out1, out2)
        t.execute()

        assert a.token_count() == 1
        assert b.token_count() == 1
        assert out1.token_count() == 3
        assert out2.token_count() == 1
        assert total_tokens(a, b, out1, out2) - before == (3 + 1) - (2 + 1)

    def test_oldest_tokens_are_consumed(self):
        a = Place("A", tokens=[1, 2, 3])
        t = Transition("T").add_input(InputArc(a, 2)).add_output(OutputArc(Place("O")))
        t.execute()
        assert list(a) == [Token(3)]

    def test_copies_the_first_value_of_the_declared_color(self):
        ints = Place("Ints", tokens=[7])
        strings = Place("Strings", tokens=["seven"])
        out = Place("Out")
        t = Transition("T", ColorSet("string", "int"))
        t.add_input(InputArc(ints)).add_input(InputArc(strings)).add_output(OutputArc(out, 2))
        t.execute()
        assert list(out) == [Token(7), Token(7)]

    def test_output_copies_transformed_input(self):
        # A float input can still feed an int-only transition after the
        # input arc turns it into an int; the output copies that int.
        b = Place("B", tokens=[2.5])
        out_b = Place("OutB", ColorSet("int"))
        t2 = Transition("T2", ColorSet("int")).add_input(InputArc(b, expression="int(x)"))
        t2.add_output(OutputArc(out_b))
        t2.execute()
        assert list(out_b) == [Token(2)]

    def test_value_is_coerced_when_no_input_matches(self):
        # Both arcs read P. The second arc covers 'int' with the first token,
        # but when firing it consumes the next one, which stays a float.
        p = Place("P", tokens=[1.5, 2.5])
        out = Place("Out")
        t = Transition("T", ColorSet("int"))
        t.add_input(InputArc(p)).add_input(InputArc(p, expression=lambda v: [int(v)] if v < 2 else [v]))
        t.add_output(OutputArc(out))
        assert t.is_enabled()
        t.execute()
        assert list(out) == [Token(1)]
        assert p.token_count() == 0

    def test_output_expression_receives_collected_inputs(self):
        a = Place("A", tokens=[1, 2])
        b = Place("B", tokens=["x"])
        out = Place("Out")
        t = Transition("T", ColorSet("int", "string"))
        t.add_input(InputArc(a, 2)).add_input(InputArc(b))
        t.add_output(OutputArc(out, expression=lambda values: [sum(values[:2]), values[2]]))
        t.execute()
        assert list(out) == [Token((3, "x"))]
        assert out.first_token().color is ColorTag.TUPLE

    def test_input_expression_selects_eligible_tokens(self):
        # Only even numbers survive the input expression.
        def even(value):
            if value % 2:
                raise ValueError("odd")
            return [value]

        a = Place("A", tokens=[2, 3, 4, 5])
        out = Place("Out")
        t = Transition("T").add_input(InputArc(a, 2, expression=even)).add_output(OutputArc(out, expression="x"))
        t.execute()
        assert list(a) == [Token(3), Token(5)]
        assert list(out) == [Token((2, 4))]

    def test_two_arcs_on_the_same_place_take_different_tokens(self):
        a = Place("A", tokens=[1, 2, 3])
        t = Transition("T").add_input(InputArc(a)).add_input(InputArc(a))
        t.add_output(OutputArc(Place("Out")))
        t.execute()
        assert list(a) == [Token(3)]


class TestFailures:

    def test_not_enabled(self):
        a = Place("A", tokens=[1])
        t = Transition("T").add_input(InputArc(a, 2)).add_output(OutputArc(Place("Out")))
        with pytest.raises(TransitionNotEnabledError):
            t.execute()
        assert a.token_count() == 1

    def test_not_enough_eligible_tokens_leaves_places_untouched(self):
        a = Place("A", tokens=[2, 3])
        out = Place("Out")
        t = Transition("T").add_input(InputArc(a, 2, expression=lambda v: [v // (v % 2)]))
        t.add_output(OutputArc(out))
        # The representative (2) fails, so the transition is not even enabled.
        assert not t.is_enabled()

        b = Place("B", tokens=[3, 2])
        t2 = Transition("T2").add_input(InputArc(b, 2, expression=lambda v: [v // (v % 2)]))
        t2.add_output(OutputArc(out))
        assert t2.is_enabled()
        with pytest.raises(InsufficientTokensError):
            t2.execute()
        assert list(b) == [Token(3), Token(2)]
        assert out.token_count() == 0

    def test_rejected_output_color_is_a_firing_error(self):
        a = Place("A", tokens=[1])
        first_out = Place("Out1")
        bad_out = Place("Out2", ColorSet("bool"))
        t = Transition("T").add_input(InputArc(a))
        t.add_output(OutputArc(first_out)).add_output(OutputArc(bad_out, expression="str(x[0])"))
        with pytest.raises(FiringError):
            t.execute()
        assert a.token_count() == 1
        assert first_out.token_count() == 0

    def test_inputs_without_data_are_a_firing_error(self):
        a = Place("A", tokens=[1])
        out = Place("Out")
        t = Transition("T", ColorSet()).add_input(InputArc(a, expression=lambda v: []))
        t.add_output(OutputArc(out))
        assert t.is_enabled()
        with pytest.raises(FiringError):
            t.execute()
        assert list(a) == [Token(1)]
        assert out.token_count() == 0

    def test_step_skips_a_transition_whose_inputs_yield_nothing(self):
        a = Place("A", tokens=[1])
        out = Place("Out")
        t = Transition("T").add_input(InputArc(a, expression=lambda v: {})).add_output(OutputArc(out))
        cpn = CPN()
        cpn.add_transition(t)
        assert cpn.step() is None
        assert a.token_count() == 1
        assert out.token_count() == 0

    def test_starved_arc_after_the_cover_fails_at_firing(self):
        # The cover is complete after the first arc, so the second arc is
        # never looked at by is_enabled(); firing finds it short.
        a = Place("A", tokens=[1])
        b = Place("B")
        out = Place("Out")
        t = Transition("T", ColorSet("int")).add_input(InputArc(a)).add_input(InputArc(b, 2))
        t.add_output(OutputArc(out))
        assert t.is_enabled()
        with pytest.raises(InsufficientTokensError):
            t.execute()
        assert list(a) == [Token(1)]
        assert b.token_count() == 0
        assert out.token_count() == 0

    def test_failing_output_expression(self):
        a = Place("A", tokens=[1])
        t = Transition("T").add_input(InputArc(a)).add_output(OutputArc(Place("Out"), expression="x[5]"))
        with pytest.raises(FiringError):
            t.execute()
        assert a.token_count() == 1


class TestSinkSignal:

    def test_sink_transition(self):
        t = Transition("T").add_input(InputArc(Place("A", tokens=[1]))).add_output(OutputArc(Place("End")))
        assert t.execute() is False

    def test_interior_transition(self):
        middle = Place("Middle")
        first = Transition("first").add_input(InputArc(Place("A", tokens=[1]))).add_output(OutputArc(middle))
        Transition("second").add_input(InputArc(middle)).add_output(OutputArc(Place("End")))
        assert first.execute() is True

    def test_chain_drains(self):
        middle, end = Place("Middle"), Place("End")
        first = Transition("first").add_input(InputArc(Place("A", tokens=[1, 2]))).add_output(OutputArc(middle))
        second = Transition("second").add_input(InputArc(middle)).add_output(OutputArc(end))
        cpn = CPN()
        cpn.add_transition(first)
        cpn.add_transition(second)
        fired = []
        while True:
            t = cpn.step()
            if t is None:
                break
            fired.append(t.name)
        assert fired == ["first", "first", "second", "second"]
        assert end.token_count() == 2
