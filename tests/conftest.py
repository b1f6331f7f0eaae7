"""Shared fixtures for the cpnkit tests."""

import pytest

from cpnkit.cpn.colorsets import ColorSet, ColorTag
from cpnkit.cpn.cpn_imp import CPN, InputArc, OutputArc, Place, Transition


@pytest.fixture
def int_place():
    return Place("P_Int", ColorSet(ColorTag.INT), tokens=[1, 2, 3])


@pytest.fixture
def sink_place():
    return Place("P_Out")


@pytest.fixture
def simple_net(int_place, sink_place):
    """P_Int --2--> T --1--> P_Out, T requires {int}."""
    t = Transition("T", ColorSet(ColorTag.INT))
    t.add_input(InputArc(int_place, 2)).add_output(OutputArc(sink_place))
    cpn = CPN("simple")
    cpn.add_transition(t)
    return cpn, t
