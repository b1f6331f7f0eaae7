"""Tests for color tags, color sets and the colset parser."""

import pytest
from frozendict import frozendict

from cpnkit.cpn.colorsets import (
    ColorSet,
    ColorSetParser,
    ColorTag,
    coerce,
    color_set_definition,
    freeze,
    tag_of,
)
from cpnkit.cpn.exceptions import ColorSetParseError, UnsupportedColorError


class TestTagOf:

    @pytest.mark.parametrize("value, tag", [
        (1, ColorTag.INT),
        (1.5, ColorTag.FLOAT),
        (2.0, ColorTag.FLOAT),
        ("a", ColorTag.STRING),
        (True, ColorTag.BOOL),
        (None, ColorTag.UNIT),
        ([1], ColorTag.LIST),
        ((1, "a"), ColorTag.TUPLE),
        ({"k": 1}, ColorTag.DICT),
        (frozendict(k=1), ColorTag.DICT),
    ])
    def test_host_values(self, value, tag):
        assert tag_of(value) is tag

    def test_bool_is_not_int(self):
        assert tag_of(False) is ColorTag.BOOL

    def test_unsupported_type(self):
        with pytest.raises(UnsupportedColorError):
            tag_of(object())


class TestCoerce:

    def test_conversions(self):
        assert coerce("3", ColorTag.INT) == 3
        assert coerce(3, "float") == 3.0
        assert coerce(3, "string") == "3"
        assert coerce(0, "bool") is False

    def test_same_color_is_unchanged(self):
        value = [1, 2]
        assert coerce(value, ColorTag.LIST) is value

    def test_impossible_conversion(self):
        with pytest.raises(UnsupportedColorError):
            coerce("abc", ColorTag.INT)
        with pytest.raises(UnsupportedColorError):
            coerce(1, ColorTag.UNIT)


class TestColorSet:

    def test_keeps_order_and_collapses_duplicates(self):
        cs = ColorSet("string", ColorTag.INT, "string")
        assert cs.type_tags() == (ColorTag.STRING, ColorTag.INT)
        assert len(cs) == 2

    def test_aliases(self):
        assert ColorSet("real").type_tags() == (ColorTag.FLOAT,)

    def test_unknown_tag(self):
        with pytest.raises(UnsupportedColorError):
            ColorSet("double")

    def test_membership(self):
        cs = ColorSet("int", "string")
        assert cs.is_member(3)
        assert cs.is_member("x")
        assert not cs.is_member(3.0)
        assert not cs.is_member(object())
        assert "int" in cs
        assert "nonsense" not in cs

    def test_empty_set_accepts_everything(self):
        cs = ColorSet()
        assert not cs
        assert cs.is_member(1.5)
        assert cs.accepts(ColorTag.DICT)

    def test_immutable_and_hashable(self):
        cs = ColorSet("int")
        with pytest.raises(AttributeError):
            cs.foo = 1
        assert {cs: 1}[ColorSet(ColorTag.INT)] == 1
        assert ColorSet("int", "string") != ColorSet("string", "int")


class TestColorSetParser:

    def test_basic_and_product(self):
        colorsets = ColorSetParser().parse_definitions("""
        colset INT = int;
        colset STRING = string;
        colset PAIR = product(INT, STRING);
        colset TRIPLE = product(PAIR, real);
        colset ALIAS = PAIR;
        """)
        assert colorsets["INT"] == ColorSet("int")
        assert colorsets["PAIR"].type_tags() == (ColorTag.INT, ColorTag.STRING)
        assert colorsets["TRIPLE"].type_tags() == (ColorTag.INT, ColorTag.STRING, ColorTag.FLOAT)
        assert colorsets["ALIAS"] is colorsets["PAIR"]

    @pytest.mark.parametrize("line", [
        "colset INT = int",
        "colour INT = int;",
        "colset INT int;",
        "colset X = product(int);",
        "colset X = UNKNOWN;",
    ])
    def test_malformed(self, line):
        with pytest.raises(ColorSetParseError):
            ColorSetParser().parse_definitions(line)

    def test_definition_round_trip(self):
        cs = ColorSet("int", "string")
        line = color_set_definition("CS0", cs)
        assert line == "colset CS0 = product(int, string);"
        assert ColorSetParser().parse_definitions(line)["CS0"] == cs


def test_freeze():
    frozen = freeze({"a": [1, {"b": 2}]})
    assert isinstance(frozen, frozendict)
    assert frozen["a"] == (1, frozendict(b=2))
    hash(frozen)
