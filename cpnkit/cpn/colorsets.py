from collections.abc import Mapping
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, List, Tuple, Union

from frozendict import frozendict

from cpnkit.cpn.exceptions import ColorSetParseError, UnsupportedColorError


# -----------------------------------------------------------------------------------
# Color tags
# -----------------------------------------------------------------------------------
class ColorTag(Enum):
    """
    The closed set of colors a token can carry.
    Each tag corresponds to a family of host values (see tag_of).
    """
    INT = "int"
    FLOAT = "float"
    STRING = "string"
    BOOL = "bool"
    UNIT = "unit"
    LIST = "list"
    TUPLE = "tuple"
    DICT = "dict"

    def __repr__(self):
        return self.value


# Aliases accepted wherever a tag is given by name.
_TAG_ALIASES = {
    "real": ColorTag.FLOAT,
    "str": ColorTag.STRING,
    "boolean": ColorTag.BOOL,
}


def to_tag(tag: Union[ColorTag, str]) -> ColorTag:
    if isinstance(tag, ColorTag):
        return tag
    if isinstance(tag, str):
        name = tag.strip().lower()
        if name in _TAG_ALIASES:
            return _TAG_ALIASES[name]
        try:
            return ColorTag(name)
        except ValueError:
            pass
    raise UnsupportedColorError(f"Unknown color tag: {tag!r}")


def tag_of(value: Any) -> ColorTag:
    """
    Return the color tag of a host value.

    bool is tested before int (bool is an int subclass) and floats always map
    to ColorTag.FLOAT. Values of any other type have no color.
    """
    if value is None:
        return ColorTag.UNIT
    if isinstance(value, bool):
        return ColorTag.BOOL
    if isinstance(value, int):
        return ColorTag.INT
    if isinstance(value, float):
        return ColorTag.FLOAT
    if isinstance(value, str):
        return ColorTag.STRING
    if isinstance(value, list):
        return ColorTag.LIST
    if isinstance(value, tuple):
        return ColorTag.TUPLE
    if isinstance(value, (Mapping, frozendict)):
        return ColorTag.DICT
    raise UnsupportedColorError(f"No color tag for values of type {type(value).__name__}")


def _to_unit(value: Any) -> None:
    if value is not None:
        raise ValueError("only None belongs to the unit color")
    return None


_CONVERTERS = {
    ColorTag.INT: int,
    ColorTag.FLOAT: float,
    ColorTag.STRING: str,
    ColorTag.BOOL: bool,
    ColorTag.UNIT: _to_unit,
    ColorTag.LIST: list,
    ColorTag.TUPLE: tuple,
    ColorTag.DICT: dict,
}


def coerce(value: Any, tag: Union[ColorTag, str]) -> Any:
    """Convert value to the given color, raising UnsupportedColorError if impossible."""
    tag = to_tag(tag)
    if tag_of_or_none(value) is tag:
        return value
    try:
        return _CONVERTERS[tag](value)
    except (TypeError, ValueError) as e:
        raise UnsupportedColorError(f"Cannot convert {value!r} to color '{tag.value}'") from e


def tag_of_or_none(value: Any):
    try:
        return tag_of(value)
    except UnsupportedColorError:
        return None


# -----------------------------------------------------------------------------------
# ColorSet
# -----------------------------------------------------------------------------------
class ColorSet:
    """
    An ordered set of color tags.

    Duplicated tags are collapsed, keeping the first occurrence. An empty set
    places no constraint on the values it is asked about.
    """
    __slots__ = ("_tags",)

    def __init__(self, *tags: Union[ColorTag, str]):
        ordered: List[ColorTag] = []
        for tag in tags:
            tag = to_tag(tag)
            if tag not in ordered:
                ordered.append(tag)
        object.__setattr__(self, "_tags", tuple(ordered))

    def __setattr__(self, key, value):
        raise AttributeError("ColorSet is immutable")

    def type_tags(self) -> Tuple[ColorTag, ...]:
        return self._tags

    def is_member(self, value: Any) -> bool:
        if not self._tags:
            return True
        return tag_of_or_none(value) in self._tags

    def accepts(self, tag: Union[ColorTag, str]) -> bool:
        return not self._tags or to_tag(tag) in self._tags

    def union(self, other: "ColorSet") -> "ColorSet":
        return ColorSet(*(self._tags + other.type_tags()))

    def __contains__(self, tag) -> bool:
        try:
            return to_tag(tag) in self._tags
        except UnsupportedColorError:
            return False

    def __iter__(self) -> Iterator[ColorTag]:
        return iter(self._tags)

    def __len__(self) -> int:
        return len(self._tags)

    def __bool__(self) -> bool:
        return bool(self._tags)

    def __eq__(self, other):
        if not isinstance(other, ColorSet):
            return NotImplemented
        return self._tags == other.type_tags()

    def __hash__(self):
        return hash(self._tags)

    def __repr__(self):
        return f"ColorSet({', '.join(t.value for t in self._tags)})"


# -----------------------------------------------------------------------------------
# ColorSetParser
# -----------------------------------------------------------------------------------
class ColorSetParser:
    """
    Parses color set definitions such as:

        colset INT = int;
        colset PAIR = product(INT, string);
        colset ALIAS = PAIR;
    """

    def __init__(self):
        self.colorsets: Dict[str, ColorSet] = {}

    def parse_definitions(self, text: str) -> Dict[str, ColorSet]:
        for line in text.strip().splitlines():
            line = line.strip()
            if not line:
                continue
            self._parse_line(line)
        return self.colorsets

    def _parse_line(self, line: str):
        if not line.endswith(";"):
            raise ColorSetParseError("Color set definition must end with a semicolon.")
        line = line[:-1].strip()
        if not line.startswith("colset "):
            raise ColorSetParseError("Color set definition must start with 'colset'.")
        line = line[len("colset "):].strip()
        parts = line.split("=", 1)
        if len(parts) != 2 or not parts[0].strip():
            raise ColorSetParseError(f"Invalid color set definition format: {line!r}")
        name = parts[0].strip()
        self.colorsets[name] = self._parse_type(parts[1].strip())

    def _parse_type(self, type_str: str) -> ColorSet:
        if type_str.startswith("product(") and type_str.endswith(")"):
            inner = type_str[len("product("):-1].strip()
            components = self._split_top_level(inner)
            if len(components) < 2:
                raise ColorSetParseError("Invalid product definition: needs at least two components.")
            result = ColorSet()
            for component in components:
                result = result.union(self._parse_type(component))
            return result

        if type_str in self.colorsets:
            return self.colorsets[type_str]

        try:
            return ColorSet(to_tag(type_str))
        except UnsupportedColorError:
            raise ColorSetParseError(f"Unknown type definition or reference: {type_str}") from None

    @staticmethod
    def _split_top_level(s: str) -> List[str]:
        parts = []
        level = 0
        start = 0
        for i, ch in enumerate(s):
            if ch == "(":
                level += 1
            elif ch == ")":
                level -= 1
            elif ch == "," and level == 0:
                parts.append(s[start:i].strip())
                start = i + 1
        parts.append(s[start:].strip())
        return [p for p in parts if p]


def color_set_definition(name: str, colorset: ColorSet) -> str:
    """Inverse of ColorSetParser for a single, non-empty color set."""
    tags = [t.value for t in colorset.type_tags()]
    if not tags:
        raise ValueError("An empty color set has no definition.")
    if len(tags) == 1:
        return f"colset {name} = {tags[0]};"
    return f"colset {name} = product({', '.join(tags)});"


def freeze(value: Any) -> Any:
    """Immutable copy of a payload: lists become tuples, dicts become frozendicts."""
    if isinstance(value, (list, tuple)):
        return tuple(freeze(v) for v in value)
    if isinstance(value, Mapping) and not isinstance(value, frozendict):
        return frozendict({k: freeze(v) for k, v in value.items()})
    return value


def tags_of(values: Iterable[Any]) -> List[ColorTag]:
    return [tag_of(v) for v in values]
