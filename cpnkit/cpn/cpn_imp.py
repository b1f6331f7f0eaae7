import itertools
import logging
import threading
from collections.abc import Mapping
from contextlib import ExitStack
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, Union

from frozendict import frozendict

from cpnkit.cpn.colorsets import ColorSet, ColorTag, coerce, freeze, tag_of, tags_of, to_tag
from cpnkit.cpn.exceptions import (
    ColorMismatchError,
    ConfigurationError,
    ExpressionError,
    FiringError,
    InsufficientTokensError,
    TransitionNotEnabledError,
    UnsupportedColorError,
)

logger = logging.getLogger(__name__)


# -----------------------------------------------------------------------------------
# Token
# -----------------------------------------------------------------------------------
class Token:
    """
    An immutable value tagged with its color.

    Payloads are frozen on the way in: lists become tuples (keeping the 'list'
    color) and dicts become frozendicts.
    """
    __slots__ = ("_value", "_color")

    def __init__(self, value: Any, color: Optional[Union[ColorTag, str]] = None):
        if color is None:
            color = tag_of(value)
        else:
            color = to_tag(color)
            value = coerce(value, color)
        object.__setattr__(self, "_value", freeze(value))
        object.__setattr__(self, "_color", color)

    @property
    def value(self) -> Any:
        return self._value

    @property
    def color(self) -> ColorTag:
        return self._color

    def __setattr__(self, key, value):
        raise AttributeError("Token is immutable")

    def __eq__(self, other):
        if not isinstance(other, Token):
            return NotImplemented
        return self._color is other.color and self._value == other.value

    def __hash__(self):
        return hash((self._color, self._value))

    def __repr__(self):
        return f"Token({self._value!r})"


# -----------------------------------------------------------------------------------
# Multiset grouped by color
# -----------------------------------------------------------------------------------
class Multiset:
    """
    Tokens grouped by color. Groups keep the order in which their color first
    appeared, tokens keep insertion order inside a group, and a group is
    dropped as soon as it is empty. Readers work on a snapshot of the groups,
    so iterating stays valid while tokens are being removed.
    """

    def __init__(self, tokens: Optional[Iterable[Token]] = None):
        self._groups: Dict[ColorTag, List[Token]] = {}
        for token in tokens or []:
            self.add_token(token)

    def add(self, value: Any, color: Optional[Union[ColorTag, str]] = None, count: int = 1) -> List[Token]:
        added = [Token(value, color) for _ in range(count)]
        for token in added:
            self.add_token(token)
        return added

    def add_token(self, token: Token):
        self._groups.setdefault(token.color, []).append(token)

    def remove(self, color: Optional[Union[ColorTag, str]] = None, count: int = 1) -> List[Token]:
        """Remove the `count` oldest tokens of a color (of any color, in group order, if None)."""
        if count == 0:
            return []
        if self.count(color) < count:
            raise InsufficientTokensError(
                f"Not enough tokens to remove: wanted {count}, have {self.count(color)}.")
        removed = []
        groups = [to_tag(color)] if color is not None else list(self._groups)
        for tag in groups:
            group = self._groups[tag]
            while group and len(removed) < count:
                removed.append(group.pop(0))
            if not group:
                del self._groups[tag]
            if len(removed) == count:
                break
        return removed

    def discard(self, token: Token):
        """Remove this very token instance."""
        group = self._groups.get(token.color, [])
        for i, candidate in enumerate(group):
            if candidate is token:
                del group[i]
                if not group:
                    del self._groups[token.color]
                return
        raise InsufficientTokensError(f"{token!r} is not in the multiset.")

    def count(self, color: Optional[Union[ColorTag, str]] = None) -> int:
        if color is None:
            return sum(len(g) for g in list(self._groups.values()))
        return len(self._groups.get(to_tag(color), []))

    def tokens(self, color: Optional[Union[ColorTag, str]] = None):
        if color is None:
            return {tag: tuple(group) for tag, group in list(self._groups.items())}
        return tuple(self._groups.get(to_tag(color), []))

    def first(self) -> Optional[Token]:
        for group in list(self._groups.values()):
            if group:
                return group[0]
        return None

    def clear(self):
        self._groups.clear()

    def copy(self) -> "Multiset":
        return Multiset(self)

    def __iter__(self) -> Iterator[Token]:
        for group in list(self._groups.values()):
            yield from list(group)

    def __len__(self) -> int:
        return self.count()

    def __repr__(self):
        items_str = ", ".join(str(t) for t in self)
        return f"{{{items_str}}}"


# -----------------------------------------------------------------------------------
# Place
# -----------------------------------------------------------------------------------
class Place:
    """
    A passive node holding a multiset of tokens.
    `tokens` may mix plain values and Token instances.

    The place does not synchronise access by itself: `lock` is provided for a
    coordinator (see CPN.fire) that must hold it across an enabling check and
    the firing that follows.
    """

    def __init__(self, name: str, colorset: Optional[ColorSet] = None, tokens: Optional[Iterable[Any]] = None):
        self.name = name
        self.colorset = colorset if colorset is not None else ColorSet()
        self.lock = threading.RLock()
        self._multiset = Multiset()
        self._consumers: List["Transition"] = []
        for value in tokens or []:
            if isinstance(value, Token):
                self.add_token(value)
            else:
                self.add_tokens(None, [value])

    def token_count(self, color: Optional[Union[ColorTag, str]] = None) -> int:
        return self._multiset.count(color)

    def tokens(self, color: Optional[Union[ColorTag, str]] = None):
        return self._multiset.tokens(color)

    def first_token(self) -> Optional[Token]:
        return self._multiset.first()

    def add_tokens(self, color: Optional[Union[ColorTag, str]], values: Iterable[Any]) -> List[Token]:
        added = []
        for value in values:
            token = Token(value, color)
            self._check_color(token)
            added.append(token)
        for token in added:
            self._multiset.add_token(token)
        return added

    def add_token(self, token: Token):
        self._check_color(token)
        self._multiset.add_token(token)

    def remove_tokens(self, color: Optional[Union[ColorTag, str]], count: int) -> List[Token]:
        return self._multiset.remove(color, count)

    def discard_token(self, token: Token):
        self._multiset.discard(token)

    def set_tokens(self, tokens: Iterable[Token]):
        tokens = list(tokens)
        for token in tokens:
            self._check_color(token)
        self._multiset.clear()
        for token in tokens:
            self._multiset.add_token(token)

    def consumers(self) -> Tuple["Transition", ...]:
        """Transitions that have an input arc on this place."""
        return tuple(self._consumers)

    def _register_consumer(self, transition: "Transition"):
        if not any(t is transition for t in self._consumers):
            self._consumers.append(transition)

    def _check_color(self, token: Token):
        if not self.colorset.accepts(token.color):
            raise ColorMismatchError(
                f"Place '{self.name}' does not accept color '{token.color.value}' ({token!r}).")

    def __iter__(self) -> Iterator[Token]:
        return iter(self._multiset)

    def accept(self, visitor):
        visitor.visit_place(self)

    def __repr__(self):
        return f"Place(name='{self.name}', colorset={self.colorset!r}, tokens={self._multiset!r})"


# -----------------------------------------------------------------------------------
# EvaluationContext and arc expressions
# -----------------------------------------------------------------------------------
class EvaluationContext:
    """Namespace for string expressions, optionally populated by user code."""

    def __init__(self, user_code: Optional[str] = None):
        self.env = {}
        self.user_code = user_code
        if user_code is not None:
            exec(user_code, self.env)

    def evaluate(self, expr, binding: Dict[str, Any]) -> Any:
        return eval(expr, self.env, dict(binding))


class ArcExpression:
    """
    Transform attached to an arc.

    `source` is either a callable taking the payload, or a Python expression
    in which the payload is bound to `variable`, e.g. "[x, str(x)]".
    """

    def __init__(self, source: Union[str, Callable[[Any], Any]], variable: str = "x",
                 context: Optional[EvaluationContext] = None):
        if not callable(source) and not isinstance(source, str):
            raise ConfigurationError(f"Arc expression must be a callable or a string, got {source!r}")
        self.source = source
        self.variable = variable
        self.context = context if context is not None else EvaluationContext()
        self._code = None

    def is_callable(self) -> bool:
        return callable(self.source)

    def validate(self) -> bool:
        if self.is_callable():
            return True
        try:
            self._compiled()
        except (SyntaxError, ValueError):
            return False
        return True

    def execute(self, payload: Any) -> List[Any]:
        try:
            if self.is_callable():
                result = self.source(payload)
            else:
                result = self.context.evaluate(self._compiled(), {self.variable: payload})
        except Exception as e:
            raise ExpressionError(f"Arc expression {self} failed on {payload!r}: {e}") from e

        if isinstance(result, (Mapping, frozendict)):
            return list(result.values())
        if isinstance(result, list):
            return result
        return [result]

    def _compiled(self):
        if self._code is None:
            self._code = compile(self.source.strip(), "<arc expression>", "eval")
        return self._code

    def __str__(self):
        if self.is_callable():
            return getattr(self.source, "__name__", repr(self.source))
        return self.source

    def __repr__(self):
        return f"ArcExpression({str(self)!r})"


# -----------------------------------------------------------------------------------
# Arcs
# -----------------------------------------------------------------------------------
class Arc:
    """A weighted edge between a place and the transition that owns the arc."""

    def __init__(self, place: Place, weight: int = 1,
                 expression: Optional[Union[ArcExpression, str, Callable[[Any], Any]]] = None):
        if not isinstance(place, Place):
            raise ConfigurationError(f"{type(self).__name__} needs a Place endpoint, got {place!r}")
        if isinstance(weight, bool) or not isinstance(weight, int) or weight < 1:
            raise ConfigurationError(f"Arc weight must be a positive integer, got {weight!r}")
        if expression is not None and not isinstance(expression, ArcExpression):
            expression = ArcExpression(expression)
        self._place = place
        self._weight = weight
        self._expression = expression

    @property
    def place(self) -> Place:
        return self._place

    @property
    def weight(self) -> int:
        return self._weight

    @property
    def expression(self) -> Optional[ArcExpression]:
        return self._expression

    def endpoint_place(self) -> Place:
        return self._place

    def has_expression(self) -> bool:
        return self._expression is not None

    def validate_expression(self) -> bool:
        return self._expression is None or self._expression.validate()

    def accept(self, visitor):
        visitor.visit_arc(self)

    def __repr__(self):
        expr = f", expr='{self._expression}'" if self._expression is not None else ""
        return f"{type(self).__name__}(place='{self._place.name}', weight={self._weight}{expr})"


class InputArc(Arc):
    """Place -> transition."""


class OutputArc(Arc):
    """Transition -> place."""


# -----------------------------------------------------------------------------------
# Transition
# -----------------------------------------------------------------------------------
_transition_ids = itertools.count(1)


class Transition:
    """
    The active node of the net.

    A transition owns its arcs but not the places they reach. Its color set is
    the signature of the token it has to be able to synthesise from its inputs.
    """

    def __init__(self, name: Optional[str] = None, color_set: Optional[ColorSet] = None,
                 inputs: Iterable[InputArc] = (), outputs: Iterable[OutputArc] = ()):
        self.name = name if name is not None else f"T{next(_transition_ids)}"
        self._color_set = ColorSet()
        self._inputs: List[InputArc] = []
        self._outputs: List[OutputArc] = []
        if color_set is not None:
            self.set_color_set(color_set)
        for arc in inputs:
            self.add_input(arc)
        for arc in outputs:
            self.add_output(arc)

    def add_input(self, arc: InputArc) -> "Transition":
        if not isinstance(arc, InputArc):
            raise ConfigurationError(f"add_input() expects an InputArc, got {arc!r}")
        self._inputs.append(arc)
        arc.place._register_consumer(self)
        return self

    def add_output(self, arc: OutputArc) -> "Transition":
        if not isinstance(arc, OutputArc):
            raise ConfigurationError(f"add_output() expects an OutputArc, got {arc!r}")
        self._outputs.append(arc)
        return self

    def get_inputs(self) -> Tuple[InputArc, ...]:
        return tuple(self._inputs)

    def get_outputs(self) -> Tuple[OutputArc, ...]:
        return tuple(self._outputs)

    def set_color_set(self, color_set: ColorSet) -> "Transition":
        if not isinstance(color_set, ColorSet):
            raise ConfigurationError(f"set_color_set() expects a ColorSet, got {color_set!r}")
        self._color_set = color_set
        return self

    def get_color_set(self) -> ColorSet:
        return self._color_set

    def places(self) -> List[Place]:
        """Every place this transition reads from or writes to, without duplicates."""
        seen = []
        for arc in self._inputs + self._outputs:
            if not any(p is arc.place for p in seen):
                seen.append(arc.place)
        return seen

    def is_enabled(self) -> bool:
        """
        True if the transition may fire now. Never raises and never mutates anything.

        Every input arc must find at least `weight` tokens in its place. The
        colors produced by the arcs (the color of the first token of the place,
        or the colors of what the arc expression makes of its payload) are
        removed from the transition color set; the transition is enabled as
        soon as nothing is left to cover.
        """
        if not self._inputs or not self._outputs:
            logger.debug("%s: not enabled, missing input or output arcs", self.name)
            return False

        required = set(self._color_set.type_tags())

        for arc in self._inputs:
            place = arc.place

            if place.token_count() < arc.weight:
                logger.debug("%s: place '%s' holds %d token(s), arc weight is %d",
                             self.name, place.name, place.token_count(), arc.weight)
                return False

            if not arc.validate_expression():
                logger.debug("%s: invalid expression on %r", self.name, arc)
                return False

            try:
                produced = self._produced_tags(arc, place.first_token())
            except (ExpressionError, UnsupportedColorError) as e:
                logger.debug("%s: guard failure on %r: %s", self.name, arc, e)
                return False

            required.difference_update(produced)

            if not required:
                return True

        logger.debug("%s: colors %s not covered by the inputs", self.name,
                     sorted(t.value for t in required))
        return False

    @staticmethod
    def _produced_tags(arc: Arc, token: Token) -> List[ColorTag]:
        if arc.has_expression():
            return tags_of(arc.expression.execute(token.value))
        return [token.color]

    def execute(self) -> bool:
        """
        Fire the transition.

        Consumes `weight` tokens per input arc and produces `weight` tokens per
        output arc. Nothing is touched unless the whole firing can be carried
        out; otherwise a FiringError is raised.

        Returns True if a produced token can feed another transition, False if
        the transition is a sink.
        """
        if not self.is_enabled():
            raise TransitionNotEnabledError(f"Transition {self.name} is not enabled.")

        consumed, collected = self._plan_consumption()
        produced = self._plan_production(collected)

        for place, token in consumed:
            place.discard_token(token)
        for place, token in produced:
            place.add_token(token)

        logger.info("%s fired: consumed %d token(s), produced %d token(s)",
                    self.name, len(consumed), len(produced))

        return any(arc.place.consumers() for arc in self._outputs)

    def _plan_consumption(self) -> Tuple[List[Tuple[Place, Token]], List[Any]]:
        reserved: Dict[int, set] = {}
        consumed = []
        collected = []

        for arc in self._inputs:
            place = arc.place
            taken = reserved.setdefault(id(place), set())
            picked = 0
            for token in place:
                if id(token) in taken:
                    continue
                if arc.has_expression():
                    try:
                        values = arc.expression.execute(token.value)
                        tags_of(values)
                    except (ExpressionError, UnsupportedColorError):
                        continue
                else:
                    values = [token.value]
                taken.add(id(token))
                consumed.append((place, token))
                collected.extend(values)
                picked += 1
                if picked == arc.weight:
                    break

            if picked < arc.weight:
                raise InsufficientTokensError(
                    f"Transition {self.name}: place '{place.name}' has {picked} eligible token(s), "
                    f"arc weight is {arc.weight}.")

        return consumed, collected

    def _plan_production(self, collected: Sequence[Any]) -> List[Tuple[Place, Token]]:
        produced = []
        for arc in self._outputs:
            try:
                value = self._output_value(arc, collected)
                tokens = [Token(value) for _ in range(arc.weight)]
            except (ExpressionError, UnsupportedColorError) as e:
                raise FiringError(f"Transition {self.name}: cannot build output for {arc!r}: {e}") from e
            for token in tokens:
                if not arc.place.colorset.accepts(token.color):
                    raise FiringError(
                        f"Transition {self.name}: place '{arc.place.name}' does not accept "
                        f"color '{token.color.value}'.")
                produced.append((arc.place, token))
        return produced

    def _output_value(self, arc: OutputArc, collected: Sequence[Any]) -> Any:
        if arc.has_expression():
            values = arc.expression.execute(list(collected))
            return values[0] if len(values) == 1 else tuple(values)

        if not collected:
            raise FiringError(f"Transition {self.name}: the inputs produced no data for {arc!r}.")
        for value in collected:
            if self._color_set.accepts(tag_of(value)):
                return value
        return coerce(collected[0], self._color_set.type_tags()[0])

    def accept(self, visitor):
        visitor.visit_transition(self)

    def __repr__(self):
        inputs_str = ", ".join(repr(a) for a in self._inputs) or "None"
        outputs_str = ", ".join(repr(a) for a in self._outputs) or "None"
        return (f"Transition(name='{self.name}', colorset={self._color_set!r}, "
                f"inputs=[{inputs_str}], outputs=[{outputs_str}])")


# -----------------------------------------------------------------------------------
# Marking snapshot
# -----------------------------------------------------------------------------------
class Marking:
    """An immutable snapshot of the tokens of a net, place by place."""

    def __init__(self, tokens: Optional[Dict[str, Iterable[Token]]] = None):
        self._marking: Dict[str, Tuple[Token, ...]] = {
            name: tuple(toks) for name, toks in (tokens or {}).items()
        }

    def get_tokens(self, place_name: str) -> Tuple[Token, ...]:
        return self._marking.get(place_name, ())

    def places(self) -> List[str]:
        return list(self._marking)

    def total(self) -> int:
        return sum(len(toks) for toks in self._marking.values())

    def key(self) -> Tuple[Tuple[str, Tuple[Tuple[str, Any], ...]], ...]:
        """
        Hashable form of the marking. Token order inside a place is kept,
        since it decides which token represents the place.
        """
        return tuple(
            (name, tuple((t.color.value, t.value) for t in toks))
            for name, toks in sorted(self._marking.items(), key=lambda x: x[0])
        )

    def __eq__(self, other):
        if not isinstance(other, Marking):
            return NotImplemented
        return self.key() == other.key()

    def __hash__(self):
        return hash(self.key())

    def __repr__(self):
        lines = ["Marking:"]
        for place, toks in self._marking.items():
            lines.append(f"  {place}: {{{', '.join(str(t) for t in toks)}}}")
        if len(lines) == 1:
            lines.append("  (empty)")
        return "\n".join(lines)


# -----------------------------------------------------------------------------------
# CPN
# -----------------------------------------------------------------------------------
class CPN:
    """
    A net: the places and transitions it is made of, plus the coordination
    needed to fire transitions that share places.
    """

    def __init__(self, name: str = "net"):
        self.name = name
        self.places: List[Place] = []
        self.transitions: List[Transition] = []

    def add_place(self, place: Place):
        existing = self.get_place_by_name(place.name)
        if existing is place:
            return
        if existing is not None:
            raise ConfigurationError(f"A different place named '{place.name}' is already in the net.")
        self.places.append(place)

    def add_transition(self, transition: Transition):
        if self.get_transition_by_name(transition.name) is not None:
            raise ConfigurationError(f"A transition named '{transition.name}' is already in the net.")
        for place in transition.places():
            self.add_place(place)
        self.transitions.append(transition)

    def get_place_by_name(self, name: str) -> Optional[Place]:
        for p in self.places:
            if p.name == name:
                return p
        return None

    def get_transition_by_name(self, name: str) -> Optional[Transition]:
        for t in self.transitions:
            if t.name == name:
                return t
        return None

    def get_enabled_transitions(self) -> List[Transition]:
        return [t for t in self.transitions if t.is_enabled()]

    def fire(self, transition: Transition) -> bool:
        """
        Check and fire `transition` while holding the locks of every place it
        touches. Locks are taken in place-name order.
        """
        with ExitStack() as stack:
            for place in sorted(transition.places(), key=lambda p: (p.name, id(p))):
                stack.enter_context(place.lock)
            return transition.execute()

    def step(self, choose: Optional[Callable[[List[Transition]], Transition]] = None) -> Optional[Transition]:
        """
        Fire one enabled transition and return it, or None if nothing fires.

        `choose` picks among the enabled transitions (default: the first one).
        A candidate whose firing fails is dropped and the choice is repeated.
        The enabling scan runs without place locks; only fire() is atomic, so
        concurrent drivers may see candidates that then fail with FiringError.
        """
        candidates = self.get_enabled_transitions()
        while candidates:
            transition = choose(candidates) if choose is not None else candidates[0]
            try:
                self.fire(transition)
                return transition
            except FiringError as e:
                logger.warning("Firing %s failed, trying another transition: %s", transition.name, e)
                candidates = [t for t in candidates if t is not transition]
        return None

    def get_marking(self) -> Marking:
        return Marking({p.name: list(p) for p in self.places})

    def set_marking(self, marking: Marking):
        for place in self.places:
            place.set_tokens(marking.get_tokens(place.name))

    def accept(self, visitor):
        for place in self.places:
            place.accept(visitor)
        for transition in self.transitions:
            transition.accept(visitor)

    def __repr__(self):
        places_str = "\n    ".join(repr(p) for p in self.places)
        transitions_str = "\n    ".join(repr(t) for t in self.transitions)
        return (f"CPN(\n  Places:\n    {places_str}\n\n"
                f"  Transitions:\n    {transitions_str}\n)")
