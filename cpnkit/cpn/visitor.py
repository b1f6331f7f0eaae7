from abc import ABC, abstractmethod
from typing import List, Optional

from cpnkit.cpn.cpn_imp import CPN, Arc, InputArc, Place, Transition


class BaseVisitor(ABC):
    """
    One method per kind of net element. Elements call back the matching
    method from their accept(); walking into the arcs of a transition is up
    to the visitor.
    """

    @abstractmethod
    def visit_place(self, place: Place):
        pass

    @abstractmethod
    def visit_transition(self, transition: Transition):
        pass

    @abstractmethod
    def visit_arc(self, arc: Arc):
        pass


class NetPrinter(BaseVisitor):
    """
    Renders a net as text:

        Place P1 ColorSet(int): 3 token(s)
        Transition T ColorSet(int) [enabled]
          P1 --(2)--> T
          T --(1)--> P2
    """

    def __init__(self):
        self.lines: List[str] = []
        self._current: Optional[Transition] = None

    @classmethod
    def render(cls, cpn: CPN) -> str:
        printer = cls()
        cpn.accept(printer)
        return "\n".join(printer.lines)

    def visit_place(self, place: Place):
        self.lines.append(f"Place {place.name} {place.colorset!r}: {place.token_count()} token(s)")

    def visit_transition(self, transition: Transition):
        state = "enabled" if transition.is_enabled() else "disabled"
        self.lines.append(f"Transition {transition.name} {transition.get_color_set()!r} [{state}]")
        self._current = transition
        for arc in transition.get_inputs() + transition.get_outputs():
            arc.accept(self)
        self._current = None

    def visit_arc(self, arc: Arc):
        label = f"--({arc.weight})-->"
        if arc.has_expression():
            label = f"--({arc.weight}, {arc.expression})-->"
        t_name = self._current.name if self._current is not None else "?"
        if isinstance(arc, InputArc):
            self.lines.append(f"  {arc.place.name} {label} {t_name}")
        else:
            self.lines.append(f"  {t_name} {label} {arc.place.name}")


class NetValidator(BaseVisitor):
    """Collects structural problems of a net without modifying it."""

    def __init__(self, cpn: CPN):
        self.cpn = cpn
        self.problems: List[str] = []
        self._current: Optional[Transition] = None

    @classmethod
    def validate(cls, cpn: CPN) -> List[str]:
        validator = cls(cpn)
        cpn.accept(validator)
        return validator.problems

    def visit_place(self, place: Place):
        for token in place:
            if not place.colorset.accepts(token.color):
                self.problems.append(
                    f"Place '{place.name}' holds {token!r} outside of {place.colorset!r}")

    def visit_transition(self, transition: Transition):
        if not transition.get_inputs():
            self.problems.append(f"Transition '{transition.name}' has no input arcs")
        if not transition.get_outputs():
            self.problems.append(f"Transition '{transition.name}' has no output arcs")
        self._current = transition
        for arc in transition.get_inputs() + transition.get_outputs():
            arc.accept(self)
        self._current = None

    def visit_arc(self, arc: Arc):
        owner = self._current.name if self._current is not None else "?"
        if not any(p is arc.place for p in self.cpn.places):
            self.problems.append(
                f"Arc {arc!r} of transition '{owner}' points at place '{arc.place.name}' outside the net")
        if not arc.validate_expression():
            self.problems.append(f"Arc {arc!r} of transition '{owner}' has an invalid expression")
