from cpnkit.cpn.colorsets import ColorSet, ColorSetParser, ColorTag, tag_of
from cpnkit.cpn.cpn_imp import (
    CPN,
    Arc,
    ArcExpression,
    EvaluationContext,
    InputArc,
    Marking,
    Multiset,
    OutputArc,
    Place,
    Token,
    Transition,
)
from cpnkit.cpn.exceptions import CPNError, ConfigurationError, FiringError

__version__ = "0.1.0"
