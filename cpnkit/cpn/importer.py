import logging
import os
from typing import Any, Dict, Optional, Tuple

from jsonschema import validate

from cpnkit.cpn.colorsets import ColorSet, ColorSetParser
from cpnkit.cpn.cpn_imp import CPN, ArcExpression, EvaluationContext, InputArc, OutputArc, Place, Transition
from cpnkit.cpn.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

_ARC_SCHEMA = {
    "type": "object",
    "required": ["place"],
    "properties": {
        "place": {"type": "string"},
        "weight": {"type": "integer", "minimum": 1},
        "expression": {"type": "string"},
        "variable": {"type": "string"},
    },
    "additionalProperties": False,
}

CPN_SCHEMA = {
    "type": "object",
    "required": ["places", "transitions"],
    "properties": {
        "name": {"type": "string"},
        "colorSets": {"type": "array", "items": {"type": "string"}},
        "places": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["name"],
                "properties": {
                    "name": {"type": "string"},
                    "colorSet": {"type": "string"},
                },
                "additionalProperties": False,
            },
        },
        "transitions": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["name"],
                "properties": {
                    "name": {"type": "string"},
                    "colorSet": {"type": "string"},
                    "inArcs": {"type": "array", "items": _ARC_SCHEMA},
                    "outArcs": {"type": "array", "items": _ARC_SCHEMA},
                },
                "additionalProperties": False,
            },
        },
        "initialMarking": {
            "type": "object",
            "additionalProperties": {
                "type": "object",
                "required": ["tokens"],
                "properties": {"tokens": {"type": "array"}},
            },
        },
        "evaluationContext": {"type": ["string", "null"]},
    },
}


def _load_user_code(value: Optional[str]) -> Optional[str]:
    """evaluationContext holds either inline code or the path of a .py file."""
    if value is None or not value.strip():
        return None
    if value.strip().endswith(".py") and os.path.isfile(value.strip()):
        with open(value.strip(), "r") as f:
            return f.read()
    return value


def import_cpn_from_json(data: Dict[str, Any]) -> Tuple[CPN, EvaluationContext]:
    """
    Build a CPN from its JSON description. The initial marking is put in the
    places. Raises jsonschema.ValidationError on a malformed document and
    ConfigurationError on dangling references.
    """
    validate(instance=data, schema=CPN_SCHEMA)

    context = EvaluationContext(user_code=_load_user_code(data.get("evaluationContext")))

    parser = ColorSetParser()
    colorsets = parser.parse_definitions("\n".join(data.get("colorSets", [])))

    def resolve_colorset(name: Optional[str]) -> ColorSet:
        if name is None:
            return ColorSet()
        if name not in colorsets:
            raise ConfigurationError(f"Unknown color set '{name}'")
        return colorsets[name]

    cpn = CPN(data.get("name", "net"))
    for p_json in data["places"]:
        cpn.add_place(Place(p_json["name"], resolve_colorset(p_json.get("colorSet"))))

    def build_arc(arc_cls, arc_json, t_name):
        place = cpn.get_place_by_name(arc_json["place"])
        if place is None:
            raise ConfigurationError(f"Transition '{t_name}' refers to unknown place '{arc_json['place']}'")
        expression = None
        if "expression" in arc_json:
            expression = ArcExpression(arc_json["expression"], arc_json.get("variable", "x"), context)
        return arc_cls(place, arc_json.get("weight", 1), expression)

    for t_json in data["transitions"]:
        t_name = t_json["name"]
        transition = Transition(
            t_name,
            resolve_colorset(t_json.get("colorSet")),
            [build_arc(InputArc, a, t_name) for a in t_json.get("inArcs", [])],
            [build_arc(OutputArc, a, t_name) for a in t_json.get("outArcs", [])],
        )
        cpn.add_transition(transition)

    for pname, marking_json in data.get("initialMarking", {}).items():
        place = cpn.get_place_by_name(pname)
        if place is None:
            raise ConfigurationError(f"Initial marking refers to unknown place '{pname}'")
        place.add_tokens(None, marking_json["tokens"])

    logger.debug("Imported net '%s': %d place(s), %d transition(s)",
                 cpn.name, len(cpn.places), len(cpn.transitions))
    return cpn, context
