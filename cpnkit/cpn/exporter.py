import json
from collections.abc import Mapping
from typing import Any, Dict, Optional, Tuple

from frozendict import frozendict

from cpnkit.cpn.colorsets import ColorSet, color_set_definition
from cpnkit.cpn.cpn_imp import CPN, Arc, EvaluationContext
from cpnkit.cpn.exceptions import ConfigurationError


def generate_color_set_definitions(cpn: CPN) -> Tuple[Dict[ColorSet, str], Dict[str, str]]:
    """
    Name every distinct non-empty color set used by the places and transitions
    of the net. Returns (colorset_to_name, name_to_definition).
    """
    colorset_to_name = {}
    name_to_def = {}

    def define_colorset(cs: ColorSet):
        if not cs or cs in colorset_to_name:
            return
        assigned_name = f"CS{len(colorset_to_name)}"
        colorset_to_name[cs] = assigned_name
        name_to_def[assigned_name] = color_set_definition(assigned_name, cs)

    for p in cpn.places:
        define_colorset(p.colorset)
    for t in cpn.transitions:
        define_colorset(t.get_color_set())

    return colorset_to_name, name_to_def


def _thaw(value: Any) -> Any:
    # JSON has no tuple or frozendict
    if isinstance(value, (list, tuple)):
        return [_thaw(v) for v in value]
    if isinstance(value, (Mapping, frozendict)):
        return {k: _thaw(v) for k, v in value.items()}
    return value


def _arc_json(arc: Arc, t_name: str) -> Dict[str, Any]:
    arc_json = {"place": arc.place.name}
    if arc.weight != 1:
        arc_json["weight"] = arc.weight
    if arc.has_expression():
        if arc.expression.is_callable():
            raise ConfigurationError(
                f"Transition '{t_name}': callable arc expressions cannot be exported ({arc!r})")
        arc_json["expression"] = arc.expression.source
        if arc.expression.variable != "x":
            arc_json["variable"] = arc.expression.variable
    return arc_json


def export_cpn_to_json(cpn: CPN, context: Optional[EvaluationContext] = None,
                       output_json_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Exports a CPN, its current marking and the user code of its evaluation
    context to the structure read by import_cpn_from_json. Also writes it to
    output_json_path when given.
    """
    cs_to_name, name_to_def = generate_color_set_definitions(cpn)

    places_json = []
    for p in cpn.places:
        p_json = {"name": p.name}
        if p.colorset:
            p_json["colorSet"] = cs_to_name[p.colorset]
        places_json.append(p_json)

    transitions_json = []
    for t in cpn.transitions:
        t_json = {
            "name": t.name,
            "inArcs": [_arc_json(a, t.name) for a in t.get_inputs()],
            "outArcs": [_arc_json(a, t.name) for a in t.get_outputs()],
        }
        if t.get_color_set():
            t_json["colorSet"] = cs_to_name[t.get_color_set()]
        transitions_json.append(t_json)

    initial_marking = {}
    for p in cpn.places:
        if p.token_count():
            initial_marking[p.name] = {"tokens": [_thaw(tok.value) for tok in p]}

    sorted_defs = [name_to_def[n] for n in sorted(name_to_def.keys(), key=lambda x: int(x[2:]))]

    user_code = context.user_code if context is not None else None

    final_json = {
        "name": cpn.name,
        "colorSets": sorted_defs,
        "places": places_json,
        "transitions": transitions_json,
        "initialMarking": initial_marking,
        "evaluationContext": user_code,
    }

    if output_json_path is not None:
        with open(output_json_path, "w") as f:
            json.dump(final_json, f, indent=2)

    return final_json
