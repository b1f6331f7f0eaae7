import json
import logging

from cpnkit.analysis.reachability import build_reachability_graph, dead_markings
from cpnkit.cpn.exporter import export_cpn_to_json
from cpnkit.cpn.importer import import_cpn_from_json
from cpnkit.cpn.visitor import NetValidator

logging.basicConfig(level=logging.INFO)

# A producer/consumer net: 'produce' turns integers into labelled jobs,
# 'consume' needs two jobs of the buffer at a time.
net_json = {
    "name": "producer-consumer",
    "colorSets": [
        "colset INT = int;",
        "colset JOB = string;",
    ],
    "places": [
        {"name": "Source", "colorSet": "INT"},
        {"name": "Buffer", "colorSet": "JOB"},
        {"name": "Done"},
    ],
    "transitions": [
        {
            "name": "produce",
            "colorSet": "JOB",
            "inArcs": [{"place": "Source", "expression": "[label(x)]"}],
            "outArcs": [{"place": "Buffer", "expression": "x[0]"}],
        },
        {
            "name": "consume",
            "inArcs": [{"place": "Buffer", "weight": 2}],
            "outArcs": [{"place": "Done", "expression": "len(x)"}],
        },
    ],
    "initialMarking": {"Source": {"tokens": [1, 2, 3, 4]}},
    "evaluationContext": "def label(n):\n    return 'job-%d' % n\n",
}

cpn, context = import_cpn_from_json(net_json)
print("Problems:", NetValidator.validate(cpn))

RG = build_reachability_graph(cpn)
print(f"{RG.number_of_nodes()} reachable markings, {RG.number_of_edges()} firings")
for marking in dead_markings(RG):
    print(marking)

while cpn.step() is not None:
    pass
print(cpn.get_marking())

print(json.dumps(export_cpn_to_json(cpn, context), indent=2))
