import logging

from cpnkit.cpn.colorsets import ColorSetParser
from cpnkit.cpn.cpn_imp import *
from cpnkit.cpn.visitor import NetPrinter

logging.basicConfig(level=logging.DEBUG)

cs_definitions = """
colset INT = int;
colset STRING = string;
colset PAIR = product(INT, STRING);
"""

parser = ColorSetParser()
colorsets = parser.parse_definitions(cs_definitions)

int_set = colorsets["INT"]
pair_set = colorsets["PAIR"]

# Create the CPN structure
p_int = Place("P_Int", int_set, tokens=[5, 12])
p_str = Place("P_Str", colorsets["STRING"], tokens=["hello"])
p_pair = Place("P_Pair")  # holds product tokens, no color constraint

t = Transition("T", pair_set)
t.add_input(InputArc(p_int)).add_input(InputArc(p_str))
t.add_output(OutputArc(p_pair, expression="(x[0], x[1])"))

cpn = CPN()
cpn.add_transition(t)

print(NetPrinter.render(cpn))

# T needs both an int and a string: only the second arc completes the cover
print("Is T enabled?", t.is_enabled())

cpn.fire(t)
print(cpn.get_marking())
print("Is T still enabled?", t.is_enabled())
