"""
Nemo Standard Library
Operator implementations, native leaf builtins and the pipe-stage prelude
"""

from typing import Dict, Callable, List
import math
import operator
from utilities import (
  binary_comparison_op,
  binary_arithmetic_op,
  validate_function_args,
  make_bool,
  make_string,
  make_unit,
  make_builtin_function,
  format_value,
  values_equal,
)


# ============================================================================
# PRINT FUNCTIONS
# ============================================================================

def nemo_print(value: Dict) -> Dict:
  """Print a value followed by a newline"""
  print(format_value(value), flush=True)
  return make_unit()


def nemo_input(prompt: Dict) -> Dict:
  """Read one line from stdin after showing a prompt"""
  validate_function_args("input", [prompt], ["String"])
  try:
    line = input(prompt['value'])
  except EOFError:
    line = ""
  return make_string(line)


def nemo_show(value: Dict) -> Dict:
  """Convert value to its display string"""
  return make_string(format_value(value, quote_strings=True))


# ============================================================================
# ARITHMETIC FUNCTIONS
# ============================================================================

nemo_add = binary_arithmetic_op(operator.add, "+", ["Num", "String"])
nemo_sub = binary_arithmetic_op(operator.sub, "-")
nemo_mul = binary_arithmetic_op(operator.mul, "*")
nemo_div = binary_arithmetic_op(operator.truediv, "/", zero_divisor=True)


def float_mod(x: float, y: float) -> float:
  """fmod with IEEE results: sign of the dividend, NaN for an infinite dividend"""
  if math.isinf(x):
    return math.nan
  return math.fmod(x, y)


nemo_mod = binary_arithmetic_op(float_mod, "%", zero_divisor=True)


# ============================================================================
# COMPARISON FUNCTIONS
# ============================================================================

def nemo_eq(x: Dict, y: Dict) -> Dict:
  """Equality comparison, defined for every pair of values"""
  return make_bool(values_equal(x, y))


def nemo_ne(x: Dict, y: Dict) -> Dict:
  """Not equal comparison"""
  return make_bool(not values_equal(x, y))


nemo_lt = binary_comparison_op(operator.lt, "<")
nemo_gt = binary_comparison_op(operator.gt, ">")
nemo_le = binary_comparison_op(operator.le, "<=")
nemo_ge = binary_comparison_op(operator.ge, ">=")


BUILTIN_OPERATORS: Dict[str, Callable[[Dict, Dict], Dict]] = {
    '+': nemo_add,
    '-': nemo_sub,
    '*': nemo_mul,
    '/': nemo_div,
    '%': nemo_mod,
    '=': nemo_eq,
    '!=': nemo_ne,
    '<': nemo_lt,
    '>': nemo_gt,
    '<=': nemo_le,
    '>=': nemo_ge,
}


# ============================================================================
# PIPE PRELUDE
# ============================================================================

# Pipe stages are ordinary Nemo closures built from push/pull. Loop state is
# kept in parameters of the `_`-prefixed helpers so assignments never reach
# user bindings in the global scope.
PRELUDE_SOURCE = """
# Producer: pushes 0 .. n-1
range(n) => _range_from(0, n)

_range_from(i, n) => while i < n do {
  push i;
  i := i + 1
}

map(f) => _map_from(f, pull)

_map_from(f, v) => while v != finished do {
  push f(v);
  v := pull
}

filter(f) => _filter_from(f, pull)

_filter_from(f, v) => while v != finished do {
  if f(v) then push v;
  v := pull
}

# Consumer: evaluates to the accumulator, nothing is pushed
reduce(f, start) => _reduce_from(f, start, pull)

_reduce_from(f, acc, v) => {
  while v != finished do {
    acc := f(acc, v);
    v := pull
  };
  acc
}

show_pipe() => _show_from(pull)

_show_from(v) => while v != finished do {
  print(v);
  v := pull
}

foreach(f) => _foreach_from(f, pull)

_foreach_from(f, v) => while v != finished do {
  f(v);
  v := pull
}

# Forwards at most n values, then stops pulling
take(n) => _take_from(n, 0, finished)

_take_from(n, i, v) => while i < n do {
  v := pull;
  if v = finished then i := n else {
    push v;
    i := i + 1
  }
}
"""


# ============================================================================
# BUILT-IN FUNCTION REGISTRY
# ============================================================================

BUILTIN_FUNCTIONS: Dict[str, Dict] = {
    "print": make_builtin_function("print", nemo_print, 1),
    "input": make_builtin_function("input", nemo_input, 1),
    "show": make_builtin_function("show", nemo_show, 1),
}


def get_builtin_function(name: str) -> Dict:
  """Get a built-in function by name"""
  if name in BUILTIN_FUNCTIONS:
    return BUILTIN_FUNCTIONS[name]
  raise KeyError(f"Unknown built-in function: {name}")


def list_builtin_functions() -> List[str]:
  """List all available native built-in functions"""
  return list(BUILTIN_FUNCTIONS.keys())
