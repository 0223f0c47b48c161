"""
Utilities module for the Nemo interpreter
Value constructors, truthiness, value printing and error builders
"""

from typing import Any, Dict, List, Optional, Callable

from error_handling import (
  NemoRuntimeError,
  UNBOUND_NAME,
  ARITY_MISMATCH,
  NOT_CALLABLE,
  INVALID_INDEX,
  DIVISION_BY_ZERO,
  TYPE_MISMATCH,
  NO_ACTIVE_PIPE,
)


# ==================== VALUE CONSTRUCTORS ====================

def make_value(value: Any, type_name: str = "Unit") -> Dict:
  """Create an immutable runtime value"""
  return {
      'value': value,
      'type': type_name
  }


def make_number(number: float) -> Dict:
  return make_value(float(number), "Num")


def make_string(text: str) -> Dict:
  return make_value(text, "String")


def make_bool(flag: bool) -> Dict:
  return make_value(bool(flag), "Bool")


def make_unit() -> Dict:
  return make_value(None, "Unit")


def make_pipe_end() -> Dict:
  """The sentinel a consumer pulls once its producer has finished"""
  return make_value(None, "PipeEnd")


def make_closure(params: List[str], body: Dict, closure_env: Dict, name: str = "<lambda>") -> Dict:
  """
  Create a closure value

  The environment is stored by reference, so later assignments to captured
  names are visible inside the closure body.
  """
  return make_value({
      'name': name,
      'params': list(params),
      'body': body,
      'closure_env': closure_env
  }, "Closure")


def make_builtin_function(name: str, func: Callable, arity: int) -> Dict:
  """Create a built-in function value"""
  return make_value({
      'name': name,
      'func': func,
      'arity': arity
  }, "BuiltinFunction")


def make_return(value: Dict) -> Dict:
  """Control result produced by `return`, unwound by the nearest call frame"""
  return make_value(value, "Return")


# ==================== TYPE CHECKING UTILITIES ====================

def is_return(val: Dict) -> bool:
  return val['type'] == "Return"


def is_pipe_end(val: Dict) -> bool:
  return val['type'] == "PipeEnd"


def is_callable_value(val: Dict) -> bool:
  return val['type'] in ("Closure", "BuiltinFunction")


def is_truthy(val: Dict) -> bool:
  """Only the Bool value false is falsy"""
  return not (val['type'] == "Bool" and val['value'] is False)


def values_equal(x: Dict, y: Dict) -> bool:
  """
  Structural equality for scalar values, identity for functions

  Values of different variants are never equal.
  """
  if x['type'] != y['type']:
    return False
  if is_callable_value(x):
    return x['value'] is y['value']
  return x['value'] == y['value']


# ==================== VALUE PRINTING ====================

def format_number(number: float) -> str:
  """Integral doubles print without a fractional part"""
  if number != number:
    return "nan"
  if number in (float('inf'), float('-inf')):
    return "inf" if number > 0 else "-inf"
  if number.is_integer() and abs(number) < 1e16:
    return str(int(number))
  return repr(number)


def format_value(val: Dict, quote_strings: bool = False) -> str:
  """
  Render a value for display

  Args:
    val: Value dict
    quote_strings: Render strings with surrounding quotes (REPL echo)

  Returns:
    Printable text
  """
  val_type = val['type']

  if val_type == "Num":
    return format_number(val['value'])
  elif val_type == "String":
    if quote_strings:
      escaped = val['value'].replace('\\', '\\\\').replace('"', '\\"')
      return f'"{escaped}"'
    return val['value']
  elif val_type == "Bool":
    return "true" if val['value'] else "false"
  elif val_type == "Unit":
    return "()"
  elif val_type == "PipeEnd":
    return "<finished>"
  elif val_type == "Closure":
    func = val['value']
    return f"<closure {func['name']}/{len(func['params'])}>"
  elif val_type == "BuiltinFunction":
    func = val['value']
    return f"<builtin {func['name']}/{func['arity']}>"
  elif val_type == "Return":
    return format_value(val['value'], quote_strings)
  return f"<{val_type}>"


# ==================== ERROR MESSAGE BUILDERS ====================

def unbound_name_error(name: str) -> NemoRuntimeError:
  """Generate error for a name with no binding in scope"""
  return NemoRuntimeError(UNBOUND_NAME, f"Unbound name: {name}")


def arity_error(func_name: str, expected: int, got: int) -> NemoRuntimeError:
  """
  Generate arity mismatch error

  Args:
    func_name: Function name
    expected: Expected number of arguments
    got: Actual number of arguments

  Returns:
    NemoRuntimeError with formatted message
  """
  return NemoRuntimeError(
    ARITY_MISMATCH,
    f"{func_name} requires {expected} arguments, got {got}"
  )


def not_callable_error(val: Dict) -> NemoRuntimeError:
  return NemoRuntimeError(
    NOT_CALLABLE,
    f"Cannot call a value of type {val['type']}: {format_value(val, quote_strings=True)}"
  )


def invalid_index_error(target: Dict, key: Dict) -> NemoRuntimeError:
  return NemoRuntimeError(
    INVALID_INDEX,
    f"Cannot index {target['type']} with {format_value(key, quote_strings=True)}"
  )


def division_by_zero_error(op: str) -> NemoRuntimeError:
  return NemoRuntimeError(DIVISION_BY_ZERO, f"Division by zero in '{op}'")


def operation_error(
  op: str,
  left_type: str,
  right_type: str
) -> NemoRuntimeError:
  """
  Generate operation error

  Args:
    op: Operator symbol
    left_type: Left operand type
    right_type: Right operand type

  Returns:
    NemoRuntimeError with formatted message
  """
  return NemoRuntimeError(
    TYPE_MISMATCH,
    f"Cannot apply '{op}' to {left_type} and {right_type}"
  )


def type_mismatch_error(
  func_name: str,
  param_name: str,
  expected: str,
  actual: Dict
) -> NemoRuntimeError:
  """Generate type mismatch error for a builtin parameter"""
  actual_type = actual.get('type', 'Unknown')
  return NemoRuntimeError(
    TYPE_MISMATCH,
    f"{func_name} requires {expected} for {param_name}, got {actual_type}"
  )


def no_active_pipe_error(operation: str) -> NemoRuntimeError:
  return NemoRuntimeError(
    NO_ACTIVE_PIPE,
    f"'{operation}' used outside of a pipe"
  )


# ==================== VALIDATION UTILITIES ====================

def validate_function_args(
  func_name: str,
  args: List[Dict],
  expected_types: List[Optional[str]]
) -> None:
  """
  Validate function arguments match expected types

  Args:
    func_name: Function name for error messages
    args: List of argument values
    expected_types: Expected type names, None accepts any type

  Raises:
    NemoRuntimeError if validation fails
  """
  if len(args) != len(expected_types):
    raise arity_error(func_name, len(expected_types), len(args))

  for i, (arg, expected) in enumerate(zip(args, expected_types)):
    if expected is not None and arg['type'] != expected:
      raise type_mismatch_error(func_name, f"argument {i+1}", expected, arg)


# ==================== BINARY OPERATION FACTORIES ====================

def binary_comparison_op(
  op: Callable[[Any, Any], bool],
  op_name: str,
  allowed_types: Optional[List[str]] = None
) -> Callable[[Dict, Dict], Dict]:
  """
  Factory for binary ordering comparisons

  Args:
    op: Python operator function (e.g., operator.lt)
    op_name: Operator symbol for error messages
    allowed_types: Types that support this operation

  Returns:
    Function that performs the comparison

  Examples:
    nemo_lt = binary_comparison_op(operator.lt, "<")
    result = nemo_lt(make_number(1), make_number(2))
  """
  if allowed_types is None:
    allowed_types = ["Num", "String"]

  def comparison(x: Dict, y: Dict) -> Dict:
    if x['type'] != y['type'] or x['type'] not in allowed_types:
      raise operation_error(op_name, x['type'], y['type'])
    return make_bool(op(x['value'], y['value']))

  return comparison


def binary_arithmetic_op(
  op: Callable[[Any, Any], Any],
  op_name: str,
  allowed_types: Optional[List[str]] = None,
  zero_divisor: bool = False
) -> Callable[[Dict, Dict], Dict]:
  """
  Factory for binary arithmetic operations

  Args:
    op: Python operator function (e.g., operator.add)
    op_name: Operator symbol for error messages
    allowed_types: Types that support this operation
    zero_divisor: Reject a Num right operand equal to zero

  Returns:
    Function that performs the arithmetic operation
  """
  if allowed_types is None:
    allowed_types = ["Num"]

  def arithmetic(x: Dict, y: Dict) -> Dict:
    if x['type'] != y['type'] or x['type'] not in allowed_types:
      raise operation_error(op_name, x['type'], y['type'])
    if zero_divisor and y['value'] == 0:
      raise division_by_zero_error(op_name)
    return make_value(op(x['value'], y['value']), x['type'])

  return arithmetic
