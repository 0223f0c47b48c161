"""
Nemo Interpreter
Tree-walking evaluation of AST dictionaries over chained mutable environments
Pipes are handed to the pipe scheduler, which runs each side as an actor
"""

from typing import Dict, List, Optional, Tuple
import functools
import logging
import os

from error_handling import NemoRuntimeError
from utilities import (
  make_number,
  make_string,
  make_bool,
  make_unit,
  make_pipe_end,
  make_closure,
  make_return,
  is_return,
  is_truthy,
  is_callable_value,
  unbound_name_error,
  arity_error,
  not_callable_error,
  invalid_index_error,
)
from stdlib import BUILTIN_OPERATORS, BUILTIN_FUNCTIONS, PRELUDE_SOURCE
from pipes import run_pipe, pipe_push, pipe_pull, make_execution_context
from parsing import create_parser
from semantics import analyze_program, analyze_cst_node, make_ast_node

logger = logging.getLogger(__name__)

NEMO_EXTENSION = ".nemo"


# ============================================================================
# ENVIRONMENT
# ============================================================================

def make_runtime_env(parent: Optional[Dict] = None, bindings: Optional[Dict] = None) -> Dict:
  """
  Create a scope frame

  Frames are mutable and shared by reference: closures hold the frame chain
  active where they were created. Only the root frame tracks loaded modules.
  """
  env = {
      'parent': parent,
      'bindings': dict(bindings) if bindings else {}
  }
  if parent is None:
    env['modules'] = {}
  return env


def env_find_frame(env: Dict, name: str) -> Optional[Dict]:
  """Innermost frame binding name"""
  frame = env
  while frame is not None:
    if name in frame['bindings']:
      return frame
    frame = frame['parent']
  return None


def env_lookup_value(env: Dict, name: str) -> Optional[Dict]:
  """Look up a value in the environment chain"""
  frame = env_find_frame(env, name)
  if frame is None:
    return None
  return frame['bindings'][name]


def env_assign(env: Dict, name: str, value: Dict) -> None:
  """Rebind name where it is bound, or create it in the current frame"""
  frame = env_find_frame(env, name)
  if frame is None:
    frame = env
  frame['bindings'][name] = value


def env_define(env: Dict, name: str, value: Dict) -> None:
  env['bindings'][name] = value


def env_extend(env: Dict, names: List[str], values: List[Dict]) -> Dict:
  """New child frame of env with names bound to values"""
  return make_runtime_env(env, dict(zip(names, values)))


def env_root(env: Dict) -> Dict:
  while env['parent'] is not None:
    env = env['parent']
  return env


# ============================================================================
# EVALUATION FUNCTIONS
# ============================================================================

def eval_ast(ast_node: Dict, env: Dict, context: Optional[Dict] = None) -> Dict:
  """
  Evaluate an AST node to a value

  The result is either an ordinary value or a Return control value, which
  every compound form passes straight up until a call frame unwraps it.
  Runtime errors are annotated with the span of the innermost failing node.
  """
  if context is None:
    context = make_execution_context()

  node_type = ast_node['type']

  try:
    if node_type == "NUMBER":
      return make_number(ast_node['value'])
    elif node_type == "STRING":
      return make_string(ast_node['value'])
    elif node_type == "BOOL":
      return make_bool(ast_node['value'])
    elif node_type == "NAME":
      return eval_name(ast_node, env, context)
    elif node_type == "ASSIGNMENT":
      return eval_assignment(ast_node, env, context)
    elif node_type == "PUSH":
      return eval_push(ast_node, env, context)
    elif node_type == "PULL":
      return pipe_pull(context)
    elif node_type == "RETURN":
      return eval_return(ast_node, env, context)
    elif node_type == "BINARY":
      return eval_binary(ast_node, env, context)
    elif node_type == "IF":
      return eval_if(ast_node, env, context)
    elif node_type == "WHILE":
      return eval_while(ast_node, env, context)
    elif node_type == "BLOCK":
      return eval_block(ast_node, env, context)
    elif node_type == "CALL":
      return eval_call(ast_node, env, context)
    elif node_type == "LAMBDA":
      return eval_lambda(ast_node, env, context)
    elif node_type == "INDEX":
      return eval_index(ast_node, env, context)
    elif node_type == "FINISHED_PIPE":
      return make_pipe_end()
    raise ValueError(f"Unknown AST node type: {node_type}")
  except NemoRuntimeError as e:
    if e.span is None:
      e.span = ast_node.get('span')
    raise


def eval_name(ast_node: Dict, env: Dict, context: Dict) -> Dict:
  """Evaluate identifier by looking up in environment"""
  name = ast_node['value']
  value = env_lookup_value(env, name)

  if value is None:
    raise unbound_name_error(name)

  return value


def eval_assignment(ast_node: Dict, env: Dict, context: Dict) -> Dict:
  """Evaluate `name := expr`; the assignment itself is Unit"""
  value = eval_ast(ast_node['value']['expr'], env, context)
  if is_return(value):
    return value
  env_assign(env, ast_node['value']['name'], value)
  return make_unit()


def eval_push(ast_node: Dict, env: Dict, context: Dict) -> Dict:
  value = eval_ast(ast_node['value']['expr'], env, context)
  if is_return(value):
    return value
  return pipe_push(value, context)


def eval_return(ast_node: Dict, env: Dict, context: Dict) -> Dict:
  value = eval_ast(ast_node['value']['expr'], env, context)
  if is_return(value):
    return value
  return make_return(value)


def eval_binary(ast_node: Dict, env: Dict, context: Dict) -> Dict:
  """
  Evaluate a binary operation

  `|` runs both operands as a pipe. `and`/`or` short-circuit and yield a
  Bool. Every other operator evaluates left before right.
  """
  node = ast_node['value']
  op = node['op']

  if op == '|':
    return run_pipe(node['left'], node['right'], env, context, eval_ast)

  left = eval_ast(node['left'], env, context)
  if is_return(left):
    return left

  if op == 'and' and not is_truthy(left):
    return make_bool(False)
  if op == 'or' and is_truthy(left):
    return make_bool(True)

  right = eval_ast(node['right'], env, context)
  if is_return(right):
    return right

  if op in ('and', 'or'):
    return make_bool(is_truthy(right))

  return BUILTIN_OPERATORS[op](left, right)


def eval_if(ast_node: Dict, env: Dict, context: Dict) -> Dict:
  node = ast_node['value']
  cond = eval_ast(node['cond'], env, context)
  if is_return(cond):
    return cond

  if is_truthy(cond):
    return eval_ast(node['then'], env, context)
  elif node['else'] is not None:
    return eval_ast(node['else'], env, context)
  return make_unit()


def eval_while(ast_node: Dict, env: Dict, context: Dict) -> Dict:
  """Loop while the condition is truthy; the loop itself is Unit"""
  node = ast_node['value']
  while True:
    cond = eval_ast(node['cond'], env, context)
    if is_return(cond):
      return cond
    if not is_truthy(cond):
      return make_unit()
    result = eval_ast(node['body'], env, context)
    if is_return(result):
      return result


def eval_block(ast_node: Dict, env: Dict, context: Dict) -> Dict:
  """Evaluate expressions in a new child scope; value of the last one"""
  scope = make_runtime_env(env)
  result = make_unit()
  for expr in ast_node['value']['exprs']:
    result = eval_ast(expr, scope, context)
    if is_return(result):
      return result
  return result


def eval_call(ast_node: Dict, env: Dict, context: Dict) -> Dict:
  """Evaluate function application"""
  node = ast_node['value']
  callee = eval_ast(node['callee'], env, context)
  if is_return(callee):
    return callee
  if not is_callable_value(callee):
    raise not_callable_error(callee)

  args = []
  for arg_node in node['args']:
    arg = eval_ast(arg_node, env, context)
    if is_return(arg):
      return arg
    args.append(arg)

  return apply_function(callee, args, context)


def apply_function(func: Dict, args: List[Dict], context: Optional[Dict] = None) -> Dict:
  """
  Apply a closure or builtin to evaluated arguments

  Args:
    func: Closure or BuiltinFunction value
    args: Argument values, already evaluated left to right
    context: Execution context of the calling task

  Returns:
    The call's value, with any Return unwrapped
  """
  func_data = func['value']

  if func['type'] == "BuiltinFunction":
    if len(args) != func_data['arity']:
      raise arity_error(func_data['name'], func_data['arity'], len(args))
    return func_data['func'](*args)

  params = func_data['params']
  if len(args) != len(params):
    raise arity_error(func_data['name'], len(params), len(args))

  logger.debug("call %s/%d", func_data['name'], len(params))
  call_env = env_extend(func_data['closure_env'], params, args)
  result = eval_ast(func_data['body'], call_env, context)
  if is_return(result):
    result = result['value']
  return result


def eval_lambda(ast_node: Dict, env: Dict, context: Dict) -> Dict:
  """Evaluate lambda to a closure capturing env by reference"""
  node = ast_node['value']
  return make_closure(node['params'], node['body'], env)


def eval_index(ast_node: Dict, env: Dict, context: Dict) -> Dict:
  """
  Evaluate subscript and attribute access

  Supported: String[Num] (one character), String.length,
  and .name / .arity on functions.
  """
  node = ast_node['value']
  target = eval_ast(node['target'], env, context)
  if is_return(target):
    return target
  key = eval_ast(node['key'], env, context)
  if is_return(key):
    return key

  if target['type'] == "String":
    text = target['value']
    if key['type'] == "Num":
      index = key['value']
      if index.is_integer() and 0 <= index < len(text):
        return make_string(text[int(index)])
    elif key['type'] == "String" and key['value'] == "length":
      return make_number(len(text))
  elif is_callable_value(target) and key['type'] == "String":
    func_data = target['value']
    if key['value'] == "name":
      return make_string(func_data['name'])
    if key['value'] == "arity":
      arity = func_data['arity'] if target['type'] == "BuiltinFunction" else len(func_data['params'])
      return make_number(arity)

  raise invalid_index_error(target, key)


# ============================================================================
# GLOBAL ENVIRONMENT
# ============================================================================

@functools.lru_cache(maxsize=None)
def get_parser():
  return create_parser()


@functools.lru_cache(maxsize=None)
def load_prelude() -> Tuple[Dict, ...]:
  """Parse and analyze the Nemo-source builtins once"""
  cst_nodes = get_parser().parse_string(PRELUDE_SOURCE, "<prelude>")
  return tuple(analyze_program(cst_nodes))


def install_definition(ast_node: Dict, env: Dict) -> Dict:
  """Bind a top-level definition as a closure over env"""
  node = ast_node['value']
  closure = make_closure(node['params'], node['body'], env, node['name'])
  env_define(env, node['name'], closure)
  return closure


def create_builtin_runtime_env() -> Dict:
  """Create the global environment with native builtins and the prelude"""
  env = make_runtime_env()
  for name, builtin in BUILTIN_FUNCTIONS.items():
    env_define(env, name, builtin)
  for ast_node in load_prelude():
    install_definition(ast_node, env)
  return env


# ============================================================================
# PROGRAM EVALUATION
# ============================================================================

def resolve_module_path(path: str, base_dir: Optional[str]) -> str:
  full_path = os.path.abspath(os.path.join(base_dir or os.getcwd(), path))
  if not os.path.exists(full_path) and not full_path.endswith(NEMO_EXTENSION):
    full_path += NEMO_EXTENSION
  return full_path


def use_module(path: str, global_env: Dict, base_dir: Optional[str] = None) -> Dict:
  """
  Install the definitions of another Nemo file into global_env

  Each file is loaded at most once per global environment, which also
  stops `use` cycles. A file that fails to parse or analyze is not
  recorded, so a later `use` tries it again.
  """
  root = env_root(global_env)
  full_path = resolve_module_path(path, base_dir)
  if full_path in root['modules']:
    logger.debug("module %s already loaded", full_path)
    return make_unit()

  ast_nodes = analyze_program(get_parser().parse_file(full_path))
  # marked before installing so a `use` cycle stops here
  root['modules'][full_path] = []
  module_dir = os.path.dirname(full_path)
  for ast_node in ast_nodes:
    evaluate_top_level(ast_node, root, module_dir)
    if ast_node['type'] == "DEFINITION":
      root['modules'][full_path].append(ast_node['value']['name'])

  logger.debug("loaded module %s: %s", full_path, root['modules'][full_path])
  return make_unit()


def evaluate_top_level(ast_node: Dict, global_env: Dict, base_dir: Optional[str] = None) -> Dict:
  """
  Evaluate one REPL entry or top-level item

  Definitions are installed and `use` loads a file; both evaluate to Unit.
  Any other node is evaluated as an expression in global_env.

  Raises:
    NemoRuntimeError for any runtime failure
  """
  node_type = ast_node['type']
  if node_type == "DEFINITION":
    install_definition(ast_node, global_env)
    return make_unit()
  if node_type == "USE":
    return use_module(ast_node['value']['path'], global_env, base_dir)

  result = eval_ast(ast_node, global_env, make_execution_context())
  if is_return(result):
    result = result['value']
  return result


def run_program(ast_nodes: List[Dict], global_env: Optional[Dict] = None,
                entry: str = "main", base_dir: Optional[str] = None) -> Dict:
  """Install every top-level item, then call the entry function with no arguments"""
  if global_env is None:
    global_env = create_builtin_runtime_env()

  for ast_node in ast_nodes:
    evaluate_top_level(ast_node, global_env, base_dir)

  call = make_ast_node("CALL", {
      'callee': make_ast_node("NAME", entry),
      'args': []
  })
  return evaluate_top_level(call, global_env, base_dir)


# ============================================================================
# FACTORY FUNCTIONS
# ============================================================================

class Interpreter:
  """Holds one global environment across evaluations"""

  def __init__(self):
    self.global_env = create_builtin_runtime_env()

  def evaluate(self, ast_node: Dict, base_dir: Optional[str] = None) -> Dict:
    return evaluate_top_level(ast_node, self.global_env, base_dir)

  def run(self, ast_nodes: List[Dict], entry: str = "main", base_dir: Optional[str] = None) -> Dict:
    return run_program(ast_nodes, self.global_env, entry, base_dir)

  def eval_line(self, text: str, filename: str = "<repl>") -> Dict:
    """Parse, analyze and evaluate one REPL line; value of its last item"""
    result = make_unit()
    for cst_node in get_parser().parse_repl_line(text, filename):
      result = self.evaluate(analyze_cst_node(cst_node))
    return result

  def lookup(self, name: str) -> Optional[Dict]:
    return env_lookup_value(self.global_env, name)


def create_interpreter() -> Interpreter:
  """Factory function returning an interpreter"""
  return Interpreter()
