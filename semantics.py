"""
Nemo Semantics Analysis
Lowers CST nodes to AST dictionaries and checks static well-formedness
"""

from typing import Any, Dict, List, Optional
import logging
from parsing import CSTNode, SourceSpan

logger = logging.getLogger(__name__)


# ============================================================================
# DATA STRUCTURES (Immutable Dictionaries)
# ============================================================================

def make_ast_node(node_type: str, value: Any = None, span: Optional[SourceSpan] = None) -> Dict:
  """Create an AST node dictionary"""
  return {
      'type': node_type,
      'value': value,
      'span': span
  }


def make_scope(in_function: bool = False) -> Dict:
  """Static context of the node being analyzed"""
  return {
      'in_function': in_function
  }


class NemoSemanticsError(Exception):
  """Nemo semantics analysis error"""

  def __init__(self, message: str, span: Optional[SourceSpan] = None):
    self.message = message
    self.span = span
    super().__init__(self._format_error())

  def _format_error(self) -> str:
    if self.span:
      return f"Semantics error at {self.span}: {self.message}"
    return f"Semantics error: {self.message}"


# ============================================================================
# VALIDATION
# ============================================================================

def check_params(params: List[str], span: Optional[SourceSpan]) -> List[str]:
  """Reject parameter lists that bind the same name twice"""
  seen = set()
  for name in params:
    if name in seen:
      raise NemoSemanticsError(f"Duplicate parameter name: {name}", span)
    seen.add(name)
  return list(params)


# ============================================================================
# NODE ANALYSIS
# ============================================================================

def analyze_leaf(cst_node: CSTNode, scope: Dict) -> Dict:
  return make_ast_node(cst_node.type, cst_node.value, cst_node.span)


def analyze_assignment(cst_node: CSTNode, scope: Dict) -> Dict:
  return make_ast_node("ASSIGNMENT", {
      'name': cst_node.value,
      'expr': analyze_cst_node(cst_node.children[0], scope)
  }, cst_node.span)


def analyze_push(cst_node: CSTNode, scope: Dict) -> Dict:
  return make_ast_node("PUSH", {
      'expr': analyze_cst_node(cst_node.children[0], scope)
  }, cst_node.span)


def analyze_return(cst_node: CSTNode, scope: Dict) -> Dict:
  """`return` is only meaningful inside a function or lambda body"""
  if not scope['in_function']:
    raise NemoSemanticsError("'return' outside of a function body", cst_node.span)
  return make_ast_node("RETURN", {
      'expr': analyze_cst_node(cst_node.children[0], scope)
  }, cst_node.span)


def analyze_binary(cst_node: CSTNode, scope: Dict) -> Dict:
  left, right = cst_node.children
  return make_ast_node("BINARY", {
      'op': cst_node.value,
      'left': analyze_cst_node(left, scope),
      'right': analyze_cst_node(right, scope)
  }, cst_node.span)


def analyze_unary(cst_node: CSTNode, scope: Dict) -> Dict:
  """
  Desugar prefix operators

  `-x` becomes `0 - x` (folded for numeric literals) and `not x` becomes
  `if x then false else true`.
  """
  operand = analyze_cst_node(cst_node.children[0], scope)
  span = cst_node.span

  if cst_node.value == '-':
    if operand['type'] == "NUMBER":
      return make_ast_node("NUMBER", -operand['value'], span)
    return make_ast_node("BINARY", {
        'op': '-',
        'left': make_ast_node("NUMBER", 0.0, span),
        'right': operand
    }, span)

  return make_ast_node("IF", {
      'cond': operand,
      'then': make_ast_node("BOOL", False, span),
      'else': make_ast_node("BOOL", True, span)
  }, span)


def analyze_if(cst_node: CSTNode, scope: Dict) -> Dict:
  children = [analyze_cst_node(child, scope) for child in cst_node.children]
  return make_ast_node("IF", {
      'cond': children[0],
      'then': children[1],
      'else': children[2] if len(children) > 2 else None
  }, cst_node.span)


def analyze_while(cst_node: CSTNode, scope: Dict) -> Dict:
  cond, body = cst_node.children
  return make_ast_node("WHILE", {
      'cond': analyze_cst_node(cond, scope),
      'body': analyze_cst_node(body, scope)
  }, cst_node.span)


def analyze_block(cst_node: CSTNode, scope: Dict) -> Dict:
  return make_ast_node("BLOCK", {
      'exprs': [analyze_cst_node(child, scope) for child in cst_node.children]
  }, cst_node.span)


def analyze_call(cst_node: CSTNode, scope: Dict) -> Dict:
  callee, *args = cst_node.children
  return make_ast_node("CALL", {
      'callee': analyze_cst_node(callee, scope),
      'args': [analyze_cst_node(arg, scope) for arg in args]
  }, cst_node.span)


def analyze_index(cst_node: CSTNode, scope: Dict) -> Dict:
  target, key = cst_node.children
  return make_ast_node("INDEX", {
      'target': analyze_cst_node(target, scope),
      'key': analyze_cst_node(key, scope)
  }, cst_node.span)


def analyze_lambda(cst_node: CSTNode, scope: Dict) -> Dict:
  params = check_params(cst_node.value, cst_node.span)
  body = analyze_cst_node(cst_node.children[0], make_scope(in_function=True))
  return make_ast_node("LAMBDA", {
      'params': params,
      'body': body
  }, cst_node.span)


def analyze_definition(cst_node: CSTNode, scope: Dict) -> Dict:
  """Analyze a top-level `name(params) => body` definition"""
  name = cst_node.value['name']
  params = check_params(cst_node.value['params'], cst_node.span)
  body = analyze_cst_node(cst_node.children[0], make_scope(in_function=True))
  logger.debug("analyzed definition %s/%d", name, len(params))
  return make_ast_node("DEFINITION", {
      'name': name,
      'params': params,
      'body': body
  }, cst_node.span)


def analyze_use(cst_node: CSTNode, scope: Dict) -> Dict:
  return make_ast_node("USE", {'path': cst_node.value}, cst_node.span)


NODE_HANDLERS = {
    "NUMBER": analyze_leaf,
    "STRING": analyze_leaf,
    "BOOL": analyze_leaf,
    "NAME": analyze_leaf,
    "PULL": analyze_leaf,
    "FINISHED_PIPE": analyze_leaf,
    "ASSIGNMENT": analyze_assignment,
    "PUSH": analyze_push,
    "RETURN": analyze_return,
    "BINARY": analyze_binary,
    "UNARY": analyze_unary,
    "IF": analyze_if,
    "WHILE": analyze_while,
    "BLOCK": analyze_block,
    "CALL": analyze_call,
    "INDEX": analyze_index,
    "LAMBDA": analyze_lambda,
    "DEFINITION": analyze_definition,
    "USE": analyze_use,
}


def analyze_cst_node(cst_node: CSTNode, scope: Optional[Dict] = None) -> Dict:
  """Analyze a single CST node and return AST node"""
  if scope is None:
    scope = make_scope()

  handler = NODE_HANDLERS.get(cst_node.type)
  if handler is None:
    raise NemoSemanticsError(f"Unknown syntax node: {cst_node.type}", cst_node.span)
  return handler(cst_node, scope)


def analyze_program(cst_nodes: List[CSTNode]) -> List[Dict]:
  """
  Analyze a program (list of top-level CST nodes)

  Args:
    cst_nodes: DEFINITION and USE nodes from the parser

  Returns:
    AST nodes in source order

  Raises:
    NemoSemanticsError for expressions at top level or duplicate definitions
  """
  ast_nodes = []
  defined: Dict[str, Optional[SourceSpan]] = {}

  for cst_node in cst_nodes:
    if cst_node.type not in ("DEFINITION", "USE"):
      raise NemoSemanticsError(
          "Only definitions and 'use' statements are allowed at top level", cst_node.span)

    ast_node = analyze_cst_node(cst_node)
    if ast_node['type'] == "DEFINITION":
      name = ast_node['value']['name']
      if name in defined:
        raise NemoSemanticsError(
            f"Duplicate definition of '{name}' (first defined at {defined[name]})", ast_node['span'])
      defined[name] = ast_node['span']
    ast_nodes.append(ast_node)

  return ast_nodes


# ============================================================================
# FACTORY FUNCTIONS
# ============================================================================

def create_analyzer():
  """Factory function returning an analyzer object"""
  def analyze_node(cst_node):
    return analyze_cst_node(cst_node)

  return type('Analyzer', (), {
      'analyze': lambda self, cst_nodes: analyze_program(cst_nodes),
      'analyze_node': lambda self, cst_node: analyze_node(cst_node),
  })()
