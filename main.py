"""
Nemo Programming Language - Main Entry Point
An expression language whose `|` runs producer and consumer concurrently
"""

import sys
import argparse
import atexit
import logging
import threading
from pathlib import Path
from typing import Optional, List, Dict
import os

# Readline support for history and auto-completion
try:
  import readline
  READLINE_AVAILABLE = True
except ImportError:
  READLINE_AVAILABLE = False

from parsing import create_parser, pretty_print_cst
from semantics import create_analyzer, NemoSemanticsError
from interpreter import create_interpreter
from pipes import shutdown_stages
from error_handling import NemoParseError, NemoRuntimeError, format_runtime_error
from utilities import format_value
from stdlib import list_builtin_functions

VERSION = "Nemo v0.3.0"
HISTORY_FILE = "~/.nemo_history"
RECURSION_LIMIT = 20000
# Pipe stages recurse on their own threads
THREAD_STACK_SIZE = 64 * 1024 * 1024

logger = logging.getLogger(__name__)


def create_arg_parser() -> argparse.ArgumentParser:
  """Create command line argument parser"""
  parser = argparse.ArgumentParser(
      description='Nemo Programming Language - expressions with concurrent pipes',
      formatter_class=argparse.RawDescriptionHelpFormatter,
      epilog="""
Examples:
  %(prog)s script.nemo            # Run a Nemo script (calls main())
  %(prog)s -i                     # Interactive mode
  %(prog)s --parse script.nemo    # Parse and show CST
  %(prog)s --analyze script.nemo  # Parse, analyze and show AST
  %(prog)s --entry start x.nemo   # Call start() instead of main()
  %(prog)s --debug script.nemo    # Run with debug logging
        """
  )

  parser.add_argument(
      'script',
      nargs='?',
      help='Nemo script file to execute'
  )

  parser.add_argument(
      '-i', '--interactive',
      action='store_true',
      help='Start interactive mode'
  )

  parser.add_argument(
      '--parse',
      action='store_true',
      help='Parse file and show CST (for debugging)'
  )

  parser.add_argument(
      '--analyze',
      action='store_true',
      help='Parse and analyze file, show AST (for debugging)'
  )

  parser.add_argument(
      '--entry',
      default='main',
      help='Entry function called after loading a script (default: main)'
  )

  parser.add_argument(
      '--debug',
      action='store_true',
      help='Enable debug logging for all stages'
  )

  parser.add_argument(
      '--version',
      action='version',
      version=VERSION
  )

  return parser


def setup_logging(debug: bool = False) -> None:
  logging.basicConfig(
      level=logging.DEBUG if debug else logging.WARNING,
      format="%(asctime)s %(threadName)s %(name)s %(levelname)s: %(message)s"
  )


def setup_runtime() -> None:
  """Raise interpreter limits and stop pipe stages at exit"""
  sys.setrecursionlimit(RECURSION_LIMIT)
  threading.stack_size(THREAD_STACK_SIZE)
  atexit.register(shutdown_stages)


def read_source(script_path: str) -> str:
  with open(script_path, 'r', encoding='utf-8') as f:
    return f.read()


def print_runtime_error(e: NemoRuntimeError, script_path: Optional[str] = None,
                        source_text: Optional[str] = None) -> None:
  """Report a runtime error with location and source line"""
  span_file = getattr(e.span, 'filename', None)
  if span_file != script_path:
    source_text = None
  print(f"\n{'='*70}")
  print("Runtime Error" + (f" in '{script_path}'" if script_path else ""))
  print(f"{'='*70}")
  print(format_runtime_error(e, source_text))


def parse_file(script_path: str, debug: bool = False) -> None:
  """Parse a Nemo script file and show the CST"""
  try:
    parser = create_parser(debug)

    print(f"Parsing {script_path}...")
    cst_nodes = parser.parse_file(script_path)

    print(f"\nParsed {len(cst_nodes)} top-level items:")
    print("=" * 50)

    for i, node in enumerate(cst_nodes, 1):
      print(f"\nItem {i}:")
      print(pretty_print_cst(node))

  except NemoParseError as e:
    print(f"Parse error in '{script_path}': {e}")
    sys.exit(1)


def print_ast(node, indent: int = 0) -> None:
  """Print an AST dictionary as an indented tree"""
  pad = "  " * indent
  if isinstance(node, dict) and 'type' in node and 'span' in node:
    value = node['value']
    if isinstance(value, dict):
      print(f"{pad}{node['type']}")
      for key, child in value.items():
        if isinstance(child, (dict, list)):
          print(f"{pad}  {key}:")
          print_ast(child, indent + 2)
        else:
          print(f"{pad}  {key}: {child!r}")
    else:
      print(f"{pad}{node['type']}" + (f"({value!r})" if value is not None else ""))
  elif isinstance(node, list):
    for item in node:
      print_ast(item, indent)
  else:
    print(f"{pad}{node!r}")


def analyze_file(script_path: str) -> None:
  """Parse and analyze a Nemo script file and show the AST"""
  try:
    parser = create_parser()
    analyzer = create_analyzer()

    print(f"Parsing and analyzing {script_path}...")
    cst_nodes = parser.parse_file(script_path)
    ast_nodes = analyzer.analyze(cst_nodes)

    print(f"\nAnalyzed {len(ast_nodes)} top-level items:")
    print("=" * 50)
    for i, ast_node in enumerate(ast_nodes, 1):
      print(f"\nItem {i} - AST:")
      print_ast(ast_node)

  except NemoParseError as e:
    print(f"Parse error in '{script_path}': {e}")
    sys.exit(1)
  except NemoSemanticsError as e:
    print(f"Semantic analysis error in '{script_path}': {e}")
    sys.exit(1)


def run_script_file(script_path: str, entry: str = "main") -> None:
  """Run a Nemo script: install its definitions, then call the entry function"""
  source_text = None
  try:
    parser = create_parser()
    analyzer = create_analyzer()
    interpreter = create_interpreter()

    source_text = read_source(script_path)
    cst_nodes = parser.parse_string(source_text, script_path)
    logger.debug("parsed %d top-level items from %s", len(cst_nodes), script_path)

    ast_nodes = analyzer.analyze(cst_nodes)
    base_dir = os.path.dirname(os.path.abspath(script_path))
    interpreter.run(ast_nodes, entry=entry, base_dir=base_dir)

  except (PermissionError, UnicodeDecodeError) as e:
    print(f"Error: Cannot read '{script_path}': {e}")
    sys.exit(1)
  except NemoParseError as e:
    print(f"Parse error in '{script_path}': {e}")
    sys.exit(1)
  except NemoSemanticsError as e:
    print(f"Semantic analysis error in '{script_path}': {e}")
    sys.exit(1)
  except NemoRuntimeError as e:
    print_runtime_error(e, script_path, source_text)
    sys.exit(1)
  except RecursionError:
    print(f"Runtime Error in '{script_path}': maximum recursion depth exceeded")
    sys.exit(1)


def setup_readline(completions: List[str]):
  """Setup readline with history and auto-completion"""
  if not READLINE_AVAILABLE:
    return

  history_file = os.path.expanduser(HISTORY_FILE)
  try:
    readline.read_history_file(history_file)
  except OSError:
    logger.debug("no readable history at %s", history_file)

  readline.set_history_length(1000)

  def completer(text, state):
    options = [word for word in completions if word.startswith(text)]
    if state < len(options):
      return options[state]
    return None

  readline.set_completer(completer)
  readline.parse_and_bind("tab: complete")

  def save_history():
    try:
      readline.write_history_file(history_file)
    except OSError as e:
      logger.debug("could not save history: %s", e)

  atexit.register(save_history)


REPL_HELP = """REPL Commands:
  :parse <expr>     - Show parsed CST
  :analyze <expr>   - Show analyzed AST
  :env              - Show user bindings
  :help             - Show this help
  :quit             - Exit REPL

Language features:
  add(x, y) => x + y                    - Function definition
  x := 5                                - Assignment
  f := |a, b| -> a * b                  - Lambda (also x -> e, () -> e)
  range(5) | map(x -> x * x) | show_pipe()
                                        - Pipes run both sides concurrently
  {push 5} | {pull}                     - push/pull talk to the nearest pipe
  use "lib.nemo"                        - Load definitions from a file"""


def echo_result(ast_node: Dict, result: Dict) -> None:
  """Show what one REPL item produced"""
  if ast_node['type'] == "DEFINITION":
    print(f"Defined function: {ast_node['value']['name']}")
  elif ast_node['type'] == "USE":
    print(f"Loaded: {ast_node['value']['path']}")
  elif result['type'] != "Unit":
    print(f"=> {format_value(result, quote_strings=True)} : {result['type']}")


def run_interactive_mode() -> None:
  """Run Nemo in interactive mode"""
  print(f"{VERSION} - Interactive Mode")
  print("Type ':quit' to quit, ':help' for commands")
  if READLINE_AVAILABLE:
    print("Readline enabled: Use ↑/↓ for history, Tab for completion")
  print()

  parser = create_parser()
  analyzer = create_analyzer()
  interpreter = create_interpreter()

  setup_readline(sorted(interpreter.global_env['bindings'].keys()) + [
      "if", "then", "else", "while", "do", "push", "pull", "return",
      "finished", "use", ":parse", ":analyze", ":env", ":help", ":quit",
  ])

  while True:
    try:
      code = input("nemo> ")
    except (KeyboardInterrupt, EOFError):
      print("\nGoodbye!")
      break

    stripped = code.strip()
    if not stripped or stripped.startswith("#"):
      continue
    if stripped == ":quit":
      break

    try:
      if stripped.startswith(":parse "):
        print("Expression CST:")
        print(pretty_print_cst(parser.parse_expression(stripped[7:])))
      elif stripped.startswith(":analyze "):
        print("Expression AST:")
        print_ast(analyzer.analyze_node(parser.parse_expression(stripped[9:])))
      elif stripped == ":env":
        builtins = set(list_builtin_functions())
        user_bindings = {
            name: value for name, value in interpreter.global_env['bindings'].items()
            if name not in builtins and not name.startswith('_')
        }
        for name, value in user_bindings.items():
          print(f"  {name} = {format_value(value, quote_strings=True)}")
      elif stripped == ":help":
        print(REPL_HELP)
      else:
        for cst_node in parser.parse_repl_line(code):
          ast_node = analyzer.analyze_node(cst_node)
          echo_result(ast_node, interpreter.evaluate(ast_node, base_dir=os.getcwd()))
    except NemoParseError as e:
      print(f"Parse error: {e}")
    except NemoSemanticsError as e:
      print(f"Semantic error: {e}")
    except NemoRuntimeError as e:
      print(f"\nRuntime Error:\n{format_runtime_error(e, code if getattr(e.span, 'filename', None) == '<repl>' else None)}")
    except RecursionError:
      print("Runtime Error: maximum recursion depth exceeded")
    except KeyboardInterrupt:
      print("\nInterrupted")


def show_language_info() -> None:
  """Show Nemo language information"""
  print("Nemo Programming Language")
  print("=" * 50)
  print("An expression language with:")
  print("• First-class closures over shared, mutable scopes")
  print("• Pipes: `a | b` runs a and b concurrently, linked by push/pull")
  print("• Pipe stages as ordinary functions: range, map, filter, reduce, take")
  print()


def main(argv: Optional[List[str]] = None) -> None:
  """Main entry point for Nemo"""
  if argv is None:
    argv = sys.argv[1:]

  arg_parser = create_arg_parser()
  args = arg_parser.parse_args(argv)

  setup_logging(args.debug)
  setup_runtime()

  if not argv:
    show_language_info()
    print("Use 'nemo --help' for command line options")
    print()
    run_interactive_mode()
    return

  if args.script:
    if not Path(args.script).exists():
      print(f"Error: Script file '{args.script}' does not exist")
      sys.exit(1)

    if args.parse:
      parse_file(args.script, args.debug)
    elif args.analyze:
      analyze_file(args.script)
    else:
      run_script_file(args.script, entry=args.entry)

  elif args.interactive:
    run_interactive_mode()

  else:
    arg_parser.print_help()
    print()
    show_language_info()


if __name__ == "__main__":
  main()
