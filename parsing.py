"""
Nemo Programming Language Parser
pyparsing grammar for Nemo producing CST nodes with source spans
"""

from typing import List, Any, Optional
from dataclasses import dataclass, field

# Import pyparsing with error handling
try:
    from pyparsing import (
        Forward, Keyword, Literal, QuotedString, Regex, Suppress, Group,
        Optional as PyParsingOptional, ZeroOrMore, MatchFirst, StringEnd,
        ParserElement, ParseException, python_style_comment, lineno, col
    )
    # Enable packrat parsing for performance
    ParserElement.enable_packrat()
except ImportError:
    raise ImportError("pyparsing library not found. Install with: pip install pyparsing")

from error_handling import NemoErrorHandler, NemoParseError


KEYWORDS = (
    'if', 'then', 'else', 'while', 'do', 'push', 'pull', 'return',
    'true', 'false', 'and', 'or', 'not', 'finished', 'use',
)


@dataclass(frozen=True)
class SourceSpan:
    """Source location information for preserving CST"""
    filename: str
    start_line: int
    start_col: int
    end_line: int
    end_col: int
    text: str = ""

    def __str__(self) -> str:
        if self.start_line == self.end_line:
            return f"{self.filename}:{self.start_line}:{self.start_col}-{self.end_col}"
        return f"{self.filename}:{self.start_line}:{self.start_col}-{self.end_line}:{self.end_col}"


@dataclass(frozen=True)
class CSTNode:
    """Concrete Syntax Tree node preserving all source information"""
    type: str
    value: Any
    children: List['CSTNode'] = field(default_factory=list)
    span: Optional[SourceSpan] = None

    def __str__(self) -> str:
        if self.children:
            children_str = ", ".join(str(child) for child in self.children)
            return f"{self.type}({self.value}, [{children_str}])"
        return f"{self.type}({self.value})"


class NemoGrammar:
    """Nemo grammar built from pyparsing elements"""

    def __init__(self, debug: bool = False):
        self.debug = debug
        self.filename = "<input>"
        self._setup_grammar()

    # ------------------------------------------------------------------
    # Span helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _token_start(s: str, loc: int) -> int:
        """Skip whitespace and comments; compound elements report loc before them"""
        while loc < len(s):
            if s[loc].isspace():
                loc += 1
            elif s[loc] == '#':
                end = s.find('\n', loc)
                loc = len(s) if end == -1 else end
            else:
                break
        return loc

    def _leaf_span(self, s: str, loc: int, text: str) -> SourceSpan:
        loc = self._token_start(s, loc)
        line = lineno(loc, s)
        column = col(loc, s)
        return SourceSpan(self.filename, line, column, line, column + len(text), text)

    def _node_span(self, s: str, loc: int, children: List[CSTNode]) -> SourceSpan:
        """Span from loc to the end of the last child"""
        loc = self._token_start(s, loc)
        line = lineno(loc, s)
        column = col(loc, s)
        last = next((c.span for c in reversed(children) if c.span), None)
        if last is None:
            return SourceSpan(self.filename, line, column, line, column)
        return SourceSpan(self.filename, line, column, last.end_line, last.end_col)

    def _leaf(self, node_type: str, convert=None):
        def action(s, loc, toks):
            raw = toks[0]
            value = convert(raw) if convert else raw
            return CSTNode(node_type, value, [], self._leaf_span(s, loc, str(raw)))
        return action

    def _constant(self, node_type: str, value: Any, text: str):
        def action(s, loc, toks):
            return CSTNode(node_type, value, [], self._leaf_span(s, loc, text))
        return action

    # ------------------------------------------------------------------
    # Grammar
    # ------------------------------------------------------------------

    def _setup_grammar(self):
        """Setup all grammar rules for Nemo"""

        LPAR, RPAR = Suppress("("), Suppress(")")
        LBRACE, RBRACE = Suppress("{"), Suppress("}")
        RBRACK = Suppress("]")
        COMMA, SEMI = Suppress(","), Suppress(";")
        BAR = Suppress("|")
        ARROW = Suppress("->")
        DEFINE_ARROW = Suppress("=>")
        WALRUS = Suppress(":=")

        kw = {name: Keyword(name) for name in KEYWORDS}
        reserved = MatchFirst([kw[name] for name in KEYWORDS])

        identifier = (~reserved + Regex(r"[A-Za-z_][A-Za-z0-9_]*")).set_name("name")

        expression = Forward().set_name("expression")

        # Literals
        number = Regex(r"\d+(\.\d+)?([eE][+-]?\d+)?").set_name("number")
        number.set_parse_action(self._leaf("NUMBER", float))

        string_raw = QuotedString('"', esc_char='\\').set_name("string")
        string_literal = string_raw.copy().set_parse_action(self._leaf("STRING"))

        true_literal = kw['true'].copy().set_parse_action(self._constant("BOOL", True, "true"))
        false_literal = kw['false'].copy().set_parse_action(self._constant("BOOL", False, "false"))
        pull_expr = kw['pull'].copy().set_parse_action(self._constant("PULL", None, "pull"))
        finished_literal = kw['finished'].copy().set_parse_action(
            self._constant("FINISHED_PIPE", None, "finished"))
        name_ref = identifier.copy().set_parse_action(self._leaf("NAME"))

        # Blocks: `;`-separated, optional trailing `;`, may be empty
        block = (
            LBRACE
            + Group(PyParsingOptional(expression + ZeroOrMore(SEMI + expression) + PyParsingOptional(SEMI)))
            + RBRACE
        ).set_parse_action(self._make_block)

        # Lambdas: |a, b| -> e    () -> e    (a, b) -> e    x -> e
        param_list = Group(PyParsingOptional(identifier + ZeroOrMore(COMMA + identifier)))
        lambda_expr = (
            (BAR + param_list + BAR + ARROW + expression)
            | (LPAR + param_list + RPAR + ARROW + expression)
            | (Group(identifier) + ARROW + expression)
        ).set_parse_action(self._make_lambda).set_name("lambda")

        parenthesized = LPAR + expression + RPAR

        primary = (
            number
            | string_literal
            | true_literal
            | false_literal
            | pull_expr
            | finished_literal
            | block
            | lambda_expr
            | parenthesized
            | name_ref
        )

        # Postfix: calls, subscripts and attribute access
        call_args = Group(PyParsingOptional(expression + ZeroOrMore(COMMA + expression)))
        call_suffix = Group(Literal("(") + call_args + RPAR)
        index_suffix = Group(Literal("[") + expression + RBRACK)
        attribute_suffix = Group(Literal(".") + identifier)
        postfix = (primary + ZeroOrMore(call_suffix | index_suffix | attribute_suffix))
        postfix.set_parse_action(self._make_postfix)

        unary = Forward()
        unary <<= (
            ((Regex(r"-(?!>)") | kw['not']) + unary).set_parse_action(self._make_unary)
            | postfix
        )

        # Binary precedence levels, tightest first
        multiplicative = self._binary_level(unary, Regex(r"[*/%]"))
        additive = self._binary_level(multiplicative, Regex(r"\+|-(?!>)"))
        comparison = self._binary_level(additive, Regex(r"!=|<=|>=|=(?![>=])|<|>"))
        conjunction = self._binary_level(comparison, kw['and'])
        disjunction = self._binary_level(conjunction, kw['or'])
        pipe = self._binary_level(disjunction, Literal("|"))

        # Prefix forms
        assignment = (identifier + WALRUS + expression).set_parse_action(self._make_assignment)
        push_stmt = (Suppress(kw['push']) + expression).set_parse_action(self._make_prefix("PUSH"))
        return_stmt = (Suppress(kw['return']) + expression).set_parse_action(self._make_prefix("RETURN"))
        if_expr = (
            Suppress(kw['if']) + expression
            + Suppress(kw['then']) + expression
            + PyParsingOptional(Suppress(kw['else']) + expression)
        ).set_parse_action(self._make_prefix("IF"))
        while_expr = (
            Suppress(kw['while']) + expression + Suppress(kw['do']) + expression
        ).set_parse_action(self._make_prefix("WHILE"))

        expression <<= assignment | push_stmt | return_stmt | if_expr | while_expr | pipe

        # Top level
        definition = (
            identifier + LPAR + param_list + RPAR + DEFINE_ARROW + expression
        ).set_parse_action(self._make_definition).set_name("definition")
        use_stmt = (Suppress(kw['use']) + string_raw.copy()).set_parse_action(
            self._leaf("USE")).set_name("use")

        program = ZeroOrMore(definition | use_stmt) + StringEnd()
        single_expression = expression + StringEnd()
        repl_line = (
            (definition | use_stmt)
            | (expression + ZeroOrMore(SEMI + expression) + PyParsingOptional(SEMI))
        ) + StringEnd()

        comment = Suppress(python_style_comment)
        for element in (program, single_expression, repl_line):
            element.ignore(comment)

        self.expression = expression
        self.program = program
        self.single_expression = single_expression
        self.repl_line = repl_line

        if self.debug:
            expression.set_debug()

    def _binary_level(self, operand: ParserElement, operator: ParserElement) -> ParserElement:
        """Left-associative binary operator level"""
        return (operand + ZeroOrMore(operator + operand)).set_parse_action(self._fold_binary)

    # ------------------------------------------------------------------
    # Parse actions
    # ------------------------------------------------------------------

    def _fold_binary(self, s, loc, toks):
        result = toks[0]
        for i in range(1, len(toks), 2):
            op, right = toks[i], toks[i + 1]
            result = CSTNode("BINARY", op, [result, right], self._node_span(s, loc, [right]))
        return result

    def _make_unary(self, s, loc, toks):
        op, operand = toks[0], toks[1]
        return CSTNode("UNARY", op, [operand], self._node_span(s, loc, [operand]))

    def _make_block(self, s, loc, toks):
        exprs = list(toks[0])
        return CSTNode("BLOCK", None, exprs, self._node_span(s, loc, exprs))

    def _make_lambda(self, s, loc, toks):
        params, body = list(toks[0]), toks[1]
        return CSTNode("LAMBDA", tuple(params), [body], self._node_span(s, loc, [body]))

    def _make_postfix(self, s, loc, toks):
        result = toks[0]
        for suffix in toks[1:]:
            kind = suffix[0]
            if kind == "(":
                args = list(suffix[1])
                result = CSTNode("CALL", None, [result] + args, self._node_span(s, loc, [result] + args))
            elif kind == "[":
                key = suffix[1]
                result = CSTNode("INDEX", None, [result, key], self._node_span(s, loc, [key]))
            else:
                key = CSTNode("STRING", suffix[1], [], None)
                span = self._node_span(s, loc, [result])
                result = CSTNode("INDEX", None, [result, key], span)
        return result

    def _make_assignment(self, s, loc, toks):
        name, expr = toks[0], toks[1]
        return CSTNode("ASSIGNMENT", name, [expr], self._node_span(s, loc, [expr]))

    def _make_prefix(self, node_type: str):
        def action(s, loc, toks):
            children = list(toks)
            return CSTNode(node_type, None, children, self._node_span(s, loc, children))
        return action

    def _make_definition(self, s, loc, toks):
        name, params, body = toks[0], list(toks[1]), toks[2]
        return CSTNode("DEFINITION", {'name': name, 'params': params}, [body],
                       self._node_span(s, loc, [body]))

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def _run(self, element: ParserElement, text: str, filename: str) -> List[CSTNode]:
        self.filename = filename
        try:
            return list(element.parse_string(text, parse_all=True))
        except ParseException as e:
            raise NemoErrorHandler(text, filename).enhance_parse_exception(e) from None

    def parse_program(self, text: str, filename: str = "<input>") -> List[CSTNode]:
        """Parse a complete Nemo program: definitions and `use` statements"""
        return self._run(self.program, text, filename)

    def parse_expression(self, text: str, filename: str = "<input>") -> CSTNode:
        """Parse a single Nemo expression"""
        return self._run(self.single_expression, text, filename)[0]

    def parse_repl_line(self, text: str, filename: str = "<repl>") -> List[CSTNode]:
        """Parse one REPL entry: a definition, a `use`, or `;`-separated expressions"""
        return self._run(self.repl_line, text, filename)


class NemoParser:
    """Main Nemo parser wrapping the grammar"""

    def __init__(self, debug: bool = False):
        self.debug = debug
        self.grammar = NemoGrammar(debug)

    def parse_file(self, filepath: str) -> List[CSTNode]:
        """Parse a Nemo source file"""
        try:
            with open(filepath, 'r', encoding='utf-8') as f:
                content = f.read()
        except FileNotFoundError:
            raise NemoParseError(f"File not found: {filepath}", filename=filepath)
        except UnicodeDecodeError as e:
            raise NemoParseError(f"Cannot decode file {filepath}: {e}", filename=filepath)
        return self.grammar.parse_program(content, filepath)

    def parse_string(self, text: str, filename: str = "<input>") -> List[CSTNode]:
        """Parse Nemo source code from string"""
        return self.grammar.parse_program(text, filename)

    def parse_expression(self, text: str, filename: str = "<input>") -> CSTNode:
        """Parse a single Nemo expression"""
        return self.grammar.parse_expression(text, filename)

    def parse_repl_line(self, text: str, filename: str = "<repl>") -> List[CSTNode]:
        return self.grammar.parse_repl_line(text, filename)


# Factory functions for creating parsers
def create_parser(debug: bool = False) -> NemoParser:
    """Create a Nemo parser"""
    return NemoParser(debug=debug)


def pretty_print_cst(cst: CSTNode, indent: int = 0) -> str:
    """Pretty print a CST node for debugging"""
    result = "  " * indent + f"{cst.type}"
    if cst.value is not None:
        result += f"({repr(cst.value)})"
    result += "\n"

    for child in cst.children:
        result += pretty_print_cst(child, indent + 1)

    return result
