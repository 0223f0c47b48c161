"""
Error handling for Nemo
Parse errors with detailed messages and runtime errors with error kinds
"""

from typing import List, Optional, Dict, Any
from pyparsing import ParseException
import re


# ============================================================================
# RUNTIME ERROR KINDS
# ============================================================================

UNBOUND_NAME = "UnboundName"
ARITY_MISMATCH = "ArityMismatch"
NOT_CALLABLE = "NotCallable"
INVALID_INDEX = "InvalidIndex"
DIVISION_BY_ZERO = "DivisionByZero"
TYPE_MISMATCH = "TypeMismatch"
NO_ACTIVE_PIPE = "NoActivePipe"

RUNTIME_ERROR_KINDS = (
    UNBOUND_NAME,
    ARITY_MISMATCH,
    NOT_CALLABLE,
    INVALID_INDEX,
    DIVISION_BY_ZERO,
    TYPE_MISMATCH,
    NO_ACTIVE_PIPE,
)


class NemoRuntimeError(Exception):
    """Error raised while evaluating a Nemo program"""

    def __init__(self, kind: str, message: str, span: Optional[Any] = None,
                 source_line: Optional[str] = None):
        self.kind = kind
        self.message = message
        self.span = span
        self.source_line = source_line
        super().__init__(message)

    def __str__(self) -> str:
        if self.span:
            return f"{self.kind}: {self.message} (at {self.span})"
        return f"{self.kind}: {self.message}"


def format_runtime_error(error: NemoRuntimeError, source_text: Optional[str] = None) -> str:
    """Format a runtime error with its location and source line"""
    error_msg = f"{error.kind}: {error.message}\n"

    if error.span:
        error_msg += f"  Location: {error.span}\n"
        line = getattr(error.span, 'start_line', 0)
        if source_text and 0 < line <= len(source_text.split('\n')):
            error.source_line = source_text.split('\n')[line - 1]

    if error.source_line:
        col = getattr(error.span, 'start_col', 1) if error.span else 1
        error_msg += f"  Source: {error.source_line}\n"
        error_msg += f"  {'':8}{' ' * (col - 1)}^\n"

    return error_msg


# ============================================================================
# PARSE ERROR DATA (Immutable Dictionaries)
# ============================================================================

def make_parse_error(
    message: str,
    location: int,
    line: int,
    column: int,
    expected: Optional[List[str]] = None,
    got: Optional[str] = None,
    context: Optional[str] = None,
    suggestions: Optional[List[str]] = None
) -> Dict:
    """Create an immutable parse error structure"""
    return {
        'message': message,
        'location': location,
        'line': line,
        'column': column,
        'expected': expected or [],
        'got': got,
        'context': context,
        'suggestions': suggestions or []
    }


def format_parse_error(error: Dict) -> str:
    """Format parse error as string"""
    error_msg = f"Parse error at line {error['line']}, column {error['column']}:\n"
    error_msg += f"  {error['message']}\n"

    if error['expected']:
        error_msg += f"  Expected: {', '.join(error['expected'])}\n"

    if error['got']:
        error_msg += f"  Got: {error['got']}\n"

    if error['context']:
        error_msg += f"  Context:\n{error['context']}\n"

    if error['suggestions']:
        error_msg += "  Suggestions:\n"
        for suggestion in error['suggestions']:
            error_msg += f"    - {suggestion}\n"

    return error_msg


# ============================================================================
# PURE FUNCTIONS
# ============================================================================

def get_context_lines(source_text: str, line_num: int, col_num: int, context_lines: int = 2) -> str:
    """Get context lines around the error"""
    lines = source_text.split('\n')
    start_line = max(0, line_num - context_lines - 1)
    end_line = min(len(lines), line_num + context_lines)

    context_parts = []
    for i in range(start_line, end_line):
        line_prefix = f"{i+1:4d}: "
        context_parts.append(f"{line_prefix}{lines[i]}")
        if i == line_num - 1:
            context_parts.append(f"{'':6}{' ' * (col_num - 1)}^ Error here")

    return '\n'.join(context_parts)


def extract_expected(exc: ParseException) -> List[str]:
    """Extract expected tokens from exception"""
    expected = []

    msg = str(exc)
    if "Expected" in msg:
        expected_match = re.search(r"Expected\s+(.+?)(?:,\s+found|\s+\(|$)", msg)
        if expected_match:
            expected.append(expected_match.group(1))

    return expected if expected else ["valid syntax"]


def extract_got(source_text: str, line_num: int, col_num: int) -> str:
    """Extract what was actually found at the error location"""
    lines = source_text.split('\n')

    if 0 < line_num <= len(lines):
        error_line = lines[line_num - 1]
        if col_num <= len(error_line):
            start = max(0, col_num - 1)
            end = min(len(error_line), col_num + 10)
            got_text = error_line[start:end].strip()
            if got_text:
                return f"'{got_text}'"
        return "end of line"
    return "end of input"


def generate_suggestions(source_text: str, got: str, expected: List[str]) -> List[str]:
    """Generate helpful suggestions based on the error"""
    suggestions = []

    if re.search(r"\b[a-zA-Z_]\w*\s*=[^=>]", source_text) and ":=" not in source_text:
        suggestions.append("Assignment uses ':=' - '=' compares two values")

    if "->" in got or re.search(r"\|\s*[a-zA-Z_]\w*\s*\|\s*[^-\s]", source_text):
        suggestions.append("Lambdas are written 'x -> body' or '|x, y| -> body'")

    if re.search(r"\bif\b", source_text) and not re.search(r"\bthen\b", source_text):
        suggestions.append("Conditionals need 'then': if cond then a else b")

    if re.search(r"\bwhile\b", source_text) and not re.search(r"\bdo\b", source_text):
        suggestions.append("Loops need 'do': while cond do body")

    if source_text.count("{") != source_text.count("}"):
        suggestions.append("Unbalanced braces - every '{' block needs a closing '}'")

    if source_text.count("(") != source_text.count(")"):
        suggestions.append("Unbalanced parentheses")

    if "=>" in str(expected):
        suggestions.append("Top-level definitions look like: name(params) => body")

    return suggestions


def enhance_parse_exception_dict(exc: ParseException, source_text: str) -> Dict:
    """Convert pyparsing exception to enhanced Nemo error dict"""
    line_num = exc.lineno
    col_num = exc.column

    context = get_context_lines(source_text, line_num, col_num)
    expected = extract_expected(exc)
    got = extract_got(source_text, line_num, col_num)
    suggestions = generate_suggestions(source_text, got, expected)

    return make_parse_error(
        message=exc.msg,
        location=exc.loc,
        line=line_num,
        column=col_num,
        expected=expected,
        got=got,
        context=context,
        suggestions=suggestions
    )


# ============================================================================
# ERROR CLASSES
# ============================================================================

class NemoParseError(Exception):
    """Syntax error found while parsing Nemo source"""
    def __init__(self, message: str, location: int = 0, line: int = 0, column: int = 0,
                 expected: Optional[List[str]] = None, got: Optional[str] = None,
                 context: Optional[str] = None, suggestions: Optional[List[str]] = None,
                 filename: str = "<input>"):
        self.message = message
        self.location = location
        self.line = line
        self.column = column
        self.expected = expected or []
        self.got = got
        self.context = context
        self.suggestions = suggestions or []
        self.filename = filename
        super().__init__(message)

    def __str__(self) -> str:
        error_dict = make_parse_error(
            self.message, self.location, self.line, self.column,
            self.expected, self.got, self.context, self.suggestions
        )
        return format_parse_error(error_dict)


class NemoErrorHandler:
    """Turns pyparsing failures on one source text into NemoParseError"""
    def __init__(self, source_text: str, filename: str = "<input>"):
        self.source_text = source_text
        self.filename = filename

    def enhance_parse_exception(self, exc: ParseException) -> NemoParseError:
        """Convert pyparsing exception to enhanced Nemo error"""
        error_dict = enhance_parse_exception_dict(exc, self.source_text)
        return NemoParseError(
            message=error_dict['message'],
            location=error_dict['location'],
            line=error_dict['line'],
            column=error_dict['column'],
            expected=error_dict['expected'],
            got=error_dict['got'],
            context=error_dict['context'],
            suggestions=error_dict['suggestions'],
            filename=self.filename
        )
