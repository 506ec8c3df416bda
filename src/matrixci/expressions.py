# expressions.py
"""
Step conditions and `${{ ... }}` interpolation.

Two ways to write a condition:

    Condition objects (Python pipelines)::

        matrix_eq("os", "ubuntu-latest") & ~platform_is("Windows")

    Expression strings (YAML pipelines)::

        matrix.os == 'ubuntu-latest' && runner.os != 'Windows'

Supported grammar: `||`, `&&`, `!`, `==`, `!=`, parentheses, single-quoted
strings ('' escapes a quote), numbers, true/false/null, dotted context
references (`matrix.os`, `runner.os`, `env.FOO`, `event.branch`) and the
functions hashFiles(), contains(), startsWith(), endsWith().

String comparison is case-insensitive. Unknown references evaluate to "".
"""
from __future__ import annotations

import platform
import re
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from .cache import hash_files
from .errors import ExpressionError

_TOKEN_RE = re.compile(
    r"\s*(?:"
    r"(?P<str>'(?:[^']|'')*')"
    r"|(?P<op>==|!=|&&|\|\||!|\(|\)|,)"
    r"|(?P<num>-?\d+(?:\.\d+)?)"
    r"|(?P<ident>[A-Za-z_][A-Za-z0-9_\-]*(?:\.[A-Za-z_*][A-Za-z0-9_\-]*)*)"
    r")"
)

_INTERP_RE = re.compile(r"\$\{\{((?:(?!\}\}).)*)\}\}", re.DOTALL)


# =============================================================================
# CONDITIONS
# =============================================================================


class Condition:
    """Composable condition; `&`, `|` and `~` build new conditions."""

    __slots__ = ("_fn", "_desc")

    def __init__(self, fn: Callable[[Mapping[str, Any]], bool], desc: str) -> None:
        self._fn = fn
        self._desc = desc

    def evaluate(self, context: Mapping[str, Any]) -> bool:
        return bool(self._fn(context))

    def __and__(self, other: Condition) -> Condition:
        return Condition(lambda c: self.evaluate(c) and other.evaluate(c), f"({self._desc}) && ({other._desc})")

    def __or__(self, other: Condition) -> Condition:
        return Condition(lambda c: self.evaluate(c) or other.evaluate(c), f"({self._desc}) || ({other._desc})")

    def __invert__(self) -> Condition:
        return Condition(lambda c: not self.evaluate(c), f"!({self._desc})")

    def __str__(self) -> str:
        return self._desc

    def __repr__(self) -> str:
        return f"Condition({self._desc!r})"


def matrix_eq(axis: str, value: Any) -> Condition:
    """Match when the job's matrix assigns `value` to `axis`."""
    return Condition(lambda c: _equal((c.get("matrix") or {}).get(axis, ""), value), f"matrix.{axis} == {value!r}")


def platform_is(os_name: str) -> Condition:
    """Match on runner.os (Linux, Windows, macOS)."""
    return Condition(lambda c: _equal((c.get("runner") or {}).get("os", ""), os_name), f"runner.os == {os_name!r}")


def expr(text: str) -> Condition:
    """Wrap an expression string as a Condition."""
    return Condition(lambda c: _truthy(evaluate_expression(text, c)), text)


def runner_os(label: str) -> str:
    """Map a platform label (ubuntu-latest, windows-2022, local...) to runner.os."""
    lowered = label.lower()
    if lowered.startswith(("ubuntu", "linux")):
        return "Linux"
    if lowered.startswith("windows"):
        return "Windows"
    if lowered.startswith(("macos", "darwin")):
        return "macOS"
    system = platform.system()
    return {"Darwin": "macOS"}.get(system, system or "Linux")


def evaluate_condition(condition: Any, context: Mapping[str, Any]) -> bool:
    """None => True. Accepts Condition, callable(context) or an expression string."""
    if condition is None:
        return True
    if isinstance(condition, Condition):
        return condition.evaluate(context)
    if isinstance(condition, bool):
        return condition
    if callable(condition):
        return bool(condition(context))
    return _truthy(evaluate_expression(str(condition), context))


# =============================================================================
# EXPRESSIONS
# =============================================================================


def _tokenize(text: str) -> List[Tuple[str, str]]:
    tokens: List[Tuple[str, str]] = []
    pos = 0
    text = text.rstrip()
    while pos < len(text):
        m = _TOKEN_RE.match(text, pos)
        if not m or m.end() == pos:
            raise ExpressionError(f"unexpected character at {pos} in {text!r}")
        kind = m.lastgroup
        if kind is None:
            break
        tokens.append((kind, m.group(kind)))
        pos = m.end()
    return tokens


def _truthy(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return value != ""
    return bool(value)


def _equal(a: Any, b: Any) -> bool:
    if isinstance(a, str) and isinstance(b, str):
        return a.casefold() == b.casefold()
    if isinstance(a, bool) or isinstance(b, bool):
        return a is b or str(a).lower() == str(b).lower()
    if isinstance(a, (int, float)) and isinstance(b, str):
        return str(a) == b
    if isinstance(b, (int, float)) and isinstance(a, str):
        return a == str(b)
    return a == b


def _to_str(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class _Parser:
    def __init__(self, text: str, context: Mapping[str, Any], workspace: Optional[Path]):
        self.text = text
        self.tokens = _tokenize(text)
        self.pos = 0
        self.context = context
        self.workspace = workspace

    def _peek(self) -> Optional[Tuple[str, str]]:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def _take(self, value: Optional[str] = None) -> Tuple[str, str]:
        tok = self._peek()
        if tok is None:
            raise ExpressionError(f"unexpected end of expression: {self.text!r}")
        if value is not None and tok[1] != value:
            raise ExpressionError(f"expected {value!r}, got {tok[1]!r} in {self.text!r}")
        self.pos += 1
        return tok

    def parse(self) -> Any:
        if not self.tokens:
            raise ExpressionError("empty expression")
        value = self._or()
        if self._peek() is not None:
            raise ExpressionError(f"unexpected token {self._peek()[1]!r} in {self.text!r}")
        return value

    def _or(self) -> Any:
        left = self._and()
        while self._peek() == ("op", "||"):
            self._take()
            right = self._and()
            left = left if _truthy(left) else right
        return left

    def _and(self) -> Any:
        left = self._unary()
        while self._peek() == ("op", "&&"):
            self._take()
            right = self._unary()
            left = right if _truthy(left) else left
        return left

    def _unary(self) -> Any:
        if self._peek() == ("op", "!"):
            self._take()
            return not _truthy(self._unary())
        return self._comparison()

    def _comparison(self) -> Any:
        left = self._primary()
        tok = self._peek()
        if tok in (("op", "=="), ("op", "!=")):
            self._take()
            right = self._primary()
            same = _equal(left, right)
            return same if tok[1] == "==" else not same
        return left

    def _primary(self) -> Any:
        kind, value = self._take()
        if kind == "str":
            return value[1:-1].replace("''", "'")
        if kind == "num":
            return float(value) if "." in value else int(value)
        if kind == "op" and value == "(":
            inner = self._or()
            self._take(")")
            return inner
        if kind == "ident":
            if self._peek() == ("op", "("):
                return self._call(value)
            lowered = value.lower()
            if lowered == "true":
                return True
            if lowered == "false":
                return False
            if lowered == "null":
                return None
            return self._lookup(value)
        raise ExpressionError(f"unexpected token {value!r} in {self.text!r}")

    def _call(self, name: str) -> Any:
        self._take("(")
        args: List[Any] = []
        if self._peek() != ("op", ")"):
            args.append(self._or())
            while self._peek() == ("op", ","):
                self._take()
                args.append(self._or())
        self._take(")")

        fn = name.lower()
        if fn == "hashfiles":
            if self.workspace is None:
                raise ExpressionError("hashFiles() needs a workspace")
            return hash_files(self.workspace, [_to_str(a) for a in args])
        if fn == "contains" and len(args) == 2:
            hay, needle = args
            if isinstance(hay, (list, tuple)):
                return any(_equal(h, needle) for h in hay)
            return _to_str(needle).casefold() in _to_str(hay).casefold()
        if fn == "startswith" and len(args) == 2:
            return _to_str(args[0]).casefold().startswith(_to_str(args[1]).casefold())
        if fn == "endswith" and len(args) == 2:
            return _to_str(args[0]).casefold().endswith(_to_str(args[1]).casefold())
        raise ExpressionError(f"unknown function {name}() with {len(args)} argument(s)")

    def _lookup(self, dotted: str) -> Any:
        current: Any = self.context
        for part in dotted.split("."):
            if isinstance(current, Mapping) and part in current:
                current = current[part]
            else:
                return ""
        return current


def _strip_wrapper(text: str) -> str:
    s = text.strip()
    m = _INTERP_RE.fullmatch(s)
    return m.group(1) if m else s


def evaluate_expression(text: str, context: Mapping[str, Any], workspace: str | Path | None = None) -> Any:
    """Evaluate one expression (with or without its `${{ }}` wrapper)."""
    ws = Path(workspace) if workspace is not None else None
    return _Parser(_strip_wrapper(text), context, ws).parse()


def interpolate(text: Any, context: Mapping[str, Any], workspace: str | Path | None = None) -> Any:
    """
    Replace every `${{ expr }}` in `text`. Non-strings pass through.

    A string that is exactly one `${{ expr }}` keeps the value's type
    (so `${{ matrix.fast }}` can yield a bool).
    """
    if not isinstance(text, str) or "${{" not in text:
        return text

    whole = _INTERP_RE.fullmatch(text.strip())
    if whole:
        return evaluate_expression(whole.group(1), context, workspace)

    return _INTERP_RE.sub(lambda m: _to_str(evaluate_expression(m.group(1), context, workspace)), text)


def interpolate_value(value: Any, context: Mapping[str, Any], workspace: str | Path | None = None) -> Any:
    """interpolate() applied through nested lists/dicts (for action `with:` blocks)."""
    if isinstance(value, dict):
        return {k: interpolate_value(v, context, workspace) for k, v in value.items()}
    if isinstance(value, list):
        return [interpolate_value(v, context, workspace) for v in value]
    return interpolate(value, context, workspace)


def build_context(
    matrix: Mapping[str, Any],
    runs_on: str,
    env: Mapping[str, str],
    event: Any = None,
) -> Dict[str, Any]:
    """The lookup table conditions and interpolations resolve against."""
    ctx: Dict[str, Any] = {
        "matrix": dict(matrix),
        "runner": {"os": runner_os(runs_on), "label": runs_on},
        "env": dict(env),
        "event": {},
    }
    if event is not None:
        ctx["event"] = {"name": event.type, "branch": event.branch}
        ctx["github"] = {"event_name": event.type, "ref": f"refs/heads/{event.branch}", "ref_name": event.branch}
    return ctx
