"""
yul_dsa/ir_reader.py
====================

Reads the S-expression rendering of Yul IR into :mod:`yul_dsa.ir` nodes.

Parses IR text via the ``sexpdata`` library.

Dependencies:
    - sexpdata          (S-expression parsing)

Grammar
-------
One statement per top-level form; top-level statements make up
``!!main``::

    (function name (params a b) (returns r) stmt...)
    (let x expr)  (let (x y) expr)  (let x)
    (set x expr)  (set (x y) expr)
    (expr (call arg...))
    (if cond stmt...)
    (switch sel (case 0 stmt...) (default stmt...))
    (for (init stmt...) cond (post stmt...) stmt...)
    (block stmt...)  (break)  (continue)  (leave)

Expressions are integers, hex numbers (``0xC0FFEE``), strings, ``true``,
``false``, identifiers, and calls ``(name arg...)``.  ``;`` starts a line
comment.

Every node gets the line and column of the innermost form it was read
from; atoms share the location of their enclosing form.

Example::

    (function f (params value) (returns r)
      (let dee 45)
      (let dum (add dee value))
      (set r dum))
    (let ret_0 (f 7))
    (expr (sstore ret_0 0))
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import sexpdata

from yul_dsa.errors import IRSyntaxError
from yul_dsa.ir import (
    Assignment,
    Block,
    Break,
    Case,
    Continue,
    Expr,
    ExpressionStatement,
    ForLoop,
    FunctionCall,
    FunctionDefinition,
    Identifier,
    If,
    Leave,
    Literal,
    Loc,
    Program,
    Stmt,
    Switch,
    VariableDeclaration,
)

__all__ = ["load_program", "load_program_file", "parse_expression"]

_HEX_RE = re.compile(r"^-?0x[0-9a-fA-F]+$")


# ---------------------------------------------------------------------------
# Low-level S-expression helpers
# ---------------------------------------------------------------------------

def _parse_sexp_many(text: str) -> List[Any]:
    """Parse a string containing multiple top-level S-expressions.

    ``nil``/``t`` are not special in IR text, so sexpdata's defaults for
    them are switched off.
    """
    # sexpdata does not natively parse multiple forms; we wrap in a list
    # and strip the outer layer.  Newlines keep a trailing comment from
    # swallowing the closing paren.
    wrapped = f"(\n{text}\n)"
    try:
        parsed = sexpdata.loads(wrapped, nil=None, true=None, false=None)
    except Exception as e:
        raise IRSyntaxError(f"failed to parse IR text: {e}") from e
    if not isinstance(parsed, list):
        raise IRSyntaxError("failed to parse IR text: expected a list of forms")
    return parsed


def _form_positions(text: str) -> List[Tuple[int, int]]:
    """Line and column (both 1-based) of every opening paren in *text*.

    Parens inside string literals and comments are skipped, so the list
    lines up with the forms of the parsed text in pre-order.
    """
    positions: List[Tuple[int, int]] = []
    line, col = 1, 0
    in_string = escaped = in_comment = False
    for ch in text:
        if in_comment:
            in_comment = ch != "\n"
        elif in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch == ";":
            in_comment = True
        elif ch == "(":
            positions.append((line, col + 1))
        if ch == "\n":
            line, col = line + 1, 0
        else:
            col += 1
    return positions


def _index_forms(
    forms: List[Any],
    positions: List[Tuple[int, int]],
) -> Dict[int, Tuple[int, int]]:
    """Map ``id(form)`` of every parsed list to its position."""
    table: Dict[int, Tuple[int, int]] = {}
    remaining = iter(positions)

    def visit(obj: Any) -> None:
        if isinstance(obj, list):
            table[id(obj)] = next(remaining, (0, 0))
            for item in obj:
                visit(item)

    for form in forms:
        visit(form)
    return table


def _is_symbol(obj: Any) -> bool:
    return isinstance(obj, sexpdata.Symbol)


def _text(obj: Any) -> str:
    """Plain text of a sexpdata Symbol or String."""
    value = getattr(obj, "value", None)
    if callable(value):
        return str(value())
    return str(obj)


def _symbol_name(obj: Any, what: str) -> str:
    if not _is_symbol(obj):
        raise IRSyntaxError(f"expected {what}, got {sexpdata.dumps(obj)}")
    return _text(obj)


def _form_head(form: Any) -> str:
    if not isinstance(form, list) or not form:
        raise IRSyntaxError(f"expected a form, got {sexpdata.dumps(form)}")
    return _symbol_name(form[0], "a form name")


# ---------------------------------------------------------------------------
# Reader
# ---------------------------------------------------------------------------

class _Reader:
    def __init__(
        self,
        filename: str,
        positions: Optional[Dict[int, Tuple[int, int]]] = None,
    ) -> None:
        self.filename = filename
        self._positions = positions or {}
        self._current: List[Loc] = []
        self._statements: Dict[str, Callable[[List[Any]], Stmt]] = {
            "function": self._function,
            "let": self._let,
            "set": self._set,
            "expr": self._expr_statement,
            "if": self._if,
            "switch": self._switch,
            "for": self._for,
            "block": lambda args: Block(self._statements_of(args), loc=self._loc()),
            "break": lambda args: self._bare(Break, "break", args),
            "continue": lambda args: self._bare(Continue, "continue", args),
            "leave": lambda args: self._bare(Leave, "leave", args),
        }

    def _loc(self, form: Any = None) -> Loc:
        """Location of *form*, or of the form being read."""
        position = self._positions.get(id(form)) if isinstance(form, list) else None
        if position is not None:
            line, col = position
            return Loc(file=self.filename, line=line, col=col)
        if self._current:
            return self._current[-1]
        return Loc(file=self.filename)

    def _error(self, message: str) -> IRSyntaxError:
        return IRSyntaxError(message, loc=self._loc())

    # ----- statements -------------------------------------------------------

    def program(self, forms: List[Any]) -> Program:
        return Program(
            statements=self._statements_of(forms),
            name=self.filename,
            loc=self._loc(),
        )

    def _statements_of(self, forms: List[Any]) -> List[Stmt]:
        return [self.statement(form) for form in forms]

    def statement(self, form: Any) -> Stmt:
        head = _form_head(form)
        self._current.append(self._loc(form))
        try:
            handler = self._statements.get(head)
            if handler is None:
                raise self._error(f"unknown statement '{head}'")
            return handler(form[1:])
        finally:
            self._current.pop()

    def _bare(self, cls, head: str, args: List[Any]) -> Stmt:
        if args:
            raise self._error(f"'{head}' takes no operands")
        return cls(loc=self._loc())

    def _names(self, obj: Any, what: str) -> List[str]:
        if isinstance(obj, list):
            return [_symbol_name(x, what) for x in obj]
        return [_symbol_name(obj, what)]

    def _function(self, args: List[Any]) -> Stmt:
        if not args:
            raise self._error("'function' needs a name")
        name = _symbol_name(args[0], "a function name")
        rest = list(args[1:])
        clauses: Dict[str, List[str]] = {"params": [], "returns": []}
        while rest and isinstance(rest[0], list) and rest[0] \
                and _is_symbol(rest[0][0]) and _text(rest[0][0]) in clauses:
            clause = rest.pop(0)
            clauses[_text(clause[0])] = [
                _symbol_name(x, "a parameter name") for x in clause[1:]
            ]
        return FunctionDefinition(
            name=name,
            params=clauses["params"],
            returns=clauses["returns"],
            body=Block(self._statements_of(rest), loc=self._loc()),
            loc=self._loc(),
        )

    def _let(self, args: List[Any]) -> Stmt:
        if len(args) not in (1, 2):
            raise self._error("'let' takes names and an optional value")
        names = self._names(args[0], "a variable name")
        value = self.expression(args[1]) if len(args) == 2 else None
        return VariableDeclaration(names=names, value=value, loc=self._loc())

    def _set(self, args: List[Any]) -> Stmt:
        if len(args) != 2:
            raise self._error("'set' takes targets and a value")
        names = self._names(args[0], "a variable name")
        return Assignment(names=names, value=self.expression(args[1]), loc=self._loc())

    def _expr_statement(self, args: List[Any]) -> Stmt:
        if len(args) != 1:
            raise self._error("'expr' takes exactly one expression")
        return ExpressionStatement(expr=self.expression(args[0]), loc=self._loc())

    def _if(self, args: List[Any]) -> Stmt:
        if not args:
            raise self._error("'if' needs a condition")
        return If(
            condition=self.expression(args[0]),
            body=Block(self._statements_of(args[1:]), loc=self._loc()),
            loc=self._loc(),
        )

    def _switch(self, args: List[Any]) -> Stmt:
        if not args:
            raise self._error("'switch' needs a selector")
        stmt = Switch(selector=self.expression(args[0]), loc=self._loc())
        for clause in args[1:]:
            head = _form_head(clause)
            if head == "case":
                if len(clause) < 2:
                    raise self._error("'case' needs a value")
                value = self.expression(clause[1])
                if not isinstance(value, Literal):
                    raise self._error("case value must be a literal")
                loc = self._loc(clause)
                stmt.cases.append(Case(
                    value=value,
                    body=Block(self._statements_of(clause[2:]), loc=loc),
                    loc=loc,
                ))
            elif head == "default":
                if stmt.default is not None:
                    raise self._error("'switch' has more than one default")
                stmt.default = Block(self._statements_of(clause[1:]), loc=self._loc())
            else:
                raise self._error(f"unexpected '{head}' in switch")
        return stmt

    def _for(self, args: List[Any]) -> Stmt:
        if len(args) < 3:
            raise self._error("'for' needs init, condition and post")
        init, cond, post = args[0], args[1], args[2]
        if _form_head(init) != "init" or _form_head(post) != "post":
            raise self._error("'for' expects (init ...) cond (post ...)")
        return ForLoop(
            pre=Block(self._statements_of(init[1:]), loc=self._loc()),
            condition=self.expression(cond),
            post=Block(self._statements_of(post[1:]), loc=self._loc()),
            body=Block(self._statements_of(args[3:]), loc=self._loc()),
            loc=self._loc(),
        )

    # ----- expressions ------------------------------------------------------

    def expression(self, obj: Any) -> Expr:
        loc = self._loc(obj)
        if isinstance(obj, list):
            name = _form_head(obj)
            self._current.append(loc)
            try:
                args = [self.expression(x) for x in obj[1:]]
            finally:
                self._current.pop()
            return FunctionCall(name=name, args=args, loc=loc)
        if _is_symbol(obj):
            text = _text(obj)
            if text == "true":
                return Literal(True, loc=loc)
            if text == "false":
                return Literal(False, loc=loc)
            if _HEX_RE.match(text):
                return Literal(int(text, 16), loc=loc)
            return Identifier(text, loc=loc)
        if isinstance(obj, bool):
            return Literal(obj, loc=loc)
        if isinstance(obj, int):
            return Literal(obj, loc=loc)
        if isinstance(obj, str):
            return Literal(obj, loc=loc)
        if type(obj).__name__ == "String":
            return Literal(_text(obj), loc=loc)
        raise self._error(f"unsupported expression {sexpdata.dumps(obj)}")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def load_program(text: str, filename: str = "<string>") -> Program:
    """Read IR *text* into a :class:`~yul_dsa.ir.Program`."""
    forms = _parse_sexp_many(text)
    positions = _index_forms(forms, _form_positions(text))
    return _Reader(filename, positions).program(forms)


def load_program_file(path: Union[str, Path]) -> Program:
    """Read the IR file at *path*."""
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise IRSyntaxError(f"cannot read {path}: {e}") from e
    return load_program(text, filename=str(path))


def parse_expression(text: str) -> Expr:
    """Read a single IR expression."""
    forms = _parse_sexp_many(text)
    if len(forms) != 1:
        raise IRSyntaxError("expected exactly one expression")
    positions = _index_forms(forms, _form_positions(text))
    return _Reader("<string>", positions).expression(forms[0])
