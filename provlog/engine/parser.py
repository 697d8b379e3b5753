"""Text front end for relation declarations, facts, rules and queries.

Accepted forms:

    type edge(i32, i32)                       declaration
    type edge(from: i32, to: i32)             declaration with column names
    rel edge = {(0, 1), 0.9::(1, 2)}          fact set (optional tags)
    rel 0.8::edge(2, 3)                       single fact
    rel path(a, b) = edge(a, b)               rule
    path(a, c) :- path(a, b), edge(b, c).     rule (":-" and "rel" optional)
    rel r(x, $str_len(s)) = s(x, s), ~t(x)    foreign call, negation
    query path                                query designation

Bare identifiers inside rules are variables; constants are literals
(numbers, "strings", 'c' chars, true/false). Comments start with //.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

from provlog.errors import ParseError

from .ast import (
    COMPARISON_OPS,
    Atom,
    BinOp,
    Call,
    Const,
    Constraint,
    Expr,
    FactSet,
    Literal,
    ParsedProgram,
    Rule,
    TypeDecl,
    Var,
)

__all__ = [
    "parse_program",
    "parse_rule",
    "parse_declaration",
]

_TOKEN_RE = re.compile(
    r"""
    (?P<ws>\s+|//[^\n]*|/\*.*?\*/)
    |(?P<float>\d+\.\d+(?:[eE][+-]?\d+)?|\d+[eE][+-]?\d+)
    |(?P<int>\d+)
    |(?P<string>"(?:\\.|[^"\\])*")
    |(?P<char>'(?:\\.|[^'\\])')
    |(?P<ident>[A-Za-z_][A-Za-z0-9_]*)
    |(?P<op>:-|::|==|!=|<=|>=|&&|[<>=~(){},.:;$+\-*/%&])
    """,
    re.VERBOSE | re.DOTALL,
)

_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "\\": "\\", '"': '"', "'": "'", "0": "\0"}

_KEYWORDS = {"rel", "type", "query", "not", "and", "true", "false"}


@dataclass(frozen=True)
class _Token:
    kind: str
    text: str
    position: int


def _unescape(body: str) -> str:
    return re.sub(r"\\(.)", lambda m: _ESCAPES.get(m.group(1), m.group(1)), body)


def _tokenize(text: str) -> list[_Token]:
    tokens: list[_Token] = []
    pos = 0
    while pos < len(text):
        match = _TOKEN_RE.match(text, pos)
        if match is None:
            raise ParseError(f"Unexpected character {text[pos]!r}", text, pos)
        kind = match.lastgroup or ""
        if kind != "ws":
            tokens.append(_Token(kind, match.group(), pos))
        pos = match.end()
    tokens.append(_Token("eof", "", len(text)))
    return tokens


class _Parser:
    """Recursive descent parser over a token list."""

    def __init__(self, text: str) -> None:
        self.text = text
        self.tokens = _tokenize(text)
        self.pos = 0

    # Token helpers

    def peek(self, offset: int = 0) -> _Token:
        return self.tokens[min(self.pos + offset, len(self.tokens) - 1)]

    def at(self, text: str, offset: int = 0) -> bool:
        token = self.peek(offset)
        return token.kind in ("op", "ident") and token.text == text

    def advance(self) -> _Token:
        token = self.tokens[self.pos]
        if token.kind != "eof":
            self.pos += 1
        return token

    def accept(self, text: str) -> bool:
        if self.at(text):
            self.advance()
            return True
        return False

    def expect(self, text: str) -> _Token:
        if not self.at(text):
            self.error(f"Expected {text!r}")
        return self.advance()

    def expect_ident(self) -> str:
        token = self.peek()
        if token.kind != "ident" or token.text in _KEYWORDS:
            self.error("Expected an identifier")
        return self.advance().text

    def error(self, message: str) -> None:
        token = self.peek()
        found = token.text or "end of input"
        raise ParseError(f"{message}, found {found!r}", self.text, token.position)

    def at_end(self) -> bool:
        return self.peek().kind == "eof"

    def skip_terminators(self) -> None:
        while self.at(".") or self.at(";"):
            self.advance()

    # Program level

    def parse_program(self) -> ParsedProgram:
        program = ParsedProgram()
        self.skip_terminators()
        while not self.at_end():
            if self.accept("type"):
                program.declarations.extend(self.parse_declarations())
            elif self.accept("query"):
                program.queries.append(self.expect_ident())
            else:
                self.accept("rel")
                self.parse_rel_item(program)
            self.skip_terminators()
        return program

    def parse_declarations(self) -> list[TypeDecl]:
        declarations = [self.parse_declaration()]
        while self.accept(","):
            declarations.append(self.parse_declaration())
        return declarations

    def parse_declaration(self) -> TypeDecl:
        name = self.expect_ident()
        self.expect("(")
        types: list[str] = []
        if not self.at(")"):
            while True:
                types.append(self.parse_column_type())
                if not self.accept(","):
                    break
        self.expect(")")
        return TypeDecl(relation=name, types=tuple(types))

    def parse_column_type(self) -> str:
        if self.peek().kind == "ident" and self.at(":", 1):
            # Named column: only the type matters
            self.advance()
            self.advance()
        prefix = "&" if self.accept("&") else ""
        return prefix + self.expect_ident()

    def parse_rel_item(self, program: ParsedProgram) -> None:
        tag = self.try_parse_tag()
        name = self.expect_ident()

        if tag is None and self.at("=") and self.at("{", 1):
            self.advance()
            program.facts.append(self.parse_fact_set(name))
            return

        args = self.parse_args()
        head = Atom(relation=name, args=tuple(args))

        if tag is None and (self.at("=") or self.at(":-")):
            self.advance()
            program.rules.append(Rule(head=head, body=tuple(self.parse_body())))
            return

        values = []
        for arg in args:
            if not isinstance(arg, Const):
                self.error(f"Fact {head} must only contain constants")
            values.append(arg.value)
        program.facts.append(FactSet(relation=name, facts=[(tag, tuple(values))]))

    def parse_fact_set(self, name: str) -> FactSet:
        self.expect("{")
        facts: list[tuple[Any, tuple]] = []
        while not self.at("}"):
            tag = self.try_parse_tag()
            if self.at("("):
                self.advance()
                values: list[Any] = []
                if not self.at(")"):
                    while True:
                        values.append(self.parse_constant())
                        if not self.accept(","):
                            break
                self.expect(")")
                facts.append((tag, tuple(values)))
            else:
                facts.append((tag, (self.parse_constant(),)))
            if not self.accept(","):
                break
        self.expect("}")
        return FactSet(relation=name, facts=facts)

    def try_parse_tag(self) -> Any:
        """Parse `tag::` if present, returning None otherwise."""
        start = self.pos
        try:
            if self.at("("):
                self.advance()
                parts = [self.parse_constant()]
                while self.accept(","):
                    parts.append(self.parse_constant())
                self.expect(")")
                tag: Any = tuple(parts)
            else:
                tag = self.parse_constant()
        except ParseError:
            self.pos = start
            return None
        if self.accept("::"):
            return tag
        self.pos = start
        return None

    def parse_constant(self) -> Any:
        token = self.peek()
        negative = False
        if self.at("-"):
            negative = True
            self.advance()
            token = self.peek()
        if token.kind == "int":
            self.advance()
            return -int(token.text) if negative else int(token.text)
        if token.kind == "float":
            self.advance()
            return -float(token.text) if negative else float(token.text)
        if negative:
            self.error("Expected a number after '-'")
        if token.kind == "string":
            self.advance()
            return _unescape(token.text[1:-1])
        if token.kind == "char":
            self.advance()
            return _unescape(token.text[1:-1])
        if self.at("true"):
            self.advance()
            return True
        if self.at("false"):
            self.advance()
            return False
        self.error("Expected a constant")

    # Rules

    def parse_args(self) -> list[Expr]:
        self.expect("(")
        args: list[Expr] = []
        if not self.at(")"):
            while True:
                args.append(self.parse_expr())
                if not self.accept(","):
                    break
        self.expect(")")
        return args

    def parse_body(self) -> list[Literal]:
        body = [self.parse_literal()]
        while self.accept(",") or self.accept("and") or self.accept("&&"):
            body.append(self.parse_literal())
        return body

    def parse_literal(self) -> Literal:
        if self.accept("~") or self.accept("not"):
            name = self.expect_ident()
            return Atom(relation=name, args=tuple(self.parse_args()), negated=True)
        token = self.peek()
        if token.kind == "ident" and token.text not in _KEYWORDS and self.at("(", 1):
            name = self.advance().text
            return Atom(relation=name, args=tuple(self.parse_args()))
        left = self.parse_expr()
        op = self.peek()
        if op.kind != "op" or op.text not in COMPARISON_OPS:
            self.error("Expected an atom or a comparison")
        self.advance()
        right = self.parse_expr()
        return Constraint(op=op.text, left=left, right=right)

    def parse_expr(self) -> Expr:
        expr = self.parse_term()
        while self.at("+") or self.at("-"):
            op = self.advance().text
            expr = BinOp(op=op, left=expr, right=self.parse_term())
        return expr

    def parse_term(self) -> Expr:
        expr = self.parse_unary()
        while self.at("*") or self.at("/") or self.at("%"):
            op = self.advance().text
            expr = BinOp(op=op, left=expr, right=self.parse_unary())
        return expr

    def parse_unary(self) -> Expr:
        if self.at("-"):
            token = self.peek(1)
            if token.kind in ("int", "float"):
                return Const(self.parse_constant())
            self.advance()
            return BinOp(op="-", left=Const(0), right=self.parse_unary())
        return self.parse_primary()

    def parse_primary(self) -> Expr:
        token = self.peek()
        if self.accept("("):
            expr = self.parse_expr()
            self.expect(")")
            return expr
        if self.accept("$"):
            name = self.expect_ident()
            return Call(function=name, args=tuple(self.parse_args()))
        if token.kind == "ident" and token.text not in ("true", "false"):
            if token.text in _KEYWORDS:
                self.error("Unexpected keyword")
            self.advance()
            return Var(token.text)
        return Const(self.parse_constant())



def parse_program(text: str) -> ParsedProgram:
    """Parse a program made of declarations, facts, rules and queries.

    Raises:
        ParseError: If the text is malformed
    """
    return _Parser(text).parse_program()


def parse_rule(text: str) -> Rule:
    """Parse exactly one rule, with or without a leading `rel`.

    Raises:
        ParseError: If the text is not a single rule
    """
    program = parse_program(text)
    if len(program.rules) != 1 or program.facts or program.declarations or program.queries:
        raise ParseError(f"Expected exactly one rule: {text!r}", text)
    return program.rules[0]


def parse_declaration(text: str) -> TypeDecl:
    """Parse a relation declaration such as `edge(i32, i32)`.

    Raises:
        ParseError: If the text is not a single declaration
    """
    parser = _Parser(text)
    parser.accept("type")
    decl = parser.parse_declaration()
    parser.skip_terminators()
    if not parser.at_end():
        parser.error("Unexpected text after declaration")
    return decl
