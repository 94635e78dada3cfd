"""
Безопасный вычислитель пользовательских формул вида "x * 200 / 1000".

Грамматика (никакого eval):
    expr    := term (('+' | '-') term)*
    term    := unary (('*' | '/') unary)*
    unary   := ('+' | '-') unary | primary
    primary := NUMBER | 'x' | '(' expr ')'

Переменная одна: x. Литералы десятичные с точкой: 10, 0.5, .25
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import List, Optional, Tuple, Union

from relaywatch.errors import FormulaError

VARIABLE = "x"

_TOKEN_RE = re.compile(r"\s*(?:(\d+\.\d*|\.\d+|\d+)|(.))")

Number = Union[int, float]


@dataclass(frozen=True)
class _Token:
    kind: str       # "num" | "var" | "op" | "lpar" | "rpar" | "end"
    text: str
    pos: int


def tokenize(text: str) -> List[_Token]:
    tokens: List[_Token] = []
    pos = 0
    text = text.rstrip()
    while pos < len(text):
        m = _TOKEN_RE.match(text, pos)
        if not m:
            break
        num, other = m.group(1), m.group(2)
        start = m.start(1) if num is not None else m.start(2)
        if num is not None:
            tokens.append(_Token("num", num, start))
        elif other == VARIABLE:
            tokens.append(_Token("var", other, start))
        elif other in "+-*/":
            tokens.append(_Token("op", other, start))
        elif other == "(":
            tokens.append(_Token("lpar", other, start))
        elif other == ")":
            tokens.append(_Token("rpar", other, start))
        else:
            raise FormulaError(f"Недопустимый символ {other!r}", text, start)
        pos = m.end()
    tokens.append(_Token("end", "", len(text)))
    return tokens


# Узлы дерева: кортежи, так дерево можно кэшировать и сравнивать.
#   ("num", value) | ("var",) | ("neg", node) | ("bin", op, left, right)
Node = Tuple


class _Parser:
    def __init__(self, text: str):
        self.text = text
        self.tokens = tokenize(text)
        self.i = 0

    def _peek(self) -> _Token:
        return self.tokens[self.i]

    def _next(self) -> _Token:
        tok = self.tokens[self.i]
        self.i += 1
        return tok

    def _fail(self, msg: str, tok: _Token):
        raise FormulaError(f"{msg} (позиция {tok.pos})", self.text, tok.pos)

    def parse(self) -> Node:
        if self._peek().kind == "end":
            self._fail("Пустая формула", self._peek())
        node = self._expr()
        tok = self._peek()
        if tok.kind != "end":
            self._fail(f"Лишний символ {tok.text!r}", tok)
        return node

    def _expr(self) -> Node:
        node = self._term()
        while self._peek().kind == "op" and self._peek().text in "+-":
            op = self._next().text
            node = ("bin", op, node, self._term())
        return node

    def _term(self) -> Node:
        node = self._unary()
        while self._peek().kind == "op" and self._peek().text in "*/":
            op = self._next().text
            node = ("bin", op, node, self._unary())
        return node

    def _unary(self) -> Node:
        tok = self._peek()
        if tok.kind == "op" and tok.text in "+-":
            self._next()
            operand = self._unary()
            return ("neg", operand) if tok.text == "-" else operand
        return self._primary()

    def _primary(self) -> Node:
        tok = self._next()
        if tok.kind == "num":
            value = float(tok.text)
            return ("num", int(value) if value.is_integer() and "." not in tok.text else value)
        if tok.kind == "var":
            return ("var",)
        if tok.kind == "lpar":
            node = self._expr()
            closing = self._next()
            if closing.kind != "rpar":
                self._fail("Ожидалась ')'", closing)
            return node
        if tok.kind == "end":
            self._fail("Неожиданный конец формулы", tok)
        self._fail(f"Неожиданный символ {tok.text!r}", tok)


def _eval(node: Node, x: Number, text: str) -> Number:
    kind = node[0]
    if kind == "num":
        return node[1]
    if kind == "var":
        return x
    if kind == "neg":
        return -_eval(node[1], x, text)

    _, op, left, right = node
    a = _eval(left, x, text)
    b = _eval(right, x, text)
    if op == "+":
        return a + b
    if op == "-":
        return a - b
    if op == "*":
        return a * b
    if b == 0:
        raise FormulaError("Деление на ноль", text)
    return a / b


@dataclass(frozen=True)
class Formula:
    """Разобранная формула; evaluate() можно звать сколько угодно раз."""
    text: str
    tree: Node

    def evaluate(self, x: Number) -> Number:
        if x is None or isinstance(x, bool) or not isinstance(x, (int, float)):
            raise FormulaError(f"x должен быть числом, получено {x!r}", self.text)
        try:
            result = _eval(self.tree, x, self.text)
        except (OverflowError, RecursionError) as e:
            raise FormulaError(f"Ошибка вычисления: {e}", self.text) from e
        if not math.isfinite(result):
            raise FormulaError("Результат не является конечным числом", self.text)
        return result


@lru_cache(maxsize=256)
def compile_formula(text: str) -> Formula:
    text = (text or "").strip()
    try:
        tree = _Parser(text).parse()
    except RecursionError as e:
        raise FormulaError("Слишком глубокая вложенность скобок", text) from e
    return Formula(text, tree)


def apply_formula(text: Optional[str], x: Number) -> Number:
    """
    Применяет формулу к x. Пустая формула возвращает x без изменений.
    Ошибки разбора/вычисления поднимаются как FormulaError.
    """
    if not (text or "").strip():
        return x
    return compile_formula(text).evaluate(x)


def validate_formula(text: Optional[str]) -> Optional[str]:
    """Для форм ввода: None если формула корректна (или пуста), иначе текст ошибки."""
    if not (text or "").strip():
        return None
    try:
        compile_formula(text)
    except FormulaError as e:
        return str(e)
    return None
