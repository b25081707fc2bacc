# expreval.py
"""
Safe integer expressions for command-line input.

Accepts plain literals (``1_000_003``, ``0xFF``, ``0b1011``) and small
arithmetic expressions such as ``2^61-1``, ``(2**127-1)*(2**89-1)`` or
``3 << 600``. ``^`` means power. Names, calls, attributes and floats are
rejected. Results are capped by ``ENGINE.MAX_BITS``.
"""
from __future__ import annotations

import ast
import operator as op
import re

from bandfactor.errors import UserInputError
from bandfactor.runtime import CFG

_ALLOWED_BINOPS = {
    ast.Add:      op.add,
    ast.Sub:      op.sub,
    ast.Mult:     op.mul,
    ast.FloorDiv: op.floordiv,
    ast.Mod:      op.mod,
    ast.LShift:   op.lshift,
    ast.RShift:   op.rshift,
}
_ALLOWED_UNARYOPS = {
    ast.UAdd: op.pos,
    ast.USub: op.neg,
}

_MAX_NODES = 256  # sanity guard
_LITERAL_RE = re.compile(r"[+-]?\d[\d_]*")


class _IntExprError(Exception):
    pass


def _max_bits() -> int:
    return int(CFG("ENGINE.MAX_BITS", 4096))


def _check_size(value: int) -> int:
    limit = _max_bits()
    if abs(value).bit_length() > limit:
        raise UserInputError(
            f"number has more than {limit} bits. Raise ENGINE.MAX_BITS in the profile or pass a smaller value."
        )
    return value


def _parse_int_literal(text: str) -> int | None:
    """Accepts: 42  -7  1_000_000  0xFF  0b1010  0o17"""
    s = text.strip()
    if not s:
        return None
    if s.lower().lstrip("+-").startswith(("0x", "0b", "0o")):
        try:
            return int(s.replace("_", ""), 0)
        except ValueError:
            return None
    if _LITERAL_RE.fullmatch(s):
        return int(s.replace("_", ""))
    return None


def _eval_int_expr(expr: str) -> int:
    """
    Evaluate a *safe* integer expression.

    Allowed: integers, parentheses, + - * // % ** (or ^), << >>, unary +/-.
    Negative exponents are rejected. Powers are checked against the bit limit
    before they are computed.
    """
    try:
        tree = ast.parse(expr.replace("^", "**"), mode="eval")
    except SyntaxError as e:
        raise _IntExprError("invalid integer expression") from e

    if sum(1 for _ in ast.walk(tree)) > _MAX_NODES:
        raise _IntExprError("expression too large")

    limit = _max_bits()

    def _eval(node) -> int:
        if isinstance(node, ast.Constant):
            if isinstance(node.value, bool) or not isinstance(node.value, int):
                raise _IntExprError("only integers are allowed")
            return node.value

        if isinstance(node, ast.UnaryOp) and type(node.op) in _ALLOWED_UNARYOPS:
            return _ALLOWED_UNARYOPS[type(node.op)](_eval(node.operand))

        if isinstance(node, ast.BinOp):
            op_type = type(node.op)
            left = _eval(node.left)
            right = _eval(node.right)
            if op_type is ast.Pow:
                if right < 0:
                    raise UserInputError("negative exponents are not allowed in integer expressions")
                if abs(left) > 1 and (abs(left).bit_length() - 1) * right > limit:
                    raise UserInputError(f"number has more than {limit} bits.")
                return pow(left, right)
            if op_type in (ast.LShift, ast.RShift) and right < 0:
                raise _IntExprError("negative shift count")
            if op_type is ast.LShift and right > limit:
                raise UserInputError(f"number has more than {limit} bits.")
            if op_type in (ast.FloorDiv, ast.Mod) and right == 0:
                raise _IntExprError("division by zero")
            if op_type in _ALLOWED_BINOPS:
                return _ALLOWED_BINOPS[op_type](left, right)

        raise _IntExprError(f"unsupported syntax: {type(node).__name__}")

    return _eval(tree.body)


def parse_int(text: str) -> int:
    """Literal or expression to int; ``UserInputError`` for anything else."""
    if text is None:
        raise UserInputError("missing number")
    n = _parse_int_literal(text)
    if n is None:
        try:
            n = _eval_int_expr(text)
        except _IntExprError as e:
            raise UserInputError(f"Invalid input: '{text}' is not an integer ({e}).") from None
    return _check_size(n)
