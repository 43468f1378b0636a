import logging
import math
from typing import Callable

from pycparser.c_ast import Node, BinaryOp, UnaryOp, Cast, TernaryOp, Constant, ID, Typename

from macroevaluator.literals import parse_literal, wrap, round_to_float
from macroevaluator.model import ConstantValue, ConstantKind, MacroError, MacroErrorKind, not_constant
from targetplatform import TargetPlatform
from typegraph import strip_qualifiers, describe
from typegraph.declarators import DeclaratorParser
from typegraph.types import Type, Primitive, PrimitiveKind, Pointer, Array, EnumRef

IdentifierResolver = Callable[[str], ConstantValue]
TypeResolver = Callable[[Type], Type]

logger = logging.getLogger(__name__)

_RANKS = {
    PrimitiveKind.BOOL: 0,
    PrimitiveKind.CHAR: 1,
    PrimitiveKind.SCHAR: 1,
    PrimitiveKind.UCHAR: 1,
    PrimitiveKind.SHORT: 2,
    PrimitiveKind.USHORT: 2,
    PrimitiveKind.CHAR16: 2,
    PrimitiveKind.INT: 3,
    PrimitiveKind.UINT: 3,
    PrimitiveKind.WCHAR: 3,
    PrimitiveKind.CHAR32: 3,
    PrimitiveKind.LONG: 4,
    PrimitiveKind.ULONG: 4,
    PrimitiveKind.LONGLONG: 5,
    PrimitiveKind.ULONGLONG: 5,
    PrimitiveKind.INT128: 6,
    PrimitiveKind.UINT128: 6,
}

_FLOATING_RANKS = {
    PrimitiveKind.HALF: 0,
    PrimitiveKind.FLOAT: 1,
    PrimitiveKind.DOUBLE: 2,
    PrimitiveKind.LONGDOUBLE: 3,
    PrimitiveKind.FLOAT128: 4,
}

_TO_UNSIGNED = {
    PrimitiveKind.INT: PrimitiveKind.UINT,
    PrimitiveKind.LONG: PrimitiveKind.ULONG,
    PrimitiveKind.LONGLONG: PrimitiveKind.ULONGLONG,
    PrimitiveKind.INT128: PrimitiveKind.UINT128,
}

_ARITHMETIC_OPERATORS = {"+", "-", "*", "/", "%"}
_BITWISE_OPERATORS = {"&", "|", "^", "<<", ">>"}
_COMPARISON_OPERATORS = {
    "==": lambda a, b: a == b,
    "!=": lambda a, b: a != b,
    "<": lambda a, b: a < b,
    ">": lambda a, b: a > b,
    "<=": lambda a, b: a <= b,
    ">=": lambda a, b: a >= b,
}


class ExpressionEvaluator:
    """Evaluates a C constant expression given as a pycparser tree.

    Identifiers are handed to ``resolve_identifier``; typedef names in casts
    and ``sizeof`` to ``resolve_type``. Anything outside the constant subset
    raises :class:`MacroError` with ``NOT_CONSTANT``.
    """

    def __init__(self, target: TargetPlatform, resolve_identifier: IdentifierResolver,
                 resolve_type: TypeResolver = lambda typ: typ):
        self._target = target
        self._resolve_identifier = resolve_identifier
        self._resolve_type = resolve_type
        self._declarators = DeclaratorParser(target.primitive, lambda node, _: self.evaluate_integer(node))
        self._int = target.primitive(PrimitiveKind.INT)

    def evaluate(self, node: Node) -> ConstantValue:
        if isinstance(node, Constant):
            return parse_literal(node.type, node.value, self._target)
        elif isinstance(node, ID):
            return self._resolve_identifier(node.name)
        elif isinstance(node, BinaryOp):
            return self._binary(node)
        elif isinstance(node, UnaryOp):
            return self._unary(node)
        elif isinstance(node, Cast):
            return self.convert(self.evaluate(node.expr), self._type_of(node.to_type))
        elif isinstance(node, TernaryOp):
            return self._ternary(node)
        raise not_constant(f"{type(node).__name__} is not a constant expression")

    def evaluate_integer(self, node: Node) -> int:
        value = self.evaluate(node)
        if not value.is_integer:
            raise not_constant(f"expected an integer constant, got {value.kind.value}")
        return value.value

    # ------------------------------------------------------------------
    # conversions
    # ------------------------------------------------------------------

    def _type_of(self, typename: Typename) -> Type:
        try:
            typ = self._declarators.parse_type(typename)
        except TypeError as error:
            raise not_constant(str(error)) from error
        typ = strip_qualifiers(self._resolve_type(typ))
        if isinstance(typ, EnumRef):
            return self._int
        return typ

    def convert(self, value: ConstantValue, typ: Type) -> ConstantValue:
        """The value of ``(typ) value``."""
        typ = strip_qualifiers(typ)
        if isinstance(typ, Primitive):
            if typ.is_void:
                raise not_constant("cast to void")
            if value.kind == ConstantKind.STRING:
                raise not_constant("string literal converted to an arithmetic type")
            if typ.kind == PrimitiveKind.BOOL:
                return ConstantValue(1 if value.value else 0, typ, ConstantKind.BOOLEAN)
            if typ.is_floating:
                converted = float(value.value)
                if typ.kind == PrimitiveKind.FLOAT:
                    converted = round_to_float(converted)
                return ConstantValue(converted, typ, ConstantKind.FLOATING)
            if isinstance(value.value, float):
                if math.isnan(value.value) or math.isinf(value.value):
                    raise not_constant("non-finite value converted to an integer type")
                return ConstantValue(wrap(int(value.value), typ), typ, ConstantKind.INTEGER)
            return ConstantValue(wrap(value.value, typ), typ, ConstantKind.INTEGER)
        elif isinstance(typ, Pointer):
            if value.kind in (ConstantKind.INTEGER, ConstantKind.BOOLEAN, ConstantKind.POINTER):
                address = value.value & ((1 << self._target.pointer_width) - 1)
                return ConstantValue(address, typ, ConstantKind.POINTER)
            raise not_constant(f"{value.kind.value} converted to a pointer")
        raise not_constant(f"cast to {describe(typ)}")

    def _promote(self, typ: Primitive) -> Primitive:
        if typ.is_floating or _RANKS[typ.kind] > _RANKS[PrimitiveKind.INT]:
            return typ
        if typ.kind in (PrimitiveKind.INT, PrimitiveKind.UINT):
            return typ
        if typ.width < self._int.width or (typ.width == self._int.width and typ.signed):
            return self._int
        return self._target.primitive(PrimitiveKind.UINT)

    def _common_type(self, left: Primitive, right: Primitive) -> Primitive:
        if left.is_floating or right.is_floating:
            candidates = [typ for typ in (left, right) if typ.is_floating]
            return max(candidates, key=lambda typ: _FLOATING_RANKS[typ.kind])
        left, right = self._promote(left), self._promote(right)
        if left.kind == right.kind:
            return left
        if left.signed == right.signed:
            return left if _RANKS[left.kind] >= _RANKS[right.kind] else right
        signed, unsigned = (left, right) if left.signed else (right, left)
        if _RANKS[unsigned.kind] >= _RANKS[signed.kind]:
            return unsigned
        if signed.width > unsigned.width:
            return signed
        return self._target.primitive(_TO_UNSIGNED[signed.kind])

    @staticmethod
    def _arithmetic_type(value: ConstantValue, operator: str) -> Primitive:
        if value.kind not in (ConstantKind.INTEGER, ConstantKind.BOOLEAN, ConstantKind.FLOATING):
            raise not_constant(f"{value.kind.value} operand of {operator}")
        return value.type

    # ------------------------------------------------------------------
    # operators
    # ------------------------------------------------------------------

    def _binary(self, node: BinaryOp) -> ConstantValue:
        operator = node.op
        if operator in ("&&", "||"):
            return self._logical(node)

        left = self.evaluate(node.left)
        right = self.evaluate(node.right)

        if operator in _COMPARISON_OPERATORS:
            if ConstantKind.STRING in (left.kind, right.kind):
                raise not_constant(f"string operand of {operator}")
            if left.kind != ConstantKind.POINTER and right.kind != ConstantKind.POINTER:
                common = self._common_type(left.type, right.type)
                left, right = self.convert(left, common), self.convert(right, common)
            result = _COMPARISON_OPERATORS[operator](left.value, right.value)
            return ConstantValue(1 if result else 0, self._int, ConstantKind.INTEGER)

        left_type = self._arithmetic_type(left, operator)
        right_type = self._arithmetic_type(right, operator)

        if operator in ("<<", ">>"):
            return self._shift(operator, left, right)

        common = self._common_type(left_type, right_type)
        left, right = self.convert(left, common), self.convert(right, common)
        if operator in _BITWISE_OPERATORS:
            if common.is_floating:
                raise not_constant(f"floating operand of {operator}")
            values = {"&": left.value & right.value, "|": left.value | right.value, "^": left.value ^ right.value}
            return ConstantValue(wrap(values[operator], common), common, ConstantKind.INTEGER)
        if operator in _ARITHMETIC_OPERATORS:
            return self._arithmetic(operator, left.value, right.value, common)
        raise not_constant(f"operator {operator} in a constant expression")

    def _arithmetic(self, operator: str, left, right, typ: Primitive) -> ConstantValue:
        if operator in ("/", "%") and right == 0:
            raise not_constant("division by zero")
        if typ.is_floating:
            if operator == "%":
                raise not_constant("floating operand of %")
            result = {"+": lambda: left + right, "-": lambda: left - right, "*": lambda: left * right,
                      "/": lambda: left / right}[operator]()
            if typ.kind == PrimitiveKind.FLOAT:
                result = round_to_float(result)
            return ConstantValue(result, typ, ConstantKind.FLOATING)

        if operator == "+":
            result = left + right
        elif operator == "-":
            result = left - right
        elif operator == "*":
            result = left * right
        else:
            # C division truncates toward zero
            quotient = abs(left) // abs(right)
            if (left < 0) != (right < 0):
                quotient = -quotient
            result = quotient if operator == "/" else left - right * quotient
        return ConstantValue(wrap(result, typ), typ, ConstantKind.INTEGER)

    def _shift(self, operator: str, left: ConstantValue, right: ConstantValue) -> ConstantValue:
        if left.kind == ConstantKind.FLOATING or right.kind == ConstantKind.FLOATING:
            raise not_constant(f"floating operand of {operator}")
        typ = self._promote(left.type)
        count = right.value
        if count < 0 or count >= typ.width:
            raise not_constant(f"shift count {count} out of range for {describe(typ)}")
        value = left.value << count if operator == "<<" else left.value >> count
        return ConstantValue(wrap(value, typ), typ, ConstantKind.INTEGER)

    def _logical(self, node: BinaryOp) -> ConstantValue:
        left = self._truth(self.evaluate(node.left))
        if node.op == "&&" and not left:
            return ConstantValue(0, self._int, ConstantKind.INTEGER)
        if node.op == "||" and left:
            return ConstantValue(1, self._int, ConstantKind.INTEGER)
        right = self._truth(self.evaluate(node.right))
        return ConstantValue(1 if right else 0, self._int, ConstantKind.INTEGER)

    @staticmethod
    def _truth(value: ConstantValue) -> bool:
        if value.kind == ConstantKind.STRING:
            return True
        return value.value != 0

    def _unary(self, node: UnaryOp) -> ConstantValue:
        operator = node.op
        if operator == "sizeof":
            return self._size_constant(self._size_of(self._operand_type(node.expr)))
        elif operator == "_Alignof":
            return self._size_constant(self._alignment_of(self._operand_type(node.expr)))
        elif operator == "!":
            return ConstantValue(0 if self._truth(self.evaluate(node.expr)) else 1, self._int, ConstantKind.INTEGER)

        operand = self.evaluate(node.expr)
        if operator not in ("-", "+", "~"):
            raise not_constant(f"operator {operator} in a constant expression")
        typ = self._arithmetic_type(operand, operator)
        if typ.is_floating:
            if operator == "~":
                raise not_constant("floating operand of ~")
            return ConstantValue(-operand.value if operator == "-" else operand.value, typ, ConstantKind.FLOATING)
        typ = self._promote(typ)
        value = {"-": -operand.value, "+": operand.value, "~": ~operand.value}[operator]
        return ConstantValue(wrap(value, typ), typ, ConstantKind.INTEGER)

    def _ternary(self, node: TernaryOp) -> ConstantValue:
        condition = self._truth(self.evaluate(node.cond))
        taken, skipped = (node.iftrue, node.iffalse) if condition else (node.iffalse, node.iftrue)
        chosen = self.evaluate(taken)
        try:
            other = self.evaluate(skipped)
        except MacroError as error:
            # the branch not taken only contributes its type
            logger.debug("ternary branch not taken is not constant: %s", error)
            return chosen
        arithmetic = (ConstantKind.INTEGER, ConstantKind.BOOLEAN, ConstantKind.FLOATING)
        if chosen.kind in arithmetic and other.kind in arithmetic:
            return self.convert(chosen, self._common_type(chosen.type, other.type))
        return chosen

    # ------------------------------------------------------------------
    # sizeof / _Alignof
    # ------------------------------------------------------------------

    def _operand_type(self, operand: Node) -> Type:
        if isinstance(operand, Typename):
            return self._type_of(operand)
        return self.evaluate(operand).type

    def _size_of(self, typ: Type) -> int:
        typ = strip_qualifiers(self._resolve_type(typ))
        if isinstance(typ, Primitive) and not typ.is_void:
            return self._target.size_of(typ.kind)
        elif isinstance(typ, Pointer):
            return self._target.pointer_size
        elif isinstance(typ, Array) and typ.length is not None:
            return typ.length * self._size_of(typ.element)
        elif isinstance(typ, EnumRef):
            return self._int.width // 8
        raise not_constant(f"sizeof({describe(typ)}) needs a record layout")

    def _alignment_of(self, typ: Type) -> int:
        typ = strip_qualifiers(self._resolve_type(typ))
        if isinstance(typ, Primitive) and not typ.is_void:
            return self._target.alignment_of(typ.kind)
        elif isinstance(typ, Pointer):
            return self._target.pointer_alignment()
        elif isinstance(typ, Array):
            return self._alignment_of(typ.element)
        elif isinstance(typ, EnumRef):
            return self._target.alignment_of(PrimitiveKind.INT)
        raise not_constant(f"_Alignof({describe(typ)}) needs a record layout")

    def _size_constant(self, size: int) -> ConstantValue:
        typ = self.size_type()
        return ConstantValue(size, typ, ConstantKind.INTEGER)

    def size_type(self) -> Primitive:
        """``size_t``: the unsigned integer type as wide as a pointer."""
        for kind in (PrimitiveKind.ULONG, PrimitiveKind.ULONGLONG, PrimitiveKind.UINT):
            typ = self._target.primitive(kind)
            if typ.width == self._target.pointer_width:
                return typ
        raise ValueError(f"No unsigned integer type is {self._target.pointer_width} bits wide")


def unresolved(name: str) -> MacroError:
    return MacroError(MacroErrorKind.UNRESOLVED_REFERENCE, f"{name} is not defined")
