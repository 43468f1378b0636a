"""Typed values of C literals as pycparser spells them in ``c_ast.Constant``."""
import re
import struct

from macroevaluator.model import ConstantValue, ConstantKind, not_constant
from targetplatform import TargetPlatform
from typegraph.types import Array, PrimitiveKind, Primitive

_INTEGER_SUFFIX = re.compile(r"(?i)(u?(ll|l)?|(ll|l)u)$")

_DECIMAL_CANDIDATES = {
    "": [PrimitiveKind.INT, PrimitiveKind.LONG, PrimitiveKind.LONGLONG],
    "u": [PrimitiveKind.UINT, PrimitiveKind.ULONG, PrimitiveKind.ULONGLONG],
    "l": [PrimitiveKind.LONG, PrimitiveKind.LONGLONG],
    "ul": [PrimitiveKind.ULONG, PrimitiveKind.ULONGLONG],
    "ll": [PrimitiveKind.LONGLONG],
    "ull": [PrimitiveKind.ULONGLONG],
}

_OTHER_BASE_CANDIDATES = {
    "": [PrimitiveKind.INT, PrimitiveKind.UINT, PrimitiveKind.LONG, PrimitiveKind.ULONG, PrimitiveKind.LONGLONG,
         PrimitiveKind.ULONGLONG],
    "u": [PrimitiveKind.UINT, PrimitiveKind.ULONG, PrimitiveKind.ULONGLONG],
    "l": [PrimitiveKind.LONG, PrimitiveKind.ULONG, PrimitiveKind.LONGLONG, PrimitiveKind.ULONGLONG],
    "ul": [PrimitiveKind.ULONG, PrimitiveKind.ULONGLONG],
    "ll": [PrimitiveKind.LONGLONG, PrimitiveKind.ULONGLONG],
    "ull": [PrimitiveKind.ULONGLONG],
}

_SIMPLE_ESCAPES = {
    "n": 0x0A,
    "t": 0x09,
    "r": 0x0D,
    "0": 0x00,
    "a": 0x07,
    "b": 0x08,
    "f": 0x0C,
    "v": 0x0B,
    "e": 0x1B,
    "\\": 0x5C,
    "'": 0x27,
    "\"": 0x22,
    "?": 0x3F,
}


def fits(value: int, typ: Primitive) -> bool:
    if typ.signed:
        return -(1 << (typ.width - 1)) <= value < (1 << (typ.width - 1))
    return 0 <= value < (1 << typ.width)


def wrap(value: int, typ: Primitive) -> int:
    """Reduces ``value`` modulo the width of ``typ``, two's complement for signed types."""
    if typ.kind == PrimitiveKind.BOOL:
        return 1 if value else 0
    value &= (1 << typ.width) - 1
    if typ.signed and value >= 1 << (typ.width - 1):
        value -= 1 << typ.width
    return value


def round_to_float(value: float) -> float:
    return struct.unpack("f", struct.pack("f", value))[0]


def _normalize_suffix(suffix: str) -> str:
    suffix = suffix.lower()
    unsigned = "u" if "u" in suffix else ""
    return unsigned + suffix.replace("u", "")


def integer_literal(text: str, target: TargetPlatform) -> ConstantValue:
    """``0x10UL`` -> ``ConstantValue(16, unsigned long)``.

    The type is the first of the candidate types the value fits in, following
    the promotion order for the literal's base and suffix.
    """
    match = _INTEGER_SUFFIX.search(text)
    digits = text[:match.start()] if match else text
    suffix = _normalize_suffix(match.group(0) if match else "")
    lowered = digits.lower()
    if lowered.startswith("0x"):
        value, decimal = int(lowered[2:], 16), False
    elif lowered.startswith("0b"):
        value, decimal = int(lowered[2:], 2), False
    elif len(lowered) > 1 and lowered.startswith("0"):
        value, decimal = int(lowered[1:], 8), False
    else:
        value, decimal = int(lowered, 10), True

    candidates = (_DECIMAL_CANDIDATES if decimal else _OTHER_BASE_CANDIDATES)[suffix]
    for kind in candidates:
        typ = target.primitive(kind)
        if fits(value, typ):
            return ConstantValue(value, typ, ConstantKind.INTEGER)
    raise not_constant(f"integer literal {text} does not fit any integer type")


def floating_literal(text: str, target: TargetPlatform) -> ConstantValue:
    suffix = text[-1].lower()
    if suffix == "f":
        value = round_to_float(float.fromhex(text[:-1]) if _is_hex_float(text) else float(text[:-1]))
        return ConstantValue(value, target.primitive(PrimitiveKind.FLOAT), ConstantKind.FLOATING)
    body = text[:-1] if suffix == "l" else text
    value = float.fromhex(body) if _is_hex_float(body) else float(body)
    kind = PrimitiveKind.LONGDOUBLE if suffix == "l" else PrimitiveKind.DOUBLE
    return ConstantValue(value, target.primitive(kind), ConstantKind.FLOATING)


def _is_hex_float(text: str) -> bool:
    return text.lower().startswith("0x")


def _strip_prefix(text: str, quote: str) -> str:
    return text[text.index(quote):]


def decode_escapes(body: str) -> list[int]:
    """Code points of the characters of a literal body, escapes resolved."""
    codes: list[int] = []
    index = 0
    while index < len(body):
        char = body[index]
        if char != "\\":
            codes.append(ord(char))
            index += 1
            continue
        index += 1
        if index >= len(body):
            raise not_constant("dangling backslash in literal")
        escape = body[index]
        if escape == "x":
            end = index + 1
            while end < len(body) and body[end] in "0123456789abcdefABCDEF":
                end += 1
            if end == index + 1:
                raise not_constant("\\x used with no following hex digits")
            codes.append(int(body[index + 1:end], 16))
            index = end
        elif escape in "01234567":
            end = index
            while end < len(body) and end < index + 3 and body[end] in "01234567":
                end += 1
            codes.append(int(body[index:end], 8))
            index = end
        elif escape in ("u", "U"):
            length = 4 if escape == "u" else 8
            codes.append(int(body[index + 1:index + 1 + length], 16))
            index += 1 + length
        elif escape in _SIMPLE_ESCAPES:
            codes.append(_SIMPLE_ESCAPES[escape])
            index += 1
        else:
            raise not_constant(f"unknown escape sequence \\{escape}")
    return codes


def char_literal(text: str, target: TargetPlatform) -> ConstantValue:
    """Character constants have type ``int``; multi-character ones combine their bytes big-endian."""
    int_type = target.primitive(PrimitiveKind.INT)
    wide = not text.startswith("'")
    codes = decode_escapes(_strip_prefix(text, "'")[1:-1])
    if not codes:
        raise not_constant("empty character constant")
    if wide or len(codes) == 1:
        value = codes[-1]
        if not wide and target.char_is_signed and value > 0x7F:
            value -= 0x100
        return ConstantValue(wrap(value, int_type), int_type, ConstantKind.INTEGER)
    value = 0
    for code in codes:
        value = (value << 8) | (code & 0xFF)
    return ConstantValue(wrap(value, int_type), int_type, ConstantKind.INTEGER)


def string_literal(text: str, target: TargetPlatform) -> ConstantValue:
    body = _strip_prefix(text, "\"")
    # adjacent literals already joined by the parser still carry their inner quotes
    parts = re.findall(r'"((?:[^"\\]|\\.)*)"', body)
    codes = decode_escapes("".join(parts))
    value = "".join(chr(code) for code in codes)
    typ = Array(element=target.primitive(PrimitiveKind.CHAR), length=len(value.encode("utf-8")) + 1)
    return ConstantValue(value, typ, ConstantKind.STRING)


def parse_literal(constant_type: str, text: str, target: TargetPlatform) -> ConstantValue:
    """Dispatches on ``c_ast.Constant.type``."""
    if constant_type == "string":
        return string_literal(text, target)
    if constant_type == "char" or text.endswith("'"):
        return char_literal(text, target)
    if constant_type in ("float", "double", "long double"):
        return floating_literal(text, target)
    return integer_literal(text, target)
