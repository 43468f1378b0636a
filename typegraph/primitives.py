from typing import Optional

from typegraph.types import PrimitiveKind

primitive_names_to_kinds = {
    "void": PrimitiveKind.VOID,
    "_Bool": PrimitiveKind.BOOL,
    "bool": PrimitiveKind.BOOL,
    "char": PrimitiveKind.CHAR,
    "signed char": PrimitiveKind.SCHAR,
    "unsigned char": PrimitiveKind.UCHAR,
    "short": PrimitiveKind.SHORT,
    "short int": PrimitiveKind.SHORT,
    "signed short": PrimitiveKind.SHORT,
    "signed short int": PrimitiveKind.SHORT,
    "unsigned short": PrimitiveKind.USHORT,
    "unsigned short int": PrimitiveKind.USHORT,
    "int": PrimitiveKind.INT,
    "signed": PrimitiveKind.INT,
    "signed int": PrimitiveKind.INT,
    "unsigned": PrimitiveKind.UINT,
    "unsigned int": PrimitiveKind.UINT,
    "long": PrimitiveKind.LONG,
    "long int": PrimitiveKind.LONG,
    "signed long": PrimitiveKind.LONG,
    "signed long int": PrimitiveKind.LONG,
    "unsigned long": PrimitiveKind.ULONG,
    "unsigned long int": PrimitiveKind.ULONG,
    "long long": PrimitiveKind.LONGLONG,
    "long long int": PrimitiveKind.LONGLONG,
    "signed long long": PrimitiveKind.LONGLONG,
    "signed long long int": PrimitiveKind.LONGLONG,
    "unsigned long long": PrimitiveKind.ULONGLONG,
    "unsigned long long int": PrimitiveKind.ULONGLONG,
    "__int128": PrimitiveKind.INT128,
    "__int128_t": PrimitiveKind.INT128,
    "signed __int128": PrimitiveKind.INT128,
    "unsigned __int128": PrimitiveKind.UINT128,
    "__uint128_t": PrimitiveKind.UINT128,
    "_Float16": PrimitiveKind.HALF,
    "__fp16": PrimitiveKind.HALF,
    "float": PrimitiveKind.FLOAT,
    "double": PrimitiveKind.DOUBLE,
    "long double": PrimitiveKind.LONGDOUBLE,
    "_Float128": PrimitiveKind.FLOAT128,
    "__float128": PrimitiveKind.FLOAT128,
    "wchar_t": PrimitiveKind.WCHAR,
    "char16_t": PrimitiveKind.CHAR16,
    "char32_t": PrimitiveKind.CHAR32,
}

primitive_names = set(primitive_names_to_kinds.keys())

# Spellings pycparser cannot read as builtins; they are typedef'd in a preamble.
extended_primitive_names = [
    "__int128",
    "__int128_t",
    "__uint128_t",
    "_Float16",
    "__fp16",
    "_Float128",
    "__float128",
    "wchar_t",
    "char16_t",
    "char32_t",
]


def _normalize(names: list[str]) -> list[str]:
    # "int" is redundant next to any other size specifier
    words = [name for name in names if name not in ("const", "volatile", "restrict", "__restrict")]
    if len(words) > 1 and "int" in words and any(w in words for w in ("short", "long", "unsigned", "signed")):
        words = [w for w in words if w != "int"]
    if words == ["signed"]:
        return ["int"]
    if "signed" in words and "char" not in words:
        words = [w for w in words if w != "signed"]
    order = {"signed": 0, "unsigned": 1, "short": 2, "long": 3}
    words = sorted(words, key=lambda w: order.get(w, 4))
    return words


def lookup_primitive(names: list[str]) -> Optional[PrimitiveKind]:
    """Maps a list of type specifier words (``["unsigned", "long"]``) to its kind."""
    kind = primitive_names_to_kinds.get(" ".join(names))
    if kind is not None:
        return kind
    normalized = _normalize(names)
    if not normalized:
        return None
    return primitive_names_to_kinds.get(" ".join(normalized))
