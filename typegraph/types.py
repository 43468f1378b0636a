import enum
from dataclasses import dataclass, field
from typing import Optional


class PrimitiveKind(enum.Enum):
    VOID = "void"
    BOOL = "_Bool"
    CHAR = "char"
    SCHAR = "signed char"
    UCHAR = "unsigned char"
    SHORT = "short"
    USHORT = "unsigned short"
    INT = "int"
    UINT = "unsigned int"
    LONG = "long"
    ULONG = "unsigned long"
    LONGLONG = "long long"
    ULONGLONG = "unsigned long long"
    INT128 = "__int128"
    UINT128 = "unsigned __int128"
    HALF = "_Float16"
    FLOAT = "float"
    DOUBLE = "double"
    LONGDOUBLE = "long double"
    FLOAT128 = "_Float128"
    WCHAR = "wchar_t"
    CHAR16 = "char16_t"
    CHAR32 = "char32_t"


FLOATING_KINDS = frozenset({
    PrimitiveKind.HALF,
    PrimitiveKind.FLOAT,
    PrimitiveKind.DOUBLE,
    PrimitiveKind.LONGDOUBLE,
    PrimitiveKind.FLOAT128,
})

UNSIGNED_KINDS = frozenset({
    PrimitiveKind.BOOL,
    PrimitiveKind.UCHAR,
    PrimitiveKind.USHORT,
    PrimitiveKind.UINT,
    PrimitiveKind.ULONG,
    PrimitiveKind.ULONGLONG,
    PrimitiveKind.UINT128,
    PrimitiveKind.CHAR16,
    PrimitiveKind.CHAR32,
})


class RecordKind(enum.Enum):
    STRUCT = "struct"
    UNION = "union"


@dataclass(frozen=True)
class Type:
    pass


@dataclass(frozen=True)
class Primitive(Type):
    kind: PrimitiveKind
    width: int
    signed: bool

    @property
    def is_void(self) -> bool:
        return self.kind == PrimitiveKind.VOID

    @property
    def is_floating(self) -> bool:
        return self.kind in FLOATING_KINDS

    @property
    def is_integer(self) -> bool:
        return not self.is_void and not self.is_floating


@dataclass(frozen=True)
class Pointer(Type):
    pointee: Type


@dataclass(frozen=True)
class Array(Type):
    element: Type
    # None for an incomplete array (`int arr[]`)
    length: Optional[int] = None

    @property
    def is_incomplete(self) -> bool:
        return self.length is None


@dataclass(frozen=True)
class Parameter:
    # Parameter names are immaterial to the ABI and take no part in comparisons.
    name: Optional[str] = field(compare=False)
    type: Type


@dataclass(frozen=True)
class FunctionType(Type):
    return_type: Type
    params: tuple[Parameter, ...] = ()
    is_variadic: bool = False


@dataclass(frozen=True)
class RecordRef(Type):
    name: str
    kind: RecordKind = RecordKind.STRUCT


@dataclass(frozen=True)
class EnumRef(Type):
    name: str


@dataclass(frozen=True)
class TypedefRef(Type):
    name: str


@dataclass(frozen=True)
class Qualified(Type):
    base: Type
    const: bool = False
    volatile: bool = False


@dataclass(frozen=True)
class Field:
    """A member of a record as declared.

    ``name`` is None for C11 anonymous members, whose ``type`` is then an
    :class:`InlineRecord` with no tag; its fields are hoisted into the
    enclosing record.
    """
    name: Optional[str]
    type: Type
    bit_width: Optional[int] = None

    @property
    def is_bitfield(self) -> bool:
        return self.bit_width is not None

    @property
    def is_anonymous_member(self) -> bool:
        return self.name is None and isinstance(self.type, InlineRecord) and self.type.tag is None


@dataclass(frozen=True)
class EnumConstant:
    name: str
    value: int


@dataclass(frozen=True)
class InlineDeclaration(Type):
    # tag is None for anonymous definitions
    tag: Optional[str]


@dataclass(frozen=True)
class InlineRecord(InlineDeclaration):
    """A record defined in the middle of a type (member, parameter, return...)."""
    kind: RecordKind = RecordKind.STRUCT
    fields: tuple[Field, ...] = ()
    pack: Optional[int] = None


@dataclass(frozen=True)
class InlineEnum(InlineDeclaration):
    constants: tuple[EnumConstant, ...] = ()
