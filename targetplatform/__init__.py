import enum
from dataclasses import dataclass, field
from typing import Optional

from typegraph.types import Primitive, PrimitiveKind, UNSIGNED_KINDS


class BitfieldAbi(enum.Enum):
    # GCC/Clang on Linux and macOS: bit-fields share any storage unit they fit in
    SYSV = "sysv"
    # MSVC: a run of bit-fields shares a unit only while the declared type size stays the same
    MS = "ms"


class Endianness(enum.Enum):
    LITTLE = "little"
    BIG = "big"


_COMMON_WIDTHS = {
    PrimitiveKind.VOID: 0,
    PrimitiveKind.BOOL: 8,
    PrimitiveKind.CHAR: 8,
    PrimitiveKind.SCHAR: 8,
    PrimitiveKind.UCHAR: 8,
    PrimitiveKind.SHORT: 16,
    PrimitiveKind.USHORT: 16,
    PrimitiveKind.INT: 32,
    PrimitiveKind.UINT: 32,
    PrimitiveKind.LONGLONG: 64,
    PrimitiveKind.ULONGLONG: 64,
    PrimitiveKind.INT128: 128,
    PrimitiveKind.UINT128: 128,
    PrimitiveKind.HALF: 16,
    PrimitiveKind.FLOAT: 32,
    PrimitiveKind.DOUBLE: 64,
    PrimitiveKind.FLOAT128: 128,
    PrimitiveKind.CHAR16: 16,
    PrimitiveKind.CHAR32: 32,
}

_LP64_WIDTHS = {
    **_COMMON_WIDTHS,
    PrimitiveKind.LONG: 64,
    PrimitiveKind.ULONG: 64,
    PrimitiveKind.LONGDOUBLE: 128,
    PrimitiveKind.WCHAR: 32,
}

_LLP64_WIDTHS = {
    **_COMMON_WIDTHS,
    PrimitiveKind.LONG: 32,
    PrimitiveKind.ULONG: 32,
    PrimitiveKind.LONGDOUBLE: 64,
    PrimitiveKind.WCHAR: 16,
}

_ILP32_WIDTHS = {
    **_COMMON_WIDTHS,
    PrimitiveKind.LONG: 32,
    PrimitiveKind.ULONG: 32,
    PrimitiveKind.LONGDOUBLE: 96,
    PrimitiveKind.WCHAR: 32,
}

_UNSUPPORTED_PRIMITIVES = frozenset({
    PrimitiveKind.INT128,
    PrimitiveKind.UINT128,
    PrimitiveKind.HALF,
    PrimitiveKind.FLOAT128,
    PrimitiveKind.LONGDOUBLE,
    PrimitiveKind.WCHAR,
    PrimitiveKind.CHAR16,
})

_VALID_PACK_VALUES = (1, 2, 4, 8, 16)


@dataclass(frozen=True)
class TargetPlatform:
    """Platform parameters every layout and typing decision is made against."""
    name: str
    pointer_width: int
    endianness: Endianness
    primitive_widths: dict[PrimitiveKind, int] = field(hash=False)
    primitive_alignments: dict[PrimitiveKind, int] = field(default_factory=dict, hash=False)
    max_alignment: int = 16
    default_pack: Optional[int] = None
    bitfield_abi: BitfieldAbi = BitfieldAbi.SYSV
    unsupported_primitives: frozenset[PrimitiveKind] = _UNSUPPORTED_PRIMITIVES
    char_is_signed: bool = True

    @staticmethod
    def linux_x86_64() -> "TargetPlatform":
        return TargetPlatform(
            name="linux-x86_64",
            pointer_width=64,
            endianness=Endianness.LITTLE,
            primitive_widths=dict(_LP64_WIDTHS),
        )

    @staticmethod
    def linux_aarch64() -> "TargetPlatform":
        return TargetPlatform(
            name="linux-aarch64",
            pointer_width=64,
            endianness=Endianness.LITTLE,
            primitive_widths=dict(_LP64_WIDTHS),
            char_is_signed=False,
        )

    @staticmethod
    def linux_i386() -> "TargetPlatform":
        return TargetPlatform(
            name="linux-i386",
            pointer_width=32,
            endianness=Endianness.LITTLE,
            primitive_widths=dict(_ILP32_WIDTHS),
            primitive_alignments={
                PrimitiveKind.LONGLONG: 4,
                PrimitiveKind.ULONGLONG: 4,
                PrimitiveKind.DOUBLE: 4,
                PrimitiveKind.LONGDOUBLE: 4,
            },
        )

    @staticmethod
    def windows_x64() -> "TargetPlatform":
        return TargetPlatform(
            name="windows-x64",
            pointer_width=64,
            endianness=Endianness.LITTLE,
            primitive_widths=dict(_LLP64_WIDTHS),
            bitfield_abi=BitfieldAbi.MS,
            # long double is plain double here and has a binding
            unsupported_primitives=_UNSUPPORTED_PRIMITIVES - {PrimitiveKind.LONGDOUBLE},
        )

    def primitive(self, kind: PrimitiveKind) -> Primitive:
        signed = kind not in UNSIGNED_KINDS
        if kind == PrimitiveKind.CHAR:
            signed = self.char_is_signed
        return Primitive(kind=kind, width=self.primitive_widths[kind], signed=signed)

    def size_of(self, kind: PrimitiveKind) -> int:
        return self.primitive_widths[kind] // 8

    def alignment_of(self, kind: PrimitiveKind) -> int:
        alignment = self.primitive_alignments.get(kind)
        if alignment is not None:
            return alignment
        size = self.size_of(kind)
        # 80-bit long double is stored in 12 or 16 bytes but aligned to a power of two
        natural = 1
        while natural < size:
            natural *= 2
        return max(1, min(natural, self.max_alignment))

    @property
    def pointer_size(self) -> int:
        return self.pointer_width // 8

    def pointer_alignment(self) -> int:
        return min(self.pointer_size, self.max_alignment)

    def is_valid_pack(self, pack: int) -> bool:
        return pack in _VALID_PACK_VALUES
