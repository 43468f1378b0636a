import enum
from dataclasses import dataclass
from typing import Optional

from typegraph.types import Type


class LayoutErrorKind(enum.Enum):
    INCOMPLETE_MEMBER = "incomplete member"
    UNSIZED_MEMBER = "unsized member"
    UNREPRESENTABLE_PACKING = "unrepresentable packing"
    INVALID_BITFIELD = "invalid bit-field"
    MISPLACED_FLEXIBLE_ARRAY = "misplaced flexible array"
    CYCLIC_CONTAINMENT = "cyclic containment"


class LayoutError(Exception):
    def __init__(self, kind: LayoutErrorKind, message: str):
        super().__init__(f"{kind.value}: {message}")
        self.kind = kind
        self.message = message


@dataclass(frozen=True)
class FieldLayout:
    """Placement of one member.

    ``offset`` is in bytes from the start of the outermost record. For a
    bit-field it is the start of the storage unit holding the field and
    ``bit_offset`` counts from the least significant bit of that unit.
    Members of anonymous structs and unions are listed at their absolute
    offsets, with no extra nesting level.
    """
    name: str
    type: Type
    offset: int
    size: int
    bit_offset: int = 0
    bit_width: Optional[int] = None

    @property
    def is_bitfield(self) -> bool:
        return self.bit_width is not None


@dataclass(frozen=True)
class Layout:
    size: int
    alignment: int
    fields: tuple[FieldLayout, ...] = ()
    # a trailing `T member[]` that takes no space
    has_flexible_array: bool = False

    def field(self, name: str) -> FieldLayout:
        for member in self.fields:
            if member.name == name:
                return member
        raise KeyError(name)
