from typing import Optional, Protocol

from layoutengine.model import Layout, FieldLayout, LayoutError, LayoutErrorKind
from targetplatform import TargetPlatform, BitfieldAbi
from typegraph import describe
from typegraph.types import Type, Field, Array, InlineRecord, RecordKind


class TypeSizer(Protocol):
    target: TargetPlatform

    def resolve(self, typ: Type) -> Type:
        ...

    def size_and_alignment(self, typ: Type) -> tuple[int, int]:
        ...

    def bitfield_unit(self, typ: Type) -> tuple[int, int]:
        ...


def round_up(value: int, alignment: int) -> int:
    return (value + alignment - 1) // alignment * alignment


class RecordLayoutComputer:
    """Lays out the members of one struct or union, in declaration order."""

    def __init__(self, sizer: TypeSizer, name: str, fields: tuple[Field, ...], pack: Optional[int]):
        self._sizer = sizer
        self._target = sizer.target
        self._name = name
        self._fields = fields
        self._pack = pack
        self._layouts: list[FieldLayout] = []
        self._alignment = 1
        self._has_flexible_array = False

    @staticmethod
    def create(sizer: TypeSizer, name: str, kind: RecordKind, fields: tuple[Field, ...],
               pack: Optional[int]) -> "RecordLayoutComputer":
        if pack is not None and not sizer.target.is_valid_pack(pack):
            raise LayoutError(LayoutErrorKind.UNREPRESENTABLE_PACKING,
                              f"pack({pack}) on {name} is not a power of two up to 16")
        if kind == RecordKind.UNION:
            return UnionLayoutComputer(sizer, name, fields, pack)
        if sizer.target.bitfield_abi == BitfieldAbi.MS:
            return MsStructLayoutComputer(sizer, name, fields, pack)
        return StructLayoutComputer(sizer, name, fields, pack)

    def compute(self) -> Layout:
        for index, member in enumerate(self._fields):
            is_last = index == len(self._fields) - 1
            if member.is_anonymous_member:
                self._add_anonymous_member(member)
            elif member.is_bitfield:
                self._add_bitfield(member)
            elif self._is_flexible_array(member):
                self._add_flexible_array(member, is_last)
            else:
                self._add_field(member)
        size = round_up(self._end(), self._alignment)
        return Layout(size=size, alignment=self._alignment, fields=tuple(self._layouts),
                      has_flexible_array=self._has_flexible_array)

    def _cap(self, alignment: int) -> int:
        return alignment if self._pack is None else min(alignment, self._pack)

    def _describe_member(self, member: Field) -> str:
        return f"{self._name}.{member.name or '<anonymous>'}"

    def _is_flexible_array(self, member: Field) -> bool:
        typ = self._sizer.resolve(member.type)
        return isinstance(typ, Array) and typ.is_incomplete

    def _member_size(self, member: Field) -> tuple[int, int]:
        try:
            return self._sizer.size_and_alignment(member.type)
        except LayoutError as error:
            raise LayoutError(error.kind, f"{self._describe_member(member)}: {error.message}") from error

    def _bitfield_unit(self, member: Field) -> tuple[int, int]:
        """Size and capped alignment of a bit-field's declared type, checking its width."""
        try:
            size, alignment = self._sizer.bitfield_unit(member.type)
        except LayoutError as error:
            raise LayoutError(error.kind, f"{self._describe_member(member)}: {error.message}") from error
        if member.bit_width < 0 or member.bit_width > size * 8:
            raise LayoutError(LayoutErrorKind.INVALID_BITFIELD,
                              f"{self._describe_member(member)} is {member.bit_width} bits wide "
                              f"but {describe(member.type)} has {size * 8}")
        if member.bit_width == 0 and member.name is not None:
            raise LayoutError(LayoutErrorKind.INVALID_BITFIELD,
                              f"{self._describe_member(member)} is a named zero-width bit-field")
        return size, self._cap(alignment)

    def _add_anonymous_member(self, member: Field):
        inline: InlineRecord = member.type
        pack = inline.pack if inline.pack is not None else self._pack
        nested = RecordLayoutComputer.create(self._sizer, self._name, inline.kind, inline.fields, pack).compute()
        alignment = self._cap(nested.alignment)
        offset = self._place(nested.size, alignment)
        for nested_field in nested.fields:
            self._layouts.append(FieldLayout(
                name=nested_field.name,
                type=nested_field.type,
                offset=offset + nested_field.offset,
                size=nested_field.size,
                bit_offset=nested_field.bit_offset,
                bit_width=nested_field.bit_width,
            ))

    def _add_field(self, member: Field):
        size, alignment = self._member_size(member)
        alignment = self._cap(alignment)
        offset = self._place(size, alignment)
        self._layouts.append(FieldLayout(name=member.name, type=member.type, offset=offset, size=size))

    def _add_flexible_array(self, member: Field, is_last: bool):
        if not is_last:
            raise LayoutError(LayoutErrorKind.MISPLACED_FLEXIBLE_ARRAY,
                              f"{self._describe_member(member)} has no length and is not the last member")
        element = self._sizer.resolve(member.type).element
        _, alignment = self._member_size(Field(name=member.name, type=element))
        alignment = self._cap(alignment)
        offset = self._place(0, alignment)
        self._layouts.append(FieldLayout(name=member.name, type=member.type, offset=offset, size=0))
        self._has_flexible_array = True

    def _place(self, size: int, alignment: int) -> int:
        raise NotImplementedError

    def _add_bitfield(self, member: Field):
        raise NotImplementedError

    def _end(self) -> int:
        raise NotImplementedError


class StructLayoutComputer(RecordLayoutComputer):
    """Struct layout with SysV bit-fields.

    A bit-field goes into the storage unit of its declared type that holds the
    current bit position, unless it would cross the end of that unit; then it
    starts at the next unit boundary. Units of different types may overlap, so
    ``char a:4; int b:4;`` shares one byte. A zero-width bit-field moves to the
    next boundary of its type's alignment. Unnamed bit-fields do not add to
    the struct's alignment.
    """

    def __init__(self, sizer: TypeSizer, name: str, fields: tuple[Field, ...], pack: Optional[int]):
        super().__init__(sizer, name, fields, pack)
        self._bit_position = 0

    def _place(self, size: int, alignment: int) -> int:
        offset = round_up((self._bit_position + 7) // 8, alignment)
        self._bit_position = (offset + size) * 8
        self._alignment = max(self._alignment, alignment)
        return offset

    def _add_bitfield(self, member: Field):
        unit_size, alignment = self._bitfield_unit(member)
        unit_bits = unit_size * 8
        alignment_bits = alignment * 8
        width = member.bit_width
        if width == 0:
            self._bit_position = round_up(self._bit_position, alignment_bits)
            return

        unit_start = self._bit_position // alignment_bits * alignment_bits
        if self._bit_position + width > unit_start + unit_bits:
            self._bit_position = round_up(self._bit_position, alignment_bits)
            unit_start = self._bit_position

        if member.name is not None:
            self._alignment = max(self._alignment, alignment)
            self._layouts.append(FieldLayout(
                name=member.name,
                type=member.type,
                offset=unit_start // 8,
                size=unit_size,
                bit_offset=self._bit_position - unit_start,
                bit_width=width,
            ))
        self._bit_position += width

    def _end(self) -> int:
        return (self._bit_position + 7) // 8


class MsStructLayoutComputer(RecordLayoutComputer):
    """Struct layout with MSVC bit-fields.

    Consecutive bit-fields share a storage unit only while their declared
    types have the same size and the unit has room left. Any other member,
    and a zero-width bit-field, closes the open unit.
    """

    def __init__(self, sizer: TypeSizer, name: str, fields: tuple[Field, ...], pack: Optional[int]):
        super().__init__(sizer, name, fields, pack)
        self._offset = 0
        self._unit_offset: Optional[int] = None
        self._unit_size = 0
        self._unit_used = 0

    def _close_unit(self):
        self._unit_offset = None

    def _place(self, size: int, alignment: int) -> int:
        self._close_unit()
        offset = round_up(self._offset, alignment)
        self._offset = offset + size
        self._alignment = max(self._alignment, alignment)
        return offset

    def _add_bitfield(self, member: Field):
        unit_size, alignment = self._bitfield_unit(member)
        width = member.bit_width
        if width == 0:
            self._close_unit()
            return

        if self._unit_offset is None or self._unit_size != unit_size or self._unit_used + width > unit_size * 8:
            self._unit_offset = round_up(self._offset, alignment)
            self._unit_size = unit_size
            self._unit_used = 0
            self._offset = self._unit_offset + unit_size
            self._alignment = max(self._alignment, alignment)

        if member.name is not None:
            self._layouts.append(FieldLayout(
                name=member.name,
                type=member.type,
                offset=self._unit_offset,
                size=unit_size,
                bit_offset=self._unit_used,
                bit_width=width,
            ))
        self._unit_used += width

    def _end(self) -> int:
        return self._offset


class UnionLayoutComputer(RecordLayoutComputer):
    """Every member starts at offset 0; the union is as large as its largest member."""

    def __init__(self, sizer: TypeSizer, name: str, fields: tuple[Field, ...], pack: Optional[int]):
        super().__init__(sizer, name, fields, pack)
        self._size = 0

    def _place(self, size: int, alignment: int) -> int:
        self._size = max(self._size, size)
        self._alignment = max(self._alignment, alignment)
        return 0

    def _add_flexible_array(self, member: Field, is_last: bool):
        raise LayoutError(LayoutErrorKind.MISPLACED_FLEXIBLE_ARRAY,
                          f"{self._describe_member(member)} is a flexible array in a union")

    def _add_bitfield(self, member: Field):
        unit_size, alignment = self._bitfield_unit(member)
        if member.bit_width == 0 or member.name is None:
            return
        self._size = max(self._size, (member.bit_width + 7) // 8)
        self._alignment = max(self._alignment, alignment)
        self._layouts.append(FieldLayout(name=member.name, type=member.type, offset=0, size=unit_size,
                                         bit_offset=0, bit_width=member.bit_width))

    def _end(self) -> int:
        return self._size
