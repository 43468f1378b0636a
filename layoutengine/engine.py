import logging
from typing import Union

from declarationtable import DeclarationTable, Namespace, Record
from layoutengine.model import Layout, LayoutError, LayoutErrorKind
from layoutengine.records import RecordLayoutComputer
from parallel import run_layered
from parallel.cache import OnceCache, ReentrantComputation
from topologicalsort import Node
from typegraph import strip_qualifiers, describe
from typegraph.types import Type, Primitive, Pointer, Array, FunctionType, RecordRef, EnumRef, TypedefRef, \
    InlineRecord, Field, PrimitiveKind

logger = logging.getLogger(__name__)


class LayoutEngine:
    """Computes size, alignment and member offsets of the records in a table.

    Results are memoized per record name; concurrent requests for the same
    record share a single computation. A record that contains itself by
    value, directly or through other records, fails with
    ``CYCLIC_CONTAINMENT``.
    """

    def __init__(self, table: DeclarationTable):
        self._table = table
        self.target = table.target
        self._cache: OnceCache[str, Layout] = OnceCache()

    def layout_of(self, record: Union[str, Record]) -> Layout:
        name = record.name if isinstance(record, Record) else record
        if self._table.record(name) is None:
            raise KeyError(f"No struct or union named {name}")
        try:
            return self._cache.get(name, lambda: self._compute(name))
        except ReentrantComputation as error:
            raise LayoutError(LayoutErrorKind.CYCLIC_CONTAINMENT, f"{name} contains itself by value") from error

    def compute_all(self, workers: int = 1) -> dict[str, Union[Layout, LayoutError]]:
        """Lays out every defined record; maps its name to a layout or the error."""
        records = [entity.declaration for entity in self._table.entities(Namespace.TAG)
                   if isinstance(entity.declaration, Record) and entity.declaration.is_complete]
        graph = [Node(keys=[record.name], dependencies=self.contained_records(record.fields), data=record)
                 for record in records]

        def compute(node: Node):
            try:
                self.layout_of(node.data.name)
            except LayoutError:
                pass

        run_layered(graph, compute, workers)
        results = {record.name: self.result(record.name) for record in records}
        failed = sum(1 for result in results.values() if isinstance(result, LayoutError))
        logger.info("Laid out %d records, %d failed", len(results) - failed, failed)
        return results

    def result(self, name: str) -> Union[Layout, LayoutError]:
        try:
            return self.layout_of(name)
        except LayoutError as error:
            return error

    def _compute(self, name: str) -> Layout:
        record = self._table.record(name)
        if not record.is_complete:
            raise LayoutError(LayoutErrorKind.INCOMPLETE_MEMBER, f"{record.kind.value} {name} is never defined")
        pack = record.pack_directive if record.pack_directive is not None else self.target.default_pack
        layout = RecordLayoutComputer.create(self, name, record.kind, record.fields, pack).compute()
        logger.debug("Layout of %s %s: size %d, alignment %d", record.kind.value, name, layout.size, layout.alignment)
        return layout

    # ------------------------------------------------------------------
    # sizes of member types
    # ------------------------------------------------------------------

    def resolve(self, typ: Type) -> Type:
        return self._table.resolve(typ)

    def size_and_alignment(self, typ: Type) -> tuple[int, int]:
        typ = self.resolve(typ)
        if isinstance(typ, Primitive):
            if typ.is_void:
                raise LayoutError(LayoutErrorKind.UNSIZED_MEMBER, "void has no size")
            return self.target.size_of(typ.kind), self.target.alignment_of(typ.kind)
        elif isinstance(typ, Pointer):
            return self.target.pointer_size, self.target.pointer_alignment()
        elif isinstance(typ, Array):
            if typ.is_incomplete:
                raise LayoutError(LayoutErrorKind.MISPLACED_FLEXIBLE_ARRAY,
                                  f"{describe(typ)} has no length and is nested by value")
            size, alignment = self.size_and_alignment(typ.element)
            return size * typ.length, alignment
        elif isinstance(typ, FunctionType):
            raise LayoutError(LayoutErrorKind.UNSIZED_MEMBER, f"function type {describe(typ)} has no size")
        elif isinstance(typ, RecordRef):
            return self._record_size(typ)
        elif isinstance(typ, EnumRef):
            enum = self._table.enum(typ.name)
            if enum is None or not enum.is_complete:
                raise LayoutError(LayoutErrorKind.INCOMPLETE_MEMBER, f"enum {typ.name} is never defined")
            kind = PrimitiveKind.INT if enum.underlying_width == self.target.primitive_widths[PrimitiveKind.INT] \
                else PrimitiveKind.LONGLONG
            return enum.underlying_width // 8, self.target.alignment_of(kind)
        elif isinstance(typ, TypedefRef):
            raise LayoutError(LayoutErrorKind.INCOMPLETE_MEMBER, f"type {typ.name} is not declared")
        elif isinstance(typ, InlineRecord):
            layout = RecordLayoutComputer.create(self, typ.tag or "<anonymous>", typ.kind, typ.fields,
                                                 typ.pack).compute()
            return layout.size, layout.alignment
        raise TypeError(f"Unhandled type {typ}")

    def _record_size(self, ref: RecordRef) -> tuple[int, int]:
        record = self._table.record(ref.name)
        if record is None or record.kind != ref.kind or not record.is_complete:
            raise LayoutError(LayoutErrorKind.INCOMPLETE_MEMBER, f"{ref.kind.value} {ref.name} is never defined")
        try:
            layout = self.layout_of(ref.name)
        except LayoutError as error:
            if error.kind == LayoutErrorKind.CYCLIC_CONTAINMENT:
                raise
            raise LayoutError(LayoutErrorKind.INCOMPLETE_MEMBER,
                              f"{ref.kind.value} {ref.name} has no layout ({error.message})") from error
        if layout.has_flexible_array:
            raise LayoutError(LayoutErrorKind.MISPLACED_FLEXIBLE_ARRAY,
                              f"{ref.kind.value} {ref.name} ends in a flexible array and is nested by value")
        return layout.size, layout.alignment

    def bitfield_unit(self, typ: Type) -> tuple[int, int]:
        resolved = self.resolve(typ)
        if isinstance(resolved, Primitive) and resolved.is_integer:
            return self.target.size_of(resolved.kind), self.target.alignment_of(resolved.kind)
        if isinstance(resolved, EnumRef):
            return self.size_and_alignment(resolved)
        raise LayoutError(LayoutErrorKind.INVALID_BITFIELD, f"{describe(typ)} is not an integer type")

    # ------------------------------------------------------------------
    # containment
    # ------------------------------------------------------------------

    def contained_records(self, fields: tuple[Field, ...]) -> list[str]:
        """Names of the records the given members hold by value."""
        names: list[str] = []
        for member in fields:
            self._collect_by_value(member.type, names, set())
        return names

    def _collect_by_value(self, typ: Type, names: list[str], typedefs: set[str]):
        typ = strip_qualifiers(typ)
        if isinstance(typ, Array):
            self._collect_by_value(typ.element, names, typedefs)
        elif isinstance(typ, RecordRef):
            if typ.name not in names:
                names.append(typ.name)
        elif isinstance(typ, TypedefRef) and typ.name not in typedefs:
            typedefs.add(typ.name)
            typedef = self._table.typedef(typ.name)
            if typedef is not None:
                self._collect_by_value(typedef.aliased_type, names, typedefs)
        elif isinstance(typ, InlineRecord):
            for member in typ.fields:
                self._collect_by_value(member.type, names, typedefs)
