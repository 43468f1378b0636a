import logging
from dataclasses import replace
from typing import Callable, Iterator, Optional

from declarationtable.model import Namespace, DeclarationId, Declaration, Record, Enum, Typedef, Function, Variable, \
    Macro, ConflictKind, Conflict, Entity
from targetplatform import TargetPlatform
from typegraph import map_type, strip_qualifiers
from typegraph.types import Type, Array, Pointer, FunctionType, Parameter, RecordRef, EnumRef, TypedefRef, \
    InlineRecord, InlineEnum, PrimitiveKind

logger = logging.getLogger(__name__)


class FrozenTableError(RuntimeError):
    pass


def map_declaration_types(declaration: Declaration, transform: Callable[[Type], Type]) -> Declaration:
    """Rebuilds every type a declaration carries with :func:`typegraph.map_type`."""
    if isinstance(declaration, Record):
        if declaration.fields is None:
            return declaration
        return replace(declaration, fields=tuple(
            replace(member, type=map_type(member.type, transform)) for member in declaration.fields))
    elif isinstance(declaration, Typedef):
        return replace(declaration, aliased_type=map_type(declaration.aliased_type, transform))
    elif isinstance(declaration, Function):
        return replace(declaration, signature=map_type(declaration.signature, transform))
    elif isinstance(declaration, Variable):
        return replace(declaration, type=map_type(declaration.type, transform))
    elif isinstance(declaration, (Enum, Macro)):
        return declaration
    raise TypeError(f"Unhandled declaration {declaration}")


def declaration_types(declaration: Declaration) -> list[Type]:
    if isinstance(declaration, Record):
        return [member.type for member in declaration.fields or ()]
    elif isinstance(declaration, Typedef):
        return [declaration.aliased_type]
    elif isinstance(declaration, Function):
        return [declaration.signature]
    elif isinstance(declaration, Variable):
        return [declaration.type]
    return []


class DeclarationTable:
    """Canonical store of named declarations, one keyed map per C namespace.

    Repeated and forward declarations are merged into a single :class:`Entity`
    by :meth:`merge`. Once :meth:`freeze` has been called the table is
    read-only.
    """

    def __init__(self, target: Optional[TargetPlatform] = None):
        self.target = target if target is not None else TargetPlatform.linux_x86_64()
        self._maps: dict[Namespace, dict[str, Entity]] = {namespace: {} for namespace in Namespace}
        self._unnamed: list[Entity] = []
        self._enum_constants: dict[str, int] = {}
        self._next_order = 0
        self._frozen = False
        self._mergers: dict[type, Callable] = {
            Record: self._merge_records,
            Enum: self._merge_enums,
            Typedef: self._merge_typedefs,
            Function: self._merge_functions,
            Variable: self._merge_variables,
            Macro: self._merge_macros,
        }

    # ------------------------------------------------------------------
    # ingestion
    # ------------------------------------------------------------------

    def merge(self, declaration: Declaration) -> Optional[ConflictKind]:
        """Merges ``declaration`` into the entity of the same name and namespace.

        Returns None when the declaration was inserted or merged, otherwise the
        kind of conflict, which is also recorded on the existing entity. The
        existing entity always keeps its last good state.
        """
        self._check_not_frozen()
        declaration = self._hoist_nested_definitions(declaration)
        if isinstance(declaration, Enum):
            declaration = self._with_underlying_width(declaration)

        if declaration.name is None:
            # enum { A, B }; at file scope, named once the table is complete
            self._unnamed.append(self._new_entity(declaration))
            self._index_enum_constants(declaration)
            return None

        entity = self._maps[declaration.namespace].get(declaration.name)
        if entity is None:
            self._insert(declaration)
            return None

        existing = entity.declaration
        if type(existing) is not type(declaration) or \
                (isinstance(existing, Record) and existing.kind != declaration.kind):
            return self._record_conflict(entity, declaration, ConflictKind.INCOMPATIBLE_REDECLARATION)

        merged, conflict = self._mergers[type(declaration)](existing, declaration)
        if conflict is not None:
            return self._record_conflict(entity, declaration, conflict)
        if merged is not existing:
            entity.declaration = merged
            self._index_enum_constants(merged)
        return None

    def replace(self, declaration_id: DeclarationId, declaration: Declaration):
        """Swaps an entity's declaration; used by the passes that run before freezing."""
        self._check_not_frozen()
        entity = self._maps[declaration_id.namespace][declaration_id.name]
        if declaration.id != declaration_id:
            raise ValueError(f"Cannot replace {declaration_id} with {declaration.id}")
        entity.declaration = declaration

    def freeze(self):
        self._frozen = True
        logger.debug("Declaration table frozen with %d entities", len(self))

    @property
    def frozen(self) -> bool:
        return self._frozen

    def _check_not_frozen(self):
        if self._frozen:
            raise FrozenTableError("The declaration table is frozen")

    def adopt(self, entity: Entity, name: str):
        """Files an unnamed tag declaration under ``name``."""
        self._check_not_frozen()
        self._unnamed.remove(entity)
        if name in self._maps[entity.declaration.namespace]:
            raise ValueError(f"{name} is already declared")
        entity.declaration = replace(entity.declaration, name=name, is_anonymous=True)
        self._maps[entity.declaration.namespace][name] = entity

    def unnamed_entities(self) -> list[Entity]:
        return list(self._unnamed)

    def _new_entity(self, declaration: Declaration) -> Entity:
        entity = Entity(declaration=declaration, order=self._next_order)
        self._next_order += 1
        return entity

    def _insert(self, declaration: Declaration):
        self._maps[declaration.namespace][declaration.name] = self._new_entity(declaration)
        self._index_enum_constants(declaration)

    def _record_conflict(self, entity: Entity, declaration: Declaration, kind: ConflictKind) -> ConflictKind:
        conflict = Conflict(kind=kind, existing=entity.declaration, rejected=declaration)
        entity.conflicts.append(conflict)
        logger.warning("skipping %s: %s", declaration.name, conflict.message)
        return kind

    def _index_enum_constants(self, declaration: Declaration):
        if isinstance(declaration, Enum) and declaration.constants is not None:
            for constant in declaration.constants:
                self._enum_constants.setdefault(constant.name, constant.value)

    def _with_underlying_width(self, enum: Enum) -> Enum:
        if enum.constants is None or enum.underlying_width is not None:
            return enum
        int_width = self.target.primitive_widths[PrimitiveKind.INT]
        values = [constant.value for constant in enum.constants]
        if not values:
            return replace(enum, underlying_width=int_width)
        low, high = min(values), max(values)
        fits_int = -(1 << (int_width - 1)) <= low and high < (1 << (int_width - 1))
        fits_unsigned_int = 0 <= low and high < (1 << int_width)
        if fits_int or fits_unsigned_int:
            width = int_width
        else:
            width = self.target.primitive_widths[PrimitiveKind.LONGLONG]
        return replace(enum, underlying_width=width)

    def _hoist_nested_definitions(self, declaration: Declaration) -> Declaration:
        """Moves tagged definitions nested in types into the tag namespace.

        ``struct Outer { struct Inner { int x; } in; }`` declares ``Inner`` at
        file scope. References to tags the table has never seen declare them
        implicitly, as C does for ``struct X *p;``.
        """
        location = getattr(declaration, "location", None)

        def hoist(typ: Type) -> Type:
            if isinstance(typ, InlineRecord) and typ.tag is not None:
                self.merge(Record(name=typ.tag, kind=typ.kind, fields=typ.fields, pack_directive=typ.pack,
                                  location=location))
                return RecordRef(name=typ.tag, kind=typ.kind)
            elif isinstance(typ, InlineEnum) and typ.tag is not None:
                self.merge(Enum(name=typ.tag, constants=typ.constants, location=location))
                return EnumRef(name=typ.tag)
            elif isinstance(typ, RecordRef) and self.lookup(Namespace.TAG, typ.name) is None \
                    and not (isinstance(declaration, Record) and declaration.name == typ.name
                             and declaration.kind == typ.kind):
                self._insert(Record(name=typ.name, kind=typ.kind, location=location))
            elif isinstance(typ, EnumRef) and self.lookup(Namespace.TAG, typ.name) is None \
                    and not (isinstance(declaration, Enum) and declaration.name == typ.name):
                self._insert(Enum(name=typ.name, location=location))
            return typ

        return map_declaration_types(declaration, hoist)

    # ------------------------------------------------------------------
    # merge rules, one per declaration variant
    # ------------------------------------------------------------------

    @staticmethod
    def _merge_records(existing: Record, new: Record):
        if not new.is_complete:
            return existing, None
        if not existing.is_complete:
            return new, None
        if existing.fields == new.fields and existing.pack_directive == new.pack_directive:
            return existing, None
        return None, ConflictKind.REDEFINITION

    @staticmethod
    def _merge_enums(existing: Enum, new: Enum):
        if not new.is_complete:
            return existing, None
        if not existing.is_complete:
            return new, None
        if existing.constants == new.constants:
            return existing, None
        return None, ConflictKind.REDEFINITION

    def _merge_typedefs(self, existing: Typedef, new: Typedef):
        if self.canonical(existing.aliased_type) == self.canonical(new.aliased_type):
            return existing, None
        return None, ConflictKind.TYPEDEF_MISMATCH

    def _merge_functions(self, existing: Function, new: Function):
        if self._signature_key(existing.signature) != self._signature_key(new.signature):
            return None, ConflictKind.INCOMPATIBLE_TYPE
        # each parameter keeps the first name any declaration gave it
        params = tuple(
            Parameter(name=old.name or other.name, type=old.type)
            for old, other in zip(existing.signature.params, new.signature.params)
        )
        merged = replace(
            existing,
            signature=replace(existing.signature, params=params),
            is_defined=existing.is_defined or new.is_defined
        )
        if merged == existing and [p.name for p in params] == [p.name for p in existing.signature.params]:
            return existing, None
        return merged, None

    def _merge_variables(self, existing: Variable, new: Variable):
        old_type = self.canonical(existing.type)
        new_type = self.canonical(new.type)
        merged_type = existing.type
        if old_type != new_type:
            # extern int a[]; int a[10];
            if isinstance(old_type, Array) and isinstance(new_type, Array) and old_type.element == new_type.element \
                    and (old_type.length is None or new_type.length is None):
                if old_type.length is None:
                    merged_type = new.type
            else:
                return None, ConflictKind.INCOMPATIBLE_TYPE
        is_extern = existing.is_extern and new.is_extern
        if merged_type is existing.type and is_extern == existing.is_extern:
            return existing, None
        return replace(existing, type=merged_type, is_extern=is_extern), None

    @staticmethod
    def _merge_macros(existing: Macro, new: Macro):
        if existing.tokens.split() == new.tokens.split() and existing.parameters == new.parameters:
            return existing, None
        return None, ConflictKind.REDEFINITION

    def _signature_key(self, signature: FunctionType) -> FunctionType:
        """The part of a signature that matters to the ABI."""
        return FunctionType(
            return_type=strip_qualifiers(self.canonical(signature.return_type)),
            params=tuple(Parameter(name=None, type=self._adjust_parameter(param.type)) for param in signature.params),
            is_variadic=signature.is_variadic
        )

    def _adjust_parameter(self, typ: Type) -> Type:
        typ = strip_qualifiers(self.canonical(typ))
        if isinstance(typ, Array):
            return Pointer(pointee=typ.element)
        if isinstance(typ, FunctionType):
            return Pointer(pointee=typ)
        return typ

    # ------------------------------------------------------------------
    # lookups
    # ------------------------------------------------------------------

    def lookup(self, namespace: Namespace, name: str) -> Optional[Entity]:
        return self._maps[namespace].get(name)

    def get(self, declaration_id: DeclarationId) -> Optional[Entity]:
        return self._maps[declaration_id.namespace].get(declaration_id.name)

    def declaration(self, namespace: Namespace, name: str) -> Optional[Declaration]:
        entity = self.lookup(namespace, name)
        return entity.declaration if entity is not None else None

    def record(self, name: str) -> Optional[Record]:
        declaration = self.declaration(Namespace.TAG, name)
        return declaration if isinstance(declaration, Record) else None

    def enum(self, name: str) -> Optional[Enum]:
        declaration = self.declaration(Namespace.TAG, name)
        return declaration if isinstance(declaration, Enum) else None

    def typedef(self, name: str) -> Optional[Typedef]:
        declaration = self.declaration(Namespace.ORDINARY, name)
        return declaration if isinstance(declaration, Typedef) else None

    def macro(self, name: str) -> Optional[Macro]:
        declaration = self.declaration(Namespace.MACRO, name)
        return declaration if isinstance(declaration, Macro) else None

    def enum_constant(self, name: str) -> Optional[int]:
        return self._enum_constants.get(name)

    def typedef_names(self) -> list[str]:
        return [entity.name for entity in self._maps[Namespace.ORDINARY].values()
                if isinstance(entity.declaration, Typedef)]

    def contains(self, namespace: Namespace, name: str) -> bool:
        return name in self._maps[namespace]

    def entities(self, namespace: Optional[Namespace] = None) -> list[Entity]:
        """All entities in first-declaration order."""
        if namespace is not None:
            entities = list(self._maps[namespace].values())
        else:
            entities = [entity for entries in self._maps.values() for entity in entries.values()]
        return sorted(entities, key=lambda entity: entity.order)

    def __iter__(self) -> Iterator[Entity]:
        return iter(self.entities())

    def __len__(self) -> int:
        return sum(len(entries) for entries in self._maps.values())

    # ------------------------------------------------------------------
    # type resolution
    # ------------------------------------------------------------------

    def resolve(self, typ: Type) -> Type:
        """Strips qualifiers and typedefs at the top of ``typ``.

        An unknown typedef name is returned as the :class:`TypedefRef` itself.
        """
        seen: set[str] = set()
        typ = strip_qualifiers(typ)
        while isinstance(typ, TypedefRef):
            typedef = self.typedef(typ.name)
            if typedef is None or typ.name in seen:
                return typ
            seen.add(typ.name)
            typ = strip_qualifiers(typedef.aliased_type)
        return typ

    def canonical(self, typ: Type) -> Type:
        """Replaces every known typedef in ``typ`` with the type it names."""
        return self._canonical(typ, frozenset())

    def _canonical(self, typ: Type, expanding: frozenset[str]) -> Type:
        def expand(node: Type) -> Type:
            if isinstance(node, TypedefRef) and node.name not in expanding:
                typedef = self.typedef(node.name)
                if typedef is not None:
                    return self._canonical(typedef.aliased_type, expanding | {node.name})
            return node

        return map_type(typ, expand)


