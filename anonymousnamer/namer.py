import logging
import threading
from dataclasses import replace
from typing import Optional

from declarationtable import DeclarationTable, Declaration, Entity, Namespace, Record, Enum, Typedef, Function, \
    Variable, Macro
from parallel.cache import OnceCache
from typegraph import strip_qualifiers
from typegraph.types import Type, Pointer, Array, Qualified, FunctionType, Parameter, Field, InlineDeclaration, \
    InlineRecord, InlineEnum, RecordRef, EnumRef

logger = logging.getLogger(__name__)

Context = tuple[str, ...]

SEPARATOR = "_"


class AnonymousTypeNamer:
    """Gives every anonymous record and enum a name of its own.

    A name is derived from the context the anonymous type appears in, the chain
    of declaration, field and parameter names from file scope down to it:
    ``struct Outer { struct { int x; } mid; }`` names the inner record
    ``Outer_mid``. Function returns and parameters contribute ``return`` and the
    parameter name (``arg<i>`` when unnamed). C11 anonymous members are not
    named; they stay inline in the enclosing record.

    Each named type is registered in the tag namespace and every use of it is
    rewritten to a :class:`RecordRef` / :class:`EnumRef`.
    """

    def __init__(self, table: DeclarationTable):
        self._table = table
        self._names: OnceCache[tuple[Namespace, Context], str] = OnceCache()
        self._reserved: set[str] = set()
        self._lock = threading.Lock()
        self.named_count = 0

    def name_for(self, nested: InlineDeclaration, context: Context, namespace: Namespace = Namespace.TAG) -> str:
        """The synthetic name for the anonymous type found at ``context``.

        ``namespace`` is that of the declaration the context starts from, so a
        typedef and a struct of the same name do not share contexts. The same
        context always yields the same name; different contexts never share
        one, even for structurally identical types.
        """
        if not context:
            raise ValueError(f"No context to name {nested}")
        return self._names.get((namespace, context), lambda: self._reserve(SEPARATOR.join(context)))

    def _reserve(self, base: str) -> str:
        with self._lock:
            candidate = base
            suffix = 0
            while candidate in self._reserved or self._table.contains(Namespace.TAG, candidate):
                suffix += 1
                candidate = f"{base}{SEPARATOR}{suffix}"
            self._reserved.add(candidate)
        if candidate != base:
            logger.debug("Renamed anonymous type %s to %s to avoid a collision", base, candidate)
        return candidate

    def run(self):
        """Names everything anonymous in the table, in declaration order."""
        pending = sorted(self._table.entities() + self._table.unnamed_entities(), key=lambda e: e.order)
        for entity in pending:
            if entity.declaration.name is None:
                self._name_unnamed_tag(entity)
            self._table.replace(entity.id, self._name_declaration(entity.declaration))
        logger.info("Named %d anonymous types", self.named_count)

    def _name_unnamed_tag(self, entity: Entity):
        name = self._reserve(SEPARATOR.join(("anonymous", entity.declaration.kind_name)))
        self._table.adopt(entity, name)
        self.named_count += 1

    def _name_declaration(self, declaration: Declaration) -> Declaration:
        context = (declaration.name,)
        if isinstance(declaration, Record):
            if declaration.fields is None:
                return declaration
            return replace(declaration, fields=self._name_fields(declaration.fields, context))
        elif isinstance(declaration, Typedef):
            return replace(declaration, aliased_type=self._name_ordinary(declaration.aliased_type, context))
        elif isinstance(declaration, Function):
            return replace(declaration, signature=self._name_ordinary(declaration.signature, context))
        elif isinstance(declaration, Variable):
            return replace(declaration, type=self._name_ordinary(declaration.type, context))
        elif isinstance(declaration, (Enum, Macro)):
            return declaration
        raise TypeError(f"Unhandled declaration {declaration}")

    def _name_fields(self, fields: tuple[Field, ...], context: Context) -> tuple[Field, ...]:
        named: list[Field] = []
        for index, member in enumerate(fields):
            if member.is_anonymous_member:
                # members of an anonymous struct/union belong to the enclosing scope
                inline = member.type
                named.append(replace(member, type=replace(inline, fields=self._name_fields(inline.fields, context))))
            elif member.is_bitfield and member.name is None:
                # unnamed bit-fields pad, or with width 0 close the storage unit
                named.append(replace(member, type=self._name_type(member.type, context + (f"bitfield{index}",),
                                                                  Namespace.TAG)))
            elif member.name is None:
                # `enum { A, B };` inside a record declares constants, not a member
                if isinstance(strip_qualifiers(member.type), InlineEnum):
                    self._name_type(member.type, context + (f"enum{index}",), Namespace.TAG)
                else:
                    logger.debug("Dropping unnamed member %d of %s", index, SEPARATOR.join(context))
            else:
                named.append(replace(member, type=self._name_type(member.type, context + (member.name,),
                                                                  Namespace.TAG)))
        return tuple(named)

    def _name_ordinary(self, typ: Type, context: Context) -> Type:
        return self._name_type(typ, context, Namespace.ORDINARY)

    def _name_type(self, typ: Type, context: Context, namespace: Namespace) -> Type:
        if isinstance(typ, Pointer):
            return Pointer(pointee=self._name_type(typ.pointee, context, namespace))
        elif isinstance(typ, Array):
            return Array(element=self._name_type(typ.element, context, namespace), length=typ.length)
        elif isinstance(typ, Qualified):
            return replace(typ, base=self._name_type(typ.base, context, namespace))
        elif isinstance(typ, FunctionType):
            return FunctionType(
                return_type=self._name_type(typ.return_type, context + ("return",), namespace),
                params=tuple(
                    Parameter(name=param.name,
                              type=self._name_type(param.type, context + (param.name or f"arg{index}",), namespace))
                    for index, param in enumerate(typ.params)
                ),
                is_variadic=typ.is_variadic
            )
        elif isinstance(typ, InlineRecord):
            return self._register_record(typ, context, namespace)
        elif isinstance(typ, InlineEnum):
            return self._register_enum(typ, context, namespace)
        return typ

    def _register_record(self, inline: InlineRecord, context: Context, namespace: Namespace) -> RecordRef:
        name = self._tag_name(inline, context, namespace)
        # members are named after the record's final, collision-free name
        record = Record(
            name=name,
            kind=inline.kind,
            fields=self._name_fields(inline.fields, (name,)),
            pack_directive=inline.pack,
            is_anonymous=inline.tag is None,
        )
        self._table.merge(record)
        self.named_count += 1
        return RecordRef(name=name, kind=inline.kind)

    def _register_enum(self, inline: InlineEnum, context: Context, namespace: Namespace) -> EnumRef:
        name = self._tag_name(inline, context, namespace)
        self._table.merge(Enum(name=name, constants=inline.constants, is_anonymous=inline.tag is None))
        self.named_count += 1
        return EnumRef(name=name)

    def _tag_name(self, inline: InlineDeclaration, context: Context, namespace: Namespace) -> str:
        tag: Optional[str] = inline.tag
        return tag if tag is not None else self.name_for(inline, context, namespace)
