from typing import Callable, Iterator

from typegraph.types import Type, Primitive, Pointer, Array, Parameter, FunctionType, RecordRef, EnumRef, TypedefRef, \
    Qualified, Field, InlineRecord, InlineEnum


def strip_qualifiers(typ: Type) -> Type:
    while isinstance(typ, Qualified):
        typ = typ.base
    return typ


def child_types(typ: Type) -> list[Type]:
    if isinstance(typ, Pointer):
        return [typ.pointee]
    elif isinstance(typ, Array):
        return [typ.element]
    elif isinstance(typ, Qualified):
        return [typ.base]
    elif isinstance(typ, FunctionType):
        return [typ.return_type] + [param.type for param in typ.params]
    elif isinstance(typ, InlineRecord):
        return [member.type for member in typ.fields]
    elif isinstance(typ, (Primitive, RecordRef, EnumRef, TypedefRef, InlineEnum)):
        return []
    else:
        raise TypeError(f"Unhandled type {typ}")


def walk(typ: Type) -> Iterator[Type]:
    """Yields ``typ`` and every type nested in it, depth first."""
    yield typ
    for child in child_types(typ):
        yield from walk(child)


def map_type(typ: Type, transform: Callable[[Type], Type]) -> Type:
    """Rebuilds ``typ`` bottom-up, applying ``transform`` to every node."""
    if isinstance(typ, Pointer):
        typ = Pointer(pointee=map_type(typ.pointee, transform))
    elif isinstance(typ, Array):
        typ = Array(element=map_type(typ.element, transform), length=typ.length)
    elif isinstance(typ, Qualified):
        typ = Qualified(base=map_type(typ.base, transform), const=typ.const, volatile=typ.volatile)
    elif isinstance(typ, FunctionType):
        typ = FunctionType(
            return_type=map_type(typ.return_type, transform),
            params=tuple(Parameter(name=param.name, type=map_type(param.type, transform)) for param in typ.params),
            is_variadic=typ.is_variadic
        )
    elif isinstance(typ, InlineRecord):
        typ = InlineRecord(
            tag=typ.tag,
            kind=typ.kind,
            fields=tuple(Field(name=member.name, type=map_type(member.type, transform), bit_width=member.bit_width)
                         for member in typ.fields),
            pack=typ.pack
        )
    return transform(typ)


def describe(typ: Type) -> str:
    """A C-like spelling of ``typ`` for diagnostics."""
    if isinstance(typ, Primitive):
        return typ.kind.value
    elif isinstance(typ, Pointer):
        pointee = strip_qualifiers(typ.pointee)
        if isinstance(pointee, FunctionType):
            return f"{describe(pointee.return_type)} (*)({_describe_params(pointee)})"
        return f"{describe(typ.pointee)} *"
    elif isinstance(typ, Array):
        return f"{describe(typ.element)}[{'' if typ.is_incomplete else typ.length}]"
    elif isinstance(typ, Qualified):
        quals = [name for name, present in (("const", typ.const), ("volatile", typ.volatile)) if present]
        return " ".join(quals + [describe(typ.base)])
    elif isinstance(typ, FunctionType):
        return f"{describe(typ.return_type)} ({_describe_params(typ)})"
    elif isinstance(typ, RecordRef):
        return f"{typ.kind.value} {typ.name}"
    elif isinstance(typ, EnumRef):
        return f"enum {typ.name}"
    elif isinstance(typ, TypedefRef):
        return typ.name
    elif isinstance(typ, InlineRecord):
        return f"{typ.kind.value} {typ.tag or '<anonymous>'}"
    elif isinstance(typ, InlineEnum):
        return f"enum {typ.tag or '<anonymous>'}"
    raise TypeError(f"Unhandled type {typ}")


def _describe_params(function: FunctionType) -> str:
    params = [describe(param.type) for param in function.params]
    if function.is_variadic:
        params.append("...")
    return ", ".join(params) if params else "void"
