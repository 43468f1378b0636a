from typing import Callable, Optional

from pycparser import c_ast
from pycparser.c_ast import Node, Decl, TypeDecl, IdentifierType, PtrDecl, ArrayDecl, ParamList, Typename, FuncDecl, \
    EllipsisParam, Enumerator, EnumeratorList

from typegraph.primitives import lookup_primitive
from typegraph.types import Type, Pointer, Array, Parameter, FunctionType, RecordRef, EnumRef, TypedefRef, Qualified, \
    Field, EnumConstant, InlineRecord, InlineEnum, RecordKind, PrimitiveKind

# evaluates an integer constant expression; the dict holds enumerators declared so far
ConstantEvaluator = Callable[[Node, dict[str, int]], int]


def _qualify(typ: Type, quals: Optional[list[str]]) -> Type:
    quals = quals or []
    const = "const" in quals
    volatile = "volatile" in quals
    if not const and not volatile:
        return typ
    return Qualified(base=typ, const=const, volatile=volatile)


class DeclaratorParser:
    """Turns pycparser declarator trees into :mod:`typegraph` types.

    Records and enums defined in place come back as :class:`InlineRecord` /
    :class:`InlineEnum`; ``pack`` is stamped on every record defined while it
    is set.
    """

    def __init__(self, primitive: Callable[[PrimitiveKind], Type], evaluate: ConstantEvaluator):
        self._primitive = primitive
        self._evaluate = evaluate
        self.pack: Optional[int] = None

    def parse_type(self, node: Node) -> Type:
        if isinstance(node, TypeDecl):
            return _qualify(self.parse_type(node.type), node.quals)
        elif isinstance(node, Typename):
            return _qualify(self.parse_type(node.type), node.quals)
        elif isinstance(node, IdentifierType):
            return self._parse_identifier_type(node.names)
        elif isinstance(node, PtrDecl):
            return _qualify(Pointer(pointee=self.parse_type(node.type)), node.quals)
        elif isinstance(node, ArrayDecl):
            length = None if node.dim is None else self._evaluate(node.dim, {})
            if length is not None and length < 0:
                raise ValueError(f"Negative array dimension {length}")
            return Array(element=self.parse_type(node.type), length=length)
        elif isinstance(node, FuncDecl):
            return self._parse_function(node)
        elif isinstance(node, c_ast.Struct):
            return self._parse_record(node, RecordKind.STRUCT)
        elif isinstance(node, c_ast.Union):
            return self._parse_record(node, RecordKind.UNION)
        elif isinstance(node, c_ast.Enum):
            return self._parse_enum(node)
        raise TypeError(f"Unexpected type {type(node)}{node}")

    def _parse_identifier_type(self, names: list[str]) -> Type:
        kind = lookup_primitive(names)
        if kind is not None:
            return self._primitive(kind)
        if len(names) != 1:
            raise TypeError(f"Unknown type specifiers {' '.join(names)}")
        return TypedefRef(name=names[0])

    def _parse_function(self, node: FuncDecl) -> FunctionType:
        params: list[Parameter] = []
        is_variadic = False
        if node.args is not None:
            if not isinstance(node.args, ParamList):
                raise TypeError(f"Unexpected type for function arguments {type(node.args)}")
            for parameter in node.args.params:
                if isinstance(parameter, EllipsisParam):
                    is_variadic = True
                elif isinstance(parameter, (Typename, Decl)):
                    params.append(Parameter(name=parameter.name, type=self.parse_type(parameter.type)))
                else:
                    raise TypeError(f"Unexpected type for parameter in parameter list {parameter}")
        # f(void) takes no parameters
        if len(params) == 1 and params[0].name is None and params[0].type == self._primitive(PrimitiveKind.VOID):
            params = []
        return FunctionType(return_type=self.parse_type(node.type), params=tuple(params), is_variadic=is_variadic)

    def _parse_record(self, node, kind: RecordKind) -> Type:
        if node.decls is None:
            if node.name is None:
                raise TypeError(f"{kind.value} with neither a name nor a body")
            return RecordRef(name=node.name, kind=kind)
        return InlineRecord(tag=node.name, kind=kind, fields=tuple(self.parse_fields(node.decls)), pack=self.pack)

    def parse_fields(self, declarations: list[Node]) -> list[Field]:
        fields: list[Field] = []
        for declaration in declarations:
            if isinstance(declaration, c_ast.Pragma):
                continue
            if not isinstance(declaration, Decl):
                raise TypeError(f"Expected Decl but is {type(declaration)}")
            bit_width = None if declaration.bitsize is None else self._evaluate(declaration.bitsize, {})
            fields.append(Field(name=declaration.name, type=self.parse_type(declaration.type), bit_width=bit_width))
        return fields

    def _parse_enum(self, node: c_ast.Enum) -> Type:
        if node.values is None:
            if node.name is None:
                raise TypeError("enum with neither a name nor a body")
            return EnumRef(name=node.name)
        return InlineEnum(tag=node.name, constants=tuple(self.parse_enumerators(node.values)))

    def parse_enumerators(self, values: EnumeratorList) -> list[EnumConstant]:
        if not isinstance(values, EnumeratorList):
            raise TypeError(f"Expected EnumeratorList but got {type(values)}")
        constants: list[EnumConstant] = []
        known: dict[str, int] = {}
        last_value: int = -1
        for entry in values.enumerators:
            if not isinstance(entry, Enumerator):
                raise TypeError(f"Expected Enumerator but got {type(entry)}")
            if entry.value is None:
                entry_value = last_value + 1
            else:
                entry_value = self._evaluate(entry.value, known)
            last_value = entry_value
            known[entry.name] = entry_value
            constants.append(EnumConstant(name=entry.name, value=entry_value))
        return constants
