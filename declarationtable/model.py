import enum
from dataclasses import dataclass, field
from typing import Optional

from typegraph.types import Type, Field, EnumConstant, FunctionType, RecordKind


class Namespace(enum.Enum):
    # struct, union and enum tags
    TAG = "tag"
    # variables, functions and typedefs
    ORDINARY = "ordinary"
    # preprocessor macros
    MACRO = "macro"


@dataclass(frozen=True)
class SourceLocation:
    file: str
    line: int
    column: Optional[int] = None

    def __str__(self):
        if self.column is None:
            return f"{self.file}:{self.line}"
        return f"{self.file}:{self.line}:{self.column}"


@dataclass(frozen=True)
class DeclarationId:
    namespace: Namespace
    name: str

    def __str__(self):
        return f"{self.namespace.value}:{self.name}"


@dataclass(frozen=True)
class Declaration:
    # None only for a file scope `enum { ... };` until it is named
    name: Optional[str]

    @property
    def namespace(self) -> Namespace:
        raise NotImplementedError

    @property
    def id(self) -> DeclarationId:
        return DeclarationId(self.namespace, self.name)

    @property
    def kind_name(self) -> str:
        return type(self).__name__.lower()


@dataclass(frozen=True)
class Record(Declaration):
    kind: RecordKind = RecordKind.STRUCT
    # None until the record is defined
    fields: Optional[tuple[Field, ...]] = None
    pack_directive: Optional[int] = None
    is_anonymous: bool = False
    location: Optional[SourceLocation] = None

    @property
    def namespace(self) -> Namespace:
        return Namespace.TAG

    @property
    def is_complete(self) -> bool:
        return self.fields is not None

    @property
    def kind_name(self) -> str:
        return self.kind.value


@dataclass(frozen=True)
class Enum(Declaration):
    constants: Optional[tuple[EnumConstant, ...]] = None
    underlying_width: Optional[int] = None
    is_anonymous: bool = False
    location: Optional[SourceLocation] = None

    @property
    def namespace(self) -> Namespace:
        return Namespace.TAG

    @property
    def is_complete(self) -> bool:
        return self.constants is not None


@dataclass(frozen=True)
class Typedef(Declaration):
    aliased_type: Type = None
    location: Optional[SourceLocation] = None

    @property
    def namespace(self) -> Namespace:
        return Namespace.ORDINARY


@dataclass(frozen=True)
class Function(Declaration):
    signature: FunctionType = None
    is_defined: bool = False
    location: Optional[SourceLocation] = None

    @property
    def namespace(self) -> Namespace:
        return Namespace.ORDINARY


@dataclass(frozen=True)
class Variable(Declaration):
    type: Type = None
    is_extern: bool = False
    location: Optional[SourceLocation] = None

    @property
    def namespace(self) -> Namespace:
        return Namespace.ORDINARY


@dataclass(frozen=True)
class Macro(Declaration):
    # unexpanded replacement list, tokens separated by whitespace
    tokens: str = ""
    # None for object-like macros
    parameters: Optional[tuple[str, ...]] = None
    location: Optional[SourceLocation] = None

    @property
    def namespace(self) -> Namespace:
        return Namespace.MACRO

    @property
    def is_function_like(self) -> bool:
        return self.parameters is not None


class ConflictKind(enum.Enum):
    INCOMPATIBLE_REDECLARATION = "incompatible redeclaration"
    INCOMPATIBLE_TYPE = "incompatible type"
    REDEFINITION = "redefinition"
    TYPEDEF_MISMATCH = "typedef mismatch"


@dataclass(frozen=True)
class Conflict:
    kind: ConflictKind
    existing: Declaration
    rejected: Declaration

    @property
    def message(self) -> str:
        where = f" at {self.rejected.location}" if self.rejected.location is not None else ""
        return f"{self.kind.value}: {self.rejected.kind_name} {self.rejected.name}{where} " + \
               f"does not match earlier {self.existing.kind_name} {self.existing.name}"


@dataclass
class Entity:
    """The table's mutable slot for one canonical declaration."""
    declaration: Declaration
    order: int
    conflicts: list[Conflict] = field(default_factory=list)

    @property
    def id(self) -> DeclarationId:
        return self.declaration.id

    @property
    def name(self) -> str:
        return self.declaration.name
