import enum
from dataclasses import dataclass
from typing import Union

from typegraph.types import Type


class MacroErrorKind(enum.Enum):
    CYCLIC_DEFINITION = "cyclic definition"
    UNRESOLVED_REFERENCE = "unresolved reference"
    NOT_CONSTANT = "not constant"


class MacroError(Exception):
    def __init__(self, kind: MacroErrorKind, message: str):
        super().__init__(f"{kind.value}: {message}")
        self.kind = kind
        self.message = message


class ConstantKind(enum.Enum):
    INTEGER = "integer"
    FLOATING = "floating"
    BOOLEAN = "boolean"
    POINTER = "pointer"
    STRING = "string"


@dataclass(frozen=True)
class ConstantValue:
    """A resolved constant.

    ``value`` is an ``int`` for integers, booleans and pointers, a ``float``
    for floating constants and a ``str`` for strings. ``type`` is the C type of
    the expression.
    """
    value: Union[int, float, str]
    type: Type
    kind: ConstantKind

    @property
    def is_integer(self) -> bool:
        return self.kind in (ConstantKind.INTEGER, ConstantKind.BOOLEAN)


def not_constant(message: str) -> MacroError:
    return MacroError(MacroErrorKind.NOT_CONSTANT, message)
