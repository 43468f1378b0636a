from declarationtable.model import Namespace, SourceLocation, DeclarationId, Declaration, Record, Enum, Typedef, \
    Function, Variable, Macro, ConflictKind, Conflict, Entity
from declarationtable.table import DeclarationTable, FrozenTableError, declaration_types
