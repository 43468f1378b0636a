import logging
from typing import Optional

from classifier.model import Support, Classification, SUPPORTED
from declarationtable import DeclarationTable, DeclarationId, Declaration, Record, Enum, Typedef, \
    Function, Variable, Macro
from layoutengine import LayoutEngine, LayoutError
from macroevaluator import MacroEvaluator, MacroError
from parallel.cache import OnceCache, ReentrantComputation
from typegraph import describe
from typegraph.types import Type, Primitive, Pointer, Array, FunctionType, RecordRef, EnumRef, TypedefRef, \
    Qualified, InlineRecord, InlineEnum

logger = logging.getLogger(__name__)


class Classifier:
    """Decides, per declaration, whether a binding can be generated for it.

    Unsupported constructs are primitives the target has no binding for,
    void or function types used by value, variadic function pointers and
    records without a layout. A tag that is never defined may be used
    through a pointer but not by value; doing so makes the user
    ``UNDECLARED``. Anything that holds a tainted type by value is tainted
    as well.
    """

    def __init__(self, table: DeclarationTable, layouts: LayoutEngine, macros: MacroEvaluator):
        self._table = table
        self._target = table.target
        self._layouts = layouts
        self._macros = macros
        self._cache: OnceCache[DeclarationId, Classification] = OnceCache()

    def classify(self, declaration_id: DeclarationId) -> Classification:
        entity = self._table.get(declaration_id)
        if entity is None:
            return Classification(Support.UNDECLARED, f"{declaration_id.name} is not declared")
        try:
            return self._cache.get(declaration_id, lambda: self._classify(entity.declaration))
        except ReentrantComputation:
            # reached again through its own pointers; judged by the outer computation
            return SUPPORTED

    def classify_all(self) -> dict[DeclarationId, Classification]:
        results = {entity.id: self.classify(entity.id) for entity in self._table.entities()}
        tainted = sum(1 for result in results.values() if not result.is_supported)
        logger.info("Classified %d declarations, %d not supported", len(results), tainted)
        return results

    def _classify(self, declaration: Declaration) -> Classification:
        if isinstance(declaration, Record):
            return self._classify_record(declaration)
        elif isinstance(declaration, Enum):
            return SUPPORTED if declaration.is_complete else Classification(Support.SUPPORTED, "opaque")
        elif isinstance(declaration, Typedef):
            return self._verdict(self._check_alias(declaration.aliased_type))
        elif isinstance(declaration, Function):
            return self._verdict(self._check_signature(declaration.signature))
        elif isinstance(declaration, Variable):
            return self._verdict(self._check_variable(declaration.type))
        elif isinstance(declaration, Macro):
            return self._classify_macro(declaration)
        raise TypeError(f"Unhandled declaration {declaration}")

    @staticmethod
    def _verdict(problem: Optional[Classification]) -> Classification:
        return SUPPORTED if problem is None else problem

    def _classify_record(self, record: Record) -> Classification:
        if not record.is_complete:
            return Classification(Support.SUPPORTED, "opaque")
        problem = self._check_fields(record.fields)
        if problem is not None:
            return problem
        layout = self._layouts.result(record.name)
        if isinstance(layout, LayoutError):
            return Classification(Support.UNSUPPORTED, f"no layout: {layout.message}")
        return SUPPORTED

    def _classify_macro(self, macro: Macro) -> Classification:
        result = self._macros.result(macro.name)
        if isinstance(result, MacroError):
            return Classification(Support.UNSUPPORTED, str(result))
        problem = self._check(result.type, by_value=True)
        return self._verdict(problem)

    # ------------------------------------------------------------------
    # type checks; each returns the first problem found, or None
    # ------------------------------------------------------------------

    def _check_fields(self, fields) -> Optional[Classification]:
        for index, member in enumerate(fields):
            typ = member.type
            if isinstance(typ, Array) and typ.is_incomplete and index == len(fields) - 1:
                typ = typ.element
            problem = self._check(typ, by_value=True)
            if problem is not None:
                name = member.name or "<anonymous>"
                return Classification(problem.support, f"member {name}: {problem.reason}")
        return None

    def _check_alias(self, typ: Type) -> Optional[Classification]:
        # typedef struct Opaque Opaque; and typedef void V; are fine until used by value
        while isinstance(typ, Qualified):
            typ = typ.base
        if isinstance(typ, (RecordRef, EnumRef)):
            return self._check(typ, by_value=False)
        if isinstance(typ, Primitive) and typ.is_void:
            return None
        if isinstance(typ, FunctionType):
            return self._check_signature(typ)
        if isinstance(typ, Array) and typ.is_incomplete:
            return self._check(typ.element, by_value=True)
        return self._check(typ, by_value=True)

    def _check_variable(self, typ: Type) -> Optional[Classification]:
        while isinstance(typ, Qualified):
            typ = typ.base
        if isinstance(typ, Array) and typ.is_incomplete:
            return self._check(typ.element, by_value=True)
        return self._check(typ, by_value=True)

    def _check_signature(self, signature: FunctionType) -> Optional[Classification]:
        problem = self._check(signature.return_type, by_value=True, allow_void=True)
        if problem is not None:
            return Classification(problem.support, f"return type: {problem.reason}")
        for index, param in enumerate(signature.params):
            problem = self._check_parameter(param.type)
            if problem is not None:
                name = param.name or f"#{index}"
                return Classification(problem.support, f"parameter {name}: {problem.reason}")
        return None

    def _check_parameter(self, typ: Type) -> Optional[Classification]:
        while isinstance(typ, Qualified):
            typ = typ.base
        # arrays and functions decay to pointers
        if isinstance(typ, Array):
            return self._check(Pointer(pointee=typ.element), by_value=True)
        if isinstance(typ, FunctionType):
            return self._check(Pointer(pointee=typ), by_value=True)
        return self._check(typ, by_value=True)

    def _check(self, typ: Type, by_value: bool, allow_void: bool = False,
               typedefs: frozenset[str] = frozenset()) -> Optional[Classification]:
        if isinstance(typ, Qualified):
            return self._check(typ.base, by_value, allow_void, typedefs)
        elif isinstance(typ, Primitive):
            if typ.is_void:
                if allow_void or not by_value:
                    return None
                return Classification(Support.UNSUPPORTED, "void used as a value type")
            if typ.kind in self._target.unsupported_primitives:
                return Classification(Support.UNSUPPORTED, f"{typ.kind.value} has no binding on {self._target.name}")
            return None
        elif isinstance(typ, Pointer):
            return self._check_pointer(typ, typedefs)
        elif isinstance(typ, Array):
            return self._check(typ.element, by_value, False, typedefs)
        elif isinstance(typ, FunctionType):
            if by_value:
                return Classification(Support.UNSUPPORTED, f"function type {describe(typ)} used as a value type")
            return self._check_signature(typ)
        elif isinstance(typ, RecordRef):
            return self._check_record_ref(typ, by_value)
        elif isinstance(typ, EnumRef):
            enum = self._table.enum(typ.name)
            if by_value and (enum is None or not enum.is_complete):
                return Classification(Support.UNDECLARED, f"enum {typ.name} is never defined")
            return None
        elif isinstance(typ, TypedefRef):
            return self._check_typedef_ref(typ, by_value, allow_void, typedefs)
        elif isinstance(typ, InlineRecord):
            return self._check_fields(typ.fields)
        elif isinstance(typ, InlineEnum):
            return None
        raise TypeError(f"Unhandled type {typ}")

    def _check_pointer(self, pointer: Pointer, typedefs: frozenset[str]) -> Optional[Classification]:
        pointee = self._table.resolve(pointer.pointee)
        if isinstance(pointee, FunctionType):
            if pointee.is_variadic and pointee.params:
                return Classification(Support.UNSUPPORTED,
                                      f"variadic function pointer {describe(Pointer(pointee=pointee))}")
            return self._check_signature(pointee)
        return self._check(pointer.pointee, by_value=False, allow_void=True, typedefs=typedefs)

    def _check_record_ref(self, ref: RecordRef, by_value: bool) -> Optional[Classification]:
        record = self._table.record(ref.name)
        if record is None or record.kind != ref.kind:
            if not by_value:
                return None
            return Classification(Support.UNDECLARED, f"{describe(ref)} is not declared")
        if not record.is_complete:
            if not by_value:
                return None
            return Classification(Support.UNDECLARED, f"{describe(ref)} is never defined")
        if not by_value:
            # a pointer to any record is an opaque address
            return None
        verdict = self.classify(record.id)
        if verdict.is_supported:
            return None
        return Classification(Support.UNSUPPORTED, f"contains {describe(ref)} ({verdict.reason})")

    def _check_typedef_ref(self, ref: TypedefRef, by_value: bool, allow_void: bool,
                           typedefs: frozenset[str]) -> Optional[Classification]:
        typedef = self._table.typedef(ref.name)
        if typedef is None:
            if not by_value:
                return None
            return Classification(Support.UNDECLARED, f"type {ref.name} is not declared")
        if ref.name in typedefs:
            return None
        problem = self._check(typedef.aliased_type, by_value, allow_void, typedefs | {ref.name})
        if problem is None:
            return None
        return Classification(problem.support, f"{ref.name}: {problem.reason}")
