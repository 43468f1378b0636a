import logging
import re
import threading

from pycparser import CParser, c_ast
from pycparser.c_parser import ParseError

from declarationtable import DeclarationTable, Namespace, Macro
from macroevaluator.expression import ExpressionEvaluator, unresolved
from macroevaluator.model import ConstantValue, ConstantKind, MacroError, MacroErrorKind, not_constant
from parallel import run_layered
from parallel.cache import OnceCache
from topologicalsort import Node
from typegraph.primitives import extended_primitive_names
from typegraph.types import PrimitiveKind

logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"\b[A-Za-z_][A-Za-z0-9_]*\b")
# string and character literals, so identifiers inside them are not mistaken for references
_QUOTED = re.compile(r'"(?:[^"\\]|\\.)*"|\'(?:[^\'\\]|\\.)*\'')

_VALUE_NAME = "__macro_value"


def referenced_identifiers(tokens: str) -> list[str]:
    return _IDENTIFIER.findall(_QUOTED.sub(" ", tokens))


class MacroEvaluator:
    """Resolves object-like macros to typed constants.

    ``evaluate`` is memoized per macro name and safe to call from several
    threads; each macro is computed at most once. A macro's references are
    resolved recursively, whatever order the macros were defined in.
    """

    def __init__(self, table: DeclarationTable):
        self._table = table
        self._target = table.target
        self._cache: OnceCache[str, ConstantValue] = OnceCache()
        self._parsers = threading.local()

    def evaluate(self, name: str) -> ConstantValue:
        """The constant ``name`` expands to; raises :class:`MacroError` otherwise."""
        if self._table.macro(name) is None:
            raise unresolved(name)
        return self._evaluate(name, frozenset())

    def evaluate_all(self, workers: int = 1) -> dict[str, object]:
        """Evaluates every macro; maps each name to its value or its :class:`MacroError`."""
        macros = [entity.declaration for entity in self._table.entities(Namespace.MACRO)]
        graph = [Node(keys=[macro.name], dependencies=self._dependencies(macro), data=macro) for macro in macros]

        def compute(node: Node):
            try:
                self.evaluate(node.data.name)
            except MacroError:
                pass

        run_layered(graph, compute, workers)
        return {macro.name: self.result(macro.name) for macro in macros}

    def result(self, name: str):
        try:
            return self.evaluate(name)
        except MacroError as error:
            return error

    def _dependencies(self, macro: Macro) -> list[str]:
        return [identifier for identifier in referenced_identifiers(macro.tokens)
                if identifier != macro.name and self._table.macro(identifier) is not None]

    def _evaluate(self, name: str, visited: frozenset[str]) -> ConstantValue:
        if name in visited:
            raise MacroError(MacroErrorKind.CYCLIC_DEFINITION, f"{name} is defined in terms of itself")
        return self._cache.get(name, lambda: self._compute(name, visited | {name}))

    def _compute(self, name: str, visited: frozenset[str]) -> ConstantValue:
        macro = self._table.macro(name)
        if macro.is_function_like:
            raise not_constant(f"{name} is a function-like macro")
        expression = self._parse(macro)

        def resolve_identifier(identifier: str) -> ConstantValue:
            return self._resolve_identifier(identifier, visited)

        evaluator = ExpressionEvaluator(self._target, resolve_identifier, self._table.resolve)
        value = evaluator.evaluate(expression)
        logger.debug("Macro %s = %r", name, value.value)
        return value

    def _resolve_identifier(self, identifier: str, visited: frozenset[str]) -> ConstantValue:
        if self._table.macro(identifier) is not None:
            # failures of a referenced macro are the failures of this one
            return self._evaluate(identifier, visited)
        value = self._table.enum_constant(identifier)
        if value is not None:
            typ = self._target.primitive(PrimitiveKind.INT)
            if not -(1 << (typ.width - 1)) <= value < (1 << (typ.width - 1)):
                typ = self._target.primitive(PrimitiveKind.LONGLONG)
            return ConstantValue(value, typ, ConstantKind.INTEGER)
        if self._table.contains(Namespace.ORDINARY, identifier):
            raise not_constant(f"{identifier} is not a constant")
        raise unresolved(identifier)

    # ------------------------------------------------------------------
    # parsing
    # ------------------------------------------------------------------

    def _parser(self) -> CParser:
        parser = getattr(self._parsers, "parser", None)
        if parser is None:
            parser = CParser()
            self._parsers.parser = parser
        return parser

    def _parse(self, macro: Macro) -> c_ast.Node:
        tokens = macro.tokens.strip()
        if tokens.endswith(";"):
            tokens = tokens[:-1].rstrip()
        if not tokens:
            raise not_constant(f"{macro.name} has an empty replacement list")

        identifiers = set(referenced_identifiers(tokens))
        preamble = [f"typedef int {name};" for name in extended_primitive_names if name in identifiers]
        preamble += [f"typedef int {name};" for name in self._table.typedef_names() if name in identifiers]
        text = "\n".join(preamble + [f"int {_VALUE_NAME} = ({tokens});"])
        try:
            ast = self._parser().parse(text, filename=f"<macro {macro.name}>")
        except (ParseError, ValueError) as error:
            raise not_constant(f"{macro.name} does not expand to an expression: {error}") from error
        # the parser accepts several declarations; anything beyond ours means the tokens ended the statement
        declaration = ast.ext[-1] if ast.ext else None
        if not isinstance(declaration, c_ast.Decl) or declaration.name != _VALUE_NAME \
                or len(ast.ext) != len(preamble) + 1 or declaration.init is None:
            raise not_constant(f"{macro.name} does not expand to a single expression")
        return self._unwrap(declaration.init)

    @staticmethod
    def _unwrap(node: c_ast.Node) -> c_ast.Node:
        if isinstance(node, c_ast.ExprList):
            if len(node.exprs) != 1:
                raise not_constant("comma expression")
            return node.exprs[0]
        return node