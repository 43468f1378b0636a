import logging
import re
from typing import Callable, Optional

from pycparser import CParser, c_ast, preprocess_file
from pycparser.c_ast import Node, Decl, FuncDef, FuncDecl, Typedef as TypedefNode, Pragma
from pycparser.c_parser import ParseError

from cfrontend.macroscanner import MacroScanner, TextLineProvider, FileLineProvider, LineProvider
from declarationtable import DeclarationTable, Declaration, Record, Enum, Typedef, Function, Variable, \
    SourceLocation, declaration_types
from macroevaluator import ExpressionEvaluator, MacroEvaluator, MacroError, ConstantValue, ConstantKind
from targetplatform import TargetPlatform
from typegraph import walk
from typegraph.declarators import DeclaratorParser
from typegraph.primitives import extended_primitive_names
from typegraph.types import Type, TypedefRef, InlineRecord, InlineEnum, EnumRef, RecordRef, PrimitiveKind

logger = logging.getLogger(__name__)

DEFAULT_CPP_ARGS = ['-E', '-dD', '-D_Atomic(x)=x', '-D__extension__=', '-D__attribute__(x)=', '-D__asm__(x)=',
                    '-D__restrict=restrict', '-D__inline=inline', '-U__STDC__']

_PREAMBLE_FILE = "<builtin>"
_PACK = re.compile(r'^\s*pack\s*\((.*)\)\s*$')
_WORD = re.compile(r'\b[A-Za-z_][A-Za-z0-9_]*\b')


class FrontEndError(Exception):
    pass


class CFrontEnd:
    """Reads C declarations with pycparser and returns them unmerged, in source order.

    ``#define`` lines are collected as macros, ``#pragma pack`` is applied to
    the records that follow it, and enum values and array lengths are
    evaluated as the file is read. A declaration that cannot be converted is
    logged and skipped.
    """
    origin_file_filter: Optional[Callable[[str], bool]] = None

    def __init__(self, target: Optional[TargetPlatform] = None, cpp_path: str = "clang",
                 cpp_args: Optional[list[str]] = None):
        self.target = target if target is not None else TargetPlatform.linux_x86_64()
        self.cpp_path = cpp_path
        self.cpp_args = list(DEFAULT_CPP_ARGS if cpp_args is None else cpp_args)
        self._parser = CParser()

    def parse_text(self, text: str, filename: str = "<text>") -> list[Declaration]:
        return self._parse(TextLineProvider(text), filename)

    def parse_file(self, path: str, cpp_args: Optional[list[str]] = None, use_cpp: bool = True) \
            -> list[Declaration]:
        if not use_cpp:
            return self._parse(FileLineProvider(open(path)), path)
        arguments = self.cpp_args + list(cpp_args or [])
        logger.debug("Preprocessing %s with %s %s", path, self.cpp_path, " ".join(arguments))
        text = preprocess_file(path, cpp_path=self.cpp_path, cpp_args=arguments)
        return self._parse(TextLineProvider(text), path)

    def _parse(self, line_provider: LineProvider, filename: str) -> list[Declaration]:
        scanner = MacroScanner(filename, self.origin_file_filter)
        code = scanner.scan(line_provider)
        try:
            ast = self._parser.parse(self._with_preamble(code, filename), filename=filename)
        except ParseError as error:
            raise FrontEndError(f"Could not parse {filename}: {error}") from error

        converter = _DeclarationConverter(self.target, scanner.macros)
        declarations: list[Declaration] = list(scanner.macros)
        for node in ast.ext:
            if node.coord is not None and node.coord.file == _PREAMBLE_FILE:
                continue
            if self.origin_file_filter is not None and node.coord is not None \
                    and not self.origin_file_filter(node.coord.file):
                continue
            declarations.extend(converter.convert(node))
        logger.info("Read %d declarations and %d macros from %s",
                    len(declarations) - len(scanner.macros), len(scanner.macros), filename)
        return declarations

    @staticmethod
    def _with_preamble(code: str, filename: str) -> str:
        words = set(_WORD.findall(code))
        names = [name for name in extended_primitive_names if name in words]
        if not names:
            return code
        preamble = [f'# 1 "{_PREAMBLE_FILE}"'] + [f"typedef int {name};" for name in names]
        return "\n".join(preamble + [f'# 1 "{filename}"', code])


class _DeclarationConverter:
    """Converts the top level nodes of one translation unit."""

    def __init__(self, target: TargetPlatform, macros: list):
        self._target = target
        self._declarators = DeclaratorParser(target.primitive, self._evaluate)
        self._pack_stack: list[Optional[int]] = []
        self._enumerators: dict[str, int] = {}
        self._typedefs: dict[str, Type] = {}
        # macros are only consulted when an enum value or array length names one
        table = DeclarationTable(target)
        for macro in macros:
            if table.macro(macro.name) is None:
                table.merge(macro)
        self._macros = MacroEvaluator(table)

    def convert(self, node: Node) -> list[Declaration]:
        if isinstance(node, Pragma):
            self._pragma(node)
            return []
        name = getattr(node, "name", None) or "<anonymous>"
        if isinstance(node, FuncDef):
            name = node.decl.name
        try:
            declaration = self._convert(node)
        except (MacroError, TypeError, ValueError) as error:
            logger.warning("skipping %s: %s", name, error)
            return []
        if declaration is None:
            return []
        self._remember(declaration)
        return [declaration]

    def _convert(self, node: Node) -> Optional[Declaration]:
        location = self._location(node)
        if isinstance(node, TypedefNode):
            return Typedef(name=node.name, aliased_type=self._declarators.parse_type(node.type), location=location)
        elif isinstance(node, FuncDef):
            return Function(name=node.decl.name, signature=self._declarators.parse_type(node.decl.type),
                            is_defined=True, location=location)
        elif isinstance(node, Decl):
            return self._convert_decl(node, location)
        elif isinstance(node, c_ast.StaticAssert):
            return None
        raise TypeError(f"Unexpected top level node {type(node).__name__}")

    def _convert_decl(self, node: Decl, location: Optional[SourceLocation]) -> Optional[Declaration]:
        if isinstance(node.type, FuncDecl):
            return Function(name=node.name, signature=self._declarators.parse_type(node.type), location=location)
        if node.name is None and isinstance(node.type, (c_ast.Struct, c_ast.Union, c_ast.Enum)):
            return self._convert_tag(node.type, location)
        return Variable(name=node.name, type=self._declarators.parse_type(node.type),
                        is_extern="extern" in (node.storage or []), location=location)

    def _convert_tag(self, node: Node, location: Optional[SourceLocation]) -> Optional[Declaration]:
        typ = self._declarators.parse_type(node)
        if isinstance(typ, RecordRef):
            return Record(name=typ.name, kind=typ.kind, location=location)
        elif isinstance(typ, EnumRef):
            return Enum(name=typ.name, location=location)
        elif isinstance(typ, InlineRecord):
            if typ.tag is None:
                logger.debug("Ignoring %s without tag or declarator at %s", typ.kind.value, location)
                return None
            return Record(name=typ.tag, kind=typ.kind, fields=typ.fields, pack_directive=typ.pack,
                          location=location)
        elif isinstance(typ, InlineEnum):
            return Enum(name=typ.tag, constants=typ.constants, location=location)
        raise TypeError(f"Unexpected tag type {typ}")

    @staticmethod
    def _location(node: Node) -> Optional[SourceLocation]:
        if node.coord is None:
            return None
        return SourceLocation(node.coord.file, node.coord.line, node.coord.column)

    def _remember(self, declaration: Declaration):
        types = declaration_types(declaration)
        if isinstance(declaration, Enum) and declaration.constants is not None:
            types.append(InlineEnum(tag=declaration.name, constants=declaration.constants))
        elif isinstance(declaration, Typedef):
            self._typedefs[declaration.name] = declaration.aliased_type
        for typ in types:
            for nested in walk(typ):
                if isinstance(nested, InlineEnum):
                    self._enumerators.update((constant.name, constant.value) for constant in nested.constants)

    # ------------------------------------------------------------------
    # #pragma pack
    # ------------------------------------------------------------------

    def _pragma(self, node: Pragma):
        match = _PACK.match(node.string)
        if match is None:
            logger.debug("Ignoring #pragma %s", node.string)
            return
        arguments = [argument.strip() for argument in match.group(1).split(",") if argument.strip()]
        if not arguments:
            self._declarators.pack = None
        elif arguments[0] == "push":
            self._pack_stack.append(self._declarators.pack)
            values = [argument for argument in arguments[1:] if argument.isdigit()]
            if values:
                self._declarators.pack = int(values[-1])
        elif arguments[0] == "pop":
            if not self._pack_stack:
                logger.warning("skipping #pragma %s: nothing to pop", node.string)
                return
            self._declarators.pack = self._pack_stack.pop()
        elif arguments[0].isdigit():
            self._declarators.pack = int(arguments[0])
        else:
            logger.warning("skipping #pragma %s: unknown pack arguments", node.string)

    # ------------------------------------------------------------------
    # enum values and array lengths
    # ------------------------------------------------------------------

    def _evaluate(self, node: Node, known: dict[str, int]) -> int:
        def resolve_identifier(name: str) -> ConstantValue:
            value = known.get(name, self._enumerators.get(name))
            if value is not None:
                kind = PrimitiveKind.INT if -(1 << 31) <= value < (1 << 31) else PrimitiveKind.LONGLONG
                return ConstantValue(value, self._target.primitive(kind), ConstantKind.INTEGER)
            return self._macros.evaluate(name)

        return ExpressionEvaluator(self._target, resolve_identifier, self._resolve_type).evaluate_integer(node)

    def _resolve_type(self, typ: Type) -> Type:
        seen: set[str] = set()
        while isinstance(typ, TypedefRef) and typ.name in self._typedefs and typ.name not in seen:
            seen.add(typ.name)
            typ = self._typedefs[typ.name]
        return typ
