import textwrap

import pytest

from cfrontend import CFrontEnd, FrontEndError, MacroScanner, TextLineProvider, CommentRemovingLineProvider
from declarationtable import Record, Enum, Typedef, Function, Variable, Macro
from targetplatform import TargetPlatform
from typegraph.types import PrimitiveKind, Pointer, Array, Parameter, FunctionType, RecordRef, Field, EnumConstant, \
    InlineRecord, RecordKind, Qualified

TARGET = TargetPlatform.linux_x86_64()
INT = TARGET.primitive(PrimitiveKind.INT)
CHAR = TARGET.primitive(PrimitiveKind.CHAR)
VOID = TARGET.primitive(PrimitiveKind.VOID)


def parse(source):
    return CFrontEnd(TARGET).parse_text(textwrap.dedent(source))


def by_name(declarations, kind=None):
    return {declaration.name: declaration for declaration in declarations
            if kind is None or isinstance(declaration, kind)}


class TestMacroScanner:

    def test_collects_defines(self):
        scanner = MacroScanner("defs.h")
        scanner.scan(TextLineProvider(textwrap.dedent("""\
            #define ONE (ZERO + 1)
            #define SQUARE(x, y) ((x) * (y))
            #define SUM 1 + \\
                2
            #define WITH_COMMENT 5 // trailing
            /* #define HIDDEN 1 */
            #define EMPTY
            #undef EMPTY
        """)))

        macros = {macro.name: macro for macro in scanner.macros}
        assert list(macros) == ["ONE", "SQUARE", "SUM", "WITH_COMMENT", "EMPTY"]
        assert macros["ONE"].tokens == "(ZERO + 1)"
        assert not macros["ONE"].is_function_like
        assert macros["SQUARE"].parameters == ("x", "y")
        assert macros["SUM"].tokens == "1 + 2"
        assert macros["WITH_COMMENT"].tokens == "5"
        assert macros["EMPTY"].tokens == ""
        assert macros["SUM"].location.line == 3
        assert macros["WITH_COMMENT"].location.line == 5
        assert macros["ONE"].location.file == "defs.h"

    def test_directives_are_blanked_but_lines_kept(self):
        text = "#include <stdio.h>\n#if 1\nint x;\n#endif\n#pragma pack(1)\n"

        output = MacroScanner().scan(TextLineProvider(text))

        assert output.splitlines() == ["", "", "int x;", "", "#pragma pack(1)"]

    def test_line_markers_set_file_and_line(self):
        text = '# 10 "other.h"\n#define A 1\n# 1 "main.h"\n\n#define B 2\n'
        scanner = MacroScanner(origin_file_filter=lambda name: True)

        scanner.scan(TextLineProvider(text))

        assert [(macro.name, str(macro.location)) for macro in scanner.macros] == \
               [("A", "other.h:10"), ("B", "main.h:2")]

    def test_builtin_macros_are_skipped(self):
        text = '# 1 "<built-in>"\n#define __x86_64__ 1\n# 1 "main.h"\n#define MINE 1\n'
        scanner = MacroScanner()

        scanner.scan(TextLineProvider(text))

        assert [macro.name for macro in scanner.macros] == ["MINE"]


class TestCommentRemoval:

    def lines(self, text):
        provider = CommentRemovingLineProvider(TextLineProvider(text))
        result = []
        while provider.next() is not None:
            result.append(provider.line())
        return result

    def test_block_comment_spanning_lines(self):
        assert self.lines("a /* one\ntwo\nthree */ b\n") == ["a \n", "\n", "  b\n"]

    def test_comment_markers_in_literals_are_kept(self):
        assert self.lines('s = "/* not */ // a comment";\n') == ['s = "/* not */ // a comment";\n']


class TestDeclarations:

    def test_basic_declarations(self):
        declarations = parse("""\
            #define ZERO 0
            struct point { int x; int y; };
            typedef struct point point_t;
            union value;
            enum color { RED, GREEN = 5, BLUE };
            extern int counter;
            int table[ZERO + 4];
            int add(int a, int b);
            static int helper(void) { return 0; }
            typedef void (*callback)(int, ...);
        """)
        named = by_name(declarations)

        assert named["ZERO"] == Macro(name="ZERO", tokens="0", location=named["ZERO"].location)
        assert named["point"].fields == (Field("x", INT), Field("y", INT))
        assert named["point_t"].aliased_type == RecordRef("point")
        assert named["value"] == Record(name="value", kind=RecordKind.UNION, location=named["value"].location)
        assert named["color"].constants == (EnumConstant("RED", 0), EnumConstant("GREEN", 5),
                                            EnumConstant("BLUE", 6))
        assert named["counter"].is_extern
        assert named["table"].type == Array(INT, 4)
        assert named["add"].signature == FunctionType(return_type=INT, params=(Parameter("a", INT),
                                                                               Parameter("b", INT)))
        assert [param.name for param in named["add"].signature.params] == ["a", "b"]
        assert named["helper"].is_defined
        assert named["helper"].signature.params == ()
        assert named["callback"].aliased_type == Pointer(FunctionType(
            return_type=VOID, params=(Parameter(None, INT),), is_variadic=True))

    def test_source_order_and_locations(self):
        declarations = parse("""\
            #define A 1

            int first;
            struct second;
        """)

        assert [type(declaration) for declaration in declarations] == [Macro, Variable, Record]
        assert declarations[1].location.line == 3
        assert declarations[2].location.line == 4
        assert declarations[1].location.file == "<text>"

    def test_unnamed_enum_and_references_to_earlier_constants(self):
        declarations = parse("""\
            enum color { RED = 2, BLUE };
            enum { FIRST = BLUE + 1, SECOND };
        """)

        unnamed = [declaration for declaration in declarations if isinstance(declaration, Enum)][1]
        assert unnamed.name is None
        assert unnamed.constants == (EnumConstant("FIRST", 4), EnumConstant("SECOND", 5))

    def test_nested_and_anonymous_records_stay_inline(self):
        declarations = parse("""\
            struct outer {
                struct inner { int a; } in;
                union { int i; char c; };
                struct { int x; } pos;
            };
        """)

        fields = declarations[0].fields
        assert fields[0].type == InlineRecord(tag="inner", fields=(Field("a", INT),))
        assert fields[1].is_anonymous_member
        assert fields[1].type.kind == RecordKind.UNION
        assert fields[2].type == InlineRecord(tag=None, fields=(Field("x", INT),))

    def test_bitfields(self):
        declarations = parse("struct flags { unsigned int a : 3; int : 0; int b : 2 + 2; };")

        assert [(member.name, member.bit_width) for member in declarations[0].fields] == \
               [("a", 3), (None, 0), ("b", 4)]

    def test_extended_primitives(self):
        named = by_name(parse("""\
            __int128 big;
            wchar_t wide;
            unsigned long long ull;
            _Bool flag;
        """))

        assert named["big"].type.kind == PrimitiveKind.INT128
        assert named["wide"].type.kind == PrimitiveKind.WCHAR
        assert named["ull"].type.kind == PrimitiveKind.ULONGLONG
        assert named["flag"].type.kind == PrimitiveKind.BOOL
        assert "__int128" not in named

    def test_qualifiers(self):
        named = by_name(parse("const char *const name; volatile int ticks;"))

        assert named["name"].type == Qualified(base=Pointer(Qualified(base=CHAR, const=True)), const=True)
        assert named["ticks"].type.volatile


class TestPragmaPack:

    def test_pack_state(self):
        named = by_name(parse("""\
            #pragma pack(push, 1)
            struct packed { char c; int i; };
            #pragma pack(pop)
            struct normal { char c; int i; };
            #pragma pack(2)
            struct two { char c; };
            #pragma pack()
            struct reset { char c; };
            #pragma pack(push)
            #pragma pack(4)
            struct four { char c; };
            #pragma pack(pop)
            struct after { char c; };
            #pragma once
        """))

        assert named["packed"].pack_directive == 1
        assert named["normal"].pack_directive is None
        assert named["two"].pack_directive == 2
        assert named["reset"].pack_directive is None
        assert named["four"].pack_directive == 4
        assert named["after"].pack_directive is None

    def test_pack_reaches_nested_records(self):
        declarations = parse("""\
            #pragma pack(1)
            typedef struct { char c; struct { int i; } inner; } packed_t;
        """)

        record = declarations[0].aliased_type
        assert record.pack == 1
        assert record.fields[1].type.pack == 1


class TestFailures:

    def test_syntax_error(self):
        with pytest.raises(FrontEndError):
            parse("int x = ;")

    def test_unevaluable_dimension_skips_the_declaration(self, caplog):
        named = by_name(parse("""\
            struct point { int x; };
            int broken[sizeof(struct point)];
            int fine;
        """))

        assert "broken" not in named
        assert "fine" in named
        assert "skipping broken" in caplog.text

    def test_origin_filter(self):
        frontend = CFrontEnd(TARGET)
        frontend.origin_file_filter = lambda name: name == "main.h"

        declarations = frontend.parse_text(textwrap.dedent("""\
            # 1 "/usr/include/sys.h"
            typedef int sys_t;
            #define SYS_MAX 10
            # 1 "main.h"
            sys_t mine;
            #define MINE 1
        """))

        assert [declaration.name for declaration in declarations] == ["MINE", "mine"]


def test_parse_file_without_preprocessor(tmp_path):
    header = tmp_path / "api.h"
    header.write_text("#define VERSION 3\nint api_call(const char *name);\n")

    declarations = CFrontEnd(TARGET).parse_file(str(header), use_cpp=False)

    named = by_name(declarations)
    assert named["VERSION"].tokens == "3"
    assert isinstance(named["api_call"], Function)
    assert named["api_call"].location.file == str(header)
    assert named["api_call"].location.line == 2


def test_typedef_is_typedef():
    assert isinstance(parse("typedef int handle_t;")[0], Typedef)
