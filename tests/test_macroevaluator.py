import pytest

from declarationtable import DeclarationTable, Macro, Enum, Typedef, Variable
from macroevaluator import MacroEvaluator, MacroError, MacroErrorKind, ConstantKind, referenced_identifiers
from targetplatform import TargetPlatform
from typegraph.types import PrimitiveKind, Pointer, Array, EnumConstant

TARGET = TargetPlatform.linux_x86_64()


def evaluator_for(*macros, extra=(), target=TARGET):
    table = DeclarationTable(target)
    for declaration in extra:
        table.merge(declaration)
    for macro in macros:
        if isinstance(macro, tuple):
            table.merge(Macro(name=macro[0], tokens=macro[1]))
        else:
            table.merge(macro)
    table.freeze()
    return MacroEvaluator(table)


def evaluate(tokens, *macros, **kwargs):
    return evaluator_for(("VALUE", tokens), *macros, **kwargs).evaluate("VALUE")


class TestLiterals:

    @pytest.mark.parametrize("tokens, value, kind", [
        ("42", 42, PrimitiveKind.INT),
        ("2147483648", 2147483648, PrimitiveKind.LONG),
        ("0x80000000", 0x80000000, PrimitiveKind.UINT),
        ("010", 8, PrimitiveKind.INT),
        ("1u", 1, PrimitiveKind.UINT),
        ("1UL", 1, PrimitiveKind.ULONG),
        ("1LL", 1, PrimitiveKind.LONGLONG),
        ("1llu", 1, PrimitiveKind.ULONGLONG),
        ("0xFFFFFFFFFFFFFFFF", 0xFFFFFFFFFFFFFFFF, PrimitiveKind.ULONG),
    ])
    def test_integer_literals(self, tokens, value, kind):
        result = evaluate(tokens)

        assert result.value == value
        assert result.type.kind == kind
        assert result.kind == ConstantKind.INTEGER

    @pytest.mark.parametrize("tokens, value, kind", [
        ("1.5", 1.5, PrimitiveKind.DOUBLE),
        ("1.5f", 1.5, PrimitiveKind.FLOAT),
        ("2.0L", 2.0, PrimitiveKind.LONGDOUBLE),
        ("0x1p4", 16.0, PrimitiveKind.DOUBLE),
    ])
    def test_floating_literals(self, tokens, value, kind):
        result = evaluate(tokens)

        assert result.value == value
        assert result.type.kind == kind
        assert result.kind == ConstantKind.FLOATING

    def test_float_literal_is_rounded_to_single_precision(self):
        assert evaluate("0.1f").value != 0.1
        assert evaluate("0.1").value == 0.1

    @pytest.mark.parametrize("tokens, value", [
        ("'A'", 65),
        ("'\\n'", 10),
        ("'\\x41'", 65),
        ("'\\377'", -1),
        ("'AB'", 0x4142),
    ])
    def test_character_constants_are_int(self, tokens, value):
        result = evaluate(tokens)

        assert result.value == value
        assert result.type.kind == PrimitiveKind.INT

    def test_unsigned_char_target(self):
        assert evaluate("'\\377'", target=TargetPlatform.linux_aarch64()).value == 255

    def test_string_literal(self):
        result = evaluate('"hello"')

        assert result.value == "hello"
        assert result.kind == ConstantKind.STRING
        assert result.type == Array(TARGET.primitive(PrimitiveKind.CHAR), 6)

    def test_adjacent_strings_are_joined(self):
        assert evaluate('"a" "b\\tc"').value == "ab\tc"


class TestExpressions:

    @pytest.mark.parametrize("tokens, value", [
        ("1 + 2 * 3", 7),
        ("(1 + 2) * 3", 9),
        ("-7 / 2", -3),
        ("-7 % 2", -1),
        ("1 << 4", 16),
        ("0xF0 >> 4", 15),
        ("0xF0 | 0x0F", 255),
        ("6 & 3", 2),
        ("6 ^ 3", 5),
        ("~0", -1),
        ("!5", 0),
        ("3 > 2 && 2 > 1", 1),
        ("0 || 0", 0),
        ("1 ? 10 : 20", 10),
        ("2 == 2", 1),
    ])
    def test_arithmetic(self, tokens, value):
        assert evaluate(tokens).value == value

    def test_conditional_evaluates_only_the_branch_taken(self):
        assert evaluate("1 ? 2 : 1 / 0").value == 2
        assert evaluate("0 ? 1 / 0 : 3").value == 3
        assert evaluate("X", Macro(name="X", tokens="(1 ? 2 : 1 / 0)")).value == 2

    def test_conditional_converts_to_the_common_type(self):
        result = evaluate("1 ? -1 : 0u")

        assert result.value == 0xFFFFFFFF
        assert result.type.kind == PrimitiveKind.UINT

    def test_unsigned_wraps(self):
        result = evaluate("0u - 1")

        assert result.value == 0xFFFFFFFF
        assert result.type.kind == PrimitiveKind.UINT

    def test_signed_overflow_wraps_to_width(self):
        assert evaluate("2147483647 + 1").value == -(1 << 31)

    def test_usual_arithmetic_conversions(self):
        assert evaluate("-1 < 1u").value == 0
        assert evaluate("1 + 1L").type.kind == PrimitiveKind.LONG
        assert evaluate("1 + 1.0f").type.kind == PrimitiveKind.FLOAT

    def test_casts(self):
        assert evaluate("(unsigned char)300").value == 44
        assert evaluate("(int)3.9").value == 3
        assert evaluate("(double)1").kind == ConstantKind.FLOATING

    def test_bool_cast(self):
        result = evaluate("(_Bool)42")

        assert result.value == 1
        assert result.kind == ConstantKind.BOOLEAN

    def test_pointer_cast(self):
        result = evaluate("((void *)-1)")

        assert result.kind == ConstantKind.POINTER
        assert result.value == 0xFFFFFFFFFFFFFFFF
        assert result.type == Pointer(TARGET.primitive(PrimitiveKind.VOID))

    def test_pointer_cast_wraps_to_pointer_width(self):
        result = evaluate("(char *)-1", target=TargetPlatform.linux_i386())

        assert result.value == 0xFFFFFFFF

    def test_sizeof(self):
        result = evaluate("sizeof(long)")

        assert result.value == 8
        assert result.type.kind == PrimitiveKind.ULONG
        assert evaluate("sizeof(int[4])").value == 16
        assert evaluate("sizeof(char *)").value == 8

    def test_cast_through_typedef(self):
        result = evaluate("(u8)257", extra=[Typedef(name="u8", aliased_type=TARGET.primitive(PrimitiveKind.UCHAR))])

        assert result.value == 1

    def test_trailing_semicolon_is_tolerated(self):
        assert evaluate("5;").value == 5

    def test_extended_primitive_cast(self):
        assert evaluate("(__int128)1").type.kind == PrimitiveKind.INT128


class TestReferences:

    def test_forward_reference_resolves(self):
        evaluator = evaluator_for(("ONE", "ZERO + 1"), ("ZERO", "0"))

        assert evaluator.evaluate("ONE").value == 1
        assert evaluator.evaluate("ZERO").value == 0

    def test_chain(self):
        evaluator = evaluator_for(("A", "B * 2"), ("B", "C + 1"), ("C", "(1 << 3)"))

        assert evaluator.evaluate("A").value == 18

    def test_indirect_cycle(self):
        evaluator = evaluator_for(("A", "B + 1"), ("B", "A + 1"))

        for name in ("A", "B"):
            with pytest.raises(MacroError) as info:
                evaluator.evaluate(name)
            assert info.value.kind == MacroErrorKind.CYCLIC_DEFINITION

    def test_self_reference(self):
        with pytest.raises(MacroError) as info:
            evaluator_for(("LOOP", "LOOP")).evaluate("LOOP")

        assert info.value.kind == MacroErrorKind.CYCLIC_DEFINITION

    def test_undefined_identifier(self):
        with pytest.raises(MacroError) as info:
            evaluate("MISSING + 1")

        assert info.value.kind == MacroErrorKind.UNRESOLVED_REFERENCE

    def test_enum_constant(self):
        colors = Enum(name="color", constants=(EnumConstant("BLUE", 4),))

        assert evaluate("BLUE << 1", extra=[colors]).value == 8

    def test_variable_is_not_constant(self):
        variable = Variable(name="counter", type=TARGET.primitive(PrimitiveKind.INT))

        with pytest.raises(MacroError) as info:
            evaluate("counter + 1", extra=[variable])
        assert info.value.kind == MacroErrorKind.NOT_CONSTANT

    def test_error_of_a_referenced_macro_propagates(self):
        evaluator = evaluator_for(("USER", "BROKEN + 1"), ("BROKEN", "MISSING"))

        with pytest.raises(MacroError) as info:
            evaluator.evaluate("USER")
        assert info.value.kind == MacroErrorKind.UNRESOLVED_REFERENCE

    def test_unknown_macro(self):
        with pytest.raises(MacroError) as info:
            evaluator_for().evaluate("NOPE")

        assert info.value.kind == MacroErrorKind.UNRESOLVED_REFERENCE


class TestNotConstant:

    @pytest.mark.parametrize("tokens", [
        "{ 1, 2 }",
        "do { } while (0)",
        "1 +",
        "int",
        "",
        "1, 2",
        "1 / 0",
        "1 << 40",
        "sizeof(struct undefined)",
        "x = 1",
    ])
    def test_rejected(self, tokens):
        with pytest.raises(MacroError) as info:
            evaluate(tokens)

        assert info.value.kind == MacroErrorKind.NOT_CONSTANT

    def test_function_like_macro(self):
        with pytest.raises(MacroError) as info:
            evaluator_for(Macro(name="SQUARE", tokens="((x) * (x))", parameters=("x",))).evaluate("SQUARE")

        assert info.value.kind == MacroErrorKind.NOT_CONSTANT


class TestEvaluateAll:

    @pytest.mark.parametrize("workers", [1, 4])
    def test_results_and_errors(self, workers):
        evaluator = evaluator_for(("A", "B + 1"), ("B", "A + 1"), ("ONE", "ZERO + 1"), ("ZERO", "0"),
                                  ("TEXT", '"t"'), ("CODE", "do {} while (0)"))

        results = evaluator.evaluate_all(workers)

        assert results["ONE"].value == 1
        assert results["ZERO"].value == 0
        assert results["TEXT"].value == "t"
        assert results["A"].kind == MacroErrorKind.CYCLIC_DEFINITION
        assert results["B"].kind == MacroErrorKind.CYCLIC_DEFINITION
        assert results["CODE"].kind == MacroErrorKind.NOT_CONSTANT


def test_referenced_identifiers_skip_literals():
    assert referenced_identifiers('A + "B C" + \'D\' + sizeof(E)') == ["A", "sizeof", "E"]
