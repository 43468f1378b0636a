from dataclasses import replace

import pytest

from declarationtable import DeclarationTable, Namespace, ConflictKind, Record, Enum, Typedef, Function, Variable, \
    Macro, FrozenTableError
from targetplatform import TargetPlatform
from typegraph.types import PrimitiveKind, Pointer, Array, Parameter, FunctionType, RecordRef, EnumRef, TypedefRef, \
    Qualified, Field, EnumConstant, InlineRecord, RecordKind

TARGET = TargetPlatform.linux_x86_64()
INT = TARGET.primitive(PrimitiveKind.INT)
CHAR = TARGET.primitive(PrimitiveKind.CHAR)
VOID = TARGET.primitive(PrimitiveKind.VOID)


def struct(name, *fields, kind=RecordKind.STRUCT):
    return Record(name=name, kind=kind, fields=tuple(Field(field_name, typ) for field_name, typ in fields))


def forward(name, kind=RecordKind.STRUCT):
    return Record(name=name, kind=kind)


def function(name, *params, returns=INT, variadic=False, defined=False):
    return Function(
        name=name,
        signature=FunctionType(return_type=returns,
                               params=tuple(Parameter(param_name, typ) for param_name, typ in params),
                               is_variadic=variadic),
        is_defined=defined,
    )


class TestMerge:

    @pytest.mark.parametrize("declarations", [
        [forward("foo"), struct("foo", ("x", INT))],
        [struct("foo", ("x", INT)), forward("foo")],
        [forward("foo"), struct("foo", ("x", INT)), forward("foo")],
    ])
    def test_forward_and_definition_merge_in_any_order(self, declarations):
        table = DeclarationTable(TARGET)
        for declaration in declarations:
            assert table.merge(declaration) is None

        assert len(table.entities(Namespace.TAG)) == 1
        record = table.record("foo")
        assert record.is_complete
        assert record.fields == (Field("x", INT),)

    def test_two_forward_declarations_stay_incomplete(self):
        table = DeclarationTable(TARGET)
        table.merge(forward("foo"))
        table.merge(forward("foo"))

        assert len(table) == 1
        assert not table.record("foo").is_complete

    def test_identical_definitions_merge(self):
        table = DeclarationTable(TARGET)
        table.merge(struct("foo", ("x", INT)))

        assert table.merge(struct("foo", ("x", INT))) is None

    def test_different_definitions_are_a_redefinition(self):
        table = DeclarationTable(TARGET)
        table.merge(struct("foo", ("x", INT)))

        assert table.merge(struct("foo", ("y", CHAR))) == ConflictKind.REDEFINITION
        entity = table.lookup(Namespace.TAG, "foo")
        assert entity.declaration.fields == (Field("x", INT),)
        assert [conflict.kind for conflict in entity.conflicts] == [ConflictKind.REDEFINITION]

    def test_struct_then_union_with_the_same_tag_conflicts(self):
        table = DeclarationTable(TARGET)
        table.merge(forward("bar"))

        assert table.merge(forward("bar", RecordKind.UNION)) == ConflictKind.INCOMPATIBLE_REDECLARATION
        assert table.record("bar").kind == RecordKind.STRUCT

    def test_struct_then_enum_with_the_same_tag_conflicts(self):
        table = DeclarationTable(TARGET)
        table.merge(forward("bar"))

        assert table.merge(Enum(name="bar")) == ConflictKind.INCOMPATIBLE_REDECLARATION

    def test_tag_and_ordinary_names_coexist(self):
        table = DeclarationTable(TARGET)

        assert table.merge(struct("foo", ("x", INT))) is None
        assert table.merge(Variable(name="foo", type=RecordRef("foo"))) is None
        assert table.record("foo") is not None
        assert isinstance(table.declaration(Namespace.ORDINARY, "foo"), Variable)
        assert len(table) == 2

    def test_variable_then_function_conflicts(self):
        table = DeclarationTable(TARGET)
        table.merge(Variable(name="foo", type=INT))

        assert table.merge(function("foo")) == ConflictKind.INCOMPATIBLE_REDECLARATION
        assert isinstance(table.declaration(Namespace.ORDINARY, "foo"), Variable)

    def test_macros_have_their_own_namespace(self):
        table = DeclarationTable(TARGET)
        table.merge(Variable(name="SIZE", type=INT))

        assert table.merge(Macro(name="SIZE", tokens="4")) is None
        assert table.macro("SIZE").tokens == "4"

    def test_macro_redefinition(self):
        table = DeclarationTable(TARGET)
        table.merge(Macro(name="SIZE", tokens="4"))

        assert table.merge(Macro(name="SIZE", tokens="  4 ")) is None
        assert table.merge(Macro(name="SIZE", tokens="8")) == ConflictKind.REDEFINITION


class TestTypedefs:

    def test_identical_typedef_is_a_no_op(self):
        table = DeclarationTable(TARGET)
        table.merge(Typedef(name="u8", aliased_type=TARGET.primitive(PrimitiveKind.UCHAR)))

        assert table.merge(Typedef(name="u8", aliased_type=TARGET.primitive(PrimitiveKind.UCHAR))) is None
        assert len(table) == 1

    def test_typedef_through_another_typedef_is_identical(self):
        table = DeclarationTable(TARGET)
        table.merge(Typedef(name="INT", aliased_type=INT))
        table.merge(Typedef(name="myint", aliased_type=INT))

        assert table.merge(Typedef(name="myint", aliased_type=TypedefRef("INT"))) is None

    def test_different_typedef_is_a_mismatch(self):
        table = DeclarationTable(TARGET)
        table.merge(Typedef(name="T", aliased_type=INT))

        assert table.merge(Typedef(name="T", aliased_type=CHAR)) == ConflictKind.TYPEDEF_MISMATCH
        assert table.typedef("T").aliased_type == INT

    def test_resolve_strips_typedefs_and_qualifiers(self):
        table = DeclarationTable(TARGET)
        table.merge(Typedef(name="A", aliased_type=Qualified(INT, const=True)))
        table.merge(Typedef(name="B", aliased_type=TypedefRef("A")))

        assert table.resolve(TypedefRef("B")) == INT
        assert table.resolve(TypedefRef("missing")) == TypedefRef("missing")

    def test_canonical_expands_nested_typedefs(self):
        table = DeclarationTable(TARGET)
        table.merge(Typedef(name="A", aliased_type=INT))

        assert table.canonical(Pointer(Array(TypedefRef("A"), 3))) == Pointer(Array(INT, 3))


class TestFunctions:

    def test_parameter_names_are_immaterial(self):
        table = DeclarationTable(TARGET)
        table.merge(function("f", (None, INT), ("b", CHAR)))

        assert table.merge(function("f", ("a", INT), ("other", CHAR))) is None
        params = table.declaration(Namespace.ORDINARY, "f").signature.params
        assert [param.name for param in params] == ["a", "b"]

    def test_typedef_and_qualifiers_are_compatible(self):
        table = DeclarationTable(TARGET)
        table.merge(Typedef(name="INT", aliased_type=INT))
        table.merge(function("f", ("x", TypedefRef("INT"))))

        assert table.merge(function("f", ("x", Qualified(INT, const=True)))) is None

    def test_array_parameter_equals_pointer_parameter(self):
        table = DeclarationTable(TARGET)
        table.merge(function("f", ("x", Array(INT, None))))

        assert table.merge(function("f", ("x", Pointer(INT)))) is None

    def test_definition_marks_function_defined(self):
        table = DeclarationTable(TARGET)
        table.merge(function("f"))
        table.merge(function("f", defined=True))
        table.merge(function("f"))

        assert table.declaration(Namespace.ORDINARY, "f").is_defined

    def test_different_signature_is_incompatible(self):
        table = DeclarationTable(TARGET)
        table.merge(function("f", ("x", INT)))

        assert table.merge(function("f", ("x", INT), variadic=True)) == ConflictKind.INCOMPATIBLE_TYPE


class TestVariables:

    def test_array_completion(self):
        table = DeclarationTable(TARGET)
        table.merge(Variable(name="a", type=Array(INT, None), is_extern=True))

        assert table.merge(Variable(name="a", type=Array(INT, 10))) is None
        variable = table.declaration(Namespace.ORDINARY, "a")
        assert variable.type == Array(INT, 10)
        assert not variable.is_extern

    def test_complete_array_is_kept(self):
        table = DeclarationTable(TARGET)
        table.merge(Variable(name="a", type=Array(INT, 10)))

        assert table.merge(Variable(name="a", type=Array(INT, None), is_extern=True)) is None
        assert table.declaration(Namespace.ORDINARY, "a").type == Array(INT, 10)

    def test_different_type_is_incompatible(self):
        table = DeclarationTable(TARGET)
        table.merge(Variable(name="a", type=INT))

        assert table.merge(Variable(name="a", type=CHAR)) == ConflictKind.INCOMPATIBLE_TYPE
        assert table.declaration(Namespace.ORDINARY, "a").type == INT


class TestNestedDefinitions:

    def test_tagged_inline_record_is_hoisted(self):
        table = DeclarationTable(TARGET)
        inner = InlineRecord(tag="Inner", fields=(Field("x", INT),))
        table.merge(struct("Outer", ("in", inner)))

        assert table.record("Inner").fields == (Field("x", INT),)
        assert table.record("Outer").fields == (Field("in", RecordRef("Inner")),)

    def test_unknown_tag_reference_declares_it(self):
        table = DeclarationTable(TARGET)
        table.merge(Variable(name="p", type=Pointer(RecordRef("Opaque"))))
        table.merge(Variable(name="e", type=Pointer(EnumRef("Colors"))))

        assert table.record("Opaque") is not None
        assert not table.record("Opaque").is_complete
        assert not table.enum("Colors").is_complete

    def test_self_reference_does_not_declare_a_forward(self):
        table = DeclarationTable(TARGET)
        table.merge(struct("node", ("next", Pointer(RecordRef("node")))))

        assert table.record("node").is_complete
        assert len(table) == 1


class TestEnums:

    def test_constants_are_indexed(self):
        table = DeclarationTable(TARGET)
        table.merge(Enum(name="color", constants=(EnumConstant("RED", 0), EnumConstant("BLUE", 4))))

        assert table.enum_constant("BLUE") == 4
        assert table.enum_constant("GREEN") is None
        assert table.enum("color").underlying_width == 32

    def test_large_constants_widen_the_enum(self):
        table = DeclarationTable(TARGET)
        table.merge(Enum(name="big", constants=(EnumConstant("HUGE", 1 << 40),)))

        assert table.enum("big").underlying_width == 64

    def test_width_follows_the_target_int(self):
        widths = dict(TARGET.primitive_widths)
        widths[PrimitiveKind.INT] = 16
        table = DeclarationTable(replace(TARGET, primitive_widths=widths))
        table.merge(Enum(name="small", constants=(EnumConstant("MAX", 0xFFFF),)))
        table.merge(Enum(name="wide", constants=(EnumConstant("OVER", 0x10000),)))

        assert table.enum("small").underlying_width == 16
        assert table.enum("wide").underlying_width == 64

    def test_unnamed_enum_waits_for_a_name(self):
        table = DeclarationTable(TARGET)
        table.merge(Enum(name=None, constants=(EnumConstant("A", 1),)))

        assert len(table) == 0
        assert len(table.unnamed_entities()) == 1
        assert table.enum_constant("A") == 1


class TestLifecycle:

    def test_entities_keep_first_declaration_order(self):
        table = DeclarationTable(TARGET)
        table.merge(Variable(name="b", type=INT))
        table.merge(forward("a"))
        table.merge(Macro(name="C", tokens="1"))
        table.merge(struct("a", ("x", INT)))

        assert [entity.name for entity in table] == ["b", "a", "C"]

    def test_frozen_table_rejects_merges(self):
        table = DeclarationTable(TARGET)
        table.merge(Variable(name="b", type=INT))
        table.freeze()

        with pytest.raises(FrozenTableError):
            table.merge(Variable(name="c", type=INT))
        assert table.frozen

    def test_pointer_to_void_function(self):
        table = DeclarationTable(TARGET)
        callback = Pointer(FunctionType(return_type=VOID, params=(Parameter("data", Pointer(VOID)),)))

        assert table.merge(Typedef(name="callback", aliased_type=callback)) is None
        assert table.resolve(TypedefRef("callback")) == callback
