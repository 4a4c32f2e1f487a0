from collections.abc import Callable
from pathlib import Path

import pytest

import opgen
from tests.conftest import as_listing


def _function(unit: opgen.DeclarationUnit, name: str) -> opgen.FunctionDecl:
    matches = [f for f in unit.functions if f.name == name]
    assert matches, f"no declaration named {name}"
    return matches[-1]


def _parse(body: str) -> opgen.DeclarationUnit:
    return opgen.parse_declarations(as_listing(body))


def test_empty_text_yields_empty_unit() -> None:
    unit = opgen.parse_declarations("")

    assert unit.declarations == ()
    assert unit.functions == ()
    assert unit.enums == ()
    assert unit.classes == ()


def test_static_native_function_is_recovered() -> None:
    unit = _parse(
        '@Namespace("cv") public static native void flip('
        "@ByVal Mat src, @ByVal Mat dst, int flipCode);"
    )

    (decl,) = unit.functions
    assert decl.name == "flip"
    assert decl.return_type == "void"
    assert [(p.type_name, p.name) for p in decl.params] == [
        ("Mat", "src"),
        ("Mat", "dst"),
        ("int", "flipCode"),
    ]
    assert decl.line == 2
    assert decl.owner == ()


def test_annotated_return_type_is_stripped() -> None:
    unit = _parse(
        '@Namespace("cv") public static native @ByVal MatExpr max('
        "@Const @ByRef Mat a, double s);"
    )

    (decl,) = unit.functions
    assert decl.return_type == "MatExpr"
    assert [p.type_name for p in decl.params] == ["Mat", "double"]


def test_instance_and_non_native_methods_are_ignored() -> None:
    unit = _parse(
        """
        public static class Size extends Pointer {
            static { Loader.load(); }
            public Size() { super((Pointer)null); allocate(); }
            private native void allocate();
            public native int width();
            public static Size of(int w) { return new Size(); }
        }
        """
    )

    assert unit.declarations == ()
    assert unit.classes == (opgen.ClassDecl("Size", line=3),)


def test_nested_classes_record_their_path() -> None:
    unit = _parse(
        """
        public static class SVM extends Pointer {
            public static class Params extends Pointer {
                /** enum cv::ml::SVM::Params::Kind */
                public static final int LINEAR = 0;
            }
            public static native @Ptr SVM create();
        }
        public static native void flip(Mat src, Mat dst, int code);
        """
    )

    assert [(c.name, c.owner) for c in unit.classes] == [
        ("SVM", ()),
        ("Params", ("SVM",)),
    ]
    (enum,) = unit.enums
    assert enum.owner == ("SVM", "Params")
    create, flip = unit.functions
    assert (create.name, create.owner) == ("create", ("SVM",))
    assert (flip.name, flip.owner) == ("flip", ())


def test_varargs_and_array_parameters() -> None:
    unit = _parse(
        "public static native void merge(@Const Mat... mv, int[] fromTo, "
        "final int n, int lut[]);"
    )

    (decl,) = unit.functions
    assert decl.params[0] == opgen.ParamDecl("Mat", "mv", variadic=True)
    assert decl.params[1].type_name == "int[]"
    assert decl.params[2] == opgen.ParamDecl("int", "n")
    assert decl.params[3] == opgen.ParamDecl("int[]", "lut")


def test_no_parameter_function() -> None:
    unit = _parse("public static native int getNumThreads();")

    (decl,) = unit.functions
    assert decl.params == ()
    assert decl.return_type == "int"


def test_trailing_comment_is_not_attached_to_any_parameter() -> None:
    unit = _parse("public static native void f(int ksize/*=3*/, double scale/*=1*/);")

    ksize, scale = unit.functions[0].params
    assert ksize.comment is None
    assert scale.comment is None


def test_leading_comment_attaches_to_its_own_parameter() -> None:
    unit = _parse(
        "public static native void f(/*=3*/int ksize, "
        '@ByVal(nullValue = "cv::Point(-1,-1)") /*=cv::Point(-1,-1)*/Point anchor, '
        "/** doc */ /*=1*/ double scale, double delta);"
    )

    ksize, anchor, scale, delta = unit.functions[0].params
    assert ksize.default_hint == "3"
    assert anchor.default_hint == "cv::Point(-1,-1)"
    assert scale.default_hint == "1"
    assert delta.comment is None


def test_repaired_comments_attach_to_their_own_parameter(
    make_unit: Callable[[str], opgen.DeclarationUnit],
) -> None:
    unit = make_unit("public static native void f(int ksize/*=3*/, double scale/*=1*/);")

    ksize, scale = unit.functions[0].params
    assert ksize.default_hint == "3"
    assert scale.default_hint == "1"


def test_default_hint_ignores_plain_comments() -> None:
    param = opgen.ParamDecl("int", "x", comment="/** the x */")

    assert param.default_hint is None


def test_enum_block_is_recovered_with_values() -> None:
    unit = _parse(
        """
        /** enum cv::BorderTypes */
        public static final int
            /** constant border */
            BORDER_CONSTANT = 0,
            BORDER_REFLECT_101 = 4,
            BORDER_WRAP = 1 << 3,
            BORDER_DEFAULT = BORDER_REFLECT_101;
        """
    )

    (enum,) = unit.enums
    assert enum.name == "BorderTypes"
    assert enum.owner == ()
    assert [(c.name, c.value) for c in enum.constants] == [
        ("BORDER_CONSTANT", "0"),
        ("BORDER_REFLECT_101", "4"),
        ("BORDER_WRAP", "1 << 3"),
        ("BORDER_DEFAULT", "BORDER_REFLECT_101"),
    ]


def test_nested_enum_name_uses_last_segment() -> None:
    unit = _parse("/** enum cv::ml::SVM::Types */ public static final int C_SVC = 100;")

    (enum,) = unit.enums
    assert enum.name == "Types"


def test_constant_without_enum_doc_is_ignored() -> None:
    unit = _parse("/** depth */ public static final int CV_8U = 0, CV_8S = 1;")

    assert unit.declarations == ()


def test_declarations_keep_source_order(core_unit: opgen.DeclarationUnit) -> None:
    kinds = [type(d).__name__ for d in core_unit.declarations]
    assert kinds[:3] == ["EnumDecl", "EnumDecl", "EnumDecl"]
    assert [e.name for e in core_unit.enums] == ["CmpTypes", "BorderTypes", "NormTypes"]
    assert [f.name for f in core_unit.functions][:2] == ["add", "add"]
    assert len(core_unit.functions) == 15
    assert [c.name for c in core_unit.classes] == ["Size"]


def test_annotations_with_array_values_are_skipped() -> None:
    text = """
    @Properties(target = "x", value = {@Platform(include = {"a.h", "b.h"})})
    public class Lib {
        public static final int[] SIZES = { 1, 2 };
        @Cast({"char*", "std::string"}) public static native String name(int id);
    }
    """

    unit = opgen.parse_declarations(text)

    (decl,) = unit.functions
    assert decl.name == "name"
    assert decl.return_type == "String"


@pytest.mark.parametrize(
    "body",
    [
        "public static native void f(int a);\n/* open",
        '@Name("abc) public static native void f();',
        "public static class A {\n  void f() {}\n",
        "public static native void f(int a;",
        "public static native void f(int a)",
        "public static native void f(int);",
        "public static native void f(int a,);",
        "int a = #;",
    ],
)
def test_malformed_text_raises_parse_failure(body: str) -> None:
    with pytest.raises(opgen.ParseFailure) as exc_info:
        opgen.parse_declarations(as_listing(body), source="bad.txt")

    err = exc_info.value
    assert err.code == "PARSE_FAILURE"
    assert err.reason.startswith("syntax error")
    assert err.message.startswith("bad.txt:")
    assert err.line is not None


def test_unbalanced_closing_brace_raises_parse_failure() -> None:
    with pytest.raises(opgen.ParseFailure):
        opgen.parse_declarations("public class A {\n}\n}\n")


def test_parse_failure_reports_line_number() -> None:
    text = as_listing(
        "public static native void ok();\n\npublic static native void f(int);"
    )

    with pytest.raises(opgen.ParseFailure) as exc_info:
        opgen.parse_declarations(text)

    assert exc_info.value.line == 4


def test_read_declaration_source_repairs_and_parses(fixtures_dir: Path) -> None:
    unit = opgen.read_declaration_source(fixtures_dir / "opencv_imgproc.txt")

    assert unit.source == "opencv_imgproc.txt"
    sobel = _function(unit, "Sobel")
    assert [p.default_hint for p in sobel.params[5:]] == [
        "3",
        "1",
        "0",
        "cv::BORDER_DEFAULT",
    ]
    dilate = _function(unit, "dilate")
    assert dilate.params[3].default_hint == "cv::Point(-1,-1)"


def test_read_declaration_source_missing_file_raises_io_failure(tmp_path: Path) -> None:
    missing = tmp_path / "opencv_core.txt"

    with pytest.raises(opgen.IoFailure) as exc_info:
        opgen.read_declaration_source(missing)

    assert exc_info.value.code == "IO_FAILURE"
    assert str(missing) in exc_info.value.message


def test_read_declaration_source_undecodable_file_raises_io_failure(
    tmp_path: Path,
) -> None:
    path = tmp_path / "opencv_core.txt"
    path.write_bytes(b"\xff\xfe\xfa broken")

    with pytest.raises(opgen.IoFailure):
        opgen.read_declaration_source(path)
