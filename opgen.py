"""OpenCV operation wrapper generator.

Reads the JavaCPP declaration listings for the OpenCV modules
(opencv_core.txt, opencv_imgproc.txt), matches their native function
signatures against a hand-written catalog of operations and emits one Python
wrapper module per matched operation, plus an `operation_list` manifest that
registers every generated operation.

Usage:
    python opgen.py --resource-dir resources --output-dir generated
"""

import argparse
import json
import keyword
import re
from collections.abc import Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path
from typing import TypeVar

import tree_sitter_java
from tree_sitter import Language, Node, Parser

PROJECT_ROOT = Path(__file__).parent
DEFAULT_RESOURCE_DIR = PROJECT_ROOT / "resources"
DEFAULT_OUTPUT_DIR = PROJECT_ROOT / "generated"
DEFAULT_PACKAGE = "generated"


# ===--- CLI config contracts ---=== #


@dataclass(frozen=True)
class GenerateConfig:
    resource_dir: Path
    output_dir: Path
    package: str
    strict: bool


VALID_ERROR_CODES = {
    "PATH_NOT_FOUND",
    "NOT_A_DIRECTORY",
    "INVALID_PACKAGE",
}
_PACKAGE_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(?:\.[A-Za-z_][A-Za-z0-9_]*)*$")
_LISTINGS_HINT = (
    "Point --resource-dir at the directory holding opencv_core.txt and "
    "opencv_imgproc.txt (the JavaCPP declaration listings)."
)


class CodedError(Exception):
    """Failure reported by main() as `<label> [<code>]: <message>`.

    Subclasses fix the label and the set of codes they accept.
    """

    label = "Error"
    valid_codes: set[str] = set()

    def __init__(self, code: str, message: str, suggestion: str | None = None):
        if code not in self.valid_codes:
            raise ValueError(f"Unknown {self.label.lower()} code: {code}")
        super().__init__(message)
        self.code = code
        self.message = message
        self.suggestion = suggestion

    def report_lines(self) -> list[str]:
        lines = [f"{self.label} [{self.code}]: {self.message}"]
        if self.suggestion:
            lines.append(f"Hint: {self.suggestion}")
        return lines


class ConfigError(CodedError):
    label = "Config error"
    valid_codes = VALID_ERROR_CODES


def validate_resource_dir(path: Path | None) -> Path:
    """The listings directory must be given and must be a directory."""
    if path is None:
        raise ConfigError(
            "PATH_NOT_FOUND", "--resource-dir is required: no path provided.", _LISTINGS_HINT
        )
    if not path.exists():
        raise ConfigError(
            "PATH_NOT_FOUND", f"Resource directory does not exist: {path}", _LISTINGS_HINT
        )
    if not path.is_dir():
        raise ConfigError(
            "NOT_A_DIRECTORY",
            f"Resource path is a file, not a directory: {path}",
            f"Pass the directory containing it instead: --resource-dir {path.parent}",
        )
    return path


def validate_package_name(name: str) -> str:
    if _PACKAGE_RE.match(name) and not any(
        keyword.iskeyword(part) for part in name.split(".")
    ):
        return name
    raise ConfigError(
        "INVALID_PACKAGE",
        f"Invalid package name: {name}",
        "Use a dotted Python module path (for example generated.opencv).",
    )


def build_argument_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Generate Python operation wrappers from OpenCV declarations"
    )

    parser.add_argument("--resource-dir", type=Path, default=DEFAULT_RESOURCE_DIR)
    parser.add_argument("--output-dir", type=Path, default=DEFAULT_OUTPUT_DIR)
    parser.add_argument("--package", type=str, default=DEFAULT_PACKAGE)
    parser.add_argument("--strict", action="store_true", default=False)

    return parser


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = build_argument_parser()
    return parser.parse_args(argv)


def validate_config(args: argparse.Namespace) -> GenerateConfig:
    resource_dir = validate_resource_dir(args.resource_dir)
    package = validate_package_name(args.package)
    return GenerateConfig(
        resource_dir=resource_dir,
        output_dir=args.output_dir,
        package=package,
        strict=bool(args.strict),
    )


def build_config(argv: list[str] | None = None) -> GenerateConfig:
    return validate_config(parse_args(argv))


# ===--- Generation errors ---=== #


VALID_GENERATION_CODES = {
    "IO_FAILURE",
    "PARSE_FAILURE",
    "UNRESOLVED_DEFAULT",
    "ARITY_MISMATCH",
    "UNMATCHED_ENTRY",
    "UNIT_NAME_COLLISION",
}


class GenerationError(CodedError):
    label = "Catalog error"
    valid_codes = VALID_GENERATION_CODES


class IoFailure(GenerationError):
    """A declaration resource could not be located or read."""

    def __init__(self, message: str, suggestion: str | None = None):
        super().__init__("IO_FAILURE", message, suggestion)


class ParseFailure(GenerationError):
    """Declaration text is not valid under the listing grammar."""

    def __init__(self, reason: str, line: int | None = None, source: str | None = None):
        location = source or "<text>"
        if line is not None:
            location = f"{location}:{line}"
        super().__init__("PARSE_FAILURE", f"{location}: {reason}")
        self.reason = reason
        self.line = line
        self.source = source


class UnresolvedDefaultFailure(GenerationError):
    def __init__(self, token: str):
        super().__init__(
            "UNRESOLVED_DEFAULT",
            f"Default value {token!r} does not name a known constant",
            "Literal defaults must reference an enum constant declared in a "
            "processed listing.",
        )
        self.token = token


class ArityMismatchFailure(GenerationError):
    def __init__(self, type_name: str, expected: tuple[int, ...], actual: int):
        if expected:
            allowed = " or ".join(str(count) for count in expected)
            message = (
                f"{type_name} takes {allowed} constructor arguments, got {actual}"
            )
        else:
            message = f"{type_name} has no known constructor"
        super().__init__("ARITY_MISMATCH", message)
        self.type_name = type_name
        self.expected = expected
        self.actual = actual


class UnmatchedEntryFailure(GenerationError):
    def __init__(self, entries: tuple[str, ...]):
        super().__init__(
            "UNMATCHED_ENTRY",
            f"{len(entries)} catalog entries matched no declaration: "
            + ", ".join(entries),
            "Check the entry names and parameter types against the listings.",
        )
        self.entries = entries


class UnitNameCollision(GenerationError):
    def __init__(self, unit: str, first: str, second: str):
        super().__init__(
            "UNIT_NAME_COLLISION",
            f"{first} and {second} would both generate unit '{unit}'",
            "Rename one of the catalog entries or collections.",
        )
        self.unit = unit
        self.entries = (first, second)


# ===--- Declaration text repair ---=== #

# JavaCPP writes each C++ default after the parameter name, as in
# `int ksize/*=3*/, double scale`. The parser only pairs a parameter with a
# comment written before its type, so the trailing defaults are moved in
# front of their own parameter first.

METHOD_REORDER_PATTERN = re.compile(
    r"([A-Za-z1-9]+ (?:\.\.\.)?[a-z][A-Za-z0-9_]*)(/\*=[^ ]*\*/)((?:,)|(?:\s*\)))"
)
"""Splits a parameter into three groups: the type and identifier (with optional
varargs), the `/*=default*/` comment trailing it, and the separator ending it."""

METHOD_REORDER_REPLACEMENT = r"\2\1\3"


def repair_declaration_text(text: str) -> str:
    """Move every trailing `/*=default*/` comment in front of its parameter."""
    return METHOD_REORDER_PATTERN.sub(METHOD_REORDER_REPLACEMENT, text)


# ===--- Declaration tree ---=== #


_DEFAULT_HINT_RE = re.compile(r"^/\*=(.*)\*/$", re.DOTALL)


@dataclass(frozen=True)
class ParamDecl:
    type_name: str
    name: str
    variadic: bool = False
    comment: str | None = None

    @property
    def default_hint(self) -> str | None:
        """Text of an attached `/*=value*/` comment, if any."""
        if self.comment is None:
            return None
        match = _DEFAULT_HINT_RE.match(self.comment)
        if match is None:
            return None
        return match.group(1).strip()


@dataclass(frozen=True)
class FunctionDecl:
    """A `static native` function.

    `owner` is the path of nested classes declaring it; () means the function
    sits directly in the listing's module class.
    """

    name: str
    return_type: str
    params: tuple[ParamDecl, ...]
    line: int = 0
    owner: tuple[str, ...] = ()


@dataclass(frozen=True)
class EnumConstantDecl:
    name: str
    value: str | None


@dataclass(frozen=True)
class EnumDecl:
    name: str
    constants: tuple[EnumConstantDecl, ...]
    line: int = 0
    owner: tuple[str, ...] = ()


@dataclass(frozen=True)
class ClassDecl:
    """A class nested in the module class, e.g. Size or TermCriteria."""

    name: str
    line: int = 0
    owner: tuple[str, ...] = ()


Declaration = FunctionDecl | EnumDecl


@dataclass(frozen=True)
class DeclarationUnit:
    """Every function and enum declaration of one listing, in source order.

    Nested class declarations are kept apart in `classes`; they name the
    types the functions refer to.
    """

    source: str
    declarations: tuple[Declaration, ...]
    classes: tuple[ClassDecl, ...] = ()

    @property
    def functions(self) -> tuple[FunctionDecl, ...]:
        return tuple(d for d in self.declarations if isinstance(d, FunctionDecl))

    @property
    def enums(self) -> tuple[EnumDecl, ...]:
        return tuple(d for d in self.declarations if isinstance(d, EnumDecl))


# ===--- Declaration parsing ---=== #


JAVA_LANGUAGE = Language(tree_sitter_java.language())

_COMMENT_NODES = {"block_comment", "line_comment", "comment"}
_PARAMETER_NODES = {"formal_parameter", "spread_parameter"}
_CLASS_NODES = {"class_declaration", "interface_declaration"}
_ENUM_DOC_RE = re.compile(r"\benum\s+([A-Za-z_][\w:]*)")


def _java_parser() -> Parser:
    parser = Parser()
    parser.language = JAVA_LANGUAGE
    return parser


def _node_text(node: Node) -> str:
    return node.text.decode("utf-8")


def _line(node: Node) -> int:
    return node.start_point[0] + 1


def _walk(node: Node) -> Iterator[Node]:
    yield node
    for child in node.children:
        yield from _walk(child)


def _first_syntax_error(node: Node) -> Node | None:
    if node.type == "ERROR" or node.is_missing:
        return node
    for child in node.children:
        if child.has_error or child.is_missing:
            found = _first_syntax_error(child)
            if found is not None:
                return found
    return None


def _syntax_error_reason(node: Node) -> str:
    if node.is_missing:
        return f"syntax error: missing {node.type!r}"
    snippet = " ".join(_node_text(node).split())
    if len(snippet) > 40:
        snippet = snippet[:37] + "..."
    return f"syntax error near {snippet!r}"


def _modifier_keywords(node: Node) -> set[str]:
    for child in node.children:
        if child.type == "modifiers":
            # Keywords are anonymous nodes; annotations are named and skipped.
            return {m.type for m in child.children if not m.is_named}
    return set()


def _type_text(node: Node) -> str:
    if node.type == "annotated_type":
        node = node.named_children[-1]
    return "".join(_node_text(node).split())


def _parameter_type(param: Node) -> Node:
    type_node = param.child_by_field_name("type")
    if type_node is not None:
        return type_node
    # spread_parameter leaves its type unlabelled
    for child in param.named_children:
        if child.type not in _COMMENT_NODES and child.type not in (
            "modifiers",
            "variable_declarator",
        ):
            return child
    raise ParseFailure("parameter without a type", _line(param))


def _parameter_decl(param: Node, comment: Node | None) -> ParamDecl:
    declarator = param
    for child in param.named_children:
        if child.type == "variable_declarator":
            declarator = child
    name = declarator.child_by_field_name("name")
    if name is None:
        raise ParseFailure("parameter without a name", _line(param))
    type_name = _type_text(_parameter_type(param))
    dimensions = declarator.child_by_field_name("dimensions")
    if dimensions is not None:
        type_name += "".join(_node_text(dimensions).split())
    return ParamDecl(
        type_name=type_name,
        name=_node_text(name),
        variadic=param.type == "spread_parameter",
        comment=_node_text(comment) if comment is not None else None,
    )


def _parse_params(parameters: Node) -> tuple[ParamDecl, ...]:
    """Build ParamDecls, pairing each with the comment written before its type.

    A comment belongs to a parameter when it lies between the preceding `(`
    or `,` and the parameter's type, annotations included. Comments after a
    parameter's name belong to nothing; repair_declaration_text moves the
    listings' trailing defaults in front of their parameter.
    """
    comments = [n for n in _walk(parameters) if n.type in _COMMENT_NODES]
    params: list[ParamDecl] = []
    boundary = parameters.start_byte
    for child in parameters.children:
        if child.type in ("(", ","):
            boundary = child.end_byte
        elif child.type in _PARAMETER_NODES:
            type_start = _parameter_type(child).start_byte
            leading = [
                c
                for c in comments
                if c.start_byte >= boundary and c.end_byte <= type_start
            ]
            params.append(_parameter_decl(child, leading[-1] if leading else None))
    return tuple(params)


def _parse_method(node: Node, owner: tuple[str, ...]) -> FunctionDecl | None:
    modifiers = _modifier_keywords(node)
    if "static" not in modifiers or "native" not in modifiers:
        return None
    name = node.child_by_field_name("name")
    return FunctionDecl(
        name=_node_text(name),
        return_type=_type_text(node.child_by_field_name("type")),
        params=_parse_params(node.child_by_field_name("parameters")),
        line=_line(name),
        owner=owner,
    )


def _leading_comment(node: Node) -> Node | None:
    if node.children and node.children[0].type in _COMMENT_NODES:
        return node.children[0]
    previous = node.prev_sibling
    if previous is not None and previous.type in _COMMENT_NODES:
        return previous
    return None


def _parse_enum(node: Node, owner: tuple[str, ...]) -> EnumDecl | None:
    """Recover a `/** enum cv::X */ static final int A = 0, B = 1;` block."""
    doc = _leading_comment(node)
    if doc is None:
        return None
    match = _ENUM_DOC_RE.search(_node_text(doc))
    if match is None:
        return None
    modifiers = _modifier_keywords(node)
    if "static" not in modifiers or "final" not in modifiers:
        return None
    if _type_text(node.child_by_field_name("type")) not in ("int", "long"):
        return None

    name = [segment for segment in match.group(1).split("::") if segment][-1]
    constants: list[EnumConstantDecl] = []
    for declarator in node.named_children:
        if declarator.type != "variable_declarator":
            continue
        value = declarator.child_by_field_name("value")
        constants.append(
            EnumConstantDecl(
                _node_text(declarator.child_by_field_name("name")),
                _node_text(value) if value is not None else None,
            )
        )
    return EnumDecl(name=name, constants=tuple(constants), line=_line(node), owner=owner)


def _visit_class_body(
    body: Node,
    owner: tuple[str, ...],
    declarations: list[Declaration],
    classes: list[ClassDecl],
) -> None:
    for child in body.named_children:
        if child.type == "method_declaration":
            function = _parse_method(child, owner)
            if function is not None:
                declarations.append(function)
        elif child.type == "field_declaration":
            enum = _parse_enum(child, owner)
            if enum is not None:
                declarations.append(enum)
        elif child.type in _CLASS_NODES:
            name = _node_text(child.child_by_field_name("name"))
            classes.append(ClassDecl(name=name, line=_line(child), owner=owner))
            _visit_class_body(
                child.child_by_field_name("body"), owner + (name,), declarations, classes
            )


def parse_declarations(text: str, source: str = "<text>") -> DeclarationUnit:
    """Parse declaration listing text into a DeclarationUnit.

    The listing is a Java compilation unit. Each top-level class is the
    module scope; classes nested in it are recorded, and their members carry
    the nested class path as `owner`. Only `static native` functions and
    `/** enum ... */` constant blocks become declarations.

    Raises:
        ParseFailure: The text is not valid Java; reports the first error.
    """
    tree = _java_parser().parse(text.encode("utf-8"))
    root = tree.root_node
    if root.has_error:
        error = _first_syntax_error(root) or root
        raise ParseFailure(_syntax_error_reason(error), _line(error), source)

    declarations: list[Declaration] = []
    classes: list[ClassDecl] = []
    for child in root.named_children:
        if child.type in _CLASS_NODES:
            _visit_class_body(child.child_by_field_name("body"), (), declarations, classes)
    return DeclarationUnit(
        source=source, declarations=tuple(declarations), classes=tuple(classes)
    )


def read_declaration_source(path: Path) -> DeclarationUnit:
    """Read a whole listing, repair its parameter comments and parse it.

    Raises:
        IoFailure: The file is missing or unreadable.
        ParseFailure: Propagated from parse_declarations.
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as err:
        raise IoFailure(
            f"Declaration resource not found: {path}",
            "Pass --resource-dir pointing at the JavaCPP declaration listings.",
        ) from err
    except (OSError, UnicodeDecodeError) as err:
        raise IoFailure(f"Cannot read declaration resource {path}: {err}") from err
    return parse_declarations(repair_declaration_text(text), source=path.name)


# ===--- Catalog model ---=== #


class ParamRole(Enum):
    INPUT = "input"
    OUTPUT = "output"


@dataclass(frozen=True)
class LiteralDefault:
    """Default naming an enum constant, e.g. CMP_EQ."""

    token: str


@dataclass(frozen=True)
class ConstructedDefault:
    """Default built by a constructor call, e.g. Size(1, 1)."""

    type_name: str
    args: tuple[str, ...] = ()


@dataclass(frozen=True)
class PrimitiveDefault:
    """Numeric or boolean literal default, e.g. 3 or false."""

    value: str


DefaultSpec = LiteralDefault | ConstructedDefault | PrimitiveDefault


@dataclass(frozen=True)
class ParamSpec:
    """One parameter of a catalog overload.

    Attributes:
        type_name: Declared type the listing parameter must carry, e.g. "Mat".
        role: INPUT or OUTPUT. None follows the collection's output naming
            convention (see CatalogCollection.set_output_defaults).
        name: Name used in the generated wrapper instead of the listing's.
        default: Default applied when the convenience path omits the parameter.
        variadic: Require the listing parameter to be varargs.
    """

    type_name: str
    role: ParamRole | None = None
    name: str | None = None
    default: DefaultSpec | None = None
    variadic: bool = False

    def with_default(self, default: DefaultSpec) -> "ParamSpec":
        return replace(self, default=default)

    def with_literal_default(self, token: str) -> "ParamSpec":
        return replace(self, default=LiteralDefault(token))

    def as_output(self) -> "ParamSpec":
        return replace(self, role=ParamRole.OUTPUT)

    def named(self, name: str) -> "ParamSpec":
        return replace(self, name=name)


def _as_param_spec(param: "str | ParamSpec") -> ParamSpec:
    if isinstance(param, ParamSpec):
        return param
    if param.endswith("..."):
        return ParamSpec(param[:-3], variadic=True)
    return ParamSpec(param)


@dataclass(frozen=True)
class CatalogEntry:
    name: str
    overloads: tuple[tuple[ParamSpec, ...], ...]
    auto_defaults: bool = False
    description: str = ""

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("CatalogEntry name must not be empty")
        if not self.overloads:
            raise ValueError(f"CatalogEntry '{self.name}' needs at least one overload")

    def add_overload(self, *params: "str | ParamSpec") -> "CatalogEntry":
        overload = tuple(_as_param_spec(p) for p in params)
        return replace(self, overloads=self.overloads + (overload,))

    def add_description(self, description: str) -> "CatalogEntry":
        return replace(self, description=description)


def defined_method(
    name: str,
    *params: "str | ParamSpec",
    auto_defaults: bool = False,
    description: str = "",
) -> CatalogEntry:
    """Build a single-overload CatalogEntry.

    Plain strings are short-hand for ordinary input parameters of that type;
    a trailing "..." marks a varargs parameter.
    """
    return CatalogEntry(
        name=name,
        overloads=(tuple(_as_param_spec(p) for p in params),),
        auto_defaults=auto_defaults,
        description=description,
    )


class CatalogCollection:
    def __init__(
        self,
        name: str,
        *entries: CatalogEntry,
        native_module: str | None = None,
        type_module: str | None = None,
    ):
        if not name:
            raise ValueError("CatalogCollection name must not be empty")
        self.name = name
        self.entries = tuple(entries)
        self.native_module = native_module or name
        self.type_module = type_module or self.native_module
        self.output_name: str | None = None
        self._by_name: dict[str, CatalogEntry] = {}
        for entry in self.entries:
            if entry.name in self._by_name:
                raise ValueError(
                    f"Duplicate catalog entry '{entry.name}' in collection '{name}'"
                )
            self._by_name[entry.name] = entry

    def set_output_defaults(self, name: str) -> "CatalogCollection":
        """Treat every parameter called `name` as an output unless its role is set."""
        self.output_name = name
        return self

    def get(self, name: str) -> CatalogEntry | None:
        return self._by_name.get(name)


# ===--- Built-in catalogs ---=== #


def opencv_core_catalog() -> CatalogCollection:
    return CatalogCollection(
        "opencv_core",
        defined_method("add", "Mat", "Mat", "Mat"),
        defined_method("subtract", "Mat", "Mat", "Mat").add_description(
            "Calculates the per-pixel difference between two images"
        ),
        defined_method("multiply", "Mat", "Mat", "Mat"),
        defined_method("divide", "Mat", "Mat", "Mat"),
        defined_method("scaleAdd", "Mat", "double", "Mat", "Mat"),
        defined_method("normalize", "Mat", "Mat"),
        defined_method("batchDistance", "Mat", "Mat"),
        defined_method("addWeighted", "Mat"),
        defined_method("flip", "Mat", "Mat"),
        defined_method("bitwise_and", "Mat", "Mat"),
        defined_method("bitwise_or", "Mat", "Mat"),
        defined_method("bitwise_xor", "Mat", "Mat"),
        defined_method("bitwise_not", "Mat", "Mat"),
        defined_method("absdiff", "Mat", "Mat"),
        defined_method(
            "compare",
            ParamSpec("Mat"),
            ParamSpec("Mat"),
            ParamSpec("Mat"),
            ParamSpec("int").with_literal_default("CMP_EQ"),
            auto_defaults=True,
        ),
        defined_method("max", "Mat", "Mat"),
        defined_method("min", "Mat", "Mat"),
    ).set_output_defaults("dst")


def opencv_imgproc_catalog() -> CatalogCollection:
    return CatalogCollection(
        "opencv_imgproc",
        defined_method("Sobel", "Mat", "Mat"),
        defined_method("medianBlur", "Mat", "Mat"),
        defined_method(
            "GaussianBlur",
            ParamSpec("Mat"),
            ParamSpec("Mat"),
            ParamSpec("Size").with_default(ConstructedDefault("Size", ("1", "1"))),
        ),
        defined_method("Laplacian", "Mat", "Mat"),
        defined_method("dilate", "Mat", "Mat"),
        defined_method("Canny", ParamSpec("Mat"), ParamSpec("Mat", ParamRole.OUTPUT)),
        defined_method("cornerMinEigenVal", "Mat", "Mat"),
        defined_method("cornerHarris", "Mat", "Mat"),
        defined_method("cornerEigenValsAndVecs", "Mat", "Mat"),
        type_module="opencv_core",
    ).set_output_defaults("dst")


# ===--- Declaration traversal ---=== #


S = TypeVar("S")


def fold_declarations(
    unit: DeclarationUnit,
    initial: S,
    *,
    on_function: Callable[[S, FunctionDecl], S] | None = None,
    on_enum: Callable[[S, EnumDecl], S] | None = None,
) -> S:
    """Left fold over a unit's declarations, dispatching on declaration kind."""
    state = initial
    for decl in unit.declarations:
        if isinstance(decl, FunctionDecl):
            if on_function is not None:
                state = on_function(state, decl)
        elif on_enum is not None:
            state = on_enum(state, decl)
    return state


# ===--- Symbols ---=== #


@dataclass(frozen=True)
class EnumSymbol:
    name: str
    enum_name: str
    value: str | None
    module: str
    owner: tuple[str, ...] = ()

    @property
    def reference(self) -> str:
        """How generated code spells the constant, e.g. TermCriteria.EPS."""
        return ".".join(self.owner + (self.name,))

    @property
    def import_name(self) -> str:
        return self.owner[0] if self.owner else self.name


@dataclass(frozen=True)
class ClassSymbol:
    name: str
    module: str
    owner: tuple[str, ...] = ()

    @property
    def reference(self) -> str:
        return ".".join(self.owner + (self.name,))

    @property
    def import_name(self) -> str:
        return self.owner[0] if self.owner else self.name


_QUALIFIER_RE = re.compile(r"::|\.")


class SymbolTable:
    """Enum constants and class types visible to generated wrappers.

    Constants are keyed by their reference, so a constant of a nested class
    is only found through its class (`TermCriteria::EPS`), never as `EPS`.
    """

    def __init__(
        self,
        symbols: Mapping[str, EnumSymbol] | None = None,
        classes: Mapping[str, ClassSymbol] | None = None,
    ):
        self._symbols: dict[str, EnumSymbol] = dict(symbols or {})
        self._classes: dict[str, ClassSymbol] = dict(classes or {})

    def __len__(self) -> int:
        return len(self._symbols)

    def __contains__(self, name: object) -> bool:
        return name in self._symbols

    def lookup(self, name: str) -> EnumSymbol | None:
        """Find a constant from `NAME`, `cv::NAME` or `cv::Outer::NAME`.

        Leading qualifiers are dropped one at a time until a reference
        matches, so C++ namespaces are ignored but class scopes are not.
        """
        segments = [s for s in _QUALIFIER_RE.split(name.strip()) if s]
        for start in range(len(segments)):
            symbol = self._symbols.get(".".join(segments[start:]))
            if symbol is not None:
                return symbol
        return None

    def lookup_class(self, name: str) -> ClassSymbol | None:
        return self._classes.get(name)

    def with_symbols(self, symbols: Iterable[EnumSymbol]) -> "SymbolTable":
        """Return a new table; the first definition of a name is kept."""
        merged = dict(self._symbols)
        for symbol in symbols:
            merged.setdefault(symbol.reference, symbol)
        return SymbolTable(merged, self._classes)

    def with_classes(self, classes: Iterable[ClassSymbol]) -> "SymbolTable":
        merged = dict(self._classes)
        for cls in classes:
            merged.setdefault(cls.name, cls)
        return SymbolTable(self._symbols, merged)


def collect_enum_symbols(
    unit: DeclarationUnit, symbols: SymbolTable, module: str
) -> SymbolTable:
    def _record(found: tuple[EnumSymbol, ...], decl: EnumDecl) -> tuple[EnumSymbol, ...]:
        return found + tuple(
            EnumSymbol(c.name, decl.name, c.value, module, decl.owner)
            for c in decl.constants
        )

    found = fold_declarations(unit, (), on_enum=_record)
    return symbols.with_symbols(found)


def collect_class_symbols(
    unit: DeclarationUnit, symbols: SymbolTable, module: str
) -> SymbolTable:
    """Record which module declares each nested class of the listing."""
    return symbols.with_classes(
        ClassSymbol(cls.name, module, cls.owner) for cls in unit.classes
    )


# ===--- Catalog matching ---=== #


@dataclass(frozen=True)
class SlotConflict:
    """Two declarations matched the same catalog overload; the later one won."""

    entry: str
    overload_index: int
    displaced: FunctionDecl
    replacement: FunctionDecl


@dataclass(frozen=True)
class MatchResult:
    collection: str
    matches: dict[str, dict[int, FunctionDecl]]
    conflicts: tuple[SlotConflict, ...] = ()

    def overloads_for(self, entry_name: str) -> dict[int, FunctionDecl]:
        return self.matches.get(entry_name, {})


def is_overload_match(overload: tuple[ParamSpec, ...], decl: FunctionDecl) -> bool:
    """The overload's types must be a leading prefix of the declaration's."""
    if len(decl.params) < len(overload):
        return False
    for spec, param in zip(overload, decl.params):
        if spec.type_name != param.type_name:
            return False
        if spec.variadic and not param.variadic:
            return False
    return True


def find_matching_overload(entry: CatalogEntry, decl: FunctionDecl) -> int | None:
    if decl.name != entry.name:
        return None
    for index, overload in enumerate(entry.overloads):
        if is_overload_match(overload, decl):
            return index
    return None


def match_catalog(unit: DeclarationUnit, collection: CatalogCollection) -> MatchResult:
    """Associate each function declaration with the catalog overload it satisfies.

    Declarations that match nothing are ignored. A later declaration matching
    an already-filled overload slot replaces the earlier one and is reported
    as a SlotConflict.
    """
    matches: dict[str, dict[int, FunctionDecl]] = {}
    conflicts: list[SlotConflict] = []

    def _visit(state: None, decl: FunctionDecl) -> None:
        entry = collection.get(decl.name)
        if entry is None:
            return state
        index = find_matching_overload(entry, decl)
        if index is None:
            return state
        slots = matches.setdefault(entry.name, {})
        previous = slots.get(index)
        if previous is not None and previous != decl:
            conflicts.append(SlotConflict(entry.name, index, previous, decl))
        slots[index] = decl
        return state

    fold_declarations(unit, None, on_function=_visit)
    return MatchResult(
        collection=collection.name, matches=matches, conflicts=tuple(conflicts)
    )


def merge_matches(first: MatchResult, second: MatchResult) -> MatchResult:
    """Combine results for one collection; `second` wins contested slots."""
    if first.collection != second.collection:
        raise ValueError(
            f"Cannot merge matches of '{first.collection}' and '{second.collection}'"
        )
    matches = {name: dict(slots) for name, slots in first.matches.items()}
    conflicts = list(first.conflicts) + list(second.conflicts)
    for name, slots in second.matches.items():
        target = matches.setdefault(name, {})
        for index, decl in slots.items():
            previous = target.get(index)
            if previous is not None and previous != decl:
                conflicts.append(SlotConflict(name, index, previous, decl))
            target[index] = decl
    return MatchResult(
        collection=first.collection, matches=matches, conflicts=tuple(conflicts)
    )


# ===--- Default value resolution ---=== #


CONSTRUCTOR_ARITY: dict[str, tuple[int, ...]] = {
    "Mat": (0,),
    "UMat": (0,),
    "MatVector": (0,),
    "Size": (0, 2),
    "Size2f": (0, 2),
    "Size2d": (0, 2),
    "Point": (0, 2),
    "Point2f": (0, 2),
    "Point2d": (0, 2),
    "Range": (0, 2),
    "TermCriteria": (0, 3),
    "Rect": (0, 4),
    "Scalar": (0, 1, 2, 3, 4),
}
"""Accepted constructor argument counts for value types in the listings."""

_JAVA_LITERALS = {"true": "True", "false": "False"}
_NUMBER_RE = re.compile(
    r"^[+-]?(?:0[xX][0-9A-Fa-f]+[lL]?|(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?[fFdDlL]?)$"
)
_HINT_CALL_RE = re.compile(r"^(?:[A-Za-z_]\w*::)*([A-Za-z_]\w*)\((.*)\)$")
_HINT_NAME_RE = re.compile(r"^(?:[A-Za-z_]\w*::)*([A-Za-z_]\w*)$")


@dataclass(frozen=True)
class ResolvedDefault:
    """Python expression for a default, with the imports it needs.

    Attributes:
        expression: Source text, e.g. "CMP_EQ", "Size(1, 1)" or "3".
        imports: (module, name) pairs the expression references, sorted.
        constructed: True when the value must be built afresh on every call.
    """

    expression: str
    imports: tuple[tuple[str, str], ...] = ()
    constructed: bool = False


def python_literal(value: str) -> str:
    """Convert a Java/C++ numeric or boolean literal to Python source."""
    text = value.strip()
    if text in _JAVA_LITERALS:
        return _JAVA_LITERALS[text]
    if not _NUMBER_RE.match(text):
        raise ValueError(f"Not a primitive literal: {value!r}")
    sign = ""
    if text[0] in "+-":
        sign, text = text[0], text[1:]
    if text[:2].lower() == "0x":
        return sign + text.rstrip("lL")
    text = text.rstrip("fFdDlL")
    if len(text) > 1 and text.isdigit() and text.startswith("0"):
        return sign + str(int(text, 8))
    if text.startswith("."):
        text = "0" + text
    if text.endswith("."):
        text += "0"
    return sign + text


def _class_reference(
    type_name: str,
    symbols: SymbolTable | None,
    type_module: str,
    imports: set[tuple[str, str]],
) -> str:
    """Name a listing class in generated code, recording where it comes from.

    Classes parsed from a listing are imported from that listing's module;
    anything else is assumed to live in `type_module`.
    """
    cls = symbols.lookup_class(type_name) if symbols is not None else None
    if cls is None:
        imports.add((type_module, type_name))
        return type_name
    imports.add((cls.module, cls.import_name))
    return cls.reference


def _constructor_argument(
    arg: str, symbols: SymbolTable
) -> tuple[str, tuple[tuple[str, str], ...]]:
    try:
        return python_literal(arg), ()
    except ValueError:
        pass
    # Expressions such as `A::X+A::Y` or nested calls have no Python spelling.
    if not _HINT_NAME_RE.match(arg.strip()):
        raise UnresolvedDefaultFailure(arg)
    symbol = symbols.lookup(arg)
    if symbol is None:
        raise UnresolvedDefaultFailure(arg)
    return symbol.reference, ((symbol.module, symbol.import_name),)


def resolve_default(
    spec: DefaultSpec | None, symbols: SymbolTable, type_module: str
) -> ResolvedDefault | None:
    """Resolve a default specification to a Python expression.

    Pure in its arguments: resolving the same spec against the same table
    always yields an equal ResolvedDefault.

    Raises:
        UnresolvedDefaultFailure: A literal names no known constant, or a
            constructor argument is neither a literal nor a constant name.
        ArityMismatchFailure: A constructed default has the wrong argument
            count for its type, or the type has no known constructor.
    """
    if spec is None:
        return None
    if isinstance(spec, LiteralDefault):
        symbol = symbols.lookup(spec.token)
        if symbol is None:
            raise UnresolvedDefaultFailure(spec.token)
        return ResolvedDefault(
            expression=symbol.reference,
            imports=((symbol.module, symbol.import_name),),
        )
    if isinstance(spec, ConstructedDefault):
        expected = CONSTRUCTOR_ARITY.get(spec.type_name, ())
        if len(spec.args) not in expected:
            raise ArityMismatchFailure(spec.type_name, expected, len(spec.args))
        imports: set[tuple[str, str]] = set()
        constructor = _class_reference(spec.type_name, symbols, type_module, imports)
        rendered: list[str] = []
        for arg in spec.args:
            text, arg_imports = _constructor_argument(arg, symbols)
            rendered.append(text)
            imports.update(arg_imports)
        return ResolvedDefault(
            expression=f"{constructor}({', '.join(rendered)})",
            imports=tuple(sorted(imports)),
            constructed=True,
        )
    if isinstance(spec, PrimitiveDefault):
        try:
            return ResolvedDefault(expression=python_literal(spec.value))
        except ValueError as err:
            raise UnresolvedDefaultFailure(spec.value) from err
    raise TypeError(f"Unknown default specification: {spec!r}")


def parse_default_hint(hint: str | None) -> DefaultSpec | None:
    """Interpret a listing's `/*=value*/` text as a default specification.

    Returns None when the text has no recognisable shape.
    """
    if hint is None:
        return None
    text = hint.strip()
    if not text:
        return None
    if text in _JAVA_LITERALS or _NUMBER_RE.match(text):
        return PrimitiveDefault(text)
    match = _HINT_CALL_RE.match(text)
    if match:
        args = tuple(arg.strip() for arg in match.group(2).split(",") if arg.strip())
        return ConstructedDefault(match.group(1), args)
    if _HINT_NAME_RE.match(text):
        return LiteralDefault(text)
    return None


def resolve_native_default(
    param: ParamDecl, symbols: SymbolTable, type_module: str
) -> ResolvedDefault | None:
    """Best-effort default from a listing comment; None when it cannot be used."""
    spec = parse_default_hint(param.default_hint)
    if spec is None:
        return None
    try:
        return resolve_default(spec, symbols, type_module)
    except (UnresolvedDefaultFailure, ArityMismatchFailure):
        # e.g. cv::noArray(): the parameter stays mandatory.
        return None


# ===--- Overload binding ---=== #


@dataclass(frozen=True)
class BoundParam:
    name: str
    type_name: str
    role: ParamRole
    default: ResolvedDefault | None = None
    variadic: bool = False


@dataclass(frozen=True)
class BoundSignature:
    """A catalog overload joined with the declaration it matched."""

    entry: str
    overload_index: int
    native_name: str
    return_type: str
    params: tuple[BoundParam, ...]

    @property
    def outputs(self) -> tuple[BoundParam, ...]:
        return tuple(p for p in self.params if p.role is ParamRole.OUTPUT)

    @property
    def has_convenience(self) -> bool:
        return any(
            p.role is ParamRole.OUTPUT or p.default is not None for p in self.params
        )


def python_identifier(name: str) -> str:
    if keyword.iskeyword(name):
        return name + "_"
    return name


def bind_overload(
    entry: CatalogEntry,
    overload_index: int,
    decl: FunctionDecl,
    collection: CatalogCollection,
    symbols: SymbolTable,
) -> BoundSignature:
    """Assign roles and resolved defaults to every declaration parameter.

    Parameters beyond the catalog's listed prefix are carried through as
    inputs (or outputs, by the collection's naming convention).

    Raises:
        UnresolvedDefaultFailure, ArityMismatchFailure: A catalog-authored
            default cannot be resolved.
    """
    overload = entry.overloads[overload_index]
    params: list[BoundParam] = []
    for position, decl_param in enumerate(decl.params):
        spec = overload[position] if position < len(overload) else None
        raw_name = spec.name if spec is not None and spec.name else decl_param.name
        if spec is not None and spec.role is not None:
            role = spec.role
        elif collection.output_name is not None and raw_name == collection.output_name:
            role = ParamRole.OUTPUT
        else:
            role = ParamRole.INPUT

        default = None
        if role is ParamRole.INPUT and not decl_param.variadic:
            if spec is not None and spec.default is not None:
                default = resolve_default(spec.default, symbols, collection.type_module)
            elif entry.auto_defaults:
                default = resolve_native_default(
                    decl_param, symbols, collection.type_module
                )
        params.append(
            BoundParam(
                name=python_identifier(raw_name),
                type_name=decl_param.type_name,
                role=role,
                default=default,
                variadic=decl_param.variadic,
            )
        )
    return BoundSignature(
        entry=entry.name,
        overload_index=overload_index,
        native_name=decl.name,
        return_type=decl.return_type,
        params=tuple(params),
    )


# ===--- Unit emission ---=== #


JAVA_TO_PYTHON = {
    "void": "None",
    "boolean": "bool",
    "byte": "int",
    "short": "int",
    "int": "int",
    "long": "int",
    "char": "str",
    "float": "float",
    "double": "float",
    "String": "str",
}

_IDENT_RE = re.compile(r"^[A-Za-z_]\w*$")
_HEADER_BORDER: str = "# x-------------------------------------------x #"
NATIVE_ALIAS = "_native"


@dataclass(frozen=True)
class GeneratedUnit:
    name: str
    content: str


@dataclass(frozen=True)
class ExternalImport:
    """Renders as `from <module> import <names>` (or `... import <name> as <alias>`)."""

    module: str
    names: tuple[str, ...]
    alias: str | None = None


def unit_name(collection: CatalogCollection, entry: CatalogEntry) -> str:
    return f"{collection.name}_{entry.name}"


def check_unit_names(collections: Iterable[CatalogCollection]) -> None:
    """Reject catalogs in which two entries would produce one unit name.

    Collection `a_b` with entry `c` and collection `a` with entry `b_c` both
    yield `a_b_c`, and the manifest imports every unit by that bare name.

    Raises:
        UnitNameCollision: Naming the unit and both colliding entries.
    """
    owners: dict[str, str] = {MANIFEST_UNIT_NAME: "the operation manifest"}
    for collection in collections:
        for entry in collection.entries:
            name = unit_name(collection, entry)
            qualified = f"{collection.name}.{entry.name}"
            if name in owners:
                raise UnitNameCollision(name, owners[name], qualified)
            owners[name] = qualified


def python_annotation(
    type_name: str,
    type_module: str,
    imports: dict[str, set[str]],
    symbols: SymbolTable | None = None,
) -> str:
    """Map a listing type to a Python annotation, recording needed imports."""
    if type_name in JAVA_TO_PYTHON:
        return JAVA_TO_PYTHON[type_name]
    if type_name.endswith("[]"):
        inner = python_annotation(type_name[:-2], type_module, imports, symbols)
        return f"list[{inner}]"
    if _IDENT_RE.match(type_name):
        needed: set[tuple[str, str]] = set()
        reference = _class_reference(type_name, symbols, type_module, needed)
        _require_imports(imports, needed)
        return reference
    return "object"


def _require_imports(imports: dict[str, set[str]], pairs: Iterable[tuple[str, str]]) -> None:
    for module, name in pairs:
        imports.setdefault(module, set()).add(name)


def format_file_header(title: str, native_module: str) -> list[str]:
    return [
        _HEADER_BORDER,
        f"# | {title}",
        "# | Generated by opgen",
        f"# | Native module: {native_module}",
        _HEADER_BORDER,
    ]


def format_import_block(imports: tuple[ExternalImport, ...]) -> list[str]:
    """Render one import line per ExternalImport, in the given order.

    Raises:
        ValueError: An import has no names, or an aliased import has more
            than one name.
    """
    lines: list[str] = []
    for imp in imports:
        if not imp.names:
            raise ValueError(f"ExternalImport for module '{imp.module}' has empty names tuple")
        if imp.alias is not None:
            if len(imp.names) != 1:
                raise ValueError(
                    f"Aliased import from '{imp.module}' must name exactly one symbol"
                )
            lines.append(f"from {imp.module} import {imp.names[0]} as {imp.alias}")
        else:
            lines.append(f"from {imp.module} import {', '.join(imp.names)}")
    return lines


def _param_source(param: BoundParam, annotation: str) -> str:
    prefix = "*" if param.variadic else ""
    return f"{prefix}{param.name}: {annotation}"


def _call_arguments(params: Iterable[BoundParam]) -> str:
    return ", ".join(f"*{p.name}" if p.variadic else p.name for p in params)


def _native_signature(signature: BoundSignature) -> str:
    types = ", ".join(
        p.type_name + ("..." if p.variadic else "") for p in signature.params
    )
    return f"{signature.native_name}({types})"


def format_explicit_path(
    signature: BoundSignature,
    function_name: str,
    type_module: str,
    imports: dict[str, set[str]],
    symbols: SymbolTable | None = None,
) -> list[str]:
    """Render the call path taking every parameter in native order."""
    params = ", ".join(
        _param_source(p, python_annotation(p.type_name, type_module, imports, symbols))
        for p in signature.params
    )
    returns = python_annotation(signature.return_type, type_module, imports, symbols)
    call = f"{NATIVE_ALIAS}({_call_arguments(signature.params)})"
    lines = [
        f"def {function_name}({params}) -> {returns}:",
        f'    """Native {_native_signature(signature)}."""',
    ]
    if signature.return_type == "void":
        lines.append(f"    {call}")
    else:
        lines.append(f"    return {call}")
    return lines


def _output_constructor(
    param: BoundParam,
    type_module: str,
    imports: dict[str, set[str]],
    symbols: SymbolTable | None = None,
) -> str:
    expected = CONSTRUCTOR_ARITY.get(param.type_name, ())
    if 0 not in expected:
        raise ArityMismatchFailure(param.type_name, expected, 0)
    return f"{python_annotation(param.type_name, type_module, imports, symbols)}()"


def format_convenience_path(
    signature: BoundSignature,
    function_name: str,
    type_module: str,
    imports: dict[str, set[str]],
    symbols: SymbolTable | None = None,
) -> list[str]:
    """Render the call path that builds outputs and fills in defaults.

    Mandatory inputs stay positional in native order; defaulted inputs become
    keyword-only. Constructed defaults use a None sentinel so each call gets a
    fresh value.
    """
    inputs = [p for p in signature.params if p.role is ParamRole.INPUT]
    mandatory = [p for p in inputs if p.default is None]
    optional = [p for p in inputs if p.default is not None]
    outputs = list(signature.outputs)

    parts = [
        _param_source(p, python_annotation(p.type_name, type_module, imports, symbols))
        for p in mandatory
    ]
    if optional and not any(p.variadic for p in mandatory):
        parts.append("*")
    for p in optional:
        annotation = python_annotation(p.type_name, type_module, imports, symbols)
        _require_imports(imports, p.default.imports)
        if p.default.constructed:
            parts.append(f"{p.name}: {annotation} | None = None")
        else:
            parts.append(f"{p.name}: {annotation} = {p.default.expression}")

    returns_value = signature.return_type != "void"
    result_types: list[str] = []
    if returns_value:
        result_types.append(python_annotation(signature.return_type, type_module, imports, symbols))
    result_types.extend(
        python_annotation(p.type_name, type_module, imports, symbols) for p in outputs
    )
    if not result_types:
        returns = "None"
    elif len(result_types) == 1:
        returns = result_types[0]
    else:
        returns = f"tuple[{', '.join(result_types)}]"

    lines = [
        f"def {function_name}({', '.join(parts)}) -> {returns}:",
        f'    """Native {_native_signature(signature)}, outputs returned."""',
    ]
    for p in optional:
        if p.default.constructed:
            lines.append(f"    if {p.name} is None:")
            lines.append(f"        {p.name} = {p.default.expression}")
    for p in outputs:
        lines.append(f"    {p.name} = {_output_constructor(p, type_module, imports, symbols)}")

    call = f"{NATIVE_ALIAS}({_call_arguments(signature.params)})"
    if returns_value:
        lines.append(f"    _result = {call}")
    else:
        lines.append(f"    {call}")

    returned = (["_result"] if returns_value else []) + [p.name for p in outputs]
    if len(returned) == 1:
        lines.append(f"    return {returned[0]}")
    elif returned:
        lines.append(f"    return {', '.join(returned)}")
    return lines


def _py_string(text: str) -> str:
    return json.dumps(text)


def emit_operation_unit(
    entry: CatalogEntry,
    collection: CatalogCollection,
    overload_matches: Mapping[int, FunctionDecl],
    symbols: SymbolTable,
) -> GeneratedUnit | None:
    """Emit the wrapper module for one entry, or None when nothing matched.

    Every matched overload contributes `perform` (overload 0) or
    `perform_<i>`, plus `call` / `call_<i>` when it has outputs or defaults.
    A function declared in a nested class is reached through that class.
    """
    if not overload_matches:
        return None

    imports: dict[str, set[str]] = {}
    body: list[str] = []
    native_path = (entry.name,)
    for index in sorted(overload_matches):
        decl = overload_matches[index]
        native_path = decl.owner + (decl.name,)
        signature = bind_overload(entry, index, decl, collection, symbols)
        suffix = "" if index == 0 else f"_{index}"
        body.extend(["", ""])
        body.extend(
            format_explicit_path(
                signature, f"perform{suffix}", collection.type_module, imports, symbols
            )
        )
        if signature.has_convenience:
            body.extend(["", ""])
            body.extend(
                format_convenience_path(
                    signature, f"call{suffix}", collection.type_module, imports, symbols
                )
            )

    binding: list[str] = []
    if len(native_path) > 1:
        imports.setdefault(collection.native_module, set()).add(native_path[0])
        binding = [f"{NATIVE_ALIAS} = {'.'.join(native_path)}", ""]
    external = tuple(
        ExternalImport(module=module, names=tuple(sorted(names)))
        for module, names in sorted(imports.items())
    )
    if not binding:
        external += (
            ExternalImport(collection.native_module, native_path, alias=NATIVE_ALIAS),
        )

    native_name = ".".join(native_path)
    parts: list[str] = format_file_header(
        f"{collection.name}.{entry.name} operation", collection.native_module
    )
    parts.append(f'"""Wrapper for {collection.native_module}.{native_name}."""')
    parts.append("")
    parts.extend(format_import_block(external))
    parts.append("")
    parts.extend(binding)
    parts.append(f"NAME = {_py_string(entry.name)}")
    parts.append(f"DESCRIPTION = {_py_string(entry.description)}")
    parts.extend(body)
    return GeneratedUnit(
        name=unit_name(collection, entry), content="\n".join(parts) + "\n"
    )


def add_unit(units: dict[str, str], unit: GeneratedUnit) -> None:
    if not unit.name:
        raise ValueError("Generated unit name must not be empty")
    if unit.name in units:
        raise ValueError(f"Duplicate generated unit name: {unit.name}")
    units[unit.name] = unit.content


# ===--- Operation manifest ---=== #


MANIFEST_UNIT_NAME: str = "operation_list"


@dataclass(frozen=True)
class CollectionRef:
    """Where the generated units of one collection are importable from."""

    collection: str
    package: str


class OperationManifest:
    """Accumulates every emitted unit name and renders the registry module."""

    def __init__(self, *refs: CollectionRef):
        self._packages: dict[str, str] = {}
        for ref in refs:
            if ref.collection in self._packages:
                raise ValueError(f"Duplicate collection reference: {ref.collection}")
            self._packages[ref.collection] = ref.package
        self._units: dict[str, str] = {}

    def add(self, unit: str, collection: str) -> None:
        if collection not in self._packages:
            raise ValueError(f"No package reference for collection '{collection}'")
        if unit in self._units:
            raise ValueError(f"Unit '{unit}' already registered")
        self._units[unit] = collection

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(sorted(self._units))

    def build_unit(self) -> GeneratedUnit:
        names = self.names
        parts: list[str] = [
            _HEADER_BORDER,
            "# | Operation registry",
            "# | Generated by opgen",
            _HEADER_BORDER,
            '"""Every generated operation module, for registration and discovery."""',
            "",
        ]
        for name in names:
            parts.append(f"from {self._packages[self._units[name]]} import {name}")
        if names:
            parts.append("")
            parts.append("OPERATION_NAMES: tuple[str, ...] = (")
            parts.extend(f"    {_py_string(name)}," for name in names)
            parts.append(")")
            parts.append("")
            parts.append("OPERATIONS = (")
            parts.extend(f"    {name}," for name in names)
            parts.append(")")
        else:
            parts.append("OPERATION_NAMES: tuple[str, ...] = ()")
            parts.append("")
            parts.append("OPERATIONS = ()")
        return GeneratedUnit(name=MANIFEST_UNIT_NAME, content="\n".join(parts) + "\n")


# ===--- Pipeline ---=== #


@dataclass(frozen=True)
class SourceSpec:
    """One declaration listing and the catalog matched against it."""

    resource: str
    catalog: Callable[[], CatalogCollection]


BUILTIN_SOURCES: tuple[SourceSpec, ...] = (
    SourceSpec("opencv_core.txt", opencv_core_catalog),
    SourceSpec("opencv_imgproc.txt", opencv_imgproc_catalog),
)
"""Processing order matters: imgproc defaults use enums declared in core."""


@dataclass(frozen=True)
class CollectionReport:
    collection: str
    source: str
    entry_count: int
    emitted: tuple[str, ...]
    unmatched: tuple[str, ...]
    conflicts: tuple[SlotConflict, ...] = ()


@dataclass(frozen=True)
class GenerationResult:
    """Output of one full run.

    Attributes:
        units: Unit name -> content. The manifest is always the last key.
        unit_collections: Operation unit name -> owning collection name.
        reports: One report per successfully parsed source, in order.
        diagnostics: One message per source skipped on IO or parse failure.
    """

    units: dict[str, str]
    unit_collections: dict[str, str]
    reports: tuple[CollectionReport, ...]
    diagnostics: tuple[str, ...]

    @property
    def unmatched(self) -> tuple[str, ...]:
        return tuple(
            f"{report.collection}.{name}"
            for report in self.reports
            for name in report.unmatched
        )

    @property
    def conflicts(self) -> tuple[SlotConflict, ...]:
        return tuple(c for report in self.reports for c in report.conflicts)


def generate_units(
    collection: CatalogCollection,
    match_result: MatchResult,
    symbols: SymbolTable,
    units: dict[str, str],
    manifest: OperationManifest,
    source: str = "",
) -> CollectionReport:
    """Emit one unit per matched entry into `units`, registering each with `manifest`."""
    emitted: list[str] = []
    unmatched: list[str] = []
    for entry in collection.entries:
        unit = emit_operation_unit(
            entry, collection, match_result.overloads_for(entry.name), symbols
        )
        if unit is None:
            unmatched.append(entry.name)
            continue
        add_unit(units, unit)
        manifest.add(unit.name, collection.name)
        emitted.append(unit.name)
    return CollectionReport(
        collection=collection.name,
        source=source,
        entry_count=len(collection.entries),
        emitted=tuple(emitted),
        unmatched=tuple(unmatched),
        conflicts=match_result.conflicts,
    )


def generate_all_source_code(
    resource_dir: Path = DEFAULT_RESOURCE_DIR,
    sources: tuple[SourceSpec, ...] = BUILTIN_SOURCES,
    package: str = DEFAULT_PACKAGE,
) -> GenerationResult:
    """Run the whole pipeline over every source, then emit the manifest.

    A source that cannot be read or parsed is reported and skipped; the other
    sources still contribute their units.

    Raises:
        UnresolvedDefaultFailure, ArityMismatchFailure: A catalog default is
            malformed. Nothing is returned for the run.
        UnitNameCollision: Two catalog entries would share a unit name.
    """
    collections = [source.catalog() for source in sources]
    check_unit_names(collections)
    manifest = OperationManifest(
        *(CollectionRef(c.name, f"{package}.{c.name}") for c in collections)
    )
    units: dict[str, str] = {}
    unit_collections: dict[str, str] = {}
    reports: list[CollectionReport] = []
    diagnostics: list[str] = []
    symbols = SymbolTable()

    for source, collection in zip(sources, collections):
        path = Path(resource_dir) / source.resource
        print(f"Parsing: {path}")
        try:
            unit = read_declaration_source(path)
        except (IoFailure, ParseFailure) as err:
            message = f"{source.resource}: [{err.code}] {err.message}"
            print(f"  Skipped {message}")
            diagnostics.append(message)
            continue
        print(
            f"  Declarations: {len(unit.functions)} functions, "
            f"{len(unit.enums)} enums"
        )

        symbols = collect_enum_symbols(unit, symbols, collection.native_module)
        symbols = collect_class_symbols(unit, symbols, collection.native_module)
        match_result = match_catalog(unit, collection)
        for conflict in match_result.conflicts:
            print(
                f"  Warning: {collection.name}.{conflict.entry} overload "
                f"{conflict.overload_index}: declaration at line "
                f"{conflict.replacement.line} replaces line {conflict.displaced.line}"
            )

        report = generate_units(
            collection, match_result, symbols, units, manifest, source.resource
        )
        for name in report.emitted:
            unit_collections[name] = collection.name
        for entry_name in report.unmatched:
            print(f"  Warning: {collection.name}.{entry_name} matched no declaration")
        print(f"  Matched: {len(report.emitted)}/{report.entry_count} entries")
        reports.append(report)

    add_unit(units, manifest.build_unit())
    return GenerationResult(
        units=units,
        unit_collections=unit_collections,
        reports=tuple(reports),
        diagnostics=tuple(diagnostics),
    )


# ===--- Writer ---=== #


@dataclass(frozen=True)
class WrittenUnit:
    """A generated module as it landed on disk.

    Attributes:
        relative: Path below the output directory,
            e.g. "opencv_core/opencv_core_add.py".
        path: Absolute path of the file.
        line_count: Newline characters in the content.
        byte_count: Size of the file, UTF-8 encoded.
    """

    relative: str
    path: Path
    line_count: int
    byte_count: int

    @property
    def unit(self) -> str:
        return Path(self.relative).stem


@dataclass(frozen=True)
class WrittenPackage:
    output_dir: Path
    files: tuple[WrittenUnit, ...]

    @property
    def total_lines(self) -> int:
        return sum(f.line_count for f in self.files)

    @property
    def total_bytes(self) -> int:
        return sum(f.byte_count for f in self.files)


def write_unit(output_dir: Path, relative: str, content: str) -> WrittenUnit:
    """Write one unit below output_dir, creating directories as needed.

    Raises:
        ValueError: relative is empty.
        OSError: Propagated directly if the filesystem write fails.
    """
    if not relative:
        raise ValueError("Unit path must not be empty")
    file_path = Path(output_dir) / relative
    file_path.parent.mkdir(parents=True, exist_ok=True)
    encoded = content.encode("utf-8")
    file_path.write_bytes(encoded)
    return WrittenUnit(
        relative=relative,
        path=file_path.resolve(),
        line_count=content.count("\n"),
        byte_count=len(encoded),
    )


def write_units(output_dir: Path, result: GenerationResult) -> WrittenPackage:
    """Write operation units under <collection>/ and the manifest last.

    Partial writes are possible on OSError; there is no rollback.
    """
    files: list[WrittenUnit] = []
    for name, content in result.units.items():
        collection = result.unit_collections.get(name)
        if collection is None:
            continue
        files.append(write_unit(output_dir, f"{collection}/{name}.py", content))
    manifest = result.units.get(MANIFEST_UNIT_NAME)
    if manifest is not None:
        files.append(write_unit(output_dir, f"{MANIFEST_UNIT_NAME}.py", manifest))
    return WrittenPackage(output_dir=Path(output_dir), files=tuple(files))


# ===--- Summary report ---=== #


@dataclass(frozen=True)
class CollectionCount:
    collection: str
    entries: int
    matched: int
    conflicts: int


@dataclass(frozen=True)
class GenerationSummary:
    """Immutable data for the post-generation console report."""

    output_dir: str
    collections: tuple[CollectionCount, ...]
    unmatched: tuple[str, ...]
    skipped: tuple[str, ...]
    files: tuple[WrittenUnit, ...]
    total_lines: int = 0
    total_bytes: int = 0


def build_generation_summary(
    result: GenerationResult, written: WrittenPackage
) -> GenerationSummary:
    return GenerationSummary(
        output_dir=str(written.output_dir),
        collections=tuple(
            CollectionCount(
                collection=report.collection,
                entries=report.entry_count,
                matched=len(report.emitted),
                conflicts=len(report.conflicts),
            )
            for report in result.reports
        ),
        unmatched=result.unmatched,
        skipped=result.diagnostics,
        files=written.files,
        total_lines=written.total_lines,
        total_bytes=written.total_bytes,
    )


def format_generation_summary(summary: GenerationSummary) -> str:
    lines: list[str] = []
    lines.append("OpenCV operations generated:")
    lines.append("")
    lines.append(f"  Output:     {summary.output_dir}")
    lines.append("")
    lines.append("  Collections:")
    for count in summary.collections:
        row = f"    {count.collection:<18}{count.matched:>4}/{count.entries:<4} matched"
        if count.conflicts:
            row += f"  ({count.conflicts} overload conflicts)"
        lines.append(row)

    if summary.unmatched:
        lines.append("")
        lines.append("  Unmatched entries:")
        lines.extend(f"    {name}" for name in summary.unmatched)

    if summary.skipped:
        lines.append("")
        lines.append("  Skipped sources:")
        lines.extend(f"    {message}" for message in summary.skipped)

    lines.append("")
    lines.append("  Files written:")
    for written in summary.files:
        lines.append(f"    {written.relative:<48} {written.line_count:>6,} lines")

    lines.append("")
    lines.append(
        f"  Total: {summary.total_lines:,} lines ({summary.total_bytes:,} bytes) "
        f"across {len(summary.files)} files"
    )
    lines.append("")
    return "\n".join(lines)


def print_generation_summary(summary: GenerationSummary) -> None:
    print(format_generation_summary(summary), end="")


def run_generate(config: GenerateConfig) -> WrittenPackage:
    """Generate, write and report.

    Raises:
        UnmatchedEntryFailure: config.strict is set and an entry matched
            nothing. Files are still written before the failure.
        UnresolvedDefaultFailure, ArityMismatchFailure: Malformed catalog.
        OSError: Filesystem write failure.
    """
    result = generate_all_source_code(config.resource_dir, package=config.package)
    written = write_units(config.output_dir, result)
    print_generation_summary(build_generation_summary(result, written))
    if config.strict and result.unmatched:
        raise UnmatchedEntryFailure(result.unmatched)
    return written


# ===--- Main generation ---=== #


def _exit_with(err: CodedError) -> None:
    for line in err.report_lines():
        print(line)
    raise SystemExit(1) from err


def main():
    try:
        config = build_config()
    except ConfigError as err:
        _exit_with(err)

    try:
        run_generate(config)
    except GenerationError as err:
        _exit_with(err)
    except OSError as err:
        print(f"Error: {err}")
        raise SystemExit(1) from err
    except (RuntimeError, ValueError) as err:
        print(f"Internal error: {err}")
        raise SystemExit(1) from err


if __name__ == "__main__":
    main()
