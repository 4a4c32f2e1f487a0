import argparse
import shutil
import sys
from collections.abc import Callable
from pathlib import Path

import pytest

GENERATOR_DIR = Path(__file__).resolve().parent.parent
if str(GENERATOR_DIR) not in sys.path:
    sys.path.insert(0, str(GENERATOR_DIR))

import opgen  # noqa: E402

FIXTURES_DIR = Path(__file__).resolve().parent / "fixtures"


@pytest.fixture
def fixtures_dir() -> Path:
    return FIXTURES_DIR


@pytest.fixture
def core_text() -> str:
    return (FIXTURES_DIR / "opencv_core.txt").read_text(encoding="utf-8")


@pytest.fixture
def imgproc_text() -> str:
    return (FIXTURES_DIR / "opencv_imgproc.txt").read_text(encoding="utf-8")


@pytest.fixture
def resource_dir(tmp_path: Path) -> Path:
    resources = tmp_path / "resources"
    resources.mkdir()
    for name in ("opencv_core.txt", "opencv_imgproc.txt"):
        shutil.copy(FIXTURES_DIR / name, resources / name)
    return resources


def as_listing(body: str, module: str = "snippet") -> str:
    """Wrap class-body text in a module class, the way JavaCPP listings are laid out."""
    return f"public class {module} {{\n{body}\n}}\n"


@pytest.fixture
def make_unit() -> Callable[[str], opgen.DeclarationUnit]:
    """Repair and parse a snippet of module-class body text."""

    def _make_unit(text: str, source: str = "snippet.txt") -> opgen.DeclarationUnit:
        return opgen.parse_declarations(
            opgen.repair_declaration_text(as_listing(text)), source
        )

    return _make_unit


@pytest.fixture
def core_unit(core_text: str) -> opgen.DeclarationUnit:
    return opgen.parse_declarations(
        opgen.repair_declaration_text(core_text), "opencv_core.txt"
    )


@pytest.fixture
def imgproc_unit(imgproc_text: str) -> opgen.DeclarationUnit:
    return opgen.parse_declarations(
        opgen.repair_declaration_text(imgproc_text), "opencv_imgproc.txt"
    )


@pytest.fixture
def core_symbols(core_unit: opgen.DeclarationUnit) -> opgen.SymbolTable:
    symbols = opgen.collect_enum_symbols(core_unit, opgen.SymbolTable(), "opencv_core")
    return opgen.collect_class_symbols(core_unit, symbols, "opencv_core")


@pytest.fixture
def make_args(resource_dir: Path, tmp_path: Path) -> Callable[..., argparse.Namespace]:
    def _make_args(**overrides: object) -> argparse.Namespace:
        base_args: dict[str, object] = {
            "resource_dir": resource_dir,
            "output_dir": tmp_path / "out",
            "package": "generated",
            "strict": False,
        }
        base_args.update(overrides)
        return argparse.Namespace(**base_args)

    return _make_args
