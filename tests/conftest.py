import argparse
import importlib.util
import sys
import xml.etree.ElementTree as ET
from collections.abc import Callable
from pathlib import Path
from types import ModuleType

import pytest

GENERATOR_DIR = Path(__file__).resolve().parent.parent
if str(GENERATOR_DIR) not in sys.path:
    sys.path.insert(0, str(GENERATOR_DIR))

import glgen  # noqa: E402

FIXTURE_GL_XML = GENERATOR_DIR / "tests" / "fixtures" / "gl_minimal.xml"


@pytest.fixture
def existing_paths(tmp_path: Path) -> dict[str, Path]:
    gl_xml = tmp_path / "gl.xml"
    gl_xml.write_text("<registry />\n", encoding="utf-8")

    output = tmp_path / "out" / "gl_bindings.py"
    return {
        "gl_xml": gl_xml,
        "output": output,
    }


@pytest.fixture
def missing_path(tmp_path: Path) -> Path:
    return tmp_path / "missing"


@pytest.fixture
def make_args(existing_paths: dict[str, Path]) -> Callable[..., argparse.Namespace]:
    def _make_args(**overrides: object) -> argparse.Namespace:
        base_args: dict[str, object] = {
            "api": "gl",
            "version": None,
            "profile": None,
            "ext": None,
            "all_extensions": False,
            "fallback": None,
            "fallback_mode": "all",
            "optional_extension_commands": False,
            "style": "table",
            "gl_xml": existing_paths["gl_xml"],
            "output": existing_paths["output"],
            "list_versions": False,
            "list_extensions": False,
            "info": None,
            "filter": None,
        }
        base_args.update(overrides)
        return argparse.Namespace(**base_args)

    return _make_args


@pytest.fixture
def make_registry_root() -> Callable[[str], ET.Element]:
    def _make_registry_root(inner_xml: str) -> ET.Element:
        return ET.fromstring(f"<registry>{inner_xml}</registry>")

    return _make_registry_root


@pytest.fixture
def fixture_gl_xml() -> Path:
    return FIXTURE_GL_XML


@pytest.fixture(scope="session")
def fixture_registry() -> glgen.Registry:
    return glgen.load_registry_file(FIXTURE_GL_XML)


@pytest.fixture
def make_request() -> Callable[..., glgen.GenerationRequest]:
    def _make_request(
        version: str = "4.6",
        *,
        api: str = "gl",
        profile: str | None = "core",
        extensions: tuple[str, ...] = (),
        **overrides: object,
    ) -> glgen.GenerationRequest:
        major, minor = version.split(".")
        return glgen.GenerationRequest(
            api=api,
            version=glgen.GLVersion(int(major), int(minor)),
            profile=profile,
            extensions=frozenset(extensions),
            **overrides,
        )

    return _make_request


@pytest.fixture
def import_artifact(tmp_path: Path) -> Callable[[str], ModuleType]:
    counter = iter(range(1_000_000))

    def _import_artifact(source: str) -> ModuleType:
        module_name = f"glgen_artifact_{next(counter)}"
        path = tmp_path / f"{module_name}.py"
        path.write_text(source, encoding="utf-8")
        spec = importlib.util.spec_from_file_location(module_name, path)
        assert spec is not None and spec.loader is not None
        module = importlib.util.module_from_spec(spec)
        sys.modules[module_name] = module
        try:
            spec.loader.exec_module(module)
        finally:
            sys.modules.pop(module_name, None)
        return module

    return _import_artifact
