from __future__ import annotations

from pathlib import Path
import subprocess
import sys


def _tool_root() -> Path:
    return Path(__file__).resolve().parents[2]


def _fixture_gl_xml() -> Path:
    return _tool_root() / "tests" / "fixtures" / "gl_minimal.xml"


def _run(args: list[str], cwd: Path | None = None) -> subprocess.CompletedProcess[str]:
    run_cwd = _tool_root() if cwd is None else cwd
    return subprocess.run(
        [sys.executable, "glgen.py", *args],
        cwd=run_cwd,
        capture_output=True,
        text=True,
        check=False,
    )


def _run_generate(output: Path, *extra_args: str) -> subprocess.CompletedProcess[str]:
    return _run(
        [
            "--version",
            "4.6",
            "--gl-xml",
            str(_fixture_gl_xml().resolve()),
            "--output",
            str(output.resolve()),
            *extra_args,
        ]
    )


def test_generate_with_explicit_paths_writes_one_module(tmp_path: Path) -> None:
    output = tmp_path / "generated" / "gl46.py"

    result = _run_generate(output)

    assert result.returncode == 0
    assert "OpenGL 4.6 (core) bindings generated:" in result.stdout
    assert "Verify: python -m py_compile" in result.stdout
    assert [p.name for p in output.parent.iterdir()] == ["gl46.py"]


def test_generated_module_compiles(tmp_path: Path) -> None:
    output = tmp_path / "gl46.py"
    assert _run_generate(output, "--all-extensions").returncode == 0

    result = subprocess.run(
        [sys.executable, "-m", "py_compile", str(output)],
        capture_output=True,
        text=True,
        check=False,
    )

    assert result.returncode == 0, result.stderr


def test_generation_is_deterministic(tmp_path: Path) -> None:
    first = tmp_path / "first.py"
    second = tmp_path / "second.py"

    assert _run_generate(first, "--ext", "GL_KHR_debug", "GL_ARB_bindless_texture").returncode == 0
    assert _run_generate(second, "--ext", "GL_ARB_bindless_texture", "GL_KHR_debug").returncode == 0

    assert first.read_bytes() == second.read_bytes()


def test_list_versions_is_read_only_operation(tmp_path: Path) -> None:
    output = tmp_path / "unused" / "gl.py"

    result = _run(
        [
            "--list-versions",
            "--gl-xml",
            str(_fixture_gl_xml().resolve()),
            "--output",
            str(output.resolve()),
        ]
    )

    assert result.returncode == 0
    assert "OpenGL versions in gl_minimal.xml (core profile):" in result.stdout
    assert not output.parent.exists()


def test_list_extensions_with_filter() -> None:
    result = _run(
        [
            "--list-extensions",
            "--filter",
            "arb",
            "--gl-xml",
            str(_fixture_gl_xml().resolve()),
        ]
    )

    assert result.returncode == 0
    assert "3 OpenGL extensions in gl_minimal.xml:" in result.stdout
    assert "GL_KHR_debug" not in result.stdout


def test_info_prints_extension_detail() -> None:
    result = _run(["--info", "GL_KHR_debug", "--gl-xml", str(_fixture_gl_xml().resolve())])

    assert result.returncode == 0
    assert "GL_KHR_debug (KHR extension)" in result.stdout
    assert "glDebugMessageCallbackKHR" in result.stdout


def test_info_for_unknown_extension_fails() -> None:
    result = _run(["--info", "GL_KHR_nothing", "--gl-xml", str(_fixture_gl_xml().resolve())])

    assert result.returncode == 1
    assert "GL_KHR_nothing" in result.stderr


def test_missing_registry_reports_fetch_hint(tmp_path: Path) -> None:
    result = _run(
        [
            "--version",
            "4.6",
            "--gl-xml",
            str(tmp_path / "missing.xml"),
            "--output",
            str(tmp_path / "gl46.py"),
        ]
    )

    assert result.returncode == 1
    assert "Config error [" in result.stdout
    assert "curl -o registry/gl.xml" in result.stdout
    assert not (tmp_path / "gl46.py").exists()


def test_conflicting_modes_are_rejected() -> None:
    result = _run(["--version", "4.6", "--list-versions"])

    assert result.returncode == 1
    assert "Config error [CONFLICT_GENERATE_DISCOVERY]" in result.stdout


def test_unsupported_extension_is_rejected(tmp_path: Path) -> None:
    output = tmp_path / "gl46.py"

    result = _run_generate(output, "--ext", "GL_OES_mapbuffer")

    assert result.returncode == 1
    assert "Config error [UNSUPPORTED_EXTENSION]" in result.stdout
    assert not output.exists()


def test_runs_from_another_working_directory(tmp_path: Path) -> None:
    output = tmp_path / "gl46.py"

    result = subprocess.run(
        [
            sys.executable,
            str(_tool_root() / "glgen.py"),
            "--version",
            "3.3",
            "--profile",
            "compatibility",
            "--gl-xml",
            str(_fixture_gl_xml().resolve()),
            "--output",
            str(output),
        ],
        cwd=tmp_path,
        capture_output=True,
        text=True,
        check=False,
    )

    assert result.returncode == 0, result.stdout
    assert "# | Target: gl 3.3 compatibility" in output.read_text(encoding="utf-8")
