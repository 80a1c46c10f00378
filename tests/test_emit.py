from __future__ import annotations

from collections.abc import Callable

import pytest

import glgen


_SECTION_BANNERS = (
    "# ========= TYPE ALIASES =========",
    "# ========= BITMASK TYPES =========",
    "# ========= ENUM CONSTANTS =========",
    "# ========= FUNCTION TABLE =========",
    "# ========= LOADER =========",
)


def _make_write_config(
    *,
    source_label: str = "gl.xml",
    api: str = "gl",
    major: int = 4,
    minor: int = 6,
    profile: str | None = "core",
    extensions: frozenset[str] = frozenset(),
    all_extensions: bool = False,
) -> glgen.WriteConfig:
    return glgen.WriteConfig(
        source_label=source_label,
        api=api,
        target_version=glgen.GLVersion(major, minor),
        profile=profile,
        extensions=extensions,
        all_extensions=all_extensions,
    )


@pytest.fixture
def core_46_source(
    fixture_registry: glgen.Registry,
    make_request: Callable[..., glgen.GenerationRequest],
) -> str:
    return glgen.generate_bindings(fixture_registry, make_request("4.6")).source


def test_format_file_header_without_extensions() -> None:
    lines = glgen.format_file_header(_make_write_config())

    assert lines == [
        "# x-------------------------------------------x #",
        "# | OpenGL 4.6 (core) bindings for Python",
        "# | Generated by glgen",
        "# | Source: gl.xml",
        "# | Target: gl 4.6 core",
        "# x-------------------------------------------x #",
    ]


def test_format_file_header_lists_sorted_extensions() -> None:
    lines = glgen.format_file_header(
        _make_write_config(extensions=frozenset({"GL_KHR_debug", "GL_ARB_bindless_texture"}))
    )

    assert "# | Extensions: GL_ARB_bindless_texture, GL_KHR_debug" in lines


def test_format_file_header_marks_all_extensions() -> None:
    lines = glgen.format_file_header(_make_write_config(all_extensions=True))

    assert "# | Extensions: all" in lines


def test_format_file_header_for_profileless_api() -> None:
    lines = glgen.format_file_header(
        _make_write_config(api="gles2", major=3, minor=2, profile=None)
    )

    assert lines[1] == "# | OpenGL ES 3.2 bindings for Python"
    assert lines[4] == "# | Target: gles2 3.2"


def test_format_file_header_rejects_empty_source_label() -> None:
    with pytest.raises(ValueError):
        glgen.format_file_header(_make_write_config(source_label=""))


def test_emit_places_sections_in_fixed_order(core_46_source: str) -> None:
    positions = [core_46_source.index(banner) for banner in _SECTION_BANNERS]

    assert positions == sorted(positions)
    assert core_46_source.startswith("# x---")
    assert core_46_source.endswith("\n")
    assert not core_46_source.endswith("\n\n")


def test_emit_is_byte_identical_across_runs(
    fixture_registry: glgen.Registry,
    make_request: Callable[..., glgen.GenerationRequest],
) -> None:
    request = make_request(
        "4.6", extensions=("GL_KHR_debug", "GL_ARB_bindless_texture", "GL_ARB_shader_objects")
    )

    first = glgen.generate_bindings(fixture_registry, request).source
    second = glgen.generate_bindings(fixture_registry, request).source

    assert first == second


def test_emitted_module_compiles(core_46_source: str) -> None:
    compile(core_46_source, "gl46.py", "exec")


def test_type_aliases_are_dependency_ordered(core_46_source: str) -> None:
    assert "Enum = ctypes.c_uint\n" in core_46_source
    assert "Float = ctypes.c_float\n" in core_46_source
    assert "Sync = ctypes.c_void_p\n" in core_46_source
    assert "Void = None\n" in core_46_source
    assert core_46_source.index("Enum = ") < core_46_source.index("DEBUGPROC = ")


def test_funcpointer_typedefs_become_callback_prototypes(core_46_source: str) -> None:
    assert (
        "DEBUGPROC = _FUNCTYPE(None, Enum, Enum, Uint, Enum, Sizei, "
        "ctypes.POINTER(Char), ctypes.c_void_p)\n"
    ) in core_46_source
    assert core_46_source.index("_FUNCTYPE = ") < core_46_source.index("DEBUGPROC = ")
    assert core_46_source.index("Char = ") < core_46_source.index("DEBUGPROC = ")


def test_bitmask_groups_become_classes(core_46_source: str) -> None:
    assert "class ClearBufferMask(_Bitmask):" in core_46_source
    assert '        "COLOR_BUFFER_BIT": 0x00004000,' in core_46_source
    assert "    _MASK = 0x00004500" in core_46_source
    assert (
        "ClearBufferMask.COLOR_BUFFER_BIT = ClearBufferMask._member(0x00004000)"
        in core_46_source
    )
    assert "class PrimitiveType" not in core_46_source
    assert "ACCUM_BUFFER_BIT" not in core_46_source


def test_enum_constants_are_grouped_once(core_46_source: str) -> None:
    assert "# --- ClearBufferMask ---" in core_46_source
    assert "# --- ungrouped ---" in core_46_source
    assert core_46_source.count("\nCOLOR_BUFFER_BIT = 0x00004000\n") == 1
    assert "\nTIMEOUT_IGNORED = 0xFFFFFFFFFFFFFFFF\n" in core_46_source
    assert "\nNO_ERROR = 0\n" in core_46_source


def test_enum_names_are_indexed_by_value(core_46_source: str) -> None:
    assert '    0x0000: ("GL_FALSE", "GL_POINTS", "GL_NO_ERROR"),\n' in core_46_source
    assert '    0x0BA2: ("GL_VIEWPORT",),\n' in core_46_source
    assert '    0xFFFFFFFFFFFFFFFF: ("GL_TIMEOUT_IGNORED",),\n' in core_46_source
    assert "GL_ACCUM_BUFFER_BIT" not in core_46_source
    assert core_46_source.index("    0x0000:") < core_46_source.index("    0x0BA2:")
    assert core_46_source.index("_ENUM_NAMES = {") < core_46_source.index("# ========= FUNCTION TABLE")


def test_function_table_lists_one_slot_per_canonical_command(core_46_source: str) -> None:
    assert (
        '    _Slot("clear", "glClear", (), True, ("mask",), _FUNCTYPE(None, Bitfield)),'
        in core_46_source
    )
    assert (
        '    _Slot("gen_buffers", "glGenBuffers", ("glGenBuffersARB",), True, '
        '("n", "buffers"), _FUNCTYPE(None, Sizei, ctypes.POINTER(Uint))),'
        in core_46_source
    )
    assert (
        '("shader", "count", "string", "length"), '
        "_FUNCTYPE(None, Uint, Sizei, ctypes.POINTER(ctypes.POINTER(Char)), ctypes.POINTER(Int))),"
        in core_46_source
    )
    assert "# 16 slots" in core_46_source
    assert '    "glGenBuffersARB": "gen_buffers",' in core_46_source


def test_header_metadata_defaults_to_request(
    fixture_registry: glgen.Registry,
    make_request: Callable[..., glgen.GenerationRequest],
) -> None:
    request = make_request("3.3", profile="compatibility")
    resolved = glgen.resolve(fixture_registry, request)
    symbols = glgen.build_symbol_table(resolved)
    mapper = glgen.TypeMapper(resolved.typedefs)
    commands = glgen.aggregate(resolved.commands, request.fallback_policy, mapper)

    source = glgen.emit(resolved, symbols, commands, mapper)

    assert "# | OpenGL 3.3 (compatibility) bindings for Python" in source
    assert '"""OpenGL 3.3 (compatibility) bindings. Generated by glgen."""' in source


def test_emit_requires_a_complete_symbol_table(
    fixture_registry: glgen.Registry,
    make_request: Callable[..., glgen.GenerationRequest],
) -> None:
    resolved = glgen.resolve(fixture_registry, make_request("4.6"))
    mapper = glgen.TypeMapper(resolved.typedefs)
    commands = glgen.aggregate(resolved.commands, glgen.FallbackPolicy(), mapper)

    with pytest.raises(KeyError):
        glgen.emit(resolved, glgen.SymbolTable(), commands, mapper)


def test_thread_local_style_adds_current_table_helpers(
    fixture_registry: glgen.Registry,
    make_request: Callable[..., glgen.GenerationRequest],
    core_46_source: str,
) -> None:
    source = glgen.generate_bindings(
        fixture_registry, make_request("4.6", style=glgen.EmitStyle.THREAD_LOCAL)
    ).source

    assert "import threading" in source
    assert "def make_current(resolver):" in source
    assert "def current():" in source
    assert "import threading" not in core_46_source
    assert "def make_current" not in core_46_source


@pytest.mark.parametrize(
    ("style", "expected"),
    [
        (glgen.EmitStyle.TABLE, ["import collections", "import ctypes", "import enum", "import sys", "import types"]),
        (
            glgen.EmitStyle.THREAD_LOCAL,
            ["import collections", "import ctypes", "import enum", "import sys", "import threading", "import types"],
        ),
    ],
)
def test_format_import_block(style: glgen.EmitStyle, expected: list[str]) -> None:
    assert glgen.format_import_block(style) == expected


def test_loader_returns_failure_without_touching_discarded_table() -> None:
    lines = glgen.generate_loader(glgen.EmitStyle.TABLE)

    failure = lines.index("            if slot.mandatory:")
    assert lines[failure + 1] == "                return MissingMandatorySymbol(slot.name)"
    assert "LoadState.FAILED" not in "\n".join(lines)
