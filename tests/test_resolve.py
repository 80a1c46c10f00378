from __future__ import annotations

from collections.abc import Callable
import itertools
import xml.etree.ElementTree as ET

import pytest

import glgen


_CORE_46_COMMANDS = [
    "glClear",
    "glClearColor",
    "glGetError",
    "glGetString",
    "glGetFloatv",
    "glTexImage2D",
    "glDrawArrays",
    "glGenBuffers",
    "glDeleteBuffers",
    "glBufferData",
    "glShaderSource",
    "glUniformMatrix4fv",
    "glMapBufferRange",
    "glFenceSync",
    "glDebugMessageCallback",
    "glCreateBuffers",
]

_REMOVAL_REGISTRY = """
<commands>
    <command><proto>void <name>glFoo</name></proto></command>
    <command><proto>void <name>glBar</name></proto></command>
    <command><proto>void <name>glBaz</name></proto></command>
</commands>
<feature api="gl" name="GL_VERSION_1_0" number="1.0">
    <require><command name="glFoo"/><command name="glBar"/></require>
</feature>
<feature api="gl" name="GL_VERSION_1_1" number="1.1">
    <remove profile="core"><command name="glFoo"/></remove>
    <remove><command name="glBar"/></remove>
</feature>
<feature api="gl" name="GL_VERSION_1_2" number="1.2">
    <require><command name="glBaz"/><command name="glFoo"/></require>
</feature>
"""


def _command_names(resolved: glgen.ResolvedFeatureSet) -> list[str]:
    return [command.name for command in resolved.commands]


def test_core_profile_drops_removed_commands(
    fixture_registry: glgen.Registry,
    make_request: Callable[..., glgen.GenerationRequest],
) -> None:
    resolved = glgen.resolve(fixture_registry, make_request("4.6"))

    assert _command_names(resolved) == _CORE_46_COMMANDS
    assert "GL_QUADS" not in {e.name for e in resolved.enums}
    assert resolved.extension_only_commands == frozenset()


def test_compatibility_profile_keeps_legacy_commands(
    fixture_registry: glgen.Registry,
    make_request: Callable[..., glgen.GenerationRequest],
) -> None:
    resolved = glgen.resolve(
        fixture_registry, make_request("4.6", profile="compatibility")
    )
    names = _command_names(resolved)

    assert {"glBegin", "glEnd", "glVertex3f", "glVertex3fv"} <= set(names)
    assert names.index("glBegin") < names.index("glGetError")
    assert "GL_ALL_ATTRIB_BITS" in {e.name for e in resolved.enums}


def test_removal_only_applies_from_its_own_version(
    fixture_registry: glgen.Registry,
    make_request: Callable[..., glgen.GenerationRequest],
) -> None:
    resolved = glgen.resolve(fixture_registry, make_request("3.0"))

    assert "glBegin" in _command_names(resolved)
    assert "glFenceSync" not in _command_names(resolved)


def test_later_require_restores_removed_name_at_first_position(
    make_registry_root: Callable[[str], ET.Element],
    make_request: Callable[..., glgen.GenerationRequest],
) -> None:
    registry = glgen.parse_registry(make_registry_root(_REMOVAL_REGISTRY))

    core_11 = glgen.resolve(registry, make_request("1.1"))
    core_12 = glgen.resolve(registry, make_request("1.2"))
    compat_11 = glgen.resolve(registry, make_request("1.1", profile="compatibility"))

    assert _command_names(core_11) == []
    assert _command_names(core_12) == ["glFoo", "glBaz"]
    assert _command_names(compat_11) == ["glFoo"]


def test_features_apply_in_version_order_regardless_of_declaration(
    make_registry_root: Callable[[str], ET.Element],
    make_request: Callable[..., glgen.GenerationRequest],
) -> None:
    registry = glgen.parse_registry(
        make_registry_root(
            """
            <commands>
                <command><proto>void <name>glOld</name></proto></command>
                <command><proto>void <name>glNew</name></proto></command>
            </commands>
            <feature api="gl" name="GL_VERSION_2_0" number="2.0">
                <require><command name="glNew"/></require>
            </feature>
            <feature api="gl" name="GL_VERSION_1_0" number="1.0">
                <require><command name="glOld"/></require>
            </feature>
            """
        )
    )

    features = glgen.applicable_features(registry, "gl", glgen.GLVersion(2, 0))
    resolved = glgen.resolve(registry, make_request("2.0"))

    assert [f.name for f in features] == ["GL_VERSION_1_0", "GL_VERSION_2_0"]
    assert _command_names(resolved) == ["glOld", "glNew"]


def test_extensions_layer_after_core_and_are_tracked(
    fixture_registry: glgen.Registry,
    make_request: Callable[..., glgen.GenerationRequest],
) -> None:
    resolved = glgen.resolve(
        fixture_registry,
        make_request("4.6", extensions=("GL_ARB_bindless_texture",)),
    )

    assert _command_names(resolved) == _CORE_46_COMMANDS + ["glGetTextureHandleARB"]
    assert resolved.extension_only_commands == frozenset({"glGetTextureHandleARB"})
    assert "GLuint64" in {t.name for t in resolved.typedefs}


def test_extension_already_in_core_adds_nothing_extension_only(
    fixture_registry: glgen.Registry,
    make_request: Callable[..., glgen.GenerationRequest],
) -> None:
    core = glgen.resolve(fixture_registry, make_request("4.6"))
    with_debug = glgen.resolve(
        fixture_registry, make_request("4.6", extensions=("GL_KHR_debug",))
    )

    assert with_debug.commands == core.commands
    assert with_debug.extension_only_commands == frozenset()


def test_extension_blocks_are_filtered_by_api(
    fixture_registry: glgen.Registry,
    make_request: Callable[..., glgen.GenerationRequest],
) -> None:
    gl_33 = glgen.resolve(
        fixture_registry, make_request("3.3", extensions=("GL_KHR_debug",))
    )
    gles2 = glgen.resolve(
        fixture_registry,
        make_request("2.0", api="gles2", profile=None, extensions=("GL_KHR_debug",)),
    )

    assert "glDebugMessageCallback" in _command_names(gl_33)
    assert gl_33.extension_only_commands == frozenset({"glDebugMessageCallback"})
    assert _command_names(gles2) == [
        "glClear",
        "glDrawArrays",
        "glGenBuffers",
        "glBufferData",
        "glDebugMessageCallbackKHR",
    ]
    assert "GL_DEBUG_OUTPUT_KHR" in {e.name for e in gles2.enums}
    assert "GL_DEBUG_OUTPUT" not in {e.name for e in gles2.enums}


def test_unknown_extension_is_a_config_error(
    fixture_registry: glgen.Registry,
    make_request: Callable[..., glgen.GenerationRequest],
) -> None:
    with pytest.raises(glgen.ConfigError) as exc_info:
        glgen.resolve(
            fixture_registry, make_request("4.6", extensions=("GL_ARB_nonexistent",))
        )

    assert exc_info.value.code == "UNKNOWN_EXTENSION"


def test_extension_for_another_api_is_unsupported(
    fixture_registry: glgen.Registry,
    make_request: Callable[..., glgen.GenerationRequest],
) -> None:
    with pytest.raises(glgen.ConfigError) as exc_info:
        glgen.resolve(
            fixture_registry, make_request("4.6", extensions=("GL_OES_mapbuffer",))
        )

    assert exc_info.value.code == "UNSUPPORTED_EXTENSION"
    assert "gles1|gles2" in (exc_info.value.suggestion or "")


def test_typedefs_are_closed_and_dependency_ordered(
    fixture_registry: glgen.Registry,
    make_request: Callable[..., glgen.GenerationRequest],
) -> None:
    resolved = glgen.resolve(fixture_registry, make_request("4.6"))
    names = [t.name for t in resolved.typedefs]

    assert names == [
        "GLvoid",
        "GLsync",
        "GLenum",
        "GLuint",
        "GLsizei",
        "GLchar",
        "GLDEBUGPROC",
        "GLbitfield",
        "GLfloat",
        "GLubyte",
        "GLint",
        "GLsizeiptr",
        "GLboolean",
        "GLintptr",
    ]
    assert "GLdouble" not in names
    assert "khrplatform" not in names


def test_enum_groups_are_restricted_to_active_members(
    fixture_registry: glgen.Registry,
    make_request: Callable[..., glgen.GenerationRequest],
) -> None:
    resolved = glgen.resolve(fixture_registry, make_request("4.6"))
    groups = {g.name: g for g in resolved.enum_groups}

    assert groups["ClearBufferMask"].members == (
        "GL_DEPTH_BUFFER_BIT",
        "GL_STENCIL_BUFFER_BIT",
        "GL_COLOR_BUFFER_BIT",
    )
    assert groups["ClearBufferMask"].is_bitmask is True
    assert "BufferUsageARB" in groups
    assert [g.name for g in resolved.enum_groups][:2] == ["ClearBufferMask", "AttribMask"]


def test_resolve_is_deterministic(
    fixture_registry: glgen.Registry,
    make_request: Callable[..., glgen.GenerationRequest],
) -> None:
    request = make_request(
        "4.6", extensions=("GL_KHR_debug", "GL_ARB_bindless_texture")
    )

    assert glgen.resolve(fixture_registry, request) == glgen.resolve(
        fixture_registry, request
    )


def _removed_between(
    registry: glgen.Registry, low: glgen.GLVersion, high: glgen.GLVersion, profile: str
) -> set[tuple[str, str]]:
    removed: set[tuple[str, str]] = set()
    for feature in registry.features:
        if feature.api != "gl" or not low < feature.version <= high:
            continue
        for block in feature.blocks:
            if block.action != "remove" or block.profile not in (None, profile):
                continue
            removed.update((entry.kind, entry.name) for entry in block.entries)
    return removed


@pytest.mark.parametrize("profile", ["core", "compatibility"])
def test_later_versions_keep_everything_not_removed_in_between(
    fixture_registry: glgen.Registry,
    make_request: Callable[..., glgen.GenerationRequest],
    profile: str,
) -> None:
    versions = sorted({f.version for f in fixture_registry.features if f.api == "gl"})
    resolved = {
        version: glgen.resolve(
            fixture_registry, make_request(f"{version.major}.{version.minor}", profile=profile)
        )
        for version in versions
    }

    def _symbols(result: glgen.ResolvedFeatureSet) -> set[tuple[str, str]]:
        return {("command", c.name) for c in result.commands} | {
            ("enum", e.name) for e in result.enums
        }

    for low, high in itertools.combinations(versions, 2):
        removed = _removed_between(fixture_registry, low, high, profile)
        missing = _symbols(resolved[low]) - removed - _symbols(resolved[high])
        assert not missing, f"{low} -> {high} lost {sorted(missing)}"
