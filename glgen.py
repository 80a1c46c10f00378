"""OpenGL ctypes bindings generator.

Generates a typed Python binding module from the Khronos gl.xml registry:
type aliases, bitmask wrappers, enum constants, a function-pointer table
and the loader that fills it.

Usage:
    python glgen.py --version 4.6 --profile core --gl-xml gl.xml --output gl46.py
"""

import argparse
import enum
import keyword
import re
import xml.etree.ElementTree as ET
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import NamedTuple

PROJECT_ROOT = Path(__file__).parent
DEFAULT_GL_XML = PROJECT_ROOT / "registry" / "gl.xml"
DEFAULT_OUTPUT = PROJECT_ROOT / "build" / "gl_bindings.py"


# ===--- CLI config contracts ---=== #


class GLVersion(NamedTuple):
    major: int
    minor: int

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}"


class FallbackMode(enum.Enum):
    """Which alias names the loader may query after the canonical one."""

    ALL = "all"
    RESOLVED = "resolved"
    NONE = "none"


class OptionalPolicy(enum.Enum):
    """Whether extension-only commands may be missing at load time."""

    MANDATORY = "mandatory"
    OPTIONAL = "optional"


class EmitStyle(enum.Enum):
    """Output shape of the generated module."""

    TABLE = "table"
    THREAD_LOCAL = "thread-local"


DEFAULT_FALLBACK_ORDER: tuple[str, ...] = ("", "ARB", "KHR", "OES", "EXT", "*")
"""Default canonical-name priority: unsuffixed core, then ARB, KHR, OES, EXT,
then any other vendor. "" is the unsuffixed class and "*" any vendor not listed."""


@dataclass(frozen=True)
class FallbackPolicy:
    """Explicit priority used to pick canonical names and order loader fallbacks.

    Attributes:
        order: Suffix classes from most to least preferred. "" is the
            unsuffixed core name, "*" matches any vendor suffix not listed.
        mode: Which alias names become loader fallbacks.
    """

    order: tuple[str, ...] = DEFAULT_FALLBACK_ORDER
    mode: FallbackMode = FallbackMode.ALL

    def rank(self, name: str) -> tuple[int, str]:
        """Sort key for a command name; ties break alphabetically."""
        suffix = vendor_suffix(name)
        if suffix in self.order:
            return self.order.index(suffix), name
        if suffix and "*" in self.order:
            return self.order.index("*"), name
        return len(self.order), name


@dataclass(frozen=True)
class GenerationRequest:
    api: str
    version: GLVersion
    profile: str | None
    extensions: frozenset[str] = frozenset()
    fallback_policy: FallbackPolicy = field(default_factory=FallbackPolicy)
    optional_policy: OptionalPolicy = OptionalPolicy.MANDATORY
    style: EmitStyle = EmitStyle.TABLE


@dataclass(frozen=True)
class GenerateConfig:
    request: GenerationRequest
    all_extensions: bool
    gl_xml: Path
    output: Path


@dataclass(frozen=True)
class DiscoveryConfig:
    command: str
    api: str
    profile: str | None
    filter_text: str | None
    info_extension: str | None
    gl_xml: Path


VALID_ERROR_CODES = {
    "INVALID_API",
    "INVALID_VERSION",
    "MISSING_VERSION",
    "INVALID_PROFILE",
    "INVALID_EXTENSION_NAME",
    "UNKNOWN_EXTENSION",
    "UNSUPPORTED_EXTENSION",
    "INVALID_FALLBACK",
    "INVALID_STYLE",
    "CONFLICT_EXT_FLAGS",
    "CONFLICT_GENERATE_DISCOVERY",
    "FILTER_WITHOUT_LIST",
    "PATH_NOT_FOUND",
}

API_FAMILIES: dict[str, frozenset[str]] = {
    "gl": frozenset({"gl", "glcore"}),
    "gles1": frozenset({"gles1"}),
    "gles2": frozenset({"gles2"}),
    "glsc2": frozenset({"glsc2"}),
}
API_LABELS = {
    "gl": "OpenGL",
    "gles1": "OpenGL ES",
    "gles2": "OpenGL ES",
    "glsc2": "OpenGL SC",
}
KNOWN_VERSIONS: dict[str, tuple[str, ...]] = {
    "gl": (
        "1.0", "1.1", "1.2", "1.3", "1.4", "1.5", "2.0", "2.1",
        "3.0", "3.1", "3.2", "3.3",
        "4.0", "4.1", "4.2", "4.3", "4.4", "4.5", "4.6",
    ),
    "gles1": ("1.0",),
    "gles2": ("2.0", "3.0", "3.1", "3.2"),
    "glsc2": ("2.0",),
}
VALID_PROFILES: dict[str, tuple[str, ...]] = {
    "gl": ("core", "compatibility"),
    "gles1": ("common",),
    "gles2": (),
    "glsc2": (),
}
DEFAULT_PROFILES: dict[str, str | None] = {
    "gl": "core",
    "gles1": "common",
    "gles2": None,
    "glsc2": None,
}
_EXT_NAME_RE = re.compile(r"^GL_[A-Za-z0-9]+_[A-Za-z0-9_]+$")
_GL_XML_HINT = (
    "Fetch the registry:\n"
    "  curl -o registry/gl.xml https://raw.githubusercontent.com/KhronosGroup/OpenGL-Registry/main/xml/gl.xml\n"
    "Or pass a custom path: --gl-xml /your/path/to/gl.xml"
)


class ConfigError(Exception):
    def __init__(self, code: str, message: str, suggestion: str | None = None):
        if code not in VALID_ERROR_CODES:
            raise ValueError(f"Unknown config error code: {code}")
        super().__init__(message)
        self.code = code
        self.message = message
        self.suggestion = suggestion


def validate_api(raw: str) -> str:
    if raw in API_FAMILIES:
        return raw
    raise ConfigError(
        "INVALID_API",
        f"Unsupported API: {raw}",
        f"Use one of: {', '.join(API_FAMILIES)}.",
    )


def parse_version(raw: str, api: str = "gl") -> GLVersion:
    known = KNOWN_VERSIONS[api]
    if raw not in known:
        raise ConfigError(
            "INVALID_VERSION",
            f"Unsupported {API_LABELS[api]} version: {raw}",
            f"Use one of: {', '.join(known)}.",
        )
    major_text, minor_text = raw.split(".", maxsplit=1)
    return GLVersion(int(major_text), int(minor_text))


def validate_profile(raw: str | None, api: str) -> str | None:
    if raw is None:
        return DEFAULT_PROFILES[api]
    valid = VALID_PROFILES[api]
    if raw in valid:
        return raw
    hint = f"Use one of: {', '.join(valid)}." if valid else f"Omit --profile for {api}."
    raise ConfigError("INVALID_PROFILE", f"Unsupported profile for {api}: {raw}", hint)


def validate_extension_name(name: str) -> str:
    if _EXT_NAME_RE.match(name):
        return name
    raise ConfigError(
        "INVALID_EXTENSION_NAME",
        f"Invalid extension name: {name}",
        "Extension names must match GL_<VENDOR>_<name> (for example GL_ARB_debug_output).",
    )


def parse_fallback_order(tokens: list[str] | None) -> tuple[str, ...]:
    """Turn --fallback tokens into a FallbackPolicy order.

    "core" names the unsuffixed class and "*" any unlisted vendor; every
    other token must be a known vendor suffix.

    Raises:
        ConfigError: INVALID_FALLBACK for unknown or repeated tokens.
    """
    if not tokens:
        return DEFAULT_FALLBACK_ORDER
    order: list[str] = []
    for token in tokens:
        if token == "core":
            suffix = ""
        elif token == "*" or token in VENDOR_SUFFIXES:
            suffix = token
        else:
            raise ConfigError(
                "INVALID_FALLBACK",
                f"Unknown fallback suffix: {token}",
                "Use core, *, or a vendor suffix such as ARB, KHR, EXT, NV.",
            )
        if suffix in order:
            raise ConfigError(
                "INVALID_FALLBACK",
                f"Fallback suffix listed twice: {token}",
                "List each suffix class once, most preferred first.",
            )
        order.append(suffix)
    return tuple(order)


def validate_path_exists(
    path: Path | None, flag: str, suggestion: str | None = None
) -> Path:
    if path is None:
        raise ConfigError(
            "PATH_NOT_FOUND",
            f"{flag} is required: no path provided.",
            suggestion or f"Pass the path explicitly: {flag} /path/to/resource",
        )
    if path.exists():
        return path
    raise ConfigError(
        "PATH_NOT_FOUND",
        f"Path for {flag} does not exist: {path}",
        suggestion or "Provide an existing path for this flag.",
    )


def build_argument_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Generate OpenGL ctypes bindings from gl.xml"
    )

    parser.add_argument("--api", type=str, default="gl")
    parser.add_argument("--version", type=str, default=None)
    parser.add_argument("--profile", type=str, default=None)

    ext_group = parser.add_mutually_exclusive_group()
    ext_group.add_argument("--ext", action="append", nargs="+", default=None)
    ext_group.add_argument("--all-extensions", action="store_true", default=False)

    parser.add_argument("--fallback", nargs="+", default=None)
    parser.add_argument(
        "--fallback-mode",
        choices=[mode.value for mode in FallbackMode],
        default=FallbackMode.ALL.value,
    )
    parser.add_argument(
        "--optional-extension-commands", action="store_true", default=False
    )
    parser.add_argument(
        "--style",
        choices=[style.value for style in EmitStyle],
        default=EmitStyle.TABLE.value,
    )

    parser.add_argument("--gl-xml", type=Path, default=DEFAULT_GL_XML)
    parser.add_argument("--output", type=Path, default=DEFAULT_OUTPUT)

    discovery_group = parser.add_mutually_exclusive_group()
    discovery_group.add_argument("--list-versions", action="store_true", default=False)
    discovery_group.add_argument(
        "--list-extensions", action="store_true", default=False
    )
    discovery_group.add_argument("--info", type=str, default=None)

    parser.add_argument("--filter", type=str, default=None)

    return parser


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = build_argument_parser()
    return parser.parse_args(argv)


def normalize_extensions(raw_extensions: object) -> tuple[str, ...]:
    if raw_extensions is None:
        return tuple()
    if not isinstance(raw_extensions, list):
        raise ConfigError(
            "INVALID_EXTENSION_NAME",
            f"Invalid --ext value type: {type(raw_extensions).__name__}",
            "Pass extension names as --ext GL_VENDOR_name.",
        )

    normalized: list[str] = []
    for entry in raw_extensions:
        if isinstance(entry, str):
            normalized.append(entry)
            continue
        if isinstance(entry, list):
            for name in entry:
                if not isinstance(name, str):
                    raise ConfigError(
                        "INVALID_EXTENSION_NAME",
                        f"Invalid extension name type: {type(name).__name__}",
                        "Pass extension names as --ext GL_VENDOR_name.",
                    )
                normalized.append(name)
            continue
        raise ConfigError(
            "INVALID_EXTENSION_NAME",
            f"Invalid --ext entry type: {type(entry).__name__}",
            "Pass extension names as --ext GL_VENDOR_name.",
        )

    return tuple(normalized)


def _parse_enum_choice(enum_type, raw: str, code: str, flag: str):
    try:
        return enum_type(raw)
    except ValueError as err:
        choices = ", ".join(member.value for member in enum_type)
        raise ConfigError(
            code, f"Invalid {flag} value: {raw}", f"Use one of: {choices}."
        ) from err


def validate_config(args: argparse.Namespace) -> GenerateConfig | DiscoveryConfig:
    raw_extensions = normalize_extensions(args.ext)
    has_generate_input = bool(
        args.version or raw_extensions or args.all_extensions or args.fallback
    )
    has_discovery_command = bool(
        args.list_versions or args.list_extensions or args.info
    )

    if args.filter and not args.list_extensions:
        raise ConfigError(
            "FILTER_WITHOUT_LIST",
            "--filter requires --list-extensions.",
            "Add --list-extensions or remove --filter.",
        )

    if has_generate_input and has_discovery_command:
        raise ConfigError(
            "CONFLICT_GENERATE_DISCOVERY",
            "Generate flags cannot be combined with discovery flags.",
            "Choose either generate mode or one discovery command.",
        )

    if raw_extensions and args.all_extensions:
        raise ConfigError(
            "CONFLICT_EXT_FLAGS",
            "Cannot combine --ext with --all-extensions.",
            "Use --ext with one or more names, or --all-extensions.",
        )

    api = validate_api(args.api)
    profile = validate_profile(args.profile, api)

    if has_discovery_command:
        gl_xml = validate_path_exists(args.gl_xml, "--gl-xml", _GL_XML_HINT)
        if args.list_versions:
            command = "list-versions"
        elif args.list_extensions:
            command = "list-extensions"
        else:
            command = "info"

        info_extension = (
            validate_extension_name(args.info) if args.info is not None else None
        )
        return DiscoveryConfig(
            command=command,
            api=api,
            profile=profile,
            filter_text=args.filter,
            info_extension=info_extension,
            gl_xml=gl_xml,
        )

    if args.version is None:
        raise ConfigError(
            "MISSING_VERSION",
            "Generate mode requires --version.",
            f"Pass --version with one of: {', '.join(KNOWN_VERSIONS[api])}.",
        )

    version = parse_version(args.version, api)
    gl_xml = validate_path_exists(args.gl_xml, "--gl-xml", _GL_XML_HINT)
    extensions = (
        frozenset(validate_extension_name(name) for name in raw_extensions)
        if raw_extensions
        else frozenset()
    )
    policy = FallbackPolicy(
        order=parse_fallback_order(args.fallback),
        mode=_parse_enum_choice(
            FallbackMode, args.fallback_mode, "INVALID_FALLBACK", "--fallback-mode"
        ),
    )
    request = GenerationRequest(
        api=api,
        version=version,
        profile=profile,
        extensions=extensions,
        fallback_policy=policy,
        optional_policy=(
            OptionalPolicy.OPTIONAL
            if args.optional_extension_commands
            else OptionalPolicy.MANDATORY
        ),
        style=_parse_enum_choice(EmitStyle, args.style, "INVALID_STYLE", "--style"),
    )

    return GenerateConfig(
        request=request,
        all_extensions=bool(args.all_extensions),
        gl_xml=gl_xml,
        output=args.output,
    )


def build_config(argv: list[str] | None = None) -> GenerateConfig | DiscoveryConfig:
    return validate_config(parse_args(argv))


# ===--- Generation errors ---=== #


class GenerationError(Exception):
    """Base class for fatal generation-time errors. No partial output follows."""


class SpecParseError(GenerationError):
    def __init__(self, message: str, element: str | None = None):
        super().__init__(f"{message} (at {element})" if element else message)
        self.message = message
        self.element = element


class UnknownTypeError(GenerationError):
    def __init__(self, type_string: str):
        super().__init__(
            f"No target mapping for type {type_string!r}; extend PRIMITIVE_TYPES"
        )
        self.type_string = type_string


class DuplicateDefinitionError(GenerationError):
    def __init__(self, original_a: str, original_b: str, identifier: str):
        super().__init__(
            f"{original_a!r} and {original_b!r} both translate to {identifier!r}"
        )
        self.original_a = original_a
        self.original_b = original_b
        self.identifier = identifier


# ===--- Constants ---=== #

# Base identifiers with a fixed ctypes equivalent; None is void.
PRIMITIVE_TYPES: dict[str, str | None] = {
    "void": None,
    "char": "ctypes.c_char",
    "signed char": "ctypes.c_byte",
    "unsigned char": "ctypes.c_ubyte",
    "short": "ctypes.c_short",
    "unsigned short": "ctypes.c_ushort",
    "int": "ctypes.c_int",
    "signed": "ctypes.c_int",
    "signed int": "ctypes.c_int",
    "unsigned": "ctypes.c_uint",
    "unsigned int": "ctypes.c_uint",
    "long": "ctypes.c_long",
    "unsigned long": "ctypes.c_ulong",
    "long long": "ctypes.c_longlong",
    "unsigned long long": "ctypes.c_ulonglong",
    "float": "ctypes.c_float",
    "double": "ctypes.c_double",
    "_Bool": "ctypes.c_bool",
    "bool": "ctypes.c_bool",
    "int8_t": "ctypes.c_int8",
    "uint8_t": "ctypes.c_uint8",
    "int16_t": "ctypes.c_int16",
    "uint16_t": "ctypes.c_uint16",
    "int32_t": "ctypes.c_int32",
    "uint32_t": "ctypes.c_uint32",
    "int64_t": "ctypes.c_int64",
    "uint64_t": "ctypes.c_uint64",
    "size_t": "ctypes.c_size_t",
    "ssize_t": "ctypes.c_ssize_t",
    "ptrdiff_t": "ctypes.c_ssize_t",
    "intptr_t": "ctypes.c_ssize_t",
    "uintptr_t": "ctypes.c_size_t",
    "khronos_int8_t": "ctypes.c_int8",
    "khronos_uint8_t": "ctypes.c_uint8",
    "khronos_int16_t": "ctypes.c_int16",
    "khronos_uint16_t": "ctypes.c_uint16",
    "khronos_int32_t": "ctypes.c_int32",
    "khronos_uint32_t": "ctypes.c_uint32",
    "khronos_int64_t": "ctypes.c_int64",
    "khronos_uint64_t": "ctypes.c_uint64",
    "khronos_float_t": "ctypes.c_float",
    "khronos_intptr_t": "ctypes.c_ssize_t",
    "khronos_uintptr_t": "ctypes.c_size_t",
    "khronos_ssize_t": "ctypes.c_ssize_t",
    "khronos_usize_t": "ctypes.c_size_t",
    "khronos_stime_nanoseconds_t": "ctypes.c_int64",
    "khronos_utime_nanoseconds_t": "ctypes.c_uint64",
}

# Longest first so that e.g. NVX wins over NV.
VENDOR_SUFFIXES: tuple[str, ...] = tuple(
    sorted(
        {
            "3DFX", "3DLABS", "AMD", "ANDROID", "ANGLE", "APPLE", "ARB", "ARM",
            "ATI", "DMP", "EXT", "FJ", "GREMEDY", "HP", "I3D", "IBM", "IMG",
            "INGR", "INTEL", "KHR", "MESA", "MESAX", "MTK", "MTX", "NV", "NVX",
            "OES", "OML", "OVR", "PGI", "QCOM", "REND", "S3", "SGI", "SGIS",
            "SGIX", "SUN", "SUNX", "VIV", "WIN",
        },
        key=lambda suffix: (-len(suffix), suffix),
    )
)

# Bitmask members allowed to combine several bits.
COMBINED_BITMASK_CONSTANTS = frozenset(
    {
        "GL_ALL_ATTRIB_BITS",
        "GL_CLIENT_ALL_ATTRIB_BITS",
        "GL_ALL_BARRIER_BITS",
        "GL_ALL_BARRIER_BITS_EXT",
        "GL_ALL_SHADER_BITS",
        "GL_ALL_SHADER_BITS_EXT",
        "GL_ALL_PIXELS_AMD",
        "GL_QUERY_ALL_EVENT_BITS_AMD",
        "GL_TRACE_ALL_BITS_MESA",
    }
)

_TYPE_SUFFIX_RE = re.compile(
    r"(?:[1234]|[234]x[234]|64)?(?:b|s|i_?|i64_?|f|fi|d|ub|us|ui|ui64|x)?v?"
)

# Trailing words whose last letters only look like a type suffix.
NON_SUFFIXES = frozenset(
    {
        "Access", "Address", "Advanced", "Arrays", "Attrib", "Bias", "Box",
        "Buffers", "Elements", "Enabled", "End", "Fd", "Feedbacks", "Fences",
        "Fixed", "Framebuffers", "Id", "Index", "Indexed", "Indices",
        "Instanced", "Lists", "Minmax", "Matrix", "Names", "Pipelines", "Pixels",
        "Queries", "Renderbuffers", "Samplers", "Semaphores", "Shaders",
        "Stages", "States", "Status", "Textures", "Varyings", "Vertex",
        "1D", "2D", "3D",
    }
)

# The only words that take a bare short suffix ("s", "sv"); elsewhere it is a plural.
SHORT_SUFFIX_STEMS = frozenset({"Index", "Rect"})

FINAL_REPLACEMENTS: tuple[tuple[str, str], ...] = (("getn", "get_n"),)

PARAMETER_RENAMES = {
    "internalformat": "internal_format",
    "instancecount": "instance_count",
    "baseinstance": "base_instance",
    "basevertex": "base_vertex",
    "textarget": "tex_target",
    "shadertype": "shader_type",
    "precisiontype": "precision_type",
    "drawcount": "draw_count",
    "maxdrawcount": "max_draw_count",
    "xoffset": "x_offset",
    "yoffset": "y_offset",
    "zoffset": "z_offset",
    "fixedsamplelocations": "fixed_sample_locations",
    "sfail": "s_fail",
    "dpfail": "dp_fail",
    "dppass": "dp_pass",
    "zfail": "z_fail",
    "zpass": "z_pass",
    "attribindex": "attrib_index",
    "relativeoffset": "relative_offset",
    "bindingindex": "binding_index",
}

# Names the generated module and its table class define for themselves.
ARTIFACT_RESERVED = frozenset(
    {
        "collections", "ctypes", "enum", "sys", "threading", "types",
        "GLFunctions", "LoadState", "MissingMandatorySymbol",
        "load", "make_current", "current", "enum_name",
    }
)
TABLE_RESERVED = frozenset(
    {"state", "loaded_from", "is_available", "slot_for", "_frozen", "_freeze"}
)


# ===--- Registry model ---=== #


@dataclass(frozen=True)
class TypeDef:
    """One <type> declaration that names a usable type.

    Attributes:
        name: Spec type name, e.g. "GLenum".
        underlying: Declared type text with the name removed, e.g. "unsigned int".
        kind: "typedef", "funcpointer", or "opaque" (forward-declared struct).
        requires: Raw requires= attribute, e.g. "khrplatform".
        api: api= qualifier, or None when the declaration applies to every API.
    """

    name: str
    underlying: str
    kind: str = "typedef"
    requires: str | None = None
    api: str | None = None


@dataclass(frozen=True)
class EnumDef:
    name: str
    value_text: str
    value: int
    groups: tuple[str, ...] = ()
    api: str | None = None


@dataclass(frozen=True)
class EnumGroup:
    name: str
    members: tuple[str, ...]
    is_bitmask: bool = False


@dataclass(frozen=True)
class CommandParam:
    name: str
    type_string: str
    kind: str | None = None
    length: str | None = None
    group: str | None = None
    param_class: str | None = None


@dataclass(frozen=True)
class GlxInfo:
    glx_type: str
    opcode: int
    name: str | None = None
    comment: str | None = None


@dataclass(frozen=True)
class CommandDef:
    """One <command>.

    aliases holds every other member of the command's alias group,
    closed over symmetry and transitivity at load time.
    """

    name: str
    params: tuple[CommandParam, ...]
    return_type: str
    aliases: frozenset[str] = frozenset()
    glx: tuple[GlxInfo, ...] = ()


@dataclass(frozen=True)
class RequireEntry:
    kind: str
    name: str
    profile: str | None = None
    api: str | None = None


@dataclass(frozen=True)
class RequireBlock:
    action: str
    profile: str | None
    api: str | None
    entries: tuple[RequireEntry, ...]


@dataclass(frozen=True)
class Feature:
    name: str
    api: str
    version: GLVersion
    blocks: tuple[RequireBlock, ...]


@dataclass(frozen=True)
class Extension:
    name: str
    supported: frozenset[str]
    blocks: tuple[RequireBlock, ...]

    @property
    def vendor(self) -> str:
        parts = self.name.split("_")
        return parts[1] if len(parts) > 2 else ""


def _select_variant(variants, apis: frozenset[str]):
    for variant in variants:
        if variant.api is not None and variant.api in apis:
            return variant
    for variant in variants:
        if variant.api is None:
            return variant
    return None


@dataclass(frozen=True)
class Registry:
    """Immutable model of one gl.xml document.

    Attributes:
        typedefs: Type name -> declared variants (one per api qualifier),
            in declaration order.
        type_names: Every declared type name, include directives included.
        enums: Enum name -> declared variants (one per api qualifier).
        enum_groups: Group name -> EnumGroup, in first-declaration order.
        commands: Command name -> CommandDef, in declaration order.
        classes: Parameter class name (e.g. "buffer") -> storage type.
        features: Feature elements in declaration order.
        extensions: Extension name -> Extension, in declaration order.
        source_label: Short description of the source document.
    """

    typedefs: dict[str, tuple[TypeDef, ...]]
    type_names: frozenset[str]
    enums: dict[str, tuple[EnumDef, ...]]
    enum_groups: dict[str, EnumGroup]
    commands: dict[str, CommandDef]
    classes: dict[str, str]
    features: tuple[Feature, ...]
    extensions: dict[str, Extension]
    source_label: str = "gl.xml"

    def typedef(self, name: str, apis: frozenset[str]) -> TypeDef | None:
        return _select_variant(self.typedefs.get(name, ()), apis)

    def enum(self, name: str, apis: frozenset[str]) -> EnumDef | None:
        return _select_variant(self.enums.get(name, ()), apis)


# ===--- Registry loading ---=== #

_TYPEDEF_STATEMENT_RE = re.compile(r"typedef\s+([^;]*);")
_STRUCT_DECL_RE = re.compile(r"^\s*struct\s+\w+\s*;\s*$")
_ENUM_VALUE_RE = re.compile(
    r"^(-?)(0[xX][0-9A-Fa-f]+|\d+)(?:[uU]?[lL]{0,2}|[lL]{1,2}[uU]?)$"
)
_ENUM_CAST_RE = re.compile(r"^\(\(\s*\w+\s*\)\s*(.+?)\s*\)$")
_FEATURE_NUMBER_RE = re.compile(r"^(\d+)\.(\d+)$")


def _element_label(el: ET.Element) -> str:
    for attr in ("name", "number"):
        value = el.get(attr)
        if value:
            return f'<{el.tag} {attr}="{value}">'
    name_el = el.find("name")
    if name_el is None:
        name_el = el.find("proto/name")
    if name_el is not None and name_el.text:
        return f"<{el.tag}> {name_el.text.strip()}"
    return f"<{el.tag}>"


def _require_attr(el: ET.Element, attr: str) -> str:
    value = el.get(attr)
    if not value:
        raise SpecParseError(
            f"Missing required attribute '{attr}'", _element_label(el)
        )
    return value


def _normalize_space(text: str) -> str:
    return " ".join(text.split())


def _declaration_type(el: ET.Element) -> str:
    """Return the declared type of a <proto> or <param>: all text except the name."""
    parts = [el.text or ""]
    for child in el:
        if child.tag != "name":
            parts.append(child.text or "")
        parts.append(child.tail or "")
    return _normalize_space("".join(parts))


def _parse_c_int(text: str, el: ET.Element) -> tuple[str, int]:
    """Parse an enum value literal into (normalized literal, integer)."""
    raw = text.strip()
    cast = _ENUM_CAST_RE.match(raw)
    if cast:
        raw = cast.group(1)
    match = _ENUM_VALUE_RE.match(raw)
    if match is None:
        raise SpecParseError(f"Invalid enum value: {text}", _element_label(el))
    sign, digits = match.groups()
    if digits[:2] in ("0x", "0X"):
        value = int(digits, 16)
        literal = f"{sign}0x{digits[2:].upper()}"
    else:
        value = int(digits)
        literal = f"{sign}{value}"
    return literal, -value if sign else value


def parse_typedef(t: ET.Element, name: str) -> TypeDef | None:
    text = "".join(t.itertext())
    statements = [
        stmt
        for stmt in _TYPEDEF_STATEMENT_RE.findall(text)
        if re.search(rf"\b{re.escape(name)}\b", stmt)
    ]
    requires = t.get("requires")
    api = t.get("api")
    if not statements:
        if _STRUCT_DECL_RE.match(text):
            return TypeDef(name, f"struct {name}", "opaque", requires, api)
        return None
    statement = statements[-1]
    underlying = _normalize_space(
        re.sub(rf"\b{re.escape(name)}\b", "", statement, count=1)
    )
    kind = "funcpointer" if "(" in statement else "typedef"
    return TypeDef(name, underlying, kind, requires, api)


def extract_typedefs(
    root: ET.Element,
) -> tuple[dict[str, tuple[TypeDef, ...]], frozenset[str]]:
    typedefs: dict[str, list[TypeDef]] = {}
    type_names: set[str] = set()
    for t in root.findall("types/type"):
        name_el = t.find("name")
        name = (name_el.text or "").strip() if name_el is not None else t.get("name")
        if not name:
            raise SpecParseError("Type declaration has no name", _element_label(t))
        type_names.add(name)
        typedef = parse_typedef(t, name)
        if typedef is None:
            continue
        variants = typedefs.setdefault(name, [])
        if any(existing.api == typedef.api for existing in variants):
            raise SpecParseError(f"Duplicate type definition: {name}", _element_label(t))
        variants.append(typedef)
    return {name: tuple(v) for name, v in typedefs.items()}, frozenset(type_names)


def _check_bitmask_group(group: EnumGroup, enums: dict[str, list[EnumDef]]) -> None:
    for member in group.members:
        if member in COMBINED_BITMASK_CONSTANTS:
            continue
        for enum_def in enums[member]:
            value = enum_def.value
            if value < 0 or value & (value - 1):
                raise SpecParseError(
                    f"Bitmask group {group.name} member {member} is not a single bit "
                    f"({enum_def.value_text})",
                    f'<enum name="{member}">',
                )


def extract_enums(
    root: ET.Element,
) -> tuple[dict[str, tuple[EnumDef, ...]], dict[str, EnumGroup]]:
    """Collect every <enum> and derive enum groups.

    A group is a bitmask group when every one of its members is defined
    inside an <enums type="bitmask"> block.

    Raises:
        SpecParseError: On missing attributes, malformed values, conflicting
            redefinitions, or a bitmask member that is not a single bit.
    """
    enums: dict[str, list[EnumDef]] = {}
    group_members: dict[str, list[str]] = {}
    non_bitmask_groups: set[str] = set()

    for block in root.findall("enums"):
        in_bitmask_block = block.get("type") == "bitmask"
        for el in block.findall("enum"):
            name = _require_attr(el, "name")
            value_text, value = _parse_c_int(_require_attr(el, "value"), el)
            groups = [g for g in el.get("group", "").split(",") if g]
            enum_def = EnumDef(name, value_text, value, tuple(groups), el.get("api"))

            variants = enums.setdefault(name, [])
            existing = next((v for v in variants if v.api == enum_def.api), None)
            if existing is not None:
                if existing.value != enum_def.value:
                    raise SpecParseError(
                        f"Enum {name} redefined with a different value",
                        _element_label(el),
                    )
                continue
            variants.append(enum_def)

            for group in groups:
                members = group_members.setdefault(group, [])
                if name not in members:
                    members.append(name)
                if not in_bitmask_block:
                    non_bitmask_groups.add(group)

    enum_groups = {
        name: EnumGroup(
            name,
            tuple(members),
            bool(members) and name not in non_bitmask_groups,
        )
        for name, members in group_members.items()
    }
    for group in enum_groups.values():
        if group.is_bitmask:
            _check_bitmask_group(group, enums)
    return {name: tuple(v) for name, v in enums.items()}, enum_groups


def parse_command_param(p: ET.Element, command_name: str) -> CommandParam:
    name_el = p.find("name")
    param_name = (name_el.text or "").strip() if name_el is not None else ""
    type_string = _declaration_type(p)
    if not param_name or not type_string:
        raise SpecParseError(
            "Command parameter needs both a type and a name",
            f"<command> {command_name} <param> {param_name or '?'}",
        )
    length = p.get("len")
    return CommandParam(
        name=param_name,
        type_string=type_string,
        kind=p.get("kind") or ("array length" if length else None),
        length=length,
        group=p.get("group"),
        param_class=p.get("class"),
    )


def parse_glx(g: ET.Element) -> GlxInfo:
    opcode = _require_attr(g, "opcode")
    if not opcode.isdigit():
        raise SpecParseError(f"Invalid GLX opcode: {opcode}", _element_label(g))
    return GlxInfo(g.get("type", ""), int(opcode), g.get("name"), g.get("comment"))


def _alias_classes(
    names: Iterable[str], edges: list[tuple[str, str]]
) -> dict[str, frozenset[str]]:
    parent = {name: name for name in names}

    def find(name: str) -> str:
        while parent[name] != name:
            parent[name] = parent[parent[name]]
            name = parent[name]
        return name

    for a, b in edges:
        root_a, root_b = find(a), find(b)
        if root_a != root_b:
            parent[root_b] = root_a

    members: dict[str, set[str]] = {}
    for name in parent:
        members.setdefault(find(name), set()).add(name)
    return {name: frozenset(members[find(name)]) for name in parent}


def extract_commands(
    root: ET.Element,
) -> tuple[dict[str, CommandDef], dict[str, str]]:
    commands: dict[str, CommandDef] = {}
    classes: dict[str, str] = {}
    alias_edges: list[tuple[str, str]] = []

    for cmd in root.findall("commands/command"):
        proto = cmd.find("proto")
        name_el = proto.find("name") if proto is not None else None
        name = (name_el.text or "").strip() if name_el is not None else ""
        if not name:
            raise SpecParseError("Command has no proto name", _element_label(cmd))
        if name in commands:
            raise SpecParseError(f"Duplicate command definition: {name}", _element_label(cmd))

        params = tuple(parse_command_param(p, name) for p in cmd.findall("param"))
        for param in params:
            if param.param_class:
                classes.setdefault(param.param_class, base_identifier(param.type_string))
        for alias in cmd.findall("alias"):
            alias_edges.append((name, _require_attr(alias, "name")))

        commands[name] = CommandDef(
            name=name,
            params=params,
            return_type=_declaration_type(proto) or "void",
            glx=tuple(parse_glx(g) for g in cmd.findall("glx")),
        )

    for name, target in alias_edges:
        if target not in commands:
            raise SpecParseError(
                f"Command {name} aliases unknown command {target}",
                f"<command> {name}",
            )

    groups = _alias_classes(commands, alias_edges)
    return {
        name: replace(command, aliases=groups[name] - {name})
        for name, command in commands.items()
    }, classes


def _parse_blocks(
    parent: ET.Element, actions: tuple[str, ...] = ("require", "remove")
) -> tuple[RequireBlock, ...]:
    blocks: list[RequireBlock] = []
    for block in parent:
        if block.tag not in actions:
            continue
        entries = tuple(
            RequireEntry(
                kind=child.tag,
                name=_require_attr(child, "name"),
                profile=child.get("profile"),
                api=child.get("api"),
            )
            for child in block
            if child.tag in ("type", "enum", "command")
        )
        blocks.append(
            RequireBlock(block.tag, block.get("profile"), block.get("api"), entries)
        )
    return tuple(blocks)


def extract_features(root: ET.Element) -> tuple[Feature, ...]:
    features: list[Feature] = []
    for feat in root.findall("feature"):
        api = _require_attr(feat, "api")
        name = _require_attr(feat, "name")
        number = _require_attr(feat, "number")
        match = _FEATURE_NUMBER_RE.match(number)
        if match is None:
            raise SpecParseError(
                f"Feature number is not major.minor: {number}", _element_label(feat)
            )
        version = GLVersion(int(match.group(1)), int(match.group(2)))
        features.append(Feature(name, api, version, _parse_blocks(feat)))
    return tuple(features)


def extract_extensions(root: ET.Element) -> dict[str, Extension]:
    extensions: dict[str, Extension] = {}
    for ext in root.findall("extensions/extension"):
        name = _require_attr(ext, "name")
        supported = _require_attr(ext, "supported")
        if name in extensions:
            raise SpecParseError(f"Duplicate extension: {name}", _element_label(ext))
        extensions[name] = Extension(
            name=name,
            supported=frozenset(token for token in supported.split("|") if token),
            blocks=_parse_blocks(ext, actions=("require",)),
        )
    return extensions


def validate_references(registry: Registry) -> None:
    """Check that every require/remove entry names something the registry declares."""
    known = {
        "type": registry.type_names,
        "enum": registry.enums.keys(),
        "command": registry.commands.keys(),
    }
    owners = [(f'<feature name="{f.name}">', f.blocks) for f in registry.features]
    owners += [
        (f'<extension name="{e.name}">', e.blocks) for e in registry.extensions.values()
    ]
    for label, blocks in owners:
        for block in blocks:
            for entry in block.entries:
                if entry.name not in known[entry.kind]:
                    raise SpecParseError(
                        f"{block.action} references unknown {entry.kind} {entry.name}",
                        label,
                    )


def parse_registry(root: ET.Element, source_label: str = "gl.xml") -> Registry:
    """Build a Registry from a parsed gl.xml root. All-or-nothing.

    Raises:
        SpecParseError: On any missing attribute, malformed entry, conflicting
            definition, or dangling reference.
    """
    typedefs, type_names = extract_typedefs(root)
    enums, enum_groups = extract_enums(root)
    commands, classes = extract_commands(root)
    registry = Registry(
        typedefs=typedefs,
        type_names=type_names,
        enums=enums,
        enum_groups=enum_groups,
        commands=commands,
        classes=classes,
        features=extract_features(root),
        extensions=extract_extensions(root),
        source_label=source_label,
    )
    validate_references(registry)
    return registry


def load_registry(document: str | bytes, source_label: str = "gl.xml") -> Registry:
    try:
        root = ET.fromstring(document)
    except ET.ParseError as err:
        raise SpecParseError(f"Document is not well-formed: {err}", source_label) from err
    return parse_registry(root, source_label)


def load_registry_file(path: Path) -> Registry:
    path = Path(path)
    return load_registry(path.read_bytes(), source_label=path.name)


# ===--- Type mapping ---=== #

_ARRAY_DECL_RE = re.compile(r"\[([^\]]*)\]")


class ParsedType(NamedTuple):
    base: str
    const_base: bool
    pointer_depth: int
    const_pointers: int
    array_dims: tuple[int, ...]


def parse_type_string(spec_type_string: str) -> ParsedType:
    """Split a C declaration type into base, qualifiers, indirection and arrays.

    Raises:
        UnknownTypeError: If the string has no base identifier, trailing
            tokens after the indirections, or a non-numeric array size.
    """
    dims: list[int] = []
    for raw in _ARRAY_DECL_RE.findall(spec_type_string):
        if not raw.strip().isdigit():
            raise UnknownTypeError(spec_type_string)
        dims.append(int(raw))
    text = _ARRAY_DECL_RE.sub(" ", spec_type_string)

    head, _, tail = text.partition("*")
    words = [word for word in head.split() if word != "const"]
    leftover = tail.replace("*", " ").split()
    if not words or any(word != "const" for word in leftover):
        raise UnknownTypeError(spec_type_string)

    return ParsedType(
        base=" ".join(words),
        const_base="const" in head.split(),
        pointer_depth=text.count("*"),
        const_pointers=leftover.count("const"),
        array_dims=tuple(dims),
    )


def base_identifier(spec_type_string: str) -> str:
    return parse_type_string(spec_type_string).base


@dataclass(frozen=True)
class TargetType:
    """A spec type string mapped onto ctypes.

    category is "scalar" (renders from base_ctype or a type alias), "void",
    or "opaque" (an incomplete struct only usable behind a pointer).
    """

    spec: str
    base: str
    category: str
    base_ctype: str | None = None
    alias: str | None = None
    pointer_depth: int = 0
    const_base: bool = False
    const_pointers: int = 0
    array_dims: tuple[int, ...] = ()

    @property
    def is_void(self) -> bool:
        return self.category == "void" and self.pointer_depth == 0

    def render(self, alias_name: str | None = None, *, as_parameter: bool = False) -> str:
        """Return the ctypes expression for this type.

        Args:
            alias_name: Emitted identifier for self.alias; when omitted the
                alias is rendered through its resolved ctypes type.
            as_parameter: Decay the outermost array dimension to a pointer.
        """
        if self.category == "scalar":
            expr = alias_name or self.base_ctype
            depth = self.pointer_depth
        elif self.pointer_depth == 0:
            return "None"
        else:
            expr = "ctypes.c_void_p"
            depth = self.pointer_depth - 1

        for _ in range(depth):
            expr = f"ctypes.POINTER({expr})"

        dims = self.array_dims
        decay = as_parameter and bool(dims)
        if decay:
            dims = dims[1:]
        for dim in reversed(dims):
            expr = f"({expr} * {dim})"
        if decay:
            expr = f"ctypes.POINTER({expr})"
        return expr


_FUNCPOINTER_RE = re.compile(r"^(?P<ret>[^()]*)\(\s*(?:\w+\s+)?\*\s*\)\s*\((?P<params>[^()]*)\)$")
_PARAM_NAME_RE = re.compile(r"^(?P<type>.*[\s*])(?P<name>[A-Za-z_]\w*)$")


def parse_funcpointer(underlying: str) -> tuple[str, tuple[str, ...]]:
    """Split a function-pointer declarator into its return and parameter types.

    "void ( *)(GLenum source,const void *userParam)" gives
    ("void", ("GLenum", "const void *")). A "(void)" list has no parameters.

    Raises:
        UnknownTypeError: If underlying is not a function-pointer declarator.
    """
    match = _FUNCPOINTER_RE.match(underlying.strip())
    if match is None or not match.group("ret").strip():
        raise UnknownTypeError(underlying)
    param_types = []
    for raw in match.group("params").split(","):
        raw = raw.strip()
        if not raw or raw == "void":
            continue
        named = _PARAM_NAME_RE.match(raw)
        if named and named.group("name") not in PRIMITIVE_TYPES:
            declared = named.group("type").strip()
            if declared not in ("", "const"):
                raw = declared
        param_types.append(raw)
    return match.group("ret").strip(), tuple(param_types)


class TypeMapper:
    """Maps spec type strings onto ctypes through PRIMITIVE_TYPES and typedefs.

    Never guesses: a base identifier that is neither a primitive, a
    ``struct`` tag, nor one of the supplied typedefs raises UnknownTypeError.
    """

    def __init__(self, typedefs: Iterable[TypeDef]):
        self._typedefs = {typedef.name: typedef for typedef in typedefs}
        self._resolved: dict[str, tuple[str, str | None]] = {}
        self._resolving: set[str] = set()

    def map_type(self, spec_type_string: str) -> TargetType:
        parsed = parse_type_string(spec_type_string)
        category, base_ctype, alias = self._classify(parsed.base, spec_type_string)
        if category != "scalar" and parsed.pointer_depth == 0:
            if category == "opaque" or parsed.array_dims:
                raise UnknownTypeError(spec_type_string)
        return TargetType(
            spec=spec_type_string,
            base=parsed.base,
            category=category,
            base_ctype=base_ctype,
            alias=alias,
            pointer_depth=parsed.pointer_depth,
            const_base=parsed.const_base,
            const_pointers=parsed.const_pointers,
            array_dims=parsed.array_dims,
        )

    def typedef_expression(
        self, typedef: TypeDef, type_name: Callable[[str], str] | None = None
    ) -> str:
        """Right-hand side of the emitted alias for a typedef.

        Function pointers become _FUNCTYPE prototypes over their mapped
        parameter types; opaque structs become ctypes.c_void_p.
        """
        if typedef.kind == "opaque":
            return "ctypes.c_void_p"
        if typedef.kind == "funcpointer":
            return_type, param_types = parse_funcpointer(typedef.underlying)
            args = [self._render(return_type, type_name, as_parameter=False)]
            args.extend(self._render(p, type_name, as_parameter=True) for p in param_types)
            return f"_FUNCTYPE({', '.join(args)})"
        return self._render(typedef.underlying, type_name, as_parameter=False)

    def _render(
        self,
        spec_type_string: str,
        type_name: Callable[[str], str] | None,
        *,
        as_parameter: bool,
    ) -> str:
        target = self.map_type(spec_type_string)
        alias_name = type_name(target.alias) if type_name and target.alias else None
        return target.render(alias_name, as_parameter=as_parameter)

    def _classify(
        self, base: str, spec_type_string: str
    ) -> tuple[str, str | None, str | None]:
        if base in PRIMITIVE_TYPES:
            ctype = PRIMITIVE_TYPES[base]
            return ("void", None, None) if ctype is None else ("scalar", ctype, None)
        if base.startswith("struct "):
            return "opaque", None, None
        typedef = self._typedefs.get(base)
        if typedef is None:
            raise UnknownTypeError(spec_type_string)
        category, ctype = self._resolve_typedef(typedef)
        if category == "scalar":
            return category, ctype, base
        return category, None, None

    def _resolve_typedef(self, typedef: TypeDef) -> tuple[str, str | None]:
        cached = self._resolved.get(typedef.name)
        if cached is not None:
            return cached
        if typedef.name in self._resolving:
            raise UnknownTypeError(typedef.name)

        self._resolving.add(typedef.name)
        try:
            if typedef.kind == "funcpointer":
                result = ("scalar", "ctypes.c_void_p")
            elif typedef.kind == "opaque":
                result = ("opaque", None)
            else:
                target = self.map_type(typedef.underlying)
                if target.is_void:
                    result = ("void", None)
                else:
                    result = ("scalar", target.render())
        finally:
            self._resolving.discard(typedef.name)

        self._resolved[typedef.name] = result
        return result


# ===--- Feature resolution ---=== #


@dataclass(frozen=True)
class ResolvedFeatureSet:
    """Closed set of active symbols for one GenerationRequest.

    Every tuple is in first-activation order. typedefs additionally place
    each type after the types it depends on.

    Attributes:
        request: The request this set was resolved for.
        typedefs: Active TypeDefs, closed over command signatures.
        enums: Active enum definitions (api-specific variant where declared).
        enum_groups: Groups with at least one active member, restricted to
            their active members.
        commands: Active commands.
        extension_only_commands: Active commands no core feature activated.
    """

    request: GenerationRequest
    typedefs: tuple[TypeDef, ...]
    enums: tuple[EnumDef, ...]
    enum_groups: tuple[EnumGroup, ...]
    commands: tuple[CommandDef, ...]
    extension_only_commands: frozenset[str]


class _ActiveSet:
    """Ordered set keyed by first activation. Removal keeps the position."""

    def __init__(self) -> None:
        self._order: dict[tuple[str, str], None] = {}
        self._active: set[tuple[str, str]] = set()

    def add(self, key: tuple[str, str]) -> None:
        self._order.setdefault(key, None)
        self._active.add(key)

    def discard(self, key: tuple[str, str]) -> None:
        self._active.discard(key)

    def names(self, kind: str) -> list[str]:
        return [
            name
            for key_kind, name in self._order
            if key_kind == kind and (key_kind, name) in self._active
        ]


def api_family(api: str) -> frozenset[str]:
    return API_FAMILIES.get(api, frozenset({api}))


def _applies(profile: str | None, api: str | None, request_profile, apis) -> bool:
    if profile is not None and profile != request_profile:
        return False
    if api is not None and api not in apis:
        return False
    return True


def _apply_blocks(
    active: _ActiveSet,
    blocks: tuple[RequireBlock, ...],
    action: str,
    profile: str | None,
    apis: frozenset[str],
) -> None:
    for block in blocks:
        if block.action != action or not _applies(block.profile, block.api, profile, apis):
            continue
        for entry in block.entries:
            if not _applies(entry.profile, entry.api, profile, apis):
                continue
            key = (entry.kind, entry.name)
            if action == "require":
                active.add(key)
            else:
                active.discard(key)


def applicable_features(
    registry: Registry, api: str, version: GLVersion
) -> list[Feature]:
    """Features of the api family at or below version, in increasing version order."""
    apis = api_family(api)
    matching = [f for f in registry.features if f.api in apis and f.version <= version]
    return sorted(matching, key=lambda f: f.version)


def requested_extensions(
    registry: Registry, api: str, names: frozenset[str]
) -> list[Extension]:
    """Look up requested extensions, in registry declaration order.

    Raises:
        ConfigError: UNKNOWN_EXTENSION or UNSUPPORTED_EXTENSION.
    """
    apis = api_family(api)
    for name in sorted(names):
        extension = registry.extensions.get(name)
        if extension is None:
            raise ConfigError(
                "UNKNOWN_EXTENSION",
                f"Extension not found in {registry.source_label}: {name}",
                "Run --list-extensions to see the available names.",
            )
        if not extension.supported & apis:
            raise ConfigError(
                "UNSUPPORTED_EXTENSION",
                f"Extension {name} is not supported by api {api}",
                f"{name} supports: {'|'.join(sorted(extension.supported))}.",
            )
    return [ext for ext in registry.extensions.values() if ext.name in names]


def _typedef_dependencies(typedef: TypeDef) -> list[str]:
    deps = re.findall(r"[A-Za-z_]\w*", typedef.underlying)
    if typedef.requires:
        deps.insert(0, typedef.requires)
    return deps


def _close_typedefs(
    registry: Registry,
    required: list[str],
    commands: tuple[CommandDef, ...],
    apis: frozenset[str],
) -> tuple[TypeDef, ...]:
    ordered: dict[str, TypeDef] = {}
    visiting: set[str] = set()

    def visit(name: str) -> None:
        name = name.removeprefix("struct ")
        if name in ordered or name in visiting:
            return
        typedef = registry.typedef(name, apis)
        if typedef is None:
            return
        visiting.add(name)
        for dep in _typedef_dependencies(typedef):
            if dep != name:
                visit(dep)
        visiting.discard(name)
        ordered[name] = typedef

    for name in required:
        visit(name)
    for command in commands:
        visit(base_identifier(command.return_type))
        for param in command.params:
            visit(base_identifier(param.type_string))
    return tuple(ordered.values())


def _active_enum_groups(
    registry: Registry, enums: tuple[EnumDef, ...]
) -> tuple[EnumGroup, ...]:
    position = {enum_def.name: index for index, enum_def in enumerate(enums)}
    groups: list[EnumGroup] = []
    for group in registry.enum_groups.values():
        members = sorted((m for m in group.members if m in position), key=position.get)
        if members:
            groups.append(EnumGroup(group.name, tuple(members), group.is_bitmask))
    groups.sort(key=lambda g: position[g.members[0]])
    return tuple(groups)


def resolve(registry: Registry, request: GenerationRequest) -> ResolvedFeatureSet:
    """Fold features and extensions into the closed active set for request.

    Features apply in increasing version order: requires first, then removes,
    both filtered by profile and api. A later require re-activates a removed
    name at its original position. Extension requires are layered after all
    core features and are never removed.

    Args:
        registry: Loaded registry.
        request: Target api, version, profile and extensions.

    Returns:
        ResolvedFeatureSet for the request.

    Raises:
        ConfigError: Propagated from requested_extensions.
    """
    apis = api_family(request.api)
    active = _ActiveSet()

    for feature in applicable_features(registry, request.api, request.version):
        _apply_blocks(active, feature.blocks, "require", request.profile, apis)
        _apply_blocks(active, feature.blocks, "remove", request.profile, apis)
    core_commands = set(active.names("command"))

    for extension in requested_extensions(registry, request.api, request.extensions):
        _apply_blocks(active, extension.blocks, "require", request.profile, apis)

    commands = tuple(registry.commands[name] for name in active.names("command"))
    enums = tuple(
        enum_def
        for enum_def in (registry.enum(name, apis) for name in active.names("enum"))
        if enum_def is not None
    )
    return ResolvedFeatureSet(
        request=request,
        typedefs=_close_typedefs(registry, active.names("type"), commands, apis),
        enums=enums,
        enum_groups=_active_enum_groups(registry, enums),
        commands=commands,
        extension_only_commands=frozenset(
            c.name for c in commands if c.name not in core_commands
        ),
    )


# ===--- Name translation ---=== #


class SymbolKind(enum.Enum):
    TYPE = "type"
    ENUM_CONSTANT = "enum constant"
    BITMASK_GROUP = "bitmask group"
    FUNCTION = "function"
    PARAMETER = "parameter"


_NAMESPACES = {
    SymbolKind.TYPE: "module",
    SymbolKind.ENUM_CONSTANT: "module",
    SymbolKind.BITMASK_GROUP: "module",
    SymbolKind.FUNCTION: "table",
    SymbolKind.PARAMETER: "parameter",
}
_RESERVED_BY_NAMESPACE = {
    "module": ARTIFACT_RESERVED,
    "table": TABLE_RESERVED,
    "parameter": frozenset(),
}


def to_snake_case(name: str) -> str:
    name = re.sub(r"(\d)D\b", r"_\1d", name)
    return re.sub(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])", "_", name).lower()


def vendor_suffix(name: str) -> str:
    """Return the trailing vendor suffix of a command name, or "" if none."""
    for suffix in VENDOR_SUFFIXES:
        if name.endswith(suffix) and len(name) > len(suffix):
            return suffix
    return ""


def translate_type_name(name: str) -> str:
    stem = name[2:] if name.startswith("GL") and len(name) > 2 else name
    return stem[0].upper() + stem[1:]


def translate_enum_name(name: str) -> str:
    stem = name.removeprefix("GL_")
    if not stem or stem[0].isdigit():
        return name
    return stem


def split_type_suffix(stem: str) -> tuple[str, str]:
    """Split a trailing type suffix (4fv, i_v, ui64) off a command stem.

    Candidates are tried longest first. A split is rejected when it cuts
    into a word listed in NON_SUFFIXES, or when it leaves a bare "s" on a
    word outside SHORT_SUFFIX_STEMS. Returns (stem, "") if nothing splits.
    """
    for start in range(1, len(stem)):
        suffix = stem[start:]
        if not _TYPE_SUFFIX_RE.fullmatch(suffix):
            continue
        head = stem[:start]
        upper = [i for i, ch in enumerate(head) if ch.isupper()]
        word = head[upper[-1]:] if upper else head
        tail = word + suffix
        if any(len(known) > len(word) and tail.startswith(known) for known in NON_SUFFIXES):
            continue
        if suffix[0] == "s" and word not in SHORT_SUFFIX_STEMS:
            continue
        return head, suffix
    return stem, ""


def translate_function_name(name: str) -> str:
    """glUniformMatrix4fvARB -> uniform_matrix_4fv_arb.

    The vendor suffix is split off first, then a type suffix such as 4fv
    (see split_type_suffix).
    """
    stem = name[2:] if name.startswith("gl") and len(name) > 2 else name
    vendor = vendor_suffix(stem)
    if vendor:
        stem = stem[: -len(vendor)].rstrip("_")

    stem, suffix = split_type_suffix(stem)

    snake = to_snake_case(stem)
    if suffix:
        snake += "_" + suffix.lower()
    if vendor:
        snake += "_" + vendor.lower()
    for old, new in FINAL_REPLACEMENTS:
        snake = snake.replace(old, new)
    return snake


def translate_parameter_name(name: str) -> str:
    return PARAMETER_RENAMES.get(name) or to_snake_case(name)


_CONVENTIONS: dict[SymbolKind, Callable[[str], str]] = {
    SymbolKind.TYPE: translate_type_name,
    SymbolKind.ENUM_CONSTANT: translate_enum_name,
    SymbolKind.BITMASK_GROUP: lambda name: name,
    SymbolKind.FUNCTION: translate_function_name,
    SymbolKind.PARAMETER: translate_parameter_name,
}


class SymbolTable:
    """Forward and reverse mapping between spec names and emitted identifiers.

    Types, enum constants and bitmask groups share the module namespace,
    functions live in the table namespace, and parameters are scoped per
    command. Two spec names landing on one identifier in the same
    namespace raise DuplicateDefinitionError.
    """

    def __init__(self) -> None:
        self._forward: dict[tuple[SymbolKind, str | None, str], str] = {}
        self._reverse: dict[tuple[str, str | None, str], str] = {}

    def __len__(self) -> int:
        return len(self._forward)

    def translate(
        self, name: str, kind: SymbolKind, scope: str | None = None
    ) -> str:
        scope = scope if kind is SymbolKind.PARAMETER else None
        key = (kind, scope, name)
        existing = self._forward.get(key)
        if existing is not None:
            return existing

        namespace = _NAMESPACES[kind]
        identifier = _CONVENTIONS[kind](name)
        if not identifier.isidentifier():
            raise SpecParseError(
                f"Cannot form a {kind.value} identifier from {name!r}", name
            )
        if keyword.iskeyword(identifier) or identifier in _RESERVED_BY_NAMESPACE[namespace]:
            identifier += "_"

        reverse_key = (namespace, scope, identifier)
        other = self._reverse.get(reverse_key)
        if other is not None and other != name:
            raise DuplicateDefinitionError(other, name, identifier)
        self._reverse[reverse_key] = name
        self._forward[key] = identifier
        return identifier

    def lookup(self, name: str, kind: SymbolKind, scope: str | None = None) -> str:
        scope = scope if kind is SymbolKind.PARAMETER else None
        return self._forward[(kind, scope, name)]

    def reverse(
        self, identifier: str, kind: SymbolKind, scope: str | None = None
    ) -> str:
        scope = scope if kind is SymbolKind.PARAMETER else None
        return self._reverse[(_NAMESPACES[kind], scope, identifier)]

    def names(self, kind: SymbolKind) -> list[str]:
        return [name for (k, _, name) in self._forward if k is kind]


def build_symbol_table(resolved: ResolvedFeatureSet) -> SymbolTable:
    """Translate every resolved name; raises DuplicateDefinitionError on collision."""
    symbols = SymbolTable()
    for typedef in resolved.typedefs:
        symbols.translate(typedef.name, SymbolKind.TYPE)
    for group in resolved.enum_groups:
        if group.is_bitmask:
            symbols.translate(group.name, SymbolKind.BITMASK_GROUP)
    for enum_def in resolved.enums:
        symbols.translate(enum_def.name, SymbolKind.ENUM_CONSTANT)
    for command in resolved.commands:
        symbols.translate(command.name, SymbolKind.FUNCTION)
        for param in command.params:
            symbols.translate(param.name, SymbolKind.PARAMETER, scope=command.name)
    return symbols


# ===--- Command aggregation ---=== #


@dataclass(frozen=True)
class CanonicalCommand:
    """One function-pointer slot.

    Attributes:
        command: The canonical CommandDef whose signature defines the slot.
        fallbacks: Names the loader queries after the canonical name, most
            preferred first.
        equivalents: Other resolved names that share this slot.
        return_type: Mapped return type.
        param_types: Mapped parameter types, in declaration order.
        mandatory: True when a missing pointer must fail the whole load.
    """

    command: CommandDef
    fallbacks: tuple[str, ...]
    equivalents: tuple[str, ...]
    return_type: TargetType
    param_types: tuple[TargetType, ...]
    mandatory: bool = True

    @property
    def name(self) -> str:
        return self.command.name


def optional_command_names(resolved: ResolvedFeatureSet) -> frozenset[str]:
    if resolved.request.optional_policy is OptionalPolicy.OPTIONAL:
        return resolved.extension_only_commands
    return frozenset()


def _map_parameter(mapper: TypeMapper, param: CommandParam) -> TargetType:
    target = mapper.map_type(param.type_string)
    if target.is_void:
        raise UnknownTypeError(param.type_string)
    return target


def aggregate(
    resolved_commands: Iterable[CommandDef],
    fallback_policy: FallbackPolicy,
    mapper: TypeMapper,
    optional_names: frozenset[str] = frozenset(),
) -> list[CanonicalCommand]:
    """Collapse alias groups to one canonical slot each.

    The canonical name is the resolved group member ranked first by
    fallback_policy. Output order follows the first resolved member of
    each group.

    Args:
        resolved_commands: Active commands, in resolution order.
        fallback_policy: Explicit priority and fallback mode.
        mapper: Type mapper for slot signatures.
        optional_names: Commands allowed to stay unresolved at load time.

    Returns:
        Ordered CanonicalCommand list.

    Raises:
        UnknownTypeError: If a signature contains an unmapped type.
    """
    commands = list(resolved_commands)
    by_name = {command.name: command for command in commands}
    seen: set[str] = set()
    result: list[CanonicalCommand] = []

    for command in commands:
        if command.name in seen:
            continue
        group = sorted(command.aliases | {command.name}, key=fallback_policy.rank)
        members = [name for name in group if name in by_name]
        seen.update(members)
        canonical = by_name[members[0]]

        if fallback_policy.mode is FallbackMode.NONE:
            fallbacks: tuple[str, ...] = ()
        elif fallback_policy.mode is FallbackMode.RESOLVED:
            fallbacks = tuple(members[1:])
        else:
            fallbacks = tuple(name for name in group if name != canonical.name)

        result.append(
            CanonicalCommand(
                command=canonical,
                fallbacks=fallbacks,
                equivalents=tuple(members[1:]),
                return_type=mapper.map_type(canonical.return_type),
                param_types=tuple(_map_parameter(mapper, p) for p in canonical.params),
                mandatory=any(name not in optional_names for name in members),
            )
        )
    return result


# ===--- Artifact header ---=== #


@dataclass(frozen=True)
class WriteConfig:
    """Generation metadata embedded in the artifact header.

    Attributes:
        source_label: Registry source, e.g. "gl.xml".
        api: Requested api, e.g. "gl".
        target_version: Requested version.
        profile: Requested profile, or None.
        extensions: Extension names layered on the core features.
        all_extensions: True when --all-extensions selected the extensions.
    """

    source_label: str
    api: str
    target_version: GLVersion
    profile: str | None
    extensions: frozenset[str]
    all_extensions: bool = False


_HEADER_BORDER: str = "# x-------------------------------------------x #"


def describe_target(config: WriteConfig) -> str:
    label = f"{API_LABELS.get(config.api, config.api)} {config.target_version}"
    if config.profile:
        label += f" ({config.profile})"
    return label


def format_file_header(config: WriteConfig) -> list[str]:
    """Return the boxed comment at the top of the generated module.

    Output format:
        # x-------------------------------------------x #
        # | OpenGL 4.6 (core) bindings for Python
        # | Generated by glgen
        # | Source: gl.xml
        # | Target: gl 4.6 core
        # | Extensions: GL_ARB_bindless_texture, GL_KHR_debug
        # x-------------------------------------------x #

    The Extensions line reads "all" for --all-extensions, lists sorted names
    otherwise, and is omitted when no extensions were requested.

    Raises:
        ValueError: If config.source_label is empty.
    """
    if not config.source_label:
        raise ValueError("source_label must not be empty")

    target = f"{config.api} {config.target_version}"
    if config.profile:
        target += f" {config.profile}"
    lines: list[str] = [
        _HEADER_BORDER,
        f"# | {describe_target(config)} bindings for Python",
        "# | Generated by glgen",
        f"# | Source: {config.source_label}",
        f"# | Target: {target}",
    ]

    if config.all_extensions:
        lines.append("# | Extensions: all")
    elif config.extensions:
        lines.append(f"# | Extensions: {', '.join(sorted(config.extensions))}")

    lines.append(_HEADER_BORDER)
    return lines


def build_write_config(
    request: GenerationRequest, source_label: str, all_extensions: bool = False
) -> WriteConfig:
    if not source_label:
        raise ValueError("source_label must not be empty")
    return WriteConfig(
        source_label=source_label,
        api=request.api,
        target_version=request.version,
        profile=request.profile,
        extensions=request.extensions,
        all_extensions=all_extensions,
    )


# ===--- Code emission ---=== #


@dataclass(frozen=True)
class EmitOptions:
    style: EmitStyle = EmitStyle.TABLE
    header: WriteConfig | None = None


def _quoted(text: str) -> str:
    return f'"{text}"'


def _py_tuple(items: Iterable[str]) -> str:
    values = [_quoted(item) for item in items]
    if not values:
        return "()"
    if len(values) == 1:
        return f"({values[0]},)"
    return f"({', '.join(values)})"


def _bitmask_literal(value: int) -> str:
    return f"0x{value:08X}"


def _hex_literal(value: int) -> str:
    return f"-0x{-value:04X}" if value < 0 else f"0x{value:04X}"


def format_import_block(style: EmitStyle) -> list[str]:
    modules = ["collections", "ctypes", "enum", "sys", "types"]
    if style is EmitStyle.THREAD_LOCAL:
        modules.append("threading")
    return [f"import {module}" for module in sorted(modules)]


def generate_type_aliases(
    resolved: ResolvedFeatureSet, symbols: SymbolTable, mapper: TypeMapper
) -> list[str]:
    def type_name(name: str) -> str:
        return symbols.lookup(name, SymbolKind.TYPE)

    lines = ["# ========= TYPE ALIASES =========", ""]
    lines.append(
        '_FUNCTYPE = ctypes.WINFUNCTYPE if sys.platform == "win32" else ctypes.CFUNCTYPE'
    )
    lines.append("")
    for typedef in resolved.typedefs:
        expression = mapper.typedef_expression(typedef, type_name)
        lines.append(f"{type_name(typedef.name)} = {expression}")
    return lines


_BITMASK_BASE: tuple[str, ...] = (
    "class _Bitmask:",
    '    """Flags drawn from one bitmask group.',
    "",
    "    Values are built only by OR-ing named members of the same class.",
    "    from_raw() adopts an integer from the driver and rejects undeclared bits.",
    '    """',
    "",
    '    __slots__ = ("_value",)',
    "    _MEMBERS = {}",
    "    _MASK = 0",
    "",
    "    def __init__(self, *flags):",
    "        value = 0",
    "        for flag in flags:",
    "            if type(flag) is not type(self):",
    '                raise TypeError(f"{type(self).__name__} cannot include {flag!r}")',
    "            value |= flag._value",
    "        self._value = value",
    "",
    "    @classmethod",
    "    def _member(cls, value):",
    "        flag = object.__new__(cls)",
    "        flag._value = value",
    "        return flag",
    "",
    "    @classmethod",
    "    def from_raw(cls, value):",
    "        if value & ~cls._MASK:",
    '            raise ValueError(f"{value:#x} has bits outside {cls.__name__}")',
    "        return cls._member(value)",
    "",
    "    @property",
    "    def _as_parameter_(self):",
    "        return self._value",
    "",
    "    def __or__(self, other):",
    "        if type(other) is not type(self):",
    "            return NotImplemented",
    "        return self._member(self._value | other._value)",
    "",
    "    def __and__(self, other):",
    "        if type(other) is not type(self):",
    "            return NotImplemented",
    "        return self._member(self._value & other._value)",
    "",
    "    def __contains__(self, other):",
    "        return type(other) is type(self) and self._value & other._value == other._value",
    "",
    "    def __eq__(self, other):",
    "        return type(other) is type(self) and self._value == other._value",
    "",
    "    def __hash__(self):",
    "        return hash((type(self).__name__, self._value))",
    "",
    "    def __int__(self):",
    "        return self._value",
    "",
    "    def __index__(self):",
    "        return self._value",
    "",
    "    def __bool__(self):",
    "        return self._value != 0",
    "",
    "    def __repr__(self):",
    "        names = [",
    "            name",
    "            for name, bit in self._MEMBERS.items()",
    "            if bit and self._value & bit == bit",
    "        ]",
    "        return f\"{type(self).__name__}({' | '.join(names) or '0'})\"",
)


def generate_bitmask_types(
    resolved: ResolvedFeatureSet, symbols: SymbolTable
) -> list[str]:
    lines = ["# ========= BITMASK TYPES =========", ""]
    lines.extend(_BITMASK_BASE)

    enum_by_name = {enum_def.name: enum_def for enum_def in resolved.enums}
    for group in resolved.enum_groups:
        if not group.is_bitmask:
            continue
        class_name = symbols.lookup(group.name, SymbolKind.BITMASK_GROUP)
        members = [
            (symbols.lookup(name, SymbolKind.ENUM_CONSTANT), enum_by_name[name].value)
            for name in group.members
        ]
        mask = 0
        for _, value in members:
            mask |= value

        lines.append("")
        lines.append("")
        lines.append(f"class {class_name}(_Bitmask):")
        lines.append("    __slots__ = ()")
        lines.append("    _MEMBERS = {")
        for member, value in members:
            lines.append(f'        "{member}": {_bitmask_literal(value)},')
        lines.append("    }")
        lines.append(f"    _MASK = {_bitmask_literal(mask)}")
        lines.append("")
        lines.append("")
        for member, value in members:
            lines.append(
                f"{class_name}.{member} = {class_name}._member({_bitmask_literal(value)})"
            )
    return lines


def generate_enum_constants(
    resolved: ResolvedFeatureSet, symbols: SymbolTable
) -> list[str]:
    lines = ["# ========= ENUM CONSTANTS ========="]
    enum_by_name = {enum_def.name: enum_def for enum_def in resolved.enums}
    emitted: set[str] = set()

    def emit_group(title: str, names: Iterable[str]) -> None:
        pending = [name for name in names if name not in emitted]
        if not pending:
            return
        lines.append("")
        lines.append(f"# --- {title} ---")
        for name in pending:
            identifier = symbols.lookup(name, SymbolKind.ENUM_CONSTANT)
            lines.append(f"{identifier} = {enum_by_name[name].value_text}")
            emitted.add(name)

    for group in resolved.enum_groups:
        emit_group(group.name, group.members)
    emit_group("ungrouped", (enum_def.name for enum_def in resolved.enums))

    names_by_value: dict[int, list[str]] = {}
    for enum_def in resolved.enums:
        names_by_value.setdefault(enum_def.value, []).append(enum_def.name)

    lines.append("")
    lines.append("# Value -> spec names, for diagnostics.")
    lines.append("_ENUM_NAMES = {")
    for value in sorted(names_by_value):
        lines.append(f"    {_hex_literal(value)}: {_py_tuple(names_by_value[value])},")
    lines.append("}")
    lines.extend(_ENUM_NAME_FUNCTION)
    return lines


_ENUM_NAME_FUNCTION: tuple[str, ...] = (
    "",
    "",
    "def enum_name(value):",
    '    """Spec name for an enum value.',
    "",
    '    Shared values render as "OneOf(GL_A, GL_B)"; values no resolved enum',
    '    carries render as "unknown (0x1234)".',
    '    """',
    "    names = _ENUM_NAMES.get(int(value))",
    "    if names is None:",
    '        return f"unknown (0x{int(value):04X})"',
    "    if len(names) == 1:",
    "        return names[0]",
    "    return f\"OneOf({', '.join(names)})\"",
)


def _slot_prototype(canonical: CanonicalCommand, symbols: SymbolTable) -> str:
    def render(target: TargetType, as_parameter: bool) -> str:
        alias = symbols.lookup(target.alias, SymbolKind.TYPE) if target.alias else None
        return target.render(alias, as_parameter=as_parameter)

    args = [render(canonical.return_type, False)]
    args.extend(render(target, True) for target in canonical.param_types)
    return f"_FUNCTYPE({', '.join(args)})"


def generate_function_table(
    resolved: ResolvedFeatureSet,
    symbols: SymbolTable,
    canonical_commands: list[CanonicalCommand],
    header: WriteConfig,
) -> list[str]:
    def attr(name: str) -> str:
        return symbols.lookup(name, SymbolKind.FUNCTION)

    lines = ["# ========= FUNCTION TABLE =========", ""]
    lines.append(
        '_Slot = collections.namedtuple("_Slot", "attr name fallbacks mandatory params prototype")'
    )
    lines.extend(
        [
            "",
            "",
            "class LoadState(enum.Enum):",
            '    UNINITIALIZED = "uninitialized"',
            '    LOADING = "loading"',
            '    READY = "ready"',
            '    FAILED = "failed"',
            "",
            "",
            "class MissingMandatorySymbol:",
            '    """Load failure: no queried name produced a pointer for a mandatory command."""',
            "",
            '    __slots__ = ("name",)',
            "    state = LoadState.FAILED",
            "",
            "    def __init__(self, name):",
            "        self.name = name",
            "",
            "    def __eq__(self, other):",
            "        return type(other) is type(self) and other.name == self.name",
            "",
            "    def __hash__(self):",
            "        return hash(self.name)",
            "",
            "    def __repr__(self):",
            '        return f"MissingMandatorySymbol({self.name!r})"',
            "",
            "",
        ]
    )

    lines.append(f"# {len(canonical_commands)} slots")
    lines.append("_SLOTS = (")
    for canonical in canonical_commands:
        params = _py_tuple(
            symbols.lookup(p.name, SymbolKind.PARAMETER, scope=canonical.name)
            for p in canonical.command.params
        )
        lines.append(
            f"    _Slot({_quoted(attr(canonical.name))}, {_quoted(canonical.name)}, "
            f"{_py_tuple(canonical.fallbacks)}, {canonical.mandatory}, {params}, "
            f"{_slot_prototype(canonical, symbols)}),"
        )
    lines.append(")")
    lines.append("")

    lines.append("# Every known spec name -> slot attribute.")
    lines.append("_NAMES = {")
    for canonical in canonical_commands:
        slot = attr(canonical.name)
        for name in dict.fromkeys((canonical.name, *canonical.equivalents, *canonical.fallbacks)):
            lines.append(f"    {_quoted(name)}: {_quoted(slot)},")
    lines.append("}")
    lines.append("")

    lines.append("# Attributes of equivalent resolved names -> slot attribute.")
    lines.append("_ALIASES = {")
    for canonical in canonical_commands:
        for equivalent in canonical.equivalents:
            lines.append(
                f"    {_quoted(attr(equivalent))}: {_quoted(attr(canonical.name))},"
            )
    lines.append("}")

    slot_names = ", ".join(_quoted(attr(c.name)) for c in canonical_commands)
    lines.extend(
        [
            "",
            "",
            "class GLFunctions:",
            f'    """Function-pointer table for {describe_target(header)}.',
            "",
            "    Loaded by, and valid only on, the thread and context that performed",
            "    loading. Callers needing several threads or contexts load one table each.",
            "    Slots are read-only once the table is READY.",
            '    """',
            "",
            f'    __slots__ = ("state", "loaded_from", "_frozen", {slot_names})'
            if slot_names
            else '    __slots__ = ("state", "loaded_from", "_frozen")',
            "",
            "    def __init__(self):",
            '        object.__setattr__(self, "_frozen", False)',
            "        self.state = LoadState.UNINITIALIZED",
            "        self.loaded_from = {}",
            "        for slot in _SLOTS:",
            "            setattr(self, slot.attr, None)",
            "",
            "    def __setattr__(self, attr, value):",
            "        if self._frozen:",
            '            raise AttributeError(f"{type(self).__name__} is read-only once loaded")',
            "        object.__setattr__(self, attr, value)",
            "",
            "    def __getattr__(self, attr):",
            "        target = _ALIASES.get(attr)",
            "        if target is None:",
            "            raise AttributeError(attr)",
            "        return getattr(self, target)",
            "",
            "    def _freeze(self):",
            '        object.__setattr__(self, "loaded_from", types.MappingProxyType(dict(self.loaded_from)))',
            '        object.__setattr__(self, "_frozen", True)',
            "",
            "    def slot_for(self, name):",
            '        """Return the slot attribute serving a spec command name."""',
            "        return _NAMES[name]",
            "",
            "    def is_available(self, name):",
            '        """True when the slot for a spec name or attribute holds a pointer."""',
            "        attr = _NAMES.get(name) or _ALIASES.get(name, name)",
            "        return getattr(self, attr, None) is not None",
        ]
    )
    return lines


def generate_loader(style: EmitStyle) -> list[str]:
    lines = [
        "# ========= LOADER =========",
        "",
        "def _address(result):",
        "    if isinstance(result, ctypes.c_void_p):",
        "        return result.value",
        "    return result or None",
        "",
        "",
        "def load(resolver):",
        '    """Fill a new table through resolver(name) -> address or None.',
        "",
        "    Each slot tries its canonical name, then its fallbacks in priority order.",
        "    Returns the READY table, or MissingMandatorySymbol naming the first",
        "    mandatory command no queried name resolved; that value is the FAILED",
        "    outcome and the partial table is discarded. Optional slots stay None.",
        '    """',
        "    table = GLFunctions()",
        "    table.state = LoadState.LOADING",
        "    for slot in _SLOTS:",
        "        source = None",
        "        for name in (slot.name,) + slot.fallbacks:",
        "            address = _address(resolver(name))",
        "            if address:",
        "                source = name",
        "                break",
        "        if source is None:",
        "            if slot.mandatory:",
        "                return MissingMandatorySymbol(slot.name)",
        "            continue",
        "        setattr(table, slot.attr, slot.prototype(address))",
        "        table.loaded_from[slot.attr] = source",
        "    table.state = LoadState.READY",
        "    table._freeze()",
        "    return table",
    ]
    if style is EmitStyle.THREAD_LOCAL:
        lines.extend(
            [
                "",
                "",
                "_current = threading.local()",
                "",
                "",
                "def make_current(resolver):",
                '    """Load a table and, on success, make it this thread\'s current table."""',
                "    result = load(resolver)",
                "    if isinstance(result, GLFunctions):",
                "        _current.table = result",
                "    return result",
                "",
                "",
                "def current():",
                '    """Return the table loaded on this thread."""',
                '    table = getattr(_current, "table", None)',
                "    if table is None:",
                '        raise RuntimeError("no function table has been loaded on this thread")',
                "    return table",
            ]
        )
    return lines


def emit(
    resolved: ResolvedFeatureSet,
    symbols: SymbolTable,
    canonical_commands: list[CanonicalCommand],
    mapper: TypeMapper,
    options: EmitOptions | None = None,
) -> str:
    """Serialize the resolved, translated model into the artifact text.

    Section order is fixed: header and imports, type aliases, bitmask
    types, enum constants, function table, loader. Identical inputs give
    byte-identical output.

    Raises:
        KeyError: If symbols is missing a resolved name (build it with
            build_symbol_table from the same resolved set).
        UnknownTypeError: Propagated from typedef mapping.
    """
    options = options or EmitOptions(style=resolved.request.style)
    header = options.header or build_write_config(resolved.request, "gl.xml")

    parts: list[str] = list(format_file_header(header))
    parts.append(f'"""{describe_target(header)} bindings. Generated by glgen."""')
    parts.append("")
    parts.extend(format_import_block(options.style))

    sections = (
        generate_type_aliases(resolved, symbols, mapper),
        generate_bitmask_types(resolved, symbols),
        generate_enum_constants(resolved, symbols),
        generate_function_table(resolved, symbols, canonical_commands, header),
        generate_loader(options.style),
    )
    for section in sections:
        parts.extend(["", ""])
        parts.extend(section)

    return "\n".join(parts) + "\n"


# ===--- Discovery commands ---=== #


@dataclass(frozen=True)
class VersionSummary:
    """One row of the --list-versions table.

    Deltas may be negative where a feature's remove blocks apply to the
    requested profile.

    Attributes:
        version: Feature version.
        feature_name: Feature name, e.g. "GL_VERSION_4_6".
        delta_command_count: Change in active commands against the prior row.
        delta_enum_count: Change in active enums against the prior row.
        cumulative_command_count: Active commands at this version.
        cumulative_enum_count: Active enums at this version.
        is_base: True only for the first row.
    """

    version: GLVersion
    feature_name: str
    delta_command_count: int
    delta_enum_count: int
    cumulative_command_count: int
    cumulative_enum_count: int
    is_base: bool


@dataclass(frozen=True)
class ExtensionSummary:
    name: str
    vendor: str
    supported: tuple[str, ...]
    enum_count: int
    command_count: int


@dataclass(frozen=True)
class ExtensionDetail:
    summary: ExtensionSummary
    types: tuple[str, ...]
    enums: tuple[str, ...]
    commands: tuple[str, ...]


def _extension_names(extension: Extension, kind: str) -> tuple[str, ...]:
    seen: dict[str, None] = {}  # ordered set via insertion-order dict
    for block in extension.blocks:
        for entry in block.entries:
            if entry.kind == kind:
                seen.setdefault(entry.name, None)
    return tuple(seen)


def _summarize_extension(extension: Extension) -> ExtensionSummary:
    return ExtensionSummary(
        name=extension.name,
        vendor=extension.vendor,
        supported=tuple(sorted(extension.supported)),
        enum_count=len(_extension_names(extension, "enum")),
        command_count=len(_extension_names(extension, "command")),
    )


def gather_version_summaries(
    registry: Registry, api: str, profile: str | None
) -> list[VersionSummary]:
    """Resolve every feature of the api family and report per-version counts.

    Args:
        registry: Loaded registry.
        api: Requested api.
        profile: Profile whose remove blocks apply.

    Returns:
        One VersionSummary per distinct feature version, ascending.
    """
    apis = api_family(api)
    features: dict[GLVersion, str] = {}
    for feature in sorted(
        (f for f in registry.features if f.api in apis), key=lambda f: f.version
    ):
        features.setdefault(feature.version, feature.name)

    summaries: list[VersionSummary] = []
    prev_commands = 0
    prev_enums = 0
    for index, (version, feature_name) in enumerate(features.items()):
        resolved = resolve(registry, GenerationRequest(api, version, profile))
        commands = len(resolved.commands)
        enums = len(resolved.enums)
        summaries.append(
            VersionSummary(
                version=version,
                feature_name=feature_name,
                delta_command_count=commands - prev_commands,
                delta_enum_count=enums - prev_enums,
                cumulative_command_count=commands,
                cumulative_enum_count=enums,
                is_base=(index == 0),
            )
        )
        prev_commands = commands
        prev_enums = enums
    return summaries


def gather_extension_summaries(registry: Registry, api: str) -> list[ExtensionSummary]:
    apis = api_family(api)
    summaries = [
        _summarize_extension(ext)
        for ext in registry.extensions.values()
        if ext.supported & apis
    ]
    summaries.sort(key=lambda s: s.name)
    return summaries


def filter_extensions_by_text(
    summaries: list[ExtensionSummary],
    filter_text: str,
) -> list[ExtensionSummary]:
    """Return summaries whose name contains filter_text, case-insensitively.

    An empty filter_text returns every summary.
    """
    if not filter_text:
        return list(summaries)
    needle = filter_text.lower()
    return [s for s in summaries if needle in s.name.lower()]


def gather_extension_detail(
    registry: Registry, extension_name: str
) -> ExtensionDetail | None:
    extension = registry.extensions.get(extension_name)
    if extension is None:
        return None
    return ExtensionDetail(
        summary=_summarize_extension(extension),
        types=_extension_names(extension, "type"),
        enums=_extension_names(extension, "enum"),
        commands=_extension_names(extension, "command"),
    )


def format_versions_table(
    summaries: list[VersionSummary],
    api: str,
    profile: str | None,
    source_label: str,
) -> str:
    """Return the complete --list-versions output.

    Output format:

        OpenGL versions in gl.xml (core profile):

          1.0    10 commands    14 enums       (base)
          3.1    -4 commands    -3 enums       (10 total)
    """
    profile_label = f" ({profile} profile)" if profile else ""
    lines = [f"{API_LABELS.get(api, api)} versions in {source_label}{profile_label}:", ""]
    for row in summaries:
        if row.is_base:
            cmd_col = f"{row.delta_command_count} commands"
            enum_col = f"{row.delta_enum_count} enums"
            suffix = "(base)"
        else:
            cmd_col = f"{row.delta_command_count:+d} commands"
            enum_col = f"{row.delta_enum_count:+d} enums"
            suffix = f"({row.cumulative_command_count} total)"
        lines.append(f"  {row.version}    {cmd_col:<14} {enum_col:<14} {suffix}")
    lines.append("")
    return "\n".join(lines)


def format_extensions_table(
    summaries: list[ExtensionSummary],
    api: str,
    source_label: str,
) -> str:
    n = len(summaries)
    lines = [f"{n} {API_LABELS.get(api, api)} extensions in {source_label}:", ""]

    if not summaries:
        lines.append("")
        return "\n".join(lines)

    name_width = max(len(s.name) for s in summaries)
    vendor_width = max(len(s.vendor) for s in summaries)
    for s in summaries:
        enum_col = f"{s.enum_count} enums"
        cmd_col = f"{s.command_count} cmds"
        row = (
            f"  {s.name.ljust(name_width)}  {s.vendor.ljust(vendor_width)}  "
            f"{enum_col:<10} {cmd_col:<8}  supported: {'|'.join(s.supported)}"
        )
        lines.append(row.rstrip())

    lines.append("")
    return "\n".join(lines)


def format_extension_detail(detail: ExtensionDetail) -> str:
    s = detail.summary
    lines = [f"{s.name} ({s.vendor or 'unknown'} extension)"]
    lines.append(f"  Supported: {', '.join(s.supported)}")

    for title, names in (
        ("Types", detail.types),
        ("Enums", detail.enums),
        ("Commands", detail.commands),
    ):
        lines.append("")
        lines.append(f"  {title} ({len(names)}):")
        for name in names:
            lines.append(f"    {name}")

    lines.append("")
    return "\n".join(lines)


def run_discovery(config: DiscoveryConfig) -> None:
    """Execute the discovery command specified in config and print the result.

    Raises:
        SystemExit(1): When config.command == "info" and the extension is not
            in the registry.
        SpecParseError: Propagated from load_registry_file.
    """
    import sys

    registry = load_registry_file(config.gl_xml)

    if config.command == "list-versions":
        summaries = gather_version_summaries(registry, config.api, config.profile)
        output = format_versions_table(
            summaries, config.api, config.profile, registry.source_label
        )
        print(output, end="")

    elif config.command == "list-extensions":
        ext_summaries = gather_extension_summaries(registry, config.api)
        if config.filter_text is not None:
            ext_summaries = filter_extensions_by_text(ext_summaries, config.filter_text)
        output = format_extensions_table(ext_summaries, config.api, registry.source_label)
        print(output, end="")

    elif config.command == "info":
        assert config.info_extension is not None  # validate_config sets it for "info"
        detail = gather_extension_detail(registry, config.info_extension)
        if detail is None:
            print(
                f"Error: extension '{config.info_extension}' not found in {registry.source_label}",
                file=sys.stderr,
            )
            raise SystemExit(1)
        print(format_extension_detail(detail), end="")


# ===--- Artifact writer ---=== #


@dataclass(frozen=True)
class FileWriteResult:
    """Result of writing the generated module.

    Attributes:
        filename: Filename written, e.g. "gl46.py".
        path: Absolute path of the written file.
        line_count: Number of newline characters in the written content.
        byte_count: Number of bytes written (UTF-8 encoded).
    """

    filename: str
    path: Path
    line_count: int
    byte_count: int


def write_artifact(output: Path, content: str) -> FileWriteResult:
    """Write the generated module to disk, creating parent directories.

    Raises:
        ValueError: If output does not end with ".py".
        OSError: Propagated directly if the filesystem write fails.
    """
    output = Path(output)
    if output.suffix != ".py":
        raise ValueError(f"output must be a .py file, got {str(output)!r}")
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(content, encoding="utf-8")
    resolved = output.resolve()
    return FileWriteResult(
        filename=output.name,
        path=resolved,
        line_count=content.count("\n"),
        byte_count=len(resolved.read_bytes()),
    )


# ===--- Pipeline ---=== #


@dataclass(frozen=True)
class GenerationResult:
    """Everything one generation run derives from the registry.

    Attributes:
        resolved: Resolved feature set.
        symbols: Symbol table built from resolved.
        commands: Canonical commands, one per function slot.
        source: Emitted module text.
    """

    resolved: ResolvedFeatureSet
    symbols: SymbolTable
    commands: tuple[CanonicalCommand, ...]
    source: str


def generate_bindings(
    registry: Registry,
    request: GenerationRequest,
    header: WriteConfig | None = None,
) -> GenerationResult:
    """Run resolve -> translate -> aggregate -> emit for one request. No I/O.

    Raises:
        ConfigError: Unknown or unsupported extension in the request.
        UnknownTypeError: A resolved signature uses an unmapped type.
        DuplicateDefinitionError: Two names collide after translation.
    """
    resolved = resolve(registry, request)
    symbols = build_symbol_table(resolved)
    mapper = TypeMapper(resolved.typedefs)
    commands = aggregate(
        resolved.commands,
        request.fallback_policy,
        mapper,
        optional_command_names(resolved),
    )
    options = EmitOptions(
        style=request.style,
        header=header or build_write_config(request, registry.source_label),
    )
    source = emit(resolved, symbols, commands, mapper, options)
    return GenerationResult(resolved, symbols, tuple(commands), source)


def resolve_generate_extensions(
    registry: Registry, config: GenerateConfig
) -> frozenset[str]:
    """Expand --all-extensions into every extension the api supports."""
    if not config.all_extensions:
        return config.request.extensions
    apis = api_family(config.request.api)
    return frozenset(
        ext.name for ext in registry.extensions.values() if ext.supported & apis
    )


def run_generate(config: GenerateConfig) -> FileWriteResult:
    """Execute the complete generation pipeline for a GenerateConfig.

    Stages: parse -> resolve -> translate -> aggregate -> emit -> write ->
    summary.

    Raises:
        OSError: gl.xml not readable or filesystem write failure.
        GenerationError: SpecParseError, UnknownTypeError or
            DuplicateDefinitionError from the core stages.
        ConfigError: Unknown or unsupported extension.
    """
    print(f"Parsing: {config.gl_xml}")
    registry = load_registry_file(config.gl_xml)
    print(
        f"  Registry: {len(registry.typedefs)} types, {len(registry.enums)} enums, "
        f"{len(registry.commands)} commands, {len(registry.features)} features, "
        f"{len(registry.extensions)} extensions"
    )

    extensions = resolve_generate_extensions(registry, config)
    request = replace(config.request, extensions=extensions)
    print(f"  Extensions: {len(extensions)} requested")

    write_config = build_write_config(
        request, registry.source_label, config.all_extensions
    )
    result = generate_bindings(registry, request, write_config)
    print(
        f"  Resolved: {len(result.resolved.typedefs)} types, "
        f"{len(result.resolved.enums)} enums, {len(result.resolved.commands)} commands"
    )
    print(f"  Aggregated: {len(result.commands)} function slots")

    file_result = write_artifact(config.output, result.source)
    print(f"  Written: {file_result.line_count} lines to {file_result.path}")

    summary = build_generation_summary(write_config, result, file_result)
    print_generation_summary(summary)
    return file_result


# ===--- Summary report ---=== #


@dataclass(frozen=True)
class CategoryCount:
    """Count of items in one category, split by core vs. extension.

    Invariant: core + ext == total. Enforced by build_generation_counts.
    """

    total: int
    core: int
    ext: int


@dataclass(frozen=True)
class GenerationCounts:
    type_aliases: int
    bitmask_types: int
    enum_constants: int
    commands: CategoryCount
    alias_groups: int
    optional_slots: int


@dataclass(frozen=True)
class GenerationSummary:
    """Complete, immutable data for the post-generation console report.

    Attributes:
        target_label: Human-readable target built by build_target_label.
        source_label: Registry source, e.g. "gl.xml".
        output_path: Written file path as a string.
        counts: Per-category counts from build_generation_counts.
        file: Write result of the generated module.
    """

    target_label: str
    source_label: str
    output_path: str
    counts: GenerationCounts
    file: FileWriteResult


def build_target_label(config: WriteConfig) -> str:
    """Target label: "OpenGL 4.6 (core)", plus "+ all extensions" or "+ names"."""
    label = describe_target(config)
    if config.all_extensions:
        return f"{label} + all extensions"
    if config.extensions:
        return f"{label} + {', '.join(sorted(config.extensions))}"
    return label


def build_generation_counts(result: GenerationResult) -> GenerationCounts:
    resolved = result.resolved
    total = len(result.commands)
    ext = sum(
        1
        for c in result.commands
        if c.name in resolved.extension_only_commands
        and all(name in resolved.extension_only_commands for name in c.equivalents)
    )
    core = total - ext
    assert core + ext == total, f"CategoryCount invariant violated: {core}+{ext}!={total}"

    return GenerationCounts(
        type_aliases=len(resolved.typedefs),
        bitmask_types=sum(1 for g in resolved.enum_groups if g.is_bitmask),
        enum_constants=len(resolved.enums),
        commands=CategoryCount(total=total, core=core, ext=ext),
        alias_groups=sum(1 for c in result.commands if c.equivalents or c.fallbacks),
        optional_slots=sum(1 for c in result.commands if not c.mandatory),
    )


def build_generation_summary(
    write_config: WriteConfig,
    result: GenerationResult,
    file_result: FileWriteResult,
) -> GenerationSummary:
    return GenerationSummary(
        target_label=build_target_label(write_config),
        source_label=write_config.source_label,
        output_path=str(file_result.path),
        counts=build_generation_counts(result),
        file=file_result,
    )


def format_generation_summary(summary: GenerationSummary) -> str:
    """Render a GenerationSummary as the multi-section console report.

    The heading uses the target without its extension list. The split
    annotation appears only when extension commands were generated.
    """
    heading = summary.target_label.split(" + ")[0]
    counts = summary.counts

    lines: list[str] = [f"{heading} bindings generated:", ""]
    lines.append(f"  Target:     {summary.target_label}")
    lines.append(f"  Source:     {summary.source_label}")
    lines.append(f"  Output:     {summary.output_path}")
    lines.append("")
    lines.append("  Symbols generated:")

    def _row(label: str, count: int, note: str = "") -> str:
        row = f"    {label:<16}{count:>6}"
        return f"{row}  {note}" if note else row

    lines.append(_row("Type aliases:", counts.type_aliases))
    lines.append(_row("Bitmask types:", counts.bitmask_types))
    lines.append(_row("Enum constants:", counts.enum_constants))
    command_note = (
        f"({counts.commands.core} core + {counts.commands.ext} from extensions)"
        if counts.commands.ext > 0
        else ""
    )
    lines.append(_row("Commands:", counts.commands.total, command_note))
    lines.append(_row("Alias groups:", counts.alias_groups))
    lines.append(_row("Optional slots:", counts.optional_slots))

    lines.append("")
    lines.append("  File written:")
    lines.append(
        f"    {summary.file.filename:<28} {summary.file.line_count:>6,} lines"
        f"  ({summary.file.byte_count:,} bytes)"
    )
    lines.append("")
    lines.append(f"  Verify: python -m py_compile {summary.output_path}")
    lines.append("")

    return "\n".join(lines)


def print_generation_summary(summary: GenerationSummary) -> None:
    """Print the generation summary; format_generation_summary stays pure."""
    print(format_generation_summary(summary), end="")


# ===--- Main generation ---=== #


def main():
    try:
        config = build_config()
    except ConfigError as err:
        print(f"Config error [{err.code}]: {err.message}")
        if err.suggestion:
            print(f"Hint: {err.suggestion}")
        raise SystemExit(1) from err

    try:
        if isinstance(config, DiscoveryConfig):
            run_discovery(config)
        else:
            run_generate(config)
    except ConfigError as err:
        print(f"Config error [{err.code}]: {err.message}")
        if err.suggestion:
            print(f"Hint: {err.suggestion}")
        raise SystemExit(1) from err
    except GenerationError as err:
        print(f"Generation error: {err}")
        raise SystemExit(1) from err
    except OSError as err:
        print(f"Error: {err}")
        raise SystemExit(1) from err
    except (RuntimeError, ValueError) as err:
        print(f"Internal error: {err}")
        raise SystemExit(1) from err


if __name__ == "__main__":
    main()
