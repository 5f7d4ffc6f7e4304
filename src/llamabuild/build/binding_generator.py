"""Binding generation from the llama.cpp public C headers.

The root header is parsed with libclang (``clang.cindex``). Declarations
whose names start with an allow-listed prefix are kept, together with every
type they reach, and the result is written as a ctypes module by
binding_writer.

Allow-list:
    llama_  - public C API of llama.cpp
    ggml_   - low-level tensor-math API

Policy (fixed, not configurable):
    - emitted record types compare by value (structural equality)
    - enum constants keep their C names, no enum-name prefix

Any parse problem is fatal: a missing header, an unresolvable include or a
syntax error raises BindingError, because everything downstream depends on
the bindings existing and being valid.

libclang ships without the compiler built-in headers llama.h relies on
(stddef.h, stdbool.h), so generate_bindings locates an installed
compiler's include directory and passes it with -isystem.
"""

import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

from clang import cindex

from .. import __version__
from ..subprocess_utils import safe_run
from .binding_model import (
    VOID,
    EnumDecl,
    FieldDecl,
    FunctionDecl,
    HeaderModel,
    RecordDecl,
    TypedefDecl,
    TypeRef,
    array,
    function,
    named,
    pointer,
    primitive,
)
from .binding_writer import render_module
from .errors import BindingError

logger = logging.getLogger(__name__)

DEFAULT_PREFIXES = ("llama_", "ggml_")

CursorKind = cindex.CursorKind
TypeKind = cindex.TypeKind

_PRIMITIVES = {
    TypeKind.BOOL: "c_bool",
    TypeKind.CHAR_S: "c_char",
    TypeKind.CHAR_U: "c_ubyte",
    TypeKind.SCHAR: "c_byte",
    TypeKind.UCHAR: "c_ubyte",
    TypeKind.SHORT: "c_short",
    TypeKind.USHORT: "c_ushort",
    TypeKind.INT: "c_int",
    TypeKind.UINT: "c_uint",
    TypeKind.LONG: "c_long",
    TypeKind.ULONG: "c_ulong",
    TypeKind.LONGLONG: "c_longlong",
    TypeKind.ULONGLONG: "c_ulonglong",
    TypeKind.FLOAT: "c_float",
    TypeKind.DOUBLE: "c_double",
    TypeKind.LONGDOUBLE: "c_longdouble",
    TypeKind.WCHAR: "c_wchar",
}

# Standard typedefs mapped straight onto their ctypes equivalents
_STD_TYPEDEFS = {
    "size_t": "c_size_t",
    "ssize_t": "c_ssize_t",
    "ptrdiff_t": "c_ssize_t",
    "intptr_t": "c_ssize_t",
    "uintptr_t": "c_size_t",
    "int8_t": "c_int8",
    "uint8_t": "c_uint8",
    "int16_t": "c_int16",
    "uint16_t": "c_uint16",
    "int32_t": "c_int32",
    "uint32_t": "c_uint32",
    "int64_t": "c_int64",
    "uint64_t": "c_uint64",
    "wchar_t": "c_wchar",
}


@dataclass(frozen=True)
class BindingResult:
    """Outcome of binding generation.

    Attributes:
        path: Written binding module
        headers: Header files read while parsing (root header first)
        function_count: Number of function prototypes emitted
        type_count: Number of records, enums and typedefs emitted
    """

    path: Path
    headers: tuple[Path, ...]
    function_count: int
    type_count: int


def _is_anonymous(cursor: cindex.Cursor) -> bool:
    spelling = cursor.spelling
    return not spelling or "(" in spelling or cursor.is_anonymous()


class HeaderParser:
    """Collects allow-listed declarations, and the types they reach, from a header."""

    def __init__(self, prefixes: Sequence[str] = DEFAULT_PREFIXES):
        self.prefixes = tuple(prefixes)
        self.model = HeaderModel()
        self._records: dict[str, RecordDecl] = {}
        self._enums: dict[str, str] = {}
        self._typedefs: set[str] = set()
        self._functions: set[str] = set()
        self._constants: set[str] = set()
        self._anon_count = 0

    def allowed(self, name: str) -> bool:
        return name.startswith(self.prefixes)

    def parse(self, header: Path, include_dirs: Sequence[Path], extra_args: Sequence[str] = ()) -> HeaderModel:
        """Parse a header and collect its allow-listed declarations.

        Args:
            header: Root header file
            include_dirs: Directories passed as -I search paths
            extra_args: Additional clang arguments

        Returns:
            Populated HeaderModel

        Raises:
            BindingError: If the header is missing or does not parse cleanly
        """
        if not header.is_file():
            raise BindingError(f"Header not found: {header}")

        args = ["-x", "c", "-std=c11", *(f"-I{d}" for d in include_dirs), *extra_args]
        try:
            index = cindex.Index.create()
            tu = index.parse(str(header), args=args)
        except (cindex.TranslationUnitLoadError, cindex.LibclangError) as e:
            raise BindingError(f"Failed to parse {header}: {e}") from e

        problems = [d for d in tu.diagnostics if d.severity >= cindex.Diagnostic.Error]
        if problems:
            details = "\n".join(f"  {d.location.file}:{d.location.line}: {d.spelling}" for d in problems)
            raise BindingError(f"Failed to parse {header}:\n{details}")

        for cursor in tu.cursor.get_children():
            self._visit(cursor)

        self.model.headers = self._collect_headers(header, include_dirs, tu)
        return self.model

    def _collect_headers(self, header: Path, include_dirs: Sequence[Path], tu: cindex.TranslationUnit) -> list[Path]:
        """Root header plus every included header under the root or an include dir."""
        roots = [os.path.abspath(header.parent)] + [os.path.abspath(d) for d in include_dirs]
        headers = [header]
        for inclusion in tu.get_includes():
            included = Path(inclusion.include.name)
            absolute = os.path.abspath(included)
            if included not in headers and any(absolute.startswith(root + os.sep) for root in roots):
                headers.append(included)
        return headers

    def _visit(self, cursor: cindex.Cursor) -> None:
        kind = cursor.kind
        name = cursor.spelling
        if kind == CursorKind.FUNCTION_DECL:
            if self.allowed(name):
                self._add_function(cursor)
        elif kind in (CursorKind.STRUCT_DECL, CursorKind.UNION_DECL):
            if not _is_anonymous(cursor) and self.allowed(name):
                self._register_record(cursor)
        elif kind == CursorKind.ENUM_DECL:
            if _is_anonymous(cursor):
                self._add_anonymous_enum(cursor)
            elif self.allowed(name):
                self._register_enum(cursor)
        elif kind == CursorKind.TYPEDEF_DECL:
            if self.allowed(name):
                self._register_typedef(cursor)

    def _add_function(self, cursor: cindex.Cursor) -> None:
        if cursor.spelling in self._functions:
            return
        self._functions.add(cursor.spelling)
        params = tuple((arg.spelling, self.type_ref(arg.type)) for arg in cursor.get_arguments())
        variadic = cursor.type.kind == TypeKind.FUNCTIONPROTO and cursor.type.is_function_variadic()
        self.model.functions.append(
            FunctionDecl(name=cursor.spelling, result=self.type_ref(cursor.result_type), params=params, variadic=variadic)
        )

    def _enum_constants(self, cursor: cindex.Cursor) -> tuple[tuple[str, int], ...]:
        """Constants of an enum not already emitted by an earlier declaration."""
        constants = []
        for child in cursor.get_children():
            if child.kind == CursorKind.ENUM_CONSTANT_DECL and child.spelling not in self._constants:
                constants.append((child.spelling, child.enum_value))
        return tuple(constants)

    def _add_anonymous_enum(self, cursor: cindex.Cursor) -> None:
        prefixes = tuple(p.lower() for p in self.prefixes)
        constants = tuple(c for c in self._enum_constants(cursor) if c[0].lower().startswith(prefixes))
        if constants:
            self._constants.update(c[0] for c in constants)
            self.model.enums.append(EnumDecl(name=None, underlying=self.type_ref(cursor.enum_type), constants=constants))

    def _register_enum(self, cursor: cindex.Cursor, name_hint: Optional[str] = None) -> str:
        key = cursor.get_usr() or cursor.spelling
        if key in self._enums:
            return self._enums[key]
        name = self._anonymous_name(name_hint) if _is_anonymous(cursor) else cursor.spelling
        self._enums[key] = name
        constants = self._enum_constants(cursor)
        self._constants.update(c[0] for c in constants)
        self.model.enums.append(EnumDecl(name=name, underlying=self.type_ref(cursor.enum_type), constants=constants))
        return name

    def _anonymous_name(self, hint: Optional[str]) -> str:
        self._anon_count += 1
        return hint or f"_anon_{self._anon_count}"

    def _register_record(self, cursor: cindex.Cursor, name_hint: Optional[str] = None) -> str:
        definition = cursor.get_definition()
        decl = definition if definition is not None else cursor
        key = decl.get_usr() or decl.spelling
        if key in self._records:
            return self._records[key].name

        name = self._anonymous_name(name_hint) if _is_anonymous(decl) else decl.spelling
        record = RecordDecl(name=name, is_union=decl.kind == CursorKind.UNION_DECL, opaque=definition is None)
        # Registered before the members so self-referencing records terminate
        self._records[key] = record
        self.model.records.append(record)

        if definition is not None:
            anon_members = 0
            for child in definition.get_children():
                if child.kind != CursorKind.FIELD_DECL:
                    continue
                anonymous = not child.spelling
                if anonymous:
                    anon_members += 1
                    member_name = f"_anon{anon_members}"
                else:
                    member_name = child.spelling
                member_type = self.type_ref(child.type, name_hint=f"{name}_{member_name.lstrip('_')}")
                width = child.get_bitfield_width() if child.is_bitfield() else None
                record.fields.append(FieldDecl(name=member_name, type=member_type, bit_width=width, anonymous=anonymous))
        return name

    def _register_typedef(self, cursor: cindex.Cursor) -> str:
        name = cursor.spelling
        if name in _STD_TYPEDEFS or name in self._typedefs:
            return name
        self._typedefs.add(name)
        # Dependencies are registered while resolving the underlying type, before this alias
        target = self.type_ref(cursor.underlying_typedef_type, name_hint=name)
        self.model.typedefs.append(TypedefDecl(name=name, type=target))
        return name

    def _function_ref(self, fn_type: cindex.Type) -> TypeRef:
        params: tuple[TypeRef, ...] = ()
        if fn_type.kind == TypeKind.FUNCTIONPROTO:
            params = tuple(self.type_ref(arg) for arg in fn_type.argument_types())
        return function(self.type_ref(fn_type.get_result()), params)

    def type_ref(self, ctype: cindex.Type, name_hint: Optional[str] = None) -> TypeRef:
        """Translate a clang type, registering any declarations it reaches.

        Raises:
            BindingError: For C types ctypes cannot express
        """
        kind = ctype.kind
        if kind == TypeKind.ELABORATED:
            return self.type_ref(ctype.get_named_type(), name_hint)
        if kind == TypeKind.VOID:
            return VOID
        if kind in _PRIMITIVES:
            return primitive(_PRIMITIVES[kind])
        if kind == TypeKind.TYPEDEF:
            decl = ctype.get_declaration()
            if decl.spelling in _STD_TYPEDEFS:
                return primitive(_STD_TYPEDEFS[decl.spelling])
            return named(self._register_typedef(decl))
        if kind == TypeKind.RECORD:
            return named(self._register_record(ctype.get_declaration(), name_hint))
        if kind == TypeKind.ENUM:
            return named(self._register_enum(ctype.get_declaration(), name_hint))
        if kind == TypeKind.POINTER:
            pointee = ctype.get_pointee()
            canonical = pointee.get_canonical()
            if canonical.kind in (TypeKind.CHAR_S, TypeKind.SCHAR):
                return primitive("c_char_p")
            if canonical.kind == TypeKind.VOID:
                return primitive("c_void_p")
            if canonical.kind in (TypeKind.FUNCTIONPROTO, TypeKind.FUNCTIONNOPROTO):
                return self._function_ref(canonical)
            return pointer(self.type_ref(pointee, name_hint))
        if kind == TypeKind.CONSTANTARRAY:
            return array(self.type_ref(ctype.element_type, name_hint), ctype.element_count)
        if kind in (TypeKind.INCOMPLETEARRAY, TypeKind.VARIABLEARRAY):
            return pointer(self.type_ref(ctype.element_type, name_hint))
        if kind in (TypeKind.FUNCTIONPROTO, TypeKind.FUNCTIONNOPROTO):
            return self._function_ref(ctype)
        raise BindingError(f"Unsupported C type '{ctype.spelling}' ({kind.spelling})")


def compiler_builtin_include_dir() -> Optional[Path]:
    """Locate the compiler's built-in header directory.

    The libclang wheel ships no built-in headers (stddef.h, stdbool.h,
    stdarg.h), so they are borrowed from an installed compiler: clang's
    resource directory first, then whatever ``cc`` reports.

    Returns:
        A directory containing stddef.h, or None if no compiler answers
    """
    probes = (
        (["clang", "-print-resource-dir"], "include"),
        (["cc", "-print-file-name=include"], ""),
    )
    for cmd, suffix in probes:
        try:
            result = safe_run(cmd, capture_output=True, text=True)
        except OSError as e:
            logger.debug(f"{cmd[0]} not available: {e}")
            continue
        reported = result.stdout.strip()
        if result.returncode != 0 or not reported:
            continue
        directory = Path(reported) / suffix if suffix else Path(reported)
        if directory.is_absolute() and (directory / "stddef.h").is_file():
            return directory
        logger.debug(f"{' '.join(cmd)} reported {directory}, which has no stddef.h")
    return None


def _macos_sdk_path() -> Optional[str]:
    try:
        result = safe_run(["xcrun", "--show-sdk-path"], capture_output=True, text=True)
    except OSError as e:
        logger.debug(f"xcrun not available: {e}")
        return None
    sdk = result.stdout.strip()
    return sdk if result.returncode == 0 and sdk else None


def system_include_args() -> list[str]:
    """clang arguments that make the compiler and C library headers visible.

    libclang doesn't know where the built-in headers live, so they are
    passed with -isystem. On macOS the SDK becomes the sysroot. Elsewhere,
    when no compiler answered, the conventional system directories are
    added as a last resort.
    """
    args = []
    builtin = compiler_builtin_include_dir()
    if builtin is not None:
        args += ["-isystem", str(builtin)]
    else:
        logger.warning("No compiler built-in include directory found; headers including <stddef.h> may not parse")

    if sys.platform == "darwin":
        sdk = _macos_sdk_path()
        if sdk:
            args += ["-isysroot", sdk]
    elif builtin is None:
        for path in ("/usr/local/include", "/usr/include"):
            if os.path.isdir(path):
                args += ["-isystem", path]
    return args


def generate_bindings(
    header: Path,
    include_dirs: Sequence[Path],
    output: Path,
    prefixes: Sequence[str] = DEFAULT_PREFIXES,
    extra_args: Optional[Sequence[str]] = None,
) -> BindingResult:
    """Parse a header and write its allow-listed declarations as a ctypes module.

    Args:
        header: Root header (e.g., wrapper.h including llama.h)
        include_dirs: Header search directories (staged include/ and ggml/include/)
        output: Destination of the generated module
        prefixes: Name prefixes to allow
        extra_args: Additional clang arguments (defaults to system_include_args())

    Returns:
        BindingResult with the output path and the headers read

    Raises:
        BindingError: If parsing fails or the module cannot be written
    """
    logger.debug(f"Generating bindings from {header} (prefixes: {', '.join(prefixes)})")
    if extra_args is None:
        extra_args = system_include_args()
    logger.debug(f"clang arguments: {' '.join(extra_args)}")
    parser = HeaderParser(prefixes)
    model = parser.parse(header, include_dirs, extra_args)
    text = render_module(model, header.name, __version__)

    partial = output.with_name(output.name + ".partial")
    try:
        output.parent.mkdir(parents=True, exist_ok=True)
        partial.write_text(text, encoding="utf-8")
        os.replace(partial, output)
    except OSError as e:
        raise BindingError(f"Couldn't write bindings to {output}: {e}") from e

    type_count = len(model.records) + len([e for e in model.enums if e.name]) + len(model.typedefs)
    logger.info(f"Generated {len(model.functions)} functions and {type_count} types into {output}")
    return BindingResult(path=output, headers=tuple(model.headers), function_count=len(model.functions), type_count=type_count)
