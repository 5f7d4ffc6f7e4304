"""Render a HeaderModel as a self-contained ctypes module.

Layout of the generated module:

    1. helpers giving records structural equality
    2. enum aliases and their constants (C names, no enum-name prefix)
    3. one class statement per record, with no fields yet
    4. typedef aliases and _fields_ assignments, interleaved so every
       name exists and every by-value member is laid out before use
    5. the function prototype table and bind()

Declaring every record class before any field list lets records point at
each other (and at themselves) without forward-reference tricks.
"""

import ast
import keyword
from typing import Iterator, Union

from .binding_model import HeaderModel, RecordDecl, TypedefDecl, TypeRef
from .errors import BindingError

_PRELUDE = '''\
import ctypes


def _field_value(value):
    if isinstance(value, ctypes.Array):
        return [_field_value(item) for item in value]
    if isinstance(value, (ctypes._Pointer, ctypes._CFuncPtr)):
        return ctypes.cast(value, ctypes.c_void_p).value
    return value


class _StructuralEq:
    """Compare records field by field; pointers compare by address."""

    __hash__ = None

    def __eq__(self, other):
        if type(self) is not type(other):
            return NotImplemented
        return all(
            _field_value(getattr(self, spec[0])) == _field_value(getattr(other, spec[0]))
            for spec in getattr(type(self), "_fields_", ())
        )


class Structure(_StructuralEq, ctypes.Structure):
    pass


class Union(_StructuralEq, ctypes.Union):
    pass
'''

_BIND = '''\
def bind(library):
    """Attach restype/argtypes to every prototype ``library`` exports.

    Args:
        library: A loaded ctypes.CDLL

    Returns:
        Names of prototypes the library does not export
    """
    missing = []
    for name, (restype, argtypes) in _FUNCTIONS.items():
        try:
            function = getattr(library, name)
        except AttributeError:
            missing.append(name)
            continue
        function.restype = restype
        function.argtypes = argtypes
    return missing
'''


def py_name(name: str) -> str:
    """Make a C identifier safe as a Python identifier."""
    return f"{name}_" if keyword.iskeyword(name) else name


def render_type(ref: TypeRef) -> str:
    """Render a TypeRef as a ctypes expression."""
    if ref.kind == "void":
        return "None"
    if ref.kind == "primitive":
        return f"ctypes.{ref.name}"
    if ref.kind == "named":
        return py_name(ref.name)
    if ref.kind == "pointer":
        assert ref.target is not None
        if ref.target.kind == "void":
            return "ctypes.c_void_p"
        return f"ctypes.POINTER({render_type(ref.target)})"
    if ref.kind == "array":
        assert ref.target is not None
        return f"({render_type(ref.target)} * {ref.length})"
    if ref.kind == "function":
        assert ref.result is not None
        args = "".join(f", {render_type(p)}" for p in ref.params)
        return f"ctypes.CFUNCTYPE({render_type(ref.result)}{args})"
    raise BindingError(f"Cannot render type reference of kind '{ref.kind}'")


def _definition_order(records: list[RecordDecl], typedefs: list[TypedefDecl]) -> list[Union[RecordDecl, TypedefDecl]]:
    """Order typedef aliases and record layouts so nothing is used before it is complete.

    A typedef needs the typedefs it names to exist; an array typedef also
    needs its element laid out, because ctypes fixes an array's size when it
    is created. A record layout needs every by-value member complete.
    """
    records_by_name = {record.name: record for record in records}
    typedefs_by_name = {typedef.name: typedef for typedef in typedefs if typedef.name not in records_by_name}
    ordered: list[Union[RecordDecl, TypedefDecl]] = []
    done: set[tuple[str, str]] = set()
    visiting: set[tuple[str, str]] = set()

    def name_deps(ref: TypeRef) -> Iterator[tuple[str, str]]:
        if ref.kind == "named":
            if ref.name in typedefs_by_name:
                yield ("typedef", ref.name)
        elif ref.kind in ("pointer", "array") and ref.target is not None:
            yield from name_deps(ref.target)
        elif ref.kind == "function":
            for part in (ref.result, *ref.params):
                if part is not None:
                    yield from name_deps(part)

    def value_deps(ref: TypeRef) -> Iterator[tuple[str, str]]:
        if ref.kind == "named":
            if ref.name in records_by_name:
                yield ("layout", ref.name)
            elif ref.name in typedefs_by_name:
                yield ("typedef", ref.name)
                yield from value_deps(typedefs_by_name[ref.name].type)
        elif ref.kind == "array" and ref.target is not None:
            yield from value_deps(ref.target)
        else:
            yield from name_deps(ref)

    def deps(key: tuple[str, str]) -> Iterator[tuple[str, str]]:
        kind, name = key
        if kind == "layout":
            for member in records_by_name[name].fields:
                yield from value_deps(member.type)
        else:
            ref = typedefs_by_name[name].type
            yield from value_deps(ref) if ref.kind == "array" else name_deps(ref)

    def visit(key: tuple[str, str]) -> None:
        if key in done:
            return
        if key in visiting:
            noun = "Record" if key[0] == "layout" else "Typedef"
            raise BindingError(f"{noun} '{key[1]}' contains itself by value")
        visiting.add(key)
        for dep in deps(key):
            visit(dep)
        visiting.discard(key)
        done.add(key)
        ordered.append(records_by_name[key[1]] if key[0] == "layout" else typedefs_by_name[key[1]])

    for name in typedefs_by_name:
        visit(("typedef", name))
    for record in records:
        visit(("layout", record.name))
    return ordered


def _render_fields(record: RecordDecl) -> list[str]:
    lines = []
    anonymous = [member.name for member in record.fields if member.anonymous]
    if anonymous:
        lines.append(f"{py_name(record.name)}._anonymous_ = ({''.join(repr(n) + ', ' for n in anonymous)})")
    lines.append(f"{py_name(record.name)}._fields_ = [")
    for member in record.fields:
        width = f", {member.bit_width}" if member.bit_width is not None else ""
        lines.append(f"    ({member.name!r}, {render_type(member.type)}{width}),")
    lines.append("]")
    return lines


def render_module(model: HeaderModel, source: str, version: str) -> str:
    """Render the full binding module.

    Args:
        model: Parsed declarations
        source: Root header name, recorded in the module docstring
        version: llamabuild version, recorded in the module docstring

    Returns:
        Python source text

    Raises:
        BindingError: If the rendered text is not valid Python
    """
    out = [f'"""ctypes bindings for {source}.\n\nGenerated by llamabuild {version}. Do not edit.\n"""', "", _PRELUDE]

    out.append("\n# Enums")
    for enum in model.enums:
        if enum.name is not None:
            out.append(f"{py_name(enum.name)} = {render_type(enum.underlying)}")
        for constant, value in enum.constants:
            out.append(f"{py_name(constant)} = {value}")

    out.append("\n# Records")
    for record in model.records:
        base = "Union" if record.is_union else "Structure"
        out.append(f"class {py_name(record.name)}({base}):\n    pass\n")

    out.append("\n# Typedefs and record layouts")
    for decl in _definition_order(model.records, model.typedefs):
        if isinstance(decl, TypedefDecl):
            rendered = render_type(decl.type)
            if rendered != py_name(decl.name):
                out.append(f"{py_name(decl.name)} = {rendered}")
        elif not decl.opaque:
            out.extend(_render_fields(decl))

    out.append("\n# Functions")
    out.append("_FUNCTIONS = {")
    for fn in model.functions:
        argtypes = ", ".join(render_type(param) for _, param in fn.params)
        out.append(f"    {fn.name!r}: ({render_type(fn.result)}, [{argtypes}]),")
    out.append("}\n\n")
    out.append(_BIND)

    text = "\n".join(out)
    try:
        ast.parse(text)
    except SyntaxError as e:
        raise BindingError(f"Generated bindings are not valid Python: {e}") from e
    return text
