"""Declarations extracted from C headers for binding generation.

The header parser produces these plain values and the binding writer turns
them into Python source. Keeping them free of libclang objects lets the
writer be exercised without a clang installation.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional


@dataclass(frozen=True)
class TypeRef:
    """Reference to a C type.

    kind is one of:
        "void"      - no value (function results only)
        "primitive" - a ctypes scalar, name holds e.g. "c_int" or "c_char_p"
        "named"     - a declared record, enum or typedef, name holds its name
        "pointer"   - pointer to target
        "array"     - length elements of target
        "function"  - function pointer with result, params
    """

    kind: str
    name: str = ""
    target: Optional["TypeRef"] = None
    length: int = 0
    result: Optional["TypeRef"] = None
    params: tuple["TypeRef", ...] = ()


VOID = TypeRef("void")


def primitive(name: str) -> TypeRef:
    return TypeRef("primitive", name)


def named(name: str) -> TypeRef:
    return TypeRef("named", name)


def pointer(target: TypeRef) -> TypeRef:
    return TypeRef("pointer", target=target)


def array(target: TypeRef, length: int) -> TypeRef:
    return TypeRef("array", target=target, length=length)


def function(result: TypeRef, params: tuple[TypeRef, ...]) -> TypeRef:
    return TypeRef("function", result=result, params=params)


@dataclass(frozen=True)
class EnumDecl:
    """An enum; name is None for anonymous enums."""

    name: Optional[str]
    underlying: TypeRef
    constants: tuple[tuple[str, int], ...]


@dataclass(frozen=True)
class FieldDecl:
    """A record member.

    Attributes:
        name: Member name (generated for anonymous members)
        type: Member type
        bit_width: Width for bitfields, else None
        anonymous: True for C11 anonymous struct/union members
    """

    name: str
    type: TypeRef
    bit_width: Optional[int] = None
    anonymous: bool = False


@dataclass
class RecordDecl:
    """A struct or union. opaque records have no known layout."""

    name: str
    is_union: bool
    fields: list[FieldDecl] = field(default_factory=list)
    opaque: bool = False


@dataclass(frozen=True)
class TypedefDecl:
    name: str
    type: TypeRef


@dataclass(frozen=True)
class FunctionDecl:
    name: str
    result: TypeRef
    params: tuple[tuple[str, TypeRef], ...]
    variadic: bool = False


@dataclass
class HeaderModel:
    """Everything emitted for one root header, in dependency-friendly order."""

    enums: list[EnumDecl] = field(default_factory=list)
    records: list[RecordDecl] = field(default_factory=list)
    typedefs: list[TypedefDecl] = field(default_factory=list)
    functions: list[FunctionDecl] = field(default_factory=list)
    headers: list[Path] = field(default_factory=list)
