"""Metatable lookups."""

from __future__ import annotations

from typefun.types import (
    BuiltinTypes,
    ExternType,
    MetatableType,
    PrimitiveType,
    TableType,
    TypeId,
    follow,
    get,
    is_string_singleton,
)


def get_metatable(builtins: BuiltinTypes, ty: TypeId) -> TypeId | None:
    """The metatable attached to `ty`, if any."""
    ty = follow(ty)
    match ty.ty:
        case MetatableType(metatable=metatable):
            return metatable
        case ExternType(metatable=metatable) | PrimitiveType(
            metatable=metatable
        ):
            return metatable
    if is_string_singleton(ty):
        return builtins.string_metatable
    return None


def get_table_type(ty: TypeId) -> TableType | None:
    ty = follow(ty)
    metatable = get(ty, MetatableType)
    if metatable is not None:
        return get_table_type(metatable.table)
    return get(ty, TableType)


def find_metatable_entry(
    builtins: BuiltinTypes, ty: TypeId, entry: str
) -> TypeId | None:
    """The read type of `entry` in the metatable of `ty`."""
    metatable = get_metatable(builtins, ty)
    if metatable is None:
        return None
    table = get_table_type(metatable)
    if table is None:
        return None
    prop = table.props.get(entry)
    if prop is None:
        return None
    return prop.read_ty
