"""Substitution of types within the type graph."""

from __future__ import annotations

import abc
import copy
from typing import Mapping

from typefun.types import (
    BuiltinTypes,
    ExternType,
    FreeType,
    FreeTypePack,
    FunctionType,
    IntersectionType,
    MetatableType,
    NegationType,
    Property,
    TableIndexer,
    TableType,
    TypeArena,
    TypeFunctionInstanceType,
    TypeFunctionInstanceTypePack,
    TypeId,
    TypePack,
    TypePackId,
    UnionType,
    VariadicTypePack,
    follow,
    get,
)
from typefun.visitor import TypeOnceVisitor


class _SubstitutionLimitHit(Exception):
    pass


class Substitution(abc.ABC):
    """Rewrites a type, replacing the nodes `is_dirty` picks out.

    The structure above a dirty node is cloned into the arena; everything
    else is shared with the original. Cycles are preserved because a clone
    is registered before its children are rewritten."""

    def __init__(self, arena: TypeArena, limit: int | None = None) -> None:
        self.arena = arena
        self.limit = limit
        self._count = 0
        self._new_types: dict[TypeId, TypeId] = {}
        self._new_packs: dict[TypePackId, TypePackId] = {}

    @abc.abstractmethod
    def is_dirty(self, ty: TypeId) -> bool:
        pass

    @abc.abstractmethod
    def clean(self, ty: TypeId) -> TypeId:
        pass

    def is_dirty_pack(self, tp: TypePackId) -> bool:
        return False

    def clean_pack(self, tp: TypePackId) -> TypePackId:
        return tp

    def ignore_children(self, ty: TypeId) -> bool:
        return False

    def substitute(self, ty: TypeId) -> TypeId | None:
        """The rewritten type, or None when the step limit is exceeded."""
        self._reset()
        try:
            return self._replace(ty)
        except _SubstitutionLimitHit:
            return None

    def substitute_pack(self, tp: TypePackId) -> TypePackId | None:
        self._reset()
        try:
            return self._replace_pack(tp)
        except _SubstitutionLimitHit:
            return None

    def _reset(self) -> None:
        self._count = 0
        self._new_types = {}
        self._new_packs = {}

    def _tick(self) -> None:
        self._count += 1
        if self.limit is not None and self._count > self.limit:
            raise _SubstitutionLimitHit

    def _replace(self, ty: TypeId) -> TypeId:
        ty = follow(ty)
        if ty in self._new_types:
            return self._new_types[ty]
        self._tick()
        if self.is_dirty(ty):
            result = self.clean(ty)
            self._new_types[ty] = result
            return result
        if self.ignore_children(ty) or not self._has_dirty_descendant(ty):
            return ty
        clone = self.arena.add_type(copy.copy(ty.ty))
        self._new_types[ty] = clone
        self.arena.emplace_type(clone, self._rewrite_children(clone.ty))
        return clone

    def _replace_pack(self, tp: TypePackId) -> TypePackId:
        tp = follow(tp)
        if tp in self._new_packs:
            return self._new_packs[tp]
        self._tick()
        if self.is_dirty_pack(tp):
            result = self.clean_pack(tp)
            self._new_packs[tp] = result
            return result
        if not self._has_dirty_descendant(tp):
            return tp
        clone = self.arena.add_type_pack(copy.copy(tp.ty))
        self._new_packs[tp] = clone
        match tp.ty:
            case TypePack(head=head, tail=tail):
                self.arena.emplace_type_pack(
                    clone,
                    TypePack(
                        [self._replace(ty) for ty in head],
                        None if tail is None else self._replace_pack(tail),
                    ),
                )
            case VariadicTypePack(ty=element):
                self.arena.emplace_type_pack(
                    clone, VariadicTypePack(self._replace(element))
                )
            case TypeFunctionInstanceTypePack() as instance:
                self.arena.emplace_type_pack(
                    clone,
                    TypeFunctionInstanceTypePack(
                        instance.function,
                        [self._replace(ty) for ty in instance.type_arguments],
                        [
                            self._replace_pack(pack)
                            for pack in instance.pack_arguments
                        ],
                    ),
                )
        return clone

    def _rewrite_children(self, variant):
        replace = self._replace
        match variant:
            case FreeType(lower_bound=lower, upper_bound=upper):
                return FreeType(replace(lower), replace(upper))
            case UnionType(options=options):
                return UnionType([replace(option) for option in options])
            case IntersectionType(parts=parts):
                return IntersectionType([replace(part) for part in parts])
            case NegationType(ty=negated):
                return NegationType(replace(negated))
            case TableType(props=props, indexer=indexer, name=name):
                return TableType(
                    {k: self._replace_prop(p) for k, p in props.items()},
                    self._replace_indexer(indexer),
                    name,
                )
            case MetatableType(table=table, metatable=metatable):
                return MetatableType(replace(table), replace(metatable))
            case FunctionType():
                return FunctionType(
                    self._replace_pack(variant.arg_types),
                    self._replace_pack(variant.ret_types),
                    list(variant.generics),
                    list(variant.generic_packs),
                )
            case TypeFunctionInstanceType():
                return TypeFunctionInstanceType(
                    variant.function,
                    [replace(ty) for ty in variant.type_arguments],
                    [self._replace_pack(tp) for tp in variant.pack_arguments],
                    variant.user_func_name,
                    variant.user_func_data,
                )
        return variant

    def _replace_prop(self, prop: Property) -> Property:
        if prop.is_shared:
            return Property.rw(self._replace(prop.read_ty))  # type: ignore
        return Property(
            None if prop.read_ty is None else self._replace(prop.read_ty),
            None if prop.write_ty is None else self._replace(prop.write_ty),
        )

    def _replace_indexer(
        self, indexer: TableIndexer | None
    ) -> TableIndexer | None:
        if indexer is None:
            return None
        return TableIndexer(
            self._replace(indexer.index_type),
            self._replace(indexer.index_result_type),
        )

    def _has_dirty_descendant(self, node: TypeId | TypePackId) -> bool:
        finder = _DirtyFinder(self)
        finder.traverse(node)
        return finder.found


class _DirtyFinder(TypeOnceVisitor):
    def __init__(self, substitution: Substitution) -> None:
        super().__init__()
        self.substitution = substitution
        self.found = False

    def visit(self, ty, variant) -> bool:
        if self.found or isinstance(variant, ExternType):
            return False
        if self.substitution.is_dirty(ty):
            self.found = True
            return False
        return not self.substitution.ignore_children(ty)

    def visit_pack(self, tp, variant) -> bool:
        if self.found:
            return False
        if self.substitution.is_dirty_pack(tp):
            self.found = True
            return False
        return True


class ReplaceGenerics(Substitution):
    """Replaces generics (and generic packs) by the types they map to."""

    def __init__(
        self,
        arena: TypeArena,
        types: Mapping[TypeId, TypeId],
        packs: Mapping[TypePackId, TypePackId] | None = None,
        limit: int | None = None,
    ) -> None:
        super().__init__(arena, limit)
        self.types = {follow(k): v for k, v in types.items()}
        self.packs = {} if packs is None else {follow(k): v for k, v in packs.items()}

    def is_dirty(self, ty: TypeId) -> bool:
        return ty in self.types

    def clean(self, ty: TypeId) -> TypeId:
        return self.types[ty]

    def is_dirty_pack(self, tp: TypePackId) -> bool:
        return tp in self.packs

    def clean_pack(self, tp: TypePackId) -> TypePackId:
        return self.packs[tp]


def instantiate(
    builtins: BuiltinTypes,
    arena: TypeArena,
    ty: TypeId,
    limit: int | None = None,
) -> TypeId | None:
    """Replace the generics of a function type with fresh free types."""
    function = get(ty, FunctionType)
    if function is None or not (function.generics or function.generic_packs):
        return ty
    types = {
        generic: arena.add_type(FreeType(builtins.never, builtins.unknown))
        for generic in function.generics
    }
    packs = {
        generic: arena.add_type_pack(FreeTypePack())
        for generic in function.generic_packs
    }
    replacer = ReplaceGenerics(arena, types, packs, limit)
    arg_types = replacer.substitute_pack(function.arg_types)
    ret_types = replacer.substitute_pack(function.ret_types)
    if arg_types is None or ret_types is None:
        return None
    return arena.add_type(FunctionType(arg_types, ret_types))
