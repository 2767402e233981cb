"""Unification that narrows free types instead of binding them."""

from __future__ import annotations

from typefun.simplify import simplify_intersection, simplify_union
from typefun.types import (
    BuiltinTypes,
    FreeType,
    FreeTypePack,
    FunctionType,
    TableType,
    TypeArena,
    TypeId,
    TypePackId,
    VariadicTypePack,
    flatten,
    follow,
    get_pack,
)
from typefun.visitor import TypeOnceVisitor


class Unifier:
    def __init__(self, arena: TypeArena, builtins: BuiltinTypes) -> None:
        self.arena = arena
        self.builtins = builtins
        self._seen: set[tuple[TypeId, TypeId]] = set()

    def unify(self, sub: TypeId, sup: TypeId) -> bool:
        """Make `sub <: sup` hold by tightening free-type bounds.

        Returns False only when doing so would make a free type contain
        itself."""
        sub = follow(sub)
        sup = follow(sup)
        if sub is sup or (sub, sup) in self._seen:
            return True
        self._seen.add((sub, sup))

        sub_free = sub.ty if isinstance(sub.ty, FreeType) else None
        sup_free = sup.ty if isinstance(sup.ty, FreeType) else None
        if sub_free is not None and self.arena.owns(sub):
            if _occurs(sub, sup):
                return False
            sub_free.upper_bound = simplify_intersection(
                self.builtins, self.arena, sub_free.upper_bound, sup
            ).result
        if sup_free is not None and self.arena.owns(sup):
            if _occurs(sup, sub):
                return False
            sup_free.lower_bound = simplify_union(
                self.builtins, self.arena, sup_free.lower_bound, sub
            ).result
        if sub_free is not None or sup_free is not None:
            return True

        match sub.ty, sup.ty:
            case FunctionType() as subfn, FunctionType() as supfn:
                return self.unify_packs(
                    supfn.arg_types, subfn.arg_types
                ) and self.unify_packs(subfn.ret_types, supfn.ret_types)
            case TableType() as subtable, TableType() as suptable:
                for name, supprop in suptable.props.items():
                    subprop = subtable.props.get(name)
                    if subprop is None:
                        continue
                    if subprop.read_ty is not None and supprop.read_ty is not None:
                        if not self.unify(subprop.read_ty, supprop.read_ty):
                            return False
                    if (
                        subprop.write_ty is not None
                        and supprop.write_ty is not None
                    ):
                        if not self.unify(supprop.write_ty, subprop.write_ty):
                            return False
        return True

    def unify_packs(self, sub: TypePackId, sup: TypePackId) -> bool:
        sub = follow(sub)
        sup = follow(sup)
        if sub is sup:
            return True
        sub_head, sub_tail = flatten(sub)
        sup_head, sup_tail = flatten(sup)

        for index, sup_ty in enumerate(sup_head):
            if index < len(sub_head):
                sub_ty = sub_head[index]
            elif sub_tail is not None and (
                variadic := get_pack(sub_tail, VariadicTypePack)
            ) is not None:
                sub_ty = variadic.ty
            else:
                # A missing argument is nil.
                sub_ty = self.builtins.nil
            if not self.unify(sub_ty, sup_ty):
                return False

        extra = sub_head[len(sup_head) :]
        if sup_tail is not None:
            tail = follow(sup_tail)
            if isinstance(tail.ty, FreeTypePack) and self.arena.owns(tail):
                self.arena.bind_type_pack(
                    tail, self.arena.add_pack(extra, sub_tail)
                )
            elif (variadic := get_pack(tail, VariadicTypePack)) is not None:
                for sub_ty in extra:
                    if not self.unify(sub_ty, variadic.ty):
                        return False
        return True


class _Occurs(TypeOnceVisitor):
    def __init__(self, needle: TypeId) -> None:
        super().__init__()
        self.needle = needle
        self.found = False

    def visit(self, ty, variant) -> bool:
        if ty is self.needle:
            self.found = True
        return not self.found


def _occurs(needle: TypeId, haystack: TypeId) -> bool:
    finder = _Occurs(follow(needle))
    finder.traverse(haystack)
    return finder.found
