"""Depth-first traversal of the type graph."""

from __future__ import annotations

from typefun.errors import RecursionLimitException
from typefun.types import (
    ExternType,
    FreeType,
    FunctionType,
    IntersectionType,
    MetatableType,
    NegationType,
    TableType,
    TypeFunctionInstanceType,
    TypeFunctionInstanceTypePack,
    TypeId,
    TypePack,
    TypePackId,
    TypePackVariant,
    TypeVariant,
    UnionType,
    VariadicTypePack,
    follow,
)


class TypeOnceVisitor:
    """Visits every node reachable from the traversal roots exactly once.

    Subclasses override `visit` (and `visit_pack`), returning whether the
    children of the node should be traversed. Meeting an already visited
    node calls `cycle` instead. Bound nodes are always followed, never
    visited."""

    def __init__(self, recursion_limit: int | None = None) -> None:
        self._seen: set[TypeId | TypePackId] = set()
        self._depth = 0
        self.recursion_limit = recursion_limit

    def visit(self, ty: TypeId, variant: TypeVariant) -> bool:
        return True

    def visit_pack(self, tp: TypePackId, variant: TypePackVariant) -> bool:
        return True

    def cycle(self, node: TypeId | TypePackId) -> None:
        pass

    def traverse(self, node: TypeId | TypePackId) -> None:
        node = follow(node)
        if node in self._seen:
            self.cycle(node)
            return
        self._seen.add(node)
        self._depth += 1
        try:
            if (
                self.recursion_limit is not None
                and self._depth > self.recursion_limit
            ):
                raise RecursionLimitException(self.recursion_limit)
            if isinstance(node, TypeId):
                variant = node.ty
                if self.visit(node, variant):
                    self._traverse_type_children(variant)
            else:
                pack_variant = node.ty
                if self.visit_pack(node, pack_variant):
                    self._traverse_pack_children(pack_variant)
        finally:
            self._depth -= 1

    def _traverse_type_children(self, variant: TypeVariant) -> None:
        match variant:
            case FreeType(lower_bound=lower, upper_bound=upper):
                self.traverse(lower)
                self.traverse(upper)
            case UnionType(options=options):
                for option in list(options):
                    self.traverse(option)
            case IntersectionType(parts=parts):
                for part in list(parts):
                    self.traverse(part)
            case NegationType(ty=negated):
                self.traverse(negated)
            case TableType() | ExternType():
                for prop in list(variant.props.values()):
                    if prop.read_ty is not None:
                        self.traverse(prop.read_ty)
                    if prop.write_ty is not None:
                        self.traverse(prop.write_ty)
                if variant.indexer is not None:
                    self.traverse(variant.indexer.index_type)
                    self.traverse(variant.indexer.index_result_type)
                if isinstance(variant, ExternType):
                    if variant.parent is not None:
                        self.traverse(variant.parent)
                    if variant.metatable is not None:
                        self.traverse(variant.metatable)
            case MetatableType(table=table, metatable=metatable):
                self.traverse(table)
                self.traverse(metatable)
            case FunctionType(arg_types=arg_types, ret_types=ret_types):
                self.traverse(arg_types)
                self.traverse(ret_types)
            case TypeFunctionInstanceType():
                for argument in list(variant.type_arguments):
                    self.traverse(argument)
                for pack_argument in list(variant.pack_arguments):
                    self.traverse(pack_argument)

    def _traverse_pack_children(self, variant: TypePackVariant) -> None:
        match variant:
            case TypePack(head=head, tail=tail):
                for ty in list(head):
                    self.traverse(ty)
                if tail is not None:
                    self.traverse(tail)
            case VariadicTypePack(ty=ty):
                self.traverse(ty)
            case TypeFunctionInstanceTypePack():
                for argument in list(variant.type_arguments):
                    self.traverse(argument)
                for pack_argument in list(variant.pack_arguments):
                    self.traverse(pack_argument)
