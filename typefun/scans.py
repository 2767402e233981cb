"""One-shot traversals used by the scheduler and the builtin functions."""

from __future__ import annotations

from typing import TYPE_CHECKING

from typefun.orderedset import InsertionOrderedSet
from typefun.types import (
    BlockedType,
    ExternType,
    FunctionType,
    GenericType,
    GenericTypePack,
    IntersectionType,
    MetatableType,
    NegationType,
    NoRefineType,
    PendingExpansionType,
    TableType,
    TypeFunctionInstanceState,
    TypeFunctionInstanceType,
    TypeFunctionKind,
    TypeId,
    TypePackId,
    TypePackVariant,
    TypeVariant,
    UnionType,
    follow,
)
from typefun.visitor import TypeOnceVisitor

if TYPE_CHECKING:
    from typefun.context import ConstraintSolver


def is_pending(ty: TypeId, solver: ConstraintSolver | None) -> bool:
    """Whether `ty` may still change before the solver is done with it."""
    ty = follow(ty)
    match ty.ty:
        case TypeFunctionInstanceType() as instance:
            if instance.state is TypeFunctionInstanceState.UNSOLVED:
                return True
        case BlockedType() | PendingExpansionType():
            return True
    return solver is not None and solver.has_unresolved_constraints(ty)


class UnscopedGenericFinder(TypeOnceVisitor):
    """Looks for generics that no enclosing function type binds."""

    def __init__(self) -> None:
        super().__init__()
        self.scope_generics: list[TypeId] = []
        self.scope_generic_packs: list[TypePackId] = []
        self.found = False

    def visit(self, ty: TypeId, variant: TypeVariant) -> bool:
        match variant:
            case GenericType():
                if ty not in self.scope_generics:
                    self.found = True
                return False
            case ExternType():
                return False
            case FunctionType():
                self.scope_generics.extend(variant.generics)
                self.scope_generic_packs.extend(variant.generic_packs)
                try:
                    self.traverse(variant.arg_types)
                    self.traverse(variant.ret_types)
                finally:
                    del self.scope_generics[
                        len(self.scope_generics) - len(variant.generics) :
                    ]
                    del self.scope_generic_packs[
                        len(self.scope_generic_packs)
                        - len(variant.generic_packs) :
                    ]
                return False
        return not self.found

    def visit_pack(self, tp: TypePackId, variant: TypePackVariant) -> bool:
        if isinstance(variant, GenericTypePack):
            if tp not in self.scope_generic_packs:
                self.found = True
            return False
        return not self.found


def has_unscoped_generics(ty: TypeId) -> bool:
    finder = UnscopedGenericFinder()
    finder.traverse(ty)
    return finder.found


class FindUserTypeFunctionBlockers(TypeOnceVisitor):
    def __init__(self, solver: ConstraintSolver | None) -> None:
        super().__init__()
        self.solver = solver
        self.blocking_types = InsertionOrderedSet[TypeId]()

    def visit(self, ty: TypeId, variant: TypeVariant) -> bool:
        if isinstance(variant, ExternType):
            return False
        if is_pending(ty, self.solver):
            self.blocking_types.add(ty)
        return True


class FindRefinementBlockers(TypeOnceVisitor):
    def __init__(self) -> None:
        super().__init__()
        self.found = InsertionOrderedSet[TypeId]()

    def visit(self, ty: TypeId, variant: TypeVariant) -> bool:
        match variant:
            case BlockedType() | PendingExpansionType():
                self.found.add(ty)
                return False
            case ExternType():
                return False
        return True


class ContainsRefinableType(TypeOnceVisitor):
    """Decides whether a discriminant holds anything besides `*no-refine*`.

    Structural types are looked through; any other leaf counts."""

    def __init__(self) -> None:
        super().__init__()
        self.found = False

    def visit(self, ty: TypeId, variant: TypeVariant) -> bool:
        match variant:
            case NoRefineType():
                return False
            case (
                TableType()
                | MetatableType()
                | FunctionType()
                | UnionType()
                | IntersectionType()
                | NegationType()
            ):
                return not self.found
        self.found = True
        return False

    def visit_pack(self, tp: TypePackId, variant: TypePackVariant) -> bool:
        return not self.found


def contains_refinable_type(ty: TypeId) -> bool:
    finder = ContainsRefinableType()
    finder.traverse(ty)
    return finder.found


class CollectUnionTypeOptions(TypeOnceVisitor):
    """Flattens literal unions and nested `union<...>` instances."""

    def __init__(self, solver: ConstraintSolver | None) -> None:
        super().__init__()
        self.solver = solver
        self.options = InsertionOrderedSet[TypeId]()
        self.blocking_types = InsertionOrderedSet[TypeId]()

    def visit(self, ty: TypeId, variant: TypeVariant) -> bool:
        match variant:
            case UnionType():
                return True
            case TypeFunctionInstanceType():
                if variant.function.kind is TypeFunctionKind.UNION:
                    return True
                self.options.add(ty)
                self.blocking_types.add(ty)
                return False
        self.options.add(ty)
        if is_pending(ty, self.solver):
            self.blocking_types.add(ty)
        return False

    def visit_pack(self, tp: TypePackId, variant: TypePackVariant) -> bool:
        return False


def occurs(haystack: TypeId, needle: TypeId) -> bool:
    """Whether `needle` is a (nested) member of the set type `haystack`."""
    seen: set[TypeId] = set()
    pending = [haystack]
    needle = follow(needle)
    while pending:
        current = follow(pending.pop())
        if current is needle:
            return True
        if current in seen:
            continue
        seen.add(current)
        match current.ty:
            case UnionType(options=options):
                pending.extend(options)
            case IntersectionType(parts=parts):
                pending.extend(parts)
    return False
