"""Type functions for the logical operators and for refinements."""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

from typefun.functions.common import check_arity, is_blocked_operand
from typefun.functions.result import TypeFunctionReductionResult
from typefun.scans import (
    FindRefinementBlockers,
    contains_refinable_type,
    is_pending,
    occurs,
)
from typefun.simplify import (
    intersect_with_simple_discriminant,
    is_approximately_falsy_type,
    is_approximately_truthy_type,
    simplify_intersection,
    simplify_union,
)
from typefun.substitution import Substitution
from typefun.types import (
    FreeType,
    GenericType,
    IntersectionType,
    NegationType,
    NeverType,
    SingletonType,
    TableType,
    TypeId,
    TypePackId,
    UnionType,
    UnknownType,
    follow,
    get,
    is_nil,
    make_intersection,
    make_union,
)

if TYPE_CHECKING:
    from typefun.context import TypeFunctionContext

type Result = TypeFunctionReductionResult[TypeId]


def _operand_pending(name: str, ty: TypeId, ctx: TypeFunctionContext) -> bool:
    # `or` may reduce over types the solver still has constraints on.
    if name == 'or':
        return is_blocked_operand(ty)
    return is_pending(ty, ctx.solver)


def _logical_type_function(
    name: str,
    instance: TypeId,
    type_args: Sequence[TypeId],
    pack_args: Sequence[TypePackId],
    ctx: TypeFunctionContext,
) -> Result:
    check_arity(ctx, name, type_args, pack_args, exactly=2)
    lhs = follow(type_args[0])
    rhs = follow(type_args[1])

    # t1 = and<lhs, t1> is just lhs, and likewise for the other side.
    if rhs is instance and lhs is not rhs:
        return TypeFunctionReductionResult.reduced(lhs)
    if lhs is instance and lhs is not rhs:
        return TypeFunctionReductionResult.reduced(rhs)

    if _operand_pending(name, lhs, ctx):
        return TypeFunctionReductionResult.blocked_on([lhs])
    if _operand_pending(name, rhs, ctx):
        return TypeFunctionReductionResult.blocked_on([rhs])

    # `and` yields the left operand when it is falsy, `or` when it is truthy.
    keep = ctx.builtins.falsy if name == 'and' else ctx.builtins.truthy
    filtered = simplify_intersection(ctx.builtins, ctx.arena, lhs, keep)
    overall = simplify_union(ctx.builtins, ctx.arena, rhs, filtered.result)
    return TypeFunctionReductionResult(
        overall.result,
        blocked_types=[*filtered.blocked_types, *overall.blocked_types],
    )


def and_type_function(
    instance: TypeId,
    type_args: Sequence[TypeId],
    pack_args: Sequence[TypePackId],
    ctx: TypeFunctionContext,
) -> Result:
    return _logical_type_function('and', instance, type_args, pack_args, ctx)


def or_type_function(
    instance: TypeId,
    type_args: Sequence[TypeId],
    pack_args: Sequence[TypePackId],
    ctx: TypeFunctionContext,
) -> Result:
    return _logical_type_function('or', instance, type_args, pack_args, ctx)


class RefineTypeScrubber(Substitution):
    """Drops `needle` from the unions and intersections that hold it.

    Turns t1 = refine<T | t1, Y> into refine<T, Y> so that reduction does
    not mint the degenerate set type t1 = (T | t1) & Y."""

    def __init__(self, ctx: TypeFunctionContext, needle: TypeId) -> None:
        super().__init__(ctx.arena)
        self.ctx = ctx
        self.needle = follow(needle)

    def _members(self, ty: TypeId) -> list[TypeId] | None:
        match ty.ty:
            case UnionType(options=options):
                return options
            case IntersectionType(parts=parts):
                return parts
        return None

    def is_dirty(self, ty: TypeId) -> bool:
        members = self._members(ty)
        return members is not None and any(
            follow(member) is self.needle for member in members
        )

    def ignore_children(self, ty: TypeId) -> bool:
        return self._members(ty) is None

    def clean(self, ty: TypeId) -> TypeId:
        builtins = self.ctx.builtins
        if isinstance(ty.ty, UnionType):
            options = [
                option
                for option in ty.ty.options
                if follow(option) is not self.needle
                and not isinstance(follow(option).ty, NeverType)
            ]
            return make_union(self.arena, builtins, options)
        if isinstance(ty.ty, IntersectionType):
            parts = [
                part
                for part in ty.ty.parts
                if follow(part) is not self.needle
                and not isinstance(follow(part).ty, UnknownType)
            ]
            return make_intersection(self.arena, builtins, parts)
        return ty


def _is_truthy_or_falsy_type(ty: TypeId) -> bool:
    return is_approximately_truthy_type(ty) or is_approximately_falsy_type(ty)


def _step_refine(
    ctx: TypeFunctionContext, target: TypeId, discriminant: TypeId
) -> tuple[TypeId | None, list[TypeId]]:
    """Refine `target` by one discriminant.

    Returns the refined type, or None together with the types to block on.
    None with nothing to block on means reduction cannot make progress."""
    blockers = FindRefinementBlockers()
    blockers.traverse(discriminant)
    if blockers.found:
        return None, list(blockers.found)

    # A discriminant made only of *no-refine* (possibly inside structural
    # types) says nothing.
    if not contains_refinable_type(discriminant):
        return target, []

    simple = intersect_with_simple_discriminant(
        ctx.builtins, ctx.arena, target, discriminant
    )
    if simple is not None:
        return simple, []

    negation = get(discriminant, NegationType)
    if negation is not None and is_nil(negation.ty):
        result = simplify_intersection(
            ctx.builtins, ctx.arena, target, discriminant
        )
        return result.result, []

    if get(target, TableType) is not None or _is_truthy_or_falsy_type(
        discriminant
    ):
        result = simplify_intersection(
            ctx.builtins, ctx.arena, target, discriminant
        )
        # Free and generic types block the simplifier but not refinement.
        if all(
            isinstance(follow(ty).ty, (FreeType, GenericType))
            for ty in result.blocked_types
        ):
            return result.result, []
        return None, list(result.blocked_types)

    intersection = ctx.arena.add_type(IntersectionType([target, discriminant]))
    norm_intersection = ctx.normalizer.normalize(intersection)
    norm_target = ctx.normalizer.normalize(target)
    if norm_intersection is None or norm_target is None:
        return None, []
    result_ty = ctx.normalizer.type_from_normal(norm_intersection)
    if (
        norm_target.should_suppress_errors()
        and not norm_intersection.should_suppress_errors()
    ):
        result_ty = ctx.arena.add_type(
            UnionType([result_ty, ctx.builtins.error])
        )
    return result_ty, []


def refine_type_function(
    instance: TypeId,
    type_args: Sequence[TypeId],
    pack_args: Sequence[TypePackId],
    ctx: TypeFunctionContext,
) -> Result:
    check_arity(ctx, 'refine', type_args, pack_args, at_least=2)
    target = follow(type_args[0])
    if occurs(target, instance):
        scrubbed = RefineTypeScrubber(ctx, instance).substitute(target)
        if scrubbed is not None:
            target = scrubbed

    discriminants = [follow(ty) for ty in type_args[1:]]
    if is_blocked_operand(target):
        return TypeFunctionReductionResult.blocked_on([target])
    for discriminant in discriminants:
        if is_pending(discriminant, ctx.solver):
            return TypeFunctionReductionResult.blocked_on([discriminant])

    # Refining a target with blocked parts would more likely blow up
    # normalization than help.
    blockers = FindRefinementBlockers()
    blockers.traverse(target)
    if blockers.found:
        return TypeFunctionReductionResult.blocked_on(blockers.found)

    # Last discriminant first.
    while discriminants:
        refined, blocked = _step_refine(ctx, target, discriminants[-1])
        if refined is None:
            return TypeFunctionReductionResult.blocked_on(blocked)
        target = refined
        discriminants.pop()
    return TypeFunctionReductionResult.reduced(target)


def singleton_type_function(
    instance: TypeId,
    type_args: Sequence[TypeId],
    pack_args: Sequence[TypePackId],
    ctx: TypeFunctionContext,
) -> Result:
    check_arity(ctx, 'singleton', type_args, pack_args, exactly=1)
    ty = follow(type_args[0])
    if is_pending(ty, ctx.solver):
        return TypeFunctionReductionResult.blocked_on([ty])

    followed = ty
    negation = get(followed, NegationType)
    if negation is not None:
        followed = follow(negation.ty)
    # nil is its own singleton.
    if get(followed, SingletonType) is not None or is_nil(followed):
        return TypeFunctionReductionResult.reduced(ty)
    return TypeFunctionReductionResult.reduced(ctx.builtins.unknown)


def weakoptional_type_function(
    instance: TypeId,
    type_args: Sequence[TypeId],
    pack_args: Sequence[TypePackId],
    ctx: TypeFunctionContext,
) -> Result:
    check_arity(ctx, 'weakoptional', type_args, pack_args, exactly=1)
    target = follow(type_args[0])
    if is_pending(target, ctx.solver):
        return TypeFunctionReductionResult.blocked_on([target])
    if isinstance(follow(instance).ty, NeverType):
        return TypeFunctionReductionResult.reduced(ctx.builtins.nil)

    norm = ctx.normalizer.normalize(target)
    if norm is None:
        return TypeFunctionReductionResult.blocked_on()
    if norm.is_empty():
        return TypeFunctionReductionResult.reduced(ctx.builtins.nil)
    return TypeFunctionReductionResult.reduced(target)
