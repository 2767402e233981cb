"""The `union` and `intersect` type functions.

Both fold their arguments with the simplifier. They exist so that set types
built while the arguments are still unknown can be simplified once they are
known."""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

from typefun.functions.common import check_arity
from typefun.functions.result import TypeFunctionReductionResult
from typefun.orderedset import InsertionOrderedSet
from typefun.scans import CollectUnionTypeOptions, is_pending
from typefun.simplify import (
    intersect_with_simple_discriminant,
    simplify_intersection,
    simplify_union,
)
from typefun.types import (
    GenericType,
    IntersectionType,
    NeverType,
    NoRefineType,
    TypeId,
    TypePackId,
    follow,
    get,
)

if TYPE_CHECKING:
    from typefun.context import TypeFunctionContext

type Result = TypeFunctionReductionResult[TypeId]


def union_type_function(
    instance: TypeId,
    type_args: Sequence[TypeId],
    pack_args: Sequence[TypePackId],
    ctx: TypeFunctionContext,
) -> Result:
    check_arity(ctx, 'union', type_args, pack_args)
    if len(type_args) == 1:
        return TypeFunctionReductionResult.reduced(follow(type_args[0]))

    collector = CollectUnionTypeOptions(ctx.solver)
    collector.traverse(instance)
    if collector.blocking_types:
        return TypeFunctionReductionResult.blocked_on(collector.blocking_types)

    result_ty = ctx.builtins.never
    for option in collector.options:
        result = simplify_union(ctx.builtins, ctx.arena, result_ty, option)
        # A free type nested in some option still blocks the simplifier.
        if result.blocked_types:
            return TypeFunctionReductionResult.blocked_on(result.blocked_types)
        result_ty = result.result
    return TypeFunctionReductionResult.reduced(result_ty)


def intersect_type_function(
    instance: TypeId,
    type_args: Sequence[TypeId],
    pack_args: Sequence[TypePackId],
    ctx: TypeFunctionContext,
) -> Result:
    check_arity(ctx, 'intersect', type_args, pack_args)
    if len(type_args) == 1:
        return TypeFunctionReductionResult.reduced(follow(type_args[0]))

    types = [follow(ty) for ty in type_args]
    if len(types) == 2:
        if get(types[1], NoRefineType) is not None:
            return TypeFunctionReductionResult.reduced(types[0])
        if get(types[0], NoRefineType) is not None:
            return TypeFunctionReductionResult.reduced(types[1])

    for ty in types:
        if is_pending(ty, ctx.solver):
            return TypeFunctionReductionResult.blocked_on([ty])
        if isinstance(ty.ty, NeverType):
            return TypeFunctionReductionResult.reduced(ctx.builtins.never)

    result_ty = ctx.builtins.unknown
    # Arguments whose intersection with the running result is never.
    unintersectable = InsertionOrderedSet[TypeId]()
    for ty in types:
        if isinstance(ty.ty, NoRefineType):
            continue

        simple = intersect_with_simple_discriminant(
            ctx.builtins, ctx.arena, result_ty, ty
        )
        if simple is not None:
            if isinstance(follow(simple).ty, NeverType):
                unintersectable.add(ty)
            else:
                result_ty = simple
            continue

        result = simplify_intersection(ctx.builtins, ctx.arena, result_ty, ty)
        if isinstance(follow(result.result).ty, NeverType):
            unintersectable.add(ty)
            continue
        if any(
            get(blocked, GenericType) is None
            for blocked in result.blocked_types
        ):
            return TypeFunctionReductionResult.blocked_on(result.blocked_types)
        result_ty = result.result

    if unintersectable:
        unintersectable.add(follow(result_ty))
        if len(unintersectable) > 1:
            return TypeFunctionReductionResult.reduced(
                ctx.arena.add_type(IntersectionType(list(unintersectable)))
            )
        (only,) = unintersectable
        return TypeFunctionReductionResult.reduced(only)

    # A bare never explains nothing; keep the intersection as written.
    if isinstance(follow(result_ty).ty, NeverType):
        return TypeFunctionReductionResult.reduced(
            ctx.arena.add_type(IntersectionType(list(type_args)))
        )
    return TypeFunctionReductionResult.reduced(result_ty)
