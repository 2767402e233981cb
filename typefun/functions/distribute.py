"""Distribution of type functions over union arguments.

    op<a | b, c | d> ~ op<a, c | d> | op<b, c | d>
                     ~ op<a, c> | op<a, d> | op<b, c> | op<b, d>

Only the first union argument is split here; the reducer is called back
for each of its options and splits the remaining unions itself.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable, Sequence

from typefun.context import ReduceConstraint
from typefun.functions.catalog import builtin_type_functions
from typefun.functions.result import Reduction, TypeFunctionReductionResult
from typefun.types import (
    TypeFunctionInstanceType,
    TypeId,
    TypePackId,
    UnionType,
    get,
)

if TYPE_CHECKING:
    from typefun.context import TypeFunctionContext

type Reducer = Callable[..., TypeFunctionReductionResult[TypeId]]


def try_distribute(
    reducer: Reducer,
    instance: TypeId,
    type_args: Sequence[TypeId],
    pack_args: Sequence[TypePackId],
    ctx: TypeFunctionContext,
    *extra: object,
) -> TypeFunctionReductionResult[TypeId] | None:
    """Reduce over each option of the first union argument.

    None means there is no union argument to distribute over."""
    arguments = list(type_args)
    first_union: UnionType | None = None
    union_index = 0
    cartesian_product_size = 1
    for index, argument in enumerate(arguments):
        union = get(argument, UnionType)
        if union is None:
            continue
        if first_union is None:
            first_union = union
            union_index = index
        cartesian_product_size *= len(union.options)
        if ctx.config.cartesian_product_limit <= cartesian_product_size:
            return TypeFunctionReductionResult.erroneous()

    if first_union is None:
        return None

    status = Reduction.MAYBE_OK
    blocked_types: list[TypeId] = []
    results: list[TypeId] = []
    for option in list(first_union.options):
        arguments[union_index] = option
        result = reducer(instance, list(arguments), pack_args, ctx, *extra)
        blocked_types.extend(result.blocked_types)
        if result.reduction_status is not Reduction.MAYBE_OK:
            status = result.reduction_status
        if status is not Reduction.MAYBE_OK or result.result is None:
            break
        results.append(result.result)

    if status is not Reduction.MAYBE_OK or blocked_types:
        return TypeFunctionReductionResult(None, status, blocked_types)

    if not results:
        return None
    if len(results) == 1:
        return TypeFunctionReductionResult.reduced(results[0])

    union_instance = ctx.arena.add_type(
        TypeFunctionInstanceType(builtin_type_functions().union_func, results)
    )
    if ctx.solver is not None:
        ctx.push_constraint(ReduceConstraint(union_instance))
    return TypeFunctionReductionResult.reduced(union_instance)
