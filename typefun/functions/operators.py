"""Type functions for the unary, arithmetic and comparison operators."""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

from typefun.calls import extend_type_pack, first, solve_function_call
from typefun.functions.common import (
    check_arity,
    check_metamethod_call,
    is_blocked_operand,
)
from typefun.functions.distribute import try_distribute
from typefun.functions.result import TypeFunctionReductionResult
from typefun.metatables import find_metatable_entry
from typefun.normalize import NormalizationResult
from typefun.scans import is_pending
from typefun.types import (
    FreeType,
    MetatableType,
    NeverType,
    TableType,
    TypeId,
    TypePackId,
    follow,
    get,
    is_number,
)

if TYPE_CHECKING:
    from typefun.context import TypeFunctionContext

type Result = TypeFunctionReductionResult[TypeId]

ARITHMETIC_METAMETHODS = {
    'add': '__add',
    'sub': '__sub',
    'mul': '__mul',
    'div': '__div',
    'idiv': '__idiv',
    'pow': '__pow',
    'mod': '__mod',
}

COMPARISON_METAMETHODS = {'lt': '__lt', 'le': '__le'}


def not_type_function(
    instance: TypeId,
    type_args: Sequence[TypeId],
    pack_args: Sequence[TypePackId],
    ctx: TypeFunctionContext,
) -> Result:
    check_arity(ctx, 'not', type_args, pack_args, exactly=1)
    ty = follow(type_args[0])
    if ty is instance:
        return TypeFunctionReductionResult.reduced(ctx.builtins.never)
    if is_pending(ty, ctx.solver):
        return TypeFunctionReductionResult.blocked_on([ty])
    distributed = try_distribute(
        not_type_function, instance, type_args, pack_args, ctx
    )
    if distributed is not None:
        return distributed
    # `not` accepts anything and always produces a boolean.
    return TypeFunctionReductionResult.reduced(ctx.builtins.boolean)


def len_type_function(
    instance: TypeId,
    type_args: Sequence[TypeId],
    pack_args: Sequence[TypePackId],
    ctx: TypeFunctionContext,
) -> Result:
    check_arity(ctx, 'len', type_args, pack_args, exactly=1)
    operand = follow(type_args[0])
    if operand is instance:
        return TypeFunctionReductionResult.reduced(ctx.builtins.never)
    if is_pending(operand, ctx.solver):
        return TypeFunctionReductionResult.blocked_on([operand])

    norm = ctx.normalizer.normalize(operand)
    inhabited = ctx.normalizer.is_inhabited(norm)
    if norm is None or inhabited is NormalizationResult.HIT_LIMITS:
        return TypeFunctionReductionResult.blocked_on()
    if norm.should_suppress_errors():
        return TypeFunctionReductionResult.reduced(ctx.builtins.number)
    # The length of never is still a number.
    if inhabited is NormalizationResult.FALSE or norm.is_subtype_of_string():
        return TypeFunctionReductionResult.reduced(ctx.builtins.number)

    normalized_operand = follow(ctx.normalizer.type_from_normal(norm))
    if norm.has_top_table() or get(normalized_operand, TableType) is not None:
        return TypeFunctionReductionResult.reduced(ctx.builtins.number)

    distributed = try_distribute(
        len_type_function, instance, type_args, pack_args, ctx
    )
    if distributed is not None:
        return distributed

    metamethod = find_metatable_entry(ctx.builtins, operand, '__len')
    if metamethod is None:
        # A metatable without __len keeps the default length operator.
        if get(normalized_operand, MetatableType) is not None:
            return TypeFunctionReductionResult.reduced(ctx.builtins.number)
        return TypeFunctionReductionResult.erroneous()

    checked = check_metamethod_call(ctx, metamethod, [operand])
    if isinstance(checked, TypeFunctionReductionResult):
        return checked
    return TypeFunctionReductionResult.reduced(ctx.builtins.number)


def unm_type_function(
    instance: TypeId,
    type_args: Sequence[TypeId],
    pack_args: Sequence[TypePackId],
    ctx: TypeFunctionContext,
) -> Result:
    check_arity(ctx, 'unm', type_args, pack_args, exactly=1)
    operand = follow(type_args[0])
    if operand is instance:
        return TypeFunctionReductionResult.reduced(ctx.builtins.never)
    if is_pending(operand, ctx.solver):
        return TypeFunctionReductionResult.blocked_on([operand])

    norm = ctx.normalizer.normalize(operand)
    if norm is None:
        return TypeFunctionReductionResult.blocked_on()
    if norm.should_suppress_errors():
        return TypeFunctionReductionResult.reduced(operand)
    if isinstance(operand.ty, NeverType):
        return TypeFunctionReductionResult.reduced(ctx.builtins.never)
    if norm.is_exactly_number():
        return TypeFunctionReductionResult.reduced(ctx.builtins.number)

    distributed = try_distribute(
        unm_type_function, instance, type_args, pack_args, ctx
    )
    if distributed is not None:
        return distributed

    metamethod = find_metatable_entry(ctx.builtins, operand, '__unm')
    if metamethod is None:
        return TypeFunctionReductionResult.erroneous()
    checked = check_metamethod_call(ctx, metamethod, [operand])
    if isinstance(checked, TypeFunctionReductionResult):
        return checked
    result = first(checked.ret_types)
    if result is None:
        return TypeFunctionReductionResult.erroneous()
    return TypeFunctionReductionResult.reduced(result)


def numeric_binop_type_function(
    instance: TypeId,
    type_args: Sequence[TypeId],
    pack_args: Sequence[TypePackId],
    ctx: TypeFunctionContext,
    metamethod_name: str,
) -> Result:
    check_arity(ctx, metamethod_name.lstrip('_'), type_args, pack_args, exactly=2)
    lhs = follow(type_args[0])
    rhs = follow(type_args[1])

    # Pending-ness would hold for a self-reference too; it gets its own
    # answer.
    if lhs is instance or rhs is instance:
        return TypeFunctionReductionResult.reduced(ctx.builtins.never)
    if isinstance(lhs.ty, NeverType) or isinstance(rhs.ty, NeverType):
        return TypeFunctionReductionResult.reduced(ctx.builtins.never)
    if is_pending(lhs, ctx.solver):
        return TypeFunctionReductionResult.blocked_on([lhs])
    if is_pending(rhs, ctx.solver):
        return TypeFunctionReductionResult.blocked_on([rhs])

    lnorm = ctx.normalizer.normalize(lhs)
    rnorm = ctx.normalizer.normalize(rhs)
    if lnorm is None or rnorm is None:
        return TypeFunctionReductionResult.blocked_on()
    if lnorm.should_suppress_errors() or rnorm.should_suppress_errors():
        return TypeFunctionReductionResult.reduced(ctx.builtins.any)
    if lnorm.is_exactly_number() and rnorm.is_exactly_number():
        return TypeFunctionReductionResult.reduced(ctx.builtins.number)

    distributed = try_distribute(
        numeric_binop_type_function,
        instance,
        type_args,
        pack_args,
        ctx,
        metamethod_name,
    )
    if distributed is not None:
        return distributed

    metamethod = find_metatable_entry(ctx.builtins, lhs, metamethod_name)
    reversed_call = False
    if metamethod is None:
        metamethod = find_metatable_entry(ctx.builtins, rhs, metamethod_name)
        reversed_call = True
    if metamethod is None:
        return TypeFunctionReductionResult.erroneous()
    metamethod = follow(metamethod)
    if is_pending(metamethod, ctx.solver):
        return TypeFunctionReductionResult.blocked_on([metamethod])

    arguments = [rhs, lhs] if reversed_call else [lhs, rhs]
    returns = solve_function_call(
        ctx, metamethod, ctx.arena.add_pack(arguments)
    )
    if returns is None:
        return TypeFunctionReductionResult.erroneous()
    extracted = extend_type_pack(returns, 1)
    if not extracted:
        return TypeFunctionReductionResult.erroneous()
    return TypeFunctionReductionResult.reduced(extracted[0])


def concat_type_function(
    instance: TypeId,
    type_args: Sequence[TypeId],
    pack_args: Sequence[TypePackId],
    ctx: TypeFunctionContext,
) -> Result:
    check_arity(ctx, 'concat', type_args, pack_args, exactly=2)
    lhs = follow(type_args[0])
    rhs = follow(type_args[1])
    if lhs is instance or rhs is instance:
        return TypeFunctionReductionResult.reduced(ctx.builtins.never)
    if is_pending(lhs, ctx.solver):
        return TypeFunctionReductionResult.blocked_on([lhs])
    if is_pending(rhs, ctx.solver):
        return TypeFunctionReductionResult.blocked_on([rhs])

    lnorm = ctx.normalizer.normalize(lhs)
    rnorm = ctx.normalizer.normalize(rhs)
    if lnorm is None or rnorm is None:
        return TypeFunctionReductionResult.blocked_on()
    if lnorm.should_suppress_errors() or rnorm.should_suppress_errors():
        return TypeFunctionReductionResult.reduced(ctx.builtins.any)
    if isinstance(lhs.ty, NeverType) or isinstance(rhs.ty, NeverType):
        return TypeFunctionReductionResult.reduced(ctx.builtins.never)
    if (lnorm.is_subtype_of_string() or lnorm.is_exactly_number()) and (
        rnorm.is_subtype_of_string() or rnorm.is_exactly_number()
    ):
        return TypeFunctionReductionResult.reduced(ctx.builtins.string)

    distributed = try_distribute(
        concat_type_function, instance, type_args, pack_args, ctx
    )
    if distributed is not None:
        return distributed

    metamethod = find_metatable_entry(ctx.builtins, lhs, '__concat')
    arguments = [lhs, rhs]
    if metamethod is None:
        metamethod = find_metatable_entry(ctx.builtins, rhs, '__concat')
        arguments = [rhs, lhs]
    if metamethod is None:
        return TypeFunctionReductionResult.erroneous()
    checked = check_metamethod_call(ctx, metamethod, arguments)
    if isinstance(checked, TypeFunctionReductionResult):
        return checked
    return TypeFunctionReductionResult.reduced(ctx.builtins.string)


def comparison_type_function(
    instance: TypeId,
    type_args: Sequence[TypeId],
    pack_args: Sequence[TypePackId],
    ctx: TypeFunctionContext,
    metamethod_name: str,
) -> Result:
    check_arity(ctx, metamethod_name.lstrip('_'), type_args, pack_args, exactly=2)
    lhs = follow(type_args[0])
    rhs = follow(type_args[1])
    if lhs is instance or rhs is instance:
        return TypeFunctionReductionResult.reduced(ctx.builtins.never)
    if is_blocked_operand(lhs):
        return TypeFunctionReductionResult.blocked_on([lhs])
    if is_blocked_operand(rhs):
        return TypeFunctionReductionResult.blocked_on([rhs])

    # Comparing a free type with a number forces it to be a number, but
    # only a solver can follow up on that.
    if ctx.solver is not None and ctx.constraint is not None:
        if get(lhs, FreeType) is not None and is_number(rhs):
            ctx.arena.bind_type(lhs, ctx.builtins.number)
        elif get(rhs, FreeType) is not None and is_number(lhs):
            ctx.arena.bind_type(rhs, ctx.builtins.number)
    lhs = follow(lhs)
    rhs = follow(rhs)

    lnorm = ctx.normalizer.normalize(lhs)
    rnorm = ctx.normalizer.normalize(rhs)
    linhabited = ctx.normalizer.is_inhabited(lnorm)
    rinhabited = ctx.normalizer.is_inhabited(rnorm)
    if (
        lnorm is None
        or rnorm is None
        or NormalizationResult.HIT_LIMITS in (linhabited, rinhabited)
    ):
        return TypeFunctionReductionResult.blocked_on()
    if lnorm.should_suppress_errors() or rnorm.should_suppress_errors():
        return TypeFunctionReductionResult.reduced(ctx.builtins.boolean)
    if NormalizationResult.FALSE in (linhabited, rinhabited):
        return TypeFunctionReductionResult.reduced(ctx.builtins.boolean)
    if lnorm.is_subtype_of_string() and rnorm.is_subtype_of_string():
        return TypeFunctionReductionResult.reduced(ctx.builtins.boolean)
    if lnorm.is_exactly_number() and rnorm.is_exactly_number():
        return TypeFunctionReductionResult.reduced(ctx.builtins.boolean)

    distributed = try_distribute(
        comparison_type_function,
        instance,
        type_args,
        pack_args,
        ctx,
        metamethod_name,
    )
    if distributed is not None:
        return distributed

    metamethod = find_metatable_entry(ctx.builtins, lhs, metamethod_name)
    if metamethod is None:
        metamethod = find_metatable_entry(ctx.builtins, rhs, metamethod_name)
    if metamethod is None:
        return TypeFunctionReductionResult.erroneous()
    checked = check_metamethod_call(ctx, metamethod, [lhs, rhs])
    if isinstance(checked, TypeFunctionReductionResult):
        return checked
    return TypeFunctionReductionResult.reduced(ctx.builtins.boolean)


def eq_type_function(
    instance: TypeId,
    type_args: Sequence[TypeId],
    pack_args: Sequence[TypePackId],
    ctx: TypeFunctionContext,
) -> Result:
    check_arity(ctx, 'eq', type_args, pack_args, exactly=2)
    lhs = follow(type_args[0])
    rhs = follow(type_args[1])
    if is_pending(lhs, ctx.solver):
        return TypeFunctionReductionResult.blocked_on([lhs])
    if is_pending(rhs, ctx.solver):
        return TypeFunctionReductionResult.blocked_on([rhs])

    lnorm = ctx.normalizer.normalize(lhs)
    rnorm = ctx.normalizer.normalize(rhs)
    linhabited = ctx.normalizer.is_inhabited(lnorm)
    rinhabited = ctx.normalizer.is_inhabited(rnorm)
    if (
        lnorm is None
        or rnorm is None
        or NormalizationResult.HIT_LIMITS in (linhabited, rinhabited)
    ):
        return TypeFunctionReductionResult.blocked_on()
    if lnorm.should_suppress_errors() or rnorm.should_suppress_errors():
        return TypeFunctionReductionResult.reduced(ctx.builtins.boolean)
    if NormalizationResult.FALSE in (linhabited, rinhabited):
        return TypeFunctionReductionResult.reduced(ctx.builtins.boolean)

    metamethod = find_metatable_entry(ctx.builtins, lhs, '__eq')
    if metamethod is None:
        metamethod = find_metatable_entry(ctx.builtins, rhs, '__eq')
    if metamethod is None:
        overlap = ctx.normalizer.is_intersection_inhabited(lhs, rhs)
        if overlap is NormalizationResult.TRUE:
            return TypeFunctionReductionResult.reduced(ctx.builtins.boolean)
        # Disjoint strings (or booleans) may be compared; they are never
        # equal.
        if overlap is NormalizationResult.FALSE and (
            (lnorm.is_subtype_of_string() and rnorm.is_subtype_of_string())
            or (
                lnorm.is_subtype_of_booleans()
                and rnorm.is_subtype_of_booleans()
            )
        ):
            return TypeFunctionReductionResult.reduced(ctx.builtins.false_)
        return TypeFunctionReductionResult.erroneous()

    checked = check_metamethod_call(ctx, metamethod, [lhs, rhs])
    if isinstance(checked, TypeFunctionReductionResult):
        return checked
    return TypeFunctionReductionResult.reduced(ctx.builtins.boolean)
