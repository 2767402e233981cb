"""Checks shared by the builtin type functions."""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

from typefun.errors import format_wrong_arity_error
from typefun.functions.result import TypeFunctionReductionResult
from typefun.scans import is_pending
from typefun.substitution import instantiate
from typefun.subtyping import Subtyping
from typefun.types import (
    BlockedType,
    FunctionType,
    PendingExpansionType,
    TypeFunctionInstanceType,
    TypeId,
    TypePackId,
    follow,
    get,
)
from typefun.unifier import Unifier

if TYPE_CHECKING:
    from typefun.context import TypeFunctionContext


def check_arity(
    ctx: TypeFunctionContext,
    name: str,
    type_args: Sequence[TypeId],
    pack_args: Sequence[TypePackId],
    exactly: int | None = None,
    at_least: int = 0,
) -> None:
    """Report an internal error unless the instance has the expected
    arguments. Builtins never take pack arguments."""
    if (
        pack_args
        or (exactly is not None and len(type_args) != exactly)
        or len(type_args) < at_least
    ):
        ctx.ice.ice(format_wrong_arity_error(name))


def is_blocked_operand(ty: TypeId) -> bool:
    """A narrower form of `is_pending` that ignores the solver."""
    return isinstance(
        follow(ty).ty,
        (BlockedType, PendingExpansionType, TypeFunctionInstanceType),
    )


def check_metamethod_call(
    ctx: TypeFunctionContext, metamethod: TypeId, arguments: list[TypeId]
) -> TypeFunctionReductionResult[TypeId] | FunctionType:
    """Check that `metamethod` accepts `arguments`.

    Returns the instantiated signature on success, otherwise the result the
    calling type function should return."""
    metamethod = follow(metamethod)
    if is_pending(metamethod, ctx.solver):
        return TypeFunctionReductionResult.blocked_on([metamethod])
    if get(metamethod, FunctionType) is None:
        return TypeFunctionReductionResult.erroneous()

    instantiated = instantiate(
        ctx.builtins, ctx.arena, metamethod, ctx.limits.instantiation_limit
    )
    if instantiated is None:
        return TypeFunctionReductionResult.erroneous()
    signature = get(instantiated, FunctionType)
    if signature is None:
        return TypeFunctionReductionResult.reduced(ctx.builtins.error)

    argument_pack = ctx.arena.add_pack(arguments)
    # Only fails the occurs check.
    if not Unifier(ctx.arena, ctx.builtins).unify_packs(
        argument_pack, signature.arg_types
    ):
        return TypeFunctionReductionResult.erroneous()
    subtyping = Subtyping(ctx.builtins, ctx.arena, ctx.normalizer)
    if not subtyping.is_pack_subtype(argument_pack, signature.arg_types):
        return TypeFunctionReductionResult.erroneous()
    return signature
