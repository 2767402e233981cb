"""Function call resolution and type pack helpers."""

from __future__ import annotations

from typing import TYPE_CHECKING

from typefun.metatables import find_metatable_entry
from typefun.subtyping import Subtyping
from typefun.substitution import instantiate
from typefun.types import (
    FunctionType,
    IntersectionType,
    TypeId,
    TypePackId,
    VariadicTypePack,
    flatten,
    follow,
    get,
    get_pack,
)
from typefun.unifier import Unifier

if TYPE_CHECKING:
    from typefun.context import TypeFunctionContext


def first(tp: TypePackId) -> TypeId | None:
    head, tail = flatten(tp)
    if head:
        return head[0]
    if tail is not None and (
        variadic := get_pack(tail, VariadicTypePack)
    ) is not None:
        return variadic.ty
    return None


def extend_type_pack(tp: TypePackId, length: int) -> list[TypeId]:
    """The first `length` types of `tp`, repeating a variadic tail."""
    head, tail = flatten(tp)
    result = head[:length]
    if tail is not None and (
        variadic := get_pack(tail, VariadicTypePack)
    ) is not None:
        while len(result) < length:
            result.append(variadic.ty)
    return result


def solve_function_call(
    ctx: TypeFunctionContext, function: TypeId, arguments: TypePackId
) -> TypePackId | None:
    """The return pack of calling `function` with `arguments`.

    Overloaded functions pick the first overload that accepts the
    arguments. None means the call does not type check."""
    function = follow(function)
    overloads = get(function, IntersectionType)
    if overloads is not None:
        for overload in overloads.parts:
            result = solve_function_call(ctx, overload, arguments)
            if result is not None:
                return result
        return None

    if get(function, FunctionType) is None:
        call = find_metatable_entry(ctx.builtins, function, '__call')
        if call is None or follow(call) is function:
            return None
        head, tail = flatten(arguments)
        return solve_function_call(
            ctx, call, ctx.arena.add_pack([function, *head], tail)
        )

    instantiated = instantiate(
        ctx.builtins, ctx.arena, function, ctx.limits.instantiation_limit
    )
    if instantiated is None:
        return None
    signature = get(instantiated, FunctionType)
    assert signature is not None
    if not Unifier(ctx.arena, ctx.builtins).unify_packs(
        arguments, signature.arg_types
    ):
        return None
    subtyping = Subtyping(ctx.builtins, ctx.arena, ctx.normalizer)
    if not subtyping.is_pack_subtype(arguments, signature.arg_types):
        return None
    return signature.ret_types
