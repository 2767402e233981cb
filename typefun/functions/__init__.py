"""The builtin type functions and the dispatch from descriptors to reducers.

Every reducer takes the instance being reduced, its type and pack
arguments and the reduction context, and returns a
TypeFunctionReductionResult."""

from __future__ import annotations

import functools
from typing import TYPE_CHECKING, Callable, Sequence

from typefun.functions.catalog import BuiltinTypeFunctions, builtin_type_functions
from typefun.functions.logic import (
    and_type_function,
    or_type_function,
    refine_type_function,
    singleton_type_function,
    weakoptional_type_function,
)
from typefun.functions.operators import (
    ARITHMETIC_METAMETHODS,
    COMPARISON_METAMETHODS,
    comparison_type_function,
    concat_type_function,
    eq_type_function,
    len_type_function,
    not_type_function,
    numeric_binop_type_function,
    unm_type_function,
)
from typefun.functions.result import Reduction, TypeFunctionReductionResult
from typefun.functions.sets import intersect_type_function, union_type_function
from typefun.functions.tables import (
    getmetatable_type_function,
    index_type_function,
    keyof_type_function,
    rawget_type_function,
    rawkeyof_type_function,
    setmetatable_type_function,
)
from typefun.types import (
    GenericType,
    GenericTypeDefinition,
    TypeArena,
    TypeFun,
    TypeFunction,
    TypeFunctionInstanceType,
    TypeFunctionKind,
    TypeId,
    TypePackId,
)

if TYPE_CHECKING:
    from typefun.context import Scope, TypeFunctionContext

type Reducer = Callable[
    [TypeId, Sequence[TypeId], Sequence[TypePackId], TypeFunctionContext],
    TypeFunctionReductionResult[TypeId],
]


def _user_type_function(
    instance: TypeId,
    type_args: Sequence[TypeId],
    pack_args: Sequence[TypePackId],
    ctx: TypeFunctionContext,
) -> TypeFunctionReductionResult[TypeId]:
    # The runtime reduces alias calls through the reducer, which imports
    # this package.
    import typefun.runtime.user

    return typefun.runtime.user.user_defined_type_function(
        instance, type_args, pack_args, ctx
    )


@functools.cache
def _reducers() -> dict[TypeFunctionKind, Reducer]:
    K = TypeFunctionKind
    reducers: dict[TypeFunctionKind, Reducer] = {
        K.NOT: not_type_function,
        K.LEN: len_type_function,
        K.UNM: unm_type_function,
        K.CONCAT: concat_type_function,
        K.AND: and_type_function,
        K.OR: or_type_function,
        K.EQ: eq_type_function,
        K.REFINE: refine_type_function,
        K.SINGLETON: singleton_type_function,
        K.UNION: union_type_function,
        K.INTERSECT: intersect_type_function,
        K.KEYOF: keyof_type_function,
        K.RAWKEYOF: rawkeyof_type_function,
        K.INDEX: index_type_function,
        K.RAWGET: rawget_type_function,
        K.SETMETATABLE: setmetatable_type_function,
        K.GETMETATABLE: getmetatable_type_function,
        K.WEAKOPTIONAL: weakoptional_type_function,
        K.USER: _user_type_function,
    }
    for name, metamethod in ARITHMETIC_METAMETHODS.items():
        reducers[K(name)] = functools.partial(
            _with_metamethod, numeric_binop_type_function, metamethod
        )
    for name, metamethod in COMPARISON_METAMETHODS.items():
        reducers[K(name)] = functools.partial(
            _with_metamethod, comparison_type_function, metamethod
        )
    return reducers


def _with_metamethod(
    reducer: Callable[..., TypeFunctionReductionResult[TypeId]],
    metamethod: str,
    instance: TypeId,
    type_args: Sequence[TypeId],
    pack_args: Sequence[TypePackId],
    ctx: TypeFunctionContext,
) -> TypeFunctionReductionResult[TypeId]:
    return reducer(instance, type_args, pack_args, ctx, metamethod)


def reduce_instance(
    function: TypeFunction,
    instance: TypeId,
    type_args: Sequence[TypeId],
    pack_args: Sequence[TypePackId],
    ctx: TypeFunctionContext,
) -> TypeFunctionReductionResult[TypeId]:
    """Run the reducer behind `function` on one instance."""
    return _reducers()[function.kind](instance, type_args, pack_args, ctx)


def add_to_scope(arena: TypeArena, scope: Scope) -> None:
    """Export the builtin functions as generic type aliases.

    Binary operators default their second parameter to the first, so that
    `add<number>` is `add<number, number>`."""
    functions = builtin_type_functions()

    def unary(function: TypeFunction) -> TypeFun:
        t = arena.add_type(GenericType('T'))
        return TypeFun(
            arena.add_type(TypeFunctionInstanceType(function, [t])),
            [GenericTypeDefinition(t)],
        )

    def binary(function: TypeFunction, with_default: bool = True) -> TypeFun:
        t = arena.add_type(GenericType('T'))
        u = arena.add_type(GenericType('U'))
        return TypeFun(
            arena.add_type(TypeFunctionInstanceType(function, [t, u])),
            [
                GenericTypeDefinition(t),
                GenericTypeDefinition(u, t if with_default else None),
            ],
        )

    for function in (
        functions.len_func,
        functions.unm_func,
        functions.keyof_func,
        functions.rawkeyof_func,
        functions.getmetatable_func,
    ):
        scope.type_aliases[function.name] = unary(function)
    for function in (
        functions.add_func,
        functions.sub_func,
        functions.mul_func,
        functions.div_func,
        functions.idiv_func,
        functions.pow_func,
        functions.mod_func,
        functions.concat_func,
        functions.lt_func,
        functions.le_func,
        functions.eq_func,
    ):
        scope.type_aliases[function.name] = binary(function)
    for function in (
        functions.index_func,
        functions.rawget_func,
        functions.setmetatable_func,
    ):
        scope.type_aliases[function.name] = binary(function, with_default=False)


__all__ = [
    'BuiltinTypeFunctions',
    'Reduction',
    'TypeFunctionReductionResult',
    'add_to_scope',
    'builtin_type_functions',
    'reduce_instance',
]
