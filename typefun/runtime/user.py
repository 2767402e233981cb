"""Reducing instances of user type functions.

The arguments are serialized into type values, the user's function runs in
the sandbox, and the type value it returns is deserialized into the arena.
Type aliases visible to the function are handed to it as well: aliases
without parameters as ready-made type values, and parameterized aliases as
callables that instantiate the alias and reduce it on the spot."""

from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from typing import TYPE_CHECKING, Iterator, Sequence

from typefun.errors import (
    SerializationError,
    TimeLimitError,
    UserCancelError,
    format_alias_reduction_error,
    format_cancelled_error,
    format_function_error,
    format_non_type_return_error,
    format_not_enough_arguments_error,
    format_timed_out_error,
)
from typefun.functions.result import TypeFunctionReductionResult
from typefun.location import NO_LOCATION
from typefun.logging import get_logger
from typefun.normalize import reentrancy
from typefun.reducer import reduce_type_functions
from typefun.runtime import sandbox
from typefun.runtime.serialize import Deserializer, Serializer
from typefun.runtime.values import TypeValue
from typefun.scans import FindUserTypeFunctionBlockers
from typefun.substitution import ReplaceGenerics
from typefun.types import (
    TypeFun,
    TypeFunctionInstanceType,
    TypeId,
    TypePackId,
    UserDefinedFunctionData,
    follow,
    get,
)

if TYPE_CHECKING:
    from typefun.context import TypeFunctionContext

_logger = get_logger(__name__)

type Result = TypeFunctionReductionResult[TypeId]

# The context of the user function being evaluated, read by alias proxies.
current_context: ContextVar[TypeFunctionContext] = ContextVar(
    'type function context'
)


@contextmanager
def change_context(ctx: TypeFunctionContext) -> Iterator[None]:
    token = current_context.set(ctx)
    try:
        yield
    finally:
        current_context.reset(token)


class AliasProxy:
    """Stands in for a parameterized type alias inside user code.

    Calling it with type values instantiates the alias with them, reduces
    any type functions in the result and returns the result as a type
    value."""

    def __init__(self, name: str, alias: TypeFun) -> None:
        self.name = name
        self.alias = alias

    def __repr__(self) -> str:
        return f'<type alias {self.name}>'

    def __call__(self, *arguments: TypeValue) -> TypeValue:
        ctx = current_context.get()
        deserializer = Deserializer(ctx.arena, ctx.builtins)
        raw_arguments = []
        for position, argument in enumerate(arguments, 1):
            try:
                raw_arguments.append(deserializer.deserialize(argument))
            except SerializationError:
                raise TypeError(
                    f'failed to deserialize type at argument {position}'
                ) from None

        types, packs = saturate_arguments(ctx, self.alias, raw_arguments)
        replacer = ReplaceGenerics(
            ctx.arena,
            {
                param.ty: ty
                for param, ty in zip(self.alias.type_params, types)
            },
            {
                param.tp: tp
                for param, tp in zip(self.alias.type_pack_params, packs)
            },
        )
        instantiated = replacer.substitute(self.alias.type)
        if instantiated is None:
            raise RuntimeError('failed to instantiate type alias')

        target = follow(instantiated)
        result = reduce_type_functions(target, NO_LOCATION, ctx)
        if result.errors:
            raise RuntimeError(format_alias_reduction_error(result.errors[0]))
        try:
            return Serializer().serialize(follow(target))
        except SerializationError as e:
            raise RuntimeError(str(e)) from None


def saturate_arguments(
    ctx: TypeFunctionContext, alias: TypeFun, arguments: Sequence[TypeId]
) -> tuple[list[TypeId], list[TypePackId]]:
    """Match `arguments` to the alias parameters, filling in defaults.

    Arguments past the type parameters go into the first pack parameter
    when there is one. Raises TypeError when the arguments do not cover
    every parameter without a default."""
    types_required = len(alias.type_params)
    packs_required = len(alias.type_pack_params)
    extra_types = max(len(arguments) - types_required, 0)
    types_provided = min(len(arguments), types_required)
    packs_provided = 0
    if extra_types:
        if packs_required:
            packs_provided += 1
        else:
            types_provided += extra_types
    types_provided += sum(
        param.default is not None
        for param in alias.type_params[types_provided:]
    )
    packs_provided += sum(
        param.default is not None
        for param in alias.type_pack_params[packs_provided:]
    )
    if not extra_types and packs_provided + 1 == packs_required:
        packs_provided += 1
    if types_provided != types_required or packs_provided != packs_required:
        raise TypeError(format_not_enough_arguments_error())

    types = list(arguments[:types_required])
    packs: list[TypePackId] = []
    if extra_types and packs_required:
        packs.append(ctx.arena.add_pack(arguments[types_required:]))
    mapping: dict[TypeId, TypeId] = {
        param.ty: ty for param, ty in zip(alias.type_params, types)
    }
    for param in alias.type_params[len(types):]:
        assert param.default is not None
        default = ReplaceGenerics(ctx.arena, mapping).substitute(param.default)
        ty = ctx.builtins.error if default is None else default
        mapping[param.ty] = ty
        types.append(ty)
    for param in alias.type_pack_params[len(packs):]:
        if param.default is not None:
            packs.append(param.default)
        else:
            packs.append(ctx.builtins.empty_pack)
    return types, packs


def _fill_environment(
    ctx: TypeFunctionContext,
    namespace: dict[str, object],
    data: UserDefinedFunctionData,
    depth: int,
) -> None:
    """Expose the peers and aliases declared no shallower than `depth`."""
    for name, (peer, peer_depth) in data.environment_functions.items():
        if peer_depth < depth:
            continue
        registered = ctx.runtime.lookup(peer)
        if registered is None:
            # Reported when the peer itself is filled in.
            break
        namespace[name] = registered.function

    for name, (alias, alias_depth) in data.environment_aliases.items():
        if alias_depth < depth:
            continue
        if alias.is_simple:
            try:
                namespace[name] = Serializer().serialize(follow(alias.type))
            except SerializationError:
                _logger.debug('alias {} has no type value form', name)
        else:
            namespace[name] = AliasProxy(name, alias)


def user_defined_type_function(
    instance: TypeId,
    type_args: Sequence[TypeId],
    pack_args: Sequence[TypePackId],
    ctx: TypeFunctionContext,
) -> Result:
    function_instance = get(instance, TypeFunctionInstanceType)
    assert function_instance is not None
    data = function_instance.user_func_data
    if data is not None and data.owner() is None:
        ctx.ice.ice('user-defined type function module has expired')
    if (
        function_instance.user_func_name is None
        or data is None
        or data.definition is None
    ):
        ctx.ice.ice(
            'all user-defined type functions must have an associated '
            'function definition'
        )
    definition = data.definition
    runtime = ctx.runtime

    # Evaluating code that already failed to check only adds noise.
    if not runtime.allow_evaluation or definition.has_errors:
        return TypeFunctionReductionResult.reduced(ctx.builtins.error)

    check = FindUserTypeFunctionBlockers(ctx.solver)
    for ty in type_args:
        check.traverse(follow(ty))
    for alias, _ in data.environment_aliases.values():
        if alias.is_simple:
            check.traverse(follow(alias.type))
    if check.blocking_types:
        return TypeFunctionReductionResult.blocked_on(check.blocking_types)

    for peer, _ in data.environment_functions.values():
        if peer.has_errors:
            return TypeFunctionReductionResult.reduced(ctx.builtins.error)
        if runtime.register_function(peer) is not None:
            ctx.ice.ice(
                'user-defined type function reference cannot be registered'
            )
    error = runtime.register_function(definition)
    if error is not None:
        return TypeFunctionReductionResult.erroneous(error)

    name = definition.name
    with (
        change_context(ctx),
        reentrancy(ctx.normalizer.shared_state, False),
    ):
        for peer, depth in data.environment_functions.values():
            if peer in runtime.initialized:
                continue
            runtime.initialized.add(peer)
            registered = runtime.lookup(peer)
            if registered is None:
                ctx.ice.ice(
                    'user-defined type function reference cannot be found '
                    'in the registry'
                )
            _fill_environment(ctx, registered.namespace, data, depth)

        registered = runtime.lookup(definition)
        if registered is None:
            ctx.ice.ice(
                'user-defined type function reference cannot be found in '
                'the registry'
            )
        if definition not in runtime.initialized:
            # Not part of its own environment, so declared at the top level.
            runtime.initialized.add(definition)
            _fill_environment(ctx, registered.namespace, data, 0)

        serializer = Serializer()
        try:
            arguments = [serializer.serialize(follow(ty)) for ty in type_args]
        except SerializationError as e:
            return TypeFunctionReductionResult.erroneous(str(e))

        with runtime.capture_output() as messages:
            _logger.debug('evaluating type function {}', name)
            try:
                with sandbox.interrupt(ctx.limits, ctx.ice.module_name):
                    returned = registered.function(*arguments)
            except TimeLimitError:
                return TypeFunctionReductionResult.erroneous(
                    format_timed_out_error(name), messages
                )
            except UserCancelError:
                return TypeFunctionReductionResult.erroneous(
                    format_cancelled_error(name), messages
                )
            except Exception as e:
                return TypeFunctionReductionResult.erroneous(
                    format_function_error(name, sandbox.describe_failure(e)),
                    messages,
                )

        if not isinstance(returned, TypeValue):
            return TypeFunctionReductionResult.erroneous(
                format_non_type_return_error(name), messages
            )
        try:
            result = Deserializer(ctx.arena, ctx.builtins).deserialize(
                returned
            )
        except SerializationError as e:
            return TypeFunctionReductionResult.erroneous(str(e), messages)
    return TypeFunctionReductionResult(result, messages=list(messages))
